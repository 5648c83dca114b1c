import pytest

import agent as device_agent

API = "http://testserver"


class Http:
    """requests-style facade over the test client."""

    def __init__(self, client):
        self.client = client

    def get(self, url, timeout=None):
        return self.client.get(url)

    def post(self, url, json=None, timeout=None):
        return self.client.post(url, json=json)


@pytest.fixture
def http(client):
    return Http(client)


def test_device_id_is_persisted(tmp_path):
    path = str(tmp_path / "device_id.txt")
    first = device_agent.read_device_id(path)
    assert first
    assert device_agent.read_device_id(path) == first


def test_heartbeat_registers_device(http, client, monkeypatch):
    monkeypatch.setattr(device_agent, "collect_attributes",
                        lambda: {"device_name": "bench", "os_version": "Linux 6", "battery_level": 77})
    device_agent.Agent(http, "dev-1", API).heartbeat()
    [dev] = client.get("/devices").json()
    assert dev["device_id"] == "dev-1"
    assert dev["battery_level"] == 77
    assert dev["is_online"] is True


def test_poll_runs_and_acknowledges(http, client):
    client.post("/command/send", json={"device_id": "dev-1", "command_type": "ping", "command_data": {}})
    client.post("/command/send", json={"device_id": "dev-1", "command_type": "warp", "command_data": {}})

    results = device_agent.Agent(http, "dev-1", API).poll_once()

    assert [r for _, r in results] == ["pong", "error: unknown command_type: warp"]
    for cmd_id, _ in results:
        assert client.get(f"/command/{cmd_id}").json()["status"] == "executed"
    assert client.get("/device/dev-1/commands").json() == []


def test_redelivered_command_runs_once(http, client, monkeypatch):
    calls = []
    monkeypatch.setattr(device_agent, "handle", lambda t, d: calls.append(t) or "ok")
    a = device_agent.Agent(http, "dev-1", API)
    a.done.add(1)
    client.post("/command/send", json={"device_id": "dev-1", "command_type": "ping", "command_data": {}})

    assert a.poll_once() == []
    assert calls == []
    assert client.get("/command/1").json()["status"] == "executed"


def test_handle_shell(monkeypatch):
    monkeypatch.setattr(device_agent, "run_shell", lambda cmd: (0, f"ran {cmd}"))
    assert device_agent.handle("shell", {"cmd": "uptime"}) == "rc=0\nran uptime"


class FlakyAckHttp(Http):
    """Fails the first acknowledgement with a connection error."""

    def __init__(self, client):
        super().__init__(client)
        self.failures_left = 1

    def post(self, url, json=None, timeout=None):
        if url.endswith("/execute") and self.failures_left:
            self.failures_left -= 1
            raise device_agent.requests.ConnectionError("connection reset")
        return super().post(url, json=json, timeout=timeout)


def test_failed_ack_does_not_drop_rest_of_batch(client, monkeypatch):
    ran = []
    monkeypatch.setattr(device_agent, "handle", lambda t, d: ran.append(t) or "ok")
    for name in ("first", "second", "third"):
        client.post("/command/send", json={"device_id": "dev-1", "command_type": name, "command_data": {}})

    a = device_agent.Agent(FlakyAckHttp(client), "dev-1", API)
    a.poll_once()

    assert ran == ["first", "second", "third"]
    statuses = [client.get(f"/command/{i}").json()["status"] for i in (1, 2, 3)]
    assert statuses == ["sent", "executed", "executed"]
    assert a.unacked == {1}

    a.poll_once()
    assert ran == ["first", "second", "third"]
    assert client.get("/command/1").json()["status"] == "executed"
    assert a.unacked == set()


def test_done_history_is_bounded(http):
    a = device_agent.Agent(http, "dev-1", API, history=3)
    for cmd_id in range(1, 6):
        a._remember(cmd_id)
    assert a.done == {3, 4, 5}
