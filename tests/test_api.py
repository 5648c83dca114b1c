from datetime import timedelta

from fastapi.testclient import TestClient

from fleetdesk.db import make_engine
from fleetdesk.main import create_app
from fleetdesk.store import SqlRecordStore

from conftest import T0


def register(client, device_id="d1", **attrs):
    return client.post("/device/register", json={"device_id": device_id, **attrs})


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "Running" in r.text


def test_register_and_list(client, clock):
    r = register(client, device_name="Pixel", os_version="Android 14",
                 phone_number="+15550100", battery_level=88)
    assert r.status_code == 200
    assert r.json()["status"] == "success"

    [dev] = client.get("/devices").json()
    assert dev["device_id"] == "d1"
    assert dev["device_name"] == "Pixel"
    assert dev["battery_level"] == 88
    assert dev["is_online"] is True
    assert dev["created_at"].startswith("2026-01-01T12:00:00")

    clock.advance(seconds=31)
    [dev] = client.get("/devices").json()
    assert dev["is_online"] is False


def test_register_without_device_id_is_400(client):
    r = client.post("/device/register", json={"device_name": "x"})
    assert r.status_code == 400
    assert r.json()["status"] == "error"
    assert r.json()["error"] == "invalid_request"
    assert client.get("/devices").json() == []


def test_register_with_bad_battery_is_400(client):
    r = register(client, battery_level="full")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"


def test_devices_ordered_by_creation(client, clock):
    for did in ("a", "b", "c"):
        register(client, did)
        clock.advance(seconds=1)
    register(client, "a", device_name="renamed")
    assert [d["device_id"] for d in client.get("/devices").json()] == ["a", "b", "c"]


def test_get_device(client):
    register(client, device_name="n")
    assert client.get("/device/d1").json()["device_name"] == "n"
    r = client.get("/device/missing")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_command_end_to_end(client):
    r = client.post("/command/send", json={"device_id": "d1", "command_type": "ping", "command_data": {}})
    assert r.json()["status"] == "success"

    [cmd] = client.get("/device/d1/commands").json()
    assert cmd["command_type"] == "ping"
    assert cmd["command_data"] == {}
    assert cmd["status"] == "sent"

    r = client.post(f"/command/{cmd['id']}/execute")
    assert r.json()["status"] == "success"
    assert client.get("/device/d1/commands").json() == []
    assert client.get(f"/command/{cmd['id']}").json()["status"] == "executed"


def test_claim_with_nothing_pending(client):
    assert client.get("/device/nobody/commands").json() == []


def test_claimed_commands_in_enqueue_order(client, clock):
    for n in (1, 2, 3):
        client.post("/command/send", json={"device_id": "d1", "command_type": f"c{n}",
                                           "command_data": {"n": n}})
        clock.advance(milliseconds=5)
    got = client.get("/device/d1/commands").json()
    assert [c["command_data"]["n"] for c in got] == [1, 2, 3]


def test_send_requires_fields(client):
    r = client.post("/command/send", json={"device_id": "d1"})
    assert r.status_code == 400
    assert client.get("/device/d1/commands").json() == []


def test_execute_is_idempotent(client):
    client.post("/command/send", json={"device_id": "d1", "command_type": "ping", "command_data": {}})
    [cmd] = client.get("/device/d1/commands").json()
    for _ in range(2):
        assert client.post(f"/command/{cmd['id']}/execute").status_code == 200
    assert client.post("/command/424242/execute").status_code == 200


def test_execute_with_non_numeric_id_is_400(client):
    r = client.post("/command/abc/execute")
    assert r.status_code == 400


def test_unknown_command_lookup_is_404(client):
    assert client.get("/command/77").status_code == 404


def test_delete_device_cascades(client):
    register(client)
    client.post("/command/send", json={"device_id": "d1", "command_type": "ping", "command_data": {}})
    client.post("/device/d1/sms", json={"sender": "+1", "message_body": "hi"})
    client.post("/device/d1/forms", json={"custom_data": {"field": "v"}})

    r = client.delete("/device/d1")
    assert r.json()["status"] == "success"

    assert client.get("/devices").json() == []
    assert client.get("/device/d1/commands").json() == []
    assert client.get("/device/d1/sms").json() == []
    assert client.get("/device/d1/forms").json() == []
    assert client.delete("/device/d1").status_code == 200


def test_sms_log_and_delete(client, clock):
    client.post("/device/d1/sms", json={"sender": "+1", "message_body": "first"})
    clock.advance(seconds=1)
    client.post("/device/d1/sms", json={"sender": "+2", "message_body": "second"})
    logs = client.get("/device/d1/sms").json()
    assert [s["message_body"] for s in logs] == ["first", "second"]

    assert client.delete(f"/sms/{logs[0]['id']}").status_code == 200
    assert [s["message_body"] for s in client.get("/device/d1/sms").json()] == ["second"]
    assert client.delete(f"/sms/{logs[0]['id']}").status_code == 404


def test_sms_requires_sender(client):
    assert client.post("/device/d1/sms", json={"message_body": "x"}).status_code == 400


def test_forms_round_trip(client):
    client.post("/device/d1/forms", json={"custom_data": {"name": "A", "age": 3}})
    [form] = client.get("/device/d1/forms").json()
    assert form["custom_data"] == {"name": "A", "age": 3}
    assert form["submitted_at"].startswith("2026-01-01T12:00:00")


def test_config_settings(client):
    assert client.get("/config/telegram").status_code == 404
    body = {"telegram_bot_token": "t", "telegram_chat_id": "c"}
    assert client.post("/config/telegram", json=body).json()["status"] == "success"
    assert client.get("/config/telegram").json() == body


def test_storage_failure_is_500_without_engine_text(tmp_path, clock):
    store = SqlRecordStore(make_engine(f"sqlite:///{tmp_path / 'broken.db'}"))  # tables never created
    client = TestClient(create_app(store=store, clock=clock))
    r = client.get("/devices")
    assert r.status_code == 500
    body = r.json()
    assert body["status"] == "error"
    assert body["error"] == "storage_error"
    assert "no such table" not in body["message"]
    store.engine.dispose()


def test_out_of_range_command_id_execute_is_noop(client):
    r = client.post("/command/99999999999999999999/execute")
    assert r.status_code == 200
    assert r.json()["status"] == "success"


def test_out_of_range_ids_are_404_with_error_body(client):
    for r in (client.get("/command/99999999999999999999"),
              client.delete("/sms/99999999999999999999")):
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"


def test_numeric_device_id_is_stored_as_text(client):
    assert client.post("/device/register", json={"device_id": 123}).status_code == 200
    assert client.get("/devices").json()[0]["device_id"] == "123"
    client.post("/command/send", json={"device_id": 123, "command_type": "ping", "command_data": {}})
    assert [c["device_id"] for c in client.get("/device/123/commands").json()] == ["123"]
