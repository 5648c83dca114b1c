import asyncio
import logging
import os
import platform
import socket
import subprocess
import uuid
from collections import deque

import psutil
import requests

# ---------------- CONFIG ----------------
API_URL = os.getenv("API_URL", "http://localhost:8000")
DEVICE_ID_FILE = os.getenv("DEVICE_ID_FILE", "./device_id.txt")
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "10"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "5"))
DONE_HISTORY = int(os.getenv("DONE_HISTORY", "1000"))
# ----------------------------------------

log = logging.getLogger("agent")


# ---------------- IDENTITY -----------------
def read_device_id(path: str = DEVICE_ID_FILE) -> str:
    """Stored device id, generated and persisted on first run."""
    if os.path.exists(path):
        with open(path, "r") as f:
            did = f.read().strip()
        if did:
            return did
    did = uuid.uuid4().hex
    with open(path, "w") as f:
        f.write(did)
    return did


def collect_attributes() -> dict:
    battery_level = None
    try:
        battery = psutil.sensors_battery()
        if battery:
            battery_level = int(battery.percent)
    except (AttributeError, NotImplementedError):
        pass
    return {
        "device_name": socket.gethostname(),
        "os_version": f"{platform.system()} {platform.release()}",
        "battery_level": battery_level,
    }


# ---------------- SERVER CALLS ----------------
def register(http, device_id: str, api_url: str = API_URL) -> None:
    r = http.post(f"{api_url}/device/register",
                  json={"device_id": device_id, **collect_attributes()}, timeout=10)
    r.raise_for_status()


def fetch_commands(http, device_id: str, api_url: str = API_URL) -> list:
    r = http.get(f"{api_url}/device/{device_id}/commands", timeout=10)
    r.raise_for_status()
    return r.json()


def mark_executed(http, cmd_id: int, api_url: str = API_URL) -> None:
    r = http.post(f"{api_url}/command/{cmd_id}/execute", timeout=10)
    r.raise_for_status()


# ------------- COMMAND HANDLERS --------------
def run_shell(cmd: str):
    try:
        out = subprocess.run(cmd, shell=True, capture_output=True, text=True, timeout=600)
        return out.returncode, (out.stdout + "\n" + out.stderr).strip()
    except (OSError, subprocess.SubprocessError) as e:
        return 1, f"error: {e}"


def do_restart():
    if platform.system() == "Windows":
        subprocess.Popen("shutdown /r /t 0", shell=True)
    else:
        subprocess.Popen("shutdown -r now", shell=True)


def do_shutdown():
    if platform.system() == "Windows":
        subprocess.Popen("shutdown /s /t 0", shell=True)
    else:
        subprocess.Popen("shutdown -h now", shell=True)


def handle(command_type: str, data) -> str:
    if command_type == "ping":
        return "pong"
    if command_type == "shell":
        rc, out = run_shell((data or {}).get("cmd", ""))
        return f"rc={rc}\n{out}"
    if command_type == "restart":
        do_restart(); return "restarting"
    if command_type == "shutdown":
        do_shutdown(); return "shutting down"
    raise ValueError(f"unknown command_type: {command_type}")


class Agent:
    """Pull loop for one device. Delivery is at-least-once, so recently run
    ids are remembered and a redelivered command is only re-acknowledged.

    The whole claimed batch runs before any acknowledgement; an ack that
    fails is kept and retried on the next poll.
    """

    def __init__(self, http, device_id: str, api_url: str = API_URL,
                 history: int = DONE_HISTORY):
        self.http = http
        self.device_id = device_id
        self.api_url = api_url
        self.done: set[int] = set()
        self._done_order: deque = deque()
        self.history = history
        self.unacked: set[int] = set()

    def heartbeat(self) -> None:
        register(self.http, self.device_id, self.api_url)

    def _remember(self, cmd_id: int) -> None:
        self.done.add(cmd_id)
        self._done_order.append(cmd_id)
        while len(self._done_order) > self.history:
            self.done.discard(self._done_order.popleft())

    def _ack_all(self) -> None:
        for cmd_id in sorted(self.unacked):
            try:
                mark_executed(self.http, cmd_id, self.api_url)
            except requests.RequestException as e:
                log.warning("ack for command %s failed, will retry: %s", cmd_id, e)
            else:
                self.unacked.discard(cmd_id)

    def poll_once(self) -> list:
        """Claim and run pending commands; returns (cmd_id, result) pairs."""
        results = []
        for cmd in fetch_commands(self.http, self.device_id, self.api_url):
            cmd_id = cmd["id"]
            if cmd_id not in self.done:
                try:
                    result = handle(cmd["command_type"], cmd.get("command_data"))
                except ValueError as e:
                    result = f"error: {e}"
                log.info("command %s (%s): %s", cmd_id, cmd["command_type"], result)
                self._remember(cmd_id)
                results.append((cmd_id, result))
            self.unacked.add(cmd_id)
        self._ack_all()
        return results


# ---------------- LOOPS ----------------
async def heartbeat_loop(agent: Agent):
    while True:
        try:
            await asyncio.to_thread(agent.heartbeat)
        except requests.RequestException as e:
            log.warning("heartbeat failed: %s", e)
        await asyncio.sleep(HEARTBEAT_INTERVAL)


async def command_loop(agent: Agent):
    while True:
        try:
            await asyncio.to_thread(agent.poll_once)
        except requests.RequestException as e:
            log.warning("poll failed: %s", e)
        await asyncio.sleep(POLL_INTERVAL)


async def async_main():
    agent = Agent(requests.Session(), read_device_id())
    log.info("agent %s -> %s", agent.device_id, API_URL)

    tasks = [asyncio.create_task(heartbeat_loop(agent)),
             asyncio.create_task(command_loop(agent))]
    try:
        await asyncio.gather(*tasks)
    except (KeyboardInterrupt, asyncio.CancelledError):
        log.info("Shutting down...")
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(async_main())
