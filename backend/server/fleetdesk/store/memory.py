from dataclasses import replace
from datetime import datetime
from itertools import count
from threading import RLock
from typing import Any, Dict, List, Optional

from ..records import CommandRecord, CommandStatus, DeviceRecord, FormRecord, SmsRecord
from .base import RecordStore


class MemoryRecordStore(RecordStore):
    """
    Process-local store. One lock covers all tables, so every operation,
    the claim and the cascade delete included, is a single critical section.
    Records are copied on the way out so callers never hold live rows.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._devices: Dict[str, DeviceRecord] = {}
        self._commands: Dict[int, CommandRecord] = {}
        self._sms: Dict[int, SmsRecord] = {}
        self._forms: Dict[int, FormRecord] = {}
        self._settings: Dict[str, str] = {}
        self._command_ids = count(1)
        self._sms_ids = count(1)
        self._form_ids = count(1)

    # ---------------- devices ----------------
    def upsert_device(self, device_id: str, attrs: Dict[str, Any], now: datetime) -> bool:
        with self._lock:
            dev = self._devices.get(device_id)
            if dev is None:
                self._devices[device_id] = DeviceRecord(
                    device_id=device_id, last_seen=now, created_at=now, **attrs)
                return True
            for k, v in attrs.items():
                setattr(dev, k, v)
            dev.last_seen = max(dev.last_seen, now)
            return False

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        with self._lock:
            dev = self._devices.get(device_id)
            return replace(dev) if dev else None

    def list_devices(self) -> List[DeviceRecord]:
        with self._lock:
            rows = sorted(self._devices.values(), key=lambda d: d.created_at)
            return [replace(d) for d in rows]

    def delete_device(self, device_id: str) -> bool:
        with self._lock:
            existed = self._devices.pop(device_id, None) is not None
            for table in (self._commands, self._sms, self._forms):
                for rid in [rid for rid, r in table.items() if r.device_id == device_id]:
                    del table[rid]
            return existed

    # ---------------- commands ----------------
    def insert_command(self, device_id: str, command_type: str, command_data: str,
                       now: datetime) -> CommandRecord:
        with self._lock:
            rec = CommandRecord(id=next(self._command_ids), device_id=device_id,
                                command_type=command_type, command_data=command_data,
                                status=CommandStatus.PENDING, created_at=now)
            self._commands[rec.id] = rec
            return replace(rec)

    def claim_commands(self, device_id: str) -> List[CommandRecord]:
        with self._lock:
            pending = [c for c in self._commands.values()
                       if c.device_id == device_id and c.status == CommandStatus.PENDING]
            pending.sort(key=lambda c: (c.created_at, c.id))
            for c in pending:
                c.status = CommandStatus.SENT
            return [replace(c) for c in pending]

    def mark_command(self, command_id: int, status: CommandStatus) -> bool:
        with self._lock:
            cmd = self._commands.get(command_id)
            if cmd is None:
                return False
            cmd.status = status
            return True

    def get_command(self, command_id: int) -> Optional[CommandRecord]:
        with self._lock:
            cmd = self._commands.get(command_id)
            return replace(cmd) if cmd else None

    # ---------------- logged events ----------------
    def insert_sms(self, device_id: str, sender: str, message_body: str,
                   now: datetime) -> SmsRecord:
        with self._lock:
            rec = SmsRecord(id=next(self._sms_ids), device_id=device_id, sender=sender,
                            message_body=message_body, received_at=now)
            self._sms[rec.id] = rec
            return replace(rec)

    def list_sms(self, device_id: str) -> List[SmsRecord]:
        with self._lock:
            return [replace(r) for r in self._sms.values() if r.device_id == device_id]

    def delete_sms(self, sms_id: int) -> bool:
        with self._lock:
            return self._sms.pop(sms_id, None) is not None

    def insert_form(self, device_id: str, custom_data: str, now: datetime) -> FormRecord:
        with self._lock:
            rec = FormRecord(id=next(self._form_ids), device_id=device_id,
                             custom_data=custom_data, submitted_at=now)
            self._forms[rec.id] = rec
            return replace(rec)

    def list_forms(self, device_id: str) -> List[FormRecord]:
        with self._lock:
            return [replace(r) for r in self._forms.values() if r.device_id == device_id]

    # ---------------- global settings ----------------
    def put_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._settings[key] = value

    def get_setting(self, key: str) -> Optional[str]:
        with self._lock:
            return self._settings.get(key)
