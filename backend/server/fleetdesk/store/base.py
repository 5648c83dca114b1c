from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..records import CommandRecord, CommandStatus, DeviceRecord, FormRecord, SmsRecord


class RecordStore(ABC):
    """
    Storage contract for devices, commands, logged events and global settings.

    Every method is atomic on its own. Adapters:
      - SqlRecordStore (SQLite / PostgreSQL through SQLAlchemy)
      - MemoryRecordStore (tests, single-process runs)
    """

    def init(self) -> None:
        """Prepare the backing storage (create tables and so on)."""

    # ---------------- devices ----------------
    @abstractmethod
    def upsert_device(self, device_id: str, attrs: Dict[str, Any], now: datetime) -> bool:
        """Insert or update a device; returns True if it was created.

        `created_at` is written on insert only. `last_seen` becomes
        max(stored, now). Only the keys present in `attrs` are overwritten.
        """
        raise NotImplementedError

    @abstractmethod
    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        raise NotImplementedError

    @abstractmethod
    def list_devices(self) -> List[DeviceRecord]:
        """All devices, oldest `created_at` first."""
        raise NotImplementedError

    @abstractmethod
    def delete_device(self, device_id: str) -> bool:
        """Remove the device with its commands, SMS and form entries in one step."""
        raise NotImplementedError

    # ---------------- commands ----------------
    @abstractmethod
    def insert_command(self, device_id: str, command_type: str, command_data: str,
                       now: datetime) -> CommandRecord:
        raise NotImplementedError

    @abstractmethod
    def claim_commands(self, device_id: str) -> List[CommandRecord]:
        """Flip every pending command of the device to sent and return them.

        Each pending command is returned by exactly one concurrent caller.
        Ordered by (created_at, id).
        """
        raise NotImplementedError

    @abstractmethod
    def mark_command(self, command_id: int, status: CommandStatus) -> bool:
        """Set the status; False if the command does not exist."""
        raise NotImplementedError

    @abstractmethod
    def get_command(self, command_id: int) -> Optional[CommandRecord]:
        raise NotImplementedError

    # ---------------- logged events ----------------
    @abstractmethod
    def insert_sms(self, device_id: str, sender: str, message_body: str,
                   now: datetime) -> SmsRecord:
        raise NotImplementedError

    @abstractmethod
    def list_sms(self, device_id: str) -> List[SmsRecord]:
        raise NotImplementedError

    @abstractmethod
    def delete_sms(self, sms_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def insert_form(self, device_id: str, custom_data: str, now: datetime) -> FormRecord:
        raise NotImplementedError

    @abstractmethod
    def list_forms(self, device_id: str) -> List[FormRecord]:
        raise NotImplementedError

    # ---------------- global settings ----------------
    @abstractmethod
    def put_setting(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_setting(self, key: str) -> Optional[str]:
        raise NotImplementedError
