from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class CommandStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    EXECUTED = "executed"


# attributes a device may report on register; everything else is ignored
DEVICE_ATTRIBUTES = ("device_name", "os_version", "phone_number", "battery_level")


@dataclass
class DeviceRecord:
    device_id: str
    last_seen: datetime
    created_at: datetime
    device_name: Optional[str] = None
    os_version: Optional[str] = None
    phone_number: Optional[str] = None
    battery_level: Optional[int] = None


@dataclass
class CommandRecord:
    id: int
    device_id: str
    command_type: str
    command_data: str  # JSON text, decoded by the command queue
    status: CommandStatus
    created_at: datetime


@dataclass
class Command:
    id: int
    device_id: str
    command_type: str
    command_data: Any
    status: CommandStatus
    created_at: datetime


@dataclass
class SmsRecord:
    id: int
    device_id: str
    sender: str
    message_body: str
    received_at: datetime


@dataclass
class FormRecord:
    id: int
    device_id: str
    custom_data: Any
    submitted_at: datetime

