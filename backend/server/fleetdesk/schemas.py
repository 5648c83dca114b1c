from datetime import datetime
from pydantic import BaseModel, ConfigDict
from typing import Optional, Any


class RegisterReq(BaseModel):
    # devices report ids like 123 as JSON numbers; they are stored as text
    model_config = ConfigDict(coerce_numbers_to_str=True)

    # optional here so a missing id reaches the registry and is reported as 400
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    os_version: Optional[str] = None
    phone_number: Optional[str] = None
    battery_level: Optional[int] = None

class StatusResp(BaseModel):
    status: str = "success"
    message: Optional[str] = None

class DeviceOut(BaseModel):
    device_id: str
    device_name: Optional[str] = None
    os_version: Optional[str] = None
    phone_number: Optional[str] = None
    battery_level: Optional[int] = None
    is_online: bool
    last_seen: datetime
    created_at: datetime

class CommandCreate(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    device_id: Optional[str] = None
    command_type: Optional[str] = None
    command_data: Any = None

class CommandOut(BaseModel):
    id: int
    device_id: str
    command_type: str
    command_data: Any = None
    status: str
    created_at: datetime

class SmsIn(BaseModel):
    sender: Optional[str] = None
    message_body: Optional[str] = None

class SmsOut(BaseModel):
    id: int
    device_id: str
    sender: str
    message_body: str
    received_at: datetime

class FormIn(BaseModel):
    custom_data: Any = None

class FormOut(BaseModel):
    id: int
    device_id: str
    custom_data: Any = None
    submitted_at: datetime

class ErrorResp(BaseModel):
    status: str = "error"
    error: str
    message: str
