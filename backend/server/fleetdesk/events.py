import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, List, Optional

from .commands import encode_payload, utcnow
from .errors import NotFound, ValidationFailed
from .records import FormRecord, SmsRecord
from .store import RecordStore


class EventLog:
    """Append-only SMS and form submission log, plus global settings."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def log_sms(self, device_id: str, sender: Optional[str], message_body: Optional[str]) -> SmsRecord:
        if not sender or message_body is None:
            raise ValidationFailed("sender and message_body are required")
        return self.store.insert_sms(device_id, sender, message_body, self.clock())

    def list_sms(self, device_id: str) -> List[SmsRecord]:
        return self.store.list_sms(device_id)

    def delete_sms(self, sms_id: int) -> None:
        if not self.store.delete_sms(sms_id):
            raise NotFound(f"sms {sms_id} not found")

    def log_form(self, device_id: str, custom_data: Any) -> FormRecord:
        if custom_data is None:
            raise ValidationFailed("custom_data is required")
        rec = self.store.insert_form(device_id, encode_payload(custom_data, "custom_data"), self.clock())
        return replace(rec, custom_data=custom_data)

    def list_forms(self, device_id: str) -> List[FormRecord]:
        return [replace(r, custom_data=json.loads(r.custom_data))
                for r in self.store.list_forms(device_id)]

    # global settings share the store but sit outside the device lifecycle
    def put_setting(self, key: str, value: Any) -> None:
        self.store.put_setting(key, encode_payload(value, "setting value"))

    def get_setting(self, key: str) -> Any:
        raw = self.store.get_setting(key)
        if raw is None:
            raise NotFound(f"setting {key} not found")
        return json.loads(raw)
