import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Tuple

from .commands import utcnow
from .errors import NotFound, ValidationFailed
from .presence import is_online
from .records import DEVICE_ATTRIBUTES, DeviceRecord
from .store import RecordStore

log = logging.getLogger(__name__)


class DeviceRegistry:
    def __init__(self, store: RecordStore, threshold: timedelta = timedelta(seconds=30),
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.threshold = threshold
        self.clock = clock

    def register(self, device_id: Any, attributes: Dict[str, Any]) -> bool:
        """Create the device or refresh it; every call doubles as a heartbeat.

        Only the known attributes present in `attributes` are written, so a bare
        heartbeat keeps whatever the device reported before.
        """
        if not isinstance(device_id, str) or not device_id.strip():
            raise ValidationFailed("device_id is required")
        attrs = {k: attributes[k] for k in DEVICE_ATTRIBUTES if k in attributes}
        created = self.store.upsert_device(device_id, attrs, self.clock())
        if created:
            log.info("device %s registered", device_id)
        return created

    def list(self) -> List[Tuple[DeviceRecord, bool]]:
        now = self.clock()
        return [(d, is_online(d.last_seen, now, self.threshold))
                for d in self.store.list_devices()]

    def get(self, device_id: str) -> Tuple[DeviceRecord, bool]:
        dev = self.store.get_device(device_id)
        if dev is None:
            raise NotFound(f"device {device_id} not found")
        return dev, is_online(dev.last_seen, self.clock(), self.threshold)

    def delete(self, device_id: str) -> None:
        """Remove the device together with its commands, SMS and form entries."""
        if self.store.delete_device(device_id):
            log.info("device %s deleted", device_id)
