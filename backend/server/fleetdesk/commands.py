import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List

from .errors import NotFound, ValidationFailed
from .notify import NullNotifier
from .records import Command, CommandRecord, CommandStatus
from .store import RecordStore

log = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def encode_payload(data: Any, field: str = "command_data") -> str:
    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise ValidationFailed(f"{field} is not JSON serializable: {e}")


def _decode(rec: CommandRecord) -> Command:
    return Command(id=rec.id, device_id=rec.device_id, command_type=rec.command_type,
                   command_data=json.loads(rec.command_data), status=rec.status,
                   created_at=rec.created_at)


class CommandQueue:
    """
    Pull-based command queue.

    pending  -> sent      claim_pending(), one claimant per command
    sent     -> executed  mark_executed(), idempotent

    A command claimed by a device that dies before executing stays `sent`;
    nothing requeues it.
    """

    def __init__(self, store: RecordStore, notifier=None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    def _emit(self, event: str, cmd_id: int, device_id: str | None, status: CommandStatus):
        self.notifier.publish({"event": event, "device_id": device_id,
                               "cmd_id": cmd_id, "status": status.value})

    def enqueue(self, device_id: str, command_type: str, command_data: Any) -> Command:
        if not device_id:
            raise ValidationFailed("device_id is required")
        if not command_type:
            raise ValidationFailed("command_type is required")
        rec = self.store.insert_command(device_id, command_type,
                                        encode_payload(command_data), self.clock())
        self._emit("queued", rec.id, device_id, rec.status)
        return _decode(rec)

    def claim_pending(self, device_id: str) -> List[Command]:
        claimed = self.store.claim_commands(device_id)
        if claimed:
            log.info("device %s claimed %d command(s)", device_id, len(claimed))
        for rec in claimed:
            self._emit("sent", rec.id, device_id, rec.status)
        return [_decode(rec) for rec in claimed]

    def mark_executed(self, command_id: int) -> None:
        # unknown ids are tolerated so devices can retry blindly
        if self.store.mark_command(command_id, CommandStatus.EXECUTED):
            self._emit("executed", command_id, None, CommandStatus.EXECUTED)
        else:
            log.debug("execute for unknown command %s ignored", command_id)

    def get(self, command_id: int) -> Command:
        rec = self.store.get_command(command_id)
        if rec is None:
            raise NotFound(f"command {command_id} not found")
        return _decode(rec)
