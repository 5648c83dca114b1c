import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import case, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import Base, make_engine, make_session_factory
from ..errors import StorageError
from ..models import Command, Device, FormSubmission, GlobalSetting, SmsLog
from ..records import CommandRecord, CommandStatus, DeviceRecord, FormRecord, SmsRecord
from ..settings import settings
from .base import RecordStore

log = logging.getLogger(__name__)

# ids are 32-bit INTEGER columns; anything outside cannot exist
MAX_ID = 2**31 - 1


def _valid_id(row_id: int) -> bool:
    return 1 <= row_id <= MAX_ID


def _to_db(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None or ts.tzinfo is not None:
        return ts
    return ts.replace(tzinfo=timezone.utc)


def _device(d: Device) -> DeviceRecord:
    return DeviceRecord(device_id=d.device_id, device_name=d.device_name,
                        os_version=d.os_version, phone_number=d.phone_number,
                        battery_level=d.battery_level,
                        last_seen=_from_db(d.last_seen), created_at=_from_db(d.created_at))


def _command(c) -> CommandRecord:
    return CommandRecord(id=c.id, device_id=c.device_id, command_type=c.command_type,
                         command_data=c.command_data, status=CommandStatus(c.status),
                         created_at=_from_db(c.created_at))


def _sms(r: SmsLog) -> SmsRecord:
    return SmsRecord(id=r.id, device_id=r.device_id, sender=r.sender,
                     message_body=r.message_body, received_at=_from_db(r.received_at))


def _form(r: FormSubmission) -> FormRecord:
    return FormRecord(id=r.id, device_id=r.device_id, custom_data=r.custom_data,
                      submitted_at=_from_db(r.submitted_at))


class SqlRecordStore(RecordStore):
    """
    Relational store on SQLAlchemy. Status changes and upserts are single
    guarded UPDATE statements, so concurrent callers serialize on the rows
    themselves rather than on a read followed by a write.
    """

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine = engine or make_engine(settings.database_url)
        self._sessions = make_session_factory(self.engine)

    def init(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _tx(self, op: str, conflicts_ok: bool = False) -> Iterator[Session]:
        try:
            with self._sessions.begin() as s:
                yield s
        except IntegrityError:
            if conflicts_ok:
                raise
            log.exception("integrity error during %s", op)
            raise StorageError(f"storage rejected {op}")
        except SQLAlchemyError:
            log.exception("storage failure during %s", op)
            raise StorageError(f"storage unavailable during {op}")

    # ---------------- devices ----------------
    def _upsert(self, device_id: str, attrs: Dict[str, Any], now: datetime,
                conflicts_ok: bool) -> bool:
        with self._tx("register", conflicts_ok=conflicts_ok) as s:
            res = s.execute(
                update(Device)
                .where(Device.device_id == device_id)
                .values(**attrs, last_seen=case((Device.last_seen < now, now),
                                                else_=Device.last_seen))
                .execution_options(synchronize_session=False)
            )
            if res.rowcount:
                return False
            s.add(Device(device_id=device_id, last_seen=now, created_at=now, **attrs))
            s.flush()
            return True

    def upsert_device(self, device_id: str, attrs: Dict[str, Any], now: datetime) -> bool:
        now = _to_db(now)
        try:
            return self._upsert(device_id, attrs, now, conflicts_ok=True)
        except IntegrityError:
            # a concurrent register inserted the row first; this pass updates it
            log.debug("register race on %s, applying as update", device_id)
            return self._upsert(device_id, attrs, now, conflicts_ok=False)

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        with self._tx("get device") as s:
            d = s.execute(select(Device).where(Device.device_id == device_id)).scalar_one_or_none()
            return _device(d) if d else None

    def list_devices(self) -> List[DeviceRecord]:
        with self._tx("list devices") as s:
            rows = s.execute(select(Device).order_by(Device.created_at.asc(), Device.id.asc())).scalars()
            return [_device(d) for d in rows]

    def delete_device(self, device_id: str) -> bool:
        with self._tx("delete device") as s:
            s.execute(delete(Command).where(Command.device_id == device_id))
            s.execute(delete(SmsLog).where(SmsLog.device_id == device_id))
            s.execute(delete(FormSubmission).where(FormSubmission.device_id == device_id))
            res = s.execute(delete(Device).where(Device.device_id == device_id))
            return bool(res.rowcount)

    # ---------------- commands ----------------
    def insert_command(self, device_id: str, command_type: str, command_data: str,
                       now: datetime) -> CommandRecord:
        with self._tx("enqueue") as s:
            row = Command(device_id=device_id, command_type=command_type,
                          command_data=command_data, status=CommandStatus.PENDING.value,
                          created_at=_to_db(now))
            s.add(row)
            s.flush()
            return _command(row)

    def claim_commands(self, device_id: str) -> List[CommandRecord]:
        # select and flip in one statement: a row already flipped by a
        # concurrent claim no longer matches status = 'pending'
        stmt = (
            update(Command)
            .where(Command.device_id == device_id,
                   Command.status == CommandStatus.PENDING.value)
            .values(status=CommandStatus.SENT.value)
            .returning(Command.id, Command.device_id, Command.command_type,
                       Command.command_data, Command.status, Command.created_at)
            .execution_options(synchronize_session=False)
        )
        with self._tx("claim") as s:
            rows = s.execute(stmt).all()
        claimed = [_command(r) for r in rows]
        claimed.sort(key=lambda c: (c.created_at, c.id))
        return claimed

    def mark_command(self, command_id: int, status: CommandStatus) -> bool:
        if not _valid_id(command_id):
            return False
        with self._tx("mark command") as s:
            res = s.execute(
                update(Command)
                .where(Command.id == command_id)
                .values(status=status.value)
                .execution_options(synchronize_session=False)
            )
            return bool(res.rowcount)

    def get_command(self, command_id: int) -> Optional[CommandRecord]:
        if not _valid_id(command_id):
            return None
        with self._tx("get command") as s:
            c = s.get(Command, command_id)
            return _command(c) if c else None

    # ---------------- logged events ----------------
    def insert_sms(self, device_id: str, sender: str, message_body: str,
                   now: datetime) -> SmsRecord:
        with self._tx("log sms") as s:
            row = SmsLog(device_id=device_id, sender=sender, message_body=message_body,
                         received_at=_to_db(now))
            s.add(row)
            s.flush()
            return _sms(row)

    def list_sms(self, device_id: str) -> List[SmsRecord]:
        with self._tx("list sms") as s:
            rows = s.execute(select(SmsLog).where(SmsLog.device_id == device_id)
                             .order_by(SmsLog.received_at.asc(), SmsLog.id.asc())).scalars()
            return [_sms(r) for r in rows]

    def delete_sms(self, sms_id: int) -> bool:
        if not _valid_id(sms_id):
            return False
        with self._tx("delete sms") as s:
            res = s.execute(delete(SmsLog).where(SmsLog.id == sms_id))
            return bool(res.rowcount)

    def insert_form(self, device_id: str, custom_data: str, now: datetime) -> FormRecord:
        with self._tx("log form") as s:
            row = FormSubmission(device_id=device_id, custom_data=custom_data,
                                 submitted_at=_to_db(now))
            s.add(row)
            s.flush()
            return _form(row)

    def list_forms(self, device_id: str) -> List[FormRecord]:
        with self._tx("list forms") as s:
            rows = s.execute(select(FormSubmission).where(FormSubmission.device_id == device_id)
                             .order_by(FormSubmission.submitted_at.asc(),
                                       FormSubmission.id.asc())).scalars()
            return [_form(r) for r in rows]

    # ---------------- global settings ----------------
    def put_setting(self, key: str, value: str) -> None:
        with self._tx("put setting") as s:
            s.merge(GlobalSetting(setting_key=key, setting_value=value))

    def get_setting(self, key: str) -> Optional[str]:
        with self._tx("get setting") as s:
            row = s.get(GlobalSetting, key)
            return row.setting_value if row else None
