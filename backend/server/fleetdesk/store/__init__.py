from .base import RecordStore
from .memory import MemoryRecordStore
from .sql import SqlRecordStore
from ..settings import settings


def build_store(backend: str | None = None) -> RecordStore:
    backend = backend or settings.store_backend
    if backend == "memory":
        return MemoryRecordStore()
    if backend == "sql":
        return SqlRecordStore()
    raise ValueError(f"unknown STORE_BACKEND: {backend!r}")


__all__ = ["RecordStore", "MemoryRecordStore", "SqlRecordStore", "build_store"]
