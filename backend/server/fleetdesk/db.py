from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()


def _ensure_sqlite_dir(db_url: str) -> None:
    # sqlite:///./data/fleetdesk.db -> ./data
    prefix = "sqlite:///"
    if db_url.startswith(prefix):
        fs_path = db_url[len(prefix):]
        if fs_path and fs_path != ":memory:":
            Path(fs_path).resolve().parent.mkdir(parents=True, exist_ok=True)


def make_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        _ensure_sqlite_dir(db_url)
        # writers queue on the file lock instead of failing straight away
        return create_engine(db_url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(db_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)