import os
from pydantic import BaseModel
from dotenv import load_dotenv
load_dotenv()


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data/fleetdesk.db")
    store_backend: str = os.getenv("STORE_BACKEND", "sql")  # sql | memory

    # a device is online while its last heartbeat is younger than this
    presence_threshold_seconds: float = float(os.getenv("PRESENCE_THRESHOLD_SECONDS", "30"))

    redis_url: str | None = os.getenv("REDIS_URL") or None
    redis_channel: str = os.getenv("REDIS_CHANNEL", "commands")

    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
