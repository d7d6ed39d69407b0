from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Thesis-Sync Realtime", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    cors_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="List of allowed CORS origins",
    )

    database_url: str = Field(
        default=f"sqlite+pysqlite:///{Path('thesync.db').resolve()}",
        description="SQLAlchemy URL of the database mirroring user presence",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=30,
        description="Idle receive timeout after which the server checks the socket and pings it",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25,
        description="Minimum idle time between keepalive pings",
    )

    presence_persistence_enabled: bool = Field(
        default=True,
        description="Mirror online/offline transitions to the database.",
    )
    realtime_eviction_close_code: int = Field(
        default=4000,
        ge=1000,
        le=4999,
        description="Websocket close code sent to a connection replaced by a newer one.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Any) -> Any:
        if v in (None, "", Ellipsis):
            return []
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.startswith("["):
                import json

                try:
                    parsed = json.loads(stripped)
                except json.JSONDecodeError:
                    parsed = None
                if isinstance(parsed, list):
                    return [str(origin) for origin in parsed]
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalise_log_level(cls, value: Any) -> str:
        return str(value or "INFO").strip().upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()
