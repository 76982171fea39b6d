"""Central configuration loaded from environment / .env file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # OpenAI collaborators
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    chat_model: str = Field(default="gpt-4o-mini", alias="SPEAKING_CHAT_MODEL")
    tts_model: str = Field(default="gpt-4o-mini-tts", alias="SPEAKING_TTS_MODEL")
    tts_voice: str = Field(default="alloy", alias="SPEAKING_TTS_VOICE")
    stt_model: str = Field(default="whisper-1", alias="SPEAKING_STT_MODEL")
    collaborator_timeout_seconds: float = Field(
        default=30.0, alias="SPEAKING_COLLABORATOR_TIMEOUT",
        description="Any leaf call slower than this is treated as a failure",
    )

    # Transcript checkpoints
    sync_debounce_seconds: float = Field(
        default=2.0, alias="SPEAKING_SYNC_DEBOUNCE",
        description="Minimum spacing between background transcript writes",
    )

    # Recovery sweep / finalization
    sweep_grace_seconds: float = Field(
        default=120.0, alias="SPEAKING_SWEEP_GRACE",
        description="Sessions younger than this are left alone by the sweeper",
    )
    sweep_parallelism: int = Field(default=4, alias="SPEAKING_SWEEP_PARALLELISM")
    claim_ttl_seconds: float = Field(default=300.0, alias="SPEAKING_CLAIM_TTL")
    ended_cache_size: int = Field(default=256, alias="SPEAKING_ENDED_CACHE")

    # Storage
    store_backend: Literal["memory", "sqlite"] = Field(
        default="sqlite", alias="SPEAKING_STORE_BACKEND"
    )
    database_path: Path = Field(
        default=_PROJECT_ROOT / "data" / "sessions.db", alias="SPEAKING_DATABASE_PATH"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="SPEAKING_LOG_LEVEL")

    model_config = {
        "env_file": str(_PROJECT_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }


def get_settings() -> Settings:
    """Return a cached Settings instance."""
    if not hasattr(get_settings, "_instance"):
        get_settings._instance = Settings()  # type: ignore[attr-defined]
    return get_settings._instance  # type: ignore[attr-defined]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
