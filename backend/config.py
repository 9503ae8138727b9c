"""
Runtime configuration for the focus time backend.
Values come from the environment (and a local .env file, if present).
"""
import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DATABASE_URL = os.getenv("FOCUS_DATABASE_URL", "sqlite:///focus.db")
LOG_LEVEL = os.getenv("FOCUS_LOG_LEVEL", "INFO")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("FOCUS_CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


class EngineSettings(BaseModel):
    """Reward and timing constants injected into every engine component."""

    session_floor_seconds: int = Field(default=10, ge=0)
    xp_per_minute: int = Field(default=1, ge=0)
    coins_per_minute: float = Field(default=0.5, ge=0)
    pomodoro_xp: int = Field(default=5, ge=0)
    pomodoro_coins: int = Field(default=2, ge=0)
    tally_xp: int = Field(default=1, ge=0)
    xp_per_level: int = Field(default=100, gt=0)
    focus_seconds: int = Field(default=1500, gt=0)
    break_seconds: int = Field(default=300, gt=0)
    away_threshold_seconds: int = Field(default=30, ge=0)
    tick_seconds: float = Field(default=1.0, gt=0)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings, overriding any field from FOCUS_<FIELD_NAME>."""
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(f"FOCUS_{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings.from_env()
