"""
Centralized configuration for the Rulette card engine.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.REDIS_URL)
    print(config.draw.replacement_memory_seconds)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
DEFAULT_CARDS_CSV = Path(__file__).parent / "data" / "cards.csv"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class DrawSettings:
    """Tunables for drawing and replacement draws."""
    replacement_memory_seconds: float = 30.0
    replacement_max_attempts: int = 3


@dataclass
class PromptSettings:
    """Tunables for prompt challenges."""
    time_limit_ms: int = 60000


@dataclass
class RuletteConfig:
    """Engine configuration."""
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Persistence
    REDIS_URL: str = "redis://localhost:6379/0"
    STATE_TTL_HOURS: int = 24

    # Card data
    CARDS_CSV_PATH: str = str(DEFAULT_CARDS_CSV)

    draw: DrawSettings = field(default_factory=DrawSettings)
    prompt: PromptSettings = field(default_factory=PromptSettings)

    @property
    def log_level(self) -> str:
        """LOG_LEVEL, lowered to DEBUG when DEBUG is on."""
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL

    @classmethod
    def from_env(cls) -> "RuletteConfig":
        """Load configuration from environment variables."""
        return cls(
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            REDIS_URL=get_env("REDIS_URL", "redis://localhost:6379/0"),
            STATE_TTL_HOURS=get_env_int("STATE_TTL_HOURS", 24),
            CARDS_CSV_PATH=get_env("CARDS_CSV_PATH", str(DEFAULT_CARDS_CSV)),
            draw=DrawSettings(
                replacement_memory_seconds=get_env_float("REPLACEMENT_MEMORY_SECONDS", 30.0),
                replacement_max_attempts=get_env_int("REPLACEMENT_MAX_ATTEMPTS", 3),
            ),
            prompt=PromptSettings(
                time_limit_ms=get_env_int("PROMPT_TIME_LIMIT_MS", 60000),
            ),
        )


# Global config instance - loaded once at module import
config = RuletteConfig.from_env()


def reload_config() -> RuletteConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = RuletteConfig.from_env()
    return config
