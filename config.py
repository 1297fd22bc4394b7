"""Environment-driven settings for the StudyWise backend."""

import os
import logging
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_list(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", name, value, default)
        return default


@dataclass
class Settings:
    secret_key: str = "dev-secret-change-me"
    google_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    firebase_credentials: str = "firebase-service-account.json"
    demo_mode: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    session_idle_minutes: int = 720

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from the process environment (and a local .env file)."""
        load_dotenv()
        settings = cls(
            secret_key=os.getenv("FLASK_SECRET_KEY", "dev-secret-change-me"),
            google_api_key=os.getenv("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            firebase_credentials=os.getenv("FIREBASE_CREDENTIALS", "firebase-service-account.json"),
            demo_mode=get_env_bool("STUDYWISE_DEMO_MODE"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=get_env_list("CORS_ORIGINS", ["http://localhost:3000"]),
            session_idle_minutes=get_env_int("SESSION_IDLE_MINUTES", 720),
        )
        if settings.secret_key == "dev-secret-change-me":
            logger.warning("FLASK_SECRET_KEY not set; using the development secret")
        if not settings.google_api_key and not settings.demo_mode:
            logger.warning("GOOGLE_API_KEY not set; AI generation routes will fail")
        return settings
