"""
Configuration management for the Duolink signaling relay.

Handles environment-based configuration for development and production.
"""
import os
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Debug - handle non-boolean values gracefully
    debug: bool = False

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        """Parse debug from environment, handling non-boolean values."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes")
        debug_env = os.getenv("DEBUG", "false").lower()
        return debug_env in ("true", "1", "yes")

    # API / listener
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8080"))

    # Database (user directory, contacts, call history)
    database_path: str = os.getenv("DATABASE_PATH", str(Path.home() / ".duolink" / "duolink.db"))
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # CORS
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

    # Liveness probes
    heartbeat_interval: float = float(os.getenv("HEARTBEAT_INTERVAL", "30"))
    # 0 disables forced disconnect; only diagnostic state is updated
    heartbeat_max_missed: int = int(os.getenv("HEARTBEAT_MAX_MISSED", "0"))

    # Max inbound JSON frame size (bytes)
    max_frame_size: int = int(os.getenv("MAX_FRAME_SIZE", str(64 * 1024)))

    # Optional name shown in health output
    service_name: Optional[str] = os.getenv("SERVICE_NAME", "duolink-signaling")

    class Config:
        # Load .env from project root (duolink/core/config.py -> parent.parent.parent)
        env_file = str(Path(__file__).resolve().parent.parent.parent / ".env")
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()


def get_database_url() -> str:
    """Get SQLite database URL."""
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{settings.database_path}"
