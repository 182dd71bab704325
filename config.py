"""
Process configuration for the classroom backend.

Values come from the environment, optionally seeded from a local .env file.
"""
import logging
import os
from datetime import timedelta
from functools import lru_cache
from typing import Optional

import dotenv
from pydantic import BaseModel, Field

dotenv.load_dotenv()  # Load environment variables from .env file

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_URL = "https://upload.imagekit.io/api/v1/files/upload"


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or malformed."""


class Settings(BaseModel):
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: str = Field("classroom", description="MongoDB database name")
    jwt_secret: str = Field(..., min_length=1, description="Secret used to sign login tokens")
    jwt_expires_hours: int = Field(24, gt=0)
    imagekit_public_key: Optional[str] = None
    imagekit_private_key: Optional[str] = None
    imagekit_url_endpoint: Optional[str] = None
    imagekit_upload_url: str = DEFAULT_UPLOAD_URL
    storage_timeout: float = Field(30.0, gt=0)
    environment: str = "development"
    port: int = 8000
    log_level: str = "INFO"

    @property
    def jwt_expires(self) -> timedelta:
        return timedelta(hours=self.jwt_expires_hours)

    @property
    def storage_configured(self) -> bool:
        return bool(self.imagekit_private_key)

    @classmethod
    def from_env(cls) -> "Settings":
        secret = os.getenv("JWT_SECRET")
        if not secret:
            raise ConfigurationError("JWT_SECRET is not set; refusing to start without a signing secret")
        try:
            return cls(
                database_url=os.getenv("DATABASE_URL") or None,
                database_name=os.getenv("DATABASE_NAME", "classroom"),
                jwt_secret=secret,
                jwt_expires_hours=int(os.getenv("JWT_EXPIRES_HOURS", 24)),
                imagekit_public_key=os.getenv("IMAGEKIT_PUBLIC_KEY") or None,
                imagekit_private_key=os.getenv("IMAGEKIT_PRIVATE_KEY") or None,
                imagekit_url_endpoint=os.getenv("IMAGEKIT_URL_ENDPOINT") or None,
                imagekit_upload_url=os.getenv("IMAGEKIT_UPLOAD_URL", DEFAULT_UPLOAD_URL),
                storage_timeout=float(os.getenv("STORAGE_TIMEOUT", 30)),
                environment=os.getenv("ENVIRONMENT", "development"),
                port=int(os.getenv("PORT", 8000)),
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process. Used as a FastAPI dependency."""
    settings = Settings.from_env()
    if settings.database_url is None:
        logger.warning("DATABASE_URL is not set; database routes will answer 500")
    if not settings.storage_configured:
        logger.warning("IMAGEKIT_PRIVATE_KEY is not set; uploads are disabled")
    return settings
