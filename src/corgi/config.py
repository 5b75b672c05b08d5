"""
Configuration module for Corgi
Environment-based settings for dataset acquisition, logging and the HTTP server.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional


DEFAULT_DB_DOWNLOAD_URL = "https://github.com/cardog-ai/corgi/releases/latest/download/vpic.lite.db.gz"
DEFAULT_CACHE_DIR = str(Path.home() / ".corgi-cache")
DATABASE_FILENAME = "vpic.lite.db"


@dataclass
class Config:
    """Application configuration."""

    # Environment
    ENV: Literal["production", "development", "testing"] = "production"
    LOG_LEVEL: str = "INFO"

    # Dataset acquisition
    DB_DOWNLOAD_URL: str = DEFAULT_DB_DOWNLOAD_URL
    DISABLE_DB_DOWNLOAD: bool = False
    CACHE_DIR: str = DEFAULT_CACHE_DIR
    DOWNLOAD_TIMEOUT: float = 60.0  # seconds
    MAX_REDIRECTS: int = 5

    # Decode defaults
    CONFIDENCE_THRESHOLD: float = 0.0

    # API Settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3000
    CORS_ORIGINS: Optional[list] = None

    def __post_init__(self):
        if self.CORS_ORIGINS is None:
            self.CORS_ORIGINS = ["*"]

    @property
    def cache_path(self) -> Path:
        return Path(self.CACHE_DIR) / DATABASE_FILENAME

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls(
            ENV=os.getenv("CORGI_ENV", "production"),
            LOG_LEVEL=os.getenv("CORGI_LOG_LEVEL", "INFO").upper(),
            DB_DOWNLOAD_URL=(
                os.getenv("CORGI_DB_URL")
                or os.getenv("CORGI_DATABASE_URL")
                or DEFAULT_DB_DOWNLOAD_URL
            ),
            DISABLE_DB_DOWNLOAD=os.getenv("CORGI_DISABLE_DB_DOWNLOAD", "0") == "1",
            CACHE_DIR=os.getenv("CORGI_CACHE_DIR", DEFAULT_CACHE_DIR),
            DOWNLOAD_TIMEOUT=float(os.getenv("CORGI_DOWNLOAD_TIMEOUT", "60")),
            CONFIDENCE_THRESHOLD=float(os.getenv("CORGI_CONFIDENCE_THRESHOLD", "0")),
            API_HOST=os.getenv("CORGI_HOST", "0.0.0.0"),
            API_PORT=int(os.getenv("CORGI_PORT", os.getenv("PORT", "3000"))),
        )


# Global config instance
config = Config.from_env()
