"""
Configuration for the catalog admin backend.

Everything is read from environment variables; there are no config files.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Settings:
    """Process-wide settings.

    Attributes:
        database_url: MongoDB connection string
        database_name: Database holding the catalog collections
        upload_dir: Directory where uploaded images are written
        cors_origins: Origins allowed by the CORS middleware
        host: Address uvicorn binds to
        port: Port uvicorn listens on
        log_level: Root logging level name
    """

    database_url: Optional[str] = None
    database_name: Optional[str] = None
    upload_dir: str = "uploads"
    cors_origins: Tuple[str, ...] = ("*",)
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            upload_dir=os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
