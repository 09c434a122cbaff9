from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATA_DIR: str = "data"
    UPLOAD_DIR: str = "static/uploads"
    HOST: str = "127.0.0.1"
    PORT: int = 6180
    LOG_LEVEL: str = "INFO"

    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: Optional[str] = None
    ADMIN_PASSWORD_HASH: Optional[str] = None
    SESSION_TTL_HOURS: int = 24
    COOKIE_SECURE: bool = False

    # Each concurrent 4K transcode needs roughly 200MB of memory
    MAX_CONCURRENT_TRANSCODES: int = 3
    TRANSCODE_TIMEOUT_SECONDS: Optional[float] = 15.0
    MAX_BATCH_FILES: int = 1000

    BACKUP_S3_BUCKET: Optional[str] = None
    BACKUP_S3_PREFIX: str = ""

    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
