"""Environment configuration.

Values are read from the process environment (or a local .env file). The
module-level constants mirror the settings object so modules can import them
directly, the way the storage services always have.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from apps.filesystem.schema import Config


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DATABASE_URL: str = "sqlite://db.sqlite3"

    # local | s3 | bunny | test
    STORAGE_BACKEND: str = "local"
    LOCAL_STORAGE_PATH: str = ".storage"

    S3_ENDPOINT: str = ""
    S3_BUCKET: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: Optional[str] = None

    BUNNY_API_KEY: str = ""
    BUNNY_STORAGE_ZONE: str = ""
    BUNNY_REGION: str = ""
    BUNNY_CDN_HOSTNAME: str = ""
    BUNNY_TOKEN_KEY: Optional[str] = None

    # seconds
    UPLOAD_URL_TTL: int = 3600
    DOWNLOAD_URL_TTL: int = 3600
    BLOB_GRACE_PERIOD: int = 86400
    STORAGE_TIMEOUT: float = 30.0

    GC_ENABLED: bool = True
    FS_PATH_PREFIX: str = "/fs"
    LOG_LEVEL: str = "INFO"

    def storage_config(self) -> dict:
        backend = self.STORAGE_BACKEND.lower()
        if backend == "s3":
            return {
                "type": "s3",
                "endpoint": self.S3_ENDPOINT,
                "bucket": self.S3_BUCKET,
                "access_key": self.S3_ACCESS_KEY,
                "secret_key": self.S3_SECRET_KEY,
                "region": self.S3_REGION,
            }
        if backend == "bunny":
            return {
                "type": "bunny",
                "api_key": self.BUNNY_API_KEY,
                "storage_zone_name": self.BUNNY_STORAGE_ZONE,
                "region": self.BUNNY_REGION,
                "cdn_hostname": self.BUNNY_CDN_HOSTNAME,
                "token_key": self.BUNNY_TOKEN_KEY,
            }
        if backend == "test":
            return {"type": "test"}
        return {"type": "local", "path": self.LOCAL_STORAGE_PATH}

    def client_config(self) -> Config:
        """Build the client configuration handed to the transfer services."""
        return Config(
            storage=self.storage_config(),
            upload_url_ttl=self.UPLOAD_URL_TTL,
            download_url_ttl=self.DOWNLOAD_URL_TTL,
            blob_grace_period=self.BLOB_GRACE_PERIOD,
        )


settings = Settings()

DATABASE_URL = settings.DATABASE_URL
STORAGE_BACKEND = settings.STORAGE_BACKEND
LOCAL_STORAGE_PATH = settings.LOCAL_STORAGE_PATH
STORAGE_TIMEOUT = settings.STORAGE_TIMEOUT
GC_ENABLED = settings.GC_ENABLED
FS_PATH_PREFIX = settings.FS_PATH_PREFIX
LOG_LEVEL = settings.LOG_LEVEL
