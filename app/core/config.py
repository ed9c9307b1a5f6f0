from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "ContentAPI"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Database
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "content"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_URL: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    CACHE_DEFAULT_EXPIRE_SECONDS: int = 3600

    @property
    def REDIS_URL(self) -> str:
        return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def DOWNLOAD_TOKEN_REDIS_URL(self) -> str:
        return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.DOWNLOAD_TOKEN_REDIS_DB}"

    # JWT
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: Union[List[str], str] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, str) and v.startswith("["):
            return json.loads(v)
        return v

    # File Upload
    MAX_FILE_SIZE_MB: int = 100
    MAX_FILES_PER_UPLOAD: int = 10
    ALLOWED_EXTENSIONS: Union[List[str], str] = [
        ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".svg",
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt", ".csv", ".rtf",
        ".mp4", ".avi", ".mov", ".wmv", ".webm",
        ".mp3", ".wav", ".ogg", ".flac",
        ".zip", ".rar", ".7z", ".tar", ".gz",
    ]

    @field_validator("ALLOWED_EXTENSIONS", mode="before")
    @classmethod
    def assemble_allowed_extensions(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and v.startswith("["):
            return json.loads(v)
        elif isinstance(v, str):
            return [i.strip().lower() for i in v.split(",") if i.strip()]
        return v

    @property
    def MAX_FILE_SIZE_BYTES(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    # Images
    THUMBNAIL_WIDTH: int = 300
    THUMBNAIL_HEIGHT: int = 300
    IMAGE_QUALITY: int = 85

    # Download tokens
    DOWNLOAD_TOKEN_EXPIRE_MINUTES: int = 5
    DOWNLOAD_TOKEN_SINGLE_USE: bool = False
    # Must differ from REDIS_DB
    DOWNLOAD_TOKEN_REDIS_DB: int = 1

    # Search indexing
    INDEXING_WORKER_ENABLED: bool = True
    INDEXING_POLL_INTERVAL_SECONDS: float = 5.0
    INDEXING_STALE_JOB_MINUTES: int = 15
    INDEX_ON_MUTATION: bool = True

    # Bulk operations
    BULK_DELETE_BATCH_SIZE: int = 10


settings = Settings()
