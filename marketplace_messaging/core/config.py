from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "marketplace-messaging"
    VERSION: str = "0.1.0"
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "marketplace"

    # Empty -> in-process fanout, only suitable for a single worker
    REDIS_URL: str = ""
    FANOUT_QUEUE_SIZE: int = Field(default=256, ge=1)

    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    MESSAGE_MAX_LENGTH: int = 1000
    CONVERSATIONS_PAGE_SIZE: int = 20
    MESSAGES_PAGE_SIZE: int = 50
    NOTIFICATIONS_PAGE_SIZE: int = 20

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
