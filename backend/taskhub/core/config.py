from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./taskhub.db"
    DATABASE_ECHO: bool = False
    REDIS_URL: Optional[str] = None
    REPAIR_CHANNEL: str = "taskhub_repairs"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
