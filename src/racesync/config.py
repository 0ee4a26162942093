from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./racesync.db"
    scraper_api_url: str = "http://localhost:4000"
    scraper_timeout_seconds: float = 30.0
    scraper_health_timeout_seconds: float = 5.0
    scheduler_timezone: str = "America/Mexico_City"
    telegram_bot_token: str = ""
    telegram_chat_id: Optional[int] = None  # failure notices go here when set
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
