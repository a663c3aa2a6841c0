from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Mahjong Score Book"
    log_level: str = "INFO"
    log_file: str | None = None
    default_seats: int = 4

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="SCOREBOOK_")


settings = Settings()
