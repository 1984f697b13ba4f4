"""Configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # Engine defaults
    default_window_days: int = 7

    # App
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    api_key: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "QUITPLAN_"}


settings = Settings()
