"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Askly configuration. All values come from environment variables."""

    # Anthropic
    anthropic_api_key: str = Field(default="")
    default_chat_model: str = Field(default="sonnet")
    default_reasoning_model: str = Field(default="haiku")
    max_tokens: int = Field(default=4096)

    # Storage
    database_path: Path = Field(default=Path("data/askly.db"))

    # Conversation
    history_window: int = Field(default=20)
    topic_window: int = Field(default=4)
    title_sample_size: int = Field(default=4)

    # Memory
    memory_capacity: int = Field(default=50)

    # Background analysis
    memory_extraction_enabled: bool = Field(default=True)
    topic_detection_enabled: bool = Field(default=True)
    title_generation_enabled: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
