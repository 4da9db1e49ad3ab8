from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

DEFAULT_INTAKE_SHEET = "Заявки"
DEFAULT_SETTINGS_SHEET = "Настройки"


class SheetsConfig(BaseModel):
    credentials_file: Path = Field(
        ..., description="Path to the Google service account JSON credentials"
    )
    spreadsheet_id: str = Field(..., description="ID of the spreadsheet the notifier is bound to")
    intake_sheet_name: str = Field(
        DEFAULT_INTAKE_SHEET,
        description="Tab that receives new business records (6-column layout)",
    )
    settings_sheet_name: str = Field(
        DEFAULT_SETTINGS_SHEET,
        description="Tab with two-column key/value runtime settings",
    )

    @field_validator("credentials_file")
    @classmethod
    def _expand_credentials_path(cls, value: Path) -> Path:
        return value.expanduser().resolve()


class TelegramConfig(BaseModel):
    """Settings for the Telegram Bot API endpoint."""

    bot_token: str | None = Field(
        None,
        description="Explicit bot token; if omitted the token is read from bot_token_env",
    )
    bot_token_env: str | None = Field(
        "TELEGRAM_BOT_TOKEN",
        description="Environment variable with the bot token",
    )
    chat_id: str | None = Field(None, description="Target chat identifier")
    chat_id_env: str | None = Field(
        "TELEGRAM_CHAT_ID",
        description="Environment variable with the chat identifier",
    )
    bot_username: str | None = Field(None, description="Bot name shown in test messages")
    api_url: str = Field("https://api.telegram.org", description="Telegram Bot API base URL")
    request_timeout: int = Field(10, gt=0, description="Timeout in seconds for API requests")

    @field_validator("chat_id", mode="before")
    @classmethod
    def _stringify_chat_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @model_validator(mode="after")
    def _ensure_credentials_source(self) -> "TelegramConfig":
        if not self.bot_token and not self.bot_token_env:
            raise ValueError("Telegram config must define 'bot_token' or 'bot_token_env'")
        if not self.chat_id and not self.chat_id_env:
            raise ValueError("Telegram config must define 'chat_id' or 'chat_id_env'")
        return self

    def resolve_token(self) -> str:
        token = self.bot_token or (os.getenv(self.bot_token_env) if self.bot_token_env else None)
        if not token:
            raise ValueError(
                f"Telegram bot token is not configured (set {self.bot_token_env or 'bot_token'})"
            )
        return token

    def resolve_chat_id(self) -> str:
        chat_id = self.chat_id or (os.getenv(self.chat_id_env) if self.chat_id_env else None)
        if not chat_id:
            raise ValueError(
                f"Telegram chat id is not configured (set {self.chat_id_env or 'chat_id'})"
            )
        return chat_id


class AppConfig(BaseModel):
    sheets: SheetsConfig
    telegram: TelegramConfig
    state_path: Path | None = Field(
        None,
        description="Optional path to the SQLite file holding the rate-limit window",
    )
    timezone: str = Field("Europe/Moscow", description="Timezone used in message timestamps")
    settings_cache_ttl_seconds: float = Field(
        300.0,
        gt=0,
        description="How long values read from the settings sheet stay cached",
    )

    @field_validator("state_path")
    @classmethod
    def _expand_state_path(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return value.expanduser().resolve()


def load_config(path: str | Path) -> AppConfig:
    """Load configuration from a YAML file and return a validated object."""

    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if data is None:
        msg = f"Configuration file is empty: {config_path}"
        raise ValueError(msg)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:  # pragma: no cover - passthrough for readability
        raise ValueError(f"Invalid configuration: {exc}") from exc
