from pathlib import Path
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from enum import Enum

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

class HomeserverSettings(BaseSettings):
    url: str = Field(default="http://localhost:8008", description="Base URL of the homeserver client API")
    domain: str = Field(default="localhost", description="Server name used to build user IDs")
    as_token: str = Field(default="", description="Application service token used for masquerading")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout for homeserver requests")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

class BotSettings(BaseSettings):
    localpart: str = Field(default="bridgebot", description="Localpart of the privileged bot user")

class StateStoreSettings(BaseSettings):
    path: Optional[Path] = Field(default=None, description="Flat-file snapshot location; unset keeps state in memory")

    @field_validator("path")
    @classmethod
    def create_parent_dir(cls, v: Optional[Path]) -> Optional[Path]:
        if v is not None:
            v.parent.mkdir(parents=True, exist_ok=True)
        return v

class RequestLimitSettings(BaseSettings):
    concurrency: int = Field(default=10, ge=1, description="Max concurrent homeserver requests per client")
    default_interval_seconds: float = Field(default=0.0, ge=0, description="Default minimum interval between requests")
    register_interval_seconds: float = Field(default=0.5, ge=0, description="Min interval for register requests")
    join_interval_seconds: float = Field(default=0.5, ge=0, description="Min interval for join requests")
    invite_interval_seconds: float = Field(default=0.5, ge=0, description="Min interval for invite requests")
    message_interval_seconds: float = Field(default=0.0, ge=0, description="Min interval for message requests")
    typing_interval_seconds: float = Field(default=0.0, ge=0, description="Min interval for typing requests")

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_file: Optional[Path] = Field(default=Path("logs/appservice_intent.log"))

    homeserver: HomeserverSettings = Field(default_factory=HomeserverSettings)
    bot: BotSettings = Field(default_factory=BotSettings)
    state_store: StateStoreSettings = Field(default_factory=StateStoreSettings)
    limits: RequestLimitSettings = Field(default_factory=RequestLimitSettings)


settings = Settings()
