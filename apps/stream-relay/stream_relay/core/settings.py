from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from env vars and local env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = Field(default="local", alias="APP_ENV")
    log_level: str | None = Field(default=None, alias="LOG_LEVEL")

    model_provider_config_path: str = Field(default="config/models.yaml", alias="MODEL_PROVIDER_CONFIG_PATH")
    default_model_alias: str = Field(default="chat", alias="DEFAULT_MODEL_ALIAS")
    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", alias="ANTHROPIC_BASE_URL")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    provider_timeout_seconds: float = Field(default=60.0, alias="MODEL_PROVIDER_TIMEOUT_SECONDS")

    mock_messages_file: str = Field(default="mock-data/mock-messages.md", alias="MOCK_MESSAGES_FILE")
    mock_fragment_delay_seconds: float = Field(default=0.0, alias="MOCK_FRAGMENT_DELAY_SECONDS")

    max_message_length: int = Field(default=10_000, alias="MAX_MESSAGE_LENGTH")
    max_history_length: int = Field(default=10, alias="MAX_HISTORY_LENGTH")
    max_streams_per_client: int = Field(default=2, alias="MAX_STREAMS_PER_CLIENT")
    client_ip_header: str | None = Field(default=None, alias="CLIENT_IP_HEADER")
    stream_buffer_frames: int = Field(default=64, ge=1, alias="STREAM_BUFFER_FRAMES")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    @property
    def enable_swagger(self) -> bool:
        return self.app_env.lower() == "local"

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "DEBUG" if self.app_env.lower() == "local" else "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
