"""Application configuration."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "fastinghero"
    debug: bool = False
    database_url: str = "sqlite:///./fastinghero.db"
    api_prefix: str = "/api/v1"

    # JWT
    jwt_secret: str = "change-me-in-production-use-openssl-rand-hex-32"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 7 days

    # AI providers
    ai_provider: str = "ollama"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"

    # Push provider (empty URL = log-only delivery)
    push_gateway_url: str = ""
    push_api_key: str = ""
    push_timeout_seconds: float = 10.0

    # Deadlines and background work
    request_timeout_seconds: float = 15.0
    background_timeout_seconds: float = 30.0
    background_workers: int = 4
    llm_reply_wait_seconds: float = 20.0
    shutdown_grace_seconds: float = 10.0

    # Escalation sweeper
    sweeper_enabled: bool = True
    sweeper_interval_seconds: float = 60.0
    flare_expiry_hours: float = 0.0  # 0 disables the expiry janitor

    @field_validator("background_timeout_seconds")
    @classmethod
    def at_least_thirty_seconds(cls, v: float) -> float:
        return max(v, 30.0)

    @field_validator("sweeper_interval_seconds")
    @classmethod
    def clamp_sweeper_interval(cls, v: float) -> float:
        return min(max(v, 30.0), 300.0)


settings = Settings()
