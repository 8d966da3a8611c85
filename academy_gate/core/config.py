"""
Application configuration.
All settings are loaded from environment variables (and .env when present).
Use env.example as a reference for the variables a deployment must set.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Discord credentials default to empty strings so that the library can be
    imported in tests and scripts; the guild client refuses to call out when
    they are not configured.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str = "sqlite:///./academy_gate.db"

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    # Empty = circuit breaker state kept in process memory.
    redis_url: str = ""
    celery_broker_url: str = "memory://"
    celery_result_backend: str = "cache+memory://"
    celery_task_always_eager: bool = False

    # ===========================================
    # DISCORD
    # ===========================================
    discord_api_base: str = "https://discord.com/api/v10"
    discord_bot_token: str = ""
    discord_guild_id: str = ""
    # OAuth2 application (connect flow)
    discord_client_id: str = ""
    discord_client_secret: str = ""
    discord_redirect_uri: str = ""
    discord_oauth_scope: str = "identify guilds.join"
    # Every guild call is bounded; a timeout counts as a failed call.
    discord_request_timeout: float = 5.0
    # Cadence of the beat-driven presence sweep.
    guild_presence_sync_minutes: int = 60

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # EMAIL (expiry notices)
    # ===========================================
    email_enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_from_name: str = "Academy"
    smtp_timeout: float = 15.0
    renewal_url: str = ""

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("discord_api_base")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
