from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_OPERATOR_AUTH_SECRET = "local-dev-operator-auth-secret-change-me"


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000
    log_level: str = "INFO"

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "chatqueue"
    postgres_user: str = "chatqueue"
    postgres_password: str = "chatqueue_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False

    evolution_api_base_url: str = "http://localhost:8080"
    evolution_api_key: str = ""
    evolution_api_timeout_seconds: float = 30.0
    evolution_instances_raw: str = "default"
    evolution_bot_ids_raw: str = ""

    operator_auth_secret: str = DEV_OPERATOR_AUTH_SECRET
    bot_api_token: str = "local-dev-bot-token"

    reaper_enabled: bool = True
    reaper_interval_seconds: int = 60
    bot_no_session_cutoff_minutes: int = 5
    bot_idle_cutoff_minutes: int = 5
    waiting_timeout_minutes: int = 20

    fallback_supervisor_id: str | None = None
    broadcast_send_timeout_seconds: float = 5.0

    business_hours_enabled: bool = False
    business_hours_start: str = "08:00"
    business_hours_end: str = "18:00"
    business_days_raw: str = "0,1,2,3,4"
    business_timezone: str = "UTC"

    company_name: str = "our team"
    inactivity_notice_text: str = (
        "Your conversation was closed due to inactivity. "
        "Send a new message whenever you need us."
    )
    waiting_timeout_notice_text: str = (
        "None of our operators could pick up your conversation in time. "
        "Please send a new message to start again."
    )
    service_started_text: str = "*{operator}* started your service."
    service_completed_text: str = "*{operator}* finished your service. Thank you!"
    transfer_notice_text: str = "Your service was transferred to *{operator}*."
    outbound_greeting_text: str = (
        "Hello! This is *{operator}* from {company}. How can we help you?"
    )
    assignment_routed_text: str = (
        "Please wait a moment, we are transferring you to {operator}."
    )
    assignment_supervisor_text: str = (
        "The selected operator is not online. Please wait a moment, "
        "we are transferring you to the supervisor {operator}."
    )
    assignment_wait_text: str = (
        "The selected operator is not online. Please wait a moment."
    )

    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost"
    force_https: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def evolution_instances(self) -> list[str]:
        return _split_csv(self.evolution_instances_raw)

    @property
    def evolution_bot_ids(self) -> list[str]:
        return _split_csv(self.evolution_bot_ids_raw)

    @property
    def business_days(self) -> list[int]:
        return [int(day) for day in _split_csv(self.business_days_raw)]

    @property
    def cors_allowed_origins(self) -> list[str]:
        return _split_csv(self.cors_allowed_origins_raw)

    @property
    def trusted_hosts(self) -> list[str]:
        return _split_csv(self.trusted_hosts_raw)

    def validate_security_settings(self) -> None:
        if self.app_env.lower() != "production":
            return

        if self.operator_auth_secret == DEV_OPERATOR_AUTH_SECRET:
            raise ValueError(
                "OPERATOR_AUTH_SECRET must be overridden in production."
            )
        if len(self.operator_auth_secret) < 32:
            raise ValueError(
                "OPERATOR_AUTH_SECRET must be at least 32 characters in production."
            )
        if self.bot_api_token == "local-dev-bot-token":
            raise ValueError("BOT_API_TOKEN must be overridden in production.")
        if not self.evolution_api_base_url or not self.evolution_api_key:
            raise ValueError(
                "EVOLUTION_API_BASE_URL and EVOLUTION_API_KEY are required in production."
            )
        if not self.cors_allowed_origins:
            raise ValueError(
                "CORS_ALLOWED_ORIGINS_RAW must define explicit origins in production."
            )
        if "*" in self.cors_allowed_origins:
            raise ValueError("Wildcard CORS origin is not allowed in production.")
        if not self.trusted_hosts:
            raise ValueError(
                "TRUSTED_HOSTS_RAW must define explicit hosts in production."
            )
        if "*" in self.trusted_hosts:
            raise ValueError("Wildcard trusted host is not allowed in production.")


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
