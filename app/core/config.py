from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "pr_user"
    postgres_password: str = "changeme"
    postgres_db: str = "prompt_runtime"

    # Full SQLAlchemy async URL; overrides the postgres_* fields when set
    database_url: str = ""

    @property
    def postgres_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    # LLM providers
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    llm_timeout_seconds: float = 120.0
    llm_max_retries: int = 3
    llm_base_retry_delay: float = 1.0
    llm_max_retry_delay: float = 30.0

    # Execution defaults (overridable per request via prompt_config)
    default_max_llm_calls: int = 5
    default_max_tool_calls: int = 5
    default_tool_timeout_ms: int = 30_000
    default_max_total_execution_ms: int = 300_000

    # Response validation
    validation_threshold: float = 70.0
    validation_gate_retries: int = 3
    validation_provider: str = "openai"
    validation_model: str = "gpt-4o"
    validation_temperature: float = 0.1

    # Dispatch toggles per namespace
    enable_tool_dispatch: bool = True
    enable_activity_dispatch: bool = True
    enable_workflow_dispatch: bool = True

    # Tool / activity / workflow backends
    tool_service_url: str = "http://localhost:8100/tools"
    activity_service_url: str = "http://localhost:8100/activities"
    workflow_service_url: str = "http://localhost:8100/workflows"
    requesting_service_id: str = "prompt-runtime"

    # External tool-call log export (Portkey); disabled when the key is empty
    portkey_api_key: str = ""
    portkey_logs_url: str = "https://api.portkey.ai/v1/logs"


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if not settings.openai_api_key and not settings.anthropic_api_key:
        errors.append("At least one of OPENAI_API_KEY / ANTHROPIC_API_KEY must be set")

    if settings.validation_provider == "openai" and not settings.openai_api_key:
        errors.append("VALIDATION_PROVIDER=openai requires OPENAI_API_KEY")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
