"""Centralized settings for the explain gateway via Pydantic BaseSettings.

Values are read from environment variables with the EXPLAIN_ prefix (or a
.env file), falling back to the defaults below. Example: EXPLAIN_MONGO_URI
overrides mongo_uri.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database; an empty URI selects the in-memory backend
    mongo_uri: str = ""
    mongo_db: str = "explain_gateway"

    # Authentication
    jwt_secret: str = "dev-secret-change-me"
    jwt_lifetime_seconds: int = 60 * 60 * 24

    # Generation backend
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    basic_model: str = "gemini-2.5-flash-lite"
    pro_model: str = "gemini-2.5-pro"
    generation_timeout_seconds: float = 60.0
    stream_deadline_seconds: float = 120.0

    # Daily allowances, restored by the reset job
    basic_daily_credits: int = 50
    pro_daily_credits: int = 500

    # History queries
    history_limit: int = 10
    max_history_limit: int = 50

    # Observability
    ledger_log_path: str = "logs/explain_ledger.log"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="EXPLAIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
