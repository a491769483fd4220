"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"  # local, development, staging, production
    # CORS: comma separated (e.g. http://localhost:3000,https://app.example.com). Empty = default list.
    cors_origins: str = ""
    frontend_url: str = "http://localhost:3000"

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str  # Required, no default
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    # ===========================================
    # MIDTRANS (payment gateway)
    # ===========================================
    midtrans_server_key: str  # Required, no default
    midtrans_client_key: str = ""
    midtrans_is_production: bool = False
    midtrans_timeout: float = 15.0
    # Snap token lifetime reported back to clients
    payment_expiry_minutes: int = 60
    # Pending payments older than this are re-checked against the gateway
    reconcile_pending_after_minutes: int = 30
    reconcile_batch_size: int = 100

    # ===========================================
    # GOOGLE OAUTH
    # ===========================================
    google_client_id: str = ""
    google_client_secret: str = ""
    google_callback_url: str = "http://localhost:8000/oauth/google/callback"
    oauth_timeout: float = 10.0
    oauth_state_ttl_minutes: int = 10

    # ===========================================
    # API AUTH
    # ===========================================
    auth_secret_key: str  # Required, no default
    auth_token_ttl_seconds: int = 86400  # 1 day

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("auth_secret_key")
    @classmethod
    def validate_auth_secret(cls, v: str) -> str:
        """Ensure token signing secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("auth_secret_key must be at least 16 characters")
        if v in ("changeme", "secret", "password"):
            raise ValueError("auth_secret_key is too weak, please change it")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper().strip()

    @property
    def is_development(self) -> bool:
        """Stack traces and exception details are exposed only in these environments."""
        return self.app_env in ("local", "development")

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
