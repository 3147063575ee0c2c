from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Servixing API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS (e.g. https://servixing.com,https://admin.servixing.com). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str = "sqlite:///./servixing.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v

    # Empty disables rate limiting (NullRateLimiter)
    REDIS_URL: str = ""
    LOGIN_RATE_LIMIT: int = 5
    LOGIN_RATE_WINDOW_SECONDS: int = 900
    # Guest payment routes, per client IP
    PUBLIC_INIT_RATE_LIMIT: int = 10
    PUBLIC_VERIFY_RATE_LIMIT: int = 20
    PUBLIC_VIEW_RATE_LIMIT: int = 30
    PUBLIC_RATE_WINDOW_SECONDS: int = 600

    PUBLIC_BASE_URL: str = "http://localhost:3000"  # gateway callback_url / redirect_url base
    GATEWAY_TIMEOUT: int = 25
    DEFAULT_CURRENCY: str = "NGN"

    # Paystack: webhook signature is HMAC-SHA512 with the secret key
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_SECRET_KEY: str = ""

    # Flutterwave: webhook signature is HMAC-SHA256 with the dashboard "secret hash"
    FLUTTERWAVE_BASE_URL: str = "https://api.flutterwave.com/v3"
    FLUTTERWAVE_SECRET_KEY: str = ""
    FLUTTERWAVE_SECRET_HASH: str = ""

    # Etegram
    ETEGRAM_BASE_URL: str = "https://api-checkout.etegram.com/api/transaction"
    ETEGRAM_PROJECT_ID: str = ""
    ETEGRAM_PUBLIC_KEY: str = ""
    ETEGRAM_SECRET_KEY: str = ""
    ETEGRAM_WEBHOOK_SECRET: str = ""

    SEED_ADMIN_EMAIL: str = "admin@servixing.local"
    SEED_ADMIN_PASSWORD: str = "admin12345"

    # Accept unsigned webhooks for providers with no secret configured (dev only)
    WEBHOOK_ALLOW_UNSIGNED: bool = False


settings = Settings()
