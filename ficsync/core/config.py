"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"

    # Public base URL used to build webhook sinks (no trailing slash)
    APP_URL: str = "http://localhost:8000"

    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./ficsync.db"

    # Comma-separated Fernet keys for tokens and webhook secrets; first one encrypts
    DATA_ENCRYPTION_KEY: str = ""

    # Signs the short-lived OAuth state cookie
    JWT_SECRET: str = "change-this-in-production"

    # Secret for /internal/* and /fic/* management endpoints
    INTERNAL_SECRET: str = ""

    # Fatture in Cloud OAuth
    FIC_CLIENT_ID: str = ""
    FIC_CLIENT_SECRET: str = ""
    FIC_REDIRECT_URI: str = "http://localhost:8000/fic/oauth/callback"
    FIC_OAUTH_SCOPES: str = "entity.clients:r entity.suppliers:r issued_documents.invoices:r issued_documents.quotes:r"
    FIC_API_BASE_URL: str = "https://api-v2.fattureincloud.it"
    FIC_API_TIMEOUT_SECONDS: float = 30.0

    # Webhook authentication
    FIC_WEBHOOK_VERIFY_HMAC: bool = False
    FIC_WEBHOOK_VERIFY_JWT: bool = True
    FIC_WEBHOOK_PUBLIC_KEY: str = ""  # base64-encoded PEM (ES256)
    FIC_WEBHOOK_ISSUER: str = "https://api-v2.fattureincloud.it"
    FIC_WEBHOOK_AUDIENCE: str = ""
    FIC_WEBHOOK_MAX_PAYLOAD_BYTES: int = 100000

    # Rate limiting
    RATE_LIMIT_WEBHOOK: str = "1/second"
    RATE_LIMIT_API: int = 60  # requests per minute, 0 disables

    # Error tracking (optional, non-dev only)
    SENTRY_DSN: str = ""

    # Redis (rate limit storage and broadcast backplane); empty or memory:// disables
    REDIS_URL: str = ""

    # Worker
    WORKER_POLL_INTERVAL: float = 5.0
    WORKER_BATCH_SIZE: int = 10
    WORKER_CONCURRENCY: int = 4
    JOB_MAX_ATTEMPTS: int = 3
    JOB_TIMEOUT_SECONDS: float = 120.0
    JOB_BACKOFF_SECONDS: str = "60,120,240"

    # Subscriptions renewed when expiring within this many days
    SUBSCRIPTION_REFRESH_DAYS: int = 15

    @property
    def job_backoff_list(self) -> list[int]:
        """Parse JOB_BACKOFF_SECONDS into a list of delays."""
        return [int(v.strip()) for v in self.JOB_BACKOFF_SECONDS.split(",") if v.strip()]

    @property
    def oauth_scopes_list(self) -> list[str]:
        return [s for s in self.FIC_OAUTH_SCOPES.split() if s]

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
