from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Interlink API"
    DATABASE_URL: str = "sqlite:///./interlink.db"  # Postgres: postgresql+psycopg2://...
    REDIS_URL: str = "redis://localhost:6379/0"  # Empty string disables Pub/Sub and the Celery broker
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"
    LOG_LEVEL: str = "INFO"

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    # In production, you MUST override CORS_ORIGINS via environment variable to restrict access.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000,http://localhost:8080"

    # ─── Workflow Engine ─────────────────────────────────────────────────
    WORKFLOW_WEBHOOK_URL: str = ""
    WORKFLOW_SHARED_SECRET: str = ""
    WORKFLOW_TIMEOUT_SECONDS: float = 30.0
    INTERNAL_API_SECRET: str = ""  # Empty = internal endpoints are not secret-guarded
    DISPATCH_ON_CREATE: bool = False

    # ─── Scheduler ───────────────────────────────────────────────────────
    SCHEDULER_BATCH_SIZE: int = 10
    SCHEDULER_PACING_SECONDS: float = 1.0
    SCHEDULER_INTERVAL_SECONDS: int = 60
    STALE_PROCESSING_MINUTES: int = 30
    MAX_DISPATCH_ATTEMPTS: int = 3

    # ─── Client Sync ─────────────────────────────────────────────────────
    SYNC_POLL_SECONDS: float = 5.0

    # ─── Snapshot Storage ────────────────────────────────────────────────
    STORAGE_TYPE: str = "local"  # "local" or "s3"
    SNAPSHOT_DIR: str = "doc-snapshots"
    SNAPSHOT_PUBLIC_BASE_URL: str = "http://localhost:8000/api/snapshots"  # Served by api/routes/snapshots.py
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    SNAPSHOT_BUCKET: str = "doc-snapshots"

    # ─── Billing ─────────────────────────────────────────────────────────
    STRIPE_API_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    STRIPE_SIGNATURE_TOLERANCE_SECONDS: int = 300
    FREE_PLAN_PRICE_ID: str = "free"
    ENFORCE_QUOTA: bool = True

    # ─── Sessions ────────────────────────────────────────────────────────
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    SESSION_TTL_MINUTES: int = 60 * 24 * 7
    BCRYPT_ROUNDS: int = 12
    ALLOW_SIGN_UP: bool = True  # First sign-in with an unknown email registers it

    class Config:
        env_file = ".env"

settings = Settings()
