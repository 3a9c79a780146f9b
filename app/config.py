import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment == "development":
        return "postgresql+psycopg://localhost:5434/secure_library"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Bearer tokens
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "change-me")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
    )
    mfa_challenge_expire_minutes: int = int(
        os.getenv("MFA_CHALLENGE_EXPIRE_MINUTES", "5")
    )
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # MFA policy
    mfa_issuer: str = os.getenv("MFA_ISSUER", "Bib-Esprim")
    mfa_window_steps: int = int(os.getenv("MFA_WINDOW_STEPS", "2"))
    mfa_sms_code_ttl_seconds: int = int(os.getenv("MFA_SMS_CODE_TTL_SECONDS", "300"))
    mfa_max_attempts: int = int(os.getenv("MFA_MAX_ATTEMPTS", "5"))
    mfa_attempt_window_seconds: int = int(
        os.getenv("MFA_ATTEMPT_WINDOW_SECONDS", "900")
    )
    mfa_retain_secret_on_disable: bool = _env_bool(
        "MFA_RETAIN_SECRET_ON_DISABLE", "false"
    )
    mfa_required_for_privileged: bool = _env_bool(
        "MFA_REQUIRED_FOR_PRIVILEGED", "true"
    )

    # Request throttling, per client address
    api_rate_limit_enabled: bool = _env_bool("API_RATE_LIMIT_ENABLED", "true")
    api_rate_limit: str = os.getenv("API_RATE_LIMIT", "200/15 minutes")
    rate_limit_storage_uri: str = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

    # Secure viewer
    viewer_max_duration_seconds: int = int(
        os.getenv("VIEWER_MAX_DURATION_SECONDS", "7200")
    )  # 2 hours
    viewer_warn_threshold_seconds: int = int(
        os.getenv("VIEWER_WARN_THRESHOLD_SECONDS", "600")
    )
    viewer_extendable: bool = _env_bool("VIEWER_EXTENDABLE", "true")
    viewer_max_extensions: int = int(os.getenv("VIEWER_MAX_EXTENSIONS", "1"))
    viewer_max_extension_seconds: int = int(
        os.getenv("VIEWER_MAX_EXTENSION_SECONDS", "3600")
    )
    viewer_tombstone_seconds: int = int(os.getenv("VIEWER_TOMBSTONE_SECONDS", "300"))
    viewer_allowed_origins: tuple[str, ...] = _env_list("VIEWER_ALLOWED_ORIGINS")
    cors_allow_loopback: bool = _env_bool("CORS_ALLOW_LOOPBACK", "true")
    security_audit_log_enabled: bool = _env_bool("SECURITY_AUDIT_LOG_ENABLED", "false")

    # Watermark
    watermark_issuer: str = os.getenv("WATERMARK_ISSUER", "ESPRIM - DOCUMENT PROTEGE")
    watermark_timestamp_format: str = os.getenv(
        "WATERMARK_TIMESTAMP_FORMAT", "%d/%m/%Y %H:%M:%S"
    )

    # S3 / MinIO settings
    s3_endpoint_url: str = os.getenv("S3_ENDPOINT_URL", "")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "")
    s3_bucket_name: str = os.getenv("S3_BUCKET_NAME", "library-reports")
    s3_region: str = os.getenv("S3_REGION", "us-east-1")

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv(
        "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
    )
    celery_always_eager: bool = _env_bool("CELERY_ALWAYS_EAGER", "false")


settings = Settings()
