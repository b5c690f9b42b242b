import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    jwt_secret: str
    jwt_ttl_hours: int

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    redis_url: str
    queue_name: str
    celery_broker_url: str
    celery_result_backend: str
    celery_task_always_eager: bool

    anthropic_api_key: str
    ai_assist_model: str
    ai_assist_root: str
    ai_assist_backup_backend: str

    assembler_output_prefix: str

    otp_ttl_minutes: int
    otp_max_attempts: int
    min_cashout: str

    fraud_max_per_hour: int
    fraud_max_per_day: int
    fraud_velocity_backend: str
    fraud_known_bad_ips: tuple[str, ...]

    menu_broadcast_backend: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getbool(name: str, default: bool = False) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///modulekit.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        jwt_secret=_getenv("JWT_SECRET", "change-me"),
        jwt_ttl_hours=_getint("JWT_TTL_HOURS", 24),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        redis_url=_getenv("REDIS_URL", "redis://localhost:6379/0"),
        queue_name=_getenv("QUEUE_NAME", "assembly-queue"),
        celery_broker_url=_getenv("CELERY_BROKER_URL", _getenv("REDIS_URL", "redis://localhost:6379/0")),
        celery_result_backend=_getenv("CELERY_RESULT_BACKEND", _getenv("REDIS_URL", "redis://localhost:6379/0")),
        celery_task_always_eager=_getbool("CELERY_TASK_ALWAYS_EAGER"),
        anthropic_api_key=_getenv("ANTHROPIC_API_KEY", ""),
        ai_assist_model=_getenv("AI_ASSIST_MODEL", "claude-sonnet-4-20250514"),
        ai_assist_root=_getenv("AI_ASSIST_ROOT", os.getcwd()),
        ai_assist_backup_backend=_getenv("AI_ASSIST_BACKUP_BACKEND", "redis").lower(),
        assembler_output_prefix=_getenv("ASSEMBLER_OUTPUT_PREFIX", "generated-projects"),
        otp_ttl_minutes=_getint("OTP_TTL_MINUTES", 10),
        otp_max_attempts=_getint("OTP_MAX_ATTEMPTS", 5),
        min_cashout=_getenv("MIN_CASHOUT", "5.00"),
        fraud_max_per_hour=_getint("FRAUD_MAX_PER_HOUR", 20),
        fraud_max_per_day=_getint("FRAUD_MAX_PER_DAY", 100),
        fraud_velocity_backend=_getenv("FRAUD_VELOCITY_BACKEND", "redis").lower(),
        fraud_known_bad_ips=tuple(ip.strip() for ip in _getenv("FRAUD_KNOWN_BAD_IPS").split(",") if ip.strip()),
        menu_broadcast_backend=_getenv("MENU_BROADCAST_BACKEND", "redis").lower(),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "JWT_SECRET": s.jwt_secret,
        "JWT_TTL_HOURS": s.jwt_ttl_hours,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "REDIS_URL": s.redis_url,
        "QUEUE_NAME": s.queue_name,
        "CELERY": {
            "broker_url": s.celery_broker_url,
            "result_backend": s.celery_result_backend,
            "task_default_queue": s.queue_name,
            "task_always_eager": s.celery_task_always_eager,
            "task_store_eager_result": True,
            "task_track_started": True,
            "result_extended": True,
            "result_expires": 24 * 3600,
            "task_serializer": "json",
            "result_serializer": "json",
            "accept_content": ["json"],
        },
        "ANTHROPIC_API_KEY": s.anthropic_api_key,
        "AI_ASSIST_MODEL": s.ai_assist_model,
        "AI_ASSIST_ROOT": s.ai_assist_root,
        "AI_ASSIST_BACKUP_BACKEND": s.ai_assist_backup_backend,
        "ASSEMBLER_OUTPUT_PREFIX": s.assembler_output_prefix,
        "OTP_TTL_MINUTES": s.otp_ttl_minutes,
        "OTP_MAX_ATTEMPTS": s.otp_max_attempts,
        "MIN_CASHOUT": s.min_cashout,
        "FRAUD_MAX_PER_HOUR": s.fraud_max_per_hour,
        "FRAUD_MAX_PER_DAY": s.fraud_max_per_day,
        "FRAUD_VELOCITY_BACKEND": s.fraud_velocity_backend,
        "FRAUD_KNOWN_BAD_IPS": s.fraud_known_bad_ips,
        "MENU_BROADCAST_BACKEND": s.menu_broadcast_backend,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
