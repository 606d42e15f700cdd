import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _list_env(name: str) -> list:
    raw = (os.getenv(name) or "").strip()
    return [p.strip() for p in raw.split(",") if p.strip()]


class Config:
    # Base directory of the backend (one level above this `vtuhub` package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, 'instance')
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    TOKEN_TTL_SECONDS = _int_env("TOKEN_TTL_SECONDS", 7 * 24 * 60 * 60)
    _default_sqlite_path = os.path.join(INSTANCE_DIR, 'vtuhub.db').replace('\\', '/')
    _db_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or f"sqlite:///{_default_sqlite_path}"
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for web builds
    CORS_ORIGINS = _list_env("CORS_ORIGINS")

    # Provider registry sources, first match wins: app.config["VTU_PROVIDERS"],
    # then VTU_PROVIDERS_FILE (path to JSON), then VTU_PROVIDERS_JSON (inline JSON).
    VTU_PROVIDERS = None
    VTU_PROVIDERS_FILE = (os.getenv("VTU_PROVIDERS_FILE") or "").strip()
    VTU_PROVIDERS_JSON = (os.getenv("VTU_PROVIDERS_JSON") or "").strip()
    VTU_REQUIRED_ROUTES = _list_env("VTU_REQUIRED_ROUTES")
    VTU_DEFAULT_TIMEOUT = _int_env("VTU_DEFAULT_TIMEOUT", 30)

    # Spin-and-win cooldown, seconds (72h)
    SPIN_COOLDOWN_SECONDS = _int_env("SPIN_COOLDOWN_SECONDS", 72 * 60 * 60)

    # Daily data scheduler
    DELIVERY_LOCK_PATH = os.getenv("DELIVERY_LOCK_PATH") or os.path.join(INSTANCE_DIR, "delivery-cron.lock")
    DELIVERY_BATCH_LIMIT = _int_env("DELIVERY_BATCH_LIMIT", 500)

    # Repeat purchase with same destination+amount inside this window returns the in-flight record
    DUPLICATE_INTAKE_WINDOW_SECONDS = _int_env("DUPLICATE_INTAKE_WINDOW_SECONDS", 60)

    # Credited to the referrer's reward balance when they claim a referral
    REFERRAL_REWARD_AMOUNT = (os.getenv("REFERRAL_REWARD_AMOUNT") or "100").strip()

    # Processing transactions older than this are flagged for manual support
    STALE_PROCESSING_MINUTES = _int_env("STALE_PROCESSING_MINUTES", 30)
