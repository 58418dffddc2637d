import os
from dataclasses import dataclass


def _env_flag(name):
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _env_int(name, default):
    return int(os.environ.get(name, default))


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:8081")

    # Custom schemes accepted for mobile redirect URLs (dev builds + Expo Go)
    ALLOWED_MOBILE_SCHEMES = os.environ.get(
        "ALLOWED_MOBILE_SCHEMES", "puzzlepass,exp,exps"
    )

    # --- Checkout hardening ---
    CHECKOUT_LIMIT = _env_int("CHECKOUT_LIMIT", 5)
    CHECKOUT_WINDOW_SECONDS = _env_int("CHECKOUT_WINDOW_SECONDS", 600)
    # How long an OPEN session may be handed out again (double-clicks, refreshes)
    CHECKOUT_REUSE_SECONDS = _env_int("CHECKOUT_REUSE_SECONDS", 1800)
    # How long a "creating" attempt keeps its idempotency key
    CHECKOUT_CREATING_GRACE_SECONDS = _env_int("CHECKOUT_CREATING_GRACE_SECONDS", 30)

    # --- TTLs (swept by `flask purge-expired`) ---
    RATE_LIMIT_TTL_SECONDS = _env_int(
        "RATE_LIMIT_TTL_SECONDS", CHECKOUT_WINDOW_SECONDS * 2
    )
    CHECKOUT_DOC_TTL_SECONDS = _env_int("CHECKOUT_DOC_TTL_SECONDS", 86400)  # 1 day
    STRIPE_EVENT_TTL_SECONDS = _env_int("STRIPE_EVENT_TTL_SECONDS", 604800)  # 7 days

    # --- Callable abuse hardening ---
    ENFORCE_APPCHECK = _env_flag("ENFORCE_APPCHECK")
    APP_CHECK_SECRET = os.environ.get("APP_CHECK_SECRET")
    REQUIRE_NON_ANON_FOR_CHECKOUT = _env_flag("REQUIRE_NON_ANON_FOR_CHECKOUT")
    ID_TOKEN_MAX_AGE_SECONDS = _env_int("ID_TOKEN_MAX_AGE_SECONDS", 3600)
    CALLABLE_RATE_LIMIT = os.environ.get("CALLABLE_RATE_LIMIT", "60 per minute")
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "APP_BASE_URL",
        ]
        # App-check secret is only required when enforcement is ON
        if _env_flag("ENFORCE_APPCHECK"):
            required.append("APP_CHECK_SECRET")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing: in-memory SQLite, limits from defaults."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    APP_BASE_URL = "http://localhost:8081"
    ALLOWED_MOBILE_SCHEMES = "puzzlepass,exp,exps"
    CHECKOUT_LIMIT = 5
    CHECKOUT_WINDOW_SECONDS = 600
    CHECKOUT_REUSE_SECONDS = 1800
    CHECKOUT_CREATING_GRACE_SECONDS = 30
    RATE_LIMIT_TTL_SECONDS = 1200
    ENFORCE_APPCHECK = False  # default off in tests; override per-test as needed
    APP_CHECK_SECRET = "test-app-check-secret"
    REQUIRE_NON_ANON_FOR_CHECKOUT = False
    RATELIMIT_ENABLED = False  # disable Flask-Limiter in tests

    @staticmethod
    def validate():
        """Skip validation in test mode; everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}


@dataclass(frozen=True)
class CheckoutSettings:
    """Immutable checkout/reconciliation settings.

    Built once in create_app() from the Flask config and passed
    explicitly into every service call, so the reconciliation code
    never reaches for current_app.config.
    """

    stripe_secret_key: str
    stripe_webhook_secret: str
    app_base_url: str
    allowed_mobile_schemes: tuple
    checkout_limit: int = 5
    checkout_window_seconds: int = 600
    checkout_reuse_seconds: int = 1800
    checkout_creating_grace_seconds: int = 30
    rate_limit_ttl_seconds: int = 1200
    checkout_doc_ttl_seconds: int = 86400
    stripe_event_ttl_seconds: int = 604800
    enforce_app_check: bool = False
    require_non_anon_for_checkout: bool = False

    @classmethod
    def from_config(cls, config):
        schemes = config.get("ALLOWED_MOBILE_SCHEMES") or ""
        if isinstance(schemes, str):
            schemes = schemes.split(",")
        return cls(
            stripe_secret_key=config.get("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            app_base_url=config.get("APP_BASE_URL"),
            allowed_mobile_schemes=tuple(
                s.strip().lower() for s in schemes if s.strip()
            ),
            checkout_limit=int(config.get("CHECKOUT_LIMIT", 5)),
            checkout_window_seconds=int(config.get("CHECKOUT_WINDOW_SECONDS", 600)),
            checkout_reuse_seconds=int(config.get("CHECKOUT_REUSE_SECONDS", 1800)),
            checkout_creating_grace_seconds=int(
                config.get("CHECKOUT_CREATING_GRACE_SECONDS", 30)
            ),
            rate_limit_ttl_seconds=int(config.get("RATE_LIMIT_TTL_SECONDS", 1200)),
            checkout_doc_ttl_seconds=int(config.get("CHECKOUT_DOC_TTL_SECONDS", 86400)),
            stripe_event_ttl_seconds=int(
                config.get("STRIPE_EVENT_TTL_SECONDS", 604800)
            ),
            enforce_app_check=bool(config.get("ENFORCE_APPCHECK", False)),
            require_non_anon_for_checkout=bool(
                config.get("REQUIRE_NON_ANON_FOR_CHECKOUT", False)
            ),
        )
