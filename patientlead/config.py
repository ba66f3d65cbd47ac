import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet


DEV_ENV_NAMES = {'development', 'dev', 'local', 'test'}


def safe_int_env(name, default=0, minimum=1, maximum=100000):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except Exception:
        value = int(default)
    return min(max(value, minimum), maximum)


def safe_float_env(name, default=0.0, minimum=0.0, maximum=1.0):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except Exception:
        return default
    return min(max(value, minimum), maximum)


def parse_price_ids(raw_value):
    """Parse ``tier_interval=price_id`` pairs, e.g. ``professional_monthly=price_123``."""
    price_ids = {}
    for part in str(raw_value or '').split(','):
        key, sep, value = part.partition('=')
        key = key.strip()
        value = value.strip()
        if sep and key and value:
            price_ids[key] = value
    return price_ids


def parse_cors_allowed_origins(raw_value=None):
    raw = (raw_value if raw_value is not None else os.getenv('CORS_ALLOWED_ORIGINS', '')) or ''
    origins = {part.strip().lower() for part in raw.split(',') if part.strip()}
    if origins:
        return frozenset(origins)
    return frozenset({
        'http://127.0.0.1:5000',
        'http://localhost:5000',
    })


def resolve_runtime_env():
    return (
        os.getenv('SENTRY_ENVIRONMENT')
        or os.getenv('FLASK_ENV')
        or os.getenv('ENV')
        or ('production' if os.getenv('RENDER') else 'development')
    ).strip().lower()


def _env(name, default=''):
    return (os.getenv(name, default) or default).strip()


@dataclass(frozen=True)
class AppConfig:
    """Central config object, read from the environment when instantiated."""

    flask_secret_key: str = field(default_factory=lambda: os.getenv('FLASK_SECRET_KEY', ''))
    log_level: str = field(default_factory=lambda: _env('LOG_LEVEL', 'INFO').upper())
    sentry_dsn: str = field(default_factory=lambda: _env('SENTRY_DSN_BACKEND'))
    sentry_environment: str = field(default_factory=lambda: _env('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production') or 'production'))
    sentry_release: str = field(default_factory=lambda: _env('SENTRY_RELEASE', 'patientlead'))
    sentry_traces_sample_rate: float = field(default_factory=lambda: safe_float_env('SENTRY_TRACES_SAMPLE_RATE', 0.0))

    gemini_api_key: str = field(default_factory=lambda: _env('GEMINI_API_KEY'))
    gemini_model: str = field(default_factory=lambda: _env('GEMINI_MODEL', 'gemini-2.5-flash'))
    generation_timeout_seconds: int = field(default_factory=lambda: safe_int_env('GENERATION_TIMEOUT_SECONDS', 60, minimum=5, maximum=300))
    generation_retry_attempts: int = field(default_factory=lambda: safe_int_env('GENERATION_RETRY_ATTEMPTS', 2, minimum=1, maximum=5))
    generation_retry_delay_seconds: float = field(default_factory=lambda: safe_float_env('GENERATION_RETRY_DELAY_SECONDS', 1.0, maximum=10.0))

    stripe_secret_key: str = field(default_factory=lambda: _env('STRIPE_SECRET_KEY'))
    stripe_publishable_key: str = field(default_factory=lambda: _env('STRIPE_PUBLISHABLE_KEY'))
    stripe_webhook_secret: str = field(default_factory=lambda: _env('STRIPE_WEBHOOK_SECRET'))
    stripe_price_ids: Dict[str, str] = field(default_factory=lambda: parse_price_ids(os.getenv('STRIPE_PRICE_IDS', '')))
    checkout_success_url: str = field(default_factory=lambda: _env('CHECKOUT_SUCCESS_URL'))
    checkout_cancel_url: str = field(default_factory=lambda: _env('CHECKOUT_CANCEL_URL'))
    portal_return_url: str = field(default_factory=lambda: _env('PORTAL_RETURN_URL'))

    usage_store_backend: str = field(default_factory=lambda: _env('USAGE_STORE_BACKEND', 'firestore').lower())
    usage_store_max_items: int = field(default_factory=lambda: safe_int_env('USAGE_STORE_MAX_ITEMS', 10000, minimum=16, maximum=1000000))
    response_cache_ttl_seconds: int = field(default_factory=lambda: safe_int_env('RESPONSE_CACHE_TTL_SECONDS', 300, minimum=0, maximum=86400))
    response_cache_max_items: int = field(default_factory=lambda: safe_int_env('RESPONSE_CACHE_MAX_ITEMS', 100, minimum=16, maximum=100000))

    trusted_proxy_hops: int = field(default_factory=lambda: safe_int_env('TRUSTED_PROXY_HOPS', 0, minimum=0, maximum=5))
    cors_allowed_origins: FrozenSet[str] = field(default_factory=parse_cors_allowed_origins)


def load_config() -> AppConfig:
    config = AppConfig()
    is_dev_like = resolve_runtime_env() in DEV_ENV_NAMES
    if not is_dev_like and not config.flask_secret_key.strip():
        raise RuntimeError('FLASK_SECRET_KEY must be set in non-development environments.')
    return config
