import os
import re
import sys
import json
import time
import uuid
import logging

import stripe
import sentry_sdk
from flask import Flask, request, jsonify, g
from google import genai
from google.genai import types
from dotenv import load_dotenv
from werkzeug.middleware.proxy_fix import ProxyFix
import firebase_admin
from firebase_admin import credentials, auth, firestore

from patientlead.config import AppConfig, safe_int_env
from patientlead.logging_config import configure_logging, log_event as emit_log_event
from patientlead.repositories import events_repo, usage_repo, users_repo
from patientlead.services import (
    account_api_service,
    analytics_service,
    auth_service,
    billing_api_service,
    tool_api_service,
)
from patientlead.services import usage_limiter
from patientlead.services.entitlement_service import EntitlementResolver, subscription_tier
from patientlead.services.generation_service import GenerationService
from patientlead.services.response_cache import ResponseCache
from patientlead.services.usage_limiter import UsageLimiter
from patientlead.services.usage_store import FallbackUsageStore, FirestoreUsageStore, InMemoryUsageStore

load_dotenv()
CONFIG = AppConfig()
app = Flask(__name__)
app.secret_key = CONFIG.flask_secret_key or os.urandom(32).hex()
# Only trusted proxy hops may rewrite remote_addr.
if CONFIG.trusted_proxy_hops:
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=CONFIG.trusted_proxy_hops)
configure_logging(CONFIG.log_level)
logger = logging.getLogger('patientlead')


def log_event(level, event, **fields):
    emit_log_event(logger, level, event, **fields)


# --- Gemini Setup ---
if CONFIG.gemini_api_key:
    try:
        client = genai.Client(
            api_key=CONFIG.gemini_api_key,
            http_options=types.HttpOptions(timeout=CONFIG.generation_timeout_seconds * 1000),
        )
    except Exception as e:
        client = None
        logger.info(f"Gemini client disabled: {e}")
else:
    client = None
    logger.info("GEMINI_API_KEY not set; tool generation is disabled.")

if client is not None:
    generation_service = GenerationService(
        client,
        model=CONFIG.gemini_model,
        max_attempts=CONFIG.generation_retry_attempts,
        retry_delay_seconds=CONFIG.generation_retry_delay_seconds,
    )
else:
    generation_service = None

# --- Firebase Setup ---
db = None
firebase_init_error = ''
try:
    if os.path.exists('firebase-credentials.json'):
        cred = credentials.Certificate('firebase-credentials.json')
    else:
        firebase_creds_raw = (os.getenv('FIREBASE_CREDENTIALS', '') or '').strip()
        if not firebase_creds_raw:
            raise ValueError("FIREBASE_CREDENTIALS is not set and firebase-credentials.json was not found.")
        cred = credentials.Certificate(json.loads(firebase_creds_raw))
    if not firebase_admin._apps:
        firebase_admin.initialize_app(cred)
    db = firestore.client()
except Exception as e:
    firebase_init_error = str(e)
    logger.info(f"Firebase initialization skipped: {firebase_init_error}")

# --- Stripe Setup ---
stripe.api_key = CONFIG.stripe_secret_key or None
STRIPE_PUBLISHABLE_KEY = CONFIG.stripe_publishable_key
STRIPE_WEBHOOK_SECRET = CONFIG.stripe_webhook_secret
STRIPE_PRICE_IDS = dict(CONFIG.stripe_price_ids)
CHECKOUT_SUCCESS_URL = CONFIG.checkout_success_url
CHECKOUT_CANCEL_URL = CONFIG.checkout_cancel_url
PORTAL_RETURN_URL = CONFIG.portal_return_url

CORS_ALLOWED_ORIGINS = CONFIG.cors_allowed_origins
CHECKOUT_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('CHECKOUT_RATE_LIMIT_WINDOW_SECONDS', 300, minimum=60, maximum=86400)
CHECKOUT_RATE_LIMIT_MAX_REQUESTS = safe_int_env('CHECKOUT_RATE_LIMIT_MAX_REQUESTS', 5, minimum=1, maximum=100)
COPILOT_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('COPILOT_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=3600)
COPILOT_RATE_LIMIT_MAX_REQUESTS = safe_int_env('COPILOT_RATE_LIMIT_MAX_REQUESTS', 60, minimum=1, maximum=10000)

# --- Usage counters and caches ---
USAGE_MEMORY_STORE = InMemoryUsageStore(max_items=CONFIG.usage_store_max_items)
RATE_LIMIT_MEMORY_STORE = InMemoryUsageStore(max_items=CONFIG.usage_store_max_items)
RESPONSE_CACHE = ResponseCache(
    ttl_seconds=CONFIG.response_cache_ttl_seconds,
    max_items=CONFIG.response_cache_max_items,
)


def get_usage_store():
    if db is not None and CONFIG.usage_store_backend == 'firestore':
        return FallbackUsageStore(FirestoreUsageStore(db, firestore), USAGE_MEMORY_STORE, logger=logger)
    return USAGE_MEMORY_STORE


def get_usage_limiter():
    return UsageLimiter(get_usage_store())


def verify_firebase_token(request):
    return auth_service.verify_firebase_token(request, auth, logger)


def lookup_user_tier(uid):
    if db is None:
        return None
    record = users_repo.get_subscription(db, uid)
    return subscription_tier(record, time.time())


def resolve_tool_access(user_id, tool_id):
    return EntitlementResolver(lookup_user_tier).resolve(user_id, tool_id)


def check_rate_limit(key, limit, window_seconds):
    return usage_limiter.check_rate_limit(RATE_LIMIT_MEMORY_STORE, key, limit, window_seconds, time.time())


def build_rate_limited_response(message, retry_after, **extra):
    retry_after_seconds = int(max(1, retry_after or 1))
    payload = {
        'ok': False,
        'error': message,
        'retry_after_seconds': retry_after_seconds,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    response = jsonify(payload)
    response.status_code = 429
    response.headers['Retry-After'] = str(retry_after_seconds)
    return response


def normalize_rate_limit_key_part(value, fallback='anon', max_len=120):
    raw = str(value or '').strip().lower()
    if not raw:
        return fallback
    safe = re.sub(r'[^a-z0-9_.:@-]+', '_', raw)
    return safe[:max_len] if safe else fallback


def get_client_ip(request):
    return request.remote_addr or 'unknown'


def log_rate_limit_hit(limit_name, retry_after=0):
    log_event(logging.INFO, 'rate_limit_hit', limit=limit_name, retry_after=retry_after)
    return analytics_service.log_rate_limit_hit(
        limit_name,
        retry_after,
        db=db,
        logger=logger,
        time_module=time,
    )


def track_tool_usage(uid, tool_id, **fields):
    return analytics_service.track_tool_usage(
        uid,
        tool_id,
        db=db,
        logger=logger,
        time_module=time,
        **fields,
    )


def apply_cors_headers(response):
    origin = str(request.headers.get('Origin', '') or '').strip()
    if not origin:
        return response
    if not request.path.startswith('/api/'):
        return response
    if origin.lower() not in CORS_ALLOWED_ORIGINS:
        return response
    response.headers['Access-Control-Allow-Origin'] = origin
    response.headers['Vary'] = 'Origin'
    response.headers['Access-Control-Allow-Headers'] = 'Authorization, Content-Type, X-Request-ID'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
    return response


@app.before_request
def handle_api_options_preflight():
    if request.method == 'OPTIONS' and request.path.startswith('/api/'):
        return apply_cors_headers(app.make_default_options_response())


@app.before_request
def attach_sentry_route_context():
    request_id = str(request.headers.get('X-Request-ID', '') or '').strip()[:120] or uuid.uuid4().hex
    g.request_id = request_id
    if not sentry_sdk:
        return
    try:
        sentry_sdk.set_tag('request.id', request_id)
        sentry_sdk.set_tag('route.path', request.path)
        sentry_sdk.set_tag('route.method', request.method)
        sentry_sdk.set_tag('route.endpoint', request.endpoint or '')
        sentry_sdk.set_tag('route.auth_header_present', 'true' if request.headers.get('Authorization') else 'false')
    except Exception as e:
        logger.debug(f"Could not tag Sentry scope: {e}")


@app.after_request
def attach_sentry_response_context(response):
    request_id = str(getattr(g, 'request_id', '') or '').strip()
    if request_id:
        response.headers['X-Request-ID'] = request_id
    if sentry_sdk:
        try:
            sentry_sdk.set_tag('route.status_code', str(response.status_code))
        except Exception as e:
            logger.debug(f"Could not tag Sentry scope: {e}")
    return apply_cors_headers(response)


# --- Route implementations (called from blueprints) ---

def _ctx():
    return sys.modules[__name__]


def run_tool_impl(tool_id):
    return tool_api_service.run_tool(_ctx(), request, tool_id)


def check_tool_access_impl():
    return tool_api_service.check_tool_access(_ctx(), request)


def get_plans_impl():
    return tool_api_service.get_plans(_ctx())


def get_subscription_impl():
    return billing_api_service.get_subscription(_ctx(), request)


def create_checkout_session_impl():
    return billing_api_service.create_checkout_session(_ctx(), request)


def create_portal_session_impl():
    return billing_api_service.create_portal_session(_ctx(), request)


def stripe_webhook_impl():
    return billing_api_service.stripe_webhook(_ctx(), request)


def get_usage_summary_impl():
    return account_api_service.get_usage_summary(_ctx(), request)


def get_usage_history_impl():
    return account_api_service.get_usage_history(_ctx(), request)


def save_vault_episode_impl():
    return account_api_service.save_vault_episode(_ctx(), request)


def list_vault_episodes_impl():
    return account_api_service.list_vault_episodes(_ctx(), request)


def copilot_ingest_impl():
    return analytics_service.ingest_copilot_event(_ctx(), request)


@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'}), 200


from patientlead.blueprints import account_bp, billing_bp, telemetry_bp, tools_bp  # noqa: E402

for blueprint in (tools_bp, billing_bp, account_bp, telemetry_bp):
    app.register_blueprint(blueprint)
