"""Usage tracking, telemetry sanitization and persistence helpers.

Every writer here is best-effort: a failed write is logged and reported as
``False``, never raised to the request that triggered it.
"""

import re
from datetime import datetime, timezone

from patientlead.repositories import events_repo, usage_repo


RATE_LIMIT_NAMES = {'checkout', 'copilot', 'tool_usage'}
MAX_EVENT_TAGS = 12
MAX_META_KEYS = 20
TOKEN_RE = re.compile(r'^[a-zA-Z0-9_.:-]{1,64}$')


def utc_date_string(timestamp):
    return datetime.fromtimestamp(float(timestamp), tz=timezone.utc).strftime('%Y-%m-%d')


def track_tool_usage(
    uid,
    tool_id,
    *,
    success,
    outcome='',
    error='',
    retries=0,
    response_time_ms=0,
    db,
    logger,
    time_module,
):
    if db is None:
        return False
    now_ts = time_module.time()
    payload = {
        'uid': str(uid or '')[:128],
        'tool': str(tool_id or '')[:64],
        'timestamp': now_ts,
        'date': utc_date_string(now_ts),
        'success': bool(success),
        'outcome': str(outcome or '')[:32],
        'error': str(error or '')[:300],
        'retries': max(0, int(retries or 0)),
        'response_time_ms': max(0, int(response_time_ms or 0)),
    }
    try:
        usage_repo.add_tool_usage(db, payload)
        return True
    except Exception as exc:
        if logger is not None:
            logger.warning(f"Could not record tool usage for {payload['tool']}: {exc}")
        return False


def _clean_token(value, default='unknown'):
    token = str(value or '').strip()
    return token if TOKEN_RE.match(token) else default


def sanitize_meta(raw_meta):
    if not isinstance(raw_meta, dict):
        return {}
    cleaned = {}
    for raw_key, raw_value in list(raw_meta.items())[:MAX_META_KEYS]:
        key = str(raw_key or '').strip()[:64]
        if not key:
            continue
        if isinstance(raw_value, bool) or raw_value is None:
            cleaned[key] = raw_value
        elif isinstance(raw_value, (int, float)):
            cleaned[key] = raw_value
        elif isinstance(raw_value, str):
            cleaned[key] = raw_value.strip()[:500]
    return cleaned


def sanitize_copilot_event(raw_event, *, uid, now_ts):
    event = raw_event if isinstance(raw_event, dict) else {}
    ts = event.get('ts')
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or ts <= 0:
        ts = now_ts
    tags = event.get('tags')
    if not isinstance(tags, list):
        tags = []
    return {
        'uid': str(uid or 'anon')[:128],
        'ts': ts,
        'tool': _clean_token(event.get('tool')),
        'type': _clean_token(event.get('type')),
        'title': str(event.get('title') or '').strip()[:200],
        'tags': [str(tag).strip()[:40] for tag in tags[:MAX_EVENT_TAGS] if str(tag).strip()],
        'meta': sanitize_meta(event.get('meta')),
        'created_at': now_ts,
    }


def ingest_copilot_event(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    uid = decoded_token.get('uid', '') if decoded_token else ''
    actor = uid or app_ctx.get_client_ip(request)
    allowed, retry_after = app_ctx.check_rate_limit(
        key=f"copilot:{app_ctx.normalize_rate_limit_key_part(actor, fallback='anon')}",
        limit=app_ctx.COPILOT_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.COPILOT_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        app_ctx.log_rate_limit_hit('copilot', retry_after)
        return app_ctx.build_rate_limited_response('Too many events. Please slow down.', retry_after, code='rate_limited')

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return app_ctx.jsonify({'ok': False, 'error': 'Event body must be a JSON object.', 'code': 'invalid_input'}), 400
    if app_ctx.db is None:
        return app_ctx.jsonify({'ok': False, 'error': 'Event storage is unavailable.', 'code': 'service_unavailable'}), 503

    doc = sanitize_copilot_event(payload, uid=uid or 'anon', now_ts=app_ctx.time.time())
    try:
        event_id = app_ctx.events_repo.add_copilot_event(app_ctx.db, doc)
    except Exception as e:
        app_ctx.logger.error(f"Copilot ingest error: {e}")
        return app_ctx.jsonify({'ok': False, 'error': 'Internal error', 'code': 'unknown_error'}), 500
    return app_ctx.jsonify({'ok': True, 'data': {'id': event_id}})


def log_rate_limit_hit(limit_name, retry_after=0, *, db, logger, time_module):
    safe_name = str(limit_name or '').strip().lower()
    if safe_name not in RATE_LIMIT_NAMES or db is None:
        return False
    try:
        retry_after_seconds = int(float(retry_after))
    except (TypeError, ValueError):
        retry_after_seconds = 1
    retry_after_seconds = max(1, retry_after_seconds)
    try:
        events_repo.add_rate_limit_log(db, {
            'limit_name': safe_name,
            'retry_after_seconds': retry_after_seconds,
            'created_at': time_module.time(),
        })
        return True
    except Exception as exc:
        if logger is not None:
            logger.info(f"Could not store rate limit log ({safe_name}): {exc}")
        return False
