"""Business logic handlers for usage summary, usage history and the vault."""

from patientlead.services import tool_catalog
from patientlead.services.analytics_service import sanitize_meta
from patientlead.services.entitlement_service import subscription_tier


DAY_SECONDS = 86400
MONTH_SECONDS = 30 * DAY_SECONDS
MAX_VAULT_TAGS = 12
MAX_VAULT_TEXT_CHARS = 50000


def _unauthorized(app_ctx):
    return app_ctx.jsonify({'ok': False, 'error': 'Unauthorized', 'code': 'unauthenticated'}), 401


def _storage_unavailable(app_ctx):
    return app_ctx.jsonify({'ok': False, 'error': 'Storage is temporarily unavailable.', 'code': 'service_unavailable'}), 503


def parse_history_limit(raw_value, default=20, maximum=100):
    try:
        limit = int(str(raw_value).strip())
    except (TypeError, ValueError):
        return default
    return min(max(limit, 1), maximum)


def get_usage_summary(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return _unauthorized(app_ctx)
    if app_ctx.db is None:
        return _storage_unavailable(app_ctx)

    uid = decoded_token['uid']
    now_ts = app_ctx.time.time()
    try:
        record = app_ctx.users_repo.get_subscription(app_ctx.db, uid)
        tier = tool_catalog.get_tier(subscription_tier(record, now_ts)) or tool_catalog.TIERS_BY_NAME[tool_catalog.DEFAULT_TIER]
        daily = app_ctx.usage_repo.count_tool_usage_since(app_ctx.db, uid, now_ts - DAY_SECONDS)
        monthly = app_ctx.usage_repo.count_tool_usage_since(app_ctx.db, uid, now_ts - MONTH_SECONDS)
    except Exception as e:
        app_ctx.logger.error(f"Error fetching usage summary for {uid}: {e}")
        return app_ctx.jsonify({'ok': False, 'error': 'Could not load usage.', 'code': 'unknown_error'}), 500
    return app_ctx.jsonify({
        'ok': True,
        'data': {
            'tier': tier.name,
            'usage': {'daily': daily, 'monthly': monthly},
            'limits': tier.limits.to_dict(),
        },
    })


def get_usage_history(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return _unauthorized(app_ctx)
    if app_ctx.db is None:
        return _storage_unavailable(app_ctx)

    uid = decoded_token['uid']
    limit = parse_history_limit(request.args.get('limit', 20))
    try:
        docs = app_ctx.usage_repo.list_recent_tool_usage(app_ctx.db, uid, limit, app_ctx.firestore)
    except Exception as e:
        app_ctx.logger.error(f"Error fetching usage history for {uid}: {e}")
        return app_ctx.jsonify({'ok': True, 'data': {'history': []}})
    history = []
    for doc in docs:
        entry = doc.to_dict() or {}
        history.append({
            'id': doc.id,
            'tool': entry.get('tool', ''),
            'timestamp': entry.get('timestamp', 0),
            'date': entry.get('date', ''),
            'success': bool(entry.get('success', False)),
            'outcome': entry.get('outcome', ''),
            'response_time_ms': entry.get('response_time_ms', 0),
        })
    return app_ctx.jsonify({'ok': True, 'data': {'history': history}})


def save_vault_episode(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return _unauthorized(app_ctx)

    data = request.get_json(silent=True) or {}
    episode_type = str(data.get('type', '') or '').strip()[:64]
    title = str(data.get('title', '') or '').strip()[:200]
    if not episode_type or not title:
        return app_ctx.jsonify({'ok': False, 'error': "Missing 'type' or 'title'", 'code': 'invalid_input'}), 400
    if app_ctx.db is None:
        return _storage_unavailable(app_ctx)

    tags = data.get('tags') if isinstance(data.get('tags'), list) else []
    structured = data.get('structured')
    episode = {
        'uid': decoded_token['uid'],
        'type': episode_type,
        'title': title,
        'raw_text': str(data.get('raw_text', '') or '')[:MAX_VAULT_TEXT_CHARS],
        'structured': structured if isinstance(structured, dict) else {},
        'tags': [str(tag).strip()[:40] for tag in tags[:MAX_VAULT_TAGS] if str(tag).strip()],
        'summarize': bool(data.get('summarize', False)),
        'meta': sanitize_meta(data.get('meta')),
        'created_at': app_ctx.time.time(),
    }
    try:
        episode_id = app_ctx.events_repo.add_vault_episode(app_ctx.db, episode)
    except Exception as e:
        app_ctx.logger.error(f"Vault save error: {e}")
        return app_ctx.jsonify({'ok': False, 'error': 'Could not save to vault.', 'code': 'unknown_error'}), 500
    return app_ctx.jsonify({
        'ok': True,
        'data': {
            'id': episode_id,
            'type': episode_type,
            'title': title,
            'tags': episode['tags'],
            'summarize': episode['summarize'],
        },
    })


def list_vault_episodes(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return _unauthorized(app_ctx)
    if app_ctx.db is None:
        return _storage_unavailable(app_ctx)

    uid = decoded_token['uid']
    limit = parse_history_limit(request.args.get('limit', 20))
    try:
        docs = app_ctx.events_repo.list_vault_episodes(app_ctx.db, uid, limit, app_ctx.firestore)
    except Exception as e:
        app_ctx.logger.error(f"Error listing vault episodes for {uid}: {e}")
        return app_ctx.jsonify({'ok': True, 'data': {'episodes': []}})
    episodes = []
    for doc in docs:
        entry = doc.to_dict() or {}
        episodes.append({
            'id': doc.id,
            'type': entry.get('type', ''),
            'title': entry.get('title', ''),
            'tags': entry.get('tags', []),
            'structured': entry.get('structured', {}),
            'created_at': entry.get('created_at', 0),
        })
    return app_ctx.jsonify({'ok': True, 'data': {'episodes': episodes}})
