"""Business logic handlers for tool run, access-check and plan APIs."""

import logging

from patientlead.errors import (
    GENERIC_ERROR_MESSAGE,
    AccessDeniedError,
    ClientFault,
    InputValidationError,
    ParseRecoveryExhausted,
    TransientFault,
)
from patientlead.services import fallback_builder, tool_catalog, tool_schemas
from patientlead.services.analytics_service import utc_date_string
from patientlead.services.entitlement_service import ANONYMOUS_USER_ID, upgrade_url
from patientlead.services.response_normalizer import OUTCOME_FALLBACK, OUTCOME_PARSED, normalize_or_raise
from patientlead.services.usage_limiter import denial_message


def error_response(app_ctx, message, status_code, code=None, **extra):
    payload = {'ok': False, 'error': message}
    if code:
        payload['code'] = code
    payload.update({key: value for key, value in extra.items() if value is not None})
    return app_ctx.jsonify(payload), status_code


def _caller(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    uid = str(decoded_token.get('uid', '') or '') if decoded_token else ''
    return uid


def usage_subject(app_ctx, request, uid):
    """Usage counters are keyed by uid, or by client IP for anonymous callers."""
    if uid:
        return app_ctx.normalize_rate_limit_key_part(uid, fallback=ANONYMOUS_USER_ID)
    client_ip = app_ctx.get_client_ip(request)
    return app_ctx.normalize_rate_limit_key_part(f'{ANONYMOUS_USER_ID}@{client_ip}', fallback=ANONYMOUS_USER_ID)


def tier_denial(tool_id, decision):
    tool = tool_catalog.get_tool(tool_id)
    required = tool_catalog.get_tier(decision.required_tier)
    tool_name = tool.display_name if tool else tool_id
    if required is not None:
        return AccessDeniedError(f'{tool_name} requires the {required.display_name} plan or higher.', decision)
    return AccessDeniedError(f'{tool_name} is not available on any current plan.', decision)


def access_denied_response(app_ctx, tool_id, exc):
    decision = exc.decision
    if exc.status_code == 429:
        app_ctx.log_rate_limit_hit('tool_usage', decision.reset_in_seconds)
        return app_ctx.build_rate_limited_response(
            exc.user_message,
            decision.reset_in_seconds,
            code=exc.code,
            reset_in=decision.reset_in,
            reset_unit=decision.reset_unit,
            tier=decision.tier,
        )
    app_ctx.log_event(logging.INFO, 'tool_access_denied', tool=tool_id, tier=decision.tier, required_tier=decision.required_tier)
    return error_response(
        app_ctx,
        exc.user_message,
        exc.status_code,
        exc.code,
        tier=decision.tier,
        required_tier=decision.required_tier,
        upgrade_url=upgrade_url(tool_id, decision.tier),
    )


def _success(app_ctx, data, *, outcome, tier, remaining, cached=False):
    return app_ctx.jsonify({
        'ok': True,
        'data': data,
        'meta': {
            'outcome': outcome,
            'fallback': outcome == OUTCOME_FALLBACK,
            'tier': tier,
            'remaining': remaining,
            'cached': cached,
        },
    })


def run_tool(app_ctx, request, tool_id):
    definition = tool_schemas.get_tool_definition(tool_id)
    if definition is None:
        return error_response(app_ctx, 'Unknown tool.', 404, 'unknown_tool')

    try:
        uid = _caller(app_ctx, request)
        decision = app_ctx.resolve_tool_access(uid or ANONYMOUS_USER_ID, tool_id)
        if not decision.allowed:
            raise tier_denial(tool_id, decision)

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return error_response(app_ctx, 'Request body must be a JSON object.', 400, 'invalid_input')
        try:
            inputs = definition.validate(payload)
        except InputValidationError as exc:
            return error_response(app_ctx, exc.user_message, exc.status_code, exc.code, field=exc.field)

        generation_service = app_ctx.generation_service
        if generation_service is None:
            return error_response(app_ctx, TransientFault.user_message, 503, TransientFault.code)

        subject = usage_subject(app_ctx, request, uid)
        tier = tool_catalog.get_tier(decision.tier) or tool_catalog.TIERS_BY_NAME[tool_catalog.DEFAULT_TIER]
        now_ts = app_ctx.time.time()
        usage = app_ctx.get_usage_limiter().check_and_consume(subject, tool_id, now_ts, tier)
        if not usage.allowed:
            raise AccessDeniedError(denial_message(usage), usage)

        cached = app_ctx.RESPONSE_CACHE.get(subject, tool_id, inputs)
        if cached is not None:
            data = definition.finalize(cached, inputs)
            return _success(app_ctx, data, outcome=OUTCOME_PARSED, tier=tier.name, remaining=usage.remaining, cached=True)

        return _generate(app_ctx, definition, inputs, uid=uid, subject=subject, tier=tier, usage=usage, started_at=now_ts)
    except AccessDeniedError as exc:
        return access_denied_response(app_ctx, tool_id, exc)
    except Exception as e:
        app_ctx.logger.error(f"Tool run failed for {tool_id}: {e}")
        return error_response(app_ctx, GENERIC_ERROR_MESSAGE, 500, 'unknown_error')


def _generate(app_ctx, definition, inputs, *, uid, subject, tier, usage, started_at):
    tool_id = definition.tool_id
    generation_service = app_ctx.generation_service
    prompt = definition.build_prompt(inputs)
    error_text = ''
    attempts = 1
    try:
        result = generation_service.generate(
            prompt.prompt_text,
            max_output_tokens=definition.max_output_tokens,
            temperature=definition.temperature,
            system_text=prompt.system_text,
        )
        attempts = result.attempts
        normalized = normalize_or_raise(result.text, definition.schema)
    except ClientFault as exc:
        app_ctx.logger.error(f"Generation rejected for {tool_id}: {exc}")
        app_ctx.track_tool_usage(
            uid or ANONYMOUS_USER_ID,
            tool_id,
            success=False,
            outcome='error',
            error=str(exc),
            retries=_retries(getattr(exc, 'attempts', attempts)),
            response_time_ms=_elapsed_ms(app_ctx, started_at),
        )
        return error_response(app_ctx, ClientFault.user_message, ClientFault.status_code, ClientFault.code)
    except (TransientFault, ParseRecoveryExhausted) as exc:
        error_text = str(exc)
        attempts = getattr(exc, 'attempts', attempts)
        app_ctx.logger.warning(f"Using fallback response for {tool_id}: {exc}")
        fallback_inputs = dict(inputs, today=utc_date_string(app_ctx.time.time()))
        normalized = fallback_builder.build_fallback(tool_id, fallback_inputs)

    if normalized.outcome == OUTCOME_PARSED:
        app_ctx.RESPONSE_CACHE.set(subject, tool_id, inputs, normalized.data)

    data = definition.finalize(normalized.data, inputs)
    app_ctx.track_tool_usage(
        uid or ANONYMOUS_USER_ID,
        tool_id,
        success=True,
        outcome=normalized.outcome,
        error=error_text,
        retries=_retries(attempts),
        response_time_ms=_elapsed_ms(app_ctx, started_at),
    )
    app_ctx.log_event(
        logging.INFO,
        'tool_run',
        tool=tool_id,
        tier=tier.name,
        outcome=normalized.outcome,
        derived_keys=list(normalized.derived_keys),
        placeholder_keys=list(normalized.placeholder_keys),
    )
    return _success(app_ctx, data, outcome=normalized.outcome, tier=tier.name, remaining=usage.remaining)


def _retries(attempts):
    return max(0, int(attempts or 1) - 1)


def _elapsed_ms(app_ctx, started_at):
    return int(max(0.0, app_ctx.time.time() - started_at) * 1000)


def check_tool_access(app_ctx, request):
    tool_id = str(request.args.get('tool', '') or '').strip()
    if tool_catalog.get_tool(tool_id) is None:
        return error_response(app_ctx, 'Unknown tool.', 400, 'invalid_input')

    uid = _caller(app_ctx, request)
    decision = app_ctx.resolve_tool_access(uid or ANONYMOUS_USER_ID, tool_id)
    if not decision.allowed:
        return app_ctx.jsonify({
            'ok': True,
            'data': {
                'allowed': False,
                'tier': decision.tier,
                'reason_code': decision.reason_code,
                'required_tier': decision.required_tier,
                'upgrade_url': upgrade_url(tool_id, decision.tier),
                'comparison': tool_catalog.get_tier_comparison(decision.tier, tool_id),
            },
        })

    tier = tool_catalog.get_tier(decision.tier) or tool_catalog.TIERS_BY_NAME[tool_catalog.DEFAULT_TIER]
    try:
        usage = app_ctx.get_usage_limiter().preview(usage_subject(app_ctx, request, uid), tool_id, app_ctx.time.time(), tier)
    except Exception as e:
        app_ctx.logger.warning(f"Usage preview failed for {tool_id}: {e}")
        usage = None
    data = {
        'allowed': usage['allowed'] if usage else True,
        'tier': tier.name,
        'usage': usage,
    }
    if usage and not usage['allowed']:
        data['reason_code'] = usage['reason_code']
    return app_ctx.jsonify({'ok': True, 'data': data})


def get_plans(app_ctx):
    return app_ctx.jsonify({
        'ok': True,
        'data': {
            'stripe_publishable_key': app_ctx.STRIPE_PUBLISHABLE_KEY,
            'plans': [tool_catalog.public_tier_payload(tier) for tier in tool_catalog.UPGRADE_ORDER],
        },
    })
