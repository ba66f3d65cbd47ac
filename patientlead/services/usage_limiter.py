"""Per-user usage limits over fixed, reset-on-access windows.

Counters are checked hourly, then daily, then complex-daily (complex tools
only); the first counter at its limit decides the reason code. Windows reset
fully once their end passes, so up to twice a limit can be admitted around a
window boundary.
"""

from __future__ import annotations

import math

from patientlead.services import tool_catalog
from patientlead.services.entitlement_service import ToolAccessDecision
from patientlead.services.usage_store import WindowCheck


HOUR_SECONDS = 3600
DAY_SECONDS = 86400

REASON_CODES = {
    'hourly': 'hourly_limit',
    'daily': 'daily_limit',
    'complex': 'complex_limit',
}

# Hourly denials report minutes, daily ones report hours.
RESET_UNITS = {
    'hourly': ('minutes', 60),
    'daily': ('hours', 3600),
    'complex': ('hours', 3600),
}

LIMIT_LABELS = {
    'hourly': 'hourly',
    'daily': 'daily',
    'complex': 'daily advanced-tool',
}


def build_window_checks(user_id, tool_id, limits: tool_catalog.TierLimits):
    checks = [
        WindowCheck(f'{user_id}:{tool_id}:hour', 'hourly', limits.hourly, HOUR_SECONDS),
        WindowCheck(f'{user_id}:{tool_id}:day', 'daily', limits.daily, DAY_SECONDS),
    ]
    if tool_catalog.is_complex_tool(tool_id):
        checks.append(WindowCheck(f'{user_id}:complex:day', 'complex', limits.complex_daily, DAY_SECONDS))
    return checks


def reset_timing(kind, window_end, now):
    """Return ``(reset_in, unit, reset_in_seconds)`` rounded up to the kind's unit."""
    unit, unit_seconds = RESET_UNITS[kind]
    remaining = max(0.0, float(window_end) - float(now))
    reset_in = max(1, int(math.ceil(remaining / unit_seconds)))
    return reset_in, unit, reset_in * unit_seconds


def denial_message(decision: ToolAccessDecision) -> str:
    kind = next((k for k, code in REASON_CODES.items() if code == decision.reason_code), 'daily')
    label = LIMIT_LABELS[kind]
    if decision.reset_in is None:
        return f"You've reached your {label} usage limit. Please try again later."
    unit = decision.reset_unit or 'minutes'
    if decision.reset_in == 1:
        unit = unit[:-1]
    return f"You've reached your {label} usage limit. Try again in {decision.reset_in} {unit}."


def _min_remaining(states):
    remaining = [state.remaining for state in states if state.remaining is not None]
    return min(remaining) if remaining else None


class UsageLimiter:
    def __init__(self, store):
        self.store = store

    def check_and_consume(self, user_id, tool_id, now, tier: tool_catalog.Tier) -> ToolAccessDecision:
        checks = build_window_checks(user_id, tool_id, tier.limits)
        result = self.store.consume(checks, now, lock_key=user_id)
        if result.allowed:
            return ToolAccessDecision(allowed=True, tier=tier.name, remaining=_min_remaining(result.states))
        failed = result.failed
        reset_in, unit, reset_seconds = reset_timing(failed.check.kind, failed.window.window_end, now)
        return ToolAccessDecision(
            allowed=False,
            tier=tier.name,
            reason_code=REASON_CODES[failed.check.kind],
            remaining=0,
            reset_in_seconds=reset_seconds,
            reset_in=reset_in,
            reset_unit=unit,
        )

    def preview(self, user_id, tool_id, now, tier: tool_catalog.Tier):
        """Read-only view of the caller's windows for ``tool_id``."""
        checks = build_window_checks(user_id, tool_id, tier.limits)
        result = self.store.peek(checks, now, lock_key=user_id)
        windows = {}
        for state in result.states + ((result.failed,) if result.failed else ()):
            windows[state.check.kind] = {
                'limit': state.check.limit,
                'used': state.window.count,
                'remaining': state.remaining,
                'window_end': state.window.window_end,
            }
        preview = {'allowed': result.allowed, 'windows': windows}
        if not result.allowed:
            reset_in, unit, _ = reset_timing(result.failed.check.kind, result.failed.window.window_end, now)
            preview.update({
                'reason_code': REASON_CODES[result.failed.check.kind],
                'reset_in': reset_in,
                'reset_unit': unit,
            })
        return preview


def check_rate_limit(store, key, limit, window_seconds, now):
    """Generic single-window limiter; returns ``(allowed, retry_after_seconds)``."""
    check = WindowCheck(key, 'window', int(limit), int(window_seconds))
    result = store.consume([check], now, lock_key=key)
    if result.allowed:
        return True, 0
    return False, max(1, int(math.ceil(result.failed.window.window_end - now)))
