"""Entitlement resolution: caller -> tier -> tool permission.

The tier lookup fails permissive: a missing, malformed or unknown tier
record, or a lookup that raises, resolves to the free tier. The access
decision itself never fails open.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from patientlead.services import tool_catalog


ANONYMOUS_USER_ID = 'anonymous'
ACTIVE_SUBSCRIPTION_STATUSES = {'active', 'trialing'}

logger = logging.getLogger('patientlead.entitlements')


@dataclass(frozen=True)
class ToolAccessDecision:
    allowed: bool
    tier: str
    reason_code: Optional[str] = None
    required_tier: Optional[str] = None
    remaining: Optional[int] = None
    reset_in_seconds: Optional[int] = None
    reset_in: Optional[int] = None
    reset_unit: Optional[str] = None

    def to_dict(self):
        return {key: value for key, value in asdict(self).items() if value is not None}


def subscription_is_active(record, now) -> bool:
    if not isinstance(record, dict):
        return False
    status = str(record.get('status', '') or '').strip().lower()
    if status in ACTIVE_SUBSCRIPTION_STATUSES:
        return True
    if status == 'canceled':
        period_end = record.get('current_period_end')
        if isinstance(period_end, bool) or not isinstance(period_end, (int, float)):
            return False
        return now < period_end
    return False


def subscription_tier(record, now) -> str:
    """Map a persisted billing record to the tier name it currently grants."""
    if not subscription_is_active(record, now):
        return tool_catalog.DEFAULT_TIER
    tier_name = record.get('tier')
    if not isinstance(tier_name, str) or not tier_name.strip():
        return tool_catalog.DEFAULT_TIER
    return tier_name.strip()


def upgrade_url(tool_id, tier_name):
    return f'/subscribe?tool={tool_id}&from={tier_name}'


class EntitlementResolver:
    def __init__(self, tier_lookup: Callable[[str], Optional[str]], *, default_tier=tool_catalog.DEFAULT_TIER):
        self._tier_lookup = tier_lookup
        self._default_tier = tool_catalog.get_tier(default_tier) or tool_catalog.TIERS_BY_NAME[tool_catalog.DEFAULT_TIER]

    def lookup_tier(self, user_id) -> tool_catalog.Tier:
        if not user_id or user_id == ANONYMOUS_USER_ID:
            return self._default_tier
        try:
            tier_name = self._tier_lookup(user_id)
        except Exception as exc:
            logger.warning(f"Tier lookup failed for {user_id}; using {self._default_tier.name}: {exc}")
            return self._default_tier
        if tier_name is None:
            return self._default_tier
        tier = tool_catalog.get_tier(tier_name) if isinstance(tier_name, str) else None
        if tier is None:
            logger.warning(f"Unknown tier {tier_name!r} on user {user_id}; using {self._default_tier.name}")
            return self._default_tier
        return tier

    def resolve(self, user_id, tool_id) -> ToolAccessDecision:
        tier = self.lookup_tier(user_id)
        if tier.allows(tool_id):
            return ToolAccessDecision(allowed=True, tier=tier.name)
        required = tool_catalog.find_minimum_tier(tool_id)
        return ToolAccessDecision(
            allowed=False,
            tier=tier.name,
            reason_code='tier_required',
            required_tier=required.name if required is not None else None,
        )
