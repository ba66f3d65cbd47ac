"""Static subscription tiers and tool catalog.

Tiers are declared once, in catalog order, and never mutated. Tier order
matters: ``find_minimum_tier`` breaks price ties by declaration position.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from patientlead.errors import CatalogError


ALL_TOOLS = '*'
UNLIMITED = -1
DEFAULT_TIER = 'free'


@dataclass(frozen=True)
class TierLimits:
    hourly: int
    daily: int
    monthly: int
    complex_daily: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'hourly': self.hourly,
            'daily': self.daily,
            'monthly': self.monthly,
            'complex_daily': self.complex_daily,
        }


@dataclass(frozen=True)
class Tier:
    name: str
    display_name: str
    tool_set: Union[FrozenSet[str], str]
    limits: TierLimits
    price: int
    annual_price: Optional[int] = None
    seat_count: Optional[int] = None
    feature_flags: FrozenSet[str] = field(default_factory=frozenset)
    trial_days: int = 0
    description: str = ''
    popular: bool = False
    legacy: bool = False

    @property
    def has_all_tools(self) -> bool:
        return self.tool_set == ALL_TOOLS

    @property
    def purchasable(self) -> bool:
        return self.price > 0 and not self.legacy

    def allows(self, tool_id: str) -> bool:
        return self.has_all_tools or tool_id in self.tool_set


@dataclass(frozen=True)
class ToolSpec:
    tool_id: str
    display_name: str
    category: str
    complex: bool = False


TOOL_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    'preparation': ('symptomPro', 'appointmentPlanner', 'agendaDesigner', 'storyShaper', 'resumeBuilder'),
    'communication': ('conversationFramer', 'promptPro', 'promptCoach', 'resetPro', 'careMapper'),
    'advocacy': ('appealBuilder', 'rightsBuilder', 'actionTracker'),
    'analytics': ('trendTrack', 'triageTrack', 'providerMatch', 'peerMatch'),
    'accessibility': ('accessPro', 'strategyCoach'),
}

COMPLEX_TOOLS = frozenset({'resetPro', 'appealBuilder', 'triageTrack', 'promptCoach', 'strategyCoach'})

_DISPLAY_NAMES = {
    'symptomPro': 'SymptomPro',
    'appointmentPlanner': 'Appointment Planner',
    'agendaDesigner': 'Agenda Designer',
    'storyShaper': 'Story Shaper',
    'resumeBuilder': 'Medical Resume Builder',
    'conversationFramer': 'Conversation Framer',
    'promptPro': 'PromptPro',
    'promptCoach': 'PromptCoach',
    'resetPro': 'ResetPro',
    'careMapper': 'Care Mapper',
    'appealBuilder': 'Appeal Builder',
    'rightsBuilder': 'Rights Builder',
    'actionTracker': 'Action Tracker',
    'trendTrack': 'TrendTrack',
    'triageTrack': 'TriageTrack',
    'providerMatch': 'Provider Match',
    'peerMatch': 'Peer Match',
    'accessPro': 'AccessPro',
    'strategyCoach': 'Strategy Coach',
}

TOOLS: Dict[str, ToolSpec] = {
    tool_id: ToolSpec(
        tool_id=tool_id,
        display_name=_DISPLAY_NAMES.get(tool_id, tool_id),
        category=category,
        complex=tool_id in COMPLEX_TOOLS,
    )
    for category, tool_ids in TOOL_CATEGORIES.items()
    for tool_id in tool_ids
}

_ESSENTIAL_TOOLS = (
    'symptomPro',
    'appointmentPlanner',
    'agendaDesigner',
    'actionTracker',
    'storyShaper',
    'conversationFramer',
)
_PROFESSIONAL_TOOLS = _ESSENTIAL_TOOLS + (
    'resumeBuilder',
    'careMapper',
    'appealBuilder',
    'rightsBuilder',
    'promptPro',
    'resetPro',
)
_CLINIC_STARTER_TOOLS = (
    'providerMatch',
    'trendTrack',
    'triageTrack',
    'promptCoach',
    'strategyCoach',
    'accessPro',
)
_CLINIC_PRO_TOOLS = _CLINIC_STARTER_TOOLS + (
    'peerMatch',
    'resetPro',
    'appealBuilder',
    'rightsBuilder',
    'symptomPro',
    'promptPro',
)

TIERS: Tuple[Tier, ...] = (
    Tier(
        name='free',
        display_name='Free Trial',
        tool_set=frozenset({'symptomPro'}),
        limits=TierLimits(hourly=1, daily=3, monthly=20, complex_daily=0),
        price=0,
        description='One flagship tool to try PatientLead+',
    ),
    Tier(
        name='essential',
        display_name='Essential',
        tool_set=frozenset(_ESSENTIAL_TOOLS),
        limits=TierLimits(hourly=10, daily=40, monthly=1200, complex_daily=5),
        price=29,
        annual_price=23,
        trial_days=7,
        description='Core advocacy tools for appointment success',
    ),
    Tier(
        name='professional',
        display_name='Professional',
        tool_set=frozenset(_PROFESSIONAL_TOOLS),
        limits=TierLimits(hourly=20, daily=100, monthly=3000, complex_daily=20),
        price=49,
        annual_price=39,
        trial_days=14,
        description='Advanced tools for complex healthcare journeys',
        popular=True,
    ),
    Tier(
        name='powerUser',
        display_name='Power User',
        tool_set=ALL_TOOLS,
        limits=TierLimits(hourly=50, daily=250, monthly=7500, complex_daily=50),
        price=79,
        annual_price=63,
        trial_days=14,
        feature_flags=frozenset({'earlyAccess', 'advancedAnalytics', 'prioritySupport'}),
        description='Unlimited access for healthcare power users',
    ),
    Tier(
        name='clinicStarter',
        display_name='Clinic Starter',
        tool_set=frozenset(_CLINIC_STARTER_TOOLS),
        limits=TierLimits(hourly=100, daily=500, monthly=15000, complex_daily=100),
        price=199,
        annual_price=159,
        seat_count=5,
        trial_days=30,
        feature_flags=frozenset({'teamAnalytics', 'basicReporting'}),
        description='Essential provider tools for small practices',
    ),
    Tier(
        name='clinicPro',
        display_name='Clinic Pro',
        tool_set=frozenset(_CLINIC_PRO_TOOLS),
        limits=TierLimits(hourly=200, daily=1000, monthly=30000, complex_daily=200),
        price=399,
        annual_price=319,
        seat_count=15,
        trial_days=30,
        feature_flags=frozenset({'teamAnalytics', 'advancedReporting', 'populationHealth', 'careGapAnalysis', 'hipaaTools'}),
        description='Complete toolkit for healthcare teams',
    ),
    Tier(
        name='enterprise',
        display_name='Enterprise',
        tool_set=ALL_TOOLS,
        limits=TierLimits(hourly=UNLIMITED, daily=UNLIMITED, monthly=UNLIMITED, complex_daily=UNLIMITED),
        price=799,
        annual_price=639,
        seat_count=UNLIMITED,
        trial_days=30,
        feature_flags=frozenset({
            'unlimitedSeats',
            'api',
            'whiteLabel',
            'customIntegration',
            'dedicatedSupport',
            'customReporting',
            'sso',
            'auditLogs',
            'sla',
        }),
        description='Unlimited access with enterprise features',
    ),
    Tier(
        name='grandfathered',
        display_name='Early Adopter',
        tool_set=frozenset(_PROFESSIONAL_TOOLS),
        limits=TierLimits(hourly=30, daily=150, monthly=4500, complex_daily=30),
        price=37,
        annual_price=29,
        feature_flags=frozenset({'earlyAccess', 'grandfatheredPricing'}),
        description='Lifetime discount for our early supporters',
        legacy=True,
    ),
)

TIERS_BY_NAME: Dict[str, Tier] = {tier.name: tier for tier in TIERS}

# Upgrade candidates: cheapest first, ties broken by declaration order.
UPGRADE_ORDER: Tuple[Tier, ...] = tuple(
    tier for _, tier in sorted(
        ((index, tier) for index, tier in enumerate(TIERS) if not tier.legacy),
        key=lambda item: (item[1].price, item[0]),
    )
)

FEATURE_LABELS = {
    'earlyAccess': 'Early access to new tools',
    'advancedAnalytics': 'Advanced analytics dashboard',
    'prioritySupport': 'Priority support',
    'teamAnalytics': 'Team usage analytics',
    'basicReporting': 'Basic reporting',
    'advancedReporting': 'Advanced reporting',
    'populationHealth': 'Population health insights',
    'careGapAnalysis': 'Care gap analysis',
    'hipaaTools': 'HIPAA compliance tools',
    'api': 'API access',
    'whiteLabel': 'White-label options',
    'customIntegration': 'Custom integrations',
    'sso': 'Single sign-on (SSO)',
    'auditLogs': 'Audit logs',
    'sla': 'Service level agreement',
}


def validate_catalog(tiers=TIERS, tools=TOOLS, complex_tools=COMPLEX_TOOLS) -> None:
    """Raise CatalogError on dangling or unreachable tool ids."""
    names = [tier.name for tier in tiers]
    if len(names) != len(set(names)):
        raise CatalogError('Duplicate tier names in catalog.')
    if DEFAULT_TIER not in names:
        raise CatalogError(f"Default tier '{DEFAULT_TIER}' is not declared.")

    reachable = set()
    for tier in tiers:
        if tier.tool_set == ALL_TOOLS:
            reachable.update(tools)
            continue
        dangling = sorted(set(tier.tool_set) - set(tools))
        if dangling:
            raise CatalogError(f"Tier '{tier.name}' references unknown tools: {', '.join(dangling)}")
        reachable.update(tier.tool_set)

    unknown_complex = sorted(set(complex_tools) - set(tools))
    if unknown_complex:
        raise CatalogError(f"Complex tool list references unknown tools: {', '.join(unknown_complex)}")

    unreachable = sorted(set(tools) - reachable)
    if unreachable:
        raise CatalogError(f"Tools not granted by any tier: {', '.join(unreachable)}")


def get_tier(name) -> Optional[Tier]:
    return TIERS_BY_NAME.get(str(name or '').strip())


def get_tool(tool_id) -> Optional[ToolSpec]:
    return TOOLS.get(str(tool_id or '').strip())


def is_complex_tool(tool_id) -> bool:
    return tool_id in COMPLEX_TOOLS


def tools_for_tier(tier_name) -> List[str]:
    tier = get_tier(tier_name)
    if tier is None:
        return []
    if tier.has_all_tools:
        return list(TOOLS)
    return [tool_id for tool_id in TOOLS if tool_id in tier.tool_set]


def find_minimum_tier(tool_id) -> Optional[Tier]:
    for tier in UPGRADE_ORDER:
        if tier.allows(tool_id):
            return tier
    return None


def _tool_count(tier):
    return 'unlimited' if tier.has_all_tools else len(tier.tool_set)


def get_tier_comparison(current_tier_name, tool_id):
    current = get_tier(current_tier_name) or TIERS_BY_NAME[DEFAULT_TIER]
    required = find_minimum_tier(tool_id)
    if required is None:
        return None
    if current.has_all_tools or required.has_all_tools:
        additional_tools = []
    else:
        additional_tools = [t for t in TOOLS if t in required.tool_set and t not in current.tool_set]
    return {
        'current': {
            'name': current.display_name,
            'tools': _tool_count(current),
            'daily_limit': current.limits.daily,
            'price': current.price,
        },
        'required': {
            'name': required.display_name,
            'tools': _tool_count(required),
            'daily_limit': required.limits.daily,
            'price': required.price,
            'features': sorted(required.feature_flags),
        },
        'upgrade': {
            'additional_tools': additional_tools,
            'additional_daily_analyses': required.limits.daily - current.limits.daily,
            'price_difference': required.price - current.price,
        },
    }


def get_tier_benefits(tier_name) -> List[str]:
    tier = get_tier(tier_name)
    if tier is None:
        return []
    benefits = []
    if tier.has_all_tools:
        benefits.append('Access to ALL tools')
    else:
        benefits.append(f'{len(tier.tool_set)} professional tools')
    if tier.limits.daily == UNLIMITED:
        benefits.append('Unlimited daily analyses')
    else:
        benefits.append(f'{tier.limits.daily} analyses per day')
    if tier.seat_count == UNLIMITED:
        benefits.append('Unlimited team seats')
    elif tier.seat_count:
        benefits.append(f'{tier.seat_count} team seats included')
    for flag in sorted(tier.feature_flags):
        label = FEATURE_LABELS.get(flag)
        if label:
            benefits.append(label)
    return benefits


def public_tier_payload(tier: Tier):
    return {
        'name': tier.name,
        'display_name': tier.display_name,
        'description': tier.description,
        'price': tier.price,
        'annual_price': tier.annual_price,
        'trial_days': tier.trial_days,
        'seats': tier.seat_count,
        'popular': tier.popular,
        'limits': tier.limits.to_dict(),
        'tools': tools_for_tier(tier.name),
        'benefits': get_tier_benefits(tier.name),
    }
