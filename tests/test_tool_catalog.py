import pytest

from patientlead.errors import CatalogError
from patientlead.services import tool_catalog
from patientlead.services.entitlement_service import EntitlementResolver
from patientlead.services.tool_catalog import Tier, TierLimits


_LIMITS = TierLimits(hourly=1, daily=1, monthly=1, complex_daily=0)

_ESSENTIAL = {'symptomPro', 'appointmentPlanner', 'agendaDesigner', 'actionTracker', 'storyShaper', 'conversationFramer'}
_PROFESSIONAL = _ESSENTIAL | {'resumeBuilder', 'careMapper', 'appealBuilder', 'rightsBuilder', 'promptPro', 'resetPro'}
_CLINIC_STARTER = {'providerMatch', 'trendTrack', 'triageTrack', 'promptCoach', 'strategyCoach', 'accessPro'}
_CLINIC_PRO = _CLINIC_STARTER | {'peerMatch', 'resetPro', 'appealBuilder', 'rightsBuilder', 'symptomPro', 'promptPro'}
GRANTED_TOOLS = {
    'free': {'symptomPro'},
    'essential': _ESSENTIAL,
    'professional': _PROFESSIONAL,
    'powerUser': set(tool_catalog.TOOLS),
    'clinicStarter': _CLINIC_STARTER,
    'clinicPro': _CLINIC_PRO,
    'enterprise': set(tool_catalog.TOOLS),
    'grandfathered': _PROFESSIONAL,
}


def test_shipped_catalog_is_closed():
    tool_catalog.validate_catalog()


def test_catalog_rejects_dangling_tool_reference():
    tiers = (Tier('free', 'Free', frozenset({'symptomPro', 'ghostTool'}), _LIMITS, 0),)

    with pytest.raises(CatalogError, match='ghostTool'):
        tool_catalog.validate_catalog(tiers, {'symptomPro': None}, frozenset())


def test_catalog_rejects_unreachable_tool():
    tiers = (Tier('free', 'Free', frozenset({'symptomPro'}), _LIMITS, 0),)

    with pytest.raises(CatalogError, match='orphanTool'):
        tool_catalog.validate_catalog(tiers, {'symptomPro': None, 'orphanTool': None}, frozenset())


def test_catalog_requires_default_tier():
    tiers = (Tier('basic', 'Basic', tool_catalog.ALL_TOOLS, _LIMITS, 5),)

    with pytest.raises(CatalogError):
        tool_catalog.validate_catalog(tiers, {'symptomPro': None}, frozenset())


def test_exhaustive_tier_tool_access_table():
    assert set(GRANTED_TOOLS) == set(tool_catalog.TIERS_BY_NAME)
    for tier_name, granted in GRANTED_TOOLS.items():
        resolver = EntitlementResolver(lambda _uid, name=tier_name: name)
        for tool_id in tool_catalog.TOOLS:
            decision = resolver.resolve('u1', tool_id)
            assert decision.tier == tier_name
            assert decision.allowed is (tool_id in granted), (tier_name, tool_id)
            if not decision.allowed:
                assert decision.reason_code == 'tier_required'
                assert decision.required_tier == tool_catalog.find_minimum_tier(tool_id).name


def test_free_tier_grants_only_symptom_pro():
    free = tool_catalog.get_tier('free')

    assert free.display_name == 'Free Trial'
    assert tool_catalog.tools_for_tier('free') == ['symptomPro']
    assert free.limits.complex_daily == 0


def test_minimum_tier_prefers_cheapest_non_legacy():
    assert tool_catalog.find_minimum_tier('symptomPro').name == 'free'
    assert tool_catalog.find_minimum_tier('appointmentPlanner').name == 'essential'
    assert tool_catalog.find_minimum_tier('resetPro').name == 'professional'
    assert tool_catalog.find_minimum_tier('promptCoach').name == 'powerUser'
    assert tool_catalog.find_minimum_tier('providerMatch').name == 'powerUser'
    assert tool_catalog.find_minimum_tier('unknownTool') is None


def test_legacy_tier_is_not_an_upgrade_target():
    assert 'grandfathered' not in [tier.name for tier in tool_catalog.UPGRADE_ORDER]
    assert not tool_catalog.get_tier('grandfathered').purchasable


def test_tier_comparison_lists_additional_tools():
    comparison = tool_catalog.get_tier_comparison('essential', 'resetPro')

    assert comparison['current']['name'] == 'Essential'
    assert comparison['required']['name'] == 'Professional'
    assert 'resetPro' in comparison['upgrade']['additional_tools']
    assert 'symptomPro' not in comparison['upgrade']['additional_tools']
    assert comparison['upgrade']['price_difference'] == 20


def test_tier_benefits_are_human_readable():
    benefits = tool_catalog.get_tier_benefits('enterprise')

    assert benefits[0] == 'Access to ALL tools'
    assert 'Unlimited daily analyses' in benefits
    assert 'Unlimited team seats' in benefits
    assert 'Single sign-on (SSO)' in benefits
