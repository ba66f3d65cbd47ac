import pytest

from patientlead.services import prompt_registry, tool_schemas


SAMPLE_PAYLOADS = {
    'symptomPro': {
        'symptoms': {'chief_complaint': 'headache', 'onset': 'last month'},
        'context': {'history': 'migraine', 'impact': 'missing work'},
        'tone': 'friendly',
    },
    'resetPro': {
        'thread': [
            {'role': 'provider', 'text': 'You are just anxious.'},
            {'role': 'patient', 'text': 'I would like that documented accurately.'},
        ],
        'context': {'visit_date': '2026-10-01'},
    },
    'promptCoach': {
        'thread': [{'role': 'patient', 'text': 'I keep fainting when I stand.'}],
        'mode': 'practice',
        'persona': 'specialist_thorough',
        'coaching_level': 'deep',
        'context': {'conditions': 'POTS, EDS'},
    },
    'promptPro': {
        'symptoms': 'Dizzy when standing.',
        'visit_time_min': 15,
        'context': {'conditions': ['POTS'], 'pack': 'pots'},
        'ui_prefs': {'brain_fog_mode': True},
    },
    'trendTrack': {
        'records': [{'date': '2024-01-01', 'symptom': 'fatigue', 'severity': 6}],
    },
    'accessPro': {
        'text': 'Take one tablet by mouth twice daily.',
        'target_language': 'Spanish',
        'simplify': True,
    },
}


def test_every_tool_has_a_sample_payload():
    assert set(SAMPLE_PAYLOADS) == set(tool_schemas.TOOL_DEFINITIONS)


@pytest.mark.parametrize("tool_id", sorted(SAMPLE_PAYLOADS))
def test_prompt_builders_fill_every_placeholder(tool_id):
    definition = tool_schemas.get_tool_definition(tool_id)
    inputs = definition.validate(SAMPLE_PAYLOADS[tool_id])

    request = definition.build_prompt(inputs)

    assert request.prompt_text.strip()
    for text in (request.prompt_text, request.system_text or ''):
        assert 'Not specified}' not in text
        assert '{tone}' not in text
        assert '{{' not in text


def test_symptom_prompt_carries_tone_rule():
    definition = tool_schemas.get_tool_definition('symptomPro')
    request = definition.build_prompt(definition.validate(SAMPLE_PAYLOADS['symptomPro']))

    assert tool_schemas.TONE_RULES['friendly'] in request.prompt_text
    assert request.system_text.endswith('friendly.')


def test_coach_prompt_names_persona_and_coaching_level():
    definition = tool_schemas.get_tool_definition('promptCoach')
    request = definition.build_prompt(definition.validate(SAMPLE_PAYLOADS['promptCoach']))

    assert tool_schemas.COACH_PERSONAS['specialist_thorough'] in request.system_text
    assert 'POTS, EDS' in request.prompt_text


def test_inventory_lists_each_template_once():
    inventory = prompt_registry.get_prompt_inventory()

    ids = [entry['id'] for entry in inventory]
    assert len(ids) == len(set(ids))
    assert all(entry['version'] == prompt_registry.PROMPT_REGISTRY_VERSION for entry in inventory)
    assert prompt_registry.get_prompt_template('trend_analysis') == prompt_registry.PROMPT_TREND_ANALYSIS


def test_unknown_prompt_id_raises():
    with pytest.raises(KeyError):
        prompt_registry.get_prompt_template('missing')
