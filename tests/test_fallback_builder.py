import json

import pytest

from patientlead.services import tool_schemas
from patientlead.services.fallback_builder import (
    COACH_FALLBACK_LINES,
    EMPTY_SYMPTOM_MESSAGE,
    build_fallback,
    clip_words,
)


ALL_TOOL_IDS = sorted(tool_schemas.TOOL_DEFINITIONS)


@pytest.mark.parametrize("tool_id", ALL_TOOL_IDS)
def test_fallback_is_deterministic_and_schema_shaped(tool_id):
    inputs = {'today': '2026-10-19'}

    first = build_fallback(tool_id, inputs)
    second = build_fallback(tool_id, inputs)

    assert first.data == second.data
    assert first.outcome == 'fallback'
    assert set(first.data) >= set(tool_schemas.get_response_schema(tool_id).keys)


@pytest.mark.parametrize("tool_id", ALL_TOOL_IDS)
def test_fallback_never_renders_missing_values_as_text(tool_id):
    result = build_fallback(tool_id, {})

    rendered = json.dumps(result.data)
    assert 'None' not in rendered
    assert 'undefined' not in rendered


def test_unknown_tool_has_no_fallback():
    with pytest.raises(KeyError):
        build_fallback('ghostTool', {})


def test_clip_words_never_splits_a_word():
    assert clip_words('alpha beta gamma', 10) == 'alpha beta'
    assert clip_words('alpha beta gamma', 8) == 'alpha'
    assert clip_words('abcdefghij', 4) == 'abcd'
    assert clip_words('short', 50) == 'short'
    assert clip_words(None, 10) == ''


def test_symptom_narrative_uses_only_provided_fields():
    result = build_fallback('symptomPro', {
        'symptoms': {'chief_complaint': 'headache', 'onset': 'two weeks ago', 'severity': '7/10'},
    })

    assert result.data['clinical'] == (
        'I have been experiencing headache that started two weeks ago. The severity is 7/10.'
    )
    assert result.data['referral'] == result.data['clinical']
    assert len(result.data['emergency']) <= 150


def test_empty_symptoms_yield_prompt_to_describe():
    result = build_fallback('symptomPro', {'symptoms': {}})

    assert result.data['clinical'] == EMPTY_SYMPTOM_MESSAGE
    assert result.data['portal'] == EMPTY_SYMPTOM_MESSAGE


def test_reset_letters_cover_three_tones_and_use_given_date():
    inputs = {
        'thread': [
            {'role': 'provider', 'text': 'It is probably just stress.'},
            {'role': 'patient', 'text': 'The record says I refused testing, which is not accurate.'},
        ],
        'today': '2026-10-19',
    }

    result = build_fallback('resetPro', inputs)

    options = result.data['response_options']
    assert [option['tone'] for option in options] == ['neutral', 'firm', 'escalation']
    assert 'which is not accurate' in options[0]['text']
    assert 'dated 2026-10-19' in options[1]['text']
    assert result.data['doc_note']['date'] == '2026-10-19'


def test_reset_letters_prefer_visit_date_and_fall_back_to_marker():
    dated = build_fallback('resetPro', {'context': {'visit_date': '2026-09-01'}, 'today': '2026-10-19'})
    undated = build_fallback('resetPro', {})

    assert 'dated 2026-09-01' in dated.data['response_options'][1]['text']
    assert 'dated [Date]' in undated.data['response_options'][1]['text']
    assert undated.data['doc_note']['date'] == ''


def test_coach_line_follows_persona_and_thread_length():
    thread = [
        {'role': 'patient', 'text': 'I have had dizziness for months.'},
        {'role': 'provider', 'text': 'Have you been drinking enough water?'},
    ]

    result = build_fallback('promptCoach', {'thread': thread, 'persona': 'gatekeeper'})

    assert result.data['provider_response'] == COACH_FALLBACK_LINES['gatekeeper'][2]
    assert result.data['appointment_progress']['minutes_elapsed'] == 4
    assert result.data['appointment_progress']['minutes_remaining'] == 6
    assert 'debrief' not in result.data


def test_coach_unknown_persona_uses_default_and_long_thread_uses_last_line():
    thread = [{'role': 'patient', 'text': f'turn {i}'} for i in range(9)]

    result = build_fallback('promptCoach', {'thread': thread, 'persona': 'ghost'})

    assert result.data['provider_response'] == COACH_FALLBACK_LINES['pcp_rushed'][-1]


def test_coach_debrief_mode_adds_report():
    thread = [
        {'role': 'patient', 'text': 'My main concern is fainting.'},
        {'role': 'provider', 'text': 'Let us check your vitals.'},
    ]

    result = build_fallback('promptCoach', {'thread': thread, 'mode': 'debrief', 'visit_time': 15})

    assert result.data['debrief']['summary'] == {
        'total_exchanges': 2,
        'patient_turns': 1,
        'provider_turns': 1,
        'estimated_duration': '4 minutes',
    }


def test_question_plan_fallback_has_generic_questions():
    result = build_fallback('promptPro', {'symptoms': 'Dizzy when standing. Worse after meals.'})

    blocks = result.data['priority_blocks']
    assert [q['id'] for q in blocks['intro_90s'] + blocks['core_5min'] + blocks['close_60s']] == [
        'fb1', 'fb2', 'fb3', 'fb4',
    ]
    assert result.data['opener'].startswith("I'm experiencing Dizzy when standing.")
    assert result.data['metadata']['model'] == 'fallback'


def test_trend_fallback_computes_aggregates_from_records():
    records = [
        {'date': '2024-01-01', 'symptom': 'Fatigue', 'severity': '6'},
        {'date': '2024-01-01', 'symptom': 'fatigue', 'severity': 4},
        {'date': '2024-01-02', 'symptom': 'headache', 'severity': None},
    ]

    result = build_fallback('trendTrack', {'records': records})

    aggregates = result.data['aggregates']
    assert aggregates['by_date'] == [
        {'date': '2024-01-01', 'avg_severity': 5.0, 'counts': {'fatigue': 2}},
        {'date': '2024-01-02', 'avg_severity': None, 'counts': {'headache': 1}},
    ]
    assert [row['symptom'] for row in aggregates['top_symptoms']] == ['fatigue', 'headache']
    assert '3 records' in result.data['insights'][0]


def test_access_fallback_echoes_source_text():
    result = build_fallback('accessPro', {'text': 'Take one tablet daily.', 'simplify': True})

    assert result.data == {
        'transcript': 'Take one tablet daily.',
        'translation': '',
        'simplified': 'Take one tablet daily.',
    }
