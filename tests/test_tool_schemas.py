import pytest

from patientlead.errors import InputValidationError
from patientlead.services import tool_schemas


def test_symptom_summary_requires_symptoms_object():
    with pytest.raises(InputValidationError) as excinfo:
        tool_schemas.validate_symptom_summary({'symptoms': 'headache'})

    assert excinfo.value.field == 'symptoms'


def test_symptom_summary_drops_blank_fields_and_defaults_tone():
    inputs = tool_schemas.validate_symptom_summary({
        'symptoms': {'chief_complaint': ' headache ', 'onset': '', 'severity': 7},
        'context': {'meds': 'ibuprofen'},
        'tone': 'sarcastic',
    })

    assert inputs == {
        'symptoms': {'chief_complaint': 'headache', 'severity': '7'},
        'context': {'medications': 'ibuprofen'},
        'tone': 'professional',
    }


def test_clean_thread_accepts_speaker_alias_and_drops_malformed():
    thread = tool_schemas.clean_thread([
        {'speaker': 'Provider', 'text': 'It is just stress.'},
        {'role': 'nurse', 'text': 'ignored'},
        {'role': 'patient', 'text': '   '},
        'not a message',
        {'role': 'patient', 'text': 'I disagree.'},
    ])

    assert thread == [
        {'role': 'provider', 'text': 'It is just stress.'},
        {'role': 'patient', 'text': 'I disagree.'},
    ]


def test_coach_turn_rejects_unknown_mode():
    with pytest.raises(InputValidationError) as excinfo:
        tool_schemas.validate_coach_turn({'thread': [{'role': 'patient', 'text': 'hi'}], 'mode': 'freestyle'})

    assert excinfo.value.field == 'mode'


def test_coach_turn_clamps_visit_time_and_rejects_non_numbers():
    thread = [{'role': 'patient', 'text': 'hi'}]

    assert tool_schemas.validate_coach_turn({'thread': thread, 'visit_time': 100})['visit_time'] == 60
    assert tool_schemas.validate_coach_turn({'thread': thread, 'visit_time': 1})['visit_time'] == 5
    with pytest.raises(InputValidationError):
        tool_schemas.validate_coach_turn({'thread': thread, 'visit_time': 'soon'})


def test_core_question_budget_has_a_floor():
    assert tool_schemas.core_question_budget(10) == 15
    assert tool_schemas.core_question_budget(5) == 6


def test_ranking_trims_each_block():
    plan = {
        'priority_blocks': {
            'intro_90s': [{'id': f'i{i}'} for i in range(4)],
            'core_5min': [{'id': f'c{i}'} for i in range(20)],
            'close_60s': [{'id': f'x{i}'} for i in range(3)],
        },
    }

    ranked = tool_schemas.apply_ranking(plan, 5)

    assert len(ranked['priority_blocks']['intro_90s']) == 2
    assert len(ranked['priority_blocks']['core_5min']) == 6
    assert len(ranked['priority_blocks']['close_60s']) == 2
    assert len(plan['priority_blocks']['core_5min']) == 20


def test_question_plan_rejects_unknown_pack():
    with pytest.raises(InputValidationError) as excinfo:
        tool_schemas.validate_question_plan({'symptoms': 'dizzy', 'context': {'pack': 'ghost'}})

    assert excinfo.value.field == 'context.pack'


def test_question_plan_finalize_appends_pack_after_ranking():
    inputs = tool_schemas.validate_question_plan({'symptoms': 'dizzy', 'context': {'pack': 'MCAS'}})
    data = {'priority_blocks': {'intro_90s': [], 'core_5min': [{'id': 'c1'}], 'close_60s': []}}

    plan = tool_schemas.finalize_question_plan(data, inputs)

    assert [q['id'] for q in plan['priority_blocks']['core_5min']] == ['c1', 'mcas1']
    assert plan['pack_used'] == 'mcas'
    assert plan['safety_banner'] == tool_schemas.SAFETY_BANNER


def test_trend_records_are_bounded_and_parsed():
    with pytest.raises(InputValidationError):
        tool_schemas.validate_trend_records({'records': []})
    with pytest.raises(InputValidationError):
        tool_schemas.validate_trend_records({'records': [{}] * (tool_schemas.MAX_TREND_RECORDS + 1)})

    inputs = tool_schemas.validate_trend_records({
        'records': [{'date': '2024-01-01', 'symptom': 'Fatigue', 'severity': 'high'}, 'junk'],
    })

    assert inputs['records'] == [{'date': '2024-01-01', 'symptom': 'fatigue', 'severity': None, 'notes': ''}]


def test_trend_finalize_fills_missing_aggregates():
    inputs = {'records': [{'date': '2024-01-01', 'symptom': 'fatigue', 'severity': 3.0}]}

    result = tool_schemas.finalize_trend_analysis({'insights': [], 'aggregates': {}}, inputs)

    assert result['aggregates']['by_date'][0]['avg_severity'] == 3.0


def test_parse_severity_rejects_non_numbers():
    assert tool_schemas.parse_severity('7.5') == 7.5
    assert tool_schemas.parse_severity(True) is None
    assert tool_schemas.parse_severity('nan') is None
    assert tool_schemas.parse_severity(None) is None


def test_access_finalize_respects_simplify_flag():
    plain = tool_schemas.finalize_access_transform(
        {'transcript': '', 'translation': 'Hola', 'simplified': 'extra'},
        {'text': 'Hello', 'simplify': False},
    )
    simple = tool_schemas.finalize_access_transform(
        {'transcript': 'Hello', 'translation': 'Hola', 'simplified': ''},
        {'text': 'Hello', 'simplify': True},
    )

    assert plain == {'transcript': 'Hello', 'translation': 'Hola', 'simplified': ''}
    assert simple['simplified'] == 'Hola'


def test_coach_finalize_keeps_or_creates_session_id():
    inputs = {'mode': 'practice', 'thread': [], 'visit_time': 10, 'session_id': 'abc'}

    assert tool_schemas.finalize_coach_turn({}, inputs)['session_id'] == 'abc'
    generated = tool_schemas.finalize_coach_turn({}, dict(inputs, session_id=''))['session_id']
    assert len(generated) == 32


def test_unknown_tool_has_no_definition():
    assert tool_schemas.get_tool_definition('ghostTool') is None
    assert tool_schemas.get_response_schema(None) is None


def test_symptom_summary_accepts_camel_case_aliases():
    inputs = tool_schemas.validate_symptom_summary({'symptoms': {'primarySymptom': 'dizziness'}})

    assert inputs['symptoms'] == {'primary_symptom': 'dizziness'}
