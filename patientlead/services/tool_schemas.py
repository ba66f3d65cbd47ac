"""Declarative table of runnable tools.

Each ``ToolDefinition`` bundles the response schema consumed by the
normalizer, an input validator, a prompt builder and a finalizer that applies
tool-specific post-processing to normalized (or fallback) data.
"""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from patientlead.errors import InputValidationError
from patientlead.services import prompt_registry
from patientlead.services.response_normalizer import FieldSpec, ResponseSchema


MAX_THREAD_MESSAGES = 50
MAX_TREND_RECORDS = 500
MAX_FIELD_CHARS = 2000
MAX_TEXT_CHARS = 20000
NOT_SPECIFIED = 'Not specified'

SUMMARY_TONES = ('professional', 'friendly', 'direct', 'detailed')
TONE_RULES = {
    'professional': 'Use formal, clear language.',
    'friendly': 'Use warm, conversational language while remaining clear.',
    'direct': 'Be concise and straightforward and avoid extra words.',
    'detailed': 'Include all available information with thorough descriptions.',
}

COACH_MODES = ('practice', 'simulate', 'live', 'debrief')
COACH_PERSONAS = {
    'pcp_rushed': "Primary care doctor running 45 minutes behind with 7 minutes for this visit. Interrupts often and defaults to 'wait and see', suggesting anxiety or lifestyle changes before testing.",
    'specialist_thorough': 'Subspecialist who asks detailed questions and takes methodical notes, but is bound by insurance criteria and institutional protocols. Open to discussion but needs evidence.',
    'gatekeeper': "Provider who strictly follows guidelines, often cites insurance requirements, is defensive about referrals and minimizes symptoms that don't fit clear criteria.",
    'kind_dismissive': "Warm, caring doctor who unconsciously minimizes chronic or invisible illness, with phrases like 'you look healthy' and 'have you tried yoga?'",
}
DEFAULT_PERSONA = 'pcp_rushed'
COACHING_LEVELS = ('light', 'deep')
COACHING_INSTRUCTIONS = {
    'deep': """Provide DETAILED coaching with:
- Specific rewrites with exact phrasing
- Notes on pace, pauses and emphasis
- Nonverbal communication tips
- Evidence integration strategies
- Alternative approaches if the first attempt fails
- Rights-based language when appropriate""",
    'light': """Provide LIGHT coaching with:
- Two or three simple, actionable tips
- One suggested rephrase if needed
- A basic timing reminder
- A single follow-up question to ask""",
}

QUESTION_PACKS = {
    'pots': [
        {
            'id': 'pots1',
            'text': 'Can we capture orthostatic vitals today and repeat if borderline?',
            'why': 'Documents objective change and guides next steps',
            'category': 'diagnostic_clarity',
            'priority': 1,
            'ask_time_sec': 30,
            'citation_ids': ['c_pots1'],
            'bias_safe': True,
        },
        {
            'id': 'pots2',
            'text': 'What non-pharmacological strategies should I try first, and how long before expecting improvement?',
            'why': 'Establishes conservative management timeline',
            'category': 'treatment_options',
            'priority': 2,
            'ask_time_sec': 25,
            'citation_ids': ['c_pots2'],
            'bias_safe': True,
        },
    ],
    'heds': [
        {
            'id': 'heds1',
            'text': 'Which joints show hypermobility on Beighton scoring, and should we document this today?',
            'why': 'Objective criteria for diagnosis',
            'category': 'diagnostic_clarity',
            'priority': 1,
            'ask_time_sec': 40,
            'citation_ids': ['c_heds1'],
            'bias_safe': True,
        },
    ],
    'mcas': [
        {
            'id': 'mcas1',
            'text': 'What baseline tryptase level would suggest mast cell involvement, and when should we test?',
            'why': 'Establishes diagnostic threshold',
            'category': 'testing',
            'priority': 1,
            'ask_time_sec': 25,
            'citation_ids': ['c_mcas1'],
            'bias_safe': True,
        },
    ],
    'long-covid': [
        {
            'id': 'lc1',
            'text': 'Which post-COVID symptoms meet criteria for a long COVID diagnosis, and what documentation do we need?',
            'why': 'Ensures proper coding and treatment access',
            'category': 'diagnostic_clarity',
            'priority': 1,
            'ask_time_sec': 30,
            'citation_ids': ['c_lc1'],
            'bias_safe': True,
        },
    ],
}

SAFETY_BANNER = 'Communication support only. No diagnosis or treatment advice.'

INTRO_BUDGET_SECONDS = 90
CLOSE_BUDGET_SECONDS = 60
MIN_CORE_BUDGET_SECONDS = 180
SECONDS_PER_CORE_QUESTION = 30
MAX_INTRO_QUESTIONS = 2
MAX_CLOSE_QUESTIONS = 2


@dataclass(frozen=True)
class PromptRequest:
    prompt_text: str
    system_text: Optional[str] = None


@dataclass(frozen=True)
class ToolDefinition:
    tool_id: str
    schema: ResponseSchema
    validate: Callable[[Dict[str, Any]], Dict[str, Any]]
    build_prompt: Callable[[Dict[str, Any]], PromptRequest]
    finalize: Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]
    max_output_tokens: int = 2000
    temperature: float = 0.4


# --- input helpers ---

def _clean_text(value, max_chars=MAX_FIELD_CHARS):
    if value is None or isinstance(value, (dict, list)):
        return ''
    return str(value).strip()[:max_chars]


def _clean_str_list(value, max_items=20, max_chars=200):
    if isinstance(value, str):
        value = [part for part in value.split(',')]
    if not isinstance(value, list):
        return []
    cleaned = [_clean_text(item, max_chars) for item in value]
    return [item for item in cleaned if item][:max_items]


def _clean_dict(value, field_name):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InputValidationError(f"'{field_name}' must be an object.", field=field_name)
    return value


def _bounded_int(value, default, minimum, maximum, field_name):
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise InputValidationError(f"'{field_name}' must be a number.", field=field_name)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InputValidationError(f"'{field_name}' must be a number.", field=field_name)
    return min(max(number, minimum), maximum)


def clean_thread(raw_thread):
    """Keep well-formed ``{role, text}`` messages; ``speaker`` is accepted as an alias."""
    if not isinstance(raw_thread, list):
        return []
    cleaned = []
    for message in raw_thread:
        if not isinstance(message, dict):
            continue
        role = str(message.get('role') or message.get('speaker') or '').strip().lower()
        text = message.get('text')
        if role not in {'patient', 'provider'} or not isinstance(text, str) or not text.strip():
            continue
        cleaned.append({'role': role, 'text': text.strip()[:MAX_FIELD_CHARS]})
    return cleaned[:MAX_THREAD_MESSAGES]


def format_thread(thread):
    return '\n'.join(f"{message['role'].upper()}: {message['text']}" for message in thread)


def _or_default(value, default=NOT_SPECIFIED):
    return value if value else default


# --- symptomPro ---

SYMPTOM_FIELDS = (
    'chief_complaint',
    'primary_symptom',
    'onset',
    'location',
    'duration',
    'frequency',
    'character',
    'aggravating',
    'worsens',
    'alleviating',
    'improves',
    'radiation',
    'timing',
    'severity',
)
SYMPTOM_ALIASES = {
    'chiefComplaint': 'chief_complaint',
    'primarySymptom': 'primary_symptom',
}


def validate_symptom_summary(payload):
    raw_symptoms = payload.get('symptoms')
    if not isinstance(raw_symptoms, dict):
        raise InputValidationError("Missing 'symptoms' object.", field='symptoms')
    raw_symptoms = dict(raw_symptoms)
    for alias, key in SYMPTOM_ALIASES.items():
        if not raw_symptoms.get(key) and raw_symptoms.get(alias):
            raw_symptoms[key] = raw_symptoms[alias]
    symptoms = {key: _clean_text(raw_symptoms.get(key)) for key in SYMPTOM_FIELDS}
    symptoms = {key: value for key, value in symptoms.items() if value}
    if not symptoms:
        raise InputValidationError('Describe at least one symptom.', field='symptoms')
    raw_context = _clean_dict(payload.get('context'), 'context')
    context = {
        'history': _clean_text(raw_context.get('history')),
        'medications': _clean_text(raw_context.get('medications') or raw_context.get('meds')),
        'impact': _clean_text(raw_context.get('impact')),
    }
    tone = str(payload.get('tone') or 'professional').strip().lower()
    if tone not in SUMMARY_TONES:
        tone = 'professional'
    return {'symptoms': symptoms, 'context': {k: v for k, v in context.items() if v}, 'tone': tone}


def build_symptom_summary_prompt(inputs):
    symptoms = inputs['symptoms']
    context = inputs.get('context', {})
    tone = inputs['tone']
    prompt = prompt_registry.PROMPT_SYMPTOM_SUMMARY.format(
        chief_complaint=_or_default(symptoms.get('chief_complaint') or symptoms.get('primary_symptom')),
        onset=_or_default(symptoms.get('onset')),
        location=_or_default(symptoms.get('location')),
        duration=_or_default(symptoms.get('duration')),
        frequency=_or_default(symptoms.get('frequency')),
        character=_or_default(symptoms.get('character')),
        aggravating=_or_default(symptoms.get('aggravating') or symptoms.get('worsens')),
        alleviating=_or_default(symptoms.get('alleviating') or symptoms.get('improves')),
        radiation=_or_default(symptoms.get('radiation')),
        timing=_or_default(symptoms.get('timing')),
        severity=_or_default(symptoms.get('severity')),
        history=_or_default(context.get('history'), 'Not provided'),
        medications=_or_default(context.get('medications'), 'None listed'),
        impact=_or_default(context.get('impact')),
        tone=tone,
        tone_rule=TONE_RULES[tone],
    )
    return PromptRequest(prompt, prompt_registry.PROMPT_SYMPTOM_SYSTEM.format(tone=tone))


def finalize_symptom_summary(data, inputs):
    return {
        'summaries': data,
        'summary': data['clinical'],
        'tone': inputs['tone'],
    }


SYMPTOM_SUMMARY_SCHEMA = ResponseSchema(
    tool_id='symptomPro',
    container='summaries',
    unstructured_key='clinical',
    fields=(
        FieldSpec('clinical', placeholder='No summary generated.', derive_from=('portal', 'referral', 'emergency', 'summary', 'text')),
        FieldSpec('portal', placeholder='No summary generated.', derive_from=('clinical', 'summary', 'text')),
        FieldSpec('emergency', placeholder='No summary generated.', derive_from=('portal', 'clinical', 'summary', 'text')),
        FieldSpec('referral', placeholder='No summary generated.', derive_from=('clinical', 'summary', 'text')),
    ),
)


# --- resetPro ---

def validate_reset_analysis(payload):
    thread = clean_thread(payload.get('thread'))
    if not thread:
        raise InputValidationError("Provide 'thread' as a list of {role, text} messages.", field='thread')
    raw_context = _clean_dict(payload.get('context'), 'context')
    return {
        'thread': thread,
        'context': {
            'visit_date': _clean_text(raw_context.get('visit_date'), 40),
            'provider': _clean_text(raw_context.get('provider'), 200),
        },
    }


def build_reset_analysis_prompt(inputs):
    context = inputs.get('context', {})
    return PromptRequest(prompt_registry.PROMPT_RESET_ANALYSIS.format(
        thread_text=format_thread(inputs['thread']),
        visit_date=_or_default(context.get('visit_date')),
        provider=_or_default(context.get('provider')),
    ))


def finalize_reset_analysis(data, inputs):
    return data


RESET_ANALYSIS_SCHEMA = ResponseSchema(
    tool_id='resetPro',
    structured_only=True,
    fields=(
        FieldSpec('flags', kind='object', fields=(
            FieldSpec('dismissive_language', kind='list', placeholder=[]),
            FieldSpec('minimization', kind='list', placeholder=[]),
            FieldSpec('credibility_undermining', kind='list', placeholder=[]),
            FieldSpec('boundary_crossing', kind='list', placeholder=[]),
        )),
        FieldSpec('overall_assessment', placeholder='Analysis could not be completed. Please try again.'),
        FieldSpec('response_options', kind='list', placeholder=[], max_items=3),
        FieldSpec('doc_note', kind='object', fields=(
            FieldSpec('title', placeholder='Communication Concern'),
            FieldSpec('date', placeholder=''),
            FieldSpec('context', placeholder=''),
            FieldSpec('observed_language', kind='list', placeholder=[]),
            FieldSpec('patient_impact', placeholder=''),
            FieldSpec('follow_up_requested', kind='list', placeholder=[]),
        )),
    ),
)


# --- promptCoach ---

def validate_coach_turn(payload):
    thread = clean_thread(payload.get('thread'))
    if not thread:
        raise InputValidationError("Provide 'thread' as a list with at least one message.", field='thread')
    mode = str(payload.get('mode') or 'practice').strip().lower()
    if mode not in COACH_MODES:
        raise InputValidationError(f"'mode' must be one of: {', '.join(COACH_MODES)}.", field='mode')
    persona = str(payload.get('persona') or DEFAULT_PERSONA).strip()
    if persona not in COACH_PERSONAS:
        persona = DEFAULT_PERSONA
    coaching_level = str(payload.get('coaching_level') or 'light').strip().lower()
    if coaching_level not in COACHING_LEVELS:
        coaching_level = 'light'
    raw_context = _clean_dict(payload.get('context'), 'context')
    return {
        'mode': mode,
        'thread': thread,
        'persona': persona,
        'coaching_level': coaching_level,
        'visit_time': _bounded_int(payload.get('visit_time'), 10, 5, 60, 'visit_time'),
        'session_id': _clean_text(payload.get('session_id'), 64),
        'context': {
            'symptoms': _clean_text(raw_context.get('symptoms')),
            'goals': _clean_text(raw_context.get('goals')),
            'conditions': _clean_str_list(raw_context.get('conditions')),
            'previous_attempts': _clean_text(raw_context.get('previous_attempts')),
        },
    }


def coach_minutes_elapsed(thread, visit_time):
    return max(0, min(len(thread) * 2, visit_time - 2))


def coach_minutes_remaining(thread, visit_time):
    return max(2, visit_time - len(thread) * 2)


def build_coach_turn_prompt(inputs):
    context = inputs['context']
    system_text = prompt_registry.PROMPT_COACH_SYSTEM.format(
        persona_description=COACH_PERSONAS[inputs['persona']],
        visit_time=inputs['visit_time'],
        coaching_level=inputs['coaching_level'],
        mode=inputs['mode'],
        coaching_instructions=COACHING_INSTRUCTIONS[inputs['coaching_level']],
    )
    prompt = prompt_registry.PROMPT_COACH_TURN.format(
        thread_text=format_thread(inputs['thread']),
        symptoms=_or_default(context.get('symptoms')),
        goals=_or_default(context.get('goals'), 'Get help with symptoms'),
        conditions=', '.join(context.get('conditions') or []) or 'None specified',
        previous_attempts=_or_default(context.get('previous_attempts'), 'None mentioned'),
        persona=inputs['persona'],
        coaching_level=inputs['coaching_level'],
        visit_time=inputs['visit_time'],
        minutes_elapsed=coach_minutes_elapsed(inputs['thread'], inputs['visit_time']),
    )
    return PromptRequest(prompt, system_text)


def build_debrief_report(thread, visit_time):
    patient_turns = sum(1 for message in thread if message['role'] == 'patient')
    provider_turns = sum(1 for message in thread if message['role'] == 'provider')
    return {
        'summary': {
            'total_exchanges': len(thread),
            'patient_turns': patient_turns,
            'provider_turns': provider_turns,
            'estimated_duration': f'{min(len(thread) * 2, visit_time)} minutes',
        },
        'strengths': [
            'Clear initial symptom description',
            'Maintained professional tone',
            'Asked at least one clarifying question',
        ],
        'improvements': [
            'State your main ask within the first 90 seconds',
            'Prepare specific evidence such as dates and measurements',
            "Practice the 'broken record' technique for key requests",
        ],
        'key_phrases': {
            'effective': [
                'My primary concern today is...',
                'What criteria would indicate...',
                'Can we document that...',
            ],
            'avoid': [
                'Sorry to bother you...',
                "I know you're busy but...",
                "It's probably nothing...",
            ],
        },
        'next_steps': [
            "Practice with the 'specialist_thorough' persona",
            'Prepare a one-page symptom summary',
            'Role-play with a timer set to the actual appointment length',
        ],
    }


def finalize_coach_turn(data, inputs):
    result = dict(data)
    if inputs['mode'] == 'debrief':
        result['debrief'] = build_debrief_report(inputs['thread'], inputs['visit_time'])
    result['session_id'] = inputs.get('session_id') or uuid.uuid4().hex
    return result


COACH_TURN_SCHEMA = ResponseSchema(
    tool_id='promptCoach',
    structured_only=True,
    fields=(
        FieldSpec('provider_response', placeholder=''),
        FieldSpec('pushback_type', placeholder='none'),
        FieldSpec('coaching', kind='object', fields=(
            FieldSpec('immediate', kind='list', placeholder=[]),
            FieldSpec('what_worked', kind='list', placeholder=[]),
            FieldSpec('improvements', kind='list', placeholder=[]),
            FieldSpec('techniques', kind='list', placeholder=[]),
            FieldSpec('timing', placeholder=''),
        )),
        FieldSpec('response_options', kind='list', placeholder=[], max_items=3),
        FieldSpec('next_turn_prompt', placeholder=''),
        FieldSpec('appointment_progress', kind='object', fields=(
            FieldSpec('minutes_elapsed', kind='number', placeholder=0),
            FieldSpec('minutes_remaining', kind='number', placeholder=0),
            FieldSpec('agenda_items_covered', kind='number', placeholder=0),
            FieldSpec('agenda_items_remaining', kind='number', placeholder=0),
            FieldSpec('goals_achieved', kind='list', placeholder=[]),
        )),
        FieldSpec('metadata', kind='object', fields=(
            FieldSpec('pushback_intensity', kind='number', placeholder=3),
            FieldSpec('collaboration_level', kind='number', placeholder=3),
            FieldSpec('patient_confidence', kind='number', placeholder=3),
            FieldSpec('progress_toward_goal', placeholder='0%'),
        )),
    ),
)


# --- promptPro ---

def validate_question_plan(payload):
    symptoms = _clean_text(payload.get('symptoms'), 4000)
    if not symptoms:
        raise InputValidationError('Symptoms are required.', field='symptoms')
    raw_context = _clean_dict(payload.get('context'), 'context')
    pack = _clean_text(raw_context.get('pack'), 40).lower() or None
    if pack is not None and pack not in QUESTION_PACKS:
        raise InputValidationError(f"Unknown question pack '{pack}'.", field='context.pack')
    raw_prefs = _clean_dict(payload.get('ui_prefs'), 'ui_prefs')
    return {
        'symptoms': symptoms,
        'visit_time_min': _bounded_int(payload.get('visit_time_min'), 10, 5, 60, 'visit_time_min'),
        'context': {
            'conditions': _clean_str_list(raw_context.get('conditions')),
            'medications': _clean_str_list(raw_context.get('medications') or raw_context.get('meds')),
            'allergies': _clean_str_list(raw_context.get('allergies')),
            'key_findings': _clean_text(raw_context.get('key_findings')),
            'goals': _clean_text(raw_context.get('goals')),
            'specialty': _clean_text(raw_context.get('specialty'), 40) or 'auto',
            'pack': pack,
        },
        'ui_prefs': {
            'reading_level': _clean_text(raw_prefs.get('reading_level'), 40) or 'standard',
            'tone': _clean_text(raw_prefs.get('tone'), 40) or 'neutral',
            'brain_fog_mode': bool(raw_prefs.get('brain_fog_mode', False)),
        },
    }


def build_question_plan_prompt(inputs):
    context = inputs['context']
    prefs = inputs['ui_prefs']
    prompt = prompt_registry.PROMPT_QUESTION_PLANNER.format(
        symptoms=inputs['symptoms'],
        conditions=', '.join(context['conditions']) or 'None specified',
        medications=', '.join(context['medications']) or 'None specified',
        allergies=', '.join(context['allergies']) or 'None specified',
        key_findings=context['key_findings'] or 'None',
        goals=context['goals'] or NOT_SPECIFIED,
        visit_time_min=inputs['visit_time_min'],
        specialty=context['specialty'],
        reading_level=prefs['reading_level'],
        ui_tone=prefs['tone'],
        brain_fog_mode=str(prefs['brain_fog_mode']).lower(),
    )
    return PromptRequest(prompt, prompt_registry.PROMPT_QUESTION_PLANNER_SYSTEM)


def core_question_budget(visit_time_min):
    total_seconds = visit_time_min * 60
    core_seconds = max(total_seconds - INTRO_BUDGET_SECONDS - CLOSE_BUDGET_SECONDS, MIN_CORE_BUDGET_SECONDS)
    return int(math.floor(core_seconds / SECONDS_PER_CORE_QUESTION))


def apply_ranking(plan, visit_time_min):
    """Trim the priority blocks so the plan fits the visit."""
    blocks = dict(plan.get('priority_blocks') or {})
    blocks['intro_90s'] = list(blocks.get('intro_90s') or [])[:MAX_INTRO_QUESTIONS]
    blocks['core_5min'] = list(blocks.get('core_5min') or [])[:core_question_budget(visit_time_min)]
    blocks['close_60s'] = list(blocks.get('close_60s') or [])[:MAX_CLOSE_QUESTIONS]
    ranked = dict(plan)
    ranked['priority_blocks'] = blocks
    return ranked


def apply_question_pack(plan, pack_name):
    enhanced = dict(plan)
    if pack_name:
        blocks = dict(enhanced.get('priority_blocks') or {})
        blocks['core_5min'] = list(blocks.get('core_5min') or []) + [dict(q) for q in QUESTION_PACKS.get(pack_name, [])]
        enhanced['priority_blocks'] = blocks
    enhanced['pack_used'] = pack_name
    return enhanced


def finalize_question_plan(data, inputs):
    plan = apply_ranking(data, inputs['visit_time_min'])
    plan = apply_question_pack(plan, inputs['context'].get('pack'))
    plan['safety_banner'] = SAFETY_BANNER
    return plan


QUESTION_PLAN_SCHEMA = ResponseSchema(
    tool_id='promptPro',
    structured_only=True,
    fields=(
        FieldSpec('opener', placeholder=''),
        FieldSpec('priority_blocks', kind='object', fields=(
            FieldSpec('intro_90s', kind='list', placeholder=[]),
            FieldSpec('core_5min', kind='list', placeholder=[]),
            FieldSpec('close_60s', kind='list', placeholder=[]),
        )),
        FieldSpec('categories', kind='object', fields=(
            FieldSpec('diagnostic_clarity', kind='list', placeholder=[]),
            FieldSpec('testing', kind='list', placeholder=[]),
            FieldSpec('treatment_options', kind='list', placeholder=[]),
            FieldSpec('safety_netting', kind='list', placeholder=[]),
            FieldSpec('process_access', kind='list', placeholder=[]),
        )),
        FieldSpec('timeline', kind='list', placeholder=[]),
        FieldSpec('citations', kind='list', placeholder=[]),
        FieldSpec('followups', kind='list', placeholder=[]),
        FieldSpec('safety_net', kind='list', placeholder=[]),
        FieldSpec('portal_message_seed', placeholder=''),
        FieldSpec('metadata', kind='object', fields=(
            FieldSpec('specialty', placeholder='auto'),
            FieldSpec('confidence', kind='number', placeholder=0.5),
            FieldSpec('model', placeholder=''),
        )),
    ),
)


# --- trendTrack ---

def parse_severity(value):
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def validate_trend_records(payload):
    records = payload.get('records')
    if not isinstance(records, list) or not records:
        raise InputValidationError("Provide 'records' as a non-empty array.", field='records')
    if len(records) > MAX_TREND_RECORDS:
        raise InputValidationError(f'Too many records. Limit is {MAX_TREND_RECORDS}.', field='records')
    cleaned = []
    for record in records:
        if not isinstance(record, dict):
            continue
        cleaned.append({
            'date': _clean_text(record.get('date'), 32),
            'symptom': _clean_text(record.get('symptom'), 80).lower(),
            'severity': parse_severity(record.get('severity')),
            'notes': _clean_text(record.get('notes'), 500),
        })
    if not cleaned:
        raise InputValidationError("'records' must contain objects.", field='records')
    return {'records': cleaned}


def build_trend_prompt(inputs):
    records_json = json.dumps(inputs['records'], ensure_ascii=False)[:MAX_TEXT_CHARS]
    return PromptRequest(prompt_registry.PROMPT_TREND_ANALYSIS.format(records_json=records_json))


def _round1(value):
    return round(value, 1)


def compute_trend_aggregates(records):
    """Deterministic per-date and per-symptom aggregates from raw records."""
    by_date = {}
    by_symptom = {}
    for record in records:
        date = record.get('date') or 'unknown'
        symptom = record.get('symptom') or 'unspecified'
        severity = record.get('severity')
        day = by_date.setdefault(date, {'severities': [], 'counts': {}})
        day['counts'][symptom] = day['counts'].get(symptom, 0) + 1
        entry = by_symptom.setdefault(symptom, {'severities': [], 'dates': set()})
        entry['dates'].add(date)
        if severity is not None:
            day['severities'].append(severity)
            entry['severities'].append(severity)

    by_date_rows = []
    for date in sorted(by_date):
        day = by_date[date]
        severities = day['severities']
        by_date_rows.append({
            'date': date,
            'avg_severity': _round1(sum(severities) / len(severities)) if severities else None,
            'counts': dict(sorted(day['counts'].items())),
        })

    top_rows = []
    for symptom, entry in by_symptom.items():
        severities = entry['severities']
        top_rows.append({
            'symptom': symptom,
            'avg_severity': _round1(sum(severities) / len(severities)) if severities else None,
            'days': len(entry['dates']),
        })
    top_rows.sort(key=lambda row: (-row['days'], -(row['avg_severity'] or 0), row['symptom']))
    return {'by_date': by_date_rows, 'top_symptoms': top_rows[:5]}


def finalize_trend_analysis(data, inputs):
    result = dict(data)
    aggregates = dict(result.get('aggregates') or {})
    if not aggregates.get('by_date') and not aggregates.get('top_symptoms'):
        aggregates = compute_trend_aggregates(inputs['records'])
    result['aggregates'] = aggregates
    return result


DEFAULT_TREND_CHARTS = [
    {'type': 'line', 'x': 'date', 'y': 'avg_severity', 'group_by': 'symptom'},
    {'type': 'stacked_bar', 'x': 'date', 'y': 'count', 'group_by': 'symptom'},
]

TREND_ANALYSIS_SCHEMA = ResponseSchema(
    tool_id='trendTrack',
    unstructured_key='insights',
    fields=(
        FieldSpec('insights', kind='list', placeholder=[]),
        FieldSpec('suggested_charts', kind='list', placeholder=[]),
        FieldSpec('aggregates', kind='object', fields=(
            FieldSpec('by_date', kind='list', placeholder=[]),
            FieldSpec('top_symptoms', kind='list', placeholder=[]),
        )),
    ),
)


# --- accessPro ---

def validate_access_transform(payload):
    text = _clean_text(payload.get('text'), MAX_TEXT_CHARS)
    if not text:
        raise InputValidationError('Provide input text for processing.', field='text')
    return {
        'text': text,
        'target_language': _clean_text(payload.get('target_language'), 40) or 'English',
        'simplify': bool(payload.get('simplify', False)),
    }


def build_access_prompt(inputs):
    if inputs['simplify']:
        simplify_rule = 'Rewrite the text at a 6th-grade reading level as "simplified".'
    else:
        simplify_rule = 'Set "simplified" to an empty string.'
    return PromptRequest(prompt_registry.PROMPT_ACCESS_TRANSFORM.format(
        text=inputs['text'],
        target_language=inputs['target_language'],
        simplify_rule=simplify_rule,
    ))


def finalize_access_transform(data, inputs):
    result = dict(data)
    if not result.get('transcript'):
        result['transcript'] = inputs['text']
    if not inputs['simplify']:
        result['simplified'] = ''
    elif not result.get('simplified'):
        result['simplified'] = result.get('translation', '')
    return result


ACCESS_TRANSFORM_SCHEMA = ResponseSchema(
    tool_id='accessPro',
    unstructured_key='translation',
    fields=(
        FieldSpec('transcript', placeholder=''),
        FieldSpec('translation', placeholder=''),
        FieldSpec('simplified', placeholder=''),
    ),
)


TOOL_DEFINITIONS: Dict[str, ToolDefinition] = {
    'symptomPro': ToolDefinition(
        tool_id='symptomPro',
        schema=SYMPTOM_SUMMARY_SCHEMA,
        validate=validate_symptom_summary,
        build_prompt=build_symptom_summary_prompt,
        finalize=finalize_symptom_summary,
        max_output_tokens=2000,
    ),
    'resetPro': ToolDefinition(
        tool_id='resetPro',
        schema=RESET_ANALYSIS_SCHEMA,
        validate=validate_reset_analysis,
        build_prompt=build_reset_analysis_prompt,
        finalize=finalize_reset_analysis,
        max_output_tokens=2000,
    ),
    'promptCoach': ToolDefinition(
        tool_id='promptCoach',
        schema=COACH_TURN_SCHEMA,
        validate=validate_coach_turn,
        build_prompt=build_coach_turn_prompt,
        finalize=finalize_coach_turn,
        max_output_tokens=1500,
        temperature=0.7,
    ),
    'promptPro': ToolDefinition(
        tool_id='promptPro',
        schema=QUESTION_PLAN_SCHEMA,
        validate=validate_question_plan,
        build_prompt=build_question_plan_prompt,
        finalize=finalize_question_plan,
        max_output_tokens=4000,
    ),
    'trendTrack': ToolDefinition(
        tool_id='trendTrack',
        schema=TREND_ANALYSIS_SCHEMA,
        validate=validate_trend_records,
        build_prompt=build_trend_prompt,
        finalize=finalize_trend_analysis,
        max_output_tokens=900,
    ),
    'accessPro': ToolDefinition(
        tool_id='accessPro',
        schema=ACCESS_TRANSFORM_SCHEMA,
        validate=validate_access_transform,
        build_prompt=build_access_prompt,
        finalize=finalize_access_transform,
        max_output_tokens=800,
    ),
}


def get_tool_definition(tool_id) -> Optional[ToolDefinition]:
    return TOOL_DEFINITIONS.get(str(tool_id or '').strip())


def get_response_schema(tool_id) -> Optional[ResponseSchema]:
    definition = get_tool_definition(tool_id)
    return definition.schema if definition is not None else None
