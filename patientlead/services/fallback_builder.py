"""Deterministic, schema-valid responses for when generation cannot be used.

``build_fallback`` is a pure function of its inputs: no clock, no randomness
and no I/O. Callers that want dated templates pass ``today`` in the inputs.
"""

from __future__ import annotations

import re

from patientlead.services import tool_schemas
from patientlead.services.response_normalizer import OUTCOME_FALLBACK, NormalizedResponse, coerce


EMPTY_SYMPTOM_MESSAGE = 'Unable to generate summary. Please describe your symptoms.'
PORTAL_MAX_CHARS = 200
EMERGENCY_MAX_CHARS = 150
QUOTE_MAX_CHARS = 200

COACH_FALLBACK_LINES = {
    'pcp_rushed': [
        "I understand you're concerned, but we need to focus on one issue today. Have you tried lifestyle modifications?",
        "We're running quite behind. Let's start with basic labs and see you back in 3 months.",
        'That sounds like it could be stress-related. Are you getting enough sleep?',
        "I have about 2 more minutes. What's your most pressing concern?",
    ],
    'specialist_thorough': [
        "Tell me more about when these symptoms occur. Any pattern you've noticed?",
        "I'd like to review your previous testing. What evaluations have been done so far?",
        "The symptoms you describe could fit several conditions. Let's be systematic.",
        'Insurance typically requires we document failed conservative treatment first.',
    ],
    'gatekeeper': [
        'Your insurance requires three months of documented symptoms before that referral.',
        "We don't typically order that test unless criteria are met. Let me check the guidelines.",
        "Have you tried physical therapy? That's the required first step.",
        "I can't justify that to insurance without more objective findings.",
    ],
    'kind_dismissive': [
        'You look quite healthy to me! Sometimes our bodies just need time to heal.',
        'Have you been under stress lately? That can cause all sorts of symptoms.',
        'At your age, some of this is normal. Have you tried yoga or meditation?',
        "I don't see anything concerning on exam. Maybe try some vitamins?",
    ],
}

COACH_FALLBACK_OPTIONS = [
    {
        'label': 'Acknowledge time pressure',
        'text': "I understand you're running behind. Let me focus on my main concern...",
        'strategy': 'Shows respect for constraints',
    },
    {
        'label': 'Ask for specific next step',
        'text': "Given the time, what's the one most important test we should start with?",
        'strategy': 'Forces prioritization',
    },
    {
        'label': 'Request follow-up',
        'text': 'Can we schedule a longer appointment to properly address this?',
        'strategy': 'Acknowledges limitations',
    },
]

FALLBACK_QUESTIONS = {
    'intro_90s': [
        {
            'id': 'fb1',
            'text': 'What are the most likely causes of these symptoms based on my history?',
            'why': 'Establishes differential diagnosis',
            'category': 'diagnostic_clarity',
            'priority': 1,
            'ask_time_sec': 30,
            'citation_ids': [],
            'bias_safe': True,
        },
    ],
    'core_5min': [
        {
            'id': 'fb2',
            'text': 'What tests would help narrow down the diagnosis?',
            'why': 'Clarifies diagnostic pathway',
            'category': 'testing',
            'priority': 1,
            'ask_time_sec': 25,
            'citation_ids': [],
            'bias_safe': True,
        },
        {
            'id': 'fb3',
            'text': 'What initial treatment options are available while we investigate?',
            'why': 'Addresses symptom management',
            'category': 'treatment_options',
            'priority': 2,
            'ask_time_sec': 30,
            'citation_ids': [],
            'bias_safe': True,
        },
    ],
    'close_60s': [
        {
            'id': 'fb4',
            'text': 'What symptoms would require urgent evaluation before our next visit?',
            'why': 'Establishes safety plan',
            'category': 'safety_netting',
            'priority': 1,
            'ask_time_sec': 20,
            'citation_ids': [],
            'bias_safe': True,
        },
    ],
}

_WHITESPACE_RE = re.compile(r'\s+')


def clip_words(text, limit):
    """Clip ``text`` to at most ``limit`` characters without splitting a word."""
    text = str(text or '').strip()
    if len(text) <= limit:
        return text
    clipped = text[:limit + 1]
    cut = clipped.rfind(' ')
    if cut <= 0:
        return text[:limit].rstrip()
    return clipped[:cut].rstrip(' ,;:')


def _text(mapping, *keys):
    if not isinstance(mapping, dict):
        return ''
    for key in keys:
        value = mapping.get(key)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            value = str(value).strip()
            if value:
                return value
    return ''


def _date_label(inputs):
    return _text(inputs, 'today')


# --- templates ---

def _symptom_narrative(inputs):
    symptoms = inputs.get('symptoms') if isinstance(inputs.get('symptoms'), dict) else {}
    context = inputs.get('context') if isinstance(inputs.get('context'), dict) else {}
    chief = _text(symptoms, 'chief_complaint', 'primary_symptom', 'chiefComplaint', 'primarySymptom')
    clauses = [
        ('onset', _text(symptoms, 'onset')),
        ('location', _text(symptoms, 'location')),
        ('severity', _text(symptoms, 'severity')),
        ('character', _text(symptoms, 'character')),
        ('aggravating', _text(symptoms, 'aggravating', 'worsens')),
        ('alleviating', _text(symptoms, 'alleviating', 'improves')),
        ('impact', _text(context, 'impact')),
    ]
    if not chief and not any(value for _, value in clauses):
        return ''
    values = dict(clauses)
    opening = f"I have been experiencing {chief or 'symptoms'}"
    if values['onset']:
        opening += f" that started {values['onset']}"
    sentences = [opening + '.']
    if values['location']:
        sentences.append(f"The issue is located in my {values['location']}.")
    if values['severity']:
        sentences.append(f"The severity is {values['severity']}.")
    if values['character']:
        sentences.append(f"It feels {values['character']}.")
    if values['aggravating']:
        sentences.append(f"It gets worse with {values['aggravating']}.")
    if values['alleviating']:
        sentences.append(f"It improves with {values['alleviating']}.")
    if values['impact']:
        sentences.append(f"This is affecting my daily life by {values['impact']}.")
    return _WHITESPACE_RE.sub(' ', ' '.join(sentences)).strip()


def _symptom_fallback(inputs):
    narrative = _symptom_narrative(inputs) or EMPTY_SYMPTOM_MESSAGE
    return {
        'clinical': narrative,
        'portal': clip_words(narrative, PORTAL_MAX_CHARS),
        'emergency': clip_words(narrative, EMERGENCY_MAX_CHARS),
        'referral': narrative,
    }


def _reset_letter(tone, patient_text, date):
    date_text = date or '[Date]'
    if tone == 'neutral':
        quoted = clip_words(patient_text, QUOTE_MAX_CHARS)
        body = f'\n\n{quoted}\n\n' if quoted else '\n\n'
        return (
            'Dear Provider,\n\n'
            'I am writing to request corrections to my medical record from our recent interaction. '
            'I believe there are some inaccuracies that need to be addressed.'
            f'{body}'
            'Please update my medical record to accurately reflect our discussion.\n\n'
            'Thank you for your attention to this matter.'
        )
    if tone == 'firm':
        return (
            'To: Medical Records Department\n\n'
            'Subject: Formal Request for Amendment to Medical Record - HIPAA 164.526\n\n'
            f'I am formally requesting an amendment to my medical record dated {date_text}.\n\n'
            'Under HIPAA 164.526, I have the right to request amendments when information is incorrect or incomplete. '
            'Please process this request within 30 days as required by law.\n\n'
            'Please confirm receipt of this request.\n\n'
            'Sincerely,\n[Patient Name]'
        )
    return (
        'To: Patient Relations Department\n\n'
        'Subject: Formal Complaint Regarding Medical Documentation\n\n'
        f'I am filing a formal complaint regarding communication and documentation concerns from {date_text}.\n\n'
        'I request a formal review of this matter.\n\n'
        'Sincerely,\n[Patient Name]'
    )


def _reset_fallback(inputs):
    thread = tool_schemas.clean_thread(inputs.get('thread'))
    patient_text = next((message['text'] for message in thread if message['role'] == 'patient'), '')
    context = inputs.get('context') if isinstance(inputs.get('context'), dict) else {}
    date = _text(context, 'visit_date') or _date_label(inputs)
    return {
        'flags': {
            'dismissive_language': [],
            'minimization': [],
            'credibility_undermining': [],
            'boundary_crossing': [],
        },
        'overall_assessment': 'Analysis could not be completed. Please try again.',
        'response_options': [
            {'tone': tone, 'text': _reset_letter(tone, patient_text, date)}
            for tone in ('neutral', 'firm', 'escalation')
        ],
        'doc_note': {
            'title': 'Communication Concern',
            'date': date,
            'context': 'Unable to analyze communication',
            'observed_language': [],
            'patient_impact': '',
            'follow_up_requested': [],
        },
    }


def _coach_fallback(inputs):
    thread = tool_schemas.clean_thread(inputs.get('thread'))
    persona = inputs.get('persona')
    if persona not in COACH_FALLBACK_LINES:
        persona = tool_schemas.DEFAULT_PERSONA
    lines = COACH_FALLBACK_LINES[persona]
    visit_time = inputs.get('visit_time') if isinstance(inputs.get('visit_time'), int) else 10
    elapsed = tool_schemas.coach_minutes_elapsed(thread, visit_time)
    remaining = tool_schemas.coach_minutes_remaining(thread, visit_time)
    return {
        'provider_response': lines[min(len(thread), len(lines) - 1)],
        'pushback_type': 'time',
        'coaching': {
            'immediate': ['Stay focused on your main concern'],
            'what_worked': ['Clear symptom description'],
            'improvements': ['Be more specific about timeline'],
            'techniques': ["Use 'Yes, and...' to acknowledge while redirecting"],
            'timing': f'Time check: {elapsed} minutes used, {remaining} remaining',
        },
        'response_options': [dict(option) for option in COACH_FALLBACK_OPTIONS],
        'next_turn_prompt': 'Make your primary ask before time runs out',
        'appointment_progress': {
            'minutes_elapsed': elapsed,
            'minutes_remaining': remaining,
            'agenda_items_covered': len(thread) // 4,
            'agenda_items_remaining': 2,
            'goals_achieved': [],
        },
        'metadata': {
            'pushback_intensity': 3,
            'collaboration_level': 2,
            'patient_confidence': 3,
            'progress_toward_goal': '25%',
        },
    }


def _question_plan_fallback(inputs):
    symptoms = _text(inputs, 'symptoms')
    first_sentence = symptoms.split('.')[0].strip() or symptoms[:100]
    context = inputs.get('context') if isinstance(inputs.get('context'), dict) else {}
    if first_sentence:
        opener = (
            f"I'm experiencing {first_sentence}. This has been affecting my daily activities "
            "and I'd like to understand what's happening and discuss next steps."
        )
    else:
        opener = (
            "I'd like to describe some symptoms that have been affecting my daily activities "
            'and discuss next steps.'
        )
    return {
        'opener': opener,
        'priority_blocks': {
            block: [dict(question) for question in questions]
            for block, questions in FALLBACK_QUESTIONS.items()
        },
        'categories': {
            'diagnostic_clarity': [],
            'testing': [],
            'treatment_options': [],
            'safety_netting': [],
            'process_access': [],
        },
        'timeline': [],
        'citations': [],
        'followups': [],
        'safety_net': [
            'Clarify when to seek urgent care',
            "Document today's findings",
            'Schedule follow-up if symptoms persist',
        ],
        'portal_message_seed': 'Following up on our visit, I have additional questions about my symptoms and next steps.',
        'metadata': {
            'specialty': _text(context, 'specialty') or 'auto',
            'confidence': 0.5,
            'model': 'fallback',
        },
    }


def _trend_records(inputs):
    records = inputs.get('records')
    if not isinstance(records, list):
        return []
    cleaned = []
    for record in records:
        if not isinstance(record, dict):
            continue
        cleaned.append({
            'date': _text(record, 'date'),
            'symptom': _text(record, 'symptom').lower(),
            'severity': tool_schemas.parse_severity(record.get('severity')),
        })
    return cleaned


def _trend_fallback(inputs):
    records = _trend_records(inputs)
    if records:
        insight = (
            f'Automated trend analysis is unavailable right now. The aggregates below were '
            f'computed directly from your {len(records)} records.'
        )
    else:
        insight = 'No symptom records were provided, so no trends could be computed.'
    return {
        'insights': [insight],
        'suggested_charts': [dict(chart) for chart in tool_schemas.DEFAULT_TREND_CHARTS],
        'aggregates': tool_schemas.compute_trend_aggregates(records),
    }


def _access_fallback(inputs):
    text = _text(inputs, 'text')
    return {
        'transcript': text,
        'translation': '',
        'simplified': text if inputs.get('simplify') else '',
    }


FALLBACK_TEMPLATES = {
    'symptomPro': _symptom_fallback,
    'resetPro': _reset_fallback,
    'promptCoach': _coach_fallback,
    'promptPro': _question_plan_fallback,
    'trendTrack': _trend_fallback,
    'accessPro': _access_fallback,
}


def build_fallback(tool_id, original_inputs) -> NormalizedResponse:
    """Build the tool's fallback payload, shaped by the same coercion as model output."""
    definition = tool_schemas.get_tool_definition(tool_id)
    template = FALLBACK_TEMPLATES.get(tool_id)
    if definition is None or template is None:
        raise KeyError(f'No fallback template for tool: {tool_id}')
    inputs = original_inputs if isinstance(original_inputs, dict) else {}
    result = coerce(template(inputs), definition.schema, outcome_label=OUTCOME_FALLBACK)
    if tool_id == 'promptCoach' and inputs.get('mode') == 'debrief':
        thread = tool_schemas.clean_thread(inputs.get('thread'))
        visit_time = inputs.get('visit_time') if isinstance(inputs.get('visit_time'), int) else 10
        result.data['debrief'] = tool_schemas.build_debrief_report(thread, visit_time)
    return result
