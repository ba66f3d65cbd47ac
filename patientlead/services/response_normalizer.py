"""Turn free model text into a schema-conformant tool payload.

``extract`` yields a tagged outcome, ``Parsed`` or ``Unstructured``, and
``coerce`` shapes either into the schema's exact key set. Missing or
wrong-typed keys are derived from the first present sibling in the field's
priority list, else set to the field's placeholder. ``normalize`` never raises.
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from patientlead.errors import ParseRecoveryExhausted


OUTCOME_PARSED = 'parsed'
OUTCOME_UNSTRUCTURED = 'unstructured'
OUTCOME_FALLBACK = 'fallback'

_FENCE_RE = re.compile(r'```[a-z0-9_+\-]*', re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r',\s*([}\]])')
_BULLET_RE = re.compile(r'^[ \t]*(?:•\s*|[-*]\s+|\d+\.\s+)', re.MULTILINE)


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str = 'string'
    placeholder: Any = ''
    derive_from: Tuple[str, ...] = ()
    fields: Tuple['FieldSpec', ...] = ()
    max_items: Optional[int] = None


@dataclass(frozen=True)
class ResponseSchema:
    tool_id: str
    fields: Tuple[FieldSpec, ...]
    container: Optional[str] = None
    unstructured_key: Optional[str] = None
    structured_only: bool = False

    @property
    def keys(self):
        return tuple(spec.name for spec in self.fields)


@dataclass(frozen=True)
class Parsed:
    value: Dict[str, Any]


@dataclass(frozen=True)
class Unstructured:
    text: str


@dataclass(frozen=True)
class NormalizedResponse:
    data: Dict[str, Any]
    outcome: str
    derived_keys: Tuple[str, ...] = ()
    placeholder_keys: Tuple[str, ...] = field(default_factory=tuple)


def strip_fences(text):
    return _FENCE_RE.sub('', text)


def trim_to_json(text):
    starts = [index for index in (text.find('{'), text.find('[')) if index != -1]
    if not starts:
        return None
    start = min(starts)
    end = max(text.rfind('}'), text.rfind(']'))
    if end < start:
        return None
    return text[start:end + 1]


def _loads_with_repair(candidate):
    try:
        return json.loads(candidate)
    except ValueError:
        pass
    repaired = _TRAILING_COMMA_RE.sub(r'\1', candidate)
    if repaired == candidate:
        raise ValueError('unparseable')
    return json.loads(repaired)


def extract(raw_text) -> Union[Parsed, Unstructured]:
    if raw_text is None:
        return Unstructured('')
    raw = raw_text if isinstance(raw_text, str) else str(raw_text)
    candidate = trim_to_json(strip_fences(raw))
    if candidate is None:
        return Unstructured(raw)
    try:
        value = _loads_with_repair(candidate)
    except ValueError:
        return Unstructured(raw)
    if isinstance(value, dict):
        return Parsed(value)
    if isinstance(value, str):
        return Unstructured(value)
    return Unstructured(json.dumps(value, ensure_ascii=False))


def strip_bullets(value):
    """Strip leading list markers per line and trim, recursively."""
    if isinstance(value, str):
        return _BULLET_RE.sub('', value).strip()
    if isinstance(value, list):
        return [strip_bullets(item) for item in value]
    if isinstance(value, dict):
        return {key: strip_bullets(item) for key, item in value.items()}
    return value


def _is_present(spec: FieldSpec, value):
    if spec.kind == 'string':
        return isinstance(value, str) and bool(value.strip())
    if spec.kind == 'list':
        return isinstance(value, list)
    if spec.kind == 'object':
        return isinstance(value, dict)
    if spec.kind == 'number':
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if spec.kind == 'bool':
        return isinstance(value, bool)
    return value is not None


def _coerce_fields(fields, source):
    data = {}
    derived = []
    placeholders = []
    specs_by_name = {spec.name: spec for spec in fields}
    for spec in fields:
        value = source.get(spec.name)
        if _is_present(spec, value):
            data[spec.name] = _coerce_value(spec, value)
            continue
        sibling_value = None
        for sibling in spec.derive_from:
            candidate = source.get(sibling)
            sibling_spec = specs_by_name.get(sibling, spec)
            if _is_present(spec, candidate) and _is_present(sibling_spec, candidate):
                sibling_value = candidate
                break
        if sibling_value is not None:
            data[spec.name] = _coerce_value(spec, sibling_value)
            derived.append(spec.name)
        elif spec.kind == 'object':
            data[spec.name], _, _ = _coerce_fields(spec.fields, {})
            placeholders.append(spec.name)
        else:
            data[spec.name] = copy.deepcopy(spec.placeholder)
            placeholders.append(spec.name)
    return data, derived, placeholders


def _coerce_value(spec: FieldSpec, value):
    if spec.kind == 'object':
        nested, _, _ = _coerce_fields(spec.fields, value)
        return nested
    if spec.kind == 'list':
        items = copy.deepcopy(value)
        if spec.max_items is not None:
            items = items[:spec.max_items]
        return items
    return copy.deepcopy(value)


def _source_for(outcome, schema: ResponseSchema):
    if isinstance(outcome, Parsed):
        source = outcome.value
        if schema.container and isinstance(source.get(schema.container), dict):
            return source[schema.container]
        return source
    text = outcome.text or ''
    if not text.strip() or not schema.unstructured_key:
        return {}
    key_spec = next((spec for spec in schema.fields if spec.name == schema.unstructured_key), None)
    if key_spec is not None and key_spec.kind == 'list':
        return {schema.unstructured_key: [text]}
    return {schema.unstructured_key: text}


def coerce(obj, schema: ResponseSchema, outcome_label=OUTCOME_PARSED) -> NormalizedResponse:
    """Shape ``obj`` (a dict, or a tagged outcome) into the schema's key set."""
    if isinstance(obj, (Parsed, Unstructured)):
        source = _source_for(obj, schema)
    elif isinstance(obj, dict):
        source = _source_for(Parsed(obj), schema)
    else:
        source = {}
    data, derived, placeholders = _coerce_fields(schema.fields, strip_bullets(source))
    return NormalizedResponse(
        data=data,
        outcome=outcome_label,
        derived_keys=tuple(derived),
        placeholder_keys=tuple(placeholders),
    )


def normalize(raw_text, schema: ResponseSchema) -> NormalizedResponse:
    outcome = extract(raw_text)
    label = OUTCOME_PARSED if isinstance(outcome, Parsed) else OUTCOME_UNSTRUCTURED
    return coerce(outcome, schema, outcome_label=label)


def normalize_or_raise(raw_text, schema: ResponseSchema) -> NormalizedResponse:
    """Like ``normalize`` but raise when nothing usable was recovered."""
    result = normalize(raw_text, schema)
    if set(result.placeholder_keys) == set(schema.keys):
        raise ParseRecoveryExhausted('No schema key could be recovered from the model output.')
    if schema.structured_only and result.outcome != OUTCOME_PARSED:
        raise ParseRecoveryExhausted('Model output was not structured JSON.')
    return result
