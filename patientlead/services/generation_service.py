"""Bounded, retrying wrapper around the Gemini ``generate_content`` call."""

import logging
import time
from typing import NamedTuple

from google.genai import errors as genai_errors
from google.genai import types

from patientlead.errors import ClientFault, TransientFault


RETRYABLE_STATUS_CODES = {408, 429}


class GenerationResult(NamedTuple):
    text: str
    attempts: int


def classify_exception(exc):
    """Map a client-library exception to ``TransientFault`` or ``ClientFault``."""
    if isinstance(exc, (TransientFault, ClientFault)):
        return exc
    if isinstance(exc, genai_errors.APIError):
        status = getattr(exc, 'code', None)
        try:
            status = int(status)
        except (TypeError, ValueError):
            status = None
        if status is not None and 400 <= status < 500 and status not in RETRYABLE_STATUS_CODES:
            return ClientFault(f'Generation request rejected ({status}): {exc}')
        return TransientFault(f'Generation backend error ({status}): {exc}')
    if isinstance(exc, (ValueError, TypeError)):
        return ClientFault(f'Generation request invalid: {exc}')
    return TransientFault(f'Generation transport error: {exc}')


def build_generation_config(max_output_tokens, temperature, system_text=None):
    config = {
        'max_output_tokens': int(max_output_tokens),
        'temperature': float(temperature),
    }
    if system_text:
        config['system_instruction'] = system_text
    return types.GenerateContentConfig(**config)


class GenerationService:
    def __init__(self, client, *, model, max_attempts=2, retry_delay_seconds=1.0, sleep=time.sleep, logger=None):
        self.client = client
        self.model = model
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))
        self._sleep = sleep
        self.logger = logger or logging.getLogger('patientlead.generation')

    def _call(self, prompt_text, config):
        response = self.client.models.generate_content(
            model=self.model,
            contents=[types.Content(role='user', parts=[types.Part.from_text(text=prompt_text)])],
            config=config,
        )
        return getattr(response, 'text', None) or ''

    def generate(self, prompt_text, *, max_output_tokens, temperature, system_text=None):
        """Return a ``GenerationResult``, retrying transient faults with linear backoff.

        Raises ``ClientFault`` immediately on a non-retryable rejection and
        ``TransientFault`` once attempts are exhausted. Either fault carries
        the number of attempts made as ``attempts``.
        """
        config = build_generation_config(max_output_tokens, temperature, system_text)
        last_fault = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return GenerationResult(self._call(prompt_text, config), attempt)
            except Exception as exc:
                fault = classify_exception(exc)
                fault.attempts = attempt
                if isinstance(fault, ClientFault):
                    self.logger.error(f"Generation client fault on {self.model}: {exc}")
                    raise fault from exc
                last_fault = fault
                self.logger.warning(f"Generation attempt {attempt}/{self.max_attempts} failed: {exc}")
                if attempt < self.max_attempts and self.retry_delay_seconds > 0:
                    self._sleep(self.retry_delay_seconds * attempt)
        raise last_fault
