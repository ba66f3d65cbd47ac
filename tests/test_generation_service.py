import pytest
from google.genai import errors as genai_errors

from patientlead.errors import ClientFault, TransientFault
from patientlead.services.generation_service import GenerationService, classify_exception


class _Response:
    def __init__(self, text):
        self.text = text


class _FakeModels:
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _Response(outcome)


class _FakeClient:
    def __init__(self, outcomes):
        self.models = _FakeModels(outcomes)


def _api_error(status):
    return genai_errors.APIError(status, {'error': {'code': status, 'message': 'backend said no', 'status': 'ERROR'}})


def _service(outcomes, max_attempts=3):
    sleeps = []
    client = _FakeClient(outcomes)
    service = GenerationService(
        client,
        model='gemini-test',
        max_attempts=max_attempts,
        retry_delay_seconds=0.5,
        sleep=sleeps.append,
    )
    return service, client, sleeps


def test_returns_model_text_on_first_success():
    service, client, sleeps = _service(['{"ok": true}'])

    result = service.generate('prompt', max_output_tokens=100, temperature=0.2, system_text='be brief')

    assert result.text == '{"ok": true}'
    assert result.attempts == 1
    assert sleeps == []
    assert client.models.calls[0]['model'] == 'gemini-test'


def test_transient_errors_retry_with_linear_backoff():
    service, client, sleeps = _service([ConnectionError('reset'), _api_error(503), 'done'])

    result = service.generate('prompt', max_output_tokens=100, temperature=0.2)

    assert result == ('done', 3)
    assert sleeps == [0.5, 1.0]


def test_exhausted_attempts_raise_transient_fault():
    service, _client, sleeps = _service([TimeoutError('slow'), _api_error(429)], max_attempts=2)

    with pytest.raises(TransientFault) as excinfo:
        service.generate('prompt', max_output_tokens=100, temperature=0.2)
    assert excinfo.value.attempts == 2
    assert sleeps == [0.5]


def test_client_rejection_is_not_retried():
    service, client, sleeps = _service([_api_error(400), 'never reached'])

    with pytest.raises(ClientFault) as excinfo:
        service.generate('prompt', max_output_tokens=100, temperature=0.2)
    assert excinfo.value.attempts == 1
    assert len(client.models.calls) == 1
    assert sleeps == []


def test_missing_text_becomes_empty_string():
    service, _client, _sleeps = _service([None])

    assert service.generate('prompt', max_output_tokens=10, temperature=0.0).text == ''


def test_classification_table():
    assert isinstance(classify_exception(_api_error(401)), ClientFault)
    assert isinstance(classify_exception(_api_error(404)), ClientFault)
    assert isinstance(classify_exception(_api_error(408)), TransientFault)
    assert isinstance(classify_exception(_api_error(500)), TransientFault)
    assert isinstance(classify_exception(ValueError('bad config')), ClientFault)
    assert isinstance(classify_exception(OSError('network')), TransientFault)
