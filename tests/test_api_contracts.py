import json

import pytest

from patientlead import runtime
from patientlead.errors import AccessDeniedError, ClientFault, TransientFault
from patientlead.services import tool_api_service
from patientlead.services.entitlement_service import ToolAccessDecision
from patientlead.services.generation_service import GenerationResult


class _FakeGenerator:
    def __init__(self, text='', exc=None):
        self.text = text
        self.exc = exc
        self.calls = []

    def generate(self, prompt_text, **kwargs):
        self.calls.append((prompt_text, kwargs))
        if self.exc is not None:
            raise self.exc
        return GenerationResult(self.text, 1)


SYMPTOM_JSON = json.dumps({
    "summaries": {
        "clinical": "I have had a throbbing headache for two weeks.",
        "portal": "Headache for two weeks, getting worse.",
        "emergency": "Severe headache, 8 out of 10.",
        "referral": "Two weeks of daily headaches despite rest.",
    },
    "tone": "professional",
})

RESET_JSON = json.dumps({
    "flags": {
        "dismissive_language": [{"quote": "it's just stress", "explanation": "Attributes symptoms without evaluation"}],
        "minimization": [],
        "credibility_undermining": [],
        "boundary_crossing": [],
    },
    "overall_assessment": "The provider attributed symptoms to stress without examination.",
    "response_options": [{"tone": "neutral", "text": "Please review my chart."}],
    "doc_note": {"title": "Communication Concern", "date": "2026-10-01"},
})


@pytest.fixture()
def client():
    runtime.app.config["TESTING"] = True
    runtime.USAGE_MEMORY_STORE.clear()
    runtime.RATE_LIMIT_MEMORY_STORE.clear()
    runtime.RESPONSE_CACHE.clear()
    with runtime.app.test_client() as test_client:
        yield test_client
    runtime.USAGE_MEMORY_STORE.clear()
    runtime.RATE_LIMIT_MEMORY_STORE.clear()
    runtime.RESPONSE_CACHE.clear()


@pytest.fixture(autouse=True)
def isolate_runtime(monkeypatch):
    monkeypatch.setattr(runtime, "sentry_sdk", None)
    monkeypatch.setattr(runtime, "db", None)
    monkeypatch.setattr(runtime, "verify_firebase_token", lambda _request: None)


def _sign_in(monkeypatch, uid, tier):
    monkeypatch.setattr(runtime, "verify_firebase_token", lambda _request: {"uid": uid, "email": f"{uid}@example.com"})
    monkeypatch.setattr(runtime, "lookup_user_tier", lambda _uid: tier)


def test_anonymous_reset_pro_denied_without_model_call(client, monkeypatch):
    generator = _FakeGenerator(RESET_JSON)
    monkeypatch.setattr(runtime, "generation_service", generator)

    response = client.post("/api/tools/resetPro/run", json={"thread": [{"role": "provider", "text": "It's just stress."}]})

    assert response.status_code == 403
    body = response.get_json()
    assert body["ok"] is False
    assert body["code"] == "tier_required"
    assert body["required_tier"] == "professional"
    assert body["tier"] == "free"
    assert body["upgrade_url"] == "/subscribe?tool=resetPro&from=free"
    assert "Professional" in body["error"]
    assert generator.calls == []


def test_symptom_pro_success_envelope(client, monkeypatch):
    generator = _FakeGenerator("```json\n" + SYMPTOM_JSON + "\n```")
    monkeypatch.setattr(runtime, "generation_service", generator)

    response = client.post("/api/tools/symptomPro/run", json={
        "symptoms": {"chief_complaint": "headache", "severity": "8/10"},
        "tone": "friendly",
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    data = body["data"]
    assert set(data["summaries"]) == {"clinical", "portal", "emergency", "referral"}
    assert data["summary"] == data["summaries"]["clinical"]
    assert data["tone"] == "friendly"
    assert body["meta"]["outcome"] == "parsed"
    assert body["meta"]["fallback"] is False
    assert body["meta"]["tier"] == "free"
    assert len(generator.calls) == 1


def test_invalid_input_returns_400_before_generation(client, monkeypatch):
    generator = _FakeGenerator(SYMPTOM_JSON)
    monkeypatch.setattr(runtime, "generation_service", generator)

    response = client.post("/api/tools/symptomPro/run", json={"symptoms": {}})

    assert response.status_code == 400
    body = response.get_json()
    assert body["ok"] is False
    assert body["code"] == "invalid_input"
    assert body["field"] == "symptoms"
    assert generator.calls == []


def test_non_object_body_is_rejected(client, monkeypatch):
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(SYMPTOM_JSON))

    response = client.post("/api/tools/symptomPro/run", data="not json", headers={"Content-Type": "text/plain"})

    assert response.status_code == 400
    assert response.get_json()["code"] == "invalid_input"


def test_unknown_tool_returns_404(client):
    response = client.post("/api/tools/notATool/run", json={})

    assert response.status_code == 404
    assert response.get_json()["code"] == "unknown_tool"


def test_missing_generation_backend_returns_503(client, monkeypatch):
    monkeypatch.setattr(runtime, "generation_service", None)

    response = client.post("/api/tools/symptomPro/run", json={"symptoms": {"chief_complaint": "fatigue"}})

    assert response.status_code == 503
    assert response.get_json()["code"] == "service_unavailable"


def test_hourly_limit_returns_429_with_retry_after(client, monkeypatch):
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(SYMPTOM_JSON))
    payload = {"symptoms": {"chief_complaint": "dizziness"}}

    first = client.post("/api/tools/symptomPro/run", json=payload)
    second = client.post("/api/tools/symptomPro/run", json=payload)

    assert first.status_code == 200
    assert first.get_json()["meta"]["remaining"] == 0
    assert second.status_code == 429
    body = second.get_json()
    assert body["ok"] is False
    assert body["code"] == "hourly_limit"
    assert body["reset_unit"] == "minutes"
    assert body["reset_in"] == 60
    assert second.headers["Retry-After"] == "3600"
    assert "hourly" in body["error"]


def test_forwarded_header_does_not_reset_anonymous_limit(client, monkeypatch):
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(SYMPTOM_JSON))
    payload = {"symptoms": {"chief_complaint": "dizziness"}}

    statuses = [
        client.post("/api/tools/symptomPro/run", json=payload, headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
        for i in range(3)
    ]

    assert statuses == [200, 429, 429]


def test_denials_are_access_denied_errors():
    tier_error = tool_api_service.tier_denial(
        "resetPro",
        ToolAccessDecision(allowed=False, tier="free", reason_code="tier_required", required_tier="professional"),
    )
    usage_error = AccessDeniedError("limit", ToolAccessDecision(allowed=False, tier="free", reason_code="daily_limit"))

    assert isinstance(tier_error, AccessDeniedError)
    assert (tier_error.status_code, tier_error.code) == (403, "tier_required")
    assert (usage_error.status_code, usage_error.code) == (429, "daily_limit")


def test_retry_count_comes_from_the_raised_fault(client, monkeypatch):
    fault = TransientFault("backend down")
    fault.attempts = 3
    tracked = []
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(exc=fault))
    monkeypatch.setattr(runtime, "track_tool_usage", lambda uid, tool_id, **fields: tracked.append(fields))

    response = client.post("/api/tools/symptomPro/run", json={"symptoms": {"chief_complaint": "rash"}})

    assert response.status_code == 200
    assert tracked[0]["retries"] == 2
    assert tracked[0]["outcome"] == "fallback"


def test_transient_fault_resolves_to_fallback(client, monkeypatch):
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(exc=TransientFault("backend down")))

    response = client.post("/api/tools/symptomPro/run", json={
        "symptoms": {"chief_complaint": "joint pain", "onset": "last spring"},
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["meta"]["fallback"] is True
    assert body["meta"]["outcome"] == "fallback"
    assert body["data"]["summaries"]["clinical"].startswith("I have been experiencing joint pain that started last spring.")


def test_client_fault_returns_502(client, monkeypatch):
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(exc=ClientFault("bad key")))

    response = client.post("/api/tools/symptomPro/run", json={"symptoms": {"chief_complaint": "rash"}})

    assert response.status_code == 502
    body = response.get_json()
    assert body["code"] == "configuration_error"
    assert "bad key" not in body["error"]


def test_structured_tool_falls_back_on_prose_output(client, monkeypatch):
    _sign_in(monkeypatch, "pro-user", "professional")
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator("I could not analyze this conversation."))

    response = client.post("/api/tools/resetPro/run", json={
        "thread": [
            {"role": "patient", "text": "My pain is getting worse."},
            {"role": "provider", "text": "It's probably just stress."},
        ],
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body["meta"]["fallback"] is True
    options = body["data"]["response_options"]
    assert [option["tone"] for option in options] == ["neutral", "firm", "escalation"]
    assert "My pain is getting worse." in options[0]["text"]


def test_signed_in_professional_runs_reset_pro_and_uses_cache(client, monkeypatch):
    _sign_in(monkeypatch, "pro-user-2", "professional")
    generator = _FakeGenerator(RESET_JSON)
    monkeypatch.setattr(runtime, "generation_service", generator)
    payload = {"thread": [{"role": "provider", "text": "It's just stress."}]}

    first = client.post("/api/tools/resetPro/run", json=payload)
    second = client.post("/api/tools/resetPro/run", json=payload)

    assert first.status_code == 200
    assert first.get_json()["data"]["flags"]["dismissive_language"][0]["quote"] == "it's just stress"
    assert first.get_json()["meta"]["cached"] is False
    assert second.status_code == 200
    assert second.get_json()["meta"]["cached"] is True
    assert len(generator.calls) == 1


def test_prompt_pro_adds_pack_and_safety_banner(client, monkeypatch):
    _sign_in(monkeypatch, "pro-user-3", "professional")
    plan = {
        "opener": "I have been dizzy when standing.",
        "priority_blocks": {
            "intro_90s": [{"id": "q1"}, {"id": "q2"}, {"id": "q3"}],
            "core_5min": [{"id": "c%d" % i} for i in range(20)],
            "close_60s": [{"id": "z1"}, {"id": "z2"}, {"id": "z3"}],
        },
    }
    monkeypatch.setattr(runtime, "generation_service", _FakeGenerator(json.dumps(plan)))

    response = client.post("/api/tools/promptPro/run", json={
        "symptoms": "Dizzy when standing. Racing heart.",
        "visit_time_min": 10,
        "context": {"pack": "pots"},
    })

    assert response.status_code == 200
    data = response.get_json()["data"]
    blocks = data["priority_blocks"]
    assert len(blocks["intro_90s"]) == 2
    assert len(blocks["close_60s"]) == 2
    assert [q["id"] for q in blocks["core_5min"][-2:]] == ["pots1", "pots2"]
    assert len(blocks["core_5min"]) == 15 + 2
    assert data["pack_used"] == "pots"
    assert data["safety_banner"] == "Communication support only. No diagnosis or treatment advice."


def test_tool_access_reports_required_tier_for_anonymous(client):
    response = client.get("/api/tool-access?tool=resetPro")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["allowed"] is False
    assert data["required_tier"] == "professional"
    assert data["comparison"]["required"]["name"] == "Professional"


def test_tool_access_previews_usage_without_consuming(client):
    first = client.get("/api/tool-access?tool=symptomPro")
    second = client.get("/api/tool-access?tool=symptomPro")

    assert first.get_json()["data"]["allowed"] is True
    usage = second.get_json()["data"]["usage"]
    assert usage["windows"]["hourly"]["used"] == 0
    assert usage["windows"]["daily"]["limit"] == 3


def test_plans_endpoint_shape(client, monkeypatch):
    monkeypatch.setattr(runtime, "STRIPE_PUBLISHABLE_KEY", "pk_test_contract")

    response = client.get("/api/plans")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["stripe_publishable_key"] == "pk_test_contract"
    names = [plan["name"] for plan in data["plans"]]
    assert names[0] == "free"
    assert "grandfathered" not in names


def test_stripe_webhook_requires_secret(client, monkeypatch):
    monkeypatch.setattr(runtime, "STRIPE_WEBHOOK_SECRET", "")

    response = client.post("/api/stripe-webhook", data=b"{}", headers={"Content-Type": "application/json"})

    assert response.status_code == 500
    assert response.get_json().get("error") == "Webhook not configured"


def test_healthz_echoes_request_id(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-123"


def test_api_preflight_allows_configured_origin(client, monkeypatch):
    monkeypatch.setattr(runtime, "CORS_ALLOWED_ORIGINS", frozenset({"http://localhost:5000"}))

    response = client.open("/api/plans", method="OPTIONS", headers={"Origin": "http://localhost:5000"})

    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5000"


def test_subscription_unauthenticated_is_free(client):
    response = client.get("/api/subscription")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["tier"] == "free"
    assert data["status"] == "unauthenticated"
    assert data["tools"] == ["symptomPro"]
