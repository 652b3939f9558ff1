# tests/test_gemini_client.py
import asyncio
import json

import httpx
import pytest

from core.errors import (
    GenerationTimeoutError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)
from core.rate_limiter import RateLimiter
from models.generation.gemini_client import GeminiPathwayClient, create_client, extract_json
from models.schema_definition import CatalogSummary, UrgencyTier


@pytest.fixture
def context():
    return CatalogSummary(
        symptom_names=["Fever", "Headache"],
        body_systems=["general", "neurological"],
        rule_tier=UrgencyTier.ROUTINE,
        rule_rationale="No escalation criteria met",
    )


def _run(coro):
    return asyncio.run(coro)


def test_request_shape(mock_gemini, make_input, context):
    history = [("user" if i % 2 == 0 else "assistant", f"turn {i}") for i in range(12)]
    ti = make_input(["fever", "headache"], history=history, language="es", relationship="child")
    client, calls = mock_gemini()

    _run(client.generate(ti, context, client_key="1.2.3.4"))

    assert len(calls) == 1
    request = calls[0]
    assert str(request.url).endswith("/models/gemini-1.5-flash:generateContent")
    assert request.headers["x-goog-api-key"] == "test-key"

    body = json.loads(request.content)
    contents = body["contents"]
    # last 10 history turns + the current request
    assert len(contents) == 11
    assert contents[0]["parts"][0]["text"] == "turn 2"
    assert contents[1]["role"] == "model"
    assert contents[-1]["role"] == "user"
    assert "Fever, Headache" in contents[-1]["parts"][0]["text"]

    system = body["systemInstruction"]["parts"][0]["text"]
    assert "Spanish" in system
    assert "caregiver" in system

    assert body["generationConfig"]["responseMimeType"] == "application/json"
    assert len(body["safetySettings"]) == 4
    assert {s["threshold"] for s in body["safetySettings"]} == {"BLOCK_MEDIUM_AND_ABOVE"}


def test_fenced_output_is_parsed_and_steps_renumbered(
    mock_gemini, make_input, context, pathway_json, gemini_response
):
    client, _ = mock_gemini(lambda r: httpx.Response(200, json=gemini_response(pathway_json, fenced=True)))

    result = _run(client.generate(make_input(["fever"]), context))

    assert result.urgency_level == "routine"
    assert [s.order for s in result.immediate_actions] == [1, 2]
    assert [s.title for s in result.immediate_actions] == ["Rest", "Stay Hydrated"]
    assert result.seek_help_if == ["Fever above 39.4°C", "Difficulty breathing"]


def test_null_list_items_are_dropped(mock_gemini, make_input, context, pathway_json, gemini_response):
    pathway_json["seekHelpIf"] = [None, "Confusion"]
    pathway_json["immediateActions"][0]["actions"] = ["Drink water", None]
    client, _ = mock_gemini(lambda r: httpx.Response(200, json=gemini_response(pathway_json)))

    result = _run(client.generate(make_input(["fever"]), context))

    assert result.seek_help_if == ["Confusion"]
    assert result.immediate_actions[1].actions == ["Drink water"]


def test_scalar_list_fields_are_wrapped(mock_gemini, make_input, context, pathway_json, gemini_response):
    pathway_json["seekHelpIf"] = "Fever lasting more than 3 days"
    pathway_json["immediateActions"][0]["actions"] = "Drink water"
    pathway_json["immediateActions"][0]["warnings"] = "  "
    client, _ = mock_gemini(lambda r: httpx.Response(200, json=gemini_response(pathway_json)))

    result = _run(client.generate(make_input(["fever"]), context))

    assert result.seek_help_if == ["Fever lasting more than 3 days"]
    assert result.immediate_actions[1].actions == ["Drink water"]
    assert result.immediate_actions[1].warnings == []


def test_server_error_raises_upstream_error(mock_gemini, make_input, context):
    client, calls = mock_gemini(lambda r: httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(UpstreamError) as exc:
        _run(client.generate(make_input(["fever"]), context))
    assert exc.value.status_code == 500
    assert len(calls) == 1


def test_unavailable_is_retried_once(mock_gemini, make_input, context, pathway_json, gemini_response):
    responses = iter([
        httpx.Response(503),
        httpx.Response(200, json=gemini_response(pathway_json)),
    ])
    client, calls = mock_gemini(lambda r: next(responses))

    result = _run(client.generate(make_input(["fever"]), context))

    assert len(calls) == 2
    assert result.symptom_explanation


def test_retries_are_bounded(mock_gemini, make_input, context):
    client, calls = mock_gemini(lambda r: httpx.Response(429), max_retries=2)

    with pytest.raises(UpstreamError):
        _run(client.generate(make_input(["fever"]), context))
    assert len(calls) == 3


def test_read_timeout_raises_generation_timeout(mock_gemini, make_input, context):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client, _ = mock_gemini(handler)
    with pytest.raises(GenerationTimeoutError):
        _run(client.generate(make_input(["fever"]), context))


def test_connection_error_raises_upstream_error(mock_gemini, make_input, context):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client, _ = mock_gemini(handler)
    with pytest.raises(UpstreamError):
        _run(client.generate(make_input(["fever"]), context))


@pytest.mark.parametrize("body", [
    {"candidates": [{"content": {"parts": [{"text": "I cannot help with that."}]}}]},
    {"candidates": [{"content": {"parts": [{"text": '{"immediateActions": [{"order": 1}]}'}]}}]},
    {"candidates": []},
    {"promptFeedback": {"blockReason": "SAFETY"}},
])
def test_unusable_output_raises_upstream_error(mock_gemini, make_input, context, body):
    client, _ = mock_gemini(lambda r: httpx.Response(200, json=body))
    with pytest.raises(UpstreamError):
        _run(client.generate(make_input(["fever"]), context))


def test_rate_limit_is_checked_before_network(mock_gemini, make_input, context):
    limiter = RateLimiter(max_requests=1)
    limiter.check("1.2.3.4")
    client, calls = mock_gemini(rate_limiter=limiter)

    with pytest.raises(RateLimitedError) as exc:
        _run(client.generate(make_input(["fever"]), context, client_key="1.2.3.4"))
    assert exc.value.retry_after_s == 60
    assert calls == []


def test_missing_api_key_is_service_unavailable(monkeypatch, make_input, context):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_GEMINI_API_KEY", raising=False)
    limiter = RateLimiter()
    client = GeminiPathwayClient(rate_limiter=limiter)

    assert client.configured is False
    with pytest.raises(ServiceUnavailableError):
        _run(client.generate(make_input(["fever"]), context, client_key="a"))
    assert len(limiter.store) == 0


def test_api_key_read_from_environment(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_GEMINI_API_KEY", "env-key")
    assert GeminiPathwayClient().api_key == "env-key"


def test_create_client_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_client({"backend": "medgemma"})


def test_create_client_reads_config():
    client = create_client({"api_key": "k", "model": "gemini-2.0-flash", "timeout_s": 5})
    assert client.endpoint.endswith("/models/gemini-2.0-flash:generateContent")
    assert client.timeout_s == 5


def test_extract_json_variants():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('prefix {"a": {"b": 2}} suffix') == {"a": {"b": 2}}
    with pytest.raises(ValueError):
        extract_json("no json here")
