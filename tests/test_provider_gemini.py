"""Tests for the Gemini provider adapter."""

import json
import logging

import httpx
import pytest

from mom_followup.errors import TerminalUpstreamError, TransientUpstreamError
from mom_followup.providers.base import ProviderCall, parse_structured_output
from mom_followup.providers.gemini import GeminiHandler
from mom_followup.retry import Retrier

RESULT = {"whatsappMessage": "Hi Alice, thanks for today.", "actionItems": ["Send proposal"]}


def _gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _ok(payload=RESULT):
    return httpx.Response(200, json=_gemini_body(json.dumps(payload)))


def _call(**overrides):
    base = dict(
        user_query="Met Alice about the rollout.",
        system_prompt="Write a MOM.",
        model="gemini-2.0-flash-exp",
        api_key="valid",
    )
    base.update(overrides)
    return ProviderCall(**base)


def _handler(outcomes, sleep):
    requests = []

    def respond(request):
        requests.append(request)
        outcome = outcomes[len(requests) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client = httpx.AsyncClient(transport=httpx.MockTransport(respond))
    handler = GeminiHandler(
        base_url="https://gemini.test/v1beta",
        timeout=5.0,
        retrier=Retrier(sleep=sleep),
        client=client,
    )
    return handler, requests


@pytest.mark.asyncio
async def test_gemini_success_maps_wire_format(recording_sleep):
    handler, requests = _handler([_ok()], recording_sleep)

    result = await handler.handle(_call())

    assert result.whatsapp_message == RESULT["whatsappMessage"]
    assert result.action_items == ["Send proposal"]
    assert recording_sleep.calls == []

    request = requests[0]
    assert request.method == "POST"
    assert request.url.path == "/v1beta/models/gemini-2.0-flash-exp:generateContent"
    assert request.headers["x-goog-api-key"] == "valid"
    assert "key" not in request.url.params
    body = json.loads(request.content)
    assert body["contents"] == [{"parts": [{"text": "Met Alice about the rollout."}]}]
    assert body["systemInstruction"] == {"parts": [{"text": "Write a MOM."}]}
    config = body["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"]["required"] == ["whatsappMessage", "actionItems"]
    assert config["responseSchema"]["properties"]["actionItems"]["items"] == {"type": "STRING"}
    await handler.aclose()


@pytest.mark.asyncio
async def test_gemini_retries_rate_limits(recording_sleep):
    """Three 429s then success waits 1s, 2s and 4s."""
    outcomes = [httpx.Response(429, text="slow down")] * 3 + [_ok()]
    handler, requests = _handler(outcomes, recording_sleep)

    result = await handler.handle(_call())

    assert result.action_items == ["Send proposal"]
    assert len(requests) == 4
    assert recording_sleep.calls == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_gemini_retries_network_errors(recording_sleep):
    outcomes = [httpx.ConnectError("connection refused"), httpx.Response(503, text="down"), _ok()]
    handler, requests = _handler(outcomes, recording_sleep)

    result = await handler.handle(_call())

    assert result.whatsapp_message.startswith("Hi Alice")
    assert recording_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gemini_unauthorized_is_terminal(recording_sleep):
    handler, requests = _handler([httpx.Response(401, text="API key not valid")], recording_sleep)

    with pytest.raises(TerminalUpstreamError) as exc:
        await handler.handle(_call(api_key="bad"))

    assert "401" in exc.value.message
    assert exc.value.retryable is False
    assert exc.value.details["status_code"] == 401
    assert len(requests) == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_gemini_exhausts_retries(recording_sleep):
    outcomes = [httpx.Response(500, text=f"boom {n}") for n in range(5)]
    handler, requests = _handler(outcomes, recording_sleep)

    with pytest.raises(TransientUpstreamError) as exc:
        await handler.handle(_call())

    assert exc.value.code == "retries_exhausted"
    assert "failed after 5 retries" in exc.value.message
    assert "boom 4" in exc.value.message
    assert exc.value.details["attempts"] == 5
    assert len(requests) == 5
    assert recording_sleep.calls == [1.0, 2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_gemini_invalid_json_is_terminal(recording_sleep):
    handler, requests = _handler([httpx.Response(200, json=_gemini_body("not json {"))], recording_sleep)

    with pytest.raises(TerminalUpstreamError) as exc:
        await handler.handle(_call())

    assert exc.value.code == "invalid_json"
    assert exc.value.message == "upstream returned invalid JSON"
    assert len(requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"candidates": []},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"finishReason": "SAFETY"}]},
        {"candidates": [{"content": "oops"}]},
        {"candidates": [{"content": {"parts": [{"text": 5}]}}]},
        {"candidates": [{"content": {"parts": "text"}}]},
        {"candidates": "none"},
    ],
)
async def test_gemini_missing_content(recording_sleep, body):
    handler, _ = _handler([httpx.Response(200, json=body)], recording_sleep)

    with pytest.raises(TerminalUpstreamError) as exc:
        await handler.handle(_call())

    assert exc.value.code == "no_content"
    assert exc.value.message == "upstream returned no content"


@pytest.mark.asyncio
async def test_gemini_rejects_missing_action_items(recording_sleep):
    """A result without actionItems is malformed, never defaulted to an empty list."""
    handler, _ = _handler([_ok({"whatsappMessage": "Hi Bob"})], recording_sleep)

    with pytest.raises(TerminalUpstreamError) as exc:
        await handler.handle(_call())

    assert exc.value.code == "contract_violation"
    assert "actionItems" in exc.value.message


@pytest.mark.asyncio
async def test_gemini_accepts_empty_action_items(recording_sleep):
    handler, _ = _handler([_ok({"whatsappMessage": "Hi Bob", "actionItems": []})], recording_sleep)

    result = await handler.handle(_call())

    assert result.action_items == []


@pytest.mark.asyncio
async def test_gemini_lists_fixed_models(recording_sleep):
    handler, requests = _handler([], recording_sleep)

    models = await handler.list_models(None)

    assert [model.id for model in models] == ["gemini-2.0-flash-exp", "gemini-1.5-pro", "gemini-1.5-flash"]
    assert requests == []


@pytest.mark.asyncio
async def test_gemini_api_key_never_logged(recording_sleep, caplog):
    caplog.set_level(logging.DEBUG)
    outcomes = [httpx.Response(429, text="slow down"), httpx.Response(401, text="API key not valid")]
    handler, _ = _handler(outcomes, recording_sleep)

    with pytest.raises(TerminalUpstreamError):
        await handler.handle(_call(api_key="SECRET-KEY-123"))

    assert caplog.records
    assert all("SECRET-KEY-123" not in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_gemini_api_key_not_in_request_url(recording_sleep):
    handler, requests = _handler([_ok()], recording_sleep)

    await handler.handle(_call(api_key="SECRET-KEY-123"))

    assert "SECRET-KEY-123" not in str(requests[0].url)


@pytest.mark.parametrize("text", [None, "", 5, ["{}"]])
def test_parse_structured_output_rejects_non_text(text):
    with pytest.raises(TerminalUpstreamError) as exc:
        parse_structured_output(text)

    assert exc.value.code == "no_content"
