from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.config import Settings
from app.errors import (
    ConfigurationInvalid,
    MalformedUpstreamResponse,
    UpstreamRejected,
    UpstreamUnavailable,
)
from app.services.personas import Persona, PersonaRegistry
from app.services.session_tokens import SessionTokenIssuer

NOW = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def _settings(**overrides) -> Settings:  # noqa: ANN003
    values = dict(
        azure_openai_endpoint="https://demo.openai.azure.com",
        azure_openai_api_key="test-key",
        realtime_model="gpt-4o-mini-realtime-preview",
        default_voice="alloy",
        default_instructions="Default instructions.",
        region="swedencentral",
        realtime_ws_url=None,
        personas_file=None,
    )
    values.update(overrides)
    return Settings(**values)


REGISTRY = PersonaRegistry(
    [
        Persona(
            id="mentor",
            name="Mentor",
            description="",
            voice_id="echo",
            system_instructions="Teach patiently.",
        )
    ]
)


class Upstream:
    """Records requests and answers with a canned response."""

    def __init__(self, status_code: int = 200, payload: object = None, *, text: str | None = None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {"client_secret": {"value": "ek_123"}}
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)


def _issuer(upstream: Upstream, **overrides) -> SessionTokenIssuer:  # noqa: ANN003
    return SessionTokenIssuer(
        _settings(**overrides),
        REGISTRY,
        transport=httpx.MockTransport(upstream),
        clock=lambda: NOW,
    )


def test_request_targets_normalized_session_endpoint_with_headers() -> None:
    upstream = Upstream()
    _run(_issuer(upstream, azure_openai_endpoint="https://demo.openai.azure.com/").create_session_token())

    request = upstream.requests[0]
    assert request.method == "POST"
    assert str(request.url) == (
        "https://demo.openai.azure.com/openai/realtimeapi/sessions?api-version=2025-04-01-preview"
    )
    assert request.headers["api-key"] == "test-key"
    assert request.headers["OpenAI-Beta"] == "realtime=v1"


def test_request_body_carries_persona_voice_and_turn_detection() -> None:
    upstream = Upstream()
    _run(_issuer(upstream).create_session_token("mentor"))

    body = json.loads(upstream.requests[0].content)
    assert body["model"] == "gpt-4o-mini-realtime-preview"
    assert body["voice"] == "echo"
    assert body["instructions"] == "Teach patiently."
    assert body["modalities"] == ["text", "audio"]
    assert body["input_audio_format"] == body["output_audio_format"] == "pcm16"
    assert body["turn_detection"] == {
        "type": "server_vad",
        "threshold": 0.5,
        "prefix_padding_ms": 300,
        "silence_duration_ms": 200,
    }


def test_unknown_persona_falls_back_to_defaults() -> None:
    credential = _run(_issuer(Upstream()).create_session_token("does-not-exist"))

    assert credential.voice_id == "alloy"
    assert credential.system_instructions == "Default instructions."


def test_same_persona_twice_yields_same_voice_settings() -> None:
    issuer = _issuer(Upstream())

    first = _run(issuer.create_session_token("mentor"))
    second = _run(issuer.create_session_token("mentor"))

    assert (first.voice_id, first.system_instructions) == (second.voice_id, second.system_instructions)


@pytest.mark.parametrize("client_secret", ["ek_abc", {"value": "ek_abc", "expires_at": 1746100000}])
def test_bare_and_nested_secret_shapes_are_equivalent(client_secret) -> None:  # noqa: ANN001
    credential = _run(_issuer(Upstream(payload={"client_secret": client_secret})).create_session_token())

    assert credential.secret == "ek_abc"


@pytest.mark.parametrize(
    "payload",
    [
        {"id": "sess_1"},
        {"client_secret": None},
        {"client_secret": 42},
        {"client_secret": {"token": "ek_abc"}},
        {"client_secret": ""},
        {"client_secret": {"value": ""}},
    ],
)
def test_unrecognized_secret_is_malformed(payload) -> None:  # noqa: ANN001
    with pytest.raises(MalformedUpstreamResponse):
        _run(_issuer(Upstream(payload=payload)).create_session_token())


def test_non_json_body_is_malformed() -> None:
    with pytest.raises(MalformedUpstreamResponse):
        _run(_issuer(Upstream(text="<html>oops</html>")).create_session_token())


def test_json_array_body_is_malformed() -> None:
    with pytest.raises(MalformedUpstreamResponse):
        _run(_issuer(Upstream(payload=["ek_abc"])).create_session_token())


def test_epoch_expiry_is_read_as_seconds() -> None:
    payload = {"client_secret": "ek", "expires_at": 1746100800}
    credential = _run(_issuer(Upstream(payload=payload)).create_session_token())

    assert credential.expires_at == datetime.fromtimestamp(1746100800, tz=timezone.utc)


def test_string_expiry_is_parsed_as_utc() -> None:
    payload = {"client_secret": "ek", "expires_at": "2025-05-01T12:30:00Z"}
    credential = _run(_issuer(Upstream(payload=payload)).create_session_token())

    assert credential.expires_at == datetime(2025, 5, 1, 12, 30, tzinfo=timezone.utc)


def test_nested_expiry_is_used_when_top_level_missing() -> None:
    payload = {"client_secret": {"value": "ek", "expires_at": 1746100800}}
    credential = _run(_issuer(Upstream(payload=payload)).create_session_token())

    assert credential.expires_at == datetime.fromtimestamp(1746100800, tz=timezone.utc)


@pytest.mark.parametrize("expires_at", [None, "next tuesday", True, {"seconds": 60}])
def test_missing_or_unparsable_expiry_defaults_to_one_minute(expires_at) -> None:  # noqa: ANN001
    payload = {"client_secret": "ek"}
    if expires_at is not None:
        payload["expires_at"] = expires_at
    credential = _run(_issuer(Upstream(payload=payload)).create_session_token())

    assert credential.expires_at == NOW + timedelta(minutes=1)


def test_explicit_endpoint_aliases_follow_priority() -> None:
    payload = {
        "client_secret": "ek",
        "url": "https://generic.example/rtc",
        "realtime_url": "https://realtime.example/rtc",
    }
    credential = _run(_issuer(Upstream(payload=payload)).create_session_token())

    assert credential.realtime_endpoint == "https://realtime.example/rtc"

    payload["webrtc_url"] = "https://webrtc.example/rtc"
    credential = _run(_issuer(Upstream(payload=payload)).create_session_token())

    assert credential.realtime_endpoint == "https://webrtc.example/rtc"


def test_missing_endpoint_is_synthesized_from_region() -> None:
    credential = _run(_issuer(Upstream(payload={"client_secret": "ek"}), region="eastus2").create_session_token())

    assert credential.realtime_endpoint == "https://eastus2.realtimeapi-preview.ai.azure.com/v1/realtimertc"


def test_non_success_status_raises_rejected_with_body() -> None:
    upstream = Upstream(status_code=401, text='{"error": "bad key"}')

    with pytest.raises(UpstreamRejected) as excinfo:
        _run(_issuer(upstream).create_session_token())

    assert excinfo.value.status_code == 401
    assert "bad key" in excinfo.value.body
    assert len(upstream.requests) == 1


def test_network_failure_raises_unavailable() -> None:
    def explode(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    issuer = SessionTokenIssuer(_settings(), REGISTRY, transport=httpx.MockTransport(explode))

    with pytest.raises(UpstreamUnavailable):
        _run(issuer.create_session_token())


@pytest.mark.parametrize(
    "overrides",
    [
        {"azure_openai_endpoint": None},
        {"azure_openai_api_key": ""},
        {"azure_openai_endpoint": "demo.openai.azure.com"},
    ],
)
def test_missing_configuration_fails_before_any_request(overrides) -> None:  # noqa: ANN001
    upstream = Upstream()

    with pytest.raises(ConfigurationInvalid):
        _run(_issuer(upstream, **overrides).create_session_token())

    assert upstream.requests == []


def test_secret_is_hidden_from_repr() -> None:
    credential = _run(_issuer(Upstream(payload={"client_secret": "ek_secret"})).create_session_token())

    assert "ek_secret" not in repr(credential)
