#!/usr/bin/env python3
"""Gemini client request building and response parsing tests."""
import json

import pytest
import requests

from metric_digest.config import Config
from metric_digest.errors import GenerationServiceError
from metric_digest.gemini_client import GeminiClient, extract_text


CONFIG = Config(
    influx_token="token",
    influx_org="garden",
    influx_bucket="sensors",
    google_api_key="secret",
)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            return json.loads(self.text)
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def ok(text="All sensors nominal."):
    return FakeResponse(body={"candidates": [{"content": {"parts": [{"text": text}, {"text": "ignored"}]}}]})


def test_request_shape_and_timeouts():
    session = FakeSession(ok())
    assert GeminiClient(CONFIG, session=session).generate_summary("hello") == "All sensors nominal."

    url, kwargs = session.calls[0]
    assert url == "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    assert kwargs["params"] == {"key": "secret"}
    assert kwargs["timeout"] == (15, 60)
    assert kwargs["json"]["contents"] == [{"parts": [{"text": "hello"}]}]
    assert kwargs["json"]["system_instruction"] == {
        "parts": [{"text": "You are a concise observability assistant."}]
    }


def test_blank_system_instruction_omitted():
    config = CONFIG.model_copy(update={"system_instruction": "  "})
    payload = GeminiClient(config).build_request("hello")

    assert "system_instruction" not in payload


@pytest.mark.parametrize("body", [
    {},
    {"candidates": []},
    {"candidates": [{"content": {"parts": []}}]},
    {"candidates": [{"content": {}}]},
    {"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]},
])
def test_missing_candidate_or_part_gives_empty_text(body):
    assert extract_text(body) == ""


def test_http_error_raises():
    session = FakeSession(FakeResponse(status_code=429, text="quota exhausted"))

    with pytest.raises(GenerationServiceError) as exc_info:
        GeminiClient(CONFIG, session=session).generate_summary("hello")

    assert "HTTP 429" in str(exc_info.value)
    assert "quota exhausted" in str(exc_info.value)


def test_transport_error_raises():
    session = FakeSession(error=requests.ConnectTimeout("timed out"))

    with pytest.raises(GenerationServiceError):
        GeminiClient(CONFIG, session=session).generate_summary("hello")


@pytest.mark.parametrize("response", [
    FakeResponse(text="<html>not json</html>"),
    FakeResponse(body=["not", "an", "object"]),
    FakeResponse(body={"candidates": [{"finishReason": "SAFETY"}]}),
    FakeResponse(body={"candidates": [{"content": {"parts": [{"text": 42}]}}]}),
])
def test_unparsable_shape_raises(response):
    session = FakeSession(response)

    with pytest.raises(GenerationServiceError) as exc_info:
        GeminiClient(CONFIG, session=session).generate_summary("hello")

    assert "Failed to parse Gemini response" in str(exc_info.value)


def test_custom_endpoint_and_model():
    config = CONFIG.model_copy(update={"google_api_endpoint": "http://proxy:9000/v1/", "model": "gemini-x"})
    session = FakeSession(ok())
    GeminiClient(config, session=session).generate_summary("hello")

    assert session.calls[0][0] == "http://proxy:9000/v1/models/gemini-x:generateContent"
