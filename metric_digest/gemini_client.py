"""Client for the Google Generative Language (Gemini) API."""
from typing import Any, Dict
import logging
import time

import requests

from metric_digest.config import Config
from metric_digest.errors import GenerationServiceError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 15
REQUEST_TIMEOUT_S = 60


class GeminiClient:
    """Calls ``generateContent`` and returns the first candidate's first text part."""

    def __init__(self, config: Config, session=None):
        self.config = config
        self.endpoint = config.google_api_endpoint.rstrip("/")
        self.session = session or requests

    def build_request(self, prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        instruction = self.config.system_instruction
        if instruction and instruction.strip():
            payload["system_instruction"] = {"parts": [{"text": instruction}]}
        return payload

    def generate_summary(self, prompt: str) -> str:
        url = f"{self.endpoint}/models/{self.config.model}:generateContent"
        started = time.perf_counter()
        try:
            response = self.session.post(
                url,
                params={"key": self.config.google_api_key},
                json=self.build_request(prompt),
                headers={"Content-Type": "application/json; charset=utf-8"},
                timeout=(CONNECT_TIMEOUT_S, REQUEST_TIMEOUT_S),
            )
        except requests.RequestException as e:
            raise GenerationServiceError(f"Gemini request failed: {e}") from e

        latency = time.perf_counter() - started
        if response.status_code < 200 or response.status_code >= 300:
            raise GenerationServiceError(
                f"Gemini API error: HTTP {response.status_code} - {response.text.strip()}"
            )
        logger.debug(f"Gemini responded in {latency:.2f}s")

        try:
            return extract_text(response.json())
        except (ValueError, AttributeError, TypeError, IndexError) as e:
            raise GenerationServiceError(
                f"Failed to parse Gemini response: {e} Body: {response.text}"
            ) from e


def extract_text(data: Dict[str, Any]) -> str:
    """First candidate, first part, ``text``; empty string when any is missing."""
    candidates = data.get("candidates")
    if not candidates:
        return ""
    content = candidates[0].get("content")
    if content is None:
        raise ValueError("candidate has no content")
    parts = content.get("parts")
    if not parts:
        return ""
    text = parts[0].get("text")
    if text is None:
        return ""
    if not isinstance(text, str):
        raise ValueError("text part is not a string")
    return text
