"""AI provider service (Gemini + Ollama) for the craving coach."""

from __future__ import annotations

import json
import logging
import math
from typing import Any

import httpx
from google import genai
from google.genai import types

from fastinghero.core.config import settings
from fastinghero.core.deadline import remaining_timeout

logger = logging.getLogger(__name__)

# Upper bound for one provider call; the active deadline may shorten it
PROVIDER_TIMEOUT_SECONDS = 45.0

SUPPORTED_PROVIDERS = ("gemini", "ollama")


class AIServiceError(Exception):
    """Raised when the coach cannot produce a usable reply."""


CRAVING_FIELDS = ("immediate_action", "distraction", "science", "motivation")

CRAVING_HELP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": list(CRAVING_FIELDS),
    "properties": {name: {"type": "string"} for name in CRAVING_FIELDS},
}

CRAVING_HELP_TASK = (
    "You are an emergency fasting coach. The user is mid-fast and fighting a craving. "
    "Give one 20-second action they can do right now (immediate_action), one 5-minute "
    "activity to redirect their focus (distraction), one biological fact about what is "
    "happening in their body at this stage of the fast (science) and a powerful one-liner "
    "under 15 words (motivation). Be firm, direct and supportive. No fluff. Under 100 words total."
)


class CravingCoach:
    """Immediate coaching reply for a raised flare.

    The model gets one corrective retry when its first answer is not a JSON
    object with the four non-blank string fields.
    """

    def __init__(self, provider: str | None = None) -> None:
        self.provider = (provider or settings.ai_provider).strip().lower()

    def craving_help(self, user_id: int, description: str, hours_fasted: float | None = None) -> dict[str, str]:
        if self.provider not in SUPPORTED_PROVIDERS:
            raise AIServiceError(f"Unsupported provider '{self.provider}'. Use 'gemini' or 'ollama'.")

        situation: dict[str, Any] = {"craving": description or "general hunger"}
        if hours_fasted is not None:
            situation["hours_fasted"] = math.floor(hours_fasted * 10) / 10
        prompt = craving_prompt(situation)

        raw = _call_provider(self.provider, prompt, CRAVING_HELP_SCHEMA)
        try:
            return parse_coaching_reply(raw)
        except ValueError as exc:
            logger.info("Unusable coaching reply for user %s (%s); retrying once", user_id, exc)
            prompt = f"Your previous answer could not be used: {exc}\nPrevious answer:\n{raw}\n\n{prompt}"

        raw = _call_provider(self.provider, prompt, CRAVING_HELP_SCHEMA)
        try:
            return parse_coaching_reply(raw)
        except ValueError as exc:
            raise AIServiceError(f"{self.provider} gave no usable coaching reply after a retry: {exc}") from exc


def craving_prompt(situation: dict[str, Any]) -> str:
    return (
        f"{CRAVING_HELP_TASK}\n\n"
        f"Situation:\n{json.dumps(situation, ensure_ascii=True)}\n\n"
        "Answer with only a JSON object whose string fields are " + ", ".join(CRAVING_FIELDS) + "."
    )


def parse_coaching_reply(raw: str | dict[str, Any]) -> dict[str, str]:
    """Decode a provider answer, tolerating a markdown fence. Raises ValueError."""
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("```") and text.endswith("```"):
            text = text[3:-3].strip()
            if text.startswith("json"):
                text = text[4:]
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid JSON ({exc.msg})") from exc
    if not isinstance(raw, dict):
        raise ValueError("expected a JSON object")

    reply: dict[str, str] = {}
    for name in CRAVING_FIELDS:
        value = raw.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{name}' must be a non-blank string")
        reply[name] = value.strip()
    return reply


def _call_provider(provider: str, prompt: str, schema: dict[str, Any]) -> str | dict[str, Any]:
    if provider == "gemini":
        return _call_gemini(prompt, schema)
    return _call_ollama(prompt, schema)


def _provider_timeout() -> float:
    timeout = remaining_timeout(PROVIDER_TIMEOUT_SECONDS)
    if timeout <= 0:
        raise AIServiceError("Deadline exceeded before the provider call")
    return timeout


def _call_gemini(prompt: str, schema: dict[str, Any]) -> str | dict[str, Any]:
    if not settings.gemini_api_key:
        raise AIServiceError("GEMINI_API_KEY is not configured")

    client = genai.Client(
        api_key=settings.gemini_api_key,
        http_options=types.HttpOptions(timeout=int(_provider_timeout() * 1000)),
    )

    response = client.models.generate_content(
        model=settings.gemini_model,
        contents=prompt,
        config=types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=schema,
        ),
    )

    parsed = getattr(response, "parsed", None)
    if isinstance(parsed, dict):
        return parsed

    text = getattr(response, "text", None)
    if not text:
        raise AIServiceError("Gemini returned an empty response")
    return text


def _call_ollama(prompt: str, schema: dict[str, Any]) -> str | dict[str, Any]:
    url = settings.ollama_base_url.rstrip("/") + "/api/generate"
    payload = {
        "model": settings.ollama_model,
        "prompt": prompt,
        "stream": False,
        "format": schema,
    }

    try:
        response = httpx.post(url, json=payload, timeout=_provider_timeout())
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise AIServiceError(f"Ollama request failed: {exc}") from exc

    data = response.json()
    if "response" not in data:
        raise AIServiceError("Ollama response missing 'response' field")

    return data["response"]
