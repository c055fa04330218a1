"""OpenAI client used by the intake pipeline and the writing assistant."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, Optional

import openai

from ..errors import (
    AI_CONTENT_FILTERED,
    AI_CONTEXT_TOO_LARGE,
    AI_PROVIDER_ERROR,
    AI_RATE_LIMITED,
    AIProviderError,
)

LOGGER = logging.getLogger(__name__)

JSON_SYSTEM_MESSAGE = "You extract structured data for a fiction writer's story bible. Reply with one JSON object only."
WRITER_SYSTEM_MESSAGE = "You are a fiction writing assistant. Write in the language and voice of the material you are given."
RESPONSES_MODEL_PREFIXES = ("gpt-5", "gpt-4.1", "o3", "o4")
DEFAULT_MAX_TOKENS = 2048

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def strip_json_fences(text: str) -> str:
    cleaned = (text or "").strip()
    match = _FENCE_PATTERN.match(cleaned)
    return match.group(1).strip() if match else cleaned


def translate_openai_error(exc: Exception) -> AIProviderError:
    """Map an OpenAI SDK exception to the application's ``AIProviderError``."""

    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if isinstance(exc, openai.RateLimitError):
        return AIProviderError(f"AI rate limit reached: {message}", AI_RATE_LIMITED, retriable=True)
    if "context_length" in lowered or "maximum context length" in lowered:
        return AIProviderError(f"Input is too large for the model: {message}", AI_CONTEXT_TOO_LARGE)
    if "content_filter" in lowered or "content management policy" in lowered:
        return AIProviderError(f"Content was blocked by the provider: {message}", AI_CONTENT_FILTERED)
    retriable = isinstance(exc, (openai.APIConnectionError, openai.InternalServerError))
    return AIProviderError(f"AI provider request failed: {message}", AI_PROVIDER_ERROR, retriable=retriable)


def _preview(text: str, limit: int = 300) -> str:
    flat = " ".join((text or "").split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


class OpenAIGenerator:
    """Send a prompt to OpenAI and return the parsed JSON reply.

    Reasoning-era models (gpt-5, gpt-4.1, o3, o4) go through the Responses
    API; the rest use Chat Completions. Both ask for a JSON object output.
    """

    def __init__(self, model_name: str, api_key: str, default_max_tokens: int = DEFAULT_MAX_TOKENS) -> None:
        if not (api_key or "").strip():
            raise AIProviderError("AI provider is not configured")
        self.model = (model_name or "").strip()
        self.max_tokens = int(default_max_tokens or DEFAULT_MAX_TOKENS)
        self._client = openai.OpenAI(api_key=api_key.strip())

    @property
    def uses_responses_api(self) -> bool:
        return self.model.lower().startswith(RESPONSES_MODEL_PREFIXES)

    def generate_json(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> Any:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        budget = int(max_new_tokens) if max_new_tokens is not None else self.max_tokens
        if budget <= 0:
            raise ValueError("max_new_tokens must be positive")

        sampling: Dict[str, float] = {}
        if temperature is not None:
            sampling["temperature"] = float(temperature)
        if top_p is not None:
            sampling["top_p"] = float(top_p)

        try:
            if self.uses_responses_api:
                raw = self._ask_responses(prompt, budget, sampling)
            else:
                raw = self._ask_chat(prompt, budget, sampling)
        except openai.OpenAIError as exc:
            LOGGER.warning("OpenAI request for %s failed: %s", self.model, exc)
            raise translate_openai_error(exc) from exc

        try:
            return json.loads(strip_json_fences(raw))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Model returned invalid JSON: %s", _preview(raw))
            raise AIProviderError(f"AI returned invalid JSON: {exc.msg}") from exc

    def _ask_responses(self, prompt: str, budget: int, sampling: Dict[str, float]) -> str:
        response = self._client.responses.create(
            model=self.model,
            instructions=JSON_SYSTEM_MESSAGE,
            input=prompt,
            max_output_tokens=budget,
            text={"format": {"type": "json_object"}},
            **sampling,
        )
        if getattr(response, "status", None) == "incomplete":
            reason = getattr(getattr(response, "incomplete_details", None), "reason", None)
            if reason == "content_filter":
                raise AIProviderError("Content was blocked by the provider", AI_CONTENT_FILTERED)
            raise AIProviderError(f"AI response was cut off ({reason or 'unknown reason'})", retriable=True)

        text = (getattr(response, "output_text", None) or "").strip()
        if not text:
            raise AIProviderError("AI returned an empty response", retriable=True)
        return text

    def _ask_chat(self, prompt: str, budget: int, sampling: Dict[str, float]) -> str:
        completion = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": JSON_SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            max_tokens=budget,
            response_format={"type": "json_object"},
            **sampling,
        )
        if not completion.choices:
            raise AIProviderError("AI returned an empty response", retriable=True)

        choice = completion.choices[0]
        if choice.finish_reason == "content_filter":
            raise AIProviderError("Content was blocked by the provider", AI_CONTENT_FILTERED)
        if choice.finish_reason == "length":
            raise AIProviderError("AI response was cut off (max_output_tokens)", retriable=True)

        text = (choice.message.content or "").strip()
        if not text:
            raise AIProviderError("AI returned an empty response", retriable=True)
        return text

    def stream_text(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield ``{"type": "content"}`` chunks and a final ``{"type": "done"}`` chunk.

        The done chunk carries ``usage`` with ``prompt_tokens`` and
        ``completion_tokens`` when the provider reports them. SDK failures are
        raised as ``AIProviderError``.
        """

        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        budget = int(max_new_tokens) if max_new_tokens is not None else self.max_tokens
        if budget <= 0:
            raise ValueError("max_new_tokens must be positive")
        model_name = (model or "").strip() or self.model
        sampling: Dict[str, float] = {}
        if temperature is not None:
            sampling["temperature"] = float(temperature)

        try:
            if model_name.lower().startswith(RESPONSES_MODEL_PREFIXES):
                yield from self._stream_responses(model_name, prompt, budget, sampling)
            else:
                yield from self._stream_chat(model_name, prompt, budget, sampling)
        except openai.OpenAIError as exc:
            LOGGER.warning("OpenAI stream for %s failed: %s", model_name, exc)
            raise translate_openai_error(exc) from exc

    def _stream_chat(
        self, model_name: str, prompt: str, budget: int, sampling: Dict[str, float]
    ) -> Iterator[Dict[str, Any]]:
        stream = self._client.chat.completions.create(
            model=model_name,
            messages=[
                {"role": "system", "content": WRITER_SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            max_tokens=budget,
            stream=True,
            stream_options={"include_usage": True},
            **sampling,
        )
        usage = None
        for chunk in stream:
            if getattr(chunk, "usage", None) is not None:
                usage = {
                    "prompt_tokens": chunk.usage.prompt_tokens,
                    "completion_tokens": chunk.usage.completion_tokens,
                }
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            if choice.finish_reason == "content_filter":
                raise AIProviderError("Content was blocked by the provider", AI_CONTENT_FILTERED)
            text = getattr(choice.delta, "content", None)
            if text:
                yield {"type": "content", "content": text}
        yield {"type": "done", "usage": usage}

    def _stream_responses(
        self, model_name: str, prompt: str, budget: int, sampling: Dict[str, float]
    ) -> Iterator[Dict[str, Any]]:
        stream = self._client.responses.create(
            model=model_name,
            instructions=WRITER_SYSTEM_MESSAGE,
            input=prompt,
            max_output_tokens=budget,
            stream=True,
            **sampling,
        )
        usage = None
        for event in stream:
            kind = getattr(event, "type", "")
            if kind == "response.output_text.delta":
                if event.delta:
                    yield {"type": "content", "content": event.delta}
            elif kind in ("response.completed", "response.incomplete"):
                response = event.response
                if getattr(response, "usage", None) is not None:
                    usage = {
                        "prompt_tokens": response.usage.input_tokens,
                        "completion_tokens": response.usage.output_tokens,
                    }
                reason = getattr(getattr(response, "incomplete_details", None), "reason", None)
                if reason == "content_filter":
                    raise AIProviderError("Content was blocked by the provider", AI_CONTENT_FILTERED)
            elif kind == "error":
                raise AIProviderError(f"AI provider request failed: {getattr(event, 'message', 'stream error')}")
        yield {"type": "done", "usage": usage}


__all__ = ["OpenAIGenerator", "strip_json_fences", "translate_openai_error"]
