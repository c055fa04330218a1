from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from flask import current_app, has_request_context, request

from ..errors import AIProviderError, StoryBibleError
from .openai_client import OpenAIGenerator

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_CACHE_KEY = "_TEXT_GENERATOR_INSTANCE"
API_KEY_HEADER = "X-OpenAI-Key"


class PromptConfigurationError(StoryBibleError):
    """Raised when ``prompt_config.json`` is missing or malformed."""

    code = "PROMPT_CONFIG_ERROR"
    status_code = 500


def load_prompt_entry(key: str) -> Dict[str, Any]:
    config = load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise PromptConfigurationError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise PromptConfigurationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    if not entry.get("prompt_template"):
        raise PromptConfigurationError(f"Prompt configuration entry '{key}' is missing the template text.")
    return entry


def load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise PromptConfigurationError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise PromptConfigurationError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise PromptConfigurationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise PromptConfigurationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {"max_new_tokens", "temperature", "top_p"}


def extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the client."""

    if not isinstance(parameters, dict):
        return {}
    return {
        key: parameters[key]
        for key in _GENERATION_PARAMETER_KEYS
        if key in parameters and parameters[key] is not None
    }


def get_text_generator() -> OpenAIGenerator:
    """Return the per-app generator, or a one-off one for an ``X-OpenAI-Key`` request."""

    app = current_app
    model_name = app.config.get("OPENAI_MODEL") or "gpt-4o-mini"

    override = request.headers.get(API_KEY_HEADER, "").strip() if has_request_context() else ""
    if override:
        return OpenAIGenerator(model_name=model_name, api_key=override)

    cached = app.config.get(GENERATOR_CACHE_KEY)
    if cached is not None:
        return cached

    api_key = app.config.get("OPENAI_API_KEY")
    if not api_key:
        app.logger.info("OPENAI_API_KEY not configured; AI-assisted intake is unavailable.")
        raise AIProviderError("AI provider is not configured")

    app.logger.info("Initialising OpenAI generator for model: %s", model_name)
    generator = OpenAIGenerator(model_name=model_name, api_key=api_key)
    app.config[GENERATOR_CACHE_KEY] = generator
    return generator


__all__ = [
    "API_KEY_HEADER",
    "PromptConfigurationError",
    "extract_generation_parameters",
    "get_text_generator",
    "load_prompt_config",
    "load_prompt_entry",
]
