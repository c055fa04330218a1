import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible import create_app
from storybible.config import TestConfig
from storybible.errors import (
    AI_CONTENT_FILTERED,
    AI_CONTEXT_TOO_LARGE,
    AI_PROVIDER_ERROR,
    AI_RATE_LIMITED,
    AIProviderError,
)
from storybible.services.openai_client import OpenAIGenerator, strip_json_fences, translate_openai_error
from storybible.services.text_generation import GENERATOR_CACHE_KEY, get_text_generator

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _response(status):
    return httpx.Response(status, request=REQUEST)


class FakeEndpoint:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _generator(model="gpt-4o-mini", chat=None, responses=None):
    generator = OpenAIGenerator(model_name=model, api_key="sk-test")
    generator._client = SimpleNamespace(
        chat=SimpleNamespace(completions=chat or FakeEndpoint(None)),
        responses=responses or FakeEndpoint(None),
    )
    return generator


def _chat_reply(content, finish_reason="stop"):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(finish_reason=finish_reason, message=message)])


def _chat_chunk(text=None, usage=None):
    choices = [] if text is None else [SimpleNamespace(finish_reason=None, delta=SimpleNamespace(content=text))]
    return SimpleNamespace(choices=choices, usage=usage)


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


def test_rate_limit_is_retriable():
    error = translate_openai_error(openai.RateLimitError("slow down", response=_response(429), body=None))

    assert error.code == AI_RATE_LIMITED
    assert error.retriable is True
    assert error.message == "AI rate limit reached: slow down"
    assert error.status_code == 502


def test_context_length_and_content_filter_are_classified():
    too_long = openai.BadRequestError(
        "This model's maximum context length is 8192 tokens", response=_response(400), body=None
    )
    assert translate_openai_error(too_long).code == AI_CONTEXT_TOO_LARGE
    assert translate_openai_error(too_long).retriable is False

    filtered = translate_openai_error(Exception("Request rejected: content_filter"))
    assert filtered.code == AI_CONTENT_FILTERED


def test_connection_errors_are_retriable_provider_errors():
    error = translate_openai_error(openai.APIConnectionError(request=REQUEST))

    assert error.code == AI_PROVIDER_ERROR
    assert error.retriable is True
    assert error.message.startswith("AI provider request failed:")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ("```\n[]\n```", "[]"),
        ('  {"a": 1}  ', '{"a": 1}'),
        (None, ""),
    ],
)
def test_strip_json_fences(raw, expected):
    assert strip_json_fences(raw) == expected


def test_generator_requires_api_key():
    with pytest.raises(AIProviderError, match="AI provider is not configured"):
        OpenAIGenerator(model_name="gpt-4o-mini", api_key="  ")


def test_chat_models_use_chat_completions():
    chat = FakeEndpoint(_chat_reply('```json\n{"ok": true}\n```'))
    generator = _generator(chat=chat)

    assert generator.uses_responses_api is False
    assert generator.generate_json("Extract.", temperature=0.2) == {"ok": True}
    call = chat.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["max_tokens"] == 2048
    assert call["temperature"] == 0.2
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][1] == {"role": "user", "content": "Extract."}


def test_reasoning_models_use_responses_api():
    responses = FakeEndpoint(SimpleNamespace(status="completed", output_text='{"ok": 1}'))
    generator = _generator(model="gpt-4.1-mini", responses=responses)

    assert generator.uses_responses_api is True
    assert generator.generate_json("Extract.", max_new_tokens=100) == {"ok": 1}
    call = responses.calls[0]
    assert call["max_output_tokens"] == 100
    assert call["text"] == {"format": {"type": "json_object"}}


def test_generate_json_failures():
    with pytest.raises(AIProviderError, match="cut off") as cut_off:
        _generator(chat=FakeEndpoint(_chat_reply("{", finish_reason="length"))).generate_json("Extract.")
    assert cut_off.value.retriable is True

    with pytest.raises(AIProviderError, match="invalid JSON"):
        _generator(chat=FakeEndpoint(_chat_reply("not json"))).generate_json("Extract.")

    incomplete = SimpleNamespace(status="incomplete", incomplete_details=SimpleNamespace(reason="content_filter"))
    with pytest.raises(AIProviderError) as blocked:
        _generator(model="o3-mini", responses=FakeEndpoint(incomplete)).generate_json("Extract.")
    assert blocked.value.code == AI_CONTENT_FILTERED

    limited = FakeEndpoint(openai.RateLimitError("slow down", response=_response(429), body=None))
    with pytest.raises(AIProviderError) as translated:
        _generator(chat=limited).generate_json("Extract.")
    assert translated.value.code == AI_RATE_LIMITED

    with pytest.raises(ValueError):
        _generator().generate_json("   ")


def test_stream_text_over_chat_completions():
    usage = SimpleNamespace(prompt_tokens=5, completion_tokens=2)
    chat = FakeEndpoint(iter([_chat_chunk("Hi"), _chat_chunk(" there"), _chat_chunk(usage=usage)]))

    chunks = list(_generator(chat=chat).stream_text("Continue.", max_new_tokens=50, temperature=0.7))

    assert chunks == [
        {"type": "content", "content": "Hi"},
        {"type": "content", "content": " there"},
        {"type": "done", "usage": {"prompt_tokens": 5, "completion_tokens": 2}},
    ]
    call = chat.calls[0]
    assert call["stream"] is True
    assert call["stream_options"] == {"include_usage": True}
    assert call["max_tokens"] == 50
    assert "response_format" not in call


def test_stream_text_model_override_selects_responses_api():
    events = [
        SimpleNamespace(type="response.output_text.delta", delta="Hi"),
        SimpleNamespace(
            type="response.completed",
            response=SimpleNamespace(usage=SimpleNamespace(input_tokens=3, output_tokens=1), incomplete_details=None),
        ),
    ]
    responses = FakeEndpoint(iter(events))
    generator = _generator(responses=responses)

    chunks = list(generator.stream_text("Continue.", model="o4-mini"))

    assert chunks == [
        {"type": "content", "content": "Hi"},
        {"type": "done", "usage": {"prompt_tokens": 3, "completion_tokens": 1}},
    ]
    assert responses.calls[0]["model"] == "o4-mini"
    assert responses.calls[0]["max_output_tokens"] == 2048


def test_stream_text_translates_sdk_errors():
    chat = FakeEndpoint(openai.APIConnectionError(request=REQUEST))

    with pytest.raises(AIProviderError) as excinfo:
        list(_generator(chat=chat).stream_text("Continue."))
    assert excinfo.value.retriable is True


def test_get_text_generator_requires_configuration(app_instance):
    with pytest.raises(AIProviderError, match="AI provider is not configured"):
        get_text_generator()


def test_get_text_generator_is_cached_per_app(app_instance):
    app_instance.config["OPENAI_API_KEY"] = "sk-app"
    app_instance.config["OPENAI_MODEL"] = "gpt-4o"

    first = get_text_generator()

    assert first is get_text_generator()
    assert first.model == "gpt-4o"
    assert app_instance.config[GENERATOR_CACHE_KEY] is first


def test_request_header_key_overrides_missing_configuration(app_instance):
    with app_instance.test_request_context(headers={"X-OpenAI-Key": "sk-user"}):
        generator = get_text_generator()

    assert isinstance(generator, OpenAIGenerator)
    assert generator.model == app_instance.config["OPENAI_MODEL"]
    assert GENERATOR_CACHE_KEY not in app_instance.config
