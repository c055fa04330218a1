import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible import create_app
from storybible.config import TestConfig
from storybible.errors import AI_RATE_LIMITED, AIProviderError, EntityNotFoundError, ValidationError
from storybible.extensions import db
from storybible.services import ai_writing, get_ai_service, get_event_bus, get_story_bible_service, get_writing_service
from storybible.services.ai_context import ContextItem
from storybible.services.ai_presets import PROMPT_PRESETS, apply_presets, list_presets


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture
def service(app_instance):
    return get_ai_service()


class FakeStreamer:
    """Replays ``pieces`` as content chunks, or raises ``error`` after the first one."""

    def __init__(self, pieces=("The gate ", "creaked open."), usage=None, error=None):
        self.pieces = pieces
        self.usage = usage
        self.error = error
        self.calls = []

    def stream_text(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        for index, piece in enumerate(self.pieces):
            if self.error is not None and index == 1:
                raise self.error
            yield {"type": "content", "content": piece}
        yield {"type": "done", "usage": self.usage}


@pytest.fixture
def streamer(monkeypatch):
    fake = FakeStreamer(usage={"prompt_tokens": 120, "completion_tokens": 7})
    monkeypatch.setattr(ai_writing, "_get_text_generator", lambda: fake)
    return fake


@pytest.fixture
def chapter(app_instance):
    bible = get_story_bible_service()
    lin = bible.create_character({"name": "Lin Mo", "role": "main"})
    bible.create_character({"name": "Su Yan", "role": "supporting"})
    bible.create_location({"name": "River Gate", "type": "city", "atmosphere": "Foggy"})
    chapter = get_writing_service().create_chapter({"title": "One", "characters": [lin.id]})
    get_writing_service().save_content(chapter.id, "Lin Mo waited by the gate.")
    return chapter


def _frames(response):
    body = response.get_data(as_text=True)
    return [json.loads(frame[len("data: "):]) for frame in body.split("\n\n") if frame.startswith("data: ")]


def test_continue_scene_streams_and_reports_events(service, streamer, chapter):
    events = []
    bus = get_event_bus()
    for event_type in ("AI_GENERATION_STARTED", "AI_CONTEXT_BUILT", "AI_GENERATION_PROGRESS", "AI_GENERATION_COMPLETED"):
        bus.on(event_type, events.append)

    chunks = list(service.continue_scene(chapter.id, user_instruction="Keep it quiet.", presets=["pace-cliffhanger"]))

    assert chunks == [
        {"type": "content", "content": "The gate "},
        {"type": "content", "content": "creaked open."},
        {"type": "done", "usage": {"prompt_tokens": 120, "completion_tokens": 7}},
    ]
    prompt, kwargs = streamer.calls[0]
    assert "## Current Content\nLin Mo waited by the gate." in prompt
    assert "### Lin Mo (main)" in prompt
    assert "Keep it quiet.\nEnd with a cliffhanger" in prompt
    assert kwargs == {"max_new_tokens": 4000, "temperature": 0.8, "model": None}

    assert [event["type"] for event in events] == [
        "AI_GENERATION_STARTED",
        "AI_CONTEXT_BUILT",
        "AI_GENERATION_PROGRESS",
        "AI_GENERATION_PROGRESS",
        "AI_GENERATION_COMPLETED",
    ]
    assert len({event["task_id"] for event in events}) == 1
    assert events[0]["generation_type"] == "continue"
    assert events[1]["truncated"] is False
    completed = events[-1]
    assert completed["result"] == "The gate creaked open."
    assert completed["tokens_used"] == {"input": 120, "output": 7}


def test_continue_scene_honours_options_and_exclusions(service, streamer, chapter):
    lin_id = chapter.characters[0]

    list(
        service.continue_scene(
            chapter.id,
            options={"model": "gpt-4.1-mini", "temperature": 0.2, "max_tokens": 300},
            excluded_context_ids=[lin_id],
        )
    )

    prompt, kwargs = streamer.calls[0]
    assert "### Lin Mo (main)" not in prompt
    assert kwargs == {"max_new_tokens": 300, "temperature": 0.2, "model": "gpt-4.1-mini"}


def test_continue_scene_requires_existing_chapter(service, streamer):
    with pytest.raises(EntityNotFoundError):
        service.continue_scene(99)
    assert streamer.calls == []


def test_unknown_preset_is_rejected(service, streamer, chapter):
    with pytest.raises(ValidationError, match="Unknown preset: pace-warp"):
        service.continue_scene(chapter.id, presets=["pace-warp"])


def test_dialogue_without_known_characters_yields_error(service, streamer):
    errors = []
    get_event_bus().on("AI_GENERATION_ERROR", errors.append)

    chunks = list(service.generate_dialogue(["C404"], "A quarrel at the ferry"))

    assert chunks == [{"type": "error", "error": "No valid characters found for dialogue generation."}]
    assert errors[0]["retriable"] is False
    assert streamer.calls == []


def test_dialogue_lists_characters(service, streamer, chapter):
    list(service.generate_dialogue(["C001", "C002"], "A quarrel at the ferry"))

    prompt, _ = streamer.calls[0]
    assert "## Characters in the Dialogue\nLin Mo (main)\nSu Yan (supporting)" in prompt
    assert "## Scene\nA quarrel at the ferry" in prompt
    assert "<context>" not in prompt


def test_describe_scene(service, streamer, chapter):
    missing = list(service.describe_scene("L404", "tense"))
    assert missing == [{"type": "error", "error": "Location L404 not found."}]

    list(service.describe_scene("L001", "tense", chapter_id=chapter.id))
    prompt, _ = streamer.calls[0]
    assert "## Location\nRiver Gate\ncity\nFoggy" in prompt
    assert "## Mood\ntense" in prompt
    assert "<context>" in prompt


def test_brainstorm_and_ask_use_story_wide_context(service, streamer, chapter):
    list(service.brainstorm("What if the gate never opens?"))
    list(service.ask_story_bible("Who is Lin Mo?"))

    brainstorm_prompt, brainstorm_kwargs = streamer.calls[0]
    ask_prompt, ask_kwargs = streamer.calls[1]
    assert "Characters: Lin Mo(main), Su Yan(supporting)" in brainstorm_prompt
    assert brainstorm_kwargs["temperature"] == 0.9
    assert "## Characters\n- Lin Mo (main)" in ask_prompt
    assert "## Question\nWho is Lin Mo?" in ask_prompt
    assert ask_kwargs["temperature"] == 0.3


def test_complete_puts_context_before_prompt(service, streamer):
    list(service.complete("Write a haiku.", [ContextItem("custom", "Season: winter")]))

    prompt, kwargs = streamer.calls[0]
    assert prompt == "<context>\n## Additional Information\nSeason: winter\n</context>\n\nWrite a haiku."
    assert kwargs["max_new_tokens"] is None


def test_provider_failure_becomes_error_chunk(monkeypatch, service, chapter):
    fake = FakeStreamer(error=AIProviderError("AI rate limit reached: slow down", AI_RATE_LIMITED, retriable=True))
    monkeypatch.setattr(ai_writing, "_get_text_generator", lambda: fake)
    errors = []
    get_event_bus().on("AI_GENERATION_ERROR", errors.append)

    chunks = list(service.continue_scene(chapter.id))

    assert chunks[0] == {"type": "content", "content": "The gate "}
    assert chunks[-1] == {
        "type": "error",
        "error": "AI_RATE_LIMITED: AI rate limit reached: slow down",
        "retriable": True,
    }
    assert errors[0]["retriable"] is True


def test_missing_usage_falls_back_to_estimates(monkeypatch, service):
    fake = FakeStreamer(pieces=("one two",))
    monkeypatch.setattr(ai_writing, "_get_text_generator", lambda: fake)
    completed = []
    get_event_bus().on("AI_GENERATION_COMPLETED", completed.append)

    chunks = list(service.complete("Say two words."))

    assert chunks[-1] == {"type": "done", "usage": None}
    assert completed[0]["tokens_used"] == {"input": 4, "output": 3}


def test_render_prompt_blanks_missing_values(app_instance):
    prompt, parameters = ai_writing.render_prompt("assist_ask_bible", question="Why?")

    assert prompt.startswith("You are a story setting consultant.")
    assert "\n\n\n\n## Question\nWhy?" in prompt
    assert parameters == {"max_new_tokens": 2000, "temperature": 0.3}


def test_presets():
    assert len(PROMPT_PRESETS) == 16
    assert [preset.id for preset in list_presets("character")] == [
        "char-motivation",
        "char-vulnerability",
        "char-voice",
        "char-inner",
    ]
    assert apply_presets("  ", ["style-show", "style-show"]) == (
        "Show emotions and states through actions, body language, and dialogue instead of telling."
    )
    with pytest.raises(ValidationError):
        list_presets("tone")


def test_provider_status(monkeypatch, service):
    status = service.providers_status()
    assert status["available"] == ["openai"]
    assert status["configured"] == []
    assert status["default"] == "openai"

    monkeypatch.setattr(ai_writing, "_get_text_generator", lambda: FakeStreamer())
    assert service.is_provider_configured() is True
    assert service.is_provider_configured("gemini") is False


def test_continue_route_streams_events(client, streamer, chapter):
    response = client.post("/api/ai/continue", json={"chapter_id": chapter.id, "options": {"temperature": 1.1}})

    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    assert response.headers["Cache-Control"] == "no-cache"
    frames = _frames(response)
    assert [frame["type"] for frame in frames] == ["content", "content", "done"]
    assert streamer.calls[0][1]["temperature"] == 1.1


@pytest.mark.parametrize(
    "path,body,field",
    [
        ("/api/ai/continue", {"chapter_id": "1"}, "chapter_id"),
        ("/api/ai/continue", {"chapter_id": 0}, "chapter_id"),
        ("/api/ai/continue", {"chapter_id": 1, "options": {"temperature": 3}}, "options.temperature"),
        ("/api/ai/dialogue", {"character_ids": [], "context": "x"}, "character_ids"),
        ("/api/ai/dialogue", {"character_ids": ["C001"], "context": "   "}, "context"),
        ("/api/ai/describe", {"location_id": "L001"}, "mood"),
        ("/api/ai/brainstorm", {"topic": 7}, "topic"),
        ("/api/ai/ask", {}, "question"),
        ("/api/ai/complete", {"prompt": "Go", "context": [{"type": "gossip", "content": "x"}]}, "context.0.type"),
    ],
)
def test_assist_routes_validate_bodies(client, path, body, field):
    response = client.post(path, json=body)

    assert response.status_code == 400
    error = response.get_json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["context"]["field"] == field


def test_continue_route_missing_chapter_is_404(client, streamer):
    response = client.post("/api/ai/continue", json={"chapter_id": 42})

    assert response.status_code == 404
    assert response.get_json()["error"]["code"] == "NOT_FOUND"


def test_dialogue_route_reports_error_frame(client, streamer):
    response = client.post("/api/ai/dialogue", json={"character_ids": ["C404"], "context": "Night"})

    assert _frames(response) == [{"type": "error", "error": "No valid characters found for dialogue generation."}]


def test_stream_crash_is_reported_in_band(monkeypatch, client, chapter):
    fake = FakeStreamer(error=RuntimeError("socket closed"))
    monkeypatch.setattr(ai_writing, "_get_text_generator", lambda: fake)

    frames = _frames(client.post("/api/ai/ask", json={"question": "Who?"}))

    assert frames[0] == {"type": "content", "content": "The gate "}
    assert frames[-1] == {"type": "error", "error": "socket closed"}


def test_complete_route_accepts_context_items(client, streamer):
    response = client.post(
        "/api/ai/complete",
        json={"prompt": "Write a haiku.", "context": [{"type": "custom", "content": "Season: winter", "id": "n1"}]},
    )

    assert [frame["type"] for frame in _frames(response)] == ["content", "content", "done"]
    assert streamer.calls[0][0].startswith("<context>\n## Additional Information\nSeason: winter")


def test_context_route(client, chapter):
    response = client.post(
        "/api/ai/context",
        json={"chapter_id": chapter.id, "additional_items": [{"type": "custom", "content": "Red moon", "id": "n1"}]},
    )

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["truncated"] is False
    assert data["total_tokens"] > 0
    assert [item["id"] for item in data["items"]][-1] == "n1"
    assert data["items"][-1]["priority"] == 200


def test_providers_and_presets_routes(client):
    providers = client.get("/api/ai/providers").get_json()["data"]
    assert providers["available"] == ["openai"]
    assert providers["configured"] == []

    presets = client.get("/api/ai/presets?category=pacing").get_json()["data"]
    assert presets["categories"]["pacing"] == "Pacing"
    assert [preset["id"] for preset in presets["presets"]][:2] == ["pace-faster", "pace-tension"]

    assert client.get("/api/ai/presets?category=tone").status_code == 400
