"""Streaming writing assistant: continuation, dialogue, description, brainstorming and Q&A.

Each generation method returns an iterator of chunks shaped like
``{"type": "content", "content": ...}``, ending with either
``{"type": "done", "usage": ...}`` or ``{"type": "error", "error": ...}``.
Progress is published on the event bus under one ``task_id`` per request.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional

from flask import current_app

from ..errors import AIProviderError, StoryBibleError
from ..events import EventBus
from ..repositories import CharacterRepository, LocationRepository
from .ai_context import (
    DEFAULT_CONTEXT_BUDGET,
    BuiltContext,
    ChapterContextBuilder,
    ContextItem,
    GlobalContextBuilder,
    count_tokens,
    format_context,
)
from .ai_presets import apply_presets
from .text_generation import extract_generation_parameters, get_text_generator, load_prompt_entry

LOGGER = logging.getLogger(__name__)

PROVIDERS = ("openai",)
DEFAULT_PROVIDER = "openai"

PROMPT_KEYS = {
    "continue": "assist_continue",
    "dialogue": "assist_dialogue",
    "describe": "assist_describe",
    "brainstorm": "assist_brainstorm",
    "ask": "assist_ask_bible",
}


def _get_text_generator():
    return get_text_generator()


class _BlankMissing(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_prompt(key: str, **values: Any) -> tuple[str, Dict[str, Any]]:
    """Fill the ``key`` template from ``prompt_config.json``; unknown placeholders render empty."""

    entry = load_prompt_entry(key)
    filled = _BlankMissing({name: "" if value is None else value for name, value in values.items()})
    prompt = entry["prompt_template"].format_map(filled)
    return prompt, extract_generation_parameters(entry.get("parameters"))


class AIWritingService:
    def __init__(self, event_bus: EventBus, context_budget: int = DEFAULT_CONTEXT_BUDGET) -> None:
        self.events = event_bus
        self.chapter_context = ChapterContextBuilder(context_budget)
        self.global_context = GlobalContextBuilder(context_budget)
        self.characters = CharacterRepository()
        self.locations = LocationRepository()

    # ---------------- context ----------------
    def build_context(
        self, chapter_id: int, additional_items: Optional[Iterable[ContextItem]] = None
    ) -> BuiltContext:
        return self.chapter_context.build(chapter_id, additional_items)

    def count_tokens(self, text: str) -> int:
        return count_tokens(text)

    # ---------------- providers ----------------
    def get_available_providers(self) -> List[str]:
        return list(PROVIDERS)

    def is_provider_configured(self, provider: str = DEFAULT_PROVIDER) -> bool:
        if provider not in PROVIDERS:
            return False
        try:
            _get_text_generator()
        except AIProviderError:
            return False
        return True

    def providers_status(self) -> Dict[str, Any]:
        return {
            "available": self.get_available_providers(),
            "configured": [provider for provider in PROVIDERS if self.is_provider_configured(provider)],
            "default": DEFAULT_PROVIDER,
            "model": current_app.config.get("OPENAI_MODEL") or None,
        }

    # ---------------- generation ----------------
    def continue_scene(
        self,
        chapter_id: int,
        options: Optional[Dict[str, Any]] = None,
        user_instruction: Optional[str] = None,
        excluded_context_ids: Optional[Iterable[str]] = None,
        presets: Optional[Iterable[str]] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Continue the chapter from where its text ends.

        Raises ``EntityNotFoundError`` before streaming when the chapter does not exist.
        """

        context = self.build_context(chapter_id).without(excluded_context_ids or ())
        chapter = self.chapter_context.chapters.find_by_id(chapter_id)
        prompt, parameters = render_prompt(
            PROMPT_KEYS["continue"],
            context=format_context(context.items),
            current_content=chapter.content or "",
            user_instruction=apply_presets(user_instruction, presets or ()),
        )
        return self._stream("continue", prompt, parameters, options, context)

    def generate_dialogue(
        self,
        character_ids: List[str],
        scene: str,
        options: Optional[Dict[str, Any]] = None,
        user_instruction: Optional[str] = None,
        chapter_id: Optional[int] = None,
        presets: Optional[Iterable[str]] = None,
    ) -> Iterator[Dict[str, Any]]:
        characters = self.characters.find_by_ids(character_ids)
        if not characters:
            return self._failed("dialogue", "No valid characters found for dialogue generation.")

        context = self.build_context(chapter_id) if chapter_id is not None else None
        prompt, parameters = render_prompt(
            PROMPT_KEYS["dialogue"],
            context=format_context(context.items) if context else "",
            characters="\n".join(f"{character.name} ({character.role})" for character in characters),
            scene_description=scene,
            user_instruction=apply_presets(user_instruction, presets or ()),
        )
        return self._stream("dialogue", prompt, parameters, options, context)

    def describe_scene(
        self,
        location_id: str,
        mood: str,
        options: Optional[Dict[str, Any]] = None,
        user_instruction: Optional[str] = None,
        chapter_id: Optional[int] = None,
        presets: Optional[Iterable[str]] = None,
    ) -> Iterator[Dict[str, Any]]:
        location = self.locations.find_by_id(location_id)
        if location is None:
            return self._failed("describe", f"Location {location_id} not found.")

        context = self.build_context(chapter_id) if chapter_id is not None else None
        description = [location.name, location.type, location.atmosphere, location.significance]
        prompt, parameters = render_prompt(
            PROMPT_KEYS["describe"],
            context=format_context(context.items) if context else "",
            location="\n".join(part for part in description if part),
            mood=mood,
            user_instruction=apply_presets(user_instruction, presets or ()),
        )
        return self._stream("describe", prompt, parameters, options, context)

    def brainstorm(
        self,
        topic: str,
        options: Optional[Dict[str, Any]] = None,
        user_instruction: Optional[str] = None,
        chapter_id: Optional[int] = None,
        presets: Optional[Iterable[str]] = None,
    ) -> Iterator[Dict[str, Any]]:
        if chapter_id is not None:
            context = self.build_context(chapter_id)
        else:
            context = self.global_context.build_summary()
        prompt, parameters = render_prompt(
            PROMPT_KEYS["brainstorm"],
            context=format_context(context.items),
            topic=topic,
            user_instruction=apply_presets(user_instruction, presets or ()),
        )
        return self._stream("brainstorm", prompt, parameters, options, context)

    def ask_story_bible(self, question: str, options: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        context = self.global_context.build_full()
        prompt, parameters = render_prompt(
            PROMPT_KEYS["ask"], context=format_context(context.items), question=question
        )
        return self._stream("ask", prompt, parameters, options, context)

    def complete(
        self,
        prompt: str,
        context_items: Optional[List[ContextItem]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Iterator[Dict[str, Any]]:
        if context_items:
            prompt = f"{format_context(context_items)}\n\n{prompt}"
        return self._stream("complete", prompt, {}, options, None)

    # ---------------- streaming ----------------
    def _failed(self, generation_type: str, message: str) -> Iterator[Dict[str, Any]]:
        task_id = uuid.uuid4().hex
        self.events.emit("AI_GENERATION_STARTED", task_id=task_id, generation_type=generation_type)
        self.events.emit("AI_GENERATION_ERROR", task_id=task_id, error=message, retriable=False)
        return iter([{"type": "error", "error": message}])

    def _stream(
        self,
        generation_type: str,
        prompt: str,
        parameters: Dict[str, Any],
        options: Optional[Dict[str, Any]],
        context: Optional[BuiltContext],
    ) -> Iterator[Dict[str, Any]]:
        options = options or {}
        max_tokens = options.get("max_tokens") or parameters.get("max_new_tokens")
        temperature = options.get("temperature")
        if temperature is None:
            temperature = parameters.get("temperature")
        task_id = uuid.uuid4().hex
        input_tokens = count_tokens(prompt)

        self.events.emit("AI_GENERATION_STARTED", task_id=task_id, generation_type=generation_type)
        if context is not None:
            self.events.emit(
                "AI_CONTEXT_BUILT",
                task_id=task_id,
                tokens_used=context.total_tokens,
                item_count=len(context.items),
                truncated=context.truncated,
            )

        def generate() -> Iterator[Dict[str, Any]]:
            started = time.monotonic()
            parts: List[str] = []
            tokens_generated = 0
            try:
                generator = _get_text_generator()
                chunks = generator.stream_text(
                    prompt, max_new_tokens=max_tokens, temperature=temperature, model=options.get("model")
                )
                usage = None
                for chunk in chunks:
                    if chunk.get("type") == "content" and chunk.get("content"):
                        parts.append(chunk["content"])
                        tokens_generated += count_tokens(chunk["content"])
                        self.events.emit(
                            "AI_GENERATION_PROGRESS",
                            task_id=task_id,
                            chunk=chunk["content"],
                            tokens_generated=tokens_generated,
                        )
                        yield {"type": "content", "content": chunk["content"]}
                    elif chunk.get("type") == "done":
                        usage = chunk.get("usage")
                        break
            except StoryBibleError as exc:
                LOGGER.warning("%s generation %s failed: %s", generation_type, task_id, exc.message)
                retriable = bool(getattr(exc, "retriable", False))
                self.events.emit("AI_GENERATION_ERROR", task_id=task_id, error=exc.message, retriable=retriable)
                yield {"type": "error", "error": f"{exc.code}: {exc.message}", "retriable": retriable}
                return

            usage = usage or {}
            self.events.emit(
                "AI_GENERATION_COMPLETED",
                task_id=task_id,
                result="".join(parts),
                tokens_used={
                    "input": usage.get("prompt_tokens") or input_tokens,
                    "output": usage.get("completion_tokens") or tokens_generated,
                },
                latency_ms=int((time.monotonic() - started) * 1000),
            )
            yield {"type": "done", "usage": usage or None}

        return generate()


__all__ = ["AIWritingService", "PROMPT_KEYS", "render_prompt"]
