"""Service layer: one long-lived instance per application, sharing one event bus."""

from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app

from ..events import EventBus
from .ai_context import DEFAULT_CONTEXT_BUDGET
from .ai_writing import AIWritingService
from .export import ExportService
from .intake import IntakeService
from .search import SearchService
from .setup_assist import ChapterSetupAssist
from .story_bible import StoryBibleService
from .writing import WritingService

EXTENSION_KEY = "storybible"


@dataclass
class ServiceContainer:
    event_bus: EventBus
    story_bible: StoryBibleService
    writing: WritingService
    export: ExportService
    intake: IntakeService
    search: SearchService
    setup_assist: ChapterSetupAssist
    ai: AIWritingService


def init_services(app: Flask, event_bus: EventBus | None = None) -> ServiceContainer:
    bus = event_bus or EventBus()
    container = ServiceContainer(
        event_bus=bus,
        story_bible=StoryBibleService(bus),
        writing=WritingService(bus),
        export=ExportService(bus),
        intake=IntakeService(bus),
        search=SearchService(),
        setup_assist=ChapterSetupAssist(),
        ai=AIWritingService(bus, app.config.get("AI_CONTEXT_TOKEN_BUDGET", DEFAULT_CONTEXT_BUDGET)),
    )
    app.extensions[EXTENSION_KEY] = container
    return container


def get_services() -> ServiceContainer:
    return current_app.extensions[EXTENSION_KEY]


def get_event_bus() -> EventBus:
    return get_services().event_bus


def get_story_bible_service() -> StoryBibleService:
    return get_services().story_bible


def get_writing_service() -> WritingService:
    return get_services().writing


def get_export_service() -> ExportService:
    return get_services().export


def get_intake_service() -> IntakeService:
    return get_services().intake


def get_search_service() -> SearchService:
    return get_services().search


def get_setup_assist() -> ChapterSetupAssist:
    return get_services().setup_assist


def get_ai_service() -> AIWritingService:
    return get_services().ai


__all__ = [
    "ServiceContainer",
    "get_ai_service",
    "get_event_bus",
    "get_export_service",
    "get_intake_service",
    "get_search_service",
    "get_services",
    "get_setup_assist",
    "get_story_bible_service",
    "get_writing_service",
    "init_services",
]
