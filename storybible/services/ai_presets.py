"""Ready-made writing instructions that can be appended to an assistant request."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional

from ..errors import ValidationError

PRESET_CATEGORIES = {
    "pacing": "Pacing",
    "style": "Style",
    "content": "Content",
    "character": "Character",
}


@dataclass(frozen=True)
class PromptPreset:
    id: str
    label: str
    instruction: str
    category: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


PROMPT_PRESETS = (
    PromptPreset("pace-faster", "Faster pace", "Pick up the pace. Use shorter sentences and more action beats.", "pacing"),
    PromptPreset(
        "pace-tension",
        "Build tension",
        "Build tension gradually. Use short paragraphs, sensory details, and a sense of foreboding.",
        "pacing",
    ),
    PromptPreset(
        "pace-cliffhanger",
        "Cliffhanger",
        "End with a cliffhanger that makes the reader desperate to continue.",
        "pacing",
    ),
    PromptPreset(
        "pace-breathe",
        "Slow down",
        "Slow the pace. Let the scene breathe with reflection, atmosphere, and quiet moments.",
        "pacing",
    ),
    PromptPreset(
        "style-dialogue",
        "More dialogue",
        "Use more dialogue. Let characters reveal information through conversation rather than narration.",
        "style",
    ),
    PromptPreset(
        "style-descriptive",
        "More descriptive",
        "Add richer sensory descriptions. Paint the scene with sight, sound, smell, touch, and taste.",
        "style",
    ),
    PromptPreset(
        "style-shorter",
        "Shorter sentences",
        "Use shorter, punchier sentences. Cut unnecessary words. Make every word earn its place.",
        "style",
    ),
    PromptPreset(
        "style-show",
        "Show don't tell",
        "Show emotions and states through actions, body language, and dialogue instead of telling.",
        "style",
    ),
    PromptPreset(
        "content-conflict",
        "Add conflict",
        "Introduce or escalate a conflict. Create tension between characters, goals, or circumstances.",
        "content",
    ),
    PromptPreset(
        "content-twist",
        "Plot twist",
        "Introduce an unexpected twist that recontextualizes what came before.",
        "content",
    ),
    PromptPreset(
        "content-foreshadow",
        "Foreshadow",
        "Subtly plant a foreshadowing element. It should feel natural, not obvious.",
        "content",
    ),
    PromptPreset(
        "content-transition",
        "Scene transition",
        "Write a smooth transition to a new scene or time skip.",
        "content",
    ),
    PromptPreset(
        "char-motivation",
        "Deepen motivation",
        "Reveal deeper character motivation. Show what drives them beneath the surface.",
        "character",
    ),
    PromptPreset(
        "char-vulnerability",
        "Show vulnerability",
        "Show the character's vulnerable side. Let their guard down in a meaningful way.",
        "character",
    ),
    PromptPreset(
        "char-voice",
        "Distinct voice",
        "Make each character's dialogue distinctly their own. Differentiate speech patterns and word choices.",
        "character",
    ),
    PromptPreset(
        "char-inner",
        "Inner conflict",
        "Explore the character's inner conflict. Show the tension between what they want and what they need.",
        "character",
    ),
)

_PRESETS_BY_ID = {preset.id: preset for preset in PROMPT_PRESETS}


def list_presets(category: Optional[str] = None) -> List[PromptPreset]:
    if category is None:
        return list(PROMPT_PRESETS)
    if category not in PRESET_CATEGORIES:
        raise ValidationError(f"Invalid preset category: {category}", "category", {"valid": list(PRESET_CATEGORIES)})
    return [preset for preset in PROMPT_PRESETS if preset.category == category]


def apply_presets(user_instruction: Optional[str], preset_ids: Iterable[str]) -> str:
    """Append the instructions of ``preset_ids`` to ``user_instruction``, one per line."""

    lines = [user_instruction.strip()] if user_instruction and user_instruction.strip() else []
    for preset_id in preset_ids or ():
        preset = _PRESETS_BY_ID.get(preset_id)
        if preset is None:
            raise ValidationError(f"Unknown preset: {preset_id}", "presets")
        if preset.instruction not in lines:
            lines.append(preset.instruction)
    return "\n".join(lines)


__all__ = ["PRESET_CATEGORIES", "PROMPT_PRESETS", "PromptPreset", "apply_presets", "list_presets"]
