from .base import LIKE_ESCAPE, BaseRepository, contains_pattern, transaction
from .story_bible import (
    ArcRepository,
    CharacterRepository,
    FactionRepository,
    ForeshadowingRepository,
    HookRepository,
    LocationRepository,
    RelationshipRepository,
    TimelineEventRepository,
    WorldRepository,
)
from .writing import ChapterRepository, VersionRepository, VolumeRepository, count_words

__all__ = [
    "ArcRepository",
    "BaseRepository",
    "ChapterRepository",
    "CharacterRepository",
    "FactionRepository",
    "ForeshadowingRepository",
    "HookRepository",
    "LIKE_ESCAPE",
    "LocationRepository",
    "RelationshipRepository",
    "TimelineEventRepository",
    "VersionRepository",
    "VolumeRepository",
    "WorldRepository",
    "contains_pattern",
    "count_words",
    "transaction",
]
