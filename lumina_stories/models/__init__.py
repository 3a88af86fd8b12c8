from .story_state import (
    ReadingLevel,
    ChapterStatus,
    WorkflowStep,
    StoryMode,
    Character,
    ValidationResult,
    Chapter,
    ForeshadowingNote,
    ChapterOutcome,
    StoryState,
    SavedStory,
    fingerprint,
)

__all__ = [
    "ReadingLevel",
    "ChapterStatus",
    "WorkflowStep",
    "StoryMode",
    "Character",
    "ValidationResult",
    "Chapter",
    "ForeshadowingNote",
    "ChapterOutcome",
    "StoryState",
    "SavedStory",
    "fingerprint",
]
