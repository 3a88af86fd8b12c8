"""Data models for story generation state."""

import hashlib
import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReadingLevel(str, Enum):
    ELEMENTARY = "elementary"
    MIDDLE_GRADE = "middle-grade"
    YOUNG_ADULT = "young-adult"
    ADULT = "adult"


class ChapterStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class WorkflowStep(str, Enum):
    SETUP = "setup"
    OUTLINE = "outline"
    MANUAL_GENERATION = "manual-generation"
    GENERATING = "generating"
    READER = "reader"


class StoryMode(str, Enum):
    PLANNED = "planned"
    CONTINUOUS = "continuous"


def fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Character(BaseModel):
    id: str
    name: str
    attributes: str = ""


class ValidationResult(BaseModel):
    passed: bool
    feedback: str = ""
    timestamp: float = Field(default_factory=time.time)


class Chapter(BaseModel):
    id: int = Field(..., ge=1)
    title: str = ""
    summary: str = ""
    content: str = ""
    status: ChapterStatus = ChapterStatus.PENDING
    detailed_summary: Optional[str] = None
    # Fingerprint of the content the detailed summary was built from.
    detailed_summary_source: Optional[str] = None
    character_ids: list[str] = Field(default_factory=list)
    acceptance_criteria: str = ""
    validation_result: Optional[ValidationResult] = None
    # Set while a failed acceptance check waits for accept-or-retry.
    awaiting_decision: bool = False
    revisions: list[str] = Field(default_factory=list)

    def has_fresh_detailed_summary(self) -> bool:
        return bool(
            self.detailed_summary
            and self.detailed_summary_source == fingerprint(self.content)
        )

    def replace_content(self, content: str) -> None:
        """Swap in new prose, archiving the old version and dropping the stale summary."""
        if self.content:
            self.revisions.append(self.content)
        self.content = content
        self.detailed_summary = None
        self.detailed_summary_source = None

    def undo_revision(self) -> bool:
        if not self.revisions:
            return False
        self.content = self.revisions.pop()
        self.detailed_summary = None
        self.detailed_summary_source = None
        self.validation_result = None
        self.awaiting_decision = False
        return True


class ForeshadowingNote(BaseModel):
    id: str
    target_chapter_id: int = Field(..., ge=1)
    reveal_description: str
    foreshadowing_hint: str = ""
    created_at: int = 0


class ChapterOutcome(BaseModel):
    title: str
    summary: str
    description: str = ""


class StoryState(BaseModel):
    title: str = ""
    genre: str = "Fantasy"
    num_chapters: int = Field(default=5, ge=1)
    reading_level: ReadingLevel = ReadingLevel.ADULT
    plot_outline: str = ""
    characters: list[Character] = Field(default_factory=list)
    outline: list[Chapter] = Field(default_factory=list)
    current_step: WorkflowStep = WorkflowStep.SETUP
    system_prompt: Optional[str] = None
    mode: StoryMode = StoryMode.PLANNED
    foreshadowing_notes: list[ForeshadowingNote] = Field(default_factory=list)
    chapter_outcomes: Optional[list[ChapterOutcome]] = None

    def index_of(self, chapter_id: int) -> int:
        for i, chapter in enumerate(self.outline):
            if chapter.id == chapter_id:
                return i
        raise KeyError(f"No chapter with id {chapter_id}")

    def chapter(self, chapter_id: int) -> Chapter:
        return self.outline[self.index_of(chapter_id)]

    def next_pending_index(self) -> Optional[int]:
        for i, chapter in enumerate(self.outline):
            if chapter.status == ChapterStatus.PENDING:
                return i
        return None

    def completed_before(self, index: int) -> list[Chapter]:
        """Completed chapters preceding ``index``, by ascending id."""
        chapters = [
            c for c in self.outline[:index]
            if c.status == ChapterStatus.COMPLETED
        ]
        return sorted(chapters, key=lambda c: c.id)

    def completed_chapters(self) -> list[Chapter]:
        return self.completed_before(len(self.outline))

    @property
    def progress(self) -> int:
        if not self.outline:
            return 0
        done = sum(1 for c in self.outline if c.status == ChapterStatus.COMPLETED)
        return round(done * 100 / len(self.outline))


class SavedStory(BaseModel):
    id: str
    state: StoryState
    saved_at: float = Field(default_factory=time.time)
    last_modified: float = Field(default_factory=time.time)
    progress: int = 0
