"""Foreshadowing notes and the acceptance-criteria text derived from them."""

import re
import uuid
from typing import Iterable, Sequence

from loguru import logger

from .models.story_state import Chapter, ForeshadowingNote, StoryState

REVEALS_HEADER = "Foreshadowing Reveals:"
SECTION_DELIMITER = "---"

# The reveal section is always the tail of the criteria text.
_REVEALS_RE = re.compile(
    r"(?:\n*^---[ \t]*\n)?^Foreshadowing Reveals:.*\Z",
    re.MULTILINE | re.DOTALL,
)

_EDITABLE_FIELDS = {"target_chapter_id", "reveal_description", "foreshadowing_hint"}


def partition_notes(
    notes: Iterable[ForeshadowingNote], chapter_number: int
) -> tuple[list[ForeshadowingNote], list[ForeshadowingNote]]:
    """Split notes into (reveals, hints) for the 1-based ``chapter_number``.

    Notes targeting an earlier chapter are already resolved and land in
    neither list.
    """
    reveals, hints = [], []
    for note in sorted(notes, key=lambda n: n.created_at):
        if note.target_chapter_id == chapter_number:
            reveals.append(note)
        elif note.target_chapter_id > chapter_number:
            hints.append(note)
    return reveals, hints


def strip_reveals_section(criteria: str) -> str:
    return _REVEALS_RE.sub("", criteria or "").rstrip()


def render_reveals_section(notes: Sequence[ForeshadowingNote]) -> str:
    lines = [SECTION_DELIMITER, REVEALS_HEADER]
    lines.extend(f"- MUST reveal: {n.reveal_description}" for n in notes)
    return "\n".join(lines)


def merge_acceptance_criteria(
    criteria: str, reveals: Sequence[ForeshadowingNote]
) -> str:
    """User-authored criteria first, then a freshly rendered reveal section.

    Idempotent: any earlier reveal section is replaced, never duplicated.
    With no reveals the user's text comes back as written, minus a stale
    reveal section if one was left behind.
    """
    user_text = strip_reveals_section(criteria)
    if not reveals:
        return user_text if user_text != (criteria or "").rstrip() else criteria
    section = render_reveals_section(reveals)
    return f"{user_text}\n\n{section}" if user_text else section


def apply_to_outline(
    outline: Sequence[Chapter], notes: Sequence[ForeshadowingNote]
) -> None:
    """Recompute derived criteria for every chapter in ``outline``.

    A chapter with reveals gets its generated reveal section rebuilt after
    the user's own text. A chapter with no reveals keeps its user-written
    criteria unchanged; only a leftover generated ``Foreshadowing Reveals``
    section (from a note that moved away or was deleted) is removed.
    """
    for idx, chapter in enumerate(outline):
        reveals, _ = partition_notes(notes, idx + 1)
        merged = merge_acceptance_criteria(chapter.acceptance_criteria, reveals)
        if merged != chapter.acceptance_criteria:
            chapter.acceptance_criteria = merged


class ForeshadowingEngine:
    """CRUD over a story's foreshadowing notes.

    Every mutation re-renders the acceptance criteria of the whole outline,
    since moving or deleting a note can change chapters other than its
    current target.
    """

    def __init__(self, state: StoryState):
        self.state = state

    @property
    def notes(self) -> list[ForeshadowingNote]:
        return sorted(self.state.foreshadowing_notes, key=lambda n: n.created_at)

    def get(self, note_id: str) -> ForeshadowingNote:
        for note in self.state.foreshadowing_notes:
            if note.id == note_id:
                return note
        raise KeyError(f"No foreshadowing note with id {note_id}")

    def add(
        self,
        target_chapter_id: int,
        reveal_description: str,
        foreshadowing_hint: str = "",
    ) -> ForeshadowingNote:
        last = max((n.created_at for n in self.state.foreshadowing_notes), default=0)
        note = ForeshadowingNote(
            id=f"note-{uuid.uuid4().hex[:12]}",
            target_chapter_id=target_chapter_id,
            reveal_description=reveal_description,
            foreshadowing_hint=foreshadowing_hint,
            created_at=last + 1,
        )
        self.state.foreshadowing_notes.append(note)
        logger.info(f"Added foreshadowing note {note.id} for chapter {target_chapter_id}")
        self.recompute()
        return note

    def update(self, note_id: str, **fields) -> ForeshadowingNote:
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update foreshadowing fields: {sorted(unknown)}")
        current = self.get(note_id)
        updated = ForeshadowingNote(**{**current.model_dump(), **fields})
        notes = self.state.foreshadowing_notes
        notes[notes.index(current)] = updated
        self.recompute()
        return updated

    def delete(self, note_id: str) -> None:
        note = self.get(note_id)
        self.state.foreshadowing_notes.remove(note)
        logger.info(f"Deleted foreshadowing note {note_id}")
        self.recompute()

    def recompute(self) -> None:
        apply_to_outline(self.state.outline, self.state.foreshadowing_notes)

    def for_chapter(
        self, chapter_number: int
    ) -> tuple[list[ForeshadowingNote], list[ForeshadowingNote]]:
        return partition_notes(self.state.foreshadowing_notes, chapter_number)
