"""Outline Architect agent: turn a premise into a chapter outline."""

from typing import Sequence

from loguru import logger

from .base import BaseAgent
from ..errors import OutlineParseError
from ..gateway import LLMGateway, normalize_outline_payload
from ..models.story_state import Chapter, ChapterStatus, Character, ReadingLevel
from ..prompts import OUTLINE_SCHEMA, OUTLINE_SYSTEM, build_outline_prompt


def chapters_from_items(items: list, num_chapters: int) -> list[Chapter]:
    """Build pending chapters from parsed outline items, clamped to ``num_chapters``.

    Raises OutlineParseError if an item is not an object with a title or summary.
    """
    chapters = []
    for index, item in enumerate(items[:num_chapters]):
        if not isinstance(item, dict):
            raise OutlineParseError(f"outline item {index} is {type(item).__name__}")
        title = str(item.get("title") or "").strip()
        summary = str(item.get("summary") or "").strip()
        if not title and not summary:
            raise OutlineParseError(f"outline item {index} has no title or summary")
        chapters.append(
            Chapter(
                id=index + 1,
                title=title or f"Chapter {index + 1}",
                summary=summary,
                content="",
                status=ChapterStatus.PENDING,
            )
        )
    return chapters


class OutlineArchitect(BaseAgent):
    def __init__(self, gateway: LLMGateway):
        super().__init__("OutlineArchitect", gateway)

    def generate_outline(
        self,
        title: str,
        genre: str,
        num_chapters: int,
        characters: Sequence[Character],
        initial_idea: str,
        reading_level: ReadingLevel = ReadingLevel.ADULT,
    ) -> list[Chapter]:
        """Generate exactly ``num_chapters`` pending chapters (fewer if the model gave fewer).

        Any transport, JSON or shape failure raises OutlineParseError and no
        partial outline is returned.
        """
        prompt = build_outline_prompt(
            title, genre, num_chapters, characters, initial_idea, reading_level
        )
        result = self.call_json(OUTLINE_SYSTEM, prompt, OUTLINE_SCHEMA, task="outline")
        if not result.ok:
            logger.error(f"Outline generation failed: {result.message}")
            raise OutlineParseError(result.message)

        items = normalize_outline_payload(result.value)
        if not items.ok:
            logger.error(f"Outline response had an unexpected shape: {items.message}")
            raise OutlineParseError(items.message)

        chapters = chapters_from_items(items.value, num_chapters)
        if not chapters:
            raise OutlineParseError("model returned an empty outline")
        if len(items.value) != num_chapters:
            logger.warning(
                f"Requested {num_chapters} chapters, model returned {len(items.value)}; "
                f"keeping {len(chapters)}"
            )
        return chapters
