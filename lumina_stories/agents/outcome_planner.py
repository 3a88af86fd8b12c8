"""Outcome Planner agent: branch suggestions for open-ended stories."""

from loguru import logger

from .base import BaseAgent
from ..gateway import LLMGateway, normalize_outline_payload
from ..models.story_state import Chapter, ChapterOutcome
from ..prompts import (
    DIRECTIONS_SYSTEM,
    OUTCOMES_SCHEMA,
    OUTCOMES_SYSTEM,
    OUTLINE_SCHEMA,
    build_directions_prompt,
    build_outcomes_prompt,
)


class OutcomePlanner(BaseAgent):
    """Suggests what could happen next. Every method here is best-effort."""

    def __init__(self, gateway: LLMGateway):
        super().__init__("OutcomePlanner", gateway)

    def _items(self, system: str, prompt: str, schema: dict, what: str) -> list[dict]:
        result = self.call_json(system, prompt, schema, task="outline")
        if result.ok:
            result = normalize_outline_payload(result.value)
        if not result.ok:
            logger.warning(f"{what} unavailable: {result.message}")
            return []
        return [item for item in result.value if isinstance(item, dict)]

    def suggest_outcomes(
        self,
        story_title: str,
        genre: str,
        story_so_far: str,
        last_chapter: Chapter,
        num_outcomes: int = 3,
    ) -> list[ChapterOutcome]:
        prompt = build_outcomes_prompt(
            story_title, genre, story_so_far, last_chapter, num_outcomes
        )
        outcomes = []
        for item in self._items(OUTCOMES_SYSTEM, prompt, OUTCOMES_SCHEMA, "Chapter outcomes"):
            title = str(item.get("title") or "").strip()
            summary = str(item.get("summary") or "").strip()
            if not title or not summary:
                continue
            outcomes.append(
                ChapterOutcome(
                    title=title,
                    summary=summary,
                    description=str(item.get("description") or "").strip(),
                )
            )
        return outcomes[:num_outcomes]

    def suggest_directions(
        self,
        story_title: str,
        genre: str,
        story_so_far: str,
        chapter: Chapter,
        num_suggestions: int = 3,
    ) -> list[dict]:
        prompt = build_directions_prompt(
            story_title, genre, story_so_far, chapter, num_suggestions
        )
        suggestions = []
        for item in self._items(DIRECTIONS_SYSTEM, prompt, OUTLINE_SCHEMA, "Chapter directions"):
            title = str(item.get("title") or "").strip()
            summary = str(item.get("summary") or "").strip()
            if title and summary:
                suggestions.append({"title": title, "summary": summary})
        return suggestions[:num_suggestions]
