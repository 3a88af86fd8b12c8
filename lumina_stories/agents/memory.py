"""Memory agent: per-chapter detailed summaries and the rolled-up story context."""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger

from .base import BaseAgent
from ..errors import GatewayError
from ..gateway import LLMGateway
from ..models.story_state import Chapter, fingerprint
from ..prompts import DETAILED_SUMMARY_SYSTEM, build_detailed_summary_prompt


@dataclass
class Accumulation:
    """Result of rolling up completed chapters.

    ``chapters`` are copies carrying any newly generated detailed summaries;
    callers merge them back into their outline with ``apply_summaries``.
    """
    summary: str = ""
    chapters: list[Chapter] = field(default_factory=list)
    generated_ids: list[int] = field(default_factory=list)


def format_accumulated_summary(chapters: Sequence[Chapter]) -> str:
    parts = []
    for i, chapter in enumerate(chapters):
        heading = f"Chapter {chapter.id}: {chapter.title}"
        if i == len(chapters) - 1:
            heading += " (MOST RECENT - the next chapter continues directly from here)"
        parts.append(f"{heading}\n{chapter.detailed_summary.strip()}")
    return "\n\n".join(parts)


def apply_summaries(outline: Sequence[Chapter], updated: Sequence[Chapter]) -> int:
    """Copy detailed summaries from ``updated`` onto matching outline chapters.

    A summary is only applied if the outline chapter still has the content
    it was built from. Returns the number of chapters changed.
    """
    by_id = {c.id: c for c in updated}
    changed = 0
    for chapter in outline:
        source = by_id.get(chapter.id)
        if source is None or not source.detailed_summary:
            continue
        if source.detailed_summary_source != fingerprint(chapter.content):
            continue
        if chapter.detailed_summary != source.detailed_summary:
            chapter.detailed_summary = source.detailed_summary
            chapter.detailed_summary_source = source.detailed_summary_source
            changed += 1
    return changed


class MemoryAgent(BaseAgent):
    def __init__(self, gateway: LLMGateway):
        super().__init__("MemoryAgent", gateway)

    def summarize_chapter(self, chapter: Chapter) -> Chapter:
        """Return a copy of ``chapter`` with a detailed summary of its full content.

        Raises GatewayError if the model call fails.
        """
        if not chapter.content.strip():
            raise ValueError(f"Chapter {chapter.id} has no content to summarize")
        prompt = build_detailed_summary_prompt(chapter)
        summary = self.call_text(DETAILED_SUMMARY_SYSTEM, prompt, task="summary").unwrap()
        updated = chapter.model_copy(deep=True)
        updated.detailed_summary = summary.strip()
        updated.detailed_summary_source = fingerprint(chapter.content)
        logger.debug(
            f"Detailed summary for chapter {chapter.id}: {len(updated.detailed_summary)} chars"
        )
        return updated

    def accumulate(self, chapters: Sequence[Chapter]) -> Accumulation:
        """Roll completed chapters up into one context string.

        Cached summaries are reused while the chapter content is unchanged;
        missing or stale ones are generated. Raises GatewayError if any
        generation fails.
        """
        if not chapters:
            return Accumulation()

        ordered = sorted(chapters, key=lambda c: c.id)
        result = Accumulation()
        for chapter in ordered:
            if not chapter.content.strip():
                logger.warning(f"Chapter {chapter.id} has no content; left out of the summary")
                continue
            if chapter.has_fresh_detailed_summary():
                result.chapters.append(chapter.model_copy(deep=True))
                continue
            logger.info(f"Generating detailed summary for chapter {chapter.id}")
            result.chapters.append(self.summarize_chapter(chapter))
            result.generated_ids.append(chapter.id)

        result.summary = format_accumulated_summary(result.chapters)
        return result

    def try_accumulate(self, chapters: Sequence[Chapter]) -> Optional[Accumulation]:
        """Best-effort ``accumulate``: log and return None on gateway failure."""
        try:
            return self.accumulate(chapters)
        except GatewayError as e:
            logger.warning(f"Story summary unavailable: {e}")
            return None
