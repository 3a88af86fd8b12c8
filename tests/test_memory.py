"""Tests for detailed summaries and story-context accumulation."""

import pytest

from lumina_stories.agents.memory import (
    MemoryAgent,
    apply_summaries,
    format_accumulated_summary,
)
from lumina_stories.errors import ErrorKind, GatewayError
from lumina_stories.gateway import GatewayResult
from lumina_stories.models.story_state import Chapter, ChapterStatus


@pytest.fixture
def completed(story_state):
    for chapter in story_state.outline[:2]:
        chapter.content = f"Full text of chapter {chapter.id}. It ends at the gate."
        chapter.status = ChapterStatus.COMPLETED
    return story_state.outline[:2]


def test_empty_input_makes_no_call(gateway):
    result = MemoryAgent(gateway).accumulate([])
    assert result.summary == ""
    assert gateway.calls == []


def test_summaries_are_cached(gateway, story_state, completed):
    memory = MemoryAgent(gateway)

    first = memory.accumulate(completed)
    assert first.generated_ids == [1, 2]
    assert len(gateway.calls_for("text", "summary")) == 2
    assert apply_summaries(story_state.outline, first.chapters) == 2

    second = memory.accumulate(story_state.outline[:2])
    assert second.generated_ids == []
    assert len(gateway.calls_for("text", "summary")) == 2
    assert second.summary == first.summary


def test_content_edit_invalidates_summary(gateway, story_state, completed):
    memory = MemoryAgent(gateway)
    apply_summaries(story_state.outline, memory.accumulate(completed).chapters)

    story_state.outline[0].content += " A new final scene."
    result = memory.accumulate(story_state.outline[:2])

    assert result.generated_ids == [1]
    assert len(gateway.calls_for("text", "summary")) == 3


def test_accumulate_does_not_mutate_input(gateway, completed):
    MemoryAgent(gateway).accumulate(completed)
    assert all(c.detailed_summary is None for c in completed)


def test_summary_prompt_contains_whole_chapter(gateway):
    content = "The long middle. " * 1000 + "Last line: Oren never answered."
    MemoryAgent(gateway).summarize_chapter(
        Chapter(id=1, title="Cinders", content=content, status=ChapterStatus.COMPLETED)
    )
    assert "Last line: Oren never answered." in gateway.calls[0].prompt


def test_ordered_with_most_recent_marker(gateway, story_state, completed):
    reversed_input = list(reversed(completed))
    summary = MemoryAgent(gateway).accumulate(reversed_input).summary

    assert summary.index("Chapter 1: Cinders") < summary.index("Chapter 2: The Witch's Garden")
    assert "Chapter 2: The Witch's Garden (MOST RECENT" in summary
    assert "Chapter 1: Cinders (MOST RECENT" not in summary


def test_failure_propagates(gateway, completed):
    gateway.queue("summary", GatewayResult.failure(ErrorKind.TRANSPORT, "timeout"))
    memory = MemoryAgent(gateway)

    with pytest.raises(GatewayError):
        memory.accumulate(completed)

    gateway.queue("summary", GatewayResult.failure(ErrorKind.TRANSPORT, "timeout"))
    assert memory.try_accumulate(completed) is None


def test_summarize_empty_chapter(gateway):
    with pytest.raises(ValueError):
        MemoryAgent(gateway).summarize_chapter(Chapter(id=1, title="Blank"))


def test_blank_chapter_left_out(gateway, completed):
    completed[0].content = ""
    result = MemoryAgent(gateway).accumulate(completed)

    assert [c.id for c in result.chapters] == [2]
    assert result.generated_ids == [2]
    assert "Chapter 1:" not in result.summary


def test_apply_ignores_stale_summary(gateway, story_state, completed):
    updated = MemoryAgent(gateway).accumulate(completed).chapters
    story_state.outline[1].content = "Rewritten while the summary was in flight."

    assert apply_summaries(story_state.outline, updated) == 1
    assert story_state.outline[1].detailed_summary is None


def test_format_single_chapter():
    chapter = Chapter(id=3, title="Ashfall", detailed_summary="MAJOR EVENTS: fire.")
    assert format_accumulated_summary([chapter]) == (
        "Chapter 3: Ashfall (MOST RECENT - the next chapter continues directly from here)\n"
        "MAJOR EVENTS: fire."
    )
