"""Tests for the prompt builders."""

import pytest

from lumina_stories.models.story_state import (
    Chapter,
    ForeshadowingNote,
    ReadingLevel,
)
from lumina_stories.prompts import (
    CONTINUITY_RULES,
    build_chapter_prompt,
    build_detailed_summary_prompt,
    build_regeneration_prompt,
    chapter_system_prompt,
)


def _prompt(state, index, previous_summary="", **kwargs):
    return build_chapter_prompt(
        state.title,
        state.genre,
        state.characters,
        index,
        state.outline,
        previous_summary,
        **kwargs,
    )


class TestChapterPrompt:
    def test_first_chapter(self, story_state):
        prompt = _prompt(story_state, 0)
        assert 'Write Chapter 1 of the Fantasy story titled "The Last Embers".' in prompt
        assert "Chapter Title: Cinders" in prompt
        assert "This is the first chapter." in prompt
        assert "Immediate Continuation" not in prompt
        assert "- Next chapter (2): The Witch's Garden" in prompt
        assert "approximately 600-1000 words" in prompt

    def test_story_so_far_and_continuation(self, story_state):
        prompt = _prompt(
            story_state,
            1,
            "Chapter 1: Cinders (MOST RECENT - ...)\nMira found the ember.",
            continuation_excerpt="She closed the door behind her.",
        )
        assert "Story So Far:\nChapter 1: Cinders" in prompt
        assert "This is the first chapter." not in prompt
        assert "She closed the door behind her." in prompt
        assert "- Previous chapter (1): Cinders" in prompt

    def test_character_focus(self, story_state):
        prompt = _prompt(story_state, 0, selected_character_ids=["2"])
        assert "Focus on these characters in this chapter: Oren." in prompt
        assert "- Mira:" not in prompt

    def test_all_characters_without_selection(self, story_state):
        prompt = _prompt(story_state, 0)
        assert "- Mira: a young archivist" in prompt
        assert "- Oren: her mentor, secretly a witch" in prompt
        assert "Focus on these characters" not in prompt

    def test_reading_level(self, story_state):
        prompt = _prompt(story_state, 0, reading_level=ReadingLevel.ELEMENTARY)
        assert "Reading Level: Elementary (ages 6-9)" in prompt
        assert "simple, common vocabulary" in prompt

    def test_foreshadowing_hints_and_reveals(self, story_state):
        notes = [
            ForeshadowingNote(
                id="n1", target_chapter_id=3,
                reveal_description="Oren is the witch",
                foreshadowing_hint="Oren knows forbidden herbs",
                created_at=1,
            ),
            ForeshadowingNote(
                id="n2", target_chapter_id=3,
                reveal_description="The ember is alive",
                created_at=2,
            ),
        ]
        early = _prompt(story_state, 0, foreshadowing_notes=notes)
        assert "- (Pays off in Chapter 3) Oren knows forbidden herbs" in early
        assert "Plant a subtle clue pointing toward: The ember is alive" in early
        assert "REVEAL:" not in early

        payoff = _prompt(story_state, 2, foreshadowing_notes=notes)
        assert "REVEALS REQUIRED IN THIS CHAPTER:" in payoff
        assert "- REVEAL: Oren is the witch (this MUST be revealed in this chapter)" in payoff
        assert "Pays off" not in payoff

    def test_acceptance_criteria_verbatim(self, story_state):
        story_state.outline[0].acceptance_criteria = "Must include a plot twist\nEnd on a cliffhanger"
        prompt = _prompt(story_state, 0)
        assert (
            "ACCEPTANCE CRITERIA - this chapter MUST MEET all of the following:\n"
            "Must include a plot twist\nEnd on a cliffhanger\n"
            "You must explicitly satisfy every criterion listed above."
        ) in prompt

    def test_no_criteria_block_when_blank(self, story_state):
        story_state.outline[0].acceptance_criteria = "   "
        assert "ACCEPTANCE CRITERIA" not in _prompt(story_state, 0)

    @pytest.mark.parametrize("index", [-1, 3])
    def test_out_of_range(self, story_state, index):
        with pytest.raises(IndexError):
            _prompt(story_state, index)

    def test_deterministic(self, story_state):
        assert _prompt(story_state, 1, "x") == _prompt(story_state, 1, "x")


class TestSystemPrompt:
    def test_default_mentions_genre(self):
        prompt = chapter_system_prompt("Mystery")
        assert "Mystery stories" in prompt
        assert prompt.endswith(CONTINUITY_RULES)

    def test_precedence(self):
        genre_prompts = {"Horror": "You write quiet dread."}
        assert chapter_system_prompt("Horror", None, genre_prompts).startswith("You write quiet dread.")
        custom = chapter_system_prompt("Horror", "Write like a fable.", genre_prompts)
        assert custom.startswith("Write like a fable.")
        assert CONTINUITY_RULES in custom


def test_regeneration_prompt():
    prompt = build_regeneration_prompt("BASE PROMPT", "Old chapter text.", "add more humor")
    assert prompt.startswith("BASE PROMPT\n\nIMPORTANT: This is a REGENERATION")
    assert "Previous version of the chapter:\nOld chapter text." in prompt
    assert "User Feedback:\nadd more humor" in prompt
    assert "2. MAINTAIN FULL CONTINUITY with previous chapters" in prompt


def test_detailed_summary_prompt_has_full_text():
    content = "Opening. " * 2000 + "FINAL LINE: the door stays open."
    prompt = build_detailed_summary_prompt(Chapter(id=4, title="After", content=content))
    assert "Chapter 4: After" in prompt
    assert "FINAL LINE: the door stays open." in prompt
