"""Prompt templates and the chapter prompt builder.

Every function here is pure: same inputs, same string out. Nothing touches
the network or the session, so prompts can be inspected (and edited by the
user in manual mode) before any call is made.
"""

from typing import Iterable, Optional, Sequence

from .foreshadowing import partition_notes
from .models.story_state import (
    Chapter,
    Character,
    ForeshadowingNote,
    ReadingLevel,
)

# ---------------------------------------------------------------------------
# Reading levels
# ---------------------------------------------------------------------------

READING_LEVEL_LABELS = {
    ReadingLevel.ELEMENTARY: "Elementary (ages 6-9)",
    ReadingLevel.MIDDLE_GRADE: "Middle Grade (ages 9-12)",
    ReadingLevel.YOUNG_ADULT: "Young Adult (ages 12-18)",
    ReadingLevel.ADULT: "Adult",
}

READING_LEVEL_INSTRUCTIONS = {
    ReadingLevel.ELEMENTARY: (
        "- Use simple, common vocabulary a young reader can decode on their own.\n"
        "- Keep sentences short and direct; avoid nested clauses.\n"
        "- Keep themes gentle: friendship, curiosity, courage, kindness.\n"
        "- No violence beyond mild peril, no romance, no frightening imagery.\n"
        "- Make every emotion explicit; do not rely on subtext."
    ),
    ReadingLevel.MIDDLE_GRADE: (
        "- Use accessible vocabulary, introducing a few richer words through context.\n"
        "- Mix short and medium-length sentences; keep paragraphs brief.\n"
        "- Themes may include loyalty, identity, loss and standing up for others.\n"
        "- Peril and conflict are allowed but keep violence non-graphic; no romance beyond crushes.\n"
        "- Light subtext is fine as long as the emotional through-line stays clear."
    ),
    ReadingLevel.YOUNG_ADULT: (
        "- Use a full contemporary vocabulary with a strong, immediate voice.\n"
        "- Vary sentence length freely; dialogue can carry much of the scene.\n"
        "- Themes may include first love, grief, injustice, self-discovery and moral ambiguity.\n"
        "- Violence and danger may be intense but not gratuitous; keep romance non-explicit.\n"
        "- Subtext, unreliable perceptions and complex motives are welcome."
    ),
    ReadingLevel.ADULT: (
        "- Use a sophisticated literary vocabulary appropriate to the genre.\n"
        "- Use complex sentence structures, layered imagery and deliberate pacing.\n"
        "- Any mature theme the story calls for may be explored with nuance.\n"
        "- Content restrictions are limited to what serves the story and the genre.\n"
        "- Trust the reader with subtext, ambiguity and unresolved tension."
    ),
}

# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

CONTINUITY_RULES = """CONTINUITY RULES (highest priority):
- Every chapter continues the same story. Respect everything established in earlier chapters.
- Characters only know what they have learned on the page. Never repeat a discovery or a first meeting that already happened.
- Pick up unresolved questions, conversations and cliffhangers exactly where they were left.
- Keep locations, time of day, injuries, possessions and relationships consistent unless the story changes them."""

DEFAULT_CHAPTER_SYSTEM = (
    "You are a professional fiction writer specializing in {genre} stories. "
    "Write engaging, vivid prose with strong character development and compelling narrative flow."
)

OUTLINE_SYSTEM = (
    "You are a creative story outline generator. Return your response as a JSON "
    "array of objects with 'title' and 'summary' fields."
)

OUTLINE_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "summary": {"type": "string"},
        },
        "required": ["title", "summary"],
    },
}

DETAILED_SUMMARY_SYSTEM = """You are a meticulous story continuity analyst. You read an entire chapter and write the notes another writer needs to continue the story without contradicting it.

Structure your summary with these sections:
MAJOR EVENTS: every significant event, in order.
CHARACTER DEVELOPMENTS: what each character did, learned, decided or felt. Separate what the narrator reveals from what each character actually knows.
UNRESOLVED PLOT THREADS: open questions, unanswered dialogue, cliffhangers, promises and mysteries. Label each one UNRESOLVED.
CURRENT STATE: where everyone is, what they know, what time it is, and the mood at the final line.
WHAT MUST HAPPEN NEXT: what the very next scene has to address to continue seamlessly.

Pay special attention to the end of the chapter. Never skip the final scene."""

VALIDATION_SYSTEM = (
    "You are a strict but fair fiction editor. You check a chapter against its "
    "acceptance criteria and against the story so far. "
    "Return JSON with: passed (bool), feedback (string). When the chapter fails, "
    "the feedback must list concrete, actionable changes a writer can apply directly."
)

VALIDATION_SCHEMA = {
    "type": "object",
    "properties": {
        "passed": {"type": "boolean"},
        "feedback": {"type": "string"},
    },
    "required": ["passed", "feedback"],
}

OUTCOMES_SYSTEM = (
    "You are a creative story consultant. You propose distinct, compelling directions "
    "a story could take next. Return a JSON array of objects with 'title', 'summary' "
    "and 'description' fields."
)

OUTCOMES_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "summary": {"type": "string"},
            "description": {"type": "string"},
        },
        "required": ["title", "summary", "description"],
    },
}

DIRECTIONS_SYSTEM = (
    "You are a story editor who suggests alternative takes on a planned chapter. "
    "Return a JSON array of objects with 'title' and 'summary' fields."
)


def chapter_system_prompt(
    genre: str,
    custom_system_prompt: Optional[str] = None,
    genre_prompts: Optional[dict] = None,
) -> str:
    """System prompt for prose generation.

    A story's own system prompt wins over a configured genre prompt, which
    wins over the built-in default. The continuity rules are always appended.
    """
    if custom_system_prompt and custom_system_prompt.strip():
        base = custom_system_prompt.strip()
    elif genre_prompts and genre in genre_prompts:
        base = genre_prompts[genre].strip()
    else:
        base = DEFAULT_CHAPTER_SYSTEM.format(genre=genre)
    return f"{base}\n\n{CONTINUITY_RULES}"


# ---------------------------------------------------------------------------
# Outline
# ---------------------------------------------------------------------------

def format_characters(characters: Iterable[Character]) -> str:
    return "\n".join(f"- {c.name}: {c.attributes}" for c in characters)


def build_outline_prompt(
    title: str,
    genre: str,
    num_chapters: int,
    characters: Sequence[Character],
    initial_idea: str,
    reading_level: ReadingLevel = ReadingLevel.ADULT,
) -> str:
    return (
        f'Generate a detailed story outline for a {genre} story titled "{title}".\n'
        f"The story should have exactly {num_chapters} chapters.\n\n"
        f"Core Idea: {initial_idea or 'Use your imagination.'}\n\n"
        f"Target audience: {READING_LEVEL_LABELS[reading_level]}\n\n"
        f"Characters:\n{format_characters(characters) or '- (none specified)'}\n\n"
        "For each chapter, provide a catchy title and a 2-3 sentence summary of the plot developments."
    )


# ---------------------------------------------------------------------------
# Chapter generation
# ---------------------------------------------------------------------------

def _character_block(
    characters: Sequence[Character], selected_ids: Optional[Sequence[str]]
) -> str:
    if selected_ids:
        wanted = set(selected_ids)
        chosen = [c for c in characters if c.id in wanted]
        lines = [f"Characters:\n{format_characters(chosen)}"]
        names = ", ".join(c.name for c in chosen)
        lines.append(
            f"Focus on these characters in this chapter: {names}. "
            "Other established characters should appear only if the plot requires it."
        )
        return "\n".join(lines)
    return f"Characters:\n{format_characters(characters)}"


def _neighbor_block(outline: Sequence[Chapter], chapter_index: int) -> str:
    lines = []
    if chapter_index > 0:
        prev = outline[chapter_index - 1]
        lines.append(f"- Previous chapter ({chapter_index}): {prev.title} - {prev.summary}")
    if chapter_index + 1 < len(outline):
        nxt = outline[chapter_index + 1]
        lines.append(f"- Next chapter ({chapter_index + 2}): {nxt.title} - {nxt.summary}")
        lines.append("Do not resolve events that are planned for the next chapter.")
    if not lines:
        return ""
    return "Surrounding Chapters:\n" + "\n".join(lines)


def _foreshadowing_block(
    notes: Sequence[ForeshadowingNote], chapter_number: int
) -> str:
    reveals, hints = partition_notes(notes, chapter_number)
    if not reveals and not hints:
        return ""
    lines = ["Foreshadowing:"]
    if hints:
        lines.append("Subtle hints for future reveals (plant these lightly; do NOT reveal them yet):")
        for note in hints:
            hint = note.foreshadowing_hint.strip() or (
                f"Plant a subtle clue pointing toward: {note.reveal_description}"
            )
            lines.append(f"- (Pays off in Chapter {note.target_chapter_id}) {hint}")
    if reveals:
        lines.append("REVEALS REQUIRED IN THIS CHAPTER:")
        for note in reveals:
            lines.append(
                f"- REVEAL: {note.reveal_description} (this MUST be revealed in this chapter)"
            )
    return "\n".join(lines)


def _acceptance_block(criteria: str) -> str:
    if not criteria or not criteria.strip():
        return ""
    return (
        "ACCEPTANCE CRITERIA - this chapter MUST MEET all of the following:\n"
        f"{criteria}\n"
        "You must explicitly satisfy every criterion listed above."
    )


def build_chapter_prompt(
    story_title: str,
    genre: str,
    characters: Sequence[Character],
    chapter_index: int,
    outline: Sequence[Chapter],
    previous_summary: str,
    selected_character_ids: Optional[Sequence[str]] = None,
    reading_level: ReadingLevel = ReadingLevel.ADULT,
    foreshadowing_notes: Sequence[ForeshadowingNote] = (),
    continuation_excerpt: Optional[str] = None,
    min_words: int = 600,
    max_words: int = 1000,
) -> str:
    """Render the fresh-generation prompt for ``outline[chapter_index]``.

    An out-of-range ``chapter_index`` raises IndexError.
    """
    if chapter_index < 0:
        raise IndexError(f"chapter index {chapter_index} out of range")
    chapter = outline[chapter_index]
    number = chapter_index + 1

    sections = [
        f'Write Chapter {number} of the {genre} story titled "{story_title}".',
        f"Chapter Title: {chapter.title}\nChapter Summary: {chapter.summary}",
        "Story So Far:\n" + (previous_summary.strip() or "This is the first chapter."),
    ]

    if continuation_excerpt and continuation_excerpt.strip():
        sections.append(
            "Immediate Continuation - the previous chapter ended with:\n"
            f'"""\n{continuation_excerpt.strip()}\n"""\n'
            "Open this chapter directly from that moment. Do not insert a time skip "
            "or a scene break unless the chapter summary calls for one."
        )

    for block in (
        _neighbor_block(outline, chapter_index),
        _character_block(characters, selected_character_ids),
        f"Reading Level: {READING_LEVEL_LABELS[reading_level]}\n"
        f"{READING_LEVEL_INSTRUCTIONS[reading_level]}",
        _foreshadowing_block(foreshadowing_notes, number),
        _acceptance_block(chapter.acceptance_criteria),
    ):
        if block:
            sections.append(block)

    sections.append(
        "Instructions:\n"
        f"- Write in a professional, engaging literary style suited for the {genre} genre.\n"
        "- Focus on showing rather than telling.\n"
        "- Include dialogue where appropriate.\n"
        f"- The chapter should be approximately {min_words}-{max_words} words.\n"
        "- Ensure continuity with the provided characters and plot.\n"
        "- Output only the chapter prose, without headings or notes."
    )
    return "\n\n".join(sections)


def build_regeneration_prompt(
    base_prompt: str, previous_content: str, feedback: str
) -> str:
    """Append the revision block to a fresh-generation prompt."""
    return (
        f"{base_prompt}\n\n"
        "IMPORTANT: This is a REGENERATION of the chapter based on user feedback.\n\n"
        f"Previous version of the chapter:\n{previous_content}\n\n"
        f"User Feedback:\n{feedback}\n\n"
        "Please rewrite the chapter taking the user's feedback into account. Make sure to:\n"
        "1. Address all points mentioned in the feedback\n"
        "2. MAINTAIN FULL CONTINUITY with previous chapters\n"
        "3. Characters should remember what they learned in previous chapters\n"
        "4. Keep the core plot points from the chapter summary\n"
        "5. Maintain consistency with the story's tone, style, and established facts\n"
        "6. Improve upon the previous version based on the specific feedback provided"
    )


# ---------------------------------------------------------------------------
# Summaries, validation, suggestions
# ---------------------------------------------------------------------------

def build_detailed_summary_prompt(chapter: Chapter) -> str:
    # The whole chapter goes in: late scenes carry the open threads.
    return (
        f"Chapter {chapter.id}: {chapter.title}\n"
        f"Planned summary: {chapter.summary}\n\n"
        f"FULL CHAPTER TEXT:\n{chapter.content}\n\n"
        "Write the detailed continuity summary for this chapter."
    )


def build_validation_prompt(
    content: str,
    acceptance_criteria: str,
    chapter_title: str,
    chapter_summary: str,
    previous_summary: str,
    genre: str,
) -> str:
    return (
        f"Genre: {genre}\n"
        f"Chapter Title: {chapter_title}\n"
        f"Chapter Summary: {chapter_summary}\n\n"
        "Story So Far:\n"
        f"{previous_summary.strip() or 'This is the first chapter.'}\n\n"
        f"Acceptance Criteria:\n{acceptance_criteria}\n\n"
        f"Chapter Text:\n{content}\n\n"
        "Does the chapter satisfy every acceptance criterion, and is it cohesive with the "
        "story so far? Set passed to true only if all criteria are met."
    )


def build_outcomes_prompt(
    story_title: str,
    genre: str,
    story_so_far: str,
    last_chapter: Chapter,
    num_outcomes: int,
) -> str:
    return (
        f'The {genre} story "{story_title}" is being written one chapter at a time.\n\n'
        f"Story So Far:\n{story_so_far.strip() or 'Only one chapter has been written.'}\n\n"
        f"Latest Chapter ({last_chapter.id}): {last_chapter.title}\n{last_chapter.summary}\n\n"
        f"Propose exactly {num_outcomes} distinct directions for the next chapter. "
        "Each needs a chapter title, a 2-3 sentence summary of what happens, and a "
        "one-sentence description of how it changes the story."
    )


def build_directions_prompt(
    story_title: str,
    genre: str,
    story_so_far: str,
    chapter: Chapter,
    num_suggestions: int,
) -> str:
    return (
        f'The {genre} story "{story_title}" has a planned Chapter {chapter.id}:\n'
        f"Title: {chapter.title}\nSummary: {chapter.summary}\n\n"
        f"Story So Far:\n{story_so_far.strip() or 'This is the first chapter.'}\n\n"
        f"Suggest {num_suggestions} alternative takes on this chapter that still fit "
        "the story so far. Each needs a title and a 2-3 sentence summary."
    )
