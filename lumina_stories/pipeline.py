"""Story session: the chapter state machine and the generation loops."""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from loguru import logger

from .agents.memory import Accumulation, MemoryAgent, apply_summaries
from .agents.judge import Judge
from .agents.outcome_planner import OutcomePlanner
from .agents.outline_architect import OutlineArchitect
from .agents.writer import Writer
from .config import GenerationConfig
from .errors import (
    ChapterGenerationError,
    GatewayError,
    GenerationInProgressError,
    LuminaError,
)
from .foreshadowing import ForeshadowingEngine
from .gateway import LLMGateway
from .models.story_state import (
    Chapter,
    ChapterOutcome,
    ChapterStatus,
    Character,
    ForeshadowingNote,
    ReadingLevel,
    StoryMode,
    StoryState,
    ValidationResult,
    WorkflowStep,
)
from .prompts import build_chapter_prompt, chapter_system_prompt
from .utils.text import truncate_text

ProgressCallback = Callable[[str, int, int, bool], None]
ChangeCallback = Callable[[StoryState], None]

_EDITABLE_CHAPTER_FIELDS = {"title", "summary", "character_ids", "acceptance_criteria", "content"}


def _noop_progress(msg: str, index: int, total: int, done: bool = False) -> None:
    pass


def _describe(error: Exception) -> str:
    if isinstance(error, GatewayError):
        return str(error)
    return f"{type(error).__name__}: {error}"


@dataclass
class ChapterResult:
    chapter: Chapter
    validation: Optional[ValidationResult] = None
    needs_decision: bool = False


@dataclass
class BatchReport:
    completed: list[int] = field(default_factory=list)
    awaiting_decision: list[int] = field(default_factory=list)
    failed_chapter: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failed_chapter is None


class StorySession:
    """Owns one story's state for the length of an authoring session.

    Generation is strictly sequential: chapter N's prompt depends on the
    summaries of chapters before it. ``is_generating`` gates every
    generation entry point, so a chapter index is never reused while it is
    still in flight. ``on_change`` is called after every state mutation
    (wire it to a DebouncedSaver for auto-save).
    """

    def __init__(
        self,
        state: StoryState,
        gateway: LLMGateway,
        config: Optional[GenerationConfig] = None,
        on_change: Optional[ChangeCallback] = None,
    ):
        self.state = state
        self.config = config or GenerationConfig()
        self.on_change = on_change
        self.is_generating = False

        self.outline_architect = OutlineArchitect(gateway)
        self.writer = Writer(gateway)
        self.memory = MemoryAgent(gateway)
        self.judge = Judge(gateway)
        self.outcome_planner = OutcomePlanner(gateway)
        self.foreshadowing = ForeshadowingEngine(state)

        # A saved ``generating`` status means a previous process died mid-call.
        interrupted = [c for c in state.outline if c.status == ChapterStatus.GENERATING]
        for chapter in interrupted:
            chapter.status = ChapterStatus.ERROR
            self.log.warning(f"Chapter {chapter.id} was left generating; marked as error")
        if interrupted:
            self._changed()

    @property
    def awaiting_decision(self) -> list[int]:
        """Ids of chapters whose failed acceptance check has not been resolved."""
        return [c.id for c in self.state.outline if c.awaiting_decision]

    @property
    def all_agents(self) -> list:
        return [
            self.outline_architect,
            self.writer,
            self.memory,
            self.judge,
            self.outcome_planner,
        ]

    @property
    def all_logs(self) -> list:
        logs = []
        for agent in self.all_agents:
            logs.extend(agent.logs)
        return logs

    @property
    def log(self):
        return logger.bind(story=self.state.title or "-")

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.state)

    @contextmanager
    def _generation(self):
        if self.is_generating:
            raise GenerationInProgressError("A generation is already in progress")
        self.is_generating = True
        try:
            yield
        finally:
            self.is_generating = False

    # ------------------------------------------------------------------
    # Setup and outline
    # ------------------------------------------------------------------

    def start_story(
        self,
        title: str,
        genre: str,
        num_chapters: int,
        characters: Sequence[Character],
        initial_idea: str = "",
        reading_level: ReadingLevel = ReadingLevel.ADULT,
        mode: StoryMode = StoryMode.PLANNED,
        system_prompt: Optional[str] = None,
    ) -> list[Chapter]:
        """Generate the outline and commit it. On failure the state is untouched."""
        with self._generation():
            outline = self.outline_architect.generate_outline(
                title, genre, num_chapters, characters, initial_idea, reading_level
            )

        self.state.title = title
        self.state.genre = genre
        self.state.num_chapters = num_chapters
        self.state.characters = list(characters)
        self.state.plot_outline = initial_idea
        self.state.reading_level = reading_level
        self.state.mode = mode
        self.state.system_prompt = system_prompt
        self.state.outline = outline
        self.state.chapter_outcomes = None
        self.state.current_step = WorkflowStep.OUTLINE
        self.foreshadowing.recompute()
        self.log.info(f"Outline ready: {len(outline)} chapters ({mode.value} mode)")
        self._changed()
        return outline

    def enter_manual_mode(self) -> None:
        self.state.current_step = WorkflowStep.MANUAL_GENERATION
        self._changed()

    def update_chapter(self, chapter_id: int, **fields) -> Chapter:
        """Edit outline fields or prose. New prose archives the old and drops its summary."""
        unknown = set(fields) - _EDITABLE_CHAPTER_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit chapter fields: {sorted(unknown)}")
        chapter = self.state.chapter(chapter_id)
        if chapter.status == ChapterStatus.GENERATING:
            raise GenerationInProgressError(f"Chapter {chapter_id} is being generated")

        if "content" in fields:
            content = fields.pop("content")
            if chapter.status == ChapterStatus.COMPLETED and not content.strip():
                raise ValueError(f"Chapter {chapter_id} is completed; its content cannot be blank")
            if content != chapter.content:
                chapter.replace_content(content)
                chapter.validation_result = None
                chapter.awaiting_decision = False
        for name, value in fields.items():
            setattr(chapter, name, value)
        if "acceptance_criteria" in fields:
            self.foreshadowing.recompute()
        self._changed()
        return chapter

    def append_chapter(self, title: str, summary: str) -> Chapter:
        next_id = max((c.id for c in self.state.outline), default=0) + 1
        chapter = Chapter(id=next_id, title=title, summary=summary)
        self.state.outline.append(chapter)
        self.state.num_chapters = max(self.state.num_chapters, len(self.state.outline))
        self.foreshadowing.recompute()
        self._changed()
        return chapter

    # ------------------------------------------------------------------
    # Foreshadowing
    # ------------------------------------------------------------------

    def add_foreshadowing(
        self, target_chapter_id: int, reveal_description: str, foreshadowing_hint: str = ""
    ) -> ForeshadowingNote:
        note = self.foreshadowing.add(target_chapter_id, reveal_description, foreshadowing_hint)
        self._changed()
        return note

    def update_foreshadowing(self, note_id: str, **fields) -> ForeshadowingNote:
        note = self.foreshadowing.update(note_id, **fields)
        self._changed()
        return note

    def delete_foreshadowing(self, note_id: str) -> None:
        self.foreshadowing.delete(note_id)
        self._changed()

    # ------------------------------------------------------------------
    # Prompt building
    # ------------------------------------------------------------------

    def system_prompt(self) -> str:
        return chapter_system_prompt(
            self.state.genre, self.state.system_prompt, self.config.genre_prompts
        )

    def continuation_excerpt(self, index: int) -> Optional[str]:
        if index <= 0:
            return None
        previous = self.state.outline[index - 1]
        if previous.status != ChapterStatus.COMPLETED or not previous.content:
            return None
        return truncate_text(
            previous.content, self.config.continuation_excerpt_chars, from_end=True
        )

    def build_prompt(self, index: int, previous_summary: str) -> str:
        chapter = self.state.outline[index]
        return build_chapter_prompt(
            self.state.title,
            self.state.genre,
            self.state.characters,
            index,
            self.state.outline,
            previous_summary,
            selected_character_ids=chapter.character_ids,
            reading_level=self.state.reading_level,
            foreshadowing_notes=self.state.foreshadowing_notes,
            continuation_excerpt=self.continuation_excerpt(index),
            min_words=self.config.min_words,
            max_words=self.config.max_words,
        )

    def _context_for(self, index: int) -> Accumulation:
        """Accumulated summary of completed chapters before ``index`` (raises GatewayError)."""
        accumulation = self.memory.accumulate(self.state.completed_before(index))
        if apply_summaries(self.state.outline, accumulation.chapters):
            self._changed()
        return accumulation

    def preview_prompt(self, index: Optional[int] = None) -> Optional[str]:
        """Seed prompt for manual mode. A summary failure here only degrades the context."""
        if index is None:
            index = self.state.next_pending_index()
            if index is None:
                return None
        accumulation = self.memory.try_accumulate(self.state.completed_before(index))
        summary = ""
        if accumulation is not None:
            if apply_summaries(self.state.outline, accumulation.chapters):
                self._changed()
            summary = accumulation.summary
        return self.build_prompt(index, summary)

    # ------------------------------------------------------------------
    # Chapter state machine
    # ------------------------------------------------------------------

    def generate_next_chapter(
        self, custom_prompt: Optional[str] = None, validate: bool = True
    ) -> ChapterResult:
        index = self.state.next_pending_index()
        if index is None:
            raise LuminaError("No pending chapters to generate")
        return self.generate_chapter(index, custom_prompt=custom_prompt, validate=validate)

    def generate_chapter(
        self, index: int, custom_prompt: Optional[str] = None, validate: bool = True
    ) -> ChapterResult:
        """pending|error -> generating -> completed|error.

        Raises ChapterGenerationError (chapter left in ``error``) when the
        context summary or the prose call fails, whatever the cause. An
        interrupt also leaves the chapter in ``error`` before propagating.
        """
        with self._generation():
            chapter = self.state.outline[index]
            if chapter.status not in (ChapterStatus.PENDING, ChapterStatus.ERROR):
                raise LuminaError(
                    f"Chapter {chapter.id} is {chapter.status.value}; use regenerate instead"
                )

            chapter.status = ChapterStatus.GENERATING
            chapter.validation_result = None
            chapter.awaiting_decision = False
            self._changed()
            self.log.info(f"Generating chapter {chapter.id}: {chapter.title}")

            try:
                context = self._context_for(index)
                prompt = (custom_prompt or "").strip() or self.build_prompt(index, context.summary)
                content = self.writer.write_chapter(prompt, self.system_prompt())
            except Exception as e:
                self._fail(chapter, e)
                raise ChapterGenerationError(chapter.id, _describe(e)) from e
            except KeyboardInterrupt:
                self._fail(chapter, "interrupted")
                raise

            chapter.replace_content(content)
            chapter.status = ChapterStatus.COMPLETED
            self._changed()
            return self._after_completion(index, context.summary, validate)

    def regenerate_chapter(
        self, chapter_id: int, feedback: str, validate: bool = True
    ) -> ChapterResult:
        """completed -> generating -> completed, rewriting against user feedback.

        Context comes from the completed chapters before this one; the
        previous version is archived and can be restored with undo_revision.
        """
        with self._generation():
            index = self.state.index_of(chapter_id)
            chapter = self.state.outline[index]
            if chapter.status != ChapterStatus.COMPLETED:
                raise LuminaError(f"Chapter {chapter_id} has not been completed yet")

            previous_content = chapter.content
            chapter.status = ChapterStatus.GENERATING
            self._changed()
            self.log.info(f"Regenerating chapter {chapter.id} with feedback")

            try:
                context = self._context_for(index)
                base_prompt = self.build_prompt(index, context.summary)
                content = self.writer.rewrite_chapter(
                    base_prompt, previous_content, feedback, self.system_prompt()
                )
            except Exception as e:
                self._fail(chapter, e)
                raise ChapterGenerationError(chapter.id, _describe(e)) from e
            except KeyboardInterrupt:
                self._fail(chapter, "interrupted")
                raise

            chapter.replace_content(content)
            chapter.status = ChapterStatus.COMPLETED
            chapter.validation_result = None
            chapter.awaiting_decision = False
            self._changed()
            return self._after_completion(index, context.summary, validate)

    def _fail(self, chapter: Chapter, error) -> None:
        chapter.status = ChapterStatus.ERROR
        chapter.awaiting_decision = False
        self.log.error(f"Chapter {chapter.id} failed: {error}")
        self._changed()

    def _after_completion(
        self, index: int, previous_summary: str, validate: bool
    ) -> ChapterResult:
        """Best-effort follow-ups. None of these can undo the completion."""
        chapter = self.state.outline[index]
        result = ChapterResult(chapter=chapter)

        if validate and chapter.acceptance_criteria.strip():
            verdict = self.judge.validate(
                chapter.content,
                chapter.acceptance_criteria,
                chapter.title,
                chapter.summary,
                previous_summary,
                self.state.genre,
            )
            if verdict is not None:
                chapter.validation_result = verdict
                result.validation = verdict
                if not verdict.passed:
                    self.log.warning(
                        f"Chapter {chapter.id} failed acceptance criteria: {verdict.feedback}"
                    )
                    chapter.awaiting_decision = True
                    result.needs_decision = True

        try:
            summarized = self.memory.summarize_chapter(chapter)
            apply_summaries(self.state.outline, [summarized])
        except GatewayError as e:
            self.log.warning(f"Detailed summary for chapter {chapter.id} unavailable: {e}")

        if (
            self.state.mode == StoryMode.CONTINUOUS
            and self.state.next_pending_index() is None
        ):
            self.suggest_outcomes()

        self._changed()
        return result

    def resolve_validation(
        self, chapter_id: int, accept: bool
    ) -> Optional[ChapterResult]:
        """Accept a failing chapter as-is, or retry it with the validator's feedback."""
        chapter = self.state.chapter(chapter_id)
        if not chapter.awaiting_decision:
            raise LuminaError(f"Chapter {chapter_id} is not awaiting a validation decision")
        if accept:
            chapter.awaiting_decision = False
            self.log.info(f"Chapter {chapter_id} accepted despite failed validation")
            self._changed()
            return None
        feedback = chapter.validation_result.feedback if chapter.validation_result else ""
        return self.regenerate_chapter(chapter_id, feedback)

    def undo_revision(self, chapter_id: int) -> bool:
        chapter = self.state.chapter(chapter_id)
        if chapter.status == ChapterStatus.GENERATING:
            raise GenerationInProgressError(f"Chapter {chapter_id} is being generated")
        restored = chapter.undo_revision()
        if restored:
            self._changed()
        return restored

    # ------------------------------------------------------------------
    # Batch mode
    # ------------------------------------------------------------------

    def write_all(
        self, progress: ProgressCallback = _noop_progress, validate: bool = True
    ) -> BatchReport:
        """Write every unfinished chapter in order; stop at the first failure."""
        report = BatchReport()
        self.state.current_step = WorkflowStep.GENERATING
        self._changed()

        total = len(self.state.outline)
        for index, chapter in enumerate(self.state.outline):
            if chapter.status == ChapterStatus.COMPLETED:
                continue
            progress(f"Writing chapter {chapter.id}: {chapter.title}", index, total, False)
            try:
                result = self.generate_chapter(index, validate=validate)
            except ChapterGenerationError as e:
                report.failed_chapter = chapter.id
                report.error = str(e)
                break
            report.completed.append(chapter.id)
            if result.needs_decision:
                report.awaiting_decision.append(chapter.id)
            progress(f"Chapter {chapter.id} complete", index, total, True)

        if report.ok:
            self.state.current_step = WorkflowStep.READER
        self._changed()
        return report

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def _story_so_far(self) -> str:
        accumulation = self.memory.try_accumulate(self.state.completed_chapters())
        if accumulation is None:
            return ""
        if apply_summaries(self.state.outline, accumulation.chapters):
            self._changed()
        return accumulation.summary

    def suggest_outcomes(self) -> list[ChapterOutcome]:
        """Branch suggestions for the chapter after the latest completed one."""
        completed = self.state.completed_chapters()
        if not completed:
            return []
        outcomes = self.outcome_planner.suggest_outcomes(
            self.state.title,
            self.state.genre,
            self._story_so_far(),
            completed[-1],
            self.config.num_outcomes,
        )
        self.state.chapter_outcomes = outcomes or None
        self._changed()
        return outcomes

    def choose_outcome(self, choice: int) -> Chapter:
        outcomes = self.state.chapter_outcomes or []
        if not 0 <= choice < len(outcomes):
            raise LuminaError(f"No outcome #{choice + 1} to choose")
        outcome = outcomes[choice]
        self.state.chapter_outcomes = None
        return self.append_chapter(outcome.title, outcome.summary)

    def generate_outcome(self, choice: int) -> ChapterResult:
        chapter = self.choose_outcome(choice)
        return self.generate_chapter(self.state.index_of(chapter.id))

    def suggest_directions(self, chapter_id: int) -> list[dict]:
        """Alternative title/summary takes for a pending chapter."""
        index = self.state.index_of(chapter_id)
        chapter = self.state.outline[index]
        accumulation = self.memory.try_accumulate(self.state.completed_before(index))
        story_so_far = ""
        if accumulation is not None:
            if apply_summaries(self.state.outline, accumulation.chapters):
                self._changed()
            story_so_far = accumulation.summary
        return self.outcome_planner.suggest_directions(
            self.state.title,
            self.state.genre,
            story_so_far,
            chapter,
            self.config.num_outcomes,
        )

    def apply_direction(self, chapter_id: int, suggestion: dict) -> Chapter:
        chapter = self.state.chapter(chapter_id)
        if chapter.status != ChapterStatus.PENDING:
            raise LuminaError(f"Chapter {chapter_id} has already been written")
        return self.update_chapter(
            chapter_id, title=suggestion["title"], summary=suggestion["summary"]
        )
