"""Judge agent: check a chapter against its acceptance criteria."""

from typing import Optional

from loguru import logger

from .base import BaseAgent
from ..gateway import LLMGateway
from ..models.story_state import ValidationResult
from ..prompts import VALIDATION_SCHEMA, VALIDATION_SYSTEM, build_validation_prompt


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "pass", "passed")
    return bool(value)


class Judge(BaseAgent):
    def __init__(self, gateway: LLMGateway):
        super().__init__("Judge", gateway)

    def validate(
        self,
        content: str,
        acceptance_criteria: str,
        chapter_title: str,
        chapter_summary: str,
        previous_summary: str,
        genre: str,
    ) -> Optional[ValidationResult]:
        """Ask the model whether ``content`` meets the criteria.

        Returns None when there is nothing to check or when the check itself
        fails; a failed check never fails the chapter.
        """
        if not acceptance_criteria or not acceptance_criteria.strip():
            return None

        prompt = build_validation_prompt(
            content,
            acceptance_criteria,
            chapter_title,
            chapter_summary,
            previous_summary,
            genre,
        )
        result = self.call_json(VALIDATION_SYSTEM, prompt, VALIDATION_SCHEMA, task="summary")
        if not result.ok:
            logger.warning(f"Validation of '{chapter_title}' skipped: {result.message}")
            return None

        data = result.value
        if not isinstance(data, dict) or "passed" not in data:
            logger.warning(f"Validation of '{chapter_title}' skipped: unexpected response")
            return None

        passed = _as_bool(data.get("passed"))
        feedback = str(data.get("feedback") or "").strip()
        return ValidationResult(passed=passed, feedback=feedback)
