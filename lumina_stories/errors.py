"""Exception hierarchy for story generation."""

from enum import Enum


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    EMPTY_RESPONSE = "empty_response"
    INVALID_JSON = "invalid_json"
    UNEXPECTED_SHAPE = "unexpected_shape"
    CONFIGURATION = "configuration"


class LuminaError(Exception):
    """Base class for all errors raised by lumina_stories."""


class GatewayError(LuminaError):
    def __init__(self, kind: ErrorKind, message: str = ""):
        self.kind = kind
        self.message = message
        super().__init__(f"[{kind.value}] {message}" if message else kind.value)


class OutlineParseError(LuminaError):
    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__("Failed to generate a valid outline structure.")


class ChapterGenerationError(LuminaError):
    def __init__(self, chapter_id: int, message: str):
        self.chapter_id = chapter_id
        super().__init__(f"Failed to generate chapter {chapter_id}: {message}")


class GenerationInProgressError(LuminaError):
    """Raised when a generation is requested while another is in flight."""


class StorageError(LuminaError):
    pass


class StoryNotFoundError(StorageError):
    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Story not found: {story_id}")
