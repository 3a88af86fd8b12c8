"""Story library: YAML files on disk, export/import, and debounced auto-save."""

import re
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

import yaml
from loguru import logger
from pydantic import ValidationError

from .errors import StorageError, StoryNotFoundError
from .models.story_state import SavedStory, StoryState

HEADER = "# Lumina Stories - Saved Story\n"


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "untitled"


def new_story_id() -> str:
    return f"story-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def dump_story(story: SavedStory) -> str:
    body = yaml.safe_dump(
        story.model_dump(mode="json"),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return HEADER + body


def parse_story(text: str) -> SavedStory:
    """Parse a saved-story document. Raises StorageError on any malformed input."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise StorageError(f"Invalid story file: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("state"), dict):
        raise StorageError("Invalid story file format")
    try:
        story = SavedStory.model_validate(data)
    except ValidationError as e:
        raise StorageError(f"Invalid story file format: {e.error_count()} errors") from e
    if not story.state.title:
        raise StorageError("Invalid story file format: story has no title")
    return story


class LibraryStore:
    """One YAML file per story, named after the story title.

    Saving a story whose title already exists updates that entry (keeping
    its id and first-saved time) rather than creating a duplicate.
    """

    def __init__(self, library_dir: Path):
        self.library_dir = Path(library_dir)

    def _path_for(self, title: str) -> Path:
        return self.library_dir / f"{slugify(title)}.yaml"

    def _write(self, path: Path, story: SavedStory) -> None:
        try:
            self.library_dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".yaml.tmp")
            tmp.write_text(dump_story(story), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StorageError(f"Failed to save story '{story.state.title}': {e}") from e

    def list_stories(self) -> list[SavedStory]:
        if not self.library_dir.exists():
            return []
        stories = []
        for path in sorted(self.library_dir.glob("*.yaml")):
            try:
                stories.append(parse_story(path.read_text(encoding="utf-8")))
            except (OSError, StorageError) as e:
                logger.warning(f"Skipping unreadable story file {path.name}: {e}")
        return sorted(stories, key=lambda s: s.last_modified, reverse=True)

    def get(self, story_id: str) -> SavedStory:
        for story in self.list_stories():
            if story.id == story_id:
                return story
        raise StoryNotFoundError(story_id)

    def load_state(self, story_id: str) -> StoryState:
        return self.get(story_id).state

    def find_by_title(self, title: str) -> Optional[SavedStory]:
        for story in self.list_stories():
            if story.state.title == title:
                return story
        return None

    def save(self, state: StoryState, story_id: Optional[str] = None) -> SavedStory:
        """Upsert ``state`` by title.

        When ``story_id`` names an entry saved under a different title (the
        story was renamed), the old file is replaced.
        """
        if not state.title:
            raise StorageError("Cannot save a story without a title")
        existing = self.find_by_title(state.title)
        renamed = None
        if existing is None and story_id:
            try:
                renamed = self.get(story_id)
            except StoryNotFoundError:
                renamed = None

        previous = existing or renamed
        now = time.time()
        story = SavedStory(
            id=previous.id if previous else (story_id or new_story_id()),
            state=state,
            saved_at=previous.saved_at if previous else now,
            last_modified=now,
            progress=state.progress,
        )
        self._write(self._path_for(state.title), story)
        if renamed is not None:
            old_path = self._path_for(renamed.state.title)
            if old_path != self._path_for(state.title):
                old_path.unlink(missing_ok=True)
        logger.debug(f"Saved story '{state.title}' ({story.id}, {story.progress}%)")
        return story

    def delete(self, story_id: str) -> None:
        story = self.get(story_id)
        try:
            self._path_for(story.state.title).unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete story '{story.state.title}': {e}") from e
        logger.info(f"Deleted story '{story.state.title}'")

    def export(self, story_id: str, destination: Path) -> Path:
        story = self.get(story_id)
        destination = Path(destination)
        if destination.is_dir():
            name = re.sub(r"[^a-z0-9]", "_", story.state.title.lower())
            destination = destination / f"{name}_{int(time.time() * 1000)}.yaml"
        try:
            destination.write_text(dump_story(story), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to export story: {e}") from e
        return destination

    def import_file(self, source: Path) -> SavedStory:
        """Import an exported story under a fresh id, then save it to the library."""
        try:
            text = Path(source).read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read file: {e}") from e
        imported = parse_story(text)
        # The exported id is discarded; save() reuses the id of a same-titled
        # entry or mints a new one.
        return self.save(imported.state)


class DebouncedSaver:
    """Coalesce bursts of state changes into one write after ``delay`` seconds.

    Failures are logged and never raised: auto-save must not interrupt
    the author.
    """

    def __init__(self, save_fn: Callable[[StoryState], object], delay: float = 2.0):
        self.save_fn = save_fn
        self.delay = delay
        self.writes = 0
        self._pending: Optional[StoryState] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def schedule(self, state: StoryState) -> None:
        with self._lock:
            self._pending = state.model_copy(deep=True)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            state, self._pending, self._timer = self._pending, None, None
        if state is not None:
            self._write(state)

    def _write(self, state: StoryState) -> None:
        try:
            self.save_fn(state)
            self.writes += 1
        except Exception as e:
            logger.warning(f"Auto-save of '{state.title}' failed: {e}")

    def flush(self) -> None:
        """Write any pending state now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            state, self._pending, self._timer = self._pending, None, None
        if state is not None:
            self._write(state)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending, self._timer = None, None
