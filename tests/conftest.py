"""Shared fixtures: a scripted gateway and a small outlined story."""

from dataclasses import dataclass

import pytest

from lumina_stories.config import GenerationConfig
from lumina_stories.gateway import GatewayResult, LLMGateway
from lumina_stories.models.story_state import (
    Chapter,
    Character,
    StoryState,
    WorkflowStep,
)
from lumina_stories.pipeline import StorySession


@dataclass
class Call:
    kind: str
    task: str
    prompt: str
    system_prompt: str


class FakeGateway(LLMGateway):
    """Replays queued responses per task and records every call.

    Queue entries may be plain values (wrapped as success), GatewayResult
    instances (returned as-is) or callables taking the prompt.
    """

    def __init__(self):
        self.queues = {"chapter": [], "summary": [], "structured": []}
        self.calls: list[Call] = []

    def queue(self, kind: str, *responses):
        self.queues[kind].extend(responses)

    def calls_for(self, kind: str, task: str = None) -> list[Call]:
        return [c for c in self.calls if c.kind == kind and (task is None or c.task == task)]

    def _next(self, queue: str, prompt: str, default):
        item = self.queues[queue].pop(0) if self.queues[queue] else default
        if callable(item):
            item = item(prompt)
        if isinstance(item, GatewayResult):
            return item
        return GatewayResult.success(item)

    def generate_text(self, prompt, system_prompt, task="chapter"):
        self.calls.append(Call("text", task, prompt, system_prompt))
        if task == "summary":
            default = f"MAJOR EVENTS: summary #{len(self.calls)}."
        else:
            default = f"Prose draft #{len(self.calls)}. The lantern guttered out."
        return self._next(task, prompt, default)

    def generate_structured(self, prompt, system_prompt, schema, task="outline"):
        self.calls.append(Call("structured", task, prompt, system_prompt))
        return self._next("structured", prompt, [])


OUTLINE_ITEMS = [
    {"title": "Cinders", "summary": "Mira finds the last ember in the archive."},
    {"title": "The Witch's Garden", "summary": "Mira seeks help from her mentor Oren."},
    {"title": "Embers Rekindled", "summary": "The ember is returned to the hearth."},
    {"title": "Ashfall", "summary": "The city burns."},
    {"title": "After", "summary": "Rebuilding."},
]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def characters():
    return [
        Character(id="1", name="Mira", attributes="a young archivist"),
        Character(id="2", name="Oren", attributes="her mentor, secretly a witch"),
    ]


@pytest.fixture
def story_state(characters):
    """Three pending chapters of 'The Last Embers'."""
    return StoryState(
        title="The Last Embers",
        genre="Fantasy",
        num_chapters=3,
        characters=characters,
        outline=[
            Chapter(id=i + 1, title=item["title"], summary=item["summary"])
            for i, item in enumerate(OUTLINE_ITEMS[:3])
        ],
        current_step=WorkflowStep.OUTLINE,
    )


@pytest.fixture
def generation_config():
    return GenerationConfig(continuation_excerpt_chars=200)


@pytest.fixture
def session(story_state, gateway, generation_config):
    return StorySession(story_state, gateway, generation_config)


@pytest.fixture
def outline_items():
    return [dict(item) for item in OUTLINE_ITEMS]
