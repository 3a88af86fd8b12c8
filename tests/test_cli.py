import pytest
from click.testing import CliRunner
from loguru import logger
from unittest.mock import patch

from lumina_stories.cli import cli
from lumina_stories.models.story_state import ChapterStatus
from lumina_stories.storage import LibraryStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_logger():
    with patch("lumina_stories.cli.setup_logger", return_value=logger):
        yield


@pytest.fixture
def store(tmp_path):
    return LibraryStore(tmp_path / "libraries")


@pytest.fixture
def invoke(runner, store, gateway, tmp_path):
    def _invoke(*args, input=None):
        return runner.invoke(
            cli,
            ['-c', str(tmp_path / "missing.yaml"), *args],
            obj={'store': store, 'gateway': gateway},
            env={'AI_PROVIDER': ''},
            input=input,
        )
    return _invoke


@pytest.fixture
def story_id(store, story_state):
    return store.save(story_state).id


def test_cli_help(runner):
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    for command in ('new', 'next', 'write-all', 'resolve', 'regenerate', 'foreshadow', 'library', 'serve'):
        assert command in result.output


def test_config_file(runner, tmp_path, store, gateway, story_id):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("generation:\n  min_words: 900\n  max_words: 1400\n")

    result = runner.invoke(
        cli, ['-c', str(config_file), 'prompt', story_id],
        obj={'store': store, 'gateway': gateway}, env={'AI_PROVIDER': ''},
    )
    assert result.exit_code == 0, result.output
    assert "approximately 900-1400 words" in result.output


def test_library_list_empty(invoke):
    result = invoke('library', 'list')
    assert result.exit_code == 0
    assert "No saved stories" in result.output


def test_new_story(invoke, gateway, store, outline_items):
    gateway.queue("structured", {"chapters": outline_items})
    result = invoke(
        'new', '-t', 'The Last Embers', '-n', '3',
        '--character', 'Mira: a young archivist',
        '--idea', 'A city running out of fire.',
    )
    assert result.exit_code == 0, result.output
    assert "Saved as story-" in result.output

    (story,) = store.list_stories()
    assert len(story.state.outline) == 3
    assert story.state.characters[0].name == "Mira"


def test_new_story_outline_failure(invoke, gateway, store):
    gateway.queue("structured", {"unexpected": "shape", "extra": 1})
    result = invoke('new', '-t', 'The Last Embers')
    assert result.exit_code != 0
    assert "Failed to generate a valid outline structure." in result.output
    assert store.list_stories() == []


def test_bad_character(invoke):
    result = invoke('new', '-t', 'T', '--character', ': nameless')
    assert result.exit_code != 0


def test_next_saves_chapter(invoke, store, story_id):
    result = invoke('next', story_id)
    assert result.exit_code == 0, result.output

    state = store.load_state(story_id)
    assert state.outline[0].status == ChapterStatus.COMPLETED
    assert state.outline[0].detailed_summary


def test_next_retry_on_failed_validation(invoke, gateway, store, story_state):
    story_state.outline[0].acceptance_criteria = "Must include a plot twist"
    story_id = store.save(story_state).id
    gateway.queue("chapter", "First draft.", "Second draft with a twist.")
    gateway.queue(
        "structured",
        {"passed": False, "feedback": "no twist present"},
        {"passed": True, "feedback": "ok"},
    )

    result = invoke('next', story_id, input="n\n")
    assert result.exit_code == 0, result.output
    assert "no twist present" in result.output
    assert store.load_state(story_id).outline[0].content == "Second draft with a twist."


def test_write_all_reports_failure(invoke, gateway, store, story_id):
    from lumina_stories.errors import ErrorKind
    from lumina_stories.gateway import GatewayResult

    gateway.queue("chapter", "One.", GatewayResult.failure(ErrorKind.TRANSPORT, "quota"))
    result = invoke('write-all', story_id)
    assert result.exit_code != 0

    statuses = [c.status for c in store.load_state(story_id).outline]
    assert statuses == [ChapterStatus.COMPLETED, ChapterStatus.ERROR, ChapterStatus.PENDING]


def test_resolve_after_write_all(invoke, gateway, store, story_state):
    story_state.outline[0].acceptance_criteria = "Must include a plot twist"
    story_id = store.save(story_state).id
    gateway.queue("structured", {"passed": False, "feedback": "no twist present"})

    result = invoke('write-all', story_id)
    assert result.exit_code == 0, result.output
    assert store.load_state(story_id).outline[0].awaiting_decision is True

    gateway.queue("chapter", "Second draft with a twist.")
    gateway.queue("structured", {"passed": True, "feedback": "ok"})
    result = invoke('resolve', story_id, '1', '--retry')
    assert result.exit_code == 0, result.output

    chapter = store.load_state(story_id).outline[0]
    assert chapter.content == "Second draft with a twist."
    assert chapter.awaiting_decision is False
    assert "User Feedback:\nno twist present" in gateway.calls_for("text", "chapter")[-1].prompt

    result = invoke('resolve', story_id, '1', '--accept')
    assert result.exit_code != 0
    assert "not awaiting a validation decision" in result.output


def test_resolve_accept(invoke, gateway, store, story_state):
    story_state.outline[0].acceptance_criteria = "Must include a plot twist"
    story_id = store.save(story_state).id
    gateway.queue("structured", {"passed": False, "feedback": "no twist present"})
    invoke('write-all', story_id)

    result = invoke('resolve', story_id, '1')
    assert result.exit_code == 0, result.output
    assert "Chapter 1 accepted" in result.output
    assert store.load_state(story_id).outline[0].awaiting_decision is False


def test_prompt_command(invoke, story_id):
    result = invoke('prompt', story_id)
    assert result.exit_code == 0
    assert 'Write Chapter 1 of the Fantasy story titled "The Last Embers".' in result.output


def test_foreshadow_add_and_remove(invoke, store, story_id):
    result = invoke('foreshadow', 'add', story_id, '--chapter', '3', '--reveal', 'Oren is the witch')
    assert result.exit_code == 0, result.output
    state = store.load_state(story_id)
    assert "- MUST reveal: Oren is the witch" in state.outline[2].acceptance_criteria

    note_id = state.foreshadowing_notes[0].id
    result = invoke('foreshadow', 'remove', story_id, note_id)
    assert result.exit_code == 0
    assert store.load_state(story_id).outline[2].acceptance_criteria == ""


def test_foreshadow_remove_unknown(invoke, story_id):
    result = invoke('foreshadow', 'remove', story_id, 'note-missing')
    assert result.exit_code != 0
    assert "No foreshadowing note" in result.output


def test_undo_without_revision(invoke, story_id):
    result = invoke('undo', story_id, '1')
    assert result.exit_code != 0


def test_unknown_story(invoke):
    result = invoke('next', 'story-0-missing')
    assert result.exit_code != 0
    assert "Story not found" in result.output


def test_library_export_import_delete(invoke, store, story_id, tmp_path):
    export_dir = tmp_path / "exports"
    export_dir.mkdir()
    result = invoke('library', 'export', story_id, str(export_dir))
    assert result.exit_code == 0
    (exported,) = export_dir.glob("*.yaml")

    assert invoke('library', 'delete', story_id).exit_code == 0
    assert store.list_stories() == []

    result = invoke('library', 'import', str(exported))
    assert result.exit_code == 0
    assert "Imported 'The Last Embers'" in result.output


def test_outline_command(invoke, story_id):
    result = invoke('outline', story_id)
    assert result.exit_code == 0
    assert "Progress: 0%" in result.output
