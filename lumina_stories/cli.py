import os
from contextlib import contextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .config import Config
from .errors import LuminaError
from .gateway import ProviderGateway
from .models.story_state import Character, ReadingLevel, StoryMode, StoryState
from .pipeline import StorySession
from .storage import DebouncedSaver, LibraryStore
from .utils.logger import setup_logger
from .utils.progress import ChapterProgress, create_progress

console = Console()


def _parse_character(index: int, spec: str) -> Character:
    name, _, attributes = spec.partition(":")
    if not name.strip():
        raise click.BadParameter(f"Character '{spec}' must look like 'Name: attributes'")
    return Character(id=str(index + 1), name=name.strip(), attributes=attributes.strip())


def _gateway(ctx: click.Context):
    if ctx.obj.get('gateway') is None:
        ctx.obj['gateway'] = ProviderGateway(ctx.obj['config'].provider)
    return ctx.obj['gateway']


@contextmanager
def _story_session(ctx: click.Context, story_id: str):
    """Open a stored story, auto-save while working, and save for real on exit."""
    config = ctx.obj['config']
    store = ctx.obj['store']
    logger = ctx.obj['logger']
    try:
        state = store.load_state(story_id)
    except LuminaError as e:
        raise click.ClickException(str(e))

    saver = DebouncedSaver(
        lambda s: store.save(s, story_id=story_id),
        delay=config.generation.autosave_delay_seconds,
    )
    session = StorySession(state, _gateway(ctx), config.generation, on_change=saver.schedule)
    try:
        yield session
    except (LuminaError, KeyError, ValueError) as e:
        message = e.args[0] if isinstance(e, KeyError) and e.args else str(e)
        logger.error(message)
        raise click.ClickException(message)
    finally:
        saver.cancel()
        try:
            store.save(session.state, story_id=story_id)
        except LuminaError as e:
            raise click.ClickException(str(e))


def _outline_table(state: StoryState) -> Table:
    table = Table(title=f"{state.title} ({state.genre}, {state.reading_level.value})")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Summary")
    table.add_column("Criteria")
    for chapter in state.outline:
        status = chapter.status.value
        if chapter.validation_result is not None:
            status += " (passed)" if chapter.validation_result.passed else " (failed check)"
        if chapter.awaiting_decision:
            status += " (decision needed)"
        table.add_row(
            str(chapter.id),
            chapter.title,
            status,
            chapter.summary,
            "yes" if chapter.acceptance_criteria.strip() else "",
        )
    return table


def _print_outcomes(session: StorySession) -> None:
    for i, outcome in enumerate(session.state.chapter_outcomes or [], 1):
        click.echo(f"  [{i}] {outcome.title}: {outcome.summary}")
        if outcome.description:
            click.echo(f"      {outcome.description}")


@click.group()
@click.option('--config', '-c', type=click.Path(), default='config.yaml',
              help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool):
    """Lumina Stories - write long-form fiction chapter by chapter."""
    ctx.ensure_object(dict)

    config_path = Path(config)
    base = Config.from_yaml(config_path) if config_path.exists() else Config()
    # The only place the environment is read.
    ctx.obj['config'] = Config.from_env(os.environ, base=base)

    log_level = "DEBUG" if verbose else ctx.obj['config'].log_level
    ctx.obj['logger'] = setup_logger(log_level)
    ctx.obj.setdefault('store', LibraryStore(ctx.obj['config'].storage.library_dir))

    if config_path.exists():
        ctx.obj['logger'].debug(f"Config loaded from: {config_path}")


@cli.command()
@click.option('--title', '-t', required=True, help='Story title')
@click.option('--genre', '-g', default='Fantasy', help='Genre')
@click.option('--chapters', '-n', type=int, default=5, help='Number of chapters')
@click.option('--reading-level', type=click.Choice([r.value for r in ReadingLevel]),
              default=ReadingLevel.ADULT.value, help='Target reading level')
@click.option('--idea', '-i', default='', help='Core story idea')
@click.option('--character', 'characters', multiple=True, help="Character as 'Name: attributes'")
@click.option('--continuous', is_flag=True, help='Open-ended story with suggested branches')
@click.option('--system-prompt', default=None, help='Custom system prompt for prose')
@click.pass_context
def new(ctx: click.Context, title: str, genre: str, chapters: int, reading_level: str,
        idea: str, characters: tuple, continuous: bool, system_prompt: str):
    """Create a story and generate its outline."""
    logger = ctx.obj['logger']
    store = ctx.obj['store']
    cast = [_parse_character(i, spec) for i, spec in enumerate(characters)]

    session = StorySession(StoryState(), _gateway(ctx), ctx.obj['config'].generation)
    logger.info(f"Generating a {chapters}-chapter outline for '{title}'...")
    try:
        session.start_story(
            title, genre, chapters, cast, idea,
            reading_level=ReadingLevel(reading_level),
            mode=StoryMode.CONTINUOUS if continuous else StoryMode.PLANNED,
            system_prompt=system_prompt,
        )
        saved = store.save(session.state)
    except LuminaError as e:
        logger.error(f"Outline generation failed: {e}")
        raise click.ClickException(str(e))

    console.print(_outline_table(session.state))
    click.echo(f"Saved as {saved.id}")


@cli.command(name='outline')
@click.argument('story_id')
@click.option('--full', is_flag=True, help='Print chapter prose too')
@click.pass_context
def show_outline(ctx: click.Context, story_id: str, full: bool):
    """Show a story's outline and progress."""
    try:
        story = ctx.obj['store'].get(story_id)
    except LuminaError as e:
        raise click.ClickException(str(e))
    console.print(_outline_table(story.state))
    click.echo(f"Progress: {story.progress}%")
    if full:
        for chapter in story.state.outline:
            if chapter.content:
                click.echo(f"\nChapter {chapter.id}: {chapter.title}\n")
                click.echo(chapter.content)


@cli.command()
@click.argument('story_id')
@click.option('--chapter', type=int, help='Chapter id (defaults to the next pending one)')
@click.pass_context
def prompt(ctx: click.Context, story_id: str, chapter: int):
    """Print the generation prompt for a chapter."""
    with _story_session(ctx, story_id) as session:
        index = session.state.index_of(chapter) if chapter else None
        text = session.preview_prompt(index)
        if text is None:
            raise click.ClickException("No pending chapters")
        click.echo(text)


@cli.command(name='next')
@click.argument('story_id')
@click.option('--prompt-file', type=click.Path(exists=True), help='Use an edited prompt')
@click.option('--no-validate', is_flag=True, help='Skip the acceptance-criteria check')
@click.pass_context
def next_chapter(ctx: click.Context, story_id: str, prompt_file: str, no_validate: bool):
    """Write the next pending chapter."""
    logger = ctx.obj['logger']
    custom = Path(prompt_file).read_text(encoding="utf-8") if prompt_file else None

    with _story_session(ctx, story_id) as session:
        session.enter_manual_mode()
        result = session.generate_next_chapter(custom_prompt=custom, validate=not no_validate)
        chapter = result.chapter
        logger.success(f"Chapter {chapter.id} written ({len(chapter.content.split())} words)")

        while result is not None and result.needs_decision:
            click.echo(f"Chapter {chapter.id} did not meet its acceptance criteria:")
            click.echo(result.validation.feedback)
            accept = click.confirm("Accept it anyway?", default=True)
            result = session.resolve_validation(chapter.id, accept=accept)

        if session.state.chapter_outcomes:
            click.echo("What happens next?")
            _print_outcomes(session)


@cli.command(name='write-all')
@click.argument('story_id')
@click.option('--no-validate', is_flag=True, help='Skip the acceptance-criteria check')
@click.pass_context
def write_all(ctx: click.Context, story_id: str, no_validate: bool):
    """Write every remaining chapter in order."""
    logger = ctx.obj['logger']
    with _story_session(ctx, story_id) as session:
        with create_progress() as progress:
            report = session.write_all(
                ChapterProgress(progress, len(session.state.outline)),
                validate=not no_validate,
            )

    if report.awaiting_decision:
        ids = ", ".join(str(i) for i in report.awaiting_decision)
        logger.warning(f"Chapters failing their acceptance criteria: {ids}")
        logger.info("Accept or retry each one with: lumina resolve STORY_ID CHAPTER_ID --accept|--retry")
    if not report.ok:
        raise click.ClickException(report.error)
    logger.success(f"Wrote {len(report.completed)} chapters")


@cli.command()
@click.argument('story_id')
@click.argument('chapter_id', type=int)
@click.option('--accept/--retry', default=True,
              help="Keep the chapter as written, or rewrite it from the check's feedback")
@click.pass_context
def resolve(ctx: click.Context, story_id: str, chapter_id: int, accept: bool):
    """Settle a chapter that failed its acceptance criteria."""
    with _story_session(ctx, story_id) as session:
        result = session.resolve_validation(chapter_id, accept=accept)
        if result is None:
            click.echo(f"Chapter {chapter_id} accepted")
        elif result.needs_decision:
            click.echo(f"Chapter {chapter_id} still misses its acceptance criteria:")
            click.echo(result.validation.feedback)
        else:
            ctx.obj['logger'].success(f"Chapter {chapter_id} rewritten")


@cli.command()
@click.argument('story_id')
@click.argument('chapter_id', type=int)
@click.option('--feedback', '-f', required=True, help='What to change')
@click.pass_context
def regenerate(ctx: click.Context, story_id: str, chapter_id: int, feedback: str):
    """Rewrite a completed chapter using feedback."""
    with _story_session(ctx, story_id) as session:
        session.regenerate_chapter(chapter_id, feedback)
        ctx.obj['logger'].success(f"Chapter {chapter_id} rewritten")


@cli.command()
@click.argument('story_id')
@click.argument('chapter_id', type=int)
@click.pass_context
def undo(ctx: click.Context, story_id: str, chapter_id: int):
    """Restore the previous version of a chapter."""
    with _story_session(ctx, story_id) as session:
        if not session.undo_revision(chapter_id):
            raise click.ClickException(f"Chapter {chapter_id} has no earlier revision")
        click.echo(f"Chapter {chapter_id} restored")


@cli.command()
@click.argument('story_id')
@click.option('--choose', type=int, help='Pick a suggested outcome (1-based)')
@click.option('--generate', is_flag=True, help='Write the chosen chapter right away')
@click.pass_context
def outcomes(ctx: click.Context, story_id: str, choose: int, generate: bool):
    """Suggest or choose what happens next in a continuous story."""
    with _story_session(ctx, story_id) as session:
        if choose:
            if generate:
                chapter = session.generate_outcome(choose - 1).chapter
            else:
                chapter = session.choose_outcome(choose - 1)
            click.echo(f"Chapter {chapter.id} added: {chapter.title}")
            return
        if not session.suggest_outcomes():
            raise click.ClickException("No suggestions available")
        _print_outcomes(session)


@cli.command()
@click.argument('story_id')
@click.argument('chapter_id', type=int)
@click.option('--apply', 'apply_index', type=int, help='Apply a suggestion (1-based)')
@click.pass_context
def directions(ctx: click.Context, story_id: str, chapter_id: int, apply_index: int):
    """Suggest alternative takes on a pending chapter."""
    with _story_session(ctx, story_id) as session:
        suggestions = session.suggest_directions(chapter_id)
        if not suggestions:
            raise click.ClickException("No suggestions available")
        for i, s in enumerate(suggestions, 1):
            click.echo(f"  [{i}] {s['title']}: {s['summary']}")
        if apply_index:
            if not 1 <= apply_index <= len(suggestions):
                raise click.ClickException(f"No suggestion #{apply_index}")
            session.apply_direction(chapter_id, suggestions[apply_index - 1])
            click.echo(f"Chapter {chapter_id} updated")


@cli.group()
def foreshadow():
    """Manage foreshadowing notes."""


@foreshadow.command(name='add')
@click.argument('story_id')
@click.option('--chapter', type=int, required=True, help='Chapter where the reveal happens')
@click.option('--reveal', required=True, help='What is revealed')
@click.option('--hint', default='', help='How to hint at it earlier')
@click.pass_context
def foreshadow_add(ctx: click.Context, story_id: str, chapter: int, reveal: str, hint: str):
    with _story_session(ctx, story_id) as session:
        note = session.add_foreshadowing(chapter, reveal, hint)
        click.echo(f"Added {note.id}")


@foreshadow.command(name='list')
@click.argument('story_id')
@click.pass_context
def foreshadow_list(ctx: click.Context, story_id: str):
    try:
        state = ctx.obj['store'].load_state(story_id)
    except LuminaError as e:
        raise click.ClickException(str(e))
    table = Table(title="Foreshadowing")
    table.add_column("Id")
    table.add_column("Chapter", justify="right")
    table.add_column("Reveal")
    table.add_column("Hint")
    for note in sorted(state.foreshadowing_notes, key=lambda n: n.created_at):
        table.add_row(note.id, str(note.target_chapter_id), note.reveal_description, note.foreshadowing_hint)
    console.print(table)


@foreshadow.command(name='update')
@click.argument('story_id')
@click.argument('note_id')
@click.option('--chapter', type=int, help='New target chapter')
@click.option('--reveal', help='New reveal description')
@click.option('--hint', help='New hint')
@click.pass_context
def foreshadow_update(ctx: click.Context, story_id: str, note_id: str, chapter: int, reveal: str, hint: str):
    fields = {
        "target_chapter_id": chapter,
        "reveal_description": reveal,
        "foreshadowing_hint": hint,
    }
    fields = {k: v for k, v in fields.items() if v is not None}
    with _story_session(ctx, story_id) as session:
        try:
            session.update_foreshadowing(note_id, **fields)
        except KeyError as e:
            raise click.ClickException(str(e))
        click.echo(f"Updated {note_id}")


@foreshadow.command(name='remove')
@click.argument('story_id')
@click.argument('note_id')
@click.pass_context
def foreshadow_remove(ctx: click.Context, story_id: str, note_id: str):
    with _story_session(ctx, story_id) as session:
        try:
            session.delete_foreshadowing(note_id)
        except KeyError as e:
            raise click.ClickException(str(e))
        click.echo(f"Removed {note_id}")


@cli.group()
def library():
    """Manage saved stories."""


@library.command(name='list')
@click.pass_context
def library_list(ctx: click.Context):
    stories = ctx.obj['store'].list_stories()
    if not stories:
        click.echo("No saved stories")
        return
    for story in stories:
        click.echo(f"{story.id}  {story.state.title}  ({story.progress}%)")


@library.command(name='export')
@click.argument('story_id')
@click.argument('destination', type=click.Path())
@click.pass_context
def library_export(ctx: click.Context, story_id: str, destination: str):
    try:
        path = ctx.obj['store'].export(story_id, Path(destination))
    except LuminaError as e:
        raise click.ClickException(str(e))
    click.echo(f"Exported to {path}")


@library.command(name='import')
@click.argument('source', type=click.Path(exists=True))
@click.pass_context
def library_import(ctx: click.Context, source: str):
    try:
        story = ctx.obj['store'].import_file(Path(source))
    except LuminaError as e:
        raise click.ClickException(f"Failed to import story: {e}")
    click.echo(f"Imported '{story.state.title}' as {story.id}")


@library.command(name='delete')
@click.argument('story_id')
@click.pass_context
def library_delete(ctx: click.Context, story_id: str):
    try:
        ctx.obj['store'].delete(story_id)
    except LuminaError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deleted {story_id}")


@cli.command()
@click.option('--host', default='127.0.0.1', help='Bind address')
@click.option('--port', type=int, default=3001, help='Port')
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Serve the story library over HTTP."""
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(ctx.obj['store']), host=host, port=port)


def main():
    cli()

if __name__ == '__main__':
    main()
