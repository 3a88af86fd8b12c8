from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn, TimeElapsedColumn
from typing import Optional


def create_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
    )


class ChapterProgress:
    """Adapts pipeline progress callbacks onto a rich progress bar."""

    def __init__(self, progress: Progress, total: int):
        self.progress = progress
        self.task_id = progress.add_task("Writing chapters...", total=total)

    def __call__(self, message: str, index: int, total: int, done: Optional[bool] = None) -> None:
        self.progress.update(self.task_id, description=message, total=total)
        if done:
            self.progress.update(self.task_id, completed=index + 1)
