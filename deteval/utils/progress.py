"""
Progress indicators for the evaluation stages.

DetectionEvaluator shows a progress bar over its (image, category) units
while matching and a spinner while accumulating; analyze() shows a bar over
categories. Both indicators draw on the console the package logger writes
to, so log lines and progress output do not interleave. Passing
``enabled=False`` (what ``verbose=False`` maps to) renders nothing, which
keeps library use and tests quiet.
"""

import contextlib

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

# Shared by the RichHandler in deteval.utils.logger
console = Console()


@contextlib.contextmanager
def spinner(message: str = "Processing...", enabled: bool = True):
    """
    Show a transient spinner for a stage without a known unit count.

    Used around accumulation, whose slices may run on a thread pool.

    Args:
        message: Text to display next to spinner
        enabled: If False, nothing is rendered and None is yielded

    Example:
        with spinner("Accumulating evaluation results..."):
            evaluator.accumulate()
    """
    if not enabled:
        yield None
        return

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,  # Remove when done
    )

    with progress:
        progress.add_task(description=message, total=None)
        yield progress


@contextlib.contextmanager
def progress_bar(
    total: int,
    description: str = "Processing...",
    show_speed: bool = True,
    enabled: bool = True,
):
    """
    Show a transient progress bar over a known number of units.

    The yielded ``update`` is called from the thread that collects results,
    so it also advances correctly when units finish out of order on a pool.

    Args:
        total: Number of units (evaluation units, categories)
        description: Text to display
        show_speed: Whether to show the remaining time estimate
        enabled: If False, the yielded update function is a no-op

    Example:
        with progress_bar(len(units), "Matching detections") as update:
            for unit in units:
                records.extend(evaluate_unit(unit))
                update(1)
    """
    if not enabled:
        yield lambda advance=1: None
        return

    columns = [
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
    ]

    if show_speed:
        columns.append(TimeRemainingColumn())

    progress = Progress(
        *columns,
        console=console,
        transient=True,
    )

    with progress:
        task_id = progress.add_task(description=description, total=total)

        def update(advance: int = 1):
            progress.update(task_id, advance=advance)

        yield update
