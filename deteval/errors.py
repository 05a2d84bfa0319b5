"""
Exception hierarchy for the evaluation engine.

Three failure classes exist:
- ConfigurationError: bad parameters, raised before any matching work
- PreconditionError: malformed annotations for one (image, category) unit
- SequencingError: a stage was called before the stage it depends on

Degenerate data (no ground truth, no detections) is never an error; it is
represented with -1 sentinels in the accumulated tensors.
"""

from typing import Any, Iterable, Optional, Tuple


class EvaluationError(Exception):
    """Base class for all evaluation errors."""


class ConfigurationError(EvaluationError):
    """Invalid evaluation parameters (unknown iou type, malformed lists)."""


class PreconditionError(EvaluationError):
    """
    Annotations of an evaluation unit violate the matcher's preconditions.

    Args:
        message: Human readable description
        unit: Optional (image_id, category_id) the failure belongs to
    """

    def __init__(self, message: str, unit: Optional[Tuple[Any, Any]] = None):
        super().__init__(message)
        self.unit = unit

    def __str__(self) -> str:
        message = super().__str__()
        if self.unit is None:
            return message
        return f"{message} (image_id={self.unit[0]}, category_id={self.unit[1]})"


class SequencingError(EvaluationError):
    """A stage was invoked before its prerequisite stage."""


def format_failed_units(failures: Iterable[PreconditionError], limit: int = 5) -> str:
    """Render a short, bounded list of failed units for error messages."""
    failures = list(failures)
    shown = ", ".join(str(f) for f in failures[:limit])
    if len(failures) > limit:
        shown += f", ... ({len(failures) - limit} more)"
    return shown
