"""
Tests for error types, result containers and package exports.
"""

import numpy as np
import pytest

from deteval.errors import (
    ConfigurationError,
    EvaluationError,
    PreconditionError,
    SequencingError,
    format_failed_units,
)
from deteval.evaluation.records import MatchRecord


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_hierarchy(self):
        for cls in (ConfigurationError, PreconditionError, SequencingError):
            assert issubclass(cls, EvaluationError)

    def test_precondition_unit_in_message(self):
        error = PreconditionError("bad box", unit=(3, 7))
        assert error.unit == (3, 7)
        assert str(error) == "bad box (image_id=3, category_id=7)"

    def test_precondition_without_unit(self):
        assert str(PreconditionError("bad box")) == "bad box"

    def test_format_failed_units(self):
        failures = [PreconditionError("x", unit=(i, 1)) for i in range(7)]
        text = format_failed_units(failures, limit=2)
        assert text.startswith("x (image_id=0, category_id=1), x (image_id=1, category_id=1)")
        assert text.endswith("(5 more)")


class TestMatchRecord:
    """Tests for MatchRecord shape checks."""

    def make(self, **changes):
        values = dict(
            image_id=1,
            category_id=1,
            area_range=(0.0, 1e10),
            max_det=100,
            dt_ids=np.array([1, 2]),
            gt_ids=np.array([5]),
            dt_matches=np.array([[5, 0]]),
            gt_matches=np.array([[1]]),
            dt_scores=np.array([0.9, 0.1]),
            dt_ignore=np.zeros((1, 2), dtype=bool),
            gt_ignore=np.zeros(1, dtype=bool),
        )
        values.update(changes)
        return MatchRecord(**values)

    def test_valid(self):
        record = self.make()
        assert record.num_detections == 2
        assert record.num_ground_truths == 1
        assert record.to_dict()["dtMatches"] == [[5, 0]]

    def test_dt_ignore_shape(self):
        with pytest.raises(ValueError, match="dt_ignore"):
            self.make(dt_ignore=np.zeros((2, 2), dtype=bool))

    def test_gt_matches_shape(self):
        with pytest.raises(ValueError, match="gt_matches"):
            self.make(gt_matches=np.array([[1, 2]]))

    def test_score_count(self):
        with pytest.raises(ValueError):
            self.make(dt_scores=np.array([0.9]))


class TestPackageExports:
    """Tests for lazily exported names."""

    def test_lazy_attributes(self):
        import deteval

        assert deteval.DetectionEvaluator.__name__ == "DetectionEvaluator"
        assert deteval.EvalParams.__name__ == "EvalParams"
        assert "AnnotationIndex" in dir(deteval)

    def test_unknown_attribute(self):
        import deteval

        with pytest.raises(AttributeError):
            deteval.does_not_exist
