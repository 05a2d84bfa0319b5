"""
Unit tests for summary metrics.

Tests cover:
- standard summary settings per iou type
- sentinel-aware averaging and NaN for empty slices
- per-category rows and their CSV / JSON export
"""

import json
import logging
import math

import numpy as np
import pytest

from deteval.config import EvalParams
from deteval.evaluation.records import AccumulatedEval, SummaryConfig, SummaryStat
from deteval.evaluation.summarizer import (
    default_summary_configs,
    mean_without_sentinels,
    per_category_summary,
    select_slice,
    stats_dict,
    stats_vector,
    summarize,
    to_csv,
    to_json,
)


def make_accumulated(precision_value=0.5, recall_value=0.6, num_cats=2, iou_type="bbox"):
    """AccumulatedEval filled with constant values for every setting."""
    params = EvalParams.for_iou_type(iou_type, cat_ids=tuple(range(1, num_cats + 1)), rec_thresholds=(0.0, 0.5, 1.0))
    t, r, k, a, m = params.counts
    return AccumulatedEval(
        params=params,
        precision=np.full((t, r, k, a, m), precision_value, dtype=np.float64),
        recall=np.full((t, k, a, m), recall_value, dtype=np.float64),
    )


# =============================================================================
# Default settings
# =============================================================================


class TestDefaultSummaryConfigs:
    """Tests for the standard COCO summary settings."""

    def test_bbox_keys(self):
        keys = [c.key for c in default_summary_configs("bbox", (1, 10, 100))]
        assert keys == [
            "map", "map50", "map75", "map_small", "map_medium", "map_large",
            "ar_1", "ar_10", "ar_100", "ar_small", "ar_medium", "ar_large",
        ]

    def test_bbox_settings(self):
        configs = default_summary_configs("segm", (1, 10, 100))
        assert configs[0] == SummaryConfig("map", True, None, "all", 100)
        assert configs[1].iou_threshold == 0.5
        assert configs[6] == SummaryConfig("ar_1", False, None, "all", 1)
        assert configs[9].area_label == "small"

    def test_custom_caps(self):
        keys = [c.key for c in default_summary_configs("bbox", (5, 50, 500))]
        assert keys[6:9] == ["ar_5", "ar_50", "ar_500"]

    def test_keypoint_keys(self):
        configs = default_summary_configs("keypoints", (20,))
        assert [c.key for c in configs] == [
            "map", "map50", "map75", "map_medium", "map_large",
            "ar", "ar50", "ar75", "ar_medium", "ar_large",
        ]
        assert all(c.max_dets == 20 for c in configs)


# =============================================================================
# summarize Tests
# =============================================================================


class TestSummarize:
    """Tests for summary values."""

    def test_constant_tensors(self):
        stats = summarize(make_accumulated(0.5, 0.6), verbose=False)
        assert len(stats) == 12
        values = stats_dict(stats)
        assert values["map"] == pytest.approx(0.5)
        assert values["map50"] == pytest.approx(0.5)
        assert values["ar_100"] == pytest.approx(0.6)
        assert values["ar_large"] == pytest.approx(0.6)

    def test_keypoints(self):
        stats = summarize(make_accumulated(iou_type="keypoints"), verbose=False)
        assert len(stats) == 10

    def test_sentinels_are_excluded(self):
        accumulated = make_accumulated(1.0, 1.0)
        accumulated.precision[:, :, 1] = -1
        accumulated.recall[:, 1] = -1
        values = stats_dict(summarize(accumulated, verbose=False))
        assert values["map"] == pytest.approx(1.0)
        assert values["ar_100"] == pytest.approx(1.0)

    def test_empty_slice_is_nan(self, caplog):
        """No ground truth anywhere yields NaN, never 0 or -1."""
        accumulated = make_accumulated(-1, -1)
        with caplog.at_level(logging.WARNING, logger="deteval"):
            stats = summarize(accumulated, verbose=False)
        assert all(math.isnan(s.value) for s in stats)
        assert "no ground truth" in caplog.text

    def test_zero_is_not_nan(self):
        values = stats_dict(summarize(make_accumulated(0.0, 0.0), verbose=False))
        assert values["map"] == 0.0

    def test_unconfigured_setting_is_nan(self, caplog):
        config = SummaryConfig("map30", True, 0.3, "all", 100)
        with caplog.at_level(logging.WARNING, logger="deteval"):
            stats = summarize(make_accumulated(), [config], verbose=False)
        assert math.isnan(stats[0].value)
        assert "not evaluated" in caplog.text

    def test_missing_area_label(self):
        accumulated = make_accumulated(iou_type="keypoints")
        config = SummaryConfig("map_small", True, None, "small", 20)
        assert select_slice(accumulated, config) is None

    def test_verbose_logs_summary_lines(self, caplog):
        with caplog.at_level(logging.INFO, logger="deteval"):
            summarize(make_accumulated(), verbose=True)
        assert "Average Precision  (AP) @[ IoU=0.50:0.95 | area=   all | maxDets=100 ] = 0.500" in caplog.text

    def test_stats_vector(self):
        stats = summarize(make_accumulated(0.5, 0.6), verbose=False)
        vector = stats_vector(stats)
        assert vector.shape == (12,)
        np.testing.assert_allclose(vector[:6], 0.5)


class TestHelpers:
    """Tests for averaging and rendering helpers."""

    def test_mean_without_sentinels(self):
        assert mean_without_sentinels(np.array([-1, 0.2, 0.4])) == pytest.approx(0.3)
        assert math.isnan(mean_without_sentinels(np.array([-1.0, -1.0])))
        assert math.isnan(mean_without_sentinels(None))

    def test_describe_single_threshold(self):
        stat = SummaryStat(SummaryConfig("ar_small", False, 0.5, "small", 10), 0.25)
        assert stat.key == "ar_small"
        assert stat.describe() == " Average Recall     (AR) @[ IoU=0.50      | area= small | maxDets= 10 ] = 0.250"


# =============================================================================
# Per-category Tests
# =============================================================================


class TestPerCategory:
    """Tests for per-category rows."""

    def test_rows(self):
        accumulated = make_accumulated(0.5, 0.6)
        accumulated.precision[:, :, 1] = -1
        accumulated.recall[:, 1] = -1
        rows = per_category_summary(accumulated, {1: "cat", 2: "dog"})
        assert [r["Category"] for r in rows] == ["cat", "dog"]
        assert rows[0]["AP"] == 0.5
        assert rows[0]["AP50"] == 0.5
        assert rows[0]["AR"] == 0.6
        assert math.isnan(rows[1]["AP"])

    def test_names_default_to_ids(self):
        rows = per_category_summary(make_accumulated())
        assert rows[0]["Category"] == "1"

    def test_unknown_area_label(self):
        assert per_category_summary(make_accumulated(), area_label="tiny") == []

    def test_csv(self):
        csv = to_csv(per_category_summary(make_accumulated(0.5, 0.6), {1: "cat", 2: "dog"}))
        lines = csv.split("\n")
        assert lines[0] == "Category,AP,AP50,AP75,AR"
        assert lines[1] == "cat,0.5,0.5,0.5,0.6"

    def test_csv_empty(self):
        assert to_csv([]) == "Category,AP,AP50,AP75,AR\n"

    def test_json(self):
        rows = per_category_summary(make_accumulated(0.5, 0.6), {1: "cat", 2: "dog"})
        data = json.loads(to_json(rows))
        assert data[1]["Category"] == "dog"
        assert data[1]["AR"] == 0.6
