"""
Tests for EvalDashboard module.
"""

import math
from io import StringIO

import numpy as np
import pytest
from rich.console import Console

from deteval.evaluation.analysis import ErrorAnalysis
from deteval.evaluation.records import SummaryConfig, SummaryStat
from deteval.utils.eval_dashboard import DashboardConfig, EvalDashboard, fmt


def make_console():
    return Console(file=StringIO(), width=140, force_terminal=False)


@pytest.fixture
def stats():
    return [
        SummaryStat(SummaryConfig("map", True, None, "all", 100), 0.4567),
        SummaryStat(SummaryConfig("map50", True, 0.5, "all", 100), 0.7),
        SummaryStat(SummaryConfig("map_small", True, None, "small", 100), math.nan),
    ]


@pytest.fixture
def rows():
    return [
        {"Category": "cat", "AP": 0.9, "AP50": 0.95, "AP75": 0.9, "AR": 0.92},
        {"Category": "dog", "AP": 0.5, "AP50": 0.7, "AP75": 0.4, "AR": 0.6},
        {"Category": "bird", "AP": 0.1, "AP50": 0.2, "AP75": 0.05, "AR": 0.3},
        {"Category": "fish", "AP": math.nan, "AP50": math.nan, "AP75": math.nan, "AR": math.nan},
    ]


class TestDashboardConfig:
    """Tests for DashboardConfig dataclass."""

    def test_default_values(self):
        config = DashboardConfig()
        assert config.top_n_categories == 3
        assert config.area_label == "all"


class TestFmt:
    """Tests for metric formatting."""

    def test_value(self):
        assert fmt(0.12345) == "0.1235"

    def test_missing_values(self):
        assert fmt(None) == "-"
        assert fmt(math.nan) == "-"
        assert fmt(-1) == "-"


class TestEvalDashboard:
    """Tests for table rendering."""

    def test_summary_table(self, stats):
        table = EvalDashboard(console=make_console()).summary_table(stats, (0.5, 0.95))
        assert table.row_count == 3
        assert len(table.columns) == 5

    def test_category_tables(self, rows):
        dashboard = EvalDashboard(DashboardConfig(top_n_categories=2), console=make_console())
        top, worst = dashboard.category_tables(rows)
        assert top.row_count == 2
        assert worst.row_count == 2

    def test_single_table_when_few_categories(self, rows):
        dashboard = EvalDashboard(DashboardConfig(top_n_categories=5), console=make_console())
        assert len(dashboard.category_tables(rows)) == 1

    def test_print(self, stats, rows):
        console = make_console()
        analysis = ErrorAnalysis(
            precision=np.ones((7, 3, 2, 1)),
            rec_thresholds=(0.0, 0.5, 1.0),
            cat_ids=(1, 2),
            area_labels=("all",),
        )
        EvalDashboard(console=console).print(stats, rows, analysis, iou_thresholds=(0.5, 0.95))
        output = console.file.getvalue()
        assert "EVAL SUMMARY" in output
        assert "0.4567" in output
        assert "0.50:0.95" in output
        assert "PER-CATEGORY: TOP by AP" in output
        assert "ERROR ANALYSIS" in output
        assert "1.000" in output

    def test_print_summary_only(self, stats):
        console = make_console()
        EvalDashboard(console=console).print(stats)
        output = console.file.getvalue()
        assert "EVAL SUMMARY" in output
        assert "PER-CATEGORY" not in output
