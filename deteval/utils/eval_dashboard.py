"""
Eval Dashboard - console tables for evaluation results.

Renders summary metrics, per-category AP (top / worst) and the error
analysis breakdown with Rich tables.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from deteval.evaluation.analysis import ErrorAnalysis
from deteval.evaluation.records import SummaryStat


@dataclass
class DashboardConfig:
    """Configuration for the eval dashboard."""

    top_n_categories: int = 3
    area_label: str = "all"


def fmt(value: Optional[float]) -> str:
    """Format a metric; missing values (None, NaN, -1 sentinel) render as '-'."""
    if value is None or math.isnan(value) or value < 0:
        return "-"
    return f"{value:.4f}"


class EvalDashboard:
    """Dashboard for evaluation results using Rich tables."""

    def __init__(self, config: Optional[DashboardConfig] = None, console: Optional[Console] = None):
        """
        Initialize dashboard.

        Args:
            config: Dashboard configuration
            console: Console to print to (default: a new stdout console)
        """
        self.config = config or DashboardConfig()
        self.console = console or Console()

    def summary_table(self, stats: Sequence[SummaryStat], iou_thresholds: Sequence[float] = ()) -> Table:
        """Table with one row per summary metric."""
        table = Table(title="EVAL SUMMARY", title_style="bold cyan", box=box.ROUNDED, padding=(0, 1))

        table.add_column("Metric", style="white")
        table.add_column("IoU", justify="right", style="dim")
        table.add_column("Area", justify="right", style="dim")
        table.add_column("maxDets", justify="right", style="dim")
        table.add_column("Value", justify="right", style="cyan")

        for stat in stats:
            cfg = stat.config
            if cfg.iou_threshold is not None:
                iou = f"{cfg.iou_threshold:.2f}"
            elif iou_thresholds:
                iou = f"{min(iou_thresholds):.2f}:{max(iou_thresholds):.2f}"
            else:
                iou = "all"
            table.add_row(
                f"{'AP' if cfg.ap else 'AR'} ({cfg.key})",
                iou,
                cfg.area_label,
                str(cfg.max_dets),
                fmt(stat.value),
            )
        return table

    def category_tables(self, rows: List[Dict[str, Any]]) -> List[Table]:
        """TOP and WORST categories by AP."""
        n = self.config.top_n_categories
        ranked = [r for r in rows if not math.isnan(r.get("AP", math.nan))]
        ranked.sort(key=lambda r: r["AP"], reverse=True)

        tables = []
        sections = [("PER-CATEGORY: TOP by AP", "bold green", ranked[:n])]
        if len(ranked) > n:
            sections.append(("PER-CATEGORY: WORST by AP", "bold red", ranked[-n:]))

        for title, style, selected in sections:
            table = Table(title=title, title_style=style, box=box.ROUNDED, padding=(0, 1))
            table.add_column("Category", style="white")
            table.add_column("AP", justify="right", style="cyan")
            table.add_column("AP50", justify="right", style="cyan")
            table.add_column("AP75", justify="right", style="cyan")
            table.add_column("AR", justify="right", style="dim")
            for row in selected:
                table.add_row(str(row["Category"]), fmt(row["AP"]), fmt(row["AP50"]), fmt(row["AP75"]), fmt(row["AR"]))
            tables.append(table)
        return tables

    def analysis_table(self, analysis: ErrorAnalysis) -> Table:
        """AP of every analysis curve per size bucket, averaged over categories."""
        table = Table(title="ERROR ANALYSIS", title_style="bold magenta", box=box.ROUNDED, padding=(0, 1))
        table.add_column("Setting", style="white")
        for label in analysis.area_labels:
            table.add_column(label, justify="right", style="cyan")

        ap = analysis.ap()
        for i, label in enumerate(analysis.labels):
            table.add_row(label, *(f"{v:.3f}" for v in ap[i]))
        return table

    def print(
        self,
        stats: Sequence[SummaryStat],
        per_category: Optional[List[Dict[str, Any]]] = None,
        analysis: Optional[ErrorAnalysis] = None,
        iou_thresholds: Sequence[float] = (),
    ) -> None:
        """Print the dashboard to the console."""
        self.console.print()
        self.console.print(self.summary_table(stats, iou_thresholds))

        if per_category:
            for table in self.category_tables(per_category):
                self.console.print()
                self.console.print(table)

        if analysis is not None:
            self.console.print()
            self.console.print(self.analysis_table(analysis))

        self.console.print()
