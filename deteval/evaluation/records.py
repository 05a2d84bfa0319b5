"""
Result containers passed between evaluation stages.

MatchRecord  - per (image, category, size range) matching result
AccumulatedEval - precision/recall tensors over all evaluation settings
SummaryStat  - one named scalar of the summary
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from deteval.config import EvalParams


@dataclass
class MatchRecord:
    """
    Greedy matching result for one image, category and size range.

    T is the number of similarity thresholds, D the number of (score sorted,
    cap truncated) detections and G the number of ground truths. Match grids
    hold the id of the matched annotation or 0 when unmatched.
    """

    image_id: int
    category_id: int
    area_range: Tuple[float, float]
    max_det: int
    dt_ids: np.ndarray       # (D,)
    gt_ids: np.ndarray       # (G,)
    dt_matches: np.ndarray   # (T, D)
    gt_matches: np.ndarray   # (T, G)
    dt_scores: np.ndarray    # (D,)
    dt_ignore: np.ndarray    # (T, D) bool
    gt_ignore: np.ndarray    # (G,) bool

    def __post_init__(self):
        num_thresholds, num_dt = self.dt_matches.shape
        if self.dt_ignore.shape != (num_thresholds, num_dt):
            raise ValueError(f"dt_ignore shape {self.dt_ignore.shape} != dt_matches shape {self.dt_matches.shape}")
        if self.gt_matches.shape != (num_thresholds, len(self.gt_ids)):
            raise ValueError(f"gt_matches shape {self.gt_matches.shape} does not match {len(self.gt_ids)} ground truths")
        if len(self.dt_ids) != num_dt or len(self.dt_scores) != num_dt:
            raise ValueError("dt_ids and dt_scores must have one entry per detection")
        if len(self.gt_ignore) != len(self.gt_ids):
            raise ValueError("gt_ignore must have one entry per ground truth")

    @property
    def num_detections(self) -> int:
        return len(self.dt_ids)

    @property
    def num_ground_truths(self) -> int:
        return len(self.gt_ids)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-python view, e.g. for JSON dumps."""
        return {
            "image_id": self.image_id,
            "category_id": self.category_id,
            "aRng": list(self.area_range),
            "maxDet": self.max_det,
            "dtIds": self.dt_ids.tolist(),
            "gtIds": self.gt_ids.tolist(),
            "dtMatches": self.dt_matches.tolist(),
            "gtMatches": self.gt_matches.tolist(),
            "dtScores": self.dt_scores.tolist(),
            "dtIgnore": self.dt_ignore.tolist(),
            "gtIgnore": self.gt_ignore.tolist(),
        }


@dataclass
class AccumulatedEval:
    """
    Precision and max recall for every evaluation setting.

    precision[t, r, k, a, m] and recall[t, k, a, m] are -1 where the slice
    has no non-ignored ground truth.
    """

    params: EvalParams
    precision: np.ndarray    # (T, R, K, A, M)
    recall: np.ndarray       # (T, K, A, M)
    date: str = ""

    @property
    def counts(self) -> Tuple[int, int, int, int, int]:
        return tuple(self.precision.shape)  # type: ignore[return-value]


@dataclass(frozen=True)
class SummaryConfig:
    """
    Selects one slice of the accumulated tensors.

    Attributes:
        key: Short metric name (e.g. "map50", "ar_100")
        ap: True for average precision, False for average recall
        iou_threshold: Fixed threshold, or None to average over all
        area_label: Size bucket label ("all", "small", ...)
        max_dets: Detection cap
    """

    key: str
    ap: bool
    iou_threshold: Optional[float]
    area_label: str
    max_dets: int


@dataclass(frozen=True)
class SummaryStat:
    """One summary metric value together with the slice it was computed on."""

    config: SummaryConfig
    value: float

    @property
    def key(self) -> str:
        return self.config.key

    def describe(self, iou_thresholds=None) -> str:
        """Render the classic one-line COCO summary text."""
        cfg = self.config
        title = "Average Precision" if cfg.ap else "Average Recall"
        kind = "(AP)" if cfg.ap else "(AR)"
        if cfg.iou_threshold is not None:
            iou = f"{cfg.iou_threshold:0.2f}"
        elif iou_thresholds:
            iou = f"{min(iou_thresholds):0.2f}:{max(iou_thresholds):0.2f}"
        else:
            iou = "all"
        return (
            f" {title:<18} {kind} @[ IoU={iou:<9} | area={cfg.area_label:>6s} | "
            f"maxDets={cfg.max_dets:>3d} ] = {self.value:0.3f}"
        )
