"""
Summary metrics over accumulated precision/recall tensors.

Each summary value is the mean of one tensor slice after dropping the -1
"no ground truth" sentinels. An empty slice (or a slice whose threshold,
size bucket or cap is not part of the parameters) yields NaN, so "no data"
is never confused with "zero precision".
"""

import json
import math
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from deteval.config import area_label_index, threshold_index
from deteval.evaluation.records import AccumulatedEval, SummaryConfig, SummaryStat
from deteval.utils.logger import logger


def default_summary_configs(iou_type: str, max_detections: Sequence[int] = ()) -> List[SummaryConfig]:
    """
    Standard COCO summary settings.

    bbox / segm: 12 metrics
        AP, AP50, AP75, AP small/medium/large, AR@1, AR@10, AR@100,
        AR small/medium/large
    keypoints: 10 metrics
        AP, AP50, AP75, AP medium/large, AR, AR50, AR75, AR medium/large

    Args:
        iou_type: "bbox", "segm" or "keypoints"
        max_detections: Configured caps; the largest one is used where the
            standard setting uses 100 (20 for keypoints)
    """
    if iou_type == "keypoints":
        k = max(max_detections) if max_detections else 20
        return [
            SummaryConfig("map", True, None, "all", k),
            SummaryConfig("map50", True, 0.5, "all", k),
            SummaryConfig("map75", True, 0.75, "all", k),
            SummaryConfig("map_medium", True, None, "medium", k),
            SummaryConfig("map_large", True, None, "large", k),
            SummaryConfig("ar", False, None, "all", k),
            SummaryConfig("ar50", False, 0.5, "all", k),
            SummaryConfig("ar75", False, 0.75, "all", k),
            SummaryConfig("ar_medium", False, None, "medium", k),
            SummaryConfig("ar_large", False, None, "large", k),
        ]

    caps = sorted(max_detections) if max_detections else [1, 10, 100]
    k = caps[-1]
    small = caps[0]
    mid = caps[-2] if len(caps) > 1 else caps[0]
    return [
        SummaryConfig("map", True, None, "all", k),
        SummaryConfig("map50", True, 0.5, "all", k),
        SummaryConfig("map75", True, 0.75, "all", k),
        SummaryConfig("map_small", True, None, "small", k),
        SummaryConfig("map_medium", True, None, "medium", k),
        SummaryConfig("map_large", True, None, "large", k),
        SummaryConfig(f"ar_{small}", False, None, "all", small),
        SummaryConfig(f"ar_{mid}", False, None, "all", mid),
        SummaryConfig(f"ar_{k}", False, None, "all", k),
        SummaryConfig("ar_small", False, None, "small", k),
        SummaryConfig("ar_medium", False, None, "medium", k),
        SummaryConfig("ar_large", False, None, "large", k),
    ]


def select_slice(accumulated: AccumulatedEval, config: SummaryConfig) -> Optional[np.ndarray]:
    """
    Tensor slice selected by a summary setting.

    Returns:
        The slice (all categories, and all recall points for AP), or None
        when the threshold, size bucket or cap is not configured.
    """
    params = accumulated.params
    a = area_label_index(params, config.area_label)
    m = params.max_detections.index(config.max_dets) if config.max_dets in params.max_detections else None
    t = slice(None)
    if config.iou_threshold is not None:
        t = threshold_index(params.iou_thresholds, config.iou_threshold)
    if a is None or m is None or t is None:
        return None

    if config.ap:
        # (T, R, K, A, M) -> (T', R, K)
        return accumulated.precision[t, :, :, a, m]
    # (T, K, A, M) -> (T', K)
    return accumulated.recall[t, :, a, m]


def mean_without_sentinels(values: Optional[np.ndarray]) -> float:
    """Mean of the values > -1; NaN if none remain."""
    if values is None:
        return math.nan
    kept = values[values > -1]
    if kept.size == 0:
        return math.nan
    return float(np.mean(kept))


def summarize(
    accumulated: AccumulatedEval,
    configs: Optional[Sequence[SummaryConfig]] = None,
    verbose: bool = True,
) -> List[SummaryStat]:
    """
    Compute summary metrics.

    Args:
        accumulated: Result of accumulate()
        configs: Summary settings (default: standard COCO settings)
        verbose: Log one line per metric

    Returns:
        Ordered list of SummaryStat
    """
    params = accumulated.params
    if configs is None:
        configs = default_summary_configs(params.iou_type, params.max_detections)

    stats = []
    for config in configs:
        selected = select_slice(accumulated, config)
        if selected is None:
            logger.warning(
                f"Summary '{config.key}' requests a setting that was not evaluated "
                f"(iou={config.iou_threshold}, area={config.area_label}, maxDets={config.max_dets})"
            )
        value = mean_without_sentinels(selected)
        if selected is not None and math.isnan(value):
            logger.warning(f"Summary '{config.key}' has no ground truth to average over")
        stat = SummaryStat(config=config, value=value)
        if verbose:
            logger.info(stat.describe(params.iou_thresholds))
        stats.append(stat)
    return stats


def stats_vector(stats: Sequence[SummaryStat]) -> np.ndarray:
    return np.asarray([s.value for s in stats], dtype=np.float64)


def stats_dict(stats: Sequence[SummaryStat]) -> Dict[str, float]:
    return {s.key: s.value for s in stats}


def per_category_summary(
    accumulated: AccumulatedEval,
    names: Optional[Mapping[int, str]] = None,
    area_label: str = "all",
) -> List[Dict[str, Union[str, int, float]]]:
    """
    Per-category AP / AP50 / AP75 / AR at one size bucket and the largest cap.

    Args:
        accumulated: Result of accumulate()
        names: Optional category id -> name mapping
        area_label: Size bucket to report

    Returns:
        List of dicts, one per category, in params.cat_ids order
    """
    params = accumulated.params
    names = names or {}
    a = area_label_index(params, area_label)
    if a is None:
        return []
    m = int(np.argmax(params.max_detections))
    t50 = threshold_index(params.iou_thresholds, 0.5)
    t75 = threshold_index(params.iou_thresholds, 0.75)

    rows = []
    for k, cat_id in enumerate(params.cat_ids):
        precision = accumulated.precision[:, :, k, a, m]
        recall = accumulated.recall[:, k, a, m]
        rows.append({
            "Category": names.get(cat_id, str(cat_id)),
            "AP": round(mean_without_sentinels(precision), 4),
            "AP50": round(mean_without_sentinels(precision[t50]) if t50 is not None else math.nan, 4),
            "AP75": round(mean_without_sentinels(precision[t75]) if t75 is not None else math.nan, 4),
            "AR": round(mean_without_sentinels(recall), 4),
        })
    return rows


def to_csv(rows: List[Dict[str, Union[str, int, float]]]) -> str:
    """Export per-category rows to a CSV string."""
    if not rows:
        return "Category,AP,AP50,AP75,AR\n"

    header = ",".join(rows[0].keys())
    lines = [header]
    for row in rows:
        lines.append(",".join(str(v) for v in row.values()))
    return "\n".join(lines)


def to_json(rows: List[Dict[str, Union[str, int, float]]]) -> str:
    """Export per-category rows to a JSON string."""
    return json.dumps(rows, indent=2)
