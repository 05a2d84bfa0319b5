"""
False-positive error analysis in the style of Hoiem et al.,
"Diagnosing Error in Object Detectors".

For every category and size bucket, seven precision-recall curves are
produced, each at least as high as the previous one because the evaluation
setting becomes more permissive:

    C75  PR at IoU=.75
    C50  PR at IoU=.50
    Loc  PR at IoU=.10 (localization errors ignored)
    Sim  PR after removing supercategory false positives
    Oth  PR after removing all other-class false positives
    BG   PR after removing all background false positives (1 where Oth > 0)
    FN   PR after removing all remaining errors (always 1)

Every pass runs a fresh DetectionEvaluator on its own EvalParams snapshot;
nothing is shared or mutated between passes. Plotting is left to callers.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from deteval.config import EvalParams
from deteval.data.dataset import AnnotationIndex
from deteval.evaluation.evaluator import DetectionEvaluator
from deteval.utils.logger import logger
from deteval.utils.progress import progress_bar

ANALYSIS_LABELS: Tuple[str, ...] = ("C75", "C50", "Loc", "Sim", "Oth", "BG", "FN")
ANALYSIS_MAX_DETS = 100


@dataclass
class ErrorAnalysis:
    """
    Result of analyze().

    Attributes:
        precision: (7, R, K, A) curves, in ANALYSIS_LABELS order
        rec_thresholds: Recall grid (R)
        cat_ids: Category ids (K)
        area_labels: Size bucket labels (A)
    """

    precision: np.ndarray
    rec_thresholds: Tuple[float, ...]
    cat_ids: Tuple[int, ...]
    area_labels: Tuple[str, ...]
    labels: Tuple[str, ...] = ANALYSIS_LABELS

    def curves(self, cat_ids: Optional[Sequence[int]] = None) -> np.ndarray:
        """(7, R, A) curves averaged over the given categories (default: all)."""
        if cat_ids is None:
            return self.precision.mean(axis=2)
        ks = [self.cat_ids.index(c) for c in cat_ids]
        return self.precision[:, :, ks, :].mean(axis=2)

    def ap(self, cat_ids: Optional[Sequence[int]] = None) -> np.ndarray:
        """(7, A) area under each curve (mean over the recall grid)."""
        return self.curves(cat_ids).mean(axis=1)

    def by_supercategory(self, gt: AnnotationIndex) -> Dict[str, np.ndarray]:
        """(7, R, A) curves averaged per supercategory."""
        groups: Dict[str, List[int]] = {}
        for cat in gt.load_cats(self.cat_ids):
            groups.setdefault(cat.get("supercategory", ""), []).append(cat["id"])
        return {name: self.curves(ids) for name, ids in sorted(groups.items())}

    def summary_rows(self, area_label: str = "all") -> List[Dict[str, Any]]:
        """One row per curve with its AP at the given size bucket, averaged over categories."""
        a = self.area_labels.index(area_label)
        ap = self.ap()[:, a]
        return [{"Setting": label, "AP": round(float(v), 3)} for label, v in zip(self.labels, ap)]


def _relaxed_precision(
    gt: AnnotationIndex,
    dt: AnnotationIndex,
    params: EvalParams,
) -> np.ndarray:
    """(R, A) precision of a single-threshold, category-agnostic pass."""
    evaluator = DetectionEvaluator(gt, dt, params=params, verbose=False)
    evaluator.evaluate()
    return evaluator.accumulate().precision[0, :, 0, :, 0]


def _ignore_other_categories(anns: List[Dict[str, Any]], cat_id: int) -> List[Dict[str, Any]]:
    return [ann if ann["category_id"] == cat_id else dict(ann, ignore=1) for ann in anns]


def analyze(
    gt: AnnotationIndex,
    dt: AnnotationIndex,
    params: EvalParams,
    verbose: bool = True,
) -> ErrorAnalysis:
    """
    Break down detector errors into the seven nested PR curves.

    Note: this calls evaluate() 1 + 2K times and is slow on large datasets.

    Args:
        gt: Ground-truth index (categories should carry 'supercategory')
        dt: Detection index
        params: Base parameters; thresholds, caps, category selection and
            use_cats are overridden

    Returns:
        ErrorAnalysis
    """
    cat_ids = tuple(sorted(gt.get_cat_ids()))
    base = params.replace(
        cat_ids=cat_ids,
        iou_thresholds=(0.75, 0.5, 0.1),
        max_detections=(ANALYSIS_MAX_DETS,),
        use_cats=True,
    )
    evaluator = DetectionEvaluator(gt, dt, params=base, verbose=False)
    evaluator.evaluate()
    strict = evaluator.accumulate().precision[:, :, :, :, 0]

    num_recalls = len(base.rec_thresholds)
    num_areas = len(base.area_ranges)
    ps = np.zeros((len(ANALYSIS_LABELS), num_recalls, len(cat_ids), num_areas))
    ps[:3] = strict

    relaxed = base.replace(iou_thresholds=(0.1,), use_cats=False)
    gt_anns = gt.dataset["annotations"]
    dt_anns = dt.dataset["annotations"]

    with progress_bar(len(cat_ids), "Analyzing categories", enabled=verbose) as update:
        for k, cat_id in enumerate(cat_ids):
            cat = gt.load_cats(cat_id)[0]
            dt_k = dt.with_annotations([ann for ann in dt_anns if ann["category_id"] == cat_id])

            # Supercategory confusion ignored
            sup_ids = set(gt.get_cat_ids(sup_names=[cat.get("supercategory")]))
            sup_anns = [ann for ann in gt_anns if ann["category_id"] in sup_ids]
            gt_sup = gt.with_annotations(_ignore_other_categories(sup_anns, cat_id))
            ps[3, :, k, :] = _relaxed_precision(gt_sup, dt_k, relaxed)

            # Any class confusion ignored
            gt_all = gt.with_annotations(_ignore_other_categories(gt_anns, cat_id))
            ps[4, :, k, :] = _relaxed_precision(gt_all, dt_k, relaxed)

            logger.debug(f"Analyzed {cat.get('supercategory', '')}-{cat.get('name', cat_id)}")
            update(1)

    # Background and false negative errors
    ps[ps == -1] = 0
    ps[5] = ps[4] > 0
    ps[6] = 1

    return ErrorAnalysis(
        precision=ps,
        rec_thresholds=base.rec_thresholds,
        cat_ids=cat_ids,
        area_labels=base.area_labels,
    )
