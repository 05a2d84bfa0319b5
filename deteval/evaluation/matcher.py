"""
Per-image greedy matching of detections to ground truths.

For one (image, category, size range) unit, detections are visited in
descending score order and each one claims the best still-available ground
truth at every similarity threshold. The rules are:

- a ground truth already claimed at this threshold is skipped, unless it is
  a crowd region (crowds absorb any number of detections);
- ground truths are scanned regular-first, ignored-last, and once a regular
  ground truth has been taken no ignored one may replace it;
- a candidate wins when its similarity is >= the best so far, starting from
  the threshold itself (clamped just below 1 so a perfect match at
  threshold 1.0 still counts).

Detections matched to an ignored ground truth are ignored, as are unmatched
detections whose own area is outside the size range.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from deteval.config import EvalParams
from deteval.errors import PreconditionError
from deteval.evaluation.records import MatchRecord
from deteval.evaluation.similarity import compute_similarity, require_shapes

# Upper bound for an effective threshold
MAX_THRESHOLD = 1 - 1e-10


class GreedyCandidate:
    """
    Best-so-far state while one detection scans the ground truths.

    Args:
        threshold: Similarity threshold of this matching pass
        gt_ignore: Ignore flags of the (ordered) ground truths
    """

    __slots__ = ("best_similarity", "best_gt", "_gt_ignore")

    def __init__(self, threshold: float, gt_ignore: np.ndarray):
        self.best_similarity = min(float(threshold), MAX_THRESHOLD)
        self.best_gt = -1
        self._gt_ignore = gt_ignore

    @property
    def matched(self) -> bool:
        return self.best_gt >= 0

    @property
    def locked(self) -> bool:
        """True once a regular (non-ignored) ground truth has been taken."""
        return self.matched and not self._gt_ignore[self.best_gt]

    def offer(self, gt_index: int, similarity: float) -> bool:
        """
        Consider one ground truth.

        Returns:
            False when the scan must stop (all remaining ground truths are
            ignored and a regular one is already held), True otherwise.
        """
        if self.locked and self._gt_ignore[gt_index]:
            return False
        if similarity >= self.best_similarity:
            self.best_similarity = similarity
            self.best_gt = gt_index
        return True


def greedy_match(
    ious: np.ndarray,
    thresholds: Sequence[float],
    gt_ignore: np.ndarray,
    iscrowd: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Run greedy assignment independently at every threshold.

    Detections (rows of ``ious``) must already be in descending score order
    and ground truths (columns) ordered regular-first.

    Args:
        ious: Similarity matrix (D, G)
        thresholds: T similarity thresholds
        gt_ignore: (G,) ignore flags
        iscrowd: (G,) crowd flags

    Returns:
        dt_match: (T, D) index of the matched ground truth or -1
        gt_match: (T, G) index of the (last) matched detection or -1
    """
    num_dt, num_gt = ious.shape
    dt_match = np.full((len(thresholds), num_dt), -1, dtype=np.int64)
    gt_match = np.full((len(thresholds), num_gt), -1, dtype=np.int64)
    if num_dt == 0 or num_gt == 0:
        return dt_match, gt_match

    for t, threshold in enumerate(thresholds):
        for d in range(num_dt):
            candidate = GreedyCandidate(threshold, gt_ignore)
            for g in range(num_gt):
                if gt_match[t, g] >= 0 and not iscrowd[g]:
                    continue
                if not candidate.offer(g, ious[d, g]):
                    break
            if not candidate.matched:
                continue
            dt_match[t, d] = candidate.best_gt
            gt_match[t, candidate.best_gt] = d

    return dt_match, gt_match


def _check_annotations(gts: List[Dict[str, Any]], dts: List[Dict[str, Any]], iou_type: str) -> None:
    for role, anns, required in (("ground truth", gts, ("id", "area")), ("detection", dts, ("id", "area", "score"))):
        for ann in anns:
            missing = [key for key in required if ann.get(key) is None]
            if missing:
                raise PreconditionError(f"{role} annotation {ann.get('id')} is missing {missing}")
            if ann["id"] == 0:
                raise PreconditionError(f"{role} annotation id 0 is reserved for 'unmatched'")
        require_shapes(anns, iou_type, role)


def ground_truth_ignore(gts: List[Dict[str, Any]], area_range: Tuple[float, float], iou_type: str) -> np.ndarray:
    """
    Ignore flag of every ground truth for the given size range.

    A ground truth is ignored if it is a crowd, carries an explicit ignore
    flag or its area falls outside the range. Keypoint ground truths without
    visible keypoints are ignored as well.
    """
    lo, hi = area_range
    flags = np.zeros(len(gts), dtype=bool)
    for i, gt in enumerate(gts):
        ignore = bool(gt.get("iscrowd", 0)) or bool(gt.get("ignore", 0))
        ignore = ignore or gt["area"] < lo or gt["area"] > hi
        if iou_type == "keypoints":
            num_kpts = gt.get("num_keypoints")
            if num_kpts is None:
                num_kpts = int(np.count_nonzero(np.asarray(gt["keypoints"][2::3]) > 0))
            ignore = ignore or num_kpts == 0
        flags[i] = ignore
    return flags


def evaluate_image(
    gts: List[Dict[str, Any]],
    dts: List[Dict[str, Any]],
    params: EvalParams,
    area_range: Tuple[float, float],
    max_det: int,
    image_id: int,
    category_id: int,
) -> Optional[MatchRecord]:
    """
    Match detections to ground truths of one image and category.

    Args:
        gts: Ground truths of the unit (shapes already in evaluable form)
        dts: Detections of the unit
        params: Evaluation parameters (thresholds, iou type, sigmas)
        area_range: Active (min, max) area
        max_det: Detection cap applied before matching
        image_id: Image of the unit
        category_id: Category of the unit

    Returns:
        MatchRecord, or None when the unit has neither ground truths nor
        detections.

    Raises:
        PreconditionError: Malformed annotations
    """
    if not gts and not dts:
        return None

    unit = (image_id, category_id)
    try:
        _check_annotations(gts, dts, params.iou_type)
    except PreconditionError as e:
        raise PreconditionError(str(e), unit=unit) from e

    gt_ignore = ground_truth_ignore(gts, area_range, params.iou_type)

    # Regular ground truths first, detections by descending score (stable)
    gt_order = np.argsort(gt_ignore, kind="stable")
    dt_scores = np.asarray([d["score"] for d in dts], dtype=np.float64)
    dt_order = np.argsort(-dt_scores, kind="stable")[:max_det]

    gts = [gts[i] for i in gt_order]
    dts = [dts[i] for i in dt_order]
    gt_ignore = gt_ignore[gt_order]
    dt_scores = dt_scores[dt_order]
    iscrowd = np.asarray([bool(g.get("iscrowd", 0)) for g in gts], dtype=bool)

    try:
        ious = compute_similarity(params.iou_type, gts, dts, params)
    except PreconditionError as e:
        raise PreconditionError(str(e), unit=unit) from e
    if ious.shape != (len(dts), len(gts)):
        raise PreconditionError(
            f"similarity matrix has shape {ious.shape}, expected {(len(dts), len(gts))}", unit=unit
        )

    dt_match, gt_match = greedy_match(ious, params.iou_thresholds, gt_ignore, iscrowd)

    gt_ids = np.asarray([g["id"] for g in gts], dtype=np.int64)
    dt_ids = np.asarray([d["id"] for d in dts], dtype=np.int64)
    dt_matched = dt_match >= 0
    gt_matched = gt_match >= 0

    dt_matches = np.zeros(dt_match.shape, dtype=np.int64)
    dt_matches[dt_matched] = gt_ids[dt_match[dt_matched]]
    gt_matches = np.zeros(gt_match.shape, dtype=np.int64)
    gt_matches[gt_matched] = dt_ids[gt_match[gt_matched]]

    dt_ignore = np.zeros(dt_match.shape, dtype=bool)
    dt_ignore[dt_matched] = gt_ignore[dt_match[dt_matched]]

    # Unmatched detections outside the size range are ignored
    dt_area = np.asarray([d["area"] for d in dts], dtype=np.float64)
    out_of_range = (dt_area < area_range[0]) | (dt_area > area_range[1])
    dt_ignore |= ~dt_matched & out_of_range[np.newaxis, :]

    return MatchRecord(
        image_id=image_id,
        category_id=category_id,
        area_range=tuple(area_range),
        max_det=max_det,
        dt_ids=dt_ids,
        gt_ids=gt_ids,
        dt_matches=dt_matches,
        gt_matches=gt_matches,
        dt_scores=dt_scores,
        dt_ignore=dt_ignore,
        gt_ignore=gt_ignore,
    )
