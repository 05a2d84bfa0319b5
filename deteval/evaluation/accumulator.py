"""
Cross-image accumulation of match records into precision/recall tensors.

Every (category, size range, detection cap) slice is an independent, pure
computation over the concatenated match records of all images. The slices
are mapped over their Cartesian index set and written into the
(T, R, K, A, M) precision and (T, K, A, M) recall tensors afterwards.
"""

import itertools
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from deteval.config import EvalParams
from deteval.evaluation.records import AccumulatedEval, MatchRecord

# Key of a match record: (image_id, category_id, area index)
RecordKey = Tuple[int, int, int]


@dataclass
class ConcatenatedMatches:
    """
    Match records of one (category, size range) across images, capped per image.

    Detections keep their per-image segments in image order; within each
    segment they are still in descending score order.
    """

    dt_scores: np.ndarray   # (N,)
    dt_matches: np.ndarray  # (T, N)
    dt_ignore: np.ndarray   # (T, N)
    gt_ignore: np.ndarray   # (G_total,)

    @property
    def num_positives(self) -> int:
        """Number of non-ignored ground truths."""
        return int(np.count_nonzero(~self.gt_ignore))


def concatenate_records(records: Sequence[MatchRecord], max_det: int, num_thresholds: int) -> ConcatenatedMatches:
    """
    Concatenate per-image records, keeping each image's top ``max_det`` detections.

    Args:
        records: Records of one category and size range, in image order
        max_det: Per-image detection cap
        num_thresholds: T, used to shape empty results

    Returns:
        ConcatenatedMatches
    """
    if not records:
        return ConcatenatedMatches(
            dt_scores=np.zeros(0),
            dt_matches=np.zeros((num_thresholds, 0), dtype=np.int64),
            dt_ignore=np.zeros((num_thresholds, 0), dtype=bool),
            gt_ignore=np.zeros(0, dtype=bool),
        )
    return ConcatenatedMatches(
        dt_scores=np.concatenate([r.dt_scores[:max_det] for r in records]),
        dt_matches=np.concatenate([r.dt_matches[:, :max_det] for r in records], axis=1),
        dt_ignore=np.concatenate([r.dt_ignore[:, :max_det] for r in records], axis=1),
        gt_ignore=np.concatenate([r.gt_ignore for r in records]),
    )


def interpolate_precision(
    precision: np.ndarray,
    recall: np.ndarray,
    rec_thresholds: Sequence[float],
) -> np.ndarray:
    """
    Sample a precision curve on a recall grid.

    The curve is first replaced by its monotone envelope (precision at rank i
    becomes the maximum over ranks >= i). Each grid point then takes the
    envelope value at the first rank whose recall reaches it, which is the
    best precision achievable at that recall or above. Grid points beyond the
    final recall are 0.

    Args:
        precision: (N,) precision at every rank
        recall: (N,) non-decreasing recall at every rank
        rec_thresholds: (R,) recall grid

    Returns:
        (R,) interpolated precision, non-increasing
    """
    q = np.zeros(len(rec_thresholds))
    if len(precision) == 0:
        return q
    envelope = np.maximum.accumulate(precision[::-1])[::-1]
    inds = np.searchsorted(recall, rec_thresholds, side="left")
    valid = inds < len(envelope)
    q[valid] = envelope[inds[valid]]
    return q


def accumulate_slice(
    matches: ConcatenatedMatches,
    rec_thresholds: Sequence[float],
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Precision curve and max recall of one (category, size range, cap) slice.

    Args:
        matches: Concatenated, capped detections of the slice
        rec_thresholds: Recall grid (R)

    Returns:
        (precision (T, R), recall (T,)), or None when the slice has no
        non-ignored ground truth.
    """
    num_positives = matches.num_positives
    if num_positives == 0:
        return None

    num_thresholds = matches.dt_matches.shape[0]
    precision = np.zeros((num_thresholds, len(rec_thresholds)))
    recall = np.zeros(num_thresholds)

    # Global ranking; ties keep image order, then per-image rank
    order = np.argsort(-matches.dt_scores, kind="mergesort")
    dt_matches = matches.dt_matches[:, order]
    dt_ignore = matches.dt_ignore[:, order]

    tps = (dt_matches != 0) & ~dt_ignore
    fps = (dt_matches == 0) & ~dt_ignore
    tp_sum = np.cumsum(tps, axis=1, dtype=np.float64)
    fp_sum = np.cumsum(fps, axis=1, dtype=np.float64)

    for t in range(num_thresholds):
        tp, fp = tp_sum[t], fp_sum[t]
        if len(tp) == 0 or tp[-1] == 0:
            continue
        rc = tp / num_positives
        pr = tp / (tp + fp + np.spacing(1))
        recall[t] = rc[-1]
        precision[t] = interpolate_precision(pr, rc, rec_thresholds)

    return precision, recall


def group_records(
    records: Dict[RecordKey, Optional[MatchRecord]],
    params: EvalParams,
) -> Dict[Tuple[int, int], List[MatchRecord]]:
    """
    Collect the records of every (category index, area index) in image order.

    Images that contributed neither a ground truth nor a detection have no
    record and are skipped.
    """
    grouped: Dict[Tuple[int, int], List[MatchRecord]] = {}
    for k, cat_id in enumerate(params.cat_ids):
        for a in range(len(params.area_ranges)):
            group = []
            for img_id in params.img_ids:
                record = records.get((img_id, cat_id, a))
                if record is not None:
                    group.append(record)
            grouped[(k, a)] = group
    return grouped


def slice_indices(params: EvalParams) -> Iterable[Tuple[int, int, int]]:
    """Cartesian index set (k, a, m) of accumulation slices."""
    _, _, num_cats, num_areas, num_caps = params.counts
    return itertools.product(range(num_cats), range(num_areas), range(num_caps))


def accumulate(
    records: Dict[RecordKey, Optional[MatchRecord]],
    params: EvalParams,
    executor: Optional[Executor] = None,
) -> AccumulatedEval:
    """
    Accumulate per-image match records into precision/recall tensors.

    Args:
        records: Match records keyed by (image_id, category_id, area index)
        params: Normalized parameters the records were produced with
        executor: Optional executor to compute slices concurrently

    Returns:
        AccumulatedEval with -1 in slices without non-ignored ground truth
    """
    num_thresholds, num_recalls, num_cats, num_areas, num_caps = params.counts
    precision = -np.ones((num_thresholds, num_recalls, num_cats, num_areas, num_caps))
    recall = -np.ones((num_thresholds, num_cats, num_areas, num_caps))

    grouped = group_records(records, params)
    indices = list(slice_indices(params))

    def compute(index: Tuple[int, int, int]):
        k, a, m = index
        matches = concatenate_records(grouped[(k, a)], params.max_detections[m], num_thresholds)
        return accumulate_slice(matches, params.rec_thresholds)

    if executor is None:
        results = map(compute, indices)
    else:
        results = executor.map(compute, indices)

    for (k, a, m), result in zip(indices, results):
        if result is None:
            continue
        precision[:, :, k, a, m], recall[:, k, a, m] = result

    return AccumulatedEval(
        params=params,
        precision=precision,
        recall=recall,
        date=time.strftime("%Y-%m-%d %H:%M:%S"),
    )
