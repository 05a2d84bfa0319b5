"""
Detection evaluator: evaluate() -> accumulate() -> summarize().

Usage:
    gt = AnnotationIndex.from_json("instances_val.json")
    dt = gt.load_results("detections.json")
    evaluator = DetectionEvaluator(gt, dt, iou_type="bbox")
    evaluator.evaluate()      # per-image matching
    evaluator.accumulate()    # precision/recall tensors
    evaluator.summarize()     # 12 summary metrics

Each evaluate() pass captures one normalized EvalParams snapshot. Assigning
a new snapshot to ``evaluator.params`` between passes is allowed; mutating a
snapshot is not (EvalParams is frozen).
"""

import time
from collections import defaultdict
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from deteval.config import ANY_CATEGORY, EvalParams
from deteval.data.dataset import AnnotationIndex
from deteval.errors import ConfigurationError, PreconditionError, SequencingError, format_failed_units
from deteval.evaluation.accumulator import RecordKey, accumulate
from deteval.evaluation.matcher import evaluate_image
from deteval.evaluation.records import AccumulatedEval, MatchRecord, SummaryConfig, SummaryStat
from deteval.evaluation.summarizer import per_category_summary, stats_dict, stats_vector, summarize
from deteval.utils.geometry import bbox_to_rle, rle_to_bbox, to_rle
from deteval.utils.logger import logger
from deteval.utils.progress import progress_bar, spinner

Unit = Tuple[int, int]


def prepare_shapes(
    gts: List[Dict[str, Any]],
    dts: List[Dict[str, Any]],
    iou_type: str,
    image_size: Optional[Tuple[int, int]] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Bring the shapes of one unit into the form the similarity provider needs.

    Annotations are shallow-copied; the dataset index is never modified.

    - segm: polygons / uncompressed RLEs become compressed RLEs; detections
      without a segmentation are rasterised from their box
    - bbox: annotations without a box get the box of their segmentation
    - keypoints: unchanged

    Args:
        gts: Ground truths of the unit
        dts: Detections of the unit
        iou_type: Active iou type
        image_size: (height, width) of the image, required for segm

    Returns:
        (gts, dts) copies
    """
    gts = [dict(g) for g in gts]
    dts = [dict(d) for d in dts]
    if iou_type == "segm":
        if image_size is None:
            raise PreconditionError("segm evaluation needs the image height and width")
        height, width = image_size
        for ann in gts + dts:
            if ann.get("segmentation") is not None:
                ann["segmentation"] = to_rle(ann["segmentation"], height, width)
        for ann in dts:
            if ann.get("segmentation") is None and ann.get("bbox") is not None:
                ann["segmentation"] = bbox_to_rle(ann["bbox"], height, width)
    elif iou_type == "bbox":
        for ann in gts + dts:
            if ann.get("bbox") is None and isinstance(ann.get("segmentation"), dict):
                ann["bbox"] = rle_to_bbox(ann["segmentation"])
    return gts, dts


class DetectionEvaluator:
    """
    COCO-protocol evaluator for detections, segmentations and keypoints.

    Args:
        gt: Ground-truth index
        dt: Detection index (see AnnotationIndex.load_results)
        iou_type: "segm", "bbox" or "keypoints" (default: params.iou_type or "segm")
        params: Optional parameters; empty img_ids / cat_ids default to all
            ids of the ground truth
        workers: Thread pool size for matching and accumulation (0 = inline)
        verbose: Show progress and log summary lines
    """

    def __init__(
        self,
        gt: AnnotationIndex,
        dt: AnnotationIndex,
        iou_type: Optional[str] = None,
        params: Optional[EvalParams] = None,
        workers: int = 0,
        verbose: bool = True,
    ):
        if params is None:
            params = EvalParams.for_iou_type(iou_type or "segm")
        elif iou_type is not None and iou_type != params.iou_type:
            raise ConfigurationError(f"iou_type {iou_type!r} conflicts with params.iou_type {params.iou_type!r}")
        if not params.img_ids:
            params = params.replace(img_ids=sorted(gt.get_img_ids()))
        if not params.cat_ids:
            params = params.replace(cat_ids=sorted(gt.get_cat_ids()))

        self.gt = gt
        self.dt = dt
        self.params = params
        self.workers = workers
        self.verbose = verbose

        self.eval_imgs: Optional[Dict[RecordKey, Optional[MatchRecord]]] = None
        self.eval: Optional[AccumulatedEval] = None
        self.summary: Optional[List[SummaryStat]] = None
        self.failures: List[PreconditionError] = []
        self._eval_params: Optional[EvalParams] = None

    @contextmanager
    def _executor(self) -> Iterator[Optional[Executor]]:
        if self.workers <= 0:
            yield None
            return
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            yield executor

    def _group(self, index: AnnotationIndex, params: EvalParams) -> Dict[Unit, List[Dict[str, Any]]]:
        if params.use_cats:
            anns = index.select_anns(params.img_ids, params.cat_ids)
        else:
            anns = index.select_anns(params.img_ids)
        grouped: Dict[Unit, List[Dict[str, Any]]] = defaultdict(list)
        for ann in anns:
            cat_id = ann["category_id"] if params.use_cats else ANY_CATEGORY
            grouped[(ann["image_id"], cat_id)].append(ann)
        return grouped

    def _evaluate_unit(
        self,
        unit: Unit,
        gts: List[Dict[str, Any]],
        dts: List[Dict[str, Any]],
        params: EvalParams,
    ) -> List[Optional[MatchRecord]]:
        img_id, cat_id = unit
        try:
            image_size = self.gt.image_size(img_id) if params.iou_type == "segm" else None
            gts, dts = prepare_shapes(gts, dts, params.iou_type, image_size)
        except PreconditionError as e:
            raise PreconditionError(str(e), unit=unit) from e

        max_det = max(params.max_detections)
        return [
            evaluate_image(gts, dts, params, area_range, max_det, img_id, cat_id)
            for area_range in params.area_ranges
        ]

    def evaluate(self) -> Dict[RecordKey, Optional[MatchRecord]]:
        """
        Run per-image evaluation.

        A unit whose annotations violate the matcher's preconditions is
        recorded in ``self.failures`` and logged; the other units are
        unaffected. accumulate() refuses to run while failures exist.

        Returns:
            Match records keyed by (image_id, category_id, area index)
        """
        params = self.params.normalized()
        logger.info(f"Running per image evaluation ({params.iou_type})...")
        t0 = time.time()

        gts = self._group(self.gt, params)
        dts = self._group(self.dt, params)
        units = [
            (img_id, cat_id)
            for img_id in params.img_ids
            for cat_id in params.cat_ids
            if (img_id, cat_id) in gts or (img_id, cat_id) in dts
        ]

        records: Dict[RecordKey, Optional[MatchRecord]] = {}
        failures: List[PreconditionError] = []

        def store(unit: Unit, unit_records: Sequence[Optional[MatchRecord]]) -> None:
            for a, record in enumerate(unit_records):
                records[(unit[0], unit[1], a)] = record

        with progress_bar(len(units), "Matching detections", enabled=self.verbose) as update, \
                self._executor() as executor:
            if executor is None:
                for unit in units:
                    try:
                        store(unit, self._evaluate_unit(unit, gts.get(unit, []), dts.get(unit, []), params))
                    except PreconditionError as e:
                        failures.append(e)
                    update(1)
            else:
                futures = {
                    executor.submit(self._evaluate_unit, unit, gts.get(unit, []), dts.get(unit, []), params): unit
                    for unit in units
                }
                for future in as_completed(futures):
                    try:
                        store(futures[future], future.result())
                    except PreconditionError as e:
                        failures.append(e)
                    update(1)

        for failure in failures:
            logger.error(f"Evaluation unit failed: {failure}")

        self.eval_imgs = records
        self.failures = failures
        self.eval = None
        self.summary = None
        self._eval_params = params
        logger.info(f"DONE (t={time.time() - t0:0.2f}s).")
        return records

    def accumulate(self) -> AccumulatedEval:
        """
        Accumulate per-image results into precision/recall tensors.

        Raises:
            SequencingError: evaluate() has not been run
            PreconditionError: some evaluation units failed
        """
        if self.eval_imgs is None or self._eval_params is None:
            raise SequencingError("Please run evaluate() first")
        if self.failures:
            raise PreconditionError(
                f"{len(self.failures)} evaluation unit(s) failed, totals would be unreliable: "
                f"{format_failed_units(self.failures)}"
            )

        logger.info("Accumulating evaluation results...")
        t0 = time.time()
        with spinner("Accumulating evaluation results...", enabled=self.verbose), self._executor() as executor:
            self.eval = accumulate(self.eval_imgs, self._eval_params, executor)
        self.summary = None
        logger.info(f"DONE (t={time.time() - t0:0.2f}s).")
        return self.eval

    def summarize(self, configs: Optional[Sequence[SummaryConfig]] = None) -> List[SummaryStat]:
        """
        Compute summary metrics (12 for bbox/segm, 10 for keypoints by default).

        Raises:
            SequencingError: accumulate() has not been run
        """
        if self.eval is None:
            raise SequencingError("Please run accumulate() first")
        self.summary = summarize(self.eval, configs, verbose=self.verbose)
        return self.summary

    @property
    def stats(self) -> np.ndarray:
        """Summary values as a vector, in summary order."""
        if self.summary is None:
            raise SequencingError("Please run summarize() first")
        return stats_vector(self.summary)

    @property
    def results_dict(self) -> Dict[str, float]:
        """Summary values keyed by metric name (map, map50, ar_100, ...)."""
        if self.summary is None:
            raise SequencingError("Please run summarize() first")
        return stats_dict(self.summary)

    def per_category(self, area_label: str = "all") -> List[Dict[str, Union[str, int, float]]]:
        """Per-category AP/AR rows (see summarizer.per_category_summary)."""
        if self.eval is None:
            raise SequencingError("Please run accumulate() first")
        return per_category_summary(self.eval, self.gt.category_names(), area_label)

    def run(self) -> List[SummaryStat]:
        """evaluate(), accumulate() and summarize() in one call."""
        self.evaluate()
        self.accumulate()
        return self.summarize()
