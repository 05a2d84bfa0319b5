"""
Similarity provider dispatch.

Maps an iou type onto the primitive that produces the (detections x ground
truths) similarity matrix.
"""

from typing import Any, Dict, List

import numpy as np

from deteval.config import EvalParams
from deteval.errors import ConfigurationError, PreconditionError
from deteval.evaluation.oks import compute_oks
from deteval.utils.geometry import bbox_iou, segm_iou

# Annotation field each iou type reads its shape from
SHAPE_FIELDS = {
    "bbox": "bbox",
    "segm": "segmentation",
    "keypoints": "keypoints",
}


def shape_field(iou_type: str) -> str:
    try:
        return SHAPE_FIELDS[iou_type]
    except KeyError:
        raise ConfigurationError(f"unknown iou_type: {iou_type!r}") from None


def require_shapes(anns: List[Dict[str, Any]], iou_type: str, role: str) -> None:
    """Raise PreconditionError if an annotation lacks the shape for iou_type."""
    field_name = shape_field(iou_type)
    for ann in anns:
        if ann.get(field_name) is None:
            raise PreconditionError(f"{role} annotation {ann.get('id')} has no '{field_name}' for {iou_type} evaluation")


def compute_similarity(
    iou_type: str,
    gts: List[Dict[str, Any]],
    dts: List[Dict[str, Any]],
    params: EvalParams,
) -> np.ndarray:
    """
    Compute the similarity matrix between ordered detections and ground truths.

    Segmentations are expected to be compressed RLEs already (the evaluator
    converts polygons with the image size before matching).

    Args:
        iou_type: "bbox", "segm" or "keypoints"
        gts: G ground truths
        dts: D detections
        params: Evaluation parameters (for OKS sigmas)

    Returns:
        Matrix of shape (D, G) with values in [0, 1]
    """
    field_name = shape_field(iou_type)
    if iou_type == "keypoints":
        return compute_oks(gts, dts, params.kpt_oks_sigmas)

    iscrowd = [bool(g.get("iscrowd", 0)) for g in gts]
    gt_shapes = [g[field_name] for g in gts]
    dt_shapes = [d[field_name] for d in dts]
    if iou_type == "bbox":
        return bbox_iou(dt_shapes, gt_shapes, iscrowd)
    return segm_iou(dt_shapes, gt_shapes, iscrowd)
