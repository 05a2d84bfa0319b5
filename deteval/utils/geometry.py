"""
Geometry primitives for region similarity.

Boxes are COCO ``[x, y, w, h]``. Mask work (polygon/RLE encoding, area,
bounding box and mask IoU) is delegated to ``pycocotools.mask``; box IoU is
computed with vectorised numpy so bbox evaluation does not need RLEs.

Crowd handling follows the COCO convention: when a ground truth is a crowd
region the "union" is the detection's own area, so a detection lying inside
a crowd scores 1 regardless of how large the crowd is.
"""

from typing import Any, Dict, List, Sequence, Union

import numpy as np
from pycocotools import mask as mask_utils

from deteval.errors import PreconditionError

Segmentation = Union[List[List[float]], Dict[str, Any]]


def as_boxes(boxes: Sequence[Sequence[float]]) -> np.ndarray:
    """Stack boxes into an (N, 4) float64 array, validating their length."""
    if len(boxes) == 0:
        return np.zeros((0, 4), dtype=np.float64)
    try:
        arr = np.asarray(boxes, dtype=np.float64)
    except ValueError as e:
        raise PreconditionError(f"boxes must all have 4 coordinates: {e}") from e
    if arr.ndim != 2 or arr.shape[1] != 4:
        raise PreconditionError(f"boxes must have shape (N, 4), got {arr.shape}")
    return arr


def bbox_iou(dt_boxes: Sequence, gt_boxes: Sequence, iscrowd: Sequence[bool]) -> np.ndarray:
    """
    Compute IoU between detections and ground truths.

    Args:
        dt_boxes: D boxes in [x, y, w, h] format
        gt_boxes: G boxes in [x, y, w, h] format
        iscrowd: G crowd flags

    Returns:
        IoU matrix of shape (D, G)
    """
    dt = as_boxes(dt_boxes)
    gt = as_boxes(gt_boxes)
    crowd = np.asarray(iscrowd, dtype=bool).reshape(-1)
    if crowd.size != len(gt):
        raise PreconditionError(f"{crowd.size} crowd flags given for {len(gt)} ground truths")
    if len(dt) == 0 or len(gt) == 0:
        return np.zeros((len(dt), len(gt)))

    area_dt = dt[:, 2] * dt[:, 3]
    area_gt = gt[:, 2] * gt[:, 3]

    # Intersection of every (dt, gt) pair
    x1_inter = np.maximum(dt[:, 0:1], gt[:, 0])
    y1_inter = np.maximum(dt[:, 1:2], gt[:, 1])
    x2_inter = np.minimum(dt[:, 0:1] + dt[:, 2:3], gt[:, 0] + gt[:, 2])
    y2_inter = np.minimum(dt[:, 1:2] + dt[:, 3:4], gt[:, 1] + gt[:, 3])
    intersection = np.clip(x2_inter - x1_inter, 0, None) * np.clip(y2_inter - y1_inter, 0, None)

    union = area_dt[:, np.newaxis] + area_gt - intersection
    union = np.where(crowd, area_dt[:, np.newaxis], union)

    # Avoid division by zero
    return np.where(union > 0, intersection / np.where(union > 0, union, 1), 0.0)


def _check_polygons(polygons: List[Any]) -> None:
    if not polygons:
        raise PreconditionError("polygon segmentation has no parts")
    for part in polygons:
        if not isinstance(part, (list, tuple)) or len(part) < 6 or len(part) % 2:
            raise PreconditionError(
                f"polygon parts must be flat [x1, y1, x2, y2, ...] lists of at least 3 points, got {part!r}"
            )


def _check_rle_size(rle: Dict[str, Any], height: int, width: int) -> None:
    size = rle.get("size")
    try:
        matches = [int(s) for s in size] == [height, width]
    except (TypeError, ValueError):
        matches = False
    if not matches:
        raise PreconditionError(f"RLE size {size} does not match the image size {[height, width]}")


def to_rle(segmentation: Segmentation, height: int, width: int) -> Dict[str, Any]:
    """
    Convert a polygon list or (un)compressed RLE into a compressed RLE.

    Args:
        segmentation: Polygons ``[[x1, y1, ...], ...]`` or an RLE dict
        height: Image height
        width: Image width

    Returns:
        Compressed RLE dict

    Raises:
        PreconditionError: Malformed polygon, RLE of another image size, or
            input pycocotools refuses to encode
    """
    if isinstance(segmentation, list):
        # Polygon: one object may consist of several parts
        _check_polygons(segmentation)
        try:
            rles = mask_utils.frPyObjects([[float(v) for v in part] for part in segmentation], height, width)
            return mask_utils.merge(rles)
        except Exception as e:  # pycocotools raises plain Exception on bad input
            raise PreconditionError(f"cannot encode polygon: {e}") from e
    if isinstance(segmentation, dict) and "counts" in segmentation:
        _check_rle_size(segmentation, height, width)
        if not isinstance(segmentation["counts"], list):
            return segmentation
        try:
            return mask_utils.frPyObjects(segmentation, height, width)
        except Exception as e:
            raise PreconditionError(f"cannot encode RLE: {e}") from e
    raise PreconditionError(f"unsupported segmentation type: {type(segmentation).__name__}")


def bbox_to_rle(box: Sequence[float], height: int, width: int) -> Dict[str, Any]:
    """Rasterise a [x, y, w, h] box into a compressed RLE."""
    return mask_utils.frPyObjects([list(map(float, box))], height, width)[0]


def rle_area(rle: Dict[str, Any]) -> float:
    return float(mask_utils.area(rle))


def rle_to_bbox(rle: Dict[str, Any]) -> List[float]:
    return [float(v) for v in mask_utils.toBbox(rle)]


def segm_iou(dt_rles: List[Dict[str, Any]], gt_rles: List[Dict[str, Any]], iscrowd: Sequence[bool]) -> np.ndarray:
    """
    Compute mask IoU between detections and ground truths.

    Args:
        dt_rles: D compressed RLEs
        gt_rles: G compressed RLEs
        iscrowd: G crowd flags

    Returns:
        IoU matrix of shape (D, G)

    Raises:
        PreconditionError: RLEs of different sizes or undecodable counts
    """
    if len(iscrowd) != len(gt_rles):
        raise PreconditionError(f"{len(iscrowd)} crowd flags given for {len(gt_rles)} ground truths")
    if len(dt_rles) == 0 or len(gt_rles) == 0:
        return np.zeros((len(dt_rles), len(gt_rles)))
    try:
        ious = mask_utils.iou(dt_rles, gt_rles, [int(c) for c in iscrowd])
    except Exception as e:  # pycocotools raises plain Exception on bad input
        raise PreconditionError(f"cannot compute mask IoU: {e}") from e
    ious = np.asarray(ious, dtype=np.float64).reshape(len(dt_rles), len(gt_rles))
    # pycocotools reports -1 for masks of different sizes
    if np.any(ious < 0):
        raise PreconditionError("mask IoU between RLEs of different sizes")
    return ious
