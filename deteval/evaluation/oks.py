"""
Object Keypoint Similarity (OKS).

OKS between a detection and a ground truth is the mean over keypoints of
``exp(-d^2 / (2 * area * (2 * sigma)^2))``. When the ground truth has no
visible keypoint, ``d`` is measured to the ground-truth box enlarged to twice
its size and every keypoint takes part in the mean.
"""

from typing import Any, Dict, List, Sequence

import numpy as np

from deteval.errors import PreconditionError


def _keypoint_array(instances: List[Dict[str, Any]], num_keypoints: int, role: str) -> np.ndarray:
    expected = 3 * num_keypoints
    rows = []
    for ann in instances:
        kpts = ann.get("keypoints")
        if kpts is None:
            raise PreconditionError(f"{role} annotation {ann.get('id')} has no 'keypoints'")
        if len(kpts) != expected:
            raise PreconditionError(
                f"{role} annotation {ann.get('id')} has {len(kpts)} keypoint values, expected {expected}"
            )
        rows.append(kpts)
    return np.asarray(rows, dtype=np.float64).reshape(len(instances), expected)


def compute_oks(
    gts: List[Dict[str, Any]],
    dts: List[Dict[str, Any]],
    sigmas: Sequence[float],
) -> np.ndarray:
    """
    Compute OKS between every detection and ground truth.

    Args:
        gts: G ground truths with 'keypoints', 'bbox' and 'area'
        dts: D detections with 'keypoints'
        sigmas: Per-keypoint scale constants

    Returns:
        Similarity matrix of shape (D, G)
    """
    num_kpts = len(sigmas)
    ious = np.zeros((len(dts), len(gts)))
    if len(dts) == 0 or len(gts) == 0:
        return ious

    variances = (np.asarray(sigmas, dtype=np.float64) * 2) ** 2
    gt_kpts = _keypoint_array(gts, num_kpts, "ground truth")
    dt_kpts = _keypoint_array(dts, num_kpts, "detection")
    xd, yd = dt_kpts[:, 0::3], dt_kpts[:, 1::3]

    for j, gt in enumerate(gts):
        xg, yg, vg = gt_kpts[j, 0::3], gt_kpts[j, 1::3], gt_kpts[j, 2::3]
        visible = vg > 0
        num_visible = int(np.count_nonzero(visible))

        if num_visible > 0:
            dx = xd - xg
            dy = yd - yg
        else:
            if len(gt.get("bbox") or ()) != 4:
                raise PreconditionError(f"ground truth annotation {gt.get('id')} has no valid 'bbox'")
            # Distance to the box doubled around the ground truth
            x, y, w, h = gt["bbox"]
            x0, x1 = x - w, x + w * 2
            y0, y1 = y - h, y + h * 2
            dx = np.maximum(0, x0 - xd) + np.maximum(0, xd - x1)
            dy = np.maximum(0, y0 - yd) + np.maximum(0, yd - y1)

        e = (dx ** 2 + dy ** 2) / variances / (gt["area"] + np.spacing(1)) / 2
        if num_visible > 0:
            e = e[:, visible]
        ious[:, j] = np.sum(np.exp(-e), axis=1) / e.shape[1]

    return ious
