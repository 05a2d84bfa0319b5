"""
Converts per-image prediction/target arrays into COCO-format annotation indexes.
"""

from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from deteval.data.dataset import AnnotationIndex


def _rows(arr, width: int) -> np.ndarray:
    arr = np.asarray(arr if arr is not None else [], dtype=np.float64)
    return arr.reshape(-1, width) if arr.size else np.zeros((0, width))


class COCOFormatConverter:
    """
    Collects detections and ground truths batch by batch and exposes them as
    AnnotationIndex objects for evaluation.

    Boxes are given in [x1, y1, x2, y2] format and stored as COCO [x, y, w, h].
    """

    def __init__(self, class_names: Mapping[int, str]):
        """
        Initialize converter.

        Args:
            class_names: Dict mapping category ids to names
        """
        self.class_names = dict(class_names)
        self.categories = [
            {"id": int(idx), "name": name}
            for idx, name in self.class_names.items()
        ]
        self._image_id = 0
        self._annotation_id = 0

        # Storage for COCO format data
        self.gt_annotations: List[Dict] = []
        self.dt_annotations: List[Dict] = []
        self.images: List[Dict] = []

    def add_batch(
        self,
        predictions: Sequence[Mapping[str, np.ndarray]],
        targets: Sequence[Mapping[str, np.ndarray]],
        image_size: Tuple[int, int] = (640, 640),
    ) -> List[int]:
        """
        Add a batch of predictions and ground truths.

        Args:
            predictions: List of dicts with 'boxes', 'scores', 'labels'
            targets: List of dicts with 'boxes', 'labels' and optional 'iscrowd'
            image_size: Image dimensions (width, height)

        Returns:
            Image ids assigned to the batch
        """
        image_ids = []
        for pred, target in zip(predictions, targets):
            self._image_id += 1
            image_ids.append(self._image_id)

            self.images.append({
                "id": self._image_id,
                "width": image_size[0],
                "height": image_size[1],
            })

            gt_boxes = _rows(target.get("boxes"), 4)
            gt_labels = np.asarray(target.get("labels", []), dtype=np.int64).reshape(-1)
            gt_crowd = np.asarray(target.get("iscrowd", np.zeros(len(gt_boxes))), dtype=np.int64).reshape(-1)

            for box, label, crowd in zip(gt_boxes, gt_labels, gt_crowd):
                self._annotation_id += 1
                x1, y1, x2, y2 = box
                self.gt_annotations.append({
                    "id": self._annotation_id,
                    "image_id": self._image_id,
                    "category_id": int(label),
                    "bbox": [float(x1), float(y1), float(x2 - x1), float(y2 - y1)],  # COCO format: [x, y, w, h]
                    "area": float((x2 - x1) * (y2 - y1)),
                    "iscrowd": int(crowd),
                })

            pred_boxes = _rows(pred.get("boxes"), 4)
            pred_scores = np.asarray(pred.get("scores", []), dtype=np.float64).reshape(-1)
            pred_labels = np.asarray(pred.get("labels", []), dtype=np.int64).reshape(-1)

            for box, score, label in zip(pred_boxes, pred_scores, pred_labels):
                x1, y1, x2, y2 = box
                self.dt_annotations.append({
                    "image_id": self._image_id,
                    "category_id": int(label),
                    "bbox": [float(x1), float(y1), float(x2 - x1), float(y2 - y1)],
                    "score": float(score),
                })
        return image_ids

    def get_gt_index(self) -> AnnotationIndex:
        """Create the ground-truth index."""
        return AnnotationIndex({
            "images": list(self.images),
            "annotations": list(self.gt_annotations),
            "categories": list(self.categories),
        })

    def get_dt_index(self, gt_index: AnnotationIndex) -> AnnotationIndex:
        """Create the detection index against a ground-truth index."""
        return gt_index.load_results(self.dt_annotations)

    def reset(self) -> None:
        """Reset all stored data."""
        self._image_id = 0
        self._annotation_id = 0
        self.gt_annotations = []
        self.dt_annotations = []
        self.images = []
