"""
In-memory COCO-format annotation index.

Provides the lookups the evaluator needs (images, categories, annotations by
image/category) and loading of detector results against a ground-truth
index, deriving the area and box of every detection from its shape.
"""

import copy
import json
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from deteval.errors import PreconditionError
from deteval.utils.geometry import rle_area, rle_to_bbox, to_rle
from deteval.utils.logger import logger


def _as_list(ids: Union[None, int, Iterable[int]]) -> List[int]:
    if ids is None:
        return []
    if isinstance(ids, (int, np.integer)):
        return [int(ids)]
    return list(ids)


class AnnotationIndex:
    """
    Index over a COCO-style dataset dict.

    Args:
        dataset: Dict with "images", "annotations" and "categories" lists

    Example:
        gt = AnnotationIndex.from_json("instances_val.json")
        dt = gt.load_results("detections.json")
    """

    def __init__(self, dataset: Optional[Dict[str, Any]] = None):
        self.dataset: Dict[str, Any] = dataset if dataset is not None else {}
        self.dataset.setdefault("images", [])
        self.dataset.setdefault("annotations", [])
        self.dataset.setdefault("categories", [])
        self.anns: Dict[int, Dict[str, Any]] = {}
        self.imgs: Dict[int, Dict[str, Any]] = {}
        self.cats: Dict[int, Dict[str, Any]] = {}
        self.img_to_anns: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        self.cat_to_imgs: Dict[int, List[int]] = defaultdict(list)
        self._build_index()

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "AnnotationIndex":
        """Load an annotation file."""
        with open(path) as f:
            dataset = json.load(f)
        if not isinstance(dataset, dict):
            raise PreconditionError(f"annotation file {path} must contain a JSON object")
        logger.debug(f"Loaded {len(dataset.get('annotations', []))} annotations from {path}")
        return cls(dataset)

    def _build_index(self) -> None:
        for img in self.dataset["images"]:
            self.imgs[img["id"]] = img
        for cat in self.dataset["categories"]:
            self.cats[cat["id"]] = cat
        for ann in self.dataset["annotations"]:
            self.anns[ann["id"]] = ann
            self.img_to_anns[ann["image_id"]].append(ann)
            self.cat_to_imgs[ann["category_id"]].append(ann["image_id"])

    def get_img_ids(
        self,
        img_ids: Union[None, int, Iterable[int]] = None,
        cat_ids: Union[None, int, Iterable[int]] = None,
    ) -> List[int]:
        """Image ids, optionally restricted to given ids and to images containing every given category."""
        img_ids, cat_ids = _as_list(img_ids), _as_list(cat_ids)
        ids = set(img_ids) if img_ids else set(self.imgs)
        for cat_id in cat_ids:
            ids &= set(self.cat_to_imgs.get(cat_id, ()))
        return sorted(ids)

    def get_cat_ids(
        self,
        cat_names: Sequence[str] = (),
        sup_names: Sequence[str] = (),
        cat_ids: Union[None, int, Iterable[int]] = None,
    ) -> List[int]:
        """Category ids, optionally filtered by name, supercategory and id."""
        cat_ids = _as_list(cat_ids)
        cats = self.dataset["categories"]
        if cat_names:
            cats = [c for c in cats if c.get("name") in cat_names]
        if sup_names:
            cats = [c for c in cats if c.get("supercategory") in sup_names]
        if cat_ids:
            cats = [c for c in cats if c["id"] in cat_ids]
        return [c["id"] for c in cats]

    def get_ann_ids(
        self,
        img_ids: Union[None, int, Iterable[int]] = None,
        cat_ids: Union[None, int, Iterable[int]] = None,
    ) -> List[int]:
        """Annotation ids restricted to the given images and categories (empty = all)."""
        return [ann["id"] for ann in self.select_anns(img_ids, cat_ids)]

    def select_anns(
        self,
        img_ids: Union[None, int, Iterable[int]] = None,
        cat_ids: Union[None, int, Iterable[int]] = None,
    ) -> List[Dict[str, Any]]:
        """Annotations restricted to the given images and categories (empty = all)."""
        img_ids, cat_ids = _as_list(img_ids), _as_list(cat_ids)
        if img_ids:
            anns = [ann for img_id in img_ids for ann in self.img_to_anns.get(img_id, ())]
        else:
            anns = self.dataset["annotations"]
        if cat_ids:
            wanted = set(cat_ids)
            anns = [ann for ann in anns if ann["category_id"] in wanted]
        return list(anns)

    def load_anns(self, ids: Union[int, Iterable[int]]) -> List[Dict[str, Any]]:
        return [self.anns[i] for i in _as_list(ids)]

    def load_imgs(self, ids: Union[int, Iterable[int]]) -> List[Dict[str, Any]]:
        return [self.imgs[i] for i in _as_list(ids)]

    def load_cats(self, ids: Union[int, Iterable[int]]) -> List[Dict[str, Any]]:
        return [self.cats[i] for i in _as_list(ids)]

    def category_names(self) -> Dict[int, str]:
        return {cat_id: cat.get("name", str(cat_id)) for cat_id, cat in self.cats.items()}

    def image_size(self, img_id: int) -> tuple:
        """(height, width) of an image."""
        img = self.imgs.get(img_id)
        if img is None or "height" not in img or "width" not in img:
            raise PreconditionError(f"image {img_id} has no height/width metadata")
        return int(img["height"]), int(img["width"])

    def with_annotations(self, annotations: List[Dict[str, Any]]) -> "AnnotationIndex":
        """New index sharing images and categories but holding other annotations."""
        dataset = {k: v for k, v in self.dataset.items() if k != "annotations"}
        dataset["annotations"] = annotations
        return AnnotationIndex(dataset)

    def load_results(self, results: Union[str, Path, List[Dict[str, Any]]]) -> "AnnotationIndex":
        """
        Load detector results against this ground-truth index.

        Every result receives an id (1..N), ``iscrowd = 0`` and the area and
        box derived from its shape:
        - bbox results: area = w * h
        - segmentation results: mask area, box from the mask
        - keypoint results: extent of the keypoints

        Args:
            results: Path to a JSON list or the list itself

        Returns:
            AnnotationIndex holding the detections
        """
        if isinstance(results, (str, Path)):
            with open(results) as f:
                anns = json.load(f)
        else:
            anns = copy.deepcopy(list(results))
        if not isinstance(anns, list):
            raise PreconditionError("results must be a list of annotations")

        dataset = {
            "images": list(self.dataset["images"]),
            "categories": copy.deepcopy(self.dataset["categories"]),
            "annotations": anns,
        }
        if not anns:
            return AnnotationIndex(dataset)

        unknown = {ann["image_id"] for ann in anns} - set(self.imgs)
        if unknown:
            raise PreconditionError(f"results refer to {len(unknown)} image(s) not in the ground truth: {sorted(unknown)[:5]}")

        for i, ann in enumerate(anns):
            if "score" not in ann:
                raise PreconditionError(f"result {i} has no 'score'")
            ann["id"] = i + 1
            ann["iscrowd"] = 0
            if ann.get("segmentation") is not None:
                height, width = self.image_size(ann["image_id"])
                try:
                    ann["segmentation"] = to_rle(ann["segmentation"], height, width)
                except PreconditionError as e:
                    raise PreconditionError(f"result {i}: {e}") from e
                ann["area"] = rle_area(ann["segmentation"])
                if "bbox" not in ann:
                    ann["bbox"] = rle_to_bbox(ann["segmentation"])
            elif ann.get("bbox") is not None:
                if len(ann["bbox"]) != 4:
                    raise PreconditionError(f"result {i} has a malformed bbox {ann['bbox']}")
                _, _, w, h = ann["bbox"]
                ann["area"] = float(w * h)
            elif ann.get("keypoints") is not None:
                x, y = np.asarray(ann["keypoints"][0::3]), np.asarray(ann["keypoints"][1::3])
                x0, x1, y0, y1 = np.min(x), np.max(x), np.min(y), np.max(y)
                ann["area"] = float((x1 - x0) * (y1 - y0))
                ann["bbox"] = [float(x0), float(y0), float(x1 - x0), float(y1 - y0)]
            else:
                raise PreconditionError(f"result {i} has no bbox, segmentation or keypoints")

        logger.debug(f"Loaded {len(anns)} results")
        return AnnotationIndex(dataset)
