"""
Evaluation Configuration Dataclasses.

EvalParams is an immutable snapshot: one evaluation pass reads exactly one
instance. Repeated passes (e.g. error analysis) derive new snapshots with
EvalParams.replace() instead of mutating a shared object.
"""

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np
from omegaconf import OmegaConf

from deteval.errors import ConfigurationError


IOU_TYPES = ("segm", "bbox", "keypoints")

# Category id used for every annotation when use_cats is disabled
ANY_CATEGORY = -1

# Area bound standing in for "no upper limit" (1e5 ** 2)
MAX_AREA = 1e10

# Per-keypoint scale constants for the 17-keypoint person skeleton
PERSON_KPT_OKS_SIGMAS = tuple(
    s / 10.0
    for s in (0.26, 0.25, 0.25, 0.35, 0.35, 0.79, 0.79, 0.72, 0.72,
              0.62, 0.62, 1.07, 1.07, 0.87, 0.87, 0.89, 0.89)
)

DEFAULT_IOU_THRESHOLDS = tuple(float(t) for t in np.round(np.linspace(0.5, 0.95, 10), 2))
DEFAULT_REC_THRESHOLDS = tuple(float(r) for r in np.round(np.linspace(0.0, 1.0, 101), 2))

# Size buckets per iou type: (labels, ranges, max detections)
_AREA_DEFAULTS: Dict[str, Tuple[Tuple[str, ...], Tuple[Tuple[float, float], ...], Tuple[int, ...]]] = {
    "bbox": (
        ("all", "small", "medium", "large"),
        ((0.0, MAX_AREA), (0.0, 32.0 ** 2), (32.0 ** 2, 96.0 ** 2), (96.0 ** 2, MAX_AREA)),
        (1, 10, 100),
    ),
    "keypoints": (
        ("all", "medium", "large"),
        ((0.0, MAX_AREA), (32.0 ** 2, 96.0 ** 2), (96.0 ** 2, MAX_AREA)),
        (20,),
    ),
}
_AREA_DEFAULTS["segm"] = _AREA_DEFAULTS["bbox"]


def _as_tuple(values: Iterable[Any], cast) -> tuple:
    return tuple(cast(v) for v in values)


@dataclass(frozen=True)
class EvalParams:
    """
    Parameters of one evaluation pass.

    Attributes:
        img_ids: Image ids to evaluate
        cat_ids: Category ids to evaluate
        iou_thresholds: Similarity thresholds (T)
        rec_thresholds: Recall grid used for interpolation (R)
        area_ranges: (min, max) object area per size bucket (A)
        area_labels: Name of each size bucket
        max_detections: Per-image detection caps (M)
        iou_type: One of "segm", "bbox", "keypoints"
        use_cats: If False, category labels are ignored (proposal scoring)
        kpt_oks_sigmas: Per-keypoint OKS constants
    """

    img_ids: Tuple[int, ...] = ()
    cat_ids: Tuple[int, ...] = ()
    iou_thresholds: Tuple[float, ...] = DEFAULT_IOU_THRESHOLDS
    rec_thresholds: Tuple[float, ...] = DEFAULT_REC_THRESHOLDS
    area_ranges: Tuple[Tuple[float, float], ...] = _AREA_DEFAULTS["segm"][1]
    area_labels: Tuple[str, ...] = _AREA_DEFAULTS["segm"][0]
    max_detections: Tuple[int, ...] = _AREA_DEFAULTS["segm"][2]
    iou_type: str = "segm"
    use_cats: bool = True
    kpt_oks_sigmas: Tuple[float, ...] = PERSON_KPT_OKS_SIGMAS

    def __post_init__(self):
        # Coerce list-like inputs (YAML, numpy) into hashable tuples
        set_ = object.__setattr__
        set_(self, "img_ids", _as_tuple(self.img_ids, int))
        set_(self, "cat_ids", _as_tuple(self.cat_ids, int))
        set_(self, "iou_thresholds", _as_tuple(self.iou_thresholds, float))
        set_(self, "rec_thresholds", _as_tuple(self.rec_thresholds, float))
        set_(self, "area_labels", _as_tuple(self.area_labels, str))
        set_(self, "max_detections", _as_tuple(self.max_detections, int))
        set_(self, "kpt_oks_sigmas", _as_tuple(self.kpt_oks_sigmas, float))
        set_(self, "use_cats", bool(self.use_cats))
        try:
            ranges = tuple((float(lo), float(hi)) for lo, hi in self.area_ranges)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"area_ranges must be (min, max) pairs: {e}") from e
        set_(self, "area_ranges", ranges)
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError if any field is malformed."""
        if self.iou_type not in IOU_TYPES:
            raise ConfigurationError(f"unknown iou_type: {self.iou_type!r} (expected one of {IOU_TYPES})")

        for name in ("iou_thresholds", "rec_thresholds"):
            values = np.asarray(getattr(self, name), dtype=np.float64)
            if values.size == 0:
                raise ConfigurationError(f"{name} must not be empty")
            if np.any(values < 0) or np.any(values > 1) or np.any(~np.isfinite(values)):
                raise ConfigurationError(f"{name} must lie in [0, 1], got {values.tolist()}")
        if np.any(np.diff(self.rec_thresholds) < 0):
            raise ConfigurationError("rec_thresholds must be non-decreasing")
        # Order is free (the error analysis runs 0.75, 0.5, 0.1); repeats are not
        for name in ("iou_thresholds", "area_labels", "max_detections"):
            values = getattr(self, name)
            if len(set(values)) != len(values):
                raise ConfigurationError(f"{name} must not contain duplicates, got {list(values)}")

        if not self.area_ranges:
            raise ConfigurationError("area_ranges must not be empty")
        for lo, hi in self.area_ranges:
            if lo < 0 or hi < lo:
                raise ConfigurationError(f"malformed area range ({lo}, {hi})")
        if len(self.area_labels) != len(self.area_ranges):
            raise ConfigurationError(
                f"{len(self.area_labels)} area_labels given for {len(self.area_ranges)} area_ranges"
            )

        if not self.max_detections or any(m <= 0 for m in self.max_detections):
            raise ConfigurationError(f"max_detections must be positive, got {list(self.max_detections)}")

        if self.iou_type == "keypoints" and not self.kpt_oks_sigmas:
            raise ConfigurationError("kpt_oks_sigmas must not be empty for keypoints evaluation")

    @classmethod
    def for_iou_type(cls, iou_type: str = "segm", **overrides) -> "EvalParams":
        """
        Create parameters with the defaults of the given iou type.

        Args:
            iou_type: "segm", "bbox" or "keypoints"
            **overrides: Any EvalParams field

        Returns:
            Validated EvalParams snapshot
        """
        if iou_type not in _AREA_DEFAULTS:
            raise ConfigurationError(f"unknown iou_type: {iou_type!r} (expected one of {IOU_TYPES})")
        labels, ranges, max_dets = _AREA_DEFAULTS[iou_type]
        values = dict(area_labels=labels, area_ranges=ranges, max_detections=max_dets)
        values.update(overrides)
        return cls(iou_type=iou_type, **values)

    def replace(self, **changes) -> "EvalParams":
        """Return a new snapshot with the given fields changed."""
        return dataclasses.replace(self, **changes)

    def normalized(self) -> "EvalParams":
        """Snapshot with unique sorted ids; category axis collapsed if use_cats is off."""
        cat_ids = sorted(set(self.cat_ids)) if self.use_cats else [ANY_CATEGORY]
        return self.replace(img_ids=sorted(set(self.img_ids)), cat_ids=cat_ids)

    @property
    def counts(self) -> Tuple[int, int, int, int, int]:
        """Tensor dimensions (T, R, K, A, M)."""
        return (
            len(self.iou_thresholds),
            len(self.rec_thresholds),
            len(self.cat_ids),
            len(self.area_ranges),
            len(self.max_detections),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["area_ranges"] = [list(r) for r in self.area_ranges]
        return {k: list(v) if isinstance(v, tuple) else v for k, v in data.items()}


def load_params(
    path: Optional[Union[str, Path]] = None,
    iou_type: Optional[str] = None,
    **overrides,
) -> EvalParams:
    """
    Load evaluation parameters from a YAML file.

    The file is merged over the defaults of its iou type, so it only needs
    to list the fields it changes.

    Args:
        path: Optional YAML file with EvalParams fields
        iou_type: iou type, overriding the one in the file
        **overrides: Field values applied last

    Returns:
        Validated EvalParams snapshot

    Example:
        params = load_params("eval.yaml", img_ids=[1, 2, 3])
    """
    cfg = OmegaConf.create({})
    if path is not None:
        cfg = OmegaConf.load(path)
    if overrides:
        cfg = OmegaConf.merge(cfg, OmegaConf.create(_plain(overrides)))
    values: Dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]

    unknown = set(values) - {f.name for f in dataclasses.fields(EvalParams)}
    if unknown:
        raise ConfigurationError(f"unknown parameter(s): {sorted(unknown)}")

    iou_type = iou_type or values.pop("iou_type", "segm")
    values.pop("iou_type", None)
    return EvalParams.for_iou_type(iou_type, **values)


def _plain(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert tuples / numpy arrays into lists OmegaConf accepts."""
    plain: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, np.ndarray):
            value = value.tolist()
        if isinstance(value, (tuple, list)):
            value = [list(v) if isinstance(v, (tuple, np.ndarray)) else v for v in value]
        plain[key] = value
    return plain


def area_label_index(params: EvalParams, label: str) -> Optional[int]:
    """Index of a size bucket by label, or None if absent."""
    try:
        return params.area_labels.index(label)
    except ValueError:
        return None


def threshold_index(values: Sequence[float], value: float) -> Optional[int]:
    """Index of a float in a threshold list (tolerant comparison), or None."""
    matches = np.flatnonzero(np.isclose(np.asarray(values, dtype=np.float64), value))
    return int(matches[0]) if matches.size else None
