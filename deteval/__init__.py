"""
deteval - COCO-protocol evaluation of detections, segmentations and keypoints.

Usage:
    from deteval import AnnotationIndex, DetectionEvaluator

    gt = AnnotationIndex.from_json("instances_val.json")
    dt = gt.load_results("detections.json")
    evaluator = DetectionEvaluator(gt, dt, iou_type="bbox")
    evaluator.run()
"""

__version__ = "0.1.0"

__all__ = [
    # Data
    "AnnotationIndex",
    "COCOFormatConverter",
    # Config
    "EvalParams",
    "load_params",
    # Evaluation
    "DetectionEvaluator",
    "analyze",
    # Errors
    "ConfigurationError",
    "PreconditionError",
    "SequencingError",
]

_LAZY_ATTRS = {
    # Data
    "AnnotationIndex": ("deteval.data.dataset", "AnnotationIndex"),
    "COCOFormatConverter": ("deteval.data.converter", "COCOFormatConverter"),
    # Config
    "EvalParams": ("deteval.config.config", "EvalParams"),
    "load_params": ("deteval.config.config", "load_params"),
    # Evaluation
    "DetectionEvaluator": ("deteval.evaluation.evaluator", "DetectionEvaluator"),
    "analyze": ("deteval.evaluation.analysis", "analyze"),
    # Errors
    "ConfigurationError": ("deteval.errors", "ConfigurationError"),
    "PreconditionError": ("deteval.errors", "PreconditionError"),
    "SequencingError": ("deteval.errors", "SequencingError"),
}


def __getattr__(name: str):
    if name not in _LAZY_ATTRS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = _LAZY_ATTRS[name]
    from importlib import import_module

    value = getattr(import_module(module_name), attr_name)
    globals()[name] = value
    return value


def __dir__():
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
