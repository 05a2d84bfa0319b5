from deteval.config.config import (
    ANY_CATEGORY,
    DEFAULT_IOU_THRESHOLDS,
    DEFAULT_REC_THRESHOLDS,
    IOU_TYPES,
    MAX_AREA,
    PERSON_KPT_OKS_SIGMAS,
    EvalParams,
    area_label_index,
    load_params,
    threshold_index,
)

__all__ = [
    "EvalParams",
    "load_params",
    "area_label_index",
    "threshold_index",
    "ANY_CATEGORY",
    "DEFAULT_IOU_THRESHOLDS",
    "DEFAULT_REC_THRESHOLDS",
    "IOU_TYPES",
    "MAX_AREA",
    "PERSON_KPT_OKS_SIGMAS",
]
