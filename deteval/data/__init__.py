from deteval.data.converter import COCOFormatConverter
from deteval.data.dataset import AnnotationIndex

__all__ = [
    "AnnotationIndex",
    "COCOFormatConverter",
]
