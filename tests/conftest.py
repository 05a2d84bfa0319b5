"""
Pytest configuration and fixtures for evaluation tests.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from deteval.config import EvalParams
from deteval.data import AnnotationIndex


def pytest_addoption(parser):
    """Add custom pytest options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (skipped by default)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test (skipped by default, use --run-integration to run)")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="Integration tests skipped by default. Use --run-integration to run.")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# =============================================================================
# Annotation builders
# =============================================================================


def make_gt(ann_id, box, image_id=1, category_id=1, iscrowd=0, **extra):
    """Ground-truth box annotation; area defaults to w * h."""
    ann = {
        "id": ann_id,
        "image_id": image_id,
        "category_id": category_id,
        "bbox": list(box),
        "area": float(box[2] * box[3]),
        "iscrowd": iscrowd,
    }
    ann.update(extra)
    return ann


def make_dt(ann_id, box, score, image_id=1, category_id=1, **extra):
    """Detection box annotation as produced by load_results."""
    ann = {
        "id": ann_id,
        "image_id": image_id,
        "category_id": category_id,
        "bbox": list(box),
        "area": float(box[2] * box[3]),
        "score": score,
        "iscrowd": 0,
    }
    ann.update(extra)
    return ann


def make_dataset(annotations, num_images=1, categories=None, size=(640, 640)):
    """COCO dataset dict with square images and the given annotations."""
    if categories is None:
        categories = [{"id": 1, "name": "cat", "supercategory": "animal"}]
    return {
        "images": [{"id": i, "height": size[0], "width": size[1]} for i in range(1, num_images + 1)],
        "annotations": annotations,
        "categories": categories,
    }


@pytest.fixture
def bbox_params():
    """Factory for bbox parameters with overrides."""
    def factory(**overrides):
        return EvalParams.for_iou_type("bbox", **overrides)
    return factory


@pytest.fixture
def simple_gt():
    """Two images, two categories, one ground truth per (image, category)."""
    categories = [
        {"id": 1, "name": "cat", "supercategory": "animal"},
        {"id": 2, "name": "dog", "supercategory": "animal"},
    ]
    annotations = [
        make_gt(1, [10, 10, 100, 100], image_id=1, category_id=1),
        make_gt(2, [200, 200, 50, 50], image_id=1, category_id=2),
        make_gt(3, [10, 10, 20, 20], image_id=2, category_id=1),
        make_gt(4, [300, 300, 120, 80], image_id=2, category_id=2),
    ]
    return AnnotationIndex(make_dataset(annotations, num_images=2, categories=categories))


@pytest.fixture
def perfect_results():
    """Results reproducing every box of simple_gt."""
    return [
        {"image_id": 1, "category_id": 1, "bbox": [10, 10, 100, 100], "score": 0.9},
        {"image_id": 1, "category_id": 2, "bbox": [200, 200, 50, 50], "score": 0.8},
        {"image_id": 2, "category_id": 1, "bbox": [10, 10, 20, 20], "score": 0.7},
        {"image_id": 2, "category_id": 2, "bbox": [300, 300, 120, 80], "score": 0.6},
    ]
