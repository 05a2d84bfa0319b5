"""
Tests for COCOFormatConverter.
"""

import numpy as np
import pytest

from deteval.data import COCOFormatConverter
from deteval.evaluation import DetectionEvaluator


@pytest.fixture
def class_names():
    """Class names for testing."""
    return {1: "cat", 2: "dog", 3: "bird"}


@pytest.fixture
def sample_predictions():
    return [
        {
            "boxes": np.array([
                [100, 100, 200, 200],  # TP for class 1
                [300, 300, 400, 400],  # TP for class 2
                [500, 500, 600, 600],  # FP for class 3
            ], dtype=np.float32),
            "scores": np.array([0.9, 0.8, 0.7]),
            "labels": np.array([1, 2, 3]),
        }
    ]


@pytest.fixture
def sample_ground_truth():
    return [
        {
            "boxes": np.array([
                [100, 100, 200, 200],
                [300, 300, 400, 400],
            ], dtype=np.float32),
            "labels": np.array([1, 2]),
        }
    ]


class TestCOCOFormatConverter:
    """Tests for batch collection and index creation."""

    def test_categories(self, class_names):
        converter = COCOFormatConverter(class_names)
        assert converter.categories[0] == {"id": 1, "name": "cat"}

    def test_add_batch(self, class_names, sample_predictions, sample_ground_truth):
        converter = COCOFormatConverter(class_names)
        image_ids = converter.add_batch(sample_predictions, sample_ground_truth, image_size=(640, 480))

        assert image_ids == [1]
        assert converter.images == [{"id": 1, "width": 640, "height": 480}]
        assert len(converter.gt_annotations) == 2
        assert len(converter.dt_annotations) == 3

        gt = converter.gt_annotations[0]
        assert gt["bbox"] == [100.0, 100.0, 100.0, 100.0]
        assert gt["area"] == 10000.0
        assert gt["iscrowd"] == 0

    def test_image_ids_continue_across_batches(self, class_names, sample_predictions, sample_ground_truth):
        converter = COCOFormatConverter(class_names)
        converter.add_batch(sample_predictions, sample_ground_truth)
        assert converter.add_batch(sample_predictions, sample_ground_truth) == [2]
        assert [a["id"] for a in converter.gt_annotations] == [1, 2, 3, 4]

    def test_crowd_targets(self, class_names):
        converter = COCOFormatConverter(class_names)
        target = {"boxes": np.array([[0, 0, 10, 10]]), "labels": np.array([1]), "iscrowd": np.array([1])}
        converter.add_batch([{"boxes": np.zeros((0, 4)), "scores": [], "labels": []}], [target])
        assert converter.gt_annotations[0]["iscrowd"] == 1
        assert converter.dt_annotations == []

    def test_indexes(self, class_names, sample_predictions, sample_ground_truth):
        converter = COCOFormatConverter(class_names)
        converter.add_batch(sample_predictions, sample_ground_truth)
        gt = converter.get_gt_index()
        dt = converter.get_dt_index(gt)
        assert gt.get_ann_ids() == [1, 2]
        assert dt.get_ann_ids() == [1, 2, 3]
        assert dt.load_anns(3)[0]["area"] == 10000.0

    def test_evaluate_converted(self, class_names, sample_predictions, sample_ground_truth):
        """Both present classes are found perfectly; the bird class has no ground truth."""
        converter = COCOFormatConverter(class_names)
        converter.add_batch(sample_predictions, sample_ground_truth)
        gt = converter.get_gt_index()
        evaluator = DetectionEvaluator(gt, converter.get_dt_index(gt), iou_type="bbox", verbose=False)
        evaluator.run()
        assert evaluator.results_dict["map"] == pytest.approx(1.0)

    def test_reset(self, class_names, sample_predictions, sample_ground_truth):
        converter = COCOFormatConverter(class_names)
        converter.add_batch(sample_predictions, sample_ground_truth)
        converter.reset()
        assert converter.images == []
        assert converter.gt_annotations == []
        assert converter.add_batch(sample_predictions, sample_ground_truth) == [1]
