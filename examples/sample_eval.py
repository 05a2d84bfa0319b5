"""
Sample evaluation script.

Usage:
    python examples/sample_eval.py --gt instances_val.json --dt detections.json --iou-type bbox
    python examples/sample_eval.py --gt person_keypoints_val.json --dt kpts.json --iou-type keypoints
    python examples/sample_eval.py --gt instances_val.json --dt detections.json --config examples/eval_bbox.yaml --analyze
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from deteval.config import load_params
from deteval.data import AnnotationIndex
from deteval.evaluation import DetectionEvaluator, analyze
from deteval.utils.eval_dashboard import EvalDashboard


def main():
    parser = argparse.ArgumentParser(description="COCO evaluation")
    parser.add_argument("--gt", type=str, required=True, help="Ground-truth annotation file")
    parser.add_argument("--dt", type=str, required=True, help="Detection results file")
    parser.add_argument("--iou-type", type=str, default=None, help="segm, bbox or keypoints")
    parser.add_argument("--config", type=str, default=None, help="Optional YAML with evaluation parameters")
    parser.add_argument("--workers", type=int, default=0, help="Thread pool size (0 = inline)")
    parser.add_argument("--analyze", action="store_true", help="Also run the error analysis (slow)")
    args = parser.parse_args()

    params = load_params(args.config, iou_type=args.iou_type)
    gt = AnnotationIndex.from_json(args.gt)
    dt = gt.load_results(args.dt)

    evaluator = DetectionEvaluator(gt, dt, params=params, workers=args.workers)
    stats = evaluator.run()

    analysis = analyze(gt, dt, evaluator.params) if args.analyze else None
    EvalDashboard().print(
        stats,
        per_category=evaluator.per_category(),
        analysis=analysis,
        iou_thresholds=evaluator.params.iou_thresholds,
    )


if __name__ == "__main__":
    main()
