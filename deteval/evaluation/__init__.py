from deteval.evaluation.accumulator import accumulate, accumulate_slice, concatenate_records, interpolate_precision
from deteval.evaluation.analysis import ANALYSIS_LABELS, ErrorAnalysis, analyze
from deteval.evaluation.evaluator import DetectionEvaluator
from deteval.evaluation.matcher import evaluate_image, greedy_match
from deteval.evaluation.oks import compute_oks
from deteval.evaluation.records import AccumulatedEval, MatchRecord, SummaryConfig, SummaryStat
from deteval.evaluation.similarity import compute_similarity
from deteval.evaluation.summarizer import default_summary_configs, per_category_summary, summarize

__all__ = [
    "DetectionEvaluator",
    "evaluate_image",
    "greedy_match",
    "accumulate",
    "accumulate_slice",
    "concatenate_records",
    "interpolate_precision",
    "summarize",
    "default_summary_configs",
    "per_category_summary",
    "compute_similarity",
    "compute_oks",
    "analyze",
    "ErrorAnalysis",
    "ANALYSIS_LABELS",
    "MatchRecord",
    "AccumulatedEval",
    "SummaryConfig",
    "SummaryStat",
]
