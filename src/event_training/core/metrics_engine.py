# /event-training/src/event_training/core/metrics_engine.py

"""
Classification metrics for validation and cross-validation folds.

Produces accuracy, per-class precision/recall/F1/support, macro and
support-weighted aggregates, a confusion matrix keyed by the sorted distinct
labels, and a rank-based AUC for the binary case. Formatted output is
rounded to four decimals so repeated runs serialise identically.
"""

import math
from dataclasses import dataclass, field
from numbers import Number
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    precision_recall_fscore_support,
    roc_auc_score,
)

DECIMALS = 4
PREFERRED_PROBABILITY_KEYS = (1, "1", True, "true", "yes", "positive")


@dataclass
class ClassMetrics:
    precision: float
    recall: float
    f1: float
    support: int


@dataclass
class ClassificationReport:
    """Raw (unrounded) classification report."""
    labels: List[int]
    matrix: List[List[int]]
    accuracy: float
    per_class: Dict[int, ClassMetrics] = field(default_factory=dict)
    macro: Dict[str, float] = field(default_factory=dict)
    weighted: Dict[str, float] = field(default_factory=dict)

    @property
    def macro_f1(self) -> float:
        return self.macro.get("f1", 0.0)

    @property
    def total(self) -> int:
        return int(sum(sum(row) for row in self.matrix))


def generate_classification_report(expected: Sequence[int], predicted: Sequence[int]) -> ClassificationReport:
    """
    Build a classification report from expected and predicted labels.

    The label set is the sorted union of both sequences; matrix rows are
    actual labels and columns are predicted labels.
    """
    expected = [int(label) for label in expected]
    predicted = [int(label) for label in predicted]

    if len(expected) != len(predicted):
        raise ValueError(f"Label counts differ: {len(expected)} != {len(predicted)}")

    labels = sorted(set(expected) | set(predicted))
    if not labels:
        return ClassificationReport(
            labels=[], matrix=[], accuracy=0.0,
            macro={"precision": 0.0, "recall": 0.0, "f1": 0.0},
            weighted={"precision": 0.0, "recall": 0.0, "f1": 0.0}
        )

    matrix = confusion_matrix(expected, predicted, labels=labels)
    precision, recall, f1, support = precision_recall_fscore_support(
        expected, predicted, labels=labels, average=None, zero_division=0
    )
    total = int(support.sum())

    per_class: Dict[int, ClassMetrics] = {
        label: ClassMetrics(
            precision=float(precision[index]),
            recall=float(recall[index]),
            f1=float(f1[index]),
            support=int(support[index])
        )
        for index, label in enumerate(labels)
    }

    non_empty = [metrics for metrics in per_class.values() if metrics.support > 0] or list(per_class.values())
    macro = {
        "precision": sum(m.precision for m in non_empty) / len(non_empty),
        "recall": sum(m.recall for m in non_empty) / len(non_empty),
        "f1": sum(m.f1 for m in non_empty) / len(non_empty),
    }

    if total > 0:
        weighted = {
            "precision": sum(m.precision * m.support for m in per_class.values()) / total,
            "recall": sum(m.recall * m.support for m in per_class.values()) / total,
            "f1": sum(m.f1 * m.support for m in per_class.values()) / total,
        }
        accuracy = float(accuracy_score(expected, predicted))
    else:
        weighted = {"precision": 0.0, "recall": 0.0, "f1": 0.0}
        accuracy = 0.0

    return ClassificationReport(
        labels=labels,
        matrix=matrix.astype(int).tolist(),
        accuracy=accuracy,
        per_class=per_class,
        macro=macro,
        weighted=weighted
    )


def compute_auc(labels: Sequence[int], scores: Sequence[float]) -> float:
    """
    Pairwise-rank AUC: (wins + 0.5 * ties) / (|pos| * |neg|).

    Positives are rows labelled 1. Returns 0.0 when either class is empty.
    """
    labels = np.asarray([int(label) for label in labels])
    scores = np.asarray(
        [float(scores[index]) if index < len(scores) else 0.0 for index in range(len(labels))],
        dtype=float
    )

    positives = labels == 1
    if positives.all() or not positives.any():
        return 0.0

    # Mann-Whitney statistic with tied ranks; equal to the exhaustive pairwise count
    return round(float(roc_auc_score(positives.astype(int), scores)), DECIMALS)


def extract_probability_score(probability: Any) -> float:
    """Positive-class score from a number or a class->probability mapping."""
    if isinstance(probability, bool):
        return 1.0 if probability else 0.0

    if isinstance(probability, Number):
        return _clamp_probability(float(probability))

    if isinstance(probability, str):
        try:
            return _clamp_probability(float(probability))
        except ValueError:
            return 0.0

    if isinstance(probability, Mapping):
        for key in PREFERRED_PROBABILITY_KEYS:
            if key in probability:
                return extract_probability_score(probability[key])

        scores = [extract_probability_score(value) for value in probability.values()]
        return max(scores) if scores else 0.0

    return 0.0


def extract_probability_scores(probabilities: Iterable[Any]) -> List[float]:
    return [extract_probability_score(probability) for probability in probabilities]


def _clamp_probability(value: float) -> float:
    if math.isnan(value) or math.isinf(value):
        return 1.0 if value > 0 else 0.0
    return max(0.0, min(1.0, value))


def format_metrics(report: ClassificationReport,
                   probabilities: Sequence[float],
                   actual: Sequence[int]) -> Dict[str, Any]:
    """Rounded, JSON-ready metrics dictionary for artifacts and run records."""
    per_class = {
        str(label): {
            "precision": round(metrics.precision, DECIMALS),
            "recall": round(metrics.recall, DECIMALS),
            "f1": round(metrics.f1, DECIMALS),
            "support": metrics.support,
        }
        for label, metrics in report.per_class.items()
    }

    return {
        "accuracy": round(report.accuracy, DECIMALS),
        "macro_precision": round(report.macro["precision"], DECIMALS),
        "macro_recall": round(report.macro["recall"], DECIMALS),
        "macro_f1": round(report.macro["f1"], DECIMALS),
        "weighted_precision": round(report.weighted["precision"], DECIMALS),
        "weighted_recall": round(report.weighted["recall"], DECIMALS),
        "weighted_f1": round(report.weighted["f1"], DECIMALS),
        "per_class": per_class,
        "confusion_matrix": {
            "labels": list(report.labels),
            "matrix": [list(row) for row in report.matrix],
        },
        "auc": compute_auc(actual, probabilities),
    }
