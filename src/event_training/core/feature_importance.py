# /event-training/src/event_training/core/feature_importance.py

"""
Feature ranking by absolute Pearson correlation with the label.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

DEFAULT_LIMIT = 10


def prettify_feature_name(name: str) -> str:
    """'category_theft' -> 'Category Theft'."""
    words = name.replace("_", " ").replace("-", " ").strip().split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def compute_feature_importances(samples, labels,
                                feature_names: Optional[Sequence[str]] = None,
                                limit: int = DEFAULT_LIMIT) -> List[Dict[str, float]]:
    """
    Rank features by |corr(feature, label)|.

    Sample standard deviations (n - 1) are used; a zero deviation is
    replaced with 1.0 so constant features contribute 0 instead of NaN.

    Returns:
        Up to ``limit`` ``{"name", "contribution"}`` entries, highest first
    """
    samples = np.asarray(samples, dtype=float)
    labels = np.asarray(labels, dtype=float)

    if samples.ndim != 2 or samples.shape[0] == 0 or labels.size == 0:
        return []

    feature_names = list(feature_names or [])
    denominator = max(1, labels.size - 1)

    label_deltas = labels - labels.mean()
    label_std = np.sqrt((label_deltas ** 2).sum() / denominator)
    label_std = label_std if label_std > 0.0 else 1.0

    deltas = samples - samples.mean(axis=0)
    stds = np.sqrt((deltas ** 2).sum(axis=0) / denominator)
    stds = np.where(stds > 0.0, stds, 1.0)
    covariances = (deltas * label_deltas[:, None]).sum(axis=0)
    correlations = covariances / (denominator * stds * label_std)

    importances = []
    for index, correlation in enumerate(correlations):
        name = feature_names[index] if index < len(feature_names) else f"Feature {index + 1}"
        importances.append({
            "name": prettify_feature_name(name),
            "contribution": round(abs(float(correlation)), 4),
        })

    importances.sort(key=lambda entry: entry["contribution"], reverse=True)
    return importances[:limit]
