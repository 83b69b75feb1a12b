# /event-training/src/event_training/core/preprocessing.py

"""
Sample preprocessing shared by cross-validation folds and final training.

Three steps run in a fixed order: missing-value imputation, per-feature
standardisation with training statistics, and per-row normalisation. Each
step is fitted on training rows only and then applied to held-out rows.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import Normalizer, scale

STD_FLOOR = 1e-12

SKLEARN_NORMS = {"l1": "l1", "l2": "l2", "max": "max"}


class FeatureImputer:
    """
    Missing-value imputer with an explicit statistics accessor.
    """

    def __init__(self, strategy: str = "mean", fill_value: float = 0.0):
        self.strategy = strategy
        self.fill_value = fill_value
        self._imputer = SimpleImputer(
            missing_values=np.nan,
            strategy=strategy,
            fill_value=fill_value if strategy == "constant" else None,
            keep_empty_features=True
        )
        self._fitted = False

    def fit(self, samples: np.ndarray) -> "FeatureImputer":
        samples = np.asarray(samples, dtype=float)
        if samples.size:
            self._imputer.fit(samples)
            self._fitted = True
        return self

    def transform(self, samples: np.ndarray) -> np.ndarray:
        samples = np.asarray(samples, dtype=float)
        if not self._fitted or not samples.size:
            return samples
        return self._imputer.transform(samples)

    @property
    def statistics(self) -> List[float]:
        """Per-feature fill values learned during fit."""
        if not self._fitted:
            return []
        return [float(value) for value in self._imputer.statistics_]


class RowNormalizer:
    """
    Rescales each sample to a fixed norm (l1, l2, max) or to zero mean and
    unit variance across its own features (std).
    """

    def __init__(self, norm: str = "l2"):
        self.norm = norm

    def transform(self, samples: np.ndarray) -> np.ndarray:
        samples = np.asarray(samples, dtype=float)
        if not samples.size:
            return samples

        if self.norm == "std":
            if samples.shape[1] < 2:
                return samples
            return scale(samples, axis=1)

        return Normalizer(norm=SKLEARN_NORMS.get(self.norm, "l2")).fit_transform(samples)


def compute_statistics(samples: np.ndarray) -> Dict[str, List[float]]:
    """
    Means and sample standard deviations (n - 1) of each feature column.

    Standard deviations at or below the floor are replaced with 1.0.
    """
    samples = np.asarray(samples, dtype=float)
    if not samples.size:
        return {"means": [], "std_devs": []}

    means = samples.mean(axis=0)
    ddof = 1 if samples.shape[0] > 1 else 0
    std_devs = samples.std(axis=0, ddof=ddof)
    std_devs = np.where(std_devs > STD_FLOOR, std_devs, 1.0)

    return {"means": means.tolist(), "std_devs": std_devs.tolist()}


def apply_standardization(samples: np.ndarray,
                          means: Sequence[float],
                          std_devs: Sequence[float]) -> np.ndarray:
    samples = np.asarray(samples, dtype=float)
    if not samples.size:
        return samples

    means = np.asarray(means, dtype=float)
    std_devs = np.asarray(std_devs, dtype=float)
    std_devs = np.where(std_devs > STD_FLOOR, std_devs, 1.0)
    return (samples - means) / std_devs


class FoldPreprocessor:
    """
    Impute, standardise and normalise in one fitted unit.

    ``means``/``std_devs`` may be supplied (final training uses the streaming
    split statistics); otherwise they are computed from the imputed
    training rows.
    """

    def __init__(self, imputation_strategy: str, normalization: str,
                 means: Optional[Sequence[float]] = None,
                 std_devs: Optional[Sequence[float]] = None):
        self.imputer = FeatureImputer(imputation_strategy)
        self.normalizer = RowNormalizer(normalization)
        self.means = list(means) if means is not None else None
        self.std_devs = list(std_devs) if std_devs is not None else None
        self.logger = logging.getLogger(__name__)

    def fit_transform(self, samples: np.ndarray) -> np.ndarray:
        samples = self.imputer.fit(samples).transform(samples)

        if self.means is None or self.std_devs is None:
            statistics = compute_statistics(samples)
            self.means = statistics["means"]
            self.std_devs = statistics["std_devs"]

        samples = apply_standardization(samples, self.means, self.std_devs)
        return self.normalizer.transform(samples)

    def transform(self, samples: np.ndarray) -> np.ndarray:
        samples = self.imputer.transform(samples)
        if self.means is not None and self.std_devs is not None:
            samples = apply_standardization(samples, self.means, self.std_devs)
        return self.normalizer.transform(samples)
