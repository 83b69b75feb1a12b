# /event-training/src/event_training/core/dataset_splitter.py

"""
Single-pass train/validation split with streaming feature statistics.

The first ``N - round(N * validation_split)`` buffered rows form the
training split and the rest the validation split. Per-feature means and
population standard deviations of the training split are accumulated with
Welford's algorithm while rows stream past, so the buffer is read once.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

import numpy as np

from .errors import DatasetError
from .hyperparameter_resolver import round_half_away_from_zero
from .row_preprocessor import DatasetEmpty, FeatureBuffer

STD_FLOOR = 1e-12


@dataclass
class RunningStatistics:
    """Welford accumulator over fixed-width feature vectors."""
    count: int = 0
    means: np.ndarray = field(default_factory=lambda: np.zeros(0))
    m2: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def update(self, features: Sequence[float]) -> None:
        values = np.asarray(features, dtype=float)

        if self.count == 0:
            self.means = values.copy()
            self.m2 = np.zeros_like(values)
            self.count = 1
            return

        self.count += 1
        delta = values - self.means
        self.means = self.means + delta / self.count
        self.m2 = self.m2 + delta * (values - self.means)

    @property
    def variances(self) -> np.ndarray:
        return self.m2 / max(1, self.count)

    @property
    def std_devs(self) -> List[float]:
        std = np.sqrt(np.maximum(self.variances, 0.0))
        return np.where(std > STD_FLOOR, std, 1.0).tolist()


@dataclass
class SplitResult:
    train_buffer: FeatureBuffer
    validation_buffer: FeatureBuffer
    means: List[float]
    std_devs: List[float]
    train_seen: int


class DatasetSplitter:
    """
    Partitions a row buffer into training and validation FeatureBuffers.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def split(self, buffer: Iterable, validation_split: float) -> SplitResult:
        """
        Split ``buffer`` preserving row order.

        When the validation share rounds to zero rows every row is placed
        in both splits.

        Raises:
            DatasetEmpty: If the buffer holds no rows
            InsufficientTrainingRows: If the training split ends up empty
        """
        total = len(buffer)
        if total == 0:
            raise DatasetEmpty("Dataset file does not contain any rows.", row_count=0)

        validation_count = round_half_away_from_zero(total * validation_split)
        validation_count = max(0, min(validation_count, max(0, total - 1)))
        train_count = total - validation_count

        if train_count < 1:
            train_count = total
            validation_count = 0

        clone_for_validation = validation_count == 0

        train_buffer = FeatureBuffer()
        validation_buffer = FeatureBuffer()
        statistics = RunningStatistics()

        for row_index, row in enumerate(buffer):
            features, label = row[0], row[1]
            in_training = row_index < train_count or clone_for_validation

            if in_training:
                train_buffer.append(features, label)
                statistics.update(features)

            if clone_for_validation or not in_training:
                validation_buffer.append(features, label)

        if statistics.count == 0:
            raise InsufficientTrainingRows("Training split did not produce any rows.", row_count=total)

        self.logger.info("splitter.split_completed", extra={
            "total_rows": total,
            "train_rows": len(train_buffer),
            "validation_rows": len(validation_buffer),
            "cloned_validation": clone_for_validation
        })

        return SplitResult(
            train_buffer=train_buffer,
            validation_buffer=validation_buffer,
            means=statistics.means.tolist(),
            std_devs=statistics.std_devs,
            train_seen=statistics.count
        )


# Custom exceptions
class InsufficientTrainingRows(DatasetError):
    """Raised when the training split contains no rows."""
    pass
