# /event-training/src/event_training/utils/resource_manager.py

"""
Resource Management for the Training Pipeline

Memory accounting for a single synchronous training run: process RSS
snapshots, reclamation points between pipeline phases and a memory guard
that shrinks the training set when the process grows past a threshold.

Key Features:
- Process memory snapshots via psutil
- Reclamation handles that force garbage collection on exit
- Threshold-based training set downsampling (stratified when possible)

Architecture:
- Resource handles with automatic cleanup on context exit
- Guard decisions are logged, never raised
"""

import gc
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import numpy as np
import psutil
from sklearn.model_selection import train_test_split

DEFAULT_MEMORY_THRESHOLD_MB = 500.0
DEFAULT_DOWNSAMPLE_RATE = 0.5


def current_rss_mb() -> float:
    """Resident set size of this process in MB."""
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except psutil.Error:
        return 0.0


class ResourceHandle(ABC):
    """
    Abstract base class for resource handles with automatic cleanup.
    """

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        self.acquired_at = datetime.now()
        self.is_active = True
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def cleanup(self) -> None:
        """Release and cleanup the resource."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        self.is_active = False


class MemoryResourceHandle(ResourceHandle):
    """
    Reclamation point around one pipeline phase.

    Garbage collection runs when the handle is cleaned up and the memory
    delta of the phase is logged.
    """

    def __init__(self, phase: str):
        super().__init__(f"memory_{phase}")
        self.phase = phase
        self.initial_usage = current_rss_mb()

    def cleanup(self) -> None:
        """Reclaim memory released during the phase."""
        if not self.is_active:
            return

        collected = gc.collect()
        current_usage = current_rss_mb()

        self.logger.debug("memory_resource.reclaimed", extra={
            'phase': self.phase,
            'collected_objects': collected,
            'initial_usage_mb': self.initial_usage,
            'current_usage_mb': current_usage,
            'usage_delta_mb': current_usage - self.initial_usage,
            'duration_seconds': (datetime.now() - self.acquired_at).total_seconds()
        })

        self.is_active = False


class MemoryGuard:
    """
    Downsamples the training set when process memory exceeds a threshold.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize memory guard.

        Args:
            config: Resource configuration (memory_threshold_mb,
                downsample_rate, memory_monitoring_enabled, random_state)
        """
        self.config = config or {}
        self.threshold_mb = float(self.config.get('memory_threshold_mb', DEFAULT_MEMORY_THRESHOLD_MB))
        self.downsample_rate = float(self.config.get('downsample_rate', DEFAULT_DOWNSAMPLE_RATE))
        self.enabled = bool(self.config.get('memory_monitoring_enabled', True))
        self.random_state = self.config.get('random_state')
        self.logger = logging.getLogger(__name__)

    def exceeds_threshold(self) -> bool:
        if not self.enabled:
            return False
        return current_rss_mb() > self.threshold_mb

    def downsample(self, samples, labels) -> Tuple[np.ndarray, np.ndarray]:
        """
        Sample ceil(rate * N) rows without replacement.

        Sampling is stratified by label when every class has at least two
        rows; otherwise rows are drawn uniformly.
        """
        samples = np.asarray(samples, dtype=float)
        labels = np.asarray(labels, dtype=int)
        total = labels.size

        keep = int(math.ceil(self.downsample_rate * total))
        if total == 0 or keep >= total:
            return samples, labels
        keep = max(1, keep)

        _, counts = np.unique(labels, return_counts=True)
        stratified = (counts.size > 1 and counts.min() >= 2
                      and keep >= counts.size and total - keep >= counts.size)
        stratify = labels if stratified else None

        kept_x, _, kept_y, _ = train_test_split(
            samples, labels,
            train_size=keep,
            shuffle=True,
            stratify=stratify,
            random_state=self.random_state
        )
        return kept_x, kept_y

    def apply(self, samples, labels) -> Tuple[np.ndarray, np.ndarray]:
        """Downsample only when the threshold is exceeded."""
        if not self.exceeds_threshold():
            return np.asarray(samples, dtype=float), np.asarray(labels, dtype=int)

        kept_x, kept_y = self.downsample(samples, labels)

        self.logger.warning("memory_guard.downsampled", extra={
            'memory_mb': current_rss_mb(),
            'threshold_mb': self.threshold_mb,
            'original_rows': int(np.asarray(labels).size),
            'kept_rows': int(kept_y.size)
        })

        return kept_x, kept_y
