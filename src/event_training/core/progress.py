# /event-training/src/event_training/core/progress.py

"""
Progress reporting for training runs.

A ProgressNotifier wraps an optional ``(percent, message)`` sink and keeps
the reported percentage monotonic across phases. Iterative classifiers use
an iteration notifier that maps ``(iteration, total, loss)`` into the
55-75% band.
"""

import logging
from typing import Callable, Optional

ProgressCallback = Callable[[float, str], None]
IterationCallback = Callable[..., None]

ITERATION_BAND_START = 55.0
ITERATION_BAND_WIDTH = 20.0


class TrainingPhase:
    """Fixed progress checkpoints of the training pipeline."""
    PREPARING = (5.0, "Preparing training run")
    SCHEMA_ANALYSIS = (10.0, "Analyzing dataset schema")
    BUFFERING = (30.0, "Buffered dataset rows for streaming")
    SPLITTING = (40.0, "Computed training splits and statistics")
    GRID_SEARCH = (50.0, "Running cross validation grid search")
    FINAL_TRAINING = (62.0, "Training selected algorithm")
    EVALUATION = (75.0, "Evaluating validation dataset")
    FEATURE_IMPORTANCE = (82.0, "Computing feature importances")
    PERSISTENCE = (87.0, "Persisting trained model")
    METADATA = (92.0, "Recording training metadata")
    FINALIZING = (95.0, "Finalizing training results")


class ProgressNotifier:
    """
    Synchronous progress observer.

    Absence of a callback is legal; every notification is then a no-op.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.last_percent = 0.0
        self.logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return self.callback is not None

    def notify(self, percent: float, message: str) -> None:
        percent = max(0.0, min(100.0, float(percent)))
        percent = max(percent, self.last_percent)
        self.last_percent = percent

        self.logger.debug("progress.reported", extra={
            "progress_percent": percent,
            "progress_message": message
        })

        if self.callback is not None:
            self.callback(percent, message)

    def phase(self, checkpoint) -> None:
        """Report one of the TrainingPhase checkpoints."""
        percent, message = checkpoint
        self.notify(percent, message)

    def iteration_notifier(self, total_iterations: int) -> Optional[IterationCallback]:
        """
        Build an ``(iteration, total, loss=None)`` callback for iterative
        classifiers, or None when no sink is attached.
        """
        if self.callback is None:
            return None

        fallback_total = max(1, int(total_iterations))

        def notify_iteration(iteration: int, total: int, loss: Optional[float] = None) -> None:
            total = total if total > 0 else fallback_total
            ratio = min(1.0, max(0.0, iteration / total))
            message = f"Training model ({iteration} of {total} iterations)"
            if loss is not None:
                message += f" | loss: {loss:.6f}"
            self.notify(ITERATION_BAND_START + ITERATION_BAND_WIDTH * ratio, message)

        return notify_iteration
