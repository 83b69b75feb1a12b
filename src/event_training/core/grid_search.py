# /event-training/src/event_training/core/grid_search.py

"""
GridSearchEngine: Exhaustive Hyperparameter Search with Random Sub-Sampling CV

Expands a per-family default grid (merged with any user-supplied grid) into
concrete hyperparameter combinations and scores every combination with
repeated random train/test splits. Each fold re-fits imputation,
standardisation and normalisation on its own training rows so no held-out
information leaks into the scores.

Key Features:
- Per-family default grids, SVC grid with kernel/option merging
- Accuracy as primary score, macro-F1 as tie-breaker, first-seen wins
- Degenerate folds skipped instead of failing the search
- Seeded random source for reproducible searches
- Reclamation points between folds and combinations

Architecture:
- Combinations produced by itertools.product in grid key order
- Classifiers built through ClassifierFactory for every fold
- Top-10 evaluation summary kept for the artifact
"""

import gc
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from sklearn.model_selection import train_test_split

from .classifier_factory import ClassifierFactory, InsufficientSamples
from .hyperparameter_resolver import (
    ALLOWED_KERNELS,
    DEFAULT_KERNEL,
    clamp,
    coerce_float,
    normalize_boolean,
    resolve_kernel_options,
)
from .metrics_engine import generate_classification_report
from .preprocessing import FoldPreprocessor

MAX_REPORTED_EVALUATIONS = 10


@dataclass
class GridEvaluation:
    """Mean cross-validation scores of one hyperparameter combination."""
    hyperparameters: Dict[str, Any]
    accuracy: float
    macro_f1: float
    scored_folds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hyperparameters": self.hyperparameters,
            "accuracy": self.accuracy,
            "macro_f1": self.macro_f1,
        }


@dataclass
class GridSearchResult:
    """
    Outcome of a grid search run.
    """
    best_hyperparameters: Dict[str, Any]
    best_accuracy: float
    best_macro_f1: float
    evaluations: List[GridEvaluation] = field(default_factory=list)
    search_time: float = 0.0

    @property
    def metrics(self) -> Dict[str, Any]:
        return {
            "evaluations": [evaluation.to_dict() for evaluation in self.evaluations],
            "best_accuracy": self.best_accuracy,
            "best_macro_f1": self.best_macro_f1,
            "best_hyperparameters": self.best_hyperparameters,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "best_hyperparameters": self.best_hyperparameters,
            "metrics": self.metrics,
        }


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value.strip())
        except ValueError:
            return False
        return bool(value.strip())
    return False


def _normalize_grid_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [int(float(item)) for item in value if _is_numeric(item)]
    if isinstance(value, str) and _is_numeric(value):
        number = float(value.strip())
        return int(number) if number.is_integer() and "." not in value and "e" not in value.lower() else number
    return value


def _unique(values: Sequence[Any]) -> List[Any]:
    """Order-preserving de-duplication that tolerates unhashable values."""
    unique: List[Any] = []
    for value in values:
        if not any(value == existing and type(value) is type(existing) for existing in unique):
            unique.append(value)
    return unique


def _merge_numeric(key: str, defaults: Sequence[Any], user_grid: Mapping[str, List[Any]],
                   minimum: float, maximum: float) -> List[float]:
    values = [
        clamp(float(value), minimum, maximum)
        for value in list(defaults) + list(user_grid.get(key, []))
        if _is_numeric(value)
    ]
    if not values:
        return [clamp(coerce_float(defaults[0] if defaults else minimum, minimum), minimum, maximum)]
    return _unique(values)


def _merge_boolean(key: str, defaults: Sequence[Any], user_grid: Mapping[str, List[Any]]) -> List[bool]:
    values = [normalize_boolean(value, True) for value in list(defaults) + list(user_grid.get(key, []))]
    return _unique(values) or [True, False]


def _merge_kernels(hyperparameters: Mapping[str, Any], user_grid: Mapping[str, List[Any]]) -> List[Dict[str, Any]]:
    default_kernel = hyperparameters.get("kernel")
    default_kernel = default_kernel.lower() if isinstance(default_kernel, str) else DEFAULT_KERNEL

    kernels = [default_kernel, "rbf", "linear"]
    kernels.extend(value.lower() for value in user_grid.get("kernel", []) if isinstance(value, str))

    options_by_kernel: Dict[str, List[Dict[str, Any]]] = {}
    for option in user_grid.get("kernel_options", []):
        if not isinstance(option, Mapping):
            continue

        kernel = option.get("kernel", option.get("type", default_kernel))
        kernel = kernel.lower() if isinstance(kernel, str) else default_kernel

        option_set = {key: value for key, value in option.items() if key not in ("kernel", "type")}
        options_by_kernel.setdefault(kernel, []).append(option_set)
        kernels.append(kernel)

    combinations: List[Dict[str, Any]] = []
    seen = set()

    for kernel in _unique(kernels):
        if kernel not in ALLOWED_KERNELS:
            continue

        option_sets = options_by_kernel.get(kernel) or [
            hyperparameters.get("kernel_options") or {} if kernel == default_kernel else {}
        ]

        for option_set in option_sets:
            options = resolve_kernel_options(kernel, option_set)
            key = (kernel, tuple(sorted(options.items())))
            if key in seen:
                continue

            seen.add(key)
            combinations.append({"kernel": kernel, "kernel_options": options})

    if not combinations:
        combinations.append({
            "kernel": default_kernel,
            "kernel_options": resolve_kernel_options(default_kernel, hyperparameters.get("kernel_options")),
        })

    return combinations


def build_svc_grid(hyperparameters: Mapping[str, Any], user_grid: Mapping[str, List[Any]]) -> List[Dict[str, Any]]:
    costs = _merge_numeric("cost", [0.5, 1.0, hyperparameters["cost"]], user_grid, 1e-4, 1000.0)
    tolerances = _merge_numeric("tolerance", [1e-4, hyperparameters["tolerance"], 0.01], user_grid, 1e-6, 0.1)
    cache_sizes = _merge_numeric("cache_size", [50.0, hyperparameters["cache_size"]], user_grid, 1.0, 4096.0)
    shrinking = _merge_boolean("shrinking", [hyperparameters["shrinking"]], user_grid)
    probability = _merge_boolean("probability_estimates", [hyperparameters["probability_estimates"]], user_grid)
    kernels = _merge_kernels(hyperparameters, user_grid)

    return [
        {
            "cost": cost,
            "tolerance": tolerance,
            "cache_size": cache_size,
            "shrinking": shrink,
            "probability_estimates": estimate,
            **kernel,
        }
        for cost, tolerance, cache_size, shrink, estimate, kernel in itertools.product(
            costs, tolerances, cache_sizes, shrinking, probability, kernels
        )
    ]


def build_grid(hyperparameters: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    Expand resolved hyperparameters into the list of combinations to score.

    User grid entries replace the family's entry for the same key after
    being unioned with the default values.
    """
    model_type = hyperparameters["model_type"]
    user_grid = hyperparameters.get("search_grid") or {}

    if model_type == "svc":
        return build_svc_grid(hyperparameters, user_grid)

    if model_type == "knn":
        grid = {"k": [3, 5, max(1, int(hyperparameters["k"]))]}
    elif model_type == "naive_bayes":
        grid = {}
    elif model_type == "decision_tree":
        grid = {
            "max_depth": [3, max(3, int(hyperparameters["max_depth"]))],
            "min_samples_split": [2, max(2, int(hyperparameters["min_samples_split"]))],
        }
    elif model_type == "mlp":
        grid = {
            "hidden_layers": [list(hyperparameters["hidden_layers"]), [8], [16, 8]],
            "learning_rate": [0.05, float(hyperparameters["learning_rate"])],
            "iterations": [300, hyperparameters["iterations"]],
        }
    else:
        grid = {
            "learning_rate": [0.1, hyperparameters["learning_rate"]],
            "iterations": [400, hyperparameters["iterations"]],
            "l2_penalty": [0.0, hyperparameters["l2_penalty"]],
        }

    grid = {key: _unique(values) for key, values in grid.items()}

    for key, values in user_grid.items():
        if not isinstance(values, (list, tuple)) or not values:
            continue
        normalized = [_normalize_grid_value(value) for value in values]
        grid[key] = _unique(list(grid.get(key, [])) + normalized)

    if not grid:
        return [{"iterations": hyperparameters["iterations"]}]

    keys = list(grid.keys())
    return [dict(zip(keys, combination)) for combination in itertools.product(*(grid[key] for key in keys))]


class GridSearchEngine:
    """
    Scores every grid combination with repeated random sub-sampling
    validation and selects the best one.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 classifier_factory: Optional[ClassifierFactory] = None):
        """
        Initialize grid search engine.

        Args:
            config: Search configuration (random_state, gc_fold_interval,
                gc_combination_interval)
            classifier_factory: Factory used to build fold classifiers
        """
        self.config = config or {}
        self.random_state = self.config.get("random_state")
        self.gc_fold_interval = max(1, int(self.config.get("gc_fold_interval", 3)))
        self.gc_combination_interval = max(1, int(self.config.get("gc_combination_interval", 2)))
        self.classifier_factory = classifier_factory or ClassifierFactory(random_state=self.random_state)
        self.logger = logging.getLogger(__name__)

    def search(self, samples, labels, hyperparameters: Mapping[str, Any],
               progress_notifier=None) -> GridSearchResult:
        """
        Run the grid search.

        Args:
            samples: Training feature matrix (rows x features)
            labels: Training labels
            hyperparameters: Resolved hyperparameter set
            progress_notifier: Optional (iteration, total, loss) callback
                forwarded to iterative fold classifiers

        Returns:
            GridSearchResult with the best combination and top evaluations
        """
        start_time = time.time()
        samples = np.asarray(samples, dtype=float)
        labels = np.asarray(labels, dtype=int)

        grid = build_grid(hyperparameters)
        folds = max(1, int(hyperparameters["cv_folds"]))
        test_fraction = clamp(float(hyperparameters["cv_validation_split"]), 0.1, 0.5)
        rng = np.random.default_rng(self.random_state)

        self.logger.info("grid_search.started", extra={
            "model_type": hyperparameters["model_type"],
            "combinations": len(grid),
            "folds": folds,
            "sample_count": int(labels.size)
        })

        evaluations: List[GridEvaluation] = []
        best: Optional[GridEvaluation] = None
        fold_counter = 0

        for index, params in enumerate(grid, start=1):
            accuracies: List[float] = []
            macro_scores: List[float] = []

            for _ in range(folds):
                fold_counter += 1
                scores = self._score_fold(samples, labels, params, hyperparameters,
                                          test_fraction, rng, progress_notifier)
                if scores is not None:
                    accuracies.append(scores[0])
                    macro_scores.append(scores[1])

                if fold_counter % self.gc_fold_interval == 0:
                    gc.collect()

            evaluation = GridEvaluation(
                hyperparameters=params,
                accuracy=float(np.mean(accuracies)) if accuracies else 0.0,
                macro_f1=float(np.mean(macro_scores)) if macro_scores else 0.0,
                scored_folds=len(accuracies)
            )
            evaluations.append(evaluation)

            if best is None or evaluation.accuracy > best.accuracy or (
                    evaluation.accuracy == best.accuracy and evaluation.macro_f1 > best.macro_f1):
                best = evaluation

            self.logger.debug("grid_search.combination_scored", extra={
                "combination": index,
                "combinations": len(grid),
                "accuracy": evaluation.accuracy,
                "macro_f1": evaluation.macro_f1,
                "scored_folds": evaluation.scored_folds
            })

            if index % self.gc_combination_interval == 0:
                gc.collect()

        ranked = sorted(evaluations, key=lambda evaluation: evaluation.accuracy, reverse=True)

        result = GridSearchResult(
            best_hyperparameters=dict(best.hyperparameters),
            best_accuracy=best.accuracy,
            best_macro_f1=best.macro_f1,
            evaluations=ranked[:MAX_REPORTED_EVALUATIONS],
            search_time=time.time() - start_time
        )

        self.logger.info("grid_search.completed", extra={
            "model_type": hyperparameters["model_type"],
            "best_accuracy": result.best_accuracy,
            "best_macro_f1": result.best_macro_f1,
            "best_hyperparameters": result.best_hyperparameters,
            "search_time": result.search_time
        })

        return result

    def _score_fold(self, samples: np.ndarray, labels: np.ndarray,
                    params: Mapping[str, Any], hyperparameters: Mapping[str, Any],
                    test_fraction: float, rng: np.random.Generator,
                    progress_notifier) -> Optional[tuple]:
        """Train and score one random split; None when the fold is unusable."""
        if labels.size < 2:
            return None

        train_x, test_x, train_y, test_y = train_test_split(
            samples, labels,
            test_size=test_fraction,
            shuffle=True,
            random_state=int(rng.integers(0, 2 ** 31 - 1))
        )

        preprocessor = FoldPreprocessor(
            hyperparameters["imputation_strategy"],
            hyperparameters["normalization"]
        )
        train_x = preprocessor.fit_transform(train_x)
        test_x = preprocessor.transform(test_x)

        classifier = self.classifier_factory.create(
            hyperparameters["model_type"], params, hyperparameters, progress_notifier
        )

        try:
            classifier.train(train_x, train_y)
            predictions = classifier.predict(test_x)
        except InsufficientSamples as e:
            self.logger.debug("grid_search.fold_skipped", extra={
                "reason": str(e),
                "train_rows": int(train_y.size),
                "test_rows": int(test_y.size)
            })
            return None

        report = generate_classification_report(test_y, predictions)
        return report.accuracy, report.macro_f1
