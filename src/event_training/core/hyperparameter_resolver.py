# /event-training/src/event_training/core/hyperparameter_resolver.py

"""
HyperparameterResolver: Normalisation and Clamping of User Hyperparameters

Turns a free-form, possibly empty mapping supplied by the caller into a fully
populated hyperparameter set. Every numeric key is clamped to its documented
range, enumerated keys fall back to a default when unrecognised, and the
optional user search grid is cleaned up for the grid search engine.

Key Features:
- Never raises: unparseable values fall back to defaults before clamping
- Per-family defaults for logistic regression, SVC, KNN, naive Bayes,
  decision tree and MLP classifiers
- Kernel option normalisation shared with the grid search and classifier factory
- Alias resolution for normalisation types and imputation strategies
"""

import json
import logging
import math
from typing import Any, Dict, List, Mapping, Optional

ALLOWED_MODEL_TYPES = ("logistic_regression", "svc", "knn", "naive_bayes", "decision_tree", "mlp")
DEFAULT_MODEL_TYPE = "logistic_regression"

ALLOWED_KERNELS = ("linear", "polynomial", "rbf", "sigmoid")
DEFAULT_KERNEL = "rbf"

NORMALIZATION_ALIASES = {
    "l1": "l1",
    "l2": "l2",
    "linf": "max",
    "inf": "max",
    "max": "max",
    "maxnorm": "max",
    "std": "std",
    "zscore": "std",
}
DEFAULT_NORMALIZATION = "l2"

IMPUTATION_ALIASES = {
    "mean": "mean",
    "median": "median",
    "most_frequent": "most_frequent",
    "mostfrequent": "most_frequent",
    "constant": "constant",
}
DEFAULT_IMPUTATION = "mean"

DEFAULT_HIDDEN_LAYERS = [16]

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}

HyperparameterSet = Dict[str, Any]


def round_half_away_from_zero(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def coerce_float(value: Any, default: float) -> float:
    """Float conversion that falls back to ``default`` on bad input."""
    if value is None or isinstance(value, bool):
        return float(default) if value is None else float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return float(default)
    if math.isnan(result):
        return float(default)
    return result


def coerce_int(value: Any, default: int) -> int:
    result = coerce_float(value, default)
    if math.isinf(result):
        return int(default)
    return int(result)


def normalize_boolean(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return default


def resolve_hidden_layers(value: Any) -> List[int]:
    """Hidden layer sizes from a list or a JSON-encoded list."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return list(DEFAULT_HIDDEN_LAYERS)

    if isinstance(value, (list, tuple)) and value:
        try:
            layers = [int(float(size)) for size in value]
        except (TypeError, ValueError):
            return list(DEFAULT_HIDDEN_LAYERS)
        return [max(1, size) for size in layers]

    return list(DEFAULT_HIDDEN_LAYERS)


def resolve_kernel_options(kernel: str, options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Clamp kernel-specific options to safe bounds."""
    options = options if isinstance(options, Mapping) else {}
    kernel = str(kernel).lower()

    if kernel == "polynomial":
        return {
            "degree": int(clamp(coerce_int(options.get("degree"), 3), 1, 10)),
            "gamma": clamp(coerce_float(options.get("gamma"), 1.0), 1e-4, 10.0),
            "coef0": clamp(coerce_float(options.get("coef0"), 0.0), -10.0, 10.0),
        }
    if kernel == "sigmoid":
        return {
            "gamma": clamp(coerce_float(options.get("gamma"), 0.5), 1e-4, 10.0),
            "coef0": clamp(coerce_float(options.get("coef0"), 0.0), -10.0, 10.0),
        }
    if kernel == "rbf":
        return {
            "gamma": clamp(coerce_float(options.get("gamma"), 0.5), 1e-4, 10.0),
        }
    return {}


def normalize_normalization_type(value: Any) -> str:
    if isinstance(value, str):
        return NORMALIZATION_ALIASES.get(value.strip().lower(), DEFAULT_NORMALIZATION)
    return DEFAULT_NORMALIZATION


def normalize_imputation_strategy(value: Any) -> str:
    if isinstance(value, str):
        return IMPUTATION_ALIASES.get(value.strip().lower(), DEFAULT_IMPUTATION)
    return DEFAULT_IMPUTATION


class HyperparameterResolver:
    """
    Resolves raw caller input into a validated hyperparameter set.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def resolve(self, raw: Optional[Mapping[str, Any]] = None) -> HyperparameterSet:
        """
        Resolve and clamp all hyperparameters.

        Args:
            raw: Caller-supplied mapping; may be None or empty

        Returns:
            Fully populated hyperparameter dictionary
        """
        raw = raw if isinstance(raw, Mapping) else {}

        model_type = raw.get("model_type")
        model_type = model_type.strip().lower() if isinstance(model_type, str) else DEFAULT_MODEL_TYPE
        if model_type not in ALLOWED_MODEL_TYPES:
            self.logger.warning("hyperparameters.unknown_model_type", extra={
                "requested": raw.get("model_type"),
                "fallback": DEFAULT_MODEL_TYPE
            })
            model_type = DEFAULT_MODEL_TYPE

        iterations = int(clamp(coerce_int(raw.get("iterations"), 600), 100, 5000))

        kernel = raw.get("kernel")
        kernel = kernel.strip().lower() if isinstance(kernel, str) else DEFAULT_KERNEL
        if kernel not in ALLOWED_KERNELS:
            kernel = DEFAULT_KERNEL

        resolved = {
            "model_type": model_type,
            "learning_rate": clamp(coerce_float(raw.get("learning_rate"), 0.3), 1e-4, 1.0),
            "iterations": iterations,
            "validation_split": clamp(coerce_float(raw.get("validation_split"), 0.2), 0.1, 0.5),
            "l2_penalty": clamp(coerce_float(raw.get("l2_penalty"), 0.01), 0.0, 10.0),
            "log_interval": int(clamp(coerce_int(raw.get("log_interval"), 200), 1, iterations)),
            "normalization": normalize_normalization_type(raw.get("normalization")),
            "imputation_strategy": normalize_imputation_strategy(raw.get("imputation_strategy")),
            # Passthrough only; logistic regularisation reads l2_penalty
            "lambda": clamp(coerce_float(raw.get("lambda"), 1e-4), 0.0, 1.0),
            "cost": clamp(coerce_float(raw.get("cost"), 1.0), 1e-4, 1000.0),
            "tolerance": clamp(coerce_float(raw.get("tolerance"), 1e-3), 1e-6, 0.1),
            "cache_size": clamp(coerce_float(raw.get("cache_size"), 100.0), 1.0, 4096.0),
            "shrinking": normalize_boolean(raw.get("shrinking", True), True),
            "probability_estimates": normalize_boolean(raw.get("probability_estimates", True), True),
            "kernel": kernel,
            "kernel_options": resolve_kernel_options(kernel, raw.get("kernel_options")),
            "k": int(clamp(coerce_int(raw.get("k"), 5), 1, 21)),
            "max_depth": int(clamp(coerce_int(raw.get("max_depth"), 5), 2, 20)),
            "min_samples_split": int(clamp(coerce_int(raw.get("min_samples_split"), 2), 2, 20)),
            "hidden_layers": resolve_hidden_layers(raw.get("hidden_layers", DEFAULT_HIDDEN_LAYERS)),
            "cv_folds": int(clamp(coerce_int(raw.get("cv_folds"), 3), 2, 10)),
            "cv_validation_split": clamp(coerce_float(raw.get("cv_validation_split"), 0.25), 0.1, 0.5),
            "search_grid": self._resolve_grid(
                raw["grid"] if raw.get("grid") is not None else raw.get("search_grid")
            ),
        }

        self.logger.debug("hyperparameters.resolved", extra={
            "model_type": model_type,
            "grid_keys": sorted(resolved["search_grid"].keys())
        })

        return resolved

    def _resolve_grid(self, grid: Any) -> Dict[str, List[Any]]:
        """Drop malformed grid entries; wrap scalars; remove None values."""
        if not isinstance(grid, Mapping):
            return {}

        resolved: Dict[str, List[Any]] = {}
        for key, values in grid.items():
            if not isinstance(key, str):
                continue

            if not isinstance(values, (list, tuple)):
                values = [values]

            values = [value for value in values if value is not None]
            if values:
                resolved[key] = values

        return resolved
