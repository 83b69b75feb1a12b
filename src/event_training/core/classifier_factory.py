# /event-training/src/event_training/core/classifier_factory.py

"""
ClassifierFactory: Enum-Driven Construction of Trainable Predictors

Builds one of six classifier families behind a single predictor interface
(train / predict / predict_probabilities). Each family has an explicit,
frozen configuration dataclass resolved from the grid-search overrides with
fallback to the resolved defaults, so construction never depends on probing
library signatures at runtime.

Key Features:
- ModelType enum dispatch with one builder per family
- Per-family configuration validation before any estimator is created
- Iterative logistic regression with per-epoch progress and loss reporting
- Typed InsufficientSamples errors for degenerate training/prediction sets
- Constant-prediction fallback for single-class training sets
- KNN neighbour count clamped to the training size for final builds

Architecture:
- scikit-learn estimators wrapped by TrainablePredictor subclasses
- Progress callbacks detachable before serialisation
"""

import logging
import warnings
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
from sklearn.dummy import DummyClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import SGDClassifier
from sklearn.metrics import log_loss
from sklearn.naive_bayes import GaussianNB
from sklearn.neighbors import KNeighborsClassifier
from sklearn.neural_network import MLPClassifier
from sklearn.svm import SVC
from sklearn.tree import DecisionTreeClassifier

from .errors import TrainingPipelineError
from .hyperparameter_resolver import (
    ALLOWED_KERNELS,
    DEFAULT_KERNEL,
    coerce_float,
    coerce_int,
    normalize_boolean,
    resolve_hidden_layers,
    resolve_kernel_options,
    round_half_away_from_zero,
)

SVC_KERNELS = {
    "linear": "linear",
    "polynomial": "poly",
    "rbf": "rbf",
    "sigmoid": "sigmoid",
}


class ModelType(Enum):
    """Supported classifier families."""
    LOGISTIC_REGRESSION = "logistic_regression"
    SVC = "svc"
    KNN = "knn"
    NAIVE_BAYES = "naive_bayes"
    DECISION_TREE = "decision_tree"
    MLP = "mlp"

    @classmethod
    def from_string(cls, value: Any) -> "ModelType":
        """Unknown names fall back to logistic regression."""
        if isinstance(value, ModelType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.LOGISTIC_REGRESSION


def _pick(params: Mapping[str, Any], defaults: Mapping[str, Any], key: str, fallback: Any = None) -> Any:
    value = params.get(key)
    if value is None:
        value = defaults.get(key, fallback)
    return fallback if value is None else value


@dataclass(frozen=True)
class LogisticRegressionConfig:
    iterations: int = 600
    learning_rate: float = 0.3
    l2_penalty: float = 0.01
    log_interval: int = 200
    random_state: Optional[int] = None

    @classmethod
    def from_params(cls, params, defaults, random_state=None) -> "LogisticRegressionConfig":
        return cls(
            iterations=coerce_int(_pick(params, defaults, "iterations", 600), 600),
            learning_rate=coerce_float(_pick(params, defaults, "learning_rate", 0.3), 0.3),
            l2_penalty=coerce_float(_pick(params, defaults, "l2_penalty", 0.01), 0.01),
            log_interval=coerce_int(_pick(params, defaults, "log_interval", 200), 200),
            random_state=random_state,
        )

    def validate(self) -> List[str]:
        errors = []
        if self.iterations < 1:
            errors.append(f"Iterations must be positive: {self.iterations}")
        if self.learning_rate <= 0:
            errors.append(f"Learning rate must be positive: {self.learning_rate}")
        if self.l2_penalty < 0:
            errors.append(f"L2 penalty must be non-negative: {self.l2_penalty}")
        return errors


@dataclass(frozen=True)
class SVCConfig:
    cost: float = 1.0
    tolerance: float = 1e-3
    cache_size: float = 100.0
    shrinking: bool = True
    probability_estimates: bool = True
    kernel: str = DEFAULT_KERNEL
    kernel_options: Dict[str, Any] = field(default_factory=dict)
    random_state: Optional[int] = None

    @classmethod
    def from_params(cls, params, defaults, random_state=None) -> "SVCConfig":
        kernel = params.get("kernel")
        kernel = kernel.lower() if isinstance(kernel, str) else defaults.get("kernel", DEFAULT_KERNEL)
        if kernel not in ALLOWED_KERNELS:
            kernel = DEFAULT_KERNEL

        options = params.get("kernel_options")
        if not isinstance(options, Mapping):
            options = defaults.get("kernel_options") or {}

        return cls(
            cost=coerce_float(_pick(params, defaults, "cost", 1.0), 1.0),
            tolerance=coerce_float(_pick(params, defaults, "tolerance", 1e-3), 1e-3),
            cache_size=float(round_half_away_from_zero(
                coerce_float(_pick(params, defaults, "cache_size", 100.0), 100.0)
            )),
            shrinking=normalize_boolean(_pick(params, defaults, "shrinking", True), True),
            probability_estimates=normalize_boolean(
                _pick(params, defaults, "probability_estimates", True), True
            ),
            kernel=kernel,
            kernel_options=resolve_kernel_options(kernel, options),
            random_state=random_state,
        )

    def validate(self) -> List[str]:
        errors = []
        if self.cost <= 0:
            errors.append(f"Cost must be positive: {self.cost}")
        if self.tolerance <= 0:
            errors.append(f"Tolerance must be positive: {self.tolerance}")
        if self.cache_size <= 0:
            errors.append(f"Cache size must be positive: {self.cache_size}")
        if self.kernel not in SVC_KERNELS:
            errors.append(f"Unsupported kernel: {self.kernel}")
        return errors


@dataclass(frozen=True)
class KNNConfig:
    k: int = 5

    @classmethod
    def from_params(cls, params, defaults, random_state=None) -> "KNNConfig":
        return cls(k=coerce_int(_pick(params, defaults, "k", 5), 5))

    def validate(self) -> List[str]:
        return [] if self.k >= 1 else [f"k must be at least 1: {self.k}"]


@dataclass(frozen=True)
class NaiveBayesConfig:

    @classmethod
    def from_params(cls, params, defaults, random_state=None) -> "NaiveBayesConfig":
        return cls()

    def validate(self) -> List[str]:
        return []


@dataclass(frozen=True)
class DecisionTreeConfig:
    max_depth: int = 5
    min_samples_split: int = 2
    random_state: Optional[int] = None

    @classmethod
    def from_params(cls, params, defaults, random_state=None) -> "DecisionTreeConfig":
        return cls(
            max_depth=coerce_int(_pick(params, defaults, "max_depth", 5), 5),
            min_samples_split=coerce_int(_pick(params, defaults, "min_samples_split", 2), 2),
            random_state=random_state,
        )

    def validate(self) -> List[str]:
        errors = []
        if self.max_depth < 1:
            errors.append(f"Max depth must be positive: {self.max_depth}")
        if self.min_samples_split < 2:
            errors.append(f"Min samples split must be at least 2: {self.min_samples_split}")
        return errors


@dataclass(frozen=True)
class MLPConfig:
    hidden_layers: Tuple[int, ...] = (16,)
    iterations: int = 600
    learning_rate: float = 0.3
    random_state: Optional[int] = None

    @classmethod
    def from_params(cls, params, defaults, random_state=None) -> "MLPConfig":
        return cls(
            hidden_layers=tuple(resolve_hidden_layers(_pick(params, defaults, "hidden_layers", [16]))),
            iterations=coerce_int(_pick(params, defaults, "iterations", 600), 600),
            learning_rate=coerce_float(_pick(params, defaults, "learning_rate", 0.3), 0.3),
            random_state=random_state,
        )

    def validate(self) -> List[str]:
        errors = []
        if not self.hidden_layers or any(size < 1 for size in self.hidden_layers):
            errors.append(f"Hidden layers must be positive sizes: {self.hidden_layers}")
        if self.iterations < 1:
            errors.append(f"Iterations must be positive: {self.iterations}")
        if self.learning_rate <= 0:
            errors.append(f"Learning rate must be positive: {self.learning_rate}")
        return errors


class TrainablePredictor:
    """
    Common predictor interface over a scikit-learn estimator.
    """

    def __init__(self, model_type: ModelType, estimator: Any, config: Any):
        self.model_type = model_type
        self.estimator = estimator
        self.config = config
        self.progress_callback: Optional[Callable[..., None]] = None
        self.fallback_used = False
        self.logger = logging.getLogger(__name__)

    def train(self, samples, labels) -> "TrainablePredictor":
        samples, labels = self._validate_training_set(samples, labels)

        if np.unique(labels).size < 2:
            self.logger.warning("classifier.single_class_fallback", extra={
                "model_type": self.model_type.value,
                "label": int(labels[0]),
                "sample_count": len(labels)
            })
            self.estimator = DummyClassifier(strategy="most_frequent")
            self.estimator.fit(samples, labels)
            self.fallback_used = True
            return self

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            self._fit(samples, labels)
        return self

    def _fit(self, samples: np.ndarray, labels: np.ndarray) -> None:
        self.estimator.fit(samples, labels)

    def predict(self, samples) -> List[int]:
        samples = self._validate_prediction_set(samples)
        return [int(label) for label in self.estimator.predict(samples)]

    def predict_probabilities(self, samples) -> List[Dict[int, float]]:
        """Per-row class probability mappings."""
        samples = self._validate_prediction_set(samples)

        if not hasattr(self.estimator, "predict_proba"):
            return [
                {1: 1.0 if label >= 1 else 0.0}
                for label in self.estimator.predict(samples)
            ]

        classes = [int(label) for label in self.estimator.classes_]
        return [
            {label: float(probability) for label, probability in zip(classes, row)}
            for row in self.estimator.predict_proba(samples)
        ]

    def detach_progress_callback(self) -> None:
        self.progress_callback = None

    def _validate_training_set(self, samples, labels) -> Tuple[np.ndarray, np.ndarray]:
        samples = np.asarray(samples, dtype=float)
        labels = np.asarray(labels, dtype=int)

        if samples.ndim != 2 or samples.shape[0] == 0 or labels.size == 0:
            raise InsufficientSamples("Training set contains zero elements")
        if samples.shape[0] != labels.size:
            raise ValueError(
                f"Sample and label counts differ: {samples.shape[0]} != {labels.size}"
            )
        return samples, labels

    def _validate_prediction_set(self, samples) -> np.ndarray:
        samples = np.asarray(samples, dtype=float)
        if samples.ndim != 2 or samples.shape[0] == 0:
            raise InsufficientSamples("Prediction set contains zero elements")
        return samples


class IterativeLogisticPredictor(TrainablePredictor):
    """
    Batch logistic regression trained one epoch at a time so progress and
    loss can be reported while training.
    """

    def _fit(self, samples: np.ndarray, labels: np.ndarray) -> None:
        classes = np.unique(labels)
        total = max(1, self.config.iterations)
        interval = max(1, self.config.log_interval)

        for iteration in range(1, total + 1):
            self.estimator.partial_fit(samples, labels, classes=classes)

            if self.progress_callback is not None and (iteration % interval == 0 or iteration == total):
                loss = log_loss(labels, self.estimator.predict_proba(samples), labels=classes)
                self.progress_callback(iteration, total, float(loss))


class KNNPredictor(TrainablePredictor):

    def _validate_training_set(self, samples, labels):
        samples, labels = super()._validate_training_set(samples, labels)
        if samples.shape[0] < self.config.k:
            raise InsufficientSamples(
                f"KNN with k={self.config.k} needs at least {self.config.k} elements, got {samples.shape[0]}"
            )
        return samples, labels


class ClassifierFactory:
    """
    Creates trainable predictors for the six supported model families.
    """

    def __init__(self, random_state: Optional[int] = None):
        self.random_state = random_state
        self.logger = logging.getLogger(__name__)

        self._builders = {
            ModelType.LOGISTIC_REGRESSION: (LogisticRegressionConfig, self._build_logistic),
            ModelType.SVC: (SVCConfig, self._build_svc),
            ModelType.KNN: (KNNConfig, self._build_knn),
            ModelType.NAIVE_BAYES: (NaiveBayesConfig, self._build_naive_bayes),
            ModelType.DECISION_TREE: (DecisionTreeConfig, self._build_decision_tree),
            ModelType.MLP: (MLPConfig, self._build_mlp),
        }

    def create(self, model_type: Any,
               params: Optional[Mapping[str, Any]],
               defaults: Mapping[str, Any],
               progress_notifier: Optional[Callable[..., None]] = None,
               sample_count: Optional[int] = None) -> TrainablePredictor:
        """
        Build an untrained predictor.

        Args:
            model_type: Model family name or ModelType
            params: Grid-search overrides for this combination
            defaults: Resolved hyperparameters used when a key is not overridden
            progress_notifier: Optional (iteration, total, loss) callback
            sample_count: Size of the training set the predictor will see;
                KNN clamps k to it when given

        Raises:
            UnsupportedClassifierConfiguration: If the configuration is invalid
        """
        family = ModelType.from_string(model_type)
        config_class, builder = self._builders[family]
        config = config_class.from_params(params or {}, defaults or {}, random_state=self.random_state)

        if family is ModelType.KNN and sample_count is not None and 0 < sample_count < config.k:
            self.logger.warning("classifier.knn_neighbors_clamped", extra={
                "requested_k": config.k,
                "effective_k": sample_count,
                "sample_count": sample_count
            })
            config = replace(config, k=sample_count)

        errors = config.validate()
        if errors:
            self.logger.error("classifier.invalid_configuration", extra={
                "model_type": family.value,
                "errors": errors
            })
            raise UnsupportedClassifierConfiguration(
                f"Cannot build {family.value} classifier: {'; '.join(errors)}"
            )

        try:
            predictor = builder(config)
        except (TypeError, ValueError) as e:
            raise UnsupportedClassifierConfiguration(
                f"Cannot build {family.value} classifier: {e}"
            ) from e

        predictor.progress_callback = progress_notifier
        return predictor

    def _build_logistic(self, config: LogisticRegressionConfig) -> TrainablePredictor:
        estimator = SGDClassifier(
            loss="log_loss",
            penalty="l2",
            alpha=config.l2_penalty,
            learning_rate="constant",
            eta0=config.learning_rate,
            random_state=config.random_state
        )
        return IterativeLogisticPredictor(ModelType.LOGISTIC_REGRESSION, estimator, config)

    def _build_svc(self, config: SVCConfig) -> TrainablePredictor:
        options = config.kernel_options
        estimator = SVC(
            C=config.cost,
            kernel=SVC_KERNELS[config.kernel],
            degree=int(options.get("degree", 3)),
            gamma=options.get("gamma", "scale"),
            coef0=float(options.get("coef0", 0.0)),
            tol=config.tolerance,
            cache_size=config.cache_size,
            shrinking=config.shrinking,
            probability=config.probability_estimates,
            random_state=config.random_state
        )
        return TrainablePredictor(ModelType.SVC, estimator, config)

    def _build_knn(self, config: KNNConfig) -> TrainablePredictor:
        return KNNPredictor(ModelType.KNN, KNeighborsClassifier(n_neighbors=config.k), config)

    def _build_naive_bayes(self, config: NaiveBayesConfig) -> TrainablePredictor:
        return TrainablePredictor(ModelType.NAIVE_BAYES, GaussianNB(), config)

    def _build_decision_tree(self, config: DecisionTreeConfig) -> TrainablePredictor:
        estimator = DecisionTreeClassifier(
            max_depth=config.max_depth,
            min_samples_split=config.min_samples_split,
            random_state=config.random_state
        )
        return TrainablePredictor(ModelType.DECISION_TREE, estimator, config)

    def _build_mlp(self, config: MLPConfig) -> TrainablePredictor:
        estimator = MLPClassifier(
            hidden_layer_sizes=config.hidden_layers,
            learning_rate_init=config.learning_rate,
            max_iter=config.iterations,
            random_state=config.random_state
        )
        return TrainablePredictor(ModelType.MLP, estimator, config)


# Custom exceptions
class InsufficientSamples(TrainingPipelineError, ValueError):
    """Raised when a training or prediction set is too small to use."""
    pass


class UnsupportedClassifierConfiguration(TrainingPipelineError):
    """Raised when no classifier can be built from the configuration."""
    pass
