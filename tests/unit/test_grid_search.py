"""
Unit tests for grid expansion and the cross-validated grid search.
"""

from unittest.mock import patch

import numpy as np

from event_training.core.grid_search import (
    GridSearchEngine,
    MAX_REPORTED_EVALUATIONS,
    build_grid,
    build_svc_grid,
)
from event_training.core.hyperparameter_resolver import HyperparameterResolver


def resolve(**raw):
    return HyperparameterResolver().resolve(raw)


def separable_data(n_rows=60, seed=11):
    rng = np.random.default_rng(seed)
    labels = np.array([i % 2 for i in range(n_rows)])
    samples = rng.normal(scale=0.5, size=(n_rows, 4))
    samples[:, 0] += np.where(labels == 1, 3.0, -3.0)
    return samples, labels


class TestBuildGrid:

    def test_logistic_default_grid(self):
        grid = build_grid(resolve())

        assert len(grid) == 8
        assert grid[0] == {"learning_rate": 0.1, "iterations": 400, "l2_penalty": 0.0}
        assert {combination["iterations"] for combination in grid} == {400, 600}

    def test_duplicate_defaults_collapse(self):
        grid = build_grid(resolve(model_type="knn", k=5))
        assert [combination["k"] for combination in grid] == [3, 5]

    def test_user_values_are_unioned(self):
        grid = build_grid(resolve(model_type="knn", search_grid={"k": [7, "9", 3]}))
        assert [combination["k"] for combination in grid] == [3, 5, 7, 9]

    def test_user_list_values_become_integer_lists(self):
        grid = build_grid(resolve(model_type="mlp", search_grid={"hidden_layers": [["4", "x", 2.0]]}))
        assert [2, 4] not in [combination["hidden_layers"] for combination in grid]
        assert [4, 2] in [combination["hidden_layers"] for combination in grid]

    def test_naive_bayes_single_combination(self):
        assert build_grid(resolve(model_type="naive_bayes", iterations=300)) == [{"iterations": 300}]

    def test_decision_tree_grid(self):
        grid = build_grid(resolve(model_type="decision_tree", max_depth=8, min_samples_split=4))

        assert {c["max_depth"] for c in grid} == {3, 8}
        assert {c["min_samples_split"] for c in grid} == {2, 4}
        assert len(grid) == 4


class TestSvcGrid:

    def test_default_svc_grid(self):
        hyperparameters = resolve(model_type="svc")
        grid = build_svc_grid(hyperparameters, {})

        # 2 costs x 3 tolerances x 2 cache sizes x 2 kernels
        assert len(grid) == 24
        assert {c["kernel"] for c in grid} == {"rbf", "linear"}
        assert {c["cost"] for c in grid} == {0.5, 1.0}

    def test_unknown_kernels_are_dropped(self):
        hyperparameters = resolve(model_type="svc", search_grid={"kernel": ["laplace", "sigmoid"]})
        grid = build_grid(hyperparameters)

        assert {c["kernel"] for c in grid} == {"rbf", "linear", "sigmoid"}

    def test_kernel_option_sets(self):
        hyperparameters = resolve(model_type="svc", search_grid={
            "kernel_options": [
                {"kernel": "polynomial", "degree": 2},
                {"kernel": "polynomial", "degree": 2},
                {"type": "rbf", "gamma": 2.0},
            ]
        })
        kernels = {
            (c["kernel"], tuple(sorted(c["kernel_options"].items())))
            for c in build_grid(hyperparameters)
        }

        assert ("polynomial", (("coef0", 0.0), ("degree", 2), ("gamma", 1.0))) in kernels
        assert ("rbf", (("gamma", 2.0),)) in kernels
        assert ("rbf", (("gamma", 0.5),)) not in kernels
        assert len(kernels) == 3


class TestGridSearchEngine:

    def setup_method(self):
        self.engine = GridSearchEngine({"random_state": 7})
        self.samples, self.labels = separable_data()

    def test_selects_a_combination_from_the_grid(self):
        hyperparameters = resolve(model_type="knn", cv_folds=2)
        result = self.engine.search(self.samples, self.labels, hyperparameters)

        assert result.best_hyperparameters in build_grid(hyperparameters)
        assert result.best_accuracy >= 0.9
        assert 0.0 <= result.best_macro_f1 <= 1.0
        assert all(evaluation.scored_folds == 2 for evaluation in result.evaluations)

    def test_evaluations_ranked_and_capped(self):
        hyperparameters = resolve(model_type="decision_tree", cv_folds=2,
                                  search_grid={"max_depth": [4, 5, 6, 7], "min_samples_split": [3, 5]})
        result = self.engine.search(self.samples, self.labels, hyperparameters)

        accuracies = [evaluation.accuracy for evaluation in result.evaluations]
        assert len(result.evaluations) == MAX_REPORTED_EVALUATIONS
        assert accuracies == sorted(accuracies, reverse=True)
        assert result.metrics["best_accuracy"] == result.best_accuracy
        assert len(result.metrics["evaluations"]) == MAX_REPORTED_EVALUATIONS

    def test_seeded_search_is_reproducible(self):
        hyperparameters = resolve(model_type="decision_tree", cv_folds=3)

        first = GridSearchEngine({"random_state": 3}).search(self.samples, self.labels, hyperparameters)
        second = GridSearchEngine({"random_state": 3}).search(self.samples, self.labels, hyperparameters)

        assert first.best_hyperparameters == second.best_hyperparameters
        assert [e.accuracy for e in first.evaluations] == [e.accuracy for e in second.evaluations]

    def test_ties_keep_first_combination(self):
        hyperparameters = resolve(model_type="naive_bayes", search_grid={"iterations": [100, 200]})
        result = self.engine.search(self.samples, self.labels, hyperparameters)

        # Separable data scores every combination perfectly
        assert result.best_hyperparameters == {"iterations": 100}

    def test_equal_accuracy_prefers_higher_macro_f1(self):
        hyperparameters = resolve(model_type="naive_bayes", cv_folds=1,
                                  search_grid={"iterations": [100, 200, 300, 400]})
        fold_scores = [(0.8, 0.5), (0.8, 0.7), (0.6, 0.9), (0.8, 0.7)]

        with patch.object(self.engine, "_score_fold", side_effect=fold_scores):
            result = self.engine.search(self.samples, self.labels, hyperparameters)

        assert result.best_hyperparameters == {"iterations": 200}
        assert result.best_accuracy == 0.8
        assert result.best_macro_f1 == 0.7

    def test_selected_accuracy_is_highest(self):
        hyperparameters = resolve(model_type="decision_tree", cv_folds=2,
                                  search_grid={"max_depth": [1, 2, 4], "min_samples_split": [2, 10]})
        result = self.engine.search(self.samples, self.labels, hyperparameters)

        assert all(result.best_accuracy >= evaluation.accuracy for evaluation in result.evaluations)
        assert result.best_accuracy == result.evaluations[0].accuracy

    def test_unusable_folds_score_zero(self):
        hyperparameters = resolve(model_type="naive_bayes")
        result = self.engine.search(self.samples[:1], self.labels[:1], hyperparameters)

        assert result.best_accuracy == 0.0
        assert result.evaluations[0].scored_folds == 0

    def test_progress_notifier_forwarded_to_iterative_classifiers(self):
        calls = []
        hyperparameters = resolve(iterations=100, log_interval=100, cv_folds=2)
        self.engine.search(self.samples, self.labels, hyperparameters,
                           lambda iteration, total, loss=None: calls.append((iteration, total)))

        assert calls
        assert all(iteration <= total for iteration, total in calls)

    def test_result_to_dict(self):
        result = self.engine.search(self.samples, self.labels, resolve(model_type="naive_bayes"))
        data = result.to_dict()

        assert data["best_hyperparameters"] == result.best_hyperparameters
        assert set(data["metrics"]) == {"evaluations", "best_accuracy", "best_macro_f1", "best_hyperparameters"}
