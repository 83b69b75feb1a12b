"""
Unit tests for correlation-based feature importances.
"""

import numpy as np
import pytest

from event_training.core.feature_importance import compute_feature_importances, prettify_feature_name


class TestFeatureImportance:

    def test_ranks_by_absolute_correlation(self):
        labels = np.array([0, 1, 0, 1, 0, 1])
        samples = np.column_stack([
            np.full(6, 3.0),
            -labels * 2.0,
            [0.1, 0.2, 0.1, 0.3, 0.2, 0.1],
        ])

        importances = compute_feature_importances(
            samples, labels, ["latitude", "risk_score", "hour_of_day"]
        )

        assert [entry["name"] for entry in importances] == ["Risk Score", "Hour Of Day", "Latitude"]
        assert importances[0]["contribution"] == pytest.approx(1.0)
        assert importances[-1]["contribution"] == 0.0

    def test_limit_and_default_names(self):
        rng = np.random.default_rng(0)
        samples = rng.normal(size=(20, 12))
        labels = rng.integers(0, 2, 20)

        importances = compute_feature_importances(samples, labels, ["only_one"], limit=3)

        assert len(importances) == 3
        names = {entry["name"] for entry in compute_feature_importances(samples, labels, ["only_one"], limit=12)}
        assert "Only One" in names
        assert "Feature 12" in names

    def test_empty_input(self):
        assert compute_feature_importances(np.empty((0, 3)), np.empty(0)) == []

    def test_prettify_feature_name(self):
        assert prettify_feature_name("category_car-theft") == "Category Car Theft"
        assert prettify_feature_name("day_of_week") == "Day Of Week"
