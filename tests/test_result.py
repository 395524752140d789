"""
Tests for result views.

Tests cover:
- Copy-on-write filter vs. broadcast maintenance on shared stores
- Combination of views (same experiment with disjoint iterations)
- Identity accessors, conditions, thresholding
- BenchmarkResult selection and per-experiment tables
"""

import numpy as np
import pandas as pd
import pytest

from expstore.config import StoreConfig, ThresholdConfig
from expstore.data import (
    PredictionClassif,
    ResamplingCV,
    ResamplingCustom,
    TaskClassif,
    TaskRegr,
)
from expstore.errors import (
    CapabilityError,
    TypeMismatchError,
    ValidationError,
)
from expstore.experiments import (
    BenchmarkResult,
    FactRow,
    ResampleResult,
    ResultStore,
    combine_results,
)
from expstore.models import (
    LearnerClassifFeatureless,
    LearnerClassifLogistic,
    LearnerRegrFeatureless,
    LearnerRegrLinear,
)
from expstore.training import resample


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def task_regr():
    rng = np.random.default_rng(0)
    x1 = rng.normal(size=30)
    df = pd.DataFrame({"x1": x1, "x2": rng.normal(size=30), "y": 2 * x1 + rng.normal(scale=0.5, size=30)})
    return TaskRegr("regr_toy", df, target="y")


@pytest.fixture
def task_classif():
    rng = np.random.default_rng(1)
    x1 = rng.normal(size=30)
    labels = np.where(np.arange(30) % 2 == 0, "a", "b")
    return TaskClassif("classif_toy", pd.DataFrame({"x1": x1, "label": labels}), target="label")


@pytest.fixture
def rr_regr(task_regr):
    """Five-fold CV of a linear model with models kept."""
    return resample(task_regr, LearnerRegrLinear(), ResamplingCV(folds=5, seed=1), store_models=True)


@pytest.fixture
def rr_classif(task_classif):
    learner = LearnerClassifFeatureless(predict_type="prob")
    return resample(task_classif, learner, ResamplingCV(folds=3, seed=1))


def manual_rows(task, learner, resampling, iterations, uhash="E1", predictions=None):
    """Fact rows with untrained learners, for tests that only need the layout."""
    return [
        FactRow(uhash, i, task, learner.clone().reset(), resampling, dict(predictions or {}))
        for i in iterations
    ]


def custom_resampling(task, iters):
    return ResamplingCustom().instantiate(
        task,
        train_sets=[list(range(10, 20))] * iters,
        test_sets=[[i] for i in range(iters)],
    )


# =============================================================================
# Copy-on-write and broadcast mutation
# =============================================================================


class TestFilter:
    """filter() clones before it narrows."""

    def test_filter_on_cloned_store(self, rr_regr):
        clone = ResampleResult(rr_regr.store.clone())
        clone.filter([2])
        assert len(rr_regr.store) == 5
        assert rr_regr.iters == 5
        assert clone.iters == 1
        assert [r.iteration for r in clone.store.rows()] == [2]

    def test_filter_does_not_affect_sharing_view(self, rr_regr):
        other = ResampleResult(rr_regr.store)
        rows_before = other.store.rows()
        rr_regr.filter([1, 3])
        assert rr_regr.iters == 2
        assert other.iters == 5
        assert all(a is b for a, b in zip(other.store.rows(), rows_before))
        assert rr_regr.store is not other.store

    def test_filter_rejects_out_of_range(self, rr_regr):
        with pytest.raises(ValidationError, match=r"in \[1, 5\]"):
            rr_regr.filter([0, 2])
        with pytest.raises(ValidationError):
            rr_regr.filter([6])

    def test_filter_rejects_duplicates(self, rr_regr):
        with pytest.raises(ValidationError, match="unique"):
            rr_regr.filter([1, 1])

    def test_filter_rejects_non_integers(self, rr_regr):
        with pytest.raises(ValidationError, match="integers"):
            rr_regr.filter([1.5])
        with pytest.raises(ValidationError):
            rr_regr.filter([True])

    def test_failed_filter_leaves_store_untouched(self, rr_regr):
        store = rr_regr.store
        with pytest.raises(ValidationError):
            rr_regr.filter([1, 9])
        assert rr_regr.store is store
        assert rr_regr.iters == 5

    def test_filter_to_nothing(self, rr_regr):
        rr_regr.filter([])
        assert rr_regr.iters is None
        assert rr_regr.task is None

    def test_logs_survive_filter(self, rr_regr):
        rr_regr.store.rows()[1].learner.append_log("train", "warning", "kept")
        rr_regr.filter([2])
        assert rr_regr.warnings["msg"].tolist() == ["kept"]


class TestBroadcast:
    """Maintenance acts on the shared store."""

    def test_discard_models_reaches_every_view(self, rr_regr):
        other = ResampleResult(rr_regr.store)
        assert all(l.model is not None for l in other.learners)
        rr_regr.discard(models=True)
        assert all(l.model is None for l in other.learners)

    def test_discard_backends(self, rr_regr):
        other = ResampleResult(rr_regr.store)
        rr_regr.discard(backends=True)
        assert not other.task.has_backend
        # Predictions and scores do not need the backend
        assert len(other.score(["regr.mse"])) == 5

    def test_clone_protects_from_discard(self, rr_regr):
        clone = rr_regr.clone()
        rr_regr.discard(models=True)
        assert all(l.model is not None for l in clone.learners)

    def test_marshal_and_unmarshal(self, rr_regr, task_regr):
        other = ResampleResult(rr_regr.store)
        before = [l.predict(task_regr).response for l in rr_regr.learners]
        rr_regr.marshal()
        assert all(l.marshaled for l in other.learners)
        with pytest.raises(CapabilityError):
            other.learners[0].predict(task_regr)
        other.unmarshal()
        after = [l.predict(task_regr).response for l in rr_regr.learners]
        for b, a in zip(before, after):
            np.testing.assert_allclose(a, b)


# =============================================================================
# Combination
# =============================================================================


class TestCombine:
    """Union of views."""

    def test_disjoint_iterations_same_experiment(self, task_regr):
        resampling = custom_resampling(task_regr, 4)
        learner = LearnerRegrFeatureless()
        first = ResampleResult(ResultStore(manual_rows(task_regr, learner, resampling, [1, 2])))
        second = ResampleResult(ResultStore(manual_rows(task_regr, learner, resampling, [3, 4])))

        combined = first + second
        assert isinstance(combined, BenchmarkResult)
        assert combined.n_resample_results == 1
        assert len(combined) == 4
        assert combined.resample_result("E1").iters == 4
        assert first.iters == 2 and second.iters == 2

    def test_different_experiments(self, task_regr, rr_regr):
        other = resample(task_regr, LearnerRegrFeatureless(), ResamplingCV(folds=5, seed=1))
        bmr = combine_results(rr_regr, other)
        assert bmr.n_resample_results == 2
        assert len(bmr) == 10
        # Same task stored once
        assert len(bmr.tasks) == 1

    def test_combined_shares_nothing(self, rr_regr):
        bmr = combine_results(rr_regr)
        bmr.discard(models=True)
        assert all(l.model is not None for l in rr_regr.learners)

    def test_only_view_rows_are_combined(self, task_regr, rr_regr):
        other = resample(task_regr, LearnerRegrFeatureless(), ResamplingCV(folds=5, seed=1))
        bmr = combine_results(rr_regr, other)
        selected = bmr.resample_result(2)
        assert combine_results(selected).n_resample_results == 1

    def test_different_task_types(self, rr_regr, rr_classif):
        with pytest.raises(TypeMismatchError):
            rr_regr + rr_classif

    def test_logs_survive_combine(self, rr_regr):
        rr_regr.store.rows()[0].learner.append_log("train", "error", "boom")
        bmr = combine_results(rr_regr)
        assert bmr.errors["msg"].tolist() == ["boom"]
        assert list(bmr.errors.columns) == ["uhash", "iteration", "msg"]

    def test_combine_nothing(self):
        assert len(combine_results()) == 0


# =============================================================================
# Accessors
# =============================================================================


class TestAccessors:
    """Identity objects, predictions and tabular export."""

    def test_identity(self, rr_regr, task_regr):
        assert rr_regr.task.hash == task_regr.hash
        assert rr_regr.learner.id == "regr.lm"
        assert rr_regr.learner.state is None
        assert rr_regr.resampling.iters == 5
        assert rr_regr.task_type == "regr"
        assert len(rr_regr.learners) == 5

    def test_multi_experiment_identity(self, task_regr, rr_regr):
        other = resample(task_regr, LearnerRegrFeatureless(), ResamplingCV(folds=5, seed=1))
        bmr = rr_regr + other
        with pytest.raises(AssertionError):
            bmr.task
        with pytest.raises(AssertionError):
            bmr.resampling

    def test_prediction_covers_all_rows(self, rr_regr, task_regr):
        pooled = rr_regr.prediction()
        assert sorted(pooled.row_ids.tolist()) == task_regr.row_ids.tolist()
        assert len(rr_regr.predictions()) == 5

    def test_as_frame(self, rr_regr):
        frame = rr_regr.as_frame()
        assert list(frame.columns) == ["task", "learner", "resampling", "iteration", "prediction"]
        assert frame["iteration"].tolist() == [1, 2, 3, 4, 5]

    def test_empty_result(self):
        rr = ResampleResult()
        assert rr.iters is None
        assert rr.task is None and rr.learner is None and rr.resampling is None
        assert rr.prediction() is None
        assert rr.predictions() == []
        assert len(rr.score()) == 0
        assert rr.aggregate().empty
        assert rr.data_extra is None

    def test_ambiguous_store(self, task_regr, rr_regr):
        other = resample(task_regr, LearnerRegrFeatureless(), ResamplingCV(folds=5, seed=1))
        bmr = rr_regr + other
        with pytest.raises(ValidationError, match="pass the uhash"):
            ResampleResult(bmr.store)
        with pytest.raises(ValidationError, match="not in the store"):
            ResampleResult(bmr.store, "unknown")

    def test_summary(self, rr_regr):
        summary = rr_regr.summary()
        assert summary["iters"] == 5
        assert summary["learner_id"] == "regr.lm"
        assert "regr.mse" in summary["aggregate"]


class TestConditions:
    """Warnings and errors per iteration."""

    def test_several_messages_per_iteration(self, rr_regr):
        learner = rr_regr.store.rows()[2].learner
        learner.append_log("train", "warning", "first")
        learner.append_log("predict", "warning", "second")
        warnings = rr_regr.warnings
        assert list(warnings.columns) == ["iteration", "msg"]
        assert warnings["iteration"].tolist() == [3, 3]
        assert warnings["msg"].tolist() == ["first", "second"]
        assert rr_regr.errors.empty

    def test_conditions_in_score_table(self, rr_regr):
        rr_regr.store.rows()[0].learner.append_log("train", "error", "failed")
        table = rr_regr.score(["regr.mse"], conditions=True)
        assert table["errors"].iloc[0] == ["failed"]
        assert table["warnings"].iloc[0] == []


# =============================================================================
# Thresholding
# =============================================================================


class TestSetThreshold:
    """Threshold adjustment on stored classification predictions."""

    def test_regression_raises(self, rr_regr):
        with pytest.raises(TypeMismatchError):
            rr_regr.set_threshold(0.5)

    def test_visible_through_sharing_view(self, rr_classif, task_classif):
        other = ResampleResult(rr_classif.store)
        rr_classif.set_threshold(0.0)
        responses = other.prediction().response.tolist()
        assert set(responses) == {task_classif.positive}

    def test_invalid_threshold(self, rr_classif):
        with pytest.raises(ValidationError):
            rr_classif.set_threshold(2.0)

    def test_without_probabilities(self, task_classif):
        rr = resample(task_classif, LearnerClassifLogistic(), ResamplingCV(folds=3, seed=1))
        with pytest.raises(CapabilityError):
            rr.set_threshold(0.3)

    def test_tie_break_from_config(self, task_classif):
        resampling = custom_resampling(task_classif, 1)
        pred = PredictionClassif(row_ids=[0], truth=["a"], class_names=["a", "b"], prob=[[0.5, 0.5]])
        rows = manual_rows(task_classif, LearnerClassifFeatureless(predict_type="prob"), resampling, [1],
                           predictions={"test": pred})
        config = StoreConfig(threshold=ThresholdConfig(ties_method="last"))
        rr = ResampleResult(ResultStore(rows), config=config)

        rr.set_threshold(0.5)
        assert rr.prediction().response.tolist() == ["b"]
        rr.set_threshold(0.5, ties_method="first")
        assert rr.prediction().response.tolist() == ["a"]


# =============================================================================
# BenchmarkResult
# =============================================================================


class TestBenchmarkResult:
    """Selection and per-experiment tables."""

    @pytest.fixture
    def bmr(self, task_regr, rr_regr):
        other = resample(task_regr, LearnerRegrFeatureless(), ResamplingCV(folds=5, seed=1))
        return rr_regr + other

    def test_resample_result_shares_store(self, bmr):
        rr = bmr.resample_result(1)
        assert rr.store is bmr.store
        rr.discard(models=True)
        assert all(l.model is None for l in bmr.resample_result(1).learners)

    def test_resample_result_by_uhash(self, bmr):
        uhash = bmr.uhashes[1]
        assert bmr.resample_result(uhash).uhash == uhash

    def test_resample_result_out_of_range(self, bmr):
        with pytest.raises(ValidationError):
            bmr.resample_result(0)
        with pytest.raises(ValidationError):
            bmr.resample_result(3)

    def test_aggregate_per_experiment(self, bmr):
        table = bmr.aggregate(["regr.mse", "regr.mae"])
        assert list(table.columns) == [
            "nr", "uhash", "task_id", "learner_id", "resampling_id", "iters", "regr.mse", "regr.mae",
        ]
        assert table["learner_id"].tolist() == ["regr.lm", "regr.featureless"]
        assert table["iters"].tolist() == [5, 5]

    def test_learners_are_prototypes(self, bmr):
        assert [l.id for l in bmr.learners] == ["regr.lm", "regr.featureless"]
        assert all(l.state is None for l in bmr.learners)

    def test_filter_experiments(self, bmr):
        uhash = bmr.uhashes[0]
        subset = bmr.filter_experiments([uhash])
        assert subset.uhashes == [uhash]
        assert bmr.n_resample_results == 2
        with pytest.raises(ValidationError):
            bmr.filter_experiments(["unknown"])

    def test_summary(self, bmr):
        summary = bmr.summary()
        assert len(summary) == 2
        assert summary["n_errors"].tolist() == [0, 0]
