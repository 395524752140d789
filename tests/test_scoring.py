"""
Tests for the scoring engine: score tables, observation losses and
aggregation, on hand-built stores and on real resampling runs.
"""

import numpy as np
import pandas as pd
import pytest

from expstore.constants import CONDITION_COLUMNS, IDENTITY_COLUMNS, prediction_column
from expstore.data import PredictionRegr, ResamplingCustom, TaskRegr
from expstore.experiments import (
    BenchmarkResult,
    FactRow,
    ResampleResult,
    ResultStore,
    aggregate_table,
    score_table,
)
from expstore.measures import MacroAggregation, create_measure, nanmean
from expstore.models import LearnerRegrFeatureless, LearnerRegrLinear
from expstore.training import resample


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def task():
    df = pd.DataFrame({"x": np.arange(12, dtype=float), "y": np.arange(12, dtype=float) * 2.0})
    return TaskRegr("line", df, target="y")


@pytest.fixture
def resampling(task):
    # Three iterations testing on rows {0, 1}, {2, 3}, {4, 5}
    return ResamplingCustom().instantiate(
        task,
        train_sets=[list(range(6, 12))] * 3,
        test_sets=[[0, 1], [2, 3], [4, 5]],
    )


@pytest.fixture
def rr_known(task, resampling):
    """Result with hand-written predictions: squared errors 1, 4 and 0 per iteration."""
    errors = {1: [1.0, 1.0], 2: [2.0, 2.0], 3: [0.0, 0.0]}
    rows = []
    for i, err in errors.items():
        test = resampling.test_set(i)
        truth = task.truth(test)
        pred = PredictionRegr(row_ids=test, truth=truth, response=truth + np.asarray(err))
        rows.append(FactRow("E1", i, task, LearnerRegrFeatureless(), resampling, {"test": pred}))
    return ResampleResult(ResultStore(rows))


@pytest.fixture
def rr_empty_predictions(task, resampling):
    rows = [FactRow("E1", i, task, LearnerRegrFeatureless(), resampling) for i in (1, 2, 3)]
    return ResampleResult(ResultStore(rows))


# =============================================================================
# Score table
# =============================================================================


class TestScoreTable:
    """Test the per-iteration table."""

    def test_bare_table(self, rr_empty_predictions):
        table = rr_empty_predictions.score(measures=[], ids=False, predictions=False)
        assert list(table.columns) == ["iteration"]
        assert table["iteration"].tolist() == [1, 2, 3]

    def test_ids_on_by_default(self, rr_empty_predictions):
        table = rr_empty_predictions.score(measures=[], predictions=False)
        assert list(table.columns) == list(IDENTITY_COLUMNS[1:])
        assert list(table.columns) != ["iteration"]

    def test_missing_predictions_score_nan(self, rr_empty_predictions):
        table = rr_empty_predictions.score()
        assert table["regr.mse"].isna().all()
        assert prediction_column("test") not in table.columns

    def test_column_order(self, rr_known):
        table = rr_known.score(["regr.mse", "regr.mae"], conditions=True)
        expected = (
            list(IDENTITY_COLUMNS[1:])
            + [prediction_column("test")]
            + list(CONDITION_COLUMNS)
            + ["regr.mse", "regr.mae"]
        )
        assert list(table.columns) == expected

    def test_known_scores(self, rr_known):
        table = rr_known.score(["regr.mse", "regr.mae"])
        np.testing.assert_allclose(table["regr.mse"], [1.0, 4.0, 0.0])
        np.testing.assert_allclose(table["regr.mae"], [1.0, 2.0, 0.0])

    def test_default_measures(self, rr_known):
        assert "regr.mse" in rr_known.score().columns

    def test_ids(self, rr_known, task):
        table = rr_known.score([])
        assert table["task_id"].tolist() == ["line"] * 3
        assert table["learner_id"].tolist() == ["regr.featureless"] * 3
        assert table["task"].iloc[0] is rr_known.task

    def test_uhash_column_for_benchmarks(self, rr_known):
        bmr = BenchmarkResult(rr_known.store)
        table = bmr.score(["regr.mse"])
        assert table.columns[0] == "uhash"
        assert table["uhash"].tolist() == ["E1"] * 3
        assert "uhash" not in rr_known.score(["regr.mse"]).columns

    def test_predict_set_columns(self, task):
        learner = LearnerRegrLinear()
        learner.predict_sets = ["train", "test"]
        rr = resample(task, learner, ResamplingCustom().instantiate(
            task, train_sets=[list(range(6, 12))], test_sets=[[0, 1]],
        ))
        table = rr.score(["regr.mse"])
        assert prediction_column("train") in table.columns
        assert prediction_column("test") in table.columns
        assert table.columns.get_loc(prediction_column("train")) < table.columns.get_loc(
            prediction_column("test")
        )

    def test_measure_on_train_set(self, task):
        learner = LearnerRegrFeatureless()
        learner.predict_sets = ["train", "test"]
        rr = resample(task, learner, ResamplingCustom().instantiate(
            task, train_sets=[list(range(6, 12))], test_sets=[[0, 1]],
        ))
        on_train = create_measure("regr.mse", id="mse_train")
        on_train.predict_sets = ("train",)
        table = rr.score([on_train, "regr.mse"])
        y_train = task.truth(list(range(6, 12)))
        assert table["mse_train"].iloc[0] == pytest.approx(np.var(y_train))
        assert table["regr.mse"].iloc[0] > table["mse_train"].iloc[0]

    def test_empty_rows(self):
        table = score_table([], [create_measure("regr.mse")], ids=False)
        assert list(table.columns) == ["iteration", "regr.mse"]
        assert len(table) == 0


# =============================================================================
# Observation losses
# =============================================================================


class TestObsLossTable:
    """Test the per-observation table."""

    def test_squared_errors(self, rr_known):
        table = rr_known.obs_loss(["regr.mse"])
        assert table["iteration"].tolist() == [1, 1, 2, 2, 3, 3]
        np.testing.assert_allclose(table["regr.mse"], [1.0, 1.0, 4.0, 4.0, 0.0, 0.0])

    def test_measure_without_obs_loss(self, rr_known):
        table = rr_known.obs_loss(["regr.rsq", "regr.mae"])
        assert table["regr.rsq"].isna().all()
        np.testing.assert_allclose(table["regr.mae"], [1.0, 1.0, 2.0, 2.0, 0.0, 0.0])

    def test_no_predictions(self, rr_empty_predictions):
        table = rr_empty_predictions.obs_loss(["regr.mse"])
        assert len(table) == 0
        assert "regr.mse" in table.columns


# =============================================================================
# Aggregation
# =============================================================================


class TestAggregate:
    """Test macro/micro aggregation and named vector results."""

    def test_macro_is_mean_of_scores(self, rr_known):
        scores = rr_known.score(["regr.mse"])["regr.mse"]
        agg = rr_known.aggregate(["regr.mse"])
        assert agg["regr.mse"] == pytest.approx(scores.mean())

    def test_macro_matches_score_for_every_measure(self, task):
        rr = resample(task, LearnerRegrLinear(), ResamplingCustom().instantiate(
            task, train_sets=[[4, 5, 6, 7], [0, 1, 8, 9]], test_sets=[[0, 1], [10, 11]],
        ))
        keys = ["regr.mse", "regr.rmse", "regr.mae"]
        scores = rr.score(keys)
        agg = rr.aggregate(keys)
        for key in keys:
            assert agg[key] == pytest.approx(scores[key].mean())

    def test_micro_pools_predictions(self, rr_known):
        micro = create_measure("regr.rmse", average="micro")
        agg = rr_known.aggregate(["regr.rmse", micro])
        # Macro: mean of per-iteration RMSE (1, 2, 0); micro: RMSE over all six rows
        assert agg["regr.rmse"] == pytest.approx(1.0)
        assert agg["regr.rmse.micro"] == pytest.approx(np.sqrt(10.0 / 6.0))

    def test_custom_macro_function(self, rr_known):
        measure = create_measure("regr.mse", id="mse_max")
        measure.aggregator = MacroAggregation(fn=np.max)
        assert rr_known.aggregate([measure])["mse_max"] == pytest.approx(4.0)

    @pytest.fixture
    def rr_missing(self, task, resampling, rr_known):
        """rr_known with iteration 2 stored without a prediction."""
        rows = [r for r in rr_known.store.rows() if r.iteration != 2]
        rows.append(FactRow("E1", 2, task, LearnerRegrFeatureless(), resampling))
        return ResampleResult(ResultStore(rows))

    def test_missing_score_propagates(self, rr_missing):
        scores = rr_missing.score(["regr.mse"])["regr.mse"].to_numpy()
        agg = rr_missing.aggregate(["regr.mse"])["regr.mse"]
        assert np.isnan(scores[1])
        assert np.isnan(np.mean(scores))
        assert np.isnan(agg)

    def test_nanmean_is_opt_in(self, rr_missing):
        measure = create_measure("regr.mse", id="mse_observed")
        measure.aggregator = MacroAggregation(fn=nanmean)
        assert rr_missing.aggregate([measure])["mse_observed"] == pytest.approx(0.5)

    def test_confidence_interval_names(self, rr_known):
        agg = rr_known.aggregate(["regr.mse.ci", "regr.mae"])
        assert list(agg.index) == [
            "regr.mse.ci.estimate", "regr.mse.ci.lower", "regr.mse.ci.upper", "regr.mae",
        ]
        assert agg["regr.mse.ci.estimate"] == pytest.approx(5.0 / 3.0)
        assert agg["regr.mse.ci.lower"] < agg["regr.mse.ci.estimate"] < agg["regr.mse.ci.upper"]

    def test_empty_measure_list(self, rr_known):
        agg = rr_known.aggregate([])
        assert isinstance(agg, pd.Series)
        assert agg.empty
        assert agg.dtype == np.float64

    def test_aggregate_table_direct(self, rr_known):
        agg = aggregate_table(rr_known, [create_measure("regr.mae")])
        assert agg.to_dict() == pytest.approx({"regr.mae": 1.0})

    def test_time_measures(self, task):
        rr = resample(task, LearnerRegrLinear(), ResamplingCustom().instantiate(
            task, train_sets=[list(range(6, 12))], test_sets=[[0, 1]],
        ))
        agg = rr.aggregate(["time_train", "time_predict"])
        assert agg["time_train"] >= 0.0
        assert agg["time_predict"] >= 0.0
