"""
Tests for learners.

Tests cover:
- Training and prediction of the built-in learners
- Prototype hash independent of trained state
- Quantile capability checks
- Marshal / unmarshal round-trip
"""

import numpy as np
import pandas as pd
import pytest

from expstore.data import TaskClassif, TaskRegr
from expstore.errors import CapabilityError, TypeMismatchError, ValidationError
from expstore.models import (
    LearnerClassifFeatureless,
    LearnerClassifLogistic,
    LearnerRegrFeatureless,
    LearnerRegrLinear,
    MarshaledModel,
    create_learner,
)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def task_regr():
    rng = np.random.default_rng(0)
    x1 = rng.normal(size=40)
    df = pd.DataFrame({"x1": x1, "y": 3.0 * x1 + 1.0 + rng.normal(scale=0.01, size=40)})
    return TaskRegr("linear", df, target="y")


@pytest.fixture
def task_classif():
    rng = np.random.default_rng(1)
    x1 = rng.normal(size=60)
    labels = np.where(x1 > 0.3, "pos", "neg")
    return TaskClassif("binary", pd.DataFrame({"x1": x1, "label": labels}), target="label")


# =============================================================================
# Classification
# =============================================================================


class TestLearnerClassifFeatureless:
    """Test the class prior baseline."""

    def test_predicts_majority(self, task_classif):
        learner = LearnerClassifFeatureless().train(task_classif)
        pred = learner.predict(task_classif)
        majority = pd.Series(task_classif.truth()).value_counts().idxmax()
        assert set(pred.response.tolist()) == {majority}
        assert pred.prob is None

    def test_prob_is_class_frequency(self, task_classif):
        learner = LearnerClassifFeatureless(predict_type="prob").train(task_classif)
        pred = learner.predict(task_classif, row_ids=[0, 1])
        truth = task_classif.truth()
        expected = [np.mean(truth == c) for c in task_classif.class_names]
        np.testing.assert_allclose(pred.prob[0], expected)

    def test_importance_all_zero(self, task_classif):
        learner = LearnerClassifFeatureless().train(task_classif)
        assert learner.importance() == {"x1": 0.0}
        assert learner.selected_features() == []


class TestLearnerClassifLogistic:
    """Test logistic regression."""

    def test_separable_data(self, task_classif):
        learner = LearnerClassifLogistic(predict_type="prob").train(task_classif)
        pred = learner.predict(task_classif)
        assert pred.prob.shape == (60, 2)
        assert np.mean(pred.response == pred.truth) > 0.9

    def test_params_change_hash(self):
        assert LearnerClassifLogistic(C=1.0).hash != LearnerClassifLogistic(C=0.1).hash

    def test_wrong_task_type(self, task_regr):
        with pytest.raises(TypeMismatchError, match="is for 'classif' tasks"):
            LearnerClassifLogistic().train(task_regr)


class TestLearnerBase:
    """Test behavior shared by all learners."""

    def test_hash_ignores_state(self, task_regr):
        learner = LearnerRegrLinear()
        before = learner.hash
        learner.train(task_regr)
        assert learner.hash == before

    def test_predict_untrained(self, task_regr):
        with pytest.raises(CapabilityError, match="no trained model"):
            LearnerRegrLinear().predict(task_regr)

    def test_unsupported_predict_type(self):
        with pytest.raises(CapabilityError, match="does not support predict_type"):
            LearnerRegrLinear().predict_type = "se"

    def test_invalid_predict_sets(self):
        learner = LearnerRegrLinear()
        with pytest.raises(ValidationError):
            learner.predict_sets = ["validation"]
        with pytest.raises(ValidationError, match="duplicates"):
            learner.predict_sets = ["test", "test"]

    def test_append_log_keeps_model(self, task_regr):
        learner = LearnerRegrLinear().train(task_regr)
        model = learner.model
        learner.append_log("train", "warning", "first")
        learner.append_log("train", "warning", "second")
        assert learner.model is model
        assert learner.warnings == ["first", "second"]
        assert learner.errors == []

    def test_prototype_is_untrained(self, task_regr):
        learner = LearnerRegrLinear().train(task_regr)
        proto = learner.prototype()
        assert proto.state is None
        assert learner.is_trained
        assert proto.hash == learner.hash

    def test_create_learner(self):
        learner = create_learner("regr.featureless", robust=True)
        assert isinstance(learner, LearnerRegrFeatureless)
        assert learner.param_values == {"robust": True}
        with pytest.raises(ValueError, match="Unknown learner"):
            create_learner("regr.xgboost")


# =============================================================================
# Regression
# =============================================================================


class TestLearnerRegrFeatureless:
    """Test the constant baseline."""

    def test_mean_and_se(self, task_regr):
        learner = LearnerRegrFeatureless(predict_type="se").train(task_regr)
        pred = learner.predict(task_regr)
        y = task_regr.truth()
        np.testing.assert_allclose(pred.response, np.mean(y))
        np.testing.assert_allclose(pred.se, np.std(y, ddof=1))

    def test_robust_uses_median(self, task_regr):
        learner = LearnerRegrFeatureless(robust=True).train(task_regr)
        pred = learner.predict(task_regr)
        np.testing.assert_allclose(pred.response, np.median(task_regr.truth()))

    def test_quantiles_without_configuration(self, task_regr):
        learner = LearnerRegrFeatureless(predict_type="quantiles")
        with pytest.raises(CapabilityError, match="'quantiles' and response quantile"):
            learner.train(task_regr)

    def test_quantiles(self, task_regr):
        learner = LearnerRegrFeatureless(predict_type="quantiles")
        learner.quantiles = [0.1, 0.5, 0.9]
        learner.quantile_response = 0.5
        pred = learner.train(task_regr).predict(task_regr)
        assert pred.quantiles.shape == (40, 3)
        assert pred.quantile_probs == [0.1, 0.5, 0.9]
        np.testing.assert_allclose(pred.response, np.quantile(task_regr.truth(), 0.5))

    def test_invalid_quantiles(self):
        learner = LearnerRegrFeatureless(predict_type="quantiles")
        with pytest.raises(ValidationError, match="sorted"):
            learner.quantiles = [0.9, 0.1]
        with pytest.raises(ValidationError, match=r"in \[0, 1\]"):
            learner.quantiles = [1.5]


class TestLearnerRegrLinear:
    """Test ordinary least squares."""

    def test_recovers_coefficients(self, task_regr):
        learner = LearnerRegrLinear().train(task_regr)
        np.testing.assert_allclose(learner.model.coef_, [3.0], atol=0.01)

    def test_cannot_predict_quantiles(self):
        with pytest.raises(CapabilityError, match="does not support predicting quantiles"):
            LearnerRegrLinear().quantiles = [0.5]


# =============================================================================
# Marshaling
# =============================================================================


class TestMarshal:
    """Test marshal / unmarshal of trained models."""

    def test_round_trip_same_predictions(self, task_classif):
        learner = LearnerClassifLogistic(predict_type="prob").train(task_classif)
        before = learner.predict(task_classif)

        learner.marshal()
        assert learner.marshaled
        assert isinstance(learner.model, MarshaledModel)
        with pytest.raises(CapabilityError, match="marshaled"):
            learner.predict(task_classif)

        learner.unmarshal()
        assert not learner.marshaled
        after = learner.predict(task_classif)
        np.testing.assert_allclose(after.prob, before.prob)
        assert after.response.tolist() == before.response.tolist()

    def test_marshal_is_idempotent(self, task_regr):
        learner = LearnerRegrLinear().train(task_regr)
        learner.marshal()
        payload = learner.model.payload
        learner.marshal()
        assert learner.model.payload == payload

    def test_marshal_untrained_is_noop(self):
        learner = LearnerRegrLinear()
        learner.marshal()
        assert learner.state is None

    def test_discard_model_keeps_log(self, task_regr):
        learner = LearnerRegrLinear().train(task_regr)
        learner.append_log("train", "warning", "kept")
        learner.discard_model()
        assert learner.model is None
        assert learner.warnings == ["kept"]
