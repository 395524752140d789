"""
Tests for configuration schema.
"""

import tempfile
from pathlib import Path
import pytest

from expstore.config import (
    ScoringConfig,
    ThresholdConfig,
    ExecutionConfig,
    StoreConfig,
    TiesMethod,
    load_config,
    save_config,
)


class TestScoringConfig:
    """Test ScoringConfig validation."""

    def test_default_values(self):
        """Defaults name one measure per task type."""
        config = ScoringConfig()
        assert config.default_measures["classif"] == ["classif.ce"]
        assert config.default_measures["regr"] == ["regr.mse"]
        assert config.predict_sets == ["test"]

    def test_unknown_task_type(self):
        with pytest.raises(ValueError, match="unknown task types"):
            ScoringConfig(default_measures={"surv": ["surv.cindex"]})

    def test_invalid_predict_set(self):
        with pytest.raises(ValueError, match="predict_sets must be a subset"):
            ScoringConfig(predict_sets=["holdout"])

    def test_empty_predict_sets(self):
        with pytest.raises(ValueError, match="must not be empty"):
            ScoringConfig(predict_sets=[])


class TestThresholdConfig:
    """Test ThresholdConfig."""

    def test_default_is_deterministic(self):
        """Default tie-break must not be random."""
        config = ThresholdConfig()
        assert config.ties_method == TiesMethod.FIRST
        assert config.seed is None

    def test_string_is_converted(self):
        config = ThresholdConfig(ties_method="random", seed=3)
        assert config.ties_method is TiesMethod.RANDOM

    def test_invalid_ties_method(self):
        with pytest.raises(ValueError):
            ThresholdConfig(ties_method="middle")

    def test_negative_seed(self):
        with pytest.raises(ValueError, match="seed must be non-negative"):
            ThresholdConfig(seed=-1)


class TestExecutionConfig:
    """Test ExecutionConfig."""

    def test_default_values(self):
        config = ExecutionConfig()
        assert config.store_models is False
        assert config.store_backends is True
        assert config.encapsulate is True
        assert config.n_jobs == 1

    def test_invalid_n_jobs(self):
        with pytest.raises(ValueError, match="n_jobs must be >= 1"):
            ExecutionConfig(n_jobs=0)


class TestStoreConfig:
    """Test StoreConfig serialization."""

    def test_to_dict(self):
        """Enums serialize to their string value."""
        config = StoreConfig(name="test", threshold=ThresholdConfig(ties_method=TiesMethod.LAST))
        data = config.to_dict()
        assert data["name"] == "test"
        assert data["threshold"]["ties_method"] == "last"
        assert data["scoring"]["default_measures"]["regr"] == ["regr.mse"]

    def test_from_dict_partial(self):
        """Missing sections fall back to defaults."""
        config = StoreConfig.from_dict({"name": "partial", "execution": {"n_jobs": 4}})
        assert config.execution.n_jobs == 4
        assert config.threshold.ties_method == TiesMethod.FIRST

    def test_yaml_round_trip(self):
        config = StoreConfig(
            name="yaml_experiment",
            scoring=ScoringConfig(default_measures={"classif": ["classif.acc", "classif.bacc"]}),
            threshold=ThresholdConfig(ties_method=TiesMethod.RANDOM, seed=7),
        )

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            config.to_yaml(str(path))
            loaded = StoreConfig.from_yaml(str(path))

        assert loaded.name == config.name
        assert loaded.scoring.default_measures == {"classif": ["classif.acc", "classif.bacc"]}
        assert loaded.threshold.ties_method == TiesMethod.RANDOM
        assert loaded.threshold.seed == 7

    def test_json_round_trip(self):
        config = StoreConfig(name="json_test", execution=ExecutionConfig(store_models=True))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            config.to_json(str(path))
            loaded = StoreConfig.from_json(str(path))

        assert loaded.name == "json_test"
        assert loaded.execution.store_models is True


class TestLoadSaveConfig:
    """Test convenience load/save functions."""

    def test_load_yaml(self):
        config = StoreConfig(name="yaml_test")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yml"
            save_config(config, str(path))
            loaded = load_config(str(path))

        assert loaded.name == "yaml_test"

    def test_load_json(self):
        config = StoreConfig(name="json_test")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            save_config(config, str(path))
            loaded = load_config(str(path))

        assert loaded.name == "json_test"

    def test_unsupported_format(self):
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config("config.txt")
