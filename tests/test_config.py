"""
Tests for pipeline configuration loading.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from meal_guard.config.loader import PipelineConfig, load_pipeline_config


class TestPipelineConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.max_daily_cost_free == 0.01
        assert config.max_daily_cost_premium == 0.50
        assert config.circuit_breaker_cost == 2.00
        assert config.rate_limit_threshold == 10
        assert config.rate_window_minutes == 60
        assert config.provider_timeout_seconds == 30.0
        assert config.model == "gpt-4o-mini"

    def test_daily_ceiling_by_tier(self):
        config = PipelineConfig()
        assert config.daily_ceiling(premium=False) == 0.01
        assert config.daily_ceiling(premium=True) == 0.50

    def test_premium_below_free_rejected(self):
        with pytest.raises(ValueError, match="max_daily_cost_premium"):
            PipelineConfig(max_daily_cost_free=1.0, max_daily_cost_premium=0.5)

    def test_non_positive_limits_rejected(self):
        with pytest.raises(ValueError, match="rate_limit_threshold"):
            PipelineConfig(rate_limit_threshold=0)
        with pytest.raises(ValueError, match="circuit_breaker_cost"):
            PipelineConfig(circuit_breaker_cost=0)
        with pytest.raises(ValueError, match="provider_timeout_seconds"):
            PipelineConfig(provider_timeout_seconds=-1)

    def test_temperature_range(self):
        with pytest.raises(ValueError, match="temperature"):
            PipelineConfig(temperature=3.0)

    def test_unpriced_model_rejected(self):
        """A model with no pricing entry would make every call cost nothing."""
        with pytest.raises(ValueError, match="pricing"):
            PipelineConfig(model="gpt-4.1-mini", max_daily_cost_free=0.001)

    def test_priced_models_accepted(self):
        assert PipelineConfig(model="gpt-4o").model == "gpt-4o"
        assert PipelineConfig(model="gpt-4o-mini").model == "gpt-4o-mini"


class TestLoadPipelineConfig:
    """Test YAML and environment precedence."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, data, name="config.yaml"):
        path = os.path.join(self.temp_dir, name)
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(data, str):
                f.write(data)
            else:
                yaml.safe_dump(data, f)
        return path

    def test_defaults_without_file_or_env(self):
        assert load_pipeline_config(environ={}) == PipelineConfig()

    def test_yaml_overrides_defaults(self):
        path = self._write({"max_daily_cost_free": 0.02, "rate_limit_threshold": 5})
        config = load_pipeline_config(path, environ={})
        assert config.max_daily_cost_free == 0.02
        assert config.rate_limit_threshold == 5
        assert config.max_daily_cost_premium == 0.50

    def test_environment_overrides_yaml(self):
        path = self._write({"rate_limit_threshold": 5})
        config = load_pipeline_config(path, environ={
            "MEAL_GUARD_RATE_LIMIT_THRESHOLD": "7",
            "MEAL_GUARD_MODEL": "gpt-4o",
        })
        assert config.rate_limit_threshold == 7
        assert config.model == "gpt-4o"

    def test_empty_environment_values_ignored(self):
        config = load_pipeline_config(environ={"MEAL_GUARD_MODEL": ""})
        assert config.model == "gpt-4o-mini"

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_pipeline_config(os.path.join(self.temp_dir, "missing.yaml"), environ={})

    def test_empty_file(self):
        path = self._write("")
        with pytest.raises(ValueError, match="empty"):
            load_pipeline_config(path, environ={})

    def test_unknown_key_rejected(self):
        path = self._write({"max_daily_cost": 1.0})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_pipeline_config(path, environ={})

    def test_wrong_type_rejected(self):
        path = self._write({"rate_limit_threshold": "lots"})
        with pytest.raises(ValueError, match="integer"):
            load_pipeline_config(path, environ={})

    def test_invalid_yaml(self):
        path = self._write("rate_limit_threshold: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_pipeline_config(path, environ={})

    def test_invalid_values_fail_validation(self):
        path = self._write({"max_daily_cost_free": -1})
        with pytest.raises(ValueError, match="max_daily_cost_free"):
            load_pipeline_config(path, environ={})

    def test_unpriced_model_in_yaml_rejected(self):
        path = self._write({"model": "gpt-4.1-mini"})
        with pytest.raises(ValueError, match="pricing"):
            load_pipeline_config(path, environ={})

    def test_unpriced_model_in_environment_rejected(self):
        with pytest.raises(ValueError, match="pricing"):
            load_pipeline_config(environ={"MEAL_GUARD_MODEL": "gpt-4.1-mini"})
