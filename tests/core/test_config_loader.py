"""Tests for config_loader module.

- AAA pattern (Arrange-Act-Assert)
- Descriptive test names: test_unit_scenario_expectedBehavior
- Test isolation (tmp_path config files, monkeypatched env)
"""

import pytest
import yaml

from hcp_analytics.core.config_loader import (
    get_project_root,
    load_logging_config,
    load_query_engine_config,
)


class TestConfigLoaderQueryEngine:
    """Test suite for query engine configuration loading."""

    def test_load_query_engine_config_loads_from_yaml_file(self, tmp_path):
        # Arrange
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text(yaml.dump({"risk_high_days": 90, "chart_history_size": 8, "default_chart_type": "pie"}))

        # Act
        config = load_query_engine_config(config_path=config_file)

        # Assert
        assert config["risk_high_days"] == 90
        assert config["chart_history_size"] == 8
        assert config["default_chart_type"] == "pie"

    def test_load_query_engine_config_missing_file_uses_defaults(self, tmp_path):
        # Act
        config = load_query_engine_config(config_path=tmp_path / "missing.yaml")

        # Assert
        assert config["never_contacted_sentinel_days"] == 999
        assert config["risk_high_days"] == 60
        assert config["risk_high_loyalty"] == 5.0
        assert config["risk_medium_days"] == 30
        assert config["risk_medium_loyalty"] == 7.0
        assert config["insight_ratio_min"] == 1
        assert config["insight_ratio_max"] == 100

    def test_load_query_engine_config_coerces_string_values(self, tmp_path):
        # Arrange
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text(yaml.dump({"risk_high_loyalty": "4.5", "max_keywords": "12"}))

        # Act
        config = load_query_engine_config(config_path=config_file)

        # Assert
        assert config["risk_high_loyalty"] == 4.5
        assert config["max_keywords"] == 12

    def test_load_query_engine_config_critical_config_type_coercion_failure_raises_valueerror(self, tmp_path):
        # Arrange: risk thresholds are critical
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text(yaml.dump({"risk_high_days": "sixty"}))

        # Act & Assert
        with pytest.raises(ValueError, match="Type coercion failed for critical config"):
            load_query_engine_config(config_path=config_file)

    def test_load_query_engine_config_non_critical_coercion_failure_uses_default(self, tmp_path):
        # Arrange
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text(yaml.dump({"chart_history_size": "lots"}))

        # Act
        config = load_query_engine_config(config_path=config_file)

        # Assert
        assert config["chart_history_size"] == 5

    def test_load_query_engine_config_invalid_yaml_raises_valueerror(self, tmp_path):
        # Arrange
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text("risk_high_days: [unclosed")

        # Act & Assert
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_query_engine_config(config_path=config_file)

    def test_load_query_engine_config_ignores_unknown_keys(self, tmp_path):
        # Arrange
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text(yaml.dump({"unknown_setting": 1}))

        # Act
        config = load_query_engine_config(config_path=config_file)

        # Assert
        assert "unknown_setting" not in config

    def test_load_query_engine_config_env_var_overrides_yaml(self, tmp_path, monkeypatch):
        # Arrange
        config_file = tmp_path / "query_engine.yaml"
        config_file.write_text(yaml.dump({"never_contacted_sentinel_days": 500, "default_result_limit": 10}))
        monkeypatch.setenv("HCP_NEVER_CONTACTED_DAYS", "365")
        monkeypatch.setenv("HCP_DEFAULT_RESULT_LIMIT", "25")

        # Act
        config = load_query_engine_config(config_path=config_file)

        # Assert
        assert config["never_contacted_sentinel_days"] == 365
        assert config["default_result_limit"] == 25

    def test_load_query_engine_config_automatic_env_mapping(self, tmp_path, monkeypatch):
        # Arrange
        monkeypatch.setenv("RISK_MEDIUM_DAYS", "45")

        # Act
        config = load_query_engine_config(config_path=tmp_path / "missing.yaml")

        # Assert
        assert config["risk_medium_days"] == 45

    def test_project_config_file_matches_defaults(self):
        # Arrange
        config_file = get_project_root() / "config" / "query_engine.yaml"

        # Act
        config = load_query_engine_config(config_path=config_file)

        # Assert
        assert config["never_contacted_sentinel_days"] == 999
        assert config["default_chart_type"] == "bar"
        assert config["default_aggregation"] == "count"


class TestConfigLoaderLogging:
    """Test suite for logging configuration loading."""

    def test_load_logging_config_merges_module_levels(self, tmp_path):
        # Arrange
        config_file = tmp_path / "logging.yaml"
        config_file.write_text(
            yaml.dump({"root_level": "DEBUG", "module_levels": {"hcp_analytics.core.query_executor": "WARNING"}})
        )

        # Act
        config = load_logging_config(config_path=config_file)

        # Assert
        assert config["root_level"] == "DEBUG"
        assert config["module_levels"]["hcp_analytics.core.query_executor"] == "WARNING"
        assert config["module_levels"]["hcp_analytics.core"] == "INFO"
        assert config["reduce_noise"]["urllib3"] == "WARNING"

    def test_load_logging_config_missing_file_uses_defaults(self, tmp_path):
        # Act
        config = load_logging_config(config_path=tmp_path / "missing.yaml")

        # Assert
        assert config["root_level"] == "INFO"
        assert "%(message)s" in config["format"]

    def test_load_logging_config_invalid_yaml_raises_valueerror(self, tmp_path):
        # Arrange
        config_file = tmp_path / "logging.yaml"
        config_file.write_text("module_levels: {unclosed")

        # Act & Assert
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_logging_config(config_path=config_file)


class TestProjectRoot:
    """Test suite for get_project_root."""

    def test_get_project_root_contains_config_dir(self):
        # Act
        root = get_project_root()

        # Assert
        assert (root / "config").is_dir()
        assert (root / "pyproject.toml").exists()
