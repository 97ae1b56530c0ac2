"""Tests for the YAML config service."""
import pytest
import yaml

from icu_core.services.config_service import (
    clear_config_cache,
    get_client_settings,
    get_executor_settings,
    get_secret,
    get_trace_settings,
    load_config,
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "executor": {"default_timeout": 30},
        "client": {"base_url": "https://example.test", "tier": "registered"},
        "trace": {"enabled": False, "output_dir": "out"},
    }))
    return path


class TestLoadConfig:
    def test_explicit_path(self, config_file):
        assert load_config(config_file)["executor"] == {"default_timeout": 30}

    def test_env_path(self, config_file, monkeypatch):
        monkeypatch.setenv("ICU_CONFIG_PATH", str(config_file))
        clear_config_cache()
        assert get_client_settings()["tier"] == "registered"

    def test_missing_default_is_empty(self):
        assert load_config() == {}
        assert get_executor_settings() == {}

    def test_missing_explicit_path_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_cached_until_cleared(self, config_file):
        first = load_config(config_file)
        config_file.write_text(yaml.safe_dump({"executor": {"default_timeout": 5}}))
        assert load_config(config_file) is first

        clear_config_cache()
        assert get_executor_settings(config_file) == {"default_timeout": 5}


class TestSections:
    def test_sections(self, config_file):
        assert get_executor_settings(config_file) == {"default_timeout": 30}
        assert get_client_settings(config_file)["base_url"] == "https://example.test"
        assert get_trace_settings(config_file) == {"enabled": False, "output_dir": "out"}

    def test_missing_section_is_empty(self, tmp_path):
        path = tmp_path / "partial.yaml"
        path.write_text(yaml.safe_dump({"executor": {"default_timeout": 1}}))
        assert get_trace_settings(path) == {}

    def test_get_secret(self, monkeypatch):
        monkeypatch.setenv("SCHEMA_ICU_API_KEY", "abc")
        assert get_secret("SCHEMA_ICU_API_KEY") == "abc"
        assert get_secret("SCHEMA_ICU_JWT_TOKEN", "fallback") == "fallback"
