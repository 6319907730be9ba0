"""Tests for local settings and feature flags."""

import json
import os
import stat

import pytest
from mcp_wire.config import FEATURE_REGISTRY, WireConfig, default_config_path
from mcp_wire.errors import ConfigError, WireError


@pytest.fixture
def config_path(tmp_path):
    """Config file path inside a directory that does not exist yet."""
    return tmp_path / "mcp-wire" / "config.json"


def write_config(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_text(json.dumps(content), encoding="utf-8")


class TestLoad:
    """Tests for reading the config file."""

    def test_missing_file_uses_defaults(self, config_path):
        """Test that a missing file gives a default config."""
        config = WireConfig.load(config_path)

        assert config.path == config_path
        assert config.is_feature_enabled("registry") is False
        assert not config_path.exists()

    def test_reads_feature_flags(self, config_path):
        """Test that feature flags are read from the file."""
        write_config(config_path, {"features": {"registry": True}})

        config = WireConfig.load(config_path)

        assert config.is_feature_enabled("registry") is True
        assert config.is_feature_enabled("  registry  ") is True

    def test_blank_path_uses_default(self, tmp_path, monkeypatch):
        """Test that an empty path resolves to the default location."""
        monkeypatch.setenv("HOME", str(tmp_path))

        config = WireConfig.load("  ")

        assert config.path == default_config_path()
        assert config.path == tmp_path / ".config" / "mcp-wire" / "config.json"

    def test_invalid_json(self, config_path):
        """Test that malformed JSON raises ConfigError."""
        write_config(config_path, "{not json")

        with pytest.raises(ConfigError, match="parse config file"):
            WireConfig.load(config_path)

    def test_non_object_top_level(self, config_path):
        write_config(config_path, "[1, 2, 3]")

        with pytest.raises(ConfigError):
            WireConfig.load(config_path)

    def test_non_bool_feature_value(self, config_path):
        """Test that feature values must be real booleans."""
        write_config(config_path, {"features": {"registry": "yes"}})

        with pytest.raises(ConfigError, match="features"):
            WireConfig.load(config_path)

    def test_unreadable_path(self, tmp_path):
        """Test that a path that cannot be read raises ConfigError."""
        with pytest.raises(ConfigError) as exc_info:
            WireConfig.load(tmp_path)

        assert isinstance(exc_info.value, WireError)


class TestFeatureFlags:
    """Tests for feature flag queries and updates."""

    def test_unknown_flag_is_off(self, config_path):
        config = WireConfig(config_path, features={"other": True})

        assert config.is_feature_enabled("unknown") is False
        assert config.is_feature_enabled("other") is True

    def test_set_feature_persists(self, config_path):
        """Test that enabling a feature writes the config file."""
        config = WireConfig.load(config_path)

        config.set_feature("registry", True)

        assert config.is_feature_enabled("registry") is True
        data = json.loads(config_path.read_text(encoding="utf-8"))
        assert data == {"features": {"registry": True}}
        assert config_path.read_text(encoding="utf-8").endswith("\n")

        reloaded = WireConfig.load(config_path)
        assert reloaded.is_feature_enabled("registry") is True

    def test_set_feature_preserves_other_keys(self, config_path):
        """Test that unrelated keys survive a rewrite."""
        write_config(config_path, {"theme": "dark", "features": {"registry": True}})

        config = WireConfig.load(config_path)
        config.set_feature("registry", False)

        data = json.loads(config_path.read_text(encoding="utf-8"))
        assert data["theme"] == "dark"
        assert data["features"] == {"registry": False}

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_set_feature_permissions(self, config_path):
        WireConfig.load(config_path).set_feature("registry", True)

        assert stat.S_IMODE(config_path.stat().st_mode) == 0o644
        assert stat.S_IMODE(config_path.parent.stat().st_mode) == 0o700

    def test_set_unknown_feature(self, config_path):
        """Test that unknown feature names are rejected without writing."""
        config = WireConfig.load(config_path)

        with pytest.raises(ConfigError, match="unknown feature"):
            config.set_feature("teleport", True)

        assert not config_path.exists()

    @pytest.mark.parametrize("name", ["", "   "])
    def test_set_empty_feature(self, config_path, name):
        config = WireConfig.load(config_path)

        with pytest.raises(ConfigError, match="feature name is required"):
            config.set_feature(name, True)

    def test_features_sorted_with_state(self, config_path):
        """Test that every known flag is listed with its current state."""
        config = WireConfig(config_path, features={"registry": True})

        features = config.features()

        assert [f.name for f in features] == sorted(FEATURE_REGISTRY)
        registry = next(f for f in features if f.name == "registry")
        assert registry.enabled is True
        assert registry.description == FEATURE_REGISTRY["registry"].description
