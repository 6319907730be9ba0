"""Local settings and feature flags."""

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, StrictBool, TypeAdapter, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "mcp-wire"
APP_VERSION = "0.1.1"

CONFIG_FILE_NAME = "config.json"

_feature_map = TypeAdapter(dict[str, StrictBool])


class FeatureDefinition(BaseModel):
    """A known feature flag and its default."""

    name: str = Field(..., description="Flag name")
    description: str = Field(..., description="What the flag turns on")
    default: bool = Field(False, description="Value used when the flag is not set")

    model_config = {"frozen": True}


class FeatureStatus(BaseModel):
    """Current state of a feature flag."""

    name: str
    description: str
    enabled: bool


FEATURE_REGISTRY: dict[str, FeatureDefinition] = {
    "registry": FeatureDefinition(
        name="registry",
        description="Official MCP Registry integration",
        default=False,
    ),
}


def home_dir() -> Path | None:
    """Return the user's home directory, or None if it cannot be resolved."""
    try:
        home = Path.home()
    except (RuntimeError, KeyError):
        return None
    if str(home) == "~":
        return None
    return home


def default_config_path() -> Path:
    """Get the config file path.

    Returns:
        ~/.config/mcp-wire/config.json, or a path relative to the working
        directory when the home directory is unknown
    """
    home = home_dir()
    if home is None:
        return Path(".config") / APP_NAME / CONFIG_FILE_NAME
    return home / ".config" / APP_NAME / CONFIG_FILE_NAME


class WireConfig:
    """mcp-wire local settings backed by a JSON file.

    Keys other than ``features`` are preserved when the file is rewritten.
    """

    def __init__(
        self,
        path: Path,
        raw: dict[str, Any] | None = None,
        features: dict[str, bool] | None = None,
    ):
        self.path = path
        self._raw: dict[str, Any] = dict(raw or {})
        self._features: dict[str, bool] = dict(features or {})

    @classmethod
    def load(cls, path: Path | str | None = None) -> "WireConfig":
        """Read the config file.

        Args:
            path: Config file path; empty or None means the default path

        Returns:
            The loaded config, or defaults if the file does not exist

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        if path is None or not str(path).strip():
            resolved = default_config_path()
        else:
            resolved = Path(str(path).strip())

        try:
            text = resolved.read_text(encoding="utf-8")
        except FileNotFoundError:
            return cls(resolved)
        except OSError as e:
            raise ConfigError(f"read config file {resolved}: {e}") from e

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"parse config file {resolved}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"parse config file {resolved}: expected a JSON object")

        features_raw = raw.get("features")
        features: dict[str, bool] = {}
        if features_raw is not None:
            try:
                features = _feature_map.validate_python(features_raw)
            except ValidationError as e:
                raise ConfigError(f"parse features in config file {resolved}: {e}") from e

        return cls(resolved, raw=raw, features=features)

    def is_feature_enabled(self, name: str) -> bool:
        """Check a feature flag.

        Unset flags use their registered default; unknown flags are off.
        """
        trimmed = name.strip()
        if trimmed in self._features:
            return self._features[trimmed]
        definition = FEATURE_REGISTRY.get(trimmed)
        if definition is not None:
            return definition.default
        return False

    def set_feature(self, name: str, enabled: bool) -> None:
        """Set a feature flag and persist the config.

        Raises:
            ConfigError: If the name is empty or unknown, or the file cannot be written
        """
        trimmed = name.strip()
        if not trimmed:
            raise ConfigError("feature name is required")
        if trimmed not in FEATURE_REGISTRY:
            raise ConfigError(f"unknown feature {trimmed!r}")

        self._features[trimmed] = enabled
        self._save()
        logger.info(f"Feature {trimmed} set to {enabled}")

    def features(self) -> list[FeatureStatus]:
        """List all known feature flags with their current state, sorted by name."""
        result = [
            FeatureStatus(
                name=definition.name,
                description=definition.description,
                enabled=self.is_feature_enabled(definition.name),
            )
            for definition in FEATURE_REGISTRY.values()
        ]
        result.sort(key=lambda f: f.name)
        return result

    def _save(self) -> None:
        config_dir = self.path.parent
        try:
            config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"create config directory {config_dir}: {e}") from e

        self._raw["features"] = dict(self._features)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._raw, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.chmod(self.path, 0o644)
        except OSError as e:
            raise ConfigError(f"write config file {self.path}: {e}") from e
