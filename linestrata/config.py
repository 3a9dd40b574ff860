"""
Analysis configuration.

Values are resolved with precedence: CLI > config file > preset > defaults.
Config files are YAML (PyYAML) or JSON and are auto-discovered as
``.linestrata.yaml``, ``.linestrata.yml`` or ``.linestrata.json`` in the
repository or the current directory.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_NAMES = [
    ".linestrata.yaml",
    ".linestrata.yml",
    ".linestrata.json",
]

PRESETS: Dict[str, Dict[str, Any]] = {
    "standard": {},
    "quick": {
        # Only identical-blob renames
        "rename_limit": 0,
        "max_file_size": 256 * 1024,
    },
    "thorough": {
        "include_unknown": True,
        "max_file_size": 8 * 1024 * 1024,
    },
}


def default_workers() -> int:
    return min(4, os.cpu_count() or 1)


@dataclass
class AnalysisConfig:
    """Settings of one analysis run."""

    max_file_size: int = 1024 * 1024
    rename_threshold: float = 0.5
    rename_limit: int = 250_000
    workers: int = field(default_factory=default_workers)
    io_timeout: Optional[float] = 60.0
    include_unknown: bool = False
    exclude: List[str] = field(default_factory=list)
    extra_extensions: Dict[str, str] = field(default_factory=dict)
    contributor_aliases: Dict[str, str] = field(default_factory=dict)
    blob_cache_size: int = 2048
    heads: List[str] = field(default_factory=lambda: ["HEAD"])

    def __post_init__(self):
        if not 0.0 <= self.rename_threshold <= 1.0:
            raise ValueError(f"rename_threshold must be within [0, 1]: {self.rename_threshold}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1: {self.workers}")
        if self.max_file_size < 0:
            raise ValueError(f"max_file_size must not be negative: {self.max_file_size}")
        if not self.heads:
            raise ValueError("at least one head reference is required")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "AnalysisConfig":
        """Build a config from a mapping, ignoring keys it does not know."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known and v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: For an unsupported extension or a non-mapping document
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return data


def find_config_file(repo_path: str) -> Optional[str]:
    """Auto-discover a configuration file in the repository or current directory."""
    for search_dir in [repo_path, os.getcwd()]:
        for config_name in CONFIG_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path
    return None


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults

    Args:
        cli_args: Option values from the command line; ``None`` means unset
        config_path: Explicit config file, or None to auto-discover one
        preset_name: Preset name; falls back to the config file's ``preset``
        repo_path: Repository searched during auto-discovery
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: str,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None and v != ()}
        self.config: Dict[str, Any] = {}
        self.config_path = config_path

        if config_path:
            self.config = load_config_file(config_path)
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    self.config_path = auto_path
                    logger.info("Auto-discovered configuration: %s", auto_path)
                except (OSError, ValueError) as e:
                    logger.warning("Found config file but failed to load: %s", e)

        # kebab-case keys are accepted in files
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        self.preset_name = preset_name or self.config.get("preset")
        if self.preset_name and self.preset_name not in PRESETS:
            raise ValueError(f"Unknown preset: {self.preset_name}")
        self.preset = PRESETS.get(self.preset_name, {}) if self.preset_name else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default

    def analysis_config(self) -> AnalysisConfig:
        """The AnalysisConfig for the resolved values."""
        values = {f.name: self.get(f.name) for f in fields(AnalysisConfig)}
        if isinstance(values.get("exclude"), str):
            values["exclude"] = [values["exclude"]]
        if isinstance(values.get("heads"), str):
            values["heads"] = [values["heads"]]
        for key in ("exclude", "heads"):
            if values.get(key) is not None:
                values[key] = list(values[key])
        return AnalysisConfig.from_dict(values)
