"""Configuration management for PHP Janitor.

Settings come from three layers, later ones winning:

1. Built-in defaults
2. ``php-janitor.json`` in the project root (or an explicit path)
3. Environment variables, optionally loaded from the project's ``.env``
"""
import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from phpjanitor.analyzer.context import DEFAULT_RULES, AnalysisSettings
from phpjanitor.analyzer.models import Severity
from phpjanitor.errors import ConfigError

__version__ = "1.1.0"

CONFIG_FILE_NAME = "php-janitor.json"
DEFAULT_CACHE_DIR = ".phpjanitor-cache"
OUTPUT_FORMATS = ("text", "json", "github", "csv", "xml", "junit", "html")

DEFAULTS: Dict[str, Any] = {
    "php_version": "auto",
    "encoding": "auto",
    "entry_points": [],
    "ignore": {
        "paths": [],
        "patterns": [],
        "symbols": [],
        "dependencies": [],
    },
    "framework": "auto",
    "plugins": [],
    "rules": {rule: severity.value for rule, severity in DEFAULT_RULES.items()},
    "output": {"format": "text"},
    "cache": {
        "enabled": True,
        "directory": DEFAULT_CACHE_DIR,
    },
    "strict": False,
    "parallel": 1,
    "check_public_methods": False,
    "check_public_constants": False,
    "exclude_dirs": ["vendor", "node_modules", ".git"],
}


def deep_merge(base: Dict, override: Dict) -> Dict:
    """Merge override into a copy of base. Dicts merge recursively, lists are replaced."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration loader with project file and environment variable support."""

    def __init__(self, project_root: Optional[str | Path] = None, config_file: Optional[str | Path] = None):
        """Load configuration for a project.

        Args:
            project_root: Directory being analysed (defaults to cwd)
            config_file: Explicit config file; must exist when given

        Raises:
            ConfigError: If the config file is missing, not valid JSON or not an object
        """
        self.project_root = Path(project_root or Path.cwd()).resolve()

        # Load .env from project root
        load_dotenv(self.project_root / ".env")

        self.config_path: Optional[Path] = None
        data: Dict[str, Any] = {}
        if config_file is not None:
            self.config_path = Path(config_file)
            if not self.config_path.is_file():
                raise ConfigError(f"Config file not found: {self.config_path}")
        elif (self.project_root / CONFIG_FILE_NAME).is_file():
            self.config_path = self.project_root / CONFIG_FILE_NAME

        if self.config_path is not None:
            data = self._read_file(self.config_path)

        self.data = deep_merge(DEFAULTS, data)
        self._apply_env_overrides()

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e.msg} (line {e.lineno})") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a JSON object")
        return data

    def _apply_env_overrides(self):
        cache_dir = os.getenv("PHPJANITOR_CACHE_DIR")
        if cache_dir:
            self.data["cache"]["directory"] = cache_dir
        no_cache = os.getenv("PHPJANITOR_NO_CACHE")
        if no_cache and _env_flag(no_cache):
            self.data["cache"]["enabled"] = False
        parallel = os.getenv("PHPJANITOR_PARALLEL")
        if parallel:
            try:
                self.data["parallel"] = int(parallel)
            except ValueError as e:
                raise ConfigError(f"PHPJANITOR_PARALLEL must be an integer, got {parallel!r}") from e
        output_format = os.getenv("PHPJANITOR_FORMAT")
        if output_format:
            self.data["output"]["format"] = output_format

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    @property
    def php_version(self) -> str:
        return str(self.data["php_version"])

    @property
    def encoding(self) -> str:
        return str(self.data["encoding"])

    @property
    def framework(self) -> str:
        return str(self.data["framework"])

    @property
    def plugins(self) -> List[str]:
        return list(self.data["plugins"])

    @property
    def entry_points(self) -> List[str]:
        return list(self.data["entry_points"])

    @property
    def ignore_paths(self) -> List[str]:
        return list(self.data["ignore"].get("paths", []))

    @property
    def ignore_patterns(self) -> List[str]:
        """Symbol globs; ``ignore.symbols`` is accepted as an alias of ``ignore.patterns``."""
        ignore = self.data["ignore"]
        return list(ignore.get("patterns", [])) + list(ignore.get("symbols", []))

    @property
    def ignore_dependencies(self) -> List[str]:
        return list(self.data["ignore"].get("dependencies", []))

    @property
    def output_format(self) -> str:
        output_format = str(self.data["output"].get("format", "text")).lower()
        if output_format not in OUTPUT_FORMATS:
            raise ConfigError(f"Unknown output format: {output_format}")
        return output_format

    @property
    def cache_enabled(self) -> bool:
        return bool(self.data["cache"].get("enabled", True))

    @property
    def cache_dir(self) -> Path:
        """Cache directory; relative paths are resolved against the project root."""
        directory = Path(self.data["cache"].get("directory", DEFAULT_CACHE_DIR))
        if not directory.is_absolute():
            directory = self.project_root / directory
        return directory

    @property
    def strict(self) -> bool:
        return bool(self.data["strict"])

    @property
    def parallel(self) -> int:
        return max(1, int(self.data["parallel"]))

    @property
    def exclude_dirs(self) -> List[str]:
        dirs = list(self.data["exclude_dirs"])
        cache_name = Path(self.data["cache"].get("directory", DEFAULT_CACHE_DIR)).name
        if cache_name not in dirs:
            dirs.append(cache_name)
        return dirs

    def rule_severity(self, rule: str) -> Optional[Severity]:
        """Configured severity of a rule, or None when it is switched off.

        Raises:
            ConfigError: If the configured value is not a severity or "off"
        """
        value = self.data["rules"].get(rule, DEFAULT_RULES.get(rule))
        if value is None or value is False:
            return None
        if isinstance(value, Severity):
            return value
        value = str(value).lower()
        if value == "off":
            return None
        try:
            return Severity(value)
        except ValueError as e:
            raise ConfigError(f"Invalid severity {value!r} for rule {rule}") from e

    def analysis_settings(self) -> AnalysisSettings:
        """Rule severities, ignore lists and entry points for the analyzers."""
        rules = set(DEFAULT_RULES) | set(self.data["rules"])
        return AnalysisSettings(
            rules={rule: self.rule_severity(rule) for rule in rules},
            ignore_patterns=self.ignore_patterns,
            ignore_paths=self.ignore_paths,
            entry_points=self.entry_points,
            ignore_dependencies=self.ignore_dependencies,
            check_public_methods=bool(self.data["check_public_methods"]),
            check_public_constants=bool(self.data["check_public_constants"]),
        )


# Singleton instance
_config = None


def get_config(project_root: Optional[str | Path] = None, config_file: Optional[str | Path] = None,
               reload: bool = False) -> Config:
    """Get or create the singleton Config instance.

    Args:
        project_root: Project directory used on first creation
        config_file: Explicit config file used on first creation
        reload: Discard the cached instance and load again

    Returns:
        Config instance
    """
    global _config
    if _config is None or reload:
        _config = Config(project_root, config_file)
    return _config
