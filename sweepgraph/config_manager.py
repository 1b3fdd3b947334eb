"""Layered TOML configuration: built-in defaults < global file < project file."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import toml

from . import config
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class SweepSettings:
    """Effective settings for one run."""

    entry_points: List[str] = field(default_factory=lambda: list(config.DEFAULT_ENTRY_POINTS))
    protected_patterns: List[str] = field(default_factory=lambda: list(config.DEFAULT_PROTECTED_PATTERNS))
    root_files: List[str] = field(default_factory=lambda: list(config.DEFAULT_ROOT_FILES))
    protected_substrings: List[str] = field(default_factory=lambda: list(config.DEFAULT_PROTECTED_SUBSTRINGS))
    config_files: List[str] = field(default_factory=lambda: list(config.DEFAULT_CONFIG_FILES))
    large_file_bytes: int = config.DEFAULT_LARGE_FILE_BYTES
    bridge_objects: List[str] = field(default_factory=lambda: list(config.DEFAULT_BRIDGE_OBJECTS))
    bridge_modifiers: List[str] = field(default_factory=lambda: list(config.DEFAULT_BRIDGE_MODIFIERS))
    extra_builtins: List[str] = field(default_factory=list)
    skip_dirs: List[str] = field(default_factory=lambda: list(config.DEFAULT_SKIP_DIRS))
    required_files: List[str] = field(default_factory=lambda: list(config.DEFAULT_REQUIRED_FILES))
    required_symbols: List[str] = field(default_factory=lambda: list(config.DEFAULT_REQUIRED_SYMBOLS))
    risk_level: str = config.DEFAULT_RISK_LEVEL
    validation_command: Optional[str] = None
    backup_dir: Optional[str] = None
    report_dir: Optional[str] = None
    retention_days: int = config.DEFAULT_RETENTION_DAYS

    def resolved_backup_dir(self) -> Path:
        return Path(self.backup_dir).expanduser() if self.backup_dir else config.BACKUP_DIR

    def resolved_report_dir(self) -> Path:
        return Path(self.report_dir).expanduser() if self.report_dir else config.REPORT_DIR

    def to_toml(self) -> str:
        payload: Dict[str, Dict[str, Any]] = {}
        values = asdict(self)
        for (section, key), attr in _KEY_MAP.items():
            value = values[attr]
            if value is None:
                continue
            payload.setdefault(section, {})[key] = value
        return toml.dumps(payload)


# (section, key) in the TOML file -> SweepSettings attribute
_KEY_MAP: Dict[Tuple[str, str], str] = {
    ("roots", "entry_points"): "entry_points",
    ("roots", "protected_patterns"): "protected_patterns",
    ("roots", "root_files"): "root_files",
    ("risk", "level"): "risk_level",
    ("risk", "protected_substrings"): "protected_substrings",
    ("risk", "config_files"): "config_files",
    ("risk", "large_file_bytes"): "large_file_bytes",
    ("extraction", "bridge_objects"): "bridge_objects",
    ("extraction", "bridge_modifiers"): "bridge_modifiers",
    ("extraction", "extra_builtins"): "extra_builtins",
    ("extraction", "skip_dirs"): "skip_dirs",
    ("backup", "dir"): "backup_dir",
    ("backup", "retention_days"): "retention_days",
    ("backup", "required_files"): "required_files",
    ("backup", "required_symbols"): "required_symbols",
    ("validation", "command"): "validation_command",
    ("report", "dir"): "report_dir",
}

# Appended to, rather than replacing, the corresponding list.
_EXTEND_KEYS: Dict[Tuple[str, str], str] = {
    ("roots", "extra_entry_points"): "entry_points",
    ("roots", "extra_protected_patterns"): "protected_patterns",
}


def load_toml_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigError(f"Could not read configuration file {path}: {exc}") from exc


def _expected_type(attr: str) -> type:
    for f in fields(SweepSettings):
        if f.name == attr:
            default = f.default_factory() if callable(f.default_factory) else f.default  # type: ignore[misc]
            if isinstance(default, list):
                return list
            if isinstance(default, int):
                return int
            return str
    raise KeyError(attr)


def _coerce(attr: str, value: Any, source: Path) -> Any:
    expected = _expected_type(attr)
    if expected is list:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{source}: '{attr}' must be a list of strings")
        return list(value)
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"{source}: '{attr}' must be a non-negative integer")
        return value
    if not isinstance(value, str):
        raise ConfigError(f"{source}: '{attr}' must be a string")
    return value


def apply_file(settings: SweepSettings, path: Path) -> SweepSettings:
    """Overlay the values found in the TOML file at *path* onto *settings*."""
    data = load_toml_file(path)
    for section, table in data.items():
        if not isinstance(table, dict):
            raise ConfigError(f"{path}: top-level key '{section}' must be a table")
        for key, value in table.items():
            if (section, key) in _KEY_MAP:
                attr = _KEY_MAP[(section, key)]
                setattr(settings, attr, _coerce(attr, value, path))
            elif (section, key) in _EXTEND_KEYS:
                attr = _EXTEND_KEYS[(section, key)]
                current = getattr(settings, attr)
                extra = [v for v in _coerce(attr, value, path) if v not in current]
                setattr(settings, attr, current + extra)
            else:
                logger.warning("Ignoring unknown setting [%s] %s in %s", section, key, path)
    logger.debug("Loaded settings from %s", path)
    return settings


def find_project_config(tree_root: Path) -> Optional[Path]:
    """Look for ``sweepgraph.toml`` inside the tree, then beside it."""
    for candidate in (tree_root / config.PROJECT_CONFIG_NAME, tree_root.parent / config.PROJECT_CONFIG_NAME):
        if candidate.is_file():
            return candidate
    return None


def load_settings(
    tree_root: Optional[Path] = None,
    config_file: Optional[Path] = None,
) -> SweepSettings:
    """Build effective settings for a run.

    Args:
        tree_root: Analysed directory; its ``sweepgraph.toml`` is picked up.
        config_file: Explicit file that takes precedence over the project file.

    Returns:
        The merged :class:`SweepSettings`.
    """
    settings = SweepSettings()
    if config.CONFIG_FILE.is_file():
        apply_file(settings, config.CONFIG_FILE)

    project_file = config_file
    if project_file is None and tree_root is not None:
        project_file = find_project_config(tree_root)
    if project_file is not None:
        if not project_file.is_file():
            raise ConfigError(f"Configuration file not found: {project_file}")
        apply_file(settings, project_file)
    return settings
