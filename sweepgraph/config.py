"""Paths and built-in defaults for SweepGraph."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("SWEEPGRAPH_HOME", str(Path.home() / ".sweepgraph"))).expanduser()
BACKUP_DIR = BASE_DIR / "backups"
REPORT_DIR = BASE_DIR / "reports"
CONFIG_FILE = BASE_DIR / "config.toml"
PROJECT_CONFIG_NAME = "sweepgraph.toml"

# Source kinds by extension; anything else is ignored by the scanner.
BACKEND_EXTENSIONS = {".gs", ".js"}
FRONTEND_EXTENSIONS = {".html", ".htm"}
CONFIG_EXTENSIONS = {".json"}

# Framework-mandated callbacks: invoked by the runtime, never by name in code.
DEFAULT_ENTRY_POINTS = [
    "doGet", "doPost", "include", "onOpen", "onEdit", "onFormSubmit",
    "onInstall", "onSelectionChange", "onChange", "installTrigger",
    "uninstallTrigger",
]
DEFAULT_PROTECTED_PATTERNS = [r"^test", r"^debug"]
DEFAULT_ROOT_FILES = ["appsscript.json"]

DEFAULT_PROTECTED_SUBSTRINGS = ["init", "setup", "config", "utils", "helper"]
DEFAULT_CONFIG_FILES = ["appsscript.json", "package.json", ".clasp.json"]
DEFAULT_LARGE_FILE_BYTES = 1000

DEFAULT_BRIDGE_OBJECTS = ["google.script.run"]
DEFAULT_BRIDGE_MODIFIERS = ["withSuccessHandler", "withFailureHandler", "withUserObject"]

DEFAULT_SKIP_DIRS = [
    ".git", "node_modules", ".sweepgraph", "__pycache__", ".venv",
    "dist", "build", "coverage",
]

DEFAULT_REQUIRED_FILES = ["appsscript.json"]
DEFAULT_REQUIRED_SYMBOLS = ["doGet"]

DEFAULT_RISK_LEVEL = "low"
DEFAULT_RETENTION_DAYS = 7
