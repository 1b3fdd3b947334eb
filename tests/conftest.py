"""Pytest configuration and fixtures for SweepGraph tests."""

import shutil
from pathlib import Path
from typing import Callable, Dict

import pytest

from sweepgraph import config


@pytest.fixture(autouse=True)
def sweep_home(tmp_path: Path, monkeypatch) -> Path:
    """Point every storage path at a per-test home so no test touches ~/.sweepgraph."""
    home = tmp_path / "sweep-home"
    monkeypatch.setattr(config, "BASE_DIR", home)
    monkeypatch.setattr(config, "BACKUP_DIR", home / "backups")
    monkeypatch.setattr(config, "REPORT_DIR", home / "reports")
    monkeypatch.setattr(config, "CONFIG_FILE", home / "config.toml")
    return home


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[Dict[str, str]], Path]:
    """Factory writing ``{relative path: text}`` into a fresh source directory."""
    counter = {"n": 0}

    def _make(files: Dict[str, str]) -> Path:
        counter["n"] += 1
        root = tmp_path / f"src{counter['n']}"
        root.mkdir()
        for rel, text in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return root

    return _make


SCENARIO_A = """function doGet(e) {
  return helper();
}
"""

SCENARIO_B = """function helper() {
  return 1;
}

function orphan() {
  return 2;
}
"""


@pytest.fixture
def scenario_tree(make_tree) -> Path:
    """File A defines doGet and calls helper; file B defines helper and orphan."""
    return make_tree({"A.gs": SCENARIO_A, "B.gs": SCENARIO_B})


@pytest.fixture
def sample_project_path() -> Path:
    """Read-only path of the bundled Apps Script style project."""
    return Path(__file__).parent / "fixtures" / "sample_gas_project"


@pytest.fixture
def sample_project(tmp_path: Path, sample_project_path: Path) -> Path:
    """Writable copy of the sample project."""
    dest = tmp_path / "sample_gas_project"
    shutil.copytree(sample_project_path, dest)
    return dest


def read_tree(root: Path) -> Dict[str, bytes]:
    """Map of relative path -> file bytes, for before/after comparisons."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def tree_contents() -> Callable[[Path], Dict[str, bytes]]:
    return read_tree
