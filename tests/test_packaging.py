"""Tests for the distribution metadata."""

from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent


def test_long_description_is_user_readme():
    tomllib = pytest.importorskip("tomllib")
    project = tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))["project"]

    readme = ROOT / project["readme"]
    assert readme.name == "README.md"
    assert "uart-bootloader flash" in readme.read_text(encoding="utf-8")
    assert project["scripts"]["uart-bootloader"] == "uart_bootloader.cli:main"
