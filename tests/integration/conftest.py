"""Pytest fixtures for integration tests.

The CLI tests run inside a scratch project directory so the default
``stackwright.toml`` search, source folder and output directory all resolve
relative to it.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI runner."""
    return CliRunner()


@pytest.fixture
def project_dir(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Change into the scratch workspace for the duration of a test."""
    monkeypatch.chdir(workspace)
    for key in ("STACKWRIGHT_PATHS__SOURCE_FOLDER", "STACKWRIGHT_PATHS__OUTPUT_DIR"):
        monkeypatch.delenv(key, raising=False)
    yield workspace
    # The CLI points the root handler at the runner's stderr, which is gone now.
    logging.getLogger().handlers.clear()
