"""Pytest bootstrap for local source imports and shared mirror fixtures.

The ``pytest`` console script can run with a sys.path that excludes the
repository root. Ensure ``import folder_mirror`` resolves to the local module.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT_STR = str(PROJECT_ROOT)

if PROJECT_ROOT_STR not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_STR)

from folder_mirror import MirrorConfig, RootPair  # noqa: E402


def _write_file(path: Path, content: str = "data", mtime_ns: int | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


@pytest.fixture
def write_file():
    return _write_file


@pytest.fixture
def roots(tmp_path: Path) -> RootPair:
    source = tmp_path / "source"
    replica = tmp_path / "replica"
    source.mkdir()
    replica.mkdir()
    return RootPair(source=source, replica=replica)


@pytest.fixture
def config(roots: RootPair, tmp_path: Path) -> MirrorConfig:
    return MirrorConfig(roots=roots, interval_sec=1, log_file=tmp_path / "mirror.log")


@pytest.fixture
def logger() -> logging.Logger:
    # Propagates to the root logger so caplog sees every event.
    log = logging.getLogger("tests.folder_mirror")
    log.setLevel(logging.INFO)
    return log
