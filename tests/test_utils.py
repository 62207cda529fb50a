"""Tests covering the utilities modules."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from lorekeeper.utils import logging as logging_utils


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_writes_session_tagged_file(tmp_path: Path, restore_root_logging) -> None:
    log_path = logging_utils.setup_logging(
        level=logging.INFO,
        log_dir=tmp_path / "logs",
        console=False,
        force=True,
    )

    logger = logging.getLogger("lorekeeper.tests")
    logger.info("Logging smoke test")
    logger.info("Tagged line", extra={"session_id": "sess-9"})
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "logs" / "lorekeeper.log"
    assert logging_utils.get_log_path() == log_path
    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert any("| - | Logging smoke test" in line for line in lines)
    assert any("| sess-9 | Tagged line" in line for line in lines)


def test_setup_logging_honours_env_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, restore_root_logging
) -> None:
    monkeypatch.setenv("LOREKEEPER_LOG_DIR", str(tmp_path / "env-logs"))

    log_path = logging_utils.setup_logging(console=False, force=True)

    assert log_path.parent == tmp_path / "env-logs"
    assert logging.getLogger("httpx").level == logging.WARNING


def test_session_filter_fills_missing_field() -> None:
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

    assert logging_utils.SessionFieldFilter().filter(record) is True
    assert record.session_id == "-"
