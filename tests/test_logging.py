"""Tests for the package logging bootstrap."""

from __future__ import annotations

import logging
import uuid

import pytest

import smart_pos


@pytest.fixture
def logger_name():
    name = f"smart_pos.test_{uuid.uuid4().hex}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_configure_logging_writes_to_given_directory(tmp_path, logger_name):
    logger = smart_pos.configure_logging(logger_name, log_dir=tmp_path / "logs", level=logging.DEBUG)
    logger.debug("hello from the till")
    for handler in logger.handlers:
        handler.flush()

    log_file = tmp_path / "logs" / smart_pos.LOG_FILE_NAME
    assert "hello from the till" in log_file.read_text(encoding="utf-8")
    assert logger.level == logging.DEBUG


def test_configure_logging_is_idempotent(tmp_path, logger_name):
    first = smart_pos.configure_logging(logger_name, log_dir=tmp_path)
    handler_count = len(first.handlers)
    second = smart_pos.configure_logging(logger_name, log_dir=tmp_path)
    assert second is first
    assert len(second.handlers) == handler_count == 2


def test_environment_overrides_directory_and_level(monkeypatch, tmp_path):
    monkeypatch.setenv(smart_pos.LOG_DIR_ENV_VAR, str(tmp_path / "custom"))
    monkeypatch.setenv(smart_pos.LOG_LEVEL_ENV_VAR, "warning")
    assert smart_pos.resolve_log_dir() == tmp_path / "custom"
    assert smart_pos.resolve_log_level() == logging.WARNING


def test_unknown_level_falls_back_to_info(monkeypatch):
    monkeypatch.setenv(smart_pos.LOG_LEVEL_ENV_VAR, "chatty")
    monkeypatch.delenv(smart_pos.LOG_DIR_ENV_VAR, raising=False)
    assert smart_pos.resolve_log_level() == logging.INFO
    assert smart_pos.resolve_log_dir() == smart_pos.PROJECT_ROOT / ".logs"
