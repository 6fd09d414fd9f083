# tests/shared/test_logger.py
import logging

import pytest

from hostwatch.shared.utils.logger import LoggerSetup


@pytest.fixture
def restore_logger_settings(monkeypatch):
    console_level = LoggerSetup._console_level
    for attr in ('_logs_dir', '_max_bytes', '_backup_count'):
        monkeypatch.setattr(LoggerSetup, attr, getattr(LoggerSetup, attr))
    yield
    LoggerSetup.configure(level=logging.getLevelName(console_level))


def test_file_handler_uses_configured_rotation(restore_logger_settings, tmp_path):
    LoggerSetup.configure(logs_dir=str(tmp_path), max_bytes=2048, backup_count=2)

    handler = LoggerSetup.create_file_handler(LoggerSetup._get_log_path("hostwatch.tests.rotation"))
    try:
        assert handler.maxBytes == 2048
        assert handler.backupCount == 2
        assert handler.level == logging.DEBUG
        assert handler.baseFilename == str(tmp_path / "rotation.log")
    finally:
        handler.close()


def test_default_rotation(restore_logger_settings, tmp_path):
    handler = LoggerSetup.create_file_handler(str(tmp_path / "default.log"))
    try:
        assert handler.maxBytes == 10 * 1024 * 1024
        assert handler.backupCount == 5
    finally:
        handler.close()


def test_configure_updates_existing_console_level(restore_logger_settings):
    logger = LoggerSetup.setup("hostwatch.tests.levels")

    LoggerSetup.configure(level="ERROR")

    console = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    assert console and all(h.level == logging.ERROR for h in console)
