"""Unit tests for distlab logging configuration."""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from unittest import mock

import distlab
from distlab.components.consensus.raft import RaftEngine
from distlab.logging_config import (
    LOGGER_NAME,
    JsonFormatter,
    _drop_handlers,
    _to_level,
    _package_logger,
)


class TestSilentByDefault:
    """The package logger ships with only a NullHandler."""

    def test_import_produces_no_log_output(self, capfd):
        """Reloading the package writes nothing to stdout or stderr."""
        import importlib

        importlib.reload(distlab)

        captured = capfd.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_logger_has_null_handler(self):
        logger = logging.getLogger(LOGGER_NAME)
        null_handlers = [h for h in logger.handlers if isinstance(h, logging.NullHandler)]
        assert len(null_handlers) >= 1

    def test_engine_runs_silently(self, capfd):
        """Protocol activity is not printed unless logging is enabled."""
        raft = RaftEngine()
        raft.start_election("node-0")
        raft.deliver_all()

        captured = capfd.readouterr()
        assert captured.err == ""


class TestEnableConsoleLogging:
    """Console handler attached to the package logger."""

    def test_sets_level(self):
        distlab.enable_console_logging(level="DEBUG")
        assert _package_logger().level == logging.DEBUG

    def test_engine_transitions_reach_stderr(self, capfd):
        """An election outcome is logged at INFO with the engine name."""
        distlab.enable_console_logging(level="INFO")

        raft = RaftEngine(name="cluster-a")
        raft.start_election("node-0")
        raft.deliver_all()

        captured = capfd.readouterr()
        assert "[cluster-a] node-0 became leader for term 1" in captured.err

    def test_custom_format(self, capfd):
        distlab.enable_console_logging(level="INFO", format="[CUSTOM] %(message)s")

        logging.getLogger(f"{LOGGER_NAME}.test").info("hello")

        captured = capfd.readouterr()
        assert "[CUSTOM] hello" in captured.err


class TestEnableFileLogging:
    """Rotating file handler setup."""

    def test_creates_parent_directories(self, tmp_path):
        log_file = tmp_path / "subdir" / "nested" / "test.log"
        distlab.enable_file_logging(log_file)

        assert log_file.parent.exists()

    def test_writes_to_file(self, tmp_path):
        log_file = tmp_path / "test.log"
        distlab.enable_file_logging(log_file, level="INFO")

        logging.getLogger(f"{LOGGER_NAME}.test").info("file test message")
        for handler in _package_logger().handlers:
            handler.flush()

        assert "file test message" in log_file.read_text()

    def test_respects_max_bytes(self, tmp_path):
        handler = distlab.enable_file_logging(tmp_path / "test.log", max_bytes=1024, backup_count=3)

        assert handler.maxBytes == 1024
        assert handler.backupCount == 3


class TestEnableJsonLogging:
    """Tests for JSON output."""

    def test_outputs_valid_json(self, capfd):
        distlab.enable_json_logging(level="INFO")

        logging.getLogger(f"{LOGGER_NAME}.test").info("json test")

        data = json.loads(capfd.readouterr().err.strip())
        assert data["message"] == "json test"
        assert data["level"] == "INFO"
        assert "timestamp" in data

    def test_writes_json_to_file(self, tmp_path):
        log_file = tmp_path / "test.json"
        distlab.enable_json_file_logging(log_file, level="INFO")

        logging.getLogger(f"{LOGGER_NAME}.test").info("json file test")
        for handler in _package_logger().handlers:
            handler.flush()

        assert json.loads(log_file.read_text().strip())["message"] == "json file test"


class TestConfigureFromEnv:
    """DISTLAB_* environment variables."""

    def test_respects_level_env(self):
        with mock.patch.dict(os.environ, {"DISTLAB_LOGGING": "DEBUG"}, clear=False):
            distlab.configure_from_env()

        assert _package_logger().level == logging.DEBUG

    def test_respects_log_file_env(self, tmp_path):
        log_file = tmp_path / "env_test.log"
        with mock.patch.dict(
            os.environ,
            {"DISTLAB_LOGGING": "INFO", "DISTLAB_LOG_FILE": str(log_file)},
            clear=False,
        ):
            distlab.configure_from_env()

        rotating = [h for h in _package_logger().handlers if isinstance(h, RotatingFileHandler)]
        assert len(rotating) >= 1

    def test_does_nothing_when_no_env_vars(self):
        initial_count = len(_package_logger().handlers)

        with mock.patch.dict(os.environ, {}, clear=True):
            distlab.configure_from_env()

        assert len(_package_logger().handlers) == initial_count


class TestLevels:
    """Tests for set_level, set_module_level and disable_logging."""

    def test_sets_level_by_string(self):
        distlab.set_level("WARNING")
        assert _package_logger().level == logging.WARNING

    def test_sets_submodule_level(self):
        distlab.set_module_level("components.consensus.raft", "DEBUG")

        sublogger = logging.getLogger(f"{LOGGER_NAME}.components.consensus.raft")
        assert sublogger.level == logging.DEBUG

    def test_disable_silences_output(self, capfd):
        distlab.enable_console_logging(level="DEBUG")
        distlab.disable_logging()

        logging.getLogger(f"{LOGGER_NAME}.test").critical("this should not appear")

        assert "this should not appear" not in capfd.readouterr().err


class TestHelpers:
    """Tests for the formatter and internal helpers."""

    def test_json_formatter(self):
        record = logging.LogRecord(
            name="distlab.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="test message",
            args=(),
            exc_info=None,
        )

        data = json.loads(JsonFormatter().format(record))

        assert data["logger"] == "distlab.test"
        assert data["message"] == "test message"

    def test_to_level(self):
        assert _to_level("info") == logging.INFO
        assert _to_level(logging.ERROR) == logging.ERROR
        assert _to_level("INVALID") == logging.INFO

    def test_drop_handlers_keeps_null_handler(self):
        distlab.enable_console_logging()

        _drop_handlers()

        handlers = _package_logger().handlers
        assert all(isinstance(h, logging.NullHandler) for h in handlers)
