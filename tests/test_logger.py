"""Tests for logger.py: setup_logging() and JsonFormatter.

Strategy: mock logging.basicConfig to inspect the handlers setup_logging
builds, since pytest's log capture interferes with real basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from issue_sync.logger import DEFAULT_LOG_FILE, JsonFormatter, setup_logging


def _handlers(mock_basic):
    return mock_basic.call_args[1]["handlers"]


def _close(handlers):
    for handler in handlers:
        if isinstance(handler, logging.FileHandler):
            handler.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    @patch("issue_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        setup_logging(mode="cli")
        handlers = _handlers(mock_basic)
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr

    @patch("issue_sync.logger.logging.basicConfig")
    def test_cli_mode_adds_log_file(self, mock_basic, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))
        handlers = _handlers(mock_basic)
        assert [type(h) for h in handlers] == [
            logging.StreamHandler,
            logging.FileHandler,
        ]
        _close(handlers)

    @patch("issue_sync.logger.logging.basicConfig")
    def test_editor_mode_logs_to_file_only(self, mock_basic, tmp_path):
        """While the editor owns the terminal nothing goes to stderr."""
        log_file = tmp_path / "editor.log"
        setup_logging(mode="editor", log_file=str(log_file))
        handlers = _handlers(mock_basic)
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == str(log_file)
        _close(handlers)

    @patch("issue_sync.logger.logging.basicConfig")
    def test_editor_mode_uses_log_file_env(self, mock_basic, tmp_path, monkeypatch):
        log_file = tmp_path / "from-env.log"
        monkeypatch.setenv("LOG_FILE", str(log_file))
        setup_logging(mode="editor")
        handlers = _handlers(mock_basic)
        assert handlers[0].baseFilename == str(log_file)
        _close(handlers)

    def test_default_log_file_name(self):
        assert DEFAULT_LOG_FILE.endswith("issue-sync.log")

    @patch("issue_sync.logger.logging.basicConfig")
    def test_default_levels(self, mock_basic, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO
        setup_logging(mode="editor", log_file=str(tmp_path / "e.log"))
        assert mock_basic.call_args[1]["level"] == logging.WARNING
        _close(_handlers(mock_basic))

    @patch("issue_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("issue_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("issue_sync.logger.logging.basicConfig")
    def test_json_format(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")
        assert isinstance(_handlers(mock_basic)[0].formatter, JsonFormatter)

    @patch("issue_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("charset_normalizer").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


def _record(msg, args=(), exc_info=None, level=logging.INFO):
    return logging.LogRecord(
        name="issue_sync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestJsonFormatter:
    def test_basic_output(self):
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        data = json.loads(formatter.format(_record("Synced %s", ("#4",))))
        assert data["level"] == "INFO"
        assert data["logger"] == "issue_sync.sync.engine"
        assert data["msg"] == "Synced #4"
        assert "ts" in data
        assert "exc" not in data

    def test_includes_exception(self):
        formatter = JsonFormatter()
        try:
            raise RuntimeError("push failed")
        except RuntimeError:
            exc_info = sys.exc_info()
        output = formatter.format(
            _record("boom", exc_info=exc_info, level=logging.ERROR)
        )
        assert "\n" not in output
        assert "push failed" in json.loads(output)["exc"]
