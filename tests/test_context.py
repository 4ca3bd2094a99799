"""Tests for issue_sync.context: runtime context and configuration precedence."""

import textwrap
from datetime import datetime, timezone

import pytest

from conftest import FIXED_NOW
from issue_sync.codec import Dialect
from issue_sync.config import Config
from issue_sync.config_loader import CONFIG_ENV_VAR
from issue_sync.context import AppContext, build_context


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """No config files and no issue-sync environment variables."""
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    for var in (
        CONFIG_ENV_VAR,
        "GITHUB_TOKEN",
        "ISSUE_SYNC_DATA_ROOT",
        "ISSUE_SYNC_STATE_DIR",
        "ISSUE_SYNC_DIALECT",
        "ISSUE_SYNC_MAX_PARALLEL_REQUESTS",
        "EDITOR",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


class TestAppContext:
    def test_clock(self, app_context):
        assert app_context.now() == FIXED_NOW

    def test_default_clock_is_utc(self, mock_config):
        now = AppContext(config=mock_config).now()
        assert now.tzinfo == timezone.utc

    def test_dialect(self, tmp_path):
        config = Config(data_root=tmp_path, state_dir=tmp_path, dialect="typ")
        assert AppContext(config=config).dialect is Dialect.TYPST

    @pytest.mark.parametrize("render_closed, hint", [(False, True), (True, False)])
    def test_fold_hint(self, tmp_path, render_closed, hint):
        config = Config(
            data_root=tmp_path, state_dir=tmp_path, render_closed=render_closed
        )
        assert AppContext(config=config).fold_hint is hint

    def test_conflict_tracker_in_state_dir(self, app_context, mock_config):
        tracker = app_context.conflict_tracker()
        assert tracker.conflicts_dir == mock_config.state_dir / "conflicts"
        assert tracker.clock() == FIXED_NOW



class TestBuildContext:
    def test_overrides(self, isolated):
        context = build_context(
            {
                "data_root": str(isolated / "data"),
                "state_dir": str(isolated / "state"),
                "dialect": "typ",
                "render_closed": True,
                "debug": True,
            }
        )
        config = context.config
        assert config.issues_dir == isolated / "data" / "issues"
        assert config.state_dir == isolated / "state"
        assert context.dialect is Dialect.TYPST
        assert config.render_closed and config.debug
        assert not context.fold_hint

    def test_yaml_settings_kept(self, isolated, monkeypatch):
        config_file = isolated / "config.yml"
        config_file.write_text(
            textwrap.dedent(
                """\
                storage:
                  data_root: ${ISSUE_SYNC_TEST_ROOT}
                logging:
                  level: DEBUG
                  file: /tmp/issue-sync-test.log
                open:
                  editor: nano
                """
            )
        )
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))
        monkeypatch.setenv("ISSUE_SYNC_TEST_ROOT", str(isolated / "yaml-root"))

        context = build_context()

        assert context.config.data_root == isolated / "yaml-root"
        assert context.config.editor == "nano"
        assert context.settings.logging.level == "DEBUG"
        assert context.settings.logging.file == "/tmp/issue-sync-test.log"

    def test_clock_injected(self, isolated):
        fixed = datetime(2020, 1, 1, tzinfo=timezone.utc)
        context = build_context(
            {"data_root": str(isolated)}, clock=lambda: fixed
        )
        assert context.now() == fixed

    def test_invalid_value(self, isolated):
        with pytest.raises(ValueError):
            build_context({"dialect": "docx"})
