"""Tests for issue_sync.config_loader: layered YAML config files."""

import textwrap

import pytest
import yaml

from issue_sync.config_loader import (
    CONFIG_ENV_VAR,
    _expand,
    discover_config_files,
    interpolate_env_vars,
    load_hierarchical_config,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Empty cwd and home so only explicitly written files are found."""
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    return home, work


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    def test_set_var(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN_TEST", "ghp_1")
        assert interpolate_env_vars("${GH_TOKEN_TEST}") == "ghp_1"

    def test_unset_var_is_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("x${UNSET_VAR_XYZ}y") == "xy"

    def test_fallback(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR", "")
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-md}") == "md"
        assert interpolate_env_vars("${EMPTY_VAR:-typ}") == "typ"

    def test_unterminated_reference_kept(self):
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"

    def test_recursive(self, monkeypatch):
        monkeypatch.setenv("DATA_DIR_TEST", "/srv/issues")
        data = {
            "storage": {"data_root": "${DATA_DIR_TEST}", "dialect": "md"},
            "list": ["${DATA_DIR_TEST}", 3],
            "github": {"max_parallel_requests": 4},
        }
        assert _expand(data) == {
            "storage": {"data_root": "/srv/issues", "dialect": "md"},
            "list": ["/srv/issues", 3],
            "github": {"max_parallel_requests": 4},
        }


# -------------------------------------------------------------------------
# Discovery and merge
# -------------------------------------------------------------------------


class TestHierarchy:
    def test_no_files(self, isolated):
        assert discover_config_files() == []
        assert load_hierarchical_config() == {}

    def test_discovery_order(self, isolated, tmp_path, monkeypatch):
        home, work = isolated
        user = _write(home / ".config/issue_sync/config.yml", "{}\n")
        project = _write(work / ".issue_sync/config.yml", "{}\n")
        explicit = _write(tmp_path / "explicit.yml", "{}\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(explicit))
        assert discover_config_files() == [
            explicit.resolve(),
            project,
            user,
        ]

    def test_project_section_wins(self, isolated):
        home, work = isolated
        _write(
            home / ".config/issue_sync/config.yml",
            """\
            github:
              token: user-token
            open:
              editor: vim
            """,
        )
        _write(
            work / ".issue_sync/config.yml",
            """\
            github:
              max_parallel_requests: 8
            """,
        )
        merged = load_hierarchical_config()
        assert merged["github"] == {"max_parallel_requests": 8}
        assert merged["open"] == {"editor": "vim"}

    def test_interpolation_after_merge(self, isolated, monkeypatch):
        _, work = isolated
        monkeypatch.delenv("ISSUE_ROOT_TEST", raising=False)
        _write(
            work / ".issue_sync/config.yml",
            "storage:\n  data_root: ${ISSUE_ROOT_TEST:-/tmp/issues}\n",
        )
        assert load_hierarchical_config() == {
            "storage": {"data_root": "/tmp/issues"}
        }

    def test_non_dict_root_skipped(self, isolated):
        _, work = isolated
        _write(work / ".issue_sync/config.yml", "- just\n- a list\n")
        assert load_hierarchical_config() == {}

    def test_invalid_yaml_raises(self, isolated):
        _, work = isolated
        _write(work / ".issue_sync/config.yml", "github: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()

    def test_empty_file(self, isolated):
        _, work = isolated
        _write(work / ".issue_sync/config.yml", "# nothing yet\n")
        assert load_hierarchical_config() == {}

    def test_tags_rejected(self, isolated):
        _, work = isolated
        _write(work / ".issue_sync/config.yml", "github: !include other.yml\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()
