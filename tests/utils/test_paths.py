"""Tests for platform path resolution."""

from pathlib import Path

from tmz.utils.paths import AppPaths


class TestAppPaths:
    """Tests for AppPaths discovery and overrides."""

    def test_discover_uses_platform_dirs(self, tmp_path, monkeypatch):
        """Files land under the platformdirs user directories."""
        monkeypatch.setattr("platformdirs.user_config_dir", lambda *a, **kw: str(tmp_path / "cfg" / "tmz"))
        monkeypatch.setattr("platformdirs.user_data_dir", lambda *a, **kw: str(tmp_path / "dat" / "tmz"))
        monkeypatch.setattr("platformdirs.user_state_dir", lambda *a, **kw: str(tmp_path / "st" / "tmz"))

        paths = AppPaths.discover()
        assert paths.config_file == tmp_path / "cfg" / "tmz" / "config.yaml"
        assert paths.cache_db == tmp_path / "dat" / "tmz" / "cache.db"
        assert paths.tokens_file == tmp_path / "st" / "tmz" / "tokens.json"
        assert paths.pid_file == tmp_path / "st" / "tmz" / "tmz.pid"
        assert paths.log_file == tmp_path / "st" / "tmz" / "tmz.log"

    def test_overrides(self, app_paths, tmp_path):
        paths = app_paths.with_overrides(data_dir=str(tmp_path / "elsewhere"))
        assert paths.data_dir == tmp_path / "elsewhere"
        assert paths.state_dir == app_paths.state_dir

    def test_override_expands_user(self, app_paths):
        paths = app_paths.with_overrides(state_dir="~/tmz-state")
        assert paths.state_dir == Path.home() / "tmz-state"

    def test_empty_override_ignored(self, app_paths):
        assert app_paths.with_overrides(data_dir="", state_dir=None) == app_paths

    def test_ensure_directories(self, app_paths):
        app_paths.ensure_directories()
        assert app_paths.data_dir.is_dir()
        assert app_paths.state_dir.is_dir()
