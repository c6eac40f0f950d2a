"""File path resolution using platformdirs.

Directories follow the platform conventions (XDG on Linux, including the
XDG_CONFIG_HOME / XDG_DATA_HOME / XDG_STATE_HOME overrides):
  config: ~/.config/tmz/config.yaml
  data:   ~/.local/share/tmz/        (cache.db)
  state:  ~/.local/state/tmz/        (tokens.json, tmz.pid, tmz.log)

The paths section of the config file can point data and state elsewhere.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path

import platformdirs

from tmz.errors import PathResolutionError

APP_NAME = "tmz"

CONFIG_FILE_NAME = "config.yaml"
CACHE_DB_NAME = "cache.db"
TOKENS_FILE_NAME = "tokens.json"
PID_FILE_NAME = "tmz.pid"
LOG_FILE_NAME = "tmz.log"


def _expand(value: str) -> Path:
    return Path(os.path.expandvars(value)).expanduser()


@dataclass(frozen=True)
class AppPaths:
    """Resolved locations of every file tmz reads or writes."""

    config_file: Path
    data_dir: Path
    state_dir: Path

    @classmethod
    def discover(cls) -> "AppPaths":
        """Resolve the platform default directories.

        Raises:
            PathResolutionError: If platformdirs cannot determine a directory.
        """
        try:
            config_dir = Path(platformdirs.user_config_dir(APP_NAME, appauthor=False))
            data_dir = Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))
            state_dir = Path(platformdirs.user_state_dir(APP_NAME, appauthor=False))
        except (KeyError, RuntimeError, OSError) as e:
            raise PathResolutionError(f"cannot determine user directories: {e}") from e
        return cls(
            config_file=config_dir / CONFIG_FILE_NAME,
            data_dir=data_dir,
            state_dir=state_dir,
        )

    def with_overrides(
        self,
        data_dir: str | None = None,
        state_dir: str | None = None,
    ) -> "AppPaths":
        """Return a copy with the configured directory overrides applied."""
        paths = self
        if data_dir:
            paths = replace(paths, data_dir=_expand(data_dir))
        if state_dir:
            paths = replace(paths, state_dir=_expand(state_dir))
        return paths

    @property
    def cache_db(self) -> Path:
        return self.data_dir / CACHE_DB_NAME

    @property
    def tokens_file(self) -> Path:
        return self.state_dir / TOKENS_FILE_NAME

    @property
    def pid_file(self) -> Path:
        return self.state_dir / PID_FILE_NAME

    @property
    def log_file(self) -> Path:
        return self.state_dir / LOG_FILE_NAME

    def ensure_directories(self) -> None:
        """Create the data and state directories if they don't exist.

        Raises:
            PathResolutionError: If a directory cannot be created.
        """
        for d in (self.data_dir, self.state_dir):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PathResolutionError(f"cannot create directory {d}: {e}") from e
