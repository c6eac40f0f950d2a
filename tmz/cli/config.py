"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./tmz.yaml (working directory)
3. <user config dir>/tmz/config.yaml (~/.config/tmz/config.yaml on Linux)

Environment variables override YAML: TMZ_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from tmz.errors import ConfigError
from tmz.utils.paths import AppPaths

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "TMZ_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class LoggingConfig(BaseModel):
    """Log level and optional log file.

    An unset level means "warning" for foreground commands and "info" for
    the daemon. -v/-q on the command line win over the file.
    """

    level: str | None = None
    file: str | None = None

    def log_path(self) -> Path | None:
        return Path(self.file).expanduser() if self.file else None


class PathsConfig(BaseModel):
    """Overrides for the platform data and state directories."""

    data_dir: str | None = None
    state_dir: str | None = None


class AuthConfig(BaseModel):
    """Credential lifecycle settings."""

    buffer_seconds: int = 300
    login_timeout: int = 300
    refresh_timeout: int = 60
    auth_script: str | None = None
    backend: Literal["file", "keyring"] = "file"


class DaemonConfig(BaseModel):
    """Configuration for the background sync daemon.

    Intervals are in seconds. The refresh interval sits inside the
    typical one-hour token lifetime.
    """

    refresh_interval: int = 3000
    sync_interval: int = 300
    sync_top_chats: int = 30
    sync_messages_per_chat: int = 50
    stop_timeout: float = 5.0

    @field_validator("refresh_interval", "sync_interval")
    @classmethod
    def positive_interval(cls, v: int) -> int:
        """Reject zero or negative timer intervals."""
        if v <= 0:
            raise ValueError("interval must be positive")
        return v


class TmzConfig(BaseModel):
    """Top-level configuration for tmz."""

    logging: LoggingConfig = LoggingConfig()
    paths: PathsConfig = PathsConfig()
    auth: AuthConfig = AuthConfig()
    daemon: DaemonConfig = DaemonConfig()
    aliases: dict[str, str] = {}

    def resolve_alias(self, name: str) -> str | None:
        """Look up an alias, exact match first, then case-insensitive.

        Args:
            name: Alias name as typed by the user.

        Returns:
            The alias value (a conversation id or a search term), or None.
        """
        if name in self.aliases:
            return self.aliases[name]
        lowered = name.lower()
        for key, value in self.aliases.items():
            if key.lower() == lowered:
                return value
        return None

    def app_paths(self) -> AppPaths:
        """Platform paths with the paths section applied."""
        return AppPaths.discover().with_overrides(
            data_dir=self.paths.data_dir,
            state_dir=self.paths.state_dir,
        )


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "tmz.yaml",
        Path.cwd() / "tmz.yml",
        AppPaths.discover().config_file,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def config_file_path(config_path: str | None = None) -> Path:
    """Return the config file that reads and writes should target.

    An explicit path wins, then any existing file in the search order,
    then the user config location (which may not exist yet).
    """
    if config_path:
        return Path(config_path).expanduser()
    return _find_config_file() or AppPaths.discover().config_file


def _env_target(env_key: str) -> tuple[str, str] | None:
    """Map "TMZ_DAEMON_SYNC_INTERVAL" to ("daemon", "sync_interval").

    None for keys that name no known section field. Longer section names
    are tried first.
    """
    if not env_key.startswith(_ENV_PREFIX):
        return None
    rest = env_key[len(_ENV_PREFIX):].lower()
    sections = [name for name in TmzConfig.model_fields if name != "aliases"]
    for section in sorted(sections, key=len, reverse=True):
        if not rest.startswith(section + "_"):
            continue
        field = rest[len(section) + 1:]
        model = TmzConfig.model_fields[section].annotation
        return (section, field) if field in model.model_fields else None
    return None


def _coerce_env_value(value: str) -> int | bool | str:
    if value.lstrip("-").isdigit():
        return int(value)
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply TMZ_<SECTION>_<KEY> env var overrides on top of file data.

    Unknown sections or fields are ignored, so unrelated TMZ_* variables
    (tokens, the auth script path) never fail validation.
    """
    for env_key, value in os.environ.items():
        target = _env_target(env_key)
        if target is None:
            continue
        section, field = target
        section_data = data.setdefault(section, {})
        if isinstance(section_data, dict):
            section_data[field] = _coerce_env_value(value)
    return data


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping at the top level")
    return raw


def load_config(config_path: str | None = None) -> TmzConfig:
    """Load tmz configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then the user config dir).

    Returns:
        Parsed and validated TmzConfig. Defaults when no file exists.

    Raises:
        ConfigError: If an explicit path is missing, or the file is not
            valid YAML or fails validation.
    """
    if config_path:
        path: Path | None = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.debug("Loading config from %s", path)
        raw_data = _read_yaml(path)

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)

    try:
        return TmzConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def add_alias(config_path: Path, name: str, value: str) -> None:
    """Set one alias in the config file, creating the file if needed.

    Only the aliases section is touched. Other keys are written back as
    they were read.

    Args:
        config_path: Config file to update.
        name: Alias name.
        value: Conversation id or search term.

    Raises:
        ConfigError: If the file exists but cannot be parsed or written.
    """
    data = _read_yaml(config_path) if config_path.exists() else {}
    aliases = data.get("aliases")
    if not isinstance(aliases, dict):
        aliases = {}
    aliases[name] = value
    data["aliases"] = aliases
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
    except OSError as e:
        raise ConfigError(f"cannot write config file {config_path}: {e}") from e
    logger.info("Alias %s -> %s saved to %s", name, value, config_path)


DEFAULT_CONFIG_TEMPLATE = """\
# tmz configuration

logging:
  # level: info  # default: warning for commands, info for the daemon
  # file: ~/.local/state/tmz/tmz.log

# paths:
#   data_dir: ~/.local/share/tmz
#   state_dir: ~/.local/state/tmz

auth:
  buffer_seconds: 300
  login_timeout: 300
  refresh_timeout: 60
  backend: file  # or: keyring

daemon:
  refresh_interval: 3000
  sync_interval: 300
  sync_top_chats: 30
  sync_messages_per_chat: 50

# Short names for conversations: either a conversation id ("19:...")
# or a search term matched against cached chat names.
aliases: {}
"""


def write_default_config(path: Path, force: bool = False) -> bool:
    """Write the commented default config file.

    Args:
        path: Destination file.
        force: Overwrite an existing file.

    Returns:
        True if written, False if a file already existed and force was off.
    """
    if path.exists() and not force:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    return True
