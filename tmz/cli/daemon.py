"""Daemon management: start, stop, status, run and login-service units.

The daemon is one `tmz service run` process. A PID marker file in the
state directory is its single-owner lease: the process that creates it
owns the daemon role, and a marker naming a dead process is stale and
gets cleaned up rather than trusted.
"""

import asyncio
import logging
import os
import plistlib
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path

from tmz.cli.config import TmzConfig
from tmz.errors import OtherError
from tmz.utils.logs import configure_logging
from tmz.utils.paths import AppPaths

logger = logging.getLogger(__name__)

PROCESS_MARKER = "tmz"
POLL_INTERVAL = 0.1
SPAWN_WAIT_SECONDS = 3.0

SYSTEMD_UNIT_NAME = "tmz.service"
LAUNCHD_LABEL = "com.tmz.daemon"


def is_pid_alive(pid: int) -> bool:
    """Check if a process with the given PID is running.

    Uses os.kill(pid, 0) for existence, then checks that the command line
    mentions tmz so a recycled PID from an unrelated process is not
    mistaken for the daemon. If ps is unavailable, existence alone counts.
    """
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        pass  # exists, owned by another user
    except OSError:
        return False

    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", "command="],
            capture_output=True, text=True, timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return True
    cmdline = result.stdout.strip().lower()
    if not cmdline:
        return True
    return PROCESS_MARKER in cmdline


class LivenessMarker:
    """PID file recording the process that owns the daemon role."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> int | None:
        """Return the recorded PID, or None if absent or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None
        except OSError as e:
            logger.warning("Cannot read PID file %s: %s", self.path, e)
            return None

    def write(self, pid: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid))

    def remove(self) -> None:
        """Delete the marker. No-op if it doesn't exist."""
        self.path.unlink(missing_ok=True)

    def live_pid(self) -> int | None:
        """PID of a running daemon, cleaning up a stale marker."""
        pid = self.read()
        if pid is None:
            if self.path.exists():
                logger.warning("Removing unreadable PID file %s", self.path)
                self.remove()
            return None
        if is_pid_alive(pid):
            return pid
        logger.warning("Removing stale PID file (PID %d no longer running)", pid)
        self.remove()
        return None

    def acquire(self, pid: int) -> bool:
        """Create the marker for `pid` unless a live process holds it.

        Creation uses O_EXCL, so of two processes racing for the role
        exactly one wins. A stale marker is cleared and creation retried.

        Returns:
            True if `pid` now owns the marker.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                holder = self.live_pid()
                if holder is not None and holder != pid:
                    return False
                if holder == pid:
                    return True
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(pid))
            return True
        return False


@dataclass
class DaemonStatus:
    """Snapshot of daemon liveness."""

    pid: int | None
    running: bool
    pid_file: Path
    log_file: Path


@dataclass
class StartResult:
    pid: int
    started: bool


def daemon_status(paths: AppPaths) -> DaemonStatus:
    pid = LivenessMarker(paths.pid_file).live_pid()
    return DaemonStatus(
        pid=pid,
        running=pid is not None,
        pid_file=paths.pid_file,
        log_file=paths.log_file,
    )


def _service_command(config_path: str | None) -> list[str]:
    command = [sys.executable, "-m", "tmz"]
    if config_path:
        command += ["--config", str(Path(config_path).expanduser().resolve())]
    return command + ["service", "run"]


def start_daemon(paths: AppPaths, config_path: str | None = None) -> StartResult:
    """Spawn a detached `tmz service run` unless one is already running.

    Returns:
        StartResult with the existing PID and started=False when a live
        daemon already holds the marker.

    Raises:
        OtherError: If the spawned process exits immediately.
    """
    marker = LivenessMarker(paths.pid_file)
    existing = marker.live_pid()
    if existing is not None:
        return StartResult(pid=existing, started=False)

    paths.ensure_directories()
    with open(paths.log_file, "ab") as log:
        proc = subprocess.Popen(
            _service_command(config_path),
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            close_fds=True,
        )
    logger.info("Spawned daemon (PID %d), logging to %s", proc.pid, paths.log_file)

    deadline = time.monotonic() + SPAWN_WAIT_SECONDS
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            raise OtherError(
                f"daemon exited immediately with code {proc.returncode}",
                remediation=f"See {paths.log_file} for details.",
            )
        if marker.read() == proc.pid:
            break
        time.sleep(POLL_INTERVAL)
    return StartResult(pid=proc.pid, started=True)


def _wait_for_exit(pid: int, timeout: float) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        time.sleep(POLL_INTERVAL)
    return False


def stop_daemon(paths: AppPaths, timeout: float = 5.0) -> int | None:
    """Stop the daemon: SIGTERM, wait, then SIGKILL if still running.

    Args:
        paths: Resolved paths (for the PID marker).
        timeout: Seconds to wait for a graceful exit before SIGKILL.

    Returns:
        The PID that was stopped, or None if no daemon was running.
    """
    marker = LivenessMarker(paths.pid_file)
    pid = marker.live_pid()
    if pid is None:
        logger.info("No running daemon")
        return None

    logger.info("Sending SIGTERM to daemon (PID %d)", pid)
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        marker.remove()
        return pid

    if not _wait_for_exit(pid, timeout):
        logger.warning("Daemon (PID %d) did not exit after %.1fs, sending SIGKILL", pid, timeout)
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        _wait_for_exit(pid, 1.0)

    marker.remove()
    return pid


def run_foreground(config: TmzConfig, paths: AppPaths) -> int:
    """Run the scheduler in this process until SIGINT/SIGTERM.

    Returns:
        Process exit code: 0 on clean shutdown, 1 if another daemon
        already holds the marker.
    """
    from tmz.cli.factory import build_scheduler

    paths.ensure_directories()
    configure_logging(config.logging.level or "info", config.logging.log_path())

    marker = LivenessMarker(paths.pid_file)
    if not marker.acquire(os.getpid()):
        logger.error(
            "Daemon already running (PID %s). Use 'tmz service stop' first.", marker.read()
        )
        return 1

    logger.info("Daemon starting (PID %d)", os.getpid())

    async def _main() -> None:
        scheduler = build_scheduler(config, paths)
        scheduler.install_signal_handlers()
        await scheduler.run()

    try:
        asyncio.run(_main())
    finally:
        if marker.read() == os.getpid():
            marker.remove()
    logger.info("Daemon exited")
    return 0


# --- Login service units ---


def systemd_unit(command: list[str]) -> str:
    """systemd user unit that runs the daemon at login."""
    exec_start = " ".join(f'"{part}"' if " " in part else part for part in command)
    return (
        "[Unit]\n"
        "Description=tmz background sync\n"
        "After=network-online.target\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        f"ExecStart={exec_start}\n"
        "Restart=on-failure\n"
        "RestartSec=10\n"
        "\n"
        "[Install]\n"
        "WantedBy=default.target\n"
    )


def launchd_plist(command: list[str], log_file: Path) -> bytes:
    """launchd agent plist that runs the daemon at login."""
    return plistlib.dumps({
        "Label": LAUNCHD_LABEL,
        "ProgramArguments": command,
        "RunAtLoad": True,
        "KeepAlive": {"SuccessfulExit": False},
        "StandardOutPath": str(log_file),
        "StandardErrorPath": str(log_file),
    })


def _service_file() -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "LaunchAgents" / f"{LAUNCHD_LABEL}.plist"
    if sys.platform.startswith("linux"):
        return Path.home() / ".config" / "systemd" / "user" / SYSTEMD_UNIT_NAME
    raise OtherError(f"login services are not supported on {sys.platform}")


def _run_service_tool(args: list[str], check: bool = True) -> None:
    logger.debug("Running %s", " ".join(args))
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as e:
        raise OtherError(f"{args[0]} failed: {e}") from e
    if check and result.returncode != 0:
        raise OtherError(f"{' '.join(args)} failed: {result.stderr.strip() or result.returncode}")


def enable_service(paths: AppPaths, config_path: str | None = None) -> Path:
    """Install and load a login service (launchd on macOS, systemd on Linux).

    Returns:
        Path of the written unit or plist.
    """
    unit_path = _service_file()
    unit_path.parent.mkdir(parents=True, exist_ok=True)
    command = _service_command(config_path)

    if sys.platform == "darwin":
        unit_path.write_bytes(launchd_plist(command, paths.log_file))
        _run_service_tool(["launchctl", "load", "-w", str(unit_path)])
    else:
        unit_path.write_text(systemd_unit(command))
        _run_service_tool(["systemctl", "--user", "daemon-reload"], check=False)
        _run_service_tool(["systemctl", "--user", "enable", "--now", SYSTEMD_UNIT_NAME])
    logger.info("Login service installed at %s", unit_path)
    return unit_path


def disable_service() -> Path | None:
    """Unload and remove the login service.

    Returns:
        Path of the removed unit or plist, or None if none was installed.
    """
    unit_path = _service_file()
    if not unit_path.exists():
        return None

    if sys.platform == "darwin":
        _run_service_tool(["launchctl", "unload", "-w", str(unit_path)], check=False)
        unit_path.unlink()
    else:
        _run_service_tool(["systemctl", "--user", "disable", "--now", SYSTEMD_UNIT_NAME], check=False)
        unit_path.unlink()
        _run_service_tool(["systemctl", "--user", "daemon-reload"], check=False)
    logger.info("Login service removed from %s", unit_path)
    return unit_path
