"""Tests for daemon PID management and service files."""

import os
import plistlib
import signal
import subprocess
import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tmz.cli.config import LoggingConfig, TmzConfig
from tmz.cli.daemon import (
    LAUNCHD_LABEL,
    LivenessMarker,
    _service_command,
    daemon_status,
    is_pid_alive,
    launchd_plist,
    run_foreground,
    start_daemon,
    stop_daemon,
    systemd_unit,
)


def _ps_result(stdout: str):
    return type("Result", (), {"stdout": stdout, "returncode": 0})()


class IdleScheduler:
    """Scheduler whose run loop returns at once."""

    def install_signal_handlers(self):
        pass

    async def run(self):
        return None


class TestIsPidAlive:
    """Tests for process liveness checks."""

    def test_current_process_with_marker(self):
        with patch("tmz.cli.daemon.subprocess.run", return_value=_ps_result("python -m tmz service run")):
            assert is_pid_alive(os.getpid()) is True

    def test_recycled_pid(self):
        """A live PID running something else is not the daemon."""
        with patch("tmz.cli.daemon.subprocess.run", return_value=_ps_result("vim notes.txt")):
            assert is_pid_alive(os.getpid()) is False

    def test_ps_unavailable(self):
        with patch("tmz.cli.daemon.subprocess.run", side_effect=FileNotFoundError("ps")):
            assert is_pid_alive(os.getpid()) is True

    def test_nonexistent(self):
        assert is_pid_alive(999999) is False


class TestLivenessMarker:
    """Tests for PID file read/write/cleanup."""

    def test_write_and_read(self, tmp_path):
        marker = LivenessMarker(tmp_path / "state" / "tmz.pid")
        marker.write(12345)
        assert marker.read() == 12345

    def test_read_missing(self, tmp_path):
        assert LivenessMarker(tmp_path / "tmz.pid").read() is None

    def test_read_garbage(self, tmp_path):
        path = tmp_path / "tmz.pid"
        path.write_text("not-a-pid")
        assert LivenessMarker(path).read() is None

    def test_stale_marker_removed(self, tmp_path):
        marker = LivenessMarker(tmp_path / "tmz.pid")
        marker.write(999999)
        with patch("tmz.cli.daemon.is_pid_alive", return_value=False):
            assert marker.live_pid() is None
        assert not marker.path.exists()

    def test_live_marker_kept(self, tmp_path):
        marker = LivenessMarker(tmp_path / "tmz.pid")
        marker.write(4242)
        with patch("tmz.cli.daemon.is_pid_alive", return_value=True):
            assert marker.live_pid() == 4242
        assert marker.path.exists()

    def test_acquire_fresh(self, tmp_path):
        marker = LivenessMarker(tmp_path / "tmz.pid")
        assert marker.acquire(111) is True
        assert marker.read() == 111

    def test_acquire_held_by_live_process(self, tmp_path):
        marker = LivenessMarker(tmp_path / "tmz.pid")
        marker.write(4242)
        with patch("tmz.cli.daemon.is_pid_alive", return_value=True):
            assert marker.acquire(111) is False
        assert marker.read() == 4242

    def test_acquire_replaces_stale(self, tmp_path):
        marker = LivenessMarker(tmp_path / "tmz.pid")
        marker.write(999999)
        with patch("tmz.cli.daemon.is_pid_alive", return_value=False):
            assert marker.acquire(111) is True
        assert marker.read() == 111


class TestDaemonLifecycle:
    """Tests for status, start and stop around the marker."""

    def test_status_not_running(self, app_paths):
        status = daemon_status(app_paths)
        assert status.running is False
        assert status.pid is None
        assert status.log_file == app_paths.log_file

    def test_start_when_already_running(self, app_paths):
        LivenessMarker(app_paths.pid_file).write(4242)
        with patch("tmz.cli.daemon.is_pid_alive", return_value=True), \
                patch("tmz.cli.daemon.subprocess.Popen") as popen:
            result = start_daemon(app_paths)
        assert (result.pid, result.started) == (4242, False)
        popen.assert_not_called()

    def test_stop_when_not_running(self, app_paths):
        assert stop_daemon(app_paths) is None

    @pytest.mark.skipif(os.name != "posix", reason="POSIX signals only")
    def test_stop_terminates_process(self, app_paths):
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)", "tmz"])
        threading.Thread(target=proc.wait, daemon=True).start()
        LivenessMarker(app_paths.pid_file).write(proc.pid)
        try:
            with patch("tmz.cli.daemon.is_pid_alive", return_value=True):
                assert stop_daemon(app_paths, timeout=5.0) == proc.pid
            assert proc.wait(timeout=5) == -signal.SIGTERM
            assert not app_paths.pid_file.exists()
        finally:
            if proc.poll() is None:
                proc.kill()

    def test_run_foreground_refuses_second_daemon(self, app_paths, restore_logging):
        LivenessMarker(app_paths.pid_file).write(4242)
        with patch("tmz.cli.daemon.is_pid_alive", return_value=True):
            assert run_foreground(TmzConfig(), app_paths) == 1
        assert LivenessMarker(app_paths.pid_file).read() == 4242

    def test_run_foreground_logs_to_configured_file(self, app_paths, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "custom.log"
        config = TmzConfig(logging=LoggingConfig(file=str(log_file)))
        with patch("tmz.cli.factory.build_scheduler", return_value=IdleScheduler()):
            assert run_foreground(config, app_paths) == 0

        text = log_file.read_text()
        assert "Daemon starting" in text
        assert "Daemon exited" in text
        assert not app_paths.pid_file.exists()

    def test_start_replaces_stale_marker(self, app_paths):
        LivenessMarker(app_paths.pid_file).write(999999)
        proc = MagicMock(pid=777)
        proc.poll.return_value = None
        with patch("tmz.cli.daemon.is_pid_alive", return_value=False), \
                patch("tmz.cli.daemon.subprocess.Popen", return_value=proc) as popen, \
                patch("tmz.cli.daemon.SPAWN_WAIT_SECONDS", 0.2):
            result = start_daemon(app_paths)

        popen.assert_called_once()
        assert popen.call_args.args[0][-2:] == ["service", "run"]
        assert popen.call_args.kwargs["start_new_session"] is True
        assert (result.pid, result.started) == (777, True)
        assert LivenessMarker(app_paths.pid_file).read() is None

    @pytest.mark.skipif(os.name != "posix", reason="POSIX signals only")
    def test_stop_escalates_to_sigkill(self, app_paths):
        """A daemon that ignores SIGTERM is killed after the timeout."""
        script = (
            "import signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(30)\n"
        )
        proc = subprocess.Popen([sys.executable, "-c", script, "tmz"], stdout=subprocess.PIPE, text=True)
        try:
            assert proc.stdout.readline().strip() == "ready"
            threading.Thread(target=proc.wait, daemon=True).start()
            LivenessMarker(app_paths.pid_file).write(proc.pid)
            with patch("tmz.cli.daemon.is_pid_alive", return_value=True):
                assert stop_daemon(app_paths, timeout=0.5) == proc.pid
            assert proc.wait(timeout=5) == -signal.SIGKILL
            assert not app_paths.pid_file.exists()
        finally:
            if proc.poll() is None:
                proc.kill()
            proc.stdout.close()


class TestServiceFiles:
    """Tests for login-service unit generation."""

    def test_service_command(self, tmp_path):
        command = _service_command(str(tmp_path / "c.yaml"))
        assert command[:3] == [sys.executable, "-m", "tmz"]
        assert command[3:] == ["--config", str((tmp_path / "c.yaml").resolve()), "service", "run"]

    def test_service_command_without_config(self):
        assert _service_command(None)[-2:] == ["service", "run"]

    def test_systemd_unit(self):
        unit = systemd_unit(["/usr/bin/python3", "-m", "tmz", "service", "run"])
        assert "ExecStart=/usr/bin/python3 -m tmz service run\n" in unit
        assert "Restart=on-failure" in unit
        assert "WantedBy=default.target" in unit

    def test_systemd_unit_quotes_spaces(self):
        unit = systemd_unit(["/opt/my tools/python", "-m", "tmz"])
        assert 'ExecStart="/opt/my tools/python" -m tmz' in unit

    def test_launchd_plist(self):
        data = plistlib.loads(launchd_plist(["/usr/bin/python3", "-m", "tmz"], Path("/tmp/tmz.log")))
        assert data["Label"] == LAUNCHD_LABEL
        assert data["ProgramArguments"] == ["/usr/bin/python3", "-m", "tmz"]
        assert data["RunAtLoad"] is True
        assert data["StandardOutPath"] == "/tmp/tmz.log"
