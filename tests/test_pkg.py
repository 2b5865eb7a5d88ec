"""Tests for the command-backed installer and its non-blocking handles."""

import sys
import time

import pytest

from integration_wizard.lib.command import run_cmd
from integration_wizard.lib.pkg import CommandInstaller, InstallStatus


def wait(handle, timeout=30.0):
    deadline = time.monotonic() + timeout
    while True:
        status = handle.poll()
        if status.is_terminal:
            return status
        if time.monotonic() > deadline:
            raise AssertionError("install handle never finished")
        time.sleep(0.02)


class TestInstallStatus:
    def test_states(self):
        assert not InstallStatus.pending().is_terminal
        assert InstallStatus.succeeded("x").ok
        failed = InstallStatus.failed("nope")
        assert failed.is_terminal and not failed.ok
        assert failed.message == "nope"


class TestCommandInstaller:
    def test_placeholder_substituted(self):
        inst = CommandInstaller(["openupm", "add", "{identifier}"])
        assert inst.build_argv("com.x@1.0.0") == ["openupm", "add", "com.x@1.0.0"]

    def test_identifier_appended_without_placeholder(self):
        inst = CommandInstaller(["openupm", "add"])
        assert inst.build_argv("com.x@1.0.0") == ["openupm", "add", "com.x@1.0.0"]

    def test_empty_command(self):
        with pytest.raises(RuntimeError, match="No installer command"):
            CommandInstaller([]).begin_install("com.x@1.0.0")

    def test_missing_executable(self):
        with pytest.raises(RuntimeError, match="Could not start installer"):
            CommandInstaller(["definitely-not-a-real-installer-xyz", "{identifier}"]).begin_install("com.x")

    def test_success_reports_last_stdout_line(self):
        script = "import sys; print('resolving'); print('installed ' + sys.argv[1])"
        handle = CommandInstaller([sys.executable, "-c", script, "{identifier}"]).begin_install("com.x@1.0.0")
        status = wait(handle)
        assert status.ok
        assert status.resolved_id == "installed com.x@1.0.0"
        assert handle.poll() is status

    def test_silent_success_uses_identifier(self):
        handle = CommandInstaller([sys.executable, "-c", "pass", "{identifier}"]).begin_install("com.x@1.0.0")
        assert wait(handle).resolved_id == "com.x@1.0.0"

    def test_failure_reports_stderr(self):
        script = "import sys; sys.stderr.write('404 Not Found: com.x\\n'); sys.exit(3)"
        handle = CommandInstaller([sys.executable, "-c", script]).begin_install("com.x@1.0.0")
        status = wait(handle)
        assert not status.ok
        assert status.message == "404 Not Found: com.x"

    def test_failure_without_output(self):
        handle = CommandInstaller([sys.executable, "-c", "raise SystemExit(5)"]).begin_install("com.x")
        assert wait(handle).message == "exit code 5"

    def test_begin_returns_before_completion(self):
        handle = CommandInstaller([sys.executable, "-c", "import time; time.sleep(1)"]).begin_install("com.x")
        assert handle.poll() == InstallStatus.pending()
        assert wait(handle).ok


class TestRunCmd:
    def test_check_raises(self):
        with pytest.raises(RuntimeError, match="Command failed"):
            run_cmd([sys.executable, "-c", "raise SystemExit(2)"])

    def test_dry_run(self):
        r = run_cmd(["definitely-not-a-real-command"], dry_run=True)
        assert r.returncode == 0
