from __future__ import annotations

import logging
import subprocess
import tempfile
from dataclasses import dataclass
from typing import IO, Optional, Protocol, Sequence

from .command import fmt_argv, spawn_cmd

logger = logging.getLogger(__name__)

IDENTIFIER_PLACEHOLDER = "{identifier}"


@dataclass(frozen=True)
class InstallStatus:
    state: str  # pending | succeeded | failed
    resolved_id: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def pending(cls) -> "InstallStatus":
        return cls(state="pending")

    @classmethod
    def succeeded(cls, resolved_id: str) -> "InstallStatus":
        return cls(state="succeeded", resolved_id=resolved_id)

    @classmethod
    def failed(cls, message: str) -> "InstallStatus":
        return cls(state="failed", message=message)

    @property
    def is_terminal(self) -> bool:
        return self.state != "pending"

    @property
    def ok(self) -> bool:
        return self.state == "succeeded"


class InstallHandle(Protocol):
    def poll(self) -> InstallStatus:
        ...


class PackageInstaller(Protocol):
    """Asynchronous package-manager API: begin returns immediately."""

    def begin_install(self, identifier: str) -> InstallHandle:
        ...


def _read_all(f: IO[bytes]) -> str:
    f.seek(0)
    return f.read().decode("utf-8", errors="replace")


def _last_line(text: str) -> Optional[str]:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    return lines[-1] if lines else None


class ProcessHandle:
    def __init__(self, identifier: str, proc: subprocess.Popen, stdout: IO[bytes], stderr: IO[bytes]) -> None:
        self.identifier = identifier
        self.proc = proc
        self._stdout = stdout
        self._stderr = stderr
        self._status: Optional[InstallStatus] = None

    def poll(self) -> InstallStatus:
        if self._status is not None:
            return self._status

        rc = self.proc.poll()
        if rc is None:
            return InstallStatus.pending()

        out = _read_all(self._stdout)
        err = _read_all(self._stderr)
        self._stdout.close()
        self._stderr.close()

        if out:
            logger.debug("STDOUT %s", out.strip())
        if err:
            logger.debug("STDERR %s", err.strip())

        if rc == 0:
            self._status = InstallStatus.succeeded(_last_line(out) or self.identifier)
        else:
            tail = "\n".join(err.strip().splitlines()[-5:])
            self._status = InstallStatus.failed(tail or f"exit code {rc}")
        return self._status


class CommandInstaller:
    """Install through an external package-manager command.

    ``argv_template`` is the command line; every ``{identifier}`` in it is
    replaced by the identifier being installed, e.g.
    ``["openupm", "add", "{identifier}"]``.
    """

    def __init__(self, argv_template: Sequence[str], *, cwd: str | None = None) -> None:
        self.argv_template = list(argv_template)
        self.cwd = cwd

    def build_argv(self, identifier: str) -> list[str]:
        if not self.argv_template:
            raise RuntimeError("No installer command configured")
        argv = [a.replace(IDENTIFIER_PLACEHOLDER, identifier) for a in self.argv_template]
        if not any(IDENTIFIER_PLACEHOLDER in a for a in self.argv_template):
            argv.append(identifier)
        return argv

    def begin_install(self, identifier: str) -> ProcessHandle:
        argv = self.build_argv(identifier)
        stdout = tempfile.TemporaryFile()
        stderr = tempfile.TemporaryFile()
        try:
            proc = spawn_cmd(argv, stdout=stdout, stderr=stderr, cwd=self.cwd)
        except OSError as e:
            stdout.close()
            stderr.close()
            raise RuntimeError(f"Could not start installer: {fmt_argv(argv)}: {e}") from e
        return ProcessHandle(identifier, proc, stdout, stderr)
