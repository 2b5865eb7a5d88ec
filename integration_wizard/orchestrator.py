from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from .lib.pkg import InstallHandle, PackageInstaller
from .manifest_editor import DocumentStore, FileDocumentStore, MalformedDocument, ensure_registry_file
from .models import FailureKind, InstallKind, InstallTask, RegistryEntry, TaskState
from .staging import StagingFailed, TarballStager

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    DRAINING = "draining"
    COMPLETED = "completed"


class BatchError(RuntimeError):
    """The batch cannot start at all (nothing selected, no manifest)."""


@dataclass
class RunSummary:
    succeeded: List[InstallTask] = field(default_factory=list)
    failed: List[InstallTask] = field(default_factory=list)
    manual: List[InstallTask] = field(default_factory=list)
    registries_changed: List[str] = field(default_factory=list)
    registry_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.registry_errors

    def counts(self) -> Dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "manual": len(self.manual),
        }

    def describe(self) -> str:
        c = self.counts()
        return f"All done: {c['succeeded']} succeeded, {c['failed']} failed, {c['manual']} manual."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": self.counts(),
            "succeeded": [t.to_dict() for t in self.succeeded],
            "failed": [t.to_dict() for t in self.failed],
            "manual": [t.to_dict() for t in self.manual],
            "registries_changed": list(self.registries_changed),
            "registry_errors": dict(self.registry_errors),
        }


class InstallOrchestrator:
    """Install selected tasks one at a time through an asynchronous installer.

    Idle -> Preparing (registries, tarballs) -> Draining -> Completed.
    Exactly one install is in flight; the next task only starts once the
    current handle reports a terminal status. Per-task failures are recorded
    and never stop the batch.
    """

    def __init__(
        self,
        *,
        manifest_path: str | Path,
        registries: Mapping[str, RegistryEntry],
        installer: PackageInstaller,
        stager: TarballStager,
        cache_dir: str | Path,
        documents: Optional[DocumentStore] = None,
        refresh_index: Optional[Callable[[], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.manifest_path = str(manifest_path)
        self.registries = dict(registries)
        self.installer = installer
        self.stager = stager
        self.cache_dir = Path(cache_dir)
        self.documents = documents or FileDocumentStore()
        self.refresh_index = refresh_index
        self.on_status = on_status

        self.phase = Phase.IDLE
        self.status = "Ready"
        self.summary = RunSummary()
        self._queue: Deque[InstallTask] = deque()
        self._current: Optional[InstallTask] = None
        self._handle: Optional[InstallHandle] = None

    def _set_status(self, text: str) -> None:
        self.status = text
        if self.on_status is not None:
            self.on_status(text)

    @property
    def current(self) -> Optional[InstallTask]:
        return self._current

    @property
    def queued(self) -> List[InstallTask]:
        return list(self._queue)

    # ---- preparing -------------------------------------------------------

    def _ensure_registries(self, tasks: Sequence[InstallTask]) -> None:
        names: List[str] = []
        for t in tasks:
            for name in t.requires_registries:
                if name not in names:
                    names.append(name)

        for name in names:
            entry = self.registries.get(name)
            if entry is None:
                msg = "registry is not defined in the catalog"
                logger.error("Cannot ensure scoped registry %s: %s", name, msg)
                self.summary.registry_errors[name] = msg
                continue
            try:
                if ensure_registry_file(self.documents, self.manifest_path, entry):
                    self.summary.registries_changed.append(name)
            except MalformedDocument as e:
                logger.error("Failed to ensure scoped registry %s in %s: %s", name, self.manifest_path, e)
                self.summary.registry_errors[name] = str(e)

    def _stage_tarballs(self, tasks: Sequence[InstallTask]) -> None:
        for t in tasks:
            if t.kind is not InstallKind.TARBALL or t.staged:
                continue
            self._set_status(f"Downloading {t.label}…")
            try:
                local = self.stager.stage(t.reference, self.cache_dir, label=t.label, sha256=t.sha256)
            except StagingFailed as e:
                logger.error("%s", e)
                t.mark_failed(FailureKind.STAGING_FAILED, str(e.cause))
                self.summary.failed.append(t)
                continue
            t.reference = str(local)
            t.staged = True

    def start(self, tasks: Sequence[InstallTask]) -> None:
        if self.phase is not Phase.IDLE:
            raise RuntimeError(f"Orchestrator already used (phase={self.phase.value})")

        selected = [t for t in tasks if t.selected]
        if not selected:
            self._set_status("No packages selected.")
            raise BatchError("No packages selected.")
        if not self.documents.exists(self.manifest_path):
            self._set_status("manifest.json not found.")
            raise BatchError(f"Manifest not found: {self.manifest_path}")

        self.phase = Phase.PREPARING
        self._ensure_registries(selected)
        self._stage_tarballs(selected)

        for t in selected:
            if t.is_manual:
                logger.warning("Manual install required for %s: %s", t.label, t.reference)
                self.summary.manual.append(t)
            elif t.state is not TaskState.FAILED:
                self._queue.append(t)

        self.phase = Phase.DRAINING
        self._set_status("Starting installation queue…")
        self._begin_next()

    # ---- draining --------------------------------------------------------

    def _begin_next(self) -> None:
        while self._queue:
            t = self._queue.popleft()
            self._current = t
            t.state = TaskState.IN_FLIGHT
            self._set_status(f"Installing: {t.label}")
            identifier = t.reference
            try:
                identifier = t.installable_id()
                logger.info("Installing %s -> %s", t.label, identifier)
                self._handle = self.installer.begin_install(identifier)
            except Exception as e:
                logger.error("Failed to add %s (%s): %s", t.label, identifier, e)
                self._finish(t, ok=False, failure=FailureKind.CAPABILITY_ERROR, detail=str(e))
                continue
            return
        self._complete()

    def _finish(self, t: InstallTask, *, ok: bool, detail: str, failure: Optional[FailureKind] = None) -> None:
        self._current = None
        self._handle = None
        if ok:
            t.mark_succeeded(detail)
            self.summary.succeeded.append(t)
        else:
            t.mark_failed(failure or FailureKind.INSTALL_FAILED, detail)
            self.summary.failed.append(t)

    def _complete(self) -> None:
        self.phase = Phase.COMPLETED
        self._set_status(self.summary.describe())
        logger.info(
            "Install run finished (succeeded=%d failed=%d manual=%d)",
            len(self.summary.succeeded),
            len(self.summary.failed),
            len(self.summary.manual),
        )
        if self.refresh_index is not None:
            self.refresh_index()

    def tick(self) -> bool:
        """Poll the in-flight install once; returns True while work remains."""

        if self.phase is not Phase.DRAINING:
            return False
        if self._handle is None or self._current is None:
            self._begin_next()
            return self.phase is Phase.DRAINING

        t = self._current
        try:
            status = self._handle.poll()
        except Exception as e:
            logger.error("Polling install of %s failed: %s", t.label, e)
            self._finish(t, ok=False, failure=FailureKind.CAPABILITY_ERROR, detail=str(e))
            self._begin_next()
            return self.phase is Phase.DRAINING

        if not status.is_terminal:
            return True

        if status.ok:
            resolved = status.resolved_id or t.installable_id()
            logger.info("Installed: %s", resolved)
            self._finish(t, ok=True, detail=resolved)
        else:
            message = status.message or "unknown error"
            logger.error("ERROR installing %s (%s): %s", t.label, t.installable_id(), message)
            self._finish(t, ok=False, detail=message)

        self._begin_next()
        return self.phase is Phase.DRAINING

    def run(
        self,
        tasks: Sequence[InstallTask],
        *,
        poll_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> RunSummary:
        self.start(tasks)
        while self.tick():
            sleep(poll_interval)
        return self.summary
