from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


class InstallKind(str, Enum):
    GIT = "git"
    REGISTRY = "registry"
    TARBALL = "tarball"
    MANUAL = "manual"


class TaskState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    STAGING_FAILED = "staging_failed"
    INSTALL_FAILED = "install_failed"
    CAPABILITY_ERROR = "capability_error"


def git_reference(url: str, path: Optional[str] = None, tag: Optional[str] = None) -> str:
    """Build a git identifier: ``<url>?path=<subpath>#<tag>``."""

    ref = url
    if path:
        ref += f"?path={path}"
    if tag:
        ref += f"#{tag}"
    return ref


def registry_reference(package: str, version: Optional[str] = None) -> str:
    if not version:
        return package
    return f"{package}@{version}"


def file_reference(path: str | Path) -> str:
    local = str(Path(path).absolute()).replace("\\", "/")
    return f"file:{local}"


def _dedup(items: Iterable[str]) -> Tuple[str, ...]:
    out: list[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return tuple(out)


@dataclass(frozen=True)
class RegistryEntry:
    """One scoped registry: merged by name, scopes kept in order."""

    name: str
    url: str
    scopes: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("registry name cannot be empty")
        if not self.url:
            raise ValueError(f"registry {self.name}: url cannot be empty")
        object.__setattr__(self, "scopes", _dedup(str(s) for s in self.scopes))

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "url": self.url, "scopes": list(self.scopes)}


@dataclass
class InstallTask:
    """A requested dependency.

    ``reference`` depends on ``kind``:
    - git: full git identifier (url, optional ?path=, optional #tag)
    - registry: ``<package-id>@<version>``
    - tarball: remote download URL, rewritten to the local path once staged
    - manual: help URL shown to a human
    """

    label: str
    kind: InstallKind
    reference: str
    selected: bool = True
    requires_registries: Tuple[str, ...] = ()
    note: str = ""
    sha256: Optional[str] = None

    state: TaskState = field(default=TaskState.PENDING, compare=False)
    resolved_id: Optional[str] = field(default=None, compare=False)
    error: Optional[str] = field(default=None, compare=False)
    failure: Optional[FailureKind] = field(default=None, compare=False)
    staged: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        self.kind = InstallKind(self.kind)
        self.requires_registries = _dedup(self.requires_registries)

    @property
    def is_manual(self) -> bool:
        return self.kind is InstallKind.MANUAL

    def installable_id(self) -> str:
        if self.kind in (InstallKind.GIT, InstallKind.REGISTRY):
            return self.reference
        if self.kind is InstallKind.TARBALL:
            if not self.staged:
                raise ValueError(f"{self.label}: tarball has not been staged yet ({self.reference})")
            return file_reference(self.reference)
        raise ValueError(f"{self.label}: manual packages cannot be installed automatically")

    def mark_failed(self, failure: FailureKind, message: str) -> None:
        self.state = TaskState.FAILED
        self.failure = failure
        self.error = message

    def mark_succeeded(self, resolved_id: str) -> None:
        self.state = TaskState.SUCCEEDED
        self.resolved_id = resolved_id
        self.failure = None
        self.error = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "label": self.label,
            "kind": self.kind.value,
            "reference": self.reference,
            "state": self.state.value,
        }
        if self.requires_registries:
            d["registries"] = list(self.requires_registries)
        if self.resolved_id:
            d["resolved_id"] = self.resolved_id
        if self.failure:
            d["failure"] = self.failure.value
        if self.error:
            d["error"] = self.error
        return d
