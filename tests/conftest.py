"""Shared fakes for the installer capabilities (documents, downloads, installs)."""

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

from integration_wizard.lib.pkg import InstallStatus
from integration_wizard.models import RegistryEntry
from integration_wizard.orchestrator import InstallOrchestrator
from integration_wizard.staging import TarballStager

MANIFEST_PATH = "/project/Packages/manifest.json"

GOOGLE = RegistryEntry(
    name="Google",
    url="https://packages.unity.com",
    scopes=("com.google", "com.google.firebase"),
)
EXAMPLE = RegistryEntry(name="Example", url="https://registry.example.com", scopes=("com.example",))


def manifest_text(data: dict) -> str:
    return json.dumps(data, indent=2) + "\n"


class MemoryDocumentStore:
    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files = dict(files or {})
        self.writes: List[str] = []

    def exists(self, path: str) -> bool:
        return path in self.files

    def read(self, path: str) -> bytes:
        return self.files[path]

    def write(self, path: str, data: bytes) -> None:
        self.writes.append(path)
        self.files[path] = data

    def text(self, path: str = MANIFEST_PATH) -> str:
        return self.files[path].decode("utf-8")


class FakeHandle:
    def __init__(self, identifier: str, outcome: InstallStatus, polls_needed: int):
        self.identifier = identifier
        self.outcome = outcome
        self.polls_needed = polls_needed
        self.polls = 0

    @property
    def done(self) -> bool:
        return self.polls >= self.polls_needed

    def poll(self) -> InstallStatus:
        self.polls += 1
        if self.polls < self.polls_needed:
            return InstallStatus.pending()
        return self.outcome


class FakeInstaller:
    """Handles resolve after ``polls_needed`` polls with a scripted outcome.

    Outcomes are keyed by identifier prefix; an Exception outcome is raised
    from begin_install itself.
    """

    def __init__(self, outcomes: Optional[Dict[str, Union[InstallStatus, Exception]]] = None, polls_needed: int = 3):
        self.outcomes = outcomes or {}
        self.polls_needed = polls_needed
        self.begun: List[str] = []
        self.handles: List[FakeHandle] = []

    def _outcome(self, identifier: str) -> Union[InstallStatus, Exception]:
        for prefix, outcome in self.outcomes.items():
            if identifier.startswith(prefix):
                return outcome
        return InstallStatus.succeeded(identifier)

    def begin_install(self, identifier: str) -> FakeHandle:
        if self.handles and not self.handles[-1].done:
            raise AssertionError("begin_install called while another install is in flight")
        self.begun.append(identifier)
        outcome = self._outcome(identifier)
        if isinstance(outcome, Exception):
            raise outcome
        handle = FakeHandle(identifier, outcome, self.polls_needed)
        self.handles.append(handle)
        return handle


class FakeDownloader:
    def __init__(self, size: int = 20_000, fail_urls: tuple = ()):
        self.size = size
        self.fail_urls = set(fail_urls)
        self.calls: List[str] = []

    def download(self, url: str, dest: Path) -> None:
        self.calls.append(url)
        if url in self.fail_urls:
            raise ConnectionError(f"connection refused: {url}")
        Path(dest).write_bytes(b"x" * self.size)


@pytest.fixture
def store():
    return MemoryDocumentStore({MANIFEST_PATH: manifest_text({"dependencies": {"com.unity.ugui": "1.0.0"}}).encode("utf-8")})


@pytest.fixture
def installer():
    return FakeInstaller()


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def make_orchestrator(store, installer, downloader, tmp_path):
    def factory(**overrides) -> InstallOrchestrator:
        kwargs = dict(
            manifest_path=MANIFEST_PATH,
            registries={"Google": GOOGLE, "Example": EXAMPLE},
            installer=installer,
            stager=TarballStager(downloader),
            cache_dir=tmp_path / "cache",
            documents=store,
        )
        kwargs.update(overrides)
        return InstallOrchestrator(**kwargs)

    return factory
