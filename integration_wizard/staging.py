from __future__ import annotations

import hashlib
import logging
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

# A cached tarball smaller than this is treated as a truncated download.
MIN_PLAUSIBLE_SIZE = 10_000


class StagingFailed(RuntimeError):
    def __init__(self, *, label: Optional[str], url: str, cause: object) -> None:
        self.label = label
        self.url = url
        self.cause = cause
        super().__init__(f"Failed staging tarball for {label or '<unnamed>'} from {url}: {cause}")


class Downloader(Protocol):
    def download(self, url: str, dest: Path) -> None:
        ...


def tarball_file_name(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name
    if not name:
        raise ValueError(f"URL has no file name: {url}")
    return name


def file_sha256(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class TarballStager:
    """Resolve remote tarball URLs to files in a local cache directory."""

    def __init__(self, downloader: Downloader, *, min_size: int = MIN_PLAUSIBLE_SIZE) -> None:
        self.downloader = downloader
        self.min_size = min_size

    def _is_reusable(self, path: Path, sha256: Optional[str]) -> bool:
        if not path.is_file() or path.stat().st_size < self.min_size:
            return False
        if sha256 and file_sha256(path) != sha256.lower():
            logger.warning("Cached %s does not match its sha256, downloading again", path.name)
            return False
        return True

    def stage(
        self,
        remote_url: str,
        cache_dir: str | Path,
        *,
        label: Optional[str] = None,
        sha256: Optional[str] = None,
    ) -> Path:
        try:
            file_name = tarball_file_name(remote_url)
        except ValueError as e:
            raise StagingFailed(label=label, url=remote_url, cause=e) from e

        cache = Path(cache_dir)
        cache.mkdir(parents=True, exist_ok=True)
        local_path = (cache / file_name).absolute()

        if self._is_reusable(local_path, sha256):
            logger.info("Using cached tarball %s", local_path)
            return local_path

        logger.info("Downloading %s -> %s", remote_url, local_path)
        try:
            self.downloader.download(remote_url, local_path)
        except Exception as e:
            raise StagingFailed(label=label, url=remote_url, cause=e) from e

        if sha256 and file_sha256(local_path) != sha256.lower():
            raise StagingFailed(label=label, url=remote_url, cause="sha256 mismatch after download")

        logger.info("Downloaded: %s", local_path)
        return local_path
