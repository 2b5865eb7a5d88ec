from __future__ import annotations

import logging
import os
import time
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class HttpDownloader:
    """Streamed HTTP download with a small retry loop."""

    def __init__(self, *, timeout: float = 60, max_retries: int = 3, backoff_sec: float = 0.75) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_sec = backoff_sec

    def _get(self, url: str) -> requests.Response:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = requests.get(url, stream=True, timeout=self.timeout)
            except requests.RequestException as e:
                last_exc = e
                logger.warning("GET failed (attempt %d/%d) for %s: %s", attempt, self.max_retries, url, e)
                if attempt < self.max_retries:
                    time.sleep(self.backoff_sec * attempt)
                continue
            try:
                resp.raise_for_status()
            except requests.HTTPError:
                resp.close()
                raise
            return resp
        assert last_exc is not None
        raise last_exc

    def download(self, url: str, dest: Path) -> None:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")

        resp = self._get(url)
        try:
            with part.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
            os.replace(part, dest)
        except Exception:
            part.unlink(missing_ok=True)
            raise
        finally:
            resp.close()

        logger.debug("Wrote %d bytes to %s", dest.stat().st_size, dest)
