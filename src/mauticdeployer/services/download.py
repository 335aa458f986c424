"""Download service with bounded timeouts, retries and progress reporting."""

import os
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from mauticdeployer.constants import (
    DOWNLOAD_CONNECT_TIMEOUT_SECONDS,
    DOWNLOAD_RETRY_COUNT,
    DOWNLOAD_TOTAL_TIMEOUT_SECONDS,
)
from mauticdeployer.errors import DeployerError
from mauticdeployer.services.package_spec import API_HOST, is_github_url


class DownloadService:
    """Fetches remote artifacts to local paths."""

    def __init__(
        self,
        logger,
        console,
        requests_module=requests,
        retry_count: int = DOWNLOAD_RETRY_COUNT,
        retry_backoff_seconds: float = 2.0,
        connect_timeout: float = DOWNLOAD_CONNECT_TIMEOUT_SECONDS,
        total_timeout: float = DOWNLOAD_TOTAL_TIMEOUT_SECONDS,
    ):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.retry_count = retry_count
        self.retry_backoff_seconds = retry_backoff_seconds
        self.connect_timeout = connect_timeout
        self.total_timeout = total_timeout

    def build_headers(self, url: str, token: Optional[str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if token and is_github_url(url):
            headers["Authorization"] = f"Bearer {token}"
            if (urlparse(url).hostname or "").lower() == API_HOST:
                headers["Accept"] = "application/vnd.github.v3+json"
        return headers

    def download_file(
        self,
        url: str,
        dest_path: str,
        description: str = "Downloading...",
        token: Optional[str] = None,
    ):
        self.logger.info("Downloading %s to %s", url, dest_path)
        if urlparse(url).scheme.lower() == "http":
            self.logger.warning("Downloading %s over insecure HTTP: %s", description, url)

        headers = self.build_headers(url, token)
        max_attempts = max(1, self.retry_count + 1)

        for attempt in range(1, max_attempts + 1):
            try:
                self._stream_to_file(url, dest_path, description, headers)
                return
            except self.requests.RequestException as exc:
                self._discard(dest_path)
                if attempt < max_attempts:
                    self.logger.warning(
                        "Download failed on attempt %s/%s, retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        self.retry_backoff_seconds,
                        exc,
                    )
                    time.sleep(self.retry_backoff_seconds)
                    continue
                raise DeployerError(f"Download failed for {description}: {exc}") from exc
            except DeployerError:
                self._discard(dest_path)
                raise

    def _stream_to_file(self, url: str, dest_path: str, description: str, headers: Dict[str, str]):
        deadline = time.monotonic() + self.total_timeout

        with self.requests.get(
            url,
            headers=headers,
            stream=True,
            allow_redirects=True,
            timeout=(self.connect_timeout, self.total_timeout),
        ) as response:
            response.raise_for_status()
            total_size = int(response.headers.get("Content-Length", 0) or 0)

            os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=self.console,
                transient=True,
            ) as progress:
                task = progress.add_task(f"[cyan]{description}", total=total_size or None)
                with open(dest_path, "wb") as file_obj:
                    chunks = response.iter_content(chunk_size=8192)
                    while True:
                        self._limit_read_timeout(response, deadline, description)
                        chunk = next(chunks, None)
                        if chunk is None:
                            break
                        if not chunk:
                            continue
                        file_obj.write(chunk)
                        progress.update(task, advance=len(chunk))

    def _limit_read_timeout(self, response, deadline: float, description: str):
        """Shrink the socket read timeout so a stalled stream cannot outlive *deadline*."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise DeployerError(f"Download of {description} exceeded {self.total_timeout:.0f}s.")
        connection = getattr(getattr(response, "raw", None), "connection", None)
        sock = getattr(connection, "sock", None)
        if sock is not None:
            sock.settimeout(remaining)

    def _discard(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.logger.warning("Could not remove partial download %s: %s", path, exc)
