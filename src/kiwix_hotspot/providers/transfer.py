"""Resumable HTTP downloads for ZIM archives.

Transfers stream into ``<name>.part`` beside the destination. A later run
continues the partial file with a ``Range`` request, and the file is renamed
to its final name only once the server has delivered the whole body, so an
interrupted or failed transfer never looks like a present archive.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..errors import TransferError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int | None], None]

_CONTENT_RANGE_TOTAL = re.compile(r"bytes\s+(?:\*|\d+-\d+)/(\d+)")


@dataclass(frozen=True, slots=True)
class DownloadResult:
    """Outcome of a completed transfer."""

    path: Path
    bytes_written: int
    resumed_from: int


def partial_path(destination: Path) -> Path:
    """Return the in-progress path used while *destination* downloads."""
    return destination.with_name(f"{destination.name}.part")


class ContentDownloader:
    """Stream archives to disk with resume support."""

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        """Use *client* when given, otherwise build a redirect-following one."""
        self._client = client or httpx.Client(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout),
        )
        self._chunk_size = chunk_size

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self._client.close()

    def fetch(
        self,
        url: str,
        destination: Path,
        *,
        progress: ProgressCallback | None = None,
    ) -> DownloadResult:
        """Download *url* into *destination*, resuming a previous partial file."""
        part = partial_path(destination)
        try:
            offset = part.stat().st_size if part.exists() else 0
        except OSError as exc:
            raise TransferError(f"Cannot inspect partial file {part}: {exc}") from exc
        # Byte ranges must address the stored file, not a compressed encoding.
        headers = {"Accept-Encoding": "identity"}
        if offset:
            headers["Range"] = f"bytes={offset}-"

        try:
            with self._client.stream("GET", url, headers=headers) as response:
                if response.status_code == httpx.codes.REQUESTED_RANGE_NOT_SATISFIABLE and offset:
                    return self._finish_unsatisfiable(response, part, destination, offset)
                if not response.is_success:
                    raise TransferError(
                        f"GET {url} failed with HTTP {response.status_code} "
                        f"{response.reason_phrase}".rstrip()
                    )

                resumed_from = offset
                mode = "ab"
                if response.status_code != httpx.codes.PARTIAL_CONTENT:
                    if offset:
                        logger.info("Server ignored range request for %s; restarting.", url)
                    resumed_from = 0
                    mode = "wb"

                total = _expected_total(response, resumed_from)
                written = 0
                part.parent.mkdir(parents=True, exist_ok=True)
                with part.open(mode) as handle:
                    for chunk in response.iter_bytes(self._chunk_size):
                        handle.write(chunk)
                        written += len(chunk)
                        if progress is not None:
                            progress(resumed_from + written, total)
        except httpx.HTTPError as exc:
            raise TransferError(f"GET {url} failed: {exc}") from exc
        except OSError as exc:
            raise TransferError(f"Writing {part} failed: {exc}") from exc

        try:
            size = part.stat().st_size
            if total is not None and size != total:
                raise TransferError(
                    f"GET {url} ended early: received {size} of {total} bytes "
                    f"(partial file kept at {part})."
                )
            if size == 0:
                part.unlink(missing_ok=True)
                raise TransferError(f"GET {url} returned an empty body.")
            part.replace(destination)
        except OSError as exc:
            raise TransferError(f"Promoting {part} to {destination} failed: {exc}") from exc
        return DownloadResult(path=destination, bytes_written=written, resumed_from=resumed_from)

    def _finish_unsatisfiable(
        self,
        response: httpx.Response,
        part: Path,
        destination: Path,
        offset: int,
    ) -> DownloadResult:
        match = _CONTENT_RANGE_TOTAL.search(response.headers.get("Content-Range", ""))
        if match is not None and int(match.group(1)) == offset:
            part.replace(destination)
            return DownloadResult(path=destination, bytes_written=0, resumed_from=offset)
        part.unlink(missing_ok=True)
        raise TransferError(
            f"Partial file {part} does not match the remote archive; "
            "it was discarded, run again to restart the download."
        )


def _expected_total(response: httpx.Response, resumed_from: int) -> int | None:
    content_range = response.headers.get("Content-Range")
    if content_range:
        match = _CONTENT_RANGE_TOTAL.search(content_range)
        if match is not None:
            return int(match.group(1))
    length = response.headers.get("Content-Length")
    if length is not None and length.isdigit():
        return resumed_from + int(length)
    return None


__all__ = ["ContentDownloader", "DownloadResult", "ProgressCallback", "partial_path"]
