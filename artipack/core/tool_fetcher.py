"""Tool fetching: bounded concurrent downloads into the ToolCache.

Each tool in a ResolvedToolSet is either served from the cache (after the
cache re-verifies it against the currently expected hash) or downloaded,
verified and stored. Downloads run on a fixed-size thread pool; the HTTP
request is the only place a worker blocks. Bodies are streamed to a staging
file in the cache, so a retry resumes where the previous attempt stopped.

Retry policy is local to the network call: transport errors, HTTP 429 and
HTTP 5xx are retried with exponential backoff up to ``retry_attempts`` total
attempts. Any other httpx error (redirect loops, undecodable bodies, bad
URLs) fails the tool at once. A hash mismatch is never retried.

Batch policy is chosen by the caller:

- ``FetchMode.FAIL_FAST``: the first unrecoverable failure stops new fetches
  from starting; in-flight fetches drain; the rest are reported as skipped.
- ``FetchMode.BEST_EFFORT``: every tool is attempted and the report lists
  successes and failures side by side.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any

import httpx

from artipack.core.errors import DownloadError, HashMismatchError
from artipack.core.tool_cache import ToolCache
from artipack.models.artifacts import ToolReference
from artipack.models.cache import CacheEntry
from artipack.models.fetch import FetchFailure, FetchMode, FetchReport
from artipack.models.resolution import ResolvedToolSet

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.5
DEFAULT_BACKOFF_MAX = 8.0
DEFAULT_TIMEOUT = 60.0

_REUSED = "reused"
_DOWNLOADED = "downloaded"
_FAILED = "failed"
_SKIPPED = "skipped"


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class ToolFetcher:
    """Makes every tool of a resolved set available in the cache.

    Parameters
    ----------
    cache:
        The shared ToolCache.
    max_workers:
        Upper bound on concurrent downloads.
    retry_attempts:
        Total attempts per download, including the first.
    backoff_base, backoff_max:
        Delay before retry ``n`` (0-based) is
        ``min(backoff_max, backoff_base * 2**n)`` seconds.
    timeout:
        Per-request timeout in seconds.
    client:
        An ``httpx.Client`` to use. When omitted the fetcher owns one and
        closes it in ``close()``.
    sleep:
        Backoff sleep function.
    """

    def __init__(
        self,
        cache: ToolCache,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = "artipack",
        client: httpx.Client | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")

        self._cache = cache
        self._max_workers = max_workers
        self._retry_attempts = retry_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": user_agent},
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ToolFetcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (0-based)."""
        return min(self._backoff_max, self._backoff_base * (2 ** attempt))

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def fetch(
        self,
        resolved: ResolvedToolSet,
        mode: FetchMode = FetchMode.FAIL_FAST,
    ) -> FetchReport:
        """Fetch every tool in *resolved*; returns once all workers joined."""
        references = resolved.references()
        if not references:
            return FetchReport(mode=mode)

        abort = threading.Event()
        succeeded: dict[str, CacheEntry] = {}
        failed: list[FetchFailure] = []
        skipped: list[str] = []
        reused: list[str] = []
        downloaded: list[str] = []

        workers = min(self._max_workers, len(references))
        logger.info(
            "Fetching %d tool(s) with %d worker(s) (%s)",
            len(references), workers, mode.value,
        )

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="artipack-fetch"
        ) as pool:
            futures: dict[Future, ToolReference] = {
                pool.submit(self._fetch_one, ref, abort, mode): ref
                for ref in references
            }
            cancelled = False
            try:
                for future in as_completed(futures):
                    ref = futures[future]
                    if future.cancelled():
                        skipped.append(ref.name)
                        continue

                    outcome, value = future.result()
                    if outcome == _SKIPPED:
                        skipped.append(ref.name)
                    elif outcome == _FAILED:
                        failed.append(value)
                        if mode == FetchMode.FAIL_FAST and not cancelled:
                            logger.error(
                                "Aborting fetch batch after failure of %s", ref.name
                            )
                            cancelled = True
                            for pending in futures:
                                pending.cancel()
                    else:
                        succeeded[ref.name] = value
                        (reused if outcome == _REUSED else downloaded).append(ref.name)
            except BaseException:
                abort.set()
                for pending in futures:
                    pending.cancel()
                raise

        report = FetchReport(
            mode=mode,
            succeeded={name: succeeded[name] for name in sorted(succeeded)},
            failed=failed,
            skipped=sorted(skipped),
            reused=sorted(reused),
            downloaded=sorted(downloaded),
            aborted=abort.is_set(),
        )
        logger.info(
            "Fetch finished: %d reused, %d downloaded, %d failed, %d skipped",
            len(report.reused), len(report.downloaded),
            len(report.failed), len(report.skipped),
        )
        return report

    # ------------------------------------------------------------------
    # Single tool
    # ------------------------------------------------------------------

    def _fetch_one(
        self, ref: ToolReference, abort: threading.Event, mode: FetchMode
    ) -> tuple[str, CacheEntry | FetchFailure | None]:
        if abort.is_set():
            return _SKIPPED, None

        with self._cache.lock_for(ref.name):
            entry = self._cache.lookup(ref.name, ref.expected_hash)
            if entry is not None and entry.matches(ref.expected_hash):
                logger.debug("Cache hit for %s (%s)", ref.name, entry.hash[:12])
                return _REUSED, entry
            if entry is not None:
                self._cache.invalidate(ref.name)

            if abort.is_set():
                return _SKIPPED, None

            try:
                part = self._download(ref)
                entry = self._cache.store_file(
                    ref.name, part, ref.expected_hash, url=ref.url
                )
            except HashMismatchError as exc:
                failure = FetchFailure(
                    name=ref.name,
                    error_type=type(exc).__name__,
                    message=str(exc),
                    url=ref.url,
                    expected_hash=exc.expected,
                    actual_hash=exc.actual,
                )
            except DownloadError as exc:
                logger.error("%s", exc)
                failure = FetchFailure(
                    name=ref.name,
                    error_type=type(exc).__name__,
                    message=str(exc),
                    url=ref.url,
                    expected_hash=ref.expected_hash,
                )
            except OSError as exc:
                logger.error("Could not cache %s: %s", ref.name, exc)
                failure = FetchFailure(
                    name=ref.name,
                    error_type=type(exc).__name__,
                    message=f"{ref.name}: could not write to the tool cache: {exc}",
                    url=ref.url,
                    expected_hash=ref.expected_hash,
                )
            else:
                failure = None

        if failure is not None:
            # Set by the failing worker: no idle worker may start another tool.
            if mode == FetchMode.FAIL_FAST:
                abort.set()
            return _FAILED, failure

        if ref.size is not None and ref.size != entry.size:
            logger.warning(
                "Tool %s declares size %d but verified content is %d bytes",
                ref.name, ref.size, entry.size,
            )
        logger.info("Downloaded %s (%d bytes)", ref.name, entry.size)
        return _DOWNLOADED, entry

    def _download(self, ref: ToolReference) -> Path:
        """Stream *ref.url* into the cache's staging file and return its path.

        A retry resumes from the bytes already staged with a ``Range``
        request. A ``206`` reply is appended; any other success restarts the
        file from byte 0.
        """
        part = self._cache.partial_path(ref.name)
        part.unlink(missing_ok=True)

        last_error = ""
        for attempt in range(self._retry_attempts):
            offset = part.stat().st_size if part.exists() else 0
            try:
                status = self._stream_to(ref, part, offset)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                part.unlink(missing_ok=True)
                raise DownloadError(
                    ref.name, ref.url, f"{type(exc).__name__}: {exc}",
                    attempts=attempt + 1,
                ) from exc
            else:
                if status is None:
                    return part
                last_error = f"HTTP {status}"
                if not (_is_transient_status(status) or (status == 416 and offset)):
                    part.unlink(missing_ok=True)
                    raise DownloadError(
                        ref.name, ref.url, last_error, attempts=attempt + 1
                    )

            if attempt + 1 < self._retry_attempts:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Download of %s failed (%s); retry %d/%d in %.1fs",
                    ref.name, last_error, attempt + 1,
                    self._retry_attempts - 1, delay,
                )
                self._sleep(delay)

        part.unlink(missing_ok=True)
        raise DownloadError(
            ref.name, ref.url, last_error, attempts=self._retry_attempts
        )

    def _stream_to(self, ref: ToolReference, part: Path, offset: int) -> int | None:
        """One GET attempt into *part*, resuming at *offset* when possible.

        Returns None once *part* holds the whole body, or the HTTP status of
        an unsuccessful reply. httpx errors propagate.
        """
        headers = {"Accept-Encoding": "identity"}
        if offset:
            headers["Range"] = f"bytes={offset}-"

        with self._client.stream("GET", ref.url, headers=headers) as response:
            status = response.status_code
            if status == 416:
                # Staged bytes no longer line up with the remote file.
                part.unlink(missing_ok=True)
                return status
            if not response.is_success:
                return status

            resumed = (
                offset > 0
                and status == 206
                and response.headers.get("Content-Range", "").startswith(
                    f"bytes {offset}-"
                )
            )
            if offset and not resumed:
                logger.info("%s: server ignored range request, restarting", ref.name)
            elif resumed:
                logger.info("%s: resuming download at byte %d", ref.name, offset)

            with part.open("ab" if resumed else "wb") as fh:
                for chunk in response.iter_bytes():
                    fh.write(chunk)
        return None
