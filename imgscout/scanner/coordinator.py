"""Scan coordinator — last-request-wins scanning per viewer session.

Provides:
  - ``ScanVersion``: atomic, monotonically increasing counter.
  - ``run_pipeline()``: decompress → extract → render; the unit of work run on the worker.
  - ``ScanSession``: one viewer session; submits scans, discards stale results.
  - ``SessionRegistry``: the open sessions of the HTTP surface.

STALENESS INVARIANT:
  A scan's result is applied only if, when it completes, ``ScanVersion`` still
  equals the version captured when that scan was submitted. Cancelling the
  in-flight scan is only a resource optimization; the version check is the
  sole correctness mechanism.

Threading model:
  ``submit()`` and every publish run on the event loop (the interactive path).
  The pipeline itself runs on a single-thread executor and only ever reads
  its own inputs plus a cancel token; it never touches session state.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from imgscout.constants import DEFAULT_SCAN_TIMEOUT_S, DEFAULT_SLOW_SCAN_MS
from imgscout.models.candidate import Candidate
from imgscout.models.view import RenderedImage, ViewState
from imgscout.scanner.decompress import decode_body
from imgscout.scanner.definitions import DEFAULT_LIMITS, ExtractionLimits
from imgscout.scanner.errors import ScanCancelled
from imgscout.scanner.extractor import extract
from imgscout.scanner.render import render_candidates
from imgscout.utils.health import ScanLatencyTracker
from imgscout.utils.logger import get_logger
from imgscout.utils.ulid import generate_ulid

logger = get_logger(__name__)

Renderer = Callable[..., tuple[RenderedImage, ...]]
PublishCallback = Callable[[ViewState], None]


# ─── ScanVersion ──────────────────────────────────────────────────────────────


class ScanVersion:
    """Linearizable read/increment counter. Starts at 0, never decremented."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def is_current(self, version: int) -> bool:
        return self.value == version


# ─── Pipeline ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScanRequest:
    """A response body and its declared headers, as handed over by the host."""

    body: Optional[bytes]
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None


def run_pipeline(
    request: ScanRequest,
    limits: ExtractionLimits = DEFAULT_LIMITS,
    cancel_event: Optional[threading.Event] = None,
    renderer: Renderer = render_candidates,
) -> tuple[RenderedImage, ...]:
    """Decompress, extract and render one body. Runs on the worker thread.

    Each candidate is rendered as the extractor admits it; one the renderer
    drops does not take a slot under ``limits.max_candidates``.

    Raises:
        DecodeError:   The body could not be decompressed.
        ScanCancelled: ``cancel_event`` was set mid-scan.
    """
    body = decode_body(request.body or b"", request.content_encoding, limits.max_inflated_bytes)
    images: list[RenderedImage] = []

    def accept(candidate: Candidate) -> bool:
        rendered = renderer([candidate], cancel_event)
        images.extend(rendered)
        return bool(rendered)

    extract(
        body,
        request.content_type,
        limits=limits,
        cancel_event=cancel_event,
        accept=accept,
    )
    return tuple(images)


def _mark_started(started: asyncio.Future[None]) -> None:
    if not started.done():
        started.set_result(None)


def create_worker() -> ThreadPoolExecutor:
    """The single background worker: a one-thread executor, scans run one at a time."""
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix="imgscout-worker")


# ─── ScanSession ──────────────────────────────────────────────────────────────


class ScanSession:
    """One viewer session: ``Idle → Scanning → (Idle | Scanning)``.

    Usage (from a running event loop)::

        session = ScanSession(worker)
        session.submit(body, "text/html", "gzip")
        state = await session.wait()

    Args:
        executor:        Worker to run scans on. A private one-thread worker is
                         created (and owned) when None.
        limits:          Extraction limits for every scan of this session.
        session_id:      Identifier used in logs; a ULID when omitted.
        timeout_s:       Safety-net timeout per scan, counted from when the
                         worker starts it (not from submission).
        slow_scan_ms:    Scans slower than this are logged at WARNING.
        on_publish:      Called with every state that becomes visible.
        latency_tracker: Records scan durations and stale discards.
        renderer:        Pixel-decoding step; ``render_candidates`` by default.
    """

    def __init__(
        self,
        executor: Optional[ThreadPoolExecutor] = None,
        limits: ExtractionLimits = DEFAULT_LIMITS,
        *,
        session_id: Optional[str] = None,
        timeout_s: float = DEFAULT_SCAN_TIMEOUT_S,
        slow_scan_ms: float = DEFAULT_SLOW_SCAN_MS,
        on_publish: Optional[PublishCallback] = None,
        latency_tracker: Optional[ScanLatencyTracker] = None,
        renderer: Renderer = render_candidates,
    ) -> None:
        self._owns_executor = executor is None
        self._executor = executor if executor is not None else create_worker()
        self._limits = limits
        self.session_id = session_id or generate_ulid()
        self._timeout_s = timeout_s
        self._slow_scan_ms = slow_scan_ms
        self._on_publish = on_publish
        self._latency_tracker = latency_tracker
        self._renderer = renderer

        self._version = ScanVersion()
        self._state = ViewState.empty()
        self._task: Optional[asyncio.Task[None]] = None
        self._cancel_event: Optional[threading.Event] = None
        self._closed = False

    # ── Read-only view ────────────────────────────────────────────────────────

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def version(self) -> int:
        return self._version.value

    @property
    def scanning(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Interactive path ──────────────────────────────────────────────────────

    def submit(
        self,
        body: Optional[bytes],
        content_type: Optional[str] = None,
        content_encoding: Optional[str] = None,
    ) -> int:
        """Start a scan, superseding any scan still in flight.

        Must be called from the event loop. Never blocks on scanning work:
        the pipeline is scheduled on the worker and its result applied later.

        Returns:
            The ScanVersion captured for this scan.

        Raises:
            RuntimeError: The session has been closed.
        """
        if self._closed:
            raise RuntimeError(f"Session {self.session_id} is closed")

        self._cancel_current()
        version = self._version.increment()

        if body is None:
            self._publish(ViewState.empty(version))
            return version

        self._publish(ViewState.scanning(version))

        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        request = ScanRequest(body, content_type, content_encoding)
        self._task = asyncio.get_running_loop().create_task(
            self._run(version, request, cancel_event),
            name=f"imgscout-scan-{self.session_id}-{version}",
        )
        logger.info(
            "Scan submitted",
            session_id=self.session_id,
            version=version,
            body_bytes=len(body),
            content_type=content_type,
            content_encoding=content_encoding,
        )
        return version

    async def wait(self) -> ViewState:
        """Wait for the current scan (if any) and return the visible state.

        If another scan supersedes the awaited one meanwhile, keeps waiting
        for the newest.
        """
        while self._task is not None and not self._task.done():
            task = self._task
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if task is self._task:
                    raise
        return self._state

    async def close(self) -> None:
        """Cancel any in-flight scan and release an owned worker."""
        if self._closed:
            return
        self._closed = True
        task = self._task
        self._cancel_current()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("Session closed", session_id=self.session_id)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _cancel_current(self) -> None:
        """Best-effort interrupt of the in-flight scan."""
        if self._cancel_event is not None:
            self._cancel_event.set()
            self._cancel_event = None
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

    async def _run(
        self,
        version: int,
        request: ScanRequest,
        cancel_event: threading.Event,
    ) -> None:
        loop = asyncio.get_running_loop()
        started: asyncio.Future[None] = loop.create_future()
        job = loop.run_in_executor(
            self._executor,
            self._work,
            loop,
            started,
            request,
            cancel_event,
        )
        try:
            # Time queued behind other sessions' scans does not count.
            await asyncio.wait({started, job}, return_when=asyncio.FIRST_COMPLETED)
            t0 = time.perf_counter()
            images = await asyncio.wait_for(job, timeout=self._timeout_s)
        except asyncio.CancelledError:
            cancel_event.set()
            job.cancel()
            raise
        except asyncio.TimeoutError:
            cancel_event.set()
            logger.error(
                "Scan timed out",
                session_id=self.session_id,
                version=version,
                timeout_s=self._timeout_s,
            )
            self._apply(
                version,
                ViewState.failed(version, f"scan timed out after {self._timeout_s:g}s"),
            )
            return
        except ScanCancelled:
            logger.debug("Scan cancelled", session_id=self.session_id, version=version)
            return
        except Exception as exc:  # noqa: BLE001
            # Any pipeline failure becomes a diagnostic; it must never reach the host.
            logger.warning(
                "Scan failed",
                session_id=self.session_id,
                version=version,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self._apply(version, ViewState.failed(version, str(exc) or type(exc).__name__))
            return

        duration_ms = (time.perf_counter() - t0) * 1000
        if self._apply(version, ViewState.found(version, images)):
            self._record_latency(duration_ms)
            log_method = logger.warning if duration_ms > self._slow_scan_ms else logger.info
            log_method(
                "Scan published",
                session_id=self.session_id,
                version=version,
                images=len(images),
                duration_ms=round(duration_ms, 2),
            )

    def _work(
        self,
        loop: asyncio.AbstractEventLoop,
        started: asyncio.Future[None],
        request: ScanRequest,
        cancel_event: threading.Event,
    ) -> tuple[RenderedImage, ...]:
        """Worker-thread entry: report the start to the loop, then run the pipeline."""
        loop.call_soon_threadsafe(_mark_started, started)
        return run_pipeline(request, self._limits, cancel_event, self._renderer)

    def _apply(self, version: int, state: ViewState) -> bool:
        """Publish ``state`` only if ``version`` is still the live ScanVersion."""
        if not self._version.is_current(version):
            logger.debug(
                "Discarding stale scan result",
                session_id=self.session_id,
                version=version,
                current=self._version.value,
            )
            if self._latency_tracker is not None:
                self._latency_tracker.record_stale()
            return False
        self._publish(state)
        return True

    def _publish(self, state: ViewState) -> None:
        self._state = state
        if self._on_publish is None:
            return
        try:
            self._on_publish(state)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Publish callback failed",
                session_id=self.session_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def _record_latency(self, duration_ms: float) -> None:
        if self._latency_tracker is not None:
            self._latency_tracker.record(duration_ms)


# ─── SessionRegistry ──────────────────────────────────────────────────────────


class SessionRegistry:
    """Open viewer sessions sharing one worker.

    When ``max_sessions`` is reached the oldest session is closed to make room.
    """

    def __init__(
        self,
        executor: ThreadPoolExecutor,
        limits: ExtractionLimits = DEFAULT_LIMITS,
        *,
        max_sessions: int = 256,
        timeout_s: float = DEFAULT_SCAN_TIMEOUT_S,
        slow_scan_ms: float = DEFAULT_SLOW_SCAN_MS,
        latency_tracker: Optional[ScanLatencyTracker] = None,
    ) -> None:
        self._executor = executor
        self._limits = limits
        self._max_sessions = max_sessions
        self._timeout_s = timeout_s
        self._slow_scan_ms = slow_scan_ms
        self.latency_tracker = latency_tracker or ScanLatencyTracker()
        self._sessions: OrderedDict[str, ScanSession] = OrderedDict()

    def new_session(self) -> ScanSession:
        """A session bound to the shared worker but not registered (one-shot use)."""
        return ScanSession(
            self._executor,
            self._limits,
            timeout_s=self._timeout_s,
            slow_scan_ms=self._slow_scan_ms,
            latency_tracker=self.latency_tracker,
        )

    async def create(self) -> ScanSession:
        while len(self._sessions) >= self._max_sessions:
            _, oldest = self._sessions.popitem(last=False)
            logger.info("Evicting oldest session", session_id=oldest.session_id)
            await oldest.close()
        session = self.new_session()
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ScanSession]:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        while self._sessions:
            _, session = self._sessions.popitem()
            await session.close()

    @property
    def scanning_count(self) -> int:
        return sum(1 for session in self._sessions.values() if session.scanning)

    def __len__(self) -> int:
        return len(self._sessions)
