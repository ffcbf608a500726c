"""
Load balancing and health tracking across several model server URLs.

All endpoint state is owned by one asyncio task that consumes a message
queue. Callers never touch the table directly: ``checkout`` sends a request
and awaits the reply, ``checkin`` and ``report_failure`` are fire-and-forget.
The table lives only as long as the process; losing it just means the next
picks start from zero usage.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Union

from bookbatch.config import ENDPOINT_FAILURE_COOLDOWN, ENDPOINT_STALE_BUSY

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_BUSY = "busy"


@dataclass
class EndpointRecord:
    """Health and usage of one URL."""
    status: str = STATUS_IDLE
    last_failure_at: Optional[float] = None
    usage_count: int = 0
    last_checkout_at: Optional[float] = None


@dataclass
class _Checkout:
    urls: List[str]
    reply: asyncio.Future


@dataclass
class _Checkin:
    url: str


@dataclass
class _Failure:
    url: str


@dataclass
class _Snapshot:
    reply: asyncio.Future


_STOP = object()


def split_urls(urls: Union[str, Sequence[str]]) -> List[str]:
    """
    Accept a list of URLs or one comma-separated string.

    Every URL is stripped of surrounding whitespace and blank entries are
    dropped. The stripped form is the endpoint identity used by the pool.
    """
    if isinstance(urls, str):
        urls = urls.split(',')
    return [url.strip() for url in urls if url and url.strip()]


class EndpointPool:
    """
    Serialized arbiter over endpoint health.

    ``checkout`` never waits for an endpoint to become free: when nothing
    looks healthy it falls back to the whole candidate list.

    Example:
        >>> pool = EndpointPool()
        >>> url = await pool.checkout(["http://a:8080", "http://b:8080"])
        >>> try:
        ...     ...  # call the model
        ... finally:
        ...     pool.checkin(url)
    """

    def __init__(self, failure_cooldown: float = ENDPOINT_FAILURE_COOLDOWN,
                 stale_busy: float = ENDPOINT_STALE_BUSY,
                 clock: Callable[[], float] = time.monotonic):
        self.failure_cooldown = failure_cooldown
        self.stale_busy = stale_busy
        self._clock = clock
        self._records: Dict[str, EndpointRecord] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _ensure_started(self) -> asyncio.Queue:
        if self._task is None or self._task.done():
            self._queue = asyncio.Queue()
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._queue

    async def close(self):
        """Stop the owning task after it drains pending messages."""
        if self._task is not None and not self._task.done():
            self._queue.put_nowait(_STOP)
            await self._task
        self._task = None
        self._queue = None

    # ------------------------------------------------------------------
    # Client API
    # ------------------------------------------------------------------

    async def checkout(self, candidates: Union[str, Sequence[str]]) -> str:
        """
        Pick the least-loaded healthy endpoint and mark it busy.

        Args:
            candidates: URLs (list or comma-separated string)

        Returns:
            One of the candidate URLs, stripped as by :func:`split_urls`.
            Pass this exact string back to ``checkin`` and ``report_failure``.

        Raises:
            ValueError: If no candidate URL was given
        """
        urls = split_urls(candidates)
        if not urls:
            raise ValueError("checkout requires at least one endpoint URL")

        queue = self._ensure_started()
        reply = asyncio.get_running_loop().create_future()
        queue.put_nowait(_Checkout(urls, reply))
        return await reply

    def checkin(self, url: str) -> None:
        """Release an endpoint after a completed request."""
        self._ensure_started().put_nowait(_Checkin(url))

    def report_failure(self, url: str) -> None:
        """Release an endpoint and deprioritize it for the cool-down window."""
        self._ensure_started().put_nowait(_Failure(url))

    async def snapshot(self) -> Dict[str, EndpointRecord]:
        """Copy of the endpoint table, read through the owning task."""
        queue = self._ensure_started()
        reply = asyncio.get_running_loop().create_future()
        queue.put_nowait(_Snapshot(reply))
        return await reply

    # ------------------------------------------------------------------
    # Owning task
    # ------------------------------------------------------------------

    async def _run(self):
        queue = self._queue
        while True:
            message = await queue.get()
            if message is _STOP:
                break
            if isinstance(message, _Checkout):
                if not message.reply.cancelled():
                    message.reply.set_result(self._handle_checkout(message.urls))
            elif isinstance(message, _Checkin):
                self._handle_checkin(message.url)
            elif isinstance(message, _Failure):
                self._handle_failure(message.url)
            elif isinstance(message, _Snapshot):
                if not message.reply.cancelled():
                    message.reply.set_result({
                        url: EndpointRecord(**vars(record)) for url, record in self._records.items()
                    })

    def _handle_checkout(self, urls: List[str]) -> str:
        now = self._clock()
        for url in urls:
            self._records.setdefault(url, EndpointRecord())

        healthy = [url for url in urls if self._is_healthy(self._records[url], now)]
        candidates = healthy or urls

        def load_key(url: str):
            record = self._records[url]
            last_checkout = record.last_checkout_at if record.last_checkout_at is not None else now
            busy_and_fresh = record.status == STATUS_BUSY and now - last_checkout < self.stale_busy
            return busy_and_fresh, record.usage_count

        selected = min(candidates, key=load_key)
        record = self._records[selected]
        record.status = STATUS_BUSY
        record.last_checkout_at = now
        record.usage_count += 1
        return selected

    def _is_healthy(self, record: EndpointRecord, now: float) -> bool:
        recovered = record.last_failure_at is None or now - record.last_failure_at > self.failure_cooldown
        stale = record.last_checkout_at is not None and now - record.last_checkout_at > self.stale_busy
        return recovered or stale

    def _handle_checkin(self, url: str):
        record = self._records.get(url)
        if record is not None:
            record.status = STATUS_IDLE

    def _handle_failure(self, url: str):
        logger.warning(f"LLM server marked as unhealthy: {url}")
        record = self._records.setdefault(url, EndpointRecord())
        record.status = STATUS_IDLE
        record.last_failure_at = self._clock()
