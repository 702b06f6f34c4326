"""
In-memory crawl frontier for a single crawl run.

URLs are handed out breadth-first and marked visited when dequeued, so a page
that is still being fetched cannot be queued a second time. The request budget
counts distinct URLs handed out; retries of a failed URL are bounded per URL by
`max_retries` and do not consume budget.

Every URL returned by next() must be settled with exactly one call to done()
or retry().
"""
from __future__ import annotations
import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from .models import INTERNAL

logger = logging.getLogger(__name__)


class Frontier:
    def __init__(self, max_requests: int = 10, max_retries: int = 3, retry_delay: float = 1.0, backoff_factor: float = 2.0):
        self.max_requests = max_requests
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor

        self._queue: Deque[str] = deque()
        self._retry_queue: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._visited: Set[str] = set()
        self._attempts: Dict[str, int] = {}
        self._in_flight: Set[str] = set()
        self._cond = asyncio.Condition()

        self.dispatched = 0
        self.retries = 0
        self.failed: List[str] = []

    async def enqueue(self, url: str, scope: str = INTERNAL) -> bool:
        """Queue an internal URL not seen before in this run. Returns True if it was added."""
        if scope != INTERNAL:
            return False
        async with self._cond:
            if url in self._visited or url in self._queued:
                return False
            self._queue.append(url)
            self._queued.add(url)
            self._cond.notify_all()
            return True

    async def next(self) -> Optional[str]:
        """Next URL to fetch, or None once the budget is spent or nothing is left to do.

        Waits while the queue is empty but other URLs are in flight, since those
        may still enqueue links or come back for a retry.
        """
        async with self._cond:
            while True:
                if self._retry_queue:
                    url = self._retry_queue.popleft()
                    self._in_flight.add(url)
                    return url
                if self._queue and self.dispatched < self.max_requests:
                    url = self._queue.popleft()
                    self._queued.discard(url)
                    self._visited.add(url)
                    self.dispatched += 1
                    self._in_flight.add(url)
                    return url
                if not self._in_flight:
                    if self._queue:
                        logger.info("Request budget of %d reached with %d URLs still queued", self.max_requests, len(self._queue))
                    self._cond.notify_all()
                    return None
                await self._cond.wait()

    async def done(self, url: str) -> None:
        """Release `url` after its page was handled."""
        async with self._cond:
            self._in_flight.discard(url)
            self._cond.notify_all()

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return self.retry_delay * (self.backoff_factor ** (attempt - 1))

    async def retry(self, url: str, reason: str = "") -> bool:
        """Record a failed attempt. Re-queues the URL after a backoff delay, or drops it once retries are exhausted."""
        async with self._cond:
            attempt = self._attempts.get(url, 0) + 1
            self._attempts[url] = attempt
            if attempt > self.max_retries:
                self.failed.append(url)
                self._in_flight.discard(url)
                self._cond.notify_all()
                logger.error("Failed %s after %d attempts: %s", url, attempt, reason)
                return False
            self.retries += 1

        delay = self.backoff(attempt)
        logger.warning("Retrying %s in %.1fs (retry %d/%d): %s", url, delay, attempt, self.max_retries, reason)
        # The URL stays in flight while it waits so the frontier is not reported exhausted
        await asyncio.sleep(delay)
        async with self._cond:
            self._retry_queue.append(url)
            self._in_flight.discard(url)
            self._cond.notify_all()
        return True

    @property
    def queued(self) -> int:
        return len(self._queue) + len(self._retry_queue)
