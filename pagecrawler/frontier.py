from __future__ import annotations

import heapq
import itertools
from typing import List, Optional, Set, Tuple

from loguru import logger

from pagecrawler.errors import InvalidURL
from pagecrawler.models import QueueItem
from pagecrawler.utils.url_utils import normalize_url, validate_url


DEFAULT_MAX_DEPTH = 2


class Frontier:
    """In-memory, deduplicated work queue ordered by priority (highest first).

    Items with equal priority come out in the order they were queued.
    """

    def __init__(self, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth
        self._heap: List[Tuple[float, int, QueueItem]] = []
        self._seen: Set[str] = set()
        self._counter = itertools.count()

    # -------------------------------------------------------
    # URL helpers
    # -------------------------------------------------------

    @staticmethod
    def validate(url: str) -> bool:
        return validate_url(url)

    @staticmethod
    def normalize(url: str) -> str:
        return normalize_url(url)

    def has_seen(self, url: str) -> bool:
        try:
            return normalize_url(url) in self._seen
        except InvalidURL:
            return False

    # -------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------

    def queue(self, url: str, depth: int, priority: float = 1) -> bool:
        if not validate_url(url):
            logger.debug(f"Not queuing invalid URL: {url}")
            return False

        if depth > self.max_depth:
            logger.debug(f"Not queuing {url}: depth {depth} exceeds max {self.max_depth}")
            return False

        try:
            normalized = normalize_url(url)
        except InvalidURL:
            logger.debug(f"Not queuing {url}: normalization failed")
            return False

        if normalized in self._seen:
            logger.debug(f"Not queuing {normalized}: already seen")
            return False

        item = QueueItem(url=normalized, depth=depth, priority=priority)
        heapq.heappush(self._heap, (-priority, next(self._counter), item))
        self._seen.add(normalized)

        logger.debug(
            f"Queued {normalized} (depth={depth}, priority={priority}, size={len(self._heap)})"
        )
        return True

    def dequeue(self) -> Optional[QueueItem]:
        """Pop the highest-priority item, or None when the frontier is empty."""
        if not self._heap:
            return None
        _, _, item = heapq.heappop(self._heap)
        logger.debug(f"Dequeued {item.url} (remaining={len(self._heap)})")
        return item

    def size(self) -> int:
        return len(self._heap)

    def clear(self) -> None:
        """Drop pending items; the seen-set is kept for the rest of the run."""
        self._heap.clear()

    def __len__(self) -> int:
        return len(self._heap)
