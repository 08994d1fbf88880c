from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class Subscription:
    """New rows of one table matching an equality filter."""

    def __init__(self, feed: "ChangeFeed", table: str, filters: Dict[str, Any]) -> None:
        self._feed = feed
        self.table = table
        self.filters = filters
        self._queue: "asyncio.Queue[Row]" = asyncio.Queue()
        self.closed = False

    def matches(self, row: Row) -> bool:
        return all(row.get(k) == v for k, v in self.filters.items())

    def deliver(self, row: Row) -> None:
        self._queue.put_nowait(row)

    async def get(self, timeout: Optional[float] = None) -> Optional[Row]:
        """Next row, or None when `timeout` elapses first."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._feed._remove(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Row:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()


class ChangeFeed:
    """In-process insert notifications keyed by table + filter."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, table: str, **filters: Any) -> Subscription:
        sub = Subscription(self, table, filters)
        self._subscriptions.setdefault(table, []).append(sub)
        return sub

    def publish(self, table: str, row: Row) -> int:
        delivered = 0
        for sub in list(self._subscriptions.get(table, [])):
            if sub.matches(row):
                sub.deliver(row)
                delivered += 1
        if delivered:
            logger.debug("Published %s row id=%s to %d subscriber(s)", table, row.get("id"), delivered)
        return delivered

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, []))

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.table, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.table, None)


class Transcript:
    """Messages of one conversation, de-duplicated by id, oldest first.

    Rows may arrive both from a direct call's return value and from the change
    feed; only the first arrival of an id is kept.
    """

    def __init__(self) -> None:
        self._rows: Dict[Any, Row] = {}

    def apply(self, row: Row) -> bool:
        key = row.get("id")
        if key is None or key in self._rows:
            return False
        self._rows[key] = row
        return True

    def extend(self, rows: List[Row]) -> List[Row]:
        return [r for r in rows if self.apply(r)]

    def __contains__(self, message_id: Any) -> bool:
        return message_id in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def rows(self) -> List[Row]:
        return sorted(self._rows.values(), key=lambda r: (str(r.get("created_at")), r.get("id")))
