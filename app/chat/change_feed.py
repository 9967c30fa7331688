"""
In-memory row change feed: subscribe/unsubscribe/publish by table and filter.

Writers publish after their commit succeeds; subscribers receive
``ChangeEvent(table, event, row)`` synchronously on the event loop thread.
Delivery is at-least-once from the consumer's point of view: a writer's own
result and the published event describe the same row.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"
ALL_EVENTS: FrozenSet[str] = frozenset({INSERT, UPDATE, DELETE})


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    row: Dict[str, Any]


@dataclass
class _Subscriber:
    handle: int
    table: str
    callback: Callable[[ChangeEvent], None]
    filters: Dict[str, Any]
    events: FrozenSet[str]

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table or change.event not in self.events:
            return False
        return all(_same(change.row.get(k), v) for k, v in self.filters.items())


def _same(a: Any, b: Any) -> bool:
    # Rows are serialized (str ids); filters may be given as UUIDs.
    if a is None or b is None:
        return a is b
    return str(a) == str(b)


class ChangeFeed:
    """Tracks subscribers per table and fans out row changes."""

    def __init__(self) -> None:
        # table -> handle -> subscriber
        self._tables: Dict[str, Dict[int, _Subscriber]] = {}
        self._handles = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[Dict[str, Any]] = None,
        events: Optional[Iterable[str]] = None,
    ) -> int:
        handle = next(self._handles)
        self._tables.setdefault(table, {})[handle] = _Subscriber(
            handle=handle,
            table=table,
            callback=callback,
            filters=dict(filters or {}),
            events=frozenset(events) if events else ALL_EVENTS,
        )
        logger.debug("Subscribed %s to %s %s", handle, table, filters or {})
        return handle

    def unsubscribe(self, handle: int) -> bool:
        for table, subscribers in list(self._tables.items()):
            if handle in subscribers:
                del subscribers[handle]
                if not subscribers:
                    del self._tables[table]
                logger.debug("Unsubscribed %s from %s", handle, table)
                return True
        return False

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._tables.get(table) or {})
        return sum(len(s) for s in self._tables.values())

    def publish(self, table: str, event: str, row: Dict[str, Any]) -> None:
        """Deliver one change to every matching subscriber. Failing callbacks are dropped."""
        change = ChangeEvent(table=table, event=event, row=row)
        subscribers = list((self._tables.get(table) or {}).values())
        dead: List[int] = []
        for sub in subscribers:
            if not sub.matches(change):
                continue
            try:
                sub.callback(change)
            except Exception as e:
                logger.warning("Change feed callback failed, dropping subscriber %s: %s", sub.handle, e)
                dead.append(sub.handle)
        for handle in dead:
            self.unsubscribe(handle)


change_feed = ChangeFeed()
