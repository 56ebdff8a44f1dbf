"""
Change notifications for backend tables

A subscription watches the rows matched by an optional ``column=eq.value``
filter and delivers INSERT/UPDATE/DELETE events to a callback from a
background thread. Every subscribe must be paired with an unsubscribe.
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.backend import BackendClient, Row
from common.settings import settings

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Dict[str, Any]], None]

EVENTS = ("INSERT", "UPDATE", "DELETE", "*")

def parse_filter(expression: Optional[str]) -> Optional[Tuple[str, str]]:
    """'id=eq.42' -> ('id', '42')"""
    if not expression:
        return None
    column, sep, rest = expression.partition("=")
    op, dot, value = rest.partition(".")
    if not sep or not dot or op != "eq" or not column:
        raise ValueError(f"Unsupported filter: {expression!r}")
    return column, value

def diff_rows(table: str, old: Dict[str, Row], new: Dict[str, Row]) -> List[Dict[str, Any]]:
    changes = []
    for key, row in new.items():
        if key not in old:
            changes.append({"eventType": "INSERT", "table": table, "new": row, "old": {}})
        elif old[key] != row:
            changes.append({"eventType": "UPDATE", "table": table, "new": row, "old": old[key]})
    for key, row in old.items():
        if key not in new:
            changes.append({"eventType": "DELETE", "table": table, "new": {}, "old": row})
    return changes

class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, callback: ChangeCallback,
                 filter: Optional[str] = None, event: str = "UPDATE"):
        if event not in EVENTS:
            raise ValueError(f"Unknown event type: {event}")
        self.feed = feed
        self.table = table
        self.callback = callback
        self.filter = parse_filter(filter)
        self.event = event
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._snapshot: Dict[str, Row] = {}

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def _fetch(self) -> Dict[str, Row]:
        query = self.feed.client.table(self.table).select("*")
        if self.filter:
            query = query.eq(*self.filter)
        return {str(row.get("id")): row for row in query.execute()}

    def start(self) -> "Subscription":
        self._snapshot = self._fetch()
        self._thread = threading.Thread(
            target=self._run, name=f"changefeed-{self.table}", daemon=True
        )
        self._thread.start()
        logger.info(f"Subscribed to {self.event} on {self.table}", extra={"filter": self.filter})
        return self

    def poll_once(self) -> None:
        current = self._fetch()
        changes = diff_rows(self.table, self._snapshot, current)
        self._snapshot = current
        for change in changes:
            if self._stop.is_set():
                return
            if self.event in ("*", change["eventType"]):
                try:
                    self.callback(change)
                except Exception:
                    logger.exception(f"Change callback failed for {self.table}")

    def _run(self) -> None:
        while not self._stop.wait(self.feed.poll_seconds):
            try:
                self.poll_once()
            except Exception as e:
                logger.warning(f"Change feed poll failed for {self.table}: {e}")

    def unsubscribe(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        self.feed._forget(self)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.feed.poll_seconds + 1)
        logger.info(f"Unsubscribed from {self.table}", extra={"filter": self.filter})

class ChangeFeed:
    def __init__(self, client: BackendClient, poll_seconds: float = None):
        self.client = client
        self.poll_seconds = settings.realtime_poll_seconds if poll_seconds is None else poll_seconds
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, table: str, callback: ChangeCallback,
                  filter: Optional[str] = None, event: str = "UPDATE") -> Subscription:
        subscription = Subscription(self, table, callback, filter, event)
        subscription.start()
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriptions(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def close(self) -> None:
        for subscription in self.subscriptions:
            subscription.unsubscribe()
