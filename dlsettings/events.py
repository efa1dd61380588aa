"""In-process change feed.

Every committed write to a watched table is published as a
``table:revision:OPERATION`` message. Delivery is best-effort: each subscriber
owns a bounded queue and the oldest message is dropped when it overflows.
Subscribers that fall behind recover by re-reading the revision counter.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError

logger = logging.getLogger(__name__)

OPERATIONS = ("INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class SettingsChange:
    table: str
    revision: int
    operation: str

    @property
    def payload(self) -> str:
        return f"{self.table}:{self.revision}:{self.operation}"

    @classmethod
    def parse(cls, payload: str) -> "SettingsChange":
        parts = (payload or "").split(":")
        if len(parts) != 3:
            raise ValidationError(
                f"malformed change payload: {payload!r}", section="change_feed", field="payload"
            )
        table, raw_revision, operation = (p.strip() for p in parts)
        try:
            revision = int(raw_revision)
        except ValueError as exc:
            raise ValidationError(
                f"invalid revision in change payload: {payload!r}",
                section="change_feed",
                field="revision",
            ) from exc
        operation = operation.upper()
        if not table or operation not in OPERATIONS:
            raise ValidationError(
                f"malformed change payload: {payload!r}", section="change_feed", field="payload"
            )
        return cls(table=table, revision=revision, operation=operation)


@dataclass
class Subscription:
    id: int
    queue: "queue.Queue[SettingsChange]"
    connected_at: float
    dropped: int = 0
    last_revision: int | None = None
    _feed: "ChangeFeed | None" = field(default=None, repr=False)

    def get(self, timeout: float | None = None) -> SettingsChange | None:
        """Next change, or None when nothing arrives within ``timeout``."""
        try:
            change = self.queue.get(timeout=timeout) if timeout != 0 else self.queue.get_nowait()
        except queue.Empty:
            return None
        self.last_revision = change.revision
        return change

    def drain(self) -> list[SettingsChange]:
        out: list[SettingsChange] = []
        while True:
            change = self.get(timeout=0)
            if change is None:
                return out
            out.append(change)

    def take_dropped(self) -> int:
        """Return and reset the overflow counter."""
        n, self.dropped = self.dropped, 0
        return n

    def close(self) -> None:
        if self._feed is not None:
            self._feed.unsubscribe(self)
            self._feed = None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeFeed:
    """Multi-producer, multi-consumer broadcast of settings changes."""

    def __init__(self, *, max_queue: int = 256) -> None:
        self._max_queue = max(1, int(max_queue))
        self._next_sub_id = 1
        self._subs: dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._published = 0

    def subscribe(self) -> Subscription:
        with self._lock:
            sub = Subscription(
                id=self._next_sub_id,
                queue=queue.Queue(maxsize=self._max_queue),
                connected_at=time.time(),
                _feed=self,
            )
            self._next_sub_id += 1
            self._subs[sub.id] = sub
        logger.debug("change feed subscriber %d connected", sub.id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.pop(sub.id, None)

    def publish(self, change: SettingsChange) -> None:
        with self._lock:
            self._published += 1
            subs = list(self._subs.values())
        for sub in subs:
            # put/get race with consumers; retry until the message lands.
            while True:
                try:
                    sub.queue.put_nowait(change)
                    break
                except queue.Full:
                    try:
                        sub.queue.get_nowait()
                    except queue.Empty:
                        continue
                    sub.dropped += 1

    def publish_all(self, changes: list[SettingsChange]) -> None:
        for change in changes:
            self.publish(change)
        if changes:
            logger.debug("published %d change(s), last=%s", len(changes), changes[-1].payload)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "subscribers": len(self._subs),
                "published": self._published,
                "dropped_total": sum(int(s.dropped) for s in self._subs.values()),
                "max_queue": self._max_queue,
            }
