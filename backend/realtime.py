"""
In-process realtime transport.

Two delivery kinds per topic:

* broadcast: an event name plus a JSON payload, delivered to every *other*
  subscriber of the topic and never persisted;
* row change: emitted by the store after a committed write, delivered to
  every subscriber whose (table, equality filter) matches the row, the
  writer's own subscription included.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

BroadcastHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]
ChangeHandler = Callable[[str, str, Dict[str, Any]], Awaitable[None]]


def room_topic(room_id: str) -> str:
    return f"room:{room_id}"


@dataclass
class ChangeFilter:
    table: str
    match: Dict[str, Any] = field(default_factory=dict)

    def accepts(self, table: str, row: Dict[str, Any]) -> bool:
        if table != self.table:
            return False
        return all(row.get(key) == value for key, value in self.match.items())


class Subscription:
    def __init__(
        self,
        hub: "RealtimeHub",
        topic: str,
        *,
        on_broadcast: Optional[BroadcastHandler] = None,
        on_change: Optional[ChangeHandler] = None,
        filters: Optional[List[ChangeFilter]] = None,
    ):
        self.hub = hub
        self.topic = topic
        self.on_broadcast = on_broadcast
        self.on_change = on_change
        self.filters = list(filters or [])
        self.closed = False

    async def send(self, event: str, payload: Dict[str, Any]) -> int:
        """Broadcast to the other subscribers of this topic."""
        if self.closed:
            return 0
        return await self.hub.broadcast(self.topic, event, payload, sender=self)

    def wants(self, table: str, row: Dict[str, Any]) -> bool:
        return any(f.accepts(table, row) for f in self.filters)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub.unsubscribe(self)


class RealtimeHub:
    def __init__(self):
        self.topics: Dict[str, List[Subscription]] = {}

    def subscribe(
        self,
        topic: str,
        *,
        on_broadcast: Optional[BroadcastHandler] = None,
        on_change: Optional[ChangeHandler] = None,
        filters: Optional[List[ChangeFilter]] = None,
    ) -> Subscription:
        sub = Subscription(self, topic, on_broadcast=on_broadcast, on_change=on_change, filters=filters)
        self.topics.setdefault(topic, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self.topics.get(sub.topic, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self.topics.pop(sub.topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self.topics.get(topic, []))

    async def broadcast(
        self,
        topic: str,
        event: str,
        payload: Dict[str, Any],
        *,
        sender: Optional[Subscription] = None,
    ) -> int:
        delivered = 0
        for sub in list(self.topics.get(topic, [])):
            if sub is sender or sub.closed or sub.on_broadcast is None:
                continue
            try:
                await sub.on_broadcast(event, payload)
            except Exception:
                logger.exception("Broadcast handler failed on %s (%s)", topic, event)
            else:
                delivered += 1
        return delivered

    async def notify_change(self, table: str, event: str, row: Dict[str, Any]) -> int:
        delivered = 0
        targets: List[Tuple[str, Subscription]] = [
            (topic, sub) for topic, subs in self.topics.items() for sub in list(subs)
        ]
        for topic, sub in targets:
            if sub.closed or sub.on_change is None or not sub.wants(table, row):
                continue
            try:
                await sub.on_change(table, event, row)
            except Exception:
                logger.exception("Change handler failed on %s (%s %s)", topic, event, table)
            else:
                delivered += 1
        return delivered
