#!/usr/bin/env python3
"""NetSentry event bus (publish/subscribe) + in-memory event buffer.

The device store and alert manager publish change notifications here
(devices-updated, new-device, security-alert, ...). The server subscribes
and forwards every event to Socket.IO clients.

A bounded buffer of recent events lets late subscribers and pollers catch up
on the most recent snapshot without a separate message broker.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEVICES_UPDATED = "devices-updated"
NEW_DEVICE = "new-device"
SECURITY_ALERT = "security-alert"
STATS_UPDATED = "stats-updated"
SCAN_PROGRESS = "scan-progress"
SCAN_COMPLETE = "scan-complete"
PORT_SCAN_COMPLETE = "port-scan-complete"
MONITORING_STATS_UPDATED = "monitoring-stats-updated"
SCAN_ERROR = "scan-error"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_event_id(prefix: str = "evt") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Event:
    id: str
    ts: str
    type: str
    source: str
    entity: str
    payload: Any


Subscriber = Callable[[Event], None]


class EventBus:
    def __init__(self, *, max_events: int = 2000):
        self._events: Deque[Event] = deque(maxlen=max(1, int(max_events)))
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, fn: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(fn)

    def publish(
        self,
        event_type: str,
        payload: Any,
        *,
        source: str = "",
        entity: str = "",
        event_id: Optional[str] = None,
    ) -> Event:
        ev = Event(
            id=str(event_id or new_event_id()),
            ts=utc_now_iso(),
            type=str(event_type),
            source=str(source),
            entity=str(entity or ""),
            payload=payload,
        )

        with self._lock:
            self._events.append(ev)
            subs = list(self._subscribers)

        for fn in subs:
            try:
                fn(ev)
            except Exception:
                # Subscribers must never be able to break the publisher path.
                logger.exception("Event subscriber failed for %s", ev.type)
        return ev

    def recent(self, *, limit: int = 200, event_type: str = "") -> List[Dict[str, Any]]:
        lim = max(1, int(limit))
        with self._lock:
            items = list(self._events)
        if event_type:
            items = [ev for ev in items if ev.type == event_type]
        return [asdict(ev) for ev in items[-lim:]]

    def latest(self, event_type: str) -> Optional[Event]:
        with self._lock:
            for ev in reversed(self._events):
                if ev.type == event_type:
                    return ev
        return None
