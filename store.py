"""
NetSentry device store.
In-memory table of canonical device records keyed by IP, with change notifications.
"""

import logging
import threading
from typing import Dict, List, Optional

from errors import StoreUnavailable
from events import DEVICES_UPDATED, NEW_DEVICE, EventBus
from models import DeviceRecord, DeviceStats, DeviceStatus
from normalizer import merge

logger = logging.getLogger(__name__)


class DeviceStore:
    """Authoritative device inventory.

    Records are immutable, so a reader holding a record returned by `get` or
    `all` keeps a consistent snapshot no matter what later upserts do.
    Notifications are published while the lock is held, which keeps their
    order identical to the order the mutations were applied in.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus
        self.lock = threading.RLock()
        self._devices: Dict[str, DeviceRecord] = {}
        self._closed = False

    def _check_open(self):
        if self._closed:
            raise StoreUnavailable("Device store is closed")

    def _publish(self, event_type: str, payload, entity: str = ""):
        if self.bus is not None:
            self.bus.publish(event_type, payload, source="store", entity=entity)

    def upsert(self, observation: DeviceRecord) -> DeviceRecord:
        with self.lock:
            self._check_open()
            existing = self._devices.get(observation.ip)
            record = merge(existing, observation)
            self._devices[observation.ip] = record
            if existing is None:
                logger.info("New device %s via %s", record.ip, record.discovery_method.value)
                self._publish(NEW_DEVICE, record.to_dict(), entity=record.ip)
            self._publish(
                DEVICES_UPDATED,
                [d.to_dict() for d in self._devices.values()],
                entity=record.ip,
            )
            return record

    def get(self, ip: str) -> Optional[DeviceRecord]:
        with self.lock:
            self._check_open()
            return self._devices.get(ip)

    def all(self) -> List[DeviceRecord]:
        with self.lock:
            self._check_open()
            return list(self._devices.values())

    def clear(self) -> None:
        with self.lock:
            self._check_open()
            count = len(self._devices)
            self._devices.clear()
            logger.info("Cleared %d devices", count)
            self._publish(DEVICES_UPDATED, [])

    def stats(self) -> DeviceStats:
        devices = self.all()
        vendors = sorted({d.vendor for d in devices if d.vendor})
        last_seen = max((d.last_seen for d in devices), default=None)
        return DeviceStats(
            total_devices=len(devices),
            active_devices=sum(1 for d in devices if d.status == DeviceStatus.UP),
            devices_with_ports=sum(1 for d in devices if d.ports),
            distinct_vendors=tuple(vendors),
            last_scan_time=last_seen,
        )

    def close(self) -> None:
        with self.lock:
            self._closed = True

    def __len__(self) -> int:
        with self.lock:
            return len(self._devices)

    def __contains__(self, ip: object) -> bool:
        with self.lock:
            return ip in self._devices
