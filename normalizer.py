"""
NetSentry device record normalizer.
Merges one observation into the canonical record for its IP.
"""

from dataclasses import replace
from typing import Optional

from models import DeviceRecord


def _pick(incoming: Optional[str], existing: Optional[str]) -> Optional[str]:
    return incoming if incoming else existing


def merge(existing: Optional[DeviceRecord], incoming: DeviceRecord) -> DeviceRecord:
    """Field-by-field merge; the newest observation is authoritative for liveness.

    Identity fields keep their last known good value when the incoming one is
    empty, and an observation without ports never erases known ports.
    """
    if existing is None:
        return incoming
    return replace(
        existing,
        mac=_pick(incoming.mac, existing.mac),
        vendor=_pick(incoming.vendor, existing.vendor),
        hostname=_pick(incoming.hostname, existing.hostname),
        ports=incoming.ports if incoming.ports else existing.ports,
        status=incoming.status,
        last_seen=incoming.last_seen,
        discovery_method=incoming.discovery_method,
    )
