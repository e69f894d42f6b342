"""
NetSentry access control registry.
Mutually exclusive whitelist/blacklist sets gating scans and alerts per IP.
"""

import logging
import threading
from typing import Dict, List, Set

from errors import DeviceDenied

logger = logging.getLogger(__name__)


class AccessControlRegistry:
    """Whitelist/blacklist membership; an IP is never in both sets.

    The blacklist is an absolute gate: callers dispatching scans or recording
    alerts must call `ensure_not_denied` first. The whitelist is informational.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._whitelist: Set[str] = set()
        self._blacklist: Set[str] = set()

    def allow(self, ip: str) -> None:
        with self._lock:
            self._blacklist.discard(ip)
            self._whitelist.add(ip)
        logger.info("Added %s to whitelist", ip)

    def deny(self, ip: str) -> None:
        with self._lock:
            self._whitelist.discard(ip)
            self._blacklist.add(ip)
        logger.info("Added %s to blacklist", ip)

    def revoke_allow(self, ip: str) -> None:
        with self._lock:
            self._whitelist.discard(ip)

    def revoke_deny(self, ip: str) -> None:
        with self._lock:
            self._blacklist.discard(ip)

    def is_allowed(self, ip: str) -> bool:
        with self._lock:
            return ip in self._whitelist

    def is_denied(self, ip: str) -> bool:
        with self._lock:
            return ip in self._blacklist

    def ensure_not_denied(self, ip: str) -> None:
        if self.is_denied(ip):
            logger.warning("Refusing operation on blacklisted device %s", ip)
            raise DeviceDenied(ip)

    def whitelist(self) -> List[str]:
        with self._lock:
            return sorted(self._whitelist)

    def blacklist(self) -> List[str]:
        with self._lock:
            return sorted(self._blacklist)

    def status(self, ip: str) -> Dict[str, bool]:
        with self._lock:
            return {
                "is_whitelisted": ip in self._whitelist,
                "is_blacklisted": ip in self._blacklist,
            }
