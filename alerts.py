"""
NetSentry alert manager.
Severity-ranked, acknowledgeable alert log.
"""

import logging
import threading
import uuid
from dataclasses import replace
from typing import List, Optional, Sequence

from errors import UnknownAlert
from events import SECURITY_ALERT, EventBus
from models import Alert, AttackFinding, ServiceFinding, Severity, utc_now_iso

logger = logging.getLogger(__name__)


def new_alert_id() -> str:
    return f"alert-{uuid.uuid4().hex[:12]}"


def compute_severity(findings: Sequence[AttackFinding]) -> Severity:
    """High on any high finding or two mediums; medium on one medium; otherwise low."""
    high = sum(1 for f in findings if f.severity == Severity.HIGH)
    medium = sum(1 for f in findings if f.severity == Severity.MEDIUM)
    if high > 0 or medium > 1:
        return Severity.HIGH
    if medium > 0:
        return Severity.MEDIUM
    return Severity.LOW


class AlertManager:
    """Append-only alert log.

    Alerts are never edited except for acknowledgement and are never expired;
    only `clear_all` removes them. Callers receive copies, never the stored
    objects.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus
        self._lock = threading.RLock()
        self._alerts: List[Alert] = []

    def record(
        self,
        ip: str,
        findings: Sequence[AttackFinding],
        suspicious_services: Sequence[ServiceFinding],
    ) -> Alert:
        if not findings and not suspicious_services:
            raise ValueError("An alert needs at least one finding or suspicious service")
        alert = Alert(
            id=new_alert_id(),
            ip=ip,
            findings=tuple(findings),
            suspicious_services=tuple(suspicious_services),
            severity=compute_severity(findings),
        )
        with self._lock:
            self._alerts.append(alert)
            logger.warning(
                "Alert %s for %s: %s severity (%s)",
                alert.id,
                ip,
                alert.severity.value,
                ", ".join(f.type.value for f in alert.findings) or "suspicious services",
            )
            if self.bus is not None:
                self.bus.publish(SECURITY_ALERT, alert.to_dict(), source="alerts", entity=ip)
            return replace(alert)

    def list(self, filter: str = "all") -> List[Alert]:
        with self._lock:
            items = list(self._alerts)
        if filter == "unacknowledged":
            items = [a for a in items if not a.acknowledged]
        elif filter in (s.value for s in Severity):
            items = [a for a in items if a.severity.value == filter]
        elif filter != "all":
            raise ValueError(f"Unknown alert filter: {filter}")
        return [replace(a) for a in items]

    def for_device(self, ip: str) -> List[Alert]:
        with self._lock:
            return [replace(a) for a in self._alerts if a.ip == ip]

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            for a in self._alerts:
                if a.id == alert_id:
                    return replace(a)
        raise UnknownAlert(alert_id)

    def acknowledge(self, alert_id: str) -> Optional[Alert]:
        """Mark an alert acknowledged. Unknown ids and repeat calls are no-ops."""
        with self._lock:
            for a in self._alerts:
                if a.id != alert_id:
                    continue
                if not a.acknowledged:
                    a.acknowledged = True
                    a.acknowledged_at = utc_now_iso()
                    logger.info("Alert %s acknowledged", alert_id)
                return replace(a)
        logger.debug("Acknowledge ignored for unknown alert %s", alert_id)
        return None

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._alerts)
            self._alerts.clear()
        logger.info("Cleared %d alerts", count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
