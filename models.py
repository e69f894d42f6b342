"""
NetSentry data models.
Enums and dataclasses for device records, port observations, findings, and alerts.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeviceStatus(str, Enum):
    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"


class PortState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    FILTERED = "filtered"


class DiscoveryMethod(str, Enum):
    ARP_SCAN = "arp-scan"
    HOST_DISCOVERY = "host-discovery"
    PORT_SCAN = "port-scan"
    NETDISCOVER = "netdiscover"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AttackType(str, Enum):
    PORT_SCAN_ATTACK = "Port Scan Attack"
    SUSPICIOUS_PORTS_OPEN = "Suspicious Ports Open"
    VULNERABLE_SERVICE = "Vulnerable Services"
    UNUSUAL_PORT_ACTIVITY = "Unusual Port Activity"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class PortObservation:
    """One port as reported by a scan."""

    port: int
    protocol: Protocol = Protocol.TCP
    state: PortState = PortState.OPEN
    service: str = "unknown"
    version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class DeviceRecord:
    """Canonical record for one IP. Immutable; the store swaps whole records."""

    ip: str
    mac: Optional[str] = None
    vendor: Optional[str] = None
    hostname: Optional[str] = None
    status: DeviceStatus = DeviceStatus.UNKNOWN
    ports: Tuple[PortObservation, ...] = ()
    last_seen: str = field(default_factory=utc_now_iso)
    discovery_method: DiscoveryMethod = DiscoveryMethod.HOST_DISCOVERY

    @property
    def open_ports(self) -> List[PortObservation]:
        return [p for p in self.ports if p.state == PortState.OPEN]

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class ServiceFinding:
    """Classification of a single reported port/service."""

    port: int
    protocol: Protocol
    service: str
    version: str
    state: PortState
    is_suspicious: bool = False
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class ServiceReport:
    services: Tuple[ServiceFinding, ...] = ()
    suspicious_services: Tuple[ServiceFinding, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "services": [s.to_dict() for s in self.services],
            "suspicious_services": [s.to_dict() for s in self.suspicious_services],
        }


@dataclass(frozen=True)
class ScanFrequency:
    count: int
    window_ms: int


@dataclass(frozen=True)
class AttackFinding:
    """A single detected suspicious condition."""

    type: AttackType
    severity: Severity
    description: str
    ports: Tuple[int, ...] = ()
    services: Tuple[ServiceFinding, ...] = ()
    detected_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass
class Alert:
    """Security alert. Only `acknowledged`/`acknowledged_at` ever change."""

    id: str
    ip: str
    findings: Tuple[AttackFinding, ...]
    suspicious_services: Tuple[ServiceFinding, ...]
    severity: Severity
    created_at: str = field(default_factory=utc_now_iso)
    acknowledged: bool = False
    acknowledged_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class DeviceStats:
    total_devices: int
    active_devices: int
    devices_with_ports: int
    distinct_vendors: Tuple[str, ...]
    last_scan_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class MonitoringStats:
    total_alerts: int
    high_severity_alerts: int
    unacknowledged_alerts: int
    whitelisted_devices: int
    blacklisted_devices: int
    devices_scanned: int
    devices_with_suspicious_services: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
