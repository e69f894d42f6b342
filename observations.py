"""
NetSentry observation boundary.
Validates loosely-typed scan adapter payloads into DeviceRecord values.

Whole-observation problems (missing or malformed IP, unknown status or
discovery method) raise InvalidObservation and nothing is applied. Problems
inside a single port entry only drop that entry and are reported back as
diagnostics.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from errors import InvalidObservation
from models import (
    DeviceRecord,
    DeviceStatus,
    DiscoveryMethod,
    PortObservation,
    PortState,
    Protocol,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

_PLACEHOLDERS = {"unknown", "none", "null", "n/a", "-"}

_DISCOVERY_ALIASES = {
    "arpscan": DiscoveryMethod.ARP_SCAN,
    "arp": DiscoveryMethod.ARP_SCAN,
    "hostdiscovery": DiscoveryMethod.HOST_DISCOVERY,
    "pingsweep": DiscoveryMethod.HOST_DISCOVERY,
    "portscan": DiscoveryMethod.PORT_SCAN,
    "netdiscover": DiscoveryMethod.NETDISCOVER,
}


@dataclass
class ParsedObservation:
    record: DeviceRecord
    diagnostics: List[str] = field(default_factory=list)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in _PLACEHOLDERS:
        return None
    return text


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in payload and payload[k] is not None:
            return payload[k]
    return None


def parse_ip(value: Any) -> str:
    if value is None or not str(value).strip():
        raise InvalidObservation("Observation is missing an IP address")
    text = str(value).strip()
    try:
        return str(ipaddress.ip_address(text))
    except ValueError as exc:
        raise InvalidObservation(f"Invalid IP address: {text}") from exc


def parse_status(value: Any) -> DeviceStatus:
    if value is None or value == "":
        return DeviceStatus.UNKNOWN
    if isinstance(value, DeviceStatus):
        return value
    try:
        return DeviceStatus(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidObservation(f"Unknown device status: {value}") from exc


def parse_discovery_method(value: Any, *, has_ports: bool) -> DiscoveryMethod:
    if value is None or value == "":
        return DiscoveryMethod.PORT_SCAN if has_ports else DiscoveryMethod.HOST_DISCOVERY
    if isinstance(value, DiscoveryMethod):
        return value
    key = "".join(ch for ch in str(value).lower() if ch.isalnum())
    if key == "nmap":
        return DiscoveryMethod.PORT_SCAN if has_ports else DiscoveryMethod.HOST_DISCOVERY
    method = _DISCOVERY_ALIASES.get(key)
    if method is None:
        raise InvalidObservation(f"Unknown discovery method: {value}")
    return method


def parse_port(entry: Any) -> PortObservation:
    """Validate one port entry; raises ValueError describing what is wrong."""
    if isinstance(entry, PortObservation):
        return entry
    if not isinstance(entry, Mapping):
        raise ValueError(f"port entry is not an object: {entry!r}")
    raw_port = _first(entry, "port", "portid")
    try:
        port = int(raw_port)
    except (TypeError, ValueError):
        raise ValueError(f"port number is not an integer: {raw_port!r}") from None
    if not 0 < port <= 65535:
        raise ValueError(f"port number out of range: {port}")
    try:
        protocol = Protocol(str(entry.get("protocol") or "tcp").strip().lower())
        state = PortState(str(entry.get("state") or "open").strip().lower())
    except ValueError as exc:
        raise ValueError(f"port {port}: {exc}") from None
    return PortObservation(
        port=port,
        protocol=protocol,
        state=state,
        service=_clean_text(entry.get("service")) or "unknown",
        version=str(entry.get("version") or "").strip(),
    )


def parse_ports(entries: Any) -> Tuple[Tuple[PortObservation, ...], List[str]]:
    if entries is None:
        return (), []
    if not isinstance(entries, (list, tuple)):
        return (), [f"ports is not a list: {type(entries).__name__}"]
    diagnostics: List[str] = []
    by_key: Dict[Tuple[int, Protocol], PortObservation] = {}
    for entry in entries:
        try:
            obs = parse_port(entry)
        except ValueError as exc:
            diagnostics.append(f"skipped port entry: {exc}")
            continue
        key = (obs.port, obs.protocol)
        if key in by_key:
            diagnostics.append(f"duplicate port entry {obs.port}/{obs.protocol.value}; keeping the last one")
        by_key[key] = obs
    return tuple(by_key.values()), diagnostics


def parse_observation(payload: Any) -> ParsedObservation:
    """Turn an ObservationInput payload (dict or DeviceRecord) into a DeviceRecord."""
    if isinstance(payload, DeviceRecord):
        ip = parse_ip(payload.ip)
        return ParsedObservation(record=payload if ip == payload.ip else replace(payload, ip=ip))
    if not isinstance(payload, Mapping):
        raise InvalidObservation("Observation must be an object")

    ip = parse_ip(payload.get("ip"))
    ports, diagnostics = parse_ports(payload.get("ports"))
    mac = _clean_text(payload.get("mac"))
    record = DeviceRecord(
        ip=ip,
        mac=mac.upper() if mac else None,
        vendor=_clean_text(payload.get("vendor")),
        hostname=_clean_text(payload.get("hostname")),
        status=parse_status(payload.get("status")),
        ports=ports,
        last_seen=str(_first(payload, "last_seen", "lastSeen") or utc_now_iso()),
        discovery_method=parse_discovery_method(
            _first(payload, "discovery_method", "discoveryMethod"),
            has_ports=bool(ports),
        ),
    )
    for msg in diagnostics:
        logger.warning("Observation for %s: %s", ip, msg)
    return ParsedObservation(record=record, diagnostics=diagnostics)
