#!/usr/bin/env python3
"""Parsers for external scan tool output.

Each parser turns raw tool output into observation dicts in the shape
accepted by `observations.parse_observation`. Parsers are lenient: lines or
hosts they cannot understand are skipped.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List

from models import utc_now_iso

logger = logging.getLogger(__name__)

_ARP_LINE = re.compile(r"^(\d{1,3}(?:\.\d{1,3}){3})\s+([0-9a-fA-F:]{17})\s*(.*)$")
_NETDISCOVER_LINE = re.compile(
    r"^\s*(\d{1,3}(?:\.\d{1,3}){3})\s+([0-9a-fA-F:]{17})\s+(\d+)\s+(\d+)\s*(.*)$"
)


def parse_arp_scan(output: str) -> List[Dict[str, Any]]:
    """arp-scan lines: `IP  MAC  VENDOR`."""
    devices = []
    now = utc_now_iso()
    for line in (output or "").splitlines():
        m = _ARP_LINE.match(line.strip())
        if not m:
            continue
        devices.append({
            "ip": m.group(1),
            "mac": m.group(2).upper(),
            "vendor": m.group(3).strip() or None,
            "hostname": None,
            "status": "up",
            "discovery_method": "arp-scan",
            "last_seen": now,
        })
    return devices


def arp_scan_stats(output: str) -> Dict[str, Any]:
    """Footer statistics from arp-scan (`N hosts scanned in X seconds`)."""
    text = output or ""
    stats: Dict[str, Any] = {"hosts_scanned": 0, "hosts_responded": 0, "scan_duration": None}
    m = re.search(r"(\d+)\s+hosts?\s+scanned", text, re.IGNORECASE)
    if m:
        stats["hosts_scanned"] = int(m.group(1))
    m = re.search(r"in\s+([\d.]+)\s+seconds", text, re.IGNORECASE)
    if m:
        stats["scan_duration"] = float(m.group(1))
    stats["hosts_responded"] = len(parse_arp_scan(text))
    return stats


def parse_netdiscover(output: str) -> List[Dict[str, Any]]:
    """netdiscover -P lines: `IP  MAC  COUNT  LEN  VENDOR`."""
    devices = []
    now = utc_now_iso()
    for line in (output or "").splitlines():
        m = _NETDISCOVER_LINE.match(line)
        if not m:
            continue
        devices.append({
            "ip": m.group(1),
            "mac": m.group(2).upper(),
            "vendor": m.group(5).strip() or None,
            "hostname": None,
            "status": "up",
            "discovery_method": "netdiscover",
            "last_seen": now,
            "packet_count": int(m.group(3)),
            "packet_length": int(m.group(4)),
        })
    return devices


# nmap reports ambiguous states; collapse them onto open/closed/filtered.
NMAP_STATE_MAP = {
    "open": "open",
    "closed": "closed",
    "filtered": "filtered",
    "open|filtered": "filtered",
    "closed|filtered": "filtered",
    "unfiltered": "closed",
}


def normalize_port_state(state: str) -> str:
    return NMAP_STATE_MAP.get((state or "open").lower(), "filtered")


def _service_version(service_el) -> str:
    if service_el is None:
        return ""
    parts = [service_el.get("product", ""), service_el.get("version", "")]
    return " ".join(p for p in parts if p).strip()


def parse_nmap_xml(xml_output: str, *, discovery_method: str = "") -> List[Dict[str, Any]]:
    """Hosts from `nmap -oX -` output. Only hosts that are up with an IPv4/IPv6 address are kept."""
    if not xml_output or not xml_output.strip():
        return []
    try:
        root = ET.fromstring(xml_output)
    except ET.ParseError as exc:
        logger.warning("Unparseable nmap XML: %s", exc)
        return []

    devices = []
    now = utc_now_iso()
    for host in root.iter("host"):
        status_el = host.find("status")
        status = status_el.get("state", "unknown") if status_el is not None else "unknown"
        ip = mac = vendor = hostname = None
        for addr in host.findall("address"):
            addrtype = addr.get("addrtype")
            if addrtype in ("ipv4", "ipv6") and ip is None:
                ip = addr.get("addr")
            elif addrtype == "mac":
                mac = addr.get("addr")
                vendor = addr.get("vendor")
        hn = host.find("hostnames/hostname")
        if hn is not None:
            hostname = hn.get("name")

        ports = []
        for port_el in host.findall("ports/port"):
            state_el = port_el.find("state")
            service_el = port_el.find("service")
            ports.append({
                "port": port_el.get("portid"),
                "protocol": port_el.get("protocol", "tcp"),
                "state": normalize_port_state(state_el.get("state", "open") if state_el is not None else "open"),
                "service": service_el.get("name", "unknown") if service_el is not None else "unknown",
                "version": _service_version(service_el),
            })

        if not ip or status != "up":
            continue
        devices.append({
            "ip": ip,
            "mac": mac,
            "vendor": vendor,
            "hostname": hostname,
            "status": status,
            "ports": ports,
            "discovery_method": discovery_method or ("port-scan" if ports else "host-discovery"),
            "last_seen": now,
        })
    return devices
