import threading

import pytest

from access_control import AccessControlRegistry
from errors import DeviceDenied, InvalidObservation
from models import DeviceStatus, DiscoveryMethod, PortState, Protocol
from observations import parse_observation
from parsers import arp_scan_stats, parse_arp_scan, parse_netdiscover, parse_nmap_xml
from rate_limit import IntervalLimiter


# ── observation boundary ──

@pytest.mark.parametrize("payload", [None, "10.0.0.1", {}, {"ip": ""}, {"ip": "999.1.1.1"}, {"ip": "host.local"}])
def test_parse_observation_rejects_bad_identity(payload):
    with pytest.raises(InvalidObservation):
        parse_observation(payload)


def test_parse_observation_rejects_unknown_status_and_method():
    with pytest.raises(InvalidObservation):
        parse_observation({"ip": "10.0.0.1", "status": "sleeping"})
    with pytest.raises(InvalidObservation):
        parse_observation({"ip": "10.0.0.1", "discovery_method": "carrier-pigeon"})


def test_parse_observation_normalizes_fields():
    parsed = parse_observation({
        "ip": " 10.0.0.7 ",
        "mac": "aa:bb:cc:dd:ee:ff",
        "vendor": "unknown",
        "hostname": "",
        "status": "UP",
        "discoveryMethod": "nmap",
        "lastSeen": "2024-05-01T10:00:00+00:00",
        "ports": [{"portid": "443", "protocol": "TCP", "state": "open", "service": "https"}],
    })
    rec = parsed.record
    assert rec.ip == "10.0.0.7"
    assert rec.mac == "AA:BB:CC:DD:EE:FF"
    assert rec.vendor is None
    assert rec.hostname is None
    assert rec.status == DeviceStatus.UP
    assert rec.discovery_method == DiscoveryMethod.PORT_SCAN
    assert rec.last_seen == "2024-05-01T10:00:00+00:00"
    assert rec.ports[0].port == 443
    assert rec.ports[0].protocol == Protocol.TCP
    assert parsed.diagnostics == []


def test_parse_observation_skips_bad_ports_with_diagnostics():
    parsed = parse_observation({
        "ip": "10.0.0.7",
        "ports": [
            {"port": 22, "service": "ssh"},
            {"port": 70000},
            {"port": "abc"},
            {"port": 53, "protocol": "sctp"},
            "nope",
            {"port": 22, "service": "ssh", "version": "OpenSSH 9"},
        ],
    })
    assert [p.port for p in parsed.record.ports] == [22]
    assert parsed.record.ports[0].version == "OpenSSH 9"
    assert len(parsed.diagnostics) == 5


def test_parse_observation_defaults():
    rec = parse_observation({"ip": "10.0.0.8"}).record
    assert rec.status == DeviceStatus.UNKNOWN
    assert rec.discovery_method == DiscoveryMethod.HOST_DISCOVERY
    assert rec.ports == ()
    assert rec.last_seen


# ── access control ──

def test_access_lists_are_mutually_exclusive():
    registry = AccessControlRegistry()
    registry.allow("10.0.0.1")
    registry.deny("10.0.0.1")
    assert registry.is_denied("10.0.0.1")
    assert not registry.is_allowed("10.0.0.1")
    assert registry.whitelist() == []

    registry.allow("10.0.0.1")
    assert registry.status("10.0.0.1") == {"is_whitelisted": True, "is_blacklisted": False}


def test_ensure_not_denied_raises_for_blacklisted_ip():
    registry = AccessControlRegistry()
    registry.deny("10.0.0.9")
    with pytest.raises(DeviceDenied) as exc:
        registry.ensure_not_denied("10.0.0.9")
    assert exc.value.ip == "10.0.0.9"
    registry.revoke_deny("10.0.0.9")
    registry.ensure_not_denied("10.0.0.9")


# ── parsers ──

ARP_OUTPUT = """Interface: eth0, type: EN10MB, MAC: 00:11:22:33:44:55, IPv4: 192.168.1.2
Starting arp-scan 1.9.7 with 256 hosts (https://github.com/royhills/arp-scan)
192.168.1.1\t00:1a:2b:3c:4d:5e\tCisco Systems, Inc
192.168.1.20\tb8:27:eb:12:34:56\t

2 packets received by filter, 0 packets dropped by kernel
Ending arp-scan 1.9.7: 256 hosts scanned in 1.942 seconds (131.82 hosts/sec). 2 responded
"""


def test_parse_arp_scan():
    devices = parse_arp_scan(ARP_OUTPUT)
    assert [d["ip"] for d in devices] == ["192.168.1.1", "192.168.1.20"]
    assert devices[0]["mac"] == "00:1A:2B:3C:4D:5E"
    assert devices[0]["vendor"] == "Cisco Systems, Inc"
    assert devices[1]["vendor"] is None
    assert devices[0]["discovery_method"] == "arp-scan"

    stats = arp_scan_stats(ARP_OUTPUT)
    assert stats["hosts_scanned"] == 256
    assert stats["hosts_responded"] == 2
    assert stats["scan_duration"] == pytest.approx(1.942)


def test_parse_netdiscover():
    output = (
        " Currently scanning: Finished!   |   Screen View: Unique Hosts\n"
        " 192.168.1.1     00:1a:2b:3c:4d:5e      3     180  Cisco Systems, Inc\n"
        " 192.168.1.30    dc:a6:32:00:00:01      1      60  Raspberry Pi Trading Ltd\n"
    )
    devices = parse_netdiscover(output)
    assert len(devices) == 2
    assert devices[1]["vendor"] == "Raspberry Pi Trading Ltd"
    assert devices[0]["packet_count"] == 3
    assert devices[0]["packet_length"] == 180


NMAP_XML = """<?xml version="1.0"?>
<nmaprun>
  <host>
    <status state="up"/>
    <address addr="192.168.1.77" addrtype="ipv4"/>
    <address addr="00:0C:29:AA:BB:CC" addrtype="mac" vendor="VMware"/>
    <hostnames><hostname name="legacy-ftp" type="PTR"/></hostnames>
    <ports>
      <port protocol="tcp" portid="21">
        <state state="open"/>
        <service name="ftp" product="vsftpd" version="2.3.4"/>
      </port>
      <port protocol="tcp" portid="25">
        <state state="open|filtered"/>
      </port>
    </ports>
  </host>
  <host>
    <status state="down"/>
    <address addr="192.168.1.78" addrtype="ipv4"/>
  </host>
</nmaprun>
"""


def test_parse_nmap_xml():
    devices = parse_nmap_xml(NMAP_XML)
    assert len(devices) == 1
    dev = devices[0]
    assert dev["ip"] == "192.168.1.77"
    assert dev["vendor"] == "VMware"
    assert dev["hostname"] == "legacy-ftp"
    assert dev["discovery_method"] == "port-scan"
    assert dev["ports"][0]["version"] == "vsftpd 2.3.4"
    assert dev["ports"][1]["state"] == "filtered"
    assert dev["ports"][1]["service"] == "unknown"

    rec = parse_observation(dev).record
    assert rec.ports[1].state == PortState.FILTERED


def test_parse_nmap_xml_tolerates_garbage():
    assert parse_nmap_xml("") == []
    assert parse_nmap_xml("<nmaprun><host>") == []


# ── rate limiting ──

def test_limiter_spaces_reservations(clock):
    limiter = IntervalLimiter(1.0, clock=clock)
    assert limiter.reserve() == 0
    assert limiter.reserve() == pytest.approx(1.0)
    clock.advance(5)
    assert limiter.reserve() == 0


def test_limiter_acquire_returns_false_when_cancelled():
    limiter = IntervalLimiter(30.0)
    cancel = threading.Event()
    assert limiter.acquire(cancel) is True
    cancel.set()
    assert limiter.acquire(cancel) is False
