import time
from types import SimpleNamespace

import pytest

from events import EventBus
from errors import ScannerError
from monitor import ThreatMonitor
from rate_limit import IntervalLimiter
from scan_tracker import ScanActivityTracker
from server import create_app
from services.jobs import ScanJobManager


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScannerStub:
    """Canned scanner: port scans answer from `port_results`, discovery from the lists."""

    def __init__(self):
        self.local_ip = "10.0.0.2"
        self.network_cidr = "10.0.0.0/24"
        self.port_results = {}
        self.arp_results = []
        self.nmap_results = []
        self.failing = set()
        self.port_scan_calls = []
        self.port_scan_times = []
        self.last_arp_stats = None

    def tools(self):
        return {"scapy": False, "nmap": False, "arp_scan": False, "netdiscover": False}

    def port_scan(self, ip, scan_type="quick"):
        self.port_scan_calls.append((ip, scan_type))
        self.port_scan_times.append(time.monotonic())
        if ip in self.failing:
            raise ScannerError(f"nmap scan of {ip} failed: host timeout")
        return self.port_results.get(ip)

    def arp_scan(self, network=None, interface=None):
        if "arp" in self.failing:
            raise ScannerError("arp-scan is not installed")
        self.last_arp_stats = {"hosts_scanned": 256, "hosts_responded": len(self.arp_results), "scan_duration": 0.5}
        return list(self.arp_results)

    def host_discovery(self, network):
        if "nmap" in self.failing:
            raise ScannerError("python-nmap is not installed")
        return list(self.nmap_results)

    def netdiscover(self, interface=None):
        return []


def telnet_observation(ip="192.168.1.50"):
    return {
        "ip": ip,
        "status": "up",
        "discovery_method": "port-scan",
        "ports": [
            {"port": 22, "protocol": "tcp", "state": "open", "service": "ssh", "version": "OpenSSH 8.4"},
            {"port": 23, "protocol": "tcp", "state": "open", "service": "telnet", "version": ""},
        ],
    }


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def bus():
    return EventBus(max_events=500)


@pytest.fixture()
def scanner():
    return ScannerStub()


@pytest.fixture()
def monitor(bus, scanner, clock):
    """Engine with a fake clock and no delay between batch scans."""
    return ThreatMonitor.build(
        bus=bus,
        scanner=scanner,
        tracker=ScanActivityTracker(clock=clock),
        limiter=IntervalLimiter(0),
    )


@pytest.fixture()
def client_ctx(monitor, bus, scanner):
    """Flask test client around an isolated engine instance."""
    scan_jobs = ScanJobManager(monitor)
    app, socketio = create_app(monitor, scan_jobs)
    app.config["TESTING"] = True
    return SimpleNamespace(
        client=app.test_client(),
        app=app,
        socketio=socketio,
        monitor=monitor,
        bus=bus,
        scanner=scanner,
        scan_jobs=scan_jobs,
    )


@pytest.fixture()
def telnet_obs():
    return telnet_observation
