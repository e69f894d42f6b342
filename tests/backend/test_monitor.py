import threading

import pytest

from errors import DeviceDenied, InvalidObservation, InvalidRequest, ScannerError
from events import DEVICES_UPDATED, NEW_DEVICE, PORT_SCAN_COMPLETE, SCAN_COMPLETE, SECURITY_ALERT, EventBus
from models import AttackType, DeviceRecord, Severity
from monitor import ThreatMonitor
from rate_limit import IntervalLimiter
from scan_tracker import ScanActivityTracker


def test_telnet_device_produces_single_medium_alert(monitor, bus, telnet_obs):
    result = monitor.ingest(telnet_obs())

    assert result.is_new
    assert [s.port for s in result.report.suspicious_services] == [23]
    assert [f.type for f in result.findings] == [AttackType.SUSPICIOUS_PORTS_OPEN]

    alerts = monitor.alerts.list("all")
    assert len(alerts) == 1
    assert alerts[0].ip == "192.168.1.50"
    assert alerts[0].severity == Severity.MEDIUM
    assert not alerts[0].acknowledged
    assert bus.latest(SECURITY_ALERT).payload["id"] == alerts[0].id
    assert bus.latest(NEW_DEVICE).entity == "192.168.1.50"


def test_blacklisted_device_is_never_touched(monitor, telnet_obs):
    monitor.access.deny("192.168.1.50")

    with pytest.raises(DeviceDenied):
        monitor.ingest(telnet_obs())

    assert monitor.store.get("192.168.1.50") is None
    assert monitor.tracker.frequency("192.168.1.50").count == 0
    assert monitor.alerts.list("all") == []


def test_invalid_observation_mutates_nothing(monitor):
    with pytest.raises(InvalidObservation):
        monitor.ingest({"ip": "not-an-ip", "ports": [{"port": 23}]})
    assert monitor.store.all() == []
    assert len(monitor.alerts) == 0


def test_observation_without_ports_skips_detection(monitor):
    result = monitor.ingest({"ip": "192.168.1.60", "status": "up", "discovery_method": "arp-scan"})
    assert result.alert is None
    assert monitor.tracker.frequency("192.168.1.60").count == 0


def test_clean_device_records_scan_but_no_alert(monitor):
    result = monitor.ingest({"ip": "192.168.1.61", "ports": [{"port": 443, "service": "https"}]})
    assert result.alert is None
    assert monitor.tracker.frequency("192.168.1.61").count == 1


def test_repeated_scans_trigger_port_scan_attack(monitor, telnet_obs):
    for _ in range(11):
        result = monitor.ingest(telnet_obs())
    types = {f.type for f in result.findings}
    assert AttackType.PORT_SCAN_ATTACK in types
    assert result.alert.severity == Severity.HIGH


def test_scan_device_returns_enriched_result(monitor, scanner, bus, telnet_obs):
    scanner.port_results["192.168.1.50"] = telnet_obs()
    monitor.access.allow("192.168.1.50")

    out = monitor.scan_device("192.168.1.50", "quick")

    assert out["ip"] == "192.168.1.50"
    assert out["total_ports"] == 2
    assert out["is_whitelisted"] is True
    assert out["is_blacklisted"] is False
    assert len(out["alerts"]) == 1
    assert out["detected_attacks"][0]["type"] == "Suspicious Ports Open"
    assert bus.latest(PORT_SCAN_COMPLETE).payload["ip"] == "192.168.1.50"


def test_scan_device_refuses_blacklisted_before_dispatch(monitor, scanner):
    monitor.access.deny("192.168.1.50")
    with pytest.raises(DeviceDenied):
        monitor.scan_device("192.168.1.50")
    assert scanner.port_scan_calls == []


def test_scan_device_without_answer_is_scanner_error(monitor):
    with pytest.raises(ScannerError):
        monitor.scan_device("192.168.1.99")


def test_scan_batch_skips_blacklisted_and_collects_errors(monitor, scanner, telnet_obs):
    scanner.port_results["192.168.1.50"] = telnet_obs()
    scanner.port_results["192.168.1.51"] = telnet_obs("192.168.1.51")
    scanner.failing.add("192.168.1.52")
    monitor.access.deny("192.168.1.51")

    out = monitor.scan_batch(["192.168.1.50", "192.168.1.51", "192.168.1.52"])

    assert out["total_devices"] == 3
    assert out["scanned_devices"] == 1
    assert out["skipped"] == ["192.168.1.51"]
    assert out["errors"][0]["ip"] == "192.168.1.52"
    assert not out["cancelled"]
    assert [ip for ip, _ in scanner.port_scan_calls] == ["192.168.1.50", "192.168.1.52"]
    assert monitor.alerts.for_device("192.168.1.51") == []


def test_scan_batch_cancelled_reports_unscanned(monitor, scanner):
    cancel = threading.Event()
    cancel.set()
    out = monitor.scan_batch(["192.168.1.50", "192.168.1.51"], cancel=cancel)
    assert out["cancelled"]
    assert out["not_scanned"] == ["192.168.1.50", "192.168.1.51"]
    assert scanner.port_scan_calls == []


def test_discover_merges_methods_and_reports_errors(monitor, scanner, bus):
    scanner.arp_results = [{"ip": "10.0.0.1", "mac": "00:1a:2b:3c:4d:5e", "vendor": "Cisco",
                            "status": "up", "discovery_method": "arp-scan"}]
    scanner.nmap_results = [{"ip": "10.0.0.1", "hostname": "gateway", "status": "up",
                             "discovery_method": "host-discovery"}]
    monitor.access.deny("10.0.0.66")
    scanner.nmap_results.append({"ip": "10.0.0.66", "status": "up"})

    out = monitor.discover("10.0.0.0/24")

    assert out["network"] == "10.0.0.0/24"
    assert out["summary"]["devices_found"] == 1
    assert out["summary"]["denied_skipped"] == 1
    assert out["summary"]["arp_stats"] == {"hosts_scanned": 256, "hosts_responded": 1, "scan_duration": 0.5}
    dev = monitor.store.get("10.0.0.1")
    assert dev.vendor == "Cisco"
    assert dev.hostname == "gateway"
    assert bus.latest(SCAN_COMPLETE).payload["deviceCount"] == 1

    scanner.failing.add("arp")
    out = monitor.discover("10.0.0.0/24")
    assert out["errors"] == [{"method": "arp-scan", "error": "arp-scan is not installed"}]


def test_discover_rejects_bad_network(monitor):
    with pytest.raises(InvalidRequest):
        monitor.discover("not-a-network")


def test_analyze_all_reports_without_recording(monitor, telnet_obs):
    monitor.ingest(telnet_obs())
    monitor.ingest({"ip": "192.168.1.70", "ports": [{"port": 80, "version": "Apache 2.2.8"}]})
    monitor.alerts.clear_all()
    before = monitor.tracker.frequency("192.168.1.50").count

    out = monitor.analyze_all()

    assert out["devices_analyzed"] == 2
    assert {t["ip"] for t in out["threats"]} == {"192.168.1.50", "192.168.1.70"}
    assert len(monitor.alerts) == 0
    assert monitor.tracker.frequency("192.168.1.50").count == before


def test_monitoring_stats(monitor, telnet_obs):
    monitor.ingest(telnet_obs())
    monitor.ingest({"ip": "192.168.1.70", "ports": [{"port": 21, "version": "vsftpd 2.3.4"}]})
    monitor.ingest({"ip": "192.168.1.71", "ports": [{"port": 443}]})
    monitor.access.allow("192.168.1.71")
    monitor.access.deny("192.168.1.99")

    stats = monitor.monitoring_stats()

    assert stats.total_alerts == 2
    assert stats.high_severity_alerts == 1
    assert stats.unacknowledged_alerts == 2
    assert stats.whitelisted_devices == 1
    assert stats.blacklisted_devices == 1
    assert stats.devices_scanned == 3
    assert stats.devices_with_suspicious_services == 2


def test_device_record_with_bad_ip_is_rejected(monitor):
    with pytest.raises(InvalidObservation):
        monitor.ingest(DeviceRecord(ip=""))
    with pytest.raises(InvalidObservation):
        monitor.ingest(DeviceRecord(ip="not-an-ip"))
    assert monitor.store.all() == []


def test_device_record_ip_is_normalized(monitor):
    result = monitor.ingest(DeviceRecord(ip=" 10.0.0.1 "))
    assert result.device.ip == "10.0.0.1"
    assert monitor.store.get("10.0.0.1") is not None


def test_deny_landing_mid_ingest_stops_tracking_and_alerting(monitor, bus, telnet_obs):
    def deny_on_new_device(ev):
        if ev.type == NEW_DEVICE:
            monitor.access.deny(ev.entity)

    bus.subscribe(deny_on_new_device)

    with pytest.raises(DeviceDenied):
        monitor.ingest(telnet_obs())

    assert monitor.tracker.frequency("192.168.1.50").count == 0
    assert len(monitor.alerts) == 0


def test_concurrent_ingest_keeps_per_device_event_order(clock, scanner, telnet_obs):
    bus = EventBus(max_events=10000)
    monitor = ThreatMonitor.build(
        bus=bus,
        scanner=scanner,
        tracker=ScanActivityTracker(clock=clock),
        limiter=IntervalLimiter(0),
    )
    rounds = 20
    shared = "192.168.1.200"
    own = [f"192.168.1.{10 + i}" for i in range(4)]
    failures = []

    def worker(ip):
        try:
            for _ in range(rounds):
                monitor.ingest(telnet_obs(ip))
                monitor.ingest(telnet_obs(shared))
        except Exception as exc:
            failures.append(exc)

    threads = [threading.Thread(target=worker, args=(ip,)) for ip in own]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert failures == []
    assert {d.ip for d in monitor.store.all()} == set(own) | {shared}

    expected_counts = {ip: rounds for ip in own}
    expected_counts[shared] = rounds * len(own)
    for ip, count in expected_counts.items():
        types = [
            ev["type"] for ev in bus.recent(limit=10000)
            if ev["entity"] == ip and ev["type"] in (NEW_DEVICE, DEVICES_UPDATED, SECURITY_ALERT)
        ]
        assert types == [NEW_DEVICE] + [DEVICES_UPDATED, SECURITY_ALERT] * count
        assert len(monitor.alerts.for_device(ip)) == count


def test_scan_batch_spaces_dispatches_by_interval(bus, scanner, clock, telnet_obs):
    interval = 0.05
    monitor = ThreatMonitor.build(
        bus=bus,
        scanner=scanner,
        tracker=ScanActivityTracker(clock=clock),
        limiter=IntervalLimiter(interval),
    )
    ips = ["192.168.1.50", "192.168.1.51", "192.168.1.52"]
    for ip in ips:
        scanner.port_results[ip] = telnet_obs(ip)

    out = monitor.scan_batch(ips)

    assert out["scanned_devices"] == 3
    times = scanner.port_scan_times
    gaps = [b - a for a, b in zip(times, times[1:])]
    assert len(gaps) == 2
    assert all(gap >= interval * 0.8 for gap in gaps)
