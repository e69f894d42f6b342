"""
NetSentry monitoring engine.
Observation ingest pipeline, port scans, throttled batch scans, discovery, and threat analysis.
"""

import ipaddress
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from access_control import AccessControlRegistry
from alerts import AlertManager
from classifier import ServiceClassifier
from config import Settings, Signatures
from detector import AttackPatternDetector
from errors import DeviceDenied, InvalidObservation, InvalidRequest, ScannerError
from events import (
    MONITORING_STATS_UPDATED,
    PORT_SCAN_COMPLETE,
    SCAN_COMPLETE,
    SCAN_ERROR,
    SCAN_PROGRESS,
    STATS_UPDATED,
    EventBus,
)
from models import (
    Alert,
    AttackFinding,
    DeviceRecord,
    DiscoveryMethod,
    MonitoringStats,
    ServiceReport,
    Severity,
    utc_now_iso,
)
from observations import parse_observation
from rate_limit import IntervalLimiter
from scan_tracker import ScanActivityTracker
from store import DeviceStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


@dataclass
class IngestResult:
    device: DeviceRecord
    is_new: bool
    report: ServiceReport = field(default_factory=ServiceReport)
    findings: List[AttackFinding] = field(default_factory=list)
    alert: Optional[Alert] = None
    diagnostics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device.to_dict(),
            "is_new": self.is_new,
            "services": [s.to_dict() for s in self.report.services],
            "suspicious_services": [s.to_dict() for s in self.report.suspicious_services],
            "detected_attacks": [f.to_dict() for f in self.findings],
            "alert": self.alert.to_dict() if self.alert else None,
            "diagnostics": list(self.diagnostics),
        }


class ThreatMonitor:
    """Owns the per-IP pipeline: gate, merge, track, classify, detect, alert."""

    def __init__(
        self,
        store: DeviceStore,
        tracker: ScanActivityTracker,
        classifier: ServiceClassifier,
        detector: AttackPatternDetector,
        alerts: AlertManager,
        access: AccessControlRegistry,
        *,
        bus: Optional[EventBus] = None,
        scanner=None,
        limiter: Optional[IntervalLimiter] = None,
    ):
        self.store = store
        self.tracker = tracker
        self.classifier = classifier
        self.detector = detector
        self.alerts = alerts
        self.access = access
        self.bus = bus
        self.scanner = scanner
        self.limiter = limiter or IntervalLimiter(1.0)
        self._ip_locks: Dict[str, threading.Lock] = {}
        self._ip_locks_guard = threading.Lock()

    @classmethod
    def build(
        cls,
        *,
        bus: Optional[EventBus] = None,
        scanner=None,
        signatures: Optional[Signatures] = None,
        scan_delay_seconds: float = 1.0,
        tracker: Optional[ScanActivityTracker] = None,
        limiter: Optional[IntervalLimiter] = None,
    ) -> "ThreatMonitor":
        sig = signatures or Signatures()
        tracker = tracker or ScanActivityTracker(window_ms=sig.scan_window_ms, threshold=sig.scan_threshold)
        classifier = ServiceClassifier(sig.suspicious_ports, sig.vulnerable_versions)
        return cls(
            DeviceStore(bus),
            tracker,
            classifier,
            AttackPatternDetector(tracker, classifier, unusual_port_threshold=sig.unusual_port_threshold),
            AlertManager(bus),
            AccessControlRegistry(),
            bus=bus,
            scanner=scanner,
            limiter=limiter or IntervalLimiter(scan_delay_seconds),
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, bus: Optional[EventBus] = None, scanner=None) -> "ThreatMonitor":
        return cls.build(
            bus=bus,
            scanner=scanner,
            signatures=settings.signatures,
            scan_delay_seconds=settings.scan_delay_seconds,
        )

    def _ip_lock(self, ip: str) -> threading.Lock:
        with self._ip_locks_guard:
            lock = self._ip_locks.get(ip)
            if lock is None:
                lock = self._ip_locks[ip] = threading.Lock()
            return lock

    def _emit(self, event_type: str, payload: Any, entity: str = "") -> None:
        if self.bus is not None:
            self.bus.publish(event_type, payload, source="monitor", entity=entity)

    # ── ingest ──

    def ingest(self, payload: Any) -> IngestResult:
        """Apply one observation. Raises InvalidObservation or DeviceDenied before any mutation."""
        try:
            parsed = parse_observation(payload)
        except InvalidObservation as exc:
            logger.warning("Rejected observation: %s", exc)
            raise
        record = parsed.record
        ip = record.ip
        self.access.ensure_not_denied(ip)

        with self._ip_lock(ip):
            # A deny may land between the gate above and any step below.
            self.access.ensure_not_denied(ip)
            is_new = ip not in self.store
            device = self.store.upsert(record)
            result = IngestResult(device=device, is_new=is_new, diagnostics=parsed.diagnostics)
            if not (record.ports or record.discovery_method == DiscoveryMethod.PORT_SCAN):
                return result

            self.access.ensure_not_denied(ip)
            self.tracker.record_scan(ip)
            result.report = self.classifier.classify(device.ports)
            result.findings = self.detector.detect(ip, device, result.report)
            if not (result.findings or result.report.suspicious_services):
                return result
            if self.access.is_denied(ip):
                logger.warning("Device %s was blacklisted mid-scan; alert suppressed", ip)
                return result
            result.alert = self.alerts.record(ip, result.findings, result.report.suspicious_services)
            return result

    # ── scanning ──

    def _require_scanner(self):
        if self.scanner is None:
            raise ScannerError("No scanner configured")
        return self.scanner

    def scan_device(self, ip: str, scan_type: str = "quick") -> Dict[str, Any]:
        """Port scan one device and run it through the ingest pipeline."""
        self.access.ensure_not_denied(ip)
        scanner = self._require_scanner()
        logger.info("Starting %s port scan on %s", scan_type, ip)
        self._emit(SCAN_PROGRESS, {"percentage": 0, "message": f"Scanning ports on {ip}..."}, entity=ip)
        observation = scanner.port_scan(ip, scan_type)
        if not observation:
            raise ScannerError(f"No device information returned from scan of {ip}")
        result = self.ingest(observation)
        self._emit(SCAN_PROGRESS, {"percentage": 100, "message": f"Port scan complete for {ip}"}, entity=ip)

        out = result.to_dict()
        out.update({
            "ip": result.device.ip,
            "scan_type": scan_type,
            "total_ports": len(result.device.ports),
            "alerts": [a.to_dict() for a in self.alerts.for_device(ip)],
            "last_scanned": utc_now_iso(),
            **self.access.status(ip),
        })
        self._emit(PORT_SCAN_COMPLETE, {"ip": ip, "scan_type": scan_type, "total_ports": out["total_ports"]}, entity=ip)
        return out

    def scan_batch(
        self,
        ips: Iterable[str],
        scan_type: str = "quick",
        *,
        cancel: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """Scan devices one at a time, spaced out by the interval limiter."""
        targets = list(ips)
        logger.info("Starting batch scan of %d devices", len(targets))
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, str]] = []
        skipped: List[str] = []
        not_scanned: List[str] = []
        cancelled = False

        for idx, ip in enumerate(targets):
            if self.access.is_denied(ip):
                logger.info("Skipping blacklisted device: %s", ip)
                skipped.append(ip)
                continue
            if cancelled or not self.limiter.acquire(cancel):
                cancelled = True
                not_scanned.append(ip)
                continue
            if progress:
                progress(int(100 * idx / max(1, len(targets))), f"Scanning {ip} ({idx + 1}/{len(targets)})")
            try:
                results.append(self.scan_device(ip, scan_type))
            except (ScannerError, InvalidObservation, DeviceDenied) as exc:
                logger.error("Failed to scan %s: %s", ip, exc)
                errors.append({"ip": ip, "error": str(exc)})
                self._emit(SCAN_ERROR, {"ip": ip, "message": str(exc)}, entity=ip)

        if cancelled:
            logger.info("Batch scan cancelled; %d devices not scanned", len(not_scanned))
        return {
            "timestamp": utc_now_iso(),
            "total_devices": len(targets),
            "scanned_devices": len(results),
            "results": results,
            "errors": errors,
            "skipped": skipped,
            "cancelled": cancelled,
            "not_scanned": not_scanned,
        }

    def discover(
        self,
        network: str,
        interface: Optional[str] = None,
        *,
        methods: Iterable[str] = ("arp", "nmap"),
    ) -> Dict[str, Any]:
        """Host discovery over a network using several methods, merged into the store."""
        try:
            cidr = str(ipaddress.ip_network(str(network).strip(), strict=False))
        except ValueError as exc:
            raise InvalidRequest(f"Invalid network (expected CIDR): {network}") from exc
        scanner = self._require_scanner()
        logger.info("Starting device discovery for network: %s", cidr)

        runners = {
            "arp": ("arp-scan", lambda: scanner.arp_scan(cidr, interface)),
            "nmap": ("nmap", lambda: scanner.host_discovery(cidr)),
            "netdiscover": ("netdiscover", lambda: scanner.netdiscover(interface)),
        }
        selected = [m for m in methods if m in runners]
        errors: List[Dict[str, str]] = []
        denied = 0
        rejected = 0
        arp_stats = None
        self._emit(SCAN_PROGRESS, {"percentage": 10, "message": "Initializing scan..."})
        for i, key in enumerate(selected):
            label, run = runners[key]
            pct = 10 + int(80 * (i + 1) / max(1, len(selected)))
            self._emit(SCAN_PROGRESS, {"percentage": pct, "message": f"Running {label}..."})
            try:
                observations = run()
            except ScannerError as exc:
                logger.error("%s failed: %s", label, exc)
                errors.append({"method": label, "error": str(exc)})
                continue
            logger.info("%s found %d devices", label, len(observations))
            if key == "arp":
                arp_stats = getattr(scanner, "last_arp_stats", None)
            for obs in observations:
                try:
                    self.ingest(obs)
                except DeviceDenied:
                    denied += 1
                except InvalidObservation:
                    rejected += 1

        devices = self.store.all()
        self._emit(SCAN_PROGRESS, {"percentage": 100, "message": f"Scan complete: {len(devices)} devices found"})
        self._emit(SCAN_COMPLETE, {
            "success": True,
            "deviceCount": len(devices),
            "network": cidr,
            "errors": errors,
        })
        self.publish_stats()
        return {
            "network": cidr,
            "devices": [d.to_dict() for d in devices],
            "errors": errors,
            "summary": {
                "devices_found": len(devices),
                "scan_errors": len(errors),
                "denied_skipped": denied,
                "rejected": rejected,
                "arp_stats": arp_stats,
            },
        }

    # ── analysis & stats ──

    def analyze_all(self) -> Dict[str, Any]:
        """Evaluate every device with ports; reports threats without recording alerts."""
        devices = self.store.all()
        threats = []
        for device in devices:
            if not device.ports or self.access.is_denied(device.ip):
                continue
            report = self.classifier.classify(device.ports)
            findings = self.detector.detect(device.ip, device, report)
            if findings or report.suspicious_services:
                threats.append({
                    "ip": device.ip,
                    "hostname": device.hostname,
                    "attacks": [f.to_dict() for f in findings],
                    "suspicious_services": [s.to_dict() for s in report.suspicious_services],
                })
        logger.info("Analyzed %d devices, %d with threats", len(devices), len(threats))
        return {
            "timestamp": utc_now_iso(),
            "devices_analyzed": len(devices),
            "threats_found": len(threats),
            "threats": threats,
        }

    def device_stats(self):
        return self.store.stats()

    def publish_stats(self) -> Dict[str, Any]:
        stats = self.store.stats().to_dict()
        self._emit(STATS_UPDATED, stats)
        return stats

    def monitoring_stats(self) -> MonitoringStats:
        alerts = self.alerts.list("all")
        with_suspicious = sum(
            1
            for d in self.store.all()
            if d.ports and self.classifier.classify(d.ports).suspicious_services
        )
        stats = MonitoringStats(
            total_alerts=len(alerts),
            high_severity_alerts=sum(1 for a in alerts if a.severity == Severity.HIGH),
            unacknowledged_alerts=sum(1 for a in alerts if not a.acknowledged),
            whitelisted_devices=len(self.access.whitelist()),
            blacklisted_devices=len(self.access.blacklist()),
            devices_scanned=len(self.tracker.tracked_ips()),
            devices_with_suspicious_services=with_suspicious,
        )
        self._emit(MONITORING_STATS_UPDATED, stats.to_dict())
        return stats

    def device_status(self, ip: str) -> Dict[str, Any]:
        return {
            "ip": ip,
            **self.access.status(ip),
            "alerts": len(self.alerts.for_device(ip)),
        }
