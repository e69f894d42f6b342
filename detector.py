"""
NetSentry attack pattern detector.
Combines scan frequency and service classification into typed attack findings.
"""

from typing import List

from classifier import ServiceClassifier
from constants import REASON_VULNERABLE_VERSION, UNUSUAL_PORT_THRESHOLD
from models import AttackFinding, AttackType, DeviceRecord, ServiceReport, Severity
from scan_tracker import ScanActivityTracker


class AttackPatternDetector:
    """Heuristic rules, each evaluated independently; several may fire at once."""

    def __init__(
        self,
        tracker: ScanActivityTracker,
        classifier: ServiceClassifier,
        *,
        unusual_port_threshold: int = UNUSUAL_PORT_THRESHOLD,
    ):
        self.tracker = tracker
        self.classifier = classifier
        self.unusual_port_threshold = int(unusual_port_threshold)

    def detect(self, ip: str, device: DeviceRecord, report: ServiceReport) -> List[AttackFinding]:
        findings: List[AttackFinding] = []
        open_ports = device.open_ports

        freq = self.tracker.frequency(ip)
        if freq.count > self.tracker.threshold:
            findings.append(AttackFinding(
                type=AttackType.PORT_SCAN_ATTACK,
                severity=Severity.HIGH,
                description=f"Device scanned {freq.count} times in {freq.window_ms}ms",
            ))

        risky = sorted({p.port for p in open_ports if self.classifier.is_suspicious_port(p.port)})
        if risky:
            findings.append(AttackFinding(
                type=AttackType.SUSPICIOUS_PORTS_OPEN,
                severity=Severity.MEDIUM,
                description=(
                    f"Found {len(risky)} commonly exploited ports open: "
                    + ", ".join(str(p) for p in risky)
                ),
                ports=tuple(risky),
            ))

        suspicious = report.suspicious_services
        if any(s.reason == REASON_VULNERABLE_VERSION for s in suspicious):
            names = ", ".join(f"{s.service} {s.version}".strip() + f" ({s.port}/{s.protocol.value})" for s in suspicious)
            findings.append(AttackFinding(
                type=AttackType.VULNERABLE_SERVICE,
                severity=Severity.HIGH,
                description=f"Detected services with known vulnerabilities: {names}",
                ports=tuple(s.port for s in suspicious),
                services=tuple(suspicious),
            ))

        if len(open_ports) > self.unusual_port_threshold:
            findings.append(AttackFinding(
                type=AttackType.UNUSUAL_PORT_ACTIVITY,
                severity=Severity.MEDIUM,
                description=f"Abnormally high number of open ports ({len(open_ports)})",
            ))

        return findings
