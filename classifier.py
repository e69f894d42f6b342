"""
NetSentry service classifier.
Flags reported ports/services as suspicious using static port and version signatures.
"""

from typing import Iterable, List, Sequence

from constants import (
    REASON_SUSPICIOUS_PORT,
    REASON_VULNERABLE_VERSION,
    SUSPICIOUS_PORTS,
    VULNERABLE_VERSIONS,
)
from models import PortObservation, ServiceFinding, ServiceReport


class ServiceClassifier:
    def __init__(
        self,
        suspicious_ports: Iterable[int] = SUSPICIOUS_PORTS,
        vulnerable_versions: Iterable[str] = VULNERABLE_VERSIONS,
    ):
        self.suspicious_ports = frozenset(int(p) for p in suspicious_ports)
        self.vulnerable_versions = tuple(v.lower() for v in vulnerable_versions if v)

    def is_suspicious_port(self, port: int) -> bool:
        return port in self.suspicious_ports

    def matches_vulnerable_version(self, version: str) -> bool:
        v = (version or "").lower()
        return bool(v) and any(sig in v for sig in self.vulnerable_versions)

    def classify(self, ports: Sequence[PortObservation]) -> ServiceReport:
        """Label every port; a version match is the more specific reason and wins."""
        services: List[ServiceFinding] = []
        suspicious: List[ServiceFinding] = []
        flagged = set()
        for obs in ports:
            reason = ""
            if self.is_suspicious_port(obs.port):
                reason = REASON_SUSPICIOUS_PORT
            if self.matches_vulnerable_version(obs.version):
                reason = REASON_VULNERABLE_VERSION
            finding = ServiceFinding(
                port=obs.port,
                protocol=obs.protocol,
                service=obs.service or "unknown",
                version=obs.version or "",
                state=obs.state,
                is_suspicious=bool(reason),
                reason=reason,
            )
            services.append(finding)
            key = (finding.port, finding.protocol)
            if finding.is_suspicious and key not in flagged:
                flagged.add(key)
                suspicious.append(finding)
        return ServiceReport(services=tuple(services), suspicious_services=tuple(suspicious))
