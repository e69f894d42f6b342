"""
NetSentry configuration.
Optional dependency flags (set after attempting to import scapy and nmap),
environment-driven settings, and the attack signature tables.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from constants import (
    DEFAULT_SCAN_DELAY_SECONDS,
    DEFAULT_SCAN_TIMEOUT_SECONDS,
    SCAN_THRESHOLD,
    SCAN_WINDOW_MS,
    SUSPICIOUS_PORTS,
    UNUSUAL_PORT_THRESHOLD,
    VULNERABLE_VERSIONS,
)

try:
    from scapy.all import arping  # noqa: F401
    SCAPY_AVAILABLE = True
except ImportError:
    SCAPY_AVAILABLE = False

try:
    import nmap  # noqa: F401
    NMAP_AVAILABLE = True
except ImportError:
    NMAP_AVAILABLE = False

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s=%r", name, os.environ.get(name))
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer %s=%r", name, os.environ.get(name))
        return default


@dataclass(frozen=True)
class Signatures:
    """Tunable detection tables and thresholds."""

    suspicious_ports: Tuple[int, ...] = SUSPICIOUS_PORTS
    vulnerable_versions: Tuple[str, ...] = VULNERABLE_VERSIONS
    scan_threshold: int = SCAN_THRESHOLD
    scan_window_ms: int = SCAN_WINDOW_MS
    unusual_port_threshold: int = UNUSUAL_PORT_THRESHOLD


def load_signatures(path: Optional[str]) -> Signatures:
    """Load signature overrides from a JSON file; missing keys keep their defaults."""
    if not path:
        return Signatures()
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read signatures from %s (%s); using defaults", p, exc)
        return Signatures()
    if not isinstance(data, dict):
        logger.warning("Signatures file %s is not a JSON object; using defaults", p)
        return Signatures()

    defaults = Signatures()
    try:
        sig = Signatures(
            suspicious_ports=tuple(int(x) for x in data.get("suspicious_ports", defaults.suspicious_ports)),
            vulnerable_versions=tuple(str(x) for x in data.get("vulnerable_versions", defaults.vulnerable_versions)),
            scan_threshold=int(data.get("scan_threshold", defaults.scan_threshold)),
            scan_window_ms=int(data.get("scan_window_ms", defaults.scan_window_ms)),
            unusual_port_threshold=int(data.get("unusual_port_threshold", defaults.unusual_port_threshold)),
        )
    except (TypeError, ValueError) as exc:
        logger.warning("Invalid value in signatures file %s (%s); using defaults", p, exc)
        return defaults
    logger.info(
        "Loaded signatures from %s: %d suspicious ports, %d vulnerable versions",
        p,
        len(sig.suspicious_ports),
        len(sig.vulnerable_versions),
    )
    return sig


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 5001
    debug: bool = False
    api_key: str = ""
    log_level: str = "INFO"
    scan_delay_seconds: float = DEFAULT_SCAN_DELAY_SECONDS
    scan_timeout_seconds: int = DEFAULT_SCAN_TIMEOUT_SECONDS
    interface: str = "auto"
    max_events: int = 2000
    signatures: Signatures = field(default_factory=Signatures)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.environ.get("NETSENTRY_HOST", "0.0.0.0"),
            port=_env_int("NETSENTRY_PORT", 5001),
            debug=_env_flag("NETSENTRY_DEBUG"),
            api_key=os.environ.get("NETSENTRY_API_KEY", "").strip(),
            log_level=os.environ.get("NETSENTRY_LOG_LEVEL", "INFO").upper(),
            scan_delay_seconds=max(0.0, _env_float("NETSENTRY_SCAN_DELAY", DEFAULT_SCAN_DELAY_SECONDS)),
            scan_timeout_seconds=max(1, _env_int("NETSENTRY_SCAN_TIMEOUT", DEFAULT_SCAN_TIMEOUT_SECONDS)),
            interface=os.environ.get("NETSENTRY_INTERFACE", "auto"),
            max_events=max(1, _env_int("NETSENTRY_MAX_EVENTS", 2000)),
            signatures=load_signatures(os.environ.get("NETSENTRY_SIGNATURES_PATH")),
        )
