"""
NetSentry static tables.
Default attack signatures and scan profiles.
"""

# FTP, Telnet, MS-RPC, NetBIOS, SMB, RDP, VNC. SSH (22) is deliberately absent.
SUSPICIOUS_PORTS = (21, 23, 135, 139, 445, 3389, 5900)

VULNERABLE_VERSIONS = (
    "vsftpd 2.3.4",
    "ProFTPD 1.3.3c",
    "Apache 2.2.8",
)

SCAN_WINDOW_MS = 60_000
SCAN_THRESHOLD = 10
UNUSUAL_PORT_THRESHOLD = 50

REASON_SUSPICIOUS_PORT = "Commonly exploited port"
REASON_VULNERABLE_VERSION = "Known vulnerable version"

DEFAULT_SCAN_DELAY_SECONDS = 1.0
DEFAULT_SCAN_TIMEOUT_SECONDS = 300

SCAN_PROFILES = {
    "quick": {"arguments": "-F -sV", "description": "Top 100 ports with version detection"},
    "full": {"arguments": "-p- -sV", "description": "All 65535 ports with version detection"},
}

HOST_DISCOVERY_ARGUMENTS = "-sn"

ALERT_FILTERS = ("all", "unacknowledged", "low", "medium", "high")
