"""
NetSentry error taxonomy.
"""


class NetSentryError(Exception):
    """Base class for all engine errors."""


class InvalidObservation(NetSentryError):
    """Inbound observation rejected at the boundary; nothing was applied."""


class DeviceDenied(NetSentryError):
    """Operation attempted against a blacklisted IP."""

    def __init__(self, ip: str):
        super().__init__(f"Device {ip} is blacklisted")
        self.ip = ip


class UnknownAlert(NetSentryError):
    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class StoreUnavailable(NetSentryError):
    """The device store can no longer serve requests."""


class ScannerError(NetSentryError):
    """An external scanning tool failed or timed out."""


class InvalidRequest(NetSentryError):
    """Caller-supplied request parameters are missing or malformed."""
