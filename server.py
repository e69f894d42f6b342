#!/usr/bin/env python3
"""
NetSentry - Device Inventory & Threat Detection
HTTP + Socket.IO surface over the monitoring engine.
"""

import logging
from typing import Any, Optional, Tuple

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO, emit

from config import NMAP_AVAILABLE, SCAPY_AVAILABLE, Settings
from constants import ALERT_FILTERS, SCAN_PROFILES
from errors import (
    DeviceDenied,
    InvalidObservation,
    InvalidRequest,
    ScannerError,
    StoreUnavailable,
    UnknownAlert,
)
from events import DEVICES_UPDATED, STATS_UPDATED, Event
from observations import parse_ip

logger = logging.getLogger(__name__)

api = Blueprint("netsentry", __name__)

# Paths readable without an API key, for local diagnostics.
OPEN_PATHS = ("/health", "/api/status")

MODULES = (
    "device-store",
    "scan-tracker",
    "service-classifier",
    "attack-detector",
    "alert-manager",
    "access-control",
)


def _monitor():
    return current_app.extensions["netsentry.monitor"]


def _jobs():
    return current_app.extensions["netsentry.jobs"]


def _ok(data: Any = None, message: Optional[str] = None, status: int = 200):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def _fail(error: str, status: int):
    return jsonify({"success": False, "error": error}), status


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _scan_type(data: dict) -> str:
    scan_type = str(data.get("scan_type") or data.get("scanType") or "quick").lower()
    if scan_type not in SCAN_PROFILES:
        raise InvalidRequest(f"Invalid scan type: {scan_type}")
    return scan_type


def _ip_list(data: dict) -> list:
    ips = data.get("ips")
    if not isinstance(ips, list) or not ips:
        raise InvalidRequest("IP addresses array is required")
    return [parse_ip(ip) for ip in ips]


@api.app_errorhandler(InvalidObservation)
def handle_invalid_observation(exc):
    return _fail(str(exc), 400)


@api.app_errorhandler(InvalidRequest)
def handle_invalid_request(exc):
    return _fail(str(exc), 400)


@api.app_errorhandler(DeviceDenied)
def handle_device_denied(exc):
    return _fail(str(exc), 403)


@api.app_errorhandler(UnknownAlert)
def handle_unknown_alert(exc):
    return _fail(str(exc), 404)


@api.app_errorhandler(StoreUnavailable)
def handle_store_unavailable(exc):
    logger.error("Store unavailable: %s", exc)
    return _fail(str(exc), 503)


@api.app_errorhandler(ScannerError)
def handle_scanner_error(exc):
    logger.error("Scanner failure: %s", exc)
    return _fail(str(exc), 502)


# ── status ──

@api.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "modules": list(MODULES)})


@api.route("/api/status", methods=["GET"])
def get_status():
    """Get system status"""
    monitor = _monitor()
    settings: Settings = current_app.config["NETSENTRY_SETTINGS"]
    scanner = monitor.scanner
    return jsonify({
        "scapy_available": SCAPY_AVAILABLE,
        "nmap_available": NMAP_AVAILABLE,
        "tools": scanner.tools() if scanner is not None else {},
        "local_ip": getattr(scanner, "local_ip", None),
        "network": getattr(scanner, "network_cidr", None),
        "scan_profiles": list(SCAN_PROFILES.keys()),
        "scan_delay_seconds": settings.scan_delay_seconds,
        "api_key_enabled": bool(settings.api_key),
        "devices": len(monitor.store),
        "alerts": len(monitor.alerts),
    })


# ── discovery & ingest ──

@api.route("/api/scan/network", methods=["POST"])
def scan_network():
    """Discover hosts on a network and merge them into the inventory."""
    data = _body()
    monitor = _monitor()
    settings: Settings = current_app.config["NETSENTRY_SETTINGS"]
    network = data.get("network") or getattr(monitor.scanner, "network_cidr", None)
    if not network:
        return _fail("network is required", 400)
    methods = data.get("methods") or ["arp", "nmap"]
    if not isinstance(methods, list):
        return _fail("methods must be an array", 400)
    result = monitor.discover(network, data.get("interface") or settings.interface, methods=methods)
    return _ok(result, message=f"Found {result['summary']['devices_found']} devices")


@api.route("/api/scan/ports", methods=["POST"])
def scan_ports():
    data = _body()
    ip = parse_ip(data.get("ip"))
    return _ok(_monitor().scan_device(ip, _scan_type(data)))


@api.route("/api/observations", methods=["POST"])
def ingest_observations():
    """Apply one observation or an array of them."""
    payload = request.get_json(silent=True)
    monitor = _monitor()
    if isinstance(payload, list):
        results, errors = [], []
        for idx, item in enumerate(payload):
            try:
                results.append(monitor.ingest(item).to_dict())
            except (InvalidObservation, DeviceDenied) as exc:
                errors.append({"index": idx, "error": str(exc)})
        return _ok({"results": results, "errors": errors})
    if not isinstance(payload, dict):
        return _fail("Observation must be an object or an array", 400)
    return _ok(monitor.ingest(payload).to_dict())


# ── inventory ──

@api.route("/api/devices", methods=["GET"])
def list_devices():
    return _ok([d.to_dict() for d in _monitor().store.all()])


@api.route("/api/devices", methods=["DELETE"])
def clear_devices():
    _monitor().store.clear()
    return _ok(message="All devices cleared")


@api.route("/api/devices/<ip>", methods=["GET"])
def get_device(ip):
    device = _monitor().store.get(parse_ip(ip))
    if device is None:
        return _fail("Device not found", 404)
    return _ok(device.to_dict())


@api.route("/api/stats", methods=["GET"])
def device_stats():
    return _ok(_monitor().publish_stats())


# ── monitoring ──

@api.route("/api/monitoring/scan/device", methods=["POST"])
def monitoring_scan_device():
    data = _body()
    ip = parse_ip(data.get("ip"))
    return _ok(_monitor().scan_device(ip, _scan_type(data)))


@api.route("/api/monitoring/scan/batch", methods=["POST"])
def monitoring_scan_batch():
    data = _body()
    return _ok(_monitor().scan_batch(_ip_list(data), _scan_type(data)))


@api.route("/api/monitoring/scan/jobs", methods=["POST"])
def start_scan_job():
    """Start an asynchronous batch scan job."""
    data = _body()
    ips = _ip_list(data)
    scan_type = _scan_type(data)
    job_id = _jobs().start(ips, scan_type)
    return _ok({"job_id": job_id, "status": "queued", "scan_type": scan_type, "ips": ips}, status=202)


@api.route("/api/monitoring/scan/jobs", methods=["GET"])
def list_scan_jobs():
    """List recent scan jobs."""
    try:
        limit = int(request.args.get("limit", 20))
    except ValueError:
        limit = 20
    limit = max(1, min(200, limit))
    return _ok(_jobs().list(limit=limit))


@api.route("/api/monitoring/scan/jobs/<job_id>", methods=["GET"])
def get_scan_job(job_id):
    job = _jobs().get(job_id)
    if not job:
        return _fail("Job not found", 404)
    return _ok(job)


@api.route("/api/monitoring/scan/jobs/<job_id>/cancel", methods=["POST"])
def cancel_scan_job(job_id):
    jobs = _jobs()
    if jobs.get(job_id) is None:
        return _fail("Job not found", 404)
    if not jobs.cancel(job_id):
        return _fail("Job already finished", 409)
    return _ok(jobs.get(job_id), message="Cancellation requested")


@api.route("/api/monitoring/analyze", methods=["POST"])
def analyze_all():
    return _ok(_monitor().analyze_all())


def _list_route(kind: str):
    access = _monitor().access
    return _ok(access.whitelist() if kind == "whitelist" else access.blacklist())


def _add_route(kind: str) -> Tuple[Any, int]:
    ip = parse_ip(_body().get("ip"))
    access = _monitor().access
    if kind == "whitelist":
        access.allow(ip)
    else:
        access.deny(ip)
    return _ok(message=f"Device {ip} added to {kind}")


def _remove_route(kind: str, ip: str) -> Tuple[Any, int]:
    ip = parse_ip(ip)
    access = _monitor().access
    if kind == "whitelist":
        access.revoke_allow(ip)
    else:
        access.revoke_deny(ip)
    return _ok(message=f"Device {ip} removed from {kind}")


@api.route("/api/monitoring/whitelist", methods=["GET"])
def get_whitelist():
    return _list_route("whitelist")


@api.route("/api/monitoring/whitelist", methods=["POST"])
def add_to_whitelist():
    return _add_route("whitelist")


@api.route("/api/monitoring/whitelist/<ip>", methods=["DELETE"])
def remove_from_whitelist(ip):
    return _remove_route("whitelist", ip)


@api.route("/api/monitoring/blacklist", methods=["GET"])
def get_blacklist():
    return _list_route("blacklist")


@api.route("/api/monitoring/blacklist", methods=["POST"])
def add_to_blacklist():
    return _add_route("blacklist")


@api.route("/api/monitoring/blacklist/<ip>", methods=["DELETE"])
def remove_from_blacklist(ip):
    return _remove_route("blacklist", ip)


@api.route("/api/monitoring/alerts", methods=["GET"])
def list_alerts():
    alert_filter = request.args.get("filter", "all")
    if alert_filter not in ALERT_FILTERS:
        return _fail(f"Invalid filter: {alert_filter}", 400)
    return _ok([a.to_dict() for a in _monitor().alerts.list(alert_filter)])


@api.route("/api/monitoring/alerts", methods=["DELETE"])
def clear_alerts():
    count = _monitor().alerts.clear_all()
    return _ok({"cleared": count}, message="All alerts cleared")


@api.route("/api/monitoring/alerts/<key>", methods=["GET"])
def device_alerts(key):
    """Alerts for a device IP, or a single alert when given an alert id."""
    alerts = _monitor().alerts
    if key.startswith("alert-"):
        return _ok(alerts.get(key).to_dict())
    return _ok([a.to_dict() for a in alerts.for_device(parse_ip(key))])


@api.route("/api/monitoring/alerts/<alert_id>/acknowledge", methods=["PUT"])
def acknowledge_alert(alert_id):
    """Acknowledge an alert. Unknown ids are a no-op."""
    alert = _monitor().alerts.acknowledge(alert_id)
    return _ok(alert.to_dict() if alert else None, message="Alert acknowledged")


@api.route("/api/monitoring/stats", methods=["GET"])
def monitoring_stats():
    return _ok(_monitor().monitoring_stats().to_dict())


@api.route("/api/monitoring/device/<ip>/status", methods=["GET"])
def device_status(ip):
    return _ok(_monitor().device_status(parse_ip(ip)))


@api.route("/api/events", methods=["GET"])
def list_events():
    """List recent in-memory bus events (bounded buffer)."""
    try:
        limit = int(request.args.get("limit", 200))
    except ValueError:
        limit = 200
    event_type = str(request.args.get("type", "") or "")
    return _ok(_monitor().bus.recent(limit=limit, event_type=event_type))


def _register_socket_handlers(socketio: SocketIO, monitor) -> None:
    @socketio.on("connect")
    def handle_connect():
        emit("status", {"connected": True, "devices": len(monitor.store)})

    @socketio.on("request-devices")
    def handle_request_devices():
        emit(DEVICES_UPDATED, [d.to_dict() for d in monitor.store.all()])

    @socketio.on("request-stats")
    def handle_request_stats():
        emit(STATS_UPDATED, monitor.store.stats().to_dict())


def create_app(monitor, scan_jobs, settings: Optional[Settings] = None) -> Tuple[Flask, SocketIO]:
    """Build the Flask app and its Socket.IO server around an engine instance."""
    settings = settings or Settings()
    app = Flask(__name__)
    app.config["NETSENTRY_SETTINGS"] = settings
    app.extensions["netsentry.monitor"] = monitor
    app.extensions["netsentry.jobs"] = scan_jobs
    CORS(app)
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

    @app.before_request
    def enforce_optional_api_key():
        """Optional API key guard. Disabled when NETSENTRY_API_KEY is unset."""
        if not settings.api_key or request.path in OPEN_PATHS:
            return None
        if request.headers.get("X-API-Key", "") != settings.api_key:
            return jsonify({"success": False, "error": "Unauthorized"}), 401
        return None

    app.register_blueprint(api)
    _register_socket_handlers(socketio, monitor)

    def forward(ev: Event):
        socketio.emit(ev.type, ev.payload)

    if monitor.bus is not None:
        monitor.bus.subscribe(forward)
    return app, socketio
