#!/usr/bin/env python3
"""
NetSentry - Device Inventory & Threat Detection
Entry point: wires the engine components and runs the Flask app.
"""

import logging

from config import NMAP_AVAILABLE, SCAPY_AVAILABLE, Settings
from events import EventBus
from monitor import ThreatMonitor
from net_scanner import NetworkScanner
from server import create_app
from services.jobs import ScanJobManager

logger = logging.getLogger("netsentry")

DEMO_OBSERVATIONS = [
    {
        "ip": "192.168.1.1",
        "mac": "00:1a:2b:3c:4d:5e",
        "vendor": "Cisco",
        "hostname": "gateway",
        "status": "up",
        "discovery_method": "arp-scan",
    },
    {
        "ip": "192.168.1.50",
        "mac": "b8:27:eb:12:34:56",
        "vendor": "Raspberry Pi",
        "status": "up",
        "ports": [
            {"port": 22, "protocol": "tcp", "state": "open", "service": "ssh", "version": "OpenSSH 8.4"},
            {"port": 23, "protocol": "tcp", "state": "open", "service": "telnet"},
        ],
    },
    {
        "ip": "192.168.1.77",
        "hostname": "legacy-ftp",
        "status": "up",
        "ports": [
            {"port": 21, "protocol": "tcp", "state": "open", "service": "ftp", "version": "vsftpd 2.3.4"},
            {"port": 80, "protocol": "tcp", "state": "open", "service": "http", "version": "Apache 2.2.8"},
        ],
    },
]


def build(settings: Settings):
    bus = EventBus(max_events=settings.max_events)
    scanner = NetworkScanner(timeout_seconds=settings.scan_timeout_seconds)
    monitor = ThreatMonitor.from_settings(settings, bus=bus, scanner=scanner)
    scan_jobs = ScanJobManager(monitor)
    app, socketio = create_app(monitor, scan_jobs, settings)
    return monitor, app, socketio


def load_demo_data(monitor: ThreatMonitor) -> int:
    for obs in DEMO_OBSERVATIONS:
        monitor.ingest(obs)
    return len(DEMO_OBSERVATIONS)


if __name__ == "__main__":
    import argparse

    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="NetSentry - Device Inventory & Threat Detection Server")
    parser.add_argument("--host", default=settings.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    parser.add_argument("--demo", action="store_true", help="Load demo data on startup")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    monitor, app, socketio = build(settings)
    if args.demo:
        logger.info("Demo data loaded: %d observations", load_demo_data(monitor))

    logger.info("Starting NetSentry server on %s:%s", args.host, args.port)
    logger.info("Local IP: %s", monitor.scanner.local_ip)
    logger.info("Network: %s", monitor.scanner.network_cidr)
    logger.info("Scapy available: %s", SCAPY_AVAILABLE)
    logger.info("Nmap available: %s", NMAP_AVAILABLE)
    socketio.run(
        app,
        host=args.host,
        port=args.port,
        debug=settings.debug,
        allow_unsafe_werkzeug=settings.debug,
    )
