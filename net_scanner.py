"""
NetSentry network scanner.
Runs arp-scan / netdiscover / nmap and returns parsed observation dicts.

Every external tool is started with an explicit timeout; failures surface as
ScannerError so callers can record them per method or per device.
"""

import ipaddress
import logging
import platform
import re
import shutil
import socket
import subprocess
import time
from typing import Any, Dict, List, Optional

from config import NMAP_AVAILABLE, SCAPY_AVAILABLE
from constants import DEFAULT_SCAN_TIMEOUT_SECONDS, HOST_DISCOVERY_ARGUMENTS, SCAN_PROFILES
from errors import ScannerError
from models import utc_now_iso
from parsers import arp_scan_stats, parse_arp_scan, parse_netdiscover, parse_nmap_xml

logger = logging.getLogger(__name__)


class NetworkScanner:
    """Adapter around the external discovery tools."""

    def __init__(self, *, timeout_seconds: int = DEFAULT_SCAN_TIMEOUT_SECONDS, use_sudo: bool = False):
        self.timeout_seconds = int(timeout_seconds)
        self.use_sudo = use_sudo
        self.local_ip = self._get_local_ip()
        self.network_cidr = self._get_network_cidr()
        self.last_arp_stats: Optional[Dict[str, Any]] = None

    def _get_local_ip(self) -> str:
        try:
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            s.close()
            return ip
        except OSError:
            return "127.0.0.1"

    def _get_network_cidr(self) -> str:
        if self.local_ip:
            parts = self.local_ip.split(".")
            return f"{parts[0]}.{parts[1]}.{parts[2]}.0/24"
        return "192.168.1.0/24"

    def tools(self) -> Dict[str, bool]:
        return {
            "scapy": SCAPY_AVAILABLE,
            "nmap": NMAP_AVAILABLE and shutil.which("nmap") is not None,
            "arp_scan": shutil.which("arp-scan") is not None,
            "netdiscover": shutil.which("netdiscover") is not None,
        }

    def detect_interface(self, interface: Optional[str] = None) -> Optional[str]:
        """Resolve 'auto' to the default-route interface; None on Windows."""
        if interface and interface != "auto":
            return interface
        if platform.system() == "Windows":
            return None
        try:
            result = subprocess.run(["ip", "route"], capture_output=True, text=True, timeout=5)
            for line in result.stdout.splitlines():
                if line.startswith("default"):
                    m = re.search(r"dev (\S+)", line)
                    if m:
                        logger.info("Auto-detected interface: %s", m.group(1))
                        return m.group(1)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("Interface detection failed: %s", exc)
        logger.info("Could not auto-detect interface, using eth0")
        return "eth0"

    def _run(self, cmd: List[str], *, timeout: Optional[int] = None, tolerate_timeout: bool = False) -> str:
        if self.use_sudo:
            cmd = ["sudo", "-n"] + cmd
        limit = timeout or self.timeout_seconds
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=limit)
        except FileNotFoundError as exc:
            raise ScannerError(f"{cmd[0]} is not installed") from exc
        except subprocess.TimeoutExpired as exc:
            if tolerate_timeout:
                out = exc.stdout or ""
                return out.decode(errors="ignore") if isinstance(out, bytes) else out
            raise ScannerError(f"{cmd[0]} timed out after {limit}s") from exc
        if result.returncode != 0:
            raise ScannerError(f"{cmd[0]} failed: {result.stderr.strip() or result.returncode}")
        if result.stderr.strip():
            logger.debug("%s stderr: %s", cmd[0], result.stderr.strip())
        return result.stdout

    def arp_scan(self, network: Optional[str] = None, interface: Optional[str] = None) -> List[Dict[str, Any]]:
        """ARP sweep of the local segment (scapy if available, else arp-scan)."""
        target = network or self.network_cidr
        iface = self.detect_interface(interface)
        if SCAPY_AVAILABLE:
            return self._arp_scan_scapy(target, iface)
        cmd = ["arp-scan", "--numeric", "--retry=3"]
        if iface:
            cmd.append(f"--interface={iface}")
        cmd.append(target if network else "--localnet")
        output = self._run(cmd, timeout=60)
        self.last_arp_stats = arp_scan_stats(output)
        logger.info(
            "arp-scan: %d hosts scanned, %d responded",
            self.last_arp_stats["hosts_scanned"],
            self.last_arp_stats["hosts_responded"],
        )
        return parse_arp_scan(output)

    def _arp_scan_scapy(self, target: str, iface: Optional[str]) -> List[Dict[str, Any]]:
        from scapy.all import arping
        started = time.monotonic()
        try:
            answered, _ = arping(target, iface=iface, timeout=2, verbose=False)
        except (OSError, PermissionError) as exc:
            raise ScannerError(f"ARP sweep failed: {exc}") from exc
        now = utc_now_iso()
        devices = [
            {
                "ip": received.psrc,
                "mac": received.hwsrc.upper(),
                "status": "up",
                "discovery_method": "arp-scan",
                "last_seen": now,
            }
            for _, received in answered
        ]
        self.last_arp_stats = {
            "hosts_scanned": ipaddress.ip_network(target, strict=False).num_addresses,
            "hosts_responded": len(devices),
            "scan_duration": round(time.monotonic() - started, 3),
        }
        return devices

    def netdiscover(self, interface: Optional[str] = None, *, duration: int = 30, packet_count: int = 100) -> List[Dict[str, Any]]:
        """Passive netdiscover sniff; a timeout is the normal way it ends."""
        iface = self.detect_interface(interface)
        cmd = ["netdiscover", "-p", "-P", "-c", str(packet_count)]
        if iface:
            cmd += ["-i", iface]
        return parse_netdiscover(self._run(cmd, timeout=duration, tolerate_timeout=True))

    def _port_scanner(self):
        if not NMAP_AVAILABLE:
            raise ScannerError("python-nmap is not installed")
        import nmap as nmap_module
        try:
            return nmap_module.PortScanner()
        except nmap_module.PortScannerError as exc:
            raise ScannerError(str(exc)) from exc

    def _nmap(self, target: str, arguments: str):
        import nmap as nmap_module
        nm = self._port_scanner()
        try:
            nm.scan(hosts=target, arguments=arguments, sudo=self.use_sudo, timeout=self.timeout_seconds)
        except nmap_module.PortScannerError as exc:
            raise ScannerError(f"nmap scan of {target} failed: {exc}") from exc
        return nm

    def _nmap_hosts(self, nm, method: str) -> List[Dict[str, Any]]:
        output = nm.get_nmap_last_output()
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="ignore")
        return parse_nmap_xml(output, discovery_method=method)

    def host_discovery(self, network: str) -> List[Dict[str, Any]]:
        return self._nmap_hosts(self._nmap(network, HOST_DISCOVERY_ARGUMENTS), "host-discovery")

    def port_scan(self, ip: str, scan_type: str = "quick") -> Optional[Dict[str, Any]]:
        """Port/service scan of one host. None when the host did not answer."""
        profile = SCAN_PROFILES.get(scan_type, SCAN_PROFILES["quick"])
        hosts = self._nmap_hosts(self._nmap(ip, profile["arguments"]), "port-scan")
        return hosts[0] if hosts else None
