"""Network and application probes run against a recovered instance.

Each probe returns a ``ProbeOutcome`` and never raises for an unreachable
target; only programming errors escape.
"""

from __future__ import annotations

import importlib
import logging
import platform
import socket
import struct
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx

from restoreproof.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

PLACEHOLDER_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "vm"})
MYSQL_PROTOCOL_VERSION = 10
_MYSQL_ERROR_PACKET = 0xFF

CustomProbe = Callable[[Any, str], Any]


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of a single probe."""

    passed: bool
    detail: str = ""


def substitute_address(url: str, address: str) -> str:
    """Point ``url`` at ``address``.

    ``{ip}`` tokens are replaced, and a placeholder host (``localhost``,
    ``127.0.0.1``, ``0.0.0.0`` or ``vm``) is swapped for the address while
    keeping any port.
    """
    url = url.replace("{ip}", address)
    parts = urlsplit(url)
    host = parts.hostname
    if host is None or host.lower() not in PLACEHOLDER_HOSTS:
        return url
    netloc = address if parts.port is None else f"{address}:{parts.port}"
    if parts.username:
        credentials = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        netloc = f"{credentials}@{netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def load_custom_probe(path: str) -> CustomProbe:
    """Import a ``module:function`` probe.

    Raises:
        ConfigurationError: If the path is malformed or does not resolve to a callable.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Custom probe must be 'module:function', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import custom probe module {module_name!r}: {e}") from e
    probe = getattr(module, attr, None)
    if not callable(probe):
        raise ConfigurationError(f"Custom probe {path!r} is not callable")
    return probe


class NetworkProbe:
    """Reachability checks from the verification host into the isolated network."""

    def ping(self, address: str, attempts: int = 3, timeout: float = 2.0) -> ProbeOutcome:
        """ICMP echo via the system ``ping`` binary; passes on the first reply."""
        if platform.system().lower() == "windows":
            cmd = ["ping", "-n", "1", "-w", str(int(timeout * 1000)), address]
        else:
            cmd = ["ping", "-c", "1", "-W", str(max(1, int(timeout))), address]

        for attempt in range(1, attempts + 1):
            try:
                proc = subprocess.run(
                    cmd,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=timeout + 5,
                    check=False,
                )
            except FileNotFoundError:
                return ProbeOutcome(False, "ping binary not available")
            except subprocess.TimeoutExpired:
                continue
            if proc.returncode == 0:
                return ProbeOutcome(True, f"Reply from {address} (attempt {attempt}/{attempts})")
        return ProbeOutcome(False, f"No reply from {address} after {attempts} attempt(s)")

    def tcp_connect(self, address: str, port: int, timeout: float = 5.0) -> ProbeOutcome:
        try:
            with socket.create_connection((address, port), timeout=timeout):
                return ProbeOutcome(True, f"Port {port} open")
        except OSError as e:
            return ProbeOutcome(False, f"Port {port} unreachable: {e}")

    def resolve(self, name: str) -> ProbeOutcome:
        try:
            infos = socket.getaddrinfo(name, None)
        except (socket.gaierror, UnicodeError) as e:
            return ProbeOutcome(False, f"Cannot resolve {name}: {e}")
        addresses = sorted({info[4][0] for info in infos})
        return ProbeOutcome(True, f"{name} -> {', '.join(addresses)}")

    def http_check(self, url: str, timeout: float = 10.0, verify_tls: bool = False) -> ProbeOutcome:
        """GET ``url`` without following redirects; 2xx and 3xx pass."""
        try:
            with httpx.Client(timeout=timeout, verify=verify_tls, follow_redirects=False) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            return ProbeOutcome(False, f"Request failed: {e}")
        passed = 200 <= response.status_code < 400
        return ProbeOutcome(passed, f"HTTP {response.status_code}")

    def mysql_handshake(self, address: str, port: int = 3306, timeout: float = 5.0) -> ProbeOutcome:
        """Read the server greeting and check it is a protocol 10 handshake."""
        try:
            with socket.create_connection((address, port), timeout=timeout) as sock:
                header = _recv_exact(sock, 4)
                length = struct.unpack("<I", header[:3] + b"\x00")[0]
                payload = _recv_exact(sock, length)
        except OSError as e:
            return ProbeOutcome(False, f"MySQL port {port} unreachable: {e}")
        except EOFError:
            return ProbeOutcome(False, "Connection closed before the greeting was complete")

        if not payload:
            return ProbeOutcome(False, "Empty greeting packet")
        if payload[0] == _MYSQL_ERROR_PACKET:
            message = payload[3:].decode("utf-8", errors="replace")
            return ProbeOutcome(False, f"Server refused connection: {message}")
        if payload[0] != MYSQL_PROTOCOL_VERSION:
            return ProbeOutcome(False, f"Unexpected protocol version {payload[0]}")
        version = payload[1:].split(b"\x00", 1)[0].decode("ascii", errors="replace")
        return ProbeOutcome(True, f"MySQL server {version}")


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise EOFError
        data += chunk
    return data
