"""TCP port helpers for locally managed server processes."""

from __future__ import annotations

import socket
import subprocess
import time


def is_port_available(port: int, host: str = "localhost") -> bool:
    """Try to bind ``port``; the socket is released immediately."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(start_port: int = 8000, max_port: int = 9000, host: str = "localhost") -> int:
    """Probe ports upward from ``start_port`` and return the first free one."""
    for port in range(start_port, max_port + 1):
        if is_port_available(port, host):
            return port
    raise OSError(f"No available ports found between {start_port} and {max_port}")


def wait_for_port(
    host: str,
    port: int,
    timeout: float = 15.0,
    *,
    interval: float = 0.5,
    process: subprocess.Popen | None = None,
) -> bool:
    """Wait until something accepts connections on ``host:port``.

    Returns False on timeout, or as soon as ``process`` (when given) has exited.
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if process is not None and process.poll() is not None:
            return False
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except OSError:
            time.sleep(interval)
    return False
