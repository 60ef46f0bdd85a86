"""
Utilities for probing network ports.
"""
import socket


def is_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """
    Checks if a TCP connection to ``host:port`` can be established.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
