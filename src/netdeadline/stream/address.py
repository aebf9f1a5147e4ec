"""Parsing and formatting of ``host:port`` network addresses."""

from typing import Tuple

from netdeadline.errors import ConfigurationError


def split_host_port(address: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` address into its host and port.

    IPv6 literals must be enclosed in brackets (``[::1]:8080``). The host may
    be empty (``:8080``), meaning all interfaces when listening.

    Args:
        address: The address to split

    Returns:
        A ``(host, port)`` tuple

    Raises:
        ConfigurationError: If the address is malformed
    """
    if address.startswith("["):
        end = address.find("]")
        if end == -1:
            raise ConfigurationError(f"Missing ']' in address: {address!r}")
        host = address[1:end]
        rest = address[end + 1 :]
        if not rest.startswith(":"):
            raise ConfigurationError(f"Missing port in address: {address!r}")
        port_text = rest[1:]
    else:
        host, sep, port_text = address.rpartition(":")
        if not sep:
            raise ConfigurationError(f"Missing port in address: {address!r}")
        if ":" in host:
            raise ConfigurationError(f"Too many colons in address: {address!r}")

    if not (port_text.isascii() and port_text.isdigit()):
        raise ConfigurationError(f"Invalid port in address: {address!r}")
    port = int(port_text)
    if port > 65535:
        raise ConfigurationError(f"Port out of range in address: {address!r}")
    return host, port


def join_host_port(host: str, port: int) -> str:
    """Combine a host and port into an address, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
