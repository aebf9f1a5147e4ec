"""
Registry of stream network families.

Maps a network name such as ``"tcp"`` or ``"unix"`` to the object that knows
how to bind listeners and dial connections for it, so listener and dial
factories can dispatch on the name.
"""

import socket
from typing import List, Optional, Protocol

import anyio
from anyio.abc import SocketListener, SocketStream

from netdeadline.errors import ConfigurationError, UnsupportedNetworkError
from netdeadline.stream.address import split_host_port


class Network(Protocol):
    """Binds listeners and dials connections for one network family."""

    async def listen(self, address: str) -> List[SocketListener]:
        """Bind and return the socket listeners for ``address``."""
        ...

    async def dial(
        self, address: str, local_address: Optional[str] = None
    ) -> SocketStream:
        """Connect to ``address`` and return the connected stream."""
        ...


class TCPNetwork:
    """TCP over IPv4, IPv6 or both, depending on ``family``."""

    def __init__(self, family: socket.AddressFamily = socket.AF_UNSPEC):
        self.family = family

    async def listen(self, address: str) -> List[SocketListener]:
        host, port = split_host_port(address)
        multi = await anyio.create_tcp_listener(
            local_host=host or None, local_port=port, family=self.family
        )
        return list(multi.listeners)

    async def dial(
        self, address: str, local_address: Optional[str] = None
    ) -> SocketStream:
        host, port = split_host_port(address)
        host = host or "localhost"
        if self.family != socket.AF_UNSPEC:
            # anyio.connect_tcp has no family argument; resolve it here.
            addrinfo = await anyio.getaddrinfo(
                host, port, family=self.family, type=socket.SOCK_STREAM
            )
            host = addrinfo[0][4][0]
        return await anyio.connect_tcp(host, port, local_host=local_address)

    def __repr__(self) -> str:
        return f"TCPNetwork(family={self.family!r})"


class UnixNetwork:
    """Unix-domain stream sockets; the address is a filesystem path."""

    async def listen(self, address: str) -> List[SocketListener]:
        if not address:
            raise ConfigurationError("A Unix socket path is required")
        return [await anyio.create_unix_listener(address)]

    async def dial(
        self, address: str, local_address: Optional[str] = None
    ) -> SocketStream:
        if not address:
            raise ConfigurationError("A Unix socket path is required")
        return await anyio.connect_unix(address)

    def __repr__(self) -> str:
        return "UnixNetwork()"


class NetworkRegistry:
    """Registry for stream network families."""

    def __init__(self):
        """Initialize a new network registry."""
        self._networks = {}

    def register(self, name: str, network: Network) -> None:
        """Register a network family.

        Args:
            name: The name to register the network under.
            network: The network implementation.
        """
        self._networks[name] = network

    def get(self, name: str) -> Network:
        """Get a network family by name.

        Args:
            name: The name of the network to get.

        Returns:
            The network implementation.

        Raises:
            UnsupportedNetworkError: If no network is registered with the given name.
        """
        try:
            return self._networks[name]
        except KeyError:
            raise UnsupportedNetworkError(name, self.get_registered_names()) from None

    def get_registered_names(self) -> List[str]:
        """Get the names of all registered networks."""
        return sorted(self._networks)


def _default_registry() -> NetworkRegistry:
    registry = NetworkRegistry()
    registry.register("tcp", TCPNetwork(socket.AF_UNSPEC))
    registry.register("tcp4", TCPNetwork(socket.AF_INET))
    registry.register("tcp6", TCPNetwork(socket.AF_INET6))
    if hasattr(socket, "AF_UNIX"):
        registry.register("unix", UnixNetwork())
    return registry


_registry = _default_registry()


def get_network_registry() -> NetworkRegistry:
    """Get the process-wide network registry."""
    return _registry


def register_network(name: str, network: Network) -> None:
    """Register a network family in the process-wide registry."""
    _registry.register(name, network)
