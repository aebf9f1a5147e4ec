"""
Tests for the listener and connection factories.

Most tests bind real sockets on the loopback interface; the timeout tests
dial through a network whose connections never complete.
"""

import socket
import ssl
from contextlib import asynccontextmanager

import anyio
import pytest
from anyio.abc import SocketAttribute
from anyio.streams.tls import TLSAttribute
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from structlog.testing import capture_logs

from netdeadline.concurrency import current_time
from netdeadline.errors import (
    CertificateError,
    ConfigurationError,
    ConnectionTimeoutError,
    DeadlineExceededError,
    UnsupportedNetworkError,
)
from netdeadline.stream.deadline import DeadlineConnection, DeadlineListener
from netdeadline.stream.factory import (
    connect,
    create_server_ssl_context,
    new_listener,
    new_listener_tls,
)

pytestmark = pytest.mark.network


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Fixture that removes timeout configuration from the environment."""
    for key in ("READ_TIMEOUT", "WRITE_TIMEOUT", "CONNECT_TIMEOUT"):
        monkeypatch.delenv(f"NETDEADLINE_{key}", raising=False)


def port_of(listener):
    return listener.local_address[1]


@asynccontextmanager
async def tls_pair(listener, ssl_context):
    """Connect a TLS client to ``listener`` and yield it with the accepted connection."""
    clients = []

    async def dial():
        client = await anyio.connect_tcp(
            "127.0.0.1",
            port_of(listener),
            ssl_context=ssl_context,
            tls_standard_compatible=False,
        )
        clients.append(client)

    with anyio.fail_after(10):
        async with anyio.create_task_group() as tg:
            tg.start_soon(dial)
            conn = await listener.accept()
            await conn.conn.do_handshake()

    async with clients[0] as client, conn:
        yield client, conn


class TestCreateServerSSLContext:
    """Tests for the create_server_ssl_context function."""

    def test_valid_pair(self, cert_pair):
        """Test a server context is built from a valid pair."""
        context = create_server_ssl_context(*cert_pair)
        assert isinstance(context, ssl.SSLContext)

    def test_fresh_context_per_call(self, cert_pair):
        """Test every call builds a new context."""
        assert create_server_ssl_context(*cert_pair) is not create_server_ssl_context(
            *cert_pair
        )

    def test_missing_files(self, tmp_path):
        """Test a missing pair raises CertificateError and logs the failure."""
        with capture_logs() as logs:
            with pytest.raises(CertificateError, match="Failed to load certificate"):
                create_server_ssl_context(
                    str(tmp_path / "missing.pem"), str(tmp_path / "missing.key")
                )
        assert [log["event"] for log in logs] == ["tls.certificate_load_failed"]
        assert logs[0]["log_level"] == "error"

    def test_mismatched_key(self, cert_pair, tmp_path):
        """Test a key that does not match the certificate is rejected."""
        other_key = tmp_path / "other.key"
        other_key.write_bytes(
            ec.generate_private_key(ec.SECP256R1()).private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        with pytest.raises(CertificateError):
            create_server_ssl_context(cert_pair[0], str(other_key))


class TestNewListener:
    """Tests for the new_listener function."""

    @pytest.mark.asyncio
    async def test_bind_and_accept(self):
        """Test the listener accepts connections wrapped with its timeouts."""
        listener = await new_listener("tcp", "127.0.0.1:0", 5, 6)
        assert isinstance(listener, DeadlineListener)
        assert listener.read_timeout == 5.0
        assert listener.write_timeout == 6.0

        async with listener:
            async with await anyio.connect_tcp("127.0.0.1", port_of(listener)) as client:
                conn = await listener.accept()
                async with conn:
                    assert isinstance(conn, DeadlineConnection)
                    assert conn.read_timeout == 5.0
                    await client.send(b"hello")
                    assert await conn.read() == b"hello"
                    assert await conn.write(b"world") == 5
                    assert await client.receive() == b"world"

    @pytest.mark.asyncio
    async def test_default_timeouts(self, monkeypatch):
        """Test timeouts fall back to the environment, then to the default."""
        monkeypatch.setenv("NETDEADLINE_READ_TIMEOUT", "2.5")
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            assert listener.read_timeout == 2.5
            assert listener.write_timeout == 2.5

        monkeypatch.delenv("NETDEADLINE_READ_TIMEOUT")
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            assert listener.read_timeout == 30.0

    @pytest.mark.asyncio
    async def test_config_timeouts(self, monkeypatch):
        """Test a config mapping sits between explicit timeouts and the environment."""
        monkeypatch.setenv("NETDEADLINE_READ_TIMEOUT", "9")
        config = {"read_timeout": 2, "write_timeout": 8}
        async with await new_listener(
            "tcp", "127.0.0.1:0", write_timeout=3, config=config
        ) as listener:
            assert listener.read_timeout == 2.0
            assert listener.write_timeout == 3.0

    @pytest.mark.asyncio
    async def test_idle_connection_is_cut_off(self):
        """Test an accepted connection enforces the listener's read timeout."""
        async with await new_listener("tcp", "127.0.0.1:0", 0.2, 0.2) as listener:
            async with await anyio.connect_tcp("127.0.0.1", port_of(listener)):
                async with await listener.accept() as conn:
                    start = current_time()
                    with pytest.raises(DeadlineExceededError):
                        await conn.read()
                    assert 0.15 <= current_time() - start < 2.0

    @pytest.mark.asyncio
    async def test_all_interfaces(self):
        """Test an empty host listens on every interface, IPv4 loopback included."""
        async with await new_listener("tcp", ":0") as listener:
            # one dual-stack socket, or one per family with its own port
            addresses = listener.listener.local_addresses
            port = next(
                (addr[1] for addr in addresses if addr[0] == "0.0.0.0"),
                addresses[0][1],
            )
            async with await anyio.connect_tcp("127.0.0.1", port):
                with anyio.fail_after(5):
                    conn = await listener.accept()
                await conn.aclose()

    @pytest.mark.asyncio
    async def test_tcp4(self):
        """Test the tcp4 network binds an IPv4 socket."""
        async with await new_listener("tcp4", "127.0.0.1:0") as listener:
            assert listener.listener.listeners[0].extra(
                SocketAttribute.family
            ) == socket.AF_INET

    @pytest.mark.asyncio
    async def test_accept_after_close(self):
        """Test accept fails after close while accepted connections keep working."""
        listener = await new_listener("tcp", "127.0.0.1:0", 5, 5)
        client = await anyio.connect_tcp("127.0.0.1", port_of(listener))
        conn = await listener.accept()
        await listener.aclose()

        with pytest.raises(anyio.ClosedResourceError):
            await listener.accept()

        async with client, conn:
            await client.send(b"ping")
            assert await conn.read() == b"ping"

    @pytest.mark.asyncio
    async def test_bind_conflict(self):
        """Test binding a port in use raises OSError and logs the failure."""
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            address = f"127.0.0.1:{port_of(listener)}"
            with capture_logs() as logs:
                with pytest.raises(OSError):
                    await new_listener("tcp", address)
        events = [log["event"] for log in logs]
        assert "listener.bind_failed" in events

    @pytest.mark.asyncio
    async def test_unsupported_network(self):
        """Test an unknown network name is rejected."""
        with pytest.raises(UnsupportedNetworkError, match="Unsupported network: 'udp'"):
            await new_listener("udp", "127.0.0.1:0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", ["127.0.0.1", "127.0.0.1:http", "::1:80"])
    async def test_invalid_address(self, address):
        """Test malformed addresses are rejected."""
        with pytest.raises(ConfigurationError):
            await new_listener("tcp", address)

    @pytest.mark.asyncio
    async def test_timeouts_validated_before_binding(self, blackhole_network):
        """Test an invalid timeout fails before the network is touched."""
        with pytest.raises(ConfigurationError, match="read_timeout"):
            await new_listener("blackhole", "host:1", read_timeout=-1)

    @pytest.mark.asyncio
    @pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="no Unix sockets")
    async def test_unix_round_trip(self, tmp_path):
        """Test listening and dialing over a Unix socket."""
        path = str(tmp_path / "sock")
        async with await new_listener("unix", path, 5, 5) as listener:
            assert listener.local_address == path
            async with await connect(path, 5, network="unix") as client:
                async with await listener.accept() as conn:
                    await client.write(b"over unix")
                    assert await conn.read() == b"over unix"


class TestNewListenerTLS:
    """Tests for the new_listener_tls function."""

    @pytest.mark.asyncio
    async def test_handshake_and_alpn(self, cert_pair, client_ssl_context):
        """Test TLS is terminated and http/1.1 is negotiated through ALPN."""
        listener = await new_listener_tls("tcp", "127.0.0.1:0", *cert_pair, 5, 5)
        server_alpn = []

        async def serve():
            async with await listener.accept() as conn:
                data = await conn.read()
                await conn.write(data.upper())
                server_alpn.append(conn.extra(TLSAttribute.alpn_protocol))

        async with listener:
            with anyio.fail_after(10):
                async with anyio.create_task_group() as tg:
                    tg.start_soon(serve)
                    client = await anyio.connect_tcp(
                        "127.0.0.1",
                        port_of(listener),
                        ssl_context=client_ssl_context,
                        tls_standard_compatible=False,
                    )
                    async with client:
                        assert client.extra(TLSAttribute.alpn_protocol) == "http/1.1"
                        await client.send(b"hello")
                        assert await client.receive() == b"HELLO"

        assert server_alpn == ["http/1.1"]

    @pytest.mark.asyncio
    async def test_config_timeouts(self, cert_pair):
        """Test the TLS listener reads its timeouts from a config mapping."""
        listener = await new_listener_tls(
            "tcp", "127.0.0.1:0", *cert_pair, config={"read_timeout": "1.5"}
        )
        async with listener:
            assert listener.read_timeout == 1.5
            assert listener.write_timeout == 1.5

    @pytest.mark.asyncio
    async def test_idle_tls_connection_is_cut_off(self, cert_pair, client_ssl_context):
        """Test a TLS client that goes quiet after the handshake is cut off."""
        listener = await new_listener_tls("tcp", "127.0.0.1:0", *cert_pair, 0.3, 5)
        async with listener:
            async with tls_pair(listener, client_ssl_context) as (
                client,
                conn,
            ):
                await client.send(b"first")
                assert await conn.read() == b"first"
                with pytest.raises(DeadlineExceededError):
                    await conn.read()

    @pytest.mark.asyncio
    async def test_missing_certificate(self, blackhole_network, tmp_path):
        """Test a missing certificate fails before anything is bound."""
        with pytest.raises(CertificateError):
            await new_listener_tls(
                "blackhole",
                "host:1",
                str(tmp_path / "cert.pem"),
                str(tmp_path / "key.pem"),
            )

    @pytest.mark.asyncio
    async def test_disabled_alpn(self, cert_pair, client_ssl_context):
        """Test an empty protocol list negotiates no ALPN protocol."""
        listener = await new_listener_tls(
            "tcp", "127.0.0.1:0", *cert_pair, 5, 5, alpn_protocols=[]
        )
        async with listener:
            async with tls_pair(listener, client_ssl_context) as (
                client,
                _conn,
            ):
                assert client.extra(TLSAttribute.alpn_protocol) is None


class TestConnect:
    """Tests for the connect function."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        """Test a dialed connection talks to an accepted one."""
        async with await new_listener("tcp", "127.0.0.1:0", 5, 5) as listener:
            address = f"127.0.0.1:{port_of(listener)}"
            async with await connect(address, 5) as client:
                async with await listener.accept() as conn:
                    assert client.remote_address == conn.local_address
                    await client.write(b"request")
                    assert await conn.read() == b"request"
                    await conn.write(b"response")
                    assert await client.read() == b"response"

    @pytest.mark.asyncio
    async def test_timeouts(self):
        """Test the shared timeout is the default for each separate timeout."""
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            address = f"127.0.0.1:{port_of(listener)}"
            async with await connect(address, 4, write_timeout=1) as client:
                assert client.read_timeout == 4.0
                assert client.write_timeout == 1.0
                async with await listener.accept():
                    pass

    @pytest.mark.asyncio
    async def test_config_timeouts(self):
        """Test config timeouts apply below the shared and separate timeouts."""
        config = {"read_timeout": 2, "write_timeout": 3, "connect_timeout": 5}
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            address = f"127.0.0.1:{port_of(listener)}"
            async with await connect(address, config=config) as client:
                assert client.read_timeout == 2.0
                assert client.write_timeout == 3.0
                async with await listener.accept():
                    pass
            client = await connect(address, 4, write_timeout=1, config=config)
            async with client:
                assert client.read_timeout == 4.0
                assert client.write_timeout == 1.0
                async with await listener.accept():
                    pass

    @pytest.mark.asyncio
    async def test_idle_read_is_cut_off(self):
        """Test a dialed connection enforces its read timeout."""
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            address = f"127.0.0.1:{port_of(listener)}"
            async with await connect(address, read_timeout=0.2) as client:
                async with await listener.accept():
                    with pytest.raises(DeadlineExceededError):
                        await client.read()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test a refused connection raises OSError."""
        async with await new_listener("tcp", "127.0.0.1:0") as listener:
            address = f"127.0.0.1:{port_of(listener)}"
        with pytest.raises(OSError):
            await connect(address, 5)

    @pytest.mark.asyncio
    async def test_connect_timeout(self, blackhole_network):
        """Test a dial that never completes fails after the connect timeout."""
        start = current_time()
        with capture_logs() as logs:
            with pytest.raises(ConnectionTimeoutError, match="timed out after 0.2s"):
                await connect("10.0.0.1:80", connect_timeout=0.2, network="blackhole")
        elapsed = current_time() - start

        assert 0.15 <= elapsed < 2.0
        assert blackhole_network.dial_count == 1
        assert [log["event"] for log in logs] == ["dial.failed"]
        assert logs[0]["log_level"] == "warning"

    @pytest.mark.asyncio
    async def test_invalid_timeout(self, blackhole_network):
        """Test an invalid timeout fails before dialing."""
        with pytest.raises(ConfigurationError):
            await connect("10.0.0.1:80", -1, network="blackhole")
        assert blackhole_network.dial_count == 0
