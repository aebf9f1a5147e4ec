"""
Pytest configuration for netdeadline tests.

This module contains fixtures shared by the test suite: a self-signed
certificate pair for the TLS tests and a throwaway network family whose
dials never complete.
"""

import datetime
import ssl

import anyio
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from netdeadline.stream.registry import get_network_registry


def _write_cert_pair(directory):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=7))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False
        )
        .sign(key, hashes.SHA256())
    )

    cert_file = directory / "cert.pem"
    key_file = directory / "key.pem"
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return str(cert_file), str(key_file)


@pytest.fixture(scope="session")
def cert_pair(tmp_path_factory):
    """Fixture providing (cert_file, key_file) paths of a self-signed certificate."""
    return _write_cert_pair(tmp_path_factory.mktemp("certs"))


@pytest.fixture
def client_ssl_context():
    """Client-side context that skips verification and offers h2 and http/1.1."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_alpn_protocols(["h2", "http/1.1"])
    return context


class BlackholeNetwork:
    """Network family whose dials hang until cancelled."""

    def __init__(self):
        self.dial_count = 0

    async def listen(self, address):
        raise OSError("blackhole networks cannot listen")

    async def dial(self, address, local_address=None):
        self.dial_count += 1
        await anyio.sleep_forever()


@pytest.fixture
def blackhole_network():
    """Fixture that registers a network whose dials never complete."""
    network = BlackholeNetwork()
    registry = get_network_registry()
    registry.register("blackhole", network)
    yield network
    # Clean up
    del registry._networks["blackhole"]
