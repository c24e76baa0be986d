"""Shared pytest fixtures and configuration."""

import ipaddress
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from redis_exporter.settings import ExporterOptions


@dataclass(frozen=True)
class TLSBundle:
    ca_cert: Path
    server_cert: Path
    server_key: Path
    client_cert: Path
    client_key: Path
    other_ca_cert: Path
    other_client_cert: Path
    other_client_key: Path


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _write_key(key: ec.EllipticCurvePrivateKey, path: Path) -> Path:
    path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


def _write_cert(cert: x509.Certificate, path: Path) -> Path:
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return path


def _issue_ca(common_name: str) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(_name(common_name))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    return cert, key


def _issue_leaf(
    common_name: str,
    ca_cert: x509.Certificate,
    ca_key: ec.EllipticCurvePrivateKey,
    usage: x509.ObjectIdentifier,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
    )
    if usage == ExtendedKeyUsageOID.SERVER_AUTH:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                ]
            ),
            critical=False,
        )
    return builder.sign(ca_key, hashes.SHA256()), key


@pytest.fixture(scope="session")
def tls_bundle(tmp_path_factory) -> TLSBundle:
    """CA, server and client certificates, plus a client from an unrelated CA."""
    out = tmp_path_factory.mktemp("tls")

    ca_cert, ca_key = _issue_ca("redis-exporter test CA")
    server_cert, server_key = _issue_leaf(
        "localhost", ca_cert, ca_key, ExtendedKeyUsageOID.SERVER_AUTH
    )
    client_cert, client_key = _issue_leaf(
        "scraper", ca_cert, ca_key, ExtendedKeyUsageOID.CLIENT_AUTH
    )
    other_ca_cert, other_ca_key = _issue_ca("unrelated CA")
    other_client_cert, other_client_key = _issue_leaf(
        "intruder", other_ca_cert, other_ca_key, ExtendedKeyUsageOID.CLIENT_AUTH
    )

    return TLSBundle(
        ca_cert=_write_cert(ca_cert, out / "ca.crt"),
        server_cert=_write_cert(server_cert, out / "server.crt"),
        server_key=_write_key(server_key, out / "server.key"),
        client_cert=_write_cert(client_cert, out / "client.crt"),
        client_key=_write_key(client_key, out / "client.key"),
        other_ca_cert=_write_cert(other_ca_cert, out / "other-ca.crt"),
        other_client_cert=_write_cert(other_client_cert, out / "other-client.crt"),
        other_client_key=_write_key(other_client_key, out / "other-client.key"),
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clean_exporter_env(monkeypatch):
    """Remove exporter environment variables inherited from the host."""
    for name in list(os.environ):
        if name.startswith("REDIS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_options():
    """Factory for ExporterOptions with test defaults."""

    def _make(**overrides) -> ExporterOptions:
        defaults = {
            "namespace": "redis",
            "metrics_path": "/metrics",
        }
        defaults.update(overrides)
        return ExporterOptions(**defaults)

    return _make
