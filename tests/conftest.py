"""
Fixtures for pytest.

This file contains fixtures that can be used across all tests: an isolated
environment, recording consoles, configuration and certificate factories.
"""

from collections.abc import Callable, Generator
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest
from click.testing import CliRunner
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID
from rich.console import Console

from acmepki.config import CONFIG_FILE_ENV, ENV_MAPPINGS, PKIConfig, load_config
from acmepki.console import ConsoleManager
from acmepki.keys import KeyType

CertificateFactory = Callable[..., tuple[x509.Certificate, ec.EllipticCurvePrivateKey]]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Make sure no ACME_* variables from the host leak into a test."""
    for name in [*ENV_MAPPINGS, CONFIG_FILE_ENV]:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def test_console() -> ConsoleManager:
    """Fixture providing a ConsoleManager instance for testing.

    This instance has the console and error_console properties set to record
    output for verification in tests.
    """
    console_manager = ConsoleManager()
    console_manager.console = Console(record=True, width=400)
    console_manager.error_console = Console(stderr=True, record=True, width=400)
    return console_manager


@pytest.fixture
def pki_config(tmp_path: Path) -> PKIConfig:
    """Configuration rooted at a temporary working directory."""
    return load_config(tmp_path, environ={})


@pytest.fixture
def ecc_config(tmp_path: Path) -> PKIConfig:
    """Configuration whose default key type is a fast ECC curve."""
    config = load_config(tmp_path, environ={})
    return replace(config, default_key_type=KeyType.ecc("secp256r1"))


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click test runner."""
    return CliRunner()


@pytest.fixture
def make_certificate() -> CertificateFactory:
    """Factory building EC certificates, self-signed unless an issuer is given.

    Keyword arguments:
        common_name: Subject CN
        issuer: (certificate, key) of the issuing CA, or None for self-signed
        ca_issuers: URI to put in the AIA CA Issuers field
        not_after: Expiry instant (defaults to 90 days from now)
        domains: subjectAltName DNS names
    """

    def factory(
        common_name: str = "example.com",
        issuer: tuple[x509.Certificate, ec.EllipticCurvePrivateKey] | None = None,
        ca_issuers: str | None = None,
        not_after: datetime | None = None,
        domains: list[str] | None = None,
    ) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
        key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        if issuer is None:
            issuer_name, signing_key = subject, key
        else:
            issuer_name, signing_key = issuer[0].subject, issuer[1]

        now = datetime.now(timezone.utc)
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(not_after or now + timedelta(days=90))
        )
        if ca_issuers:
            builder = builder.add_extension(
                x509.AuthorityInformationAccess(
                    [
                        x509.AccessDescription(
                            AuthorityInformationAccessOID.CA_ISSUERS,
                            x509.UniformResourceIdentifier(ca_issuers),
                        )
                    ]
                ),
                critical=False,
            )
        if domains:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                critical=False,
            )
        return builder.sign(signing_key, hashes.SHA256()), key

    return factory


@pytest.fixture
def http_response() -> Callable[..., Mock]:
    """Factory for requests-like response mocks."""

    def factory(status_code: int = 200, text: str = "", content: bytes = b"") -> Mock:
        response = Mock()
        response.status_code = status_code
        response.ok = status_code < 400
        response.text = text
        response.content = content or text.encode("utf-8")
        return response

    return factory
