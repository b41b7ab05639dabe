"""
Identity digests for keys and certificates.

Renders fingerprints, HPKP pins and TLSA records. The digest helpers are pure;
``FingerprintReporter`` prints them through the console manager.
"""

import base64
import hashlib

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .console import ConsoleManager, console_manager
from .keys import KeyMaterial

FINGERPRINT_ALGORITHMS = ("sha512", "sha256", "sha1")
HPKP_MAX_AGE = 5184000

# TLSA usage/selector/matching-type: DANE-EE with SHA-512 over the key or cert
TLSA_PUBLIC_KEY = "1 1 2"
TLSA_CERTIFICATE = "1 0 2"


def fingerprint(der: bytes, algorithm: str) -> str:
    """Colon-separated hex digest of ``der``."""
    digest = hashlib.new(algorithm, der).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def fingerprints(der: bytes) -> dict[str, str]:
    """SHA-512, SHA-256 and SHA-1 fingerprints keyed by algorithm label."""
    return {alg.upper(): fingerprint(der, alg) for alg in FINGERPRINT_ALGORITHMS}


def hpkp_pin(der: bytes) -> str:
    """Base64 SHA-256 digest, as used in a Public-Key-Pins header."""
    return base64.b64encode(hashlib.sha256(der).digest()).decode("ascii")


def hpkp_header(der: bytes) -> str:
    return f'Public-Key-Pins "max-age={HPKP_MAX_AGE}; pin-sha256=\\"{hpkp_pin(der)}\\";'


def tlsa_record(der: bytes, public_key: bool = True) -> str:
    """TLSA record data: ``1 1 2`` for a public key, ``1 0 2`` for a certificate."""
    params = TLSA_PUBLIC_KEY if public_key else TLSA_CERTIFICATE
    return f"TLSA {params} {hashlib.sha512(der).hexdigest()}"


def public_key_der(public_key: object) -> bytes:
    return public_key.public_bytes(  # type: ignore[attr-defined]
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


class FingerprintReporter:
    """Prints identity information for keys and certificates."""

    def __init__(self, console: ConsoleManager | None = None):
        self.console = console or console_manager

    def report_fingerprints(self, der: bytes, indent: int = 0) -> None:
        self.console.print_title("Fingerprint", indent)
        for label, value in fingerprints(der).items():
            self.console.print_value(value, indent + 1, label=label)

    def report_public_key(self, der: bytes, indent: int = 0) -> None:
        """Report a SubjectPublicKeyInfo DER blob."""
        self.report_fingerprints(der, indent)
        self.console.print_title("HPKP", indent)
        self.console.print_value(hpkp_header(der), indent + 1)
        self.console.print_title("TLSA", indent)
        self.console.print_value(tlsa_record(der, public_key=True), indent + 1)

    def report_key(self, key: KeyMaterial, indent: int = 0) -> None:
        self.report_public_key(key.public_der(), indent)

    def report_certificate(self, certificate: x509.Certificate) -> None:
        self.console.print_title("Subject")
        self.console.print_value(certificate.subject.rfc4514_string())
        self.console.print_title("Issuer")
        self.console.print_value(certificate.issuer.rfc4514_string())

        der = certificate.public_bytes(serialization.Encoding.DER)
        self.report_fingerprints(der)
        self.console.print_title("HPKP")
        self.console.print_value(hpkp_header(der))
        self.console.print_title("TLSA")
        self.console.print_value(tlsa_record(der, public_key=False))

        self.console.print_title("Public key")
        self.report_public_key(public_key_der(certificate.public_key()), indent=1)
