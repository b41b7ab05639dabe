"""
Certificate signing request building and parsing.
"""

import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from .console import console_manager
from .keystore import KeyStore
from .types import CSRError

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    """Convert a hostname to its ASCII (IDNA) form."""
    try:
        return domain.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise CSRError(f"Invalid domain name {domain!r}: {e}") from e


def unique(domains: list[str]) -> list[str]:
    """Drop duplicates, keeping the order of first appearance."""
    return list(dict.fromkeys(domains))


class CsrBuilder:
    """Builds CSRs for a set of domains and reads their domains back."""

    def __init__(self, keystore: KeyStore):
        self.keystore = keystore

    def build(
        self,
        primary_domain: str,
        additional_domains: list[str] | None = None,
        key_name: str | None = None,
    ) -> tuple[Path, x509.CertificateSigningRequest]:
        """Build, sign and persist a CSR.

        The key stored under ``key_name`` (defaulting to the primary domain) is
        generated with the store's default type when missing. The primary
        domain becomes the subject CN and the first subjectAltName entry.

        Returns:
            Tuple of (csr_path, csr)

        Raises:
            KeyLoadError: If an existing key file cannot be parsed
        """
        key_name = key_name or primary_domain
        domains = unique(
            [normalize_domain(d) for d in [primary_domain, *(additional_domains or [])]]
        )
        csr_file = self.keystore.csr_path(primary_domain)
        key_file, key = self.keystore.load_or_generate(key_name)

        with console_manager.process(
            f"Generating CSR for {', '.join(domains)} with key {key_file} "
            f"into {csr_file}"
        ):
            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(
                    x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=True,
                        key_encipherment=True,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=False,
                )
                .add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                    critical=False,
                )
                .sign(key.private_key, hashes.SHA512())
            )
            csr_file.parent.mkdir(parents=True, exist_ok=True)
            csr_file.write_bytes(csr.public_bytes(serialization.Encoding.PEM))

        logger.info("Wrote CSR for %s to %s", domains, csr_file)
        return csr_file, csr

    @staticmethod
    def load(path: Path) -> x509.CertificateSigningRequest:
        """Read a PEM CSR from disk.

        Raises:
            CSRError: If the file cannot be read or parsed
        """
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise CSRError(f"Cannot read CSR file {path}: {e}") from e
        try:
            return x509.load_pem_x509_csr(data)
        except ValueError as e:
            raise CSRError(f"Failed to parse CSR {path}: {e}") from e

    @staticmethod
    def extract_domains(csr: x509.CertificateSigningRequest) -> list[str]:
        """Recover the domain list of a CSR: CN first, then SAN DNS names, deduplicated.

        Extensions are read from either the PKCS#9 extensionRequest attribute or
        its Microsoft counterpart (1.3.6.1.4.1.311.2.1.14). A CSR without one
        simply yields its CN.
        """
        domains = [
            str(attr.value)
            for attr in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[:1]
        ]

        try:
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            logger.debug("CSR %s has no subjectAltName extension", csr.subject)
        else:
            domains.extend(san.value.get_values_for_type(x509.DNSName))

        return unique(domains)
