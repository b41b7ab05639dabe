"""
Trust chain resolution through Authority Information Access (AIA) links.

Starting from a leaf, issuers are fetched from their CA Issuers URI until a
self-signed certificate is reached or no further link exists. Fetched issuer
certificates are cached on disk, one PEM file per URI.
"""

import hashlib
import logging
from collections.abc import Iterable
from pathlib import Path

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import AuthorityInformationAccessOID

from .console import ConsoleManager, console_manager
from .fingerprint import FingerprintReporter
from .types import CertificateLoadError, ChainFetchError

logger = logging.getLogger(__name__)

PEM_CERTIFICATE_MARKER = b"-----BEGIN CERTIFICATE-----"

_SHA256 = hashes.SHA256()


def cache_name(uri: str) -> str:
    """Cache file name for an issuer URI."""
    return hashlib.sha256(uri.encode("utf-8")).hexdigest()


def ca_issuers_uri(certificate: x509.Certificate) -> str | None:
    """Return the first CA Issuers URI of the AIA extension, if any."""
    try:
        aia = certificate.extensions.get_extension_for_class(
            x509.AuthorityInformationAccess
        )
    except x509.ExtensionNotFound:
        return None

    for description in aia.value:
        if description.access_method == AuthorityInformationAccessOID.CA_ISSUERS and (
            isinstance(description.access_location, x509.UniformResourceIdentifier)
        ):
            return str(description.access_location.value)
    return None


def parse_issuer_response(data: bytes) -> x509.Certificate:
    """Parse an AIA response: a bare X.509 certificate or a PKCS#7 bundle.

    For bundles the first certificate is used.

    Raises:
        ValueError: If the payload is neither
    """
    loaders = (
        lambda d: [x509.load_der_x509_certificate(d)],
        lambda d: [x509.load_pem_x509_certificate(d)],
        pkcs7.load_der_pkcs7_certificates,
        pkcs7.load_pem_pkcs7_certificates,
    )
    for loader in loaders:
        try:
            certificates = loader(data)
        except ValueError:
            continue
        if certificates:
            return certificates[0]
    raise ValueError("response is neither an X.509 certificate nor a PKCS#7 bundle")


def load_certificate(path: Path) -> x509.Certificate:
    """Load the first PEM certificate of a file.

    Raises:
        CertificateLoadError: If the file cannot be read or parsed
    """
    return load_chain_file(path)[0]


def load_chain_file(path: Path) -> list[x509.Certificate]:
    """Load every PEM certificate of a bundle file, in file order.

    Raises:
        CertificateLoadError: If the file cannot be read or holds no certificate
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise CertificateLoadError(f"Cannot read certificate file {path}: {e}") from e

    certificates = []
    for block in data.split(PEM_CERTIFICATE_MARKER)[1:]:
        try:
            certificates.append(
                x509.load_pem_x509_certificate(PEM_CERTIFICATE_MARKER + block)
            )
        except ValueError as e:
            raise CertificateLoadError(f"Failed to parse certificate {path}: {e}") from e

    if not certificates:
        raise CertificateLoadError(f"No certificate found in {path}")
    return certificates


class ChainResolver:
    """Builds the chain of a certificate by following issuer links."""

    def __init__(
        self,
        cache_dir: Path,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        console: ConsoleManager | None = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.console = console or console_manager

    def resolve(
        self, leaf: x509.Certificate, known: Iterable[x509.Certificate] = ()
    ) -> list[x509.Certificate]:
        """Return the chain of ``leaf``, leaf first.

        ``known`` are certificates already held ahead of ``leaf`` (the rest of a
        stored bundle); an issuer among them ends the walk.

        The walk stops at a self-signed certificate, at a certificate without a
        CA Issuers link, when the issuer URI answers with an error status, or
        when a fetched certificate is already part of the chain.

        Raises:
            ChainFetchError: If an issuer URI cannot be reached or parsed
        """
        chain = [leaf]
        seen = {c.fingerprint(_SHA256) for c in (leaf, *known)}

        while True:
            last = chain[-1]
            issuer = last.issuer
            if last.subject == issuer:
                break

            uri = ca_issuers_uri(last)
            if uri is None:
                logger.info("No CA Issuers link on %s, chain ends here", last.subject)
                break

            self.console.print(
                f"Fetch certificate {issuer.rfc4514_string()} from {uri}", markup=False
            )
            certificate = self.fetch_issuer(uri)
            if certificate is None:
                break

            if certificate.subject != issuer:
                message = (
                    f"expecting {issuer.rfc4514_string()}, "
                    f"get {certificate.subject.rfc4514_string()}"
                )
                logger.warning("Issuer mismatch: %s", message)
                self.console.print_warning(message)

            digest = certificate.fingerprint(_SHA256)
            if digest in seen:
                logger.warning("Issuer loop detected at %s", certificate.subject)
                break
            seen.add(digest)
            chain.append(certificate)

        return chain

    def fetch_issuer(self, uri: str) -> x509.Certificate | None:
        """Return the certificate behind ``uri``, from cache when possible.

        Returns None when the server answers with an error status.
        """
        cache_file = self.cache_dir / cache_name(uri)
        if cache_file.exists():
            logger.debug("Using cached issuer %s for %s", cache_file, uri)
            try:
                return x509.load_pem_x509_certificate(cache_file.read_bytes())
            except ValueError as e:
                raise CertificateLoadError(
                    f"Failed to parse cached certificate {cache_file}: {e}"
                ) from e

        try:
            response = self.session.get(uri, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChainFetchError(f"Failed to fetch issuer from {uri}: {e}") from e

        if not response.ok:
            logger.warning("Issuer fetch from %s returned %s", uri, response.status_code)
            return None

        try:
            certificate = parse_issuer_response(response.content)
        except ValueError as e:
            raise ChainFetchError(f"Invalid issuer certificate at {uri}: {e}") from e

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cache_file.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
        return certificate

    def report(
        self, chain: list[x509.Certificate], reporter: FingerprintReporter | None = None
    ) -> None:
        """Print the identity report of every certificate in the chain."""
        reporter = reporter or FingerprintReporter(self.console)
        for certificate in chain:
            reporter.report_certificate(certificate)
            self.console.print("")
