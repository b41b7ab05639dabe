"""
Certificate issuance.

Turns a CSR into a certificate: create the order, authorize every domain in
turn, finalize, then persist the full chain. Nothing is written unless every
authorization succeeded and the order was finalized.
"""

import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .acme_client import ACMEClient
from .authorization import AuthorizationCoordinator
from .console import ConsoleManager, console_manager
from .csr import CsrBuilder
from .fingerprint import FingerprintReporter
from .keystore import KeyStore
from .types import AuthorizationError, CertificateLoadError, Error

logger = logging.getLogger(__name__)


class OrderCoordinator:
    """Issues certificates for CSRs stored in the key store."""

    def __init__(
        self,
        client: ACMEClient,
        keystore: KeyStore,
        csr_builder: CsrBuilder,
        authorizer: AuthorizationCoordinator,
        reporter: FingerprintReporter | None = None,
        console: ConsoleManager | None = None,
    ):
        self.client = client
        self.keystore = keystore
        self.csr_builder = csr_builder
        self.authorizer = authorizer
        self.console = console or console_manager
        self.reporter = reporter or FingerprintReporter(self.console)

    def issue(self, csr_path: Path, crt_path: Path) -> x509.Certificate:
        """Issue a certificate for the CSR at ``csr_path`` into ``crt_path``.

        Domains are authorized sequentially; the first failing authorization
        aborts the run.

        Returns:
            The issued leaf certificate

        Raises:
            AuthorizationError: If a domain could not be authorized
            ACMEProtocolError: If order creation or finalization fails
            CSRError: If the CSR cannot be read
        """
        csr = self.csr_builder.load(csr_path)
        domains = self.csr_builder.extract_domains(csr)
        logger.info("Issuing certificate for %s from %s", domains, csr_path)

        order = self.client.new_order(csr.public_bytes(serialization.Encoding.PEM))

        for authz in self.client.authorizations(order):
            result = self.authorizer.authorize(authz)
            if isinstance(result, Error):
                raise AuthorizationError(
                    f"Authorization of {authz.domain} failed: {result.error}",
                    reason=result.reason,
                )

        with self.console.process(f"Generating CRT {crt_path} from CSR {csr_path}"):
            fullchain_pem = self.client.finalize_order(order)
            try:
                certificate = x509.load_pem_x509_certificate(
                    fullchain_pem.encode("ascii")
                )
            except ValueError as e:
                raise CertificateLoadError(
                    f"CA returned an unreadable certificate: {e}"
                ) from e
            crt_path.parent.mkdir(parents=True, exist_ok=True)
            crt_path.write_text(fullchain_pem)

        logger.info("Certificate for %s written to %s", domains, crt_path)
        self.reporter.report_certificate(certificate)
        return certificate

    def generate_crt(self, name: str, csr_name: str | None = None) -> x509.Certificate:
        """Issue the certificate ``name``, building its CSR first when missing."""
        csr_name = csr_name or name
        csr_path = self.keystore.csr_path(csr_name)
        if not csr_path.exists():
            self.csr_builder.build(csr_name)
        return self.issue(csr_path, self.keystore.crt_path(name))
