"""
Wiring of the certificate lifecycle components.

``PKI`` builds every component once from a ``PKIConfig`` and exposes the
operations the command line offers.
"""

import time
from collections.abc import Callable

import requests
from cryptography import x509

from .acme_client import ACMEClient
from .authorization import AuthorizationCoordinator
from .chain import ChainResolver, load_certificate, load_chain_file
from .config import PKIConfig
from .console import ConsoleManager, console_manager
from .csr import CsrBuilder
from .fingerprint import FingerprintReporter
from .keys import KeyType
from .keystore import KeyStore
from .order import OrderCoordinator
from .renewal import RenewalPolicy


class PKI:
    """Certificate lifecycle for one working directory."""

    def __init__(
        self,
        config: PKIConfig,
        client: ACMEClient | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        console: ConsoleManager | None = None,
    ):
        self.config = config
        self.console = console or console_manager
        session = session or requests.Session()
        session.headers["User-Agent"] = config.user_agent

        self.client = client or ACMEClient(config)
        self.keystore = KeyStore(config.directory, config.default_key_type)
        self.csr_builder = CsrBuilder(self.keystore)
        self.reporter = FingerprintReporter(self.console)
        self.authorizer = AuthorizationCoordinator(
            self.client,
            config.challenge_dir,
            session=session,
            self_test_timeout=config.self_test_timeout,
            poll_attempts=config.poll_attempts,
            poll_interval=config.poll_interval,
            sleep=sleep,
            console=self.console,
        )
        self.orders = OrderCoordinator(
            self.client,
            self.keystore,
            self.csr_builder,
            self.authorizer,
            reporter=self.reporter,
            console=self.console,
        )
        self.renewal = RenewalPolicy(
            self.orders, threshold=config.renew_threshold, console=self.console
        )
        self.chain = ChainResolver(
            config.cache_dir,
            timeout=config.chain_fetch_timeout,
            session=session,
            console=self.console,
        )

    def register(self) -> None:
        """Ensure the account key exists and is known to the CA."""
        self.client.connect()

    def generate_key(self, name: str, key_type: KeyType | None = None) -> None:
        _, key = self.keystore.generate(name, key_type)
        self.reporter.report_key(key)

    def generate_csr(
        self, name: str, domains: list[str] | None = None, key: str | None = None
    ) -> None:
        self.csr_builder.build(name, domains or [], key_name=key)

    def generate_crt(self, name: str, csr: str | None = None) -> x509.Certificate:
        self.client.load_account_key()
        return self.orders.generate_crt(name, csr)

    def renew(self, name: str, csr: str | None = None, threshold: int | None = None) -> bool:
        """Renew certificate ``name`` when needed; see RenewalPolicy.renew."""
        self.client.load_account_key()
        return self.renewal.renew(
            self.keystore.crt_path(name),
            self.keystore.csr_path(csr or name),
            threshold,
        )

    def key_info(self, name: str) -> None:
        self.reporter.report_key(self.keystore.load(name))

    def crt_info(self, name: str) -> None:
        self.reporter.report_certificate(load_certificate(self.keystore.crt_path(name)))

    def chain_info(self, name: str) -> list[x509.Certificate]:
        """Resolve and report the chain stored with certificate ``name``."""
        bundle = load_chain_file(self.keystore.crt_path(name))
        chain = bundle[:-1] + self.chain.resolve(bundle[-1], known=bundle[:-1])
        self.chain.report(chain, self.reporter)
        return chain

