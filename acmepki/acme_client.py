"""
ACME protocol client.

Thin wrapper around the ``acme`` library exposing the operations the
lifecycle needs: account bootstrap, order creation, HTTP-01 authorization
details, challenge answering, authorization polling and finalization.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

import acme.challenges
import acme.client
import acme.errors
import acme.messages
import josepy as jose
import requests
from cryptography.hazmat.primitives.asymmetric import rsa

from .config import PKIConfig
from .console import console_manager
from .keys import KeyType, generate_key, load_key
from .types import ACMEProtocolError, ConfigurationError, KeyLoadError

logger = logging.getLogger(__name__)

HTTP01 = "http-01"
ACCOUNT_DOES_NOT_EXIST = "accountDoesNotExist"


def _account_does_not_exist(error: acme.errors.Error) -> bool:
    if isinstance(error, acme.messages.Error):
        return error.code == ACCOUNT_DOES_NOT_EXIST
    return ACCOUNT_DOES_NOT_EXIST in str(error)


@dataclass
class PendingAuthorization:
    """One domain's authorization together with its HTTP-01 challenge."""

    domain: str
    status: str
    token: str
    validation: str
    resource: acme.messages.AuthorizationResource
    challenge: acme.messages.ChallengeBody
    response: acme.challenges.ChallengeResponse


class ACMEClient:
    """ACME client bound to one account key and directory.

    The account key is read from ``<directory>/<account_key>``. When it does
    not exist a new RSA key is generated and registered, which requires a
    contact email.
    """

    def __init__(self, config: PKIConfig):
        self.config = config
        self.directory_url = config.endpoint
        self.email = config.email
        self._client: acme.client.ClientV2 | None = None
        self._account_key: jose.JWKRSA | None = None
        self._new_account = False

    def load_account_key(self) -> jose.JWKRSA:
        """Load the account key, generating it when missing.

        Raises:
            ConfigurationError: If no key exists and no contact email is set
            KeyLoadError: If the existing key cannot be used
        """
        if self._account_key is not None:
            return self._account_key

        key_file = self.config.account_key_path
        if key_file.exists():
            key = load_key(key_file)
            if not isinstance(key.private_key, rsa.RSAPrivateKey):
                raise KeyLoadError(f"Account key {key_file} must be an RSA key")
            self._account_key = jose.JWKRSA(key=key.private_key)
            return self._account_key

        if not self.email:
            raise ConfigurationError(
                "No registration key found.",
                guidance=(
                    "Please define ACME_MAIL_REGISTRATION environment variable "
                    "for registration"
                ),
            )

        key_type = KeyType.rsa(self.config.account_key_bits)
        with console_manager.process(
            f"Generating {key_type} account key into {key_file}"
        ):
            key = generate_key(key_type)
            key_file.parent.mkdir(parents=True, exist_ok=True)
            key_file.write_bytes(key.to_pem())
            os.chmod(key_file, 0o600)

        self._new_account = True
        self._account_key = jose.JWKRSA(key=key.private_key)
        return self._account_key

    def _ensure_client(self) -> acme.client.ClientV2:
        """Ensure ACME client is initialized and the account is known."""
        if self._client is None:
            account_key = self.load_account_key()
            net = acme.client.ClientNetwork(
                key=account_key, user_agent=self.config.user_agent
            )
            try:
                directory = acme.messages.Directory.from_json(
                    net.get(self.directory_url).json()
                )
            except (acme.errors.Error, requests.RequestException, ValueError) as e:
                raise ACMEProtocolError(
                    f"Failed to fetch ACME directory {self.directory_url}: {e}"
                ) from e
            self._client = acme.client.ClientV2(directory, net=net)
            self.register_account()
        return self._client

    def connect(self) -> None:
        """Load the account key, fetch the directory and resolve the account."""
        self._ensure_client()

    def register_account(self) -> None:
        """Register a new account, or look up the one bound to an existing key.

        A key left on disk without an account (an earlier run stopped before
        registering) is registered anew when a contact email is configured.
        """
        assert self._client is not None  # set by _ensure_client

        if self._new_account:
            self._register_new()
            return

        try:
            self._client.new_account(
                acme.messages.NewRegistration.from_data(
                    terms_of_service_agreed=True, only_return_existing=True
                )
            )
        except acme.errors.ConflictError as e:
            # An existing account answers 200 with its URL in Location
            self._client.net.account = acme.messages.RegistrationResource(
                uri=e.location, body=acme.messages.Registration()
            )
            logger.info("Using existing ACME account %s", e.location)
        except acme.errors.Error as e:
            if not (self.email and _account_does_not_exist(e)):
                raise ACMEProtocolError(f"Failed to look up ACME account: {e}") from e
            logger.info("No ACME account bound to %s", self.config.account_key_path)
            self._register_new()

    def _register_new(self) -> None:
        assert self._client is not None
        with console_manager.process(
            f"Registering account key {self.config.account_key_path}"
        ):
            registration = acme.messages.NewRegistration.from_data(
                email=self.email, terms_of_service_agreed=True
            )
            try:
                self._client.new_account(registration)
            except acme.errors.Error as e:
                raise ACMEProtocolError(f"Account registration failed: {e}") from e
        logger.info("ACME account registered for %s", self.email)
        self._new_account = False

    def new_order(self, csr_pem: bytes) -> acme.messages.OrderResource:
        """Create an order for the identifiers named in ``csr_pem``."""
        client = self._ensure_client()
        try:
            order = client.new_order(csr_pem)
        except acme.errors.Error as e:
            raise ACMEProtocolError(f"Order creation failed: {e}") from e
        logger.info("Created ACME order: %s", order.uri)
        return order

    def authorizations(
        self, order: acme.messages.OrderResource
    ) -> list[PendingAuthorization]:
        """Describe each authorization of ``order`` by its HTTP-01 challenge."""
        account_key = self.load_account_key()
        pending = []
        for authz in order.authorizations:
            domain = authz.body.identifier.value
            challenge_body = next(
                (c for c in authz.body.challenges if c.chall.typ == HTTP01), None
            )
            if challenge_body is None:
                raise ACMEProtocolError(f"No {HTTP01} challenge found for domain {domain}")

            response, validation = challenge_body.chall.response_and_validation(
                account_key
            )
            pending.append(
                PendingAuthorization(
                    domain=domain,
                    status=authz.body.status.name,
                    token=challenge_body.chall.encode("token"),
                    validation=validation,
                    resource=authz,
                    challenge=challenge_body,
                    response=response,
                )
            )
        return pending

    def answer_challenge(self, authz: PendingAuthorization) -> None:
        """Ask the CA to validate the challenge of ``authz``."""
        client = self._ensure_client()
        try:
            client.answer_challenge(authz.challenge, authz.response)
        except acme.errors.Error as e:
            raise ACMEProtocolError(
                f"Validation request for {authz.domain} failed: {e}"
            ) from e

    def poll_status(self, authz: PendingAuthorization) -> str:
        """Fetch the current status of ``authz``, updating it in place."""
        client = self._ensure_client()
        try:
            updated, _ = client.poll(authz.resource)
        except acme.errors.Error as e:
            raise ACMEProtocolError(
                f"Polling authorization for {authz.domain} failed: {e}"
            ) from e
        authz.resource = updated
        authz.status = updated.body.status.name
        return authz.status

    def finalize_order(self, order: acme.messages.OrderResource) -> str:
        """Finalize ``order`` with its CSR and return the full chain PEM."""
        client = self._ensure_client()
        deadline = datetime.now() + timedelta(seconds=self.config.finalize_timeout)
        try:
            final_order = client.finalize_order(order, deadline)
        except acme.errors.Error as e:
            raise ACMEProtocolError(f"Order finalization failed: {e}") from e
        if not final_order.fullchain_pem:
            raise ACMEProtocolError("Order finalized without a certificate")
        return final_order.fullchain_pem
