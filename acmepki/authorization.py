"""
Per-domain HTTP-01 authorization.

Drives one authorization through publish, self-test, validation request and
status polling. Expected failures are returned as ``Error`` results carrying
a specific failure kind; unexpected I/O and protocol errors propagate.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path

import requests

from .acme_client import ACMEClient, PendingAuthorization
from .console import ConsoleManager, console_manager
from .retry import poll_until
from .types import (
    AuthorizationError,
    Error,
    Result,
    SelfTestMismatch,
    SelfTestStatusError,
    Success,
    ValidationFailed,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_VALID = "valid"
WELL_KNOWN_PATH = "/.well-known/acme-challenge/"


def challenge_url(domain: str, token: str) -> str:
    return f"http://{domain}{WELL_KNOWN_PATH}{token}"


class AuthorizationCoordinator:
    """Proves control of one domain at a time through HTTP-01 challenges.

    Challenge files are written to ``challenge_dir``, which an external web
    server must publish under ``/.well-known/acme-challenge/``.
    """

    def __init__(
        self,
        client: ACMEClient,
        challenge_dir: Path,
        session: requests.Session | None = None,
        self_test_timeout: float = 10.0,
        poll_attempts: int = 60,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        console: ConsoleManager | None = None,
    ):
        self.client = client
        self.challenge_dir = Path(challenge_dir)
        self.session = session or requests.Session()
        self.self_test_timeout = self_test_timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.console = console or console_manager

    def authorize(self, authz: PendingAuthorization) -> Result:
        """Run the full challenge cycle for ``authz``.

        Returns:
            Success when the domain is (or already was) authorized; otherwise
            Error whose ``reason`` is a SelfTestStatusError, SelfTestMismatch
            or ValidationFailed. On failure the challenge file is left in place.
        """
        domain = authz.domain
        if authz.status == STATUS_VALID:
            logger.info("Domain %s is already authorized", domain)
            self.console.print(f"Domain {domain} already authorized", markup=False)
            return Success(message=f"{domain} already authorized")

        challenge_file = self.publish(authz)

        url = challenge_url(domain, authz.token)
        with self.console.process(f"Test challenge for {url}") as step:
            self_test_failure = self.self_test(url, authz.validation)
            if self_test_failure is not None:
                step.fail()
        if self_test_failure is not None:
            logger.warning("Self-test failed for %s: %s", domain, self_test_failure)
            return _failure_result(self_test_failure)

        with self.console.process(f"Authorizing domain {domain}") as step:
            self.client.answer_challenge(authz)
            status = poll_until(
                lambda: self.client.poll_status(authz),
                lambda s: s != STATUS_PENDING,
                attempts=self.poll_attempts,
                interval=self.poll_interval,
                sleep=self.sleep,
            )
            if status != STATUS_VALID:
                step.fail()
        if status != STATUS_VALID:
            logger.warning("Authorization of %s ended as %s", domain, status)
            return _failure_result(ValidationFailed(domain=domain, status=status))

        challenge_file.unlink(missing_ok=True)
        logger.info("Domain %s authorized, removed %s", domain, challenge_file)
        return Success(message=f"{domain} authorized")

    def publish(self, authz: PendingAuthorization) -> Path:
        """Write the challenge file named by the token."""
        if not self.challenge_dir.exists():
            with self.console.process(f"Creating directory {self.challenge_dir}"):
                self.challenge_dir.mkdir(parents=True, exist_ok=True)

        challenge_file = self.challenge_dir / authz.token
        with self.console.process(
            f"Writing challenge for {authz.domain} into {challenge_file}"
        ):
            challenge_file.write_text(authz.validation)
        return challenge_file

    def self_test(
        self, url: str, expected: str
    ) -> SelfTestStatusError | SelfTestMismatch | None:
        """Fetch the challenge as the CA would; return the failure kind, if any."""
        try:
            response = self.session.get(
                url, allow_redirects=True, timeout=self.self_test_timeout
            )
        except requests.RequestException as e:
            raise AuthorizationError(f"Self-test request to {url} failed: {e}") from e
        if not response.ok:
            return SelfTestStatusError(url=url, status_code=response.status_code)
        if response.text != expected:
            return SelfTestMismatch(url=url, expected=expected, actual=response.text)
        return None


def _failure_result(failure: ValidationFailure) -> Error:
    if isinstance(failure, SelfTestStatusError):
        message = f"Got response code {failure.status_code} from {failure.url}"
    elif isinstance(failure, SelfTestMismatch):
        message = f"Got {failure.actual!r}, expected {failure.expected!r}"
    else:
        message = f"Got status {failure.status} instead of valid for {failure.domain}"
    return Error(error=message, reason=failure)
