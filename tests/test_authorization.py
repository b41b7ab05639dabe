"""
Tests for per-domain HTTP-01 authorization.

The ACME client and the HTTP session are mocked; challenge files are written
to a temporary directory.
"""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from acmepki.acme_client import PendingAuthorization
from acmepki.authorization import AuthorizationCoordinator, challenge_url
from acmepki.console import ConsoleManager
from acmepki.types import (
    AuthorizationError,
    Error,
    SelfTestMismatch,
    SelfTestStatusError,
    Success,
    ValidationFailed,
)

TOKEN = "tok3n"
VALIDATION = "tok3n.thumbprint"


def pending(domain: str = "example.com", status: str = "pending") -> PendingAuthorization:
    return PendingAuthorization(
        domain=domain,
        status=status,
        token=TOKEN,
        validation=VALIDATION,
        resource=Mock(),
        challenge=Mock(),
        response=Mock(),
    )


@pytest.fixture
def client() -> Mock:
    client = Mock()
    client.poll_status.return_value = "valid"
    return client


@pytest.fixture
def session(http_response: Callable) -> Mock:
    session = Mock()
    session.get.return_value = http_response(text=VALIDATION)
    return session


@pytest.fixture
def coordinator(
    tmp_path: Path, client: Mock, session: Mock, test_console: ConsoleManager
) -> AuthorizationCoordinator:
    return AuthorizationCoordinator(
        client,
        tmp_path / "acme-challenge",
        session=session,
        sleep=Mock(),
        console=test_console,
    )


class TestChallengeUrl:
    def test_url(self) -> None:
        assert (
            challenge_url("example.com", "abc")
            == "http://example.com/.well-known/acme-challenge/abc"
        )


class TestAuthorize:
    """Test the full authorization cycle."""

    def test_already_valid_does_nothing(
        self,
        coordinator: AuthorizationCoordinator,
        client: Mock,
        session: Mock,
        tmp_path: Path,
    ) -> None:
        """An authorization that is already valid writes and requests nothing."""
        result = coordinator.authorize(pending(status="valid"))

        assert isinstance(result, Success)
        assert not (tmp_path / "acme-challenge").exists()
        session.get.assert_not_called()
        client.answer_challenge.assert_not_called()
        client.poll_status.assert_not_called()

    def test_success_removes_challenge_file(
        self,
        coordinator: AuthorizationCoordinator,
        client: Mock,
        session: Mock,
        tmp_path: Path,
        test_console: ConsoleManager,
    ) -> None:
        authz = pending()

        result = coordinator.authorize(authz)

        assert isinstance(result, Success)
        assert (tmp_path / "acme-challenge").is_dir()
        assert not (tmp_path / "acme-challenge" / TOKEN).exists()
        session.get.assert_called_once_with(
            challenge_url("example.com", TOKEN), allow_redirects=True, timeout=10.0
        )
        client.answer_challenge.assert_called_once_with(authz)
        output = test_console.console.export_text()
        assert "Authorizing domain example.com... [OK]" in output

    def test_polls_until_not_pending(
        self, coordinator: AuthorizationCoordinator, client: Mock
    ) -> None:
        client.poll_status.side_effect = ["pending", "pending", "valid"]

        result = coordinator.authorize(pending())

        assert isinstance(result, Success)
        assert client.poll_status.call_count == 3
        assert coordinator.sleep.call_count == 3  # type: ignore[attr-defined]

    def test_self_test_mismatch_skips_validation(
        self,
        coordinator: AuthorizationCoordinator,
        client: Mock,
        session: Mock,
        http_response: Callable,
        tmp_path: Path,
        test_console: ConsoleManager,
    ) -> None:
        """A failing self-test never asks the CA to validate."""
        session.get.return_value = http_response(text="something else")

        result = coordinator.authorize(pending())

        assert isinstance(result, Error)
        assert result.reason == SelfTestMismatch(
            url=challenge_url("example.com", TOKEN),
            expected=VALIDATION,
            actual="something else",
        )
        client.answer_challenge.assert_not_called()
        assert (tmp_path / "acme-challenge" / TOKEN).read_text() == VALIDATION
        assert "[KO]" in test_console.console.export_text()

    def test_self_test_status_error(
        self,
        coordinator: AuthorizationCoordinator,
        client: Mock,
        session: Mock,
        http_response: Callable,
    ) -> None:
        session.get.return_value = http_response(status_code=404, text="not found")

        result = coordinator.authorize(pending())

        assert isinstance(result, Error)
        assert isinstance(result.reason, SelfTestStatusError)
        assert result.reason.status_code == 404
        assert "Got response code 404" in result.error
        client.answer_challenge.assert_not_called()

    def test_self_test_transport_error(
        self, coordinator: AuthorizationCoordinator, session: Mock
    ) -> None:
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(AuthorizationError, match="Self-test request"):
            coordinator.authorize(pending())

    def test_invalid_status(
        self,
        coordinator: AuthorizationCoordinator,
        client: Mock,
        tmp_path: Path,
    ) -> None:
        client.poll_status.side_effect = ["pending", "invalid"]

        result = coordinator.authorize(pending())

        assert isinstance(result, Error)
        assert result.reason == ValidationFailed(domain="example.com", status="invalid")
        assert result.error == "Got status invalid instead of valid for example.com"
        assert (tmp_path / "acme-challenge" / TOKEN).exists()

    def test_pending_forever(
        self, coordinator: AuthorizationCoordinator, client: Mock
    ) -> None:
        """After 60 polls still pending, the domain fails as pending."""
        client.poll_status.return_value = "pending"

        result = coordinator.authorize(pending())

        assert isinstance(result, Error)
        assert result.reason == ValidationFailed(domain="example.com", status="pending")
        assert client.poll_status.call_count == 60

    def test_existing_challenge_dir_reused(
        self, coordinator: AuthorizationCoordinator, test_console: ConsoleManager
    ) -> None:
        coordinator.challenge_dir.mkdir(parents=True)

        coordinator.authorize(pending())

        assert "Creating directory" not in test_console.console.export_text()
