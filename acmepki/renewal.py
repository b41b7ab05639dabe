"""
Renewal decisions.

A certificate is reissued when it does not exist yet or when its remaining
validity is at or below the configured threshold.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from .chain import load_certificate
from .console import ConsoleManager, console_manager
from .keystore import reverse_name
from .order import OrderCoordinator

logger = logging.getLogger(__name__)

DEFAULT_RENEW_THRESHOLD = 60 * 60 * 24 * 30  # 1 month

# (units per next order, unit name), smallest unit first
DURATION_UNITS = [
    (60, "seconds"),
    (60, "minutes"),
    (24, "hours"),
    (30, "days"),
    (12, "months"),
]


def humanize(seconds: float) -> str:
    """Render a duration largest unit first, e.g. 90 -> "1 minutes 30 seconds".

    Units are computed by successive integer division and truncated; higher
    units are only shown once the remainder is non-zero. Zero renders as "".
    """
    remaining = int(seconds)
    parts = []
    for count, name in DURATION_UNITS:
        if remaining <= 0:
            break
        remaining, value = divmod(remaining, count)
        parts.append(f"{value} {name}")
    return " ".join(reversed(parts))


class RenewalPolicy:
    """Decides whether a certificate needs reissuance, and reissues it."""

    def __init__(
        self,
        orders: OrderCoordinator,
        threshold: int = DEFAULT_RENEW_THRESHOLD,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        console: ConsoleManager | None = None,
    ):
        self.orders = orders
        self.threshold = threshold
        self.now = now
        self.console = console or console_manager

    def remaining(self, crt_path: Path) -> float:
        """Seconds of validity left for the certificate at ``crt_path``."""
        certificate = load_certificate(crt_path)
        return (certificate.not_valid_after_utc - self.now()).total_seconds()

    def renew(
        self,
        crt_path: Path,
        csr_path: Path,
        threshold: int | None = None,
    ) -> bool:
        """Reissue the certificate at ``crt_path`` when needed.

        Returns:
            True when a new certificate was issued, False when renewal was skipped
        """
        threshold = self.threshold if threshold is None else threshold
        self.console.print(f"Renewing {crt_path} CRT from {csr_path} CSR", markup=False)

        if crt_path.exists():
            remaining = self.remaining(crt_path)
            if remaining > threshold:
                self.console.print(
                    f"No need to renew ({humanize(remaining)})", markup=False
                )
                logger.info("%s valid for %d more seconds", crt_path, remaining)
                return False

        if not csr_path.exists():
            # Key store paths hold the reversed name; undo that to rebuild
            self.orders.csr_builder.build(reverse_name(csr_path.stem))

        self.orders.issue(csr_path, crt_path)
        return True
