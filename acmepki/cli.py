"""
Command-line interface for acmepki.

Each command builds its Result through a helper so errors reach the operator
the same way: printed by the console manager, then exit code 1.
"""

import re
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from . import __version__
from .config import load_config
from .console import console_manager
from .keys import KeyType
from .logutil import init_logging, logger
from .pki import PKI
from .types import ConfigurationError, Error, PKIError, Result, Success

DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhdwM]?)\s*$")
DURATION_UNITS = {
    "": 1,
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 60 * 60 * 24,
    "w": 60 * 60 * 24 * 7,
    "M": 60 * 60 * 24 * 30,
}


def parse_duration(duration_str: str) -> Result:
    """Parse a duration like ``30d``, ``12h``, ``2w``, ``1M`` or bare seconds into seconds."""
    match = DURATION_PATTERN.match(duration_str)
    if not match:
        return Error(
            error=f"Invalid duration: {duration_str!r}. Use e.g. '30d', '12h' or '3600'"
        )
    amount, unit = match.groups()
    return Success(data=int(amount) * DURATION_UNITS[unit])


def handle_result(result: Result, exit_on_error: bool = True) -> None:
    """Handle command results using console manager."""
    exit_code = 0
    if isinstance(result, Success):
        if result.message:
            console_manager.print_success(result.message)
        logger.debug("Success result, final exit_code: %d", exit_code)
    elif isinstance(result, Error):
        console_manager.print_error(result.error)
        if result.recovery_suggestions:
            console_manager.print_note(result.recovery_suggestions)
        exit_code = 1
        logger.debug("Error result: %s", result.error, exc_info=result.exception)

    if exit_on_error:
        sys.exit(exit_code)


def _run(action: str, func: Callable[[], Any], message: str = "") -> Result:
    """Run ``func`` and turn acmepki errors into an Error result.

    The return value of ``func`` is kept as the Success data.
    """
    try:
        data = func()
    except ConfigurationError as e:
        return Error(error=str(e), exception=e, recovery_suggestions=e.guidance)
    except PKIError as e:
        return Error(error=f"{action} failed: {e}", exception=e)
    return Success(message=message, data=data)


def _pki(ctx: click.Context) -> PKI:
    return PKI(ctx.obj["config"])


@click.group()
@click.version_option(__version__)
@click.option(
    "--directory",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory for keys, CSRs and certificates (default: cwd)",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level",
)
@click.pass_context
def cli(
    ctx: click.Context,
    directory: Path | None,
    config_file: Path | None,
    log_level: str | None,
) -> None:
    """acmepki - certificate lifecycle through ACME HTTP-01 validation"""
    ctx.ensure_object(dict)
    try:
        config = load_config(directory, config_file)
    except ConfigurationError as e:
        handle_result(Error(error=str(e), exception=e, recovery_suggestions=e.guidance))
        return
    init_logging(log_level or config.log_level)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def register(ctx: click.Context) -> None:
    """Create (if needed) and register the account key."""
    pki = _pki(ctx)
    handle_result(_run("Registration", pki.register, "Account ready"))


@cli.command()
@click.argument("name")
@click.option("--rsa", "rsa_bits", type=int, default=None, help="RSA key size in bits")
@click.option("--ecc", "ecc_curve", default=None, help="ECC curve name")
@click.pass_context
def key(ctx: click.Context, name: str, rsa_bits: int | None, ecc_curve: str | None) -> None:
    """Generate a private key for NAME."""
    if rsa_bits and ecc_curve:
        handle_result(Error(error="Use either --rsa or --ecc, not both"))
        return
    try:
        key_type = (
            KeyType.rsa(rsa_bits) if rsa_bits
            else KeyType.ecc(ecc_curve) if ecc_curve
            else None
        )
    except ValueError as e:
        handle_result(Error(error=str(e), exception=e))
        return
    pki = _pki(ctx)
    handle_result(_run("Key generation", lambda: pki.generate_key(name, key_type)))


@cli.command()
@click.argument("name")
@click.option("--domain", "domains", multiple=True, help="Additional domain (repeatable)")
@click.option("--key", "key_name", default=None, help="Key name (default: NAME)")
@click.pass_context
def csr(ctx: click.Context, name: str, domains: tuple[str, ...], key_name: str | None) -> None:
    """Generate a CSR for NAME and any additional domains."""
    pki = _pki(ctx)
    handle_result(
        _run("CSR generation", lambda: pki.generate_csr(name, list(domains), key_name))
    )


@cli.command()
@click.argument("name")
@click.option("--csr", "csr_name", default=None, help="CSR name (default: NAME)")
@click.pass_context
def crt(ctx: click.Context, name: str, csr_name: str | None) -> None:
    """Issue the certificate NAME, generating its CSR when missing."""
    pki = _pki(ctx)
    handle_result(
        _run("Certificate issuance", lambda: pki.generate_crt(name, csr_name))
    )


@cli.command()
@click.argument("name")
@click.option("--csr", "csr_name", default=None, help="CSR name (default: NAME)")
@click.option(
    "--threshold",
    default=None,
    help="Renew when less validity than this remains (e.g. '30d', '12h')",
)
@click.pass_context
def renew(
    ctx: click.Context, name: str, csr_name: str | None, threshold: str | None
) -> None:
    """Renew the certificate NAME when it expires soon."""
    threshold_seconds = None
    if threshold:
        parsed = parse_duration(threshold)
        if isinstance(parsed, Error):
            handle_result(parsed)
            return
        threshold_seconds = parsed.data
    pki = _pki(ctx)

    result = _run("Renewal", lambda: pki.renew(name, csr_name, threshold_seconds))
    if isinstance(result, Success) and result.data:
        result.message = "Certificate renewed"
    handle_result(result)


@cli.command()
@click.argument("kind", type=click.Choice(["key", "crt", "chain"]))
@click.argument("name")
@click.pass_context
def info(ctx: click.Context, kind: str, name: str) -> None:
    """Show fingerprints, HPKP pin and TLSA record for a key, certificate or chain."""
    pki = _pki(ctx)
    actions = {
        "key": lambda: pki.key_info(name),
        "crt": lambda: pki.crt_info(name),
        "chain": lambda: pki.chain_info(name),
    }
    handle_result(_run("Info", actions[kind]))


def main() -> None:
    """Entry point for the acmepki command."""
    cli(obj={})


if __name__ == "__main__":
    main()
