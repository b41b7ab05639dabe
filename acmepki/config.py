"""Configuration management for acmepki"""

import copy
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .keys import KeyType
from .types import ConfigurationError

# ACME Directory URL Constants
LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

CONFIG_FILE_NAME = "acmepki.yaml"

# Default values - Hierarchical structure
DEFAULT_CONFIG: dict[str, Any] = {
    "acme": {
        "endpoint": None,  # Falls back to Let's Encrypt production or staging
        "staging": False,
        "account_key": "account.key",  # Relative to the working directory
        "email": None,  # Contact email, only needed to register a new account
    },
    "keys": {
        "default_type": "ecc",
        "default_size": "secp384r1",  # Curve name for ecc, bit count for rsa
        "account_key_bits": 4096,
    },
    "paths": {
        "challenge_dir": None,  # Defaults to <directory>/acme-challenge
        "cache_dir": None,  # Defaults to <directory>/cache
    },
    "renewal": {
        "threshold_seconds": 60 * 60 * 24 * 30,  # 1 month
    },
    "network": {
        "self_test_timeout": 10.0,
        "chain_fetch_timeout": 10.0,
        "finalize_timeout": 90,
        "poll_attempts": 60,
        "poll_interval": 1.0,
        "user_agent": "acmepki/0.1",
    },
    "system": {
        "log_level": "WARNING",
    },
}

# Valid configuration keys and their types - Hierarchical structure
CONFIG_SCHEMA: dict[str, Any] = {
    "acme": {
        "endpoint": (str, type(None)),
        "staging": bool,
        "account_key": str,
        "email": (str, type(None)),
    },
    "keys": {
        "default_type": str,
        "default_size": (str, int),
        "account_key_bits": int,
    },
    "paths": {
        "challenge_dir": (str, type(None)),
        "cache_dir": (str, type(None)),
    },
    "renewal": {
        "threshold_seconds": int,
    },
    "network": {
        "self_test_timeout": (int, float),
        "chain_fetch_timeout": (int, float),
        "finalize_timeout": int,
        "poll_attempts": int,
        "poll_interval": (int, float),
        "user_agent": str,
    },
    "system": {
        "log_level": str,
    },
}

# Valid values for specific keys
CONFIG_VALID_VALUES: dict[str, list[Any]] = {
    "default_type": ["rsa", "ecc"],
    "log_level": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
}

# Environment variable mappings onto dotted config paths
ENV_MAPPINGS = {
    "ACME_ENDPOINT": "acme.endpoint",
    "ACME_STAGING": "acme.staging",
    "ACME_ACCOUNT_KEY": "acme.account_key",
    "ACME_MAIL_REGISTRATION": "acme.email",
    "ACME_CHALLENGE": "paths.challenge_dir",
    "ACMEPKI_LOG_LEVEL": "system.log_level",
}

CONFIG_FILE_ENV = "ACMEPKI_CONFIG"

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class PKIConfig:
    """Settings resolved once at startup and handed to each component."""

    directory: Path
    endpoint: str
    account_key: str
    email: str | None
    challenge_dir: Path
    cache_dir: Path
    default_key_type: KeyType
    account_key_bits: int = 4096
    renew_threshold: int = 60 * 60 * 24 * 30
    self_test_timeout: float = 10.0
    chain_fetch_timeout: float = 10.0
    finalize_timeout: int = 90
    poll_attempts: int = 60
    poll_interval: float = 1.0
    user_agent: str = "acmepki/0.1"
    log_level: str = "WARNING"

    @property
    def account_key_path(self) -> Path:
        return self.directory / self.account_key


def _get_nested_value(config: dict[str, Any], path: str) -> Any:
    """Get a value from nested config using dotted path notation.

    Raises:
        KeyError: If the path doesn't exist
    """
    current: Any = config
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            raise KeyError(f"Config path not found: {path}")
        current = current[part]
    return current


def _set_nested_value(config: dict[str, Any], path: str, value: Any) -> None:
    """Set a value in nested config using dotted path notation."""
    parts = path.split(".")
    current = config

    for part in parts[:-1]:
        if part not in current:
            current[part] = {}
        elif not isinstance(current[part], dict):
            raise ValueError(f"Cannot set nested value: {part} is not a dictionary")
        current = current[part]

    current[parts[-1]] = value


def _deep_merge(base: dict[str, Any], updates: Mapping[str, Any]) -> None:
    """Deep merge updates into base dictionary."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _convert_bool(path: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUTHY:
        return True
    if lowered in FALSY:
        return False
    raise ConfigurationError(f"Invalid boolean value for {path}: {value!r}")


def _convert_env_value(path: str, value: str) -> Any:
    """Convert an environment string to the type the schema expects."""
    expected = _get_nested_value(CONFIG_SCHEMA, path)
    if expected is bool:
        return _convert_bool(path, value)
    if expected is int:
        return int(value)
    return value


def validate_config(config: dict[str, Any], schema: dict[str, Any] | None = None,
                    prefix: str = "") -> None:
    """Validate a merged configuration against ``CONFIG_SCHEMA``.

    Raises:
        ConfigurationError: On unknown sections/keys, wrong types or values
            outside ``CONFIG_VALID_VALUES``.
    """
    schema = CONFIG_SCHEMA if schema is None else schema
    for key, value in config.items():
        path = f"{prefix}{key}"
        if key not in schema:
            raise ConfigurationError(
                f"Unknown configuration key: {path}. "
                f"Available keys: {list(schema.keys())}"
            )
        expected = schema[key]
        if isinstance(expected, dict):
            if not isinstance(value, dict):
                raise ConfigurationError(f"Configuration section {path} must be a mapping")
            validate_config(value, expected, prefix=f"{path}.")
            continue
        # bool is an int subclass; keep them apart
        if isinstance(value, bool) and expected is not bool and (
            not isinstance(expected, tuple) or bool not in expected
        ):
            raise ConfigurationError(f"Invalid type for {path}: {type(value).__name__}")
        if not isinstance(value, expected):
            raise ConfigurationError(f"Invalid type for {path}: {type(value).__name__}")
        valid_values = CONFIG_VALID_VALUES.get(key)
        if valid_values is not None and value not in valid_values:
            raise ConfigurationError(
                f"Invalid value for {path}: {value}. Valid values are: {valid_values}"
            )


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load a YAML configuration file, returning an empty dict for empty files."""
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return loaded


def load_config(
    directory: Path | str | None = None,
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> PKIConfig:
    """Build the configuration from defaults, an optional YAML file and the environment.

    Args:
        directory: Working directory all key/CSR/certificate paths are rooted at
            (defaults to the current directory)
        config_file: Explicit YAML file; otherwise ``$ACMEPKI_CONFIG`` or
            ``<directory>/acmepki.yaml`` when it exists
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        The resolved PKIConfig

    Raises:
        ConfigurationError: If the file or environment holds invalid values
    """
    env = os.environ if environ is None else environ
    base_dir = Path(directory) if directory is not None else Path.cwd()

    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_file is None and env.get(CONFIG_FILE_ENV):
        config_file = env[CONFIG_FILE_ENV]
    if config_file is not None:
        _deep_merge(config, load_yaml_config(Path(config_file)))
    elif (base_dir / CONFIG_FILE_NAME).is_file():
        _deep_merge(config, load_yaml_config(base_dir / CONFIG_FILE_NAME))

    for env_name, path in ENV_MAPPINGS.items():
        raw = env.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            _set_nested_value(config, path, _convert_env_value(path, raw))
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from e

    if isinstance(config["system"].get("log_level"), str):
        config["system"]["log_level"] = config["system"]["log_level"].upper()
    validate_config(config)

    acme_section = config["acme"]
    endpoint = acme_section["endpoint"]
    if endpoint is None:
        endpoint = LETSENCRYPT_STAGING if acme_section["staging"] else LETSENCRYPT_PRODUCTION

    paths = config["paths"]
    challenge_dir = Path(paths["challenge_dir"]) if paths["challenge_dir"] else (
        base_dir / "acme-challenge"
    )
    cache_dir = Path(paths["cache_dir"]) if paths["cache_dir"] else base_dir / "cache"

    keys = config["keys"]
    try:
        default_key_type = KeyType.parse(keys["default_type"], keys["default_size"])
    except ValueError as e:
        raise ConfigurationError(f"Invalid default key: {e}") from e

    network = config["network"]
    return PKIConfig(
        directory=base_dir,
        endpoint=endpoint,
        account_key=acme_section["account_key"],
        email=acme_section["email"],
        challenge_dir=challenge_dir,
        cache_dir=cache_dir,
        default_key_type=default_key_type,
        account_key_bits=keys["account_key_bits"],
        renew_threshold=config["renewal"]["threshold_seconds"],
        self_test_timeout=float(network["self_test_timeout"]),
        chain_fetch_timeout=float(network["chain_fetch_timeout"]),
        finalize_timeout=network["finalize_timeout"],
        poll_attempts=network["poll_attempts"],
        poll_interval=float(network["poll_interval"]),
        user_agent=network["user_agent"],
        log_level=config["system"]["log_level"],
    )
