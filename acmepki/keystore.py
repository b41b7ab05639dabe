"""
File-backed key storage.

Keys, CSRs and certificates live in one working directory. File names are
derived from a dotted name with its segments reversed, so ``www.example.com``
is stored as ``com.example.www.pem`` and related hosts sort together.
"""

import logging
import os
from pathlib import Path

from .console import console_manager
from .keys import KeyMaterial, KeyType, generate_key, load_key

logger = logging.getLogger(__name__)

KEY_EXTENSION = "pem"
CSR_EXTENSION = "csr"
CRT_EXTENSION = "crt"


def reverse_name(name: str) -> str:
    """Reverse the dot-separated segments of a name."""
    return ".".join(reversed(name.split(".")))


class KeyStore:
    """Resolves storage paths and loads or generates key pairs."""

    def __init__(self, directory: Path, default_key_type: KeyType | None = None):
        self.directory = Path(directory)
        self.default_key_type = default_key_type or KeyType.ecc()

    def path_for(self, name: str, extension: str | None = None) -> Path:
        """Derive the storage path for a dotted name. No I/O is performed."""
        file_name = reverse_name(name)
        if extension:
            file_name = f"{file_name}.{extension}"
        return self.directory / file_name

    def key_path(self, name: str) -> Path:
        return self.path_for(name, KEY_EXTENSION)

    def csr_path(self, name: str) -> Path:
        return self.path_for(name, CSR_EXTENSION)

    def crt_path(self, name: str) -> Path:
        return self.path_for(name, CRT_EXTENSION)

    def generate(
        self, name: str, key_type: KeyType | None = None
    ) -> tuple[Path, KeyMaterial]:
        """Generate a key pair and persist it, overwriting any existing file."""
        key_type = key_type or self.default_key_type
        key_file = self.key_path(name)

        with console_manager.process(
            f"Generating {key_type} private key into {key_file}"
        ):
            key = generate_key(key_type)
            key_file.parent.mkdir(parents=True, exist_ok=True)
            key_file.write_bytes(key.to_pem())
            os.chmod(key_file, 0o600)

        logger.info("Generated %s key for %s at %s", key_type, name, key_file)
        return key_file, key

    def load(self, name: str) -> KeyMaterial:
        """Load the key stored for ``name``; raises KeyLoadError on failure."""
        return load_key(self.key_path(name))

    def load_or_generate(
        self, name: str, default_type: KeyType | None = None
    ) -> tuple[Path, KeyMaterial]:
        """Return the stored key pair, generating one when the file is missing."""
        key_file = self.key_path(name)
        if key_file.exists():
            logger.debug("Using existing key %s", key_file)
            return key_file, load_key(key_file)
        return self.generate(name, default_type)
