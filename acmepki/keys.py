"""
Key material for acmepki.

Wraps ``cryptography`` private keys in a small adapter exposing only what the
lifecycle needs: the algorithm variant, DER/PEM export and the public key.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .types import KeyLoadError

RSA_PUBLIC_EXPONENT = 65537

# Curve names accepted for ECC keys, OpenSSL aliases included
EC_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "secp256r1": ec.SECP256R1,
    "prime256v1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}


class KeyAlgorithm(str, Enum):
    """Supported key algorithms."""

    RSA = "rsa"
    ECC = "ecc"


@dataclass(frozen=True)
class KeyType:
    """Algorithm variant of a key pair: RSA{bits} or ECC{curve name}."""

    algorithm: KeyAlgorithm
    size: int | str

    @classmethod
    def rsa(cls, bits: int = 4096) -> "KeyType":
        return cls(KeyAlgorithm.RSA, int(bits))

    @classmethod
    def ecc(cls, curve: str = "secp384r1") -> "KeyType":
        if curve not in EC_CURVES:
            raise ValueError(
                f"Unsupported curve: {curve}. Supported curves: {sorted(EC_CURVES)}"
            )
        return cls(KeyAlgorithm.ECC, curve)

    @classmethod
    def parse(cls, algorithm: str, size: int | str) -> "KeyType":
        """Build a KeyType from configuration-style values like ``("rsa", 4096)``."""
        try:
            kind = KeyAlgorithm(str(algorithm).lower())
        except ValueError as e:
            raise ValueError(f"Unsupported key algorithm: {algorithm}") from e
        if kind is KeyAlgorithm.RSA:
            return cls.rsa(int(size))
        return cls.ecc(str(size))

    def __str__(self) -> str:
        if self.algorithm is KeyAlgorithm.RSA:
            return f"RSA {self.size} bits"
        return f"ECC {self.size} curve"


class KeyMaterial(ABC):
    """A private key together with the operations acmepki needs from it."""

    algorithm: KeyAlgorithm

    def __init__(self, private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey):
        self._private_key = private_key

    @property
    def private_key(self) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
        return self._private_key

    def public_key(self) -> rsa.RSAPublicKey | ec.EllipticCurvePublicKey:
        return self._private_key.public_key()

    def public_der(self) -> bytes:
        """SubjectPublicKeyInfo DER encoding of the public half."""
        return self.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def to_pem(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    @abstractmethod
    def key_type(self) -> KeyType:
        """The algorithm variant of this key."""


class RSAKeyMaterial(KeyMaterial):
    algorithm = KeyAlgorithm.RSA

    @property
    def key_type(self) -> KeyType:
        return KeyType.rsa(self._private_key.key_size)


class ECKeyMaterial(KeyMaterial):
    algorithm = KeyAlgorithm.ECC

    @property
    def key_type(self) -> KeyType:
        assert isinstance(self._private_key, ec.EllipticCurvePrivateKey)
        return KeyType(KeyAlgorithm.ECC, self._private_key.curve.name)


def wrap_key(private_key: object) -> KeyMaterial:
    """Wrap a cryptography private key in the matching KeyMaterial variant.

    Raises:
        KeyLoadError: For key algorithms acmepki does not handle
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return RSAKeyMaterial(private_key)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return ECKeyMaterial(private_key)
    raise KeyLoadError(f"Unsupported private key type: {type(private_key).__name__}")


def generate_key(key_type: KeyType) -> KeyMaterial:
    """Generate a new private key of the requested type."""
    if key_type.algorithm is KeyAlgorithm.RSA:
        return RSAKeyMaterial(
            rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT,
                key_size=int(key_type.size),
            )
        )
    curve = EC_CURVES[str(key_type.size)]
    return ECKeyMaterial(ec.generate_private_key(curve()))


def load_key(path: Path) -> KeyMaterial:
    """Load a PEM private key from disk.

    Raises:
        KeyLoadError: If the file is missing, unreadable or not a supported key
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise KeyLoadError(f"Cannot read private key file {path}: {e}") from e

    try:
        private_key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as e:
        raise KeyLoadError(f"Failed to parse private key {path}: {e}") from e

    return wrap_key(private_key)
