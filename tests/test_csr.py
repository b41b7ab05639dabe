"""
Tests for CSR building and domain extraction.
"""

from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from acmepki.csr import CsrBuilder, normalize_domain, unique
from acmepki.keys import KeyType
from acmepki.keystore import KeyStore
from acmepki.types import CSRError


PKCS9_EXTENSION_REQUEST = bytes.fromhex("06092a864886f70d01090e")
MS_EXTENSION_REQUEST = bytes.fromhex("060a2b06010401823702010e")


def der_read(data: bytes, offset: int = 0) -> tuple[int, bytes, int]:
    """Return tag, content and end offset of the DER element at ``offset``."""
    tag, length = data[offset], data[offset + 1]
    start = offset + 2
    if length & 0x80:
        size = length & 0x7F
        length = int.from_bytes(data[start : start + size], "big")
        start += size
    return tag, data[start : start + length], start + length


def der_children(content: bytes) -> list[tuple[int, bytes]]:
    children, offset = [], 0
    while offset < len(content):
        tag, child, offset = der_read(content, offset)
        children.append((tag, child))
    return children


def der_write(tag: int, content: bytes) -> bytes:
    length = len(content)
    if length < 0x80:
        return bytes([tag, length]) + content
    size = (length.bit_length() + 7) // 8
    return bytes([tag, 0x80 | size]) + length.to_bytes(size, "big") + content


def with_microsoft_extension_request(
    csr: x509.CertificateSigningRequest,
) -> x509.CertificateSigningRequest:
    """Re-encode ``csr`` with its extensionRequest attribute under the Microsoft OID.

    The signature no longer matches, which parsing does not check.
    """
    tag, outer, _ = der_read(csr.public_bytes(serialization.Encoding.DER))
    (info_tag, info), *rest = der_children(outer)
    *head, (attrs_tag, attrs) = der_children(info)
    assert attrs_tag == 0xA0
    attributes = b"".join(
        der_write(t, c.replace(PKCS9_EXTENSION_REQUEST, MS_EXTENSION_REQUEST))
        for t, c in der_children(attrs)
    )
    info = b"".join(der_write(t, c) for t, c in head) + der_write(attrs_tag, attributes)
    outer = der_write(info_tag, info) + b"".join(der_write(t, c) for t, c in rest)
    return x509.load_der_x509_csr(der_write(tag, outer))


@pytest.fixture
def builder(tmp_path: Path) -> CsrBuilder:
    return CsrBuilder(KeyStore(tmp_path, KeyType.ecc("secp256r1")))


class TestHelpers:
    def test_unique_keeps_first_occurrence(self) -> None:
        assert unique(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]

    def test_normalize_ascii(self) -> None:
        assert normalize_domain("example.com") == "example.com"

    def test_normalize_idna(self) -> None:
        """Internationalized names are converted to their ASCII form."""
        assert normalize_domain("bücher.example") == "xn--bcher-kva.example"

    def test_normalize_invalid(self) -> None:
        with pytest.raises(CSRError, match="Invalid domain name"):
            normalize_domain("a" * 64 + ".example")


class TestCsrBuilder:
    """Test CSR generation."""

    def test_build_writes_csr(self, builder: CsrBuilder, tmp_path: Path) -> None:
        csr_file, csr = builder.build("example.com", ["www.example.com"])

        assert csr_file == tmp_path / "com.example.csr"
        loaded = CsrBuilder.load(csr_file)
        assert loaded.is_signature_valid
        assert loaded.signature_hash_algorithm.name == hashes.SHA512.name
        assert (
            loaded.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
            == "example.com"
        )

    def test_extensions(self, builder: CsrBuilder) -> None:
        _, csr = builder.build("example.com", ["www.example.com"])

        key_usage = csr.extensions.get_extension_for_class(x509.KeyUsage)
        assert not key_usage.critical
        assert key_usage.value.digital_signature
        assert key_usage.value.content_commitment
        assert key_usage.value.key_encipherment

        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        assert san.value.get_values_for_type(x509.DNSName) == [
            "example.com",
            "www.example.com",
        ]

    def test_key_generated_when_missing(
        self, builder: CsrBuilder, tmp_path: Path
    ) -> None:
        """The CSR is signed by the stored key, which is created on demand."""
        _, csr = builder.build("example.com")

        key = builder.keystore.load("example.com")
        assert (tmp_path / "com.example.pem").exists()
        assert csr.public_key().public_numbers() == key.public_key().public_numbers()

    def test_existing_key_reused(self, builder: CsrBuilder) -> None:
        _, key = builder.keystore.generate("example.com")

        _, csr = builder.build("example.com")

        assert csr.public_key().public_numbers() == key.public_key().public_numbers()

    def test_explicit_key_name(self, builder: CsrBuilder, tmp_path: Path) -> None:
        _, key = builder.keystore.generate("shared")

        csr_file, csr = builder.build("example.com", key_name="shared")

        assert csr_file == tmp_path / "com.example.csr"
        assert not (tmp_path / "com.example.pem").exists()
        assert csr.public_key().public_numbers() == key.public_key().public_numbers()

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(CSRError, match="Cannot read CSR file"):
            CsrBuilder.load(tmp_path / "missing.csr")

    def test_load_garbage(self, tmp_path: Path) -> None:
        csr_file = tmp_path / "garbage.csr"
        csr_file.write_text("garbage")

        with pytest.raises(CSRError, match="Failed to parse CSR"):
            CsrBuilder.load(csr_file)


class TestExtractDomains:
    """Test recovering domains from a CSR."""

    def test_round_trip_dedupes_in_order(self, builder: CsrBuilder) -> None:
        _, csr = builder.build(
            "example.com", ["www.example.com", "example.com", "mail.example.com"]
        )

        assert CsrBuilder.extract_domains(csr) == [
            "example.com",
            "www.example.com",
            "mail.example.com",
        ]

    def test_without_san(self) -> None:
        """A CSR without subjectAltName yields just its CN."""
        key = ec.generate_private_key(ec.SECP256R1())
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(
                x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")])
            )
            .sign(key, hashes.SHA256())
        )

        assert CsrBuilder.extract_domains(csr) == ["example.com"]

    def test_cn_outside_san_comes_first(self) -> None:
        key = ec.generate_private_key(ec.SECP256R1())
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(
                x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")])
            )
            .add_extension(
                x509.SubjectAlternativeName(
                    [x509.DNSName("www.example.com"), x509.DNSName("example.com")]
                ),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )

        assert CsrBuilder.extract_domains(csr) == ["example.com", "www.example.com"]

    def test_microsoft_extension_request(self, builder: CsrBuilder) -> None:
        """The Microsoft extensionRequest attribute is read like the PKCS#9 one."""
        _, csr = builder.build("example.com", ["www.example.com"])
        rewritten = with_microsoft_extension_request(csr)

        encoded = rewritten.public_bytes(serialization.Encoding.DER)
        assert MS_EXTENSION_REQUEST in encoded
        assert PKCS9_EXTENSION_REQUEST not in encoded
        assert CsrBuilder.extract_domains(rewritten) == [
            "example.com",
            "www.example.com",
        ]
