"""
Cryptographic Digest Service

Computes the digest that is anchored on-chain and recomputed at verify time.
Same text → same digest. Always. Forever.

This is SACRED GROUND.

Every digest already on the ledger was produced by the browser client as
keccak256(utf8(text)), rendered as 0x + 64 lowercase hex. If this module
drifts from that, every integrity check silently fails. There must be
exactly one implementation, used by the write path and the read path alike.

DIGEST RULES:
1. Algorithm: Keccak-256 (Ethereum flavour, NOT NIST SHA3-256)
2. Input: the exact UTF-8 bytes of the text
3. No normalization: whitespace, case and Unicode form all matter
4. Output: "0x" + 64 lowercase hex characters
"""

import string
from typing import Optional

from eth_utils import keccak


class DigestFormatError(ValueError):
    """Raised when a value is not a well-formed 32-byte hex digest."""
    pass


class Hasher:
    """
    Text digests for promise integrity.

    IMMUTABLE CONTRACT:
    - Same text → same digest
    - One byte different → different digest
    - No trimming, no case folding, no Unicode normalization
    """

    DIGEST_PREFIX = "0x"
    DIGEST_BYTES = 32
    DIGEST_HEX_LENGTH = 64

    @classmethod
    def digest_bytes(cls, data: bytes) -> str:
        """Digest raw bytes."""
        return cls.DIGEST_PREFIX + keccak(primitive=data).hex()

    @classmethod
    def digest(cls, text: str) -> str:
        """
        Digest a promise text.

        This is THE critical function.

        Args:
            text: The exact text as committed

        Returns:
            0x-prefixed lowercase hex keccak-256 digest
        """
        if not isinstance(text, str):
            raise TypeError(f"digest() expects str, got {type(text).__name__}")
        return cls.digest_bytes(text.encode("utf-8"))

    @classmethod
    def normalize_digest(cls, value: str) -> str:
        """
        Canonical representation of a digest value.

        Accepts any case, with or without the 0x prefix. Hex case is a
        representation detail; this is NOT text normalization.

        Raises:
            DigestFormatError: If value is not 32 bytes of hex
        """
        if not isinstance(value, str):
            raise DigestFormatError(f"Digest must be a string, got {type(value).__name__}")

        body = value[2:] if value[:2].lower() == "0x" else value
        if len(body) != cls.DIGEST_HEX_LENGTH or not all(
            c in string.hexdigits for c in body
        ):
            raise DigestFormatError(
                f"Invalid digest format: {value!r}. "
                f"Must be {cls.DIGEST_HEX_LENGTH} hex characters (0x prefix optional)."
            )
        return cls.DIGEST_PREFIX + body.lower()

    @classmethod
    def is_digest(cls, value: str) -> bool:
        try:
            cls.normalize_digest(value)
        except DigestFormatError:
            return False
        return True

    @classmethod
    def digest_from_bytes32(cls, data: bytes) -> str:
        """Render a raw bytes32 value (log topic, call argument) as a digest."""
        if len(data) != cls.DIGEST_BYTES:
            raise DigestFormatError(
                f"Expected {cls.DIGEST_BYTES} bytes, got {len(data)}"
            )
        return cls.DIGEST_PREFIX + data.hex()

    @classmethod
    def matches(cls, text: str, expected_digest: str) -> bool:
        """
        Check that text hashes to the expected digest.

        Returns False for malformed expected digests instead of raising.
        """
        try:
            expected = cls.normalize_digest(expected_digest)
        except DigestFormatError:
            return False
        return cls._constant_time_compare(cls.digest(text), expected)

    @staticmethod
    def shorten(digest: Optional[str]) -> str:
        """Short display form: 0xabcd...ef1234"""
        if not digest or len(digest) <= 12:
            return digest or ""
        return f"{digest[:6]}...{digest[-6:]}"

    @staticmethod
    def _constant_time_compare(a: str, b: str) -> bool:
        """
        Compare two strings in constant time.
        """
        if len(a) != len(b):
            return False

        result = 0
        for x, y in zip(a, b):
            result |= ord(x) ^ ord(y)

        return result == 0
