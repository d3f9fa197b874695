"""
Handshake - One-time lookup pools.

A lookup pool maps a base64 lookup token to a one-time symmetric key. Every
party derives one pool per participant from the shared pepper and that
participant's entropy, so sender and receiver hold identical copies without
ever exchanging them. The token is written in the clear in front of each
stored blob; the reader finds the key by token, and both sides delete the
entry as soon as it is used.

Derivation is HKDF with SHA-512: the pepper is extracted under a salt
derived from the entropy, then expanded once per entry with a counter in
the info string. A token collision simply advances the counter, so the
pool always ends up with exactly ``count`` distinct entries.
"""

import json
import logging
import secrets
from typing import Dict, Iterator, Optional, Tuple

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .constants import (
    DEFAULT_CIPHER,
    DEFAULT_LOOKUP_COUNT,
    ENTROPY_SIZE,
    LOOKUP_KDF_INFO,
    LOOKUP_TOKEN_SIZE,
    PEPPER_SIZE,
)
from .crypto import cipher_key_size, hash_blake2b
from .errors import (
    CryptoError,
    ErrorCode,
    HandshakeError,
    KeyNotFound,
    LookupPoolError,
    PoolExhausted,
)
from .utils import b64decode, b64encode

logger = logging.getLogger(__name__)


def _extract(pepper: bytes, entropy: bytes) -> bytes:
    """HKDF-Extract of the pepper under an entropy-derived salt."""
    salt = hash_blake2b(entropy, 64)
    h = hmac.HMAC(salt, hashes.SHA512())
    h.update(pepper)
    return h.finalize()


def _expand(prk: bytes, counter: int, length: int) -> bytes:
    hkdf = HKDFExpand(
        algorithm=hashes.SHA512(),
        length=length,
        info=LOOKUP_KDF_INFO + counter.to_bytes(8, "big"),
    )
    return hkdf.derive(prk)


class LookupPool:
    """A finite set of (token, one-time key) pairs, each usable exactly once."""

    def __init__(self, entries: Optional[Dict[str, bytes]] = None):
        self._entries: Dict[str, bytes] = dict(entries or {})

    @classmethod
    def derive(
        cls,
        pepper: bytes,
        entropy: bytes,
        cipher_kind: str = DEFAULT_CIPHER,
        count: int = DEFAULT_LOOKUP_COUNT,
    ) -> "LookupPool":
        """
        Deterministically derive a pool from a pepper and one party's entropy.

        Identical arguments always produce identical pools; this is what lets
        both sides agree on every token without further communication.

        Args:
            pepper: 64-byte shared pepper
            entropy: 96-byte entropy of the participant who owns the pool
            cipher_kind: Cipher the keys are for (sets the key length)
            count: Number of entries to generate

        Raises:
            CryptoError: If pepper or entropy have the wrong length
        """
        if len(pepper) != PEPPER_SIZE:
            raise CryptoError(ErrorCode.E002_INVALID_ARGUMENT, "Pepper must be 64 bytes")
        if len(entropy) != ENTROPY_SIZE:
            raise CryptoError(ErrorCode.E002_INVALID_ARGUMENT, "Entropy must be 96 bytes")
        if count <= 0:
            raise LookupPoolError(ErrorCode.E002_INVALID_ARGUMENT, "Lookup count must be positive")

        key_size = cipher_key_size(cipher_kind)
        prk = _extract(pepper, entropy)
        entries: Dict[str, bytes] = {}
        counter = 0
        while len(entries) < count:
            block = _expand(prk, counter, LOOKUP_TOKEN_SIZE + key_size)
            counter += 1
            token = b64encode(block[:LOOKUP_TOKEN_SIZE])
            if token in entries:
                continue
            entries[token] = block[LOOKUP_TOKEN_SIZE:]

        logger.debug(f"Derived lookup pool with {count} entries ({counter - count} redraws)")
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: object) -> bool:
        return token in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LookupPool):
            return NotImplemented
        return self._entries == other._entries

    def is_exhausted(self) -> bool:
        return not self._entries

    def pop_by_token(self, token: str) -> bytes:
        """
        Remove and return the key for ``token``.

        Raises:
            KeyNotFound: If the token was already consumed or never existed
        """
        try:
            return self._entries.pop(token)
        except KeyError:
            raise KeyNotFound() from None

    def pop_random(self) -> Tuple[str, bytes]:
        """
        Remove and return an arbitrary remaining entry.

        Raises:
            PoolExhausted: If no entries remain
        """
        if not self._entries:
            raise PoolExhausted()
        token = secrets.choice(list(self._entries))
        return token, self._entries.pop(token)

    def to_bytes(self) -> bytes:
        """Serialize the pool as JSON (keys base64 encoded)."""
        return json.dumps({token: b64encode(key) for token, key in self._entries.items()}).encode(
            "utf-8"
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "LookupPool":
        """
        Deserialize a pool written by :meth:`to_bytes`.

        Raises:
            LookupPoolError: If the data is not a valid pool
        """
        try:
            raw = json.loads(data.decode("utf-8"))
            return cls({token: b64decode(key) for token, key in raw.items()})
        except (ValueError, AttributeError, HandshakeError) as e:
            raise LookupPoolError(ErrorCode.E400_LOOKUP_ERROR, f"Corrupt lookup pool: {e}") from e
