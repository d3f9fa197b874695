"""
Handshake - Cryptographic primitives.

This module implements the primitives every other layer builds on:
- Random byte and identifier generation (secrets)
- Time-series nonces: random nonces prefixed with unix time to make a
  collision between two randomly drawn nonces even less likely
- Argon2id password key derivation
- BLAKE2b content hashing and pepper generation
- Chunked authenticated encryption with ChaCha20-Poly1305

All cryptographic operations use well-tested, open-source libraries:
- cryptography library (Apache 2.0/BSD License)
- argon2-cffi (MIT License)
"""

import hashlib
import secrets
import struct
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from .constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    CHUNK_OVERHEAD,
    CIPHER_CHACHA20_POLY1305,
    CONTENT_HASH_SIZE,
    DEFAULT_CHUNK_SIZE,
    KEY_SIZE,
    NONCE_RANDOM,
    NONCE_SIZE,
    NONCE_TIME_SERIES,
    PEPPER_ENTROPY_PREFIX,
    PEPPER_SIZE,
    TIME_SERIES_PREFIX,
)
from .errors import AuthenticationFailure, CryptoError, ErrorCode


def gen_rand_bytes(length: int) -> bytes:
    """Return ``length`` bytes from the operating system CSPRNG."""
    return secrets.token_bytes(length)


def gen_hex_id(length: int) -> str:
    """
    Generate a random identifier of ``length`` raw bytes, hex encoded.

    Used for chat ids, chat-peer ids and profile ids.
    """
    return secrets.token_hex(length)


def gen_time_series_nonce(length: int) -> bytes:
    """
    Generate a random nonce whose first four bytes carry the unix time.

    The nonce is filled from the CSPRNG, then the leading bytes are
    overwritten with the little-endian encoding of ``time.time()``.
    """
    nonce = bytearray(gen_rand_bytes(length))
    time_bytes = struct.pack("<Q", int(time.time()))
    nonce[:TIME_SERIES_PREFIX] = time_bytes[:TIME_SERIES_PREFIX]
    return bytes(nonce)


def derive_key(password: bytes, salt: bytes) -> bytes:
    """
    Derive a 32-byte key from a password and salt using Argon2id.

    Parameters:
        - Time cost: 1 iteration
        - Memory cost: 65536 KB (64 MB)
        - Parallelism: 4 lanes
        - Output: 32 bytes (256 bits)

    Raises:
        CryptoError: If Argon2 rejects the inputs
    """
    try:
        return hash_secret_raw(
            secret=password,
            salt=salt,
            time_cost=ARGON2_TIME_COST,
            memory_cost=ARGON2_MEMORY_COST,
            parallelism=ARGON2_PARALLELISM,
            hash_len=KEY_SIZE,
            type=Type.ID,
        )
    except HashingError as e:
        raise CryptoError(ErrorCode.E108_KEY_DERIVATION_FAILED, f"Key derivation failed: {e}") from e


def hash_blake2b(data: bytes, digest_size: int = CONTENT_HASH_SIZE) -> bytes:
    """Raw BLAKE2b digest of ``data``."""
    return hashlib.blake2b(data, digest_size=digest_size).digest()


def content_hash(data: bytes) -> str:
    """Hex BLAKE2b-256 digest, the content address used for local checks and endpoints."""
    return hash_blake2b(data).hex()


def generate_pepper(entropies: Iterable[bytes]) -> bytes:
    """
    Generate the shared 64-byte pepper for a finished handshake.

    The pepper is BLAKE2b-512 over the first 32 bytes of every participant's
    entropy, concatenated in final sort order. Both sides must feed the
    entropies in the same order or every derived lookup pool will differ.
    """
    material = b"".join(entropy[:PEPPER_ENTROPY_PREFIX] for entropy in entropies)
    return hash_blake2b(material, PEPPER_SIZE)


@dataclass
class CipherConfig:
    """Shareable cipher settings exchanged in a handshake."""

    type: str = CIPHER_CHACHA20_POLY1305
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "chunk_size": self.chunk_size}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CipherConfig":
        return CipherConfig(
            type=data.get("type", CIPHER_CHACHA20_POLY1305),
            chunk_size=data.get("chunk_size") or DEFAULT_CHUNK_SIZE,
        )


class AEADCipher:
    """
    Chunked ChaCha20-Poly1305 cipher used for every stored blob.

    Plaintext is split into ``chunk_size`` pieces. Each piece is sealed
    independently and emitted as ``nonce || ciphertext || tag``, so the
    ciphertext grows by 28 bytes per chunk. Decryption walks the same grid
    and fails closed: the first chunk that does not authenticate aborts the
    whole operation.
    """

    kind = CIPHER_CHACHA20_POLY1305
    key_size = KEY_SIZE

    def __init__(self, nonce_type: str = NONCE_RANDOM, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if nonce_type not in (NONCE_RANDOM, NONCE_TIME_SERIES):
            raise CryptoError(ErrorCode.E002_INVALID_ARGUMENT, f"Unknown nonce type: {nonce_type}")
        if chunk_size <= 0:
            raise CryptoError(ErrorCode.E002_INVALID_ARGUMENT, "Chunk size must be positive")
        self.nonce_type = nonce_type
        self.chunk_size = chunk_size

    def _aead(self, key: bytes) -> ChaCha20Poly1305:
        if len(key) != self.key_size:
            raise CryptoError(
                ErrorCode.E103_INVALID_KEY,
                "Invalid key length",
                {"expected": self.key_size, "actual": len(key)},
            )
        return ChaCha20Poly1305(key)

    def gen_nonce(self) -> bytes:
        if self.nonce_type == NONCE_TIME_SERIES:
            return gen_time_series_nonce(NONCE_SIZE)
        return gen_rand_bytes(NONCE_SIZE)

    def encrypt(self, data: bytes, key: bytes) -> bytes:
        """Encrypt ``data`` chunk by chunk; empty input yields empty output."""
        aead = self._aead(key)
        out = bytearray()
        for offset in range(0, len(data), self.chunk_size):
            chunk = data[offset : offset + self.chunk_size]
            nonce = self.gen_nonce()
            out += nonce + aead.encrypt(nonce, chunk, None)
        return bytes(out)

    def decrypt(self, data: bytes, key: bytes) -> bytes:
        """
        Decrypt output produced by :meth:`encrypt`.

        Raises:
            AuthenticationFailure: If any chunk is truncated or fails authentication
            CryptoError: If the key length is wrong
        """
        aead = self._aead(key)
        step = self.chunk_size + CHUNK_OVERHEAD
        out = bytearray()
        for offset in range(0, len(data), step):
            chunk = data[offset : offset + step]
            if len(chunk) < CHUNK_OVERHEAD:
                raise AuthenticationFailure("Decryption failed: truncated chunk")
            nonce = chunk[:NONCE_SIZE]
            try:
                out += aead.decrypt(nonce, chunk[NONCE_SIZE:], None)
            except InvalidTag as e:
                raise AuthenticationFailure() from e
        return bytes(out)

    def config(self) -> CipherConfig:
        return CipherConfig(type=self.kind, chunk_size=self.chunk_size)


def new_default_cipher() -> AEADCipher:
    """Random-nonce cipher used for peer-facing blobs."""
    return AEADCipher(NONCE_RANDOM, DEFAULT_CHUNK_SIZE)


def new_time_series_cipher(chunk_size: int = DEFAULT_CHUNK_SIZE) -> AEADCipher:
    """Time-series nonce cipher used for local at-rest encryption."""
    return AEADCipher(NONCE_TIME_SERIES, chunk_size)


def cipher_key_size(kind: str) -> int:
    """Key length in bytes for a cipher kind."""
    if kind == CIPHER_CHACHA20_POLY1305:
        return AEADCipher.key_size
    raise CryptoError(ErrorCode.E104_UNSUPPORTED_CIPHER, f"Cipher not implemented: {kind}")


def cipher_from_config(config: CipherConfig) -> AEADCipher:
    """
    Build a cipher from shared settings.

    Raises:
        CryptoError: If the cipher type is not supported
    """
    if config.type == CIPHER_CHACHA20_POLY1305:
        return AEADCipher(NONCE_RANDOM, config.chunk_size)
    raise CryptoError(
        ErrorCode.E104_UNSUPPORTED_CIPHER, f"Cipher not implemented for config import: {config.type}"
    )
