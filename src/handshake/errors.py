"""
Handshake - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
the handshake package. Each error has a unique code for logging and debugging.

Errors fall into two broad families. Protocol violations (duplicate peers,
sort mismatches, authentication failures) abort the current operation.
Steady-state conditions (an exhausted or already consumed lookup entry,
nothing published at a rendezvous) are typed so callers can poll quietly.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all handshake error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"
    E005_OPERATION_FAILED = "E005"

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E101_ENCRYPTION_FAILED = "E101"
    E102_AUTHENTICATION_FAILED = "E102"
    E103_INVALID_KEY = "E103"
    E104_UNSUPPORTED_CIPHER = "E104"
    E108_KEY_DERIVATION_FAILED = "E108"

    # Storage Errors (E200-E299)
    E200_STORAGE_ERROR = "E200"
    E201_STORAGE_UNAVAILABLE = "E201"
    E202_NO_NODES_CONFIGURED = "E202"
    E203_RULE_NOT_IMPLEMENTED = "E203"
    E204_INVALID_PAYLOAD = "E204"
    E205_STALE_TIMESTAMP = "E205"
    E206_NOT_SHAREABLE = "E206"
    E207_INVALID_ENGINE = "E207"

    # Negotiation Errors (E300-E399)
    E300_NEGOTIATION_ERROR = "E300"
    E301_INVALID_SORT_ORDER = "E301"
    E302_DUPLICATE_PEER = "E302"
    E303_SORT_ORDER_MISMATCH = "E303"
    E304_INVALID_SORT_VALIDATION = "E304"
    E305_ROLE_VIOLATION = "E305"
    E306_INSUFFICIENT_PEERS = "E306"
    E307_COUNT_MISMATCH = "E307"
    E308_INVALID_PEER_CONFIG = "E308"
    E309_NO_HANDSHAKE = "E309"

    # Lookup Pool Errors (E400-E499)
    E400_LOOKUP_ERROR = "E400"
    E401_KEY_NOT_FOUND = "E401"
    E402_POOL_EXHAUSTED = "E402"

    # Chat Errors (E500-E599)
    E500_CHAT_ERROR = "E500"
    E501_CHAT_NOT_FOUND = "E501"
    E502_OWN_PEER_NOT_FOUND = "E502"
    E503_MESSAGE_TOO_LARGE = "E503"
    E504_NO_KEY = "E504"
    E505_NO_HASH = "E505"
    E506_INVALID_TIMESTAMP = "E506"
    E507_INVALID_MESSAGE = "E507"

    # Profile Errors (E600-E699)
    E600_PROFILE_ERROR = "E600"
    E601_NO_PROFILE_FOUND = "E601"
    E602_INVALID_PASSWORD = "E602"
    E603_PROFILE_EXISTS = "E603"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class HandshakeError(Exception):
    """Base exception class for all handshake errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a handshake error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class CryptoError(HandshakeError):
    """Exception raised for cryptographic operation failures.

    This includes encryption, decryption, key derivation and cipher
    configuration errors.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class AuthenticationFailure(CryptoError):
    """A ciphertext chunk failed authentication. Never partially trusted."""

    def __init__(
        self,
        message: str = "Decryption failed: authentication tag mismatch",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E102_AUTHENTICATION_FAILED, message, details)


class StorageError(HandshakeError):
    """Exception raised for storage backend failures.

    This includes local database errors, unreachable remote nodes,
    malformed rendezvous payloads and unsupported consensus rules.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_STORAGE_ERROR,
        message: str = "Storage operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class StorageUnavailable(StorageError):
    """Every configured node failed for a request."""

    def __init__(
        self,
        message: str = "No servers available",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E201_STORAGE_UNAVAILABLE, message, details)


class NegotiationError(HandshakeError):
    """Exception raised for handshake protocol violations.

    These are fatal to the current handshake or chat-creation attempt and
    are never silently corrected.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_NEGOTIATION_ERROR,
        message: str = "Handshake negotiation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class InvalidSortOrder(NegotiationError):
    def __init__(self, message: str = "Invalid sort order", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E301_INVALID_SORT_ORDER, message, details)


class DuplicatePeer(NegotiationError):
    def __init__(
        self,
        message: str = "Duplicate detected, peer must be unique",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E302_DUPLICATE_PEER, message, details)


class SortOrderMismatch(NegotiationError):
    def __init__(
        self, message: str = "Initiator sort order mismatch", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E303_SORT_ORDER_MISMATCH, message, details)


class InvalidSortValidation(NegotiationError):
    def __init__(
        self, message: str = "Invalid sort validation", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E304_INVALID_SORT_VALIDATION, message, details)


class RoleViolation(NegotiationError):
    def __init__(
        self, message: str = "Operation not allowed for this role", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E305_ROLE_VIOLATION, message, details)


class InsufficientPeers(NegotiationError):
    def __init__(
        self, message: str = "At least two peers must be present", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E306_INSUFFICIENT_PEERS, message, details)


class CountMismatch(NegotiationError):
    def __init__(
        self, message: str = "Peer total and negotiator count mismatch", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E307_COUNT_MISMATCH, message, details)


class LookupPoolError(HandshakeError):
    """Exception raised for lookup pool conditions.

    Key-not-found and exhaustion are expected steady-state conditions;
    retrieval treats them as skip-and-continue.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E400_LOOKUP_ERROR,
        message: str = "Lookup pool operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyNotFound(LookupPoolError):
    def __init__(self, message: str = "Lookup key not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E401_KEY_NOT_FOUND, message, details)


class PoolExhausted(LookupPoolError):
    def __init__(
        self,
        message: str = "Lookup pool exhausted, a new handshake is required",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E402_POOL_EXHAUSTED, message, details)


class ChatError(HandshakeError):
    """Exception raised for chat lifecycle and messaging failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E500_CHAT_ERROR,
        message: str = "Chat operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ChatNotFound(ChatError):
    def __init__(self, message: str = "Chat not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E501_CHAT_NOT_FOUND, message, details)


class OwnPeerNotFound(ChatError):
    def __init__(
        self, message: str = "Own peer not found in negotiators", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E502_OWN_PEER_NOT_FOUND, message, details)


class MessageTooLarge(ChatError):
    def __init__(self, message: str = "Message too large", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E503_MESSAGE_TOO_LARGE, message, details)


class NothingNew(ChatError):
    """Nothing to retrieve from a peer. Not a failure; UIs poll silently."""


class NoKey(NothingNew):
    def __init__(
        self, message: str = "No lookup key for stored blob", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E504_NO_KEY, message, details)


class NoHash(NothingNew):
    def __init__(
        self, message: str = "No rendezvous hash available", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ErrorCode.E505_NO_HASH, message, details)


class ProfileError(HandshakeError):
    """Exception raised for profile creation and unlock failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E600_PROFILE_ERROR,
        message: str = "Profile operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class NoProfileFound(ProfileError):
    def __init__(self, message: str = "No profile found", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E601_NO_PROFILE_FOUND, message, details)


class InvalidPassword(ProfileError):
    def __init__(self, message: str = "Invalid password", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.E602_INVALID_PASSWORD, message, details)


class ConfigError(HandshakeError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
