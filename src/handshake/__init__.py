"""
Handshake - Rendezvous-based store-and-forward encrypted messaging

Participants negotiate a shared pepper once, then address every message
through one-time lookup tokens derived from it, so no durable routable
identifier ever appears on the wire or in storage.

Version: 0.1.0
License: MIT
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Import core modules for easy access
from .chat import Chat, ChatData, ChatLog, ChatLogEntry, ChatPeer
from .config import Config
from .constants import APP_NAME, VERSION
from .errors import (
    ChatError,
    ConfigError,
    CryptoError,
    ErrorCode,
    HandshakeError,
    LookupPoolError,
    NegotiationError,
    NothingNew,
    ProfileError,
    StorageError,
)
from .lookup import LookupPool
from .negotiator import Handshake, PeerConfig, Role
from .profile import Profile, new_genesis_profile, profiles_exist, unlock_profile
from .session import Session
from .storage import ConsensusRule, LocalStorage, StorageEngine
from .strategy import Strategy

__all__ = [
    "APP_NAME",
    "VERSION",
    "Chat",
    "ChatData",
    "ChatError",
    "ChatLog",
    "ChatLogEntry",
    "ChatPeer",
    "Config",
    "ConfigError",
    "ConsensusRule",
    "CryptoError",
    "ErrorCode",
    "Handshake",
    "HandshakeError",
    "LocalStorage",
    "LookupPool",
    "LookupPoolError",
    "NegotiationError",
    "NothingNew",
    "PeerConfig",
    "Profile",
    "ProfileError",
    "Role",
    "Session",
    "StorageEngine",
    "StorageError",
    "Strategy",
    "new_genesis_profile",
    "profiles_exist",
    "unlock_profile",
]
