"""
Handshake - Per-peer strategies.

A strategy bundles everything needed to reach one participant: the
rendezvous backend that publishes the newest message pointer, the message
store that holds the encrypted blobs, and the cipher used for both.

Two views exist. ``share()`` yields the public, read-only subset handed to
peers during a handshake. ``export()`` yields the full settings including
write endpoints and signing keys, which only ever reach local storage.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from .constants import DEFAULT_IPFS_QUERY_TYPE, DEFAULT_MESSAGE_STORE_URL, DEFAULT_RENDEZVOUS_URL
from .crypto import AEADCipher, CipherConfig, cipher_from_config, new_default_cipher
from .errors import ErrorCode, HandshakeError, NegotiationError
from .storage import (
    PeerStorage,
    Storage,
    StorageConfig,
    new_default_message_storage,
    new_default_rendezvous,
    storage_from_config,
    storage_from_peer,
)

logger = logging.getLogger(__name__)


@dataclass
class StrategyPeerConfig:
    """Public strategy settings, safe to transmit."""

    rendezvous: PeerStorage
    storage: PeerStorage
    cipher: CipherConfig = field(default_factory=CipherConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rendezvous": self.rendezvous.to_dict(),
            "storage": self.storage.to_dict(),
            "cipher": self.cipher.to_dict(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StrategyPeerConfig":
        try:
            return StrategyPeerConfig(
                rendezvous=PeerStorage.from_dict(data["rendezvous"]),
                storage=PeerStorage.from_dict(data["storage"]),
                cipher=CipherConfig.from_dict(data.get("cipher") or {}),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise NegotiationError(
                ErrorCode.E308_INVALID_PEER_CONFIG, f"Invalid strategy config: {e}"
            ) from e


@dataclass
class StrategyConfig:
    """Full strategy settings for local persistence."""

    rendezvous: StorageConfig
    storage: StorageConfig
    cipher: CipherConfig = field(default_factory=CipherConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rendezvous": self.rendezvous.to_dict(),
            "storage": self.storage.to_dict(),
            "cipher": self.cipher.to_dict(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StrategyConfig":
        try:
            return StrategyConfig(
                rendezvous=StorageConfig.from_dict(data["rendezvous"]),
                storage=StorageConfig.from_dict(data["storage"]),
                cipher=CipherConfig.from_dict(data.get("cipher") or {}),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise HandshakeError(ErrorCode.E002_INVALID_ARGUMENT, f"Invalid strategy config: {e}") from e


class Strategy:
    """Rendezvous + message store + cipher for one participant."""

    def __init__(self, rendezvous: Storage, message_store: Storage, cipher: Optional[AEADCipher] = None):
        self.rendezvous = rendezvous
        self.message_store = message_store
        self.cipher = cipher or new_default_cipher()

    @classmethod
    def default(
        cls,
        rendezvous_url: str = DEFAULT_RENDEZVOUS_URL,
        message_store_url: str = DEFAULT_MESSAGE_STORE_URL,
        query_type: str = DEFAULT_IPFS_QUERY_TYPE,
        client: Optional[httpx.Client] = None,
    ) -> "Strategy":
        """A fresh strategy: new rendezvous signing key, IPFS message store, default cipher."""
        return cls(
            rendezvous=new_default_rendezvous(rendezvous_url, client),
            message_store=new_default_message_storage(message_store_url, query_type, client),
            cipher=new_default_cipher(),
        )

    def share(self) -> StrategyPeerConfig:
        return StrategyPeerConfig(
            rendezvous=self.rendezvous.share(),
            storage=self.message_store.share(),
            cipher=self.cipher.config(),
        )

    def export(self) -> StrategyConfig:
        return StrategyConfig(
            rendezvous=self.rendezvous.export(),
            storage=self.message_store.export(),
            cipher=self.cipher.config(),
        )

    @classmethod
    def from_peer_config(cls, config: StrategyPeerConfig, client: Optional[httpx.Client] = None) -> "Strategy":
        """Read-only strategy for reaching a peer."""
        return cls(
            rendezvous=storage_from_peer(config.rendezvous, client),
            message_store=storage_from_peer(config.storage, client),
            cipher=cipher_from_config(config.cipher),
        )

    @classmethod
    def from_config(cls, config: StrategyConfig, client: Optional[httpx.Client] = None) -> "Strategy":
        return cls(
            rendezvous=storage_from_config(config.rendezvous, client),
            message_store=storage_from_config(config.storage, client),
            cipher=cipher_from_config(config.cipher),
        )

    def close(self) -> None:
        self.rendezvous.close()
        self.message_store.close()
