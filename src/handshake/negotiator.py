"""
Handshake - Peer negotiation.

Before a chat exists every participant generates fresh entropy and swaps a
``PeerConfig`` (entropy, alias and public strategy) with the others. The
initiator collects all positions, fixes the sort order and hands each peer
a personalized config carrying ``item``/``total_items``. Once every party
holds the same ordered list, each derives the same pepper and the
handshake is consumed by chat creation.

Typical two-party flow:
    1. Initiator and peer each create a Handshake
    2. Peer shares its position, initiator calls add_peer()
    3. Initiator calls get_all_configs() and sends item 1 (its own) to the peer
    4. Peer calls add_peer(); the two-party fast path appends its own position
    5. Both sides call sorted_negotiator_list() and pepper()
"""

import json
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from .constants import ALIAS_SEPARATOR, ALIAS_WORD_COUNT, ALIAS_WORDLIST, ENTROPY_SIZE
from .crypto import gen_rand_bytes, generate_pepper
from .errors import (
    CountMismatch,
    DuplicatePeer,
    ErrorCode,
    HandshakeError,
    InsufficientPeers,
    InvalidSortOrder,
    InvalidSortValidation,
    NegotiationError,
    RoleViolation,
    SortOrderMismatch,
)
from .strategy import Strategy, StrategyPeerConfig
from .utils import b64decode, b64encode

logger = logging.getLogger(__name__)


class Role(Enum):
    INITIATOR = "initiator"
    PEER = "peer"


def gen_alias(word_count: int = ALIAS_WORD_COUNT) -> str:
    """Random human-friendly alias such as ``kilo-echo-tango``."""
    return ALIAS_SEPARATOR.join(secrets.choice(ALIAS_WORDLIST) for _ in range(word_count))


@dataclass
class PeerConfig:
    """Wire form of a negotiator."""

    entropy: bytes
    alias: str
    config: StrategyPeerConfig
    item: int = 0
    total_items: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "entropy": b64encode(self.entropy),
            "alias": self.alias,
            "config": self.config.to_dict(),
        }
        if self.item:
            data["item"] = self.item
        if self.total_items:
            data["total_items"] = self.total_items
        return data

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PeerConfig":
        try:
            return PeerConfig(
                entropy=b64decode(data["entropy"]),
                alias=str(data.get("alias", "")),
                config=StrategyPeerConfig.from_dict(data["config"]),
                item=int(data.get("item", 0)),
                total_items=int(data.get("total_items", 0)),
            )
        except NegotiationError:
            raise
        except (KeyError, TypeError, ValueError, HandshakeError) as e:
            raise NegotiationError(ErrorCode.E308_INVALID_PEER_CONFIG, f"Invalid peer config: {e}") from e

    @staticmethod
    def from_bytes(data: bytes) -> "PeerConfig":
        """
        Parse a config received from another party.

        Raises:
            NegotiationError: If the data is malformed
        """
        try:
            raw = json.loads(data)
        except (ValueError, TypeError) as e:
            raise NegotiationError(ErrorCode.E308_INVALID_PEER_CONFIG, f"Invalid peer config: {e}") from e
        if not isinstance(raw, dict):
            raise NegotiationError(ErrorCode.E308_INVALID_PEER_CONFIG, "Peer config must be a JSON object")
        return PeerConfig.from_dict(raw)


class Negotiator:
    """One participant in a handshake."""

    def __init__(self, entropy: bytes, alias: str, strategy: Strategy, sort_order: int = 0):
        if len(entropy) != ENTROPY_SIZE:
            raise NegotiationError(ErrorCode.E308_INVALID_PEER_CONFIG, "Entropy must be 96 bytes")
        self.entropy = bytearray(entropy)
        self.alias = alias
        self.strategy = strategy
        self.sort_order = sort_order

    @classmethod
    def new(cls, strategy: Strategy, alias: Optional[str] = None) -> "Negotiator":
        return cls(gen_rand_bytes(ENTROPY_SIZE), alias or gen_alias(), strategy)

    @classmethod
    def from_config(cls, config: PeerConfig, client: Optional[httpx.Client] = None) -> "Negotiator":
        return cls(
            entropy=config.entropy,
            alias=config.alias,
            strategy=Strategy.from_peer_config(config.config, client),
            sort_order=config.item,
        )

    def peer_config(self) -> PeerConfig:
        return PeerConfig(entropy=bytes(self.entropy), alias=self.alias, config=self.strategy.share())

    def share(self) -> bytes:
        """JSON PeerConfig for transmission; only the public strategy view is included."""
        return self.peer_config().to_bytes()

    def matches(self, other: "Negotiator") -> bool:
        return bytes(self.entropy) == bytes(other.entropy)

    def wipe(self) -> None:
        for i in range(len(self.entropy)):
            self.entropy[i] = 0


class Handshake:
    """
    Sort-order agreement between two or more parties.

    State machine:
        created -> add_peer()* -> all_peers_received()
                -> get_all_configs() / sorted_negotiator_list() -> consumed by chat
    """

    def __init__(
        self,
        strategy: Strategy,
        role: Role,
        alias: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.role = role
        self.position = Negotiator.new(strategy, alias)
        self.negotiators: List[Negotiator] = []
        self.peer_total = 0
        self._client = client

        if role == Role.INITIATOR:
            self.negotiators.append(self.position)
        logger.debug(f"New {role.value} handshake as {self.position.alias}")

    def share(self) -> bytes:
        return self.position.share()

    def add_peer(self, config: PeerConfig) -> bool:
        """
        Add another party's position.

        Args:
            config: Config received from the other party

        Returns:
            True once every expected peer has been received

        Raises:
            InvalidSortOrder: For a peer-role config without a valid item number
            DuplicatePeer: If the same entropy was already added
        """
        if self.role == Role.PEER:
            if config.item == 0:
                raise InvalidSortOrder("Missing sort order")
            if config.item > config.total_items:
                raise InvalidSortOrder("Sort order item is greater than total size")

        negotiator = Negotiator.from_config(config, self._client)
        if any(n.matches(negotiator) for n in self.negotiators):
            raise DuplicatePeer()

        if self.role == Role.PEER:
            self.peer_total = config.total_items
        self.negotiators.append(negotiator)

        if self.role == Role.PEER:
            if config.item == 1 and config.total_items == 2:
                self.position.sort_order = 2
                self.negotiators.append(self.position)
        else:
            self.peer_total = len(self.negotiators)

        logger.debug(f"Added peer {negotiator.alias} ({len(self.negotiators)}/{self.peer_total})")
        return self.all_peers_received()

    def all_peers_received(self) -> bool:
        return self.peer_total > 0 and len(self.negotiators) == self.peer_total

    def get_all_configs(self) -> List[PeerConfig]:
        """
        Fix the sort order and build one personalized config per participant.

        Raises:
            RoleViolation: If called by a peer
            InsufficientPeers: With fewer than two negotiators
            SortOrderMismatch: If the initiator is not first in the list
        """
        if self.role != Role.INITIATOR:
            raise RoleViolation("Only an initiator can get all configs")
        total_items = len(self.negotiators)
        if total_items < 2:
            raise InsufficientPeers()
        if not self.position.matches(self.negotiators[0]):
            raise SortOrderMismatch()

        self.peer_total = total_items
        configs = []
        for index, negotiator in enumerate(self.negotiators):
            negotiator.sort_order = index + 1
            config = negotiator.peer_config()
            config.item = index + 1
            config.total_items = total_items
            configs.append(config)
        return configs

    def sorted_negotiator_list(self) -> List[Negotiator]:
        """
        Return the negotiators ordered by their agreed sort order.

        Raises:
            InsufficientPeers: With fewer than two negotiators
            CountMismatch: If fewer or more negotiators than expected are present
            InvalidSortValidation: On gaps, collisions or unassigned sort orders
        """
        total_items = len(self.negotiators)
        if total_items < 2:
            raise InsufficientPeers("At least two peers must be present to sort the list")
        if total_items != self.peer_total:
            raise CountMismatch()

        slots: List[Optional[Negotiator]] = [None] * total_items
        for negotiator in self.negotiators:
            if not 1 <= negotiator.sort_order <= total_items:
                raise InvalidSortValidation("Invalid sort order item")
            slots[negotiator.sort_order - 1] = negotiator

        for index, negotiator in enumerate(slots):
            if negotiator is None or negotiator.sort_order != index + 1:
                raise InvalidSortValidation()
        return [n for n in slots if n is not None]

    def pepper(self) -> bytes:
        return generate_pepper(bytes(n.entropy) for n in self.sorted_negotiator_list())

    def destroy(self) -> None:
        """Zero own entropy and forget every negotiator."""
        self.position.wipe()
        self.negotiators.clear()
        self.peer_total = 0
