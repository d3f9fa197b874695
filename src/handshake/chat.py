"""
Handshake - Chats and chat logs.

A chat is what a finished handshake turns into: a stable chat id, one
ChatPeer per participant (including ourselves) and, persisted next to it,
one lookup pool per peer plus the local ChatLog of decrypted messages.

Persisted key layout for a chat, per local profile:
    chats/{chat_id}/{profile_id}/config            chat config
    chats/{chat_id}/{profile_id}/chatlog           chat log
    chats/{chat_id}/{profile_id}/lookups/{peer_id} lookup pool per peer
    chats/{chat_id}/{profile_id}/pending           present only while the chat is being created
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .constants import CHAT_KEY_PREFIX, DEFAULT_CHAT_TTL
from .errors import ChatError, ErrorCode, HandshakeError, OwnPeerNotFound
from .strategy import Strategy, StrategyConfig

logger = logging.getLogger(__name__)


def chat_prefix(chat_id: str) -> str:
    return f"{CHAT_KEY_PREFIX}{chat_id}/"


def chat_path(chat_id: str, profile_id: str) -> str:
    return f"{CHAT_KEY_PREFIX}{chat_id}/{profile_id}"


def config_key(chat_id: str, profile_id: str) -> str:
    return f"{chat_path(chat_id, profile_id)}/config"


def chatlog_key(chat_id: str, profile_id: str) -> str:
    return f"{chat_path(chat_id, profile_id)}/chatlog"


def lookup_key(chat_id: str, profile_id: str, peer_id: str) -> str:
    return f"{chat_path(chat_id, profile_id)}/lookups/{peer_id}"


def pending_key(chat_id: str, profile_id: str) -> str:
    return f"{chat_path(chat_id, profile_id)}/pending"


def unique_chat_ids_from_paths(paths: Iterable[str], profile_id: str) -> List[str]:
    """Extract the distinct chat ids owned by ``profile_id`` from storage keys."""
    ids = set()
    for path in paths:
        parts = path.split("/")
        if len(parts) > 2 and parts[2] == profile_id:
            ids.add(parts[1])
    return sorted(ids)


@dataclass
class ChatData:
    """A message payload. Immutable once encrypted and stored."""

    parent: str = ""
    timestamp: int = 0
    media: List[str] = field(default_factory=list)
    message: str = ""
    ttl: int = 0

    def merge(self, payload: bytes) -> None:
        """
        Merge caller-supplied ``message`` and ``media`` fields from a JSON payload.

        Raises:
            ChatError: If the payload is not a JSON object with valid fields
        """
        try:
            raw = json.loads(payload)
        except (ValueError, TypeError) as e:
            raise ChatError(ErrorCode.E507_INVALID_MESSAGE, f"Message payload is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ChatError(ErrorCode.E507_INVALID_MESSAGE, "Message payload must be a JSON object")

        message = raw.get("message", self.message)
        media = raw.get("media", self.media)
        if not isinstance(message, str) or not isinstance(media, list):
            raise ChatError(ErrorCode.E507_INVALID_MESSAGE, "Invalid message or media field")
        self.message = message
        self.media = [str(m) for m in media]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.parent:
            data["parent"] = self.parent
        if self.timestamp:
            data["timestamp"] = self.timestamp
        if self.media:
            data["media"] = list(self.media)
        if self.message:
            data["message"] = self.message
        if self.ttl:
            data["ttl"] = self.ttl
        return data

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ChatData":
        return ChatData(
            parent=data.get("parent", ""),
            timestamp=int(data.get("timestamp", 0)),
            media=list(data.get("media") or []),
            message=data.get("message", ""),
            ttl=int(data.get("ttl", 0)),
        )

    @staticmethod
    def from_bytes(data: bytes) -> "ChatData":
        try:
            raw = json.loads(data)
            return ChatData.from_dict(raw)
        except (ValueError, TypeError, AttributeError) as e:
            raise ChatError(ErrorCode.E507_INVALID_MESSAGE, f"Invalid chat data: {e}") from e


@dataclass
class ChatLogEntry:
    id: str
    sender: str
    sent: int = 0
    received: int = 0
    ttl: int = 0
    data: ChatData = field(default_factory=ChatData)

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"id": self.id, "sender": self.sender}
        if self.sent:
            entry["sent"] = self.sent
        if self.received:
            entry["received"] = self.received
        if self.ttl:
            entry["ttl"] = self.ttl
        entry["data"] = self.data.to_dict()
        return entry

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ChatLogEntry":
        return ChatLogEntry(
            id=data.get("id", ""),
            sender=data.get("sender", ""),
            sent=int(data.get("sent", 0)),
            received=int(data.get("received", 0)),
            ttl=int(data.get("ttl", 0)),
            data=ChatData.from_dict(data.get("data") or {}),
        )


class ChatLog:
    """
    Append-only record of decrypted messages.

    Entries are keyed ``"{timestamp}-{id}"`` (sent time, falling back to
    received time) so iterating the sorted keys gives a stable
    chronological order.
    """

    def __init__(self, entries: Optional[Dict[str, ChatLogEntry]] = None):
        self.entries: Dict[str, ChatLogEntry] = dict(entries or {})
        self._ids = {entry.id for entry in self.entries.values()}

    def __len__(self) -> int:
        return len(self.entries)

    def add_entry(self, entry: ChatLogEntry) -> None:
        """
        Add an entry unless a message with the same content id is already logged.

        Raises:
            ChatError: If the entry carries neither a sent nor a received timestamp
        """
        if not entry.sent and not entry.received:
            raise ChatError(ErrorCode.E506_INVALID_TIMESTAMP, "No valid timestamp found")
        if entry.id in self._ids:
            return
        timestamp = entry.sent or entry.received
        self.entries[f"{timestamp}-{entry.id}"] = entry
        self._ids.add(entry.id)

    def has_id(self, content_id: str) -> bool:
        return content_id in self._ids

    def sorted(self) -> List[ChatLogEntry]:
        return [self.entries[key] for key in sorted(self.entries)]

    def sorted_json(self) -> bytes:
        return json.dumps([entry.to_dict() for entry in self.sorted()]).encode("utf-8")

    def to_bytes(self) -> bytes:
        return json.dumps({key: entry.to_dict() for key, entry in self.entries.items()}).encode("utf-8")

    @staticmethod
    def from_bytes(data: bytes) -> "ChatLog":
        try:
            raw = json.loads(data)
            return ChatLog({key: ChatLogEntry.from_dict(value) for key, value in raw.items()})
        except (ValueError, TypeError, AttributeError) as e:
            raise ChatError(ErrorCode.E500_CHAT_ERROR, f"Corrupt chat log: {e}") from e


class ChatPeer:
    """One participant of a chat as seen locally."""

    def __init__(self, id: str, alias: str, strategy: Strategy):
        self.id = id
        self.alias = alias
        self.strategy = strategy

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "alias": self.alias, "strategy": self.strategy.export().to_dict()}

    @staticmethod
    def from_dict(data: Dict[str, Any], client: Optional[httpx.Client] = None) -> "ChatPeer":
        return ChatPeer(
            id=data["id"],
            alias=data.get("alias", ""),
            strategy=Strategy.from_config(StrategyConfig.from_dict(data["strategy"]), client),
        )


class Chat:
    """A finalized conversation."""

    def __init__(
        self,
        id: str,
        own_peer_id: str,
        peers: Dict[str, ChatPeer],
        last_sent_hash: str = "",
        max_ttl: int = 0,
    ):
        if own_peer_id not in peers:
            raise OwnPeerNotFound()
        self.id = id
        self.own_peer_id = own_peer_id
        self.peers = peers
        self.last_sent_hash = last_sent_hash
        self.max_ttl = max_ttl

    @property
    def own_peer(self) -> ChatPeer:
        return self.peers[self.own_peer_id]

    def other_peers(self) -> List[ChatPeer]:
        return [peer for peer_id, peer in sorted(self.peers.items()) if peer_id != self.own_peer_id]

    def ttl(self) -> int:
        if self.max_ttl <= 0:
            return DEFAULT_CHAT_TTL
        return self.max_ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "peer_id": self.own_peer_id,
            "last_sent": self.last_sent_hash,
            "peers": {peer_id: peer.to_dict() for peer_id, peer in self.peers.items()},
            "settings": {"max_ttl": self.max_ttl},
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @staticmethod
    def from_dict(data: Dict[str, Any], client: Optional[httpx.Client] = None) -> "Chat":
        peers = {}
        for peer_data in (data.get("peers") or {}).values():
            peer = ChatPeer.from_dict(peer_data, client)
            peers[peer.id] = peer
        return Chat(
            id=data["id"],
            own_peer_id=data["peer_id"],
            peers=peers,
            last_sent_hash=data.get("last_sent", ""),
            max_ttl=int((data.get("settings") or {}).get("max_ttl", 0)),
        )

    @staticmethod
    def from_bytes(data: bytes, client: Optional[httpx.Client] = None) -> "Chat":
        """
        Raises:
            ChatError: If the stored config cannot be parsed
        """
        try:
            return Chat.from_dict(json.loads(data), client)
        except OwnPeerNotFound:
            raise
        except (ValueError, KeyError, TypeError, AttributeError, HandshakeError) as e:
            raise ChatError(ErrorCode.E500_CHAT_ERROR, f"Corrupt chat config: {e}") from e

    def close(self) -> None:
        for peer in self.peers.values():
            peer.strategy.close()
