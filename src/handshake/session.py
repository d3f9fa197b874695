"""
Handshake - Session orchestration.

A Session is the entry point for an unlocked profile. It owns the local
storage, drives the handshake, turns a finished handshake into a chat and
runs the send/retrieve protocol:

Sending:
    1. Pop a random entry from our own lookup pool, encrypt the message,
       write ``token || ciphertext`` to our message store and get hash H
    2. Record H as the chat's last sent hash (the next message's parent)
    3. Pop another entry, encrypt H and publish ``token || ciphertext`` to
       our rendezvous slot

Retrieving, per peer:
    1. Read the peer's rendezvous slot, pop the token from that peer's pool
       and decrypt H
    2. Fetch H from the peer's message store, pop its token and decrypt
    3. Walk parent hashes until a known message, an unknown token or the
       root of the chain is reached

Every pool pop is persisted before the dependent write is attempted, so a
token is never handed out twice, even when the write fails. Each
(chat_id, peer_id) pool is guarded by a lock shared by every Session on the
same storage object; separate storage objects opened on one database file
are not serialized against each other.

Sessions do not install log handlers; call ``utils.setup_logging`` from the
application to get the configured format and log file.
"""

import json
import logging
import threading
import weakref
from typing import Dict, List, Optional, Tuple

import httpx

from .chat import (
    Chat,
    ChatData,
    ChatLog,
    ChatLogEntry,
    ChatPeer,
    chat_path,
    chatlog_key,
    config_key,
    lookup_key,
    pending_key,
    unique_chat_ids_from_paths,
)
from .config import Config
from .constants import CHAT_ID_SIZE, CHAT_KEY_PREFIX, LOOKUP_TOKEN_SIZE, PEER_ID_SIZE
from .crypto import AEADCipher, gen_hex_id
from .errors import (
    ChatError,
    ChatNotFound,
    ErrorCode,
    HandshakeError,
    InsufficientPeers,
    KeyNotFound,
    MessageTooLarge,
    NegotiationError,
    NoHash,
    NoKey,
    NothingNew,
    OwnPeerNotFound,
    PoolExhausted,
)
from .lookup import LookupPool
from .negotiator import Handshake, PeerConfig, Role
from .profile import unlock_profile
from .storage import LocalStorage, Storage
from .strategy import Strategy
from .utils import b64decode, b64encode, now_ns

logger = logging.getLogger(__name__)

# Pool locks per storage object, dropped with the storage
_POOL_LOCKS = weakref.WeakKeyDictionary()
_POOL_LOCKS_GUARD = threading.Lock()


class Session:
    """
    An unlocked profile and everything it can do.

    Args:
        password: Profile password
        config: Configuration (defaults are loaded when omitted)
        storage: Local storage (a LocalStorage at the configured path when omitted)
        http_client: Shared httpx client for every remote backend
    """

    def __init__(
        self,
        password: str,
        config: Optional[Config] = None,
        storage: Optional[Storage] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config or Config()
        self._owns_storage = storage is None
        self.storage = storage or LocalStorage(self.config.storage_path)
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client(timeout=self.config.get("strategy", "timeout"))
        self.cipher = AEADCipher(
            self.config.get("crypto", "nonce"), self.config.get("crypto", "chunk_size")
        )
        self.handshake: Optional[Handshake] = None

        try:
            self.profile = unlock_profile(password, self.storage)
        except HandshakeError:
            self.close()
            raise
        logger.info(f"Session opened for profile {self.profile.id[:8]}...")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Discard any open handshake and release storage and network resources."""
        if self.handshake is not None:
            self.handshake.destroy()
            self.handshake = None
        if self._owns_storage:
            self.storage.close()
        if self._owns_client:
            self.http_client.close()

    # Encrypted local persistence

    def _put(self, key: str, data: bytes) -> None:
        self.storage.set(key, self.cipher.encrypt(data, self.profile.key))

    def _fetch(self, key: str) -> bytes:
        data = self.storage.get(key)
        if not data:
            return b""
        return self.cipher.decrypt(data, self.profile.key)

    def _pool_lock(self, chat_id: str, peer_id: str) -> threading.Lock:
        with _POOL_LOCKS_GUARD:
            locks = _POOL_LOCKS.setdefault(self.storage, {})
            return locks.setdefault((chat_id, peer_id), threading.Lock())

    def _forget_pool_locks(self, chat_id: str) -> None:
        with _POOL_LOCKS_GUARD:
            locks = _POOL_LOCKS.get(self.storage, {})
            for pool_id in [pool_id for pool_id in locks if pool_id[0] == chat_id]:
                del locks[pool_id]

    def _save_pool(self, chat_id: str, peer_id: str, pool: LookupPool) -> None:
        self._put(lookup_key(chat_id, self.profile.id, peer_id), pool.to_bytes())

    def _load_pool(self, chat_id: str, peer_id: str) -> LookupPool:
        data = self._fetch(lookup_key(chat_id, self.profile.id, peer_id))
        if not data:
            raise ChatError(ErrorCode.E500_CHAT_ERROR, f"No lookup pool for peer {peer_id}")
        return LookupPool.from_bytes(data)

    def _pop_random(self, chat_id: str, peer_id: str, count: int = 1) -> List[Tuple[str, bytes]]:
        """Pop ``count`` random entries at once, or none if the pool holds fewer."""
        with self._pool_lock(chat_id, peer_id):
            pool = self._load_pool(chat_id, peer_id)
            if len(pool) < count:
                raise PoolExhausted(details={"available": len(pool), "needed": count})
            entries = [pool.pop_random() for _ in range(count)]
            self._save_pool(chat_id, peer_id, pool)
        logger.debug(f"Popped {count} write tokens for {chat_id[:8]}/{peer_id[:8]} ({len(pool)} left)")
        return entries

    def _pop_by_token(self, chat_id: str, peer_id: str, token: str) -> bytes:
        with self._pool_lock(chat_id, peer_id):
            pool = self._load_pool(chat_id, peer_id)
            key = pool.pop_by_token(token)
            self._save_pool(chat_id, peer_id, pool)
        logger.debug(f"Popped read token for {chat_id[:8]}/{peer_id[:8]} ({len(pool)} left)")
        return key

    # Handshake

    def _new_handshake(self, role: Role, alias: Optional[str]) -> Handshake:
        if self.handshake is not None:
            self.handshake.destroy()
        strategy = Strategy.default(
            rendezvous_url=self.config.get("strategy", "rendezvous_url"),
            message_store_url=self.config.get("strategy", "message_store_url"),
            query_type=self.config.get("strategy", "message_store_query_type"),
            client=self.http_client,
        )
        self.handshake = Handshake(strategy, role, alias, self.http_client)
        return self.handshake

    def new_initiator(self, alias: Optional[str] = None) -> Handshake:
        return self._new_handshake(Role.INITIATOR, alias)

    def new_peer(self, alias: Optional[str] = None) -> Handshake:
        return self._new_handshake(Role.PEER, alias)

    def _require_handshake(self) -> Handshake:
        if self.handshake is None:
            raise NegotiationError(ErrorCode.E309_NO_HANDSHAKE, "No handshake in progress")
        return self.handshake

    def share_handshake_position(self) -> bytes:
        return self._require_handshake().share()

    def add_peer_to_handshake(self, data: bytes) -> bool:
        """Add a config received from another party. Returns True once all peers are in."""
        return self._require_handshake().add_peer(PeerConfig.from_bytes(data))

    def get_handshake_peer_config(self, item: int) -> bytes:
        """
        Initiator only: fix the sort order and return the config for ``item``.

        Items are numbered from 1 in sort order and the initiator is always
        item 1, so in a two-party chat the initiator sends item 1 to the peer.

        Raises:
            NegotiationError: If no config has that item number
        """
        for config in self._require_handshake().get_all_configs():
            if config.item == item:
                return config.to_bytes()
        raise NegotiationError(ErrorCode.E002_INVALID_ARGUMENT, f"No peer config for item {item}")

    def get_handshake_peer_configs(self) -> List[bytes]:
        """Initiator only: every personalized config, in sort order."""
        return [config.to_bytes() for config in self._require_handshake().get_all_configs()]

    # Chats

    def new_chat(self) -> str:
        """
        Turn the finished handshake into a chat and discard the handshake.

        Returns:
            The new chat id

        Raises:
            InsufficientPeers: With fewer than two participants
            CountMismatch: If not every expected participant was received
            OwnPeerNotFound: If our own position is missing from the agreed list
        """
        handshake = self._require_handshake()
        if handshake.peer_total < 2:
            raise InsufficientPeers()

        chat_id = gen_hex_id(CHAT_ID_SIZE)
        try:
            self._put(pending_key(chat_id, self.profile.id), json.dumps({"created": now_ns()}).encode("utf-8"))
            negotiators = handshake.sorted_negotiator_list()
            pepper = handshake.pepper()
            lookup_count = self.config.get("chat", "lookup_count")

            peers: Dict[str, ChatPeer] = {}
            own_peer_id = ""
            for negotiator in negotiators:
                peer_id = gen_hex_id(PEER_ID_SIZE)
                pool = LookupPool.derive(
                    pepper, bytes(negotiator.entropy), negotiator.strategy.cipher.kind, lookup_count
                )
                self._save_pool(chat_id, peer_id, pool)

                strategy = negotiator.strategy
                if negotiator.matches(handshake.position):
                    own_peer_id = peer_id
                    strategy = handshake.position.strategy
                peers[peer_id] = ChatPeer(peer_id, negotiator.alias, strategy)

            if not own_peer_id:
                raise OwnPeerNotFound()

            chat = Chat(chat_id, own_peer_id, peers, max_ttl=self.config.get("chat", "max_ttl"))
            self._save_chat(chat)
            self._save_chat_log(chat_id, ChatLog())
            self.storage.delete(pending_key(chat_id, self.profile.id))
        except Exception:
            logger.warning(f"Chat creation failed, removing partial chat {chat_id[:8]}...")
            self._cleanup_chat(chat_id)
            raise

        handshake.destroy()
        self.handshake = None
        logger.info(f"Created chat {chat_id} with {len(peers)} peers")
        return chat_id

    def _chat_keys(self, chat_id: str) -> List[str]:
        return self.storage.list(chat_path(chat_id, self.profile.id) + "/")

    def _cleanup_chat(self, chat_id: str) -> None:
        for key in self._chat_keys(chat_id):
            try:
                self.storage.delete(key)
            except HandshakeError as e:
                logger.error(f"Cleanup of {key} failed: {e}")
        self._forget_pool_locks(chat_id)

    def _is_pending(self, chat_id: str) -> bool:
        return bool(self.storage.get(pending_key(chat_id, self.profile.id)))

    def _chat_ids(self) -> List[str]:
        return unique_chat_ids_from_paths(self.storage.list(CHAT_KEY_PREFIX), self.profile.id)

    def list_chats(self) -> List[str]:
        """Ids of every fully created chat of this profile."""
        return [chat_id for chat_id in self._chat_ids() if not self._is_pending(chat_id)]

    def recover_pending_chats(self) -> List[str]:
        """Delete chats whose creation never finished. Returns the removed ids."""
        removed = []
        for chat_id in self._chat_ids():
            if self._is_pending(chat_id):
                logger.warning(f"Removing incomplete chat {chat_id[:8]}...")
                self._cleanup_chat(chat_id)
                removed.append(chat_id)
        return removed

    def delete_chat(self, chat_id: str) -> None:
        if not self._chat_keys(chat_id):
            raise ChatNotFound(details={"chat_id": chat_id})
        self._cleanup_chat(chat_id)
        logger.info(f"Deleted chat {chat_id}")

    def get_chat(self, chat_id: str) -> Chat:
        """
        Raises:
            ChatNotFound: If the chat does not exist or is still being created
        """
        data = self._fetch(config_key(chat_id, self.profile.id))
        if not data or self._is_pending(chat_id):
            raise ChatNotFound(details={"chat_id": chat_id})
        return Chat.from_bytes(data, self.http_client)

    def _save_chat(self, chat: Chat) -> None:
        self._put(config_key(chat.id, self.profile.id), chat.to_bytes())

    def get_chat_log(self, chat_id: str) -> ChatLog:
        data = self._fetch(chatlog_key(chat_id, self.profile.id))
        if not data:
            return ChatLog()
        return ChatLog.from_bytes(data)

    def _save_chat_log(self, chat_id: str, log: ChatLog) -> None:
        self._put(chatlog_key(chat_id, self.profile.id), log.to_bytes())

    # Messaging

    def send_message(self, chat_id: str, payload: bytes) -> List[ChatLogEntry]:
        """
        Send a JSON payload (``message`` and optional ``media``) to a chat.

        Returns:
            The full chat log in chronological order

        Raises:
            MessageTooLarge: If the payload exceeds the configured size, before any state changes
            PoolExhausted: If our own lookup pool holds fewer than two entries, before any state changes
        """
        max_size = self.config.get("chat", "max_message_size")
        if len(payload) > max_size:
            raise MessageTooLarge(details={"size": len(payload), "max": max_size})

        chat = self.get_chat(chat_id)
        own = chat.own_peer
        data = ChatData(parent=chat.last_sent_hash, timestamp=now_ns(), ttl=chat.ttl())
        data.merge(payload)

        (message_token, message_key), (pointer_token, pointer_key) = self._pop_random(chat_id, own.id, 2)
        blob = b64decode(message_token) + own.strategy.cipher.encrypt(data.to_bytes(), message_key)
        content_id = own.strategy.message_store.set(chat_id, blob)

        chat.last_sent_hash = content_id
        self._save_chat(chat)

        # The stored message is part of the chain from here on, so it is
        # logged even if publishing the pointer fails.
        log = self.get_chat_log(chat_id)
        try:
            pointer = b64decode(pointer_token) + own.strategy.cipher.encrypt(
                content_id.encode("utf-8"), pointer_key
            )
            own.strategy.rendezvous.set(chat_id, pointer)
        finally:
            log.add_entry(
                ChatLogEntry(id=content_id, sender=own.id, sent=data.timestamp, ttl=data.ttl, data=data)
            )
            self._save_chat_log(chat_id, log)
        logger.debug(f"Sent message {content_id[:12]}... to chat {chat_id[:8]}")
        return log.sorted()

    def retrieve_messages(self, chat_id: str) -> List[ChatLogEntry]:
        """
        Fetch new messages from every other peer of a chat.

        Failures are isolated per peer: they are logged and the next peer is tried.

        Returns:
            The full chat log in chronological order
        """
        chat = self.get_chat(chat_id)
        log = self.get_chat_log(chat_id)

        for peer in chat.other_peers():
            try:
                self._retrieve_from_peer(chat, peer, log)
            except (NothingNew, KeyNotFound) as e:
                logger.debug(f"Nothing new from peer {peer.id[:8]}: {e.message}")
            except HandshakeError as e:
                logger.warning(f"Retrieval from peer {peer.id[:8]} failed: {e}")

        self._save_chat_log(chat_id, log)
        self._save_chat(chat)
        return log.sorted()

    def _retrieve_from_peer(self, chat: Chat, peer: ChatPeer, log: ChatLog) -> None:
        content_id = self._get_rendezvous_hash(chat, peer)
        if log.has_id(content_id):
            return

        pending = [content_id]
        while pending:
            current = pending.pop()
            try:
                data = self._retrieve_message(chat, peer, current)
            except NoKey:
                if current == content_id:
                    raise
                logger.debug(f"Chain from peer {peer.id[:8]} ends before {current[:12]}...")
                break
            log.add_entry(
                ChatLogEntry(
                    id=current,
                    sender=peer.id,
                    sent=data.timestamp,
                    received=now_ns(),
                    ttl=data.ttl,
                    data=data,
                )
            )
            if data.parent and not log.has_id(data.parent):
                pending.append(data.parent)

    @staticmethod
    def _split_blob(raw: bytes) -> Tuple[str, bytes]:
        if len(raw) <= LOOKUP_TOKEN_SIZE:
            raise ChatError(ErrorCode.E507_INVALID_MESSAGE, "Payload too short")
        return b64encode(raw[:LOOKUP_TOKEN_SIZE]), raw[LOOKUP_TOKEN_SIZE:]

    def _get_rendezvous_hash(self, chat: Chat, peer: ChatPeer) -> str:
        raw = peer.strategy.rendezvous.get(chat.id)
        if not raw:
            raise NoHash()
        token, ciphertext = self._split_blob(raw)
        key = self._pop_by_token(chat.id, peer.id, token)
        return peer.strategy.cipher.decrypt(ciphertext, key).decode("utf-8")

    def _retrieve_message(self, chat: Chat, peer: ChatPeer, content_id: str) -> ChatData:
        raw = peer.strategy.message_store.get(content_id)
        token, ciphertext = self._split_blob(raw)
        try:
            key = self._pop_by_token(chat.id, peer.id, token)
        except KeyNotFound:
            raise NoKey() from None
        return ChatData.from_bytes(peer.strategy.cipher.decrypt(ciphertext, key))
