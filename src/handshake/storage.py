"""
Handshake - Storage backends.

Every backend implements the same small key/value contract so the rest of
the package never cares where bytes live:

- LOCAL: private device storage in SQLite. Holds profiles, chat configs,
  chat logs and lookup pools (all encrypted by the session before they
  arrive here).
- IPFS: content-addressed message store reached over the IPFS HTTP API or
  a writable gateway. ``set`` returns the content hash.
- HASHMAP: signed-record rendezvous service. Each writer owns an Ed25519
  key; readers fetch the latest record from an endpoint derived from the
  public key and verify signature, endpoint and timestamp before trusting it.

Backends are a closed set selected by :class:`StorageEngine`. Remote
backends accept several nodes and a :class:`ConsensusRule`; only
FIRST_SUCCESS is implemented, which tries nodes in order and moves on when
one fails.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .constants import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_IPFS_QUERY_TYPE,
    DEFAULT_MESSAGE_STORE_URL,
    DEFAULT_RENDEZVOUS_URL,
    HASHMAP_MAX_FUTURE_DRIFT,
    HASHMAP_PAYLOAD_TTL,
    HASHMAP_SIG_METHOD,
    MAX_IPFS_READ,
    PROTOCOL_VERSION,
)
from .crypto import content_hash
from .errors import ErrorCode, HandshakeError, StorageError, StorageUnavailable
from .utils import b64decode, b64encode, now_ns, validate_hex_id

logger = logging.getLogger(__name__)


class StorageEngine(Enum):
    """Supported storage backends."""

    LOCAL = "local"
    HASHMAP = "hashmap"
    IPFS = "ipfs"


class ConsensusRule(Enum):
    """How results from several nodes combine into one outcome."""

    FIRST_SUCCESS = "first_success"  # any node succeeding is enough
    REDUNDANT_PAIR = "redundant_pair"  # two nodes must succeed
    MAJORITY = "majority"  # a simple majority must succeed
    UNANIMOUS = "unanimous"  # every node must succeed


DEFAULT_CONSENSUS_RULE = ConsensusRule.FIRST_SUCCESS


@dataclass
class Node:
    """A single remote endpoint."""

    url: str
    header: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url}
        if self.header:
            data["header"] = dict(self.header)
        if self.settings:
            data["settings"] = dict(self.settings)
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Node":
        return Node(
            url=data["url"],
            header=dict(data.get("header") or {}),
            settings=dict(data.get("settings") or {}),
        )


@dataclass
class SignatureAlgorithm:
    """Signing key material for a rendezvous writer."""

    private_key: bytes
    public_key: bytes
    type: str = HASHMAP_SIG_METHOD

    @staticmethod
    def generate() -> "SignatureAlgorithm":
        """Create a fresh Ed25519 signing key."""
        private_key = Ed25519PrivateKey.generate()
        return SignatureAlgorithm(
            private_key=private_key.private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            ),
            public_key=private_key.public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            ),
        )

    def sign(self, data: bytes) -> bytes:
        return Ed25519PrivateKey.from_private_bytes(self.private_key).sign(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "private_key": b64encode(self.private_key),
            "public_key": b64encode(self.public_key),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SignatureAlgorithm":
        return SignatureAlgorithm(
            private_key=b64decode(data["private_key"]),
            public_key=b64decode(data["public_key"]),
            type=data.get("type", HASHMAP_SIG_METHOD),
        )


def _nodes_from(data: Optional[List[Dict[str, Any]]]) -> List[Node]:
    return [Node.from_dict(n) for n in (data or [])]


@dataclass
class PeerStorage:
    """Public, read-only view of a backend, safe to hand to a peer."""

    type: StorageEngine
    read_nodes: List[Node] = field(default_factory=list)
    read_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "read_nodes": [n.to_dict() for n in self.read_nodes],
            "read_rule": self.read_rule.value,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PeerStorage":
        try:
            return PeerStorage(
                type=StorageEngine(data["type"]),
                read_nodes=_nodes_from(data.get("read_nodes")),
                read_rule=ConsensusRule(data.get("read_rule", DEFAULT_CONSENSUS_RULE.value)),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise StorageError(ErrorCode.E207_INVALID_ENGINE, f"Invalid peer storage config: {e}") from e


@dataclass
class StorageConfig:
    """Full view of a backend including write endpoints and credentials. Local only."""

    type: StorageEngine
    read_nodes: List[Node] = field(default_factory=list)
    write_nodes: List[Node] = field(default_factory=list)
    read_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE
    write_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE
    signatures: List[SignatureAlgorithm] = field(default_factory=list)
    latest: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "read_nodes": [n.to_dict() for n in self.read_nodes],
            "write_nodes": [n.to_dict() for n in self.write_nodes],
            "read_rule": self.read_rule.value,
            "write_rule": self.write_rule.value,
            "signatures": [s.to_dict() for s in self.signatures],
            "latest": self.latest,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StorageConfig":
        try:
            return StorageConfig(
                type=StorageEngine(data["type"]),
                read_nodes=_nodes_from(data.get("read_nodes")),
                write_nodes=_nodes_from(data.get("write_nodes")),
                read_rule=ConsensusRule(data.get("read_rule", DEFAULT_CONSENSUS_RULE.value)),
                write_rule=ConsensusRule(data.get("write_rule", DEFAULT_CONSENSUS_RULE.value)),
                signatures=[SignatureAlgorithm.from_dict(s) for s in data.get("signatures") or []],
                latest=int(data.get("latest", 0)),
            )
        except (KeyError, ValueError, TypeError, HandshakeError) as e:
            raise StorageError(ErrorCode.E207_INVALID_ENGINE, f"Invalid storage config: {e}") from e


class Storage(ABC):
    """Key/value contract shared by every backend."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the value for ``key``, or ``b""`` when absent."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> str:
        """Store ``value`` and return its address (the key itself for non content-addressed stores)."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def list(self, prefix: str) -> List[str]:
        """Return all keys starting with ``prefix``."""

    @abstractmethod
    def close(self) -> None:
        """Release any held resources."""

    @abstractmethod
    def share(self) -> PeerStorage:
        """Public read-only settings for a peer."""

    @abstractmethod
    def export(self) -> StorageConfig:
        """Full settings for local persistence."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class LocalStorage(Storage):
    """
    SQLite-backed private storage.

    All operations are protected by a threading.Lock so one storage
    object can be shared by a session and its helpers.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            self.path = str(Path(self.path).expanduser())
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            with self._conn:
                self._conn.execute(
                    "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value BLOB NOT NULL)"
                )
        except sqlite3.Error as e:
            raise StorageError(ErrorCode.E200_STORAGE_ERROR, f"Cannot open local storage: {e}") from e
        logger.debug(f"Local storage opened at {self.path}")

    def get(self, key: str) -> bytes:
        try:
            with self._lock:
                row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(ErrorCode.E200_STORAGE_ERROR, f"Local read failed: {e}") from e
        return bytes(row[0]) if row else b""

    def set(self, key: str, value: bytes) -> str:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, sqlite3.Binary(value))
                )
        except sqlite3.Error as e:
            raise StorageError(ErrorCode.E200_STORAGE_ERROR, f"Local write failed: {e}") from e
        return key

    def delete(self, key: str) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(ErrorCode.E200_STORAGE_ERROR, f"Local delete failed: {e}") from e

    def list(self, prefix: str) -> List[str]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(ErrorCode.E200_STORAGE_ERROR, f"Local list failed: {e}") from e
        return [row[0] for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def share(self) -> PeerStorage:
        raise StorageError(ErrorCode.E206_NOT_SHAREABLE, "This storage does not support shared configs")

    def export(self) -> StorageConfig:
        raise StorageError(ErrorCode.E206_NOT_SHAREABLE, "This storage does not support exporting configs")


def append_to_path(base: str, add: str) -> str:
    """Join two URL path fragments with exactly one slash between them."""
    if not add:
        return base
    return f"{base.rstrip('/')}/{add.lstrip('/')}"


class _RemoteStorage(Storage):
    """Shared node/rule bookkeeping and HTTP client handling for remote backends."""

    engine: StorageEngine

    def __init__(
        self,
        read_nodes: Optional[List[Node]] = None,
        write_nodes: Optional[List[Node]] = None,
        read_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE,
        write_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        self.read_nodes = list(read_nodes or [])
        self.write_nodes = list(write_nodes or [])
        self.read_rule = read_rule
        self.write_rule = write_rule
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def _require(self, nodes: List[Node], rule: ConsensusRule, kind: str) -> None:
        if not nodes:
            raise StorageError(ErrorCode.E202_NO_NODES_CONFIGURED, f"No {kind} nodes configured")
        if rule != ConsensusRule.FIRST_SUCCESS:
            raise StorageError(
                ErrorCode.E203_RULE_NOT_IMPLEMENTED, f"The {kind} rule {rule.value} is not yet implemented"
            )

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None


class IPFSStorage(_RemoteStorage):
    """Content-addressed message store over the IPFS HTTP API or a writable gateway."""

    engine = StorageEngine.IPFS

    def get(self, key: str) -> bytes:
        self._require(self.read_nodes, self.read_rule, "read")
        for node in self.read_nodes:
            try:
                return self._get_from_node(node, key)
            except httpx.HTTPError as e:
                logger.warning(f"IPFS read from {node.url} failed: {e}")
        raise StorageUnavailable(details={"engine": self.engine.value, "operation": "get"})

    def set(self, key: str, value: bytes) -> str:
        self._require(self.write_nodes, self.write_rule, "write")
        for node in self.write_nodes:
            try:
                return self._post_to_node(node, value)
            except (httpx.HTTPError, StorageError) as e:
                logger.warning(f"IPFS write to {node.url} failed: {e}")
        raise StorageUnavailable(details={"engine": self.engine.value, "operation": "set"})

    def _get_from_node(self, node: Node, content_id: str) -> bytes:
        if node.settings.get("query_type") == "api":
            method = "POST"
            url = append_to_path(node.url, "api/v0/cat")
            params = {"arg": content_id}
        else:
            method = "GET"
            url = append_to_path(node.url, f"ipfs/{content_id}")
            params = None

        body = bytearray()
        with self.client.stream(method, url, params=params, headers=node.header) as resp:
            resp.raise_for_status()
            for chunk in resp.iter_bytes():
                body += chunk
                if len(body) >= MAX_IPFS_READ:
                    break
        return bytes(body[:MAX_IPFS_READ])

    def _post_to_node(self, node: Node, body: bytes) -> str:
        if node.settings.get("query_type") == "api":
            resp = self.client.post(
                append_to_path(node.url, "api/v0/add"),
                files={"file": ("file", body)},
                headers=node.header,
            )
            resp.raise_for_status()
            try:
                content_id = resp.json().get("Hash", "")
            except ValueError as e:
                raise StorageError(ErrorCode.E204_INVALID_PAYLOAD, f"Invalid IPFS add response: {e}") from e
        else:
            resp = self.client.post(
                append_to_path(node.url, "ipfs/"), content=body, headers=node.header
            )
            resp.raise_for_status()
            content_id = resp.headers.get("Ipfs-Hash", "")

        if not content_id:
            raise StorageError(ErrorCode.E204_INVALID_PAYLOAD, "IPFS node returned no content hash")
        return content_id

    def delete(self, key: str) -> None:
        return None

    def list(self, prefix: str) -> List[str]:
        return []

    def share(self) -> PeerStorage:
        if not self.write_nodes:
            return PeerStorage(type=self.engine, read_nodes=list(self.read_nodes), read_rule=self.read_rule)
        return PeerStorage(type=self.engine, read_nodes=list(self.write_nodes), read_rule=self.write_rule)

    def export(self) -> StorageConfig:
        return StorageConfig(
            type=self.engine,
            read_nodes=list(self.read_nodes),
            write_nodes=list(self.write_nodes),
            read_rule=self.read_rule,
            write_rule=self.write_rule,
        )


def endpoint_for(public_key: bytes) -> str:
    """Rendezvous endpoint for a public key: hex BLAKE2b-256 of the key."""
    return content_hash(public_key)


def is_hashmap_endpoint(value: str) -> bool:
    return validate_hex_id(value, 32)


def endpoint_from_url(url: str) -> str:
    """Return the last path segment of a rendezvous read URL."""
    return urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]


def generate_payload(message: bytes, signature: SignatureAlgorithm, timestamp: Optional[int] = None) -> bytes:
    """
    Build a signed rendezvous record.

    The signed ``data`` field is base64 JSON carrying the base64 message, a
    nanosecond timestamp and a TTL; ``sig`` is the Ed25519 signature over the
    raw JSON bytes and ``pubkey`` the signer's public key.
    """
    data = json.dumps(
        {
            "message": b64encode(message),
            "timestamp": timestamp if timestamp is not None else now_ns(),
            "ttl": HASHMAP_PAYLOAD_TTL,
            "sig_method": signature.type,
            "version": PROTOCOL_VERSION,
        }
    ).encode("utf-8")
    return json.dumps(
        {
            "data": b64encode(data),
            "sig": b64encode(signature.sign(data)),
            "pubkey": b64encode(signature.public_key),
        }
    ).encode("utf-8")


class HashmapStorage(_RemoteStorage):
    """Signed-record rendezvous store. Only the newest record per key is ever served."""

    engine = StorageEngine.HASHMAP

    def __init__(
        self,
        read_nodes: Optional[List[Node]] = None,
        write_nodes: Optional[List[Node]] = None,
        read_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE,
        write_rule: ConsensusRule = DEFAULT_CONSENSUS_RULE,
        signatures: Optional[List[SignatureAlgorithm]] = None,
        latest: int = 0,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        super().__init__(read_nodes, write_nodes, read_rule, write_rule, client, timeout)
        self.signatures = list(signatures or [])
        self.latest = latest

    def update_latest(self, timestamp: int) -> None:
        """
        Advance the replay watermark.

        Raises:
            StorageError: If the timestamp is too far in the future or older than one already seen
        """
        if timestamp > now_ns() + HASHMAP_MAX_FUTURE_DRIFT:
            raise StorageError(ErrorCode.E204_INVALID_PAYLOAD, "Invalid future timestamp")
        if self.latest > timestamp:
            raise StorageError(ErrorCode.E205_STALE_TIMESTAMP, "Stale timestamp")
        self.latest = timestamp

    def get(self, key: str) -> bytes:
        self._require(self.read_nodes, self.read_rule, "read")
        for node in self.read_nodes:
            endpoint = endpoint_from_url(node.url)
            if not is_hashmap_endpoint(endpoint):
                raise StorageError(
                    ErrorCode.E204_INVALID_PAYLOAD, f"Invalid hashmap endpoint for: {node.url}"
                )
            try:
                resp = self.client.get(node.url, headers=node.header)
            except httpx.HTTPError as e:
                logger.warning(f"Rendezvous read from {node.url} failed: {e}")
                continue
            if resp.status_code == 404:
                return b""
            if resp.status_code >= 400:
                logger.warning(f"Rendezvous read from {node.url} returned {resp.status_code}")
                continue
            return self._open_payload(resp.content, endpoint, node.url)
        raise StorageUnavailable(details={"engine": self.engine.value, "operation": "get"})

    def _open_payload(self, raw: bytes, endpoint: str, url: str) -> bytes:
        try:
            payload = json.loads(raw)
            data = b64decode(payload["data"])
            sig = b64decode(payload["sig"])
            pubkey = b64decode(payload["pubkey"])
            fields = json.loads(data)
            timestamp = int(fields["timestamp"])
            ttl = int(fields.get("ttl", 0))
            message = b64decode(fields["message"])
        except (ValueError, KeyError, TypeError, HandshakeError) as e:
            raise StorageError(ErrorCode.E204_INVALID_PAYLOAD, f"Invalid payload from {url}: {e}") from e

        if endpoint_for(pubkey) != endpoint:
            raise StorageError(ErrorCode.E204_INVALID_PAYLOAD, f"Payload and endpoint hash mismatch for: {url}")
        try:
            Ed25519PublicKey.from_public_bytes(pubkey).verify(sig, data)
        except (InvalidSignature, ValueError) as e:
            raise StorageError(ErrorCode.E204_INVALID_PAYLOAD, f"Invalid payload signature from {url}") from e

        self.update_latest(timestamp)
        if ttl and timestamp + ttl * 1000000000 < now_ns():
            logger.debug(f"Rendezvous record at {url} expired")
            return b""
        return message

    def set(self, key: str, value: bytes) -> str:
        self._require(self.write_nodes, self.write_rule, "write")
        if not self.signatures:
            raise StorageError(ErrorCode.E202_NO_NODES_CONFIGURED, "No signing key configured")
        # TODO: sign with every configured key once servers accept multi-signature records
        payload = generate_payload(value, self.signatures[0])
        for node in self.write_nodes:
            try:
                resp = self.client.post(
                    node.url,
                    content=payload,
                    headers={"Content-Type": "application/json", **node.header},
                )
            except httpx.HTTPError as e:
                logger.warning(f"Rendezvous write to {node.url} failed: {e}")
                continue
            if resp.status_code > 399:
                logger.warning(f"Rendezvous write to {node.url} returned {resp.status_code}")
                continue
            return key
        raise StorageUnavailable(details={"engine": self.engine.value, "operation": "set"})

    def delete(self, key: str) -> None:
        return None

    def list(self, prefix: str) -> List[str]:
        raise StorageError(ErrorCode.E005_OPERATION_FAILED, "List is not supported by hashmap storage")

    def gen_read_from_write_nodes(self) -> List[Node]:
        """One read node per (write node, signing key) pair."""
        endpoints = [endpoint_for(sig.public_key) for sig in self.signatures]
        read_nodes = []
        for write_node in self.write_nodes:
            parts = urlsplit(write_node.url)
            for endpoint in endpoints:
                read_nodes.append(Node(url=f"{parts.scheme}://{parts.netloc}/{endpoint}"))
        return read_nodes

    def share(self) -> PeerStorage:
        # Read-only copies of a peer's rendezvous relay the nodes they were given
        if not self.write_nodes or not self.signatures:
            return PeerStorage(type=self.engine, read_nodes=list(self.read_nodes), read_rule=self.read_rule)
        return PeerStorage(
            type=self.engine, read_nodes=self.gen_read_from_write_nodes(), read_rule=self.write_rule
        )

    def export(self) -> StorageConfig:
        return StorageConfig(
            type=self.engine,
            read_nodes=list(self.read_nodes),
            write_nodes=list(self.write_nodes),
            read_rule=self.read_rule,
            write_rule=self.write_rule,
            signatures=list(self.signatures),
            latest=self.latest,
        )


def new_default_rendezvous(
    url: str = DEFAULT_RENDEZVOUS_URL, client: Optional[httpx.Client] = None
) -> HashmapStorage:
    """A rendezvous writer with a freshly generated signing key."""
    return HashmapStorage(
        write_nodes=[Node(url=url)],
        signatures=[SignatureAlgorithm.generate()],
        client=client,
    )


def new_default_message_storage(
    url: str = DEFAULT_MESSAGE_STORE_URL,
    query_type: str = DEFAULT_IPFS_QUERY_TYPE,
    client: Optional[httpx.Client] = None,
) -> IPFSStorage:
    return IPFSStorage(
        write_nodes=[Node(url=url, settings={"query_type": query_type})],
        client=client,
    )


def storage_from_peer(config: PeerStorage, client: Optional[httpx.Client] = None) -> Storage:
    """
    Build a read-only backend from a peer's shared settings.

    Raises:
        StorageError: For engines that cannot be shared
    """
    if config.type == StorageEngine.IPFS:
        return IPFSStorage(read_nodes=config.read_nodes, read_rule=config.read_rule, client=client)
    if config.type == StorageEngine.HASHMAP:
        return HashmapStorage(read_nodes=config.read_nodes, read_rule=config.read_rule, client=client)
    raise StorageError(ErrorCode.E207_INVALID_ENGINE, f"Invalid storage engine type: {config.type.value}")


def storage_from_config(config: StorageConfig, client: Optional[httpx.Client] = None) -> Storage:
    """
    Rebuild a backend from its exported settings.

    Raises:
        StorageError: For engines that cannot be exported
    """
    if config.type == StorageEngine.IPFS:
        return IPFSStorage(
            read_nodes=config.read_nodes,
            write_nodes=config.write_nodes,
            read_rule=config.read_rule,
            write_rule=config.write_rule,
            client=client,
        )
    if config.type == StorageEngine.HASHMAP:
        return HashmapStorage(
            read_nodes=config.read_nodes,
            write_nodes=config.write_nodes,
            read_rule=config.read_rule,
            write_rule=config.write_rule,
            signatures=config.signatures,
            latest=config.latest,
            client=client,
        )
    raise StorageError(ErrorCode.E207_INVALID_ENGINE, f"Invalid storage engine type: {config.type.value}")
