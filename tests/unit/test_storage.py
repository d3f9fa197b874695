"""
Unit tests for handshake.storage module.

Remote backends run against the fake IPFS and hashmap services from
conftest.py.
"""

import json

import pytest

from handshake.errors import ErrorCode, StorageError, StorageUnavailable
from handshake.storage import (
    ConsensusRule,
    HashmapStorage,
    IPFSStorage,
    LocalStorage,
    Node,
    PeerStorage,
    SignatureAlgorithm,
    StorageConfig,
    StorageEngine,
    append_to_path,
    endpoint_for,
    generate_payload,
    new_default_message_storage,
    new_default_rendezvous,
    storage_from_config,
    storage_from_peer,
)
from handshake.utils import b64decode, b64encode, now_ns


class TestLocalStorage:
    """Test the SQLite backend."""

    @pytest.fixture
    def storage(self, temp_dir):
        storage = LocalStorage(temp_dir / "nested" / "local.db")
        yield storage
        storage.close()

    def test_set_get(self, storage):
        assert storage.set("profiles/a", b"\x00\x01") == "profiles/a"
        assert storage.get("profiles/a") == b"\x00\x01"

    def test_missing_key_is_empty(self, storage):
        assert storage.get("nothing") == b""

    def test_overwrite(self, storage):
        storage.set("k", b"one")
        storage.set("k", b"two")
        assert storage.get("k") == b"two"

    def test_list_prefix(self, storage):
        for key in ("chats/a/1", "chats/a/2", "chats/b/1", "profiles/x", "chats_other"):
            storage.set(key, b"v")
        assert storage.list("chats/a/") == ["chats/a/1", "chats/a/2"]
        assert storage.list("chats/") == ["chats/a/1", "chats/a/2", "chats/b/1"]

    def test_list_prefix_is_literal(self, storage):
        storage.set("a%b/1", b"v")
        storage.set("axb/1", b"v")
        assert storage.list("a%b/") == ["a%b/1"]

    def test_delete(self, storage):
        storage.set("k", b"v")
        storage.delete("k")
        storage.delete("k")
        assert storage.get("k") == b""

    def test_persists_across_reopen(self, temp_dir):
        path = temp_dir / "persist.db"
        with LocalStorage(path) as storage:
            storage.set("k", b"v")
        with LocalStorage(path) as storage:
            assert storage.get("k") == b"v"

    def test_not_shareable(self, storage):
        with pytest.raises(StorageError) as exc_info:
            storage.share()
        assert exc_info.value.code == ErrorCode.E206_NOT_SHAREABLE
        with pytest.raises(StorageError):
            storage.export()


class TestIPFSStorage:
    """Test the IPFS backend in API and gateway mode."""

    @pytest.mark.parametrize("query_type", ["api", "gateway"])
    def test_write_then_read_through_share(self, http_client, fake_network, query_type):
        writer = new_default_message_storage("http://ipfs.test/", query_type, client=http_client)

        content_id = writer.set("ignored", b"blob bytes")

        assert fake_network.blobs[content_id] == b"blob bytes"
        reader = storage_from_peer(writer.share(), http_client)
        assert reader.get(content_id) == b"blob bytes"

    def test_relayed_share_keeps_read_nodes(self, http_client):
        writer = new_default_message_storage("http://ipfs.test/", "api", client=http_client)
        content_id = writer.set("ignored", b"blob bytes")
        reader = storage_from_peer(writer.share(), http_client)

        relayed = storage_from_peer(reader.share(), http_client)

        assert relayed.read_nodes == reader.read_nodes
        assert relayed.get(content_id) == b"blob bytes"

    def test_failover_to_next_node(self, http_client, fake_network):
        fake_network.down_hosts.add("down.test")
        storage = IPFSStorage(
            write_nodes=[
                Node(url="http://down.test/", settings={"query_type": "api"}),
                Node(url="http://ipfs.test/", settings={"query_type": "api"}),
            ],
            client=http_client,
        )
        assert storage.set("", b"data") in fake_network.blobs

    def test_all_nodes_down(self, http_client, fake_network):
        fake_network.down_hosts.add("ipfs.test")
        storage = new_default_message_storage("http://ipfs.test/", client=http_client)
        with pytest.raises(StorageUnavailable):
            storage.set("", b"data")

    def test_read_missing_content(self, http_client):
        storage = IPFSStorage(read_nodes=[Node(url="http://ipfs.test/")], client=http_client)
        with pytest.raises(StorageUnavailable):
            storage.get("bafkmissing")

    def test_no_nodes(self, http_client):
        with pytest.raises(StorageError) as exc_info:
            IPFSStorage(client=http_client).get("x")
        assert exc_info.value.code == ErrorCode.E202_NO_NODES_CONFIGURED

    @pytest.mark.parametrize(
        "rule", [ConsensusRule.REDUNDANT_PAIR, ConsensusRule.MAJORITY, ConsensusRule.UNANIMOUS]
    )
    def test_unimplemented_rules(self, http_client, rule):
        storage = IPFSStorage(read_nodes=[Node(url="http://ipfs.test/")], read_rule=rule, client=http_client)
        with pytest.raises(StorageError) as exc_info:
            storage.get("x")
        assert exc_info.value.code == ErrorCode.E203_RULE_NOT_IMPLEMENTED

    def test_node_headers_sent(self, http_client, fake_network):
        storage = IPFSStorage(
            write_nodes=[Node(url="http://ipfs.test/", header={"Authorization": "Basic abc"})],
            client=http_client,
        )
        storage.set("", b"data")
        assert fake_network.requests[-1].headers["Authorization"] == "Basic abc"

    def test_delete_and_list_are_noops(self, http_client):
        storage = new_default_message_storage("http://ipfs.test/", client=http_client)
        storage.delete("x")
        assert storage.list("") == []


class TestHashmapStorage:
    """Test the signed-record rendezvous backend."""

    @pytest.fixture
    def writer(self, http_client):
        return new_default_rendezvous("http://hashmap.test", client=http_client)

    def test_write_then_read_through_share(self, writer, http_client):
        writer.set("chat", b"pointer")

        reader = storage_from_peer(writer.share(), http_client)

        assert reader.get("chat") == b"pointer"
        assert reader.latest > 0

    def test_only_latest_value_served(self, writer, http_client):
        writer.set("chat", b"first")
        writer.set("chat", b"second")
        assert storage_from_peer(writer.share(), http_client).get("chat") == b"second"

    def test_missing_record_is_empty(self, writer, http_client):
        assert storage_from_peer(writer.share(), http_client).get("chat") == b""

    def test_share_derives_read_nodes(self, writer):
        shared = writer.share()
        endpoint = endpoint_for(writer.signatures[0].public_key)
        assert shared.type == StorageEngine.HASHMAP
        assert [n.url for n in shared.read_nodes] == [f"http://hashmap.test/{endpoint}"]

    def test_relayed_share_keeps_read_nodes(self, writer, http_client):
        writer.set("chat", b"pointer")
        reader = storage_from_peer(writer.share(), http_client)

        relayed = storage_from_peer(reader.share(), http_client)

        assert relayed.read_nodes == reader.read_nodes
        assert relayed.get("chat") == b"pointer"

    def test_tampered_signature_rejected(self, writer, http_client, fake_network):
        writer.set("chat", b"pointer")
        endpoint = endpoint_for(writer.signatures[0].public_key)
        payload = json.loads(fake_network.records[endpoint])
        data = json.loads(b64decode(payload["data"]))
        data["message"] = b64encode(b"evil")
        payload["data"] = b64encode(json.dumps(data).encode("utf-8"))
        fake_network.records[endpoint] = json.dumps(payload).encode("utf-8")

        with pytest.raises(StorageError) as exc_info:
            storage_from_peer(writer.share(), http_client).get("chat")
        assert exc_info.value.code == ErrorCode.E204_INVALID_PAYLOAD

    def test_foreign_key_rejected(self, writer, http_client, fake_network):
        endpoint = endpoint_for(writer.signatures[0].public_key)
        fake_network.records[endpoint] = generate_payload(b"evil", SignatureAlgorithm.generate())

        with pytest.raises(StorageError) as exc_info:
            storage_from_peer(writer.share(), http_client).get("chat")
        assert "mismatch" in exc_info.value.message

    def test_stale_record_rejected(self, writer, http_client, fake_network):
        endpoint = endpoint_for(writer.signatures[0].public_key)
        fake_network.records[endpoint] = generate_payload(b"old", writer.signatures[0], now_ns() - 10 ** 9)
        reader = storage_from_peer(writer.share(), http_client)
        reader.latest = now_ns()

        with pytest.raises(StorageError) as exc_info:
            reader.get("chat")
        assert exc_info.value.code == ErrorCode.E205_STALE_TIMESTAMP

    def test_future_record_rejected(self, writer, http_client, fake_network):
        endpoint = endpoint_for(writer.signatures[0].public_key)
        fake_network.records[endpoint] = generate_payload(b"x", writer.signatures[0], now_ns() + 60 * 10 ** 9)

        with pytest.raises(StorageError) as exc_info:
            storage_from_peer(writer.share(), http_client).get("chat")
        assert exc_info.value.code == ErrorCode.E204_INVALID_PAYLOAD

    def test_invalid_endpoint(self, http_client):
        storage = HashmapStorage(read_nodes=[Node(url="http://hashmap.test/not-an-endpoint")], client=http_client)
        with pytest.raises(StorageError):
            storage.get("chat")

    def test_list_unsupported(self, writer):
        with pytest.raises(StorageError):
            writer.list("")

    def test_unavailable(self, writer, fake_network):
        fake_network.down_hosts.add("hashmap.test")
        with pytest.raises(StorageUnavailable):
            writer.set("chat", b"x")


class TestConfigs:
    def test_export_rebuilds_writer(self, http_client):
        writer = new_default_rendezvous("http://hashmap.test", client=http_client)
        writer.latest = 42

        exported = StorageConfig.from_dict(json.loads(json.dumps(writer.export().to_dict())))
        rebuilt = storage_from_config(exported, http_client)

        assert isinstance(rebuilt, HashmapStorage)
        assert rebuilt.latest == 42
        assert rebuilt.signatures[0].public_key == writer.signatures[0].public_key
        assert rebuilt.share() == writer.share()

    def test_peer_storage_round_trip(self):
        shared = PeerStorage(type=StorageEngine.IPFS, read_nodes=[Node(url="http://ipfs.test/", settings={"query_type": "api"})])
        assert PeerStorage.from_dict(shared.to_dict()) == shared

    def test_local_engine_cannot_be_rebuilt_remotely(self):
        with pytest.raises(StorageError) as exc_info:
            storage_from_peer(PeerStorage(type=StorageEngine.LOCAL))
        assert exc_info.value.code == ErrorCode.E207_INVALID_ENGINE

    def test_unknown_engine(self):
        with pytest.raises(StorageError):
            PeerStorage.from_dict({"type": "floppy"})


def test_append_to_path():
    assert append_to_path("http://a.test/", "/api/v0/add") == "http://a.test/api/v0/add"
    assert append_to_path("http://a.test", "ipfs/") == "http://a.test/ipfs/"
    assert append_to_path("http://a.test", "") == "http://a.test"
