"""
Handshake - Integration tests.

End-to-end workflows between two sessions sharing the fake network:
handshake, chat creation, sending, retrieval and chain reconstruction.
"""

import json
import logging
from unittest import mock

import pytest

from handshake.chat import pending_key
from handshake.errors import (
    ChatNotFound,
    ErrorCode,
    InsufficientPeers,
    InvalidPassword,
    MessageTooLarge,
    NegotiationError,
    PoolExhausted,
    StorageError,
    StorageUnavailable,
)
from handshake.profile import new_genesis_profile
from handshake.session import _POOL_LOCKS, Session
from handshake.storage import LocalStorage


def session_lookup_count(session):
    return session.config.get("chat", "lookup_count")


def _pool_size(session, chat_id, peer_id):
    return len(session._load_pool(chat_id, peer_id))


def _peer_by_alias(session, chat_id, alias):
    chat = session.get_chat(chat_id)
    return next(p for p in chat.peers.values() if p.alias == alias)


def test_alice_sends_bob_receives(connected_pair):
    """Alice says hi; Bob's log holds exactly that message, attributed to Alice."""
    alice, bob, alice_chat, bob_chat = connected_pair

    alice.send_message(alice_chat, b'{"message": "hi"}')
    log = bob.retrieve_messages(bob_chat)

    assert len(log) == 1
    assert log[0].data.message == "hi"
    assert log[0].sender == _peer_by_alias(bob, bob_chat, "alice").id
    assert log[0].received > 0


def test_send_returns_own_log(connected_pair):
    alice, _, alice_chat, _ = connected_pair

    log = alice.send_message(alice_chat, b'{"message": "one", "media": ["bafkmedia"]}')

    chat = alice.get_chat(alice_chat)
    assert len(log) == 1
    assert log[0].sender == chat.own_peer_id
    assert log[0].id == chat.last_sent_hash
    assert log[0].data.media == ["bafkmedia"]
    assert log[0].data.parent == ""


def test_chain_reconstruction(connected_pair):
    """Bob polls only after three sends and still receives all three in order."""
    alice, bob, alice_chat, bob_chat = connected_pair

    for text in ("m1", "m2", "m3"):
        alice.send_message(alice_chat, json.dumps({"message": text}).encode("utf-8"))

    log = bob.retrieve_messages(bob_chat)

    assert [e.data.message for e in log] == ["m1", "m2", "m3"]
    assert log[0].data.parent == ""
    assert log[1].data.parent == log[0].id
    assert log[2].data.parent == log[1].id


def test_idempotent_retrieval(connected_pair):
    alice, bob, alice_chat, bob_chat = connected_pair
    alice.send_message(alice_chat, b'{"message": "hi"}')
    alice_peer_id = _peer_by_alias(bob, bob_chat, "alice").id

    first = bob.retrieve_messages(bob_chat)
    size_after_first = _pool_size(bob, bob_chat, alice_peer_id)
    second = bob.retrieve_messages(bob_chat)

    assert second == first
    assert _pool_size(bob, bob_chat, alice_peer_id) == size_after_first


def test_incremental_retrieval(connected_pair):
    alice, bob, alice_chat, bob_chat = connected_pair

    alice.send_message(alice_chat, b'{"message": "m1"}')
    bob.retrieve_messages(bob_chat)
    alice.send_message(alice_chat, b'{"message": "m2"}')
    log = bob.retrieve_messages(bob_chat)

    assert [e.data.message for e in log] == ["m1", "m2"]


def test_conversation_both_ways(connected_pair):
    alice, bob, alice_chat, bob_chat = connected_pair

    alice.send_message(alice_chat, b'{"message": "hi bob"}')
    bob.retrieve_messages(bob_chat)
    bob.send_message(bob_chat, b'{"message": "hi alice"}')
    alice_log = alice.retrieve_messages(alice_chat)
    bob_log = bob.get_chat_log(bob_chat).sorted()

    assert [e.data.message for e in alice_log] == ["hi bob", "hi alice"]
    assert [e.data.message for e in bob_log] == ["hi bob", "hi alice"]


def test_tokens_consumed_once(connected_pair):
    """Each send burns two of the sender's tokens; each retrieval burns the matching ones."""
    alice, bob, alice_chat, bob_chat = connected_pair
    alice_own = alice.get_chat(alice_chat).own_peer_id
    alice_at_bob = _peer_by_alias(bob, bob_chat, "alice").id

    alice.send_message(alice_chat, b'{"message": "hi"}')
    bob.retrieve_messages(bob_chat)

    assert _pool_size(alice, alice_chat, alice_own) == session_lookup_count(alice) - 2
    assert _pool_size(bob, bob_chat, alice_at_bob) == session_lookup_count(alice) - 2


def test_message_too_large_changes_nothing(connected_pair, fake_network):
    alice, _, alice_chat, _ = connected_pair
    alice.config.set("chat", "max_message_size", 16)
    own = alice.get_chat(alice_chat).own_peer_id
    requests_before = len(fake_network.requests)

    with pytest.raises(MessageTooLarge):
        alice.send_message(alice_chat, b'{"message": "far too long for the limit"}')

    assert _pool_size(alice, alice_chat, own) == session_lookup_count(alice)
    assert len(fake_network.requests) == requests_before
    assert len(alice.get_chat_log(alice_chat)) == 0


def test_unreachable_peer_is_skipped(connected_pair, fake_network):
    alice, bob, alice_chat, bob_chat = connected_pair
    alice.send_message(alice_chat, b'{"message": "hi"}')
    fake_network.down_hosts.add("ipfs.test")

    assert bob.retrieve_messages(bob_chat) == []

    fake_network.down_hosts.clear()
    bob.send_message(bob_chat, b'{"message": "still works"}')
    assert len(bob.get_chat_log(bob_chat)) == 1


def test_nothing_sent_yet(connected_pair):
    _, bob, _, bob_chat = connected_pair
    assert bob.retrieve_messages(bob_chat) == []


def test_chat_state_encrypted_at_rest(connected_pair):
    alice, _, alice_chat, _ = connected_pair
    alice.send_message(alice_chat, b'{"message": "top secret words"}')

    for key in alice.storage.list("chats/"):
        assert b"top secret words" not in alice.storage.get(key)


def test_chats_survive_new_session(connected_pair, make_config, http_client):
    alice, bob, alice_chat, bob_chat = connected_pair
    alice.send_message(alice_chat, b'{"message": "before"}')

    reopened = Session("correct horse battery staple", make_config("alice"), alice.storage, http_client)
    reopened.send_message(alice_chat, b'{"message": "after"}')

    assert reopened.list_chats() == [alice_chat]
    assert [e.data.message for e in bob.retrieve_messages(bob_chat)] == ["before", "after"]


def test_list_and_delete_chats(connected_pair):
    alice, _, alice_chat, _ = connected_pair

    assert alice.list_chats() == [alice_chat]
    alice.delete_chat(alice_chat)

    assert alice.list_chats() == []
    assert alice.storage.list("chats/") == []
    with pytest.raises(ChatNotFound):
        alice.get_chat(alice_chat)
    with pytest.raises(ChatNotFound):
        alice.delete_chat(alice_chat)


def test_pending_chat_hidden_and_recovered(connected_pair):
    alice, _, alice_chat, _ = connected_pair
    alice._put(pending_key(alice_chat, alice.profile.id), b"{}")

    assert alice.list_chats() == []
    with pytest.raises(ChatNotFound):
        alice.get_chat(alice_chat)

    assert alice.recover_pending_chats() == [alice_chat]
    assert alice.storage.list("chats/") == []


def test_failed_new_chat_leaves_nothing(make_session):
    alice = make_session("alice")
    bob = make_session("bob")
    alice.new_initiator()
    bob.new_peer()
    alice.add_peer_to_handshake(bob.share_handshake_position())
    alice.get_handshake_peer_config(1)

    with mock.patch.object(Session, "_save_chat", side_effect=StorageError(message="disk full")):
        with pytest.raises(StorageError):
            alice.new_chat()

    assert alice.storage.list("chats/") == []
    assert alice.handshake is not None
    assert alice.new_chat() in alice.list_chats()
    assert alice.handshake is None


def test_new_chat_needs_peers(make_session):
    alice = make_session("alice")
    alice.new_initiator()
    with pytest.raises(InsufficientPeers):
        alice.new_chat()


def test_handshake_required(make_session):
    alice = make_session("alice")
    with pytest.raises(NegotiationError) as exc_info:
        alice.share_handshake_position()
    assert exc_info.value.code == ErrorCode.E309_NO_HANDSHAKE


def test_unknown_peer_config_item(make_session):
    alice = make_session("alice")
    bob = make_session("bob")
    alice.new_initiator()
    bob.new_peer()
    alice.add_peer_to_handshake(bob.share_handshake_position())

    assert len(alice.get_handshake_peer_configs()) == 2
    with pytest.raises(NegotiationError):
        alice.get_handshake_peer_config(5)


def test_wrong_password(make_session, make_config, http_client):
    alice = make_session("alice")
    with pytest.raises(InvalidPassword):
        Session("wrong password", make_config("alice"), alice.storage, http_client)


def test_session_context_manager(make_config, http_client):
    config = make_config("ctx")
    storage = LocalStorage(config.storage_path)
    new_genesis_profile("pw", storage)
    storage.close()

    with Session("pw", config=config, http_client=http_client) as session:
        session.new_initiator()
    assert session.handshake is None


def test_failed_pointer_publish_still_logged(connected_pair, fake_network):
    """A message that reached the store stays in the sender's log and the chain."""
    alice, bob, alice_chat, bob_chat = connected_pair

    fake_network.down_hosts.add("hashmap.test")
    with pytest.raises(StorageUnavailable):
        alice.send_message(alice_chat, b'{"message": "lost"}')
    fake_network.down_hosts.clear()

    assert alice.get_chat_log(alice_chat).has_id(alice.get_chat(alice_chat).last_sent_hash)

    alice_log = alice.send_message(alice_chat, b'{"message": "next"}')
    bob_log = bob.retrieve_messages(bob_chat)

    assert [e.data.message for e in alice_log] == ["lost", "next"]
    assert [e.data.message for e in bob_log] == ["lost", "next"]


def test_short_pool_rejected_before_sending(make_session, fake_network):
    alice = make_session("alice")
    bob = make_session("bob")
    for session in (alice, bob):
        session.config.set("chat", "lookup_count", 3)
    alice.new_initiator("alice")
    bob.new_peer("bob")
    alice.add_peer_to_handshake(bob.share_handshake_position())
    bob.add_peer_to_handshake(alice.get_handshake_peer_config(1))
    alice_chat = alice.new_chat()
    bob.new_chat()

    alice.send_message(alice_chat, b'{"message": "only one"}')
    chat_before = alice.get_chat(alice_chat)
    own = chat_before.own_peer_id
    requests_before = len(fake_network.requests)

    with pytest.raises(PoolExhausted):
        alice.send_message(alice_chat, b'{"message": "one too many"}')

    assert _pool_size(alice, alice_chat, own) == 1
    assert len(fake_network.requests) == requests_before
    assert alice.get_chat(alice_chat).last_sent_hash == chat_before.last_sent_hash
    assert [e.data.message for e in alice.get_chat_log(alice_chat).sorted()] == ["only one"]


def test_three_party_chat(make_session):
    """Peers that only saw the initiator's relayed configs can still read each other."""
    alice = make_session("alice")
    bob = make_session("bob")
    carol = make_session("carol")

    alice.new_initiator("alice")
    bob.new_peer("bob")
    carol.new_peer("carol")
    alice.add_peer_to_handshake(bob.share_handshake_position())
    assert alice.add_peer_to_handshake(carol.share_handshake_position()) is True

    configs = alice.get_handshake_peer_configs()
    for peer in (bob, carol):
        received = [peer.add_peer_to_handshake(config) for config in configs]
        assert received[-1] is True

    chats = {session: session.new_chat() for session in (alice, bob, carol)}
    alice.send_message(chats[alice], b'{"message": "from alice"}')
    bob.send_message(chats[bob], b'{"message": "from bob"}')

    carol_log = carol.retrieve_messages(chats[carol])
    alice_log = alice.retrieve_messages(chats[alice])

    assert [e.data.message for e in carol_log] == ["from alice", "from bob"]
    assert [e.data.message for e in alice_log] == ["from alice", "from bob"]
    assert carol_log[1].sender == _peer_by_alias(carol, chats[carol], "bob").id


def test_session_leaves_log_handlers_alone(make_config, http_client):
    package_logger = logging.getLogger("handshake")
    handlers_before = list(package_logger.handlers)
    level_before = package_logger.level

    config = make_config("quiet")
    config.set("logging", "level", "DEBUG")
    storage = LocalStorage(config.storage_path)
    new_genesis_profile("pw", storage)
    with Session("pw", config=config, storage=storage, http_client=http_client):
        pass
    storage.close()

    assert package_logger.handlers == handlers_before
    assert package_logger.level == level_before


def test_sessions_on_one_storage_share_pool_locks(connected_pair, make_config, http_client):
    alice, _, alice_chat, _ = connected_pair
    own = alice.get_chat(alice_chat).own_peer_id
    other = Session("correct horse battery staple", make_config("alice"), alice.storage, http_client)

    assert other._pool_lock(alice_chat, own) is alice._pool_lock(alice_chat, own)

    alice.delete_chat(alice_chat)
    assert not [pool_id for pool_id in _POOL_LOCKS[alice.storage] if pool_id[0] == alice_chat]
