"""
Pytest configuration and fixtures for handshake tests.

Provides common fixtures and test utilities for unit and integration tests,
including an in-process fake of the IPFS and hashmap services served
through httpx.MockTransport.
"""

import hashlib
import json
import tempfile
import shutil
from pathlib import Path
from typing import Callable, Dict, Generator

import httpx
import pytest

from handshake.config import Config
from handshake.crypto import content_hash
from handshake.profile import new_genesis_profile
from handshake.session import Session
from handshake.storage import LocalStorage
from handshake.utils import b64decode

IPFS_URL = "http://ipfs.test/"
HASHMAP_URL = "http://hashmap.test"
TEST_LOOKUP_COUNT = 50


def _multipart_file(request: httpx.Request) -> bytes:
    """Return the body of the first file part of a multipart request."""
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].encode("utf-8")
    for part in request.content.split(b"--" + boundary):
        if b"filename=" not in part:
            continue
        _, _, data = part.partition(b"\r\n\r\n")
        return data[:-2]
    return b""


class FakeNetwork:
    """
    Minimal IPFS (API and gateway) and hashmap service.

    Attributes:
        blobs: Content id -> stored bytes
        records: Hashmap endpoint -> latest raw payload
        down_hosts: Hosts that answer every request with 503
        requests: Every request seen, in order
    """

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.records: Dict[str, bytes] = {}
        self.down_hosts = set()
        self.requests = []

    def add_blob(self, data: bytes) -> str:
        content_id = "bafk" + hashlib.sha256(data).hexdigest()
        self.blobs[content_id] = data
        return content_id

    def handle(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        host = request.url.host
        if host in self.down_hosts:
            return httpx.Response(503)
        if host == "hashmap.test":
            return self._hashmap(request)
        return self._ipfs(request)

    def _ipfs(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path.endswith("/api/v0/add"):
            return httpx.Response(200, json={"Hash": self.add_blob(_multipart_file(request))})
        if request.method == "POST" and path.endswith("/api/v0/cat"):
            content_id = request.url.params.get("arg", "")
            if content_id not in self.blobs:
                return httpx.Response(500, text="not found")
            return httpx.Response(200, content=self.blobs[content_id])
        if request.method == "POST" and path.rstrip("/").endswith("/ipfs"):
            return httpx.Response(201, headers={"Ipfs-Hash": self.add_blob(request.content)})
        if request.method == "GET" and "/ipfs/" in path:
            content_id = path.rsplit("/", 1)[-1]
            if content_id not in self.blobs:
                return httpx.Response(404)
            return httpx.Response(200, content=self.blobs[content_id])
        return httpx.Response(400)

    def _hashmap(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            try:
                payload = json.loads(request.content)
                endpoint = content_hash(b64decode(payload["pubkey"]))
            except (ValueError, KeyError):
                return httpx.Response(400)
            self.records[endpoint] = request.content
            return httpx.Response(200)
        endpoint = request.url.path.strip("/")
        if endpoint not in self.records:
            return httpx.Response(404)
        return httpx.Response(200, content=self.records[endpoint])


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="handshake_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def fake_network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def http_client(fake_network: FakeNetwork) -> Generator[httpx.Client, None, None]:
    """httpx client routed to the fake network."""
    client = httpx.Client(transport=httpx.MockTransport(fake_network.handle))
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def make_config(temp_dir: Path) -> Callable[[str], Config]:
    """
    Factory for isolated configs pointing at the fake network.

    Args:
        name: Used for the storage file name
    """

    def _make(name: str = "local") -> Config:
        config = Config(config_path=temp_dir / "absent.toml")
        config.set("storage", "path", str(temp_dir / f"{name}.db"))
        config.set("strategy", "rendezvous_url", HASHMAP_URL)
        config.set("strategy", "message_store_url", IPFS_URL)
        config.set("chat", "lookup_count", TEST_LOOKUP_COUNT)
        return config

    return _make


@pytest.fixture
def make_session(make_config, http_client) -> Generator[Callable[[str, str], Session], None, None]:
    """
    Factory creating a genesis profile and an open session for a named user.

    Sessions share the fake network so they can talk to each other.
    """
    sessions = []

    def _make(name: str, password: str = "correct horse battery staple") -> Session:
        config = make_config(name)
        storage = LocalStorage(config.storage_path)
        new_genesis_profile(password, storage)
        session = Session(password, config=config, storage=storage, http_client=http_client)
        sessions.append((session, storage))
        return session

    yield _make

    for session, storage in sessions:
        session.close()
        storage.close()


@pytest.fixture
def connected_pair(make_session):
    """
    Alice (initiator) and Bob (peer) after a complete two-party handshake.

    Returns:
        tuple: (alice, bob, alice_chat_id, bob_chat_id)
    """
    alice = make_session("alice")
    bob = make_session("bob")

    alice.new_initiator("alice")
    bob.new_peer("bob")
    alice.add_peer_to_handshake(bob.share_handshake_position())
    assert bob.add_peer_to_handshake(alice.get_handshake_peer_config(1)) is True

    alice_chat = alice.new_chat()
    bob_chat = bob.new_chat()
    return alice, bob, alice_chat, bob_chat


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
