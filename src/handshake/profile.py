"""
Handshake - Local profiles.

A profile is the local identity that owns all persisted chat state. It
holds a random 32-byte data key; everything a session writes to local
storage is encrypted under that key. The profile itself is stored at
``profiles/{id}``, encrypted under an Argon2id key derived from the user's
password with the profile id as salt.
"""

import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .constants import DEFAULT_SESSION_TTL, PROFILE_ID_SIZE, PROFILE_KEY_PREFIX, PROFILE_KEY_SIZE
from .crypto import AEADCipher, derive_key, gen_hex_id, gen_rand_bytes, new_time_series_cipher
from .errors import (
    AuthenticationFailure,
    ErrorCode,
    HandshakeError,
    InvalidPassword,
    NoProfileFound,
    ProfileError,
)
from .storage import Storage
from .utils import b64decode, b64encode, validate_hex_id

logger = logging.getLogger(__name__)


@dataclass
class Profile:
    id: str
    key: bytes
    session_ttl: int = DEFAULT_SESSION_TTL

    @staticmethod
    def generate() -> "Profile":
        return Profile(id=gen_hex_id(PROFILE_ID_SIZE), key=gen_rand_bytes(PROFILE_KEY_SIZE))

    @property
    def storage_key(self) -> str:
        return PROFILE_KEY_PREFIX + self.id

    def id_bytes(self) -> bytes:
        return bytes.fromhex(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": b64encode(self.key),
            "settings": {"session_ttl": self.session_ttl},
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Profile":
        return Profile(
            id=data["id"],
            key=b64decode(data["key"]),
            session_ttl=int((data.get("settings") or {}).get("session_ttl", DEFAULT_SESSION_TTL)),
        )


def profiles_exist(storage: Storage) -> bool:
    """True if at least one profile is stored. Used on first start to decide whether to run setup."""
    return len(storage.list(PROFILE_KEY_PREFIX)) > 0


def _init_profile(profile: Profile, password: str, cipher: AEADCipher, storage: Storage) -> None:
    key = derive_key(password.encode("utf-8"), profile.id_bytes())
    data = cipher.encrypt(json.dumps(profile.to_dict()).encode("utf-8"), key)
    storage.set(profile.storage_key, data)


def new_genesis_profile(password: str, storage: Storage, cipher: Optional[AEADCipher] = None) -> Profile:
    """
    Create the first profile on this device.

    Raises:
        ProfileError: If any profile already exists
    """
    if profiles_exist(storage):
        raise ProfileError(
            ErrorCode.E603_PROFILE_EXISTS,
            "Existing profiles found: a genesis profile may only be created during initial setup",
        )
    profile = Profile.generate()
    _init_profile(profile, password, cipher or new_time_series_cipher(), storage)
    logger.info(f"Created genesis profile {profile.id[:8]}...")
    return profile


def _profile_id_from_path(path: str) -> str:
    return path[len(PROFILE_KEY_PREFIX):] if path.startswith(PROFILE_KEY_PREFIX) else path


def unlock_profile(password: str, storage: Storage, cipher: Optional[AEADCipher] = None) -> Profile:
    """
    Find the profile that ``password`` decrypts.

    Raises:
        NoProfileFound: If no profile is stored
        InvalidPassword: If no stored profile decrypts with the password
    """
    cipher = cipher or new_time_series_cipher()
    paths = storage.list(PROFILE_KEY_PREFIX)
    if not paths:
        raise NoProfileFound()

    secret = password.encode("utf-8")
    for path in paths:
        profile_id = _profile_id_from_path(path)
        if not validate_hex_id(profile_id, PROFILE_ID_SIZE):
            logger.warning(f"Skipping malformed profile key: {path}")
            continue
        key = derive_key(secret, bytes.fromhex(profile_id))
        try:
            data = cipher.decrypt(storage.get(path), key)
        except AuthenticationFailure:
            continue
        try:
            profile = Profile.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError, binascii.Error, HandshakeError) as e:
            raise ProfileError(ErrorCode.E600_PROFILE_ERROR, f"Corrupt profile {profile_id[:8]}...: {e}") from e
        logger.debug(f"Unlocked profile {profile.id[:8]}...")
        return profile

    raise InvalidPassword()
