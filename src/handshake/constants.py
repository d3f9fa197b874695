"""
Handshake - Global Constants and Configuration Values

This module defines all constants used throughout the handshake package.
All magic numbers and configuration defaults are centralized here.
"""

# Version Information
VERSION = "0.1.0"
APP_NAME = "Handshake"
PROTOCOL_VERSION = "0.0.1"

# Handshake Constants
ENTROPY_SIZE = 96  # bytes of randomness per party per handshake
PEPPER_ENTROPY_PREFIX = 32  # bytes of each entropy fed into the pepper
PEPPER_SIZE = 64  # BLAKE2b-512
ALIAS_WORD_COUNT = 3
ALIAS_SEPARATOR = "-"
ALIAS_WORDLIST = (
    "alfa", "bravo", "charlie", "delta", "echo", "foxtrot", "golf",
    "hotel", "india", "juliett", "kilo", "lima", "mike", "november",
    "oscar", "papa", "quebec", "romeo", "sierra", "tango", "uniform",
    "victor", "whiskey", "x-ray", "yankee", "zulu",
)

# Lookup Pool Constants
LOOKUP_TOKEN_SIZE = 24  # raw bytes, unencrypted prefix of every stored blob
DEFAULT_LOOKUP_COUNT = 10000
LOOKUP_KDF_INFO = b"handshake-lookup-pool"

# Cryptography Constants
CIPHER_CHACHA20_POLY1305 = "chacha20-poly1305"
DEFAULT_CIPHER = CIPHER_CHACHA20_POLY1305
KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits for ChaCha20-Poly1305
TAG_SIZE = 16
CHUNK_OVERHEAD = NONCE_SIZE + TAG_SIZE
DEFAULT_CHUNK_SIZE = 16000  # plaintext bytes per encrypted chunk
NONCE_RANDOM = "random"
NONCE_TIME_SERIES = "time-series"
TIME_SERIES_PREFIX = 4  # leading nonce bytes taken from unix time
ARGON2_TIME_COST = 1
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
CONTENT_HASH_SIZE = 32  # BLAKE2b-256

# Profile Constants
PROFILE_ID_SIZE = 24
PROFILE_KEY_SIZE = 32
PROFILE_KEY_PREFIX = "profiles/"
DEFAULT_SESSION_TTL = 300  # 5 minutes in seconds

# Chat Constants
CHAT_ID_SIZE = 12
PEER_ID_SIZE = 12
CHAT_KEY_PREFIX = "chats/"
MAX_MESSAGE_SIZE = 250000  # bytes of caller payload
DEFAULT_CHAT_TTL = 604800  # 7 days in seconds

# Storage Constants
DEFAULT_DATA_DIR = "~/.handshake"
DEFAULT_STORAGE_FILENAME = "handshake.db"
CONFIG_FILENAME = "config.toml"
MAX_IPFS_READ = 3000000  # ~3MB
DEFAULT_HTTP_TIMEOUT = 30.0  # seconds
DEFAULT_RENDEZVOUS_URL = "https://prototype.hashmap.sh"
DEFAULT_MESSAGE_STORE_URL = "https://ipfs.infura.io:5001/"
DEFAULT_IPFS_QUERY_TYPE = "api"
HASHMAP_SIG_METHOD = "ed25519"
HASHMAP_PAYLOAD_TTL = 86400  # 1 day in seconds
HASHMAP_MAX_FUTURE_DRIFT = 5 * 1000000000  # nanoseconds

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5
