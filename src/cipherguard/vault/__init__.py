# Vault Module - Encrypted Credential Vault
#
# Whole-collection encryption with AES-256-GCM
# Master password with PBKDF2 key derivation
# Single-record durable storage (file or SQLite)

from .encryption import EncryptionService
from .exceptions import (
    AuthenticationFailure,
    DecodeError,
    InitializationFailure,
    InvalidState,
    NotFound,
    PersistFailure,
    StoreError,
    VaultError,
    VaultLocked,
    WeakMasterPassword,
)
from .models import VaultEntry, VaultMetadata, VaultPhase, VaultStats
from .record import VaultRecord, decode_record, encode_record
from .store import FileStore, KeyValueStore, MemoryStore, SQLiteStore, build_store
from .vault_engine import STORAGE_KEY, VaultEngine

__all__ = [
    "VaultEngine",
    "STORAGE_KEY",
    "EncryptionService",
    # Model
    "VaultEntry",
    "VaultMetadata",
    "VaultPhase",
    "VaultStats",
    # Record codec
    "VaultRecord",
    "encode_record",
    "decode_record",
    # Stores
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    "SQLiteStore",
    "build_store",
    # Errors
    "VaultError",
    "InvalidState",
    "VaultLocked",
    "AuthenticationFailure",
    "DecodeError",
    "NotFound",
    "PersistFailure",
    "InitializationFailure",
    "WeakMasterPassword",
    "StoreError",
]
