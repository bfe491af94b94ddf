# Vault Engine - Encrypted Credential Vault
#
# Owns the lock/unlock state machine, the derived key and the decrypted
# entry collection. The whole collection is encrypted as one AES-256-GCM
# payload and written to a single slot of a KeyValueStore.
#
#   password → PBKDF2 → key (memory only) → AES-GCM → record codec → store
#
# Every mutation rebuilds the full collection, re-encrypts it with a fresh
# nonce and overwrites the record. The in-memory collection is only swapped
# after the store write succeeded, so memory never diverges from disk.

import json
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..core.log_setup import get_logger
from .encryption import DEFAULT_ITERATIONS, EncryptionService, zeroize
from .exceptions import (
    AuthenticationFailure,
    DecodeError,
    InitializationFailure,
    InvalidState,
    NotFound,
    PersistFailure,
    StoreError,
    VaultLocked,
    WeakMasterPassword,
)
from .models import (
    VaultEntry,
    VaultMetadata,
    VaultPhase,
    VaultStats,
    clean_optional,
    clean_tags,
    isoformat,
    new_entry_id,
    parse_timestamp,
    utc_now,
)
from .passwords import is_weak_password, verify_master_password
from .record import (
    RECORD_VERSION,
    VaultRecord,
    decode_payload,
    decode_record,
    encode_payload,
    encode_record,
)
from .store import KeyValueStore

logger = get_logger(__name__)

STORAGE_KEY = "cipherguard.vault"
INVALID_PASSWORD_MESSAGE = "Invalid master password. Please try again."
INITIALIZATION_FAILED_MESSAGE = "Unable to initialize vault. Please try again."

_UPDATABLE_FIELDS = frozenset({"title", "username", "password", "url", "notes", "tags"})

# Legal phase transitions. reset() may move any phase to SETUP.
_TRANSITIONS = {
    VaultPhase.INITIALIZING: {VaultPhase.SETUP, VaultPhase.LOCKED},
    VaultPhase.SETUP: {VaultPhase.SETUP, VaultPhase.UNLOCKING},
    VaultPhase.LOCKED: {VaultPhase.SETUP, VaultPhase.UNLOCKING},
    VaultPhase.UNLOCKING: {VaultPhase.SETUP, VaultPhase.LOCKED, VaultPhase.UNLOCKED},
    VaultPhase.UNLOCKED: {VaultPhase.SETUP, VaultPhase.LOCKED},
}

StrengthCheck = Callable[[str], Tuple[bool, str]]


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    value = value.strip()
    if not value:
        raise ValueError(f"{name} must not be empty")
    return value


class VaultEngine:
    """
    Manages the encrypted credential vault.

    Security:
    - Master password never stored (only salt + iteration count)
    - Derived key held as a bytearray while unlocked, zeroed on lock/reset
    - Wrong password and corrupted record are reported identically
    - Plaintext entries exist only in memory between unlock and lock

    Concurrency: every operation runs under one re-entrant lock, including
    key derivation, so callers arriving during a transient phase
    (INITIALIZING, UNLOCKING) wait for it to resolve.
    """

    def __init__(
        self,
        store: KeyValueStore,
        iterations: int = DEFAULT_ITERATIONS,
        clock: Optional[Callable[[], datetime]] = None,
        strength_check: Optional[StrengthCheck] = verify_master_password,
    ):
        """
        Args:
            store: Durable key/value store holding the vault record
            iterations: PBKDF2 iterations for newly created vaults
            clock: Returns the current timezone-aware datetime
            strength_check: Master password policy for initialize();
                            None disables the check
        """
        if iterations < 1:
            raise ValueError("iterations must be >= 1")

        self._store = store
        self._iterations = iterations
        self._clock = clock or utc_now
        self._strength_check = strength_check

        self._lock = threading.RLock()
        self._phase = VaultPhase.INITIALIZING
        self._key: Optional[bytearray] = None
        self._metadata: Optional[VaultMetadata] = None
        self._entries: List[VaultEntry] = []
        self._last_updated: Optional[int] = None

    # ── State ────────────────────────────────────────────────────────

    @property
    def phase(self) -> VaultPhase:
        return self._phase

    @property
    def is_unlocked(self) -> bool:
        return self._phase is VaultPhase.UNLOCKED

    @property
    def metadata(self) -> Optional[VaultMetadata]:
        return self._metadata

    @property
    def last_updated(self) -> Optional[int]:
        """Milliseconds since epoch of the last successful write."""
        return self._last_updated

    def _transition(self, new_phase: VaultPhase) -> None:
        if new_phase not in _TRANSITIONS[self._phase]:
            raise InvalidState(
                f"Illegal vault transition {self._phase.value} -> {new_phase.value}"
            )
        self._phase = new_phase

    def _require_unlocked(self) -> None:
        if self._phase is not VaultPhase.UNLOCKED:
            raise VaultLocked()

    def _discard_secrets(self) -> None:
        if self._key is not None:
            zeroize(self._key)
        self._key = None
        self._entries = []

    def _now(self) -> datetime:
        return self._clock()

    def _now_ms(self) -> int:
        return int(self._now().timestamp() * 1000)

    # ── Lifecycle ────────────────────────────────────────────────────

    def bootstrap(self) -> VaultPhase:
        """
        Read the store and settle into SETUP or LOCKED.

        A malformed record is reported by re-raising DecodeError after the
        engine moved to SETUP. The record itself is left in the store.

        Raises:
            InvalidState: If the engine was already bootstrapped
            DecodeError: If a record exists but cannot be parsed
            StoreError: If the store cannot be read (phase stays INITIALIZING)
        """
        with self._lock:
            if self._phase is not VaultPhase.INITIALIZING:
                raise InvalidState("Vault engine already bootstrapped")

            raw = self._store.get(STORAGE_KEY)
            if raw is None:
                self._transition(VaultPhase.SETUP)
                logger.info("vault_bootstrap", phase=self._phase.value)
                return self._phase

            try:
                record = decode_record(raw)
            except DecodeError as e:
                self._metadata = None
                self._transition(VaultPhase.SETUP)
                logger.error("vault_record_malformed", error=str(e))
                raise

            self._metadata = record.metadata
            self._last_updated = record.last_updated
            self._transition(VaultPhase.LOCKED)
            logger.info("vault_bootstrap", phase=self._phase.value)
            return self._phase

    def initialize(self, master_password: str) -> None:
        """
        Create a new, empty vault and leave it unlocked.

        Raises:
            InvalidState: If not in SETUP
            WeakMasterPassword: If the strength policy rejects the password
            InitializationFailure: On any cipher or store error
        """
        with self._lock:
            if self._phase is not VaultPhase.SETUP:
                raise InvalidState(f"Cannot initialize vault while {self._phase.value}")

            if self._strength_check is not None:
                is_valid, error_msg = self._strength_check(master_password)
                if not is_valid:
                    raise WeakMasterPassword(error_msg)

            self._transition(VaultPhase.UNLOCKING)
            key: Optional[bytearray] = None
            try:
                salt = EncryptionService.generate_salt()
                key = bytearray(EncryptionService.derive_key(master_password, salt, self._iterations))
                ciphertext, nonce = EncryptionService.encrypt(encode_payload([]), key)
                record = VaultRecord(
                    version=RECORD_VERSION,
                    iterations=self._iterations,
                    salt=salt,
                    ciphertext=ciphertext,
                    nonce=nonce,
                    last_updated=self._now_ms(),
                )
                self._store.set(STORAGE_KEY, encode_record(record))
            except Exception as e:
                if key is not None:
                    zeroize(key)
                self._transition(VaultPhase.SETUP)
                logger.error("vault_initialize_failed", error_type=type(e).__name__)
                raise InitializationFailure(INITIALIZATION_FAILED_MESSAGE) from e

            self._key = key
            self._metadata = record.metadata
            self._entries = []
            self._last_updated = record.last_updated
            self._transition(VaultPhase.UNLOCKED)
            logger.info("vault_initialized", iterations=self._iterations)

    def unlock(self, master_password: str) -> None:
        """
        Unlock the vault with the master password.

        Raises:
            InvalidState: If not LOCKED, or if the record disappeared from
                          the store (the engine then moves to SETUP)
            AuthenticationFailure: Wrong password or corrupted record; both
                                   carry the same message
            StoreError: If the store cannot be read (phase returns to LOCKED)

        Any other error also discards the key and returns the phase to
        LOCKED before it propagates.
        """
        with self._lock:
            if self._phase is not VaultPhase.LOCKED:
                raise InvalidState(f"Cannot unlock vault while {self._phase.value}")

            self._transition(VaultPhase.UNLOCKING)
            try:
                raw = self._store.get(STORAGE_KEY)
            except StoreError:
                self._transition(VaultPhase.LOCKED)
                raise

            if raw is None:
                self._metadata = None
                self._last_updated = None
                self._transition(VaultPhase.SETUP)
                logger.warning("vault_record_missing")
                raise InvalidState("Vault not found")

            key: Optional[bytearray] = None
            try:
                record = decode_record(raw)
                key = bytearray(
                    EncryptionService.derive_key(master_password, record.salt, record.iterations)
                )
                entries = decode_payload(
                    EncryptionService.decrypt(record.ciphertext, record.nonce, key)
                )
            except (AuthenticationFailure, DecodeError):
                if key is not None:
                    zeroize(key)
                self._entries = []
                self._transition(VaultPhase.LOCKED)
                logger.warning("vault_unlock_failed")
                raise AuthenticationFailure(INVALID_PASSWORD_MESSAGE) from None
            except Exception:
                if key is not None:
                    zeroize(key)
                self._entries = []
                self._transition(VaultPhase.LOCKED)
                logger.exception("vault_unlock_error")
                raise

            self._key = key
            self._metadata = record.metadata
            self._entries = entries
            self._last_updated = record.last_updated
            self._transition(VaultPhase.UNLOCKED)
            logger.info("vault_unlocked", entries=len(entries))

    def lock(self) -> None:
        """Drop the key and decrypted entries. No disk I/O."""
        with self._lock:
            if self._phase is not VaultPhase.UNLOCKED:
                raise InvalidState(f"Cannot lock vault while {self._phase.value}")
            self._discard_secrets()
            self._transition(VaultPhase.LOCKED if self._metadata else VaultPhase.SETUP)
            logger.info("vault_locked")

    def reset(self) -> None:
        """
        Destroy the vault record and return to SETUP. Irreversible.

        In-memory secrets are discarded even if the store delete fails.

        Raises:
            PersistFailure: If the record could not be deleted
        """
        with self._lock:
            self._discard_secrets()
            self._metadata = None
            self._last_updated = None
            self._phase = VaultPhase.SETUP
            try:
                self._store.delete(STORAGE_KEY)
            except StoreError as e:
                logger.error("vault_reset_failed", error=str(e))
                raise PersistFailure("Failed to delete vault record") from e
            logger.warning("vault_reset")

    # ── Persistence ──────────────────────────────────────────────────

    def _persist(self, next_entries: List[VaultEntry]) -> None:
        """Encrypt and write the full collection, then adopt it in memory."""
        key, meta = self._key, self._metadata
        if key is None or meta is None:
            raise VaultLocked()

        try:
            ciphertext, nonce = EncryptionService.encrypt(encode_payload(next_entries), key)
            record = VaultRecord(
                version=RECORD_VERSION,
                iterations=meta.iterations,
                salt=meta.salt,
                ciphertext=ciphertext,
                nonce=nonce,
                last_updated=self._now_ms(),
            )
            self._store.set(STORAGE_KEY, encode_record(record))
        except Exception as e:
            logger.error("vault_persist_failed", error_type=type(e).__name__)
            raise PersistFailure(f"Failed to save vault: {e}") from e

        self._entries = next_entries
        self._last_updated = record.last_updated

    def _index_of(self, entry_id: str) -> int:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return index
        return -1

    # ── Entry mutations ──────────────────────────────────────────────

    def add_entry(
        self,
        title: str,
        username: str,
        password: str,
        url: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        entry_id: Optional[str] = None,
    ) -> VaultEntry:
        """
        Add a credential and persist the vault.

        Raises:
            VaultLocked: If the vault is not unlocked
            ValueError: On empty title/username or a duplicate entry_id
            PersistFailure: If the vault could not be saved (nothing changes)
        """
        with self._lock:
            self._require_unlocked()
            if not isinstance(password, str):
                raise ValueError("password must be a string")
            if entry_id is not None and self._index_of(entry_id) != -1:
                raise ValueError(f"Entry id already exists: {entry_id}")

            now = isoformat(self._now())
            entry = VaultEntry(
                id=entry_id or new_entry_id(),
                title=_require_text("title", title),
                username=_require_text("username", username),
                password=password,
                url=clean_optional(url),
                notes=clean_optional(notes),
                tags=clean_tags(tags),
                created_at=now,
                updated_at=now,
            )

            self._persist(self._entries + [entry])
            logger.info("entry_added", entry_id=entry.id, total=len(self._entries))
            return entry

    def update_entry(self, entry_id: str, **changes: Any) -> VaultEntry:
        """
        Merge ``changes`` over an existing entry and persist the vault.

        Accepted fields: title, username, password, url, notes, tags.
        Fields not passed keep their value; url/notes passed as None or
        blank are removed.

        Raises:
            VaultLocked: If the vault is not unlocked
            NotFound: If no entry has ``entry_id``
            ValueError: On unknown fields or empty title/username
            PersistFailure: If the vault could not be saved (nothing changes)
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            self._require_unlocked()
            index = self._index_of(entry_id)
            if index == -1:
                raise NotFound(f"Entry not found: {entry_id}")

            current = self._entries[index]
            fields: Dict[str, Any] = {}
            if "title" in changes:
                fields["title"] = _require_text("title", changes["title"])
            if "username" in changes:
                fields["username"] = _require_text("username", changes["username"])
            if "password" in changes:
                if not isinstance(changes["password"], str):
                    raise ValueError("password must be a string")
                fields["password"] = changes["password"]
            if "url" in changes:
                fields["url"] = clean_optional(changes["url"])
            if "notes" in changes:
                fields["notes"] = clean_optional(changes["notes"])
            if "tags" in changes:
                fields["tags"] = clean_tags(changes["tags"])

            updated = current.with_changes(updated_at=isoformat(self._now()), **fields)
            next_entries = list(self._entries)
            next_entries[index] = updated

            self._persist(next_entries)
            logger.info("entry_updated", entry_id=entry_id, fields=sorted(fields))
            return updated

    def delete_entry(self, entry_id: str) -> List[VaultEntry]:
        """
        Remove an entry if present and persist the vault.

        Deleting an unknown id is not an error; the vault is rewritten with
        identical contents.
        """
        with self._lock:
            self._require_unlocked()
            next_entries = [entry for entry in self._entries if entry.id != entry_id]
            removed = len(self._entries) - len(next_entries)
            self._persist(next_entries)
            logger.info("entry_deleted", entry_id=entry_id, removed=removed)
            return list(next_entries)

    def _sanitize_import(self, item: Union[VaultEntry, Dict[str, Any]], now: datetime) -> VaultEntry:
        data = item.to_dict() if isinstance(item, VaultEntry) else item
        if not isinstance(data, dict):
            raise DecodeError("Imported entry must be an object")

        try:
            tags = data.get("tags")
            if tags is not None and not isinstance(tags, list):
                raise ValueError("tags must be a list")
            created_at = now
            raw_created = data.get("createdAt") or data.get("created_at")
            if raw_created is not None:
                # Future creation times are clamped so updatedAt >= createdAt holds
                created_at = min(parse_timestamp(raw_created), now)
            entry_id = data.get("id")
            if entry_id is not None and (not isinstance(entry_id, str) or not entry_id):
                raise ValueError("id must be a non-empty string")
            password = data.get("password")
            if not isinstance(password, str):
                raise ValueError("password must be a string")

            return VaultEntry(
                id=entry_id or new_entry_id(),
                title=_require_text("title", data.get("title")),
                username=_require_text("username", data.get("username")),
                password=password,
                url=clean_optional(data.get("url")),
                notes=clean_optional(data.get("notes")),
                tags=clean_tags(tags),
                created_at=isoformat(created_at),
                updated_at=isoformat(now),
            )
        except (TypeError, AttributeError, ValueError) as e:
            raise DecodeError(f"Invalid imported entry: {e}") from e

    def import_entries(
        self, items: Iterable[Union[VaultEntry, Dict[str, Any]]]
    ) -> List[VaultEntry]:
        """
        Replace the whole collection with ``items`` and persist the vault.

        Items may be VaultEntry objects or dicts in export format. Missing
        ids are generated. createdAt is kept when present, normalized to UTC
        and clamped to now. updatedAt is always set to now.

        Raises:
            VaultLocked: If the vault is not unlocked
            DecodeError: If an item is malformed or ids collide
            PersistFailure: If the vault could not be saved (nothing changes)
        """
        with self._lock:
            self._require_unlocked()
            now = self._now()
            sanitized: List[VaultEntry] = []
            seen = set()
            for position, item in enumerate(items):
                entry = self._sanitize_import(item, now)
                if entry.id in seen:
                    raise DecodeError(f"Duplicate entry id at position {position}: {entry.id}")
                seen.add(entry.id)
                sanitized.append(entry)

            self._persist(sanitized)
            logger.info("entries_imported", total=len(sanitized))
            return list(sanitized)

    def import_json(self, raw: Union[str, bytes]) -> List[VaultEntry]:
        """
        Import an export document (or a bare JSON list of entries).

        Raises:
            DecodeError: If ``raw`` is not a valid export document
        """
        try:
            document = json.loads(raw)
        except ValueError:
            raise DecodeError("Import file is not valid JSON") from None

        if isinstance(document, dict):
            document = document.get("entries")
        if not isinstance(document, list):
            raise DecodeError("Import document must contain an 'entries' list")

        return self.import_entries(document)

    # ── Read-only views ──────────────────────────────────────────────

    @property
    def entries(self) -> Tuple[VaultEntry, ...]:
        with self._lock:
            self._require_unlocked()
            return tuple(self._entries)

    def get_entry(self, entry_id: str) -> VaultEntry:
        with self._lock:
            self._require_unlocked()
            index = self._index_of(entry_id)
            if index == -1:
                raise NotFound(f"Entry not found: {entry_id}")
            return self._entries[index]

    def search_entries(
        self, term: Optional[str] = None, tag: Optional[str] = None
    ) -> List[VaultEntry]:
        """
        Filter entries by a case-insensitive substring and/or a tag.

        The term matches title, username, url, notes and tags. The tag
        filter compares tags case-insensitively.
        """
        with self._lock:
            self._require_unlocked()
            needle = (term or "").strip().lower()
            wanted_tag = tag.strip().lower() if tag else None

            results = []
            for entry in self._entries:
                if needle:
                    haystack = [entry.title, entry.username, entry.url, entry.notes]
                    matches = any(
                        needle in value.lower() for value in haystack if value
                    ) or any(needle in t.lower() for t in entry.tags)
                    if not matches:
                        continue
                if wanted_tag is not None and wanted_tag not in (t.lower() for t in entry.tags):
                    continue
                results.append(entry)
            return results

    def all_tags(self) -> List[str]:
        """Distinct tags across the collection, sorted."""
        with self._lock:
            self._require_unlocked()
            return sorted({t for entry in self._entries for t in entry.tags})

    def export_entries(self) -> str:
        """
        Return a plaintext JSON export of the current entries.

        The result is sensitive: it contains every password in clear text.
        The engine never writes it anywhere.
        """
        with self._lock:
            self._require_unlocked()
            document = {
                "exportedAt": isoformat(self._now()),
                "entries": [entry.to_dict() for entry in self._entries],
            }
            logger.info("entries_exported", total=len(self._entries))
            return json.dumps(document, indent=2)

    def compute_stats(self) -> VaultStats:
        """Totals, per-tag counts and the number of weak passwords."""
        with self._lock:
            self._require_unlocked()
            by_tag: Dict[str, int] = {}
            for entry in self._entries:
                for tag in entry.tags:
                    by_tag[tag] = by_tag.get(tag, 0) + 1

            weak = sum(1 for entry in self._entries if is_weak_password(entry.password))
            return VaultStats(total=len(self._entries), tags=by_tag, weak_passwords=weak)
