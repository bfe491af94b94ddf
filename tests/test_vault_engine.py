"""Tests for VaultEngine: lifecycle state machine, entry CRUD, persistence,
import/export and statistics.
"""

import dataclasses
import json
import threading

import pytest

MASTER_PASSWORD = "Correct-Horse-Battery-9!"


class FailingStore:
    """MemoryStore wrapper whose writes can be switched off."""

    def __init__(self, inner):
        self.inner = inner
        self.fail_set = False
        self.fail_delete = False

    def get(self, key):
        return self.inner.get(key)

    def set(self, key, value):
        from cipherguard.vault.exceptions import StoreError

        if self.fail_set:
            raise StoreError("disk full")
        self.inner.set(key, value)

    def delete(self, key):
        from cipherguard.vault.exceptions import StoreError

        if self.fail_delete:
            raise StoreError("read-only medium")
        self.inner.delete(key)


# ── Lifecycle ───────────────────────────────────────────────────────


class TestBootstrap:
    def test_starts_initializing(self, make_engine):
        from cipherguard.vault.models import VaultPhase

        assert make_engine().phase is VaultPhase.INITIALIZING

    def test_empty_store_goes_to_setup(self, engine):
        from cipherguard.vault.models import VaultPhase

        assert engine.phase is VaultPhase.SETUP
        assert engine.metadata is None
        assert engine.last_updated is None

    def test_existing_record_goes_to_locked(self, unlocked, make_engine):
        from cipherguard.vault.models import VaultPhase

        second = make_engine()
        assert second.bootstrap() is VaultPhase.LOCKED
        assert second.metadata == unlocked.metadata
        assert second.last_updated == unlocked.last_updated

    def test_malformed_record_surfaces_error_and_keeps_data(self, store, make_engine):
        from cipherguard.vault.exceptions import DecodeError
        from cipherguard.vault.models import VaultPhase
        from cipherguard.vault.vault_engine import STORAGE_KEY

        store.set(STORAGE_KEY, b"{corrupted")
        eng = make_engine()
        with pytest.raises(DecodeError):
            eng.bootstrap()
        assert eng.phase is VaultPhase.SETUP
        assert store.get(STORAGE_KEY) == b"{corrupted"

    def test_bootstrap_twice_rejected(self, engine):
        from cipherguard.vault.exceptions import InvalidState

        with pytest.raises(InvalidState):
            engine.bootstrap()


class TestInitialize:
    def test_initialize_unlocks_empty_vault(self, unlocked, store):
        from cipherguard.vault.models import VaultPhase
        from cipherguard.vault.record import decode_record
        from cipherguard.vault.vault_engine import STORAGE_KEY

        assert unlocked.phase is VaultPhase.UNLOCKED
        assert unlocked.entries == ()

        record = decode_record(store.get(STORAGE_KEY))
        assert record.version == 1
        assert record.iterations == 1_000
        assert len(record.salt) == 32
        assert record.last_updated == unlocked.last_updated

    def test_salt_is_fresh_per_vault(self, make_engine):
        from cipherguard.vault.store import MemoryStore

        salts = set()
        for _ in range(2):
            eng = make_engine(store=MemoryStore())
            eng.bootstrap()
            eng.initialize(MASTER_PASSWORD)
            salts.add(eng.metadata.salt)
        assert len(salts) == 2

    def test_only_from_setup(self, unlocked):
        from cipherguard.vault.exceptions import InvalidState

        with pytest.raises(InvalidState):
            unlocked.initialize(MASTER_PASSWORD)
        unlocked.lock()
        with pytest.raises(InvalidState):
            unlocked.initialize(MASTER_PASSWORD)

    def test_weak_master_password_rejected(self, engine, store):
        from cipherguard.vault.exceptions import InitializationFailure, WeakMasterPassword
        from cipherguard.vault.models import VaultPhase

        with pytest.raises(WeakMasterPassword):
            engine.initialize("short1!")
        with pytest.raises(InitializationFailure):
            engine.initialize("onlylowercaselettershere")
        assert engine.phase is VaultPhase.SETUP
        assert store.get("cipherguard.vault") is None

    def test_strength_check_can_be_disabled(self, make_engine):
        eng = make_engine(strength_check=None)
        eng.bootstrap()
        eng.initialize("")
        assert eng.is_unlocked

    def test_store_failure_reverts_to_setup(self, store, make_engine):
        from cipherguard.vault.exceptions import InitializationFailure
        from cipherguard.vault.models import VaultPhase

        failing = FailingStore(store)
        failing.fail_set = True
        eng = make_engine(store=failing)
        eng.bootstrap()
        with pytest.raises(InitializationFailure):
            eng.initialize(MASTER_PASSWORD)
        assert eng.phase is VaultPhase.SETUP
        assert eng.metadata is None
        assert store.get("cipherguard.vault") is None


class TestUnlock:
    def test_only_from_locked(self, engine, unlocked):
        from cipherguard.vault.exceptions import InvalidState

        with pytest.raises(InvalidState):
            unlocked.unlock(MASTER_PASSWORD)

    def test_unlock_from_setup_rejected(self, engine):
        from cipherguard.vault.exceptions import InvalidState

        with pytest.raises(InvalidState):
            engine.unlock(MASTER_PASSWORD)

    def test_wrong_password_stays_locked(self, unlocked, make_engine):
        from cipherguard.vault.exceptions import AuthenticationFailure, VaultLocked
        from cipherguard.vault.models import VaultPhase

        unlocked.add_entry(title="Mail", username="a@b.com", password="x")
        fresh = make_engine()
        fresh.bootstrap()

        with pytest.raises(AuthenticationFailure) as exc_info:
            fresh.unlock("wrong")
        assert str(exc_info.value) == "Invalid master password. Please try again."
        assert fresh.phase is VaultPhase.LOCKED
        with pytest.raises(VaultLocked):
            fresh.entries

    def test_tampered_record_reports_same_error(self, unlocked, store, make_engine):
        from cipherguard.vault.exceptions import AuthenticationFailure
        from cipherguard.vault.models import VaultPhase
        from cipherguard.vault.record import decode_record, encode_record
        from cipherguard.vault.vault_engine import STORAGE_KEY

        unlocked.add_entry(title="Mail", username="a@b.com", password="x")
        record = decode_record(store.get(STORAGE_KEY))

        for field in ("ciphertext", "nonce"):
            value = bytearray(getattr(record, field))
            value[len(value) // 2] ^= 0x04
            store.set(STORAGE_KEY, encode_record(dataclasses.replace(record, **{field: bytes(value)})))

            fresh = make_engine()
            fresh.bootstrap()
            with pytest.raises(AuthenticationFailure) as exc_info:
                fresh.unlock(MASTER_PASSWORD)
            assert str(exc_info.value) == "Invalid master password. Please try again."
            assert exc_info.value.__cause__ is None
            assert fresh.phase is VaultPhase.LOCKED

    def test_corrupted_after_bootstrap_reports_generic_error(self, unlocked, store, make_engine):
        from cipherguard.vault.exceptions import AuthenticationFailure
        from cipherguard.vault.vault_engine import STORAGE_KEY

        fresh = make_engine()
        fresh.bootstrap()
        store.set(STORAGE_KEY, b"not a record")
        with pytest.raises(AuthenticationFailure, match="Invalid master password"):
            fresh.unlock(MASTER_PASSWORD)

    def test_record_removed_moves_to_setup(self, unlocked, store, make_engine):
        from cipherguard.vault.exceptions import InvalidState
        from cipherguard.vault.models import VaultPhase
        from cipherguard.vault.vault_engine import STORAGE_KEY

        fresh = make_engine()
        fresh.bootstrap()
        store.delete(STORAGE_KEY)
        with pytest.raises(InvalidState, match="Vault not found"):
            fresh.unlock(MASTER_PASSWORD)
        assert fresh.phase is VaultPhase.SETUP
        assert fresh.metadata is None

    def test_retry_after_wrong_password(self, unlocked):
        from cipherguard.vault.exceptions import AuthenticationFailure

        unlocked.lock()
        with pytest.raises(AuthenticationFailure):
            unlocked.unlock("nope")
        unlocked.unlock(MASTER_PASSWORD)
        assert unlocked.is_unlocked

    def test_oversized_iteration_count_reports_generic_error(self, unlocked, store, make_engine):
        from cipherguard.vault.exceptions import AuthenticationFailure
        from cipherguard.vault.models import VaultPhase
        from cipherguard.vault.record import decode_record, encode_record
        from cipherguard.vault.vault_engine import STORAGE_KEY

        record = decode_record(store.get(STORAGE_KEY))
        store.set(STORAGE_KEY, encode_record(dataclasses.replace(record, iterations=2**70)))

        fresh = make_engine()
        fresh.bootstrap()
        with pytest.raises(AuthenticationFailure, match="Invalid master password"):
            fresh.unlock(MASTER_PASSWORD)
        assert fresh.phase is VaultPhase.LOCKED

    def test_unexpected_error_returns_to_locked(self, unlocked, make_engine, monkeypatch):
        from cipherguard.vault.encryption import EncryptionService
        from cipherguard.vault.models import VaultPhase

        fresh = make_engine()
        fresh.bootstrap()

        def explode(*args, **kwargs):
            raise OverflowError("int too big to convert")

        with monkeypatch.context() as patched:
            patched.setattr(EncryptionService, "derive_key", staticmethod(explode))
            with pytest.raises(OverflowError):
                fresh.unlock(MASTER_PASSWORD)

        assert fresh.phase is VaultPhase.LOCKED
        fresh.unlock(MASTER_PASSWORD)
        assert fresh.is_unlocked


class TestLockAndReset:
    def test_lock_discards_key_and_entries(self, unlocked):
        from cipherguard.vault.models import VaultPhase

        key = unlocked._key
        unlocked.add_entry(title="Mail", username="a@b.com", password="x")
        unlocked.lock()
        assert unlocked.phase is VaultPhase.LOCKED
        assert unlocked._key is None
        assert key == bytearray(len(key))
        assert unlocked._entries == []

    def test_lock_requires_unlocked(self, engine):
        from cipherguard.vault.exceptions import InvalidState

        with pytest.raises(InvalidState):
            engine.lock()

    def test_lock_does_not_write(self, unlocked, store):
        before = store.get("cipherguard.vault")
        unlocked.lock()
        assert store.get("cipherguard.vault") == before

    def test_reset_from_unlocked(self, unlocked, store):
        from cipherguard.vault.models import VaultPhase

        unlocked.reset()
        assert unlocked.phase is VaultPhase.SETUP
        assert unlocked.metadata is None
        assert unlocked.last_updated is None
        assert store.get("cipherguard.vault") is None

    def test_reset_from_locked_then_reinitialize(self, unlocked):
        unlocked.lock()
        unlocked.reset()
        unlocked.initialize("Another-Strong-Passphrase-42")
        assert unlocked.is_unlocked

    def test_reset_after_malformed_bootstrap(self, store, make_engine):
        from cipherguard.vault.exceptions import DecodeError
        from cipherguard.vault.models import VaultPhase

        store.set("cipherguard.vault", b"junk")
        eng = make_engine()
        with pytest.raises(DecodeError):
            eng.bootstrap()
        eng.reset()
        assert eng.phase is VaultPhase.SETUP
        assert store.get("cipherguard.vault") is None

    def test_reset_store_failure_still_clears_memory(self, store, make_engine):
        from cipherguard.vault.exceptions import PersistFailure
        from cipherguard.vault.models import VaultPhase

        failing = FailingStore(store)
        eng = make_engine(store=failing)
        eng.bootstrap()
        eng.initialize(MASTER_PASSWORD)
        failing.fail_delete = True
        with pytest.raises(PersistFailure):
            eng.reset()
        assert eng.phase is VaultPhase.SETUP
        assert eng._key is None


# ── Entries ─────────────────────────────────────────────────────────


class TestAddEntry:
    def test_add_trims_and_stamps(self, unlocked):
        entry = unlocked.add_entry(
            title="  Mail ",
            username=" a@b.com ",
            password=" keep spaces ",
            url=" https://mail.example ",
            notes="  ",
            tags=[" work ", "", "mail", "work"],
        )
        assert entry.title == "Mail"
        assert entry.username == "a@b.com"
        assert entry.password == " keep spaces "
        assert entry.url == "https://mail.example"
        assert entry.notes is None
        assert entry.tags == ["work", "mail", "work"]
        assert entry.created_at == entry.updated_at
        assert entry.id

    def test_ids_are_unique(self, unlocked):
        ids = {unlocked.add_entry(title=f"t{i}", username="u", password="p").id for i in range(5)}
        assert len(ids) == 5

    def test_duplicate_explicit_id_rejected(self, unlocked):
        unlocked.add_entry(title="a", username="u", password="p", entry_id="fixed")
        with pytest.raises(ValueError):
            unlocked.add_entry(title="b", username="u", password="p", entry_id="fixed")

    @pytest.mark.parametrize("field", ["title", "username"])
    def test_blank_required_field_rejected(self, unlocked, field):
        kwargs = dict(title="t", username="u", password="p")
        kwargs[field] = "   "
        with pytest.raises(ValueError):
            unlocked.add_entry(**kwargs)
        assert unlocked.entries == ()

    @pytest.mark.parametrize(
        "kwargs",
        [{"url": 42}, {"notes": ["n"]}, {"tags": ["ok", 7]}, {"tags": "work"}, {"tags": 5}],
    )
    def test_mistyped_optional_field_rejected(self, unlocked, kwargs):
        with pytest.raises(ValueError):
            unlocked.add_entry(title="t", username="u", password="p", **kwargs)
        assert unlocked.entries == ()

    def test_requires_unlocked(self, unlocked):
        from cipherguard.vault.exceptions import InvalidState, VaultLocked

        unlocked.lock()
        with pytest.raises(VaultLocked):
            unlocked.add_entry(title="t", username="u", password="p")
        assert issubclass(VaultLocked, InvalidState)

    def test_persists_full_collection(self, unlocked, store):
        from cipherguard.vault.encryption import EncryptionService
        from cipherguard.vault.record import decode_payload, decode_record

        unlocked.add_entry(title="a", username="u", password="p")
        unlocked.add_entry(title="b", username="u", password="p")

        record = decode_record(store.get("cipherguard.vault"))
        plaintext = EncryptionService.decrypt(record.ciphertext, record.nonce, unlocked._key)
        assert [e.title for e in decode_payload(plaintext)] == ["a", "b"]

    def test_every_write_uses_fresh_nonce(self, unlocked, store):
        from cipherguard.vault.record import decode_record

        nonces = set()
        for i in range(3):
            unlocked.add_entry(title=f"t{i}", username="u", password="p")
            nonces.add(decode_record(store.get("cipherguard.vault")).nonce)
        assert len(nonces) == 3

    def test_store_failure_rolls_back(self, store, make_engine):
        from cipherguard.vault.exceptions import PersistFailure

        failing = FailingStore(store)
        eng = make_engine(store=failing)
        eng.bootstrap()
        eng.initialize(MASTER_PASSWORD)
        eng.add_entry(title="kept", username="u", password="p")
        before_record = store.get("cipherguard.vault")
        before_updated = eng.last_updated

        failing.fail_set = True
        with pytest.raises(PersistFailure):
            eng.add_entry(title="lost", username="u", password="p")

        assert [e.title for e in eng.entries] == ["kept"]
        assert eng.last_updated == before_updated
        assert store.get("cipherguard.vault") == before_record


class TestUpdateEntry:
    def test_merges_and_restamps(self, unlocked):
        entry = unlocked.add_entry(title="Mail", username="a@b.com", password="x", tags=["a"])
        updated = unlocked.update_entry(entry.id, title="  Webmail ", tags=[" b "])

        assert updated.id == entry.id
        assert updated.title == "Webmail"
        assert updated.username == "a@b.com"
        assert updated.tags == ["b"]
        assert updated.created_at == entry.created_at
        assert updated.updated_at > entry.updated_at
        assert unlocked.get_entry(entry.id) == updated

    def test_url_and_notes_can_be_cleared(self, unlocked):
        entry = unlocked.add_entry(title="t", username="u", password="p", url="https://x", notes="n")
        updated = unlocked.update_entry(entry.id, url=None, notes="")
        assert updated.url is None
        assert updated.notes is None

    def test_unknown_id(self, unlocked):
        from cipherguard.vault.exceptions import NotFound

        with pytest.raises(NotFound):
            unlocked.update_entry("missing", title="x")

    @pytest.mark.parametrize("field", ["id", "created_at", "updated_at", "colour"])
    def test_rejects_unknown_or_immutable_fields(self, unlocked, field):
        entry = unlocked.add_entry(title="t", username="u", password="p")
        with pytest.raises(ValueError):
            unlocked.update_entry(entry.id, **{field: "x"})

    @pytest.mark.parametrize("changes", [{"url": 1}, {"notes": object()}, {"tags": [None]}])
    def test_mistyped_field_rejected(self, unlocked, changes):
        entry = unlocked.add_entry(title="t", username="u", password="p", url="https://x")
        with pytest.raises(ValueError):
            unlocked.update_entry(entry.id, **changes)
        assert unlocked.get_entry(entry.id) == entry

    def test_store_failure_rolls_back(self, store, make_engine):
        from cipherguard.vault.exceptions import PersistFailure

        failing = FailingStore(store)
        eng = make_engine(store=failing)
        eng.bootstrap()
        eng.initialize(MASTER_PASSWORD)
        entry = eng.add_entry(title="before", username="u", password="p")

        failing.fail_set = True
        with pytest.raises(PersistFailure):
            eng.update_entry(entry.id, title="after")
        assert eng.get_entry(entry.id).title == "before"


class TestDeleteEntry:
    def test_delete(self, unlocked):
        a = unlocked.add_entry(title="a", username="u", password="p")
        b = unlocked.add_entry(title="b", username="u", password="p")
        remaining = unlocked.delete_entry(a.id)
        assert remaining == [b]
        assert unlocked.entries == (b,)

    def test_delete_missing_is_idempotent(self, unlocked):
        a = unlocked.add_entry(title="a", username="u", password="p")
        before = unlocked.entries
        unlocked.delete_entry("does-not-exist")
        unlocked.delete_entry("does-not-exist")
        assert unlocked.entries == before == (a,)

    def test_store_failure_rolls_back(self, store, make_engine):
        from cipherguard.vault.exceptions import PersistFailure

        failing = FailingStore(store)
        eng = make_engine(store=failing)
        eng.bootstrap()
        eng.initialize(MASTER_PASSWORD)
        a = eng.add_entry(title="a", username="u", password="p")
        b = eng.add_entry(title="b", username="u", password="p")
        before_record = store.get("cipherguard.vault")
        before_updated = eng.last_updated

        failing.fail_set = True
        with pytest.raises(PersistFailure):
            eng.delete_entry(a.id)

        assert eng.entries == (a, b)
        assert eng.last_updated == before_updated
        assert store.get("cipherguard.vault") == before_record


# ── Import / Export ─────────────────────────────────────────────────


class TestImportExport:
    def test_export_document(self, unlocked):
        unlocked.add_entry(title="Mail", username="a@b.com", password="x", tags=["work"])
        doc = json.loads(unlocked.export_entries())

        assert set(doc) == {"exportedAt", "entries"}
        assert doc["exportedAt"].endswith("Z")
        assert doc["entries"] == [e.to_dict() for e in unlocked.entries]
        for entry in doc["entries"]:
            assert not {"data", "iv", "salt", "ciphertext", "nonce"} & set(entry)

    def test_export_requires_unlocked(self, unlocked):
        from cipherguard.vault.exceptions import VaultLocked

        unlocked.lock()
        with pytest.raises(VaultLocked):
            unlocked.export_entries()

    def test_import_replaces_collection(self, unlocked):
        unlocked.add_entry(title="old", username="u", password="p")
        imported = unlocked.import_entries([
            {"title": " New ", "username": "u", "password": "p", "tags": [" t "]},
            {
                "id": "keep-id",
                "title": "Kept",
                "username": "u",
                "password": "p",
                "createdAt": "2020-05-05T00:00:00.000Z",
                "updatedAt": "2020-05-06T00:00:00.000Z",
            },
        ])

        assert [e.title for e in unlocked.entries] == ["New", "Kept"]
        assert imported[0].id
        assert imported[0].tags == ["t"]
        assert imported[0].created_at == imported[0].updated_at
        assert imported[1].id == "keep-id"
        assert imported[1].created_at == "2020-05-05T00:00:00.000Z"
        assert imported[1].updated_at != "2020-05-06T00:00:00.000Z"

    def test_export_then_import_roundtrip(self, unlocked):
        unlocked.add_entry(title="a", username="u", password="p1", url="https://a")
        unlocked.add_entry(title="b", username="v", password="p2", notes="n", tags=["x"])
        before = unlocked.entries

        unlocked.import_json(unlocked.export_entries())
        after = unlocked.entries
        assert [(e.id, e.title, e.password, e.url, e.notes, e.tags, e.created_at) for e in after] == [
            (e.id, e.title, e.password, e.url, e.notes, e.tags, e.created_at) for e in before
        ]

    def test_import_accepts_bare_list(self, unlocked):
        unlocked.import_json('[{"title": "t", "username": "u", "password": "p"}]')
        assert len(unlocked.entries) == 1

    @pytest.mark.parametrize(
        "raw",
        [
            "nope",
            '{"entries": "x"}',
            '{"entries": [{"username": "u", "password": "p"}]}',
            '{"entries": [{"title": "t", "username": "u", "password": 5}]}',
            '{"entries": [{"title": "t", "username": "u", "password": "p", "tags": "a"}]}',
            '[{"id": "d", "title": "t", "username": "u", "password": "p"},'
            ' {"id": "d", "title": "t2", "username": "u", "password": "p"}]',
        ],
    )
    def test_malformed_import_changes_nothing(self, unlocked, raw):
        from cipherguard.vault.exceptions import DecodeError

        existing = unlocked.add_entry(title="keep", username="u", password="p")
        with pytest.raises(DecodeError):
            unlocked.import_json(raw)
        assert unlocked.entries == (existing,)

    def test_future_created_at_is_clamped(self, unlocked):
        imported = unlocked.import_entries([
            {"title": "t", "username": "u", "password": "p", "createdAt": "2999-01-01T00:00:00.000Z"},
        ])
        entry = imported[0]
        assert entry.created_at == entry.updated_at
        assert entry.created_at.startswith("2024-01-01")

    def test_created_at_is_normalized(self, unlocked):
        imported = unlocked.import_entries([
            {"title": "t", "username": "u", "password": "p", "createdAt": "2020-05-05T02:00:00+02:00"},
        ])
        assert imported[0].created_at == "2020-05-05T00:00:00.000Z"

    @pytest.mark.parametrize("created_at", ["garbage", 1588636800, "2020-13-40"])
    def test_invalid_created_at_rejected(self, unlocked, created_at):
        from cipherguard.vault.exceptions import DecodeError

        existing = unlocked.add_entry(title="keep", username="u", password="p")
        with pytest.raises(DecodeError):
            unlocked.import_entries([
                {"title": "t", "username": "u", "password": "p", "createdAt": created_at},
            ])
        assert unlocked.entries == (existing,)

    def test_store_failure_rolls_back(self, store, make_engine):
        from cipherguard.vault.exceptions import PersistFailure

        failing = FailingStore(store)
        eng = make_engine(store=failing)
        eng.bootstrap()
        eng.initialize(MASTER_PASSWORD)
        existing = eng.add_entry(title="kept", username="u", password="p")
        before_record = store.get("cipherguard.vault")

        failing.fail_set = True
        with pytest.raises(PersistFailure):
            eng.import_entries([{"title": "new", "username": "u", "password": "p"}])

        assert eng.entries == (existing,)
        assert store.get("cipherguard.vault") == before_record


# ── Stats & Search ──────────────────────────────────────────────────


class TestStatsAndSearch:
    def test_compute_stats(self, unlocked):
        unlocked.add_entry(title="a", username="u", password="abc123", tags=["work", "mail"])
        unlocked.add_entry(title="b", username="u", password="LongPassphraseNoSymbol1", tags=["work"])
        unlocked.add_entry(title="c", username="u", password="Sup3r$ecureLongPass!", tags=["Work"])

        stats = unlocked.compute_stats()
        assert stats.total == 3
        assert stats.tags == {"work": 2, "mail": 1, "Work": 1}
        assert stats.weak_passwords == 2

    def test_stats_empty_vault(self, unlocked):
        stats = unlocked.compute_stats()
        assert stats.total == 0
        assert stats.tags == {}
        assert stats.weak_passwords == 0

    def test_search(self, unlocked):
        unlocked.add_entry(title="GitHub", username="dev", password="p", tags=["Work"])
        unlocked.add_entry(title="Bank", username="me", password="p", url="https://bank.example")
        unlocked.add_entry(title="Mail", username="me", password="p", notes="personal github alias")

        assert [e.title for e in unlocked.search_entries("github")] == ["GitHub", "Mail"]
        assert [e.title for e in unlocked.search_entries("BANK.example")] == ["Bank"]
        assert [e.title for e in unlocked.search_entries(tag="work")] == ["GitHub"]
        assert [e.title for e in unlocked.search_entries("github", tag="work")] == ["GitHub"]
        assert len(unlocked.search_entries()) == 3
        assert unlocked.all_tags() == ["Work"]


# ── End-to-end scenario ─────────────────────────────────────────────


class TestScenario:
    def test_full_lifecycle(self, engine, make_engine):
        from cipherguard.vault.exceptions import AuthenticationFailure
        from cipherguard.vault.models import VaultPhase

        engine.initialize("Correct-Horse-Battery-9!")
        assert engine.phase is VaultPhase.UNLOCKED
        assert len(engine.entries) == 0

        entry = engine.add_entry(
            title="Mail", username="a@b.com", password="x", tags=["work", "mail"]
        )
        assert entry.id
        assert entry.created_at == entry.updated_at

        engine.lock()
        assert engine.phase is VaultPhase.LOCKED

        engine.unlock("Correct-Horse-Battery-9!")
        assert engine.phase is VaultPhase.UNLOCKED
        assert engine.entries == (entry,)

        fresh = make_engine()
        fresh.bootstrap()
        with pytest.raises(AuthenticationFailure):
            fresh.unlock("wrong")
        assert fresh.phase is VaultPhase.LOCKED

    def test_roundtrip_across_restart(self, unlocked, make_engine):
        for i in range(10):
            unlocked.add_entry(
                title=f"Site {i}", username=f"user{i}", password=f"pw-{i}!",
                url=f"https://site{i}.example" if i % 2 else None, tags=[f"t{i % 3}"],
            )
        expected = unlocked.entries

        restarted = make_engine()
        restarted.bootstrap()
        restarted.unlock(MASTER_PASSWORD)
        assert restarted.entries == expected


class TestConcurrency:
    def test_parallel_adds_are_serialized(self, unlocked, make_engine):
        errors = []

        def worker(n):
            try:
                for i in range(5):
                    unlocked.add_entry(title=f"w{n}-{i}", username="u", password="p")
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(unlocked.entries) == 20

        restarted = make_engine()
        restarted.bootstrap()
        restarted.unlock(MASTER_PASSWORD)
        assert len(restarted.entries) == 20
