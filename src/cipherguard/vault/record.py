# Vault - Record Codec
#
# The vault is persisted as one JSON document under a single storage key:
#
#   {"version": 1, "iterations": 310000, "salt": "<b64>",
#    "data": "<b64 ciphertext+tag>", "iv": "<b64 nonce>",
#    "lastUpdated": 1700000000000}
#
# salt/iterations are public and let a future unlock re-derive the key;
# data/iv are the AES-GCM output over the payload document below.
#
# Payload (plaintext, encrypted inside "data"):
#
#   {"entries": [VaultEntry.to_dict(), ...]}

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from .exceptions import DecodeError
from .models import VaultEntry, VaultMetadata

RECORD_VERSION = 1
SUPPORTED_VERSIONS = frozenset({RECORD_VERSION})
# PBKDF2 backends take the iteration count as a C int
MAX_ITERATIONS = 2**31 - 1

# Field names as written to disk, plus the accepted alternates
_CIPHERTEXT_FIELDS = ("data", "ciphertext")
_NONCE_FIELDS = ("iv", "nonce")


@dataclass(frozen=True)
class VaultRecord:
    """The full durable unit of a vault."""

    version: int
    iterations: int
    salt: bytes
    ciphertext: bytes
    nonce: bytes
    last_updated: int  # milliseconds since the Unix epoch

    @property
    def metadata(self) -> VaultMetadata:
        return VaultMetadata(salt=self.salt, iterations=self.iterations)

    def __repr__(self) -> str:
        return (
            f"VaultRecord(version={self.version}, iterations={self.iterations}, "
            f"ciphertext_len={len(self.ciphertext)}, last_updated={self.last_updated})"
        )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(name: str, value: Any) -> bytes:
    if not isinstance(value, str):
        raise DecodeError(f"Record field '{name}' must be a base64 string")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise DecodeError(f"Record field '{name}' is not valid base64") from None


def _require_int(obj: Dict[str, Any], name: str) -> int:
    value = obj.get(name)
    # bool is an int subclass; JSON true/false is never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"Record field '{name}' missing or not an integer")
    return value


def _pick(obj: Dict[str, Any], names: Iterable[str]) -> Any:
    for name in names:
        if name in obj:
            return obj[name]
    raise DecodeError(f"Record field '{next(iter(names))}' missing")


def encode_record(record: VaultRecord) -> bytes:
    """Serialize a VaultRecord to its on-disk bytes."""
    document = {
        "version": record.version,
        "iterations": record.iterations,
        "salt": _b64encode(record.salt),
        "data": _b64encode(record.ciphertext),
        "iv": _b64encode(record.nonce),
        "lastUpdated": record.last_updated,
    }
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


def decode_record(raw: bytes) -> VaultRecord:
    """
    Parse on-disk bytes into a VaultRecord.

    Raises:
        DecodeError: On malformed JSON, missing or mistyped fields, or an
                     unsupported version
    """
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise DecodeError("Vault record is not valid JSON") from None

    if not isinstance(obj, dict):
        raise DecodeError("Vault record must be a JSON object")

    version = _require_int(obj, "version")
    if version not in SUPPORTED_VERSIONS:
        raise DecodeError(f"Unsupported vault record version: {version}")

    iterations = _require_int(obj, "iterations")
    if iterations < 1:
        raise DecodeError("Record field 'iterations' must be positive")
    if iterations > MAX_ITERATIONS:
        raise DecodeError(f"Record field 'iterations' exceeds {MAX_ITERATIONS}")

    return VaultRecord(
        version=version,
        iterations=iterations,
        salt=_b64decode("salt", obj.get("salt")),
        ciphertext=_b64decode("data", _pick(obj, _CIPHERTEXT_FIELDS)),
        nonce=_b64decode("iv", _pick(obj, _NONCE_FIELDS)),
        last_updated=_require_int(obj, "lastUpdated"),
    )


def encode_payload(entries: Iterable[VaultEntry]) -> bytes:
    """Serialize the plaintext entry collection that gets encrypted."""
    return json.dumps({"entries": [entry.to_dict() for entry in entries]}).encode("utf-8")


def decode_payload(raw: bytes) -> List[VaultEntry]:
    """
    Parse a decrypted payload back into entries, preserving order.

    Raises:
        DecodeError: If the payload is not a valid entries document
    """
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise DecodeError("Vault payload is not valid JSON") from None

    if not isinstance(obj, dict):
        raise DecodeError("Vault payload must be a JSON object")

    entries = obj.get("entries", [])
    if not isinstance(entries, list):
        raise DecodeError("Vault payload 'entries' must be a list")

    return [VaultEntry.from_dict(item) for item in entries]
