# Vault - Encryption Service
#
# Master password → Encryption key (PBKDF2)
# Vault payload encryption (AES-256-GCM)
# Secure key derivation with salt

import os
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import AuthenticationFailure

KeyBytes = Union[bytes, bytearray]

DEFAULT_ITERATIONS = 310_000


class EncryptionService:
    """
    Handles key derivation and authenticated encryption for the vault.

    Flow:
    1. User enters master password
    2. PBKDF2 derives 256-bit key from password + salt + iteration count
    3. AES-256-GCM encrypts/decrypts the serialized entry collection
    4. Every encryption gets a fresh random nonce

    Decryption failures of any kind (wrong key, flipped bit, truncated
    ciphertext, bad nonce) surface as a single AuthenticationFailure.
    """

    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 32  # 256-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16

    @staticmethod
    def derive_key(
        master_password: str,
        salt: bytes,
        iterations: int = DEFAULT_ITERATIONS,
    ) -> bytes:
        """
        Derive encryption key from master password using PBKDF2-HMAC-SHA256.

        Deterministic: same password, salt and iterations always give the
        same key. Password content is never validated here; strength policy
        belongs to the caller.

        Args:
            master_password: User's master password (any string, even empty)
            salt: Random salt (stored in the clear with the vault record)
            iterations: PBKDF2 iteration count (must be >= 1)

        Returns:
            256-bit encryption key

        Raises:
            ValueError: If iterations < 1
        """
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise ValueError(f"iterations must be a positive integer, got {iterations!r}")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=bytes(salt),
            iterations=iterations,
        )

        return kdf.derive(master_password.encode("utf-8"))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def encrypt(plaintext: bytes, key: KeyBytes) -> Tuple[bytes, bytes]:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Bytes to encrypt (may be empty)
            key: 256-bit encryption key (from derive_key)

        Returns:
            Tuple of (ciphertext, nonce); the ciphertext carries the GCM tag
        """
        # Generate random nonce (must be unique per encryption)
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)

        aesgcm = AESGCM(key)
        ciphertext = aesgcm.encrypt(nonce, plaintext, None)

        return ciphertext, nonce

    @staticmethod
    def decrypt(ciphertext: bytes, nonce: bytes, key: KeyBytes) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM.

        Args:
            ciphertext: Encrypted data with appended tag
            nonce: Nonce used during encryption
            key: 256-bit encryption key (same as encryption)

        Returns:
            The exact original plaintext bytes

        Raises:
            AuthenticationFailure: If the tag does not verify for any reason
        """
        if (
            len(nonce) != EncryptionService.NONCE_LENGTH
            or len(ciphertext) < EncryptionService.TAG_LENGTH
        ):
            raise AuthenticationFailure("Ciphertext failed authentication")

        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError):
            raise AuthenticationFailure("Ciphertext failed authentication") from None


def zeroize(buffer: bytearray) -> None:
    """Overwrite a mutable key buffer in place."""
    for i in range(len(buffer)):
        buffer[i] = 0
