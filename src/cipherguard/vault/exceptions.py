"""
Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class InvalidState(VaultError):
    """Raised when an operation is attempted in a phase that forbids it"""
    pass


class VaultLocked(InvalidState):
    """Raised when an entry operation is attempted while the vault is locked"""

    def __init__(self, message: str = "Vault is locked. Unlock vault first."):
        super().__init__(message)


class AuthenticationFailure(VaultError):
    """Raised when ciphertext fails authentication (wrong key or tampering)"""
    pass


class DecodeError(VaultError):
    """Raised when a persisted record or payload is malformed"""
    pass


class NotFound(VaultError):
    """Raised when a mutation targets an unknown entry id"""
    pass


class PersistFailure(VaultError):
    """Raised when encrypting or writing the vault record fails"""
    pass


class InitializationFailure(VaultError):
    """Raised when vault creation fails"""
    pass


class WeakMasterPassword(InitializationFailure):
    """Raised when a master password does not meet the strength policy"""
    pass


class StoreError(VaultError):
    """Raised by a KeyValueStore when the underlying medium fails"""
    pass
