# CipherGuard - Main Package
#
# CipherGuard: local, client-side encrypted credential vault
# Version: 0.3.0
#
# A master password derives an AES-256 key that encrypts the whole
# credential collection into one record. Nothing leaves the machine.

__version__ = "0.3.0"
__author__ = "CipherGuard Team"
__description__ = "Local encrypted credential vault"

from .vault import (
    VaultEngine,
    VaultEntry,
    VaultPhase,
    VaultError,
    build_store,
)

__all__ = [
    "__version__",
    "VaultEngine",
    "VaultEntry",
    "VaultPhase",
    "VaultError",
    "build_store",
]
