# Core Module - Runtime Configuration
#
# Settings come from environment variables, optionally seeded from a .env
# file found from the working directory upward. The master password is not
# part of VaultSettings; the CLI reads it separately.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

DEFAULT_DATA_DIR = Path.home() / ".cipherguard"
DEFAULT_ITERATIONS = 310_000
STORE_BACKENDS = ("file", "sqlite")

ENV_DATA_DIR = "CIPHERGUARD_DATA_DIR"
ENV_STORE = "CIPHERGUARD_STORE"
ENV_ITERATIONS = "CIPHERGUARD_ITERATIONS"
ENV_LOG_LEVEL = "CIPHERGUARD_LOG_LEVEL"
ENV_LOG_JSON = "CIPHERGUARD_LOG_JSON"


@dataclass(frozen=True)
class VaultSettings:
    """Resolved runtime settings for a vault instance."""

    data_dir: Path = DEFAULT_DATA_DIR
    store_backend: str = "file"
    iterations: int = DEFAULT_ITERATIONS
    log_level: str = "WARNING"
    log_json: bool = False

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "vault.db"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_positive_int(name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if parsed < 1:
        raise ValueError(f"{name} must be >= 1, got {parsed}")
    return parsed


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> VaultSettings:
    """
    Build VaultSettings from the environment.

    Args:
        environ: Mapping to read instead of os.environ (tests pass a dict;
                 no .env file is loaded in that case)
        dotenv_path: Explicit .env file to load before reading os.environ

    Raises:
        ValueError: On an unknown store backend or a malformed integer
    """
    if environ is None:
        load_dotenv(dotenv_path=dotenv_path or find_dotenv(usecwd=True), override=False)
        environ = os.environ

    store_backend = environ.get(ENV_STORE, "file").strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ValueError(
            f"{ENV_STORE} must be one of {', '.join(STORE_BACKENDS)}, got {store_backend!r}"
        )

    iterations = DEFAULT_ITERATIONS
    if environ.get(ENV_ITERATIONS):
        iterations = _parse_positive_int(ENV_ITERATIONS, environ[ENV_ITERATIONS])

    data_dir = Path(environ[ENV_DATA_DIR]).expanduser() if environ.get(ENV_DATA_DIR) else DEFAULT_DATA_DIR

    return VaultSettings(
        data_dir=data_dir,
        store_backend=store_backend,
        iterations=iterations,
        log_level=environ.get(ENV_LOG_LEVEL, "WARNING").strip().upper() or "WARNING",
        log_json=_parse_bool(environ.get(ENV_LOG_JSON, "")),
    )
