# Vault - Password Utilities
#
# Pure helpers consumed by the engine and the CLI:
#   - strength scoring (gates vault creation)
#   - the "weak password" rule used by vault statistics
#   - random password generation
#
# None of this is cryptographic; it is policy.

import re
import secrets
import string
from dataclasses import dataclass
from typing import Tuple

MIN_MASTER_PASSWORD_LENGTH = 14
MIN_MASTER_PASSWORD_SCORE = 4
MAX_SCORE = 6

WEAK_PASSWORD_MIN_LENGTH = 14

GENERATOR_MIN_LENGTH = 12
GENERATOR_MAX_LENGTH = 64
GENERATOR_SYMBOLS = "!@#$%^&*()-_=+[]{};:,.?/~"

_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[^a-zA-Z0-9]")
_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")

_LABELS = {
    0: "Very weak",
    1: "Very weak",
    2: "Weak",
    3: "Fair",
    4: "Strong",
    5: "Excellent",
    6: "Excellent",
}


@dataclass(frozen=True)
class PasswordStrength:
    """Heuristic strength of a password."""

    score: int
    label: str
    percentage: int


def calculate_strength(password: str) -> PasswordStrength:
    """
    Score a password from 0 to 6.

    One point each for: length >= 8, length >= 14, length >= 20, mixed
    case, a digit, a character outside letters/digits.
    """
    score = 0
    length = len(password)
    for threshold in (8, 14, 20):
        if length >= threshold:
            score += 1
    if _LOWER.search(password) and _UPPER.search(password):
        score += 1
    if _DIGIT.search(password):
        score += 1
    if _SYMBOL.search(password):
        score += 1

    return PasswordStrength(
        score=score,
        label=_LABELS[score],
        percentage=round(score * 100 / MAX_SCORE),
    )


def verify_master_password(password: str) -> Tuple[bool, str]:
    """
    Verify master password meets the vault creation policy.

    Requirements:
    - At least 14 characters
    - Strength score of at least 4

    Returns:
        (is_valid, error_message)
    """
    if len(password) < MIN_MASTER_PASSWORD_LENGTH:
        return False, f"Master password must be at least {MIN_MASTER_PASSWORD_LENGTH} characters long"

    if calculate_strength(password).score < MIN_MASTER_PASSWORD_SCORE:
        return False, "Choose a stronger master password (mix of cases, digits and symbols)"

    return True, ""


def is_weak_password(password: str) -> bool:
    """Under 14 characters, or no digit, or no character outside letters/digits."""
    return (
        len(password) < WEAK_PASSWORD_MIN_LENGTH
        or not _DIGIT.search(password)
        or not _SYMBOL.search(password)
    )


def generate_password(
    length: int = 20,
    lower: bool = True,
    upper: bool = True,
    digits: bool = True,
    symbols: bool = True,
) -> str:
    """
    Generate a random password from the enabled character classes.

    Every enabled class contributes at least one character.

    Raises:
        ValueError: If no class is enabled or length is out of range
    """
    if not GENERATOR_MIN_LENGTH <= length <= GENERATOR_MAX_LENGTH:
        raise ValueError(
            f"length must be between {GENERATOR_MIN_LENGTH} and {GENERATOR_MAX_LENGTH}"
        )

    pools = []
    if lower:
        pools.append(string.ascii_lowercase)
    if upper:
        pools.append(string.ascii_uppercase)
    if digits:
        pools.append(string.digits)
    if symbols:
        pools.append(GENERATOR_SYMBOLS)
    if not pools:
        raise ValueError("At least one character class must be enabled")

    alphabet = "".join(pools)
    chars = [secrets.choice(pool) for pool in pools]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
