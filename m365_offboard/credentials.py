"""One-time credential generation."""
from __future__ import annotations

import secrets
import string


_SYMBOLS = "!@#$%^&*()-_=+[]{}:,.?"
_CLASSES = (string.ascii_uppercase, string.ascii_lowercase, string.digits, _SYMBOLS)


def generate_one_time_credential(length: int = 24) -> str:
    """Return a random password containing every character class."""

    if length < len(_CLASSES):
        raise ValueError(f"Credential length must be at least {len(_CLASSES)}.")

    alphabet = "".join(_CLASSES)
    chars = [secrets.choice(char_class) for char_class in _CLASSES]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


__all__ = ["generate_one_time_credential"]
