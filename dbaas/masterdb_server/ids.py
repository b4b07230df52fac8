"""
Record identifier generation.

Identifiers are opaque random strings used as the external handle of a
record. Generation is a pure function; callers inject it (or a replacement)
wherever identifiers are minted.

Invariants:
    - Alphabet is 0-9A-Za-z
    - Default length is 16 characters
    - Uses the secrets module (not random)
"""

from __future__ import annotations

import secrets
import string
from typing import Callable

ID_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
DEFAULT_ID_LENGTH = 16

IdFactory = Callable[[], str]


def generate_id(size: int = DEFAULT_ID_LENGTH) -> str:
    """Generate a random record identifier.

    Args:
        size: Number of characters

    Returns:
        Random identifier over ID_ALPHABET
    """
    if size <= 0:
        raise ValueError(f"Identifier size must be positive, got {size}")
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(size))


def id_factory(size: int = DEFAULT_ID_LENGTH) -> IdFactory:
    """Return a zero-argument identifier factory of the given length."""
    if size == DEFAULT_ID_LENGTH:
        return generate_id
    return lambda: generate_id(size)
