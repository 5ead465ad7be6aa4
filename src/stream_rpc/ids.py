"""Request id generation."""

from __future__ import annotations

import secrets
from collections.abc import Container

# Largest integer a JSON peer can represent exactly (2**53 - 1)
MAX_SAFE_INTEGER = 9007199254740991


def create_random_id() -> int:
    """Return a random id in ``[0, MAX_SAFE_INTEGER)``."""
    return secrets.randbelow(MAX_SAFE_INTEGER)


def allocate_id(in_use: Container[int | str], max_attempts: int = 32) -> int:
    """Draw random ids until one is not in ``in_use``.

    Raises:
        RuntimeError: If every attempt collided
    """
    for _ in range(max_attempts):
        candidate = create_random_id()
        if candidate not in in_use:
            return candidate
    raise RuntimeError(f"Could not allocate a free request id after {max_attempts} attempts")
