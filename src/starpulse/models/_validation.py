"""Shared validation helpers for frozen dataclass models.

Private module. Used by ``__post_init__`` methods in sibling model modules
to enforce runtime types and PostgreSQL-safe strings before an instance
escapes its constructor.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any


_LOWER_HEX = re.compile(r"^[0-9a-f]*$")


def validate_instance(value: Any, expected: type, name: str) -> None:
    """Raise ``TypeError`` if *value* is not an instance of *expected*."""
    if not isinstance(value, expected):
        article = "an" if expected.__name__[0] in "AEIOUaeiou" else "a"
        raise TypeError(f"{name} must be {article} {expected.__name__}, got {type(value).__name__}")


def validate_int_range(value: Any, name: str, *, low: int = 0, high: int | None = None) -> None:
    """Raise unless *value* is an ``int`` (``bool`` excluded) within ``[low, high]``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < low or (high is not None and value > high):
        bound = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise ValueError(f"{name} must be {bound}, got {value}")


def validate_text(value: Any, name: str) -> None:
    """Raise if *value* is not a ``str`` storable as PostgreSQL TEXT.

    Rejects NUL characters and lone surrogates, neither of which survive
    UTF-8 encoding into the database.
    """
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"{name} is not valid unicode") from e


def normalize_tags(value: Any, name: str = "tags") -> tuple[tuple[str, ...], ...]:
    """Convert a sequence of string sequences into nested tuples.

    Raises:
        TypeError: If *value* or any row is not a list/tuple, or a value is
            not a string.
        ValueError: If a value contains null bytes.
    """
    if isinstance(value, str | bytes) or not isinstance(value, Sequence):
        raise TypeError(f"{name} must be a sequence of sequences, got {type(value).__name__}")
    rows: list[tuple[str, ...]] = []
    for i, row in enumerate(value):
        if isinstance(row, str | bytes) or not isinstance(row, Sequence):
            raise TypeError(f"{name}[{i}] must be a sequence, got {type(row).__name__}")
        for item in row:
            validate_text(item, f"{name}[{i}]")
        rows.append(tuple(row))
    return tuple(rows)


def is_lower_hex(value: Any, length: int) -> bool:
    """Return True if *value* is a lowercase hex string of *length* bytes."""
    return isinstance(value, str) and len(value) == length * 2 and bool(_LOWER_HEX.match(value))
