"""Conversions between boxes, loose pieces, and canonical piece counts.

All stock quantities are stored in pieces. Boxes only exist at the edges of
the system (manual entry, spreadsheet uploads, and report columns), so every
conversion goes through the two helpers below together with a product's pack
size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Optional


@dataclass(frozen=True)
class BoxSplit:
    """A piece count expressed as whole boxes plus leftover pieces."""

    boxes: int
    pieces: int

    def __iter__(self):
        yield self.boxes
        yield self.pieces


def coerce_number(value: Any, default: float = 0) -> float:
    """Interpret a loosely typed cell value as a finite number.

    Spreadsheet cells and CLI arguments arrive as numbers, numeric strings, or
    blanks. Anything that cannot be read as a finite number, including
    booleans, yields ``default``.

    Args:
        value (Any): Raw value to interpret.
        default (float): Fallback for missing or unusable input.

    Returns:
        float: The parsed number or ``default``.
    """

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Real):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return default
        try:
            number = float(text)
        except ValueError:
            return default
    if not math.isfinite(number):
        return default
    return number


def normalize_pack_size(value: Any) -> Optional[int]:
    """Return ``value`` floored to a positive integer, or ``None`` if invalid."""

    number = coerce_number(value, default=0)
    pack_size = math.floor(number)
    return pack_size if pack_size >= 1 else None


def _pack_size_or_one(pack_size: Any) -> int:
    return max(1, math.floor(coerce_number(pack_size, default=1)))


def to_pieces(boxes: Any, pieces: Any, pack_size: Any) -> int:
    """Convert a box count plus loose pieces into a canonical piece count.

    Missing boxes or pieces count as zero and a missing pack size as one. The
    result is never negative; fractional totals are floored to whole pieces.
    """

    ps = _pack_size_or_one(pack_size)
    total = coerce_number(boxes) * ps + coerce_number(pieces)
    return max(0, math.floor(total))


def split_pieces(total_pieces: Any, pack_size: Any) -> BoxSplit:
    """Split a piece count into whole boxes and the remaining loose pieces.

    ``to_pieces(*split_pieces(x, p), p) == x`` for every non-negative integer
    ``x`` and positive integer ``p``.
    """

    ps = _pack_size_or_one(pack_size)
    total = max(0, math.floor(coerce_number(total_pieces)))
    boxes, pieces = divmod(total, ps)
    return BoxSplit(boxes=boxes, pieces=pieces)


__all__ = [
    "BoxSplit",
    "coerce_number",
    "normalize_pack_size",
    "to_pieces",
    "split_pieces",
]
