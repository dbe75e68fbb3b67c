"""
Device serial number generation.

The EnergyGrid population is a dense, zero-based index space rendered as a
fixed prefix plus a zero-padded decimal index (``SN-000`` .. ``SN-499``).

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from grid_client.src.errors import InvalidArgumentError

SERIAL_PREFIX = "SN-"
SERIAL_WIDTH = 3


def generate_serial_numbers(
    count: int,
    *,
    prefix: str = SERIAL_PREFIX,
    width: int = SERIAL_WIDTH,
) -> list[str]:
    """Generate ``count`` serial numbers ordered by index.

    The pad width grows past *width* when the largest index needs more
    digits, so serials stay unique for any population size.

    Args:
        count: Number of serials to generate (>= 0).
        prefix: Fixed prefix of every serial.
        width: Minimum zero-pad width of the index.

    Returns:
        A new list ``[prefix + "000", prefix + "001", ...]``.

    Raises:
        InvalidArgumentError: If *count* is negative or not an integer.
    """
    if isinstance(count, bool) or not isinstance(count, int):
        raise InvalidArgumentError(f"count must be an integer (got {count!r})")
    if count < 0:
        raise InvalidArgumentError(f"count must be >= 0 (got {count})")

    pad = max(width, len(str(count - 1))) if count else width
    return [f"{prefix}{index:0{pad}d}" for index in range(count)]
