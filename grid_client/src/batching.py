"""
Split an ordered serial list into endpoint-sized batches.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Sequence

from grid_client.src.errors import InvalidArgumentError
from grid_client.src.models import Batch


def create_batches(items: Sequence[str], batch_size: int) -> list[Batch]:
    """Partition *items* into consecutive tuples of at most *batch_size*.

    Every batch except possibly the last holds exactly *batch_size* items,
    and concatenating the batches reproduces *items*. Tuples are copies, so
    later changes to *items* do not leak into the plan.

    Args:
        items: Ordered serial numbers.
        batch_size: Maximum serials per batch (> 0).

    Returns:
        ``ceil(len(items) / batch_size)`` batches; ``[]`` for empty input.

    Raises:
        InvalidArgumentError: If *batch_size* is not a positive integer.
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise InvalidArgumentError(
            f"batch_size must be an integer (got {batch_size!r})"
        )
    if batch_size <= 0:
        raise InvalidArgumentError(f"batch_size must be > 0 (got {batch_size})")

    return [
        tuple(items[start : start + batch_size])
        for start in range(0, len(items), batch_size)
    ]
