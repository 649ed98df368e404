"""Deterministic owner → shard routing."""

from shardfeed.errors import ShardIndexError


def shard_index(owner_id: int, shard_count: int) -> int:
    """Return the shard that holds every item of ``owner_id``.

    Items are routed by their owning aggregate (the product), never by the
    variant itself, so all variants of a product share one shard. The
    result is only meaningful for the ``shard_count`` it was computed
    under; changing the count requires a full rebuild.

    Raises:
        ValueError: If ``shard_count`` is not positive.
    """
    if shard_count <= 0:
        raise ValueError(f"shard_count must be positive, got {shard_count}")
    return owner_id % shard_count


def validate_shard_index(index: int, shard_count: int) -> int:
    """Raise :class:`ShardIndexError` unless ``0 <= index < shard_count``."""
    if not 0 <= index < shard_count:
        raise ShardIndexError(index, shard_count)
    return index
