"""
Retention policy for stored snapshots.

Retention is by row count: the ``keep_count`` snapshots with the highest ids
survive, everything else is deleted. Capture dates play no part, so several
runs on the same day never evict a newer row.
"""

import logging
from typing import Any, Iterable, List

logger = logging.getLogger(__name__)

DEFAULT_KEEP_COUNT = 3


def parse_keep_count(value: Any, default: int = DEFAULT_KEEP_COUNT) -> int:
    """
    Interpret a configured keep count.

    Args:
        value: Raw configuration value (string, int or None)
        default: Value used when the input is unset, non-numeric or not positive

    Returns:
        A positive keep count
    """
    if value is None or isinstance(value, bool):
        return default

    try:
        keep_count = int(str(value).strip())
    except ValueError:
        logger.warning(f"Invalid keep count {value!r}, using {default}")
        return default

    if keep_count <= 0:
        logger.warning(f"Non-positive keep count {keep_count}, using {default}")
        return default

    return keep_count


def select_expired_ids(snapshot_ids: Iterable[int], keep_count: int) -> List[int]:
    """
    Decide which snapshots fall outside the retention window.

    Args:
        snapshot_ids: Ids currently in the store
        keep_count: Number of most recent snapshots to keep

    Returns:
        Ids to delete, ascending; empty when the store holds at most keep_count rows
    """
    ordered = sorted(set(snapshot_ids))
    if keep_count <= 0:
        raise ValueError("keep_count must be positive")
    if len(ordered) <= keep_count:
        return []
    return ordered[:len(ordered) - keep_count]


def enforce_retention(store, keep_count: int) -> List[int]:
    """
    Prune the store down to its keep_count newest snapshots.

    The id set is read from the store at call time, so rows written by other
    runs since this run's own insert are taken into account.

    Args:
        store: SnapshotStore
        keep_count: Number of snapshots to keep

    Returns:
        Ids that were deleted

    Raises:
        StorageError: If listing or deleting fails
    """
    expired = select_expired_ids(store.list_ids(), keep_count)
    if expired:
        store.delete(expired)
        logger.info(f"Retention removed {len(expired)} snapshot(s), keeping {keep_count}")
    else:
        logger.debug(f"Retention: nothing to remove (keep {keep_count})")
    return expired
