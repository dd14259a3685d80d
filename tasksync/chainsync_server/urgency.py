"""
Snapshot urgency policy.

Child-version lookups walk the chain one version at a time, so clients
are asked to compact their history into a snapshot periodically. The
server only advises; it never forces or performs compaction itself.

Invariants:
    - Pure function of the number of versions since the last snapshot
    - HIGH at twice the threshold, LOW at the threshold, nothing below
"""

from __future__ import annotations

from .types import SnapshotUrgency

# Number of versions before requesting a snapshot
DEFAULT_SNAPSHOT_VERSION_THRESHOLD = 100


def snapshot_urgency(
    versions_since_snapshot: int,
    threshold: int = DEFAULT_SNAPSHOT_VERSION_THRESHOLD,
) -> SnapshotUrgency | None:
    """Decide how urgently a client should upload a snapshot.

    Args:
        versions_since_snapshot: Versions stored after the snapshot's version
            (or all versions if the client has no snapshot)
        threshold: Version count at which a snapshot is first requested

    Returns:
        Urgency level, or None if no snapshot is needed yet

    Raises:
        ValueError: If threshold is not positive
    """
    if threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")

    if versions_since_snapshot >= threshold * 2:
        return SnapshotUrgency.HIGH
    if versions_since_snapshot >= threshold:
        return SnapshotUrgency.LOW
    return None
