"""Decides when a version stores a full snapshot and how snapshot payloads are encoded."""
import gzip
import json
from dataclasses import dataclass

from models.whiteboard_version import ChangeType
from services.delta_codec import canonical_json

# Every Nth version is a snapshot, bounding delta chain length
SNAPSHOT_INTERVAL = 10

# Change types that always produce a self-contained version
SNAPSHOT_CHANGE_TYPES = frozenset({ChangeType.MAJOR.value, ChangeType.TEMPLATE.value})

# Canonical payloads larger than this (in bytes) are stored gzip-compressed
COMPRESSION_THRESHOLD_BYTES = 50_000

GZIP_COMPRESSION = "gzip"


@dataclass
class SnapshotPayload:
    """
    Storage form of a snapshot.

    Exactly one of snapshot_data or compressed_data is set.
    """

    snapshot_data: dict | None
    compressed_data: bytes | None
    compression_type: str | None
    data_size: int
    compressed_size: int | None


def should_snapshot(
    change_type: str,
    version_number: int,
    force_snapshot: bool = False,
    has_parent: bool = True,
    interval: int = SNAPSHOT_INTERVAL,
) -> bool:
    """
    Decide whether a new version is stored as a snapshot.

    Rules, first match wins: forced; no parent (the first version of a
    document must be self-contained); major or template change; version
    number on the snapshot interval. Otherwise the version is a delta.
    """
    if force_snapshot:
        return True
    if not has_parent:
        return True
    if change_type in SNAPSHOT_CHANGE_TYPES:
        return True
    return version_number % interval == 0


def encode_snapshot(
    state: dict,
    compression_threshold: int = COMPRESSION_THRESHOLD_BYTES,
) -> SnapshotPayload:
    """Serialize a state, compressing it when the canonical form exceeds the threshold."""
    raw = canonical_json(state).encode("utf-8")
    if len(raw) > compression_threshold:
        # mtime=0 keeps the compressed bytes identical for identical states
        compressed = gzip.compress(raw, mtime=0)
        return SnapshotPayload(
            snapshot_data=None,
            compressed_data=compressed,
            compression_type=GZIP_COMPRESSION,
            data_size=len(raw),
            compressed_size=len(compressed),
        )
    return SnapshotPayload(
        snapshot_data=json.loads(raw),
        compressed_data=None,
        compression_type=None,
        data_size=len(raw),
        compressed_size=None,
    )


def decode_snapshot(
    snapshot_data: dict | None,
    compressed_data: bytes | None,
    compression_type: str | None,
) -> dict | None:
    """
    Return the state held by a snapshot payload, or None if it holds nothing.

    Raises:
        ValueError: If the payload uses an unknown compression type.
    """
    if compressed_data is not None:
        if compression_type not in (None, GZIP_COMPRESSION):
            raise ValueError(f"Unsupported compression type: {compression_type}")
        return json.loads(gzip.decompress(compressed_data).decode("utf-8"))
    return snapshot_data
