"""
Structural diff and replay of whiteboard document states.

A document state is a plain dict in keyed form:

    {"canvas_data": {...}, "elements": {element_id: element_dict, ...}}

Keying elements by id makes state equality independent of element order.
Every delta operation carries an RFC 6902 JSON Patch rooted at the whole
state (canvas patches under /canvas_data, element patches under
/elements/<id>), plus the old/new values of the affected element so replay
can fall back to whole-value replacement when a patch no longer applies.
"""
import copy
import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import jsonpatch
from jsonpointer import JsonPointerException

from models.whiteboard_version import OperationType
from services.exceptions import PatchApplicationFailedError

logger = logging.getLogger(__name__)

CANVAS_KEY = "canvas_data"
ELEMENTS_KEY = "elements"

# Element fields inspected when classifying a modification
ELEMENT_DATA_FIELD = "element_data"
STYLE_FIELD = "style_data"
POSITION_FIELD = "position"

# A delta is considered efficient when it is under 10% of the base state size
STORAGE_OVERHEAD_TARGET = 0.1

ELEMENT_OPERATION_TYPES = frozenset({
    OperationType.CREATE.value,
    OperationType.UPDATE.value,
    OperationType.MOVE.value,
    OperationType.STYLE.value,
})


class ApplyOutcome(StrEnum):
    """How a single delta operation was applied."""

    APPLIED = "applied"  # Structural patch applied cleanly
    APPLIED_WITH_FALLBACK = "applied_with_fallback"  # Patch failed, whole-value replacement used
    FAILED = "failed"  # Neither path could apply the operation


class DeltaRecord(Protocol):
    """Attributes read from a persisted delta row."""

    operation_type: str
    element_id: str | None
    operation_order: int
    old_data: dict | None
    new_data: dict | None
    patch: list | None
    operation_metadata: dict | None


@dataclass
class DeltaOperation:
    """One atomic change between two document states."""

    operation_type: str
    element_id: str | None  # None only for canvas operations
    operation_order: int
    old_data: dict | None
    new_data: dict | None
    patch: list[dict]
    operation_metadata: dict = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: DeltaRecord) -> "DeltaOperation":
        """Build an operation from a persisted delta row."""
        return cls(
            operation_type=record.operation_type,
            element_id=record.element_id,
            operation_order=record.operation_order,
            old_data=record.old_data,
            new_data=record.new_data,
            patch=list(record.patch or []),
            operation_metadata=dict(record.operation_metadata or {}),
        )


@dataclass
class DeltaApplication:
    """Result of applying one operation."""

    state: dict
    outcome: ApplyOutcome
    error: str | None = None  # Patch (and fallback) error text when not cleanly applied


@dataclass
class ChainResult:
    """Result of replaying an ordered list of operations."""

    state: dict
    warnings: list[str] = field(default_factory=list)  # One entry per fallback application


@dataclass
class ChangeCounts:
    """Element-level tallies of a delta."""

    added: int = 0
    modified: int = 0
    deleted: int = 0
    canvas_changed: bool = False

    @property
    def total(self) -> int:
        """Number of operations, counting a canvas change as one."""
        return self.added + self.modified + self.deleted + int(self.canvas_changed)


@dataclass
class StorageEfficiency:
    """Size comparison of storing a change as a delta versus a full snapshot."""

    base_state_size: int
    delta_size: int
    snapshot_size: int
    compression_ratio: float  # delta_size / snapshot_size
    storage_overhead: float  # delta_size / base_state_size
    meets_overhead_target: bool


def canonical_json(value: Any) -> str:
    """Serialize deterministically: sorted keys, compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(value: Any) -> str:
    """SHA-256 hex digest of the canonical serialization."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def empty_state() -> dict:
    """State of a document with no canvas metadata and no elements."""
    return {CANVAS_KEY: {}, ELEMENTS_KEY: {}}


def normalize_state(state: dict | None) -> dict:
    """
    Return a deep copy of `state` in keyed form.

    Accepts elements either keyed by id or as a list of dicts carrying an
    "id" field. Missing canvas data or elements become empty.

    Raises:
        ValueError: If the state, its canvas data or any element is not an object.
    """
    if not state:
        return empty_state()
    if not isinstance(state, dict):
        raise ValueError("Document state must be an object")
    canvas = state.get(CANVAS_KEY) or {}
    if not isinstance(canvas, dict):
        raise ValueError(f"'{CANVAS_KEY}' must be an object")
    elements = state.get(ELEMENTS_KEY) or {}
    if isinstance(elements, list):
        keyed: dict[str, dict] = {}
        for element in elements:
            if not isinstance(element, dict):
                raise ValueError("Element in list form must be an object")
            if "id" not in element:
                raise ValueError("Element in list form is missing an 'id' field")
            keyed[str(element["id"])] = element
        elements = keyed
    elif not isinstance(elements, dict):
        raise ValueError(f"'{ELEMENTS_KEY}' must be an object or a list")
    for element_id, element in elements.items():
        if not isinstance(element, dict):
            raise ValueError(f"Element {element_id} must be an object")
    return copy.deepcopy({
        CANVAS_KEY: canvas,
        ELEMENTS_KEY: {str(k): v for k, v in elements.items()},
    })


def _pointer_token(element_id: str) -> str:
    """Escape an element id for use as a JSON Pointer token (RFC 6901)."""
    return element_id.replace("~", "~0").replace("/", "~1")


def element_path(element_id: str) -> str:
    """JSON Pointer of an element inside a document state."""
    return f"/{ELEMENTS_KEY}/{_pointer_token(element_id)}"


def _rooted_patch(old: Any, new: Any, prefix: str) -> list[dict]:
    """Compute a patch between two sub-values and re-root it under `prefix`."""
    rooted = []
    for op in jsonpatch.make_patch(old, new).patch:
        op = copy.deepcopy(op)
        op["path"] = prefix + op["path"]
        if "from" in op:
            op["from"] = prefix + op["from"]
        rooted.append(op)
    return rooted


def _changed_keys(old: dict, new: dict) -> set[str]:
    return {
        key for key in old.keys() | new.keys()
        if canonical_json(old.get(key)) != canonical_json(new.get(key))
    }


def classify_element_change(old_element: dict, new_element: dict) -> OperationType:
    """
    Classify a modification of an element.

    Only the position inside element_data changed -> MOVE.
    Only style_data changed -> STYLE.
    Anything else -> UPDATE.
    """
    changed = _changed_keys(old_element, new_element)
    if changed == {STYLE_FIELD}:
        return OperationType.STYLE
    if changed == {ELEMENT_DATA_FIELD}:
        old_data = old_element.get(ELEMENT_DATA_FIELD) or {}
        new_data = new_element.get(ELEMENT_DATA_FIELD) or {}
        if _changed_keys(old_data, new_data) == {POSITION_FIELD}:
            return OperationType.MOVE
    return OperationType.UPDATE


def create_delta(old_state: dict, new_state: dict) -> list[DeltaOperation]:
    """
    Compute the ordered operations that turn `old_state` into `new_state`.

    Order: canvas change first, then deletions, creations and
    modifications, each group in sorted element-id order. The result only
    depends on the two states' contents, never on dict iteration order.
    """
    old_canvas = old_state.get(CANVAS_KEY) or {}
    new_canvas = new_state.get(CANVAS_KEY) or {}
    old_elements = old_state.get(ELEMENTS_KEY) or {}
    new_elements = new_state.get(ELEMENTS_KEY) or {}

    operations: list[DeltaOperation] = []

    if canonical_json(old_canvas) != canonical_json(new_canvas):
        operations.append(DeltaOperation(
            operation_type=OperationType.CANVAS.value,
            element_id=None,
            operation_order=len(operations),
            old_data=copy.deepcopy(old_canvas),
            new_data=copy.deepcopy(new_canvas),
            patch=_rooted_patch(old_canvas, new_canvas, f"/{CANVAS_KEY}"),
            operation_metadata={"change_type": "canvas_update"},
        ))

    old_ids = set(old_elements)
    new_ids = set(new_elements)

    for element_id in sorted(old_ids - new_ids):
        old_element = old_elements[element_id]
        operations.append(DeltaOperation(
            operation_type=OperationType.DELETE.value,
            element_id=element_id,
            operation_order=len(operations),
            old_data=copy.deepcopy(old_element),
            new_data=None,
            patch=[{"op": "remove", "path": element_path(element_id)}],
            operation_metadata={
                "change_type": "element_deleted",
                "element_type": old_element.get("element_type"),
            },
        ))

    for element_id in sorted(new_ids - old_ids):
        new_element = new_elements[element_id]
        operations.append(DeltaOperation(
            operation_type=OperationType.CREATE.value,
            element_id=element_id,
            operation_order=len(operations),
            old_data=None,
            new_data=copy.deepcopy(new_element),
            patch=[{
                "op": "add",
                "path": element_path(element_id),
                "value": copy.deepcopy(new_element),
            }],
            operation_metadata={
                "change_type": "element_created",
                "element_type": new_element.get("element_type"),
            },
        ))

    for element_id in sorted(old_ids & new_ids):
        old_element = old_elements[element_id]
        new_element = new_elements[element_id]
        if canonical_json(old_element) == canonical_json(new_element):
            continue
        change = classify_element_change(old_element, new_element)
        operations.append(DeltaOperation(
            operation_type=change.value,
            element_id=element_id,
            operation_order=len(operations),
            old_data=copy.deepcopy(old_element),
            new_data=copy.deepcopy(new_element),
            patch=_rooted_patch(old_element, new_element, element_path(element_id)),
            operation_metadata={
                "change_type": f"element_{change.value}",
                "element_type": new_element.get("element_type"),
            },
        ))

    return operations


def _apply_by_replacement(state: dict, operation: DeltaOperation) -> dict:
    """
    Apply an operation by whole-value replacement.

    Raises:
        ValueError: If the operation lacks the data replacement needs.
    """
    result = copy.deepcopy(state)
    result.setdefault(CANVAS_KEY, {})
    elements = result.setdefault(ELEMENTS_KEY, {})
    op_type = operation.operation_type

    if op_type == OperationType.CANVAS:
        if operation.new_data is None:
            raise ValueError("canvas operation has no new_data")
        result[CANVAS_KEY] = copy.deepcopy(operation.new_data)
    elif op_type == OperationType.DELETE:
        if operation.element_id is None:
            raise ValueError("delete operation has no element_id")
        elements.pop(operation.element_id, None)
    elif op_type in ELEMENT_OPERATION_TYPES:
        if operation.element_id is None:
            raise ValueError(f"{op_type} operation has no element_id")
        if operation.new_data is None:
            raise ValueError(f"{op_type} operation has no new_data")
        elements[operation.element_id] = copy.deepcopy(operation.new_data)
    else:
        raise ValueError(f"unknown operation type {op_type!r}")
    return result


def apply_delta(state: dict, operation: DeltaOperation) -> DeltaApplication:
    """
    Apply one operation to `state` without mutating it.

    The structural patch is preferred. If it fails, the operation is applied
    by whole-value replacement and the outcome says so; the fallback is
    logged at WARNING so systematic patch failures stay visible.
    """
    if operation.patch:
        try:
            patched = jsonpatch.apply_patch(state, operation.patch, in_place=False)
            return DeltaApplication(state=patched, outcome=ApplyOutcome.APPLIED)
        except (jsonpatch.JsonPatchException, JsonPointerException, KeyError, TypeError) as e:
            # jsonpointer messages embed the whole document; keep only the kind
            logger.debug("Patch for %s operation failed: %s", operation.operation_type, e)
            patch_error = f"patch failed: {type(e).__name__}"
    else:
        patch_error = "operation has no patch"

    try:
        replaced = _apply_by_replacement(state, operation)
    except ValueError as e:
        return DeltaApplication(
            state=state,
            outcome=ApplyOutcome.FAILED,
            error=f"{patch_error}; replacement failed: {e}",
        )

    logger.warning(
        "Delta %s operation on element %s applied by replacement (%s)",
        operation.operation_type,
        operation.element_id,
        patch_error,
    )
    return DeltaApplication(
        state=replaced,
        outcome=ApplyOutcome.APPLIED_WITH_FALLBACK,
        error=patch_error,
    )


def apply_delta_chain(base_state: dict, operations: list[DeltaOperation]) -> ChainResult:
    """
    Replay operations, sorted by operation_order, on a copy of `base_state`.

    Raises:
        PatchApplicationFailedError: If an operation cannot be applied at all.
    """
    state = copy.deepcopy(base_state)
    warnings: list[str] = []

    for operation in sorted(operations, key=lambda op: op.operation_order):
        application = apply_delta(state, operation)
        if application.outcome is ApplyOutcome.FAILED:
            raise PatchApplicationFailedError(
                operation.operation_type,
                operation.element_id,
                application.error or "unknown error",
            )
        if application.outcome is ApplyOutcome.APPLIED_WITH_FALLBACK:
            warnings.append(
                f"Replacement fallback for {operation.operation_type} operation "
                f"on element {operation.element_id}: {application.error}",
            )
        state = application.state

    return ChainResult(state=state, warnings=warnings)


def change_counts(operations: list[DeltaOperation]) -> ChangeCounts:
    """Tally element additions, modifications and deletions in a delta."""
    counts = ChangeCounts()
    for operation in operations:
        op_type = operation.operation_type
        if op_type == OperationType.CANVAS:
            counts.canvas_changed = True
        elif op_type == OperationType.CREATE:
            counts.added += 1
        elif op_type == OperationType.DELETE:
            counts.deleted += 1
        else:
            counts.modified += 1
    return counts


def calculate_storage_efficiency(old_state: dict, new_state: dict) -> StorageEfficiency:
    """Compare the stored size of a delta against a full snapshot of `new_state`."""
    operations = create_delta(old_state, new_state)

    base_state_size = len(canonical_json(old_state))
    delta_size = len(canonical_json([asdict(op) for op in operations]))
    snapshot_size = len(canonical_json(new_state))

    compression_ratio = delta_size / snapshot_size if snapshot_size else 0.0
    storage_overhead = delta_size / base_state_size if base_state_size else 0.0

    return StorageEfficiency(
        base_state_size=base_state_size,
        delta_size=delta_size,
        snapshot_size=snapshot_size,
        compression_ratio=compression_ratio,
        storage_overhead=storage_overhead,
        meets_overhead_target=storage_overhead < STORAGE_OVERHEAD_TARGET,
    )
