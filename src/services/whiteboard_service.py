"""
Live whiteboard documents: the state provider consumed by the version engine.

The version engine only needs four things from here: load a whiteboard,
capture its current state, count active sessions and replace its state
during a rollback. The remaining operations let callers populate the
document (elements, canvas metadata, sessions).
"""
import logging
from uuid import UUID

from sqlalchemy import func, select, update

from db.unit_of_work import UnitOfWork
from models.base import utcnow
from models.whiteboard import Whiteboard, WhiteboardElement, WhiteboardSession
from services.delta_codec import CANVAS_KEY, ELEMENTS_KEY
from services.exceptions import VersionValidationError, WhiteboardNotFoundError

logger = logging.getLogger(__name__)

# Column widths of whiteboard_elements
MAX_ELEMENT_ID_LENGTH = 64
MAX_ELEMENT_TYPE_LENGTH = 50

# Element fields as they appear in a captured document state
ELEMENT_FIELDS = (
    "element_type",
    "element_data",
    "layer_index",
    "parent_id",
    "locked",
    "visible",
    "style_data",
    "metadata",
)


def element_to_dict(element: WhiteboardElement) -> dict:
    """Serialize a live element row into its document-state form."""
    return {
        "id": element.element_id,
        "element_type": element.element_type,
        "element_data": element.element_data or {},
        "layer_index": element.layer_index,
        "parent_id": element.parent_id,
        "locked": element.locked,
        "visible": element.visible,
        "style_data": element.style_data or {},
        "metadata": element.metadata_ or {},
    }


def _apply_element_fields(row: WhiteboardElement, element: dict) -> None:
    row.element_type = element["element_type"]
    row.element_data = element.get("element_data") or {}
    row.layer_index = element.get("layer_index", 0)
    row.parent_id = element.get("parent_id")
    row.locked = element.get("locked", False)
    row.visible = element.get("visible", True)
    row.style_data = element.get("style_data") or {}
    row.metadata_ = element.get("metadata") or {}


def validate_element(element: dict, element_id: object = None) -> str:
    """
    Return the element id, rejecting elements the element table can't store.

    `element_id` overrides the element's own "id", for keyed document states.
    """
    if element_id is None:
        element_id = element.get("id")
    if not element_id:
        raise VersionValidationError("Element is missing an 'id'")
    element_id = str(element_id)
    if len(element_id) > MAX_ELEMENT_ID_LENGTH:
        raise VersionValidationError(
            f"Element id {element_id[:MAX_ELEMENT_ID_LENGTH]}... is longer than "
            f"{MAX_ELEMENT_ID_LENGTH} characters",
        )
    element_type = element.get("element_type")
    if not element_type:
        raise VersionValidationError(f"Element {element_id} is missing an 'element_type'")
    if not isinstance(element_type, str) or len(element_type) > MAX_ELEMENT_TYPE_LENGTH:
        raise VersionValidationError(
            f"Element {element_id} has an invalid 'element_type' "
            f"(a string of at most {MAX_ELEMENT_TYPE_LENGTH} characters)",
        )
    parent_id = element.get("parent_id")
    if parent_id is not None and len(str(parent_id)) > MAX_ELEMENT_ID_LENGTH:
        raise VersionValidationError(
            f"Element {element_id} has a 'parent_id' longer than "
            f"{MAX_ELEMENT_ID_LENGTH} characters",
        )
    return element_id


def validate_state(state: dict) -> None:
    """
    Reject a keyed document state that replace_state() could not write back.

    Raises:
        VersionValidationError: Naming the first offending element.
    """
    for element_id, element in state[ELEMENTS_KEY].items():
        validate_element(element, element_id)


class WhiteboardService:
    """Reads and mutates the live whiteboard document."""

    async def create_whiteboard(
        self,
        uow: UnitOfWork,
        user_id: UUID,
        name: str,
        description: str | None = None,
        canvas_data: dict | None = None,
    ) -> Whiteboard:
        """Create an empty whiteboard owned by `user_id`."""
        whiteboard = Whiteboard(
            name=name,
            description=description,
            canvas_data=canvas_data or {},
            version=1,
            created_by=user_id,
            last_modified_by=user_id,
        )
        await uow.write(whiteboard)
        return whiteboard

    async def get_whiteboard(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        for_update: bool = False,
    ) -> Whiteboard:
        """
        Load a live whiteboard.

        Args:
            uow: Unit of work.
            whiteboard_id: Whiteboard to load.
            for_update: Lock the row for the rest of the transaction
                (SELECT ... FOR UPDATE; SQLite ignores the lock).

        Raises:
            WhiteboardNotFoundError: If missing or soft-deleted.
        """
        stmt = select(Whiteboard).where(
            Whiteboard.id == whiteboard_id,
            Whiteboard.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await uow.read(stmt)
        whiteboard = result.scalar_one_or_none()
        if whiteboard is None:
            raise WhiteboardNotFoundError(whiteboard_id)
        return whiteboard

    async def get_live_elements(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
    ) -> list[WhiteboardElement]:
        """Live (not soft-deleted) element rows, ordered by element id."""
        result = await uow.read(
            select(WhiteboardElement)
            .where(
                WhiteboardElement.whiteboard_id == whiteboard_id,
                WhiteboardElement.deleted_at.is_(None),
            )
            .order_by(WhiteboardElement.element_id),
        )
        return list(result.scalars().all())

    async def get_current_state(self, uow: UnitOfWork, whiteboard_id: UUID) -> dict:
        """
        Capture the whiteboard's current document state in keyed form.

        Raises:
            WhiteboardNotFoundError: If missing or soft-deleted.
        """
        whiteboard = await self.get_whiteboard(uow, whiteboard_id)
        elements = await self.get_live_elements(uow, whiteboard_id)
        return {
            CANVAS_KEY: dict(whiteboard.canvas_data or {}),
            ELEMENTS_KEY: {e.element_id: element_to_dict(e) for e in elements},
        }

    async def count_active_sessions(self, uow: UnitOfWork, whiteboard_id: UUID) -> int:
        """Number of active collaborative sessions on a whiteboard."""
        result = await uow.read(
            select(func.count())
            .select_from(WhiteboardSession)
            .where(
                WhiteboardSession.whiteboard_id == whiteboard_id,
                WhiteboardSession.is_active.is_(True),
            ),
        )
        return result.scalar_one()

    async def replace_state(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        state: dict,
        user_id: UUID,
        replace_canvas: bool = True,
    ) -> None:
        """
        Replace the whiteboard's element set (and optionally canvas) with `state`.

        Live element rows are soft-deleted and the target set re-inserted.
        The whiteboard's revision counter is bumped. Callers run this inside
        an atomic block so the replacement is all-or-nothing.
        """
        now = utcnow()
        live = await self.get_live_elements(uow, whiteboard.id)
        previous = {e.element_id: e.version for e in live}

        await uow.write(
            update(WhiteboardElement)
            .where(
                WhiteboardElement.whiteboard_id == whiteboard.id,
                WhiteboardElement.deleted_at.is_(None),
            )
            .values(deleted_at=now, last_modified_by=user_id),
        )

        rows = []
        for element_id, element in sorted((state.get(ELEMENTS_KEY) or {}).items()):
            row = WhiteboardElement(
                element_id=element_id,
                whiteboard_id=whiteboard.id,
                version=previous.get(element_id, 0) + 1,
                created_by=user_id,
                last_modified_by=user_id,
            )
            _apply_element_fields(row, element)
            rows.append(row)

        if replace_canvas:
            whiteboard.canvas_data = dict(state.get(CANVAS_KEY) or {})
        whiteboard.version += 1
        whiteboard.last_modified_by = user_id
        await uow.write(whiteboard, *rows)

        logger.info(
            "Replaced state of whiteboard %s: %d elements, canvas %s, revision %d",
            whiteboard.id,
            len(rows),
            "replaced" if replace_canvas else "kept",
            whiteboard.version,
        )

    async def upsert_element(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        element: dict,
    ) -> WhiteboardElement:
        """
        Create or update a live element from its document-state form.

        Raises:
            WhiteboardNotFoundError: If the whiteboard is missing.
            VersionValidationError: If the element lacks an id or type.
        """
        element_id = validate_element(element)
        await self.get_whiteboard(uow, whiteboard_id)

        result = await uow.read(
            select(WhiteboardElement).where(
                WhiteboardElement.whiteboard_id == whiteboard_id,
                WhiteboardElement.element_id == element_id,
                WhiteboardElement.deleted_at.is_(None),
            ),
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = WhiteboardElement(
                element_id=element_id,
                whiteboard_id=whiteboard_id,
                version=1,
                created_by=user_id,
            )
        else:
            row.version += 1
        _apply_element_fields(row, element)
        row.last_modified_by = user_id
        await uow.write(row)
        return row

    async def delete_element(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        element_id: str,
    ) -> bool:
        """Soft-delete a live element. Returns False if it doesn't exist."""
        result = await uow.read(
            select(WhiteboardElement).where(
                WhiteboardElement.whiteboard_id == whiteboard_id,
                WhiteboardElement.element_id == element_id,
                WhiteboardElement.deleted_at.is_(None),
            ),
        )
        row = result.scalar_one_or_none()
        if row is None:
            return False
        row.deleted_at = utcnow()
        row.last_modified_by = user_id
        await uow.write(row)
        return True

    async def update_canvas(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        canvas_data: dict,
    ) -> Whiteboard:
        """Replace the whiteboard's canvas-level metadata."""
        whiteboard = await self.get_whiteboard(uow, whiteboard_id)
        whiteboard.canvas_data = dict(canvas_data)
        whiteboard.last_modified_by = user_id
        await uow.write(whiteboard)
        return whiteboard

    async def start_session(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
    ) -> WhiteboardSession:
        """Open a collaborative session for a user."""
        await self.get_whiteboard(uow, whiteboard_id)
        session = WhiteboardSession(whiteboard_id=whiteboard_id, user_id=user_id, is_active=True)
        await uow.write(session)
        return session

    async def end_session(self, uow: UnitOfWork, session_id: UUID) -> bool:
        """Close a session. Returns False if it doesn't exist or is already closed."""
        result = await uow.read(
            select(WhiteboardSession).where(
                WhiteboardSession.id == session_id,
                WhiteboardSession.is_active.is_(True),
            ),
        )
        session = result.scalar_one_or_none()
        if session is None:
            return False
        session.is_active = False
        session.ended_at = utcnow()
        await uow.write(session)
        return True


# Singleton instance for use throughout the application
whiteboard_service = WhiteboardService()
