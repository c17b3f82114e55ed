"""Tests for version creation, the version graph and history queries."""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select

from core.request_context import RequestContext, RequestSource
from db.unit_of_work import UnitOfWork
from models.base import utcnow
from models.whiteboard import Whiteboard
from models.whiteboard_version import (
    ChangeType,
    OperationType,
    VersionType,
    WhiteboardVersion,
    WhiteboardVersionDelta,
)
from schemas.version import VersionCreate, VersionFilter
from services.exceptions import (
    VersionNotFoundError,
    VersionValidationError,
    WhiteboardNotFoundError,
)
from services.reconstructor import reconstructor
from services.version_service import (
    MAX_HISTORY_LIMIT,
    VersionService,
    validate_history_query,
    version_service,
)
from services.whiteboard_service import whiteboard_service


def _state(*elements: dict, canvas: dict | None = None) -> dict:
    return {"canvas_data": canvas or {}, "elements": {e["id"]: e for e in elements}}


async def _create(
    uow: UnitOfWork,
    whiteboard: Whiteboard,
    user_id: UUID,
    state: dict,
    **request_fields: object,
) -> WhiteboardVersion:
    request_fields.setdefault("change_type", ChangeType.MINOR)
    return await version_service.create_version(
        uow, whiteboard.id, user_id, VersionCreate(**request_fields), state=state,
    )


async def _operations(uow: UnitOfWork, version_id: UUID) -> list[WhiteboardVersionDelta]:
    result = await uow.read(
        select(WhiteboardVersionDelta)
        .where(WhiteboardVersionDelta.version_id == version_id)
        .order_by(WhiteboardVersionDelta.operation_order),
    )
    return list(result.scalars().all())


class TestCreateVersionScenarios:
    """The basic empty -> add -> delete/move lifecycle."""

    @pytest.mark.asyncio
    async def test__create_version__empty_document_is_root_snapshot(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
    ) -> None:
        """Version 1 of an empty document is a parentless snapshot."""
        version = await version_service.create_version(
            uow, whiteboard.id, user_id, VersionCreate(),
        )

        assert version.version_number == 1
        assert version.version_type == VersionType.SNAPSHOT
        assert version.element_count == 0
        assert version.parent_version_id is None
        assert version.snapshot_data == {"canvas_data": {}, "elements": {}}
        assert version.created_by == user_id
        assert version.creation_time_ms is not None

    @pytest.mark.asyncio
    async def test__create_version__added_elements_are_create_operations(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Adding A, B and C gives a delta with three ordered Create operations."""
        v1 = await _create(uow, whiteboard, user_id, _state())
        v2 = await _create(
            uow, whiteboard, user_id,
            _state(make_element("A"), make_element("B"), make_element("C")),
        )

        assert v2.version_number == 2
        assert v2.version_type == VersionType.DELTA
        assert v2.parent_version_id == v1.id
        assert v2.snapshot_data is None

        ops = await _operations(uow, v2.id)
        assert [op.operation_type for op in ops] == [OperationType.CREATE] * 3
        assert [op.element_id for op in ops] == ["A", "B", "C"]
        assert [op.operation_order for op in ops] == [0, 1, 2]

        assert v2.element_count == 3
        assert v2.elements_added == 3
        assert v2.elements_modified == 0
        assert v2.elements_deleted == 0
        assert v2.total_changes == 3
        assert v2.data_size > 0

    @pytest.mark.asyncio
    async def test__create_version__delete_and_move(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Deleting A and moving B gives one Delete and one Move."""
        await _create(uow, whiteboard, user_id, _state())
        await _create(
            uow, whiteboard, user_id,
            _state(make_element("A"), make_element("B"), make_element("C")),
        )
        v3 = await _create(
            uow, whiteboard, user_id,
            _state(make_element("B", x=40, y=20), make_element("C")),
        )

        ops = await _operations(uow, v3.id)
        assert [(op.operation_type, op.element_id) for op in ops] == [
            (OperationType.DELETE, "A"),
            (OperationType.MOVE, "B"),
        ]
        assert v3.elements_deleted == 1
        assert v3.elements_modified == 1
        assert v3.elements_added == 0
        assert v3.element_count == 2

    @pytest.mark.asyncio
    async def test__create_version__canvas_change_is_first_operation(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Canvas operations precede element operations."""
        await _create(uow, whiteboard, user_id, _state())
        v2 = await _create(
            uow, whiteboard, user_id, _state(make_element("A"), canvas={"background": "grid"}),
        )

        ops = await _operations(uow, v2.id)
        assert [op.operation_type for op in ops] == [OperationType.CANVAS, OperationType.CREATE]
        assert ops[0].element_id is None
        assert v2.total_changes == 2


class TestCreateVersionGraph:
    """Numbering, parents, snapshot cadence and branches."""

    @pytest.mark.asyncio
    async def test__create_version__numbers_strictly_increase(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Each version takes the next number and points at the previous head."""
        versions = [
            await _create(uow, whiteboard, user_id, _state(make_element("A", x=i)))
            for i in range(4)
        ]
        assert [v.version_number for v in versions] == [1, 2, 3, 4]
        for parent, child in zip(versions, versions[1:], strict=False):
            assert child.parent_version_id == parent.id

    @pytest.mark.asyncio
    async def test__create_version__every_tenth_version_is_snapshot(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Version 10 is a snapshot even for a minor change."""
        versions = [
            await _create(uow, whiteboard, user_id, _state(make_element("A", x=i)))
            for i in range(11)
        ]
        types = [v.version_type for v in versions]
        assert types[0] == VersionType.SNAPSHOT
        assert set(types[1:9]) == {VersionType.DELTA}
        assert types[9] == VersionType.SNAPSHOT
        assert types[10] == VersionType.DELTA
        # The snapshot still records the delta tallies against its parent
        assert versions[9].elements_modified == 1

        result = await reconstructor.reconstruct(uow, versions[10].id)
        assert result.chain_length == 2
        assert result.state == _state(make_element("A", x=10))

    @pytest.mark.asyncio
    async def test__create_version__major_and_forced_are_snapshots(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Major changes and force_snapshot produce snapshots."""
        await _create(uow, whiteboard, user_id, _state())
        major = await _create(
            uow, whiteboard, user_id, _state(make_element("A")), change_type=ChangeType.MAJOR,
        )
        forced = await _create(
            uow, whiteboard, user_id, _state(make_element("A", x=1)), force_snapshot=True,
        )
        assert major.version_type == VersionType.SNAPSHOT
        assert forced.version_type == VersionType.SNAPSHOT
        assert major.parent_version_id is not None

    @pytest.mark.asyncio
    async def test__create_version__large_snapshot_is_compressed(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Snapshots above the compression threshold are stored gzip-compressed."""
        service = VersionService()
        service.compression_threshold = 200
        state = _state(*(make_element(f"el-{i}") for i in range(10)))

        version = await service.create_version(
            uow, whiteboard.id, user_id, VersionCreate(), state=state,
        )

        assert version.snapshot_data is None
        assert version.compression_type == "gzip"
        assert version.compressed_size < version.data_size
        assert (await reconstructor.reconstruct(uow, version.id)).state == state

    @pytest.mark.asyncio
    async def test__create_version__new_branch_forks_from_latest(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """A new branch forks from the latest version; numbering stays global."""
        await _create(uow, whiteboard, user_id, _state())
        v2 = await _create(uow, whiteboard, user_id, _state(make_element("A")))
        v3 = await _create(
            uow, whiteboard, user_id, _state(make_element("A"), make_element("F")),
            branch_name="feature",
        )
        v4 = await _create(
            uow, whiteboard, user_id, _state(make_element("A"), make_element("M")),
        )

        assert v3.branch_name == "feature"
        assert v3.parent_version_id == v2.id
        assert v4.parent_version_id == v2.id
        assert v4.version_number == 4

        branches = await version_service.list_branches(uow, whiteboard.id)
        by_name = {b.branch_name: b for b in branches}
        assert list(by_name) == ["feature", "main"]
        assert by_name["feature"].head_version_id == v3.id
        assert by_name["feature"].base_version_id == v2.id
        assert by_name["main"].head_version_id == v4.id
        assert by_name["main"].base_version_id is None

        # Branch histories reconstruct independently
        assert set((await reconstructor.reconstruct(uow, v3.id)).state["elements"]) == {"A", "F"}
        assert set((await reconstructor.reconstruct(uow, v4.id)).state["elements"]) == {"A", "M"}

    @pytest.mark.asyncio
    async def test__create_version__retries_on_version_number_collision(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A duplicate version number is retried in a fresh savepoint."""
        service = VersionService()
        await service.create_version(uow, whiteboard.id, user_id, VersionCreate(), state=_state())

        original = service._next_version_number
        calls = []

        async def _stale_then_real(uow_: UnitOfWork, whiteboard_id: UUID) -> int:
            calls.append(whiteboard_id)
            if len(calls) == 1:
                return 1  # Already taken by the first version
            return await original(uow_, whiteboard_id)

        monkeypatch.setattr(service, "_next_version_number", _stale_then_real)

        with caplog.at_level(logging.WARNING, logger="services.version_service"):
            version = await service.create_version(
                uow, whiteboard.id, user_id, VersionCreate(), state=_state(make_element("A")),
            )

        assert len(calls) == 2
        assert version.version_number == 2
        assert "collision" in caplog.text
        assert (await reconstructor.reconstruct(uow, version.id)).state == _state(
            make_element("A"),
        )


class TestCreateVersionInputs:
    """State sources, metadata and validation."""

    @pytest.mark.asyncio
    async def test__create_version__captures_live_state(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Without an explicit state, the live document is captured."""
        element = make_element("live-1", x=3, y=4)
        await whiteboard_service.upsert_element(uow, whiteboard.id, user_id, element)
        await whiteboard_service.update_canvas(uow, whiteboard.id, user_id, {"zoom": 1.5})

        version = await version_service.create_version(
            uow, whiteboard.id, user_id, VersionCreate(),
        )

        assert version.element_count == 1
        assert version.snapshot_data == _state(element, canvas={"zoom": 1.5})

    @pytest.mark.asyncio
    async def test__create_version__request_state_in_list_form(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """A state supplied on the request may list its elements."""
        request = VersionCreate(state={"elements": [make_element("x"), make_element("y")]})
        version = await version_service.create_version(uow, whiteboard.id, user_id, request)
        assert set(version.snapshot_data["elements"]) == {"x", "y"}

    @pytest.mark.asyncio
    async def test__create_version__malformed_state_rejected(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
    ) -> None:
        """List-form elements without ids are a validation error."""
        request = VersionCreate(state={"elements": [{"element_type": "rectangle"}]})
        with pytest.raises(VersionValidationError, match="Invalid document state"):
            await version_service.create_version(uow, whiteboard.id, user_id, request)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "state",
        [
            {"elements": [1]},
            {"elements": {"a": "rectangle"}},
            {"canvas_data": "grid"},
        ],
    )
    async def test__create_version__non_object_state_values_rejected(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        state: dict,
    ) -> None:
        """Elements and canvas data that aren't objects are a validation error."""
        with pytest.raises(VersionValidationError, match="Invalid document state"):
            await version_service.create_version(
                uow, whiteboard.id, user_id, VersionCreate(state=state),
            )
        assert await version_service.get_latest_version(uow, whiteboard.id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("elements", "message"),
        [
            ({"a": {"x": 1}}, "Element a is missing an 'element_type'"),
            ({"a": {"element_type": 7}}, "Element a has an invalid 'element_type'"),
            ({"a": {"element_type": "t" * 51}}, "Element a has an invalid 'element_type'"),
            ({"i" * 65: {"element_type": "rectangle"}}, "longer than 64 characters"),
            (
                {"a": {"element_type": "rectangle", "parent_id": "p" * 65}},
                "'parent_id' longer than 64 characters",
            ),
        ],
    )
    async def test__create_version__unrestorable_elements_rejected(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        elements: dict,
        message: str,
    ) -> None:
        """States the live document couldn't hold are rejected before anything is recorded."""
        with pytest.raises(VersionValidationError, match=message):
            await version_service.create_version(
                uow, whiteboard.id, user_id, VersionCreate(state={"elements": elements}),
            )
        assert await version_service.get_latest_version(uow, whiteboard.id) is None

    @pytest.mark.asyncio
    async def test__create_version__keyed_elements_may_omit_id_field(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
    ) -> None:
        """In keyed form the key is the element id."""
        state = {"elements": {"a": {"element_type": "rectangle"}}}
        version = await version_service.create_version(
            uow, whiteboard.id, user_id, VersionCreate(state=state),
        )
        assert set(version.snapshot_data["elements"]) == {"a"}

    @pytest.mark.asyncio
    async def test__create_version__records_metadata(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
    ) -> None:
        """Request fields and the request source are stored on the version."""
        expires_at = utcnow() + timedelta(days=30)
        version = await version_service.create_version(
            uow,
            whiteboard.id,
            user_id,
            VersionCreate(
                change_type=ChangeType.TEMPLATE,
                commit_message="Initial layout",
                tags=[" layout ", "draft", "layout", ""],
                is_milestone=True,
                expires_at=expires_at,
            ),
            state=_state(),
            context=RequestContext(user_id=user_id, source=RequestSource.WEB),
        )

        assert version.change_type == ChangeType.TEMPLATE
        assert version.commit_message == "Initial layout"
        assert version.tags == ["layout", "draft"]
        assert version.is_milestone is True
        assert version.is_automatic is False
        assert version.expires_at == expires_at
        assert version.metadata_ == {"source": "web"}
        assert version.whiteboard_version == whiteboard.version

    @pytest.mark.asyncio
    async def test__create_version__unknown_whiteboard(
        self,
        uow: UnitOfWork,
        user_id: UUID,
    ) -> None:
        """Versioning a missing whiteboard raises WhiteboardNotFoundError."""
        with pytest.raises(WhiteboardNotFoundError):
            await version_service.create_version(uow, uuid4(), user_id, VersionCreate())


class TestAutoSave:
    """Auto-saves without significant change are not recorded."""

    @pytest.mark.asyncio
    async def test__auto_save__unchanged_elements_returns_head(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """An auto-save with identical elements returns the current head."""
        state = _state(make_element("A"))
        head = await _create(uow, whiteboard, user_id, state)

        result = await _create(uow, whiteboard, user_id, state, change_type=ChangeType.AUTO_SAVE)

        assert result.id == head.id
        latest = await version_service.get_latest_version(uow, whiteboard.id)
        assert latest.version_number == 1

    @pytest.mark.asyncio
    async def test__auto_save__canvas_only_change_returns_head(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Only elements are compared; a canvas-only auto-save is skipped."""
        head = await _create(uow, whiteboard, user_id, _state(make_element("A")))

        result = await _create(
            uow, whiteboard, user_id, _state(make_element("A"), canvas={"zoom": 2}),
            change_type=ChangeType.AUTO_SAVE,
        )

        assert result.id == head.id

    @pytest.mark.asyncio
    async def test__auto_save__changed_elements_creates_version(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """An auto-save with element changes is recorded and marked automatic."""
        await _create(uow, whiteboard, user_id, _state(make_element("A")))

        version = await _create(
            uow, whiteboard, user_id, _state(make_element("A", x=9)),
            change_type=ChangeType.AUTO_SAVE,
        )

        assert version.version_number == 2
        assert version.is_automatic is True

    @pytest.mark.asyncio
    async def test__auto_save__forced_snapshot_always_recorded(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """force_snapshot overrides the no-change skip."""
        state = _state(make_element("A"))
        await _create(uow, whiteboard, user_id, state)

        version = await _create(
            uow, whiteboard, user_id, state,
            change_type=ChangeType.AUTO_SAVE, force_snapshot=True,
        )

        assert version.version_number == 2
        assert version.version_type == VersionType.SNAPSHOT

    @pytest.mark.asyncio
    async def test__manual_save__unchanged_state_still_recorded(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Only auto-saves are skipped; explicit saves always create a version."""
        state = _state(make_element("A"))
        await _create(uow, whiteboard, user_id, state)
        version = await _create(uow, whiteboard, user_id, state, change_type=ChangeType.MANUAL)

        assert version.version_number == 2
        assert version.total_changes == 0
        assert await _operations(uow, version.id) == []


class TestVersionHistory:
    """Tests for get_version_history()."""

    @pytest.mark.asyncio
    async def test__get_version_history__newest_first_with_pagination(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """History is ordered by version number descending and paginated."""
        for i in range(5):
            await _create(uow, whiteboard, user_id, _state(make_element("A", x=i)))

        page = await version_service.get_version_history(uow, whiteboard.id, limit=2)
        assert [v.version_number for v in page.items] == [5, 4]
        assert page.total == 5
        assert page.has_more is True

        last = await version_service.get_version_history(uow, whiteboard.id, limit=2, offset=4)
        assert [v.version_number for v in last.items] == [1]
        assert last.has_more is False

    @pytest.mark.asyncio
    async def test__get_version_history__filters(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """Branch, change type, author and milestone filters narrow the history."""
        other_user = uuid4()
        await _create(uow, whiteboard, user_id, _state(), change_type=ChangeType.MAJOR)
        await _create(uow, whiteboard, user_id, _state(make_element("A")), is_milestone=True)
        await version_service.create_version(
            uow, whiteboard.id, other_user,
            VersionCreate(change_type=ChangeType.PATCH, branch_name="experiment"),
            state=_state(make_element("B")),
        )

        async def numbers(**filters: object) -> list[int]:
            page = await version_service.get_version_history(
                uow, whiteboard.id, VersionFilter(**filters),
            )
            return [v.version_number for v in page.items]

        assert await numbers(branch_name="experiment") == [3]
        assert await numbers(branch_name="main") == [2, 1]
        assert await numbers(change_types=[ChangeType.MAJOR, ChangeType.PATCH]) == [3, 1]
        assert await numbers(created_by=other_user) == [3]
        assert await numbers(is_milestone=True) == [2]
        assert await numbers(is_milestone=False) == [3, 1]

    @pytest.mark.asyncio
    async def test__get_version_history__date_range_inclusive(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
    ) -> None:
        """created_at filters include their bounds."""
        version = await _create(uow, whiteboard, user_id, _state())

        exact = await version_service.get_version_history(
            uow,
            whiteboard.id,
            VersionFilter(date_from=version.created_at, date_to=version.created_at),
        )
        future = await version_service.get_version_history(
            uow,
            whiteboard.id,
            VersionFilter(date_from=version.created_at + timedelta(hours=1)),
        )

        assert [v.id for v in exact.items] == [version.id]
        assert future.items == []
        assert future.total == 0

    @pytest.mark.asyncio
    async def test__get_version_history__unknown_whiteboard(self, uow: UnitOfWork) -> None:
        """History of a missing whiteboard raises WhiteboardNotFoundError."""
        with pytest.raises(WhiteboardNotFoundError):
            await version_service.get_version_history(uow, uuid4())

    @pytest.mark.asyncio
    async def test__get_version_history__validates_before_io(self, uow: UnitOfWork) -> None:
        """Bad parameters fail validation even for a whiteboard that doesn't exist."""
        with pytest.raises(VersionValidationError):
            await version_service.get_version_history(uow, uuid4(), limit=0)


class TestValidateHistoryQuery:
    """Tests for validate_history_query()."""

    @pytest.mark.parametrize(
        ("limit", "offset"),
        [(0, 0), (MAX_HISTORY_LIMIT + 1, 0), (10, -1)],
    )
    def test__validate_history_query__pagination_bounds(self, limit: int, offset: int) -> None:
        """Limit must be 1..100 and offset non-negative."""
        with pytest.raises(VersionValidationError):
            validate_history_query(None, limit, offset)

    def test__validate_history_query__accepts_bounds(self) -> None:
        """The limit bounds themselves are valid."""
        validate_history_query(None, 1, 0)
        validate_history_query(None, MAX_HISTORY_LIMIT, 0)

    def test__validate_history_query__naive_date_rejected(self) -> None:
        """Dates must carry a timezone."""
        with pytest.raises(VersionValidationError, match="timezone"):
            validate_history_query(VersionFilter(date_from=datetime(2024, 1, 1)), 10, 0)

    def test__validate_history_query__reversed_range_rejected(self) -> None:
        """date_from after date_to is rejected."""
        now = utcnow()
        with pytest.raises(VersionValidationError, match="date_from"):
            validate_history_query(
                VersionFilter(date_from=now, date_to=now - timedelta(days=1)), 10, 0,
            )


class TestGetVersion:
    """Tests for single-version lookups."""

    @pytest.mark.asyncio
    async def test__get_version__scoped_to_whiteboard(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
    ) -> None:
        """A version is only visible through its own whiteboard."""
        version = await _create(uow, whiteboard, user_id, _state())
        other = await whiteboard_service.create_whiteboard(uow, user_id, name="Other")

        assert (await version_service.get_version(uow, whiteboard.id, version.id)).id == version.id
        with pytest.raises(VersionNotFoundError):
            await version_service.get_version(uow, other.id, version.id)

    @pytest.mark.asyncio
    async def test__get_version_state__reconstructs(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        make_element: Callable[..., dict],
    ) -> None:
        """get_version_state returns the version and its reconstructed state."""
        await _create(uow, whiteboard, user_id, _state())
        v2 = await _create(uow, whiteboard, user_id, _state(make_element("A")))

        version, result = await version_service.get_version_state(uow, whiteboard.id, v2.id)

        assert version.id == v2.id
        assert result.state == _state(make_element("A"))
        assert result.chain_length == 2

    @pytest.mark.asyncio
    async def test__get_latest_version__none_for_new_whiteboard(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
    ) -> None:
        """A whiteboard without versions has no latest version."""
        assert await version_service.get_latest_version(uow, whiteboard.id) is None
