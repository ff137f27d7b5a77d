"""
Pytest configuration and fixtures.

This module configures pytest behavior for different test types:
- Integration tests: Fail on any warnings from the code under test
- Unit tests: Allow warnings

It also provides an in-memory Smartsheet gateway used by the provisioning,
standards and orchestrator tests.
"""

from __future__ import annotations

import asyncio
import copy
import datetime as dt
import itertools
import logging
from collections import Counter
from typing import TYPE_CHECKING

from typing_extensions import override

import pytest

from project_online_to_smartsheet.models import (
    Assignment,
    CellValue,
    ColumnInfo,
    ColumnSpec,
    Predecessor,
    Project,
    ProjectData,
    Resource,
    RowInfo,
    SheetInfo,
    SheetRef,
    Task,
    WorkspaceInfo,
    WorkspaceRef,
)

if TYPE_CHECKING:
    from collections.abc import Generator

# Store warning records during test execution
_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class IntegrationTestWarningHandler(logging.Handler):
    """Custom logging handler to capture warnings during integration tests."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__()
        self.test_nodeid = test_nodeid
        self.setLevel(logging.WARNING)

    @override
    def emit(self, record: logging.LogRecord) -> None:
        """Capture WARNING and above level logs."""
        _integration_test_warnings.setdefault(self.test_nodeid, []).append(record)


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(
    request: pytest.FixtureRequest,
) -> Generator[None]:
    """
    Automatically fail integration tests if any WARNING level logs are emitted from the code under test.

    A clean end-to-end migration is expected to log nothing above INFO, so a
    warning in an integration test points at data the migrator had to patch up.
    """
    if request.node.get_closest_marker("integration") is None:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []

    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)

    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[None]
) -> Generator[None]:  # type: ignore[misc]
    """Mark a passed integration test as failed if warnings were logged while it ran."""
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        test_nodeid = item.nodeid
        warning_records = _integration_test_warnings.get(test_nodeid, [])

        if warning_records:
            warning_messages = [
                f"{record.levelname}: {record.getMessage()} (in {record.name}:{record.lineno})"
                for record in warning_records
            ]
            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(warning_records)} warning(s) detected:\n" + "\n".join(
                f"  - {msg}" for msg in warning_messages
            )

        _integration_test_warnings.pop(test_nodeid, None)


class FakeGateway:
    """In-memory DestinationGateway.

    Every method yields to the event loop once, so concurrent callers
    interleave the way they would against the real API. `calls` counts
    invocations per method name.
    """

    def __init__(self) -> None:
        self.workspaces: dict[int, WorkspaceInfo] = {}
        self.sheets: dict[int, SheetInfo] = {}
        self.calls: Counter[str] = Counter()
        self._ids = itertools.count(1000)

    async def _tick(self, name: str) -> None:
        self.calls[name] += 1
        await asyncio.sleep(0)

    # Direct setup helpers (not counted as calls)

    def add_workspace(self, name: str) -> WorkspaceInfo:
        workspace = WorkspaceInfo(id=next(self._ids), name=name)
        self.workspaces[workspace.id] = workspace
        return workspace

    def add_sheet(self, workspace_id: int, name: str, columns: list[ColumnSpec]) -> SheetInfo:
        sheet = SheetInfo(id=next(self._ids), name=name)
        for index, column in enumerate(columns):
            sheet.columns.append(self._column(column, index))
        self.sheets[sheet.id] = sheet
        self.workspaces[workspace_id].sheets.append(SheetRef(id=sheet.id, name=name))
        return sheet

    def add_row(self, sheet_id: int, cells: dict[str, CellValue]) -> RowInfo:
        sheet = self.sheets[sheet_id]
        ids = sheet.column_ids()
        row = RowInfo(id=next(self._ids), cells={ids[title]: value for title, value in cells.items()})
        sheet.rows.append(row)
        return row

    def sheet_named(self, name: str) -> SheetInfo:
        return next(sheet for sheet in self.sheets.values() if sheet.name == name)

    def cell(self, sheet: SheetInfo, row: RowInfo, title: str) -> CellValue:
        column = sheet.column_titled(title)
        assert column is not None, title
        return row.cells.get(column.id)

    def _column(self, spec: ColumnSpec, index: int) -> ColumnInfo:
        return ColumnInfo(
            id=next(self._ids),
            title=spec.title,
            type=spec.type,
            primary=spec.primary,
            index=index,
            options=list(spec.options),
        )

    # DestinationGateway

    async def list_workspaces(self) -> list[WorkspaceRef]:
        await self._tick("list_workspaces")
        return [WorkspaceRef(id=ws.id, name=ws.name) for ws in self.workspaces.values()]

    async def get_workspace(self, workspace_id: int) -> WorkspaceInfo | None:
        await self._tick("get_workspace")
        workspace = self.workspaces.get(workspace_id)
        return copy.deepcopy(workspace)

    async def create_workspace(self, name: str) -> WorkspaceRef:
        await self._tick("create_workspace")
        workspace = self.add_workspace(name)
        return WorkspaceRef(id=workspace.id, name=name)

    async def delete_workspace(self, workspace_id: int) -> None:
        await self._tick("delete_workspace")
        workspace = self.workspaces.pop(workspace_id)
        for ref in workspace.sheets:
            self.sheets.pop(ref.id, None)

    async def create_sheet(self, workspace_id: int, name: str, columns: list[ColumnSpec]) -> SheetInfo:
        await self._tick("create_sheet")
        return copy.deepcopy(self.add_sheet(workspace_id, name, columns))

    async def get_sheet(self, sheet_id: int) -> SheetInfo:
        await self._tick("get_sheet")
        return copy.deepcopy(self.sheets[sheet_id])

    async def add_columns(self, sheet_id: int, columns: list[ColumnSpec], index: int) -> list[ColumnInfo]:
        await self._tick("add_columns")
        sheet = self.sheets[sheet_id]
        added = [self._column(column, index + offset) for offset, column in enumerate(columns)]
        sheet.columns[index:index] = added
        return copy.deepcopy(added)

    async def update_column(self, sheet_id: int, column_id: int, column: ColumnSpec) -> None:
        await self._tick("update_column")
        for info in self.sheets[sheet_id].columns:
            if info.id == column_id:
                info.type = column.type
                info.options = list(column.options)

    async def add_rows(
        self,
        sheet_id: int,
        rows: list[dict[int, CellValue]],
        *,
        parent_id: int | None = None,
    ) -> list[RowInfo]:
        await self._tick("add_rows")
        sheet = self.sheets[sheet_id]
        created = [
            RowInfo(id=next(self._ids), parent_id=parent_id, cells={k: v for k, v in cells.items() if v is not None})
            for cells in rows
        ]
        if parent_id is None:
            position = len(sheet.rows)
        else:
            # Last descendant of the parent, so new children go to the bottom of its subtree
            subtree = self._subtree_ids(sheet, parent_id)
            position = max(i for i, row in enumerate(sheet.rows) if row.id in subtree) + 1
        sheet.rows[position:position] = created
        for number, row in enumerate(sheet.rows, start=1):
            row.row_number = number
        return copy.deepcopy(created)

    async def update_rows(self, sheet_id: int, updates: dict[int, dict[int, CellValue]]) -> None:
        await self._tick("update_rows")
        for row in self.sheets[sheet_id].rows:
            if row.id in updates:
                row.cells.update(updates[row.id])

    async def delete_rows(self, sheet_id: int, row_ids: list[int]) -> None:
        await self._tick("delete_rows")
        sheet = self.sheets[sheet_id]
        doomed: set[int] = set()
        for row_id in row_ids:
            doomed |= self._subtree_ids(sheet, row_id)
        sheet.rows = [row for row in sheet.rows if row.id not in doomed]

    @staticmethod
    def _subtree_ids(sheet: SheetInfo, root_id: int) -> set[int]:
        ids = {root_id}
        for row in sheet.rows:
            if row.parent_id in ids:
                ids.add(row.id)
        return ids


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def make_project_data(project_id: str = "p-1", name: str = "Website Relaunch") -> ProjectData:
    """A small, clean project: a phase with two dependent tasks, three resources, three assignments."""
    project = Project(
        id=project_id,
        name=name,
        owner="Dana Lee",
        owner_email="dana@contoso.com",
        start=dt.date(2024, 3, 1),
        finish=dt.date(2024, 4, 30),
        status="Active",
        percent_complete=20.0,
        priority=500,
        created=dt.date(2024, 1, 10),
        modified=dt.date(2024, 2, 20),
    )
    tasks = [
        Task(id="t-root", name="Launch", outline_level=1, duration_hours=80.0, percent_complete=20.0),
        Task(id="t-a", name="Design", outline_level=2, parent_id="t-root", duration_hours=40.0, percent_complete=100.0),
        Task(
            id="t-b",
            name="Build",
            outline_level=2,
            parent_id="t-root",
            duration_hours=24.0,
            predecessors=(Predecessor("t-a", "FS"),),
            constraint_type="ASAP",
        ),
        Task(id="t-c", name="Go live", outline_level=1, is_milestone=True, predecessors=(Predecessor("t-b", "FS", 8.0),)),
    ]
    resources = [
        Resource(id="r-1", name="Dana Lee", email="dana@contoso.com", standard_rate=85.0, max_units=1.0),
        Resource(id="r-2", name="Steel", resource_type="Material", standard_rate=12.0),
        Resource(id="r-3", name="Travel", resource_type="Cost"),
    ]
    assignments = [
        Assignment(id="a-1", task_id="t-a", resource_id="r-1", units=0.5, work_hours=20.0),
        Assignment(id="a-2", task_id="t-b", resource_id="r-2", units=10.0),
        Assignment(id="a-3", task_id="t-c", resource_id="r-3"),
    ]
    return ProjectData(project=project, tasks=tasks, resources=resources, assignments=assignments)
