"""
Idempotent provisioning of a project's destination workspace.

Re-running a migration must never produce a second workspace for the same
project. Workspaces are therefore found by the project id stored in the hidden
"Project Online Project ID" column of their Summary sheet, not by name. A
workspace found that way is reused when it still has its three sheets; sheets
and columns are created only when missing, and rows are replaced wholesale.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from .exceptions import WorkspaceStructureInvalidError
from .models import (
    CellValue,
    ColumnSpec,
    MigrationPlan,
    MultiPicklist,
    RowSpec,
    SheetInfo,
    SheetRole,
    SheetSpec,
    WorkspaceInfo,
)
from .project_mapper import PROJECT_ID_COLUMN, SHEET_SUFFIXES

if TYPE_CHECKING:
    from .protocols import DestinationGateway
    from .standards import StandardsWorkspace

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: Final[int] = 100
SHEET_ROLES: Final[tuple[SheetRole, ...]] = ("summary", "tasks", "resources")
_PICKLIST_TYPES: Final[frozenset[str]] = frozenset({"PICKLIST", "MULTI_PICKLIST"})


class MigrationState(StrEnum):
    """Load progress of one project.

    PUBLISHED means every sheet was read back with its planned rows; COMPLETE
    follows once the run's statistics have been recorded.
    """

    NOT_STARTED = "not_started"
    WORKSPACE_RESOLVED = "workspace_resolved"
    SHEETS_CREATED = "sheets_created"
    ROWS_POPULATED = "rows_populated"
    PUBLISHED = "published"
    COMPLETE = "complete"


def sheets_by_role(workspace: WorkspaceInfo) -> dict[SheetRole, int]:
    """Locate the role sheets of a workspace by their name suffix."""
    found: dict[SheetRole, int] = {}
    for sheet in workspace.sheets:
        for role, suffix in SHEET_SUFFIXES.items():
            if sheet.name.endswith(suffix) and role not in found:
                found[role] = sheet.id
    return found


def correlation_ids(summary: SheetInfo) -> set[str]:
    """Project ids recorded in a Summary sheet."""
    column = summary.column_titled(PROJECT_ID_COLUMN)
    if column is None:
        return set()
    return {value for row in summary.rows if isinstance(value := row.cells.get(column.id), str) and value}


@dataclass
class ResolvedWorkspace:
    workspace: WorkspaceInfo
    created: bool = False
    resumed: bool = False


class WorkspaceResolver:
    """Finds the workspace already holding a project, or creates one."""

    def __init__(self, gateway: DestinationGateway) -> None:
        self._gateway: DestinationGateway = gateway

    async def resolve(self, plan: MigrationPlan) -> ResolvedWorkspace:
        workspaces = await self._gateway.list_workspaces()
        # Exact name matches are the likeliest hits, so inspect them first
        candidates = sorted(workspaces, key=lambda ws: ws.name != plan.workspace_name)

        shell: WorkspaceInfo | None = None
        for ref in candidates:
            info = await self._gateway.get_workspace(ref.id)
            if info is None:
                continue
            roles = sheets_by_role(info)

            ids: set[str] = set()
            if "summary" in roles:
                ids = correlation_ids(await self._gateway.get_sheet(roles["summary"]))

            if plan.project_id in ids:
                missing = [role for role in SHEET_ROLES if role not in roles]
                if not missing:
                    logger.info(f"Reusing workspace '{info.name}' ({info.id}) for project {plan.project_id}")
                    return ResolvedWorkspace(workspace=info)
                error = WorkspaceStructureInvalidError(
                    f"Workspace {info.id} is correlated to project {plan.project_id} "
                    f"but lacks its {', '.join(missing)} sheet(s)"
                )
                logger.warning(f"{error}; creating a new workspace instead")
                continue

            # An earlier run that stopped before writing rows leaves a same-named
            # workspace holding nothing but (empty) role sheets
            if (
                shell is None
                and info.name == plan.workspace_name
                and not ids
                and len(roles) == len(info.sheets)
            ):
                shell = info

        if shell is not None:
            logger.info(f"Resuming interrupted migration in workspace '{shell.name}' ({shell.id})")
            return ResolvedWorkspace(workspace=shell, resumed=True)

        ref = await self._gateway.create_workspace(plan.workspace_name)
        return ResolvedWorkspace(workspace=WorkspaceInfo(id=ref.id, name=ref.name), created=True)


@dataclass
class LoadResult:
    """What the loader wrote for one project."""

    workspace_id: int
    sheet_ids: dict[SheetRole, int] = field(default_factory=dict)
    rows_written: dict[SheetRole, int] = field(default_factory=dict)
    rows_deleted: int = 0
    columns_added: int = 0


def _depth(row: RowSpec, rows_by_key: dict[str, RowSpec]) -> int:
    depth = 0
    parent_key = row.parent_key
    while parent_key is not None:
        depth += 1
        parent_key = rows_by_key[parent_key].parent_key
    return depth


class WorkspaceLoader:
    """Materialises a MigrationPlan's sheets, columns and rows in a workspace."""

    def __init__(self, gateway: DestinationGateway, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)
        self.batch_size: int = batch_size
        self._gateway: DestinationGateway = gateway

    async def load(
        self,
        plan: MigrationPlan,
        workspace: WorkspaceInfo,
        standards: StandardsWorkspace | None = None,
        *,
        on_state: Callable[[MigrationState], None] | None = None,
    ) -> LoadResult:
        result = LoadResult(workspace_id=workspace.id)
        existing = sheets_by_role(workspace)

        sheets: dict[SheetRole, SheetInfo] = {}
        for role in SHEET_ROLES:
            spec = plan.sheet(role)
            sheets[role] = await self._ensure_sheet(workspace.id, spec, existing.get(role), result)
            result.sheet_ids[role] = sheets[role].id
        if on_state:
            on_state(MigrationState.SHEETS_CREATED)

        for role in SHEET_ROLES:
            await self._apply_picklists(plan.sheet(role), sheets[role], standards)

        # Tasks last: the Summary row is the correlation marker and resources are independent
        for role in ("summary", "resources", "tasks"):
            spec = plan.sheet(role)
            result.rows_deleted += await self._clear_rows(sheets[role])
            result.rows_written[role] = await self._write_rows(spec, sheets[role])
        if on_state:
            on_state(MigrationState.ROWS_POPULATED)
        return result

    async def verify(self, plan: MigrationPlan, result: LoadResult) -> None:
        """Re-read every sheet and check it holds exactly the planned rows.

        Raises:
            WorkspaceStructureInvalidError: If a sheet's row count differs from the plan.
        """
        for role in SHEET_ROLES:
            sheet = await self._gateway.get_sheet(result.sheet_ids[role])
            expected = len(plan.sheet(role).rows)
            if len(sheet.rows) != expected:
                msg = f"Sheet '{sheet.name}' has {len(sheet.rows)} rows, expected {expected}"
                raise WorkspaceStructureInvalidError(msg)

    async def _ensure_sheet(
        self,
        workspace_id: int,
        spec: SheetSpec,
        sheet_id: int | None,
        result: LoadResult,
    ) -> SheetInfo:
        if sheet_id is None:
            return await self._gateway.create_sheet(workspace_id, spec.name, spec.columns)

        sheet = await self._gateway.get_sheet(sheet_id)
        present = {column.title for column in sheet.columns}
        missing = [column for column in spec.columns if column.title not in present]
        if missing:
            # Only the existing sheet's primary column can be primary
            to_add = [replace(column, primary=False) for column in missing]
            await self._gateway.add_columns(sheet.id, to_add, index=len(sheet.columns))
            result.columns_added += len(to_add)
            logger.info(f"Added {len(to_add)} column(s) to sheet '{sheet.name}'")
            sheet = await self._gateway.get_sheet(sheet_id)
        return sheet

    async def _apply_picklists(
        self,
        spec: SheetSpec,
        sheet: SheetInfo,
        standards: StandardsWorkspace | None,
    ) -> None:
        for column in spec.columns:
            if column.type not in _PICKLIST_TYPES:
                continue
            options = list(column.options)
            source = spec.picklist_sources.get(column.title)
            if source and standards is not None:
                options.extend(value for value in standards.options_for(source) if value not in options)

            # Values in the data that the reference list lacks must stay writable
            for row in spec.rows:
                value = row.cells.get(column.title)
                values = value.values if isinstance(value, MultiPicklist) else (value,)
                for item in values:
                    if isinstance(item, str) and item and item not in options:
                        logger.warning(f"'{item}' is not a standard value for '{column.title}', adding it")
                        options.append(item)

            info = sheet.column_titled(column.title)
            if info is None or not options or info.options == options:
                continue
            await self._gateway.update_column(
                sheet.id, info.id, ColumnSpec(column.title, column.type, options=options)
            )
            info.options = options

    async def _clear_rows(self, sheet: SheetInfo) -> int:
        # Deleting a parent row removes its children too
        top_level = [row.id for row in sheet.rows if row.parent_id is None]
        if top_level:
            await self._gateway.delete_rows(sheet.id, top_level)
            logger.info(f"Cleared {len(sheet.rows)} existing row(s) from sheet '{sheet.name}'")
        return len(sheet.rows)

    def _cells(self, row: RowSpec, column_ids: dict[str, int], skip: list[str]) -> dict[int, CellValue]:
        cells: dict[int, CellValue] = {}
        for title, value in row.cells.items():
            if value is None or title in skip:
                continue
            column_id = column_ids.get(title)
            if column_id is None:
                msg = f"Column '{title}' is missing from the destination sheet"
                raise WorkspaceStructureInvalidError(msg)
            cells[column_id] = value
        return cells

    async def _add_batched(
        self,
        sheet_id: int,
        rows: list[RowSpec],
        column_ids: dict[str, int],
        skip: list[str],
        parent_id: int | None,
    ) -> dict[str, int]:
        row_ids: dict[str, int] = {}
        for start in range(0, len(rows), self.batch_size):
            batch = rows[start : start + self.batch_size]
            created = await self._gateway.add_rows(
                sheet_id, [self._cells(row, column_ids, skip) for row in batch], parent_id=parent_id
            )
            for row, info in zip(batch, created, strict=True):
                row_ids[row.key] = info.id
        return row_ids

    async def _write_rows(self, spec: SheetSpec, sheet: SheetInfo) -> int:
        """Insert the planned rows top-down, then fill deferred columns."""
        if not spec.rows:
            return 0
        column_ids = sheet.column_ids()
        rows_by_key = {row.key: row for row in spec.rows}

        levels: dict[int, list[RowSpec]] = {}
        for row in spec.rows:
            levels.setdefault(_depth(row, rows_by_key), []).append(row)

        row_ids: dict[str, int] = {}
        for depth in sorted(levels):
            groups: dict[str | None, list[RowSpec]] = {}
            for row in levels[depth]:
                groups.setdefault(row.parent_key, []).append(row)
            for parent_key, group in groups.items():
                parent_id = row_ids[parent_key] if parent_key is not None else None
                row_ids.update(await self._add_batched(sheet.id, group, column_ids, spec.deferred_columns, parent_id))
            logger.debug(f"Inserted {len(levels[depth])} row(s) at depth {depth} into '{sheet.name}'")

        deferred: dict[int, dict[int, CellValue]] = {}
        for row in spec.rows:
            for title in spec.deferred_columns:
                value = row.cells.get(title)
                if value is not None:
                    deferred.setdefault(row_ids[row.key], {})[column_ids[title]] = value
        items = list(deferred.items())
        for start in range(0, len(items), self.batch_size):
            await self._gateway.update_rows(sheet.id, dict(items[start : start + self.batch_size]))

        logger.info(f"Wrote {len(spec.rows)} row(s) to sheet '{sheet.name}'")
        return len(spec.rows)
