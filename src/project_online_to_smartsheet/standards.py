"""
The shared "PMO Standards" workspace and its reference sheets.

Every migrated project draws its picklist values (statuses, priorities,
constraint and resource types) from single-column reference sheets kept in one
long-lived workspace. StandardsWorkspaceCache resolves that workspace once per
process and hands the same identity to every run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from .exceptions import WorkspaceStructureInvalidError
from .models import ColumnSpec, SheetInfo, WorkspaceInfo

if TYPE_CHECKING:
    from .protocols import DestinationGateway

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

STANDARDS_WORKSPACE_NAME: Final[str] = "PMO Standards"
REFERENCE_VALUE_COLUMN: Final[str] = "Name"

_PRIORITIES: Final[tuple[str, ...]] = ("Lowest", "Very Low", "Lower", "Medium", "Higher", "Very High", "Highest")

STANDARD_REFERENCE_SHEETS: Final[dict[str, tuple[str, ...]]] = {
    "Project - Status": ("Active", "Planning", "Completed", "On Hold", "Cancelled"),
    "Project - Priority": _PRIORITIES,
    "Task - Status": ("Not Started", "In Progress", "Complete"),
    "Task - Priority": _PRIORITIES,
    "Task - Constraint Type": ("ASAP", "ALAP", "SNET", "SNLT", "FNET", "FNLT", "MSO", "MFO"),
    "Resource - Type": ("Work", "Material", "Cost"),
}


@dataclass
class StandardsWorkspace:
    """Resolved identity of the standards workspace."""

    workspace_id: int
    sheet_ids: dict[str, int] = field(default_factory=dict)
    values: dict[str, list[str]] = field(default_factory=dict)

    def options_for(self, reference_sheet: str) -> list[str]:
        return list(self.values.get(reference_sheet, []))


def _reference_values(sheet: SheetInfo) -> tuple[int, list[str]]:
    column = sheet.column_titled(REFERENCE_VALUE_COLUMN) or next((c for c in sheet.columns if c.primary), None)
    if column is None:
        msg = f"Reference sheet '{sheet.name}' has no '{REFERENCE_VALUE_COLUMN}' column"
        raise WorkspaceStructureInvalidError(msg)
    values = [value for row in sheet.rows if isinstance(value := row.cells.get(column.id), str) and value]
    return column.id, values


class StandardsWorkspaceCache:
    """Single-flight cache of the standards workspace identity.

    The first get() resolves the workspace: the configured override if it still
    exists, else an existing workspace named "PMO Standards", else a newly
    created one. Concurrent callers arriving while that is in progress await the
    same task instead of starting their own, so the workspace is created at most
    once. Later calls re-check that the cached workspace still exists and
    resolve it again if it was deleted. A failed resolution is not cached.
    """

    def __init__(
        self,
        gateway: DestinationGateway,
        *,
        override_id: int | None = None,
        name: str = STANDARDS_WORKSPACE_NAME,
        reference_sheets: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self.name: str = name
        self.override_id: int | None = override_id
        self.reference_sheets: dict[str, tuple[str, ...]] = dict(reference_sheets or STANDARD_REFERENCE_SHEETS)
        self._gateway: DestinationGateway = gateway
        self._cached: StandardsWorkspace | None = None
        self._inflight: asyncio.Task[StandardsWorkspace] | None = None

    @property
    def cached(self) -> StandardsWorkspace | None:
        return self._cached

    async def get(self) -> StandardsWorkspace:
        cached = self._cached
        if cached is not None:
            if await self._gateway.get_workspace(cached.workspace_id) is not None:
                return cached
            logger.warning(f"Standards workspace {cached.workspace_id} no longer exists, provisioning again")
            if self._cached is cached:
                self._cached = None

        if self._cached is not None:
            return self._cached

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._provision())
        task = self._inflight
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def _provision(self) -> StandardsWorkspace:
        info = await self._find_existing()
        if info is None:
            ref = await self._gateway.create_workspace(self.name)
            logger.info(f"Created standards workspace '{self.name}' ({ref.id})")
            info = WorkspaceInfo(id=ref.id, name=ref.name)
        standards = await self._ensure_reference_sheets(info)
        self._cached = standards
        return standards

    async def _find_existing(self) -> WorkspaceInfo | None:
        if self.override_id is not None:
            info = await self._gateway.get_workspace(self.override_id)
            if info is not None:
                logger.info(f"Using configured standards workspace {info.id}")
                return info
            logger.warning(f"Configured standards workspace {self.override_id} does not exist, looking it up by name")

        best: WorkspaceInfo | None = None
        for ref in await self._gateway.list_workspaces():
            if ref.name != self.name:
                continue
            info = await self._gateway.get_workspace(ref.id)
            if info is None:
                continue
            present = sum(1 for sheet_name in self.reference_sheets if info.sheet_named(sheet_name))
            if best is None or present > sum(1 for s in self.reference_sheets if best.sheet_named(s)):
                best = info
        if best is not None:
            logger.info(f"Adopting existing standards workspace {best.id}")
        return best

    async def _ensure_reference_sheets(self, info: WorkspaceInfo) -> StandardsWorkspace:
        standards = StandardsWorkspace(workspace_id=info.id)
        for sheet_name, wanted in self.reference_sheets.items():
            ref = info.sheet_named(sheet_name)
            if ref is None:
                sheet = await self._gateway.create_sheet(
                    info.id, sheet_name, [ColumnSpec(REFERENCE_VALUE_COLUMN, primary=True)]
                )
            else:
                sheet = await self._gateway.get_sheet(ref.id)
            column_id, existing = _reference_values(sheet)

            missing = [value for value in wanted if value not in existing]
            if missing:
                await self._gateway.add_rows(sheet.id, [{column_id: value} for value in missing])
                logger.info(f"Added {len(missing)} value(s) to reference sheet '{sheet_name}'")

            standards.sheet_ids[sheet_name] = sheet.id
            standards.values[sheet_name] = existing + missing
        return standards
