"""Protocols defining the contracts between the migration components.

The migration is split into three collaborators:

1. ProjectSource: extracts a project from Project Online
2. DestinationGateway: performs workspace, sheet, column and row operations in Smartsheet
3. Migrator: drives extraction, transformation and loading for one or more projects

Keeping them behind protocols lets the provisioning layer be tested against an
in-memory gateway and the orchestrator against a canned source.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import (
        CellValue,
        ColumnInfo,
        ColumnSpec,
        Project,
        ProjectData,
        RowInfo,
        SheetInfo,
        WorkspaceInfo,
        WorkspaceRef,
    )


class AccessTokenProvider(Protocol):
    """Supplies bearer tokens for the source API."""

    async def get_access_token(self) -> str:
        """Return a token valid for at least the refresh buffer.

        Raises:
            AuthDeclinedError, AuthTimeoutError: If an interactive sign-in fails.
            AuthExpiredError: If no token can be obtained without the user.
        """
        ...

    def invalidate(self) -> None:
        """Forget the current token so the next call renews it."""
        ...


class ProjectSource(Protocol):
    """Protocol for reading projects from the source system."""

    async def extract_project(self, project_id: str) -> ProjectData:
        """Fetch the project with all tasks, resources and assignments.

        Tasks are returned parent-first. A project without tasks is not an error.
        """
        ...

    async def list_projects(self) -> list[Project]:
        """Return every project visible to the signed-in user."""
        ...


class DestinationGateway(Protocol):
    """Protocol for the Smartsheet operations the loader needs.

    All identifiers are Smartsheet ids. Rows and cells are addressed by column
    id; callers resolve titles through get_sheet().
    """

    async def list_workspaces(self) -> list[WorkspaceRef]:
        ...

    async def get_workspace(self, workspace_id: int) -> WorkspaceInfo | None:
        """Return the workspace and its sheets, or None if it no longer exists."""
        ...

    async def create_workspace(self, name: str) -> WorkspaceRef:
        ...

    async def delete_workspace(self, workspace_id: int) -> None:
        ...

    async def create_sheet(self, workspace_id: int, name: str, columns: list[ColumnSpec]) -> SheetInfo:
        """Create a sheet in a workspace. Exactly one column must be primary."""
        ...

    async def get_sheet(self, sheet_id: int) -> SheetInfo:
        """Return the sheet with its columns and rows."""
        ...

    async def add_columns(self, sheet_id: int, columns: list[ColumnSpec], index: int) -> list[ColumnInfo]:
        """Insert columns starting at position `index`."""
        ...

    async def update_column(self, sheet_id: int, column_id: int, column: ColumnSpec) -> None:
        """Change a column's type and options, e.g. to restrict it to a picklist."""
        ...

    async def add_rows(
        self,
        sheet_id: int,
        rows: list[dict[int, CellValue]],
        *,
        parent_id: int | None = None,
    ) -> list[RowInfo]:
        """Append rows, as children of `parent_id` when given, in the order passed."""
        ...

    async def update_rows(self, sheet_id: int, updates: dict[int, dict[int, CellValue]]) -> None:
        """Overwrite cells of existing rows, keyed by row id then column id."""
        ...

    async def delete_rows(self, sheet_id: int, row_ids: list[int]) -> None:
        ...
