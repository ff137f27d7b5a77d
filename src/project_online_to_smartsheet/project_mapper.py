"""
Project mapper: names the destination workspace, declares its three sheets and
fills the Summary sheet's single row.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Final

from . import conversions
from .exceptions import MalformedRecordError
from .models import ColumnSpec, Contact, MigrationPlan, Project, RowSpec, SheetRole, SheetSpec

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

MAX_WORKSPACE_NAME_LENGTH: Final[int] = 100
MAX_SHEET_NAME_LENGTH: Final[int] = 50

SHEET_SUFFIXES: Final[dict[SheetRole, str]] = {
    "summary": " - Summary",
    "tasks": " - Tasks",
    "resources": " - Resources",
}

PROJECT_ID_COLUMN: Final[str] = "Project Online Project ID"
PROJECT_NAME_COLUMN: Final[str] = "Project Name"

_INVALID_NAME_CHARS = re.compile(r'[/\\:*?"<>|]')


@dataclass
class ProjectValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def sanitize_workspace_name(project_name: str) -> str:
    """Make a project name usable as a workspace name.

    Characters Smartsheet rejects become dashes, runs of dashes collapse, and
    names over 100 characters are cut to 97 plus an ellipsis.
    """
    sanitized = _INVALID_NAME_CHARS.sub("-", project_name)
    sanitized = re.sub(r"-+", "-", sanitized)
    sanitized = sanitized.strip().strip("-").strip()
    if len(sanitized) > MAX_WORKSPACE_NAME_LENGTH:
        sanitized = sanitized[: MAX_WORKSPACE_NAME_LENGTH - 3] + "..."
    return sanitized


def sheet_name(workspace_name: str, role: SheetRole) -> str:
    """`<workspace> - <Role>`, shortening the workspace part to fit the sheet name limit."""
    suffix = SHEET_SUFFIXES[role]
    room = MAX_SHEET_NAME_LENGTH - len(suffix)
    base = workspace_name if len(workspace_name) <= room else workspace_name[:room].rstrip(" -.")
    return f"{base}{suffix}"


def validate_project(project: Project) -> ProjectValidation:
    result = ProjectValidation()
    if not project.id.strip():
        result.errors.append("Project ID is required")
    if not project.name.strip():
        result.errors.append("Project Name is required")
    elif not sanitize_workspace_name(project.name):
        result.errors.append(f"Project Name '{project.name}' has no characters usable in a workspace name")
    if not 0 <= project.percent_complete <= 100:
        result.errors.append(f"Percent complete {project.percent_complete} is outside 0-100")

    if not project.owner and not project.owner_email:
        result.warnings.append("Project has no owner information")
    if project.start is None:
        result.warnings.append("Project has no start date")
    if project.finish is None:
        result.warnings.append("Project has no finish date")
    if project.created is None or project.modified is None:
        result.warnings.append("Project has no created/modified dates")
    return result


def summary_columns() -> list[ColumnSpec]:
    return [
        ColumnSpec(PROJECT_NAME_COLUMN, primary=True, width=250),
        ColumnSpec(PROJECT_ID_COLUMN, hidden=True, locked=True),
        ColumnSpec("Description", width=300),
        ColumnSpec("Owner", "CONTACT_LIST"),
        ColumnSpec("Start Date", "DATE"),
        ColumnSpec("Finish Date", "DATE"),
        ColumnSpec("Status", "PICKLIST"),
        ColumnSpec("Priority", "PICKLIST"),
        ColumnSpec("% Complete"),
        ColumnSpec("Project Online Created Date", "DATE"),
        ColumnSpec("Project Online Modified Date", "DATE"),
    ]


def _owner_cell(project: Project) -> Contact | str | None:
    if project.owner_email:
        return Contact(email=project.owner_email, name=project.owner)
    return project.owner or None


def summary_row(project: Project) -> RowSpec:
    return RowSpec(
        key=project.id,
        cells={
            PROJECT_NAME_COLUMN: project.name,
            PROJECT_ID_COLUMN: project.id,
            "Description": project.description or None,
            "Owner": _owner_cell(project),
            "Start Date": conversions.format_date(project.start),
            "Finish Date": conversions.format_date(project.finish),
            "Status": project.status,
            "Priority": conversions.map_priority(project.priority),
            "% Complete": project.percent_complete,
            "Project Online Created Date": conversions.format_date(project.created),
            "Project Online Modified Date": conversions.format_date(project.modified),
        },
    )


def map_project(project: Project) -> MigrationPlan:
    """Start a migration plan from the project record.

    Raises:
        MalformedRecordError: If the project cannot be migrated.
    """
    validation = validate_project(project)
    for warning in validation.warnings:
        logger.warning(f"Project {project.id}: {warning}")
    if not validation.valid:
        msg = f"Project {project.id} failed validation: {'; '.join(validation.errors)}"
        raise MalformedRecordError(msg)

    workspace_name = sanitize_workspace_name(project.name)
    plan = MigrationPlan(project_id=project.id, workspace_name=workspace_name)
    plan.sheets["summary"] = SheetSpec(
        role="summary",
        name=sheet_name(workspace_name, "summary"),
        columns=summary_columns(),
        rows=[summary_row(project)],
        picklist_sources={"Status": "Project - Status", "Priority": "Project - Priority"},
    )
    plan.sheets["tasks"] = SheetSpec(role="tasks", name=sheet_name(workspace_name, "tasks"))
    plan.sheets["resources"] = SheetSpec(role="resources", name=sheet_name(workspace_name, "resources"))
    logger.debug(f"Mapped project '{project.name}' to workspace '{workspace_name}'")
    return plan
