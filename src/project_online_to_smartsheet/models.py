"""Data models exchanged between the extractor, the mappers and the loader.

Source entities (Project, Task, Resource, Assignment) are validated snapshots of
Project Online OData records. They are created fresh for each run and never
persisted. Destination entities (ColumnSpec, RowSpec, SheetSpec, MigrationPlan)
describe what the loader should write to Smartsheet; they carry no Smartsheet
identifiers because those only exist once the loader has materialised them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

DependencyType = Literal["FS", "SS", "FF", "SF"]
ResourceType = Literal["Work", "Material", "Cost"]
SheetRole = Literal["summary", "tasks", "resources"]
ColumnType = Literal[
    "TEXT_NUMBER",
    "DATE",
    "CHECKBOX",
    "PICKLIST",
    "CONTACT_LIST",
    "MULTI_CONTACT_LIST",
    "MULTI_PICKLIST",
]


@dataclass(frozen=True)
class Project:
    """The project being migrated. One per run."""

    id: str
    name: str
    owner: str = ""
    owner_email: str | None = None
    start: date | None = None
    finish: date | None = None
    status: str | None = None
    percent_complete: float = 0.0
    description: str = ""
    priority: int | None = None  # 0-1000 scale used by Project Online
    created: date | None = None
    modified: date | None = None


@dataclass(frozen=True)
class Predecessor:
    """A dependency link pointing at another task of the same project."""

    task_id: str
    dependency_type: DependencyType = "FS"
    lag_hours: float = 0.0  # Negative means lead time


@dataclass(frozen=True)
class Task:
    """A task in the project's outline.

    outline_level starts at 1 for top-level tasks; parent_id is None for them.
    All durations are normalised to working hours.
    """

    id: str
    name: str
    outline_level: int
    parent_id: str | None = None
    duration_hours: float | None = None
    work_hours: float | None = None
    actual_work_hours: float | None = None
    percent_complete: float = 0.0
    is_milestone: bool = False
    predecessors: tuple[Predecessor, ...] = ()
    start: date | None = None
    finish: date | None = None
    priority: int | None = None
    notes: str = ""
    constraint_type: str | None = None
    constraint_date: date | None = None
    deadline: date | None = None
    late_start: date | None = None
    late_finish: date | None = None
    total_slack_hours: float | None = None
    free_slack_hours: float | None = None
    created: date | None = None
    modified: date | None = None


@dataclass(frozen=True)
class Resource:
    """A work, material or cost resource available to the project."""

    id: str
    name: str
    resource_type: ResourceType = "Work"
    email: str | None = None
    standard_rate: float | None = None
    overtime_rate: float | None = None
    cost_per_use: float | None = None
    max_units: float | None = None  # Fraction of capacity, 1.0 means 100%
    group: str | None = None
    code: str | None = None
    is_active: bool = True
    is_generic: bool = False
    created: date | None = None
    modified: date | None = None


@dataclass(frozen=True)
class Assignment:
    """A resource assigned to a task."""

    id: str
    task_id: str
    resource_id: str
    units: float = 1.0  # Fraction of capacity, 1.0 means 100%
    work_hours: float | None = None
    percent_complete: float = 0.0


@dataclass
class ProjectData:
    """Everything extracted for one project."""

    project: Project
    tasks: list[Task] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    assignments: list[Assignment] = field(default_factory=list)


@dataclass(frozen=True)
class Contact:
    """A Smartsheet contact cell value."""

    email: str
    name: str = ""


@dataclass(frozen=True)
class MultiContact:
    """Value of a MULTI_CONTACT_LIST cell."""

    contacts: tuple[Contact, ...]


@dataclass(frozen=True)
class MultiPicklist:
    """Value of a MULTI_PICKLIST cell."""

    values: tuple[str, ...]


CellValue = str | int | float | bool | Contact | MultiContact | MultiPicklist | None


@dataclass
class ColumnSpec:
    """A column the loader must make sure exists on a sheet."""

    title: str
    type: ColumnType = "TEXT_NUMBER"
    primary: bool = False
    hidden: bool = False
    locked: bool = False
    width: int | None = None
    options: list[str] = field(default_factory=list)


@dataclass
class RowSpec:
    """A row to write, keyed by the source entity id.

    parent_key refers to another row of the same sheet which must be written
    first. indent is informational; Smartsheet derives it from parent_key.
    """

    key: str
    cells: dict[str, CellValue] = field(default_factory=dict)
    parent_key: str | None = None
    indent: int = 0


@dataclass
class SheetSpec:
    """A sheet of the destination workspace."""

    role: SheetRole
    name: str
    columns: list[ColumnSpec] = field(default_factory=list)
    rows: list[RowSpec] = field(default_factory=list)
    # Column title -> standards reference sheet supplying its picklist values
    picklist_sources: dict[str, str] = field(default_factory=dict)
    # Columns written only after every row exists (e.g. position-relative predecessors)
    deferred_columns: list[str] = field(default_factory=list)

    def column(self, title: str) -> ColumnSpec | None:
        for column in self.columns:
            if column.title == title:
                return column
        return None

    def add_column(self, column: ColumnSpec) -> None:
        if self.column(column.title) is None:
            self.columns.append(column)

    def row(self, key: str) -> RowSpec | None:
        for row in self.rows:
            if row.key == key:
                return row
        return None


@dataclass
class PlanStats:
    """Counts of source entities turned into rows."""

    tasks: int = 0
    resources: int = 0
    assignments: int = 0
    assignment_columns: int = 0


@dataclass
class MigrationPlan:
    """The complete destination layout for one project."""

    project_id: str
    workspace_name: str
    sheets: dict[SheetRole, SheetSpec] = field(default_factory=dict)
    stats: PlanStats = field(default_factory=PlanStats)

    def sheet(self, role: SheetRole) -> SheetSpec:
        return self.sheets[role]


@dataclass(frozen=True)
class WorkspaceRef:
    """A Smartsheet workspace as listed by the API."""

    id: int
    name: str


@dataclass(frozen=True)
class SheetRef:
    id: int
    name: str


@dataclass
class WorkspaceInfo:
    """A workspace together with the sheets at its top level."""

    id: int
    name: str
    sheets: list[SheetRef] = field(default_factory=list)

    def sheet_named(self, name: str) -> SheetRef | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None


@dataclass
class ColumnInfo:
    id: int
    title: str
    type: str = "TEXT_NUMBER"
    primary: bool = False
    index: int = 0
    options: list[str] = field(default_factory=list)


@dataclass
class RowInfo:
    """A row read back from a sheet; cells are keyed by column id."""

    id: int
    row_number: int = 0
    parent_id: int | None = None
    cells: dict[int, CellValue] = field(default_factory=dict)


@dataclass
class SheetInfo:
    id: int
    name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    rows: list[RowInfo] = field(default_factory=list)

    def column_ids(self) -> dict[str, int]:
        return {column.title: column.id for column in self.columns}

    def column_titled(self, title: str) -> ColumnInfo | None:
        for column in self.columns:
            if column.title == title:
                return column
        return None
