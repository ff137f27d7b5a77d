"""
Assignment mapper: adds assignment columns to the Tasks sheet.

Smartsheet has no assignment entity, so assignments become cells on the task
rows: one list column per resource type naming who or what is assigned, and
for every assigned resource an "Allocation %" and a "Work (hrs)" column.

All assignments are checked before any cell is written; a single reference to
a task or resource outside the batch rejects the whole set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from . import conversions
from .exceptions import DanglingReferenceError
from .models import (
    Assignment,
    ColumnSpec,
    Contact,
    MigrationPlan,
    MultiContact,
    MultiPicklist,
    Resource,
    ResourceType,
    Task,
)

if TYPE_CHECKING:
    from collections.abc import Collection

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

TYPE_LIST_COLUMNS: Final[dict[ResourceType, str]] = {
    "Work": "Work Resource",
    "Material": "Material Resource",
    "Cost": "Cost Resource",
}


@dataclass
class _Allocation:
    units: float = 0.0
    work_hours: float | None = None


def allocation_column(label: str) -> str:
    return f"{label} Allocation %"


def work_column(label: str) -> str:
    return f"{label} Work (hrs)"


def validate_assignments(
    assignments: list[Assignment],
    task_ids: set[str],
    resources: dict[str, Resource],
) -> None:
    """Raise DanglingReferenceError if any assignment points outside the batch."""
    problems: list[str] = []
    for assignment in assignments:
        if assignment.task_id not in task_ids:
            problems.append(f"assignment {assignment.id} references unknown task {assignment.task_id}")
        if assignment.resource_id not in resources:
            problems.append(f"assignment {assignment.id} references unknown resource {assignment.resource_id}")
    if problems:
        shown = "; ".join(problems[:5])
        more = f" (and {len(problems) - 5} more)" if len(problems) > 5 else ""
        msg = f"Dangling assignment references: {shown}{more}"
        raise DanglingReferenceError(msg)


def resource_labels(resources: list[Resource], taken: Collection[str] = ()) -> dict[str, str]:
    """Column label per resource id.

    A name shared by several resources, or one whose allocation or work column
    would coincide with a title in `taken`, gets its code or id appended.
    """
    reserved = set(taken)
    counts: dict[str, int] = {}
    for resource in resources:
        counts[resource.name] = counts.get(resource.name, 0) + 1
    labels: dict[str, str] = {}
    for resource in resources:
        name = resource.name
        if counts[name] == 1 and allocation_column(name) not in reserved and work_column(name) not in reserved:
            labels[resource.id] = name
        else:
            labels[resource.id] = f"{name} [{resource.code or resource.id[:8]}]"
    return labels


def map_assignments(
    plan: MigrationPlan,
    tasks: list[Task],
    resources: dict[str, Resource],
    assignments: list[Assignment],
) -> None:
    """Add assignment columns to the Tasks sheet of `plan` and fill its rows.

    Raises:
        DanglingReferenceError: If an assignment references a task or resource
            that was not extracted with this project. Nothing is written then.
    """
    validate_assignments(assignments, {task.id for task in tasks}, resources)
    if not assignments:
        return

    # Merge repeated task/resource pairs, keeping first-seen resource order
    allocations: dict[str, dict[str, _Allocation]] = {}
    assigned: dict[str, Resource] = {}
    for assignment in assignments:
        resource = resources[assignment.resource_id]
        assigned.setdefault(resource.id, resource)
        allocation = allocations.setdefault(assignment.task_id, {}).setdefault(resource.id, _Allocation())
        allocation.units += assignment.units
        if assignment.work_hours is not None:
            allocation.work_hours = (allocation.work_hours or 0.0) + assignment.work_hours

    sheet = plan.sheet("tasks")
    labels = resource_labels(list(assigned.values()), {column.title for column in sheet.columns})

    sheet.add_column(ColumnSpec(TYPE_LIST_COLUMNS["Work"], "MULTI_CONTACT_LIST"))
    for resource_type in ("Material", "Cost"):
        names = [labels[r.id] for r in assigned.values() if r.resource_type == resource_type]
        sheet.add_column(ColumnSpec(TYPE_LIST_COLUMNS[resource_type], "MULTI_PICKLIST", options=names))
    for resource in assigned.values():
        sheet.add_column(ColumnSpec(allocation_column(labels[resource.id])))
        sheet.add_column(ColumnSpec(work_column(labels[resource.id])))

    for task_id, by_resource in allocations.items():
        row = sheet.row(task_id)
        if row is None:
            # Validated above, so the task row exists unless the Tasks sheet was not mapped
            msg = f"No task row for {task_id}"
            raise DanglingReferenceError(msg)

        contacts: list[Contact] = []
        picks: dict[ResourceType, list[str]] = {"Material": [], "Cost": []}
        for resource_id, allocation in by_resource.items():
            resource = assigned[resource_id]
            label = labels[resource_id]
            row.cells[allocation_column(label)] = conversions.units_to_percent(allocation.units)
            row.cells[work_column(label)] = allocation.work_hours
            if resource.resource_type == "Work":
                if resource.email:
                    contacts.append(Contact(email=resource.email, name=resource.name))
            else:
                picks[resource.resource_type].append(label)

        if contacts:
            row.cells[TYPE_LIST_COLUMNS["Work"]] = MultiContact(tuple(contacts))
        for resource_type, values in picks.items():
            if values:
                row.cells[TYPE_LIST_COLUMNS[resource_type]] = MultiPicklist(tuple(values))

    plan.stats.assignments = len(assignments)
    plan.stats.assignment_columns = 2 * len(assigned)
    logger.debug(f"Mapped {len(assignments)} assignments across {len(assigned)} resources")
