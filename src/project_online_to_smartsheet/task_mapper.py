"""
Task mapper: flattens the task forest into Tasks-sheet rows.

Smartsheet has no task ids, only row positions, so predecessor links are
rendered against the row numbers the tasks will occupy. Those positions are
fixed up front by a depth-first pre-order walk of the forest: each parent is
followed by all of its descendants, siblings keep their extraction order. The
loader inserts rows so that their final row numbers match these positions.
"""

from __future__ import annotations

import logging
from typing import Final

from . import conversions
from .exceptions import DanglingReferenceError, MalformedHierarchyError
from .models import ColumnSpec, MigrationPlan, RowSpec, Task

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

TASK_NAME_COLUMN: Final[str] = "Task Name"
TASK_ID_COLUMN: Final[str] = "Project Online Task ID"
PREDECESSORS_COLUMN: Final[str] = "Predecessors"


def order_task_forest(tasks: list[Task]) -> list[Task]:
    """Return the tasks in depth-first pre-order.

    Raises:
        MalformedHierarchyError: If a parent is missing or the parent links form a cycle.
    """
    by_id = {task.id: task for task in tasks}
    children: dict[str | None, list[Task]] = {}
    for task in tasks:
        if task.parent_id is not None and task.parent_id not in by_id:
            msg = f"Task {task.id} refers to unknown parent {task.parent_id}"
            raise MalformedHierarchyError(msg)
        children.setdefault(task.parent_id, []).append(task)

    ordered: list[Task] = []
    stack = list(reversed(children.get(None, [])))
    while stack:
        task = stack.pop()
        ordered.append(task)
        stack.extend(reversed(children.get(task.id, [])))

    if len(ordered) != len(tasks):
        unreachable = sorted({task.id for task in tasks} - {task.id for task in ordered})
        msg = f"Tasks {', '.join(unreachable[:5])} are not reachable from any root (cyclic parent links)"
        raise MalformedHierarchyError(msg)
    return ordered


def row_positions(ordered: list[Task]) -> dict[str, int]:
    """1-based destination row number of each task."""
    return {task.id: position for position, task in enumerate(ordered, start=1)}


def format_predecessors(task: Task, positions: dict[str, int]) -> str | None:
    """Render predecessors as Smartsheet notation, e.g. "2FS,5SS+1d".

    Raises:
        DanglingReferenceError: If a predecessor is not part of this project.
    """
    parts: list[str] = []
    for predecessor in task.predecessors:
        row = positions.get(predecessor.task_id)
        if row is None:
            msg = f"Task {task.id} has predecessor {predecessor.task_id} which is not part of the project"
            raise DanglingReferenceError(msg)
        text = f"{row}{predecessor.dependency_type}"
        if predecessor.lag_hours:
            text += conversions.format_lag(predecessor.lag_hours)
        parts.append(text)
    return ",".join(parts) or None


def task_columns() -> list[ColumnSpec]:
    return [
        ColumnSpec(TASK_NAME_COLUMN, primary=True, width=300),
        ColumnSpec(TASK_ID_COLUMN, hidden=True, locked=True),
        ColumnSpec("Start Date", "DATE"),
        ColumnSpec("End Date", "DATE"),
        ColumnSpec("Duration (hrs)"),
        ColumnSpec("% Complete"),
        ColumnSpec("Status", "PICKLIST"),
        ColumnSpec("Priority", "PICKLIST"),
        ColumnSpec("Work (hrs)"),
        ColumnSpec("Actual Work (hrs)"),
        ColumnSpec("Milestone", "CHECKBOX"),
        ColumnSpec("Notes", width=300),
        ColumnSpec(PREDECESSORS_COLUMN),
        ColumnSpec("Constraint Type", "PICKLIST"),
        ColumnSpec("Constraint Date", "DATE"),
        ColumnSpec("Deadline", "DATE"),
        ColumnSpec("Late Start", "DATE"),
        ColumnSpec("Late Finish", "DATE"),
        ColumnSpec("Total Slack (hrs)"),
        ColumnSpec("Free Slack (hrs)"),
        ColumnSpec("Project Online Created Date", "DATE"),
        ColumnSpec("Project Online Modified Date", "DATE"),
    ]


def task_row(task: Task, predecessors: str | None) -> RowSpec:
    return RowSpec(
        key=task.id,
        parent_key=task.parent_id,
        indent=task.outline_level - 1,
        cells={
            TASK_NAME_COLUMN: task.name,
            TASK_ID_COLUMN: task.id,
            "Start Date": conversions.format_date(task.start),
            "End Date": conversions.format_date(task.finish),
            "Duration (hrs)": task.duration_hours,
            "% Complete": task.percent_complete,
            "Status": conversions.derive_task_status(task.percent_complete),
            "Priority": conversions.map_priority(task.priority),
            "Work (hrs)": task.work_hours,
            "Actual Work (hrs)": task.actual_work_hours,
            "Milestone": task.is_milestone,
            "Notes": task.notes or None,
            PREDECESSORS_COLUMN: predecessors,
            "Constraint Type": task.constraint_type,
            "Constraint Date": conversions.format_date(task.constraint_date),
            "Deadline": conversions.format_date(task.deadline),
            "Late Start": conversions.format_date(task.late_start),
            "Late Finish": conversions.format_date(task.late_finish),
            "Total Slack (hrs)": task.total_slack_hours,
            "Free Slack (hrs)": task.free_slack_hours,
            "Project Online Created Date": conversions.format_date(task.created),
            "Project Online Modified Date": conversions.format_date(task.modified),
        },
    )


def map_tasks(plan: MigrationPlan, tasks: list[Task]) -> dict[str, int]:
    """Fill the Tasks sheet of `plan` and return each task's row position."""
    ordered = order_task_forest(tasks)
    positions = row_positions(ordered)

    sheet = plan.sheet("tasks")
    sheet.columns = task_columns()
    sheet.rows = [task_row(task, format_predecessors(task, positions)) for task in ordered]
    sheet.picklist_sources.update(
        {"Status": "Task - Status", "Priority": "Task - Priority", "Constraint Type": "Task - Constraint Type"}
    )
    if PREDECESSORS_COLUMN not in sheet.deferred_columns:
        sheet.deferred_columns.append(PREDECESSORS_COLUMN)

    plan.stats.tasks = len(ordered)
    logger.debug(f"Mapped {len(ordered)} tasks")
    return positions
