"""
Parsing and validation of Project Online OData payloads.

Raw JSON records are turned into the typed models at this boundary. A record
missing a required field, or carrying a value of the wrong type, raises
MalformedRecordError here rather than travelling further down the pipeline.

ProjectData exposes most fields with an entity prefix (TaskName, TaskDuration)
while older exports use the bare names (Name, Duration); both are accepted.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Final
from urllib.parse import urlencode, urljoin

from . import conversions
from .exceptions import MalformedRecordError
from .models import Assignment, DependencyType, Predecessor, Project, Resource, ResourceType, Task

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

ODATA_ACCEPT: Final[str] = "application/json;odata=verbose"

# Project Online TaskLinks DependencyType codes
_DEPENDENCY_CODES: Final[dict[int, DependencyType]] = {0: "FF", 1: "FS", 2: "SF", 3: "SS"}
_RESOURCE_TYPES: Final[tuple[ResourceType, ...]] = ("Work", "Material", "Cost")
# ProjectData ResourceType codes
_RESOURCE_TYPE_CODES: Final[dict[int, ResourceType]] = {0: "Material", 1: "Work", 2: "Cost"}

Field = str | tuple[str, ...]


def service_root(project_online_url: str) -> str:
    return f"{project_online_url.rstrip('/')}/_api/ProjectData"


def guid_filter(field: str, value: str) -> str:
    return f"{field} eq guid'{value}'"


def build_query_url(
    root: str,
    resource: str,
    *,
    filter_expr: str | None = None,
    top: int | None = None,
    select: list[str] | None = None,
    orderby: str | None = None,
) -> str:
    params: dict[str, str] = {}
    if filter_expr:
        params["$filter"] = filter_expr
    if select:
        params["$select"] = ",".join(select)
    if orderby:
        params["$orderby"] = orderby
    if top:
        params["$top"] = str(top)
    url = f"{root}/{resource}"
    if params:
        url += "?" + urlencode(params, safe="$',()")
    return url


def collection_page(payload: dict[str, Any], base_url: str) -> tuple[list[dict[str, Any]], str | None]:
    """Split one page of a collection into its records and the absolute URL of the next page."""
    if "d" in payload:
        body = payload["d"]
        if isinstance(body, list):
            records, link = body, None
        else:
            records, link = body.get("results", []), body.get("__next")
    else:
        records = payload.get("value", [])
        link = payload.get("@odata.nextLink") or payload.get("odata.nextLink")

    if not isinstance(records, list):
        msg = f"Expected a list of records, got {type(records).__name__}"
        raise MalformedRecordError(msg)
    if link:
        link = urljoin(base_url.rstrip("/") + "/", link)
    return records, link


def single_entity(payload: dict[str, Any]) -> dict[str, Any]:
    body = payload.get("d", payload)
    if not isinstance(body, dict):
        msg = f"Expected an entity object, got {type(body).__name__}"
        raise MalformedRecordError(msg)
    return body


class _RecordReader:
    """Typed accessors over one raw record, raising MalformedRecordError with context."""

    def __init__(self, entity: str, record: dict[str, Any]) -> None:
        self.entity: str = entity
        self.record: dict[str, Any] = record

    def _name(self, field: Field) -> str:
        if isinstance(field, str):
            return field
        for name in field:
            if name in self.record:
                return name
        return field[0]

    def _fail(self, field: Field, problem: str) -> MalformedRecordError:
        identity = next(
            (self.record[key] for key in ("Id", f"{self.entity}Id") if isinstance(self.record.get(key), str)),
            "?",
        )
        return MalformedRecordError(f"{self.entity} {identity}: field '{self._name(field)}' {problem}")

    def raw(self, field: Field) -> Any:  # noqa: ANN401
        return self.record.get(self._name(field))

    def required_str(self, field: Field) -> str:
        value = self.raw(field)
        if not isinstance(value, str) or not value.strip():
            raise self._fail(field, "is required and must be a non-empty string")
        return value

    def optional_str(self, field: Field) -> str | None:
        value = self.raw(field)
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise self._fail(field, f"must be a string, got {type(value).__name__}")
        return value

    def number(self, field: Field) -> float | None:
        value = self.raw(field)
        if value is None or value == "":
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        # Edm.Decimal arrives as a string in verbose JSON
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
        raise self._fail(field, f"must be numeric, got {value!r}")

    def integer(self, field: Field) -> int | None:
        value = self.number(field)
        return int(value) if value is not None else None

    def flag(self, field: Field, *, default: bool = False) -> bool:
        value = self.raw(field)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self._fail(field, f"must be a boolean, got {value!r}")
        return value

    def date(self, field: Field) -> dt.date | None:
        value = self.raw(field)
        if value is not None and not isinstance(value, str):
            raise self._fail(field, f"must be a date string, got {value!r}")
        try:
            return conversions.parse_date(value)
        except ValueError as e:
            raise self._fail(field, str(e)) from e

    def hours(self, field: Field) -> float | None:
        value = self.raw(field)
        if isinstance(value, bool) or (value is not None and not isinstance(value, (str, int, float))):
            raise self._fail(field, f"must be a duration, got {value!r}")
        try:
            return conversions.duration_to_hours(value)
        except ValueError as e:
            raise self._fail(field, str(e)) from e


def parse_project(record: dict[str, Any]) -> Project:
    r = _RecordReader("Project", record)
    return Project(
        id=r.required_str(("ProjectId", "Id")),
        name=r.required_str(("ProjectName", "Name")),
        owner=r.optional_str(("ProjectOwnerName", "Owner")) or "",
        owner_email=r.optional_str(("ProjectOwnerEmail", "OwnerEmail")),
        start=r.date(("ProjectStartDate", "StartDate")),
        finish=r.date(("ProjectFinishDate", "FinishDate")),
        status=r.optional_str(("ProjectStatus", "Status")),
        percent_complete=r.number(("ProjectPercentCompleted", "PercentComplete")) or 0.0,
        description=r.optional_str(("ProjectDescription", "Description")) or "",
        priority=r.integer(("ProjectPriority", "Priority")),
        created=r.date(("ProjectCreatedDate", "CreatedDate")),
        modified=r.date(("ProjectModifiedDate", "ModifiedDate")),
    )


def _parse_predecessor(link: dict[str, Any], task_id: str) -> Predecessor:
    r = _RecordReader("TaskLink", link)
    target = r.optional_str("PredecessorTaskId")
    if target is None:
        msg = f"Task {task_id}: predecessor link without PredecessorTaskId"
        raise MalformedRecordError(msg)

    raw_type = link.get("DependencyType", 1)
    dependency_type: DependencyType
    if isinstance(raw_type, int) and raw_type in _DEPENDENCY_CODES:
        dependency_type = _DEPENDENCY_CODES[raw_type]
    elif isinstance(raw_type, str) and raw_type.upper() in ("FS", "SS", "FF", "SF"):
        dependency_type = raw_type.upper()  # type: ignore[assignment]
    else:
        msg = f"Task {task_id}: unknown dependency type {raw_type!r}"
        raise MalformedRecordError(msg)

    lag_hours = r.hours("LinkLagDuration") or 0.0
    lag_sign = r.number("LinkLag")
    if lag_sign is not None and lag_sign < 0 < lag_hours:
        lag_hours = -lag_hours
    return Predecessor(task_id=target, dependency_type=dependency_type, lag_hours=lag_hours)


def _parse_predecessors(record: dict[str, Any], task_id: str) -> tuple[Predecessor, ...]:
    raw = record.get("Predecessors")
    if raw is None:
        return ()
    if isinstance(raw, dict):
        raw = raw.get("results", [])
    if isinstance(raw, str):
        # Row-number strings from the PWA grid cannot be mapped back to task ids
        logger.warning(f"Task {task_id}: ignoring textual predecessors {raw!r}")
        return ()
    if not isinstance(raw, list):
        msg = f"Task {task_id}: predecessors must be a list, got {type(raw).__name__}"
        raise MalformedRecordError(msg)
    return tuple(_parse_predecessor(link, task_id) for link in raw)


def parse_task(record: dict[str, Any]) -> Task:
    r = _RecordReader("Task", record)
    task_id = r.required_str(("TaskId", "Id"))
    outline_level = r.raw(("TaskOutlineLevel", "OutlineLevel"))
    if isinstance(outline_level, bool) or not isinstance(outline_level, int) or outline_level < 0:
        msg = f"Task {task_id}: OutlineLevel must be a non-negative integer, got {outline_level!r}"
        raise MalformedRecordError(msg)

    return Task(
        id=task_id,
        name=r.required_str("TaskName"),
        outline_level=outline_level,
        parent_id=r.optional_str("ParentTaskId"),
        duration_hours=r.hours(("TaskDuration", "Duration")),
        work_hours=r.hours(("TaskWork", "Work")),
        actual_work_hours=r.hours(("TaskActualWork", "ActualWork")),
        percent_complete=r.number(("TaskPercentCompleted", "PercentComplete")) or 0.0,
        is_milestone=r.flag(("TaskIsMilestone", "IsMilestone")),
        predecessors=_parse_predecessors(record, task_id),
        start=r.date(("TaskStartDate", "Start")),
        finish=r.date(("TaskFinishDate", "Finish")),
        priority=r.integer(("TaskPriority", "Priority")),
        notes=r.optional_str("TaskNotes") or "",
        constraint_type=conversions.normalize_constraint_type(r.raw(("TaskConstraintType", "ConstraintType"))),
        constraint_date=r.date(("TaskConstraintDate", "ConstraintDate")),
        deadline=r.date(("TaskDeadline", "Deadline")),
        late_start=r.date(("TaskLateStart", "LateStart")),
        late_finish=r.date(("TaskLateFinish", "LateFinish")),
        total_slack_hours=r.hours(("TaskTotalSlack", "TotalSlack")),
        free_slack_hours=r.hours(("TaskFreeSlack", "FreeSlack")),
        created=r.date(("TaskCreatedDate", "CreatedDate")),
        modified=r.date(("TaskModifiedDate", "ModifiedDate")),
    )


def _resource_type(record: dict[str, Any]) -> ResourceType:
    raw = record.get("ResourceType")
    if isinstance(raw, str) and raw.capitalize() in _RESOURCE_TYPES:
        return raw.capitalize()  # type: ignore[return-value]
    if isinstance(raw, int) and not isinstance(raw, bool) and raw in _RESOURCE_TYPE_CODES:
        return _RESOURCE_TYPE_CODES[raw]
    if raw not in (None, ""):
        msg = f"Resource {record.get('ResourceId') or record.get('Id')}: unknown resource type {raw!r}"
        raise MalformedRecordError(msg)

    # No explicit type: infer it from the fields PWA fills for each kind
    if (record.get("MaterialLabel") or "").strip():
        return "Material"
    if not record.get("Email") and not record.get("ResourceEmailAddress") and not record.get("CanLevel"):
        return "Cost"
    return "Work"


def parse_resource(record: dict[str, Any]) -> Resource:
    r = _RecordReader("Resource", record)
    return Resource(
        id=r.required_str(("ResourceId", "Id")),
        name=r.required_str(("ResourceName", "Name")),
        resource_type=_resource_type(record),
        email=r.optional_str(("ResourceEmailAddress", "Email")),
        standard_rate=r.number(("ResourceStandardRate", "StandardRate")),
        overtime_rate=r.number(("ResourceOvertimeRate", "OvertimeRate")),
        cost_per_use=r.number(("ResourceCostPerUse", "CostPerUse")),
        max_units=r.number(("ResourceMaxUnits", "MaxUnits")),
        group=r.optional_str(("ResourceDepartments", "Department")),
        code=r.optional_str(("ResourceCode", "Code")),
        is_active=r.flag(("ResourceIsActive", "IsActive"), default=True),
        is_generic=r.flag(("ResourceIsGeneric", "IsGeneric")),
        created=r.date(("ResourceCreatedDate", "CreatedDate")),
        modified=r.date(("ResourceModifiedDate", "ModifiedDate")),
    )


def parse_assignment(record: dict[str, Any]) -> Assignment:
    r = _RecordReader("Assignment", record)
    units = r.number(("AssignmentUnits", "Units"))
    return Assignment(
        id=r.required_str(("AssignmentId", "Id")),
        task_id=r.required_str("TaskId"),
        resource_id=r.required_str("ResourceId"),
        units=units if units is not None else 1.0,
        work_hours=r.hours(("AssignmentWork", "Work")),
        percent_complete=r.number(("AssignmentPercentWorkCompleted", "PercentWorkComplete")) or 0.0,
    )
