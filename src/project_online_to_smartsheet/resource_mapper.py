"""
Resource mapper: one Resources-sheet row per resource, with the cells that
apply to its type.
"""

from __future__ import annotations

import logging
from typing import Final

from . import conversions
from .models import CellValue, ColumnSpec, Contact, MigrationPlan, Resource, ResourceType, RowSpec

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

RESOURCE_NAME_COLUMN: Final[str] = "Resource Name"
RESOURCE_ID_COLUMN: Final[str] = "Project Online Resource ID"

_COMMON_COLUMNS: Final[tuple[str, ...]] = (
    RESOURCE_NAME_COLUMN,
    RESOURCE_ID_COLUMN,
    "Resource Type",
    "Department",
    "Code",
    "Is Active",
    "Project Online Created Date",
    "Project Online Modified Date",
)

# Cost resources only carry the common set
TYPE_COLUMNS: Final[dict[ResourceType, tuple[str, ...]]] = {
    "Work": (
        *_COMMON_COLUMNS,
        "Team Members",
        "Max Units (%)",
        "Standard Rate",
        "Overtime Rate",
        "Cost Per Use",
        "Is Generic",
    ),
    "Material": (*_COMMON_COLUMNS, "Materials", "Standard Rate", "Cost Per Use"),
    "Cost": (*_COMMON_COLUMNS, "Cost Resources"),
}


def resource_columns() -> list[ColumnSpec]:
    return [
        ColumnSpec(RESOURCE_NAME_COLUMN, primary=True, width=250),
        ColumnSpec(RESOURCE_ID_COLUMN, hidden=True, locked=True),
        ColumnSpec("Team Members", "CONTACT_LIST"),
        ColumnSpec("Materials"),
        ColumnSpec("Cost Resources"),
        ColumnSpec("Resource Type", "PICKLIST"),
        ColumnSpec("Max Units (%)"),
        ColumnSpec("Standard Rate"),
        ColumnSpec("Overtime Rate"),
        ColumnSpec("Cost Per Use"),
        ColumnSpec("Department"),
        ColumnSpec("Code"),
        ColumnSpec("Is Active", "CHECKBOX"),
        ColumnSpec("Is Generic", "CHECKBOX"),
        ColumnSpec("Project Online Created Date", "DATE"),
        ColumnSpec("Project Online Modified Date", "DATE"),
    ]


def resource_row(resource: Resource) -> RowSpec:
    values: dict[str, CellValue] = {
        RESOURCE_NAME_COLUMN: resource.name,
        RESOURCE_ID_COLUMN: resource.id,
        "Resource Type": resource.resource_type,
        "Department": resource.group,
        "Code": resource.code,
        "Is Active": resource.is_active,
        "Project Online Created Date": conversions.format_date(resource.created),
        "Project Online Modified Date": conversions.format_date(resource.modified),
        "Team Members": Contact(email=resource.email, name=resource.name) if resource.email else None,
        "Materials": resource.name,
        "Cost Resources": resource.name,
        "Max Units (%)": conversions.units_to_percent(resource.max_units) if resource.max_units is not None else None,
        "Standard Rate": resource.standard_rate,
        "Overtime Rate": resource.overtime_rate,
        "Cost Per Use": resource.cost_per_use,
        "Is Generic": resource.is_generic,
    }
    allowed = TYPE_COLUMNS[resource.resource_type]
    return RowSpec(key=resource.id, cells={title: values[title] for title in allowed})


def map_resources(plan: MigrationPlan, resources: list[Resource]) -> dict[str, Resource]:
    """Fill the Resources sheet of `plan` and return the resources by id."""
    sheet = plan.sheet("resources")
    sheet.columns = resource_columns()
    sheet.rows = [resource_row(resource) for resource in resources]
    sheet.picklist_sources["Resource Type"] = "Resource - Type"

    plan.stats.resources = len(resources)
    logger.debug(f"Mapped {len(resources)} resources")
    return {resource.id: resource for resource in resources}
