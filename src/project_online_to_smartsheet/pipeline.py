"""
Transformation pipeline: runs the four mappers in order over one extraction batch.
"""

from __future__ import annotations

import logging

from .assignment_mapper import map_assignments
from .models import MigrationPlan, ProjectData
from .project_mapper import map_project
from .resource_mapper import map_resources
from .task_mapper import map_tasks

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


def build_plan(data: ProjectData) -> MigrationPlan:
    """Turn extracted entities into the destination layout.

    The order matters: the task mapper needs the sheets declared by the project
    mapper, and the assignment mapper writes into task rows and looks up the
    resources mapped before it.

    Raises:
        MalformedRecordError, MalformedHierarchyError, DanglingReferenceError:
            If the batch cannot be migrated consistently.
    """
    plan = map_project(data.project)
    map_tasks(plan, data.tasks)
    resources = map_resources(plan, data.resources)
    map_assignments(plan, data.tasks, resources, data.assignments)
    logger.info(
        f"Planned workspace '{plan.workspace_name}': {plan.stats.tasks} task rows, "
        f"{plan.stats.resources} resource rows, {plan.stats.assignments} assignments"
    )
    return plan
