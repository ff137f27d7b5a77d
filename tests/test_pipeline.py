"""Tests for the transformation pipeline as a whole."""

from __future__ import annotations

import dataclasses

import pytest
from conftest import make_project_data

from project_online_to_smartsheet.exceptions import DanglingReferenceError
from project_online_to_smartsheet.models import Assignment
from project_online_to_smartsheet.pipeline import build_plan
from project_online_to_smartsheet.task_mapper import PREDECESSORS_COLUMN


@pytest.mark.unit
class TestBuildPlan:
    def test_plan_layout(self) -> None:
        plan = build_plan(make_project_data())

        assert plan.project_id == "p-1"
        assert plan.workspace_name == "Website Relaunch"
        assert set(plan.sheets) == {"summary", "tasks", "resources"}
        assert plan.stats.tasks == 4
        assert plan.stats.resources == 3
        assert plan.stats.assignments == 3

    def test_task_rows_in_outline_order(self) -> None:
        tasks = build_plan(make_project_data()).sheet("tasks")

        assert [row.key for row in tasks.rows] == ["t-root", "t-a", "t-b", "t-c"]
        assert tasks.row("t-b").cells[PREDECESSORS_COLUMN] == "2FS"
        assert tasks.row("t-c").cells[PREDECESSORS_COLUMN] == "3FS+1d"

    def test_assignment_columns_follow_task_columns(self) -> None:
        titles = [c.title for c in build_plan(make_project_data()).sheet("tasks").columns]
        assert titles.index("Work Resource") > titles.index("Project Online Modified Date")
        assert "Dana Lee Allocation %" in titles
        assert "Steel Work (hrs)" in titles

    def test_dangling_assignment_aborts(self) -> None:
        data = make_project_data()
        data = dataclasses.replace(data, assignments=[*data.assignments, Assignment("a-9", "t-gone", "r-1")])
        with pytest.raises(DanglingReferenceError):
            build_plan(data)

    def test_project_without_tasks(self) -> None:
        data = make_project_data()
        plan = build_plan(dataclasses.replace(data, tasks=[], resources=[], assignments=[]))
        assert plan.sheet("tasks").rows == []
        assert len(plan.sheet("summary").rows) == 1
