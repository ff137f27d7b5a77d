"""Tests for workspace naming and the Summary sheet."""

from __future__ import annotations

import datetime as dt

import pytest

from project_online_to_smartsheet.exceptions import MalformedRecordError
from project_online_to_smartsheet.models import Contact, Project
from project_online_to_smartsheet.project_mapper import (
    PROJECT_ID_COLUMN,
    map_project,
    sanitize_workspace_name,
    sheet_name,
    validate_project,
)


@pytest.mark.unit
class TestWorkspaceName:
    def test_invalid_characters_replaced(self) -> None:
        assert sanitize_workspace_name('Q3: Data/Infra "Refresh"') == "Q3- Data-Infra -Refresh"

    def test_dashes_collapse_and_trim(self) -> None:
        assert sanitize_workspace_name("  /Alpha//Beta/  ") == "Alpha-Beta"

    def test_long_names_truncated(self) -> None:
        name = sanitize_workspace_name("x" * 150)
        assert len(name) == 100
        assert name.endswith("...")


@pytest.mark.unit
class TestSheetName:
    def test_role_suffix(self) -> None:
        assert sheet_name("Relaunch", "tasks") == "Relaunch - Tasks"

    def test_fits_sheet_limit(self) -> None:
        name = sheet_name("A very long workspace name that goes on and on", "resources")
        assert len(name) <= 50
        assert name.endswith(" - Resources")


@pytest.mark.unit
class TestValidateProject:
    def test_errors(self) -> None:
        result = validate_project(Project(id=" ", name="", percent_complete=150))
        assert not result.valid
        assert len(result.errors) == 3

    def test_warnings_only(self) -> None:
        result = validate_project(Project(id="p-1", name="Relaunch"))
        assert result.valid
        assert "Project has no owner information" in result.warnings


@pytest.mark.unit
class TestMapProject:
    def test_declares_three_sheets(self) -> None:
        plan = map_project(Project(id="p-1", name="Relaunch"))
        assert plan.workspace_name == "Relaunch"
        assert [s.name for s in plan.sheets.values()] == ["Relaunch - Summary", "Relaunch - Tasks", "Relaunch - Resources"]

    def test_summary_row(self) -> None:
        project = Project(
            id="p-1",
            name="Relaunch",
            owner="Dana Lee",
            owner_email="dana@contoso.com",
            start=dt.date(2024, 3, 1),
            status="Active",
            percent_complete=40.0,
            priority=500,
        )
        summary = map_project(project).sheet("summary")
        row = summary.rows[0]
        assert row.cells[PROJECT_ID_COLUMN] == "p-1"
        assert row.cells["Owner"] == Contact(email="dana@contoso.com", name="Dana Lee")
        assert row.cells["Start Date"] == "2024-03-01"
        assert row.cells["Priority"] == "Medium"
        assert summary.column(PROJECT_ID_COLUMN).hidden

    def test_owner_without_email_is_text(self) -> None:
        row = map_project(Project(id="p-1", name="Relaunch", owner="Dana Lee")).sheet("summary").rows[0]
        assert row.cells["Owner"] == "Dana Lee"

    def test_invalid_project_rejected(self) -> None:
        with pytest.raises(MalformedRecordError, match="failed validation"):
            map_project(Project(id="p-1", name="///"))
