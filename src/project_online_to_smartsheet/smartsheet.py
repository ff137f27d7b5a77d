"""
Smartsheet REST API 2.0 gateway.

A thin typed wrapper over the workspace, sheet, column and row endpoints. Each
call runs in a worker thread through the retry executor, so rate limiting
(429) and server errors are retried and every request counts against the rate
governor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Final

import requests

from .exceptions import HttpStatusError, MigrationError
from .models import (
    CellValue,
    ColumnInfo,
    ColumnSpec,
    Contact,
    MultiContact,
    MultiPicklist,
    RowInfo,
    SheetInfo,
    SheetRef,
    WorkspaceInfo,
    WorkspaceRef,
)
from .resilience import RetryExecutor, parse_retry_after

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

API_BASE_URL: Final[str] = "https://api.smartsheet.com/2.0"
MAX_SHEET_NAME_LENGTH: Final[int] = 50
_REQUEST_TIMEOUT: Final[float] = 60.0
_DELETE_BATCH: Final[int] = 400


def _contact_object(contact: Contact) -> dict[str, Any]:
    obj: dict[str, Any] = {"objectType": "CONTACT", "email": contact.email}
    if contact.name:
        obj["name"] = contact.name
    return obj


def cell_payload(column_id: int, value: CellValue) -> dict[str, Any]:
    """Serialise one cell value for the rows endpoints."""
    if isinstance(value, Contact):
        return {"columnId": column_id, "objectValue": _contact_object(value)}
    if isinstance(value, MultiContact):
        return {
            "columnId": column_id,
            "objectValue": {"objectType": "MULTI_CONTACT", "values": [_contact_object(c) for c in value.contacts]},
        }
    if isinstance(value, MultiPicklist):
        return {"columnId": column_id, "objectValue": {"objectType": "MULTI_PICKLIST", "values": list(value.values)}}
    return {"columnId": column_id, "value": value}


def column_payload(column: ColumnSpec, *, index: int | None = None, for_create: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {"title": column.title, "type": column.type}
    if column.primary:
        payload["primary"] = True
    if column.width:
        payload["width"] = column.width
    if column.options:
        payload["options"] = list(column.options)
        if column.type == "PICKLIST":
            payload["validation"] = True
    if not for_create:
        # Create Sheet ignores these; they are applied with a column update instead
        if column.hidden:
            payload["hidden"] = True
        if column.locked:
            payload["locked"] = True
    if index is not None:
        payload["index"] = index
    return payload


def _parse_column(raw: dict[str, Any]) -> ColumnInfo:
    return ColumnInfo(
        id=raw["id"],
        title=raw.get("title", ""),
        type=raw.get("type", "TEXT_NUMBER"),
        primary=bool(raw.get("primary", False)),
        index=raw.get("index", 0),
        options=list(raw.get("options", [])),
    )


def _parse_row(raw: dict[str, Any]) -> RowInfo:
    return RowInfo(
        id=raw["id"],
        row_number=raw.get("rowNumber", 0),
        parent_id=raw.get("parentId"),
        cells={cell["columnId"]: cell.get("value") for cell in raw.get("cells", []) if "columnId" in cell},
    )


def _parse_sheet(raw: dict[str, Any]) -> SheetInfo:
    return SheetInfo(
        id=raw["id"],
        name=raw.get("name", ""),
        columns=[_parse_column(column) for column in raw.get("columns", [])],
        rows=[_parse_row(row) for row in raw.get("rows", [])],
    )


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason
    if isinstance(body, dict) and "message" in body:
        return f"{body['message']} (errorCode {body.get('errorCode')})"
    return str(body)[:500]


class SmartsheetGateway:
    """DestinationGateway implementation backed by the Smartsheet REST API."""

    def __init__(
        self,
        api_token: str,
        executor: RetryExecutor,
        *,
        base_url: str = API_BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        if not api_token:
            msg = "A Smartsheet API token is required"
            raise MigrationError(msg)
        self.base_url: str = base_url.rstrip("/")
        self._executor: RetryExecutor = executor
        self._session: requests.Session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {api_token}", "Content-Type": "application/json"})

    def _request_sync(
        self,
        method: str,
        path: str,
        *,
        payload: Any = None,  # noqa: ANN401
        params: dict[str, str] | None = None,
    ) -> Any:  # noqa: ANN401
        response = self._session.request(
            method, f"{self.base_url}{path}", json=payload, params=params, timeout=_REQUEST_TIMEOUT
        )
        if not response.ok:
            raise HttpStatusError(
                response.status_code,
                _error_message(response),
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if not response.content:
            return None
        body = response.json()
        if isinstance(body, dict) and "result" in body:
            return body["result"]
        return body

    async def _call(
        self,
        method: str,
        path: str,
        *,
        payload: Any = None,  # noqa: ANN401
        params: dict[str, str] | None = None,
    ) -> Any:  # noqa: ANN401
        outcome = await self._executor.call_blocking(
            lambda: self._request_sync(method, path, payload=payload, params=params),
            description=f"Smartsheet {method} {path}",
        )
        return outcome.unwrap()

    async def list_workspaces(self) -> list[WorkspaceRef]:
        body = await self._call("GET", "/workspaces", params={"includeAll": "true"})
        return [WorkspaceRef(id=raw["id"], name=raw.get("name", "")) for raw in body.get("data", [])]

    async def get_workspace(self, workspace_id: int) -> WorkspaceInfo | None:
        try:
            body = await self._call("GET", f"/workspaces/{workspace_id}")
        except HttpStatusError as e:
            if e.status == 404:
                logger.debug(f"Workspace {workspace_id} not found")
                return None
            raise
        return WorkspaceInfo(
            id=body["id"],
            name=body.get("name", ""),
            sheets=[SheetRef(id=raw["id"], name=raw.get("name", "")) for raw in body.get("sheets", [])],
        )

    async def create_workspace(self, name: str) -> WorkspaceRef:
        """Create a workspace, at most once even when a response is lost.

        A POST that timed out may still have created the workspace. Before each
        retry the workspaces are listed again, and a workspace of that name
        which did not exist before the first attempt is taken as ours.
        """
        existing = {ref.id for ref in await self.list_workspaces() if ref.name == name}
        attempted = False

        async def attempt() -> WorkspaceRef:
            nonlocal attempted
            if attempted:
                for ref in await self.list_workspaces():
                    if ref.name == name and ref.id not in existing:
                        logger.info(f"Workspace '{name}' ({ref.id}) was created by an unanswered request, adopting it")
                        return ref
            attempted = True
            body = await asyncio.to_thread(self._request_sync, "POST", "/workspaces", payload={"name": name})
            return WorkspaceRef(id=body["id"], name=body.get("name", name))

        ref = (await self._executor.execute(attempt, description="Smartsheet POST /workspaces")).unwrap()
        logger.info(f"Created workspace '{name}' ({ref.id})")
        return ref

    async def delete_workspace(self, workspace_id: int) -> None:
        await self._call("DELETE", f"/workspaces/{workspace_id}")
        logger.info(f"Deleted workspace {workspace_id}")

    async def create_sheet(self, workspace_id: int, name: str, columns: list[ColumnSpec]) -> SheetInfo:
        if len(name) > MAX_SHEET_NAME_LENGTH:
            msg = f"Sheet name '{name}' exceeds {MAX_SHEET_NAME_LENGTH} characters"
            raise MigrationError(msg)
        payload = {"name": name, "columns": [column_payload(column, for_create=True) for column in columns]}
        body = await self._call("POST", f"/workspaces/{workspace_id}/sheets", payload=payload)
        sheet = _parse_sheet(body)
        logger.info(f"Created sheet '{name}' ({sheet.id}) in workspace {workspace_id}")

        ids = sheet.column_ids()
        for column in columns:
            if (column.hidden or column.locked) and column.title in ids:
                await self._call(
                    "PUT",
                    f"/sheets/{sheet.id}/columns/{ids[column.title]}",
                    payload={"hidden": column.hidden, "locked": column.locked},
                )
        return sheet

    async def get_sheet(self, sheet_id: int) -> SheetInfo:
        body = await self._call("GET", f"/sheets/{sheet_id}")
        return _parse_sheet(body)

    async def add_columns(self, sheet_id: int, columns: list[ColumnSpec], index: int) -> list[ColumnInfo]:
        if not columns:
            return []
        payload = [column_payload(column, index=index + offset) for offset, column in enumerate(columns)]
        body = await self._call("POST", f"/sheets/{sheet_id}/columns", payload=payload)
        added = body if isinstance(body, list) else [body]
        logger.debug(f"Added {len(added)} column(s) to sheet {sheet_id}")
        return [_parse_column(raw) for raw in added]

    async def update_column(self, sheet_id: int, column_id: int, column: ColumnSpec) -> None:
        payload = column_payload(column)
        # Renaming the primary column is not what callers intend here
        payload.pop("primary", None)
        await self._call("PUT", f"/sheets/{sheet_id}/columns/{column_id}", payload=payload)

    async def add_rows(
        self,
        sheet_id: int,
        rows: list[dict[int, CellValue]],
        *,
        parent_id: int | None = None,
    ) -> list[RowInfo]:
        if not rows:
            return []
        payload: list[dict[str, Any]] = []
        for cells in rows:
            row: dict[str, Any] = {
                "toBottom": True,
                "cells": [cell_payload(column_id, value) for column_id, value in cells.items() if value is not None],
            }
            if parent_id is not None:
                row["parentId"] = parent_id
            payload.append(row)
        body = await self._call("POST", f"/sheets/{sheet_id}/rows", payload=payload)
        created = body if isinstance(body, list) else [body]
        return [_parse_row(raw) for raw in created]

    async def update_rows(self, sheet_id: int, updates: dict[int, dict[int, CellValue]]) -> None:
        if not updates:
            return
        payload = [
            {"id": row_id, "cells": [cell_payload(column_id, value) for column_id, value in cells.items()]}
            for row_id, cells in updates.items()
        ]
        await self._call("PUT", f"/sheets/{sheet_id}/rows", payload=payload)

    async def delete_rows(self, sheet_id: int, row_ids: list[int]) -> None:
        for start in range(0, len(row_ids), _DELETE_BATCH):
            batch = row_ids[start : start + _DELETE_BATCH]
            await self._call(
                "DELETE",
                f"/sheets/{sheet_id}/rows",
                params={"ids": ",".join(str(row_id) for row_id in batch), "ignoreRowsNotFound": "true"},
            )
