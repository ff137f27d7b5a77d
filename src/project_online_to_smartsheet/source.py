"""
Extraction of a project and its tasks, resources and assignments from the Project Online OData API.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Final

import requests

from . import odata
from .exceptions import (
    AuthExpiredError,
    HttpStatusError,
    MalformedHierarchyError,
    MalformedRecordError,
    RetriesExhaustedError,
)
from .models import Assignment, Project, ProjectData, Resource, Task
from .resilience import ErrorKind, RetryExecutor, parse_retry_after

if TYPE_CHECKING:
    from .protocols import AccessTokenProvider

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE: Final[int] = 100
_REQUEST_TIMEOUT: Final[float] = 60.0


def drop_project_summary_tasks(tasks: list[Task]) -> list[Task]:
    """Remove the outline-level-0 project summary task and make its children roots."""
    summary_ids = {task.id for task in tasks if task.outline_level == 0}
    if not summary_ids:
        return tasks
    result: list[Task] = []
    for task in tasks:
        if task.id in summary_ids:
            continue
        if task.parent_id in summary_ids:
            task = dataclasses.replace(task, parent_id=None)
        result.append(task)
    logger.debug(f"Dropped {len(summary_ids)} project summary task(s)")
    return result


def validate_task_order(tasks: list[Task]) -> None:
    """Check that the tasks form a forest listed parent-first.

    Raises:
        MalformedHierarchyError: If a parent is missing, listed after its child,
            or the outline levels do not nest.
    """
    levels: dict[str, int] = {}
    for position, task in enumerate(tasks, start=1):
        if task.id in levels:
            msg = f"Task {task.id} appears more than once (position {position})"
            raise MalformedHierarchyError(msg)
        if task.parent_id is None:
            if task.outline_level != 1:
                msg = f"Root task {task.id} has outline level {task.outline_level}, expected 1"
                raise MalformedHierarchyError(msg)
        elif task.parent_id == task.id:
            msg = f"Task {task.id} is its own parent"
            raise MalformedHierarchyError(msg)
        elif task.parent_id not in levels:
            msg = f"Task {task.id} (position {position}) refers to parent {task.parent_id} which does not precede it"
            raise MalformedHierarchyError(msg)
        elif task.outline_level != levels[task.parent_id] + 1:
            msg = (
                f"Task {task.id} has outline level {task.outline_level} "
                f"but its parent {task.parent_id} is at level {levels[task.parent_id]}"
            )
            raise MalformedHierarchyError(msg)
        levels[task.id] = task.outline_level


class ProjectOnlineClient:
    """Reads ProjectData collections page by page.

    Every request goes through the retry executor (and its rate governor). A 401
    invalidates the current access token, obtains a fresh one and repeats the
    same page.
    """

    def __init__(
        self,
        project_online_url: str,
        auth: AccessTokenProvider,
        executor: RetryExecutor,
        *,
        session: requests.Session | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_auth_retries: int = 1,
    ) -> None:
        self.root: str = odata.service_root(project_online_url)
        self.page_size: int = page_size
        self.max_auth_retries: int = max_auth_retries
        self._auth: AccessTokenProvider = auth
        self._executor: RetryExecutor = executor
        self._session: requests.Session = session or requests.Session()

    def _get_sync(self, url: str, token: str) -> dict[str, Any]:
        response = self._session.get(
            url,
            headers={"Authorization": f"Bearer {token}", "Accept": odata.ODATA_ACCEPT},
            timeout=_REQUEST_TIMEOUT,
        )
        if not response.ok:
            raise HttpStatusError(
                response.status_code,
                response.text[:500] or response.reason,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        try:
            payload = response.json()
        except ValueError as e:
            msg = f"Response from {url} is not JSON"
            raise MalformedRecordError(msg) from e
        if not isinstance(payload, dict):
            msg = f"Response from {url} is not a JSON object"
            raise MalformedRecordError(msg)
        return payload

    async def get_json(self, url: str) -> dict[str, Any]:
        auth_retries = 0
        while True:
            token = await self._auth.get_access_token()
            outcome = await self._executor.call_blocking(lambda: self._get_sync(url, token), description=f"GET {url}")
            if outcome.kind is ErrorKind.AUTH_EXPIRED:
                if auth_retries >= self.max_auth_retries:
                    msg = f"Project Online rejected the access token for {url}"
                    raise AuthExpiredError(msg) from outcome.error
                auth_retries += 1
                logger.warning(f"Access token rejected for {url}, re-authenticating")
                self._auth.invalidate()
                continue
            return outcome.unwrap()

    async def iter_pages(self, url: str) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield each page's records, following continuation links until there are none."""
        next_url: str | None = url
        page = 0
        while next_url:
            payload = await self.get_json(next_url)
            records, next_url = odata.collection_page(payload, self.root)
            page += 1
            logger.debug(f"Fetched page {page} ({len(records)} records) from {url}")
            yield records

    async def fetch_all(self, resource: str, **query: Any) -> list[dict[str, Any]]:  # noqa: ANN401
        url = odata.build_query_url(self.root, resource, top=self.page_size, **query)
        records: list[dict[str, Any]] = []
        async for page in self.iter_pages(url):
            records.extend(page)
        return records

    async def get_project(self, project_id: str) -> Project:
        payload = await self.get_json(f"{self.root}/Projects('{project_id}')")
        return odata.parse_project(odata.single_entity(payload))

    async def list_projects(self) -> list[Project]:
        records = await self.fetch_all("Projects", orderby="ProjectName")
        return [odata.parse_project(record) for record in records]

    async def get_tasks(self, project_id: str) -> list[Task]:
        records = await self.fetch_all(
            "Tasks", filter_expr=odata.guid_filter("ProjectId", project_id), orderby="TaskIndex"
        )
        return [odata.parse_task(record) for record in records]

    async def get_resources(self) -> list[Resource]:
        records = await self.fetch_all("Resources")
        return [odata.parse_resource(record) for record in records]

    async def get_assignments(self, project_id: str) -> list[Assignment]:
        records = await self.fetch_all("Assignments", filter_expr=odata.guid_filter("ProjectId", project_id))
        return [odata.parse_assignment(record) for record in records]

    async def extract_project(self, project_id: str) -> ProjectData:
        """Fetch everything needed to migrate one project.

        A project without tasks is returned as-is with empty collections.

        Raises:
            MalformedHierarchyError: If the task outline is not parent-first.
            MalformedRecordError: If a record fails validation.
            RetriesExhaustedError: If a page kept failing transiently.
        """
        logger.info(f"Extracting project {project_id}")
        project = await self.get_project(project_id)

        tasks = drop_project_summary_tasks(await self.get_tasks(project_id))
        if not tasks:
            logger.info(f"Project '{project.name}' has no tasks")
            return ProjectData(project=project)
        validate_task_order(tasks)

        resources = await self.get_resources()
        assignments = await self.get_assignments(project_id)
        logger.info(
            f"Extracted '{project.name}': {len(tasks)} tasks, {len(resources)} resources, "
            f"{len(assignments)} assignments"
        )
        return ProjectData(project=project, tasks=tasks, resources=resources, assignments=assignments)

    async def test_connection(self) -> bool:
        """Check that the API answers with the current credentials."""
        try:
            await self.get_json(odata.build_query_url(self.root, "Projects", top=1))
        except (AuthExpiredError, HttpStatusError, RetriesExhaustedError) as e:
            logger.error(f"Project Online connection test failed: {e}")
            return False
        return True
