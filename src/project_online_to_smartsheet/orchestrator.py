"""Migration orchestrator that drives one project from Project Online to Smartsheet.

The Migrator coordinates the source extractor, the transformation pipeline and
the provisioning layer. Each project passes through four phases:

Phase 1: auth
    - Make sure an access token is available before any extraction call
      (device-code sign-in happens here when the cache holds nothing usable)

Phase 2: extract
    - Fetch the project, its tasks, the resources and its assignments
    - Records are validated as they are parsed; a task outline that is not
      parent-first aborts the project here

Phase 3: transform
    - Run the project, task, resource and assignment mappers in that order
    - Produces a MigrationPlan; nothing has been written to Smartsheet yet

Phase 4: load
    - Resolve the shared standards workspace (single-flight, cached)
    - Find the workspace already correlated to this project, or create one
    - Create missing sheets and columns, apply picklists, replace rows
    - Re-read the sheets to confirm every row landed

Progress within the load phase is tracked with MigrationState:

    NOT_STARTED -> WORKSPACE_RESOLVED -> SHEETS_CREATED
                -> ROWS_POPULATED -> PUBLISHED -> COMPLETE

Error Handling
--------------
A failure in any phase ends that project's run with a PhaseError naming the
phase, the underlying cause, the state reached and the workspace involved.
Because provisioning is idempotent, re-running the same project after a
failure picks up the same workspace instead of creating another one.

Projects are independent: migrate_many() runs them concurrently and a failure
in one never affects the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import PhaseError
from .pipeline import build_plan
from .provisioning import DEFAULT_BATCH_SIZE, MigrationState, WorkspaceLoader, WorkspaceResolver

if TYPE_CHECKING:
    from .models import MigrationPlan, ProjectData
    from .protocols import AccessTokenProvider, DestinationGateway, ProjectSource
    from .standards import StandardsWorkspaceCache

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class MigrationStats:
    """Statistics collected during migration."""

    tasks: int = 0
    resources: int = 0
    assignments: int = 0
    rows_written: int = 0
    rows_deleted: int = 0
    columns_added: int = 0
    workspace_created: bool = False


@dataclass
class MigrationResult:
    """Result of migrating one project."""

    project_id: str
    success: bool = False
    state: MigrationState = MigrationState.NOT_STARTED
    stats: MigrationStats = field(default_factory=MigrationStats)
    workspace_id: int | None = None
    workspace_name: str | None = None
    phase: str | None = None
    error: PhaseError | None = None
    dry_run: bool = False


class Migrator:
    """Orchestrates migration of Project Online projects into Smartsheet workspaces.

    Usage:
        migrator = Migrator(ProjectOnlineClient(...), SmartsheetGateway(...), StandardsWorkspaceCache(gateway))
        result = await migrator.migrate(project_id)

    The migrator keeps no per-project state between runs; everything about a
    run is returned in its MigrationResult. The standards cache is the only
    thing shared between runs.
    """

    _source: ProjectSource
    _gateway: DestinationGateway

    def __init__(
        self,
        source: ProjectSource,
        gateway: DestinationGateway,
        standards: StandardsWorkspaceCache,
        *,
        auth: AccessTokenProvider | None = None,
        resolver: WorkspaceResolver | None = None,
        loader: WorkspaceLoader | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        """Initialize the migrator.

        Args:
            source: Project Online extractor
            gateway: Smartsheet gateway
            standards: Shared standards workspace cache
            auth: Token provider to sign in with before extraction starts
            resolver: Workspace resolver (defaults to one over `gateway`)
            loader: Workspace loader (defaults to one over `gateway`)
            batch_size: Rows per insert call for the default loader
        """
        self._source = source
        self._gateway = gateway
        self._standards: StandardsWorkspaceCache = standards
        self._auth: AccessTokenProvider | None = auth
        self._resolver: WorkspaceResolver = resolver or WorkspaceResolver(gateway)
        self._loader: WorkspaceLoader = loader or WorkspaceLoader(gateway, batch_size=batch_size)

    async def migrate(self, project_id: str, *, dry_run: bool = False) -> MigrationResult:
        """Migrate a single project.

        Args:
            project_id: Project Online project GUID
            dry_run: Extract and transform only; write nothing to Smartsheet

        Returns:
            MigrationResult; on failure `error` holds the PhaseError
        """
        result = MigrationResult(project_id=project_id, dry_run=dry_run)
        try:
            if self._auth is not None:
                result.phase = "auth"
                await self._auth.get_access_token()

            result.phase = "extract"
            data = await self._source.extract_project(project_id)

            result.phase = "transform"
            plan = self._transform(data, result)

            if dry_run:
                logger.info(f"Dry run: skipping load of '{plan.workspace_name}'")
            else:
                result.phase = "load"
                await self._load(plan, result)
        except Exception as e:  # noqa: BLE001 - reported in the result
            phase = result.phase or "auth"
            result.error = PhaseError(phase, e, state=result.state.value, workspace_id=result.workspace_id)
            logger.error(f"Project {project_id}: {result.error}")
            logger.debug("Failure details", exc_info=e)
            return result

        result.phase = None
        result.success = True
        logger.info(f"Project {project_id} migrated ({result.state.value})")
        return result

    async def migrate_many(self, project_ids: list[str], *, dry_run: bool = False) -> list[MigrationResult]:
        """Migrate several projects concurrently. Results are in input order."""
        results = await asyncio.gather(*(self.migrate(pid, dry_run=dry_run) for pid in project_ids))
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Migrated {len(results) - failed} of {len(results)} project(s)")
        return list(results)

    def _transform(self, data: ProjectData, result: MigrationResult) -> MigrationPlan:
        plan = build_plan(data)
        result.workspace_name = plan.workspace_name
        result.stats.tasks = plan.stats.tasks
        result.stats.resources = plan.stats.resources
        result.stats.assignments = plan.stats.assignments
        return plan

    async def _load(self, plan: MigrationPlan, result: MigrationResult) -> None:
        def advance(state: MigrationState) -> None:
            result.state = state
            logger.debug(f"Project {plan.project_id}: {state.value}")

        standards = await self._standards.get()

        resolved = await self._resolver.resolve(plan)
        result.workspace_id = resolved.workspace.id
        result.stats.workspace_created = resolved.created
        advance(MigrationState.WORKSPACE_RESOLVED)

        loaded = await self._loader.load(plan, resolved.workspace, standards, on_state=advance)
        await self._loader.verify(plan, loaded)
        advance(MigrationState.PUBLISHED)

        result.stats.rows_written = sum(loaded.rows_written.values())
        result.stats.rows_deleted = loaded.rows_deleted
        result.stats.columns_added = loaded.columns_added
        advance(MigrationState.COMPLETE)
