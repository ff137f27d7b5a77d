"""
Command-line interface for the Project Online to Smartsheet migration tool.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .auth import DeviceCodeAuthProvider, TokenCacheStore, scopes_for
from .config import Settings
from .exceptions import ConfigurationError
from .orchestrator import MigrationResult, Migrator
from .resilience import RateGovernor, RetryExecutor, RetryPolicy
from .smartsheet import SmartsheetGateway
from .source import ProjectOnlineClient
from .standards import StandardsWorkspaceCache
from .utils import setup_logging

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Migrate Microsoft Project Online projects to Smartsheet workspaces")

    _ = parser.add_argument("project_ids", nargs="*", metavar="PROJECT_ID", help="Project Online project GUID(s)")

    _ = parser.add_argument("--list", action="store_true", help="List the projects available in Project Online and exit")
    _ = parser.add_argument(
        "--validate", action="store_true", help="Check the configuration and the Project Online connection, then exit"
    )
    _ = parser.add_argument(
        "--dry-run", action="store_true", help="Extract and transform only, without writing to Smartsheet"
    )
    _ = parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Fail instead of starting a device-code sign-in when no cached token is usable",
    )
    _ = parser.add_argument(
        "--smartsheet-pass-token", help="Path for Smartsheet token in pass utility (default: smartsheet/api_token)"
    )
    _ = parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    if not (args.list or args.validate) and not args.project_ids:
        parser.error("at least one PROJECT_ID is required unless --list or --validate is given")
    return args


def _executor(settings: Settings) -> RetryExecutor:
    policy = RetryPolicy(max_attempts=settings.max_retries, base_delay=settings.retry_delay)
    return RetryExecutor(RateGovernor(settings.rate_limit_per_minute), policy=policy)


def build_migrator(settings: Settings, *, interactive: bool = True) -> tuple[Migrator, ProjectOnlineClient]:
    """Wire the clients, caches and orchestrator for a run."""
    auth = DeviceCodeAuthProvider(
        settings.tenant_id,
        settings.client_id,
        scopes_for(settings.project_online_url),
        executor=_executor(settings),
        cache_store=TokenCacheStore(settings.token_cache_dir, settings.tenant_id, settings.client_id),
        interactive=interactive,
    )
    # Each API gets its own rate window
    source = ProjectOnlineClient(settings.project_online_url, auth, _executor(settings), page_size=settings.page_size)
    gateway = SmartsheetGateway(settings.smartsheet_token, _executor(settings))
    standards = StandardsWorkspaceCache(gateway, override_id=settings.standards_workspace_id)
    migrator = Migrator(source, gateway, standards, auth=auth, batch_size=settings.batch_size)
    return migrator, source


def _report(result: MigrationResult) -> None:
    if result.success:
        stats = result.stats
        action = "would be written to" if result.dry_run else "written to"
        print(
            f"{result.project_id}: {stats.tasks} tasks, {stats.resources} resources, "
            f"{stats.assignments} assignments {action} '{result.workspace_name}'"
            + (f" (workspace {result.workspace_id})" if result.workspace_id else "")
        )
    else:
        print(f"{result.project_id}: {result.error}", file=sys.stderr)


async def _run(args: argparse.Namespace, settings: Settings) -> bool:
    migrator, source = build_migrator(settings, interactive=not args.non_interactive)

    if args.validate:
        connected = await source.test_connection()
        print("Project Online connection OK" if connected else "Project Online connection failed")
        return connected

    if args.list:
        for project in await source.list_projects():
            print(f"{project.id}\t{project.name}")
        return True

    results = await migrator.migrate_many(args.project_ids, dry_run=args.dry_run)
    for result in results:
        _report(result)
    return all(result.success for result in results)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)

    # Setup logging
    verbose: bool = getattr(args, "verbose", False)
    setup_logging(verbose=verbose)

    try:
        settings = Settings.from_env(smartsheet_pass_path=args.smartsheet_pass_token)
        success = asyncio.run(_run(args, settings))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception:
        logger.exception("Migration failed")
        sys.exit(1)

    sys.exit(0 if success else 1)
