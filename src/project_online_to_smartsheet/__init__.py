"""
Project Online to Smartsheet Migration Tool

Migrates Microsoft Project Online projects (tasks with their outline,
resources and assignments) into Smartsheet workspaces. Re-running a migration
updates the project's existing workspace instead of creating a new one.
"""

from __future__ import annotations

from .cli import main
from .exceptions import MigrationError, PhaseError
from .orchestrator import MigrationResult, Migrator
from .pipeline import build_plan
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "MigrationError",
    "MigrationResult",
    "Migrator",
    "PhaseError",
    "build_plan",
    "main",
    "setup_logging",
]
