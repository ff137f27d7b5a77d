"""
Runtime settings, read from environment variables.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from . import utils
from .exceptions import ConfigurationError

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "SMARTSHEET_API_TOKEN"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "smartsheet/api_token"  # noqa: S105
DEFAULT_TOKEN_CACHE_DIR: Final[Path] = Path.home() / ".project-online-tokens"


def get_smartsheet_token(pass_path: str | None = None, environ: Mapping[str, str] | None = None) -> str | None:
    """Get Smartsheet token from pass path, env var SMARTSHEET_API_TOKEN, or default pass location."""
    environ = os.environ if environ is None else environ

    # Try pass path first
    if pass_path:
        return utils.get_pass_value(pass_path)

    # Try environment variable
    token: str | None = environ.get(_TOKEN_ENV_VAR)
    if token:
        return token

    # Try default pass path
    try:
        return utils.get_pass_value(_DEFAULT_TOKEN_PASS_PATH)
    except (ValueError, utils.PassError) as e:
        logger.warning(f"No Smartsheet token specified nor found: {e}")
        return None


def _required(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, "").strip()
    if not value:
        msg = f"Environment variable {name} is required"
        raise ConfigurationError(msg)
    return value


def _parse(environ: Mapping[str, str], name: str, kind: type[int] | type[float]) -> int | float | None:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return kind(raw)
    except ValueError as e:
        msg = f"{name} must be a {kind.__name__}, got '{raw}'"
        raise ConfigurationError(msg) from e


def _int(environ: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    value = _parse(environ, name, int)
    if value is None:
        return default
    if value < minimum:
        msg = f"{name} must be at least {minimum}, got {value}"
        raise ConfigurationError(msg)
    return int(value)


def _float(environ: Mapping[str, str], name: str, default: float, *, minimum: float = 0.0) -> float:
    value = _parse(environ, name, float)
    if value is None:
        return default
    if value < minimum:
        msg = f"{name} must be at least {minimum}, got {value}"
        raise ConfigurationError(msg)
    return float(value)


@dataclass(frozen=True)
class Settings:
    project_online_url: str
    tenant_id: str
    client_id: str
    smartsheet_token: str
    standards_workspace_id: int | None = None
    token_cache_dir: Path = DEFAULT_TOKEN_CACHE_DIR
    max_retries: int = 5
    retry_delay: float = 1.0
    rate_limit_per_minute: int = 300
    batch_size: int = 100
    page_size: int = 100

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        smartsheet_pass_path: str | None = None,
    ) -> Settings:
        """Build settings from the environment.

        Raises:
            ConfigurationError: If a required variable is missing or a value is invalid.
        """
        environ = os.environ if environ is None else environ

        url = _required(environ, "PROJECT_ONLINE_URL").rstrip("/")
        if not url.startswith("https://"):
            msg = f"PROJECT_ONLINE_URL must be an https:// URL, got '{url}'"
            raise ConfigurationError(msg)

        token = get_smartsheet_token(smartsheet_pass_path, environ)
        if not token:
            msg = f"Smartsheet API token not found: set {_TOKEN_ENV_VAR} or store it in pass at {_DEFAULT_TOKEN_PASS_PATH}"
            raise ConfigurationError(msg)

        standards_id = _parse(environ, "PMO_STANDARDS_WORKSPACE_ID", int)
        cache_dir = environ.get("TOKEN_CACHE_DIR", "").strip()
        return cls(
            project_online_url=url,
            tenant_id=_required(environ, "TENANT_ID"),
            client_id=_required(environ, "CLIENT_ID"),
            smartsheet_token=token,
            standards_workspace_id=int(standards_id) if standards_id is not None else None,
            token_cache_dir=Path(cache_dir).expanduser() if cache_dir else DEFAULT_TOKEN_CACHE_DIR,
            max_retries=_int(environ, "MAX_RETRIES", 5),
            retry_delay=_float(environ, "RETRY_DELAY", 1.0),
            rate_limit_per_minute=_int(environ, "RATE_LIMIT_PER_MINUTE", 300),
            batch_size=_int(environ, "BATCH_SIZE", 100),
            page_size=_int(environ, "PAGE_SIZE", 100),
        )
