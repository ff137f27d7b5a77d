"""
Utility functions for the Project Online to Smartsheet migration tool.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from subprocess import CompletedProcess


class PassError(Exception):
    """Base class for pass-related errors."""


class InvalidPassPathError(PassError):
    """Raised when the pass path format is invalid."""


class PassphraseRequiredError(PassError):
    """Raised when a GPG passphrase is required for the pass utility."""


def setup_logging(*, verbose: bool = False) -> None:
    """Configure logging for the migration process."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler("migration.log", mode="a")],
    )
    # Per-request connection chatter drowns out progress messages
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("msal").setLevel(logging.WARNING)


def _validate_pass_path(pass_path: str) -> None:
    if not re.fullmatch(r"(?:[A-Za-z0-9_-]+)(?:/[A-Za-z0-9_-]+)*", pass_path):
        msg = f"Invalid pass path: {pass_path}"
        raise ValueError(msg)


def _run_pass(pass_path: str, passphrase: str | None = None) -> CompletedProcess[str]:
    if passphrase is None:
        return subprocess.run(["pass", pass_path], capture_output=True, text=True, check=True)  # noqa: S603, S607
    env = os.environ.copy() | {"PASSWORD_STORE_GPG_OPTS": "--pinentry-mode=loopback --passphrase-fd 0"}
    return subprocess.run(  # noqa: S603
        ["pass", pass_path], input=passphrase, capture_output=True, text=True, check=True, env=env  # noqa: S607
    )


def get_pass_value(pass_path: str) -> str:
    """Get value from pass utility at specified path."""
    _validate_pass_path(pass_path)

    try:
        result = _run_pass(pass_path)
    except FileNotFoundError as e:
        msg = "The pass utility is not installed"
        raise PassError(msg) from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.lower()
        if e.returncode == 1 and "not in the password store" in stderr:
            msg = f"Pass path '{pass_path}' not found or invalid."
            raise InvalidPassPathError(msg) from e
        if not (e.returncode == 2 and "gpg" in stderr and "public key decryption failed" in stderr):
            msg = (
                f"Failed to get value from pass at '{pass_path}'.\n"
                f"Error: {e.stderr.strip()}\n"
                f"Return code: {e.returncode}"
            )
            raise PassError(msg) from e

        # The GPG key needs its passphrase. This fails in non-interactive sessions (e.g. pytest).
        try:
            passphrase = input("Enter passphrase for GPG key used by pass: ")
        except EOFError as eof:
            msg = "Passphrase input was interrupted. Please run the command in an interactive session."
            raise PassphraseRequiredError(msg) from eof
        try:
            result = _run_pass(pass_path, passphrase)
        except subprocess.CalledProcessError as retry_error:
            msg = (
                f"Failed to get value from pass at '{pass_path}' with passphrase.\n"
                f"Error: {retry_error.stderr.strip()}\n"
                f"Return code: {retry_error.returncode}"
            )
            raise PassphraseRequiredError(msg) from retry_error

    return result.stdout.strip()
