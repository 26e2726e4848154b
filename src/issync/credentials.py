"""
Token lookup and repository detection.

Both shell out the same way the gh CLI checks do: an async subprocess with
a timeout, with missing binaries and failures mapped to issync errors.
"""

import asyncio
import logging
import os
import re

from .exceptions import (
    AuthenticationRequiredError,
    InvalidRepositoryError,
    RepositoryDetectionError,
)

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
COMMAND_TIMEOUT = 10  # seconds

_REMOTE_PATTERN = re.compile(r"github\.com[:/]([^/]+/[^/]+?)(?:\.git)?/?$")


async def _run(*cmd: str) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running command: {' '.join(cmd)}")
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=COMMAND_TIMEOUT)
    except TimeoutError:
        proc.kill()
        raise
    return (
        proc.returncode or 0,
        stdout.decode().strip() if stdout else "",
        stderr.decode().strip() if stderr else "",
    )


async def get_github_token() -> str:
    """
    Find a GitHub token.

    Environment variables win; otherwise ask the gh CLI.

    Raises:
        AuthenticationRequiredError: If no token is available
    """
    for name in TOKEN_ENV_VARS:
        token = os.environ.get(name, "").strip()
        if token:
            logger.debug(f"Using token from ${name}")
            return token

    try:
        returncode, stdout, stderr = await _run("gh", "auth", "token")
    except FileNotFoundError:
        raise AuthenticationRequiredError("gh CLI not found and no token in environment") from None
    except TimeoutError:
        raise AuthenticationRequiredError("'gh auth token' timed out") from None

    if returncode != 0:
        if "not logged in" in stderr.lower():
            raise AuthenticationRequiredError("gh CLI is not logged in")
        raise AuthenticationRequiredError(stderr or "'gh auth token' failed")
    if not stdout:
        raise AuthenticationRequiredError("'gh auth token' returned an empty token")
    return stdout


def parse_remote_url(url: str) -> str:
    """
    Extract ``owner/repo`` from a github.com remote URL.

    Handles both ``https://github.com/owner/repo.git`` and
    ``git@github.com:owner/repo.git``.

    Raises:
        RepositoryDetectionError: If the URL is not a GitHub remote
    """
    match = _REMOTE_PATTERN.search(url.strip())
    if not match:
        raise RepositoryDetectionError(f"could not parse a GitHub repo from '{url}'")
    return match.group(1)


def validate_repo(repo: str) -> str:
    """Validate repository format and return it unchanged."""
    if repo.count("/") != 1:
        raise InvalidRepositoryError(repo)
    owner, name = repo.split("/")
    if not owner or not name:
        raise InvalidRepositoryError(repo)
    return repo


async def get_current_repo() -> str:
    """
    Detect ``owner/repo`` from the ``origin`` remote of the current git clone.

    Raises:
        RepositoryDetectionError: If git is missing or the remote is not GitHub
    """
    try:
        returncode, stdout, stderr = await _run("git", "remote", "get-url", "origin")
    except FileNotFoundError:
        raise RepositoryDetectionError("git not found") from None
    except TimeoutError:
        raise RepositoryDetectionError("'git remote get-url origin' timed out") from None

    if returncode != 0:
        raise RepositoryDetectionError(stderr or "no 'origin' remote")
    return parse_remote_url(stdout)
