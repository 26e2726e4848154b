"""
GitHub REST client for issues.

This module handles all issue traffic with the GitHub REST API:
listing (with pagination), fetching, updating and creating issues,
mapping HTTP failures onto the issync exception hierarchy.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Self

import httpx

from . import __version__
from .exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubNetworkError,
    GitHubRateLimitError,
    GitHubTimeoutError,
    IssueCreateError,
    IssueUpdateError,
)
from .models import Issue, IssueState
from .provider import IssueProvider

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
UPDATABLE_FIELDS = ("title", "body", "state", "labels", "assignees", "milestone")


class GitHubHTTPClient:
    """
    Shared HTTP plumbing for the REST and GraphQL clients.

    The underlying ``httpx.AsyncClient`` is created lazily and owned by this
    object; callers close it with ``close()`` or ``async with``.
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(
        self,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        base_url: str = GITHUB_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            token: GitHub token used as a bearer credential
            timeout: Request timeout in seconds
            base_url: API root, overridable for GitHub Enterprise
            transport: Optional httpx transport (used by tests)
        """
        self.token = token
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                    "User-Agent": f"issync/{__version__}",
                },
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _check_response(self, response: httpx.Response, path: str) -> None:
        """Raise the matching issync error for a failed response."""
        status = response.status_code
        if status < 400:
            return

        text = response.text
        if status == 401:
            raise GitHubAuthError("Invalid or expired token")

        if status in (403, 429):
            remaining = response.headers.get("x-ratelimit-remaining")
            if remaining == "0" or "rate limit" in text.lower():
                reset = response.headers.get("x-ratelimit-reset")
                reset_time = None
                if reset and reset.isdigit():
                    reset_time = datetime.fromtimestamp(int(reset), UTC).strftime("%H:%M:%S UTC")
                raise GitHubRateLimitError(reset_time)
            raise GitHubAPIError(_error_message(response), status)

        if status == 404:
            raise GitHubAPIError(f"Not found: {path}", 404)

        raise GitHubAPIError(_error_message(response), status)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Make an API request with error handling.

        Args:
            method: HTTP method
            path: API path (without base URL)
            params: Query parameters
            json: JSON request body

        Returns:
            JSON response data (None for empty bodies)

        Raises:
            Various GitHubClientError subclasses based on failure type
        """
        client = await self._get_client()
        logger.debug(f"{method} {path} params={params}")

        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            raise GitHubTimeoutError(self.timeout) from e
        except httpx.TransportError as e:
            raise GitHubNetworkError(str(e)) from e

        self._check_response(response, path)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(f"Invalid JSON response: {e}") from e


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of GitHub's error message."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text.strip()


class GitHubClient(GitHubHTTPClient, IssueProvider):
    """
    Client for GitHub issues via the REST API.

    Pages are requested one after another; GitHub's pagination contract
    and secondary rate limits both favour sequential requests.
    """

    PAGE_SIZE = 100

    async def check_connection(self) -> str:
        """
        Verify the token and return the authenticated login.

        Raises:
            GitHubAuthError: If the token is rejected
        """
        data = await self._request("GET", "/user")
        return str((data or {}).get("login", "unknown"))

    def _parse_issue(self, data: dict[str, Any]) -> Issue:
        """Parse REST issue JSON into an Issue model."""
        labels = [
            lbl if isinstance(lbl, str) else lbl.get("name", "")
            for lbl in data.get("labels") or []
        ]
        assignees = [a.get("login", "") for a in data.get("assignees") or []]
        milestone = data.get("milestone") or None

        state_str = (data.get("state") or "open").lower()
        state = IssueState.CLOSED if state_str == "closed" else IssueState.OPEN

        return Issue(
            number=data["number"],
            title=data.get("title") or "",
            body=(data.get("body") or "").strip(),
            state=state,
            labels=[lbl for lbl in labels if lbl],
            assignees=[a for a in assignees if a],
            milestone=milestone.get("title") if milestone else None,
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            closed_at=data.get("closed_at"),
            url=data.get("html_url"),
        )

    async def list_issues(
        self,
        repo: str,
        state: str = "open",
        since: str | None = None,
    ) -> list[Issue]:
        """
        Fetch all issues of a repository.

        Args:
            repo: Repository in owner/repo format
            state: 'open' or 'all'
            since: Only issues updated at or after this timestamp

        Returns:
            List of Issue objects, most recently updated first
        """
        logger.info(f"Fetching issues from {repo} (state={state}, since={since})")

        issues: list[Issue] = []
        page = 1

        while True:
            params: dict[str, Any] = {
                "state": state,
                "per_page": self.PAGE_SIZE,
                "page": page,
                "sort": "updated",
                "direction": "desc",
            }
            if since:
                params["since"] = since

            data = await self._request("GET", f"/repos/{repo}/issues", params=params)

            if not isinstance(data, list) or not data:
                break

            for item in data:
                # The issues endpoint also returns pull requests
                if "pull_request" in item:
                    continue
                issues.append(self._parse_issue(item))

            if len(data) < self.PAGE_SIZE:
                break

            page += 1

        logger.info(f"Fetched {len(issues)} issues")
        return issues

    async def fetch_issue(self, repo: str, number: int) -> Issue:
        """Fetch a single issue by number."""
        data = await self._request("GET", f"/repos/{repo}/issues/{number}")
        return self._parse_issue(data)

    async def _resolve_milestone(self, repo: str, title: str) -> int | None:
        """Find a milestone number by title."""
        data = await self._request(
            "GET",
            f"/repos/{repo}/milestones",
            params={"state": "all", "per_page": self.PAGE_SIZE},
        )
        for milestone in data or []:
            if milestone.get("title") == title:
                return milestone.get("number")
        logger.warning(f"Milestone '{title}' not found in {repo}; leaving it unset")
        return None

    async def update_issue(self, repo: str, number: int, changes: Mapping[str, Any]) -> None:
        """
        Apply a partial update to an issue.

        Raises:
            IssueUpdateError: If GitHub rejects the update
        """
        payload: dict[str, Any] = {}
        try:
            for key in UPDATABLE_FIELDS:
                if key not in changes:
                    continue
                value = changes[key]
                if key == "state" and isinstance(value, IssueState):
                    value = value.value
                if key == "milestone" and value is not None:
                    value = await self._resolve_milestone(repo, value)
                    if value is None:
                        continue
                payload[key] = list(value) if isinstance(value, list | tuple) else value

            if not payload:
                return

            await self._request("PATCH", f"/repos/{repo}/issues/{number}", json=payload)
        except GitHubAPIError as e:
            raise IssueUpdateError(number, e.details, e.status_code) from e

    async def create_issue(
        self,
        repo: str,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
        assignees: Sequence[str] = (),
        milestone: str | None = None,
    ) -> int:
        """
        Create an issue and return its number.

        Raises:
            IssueCreateError: If GitHub rejects the request
        """
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        if assignees:
            payload["assignees"] = list(assignees)

        try:
            if milestone:
                milestone_number = await self._resolve_milestone(repo, milestone)
                if milestone_number is not None:
                    payload["milestone"] = milestone_number

            data = await self._request("POST", f"/repos/{repo}/issues", json=payload)
        except GitHubAPIError as e:
            raise IssueCreateError(e.details, e.status_code) from e

        number = int(data["number"])
        logger.info(f"Created issue #{number} in {repo}")
        return number
