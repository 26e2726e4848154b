"""
Abstract collaborator interfaces for the sync engine.

The engine only talks to GitHub through these two interfaces, so it can be
driven by the real REST/GraphQL clients or by in-memory fakes.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from .models import FieldValue, Issue, ProjectField, ProjectItem, ProjectSummary


class IssueProvider(ABC):
    """Remote issue store."""

    @abstractmethod
    async def close(self) -> None:
        """Close any resources held by the provider."""
        ...

    @abstractmethod
    async def list_issues(
        self,
        repo: str,
        state: str = "open",
        since: str | None = None,
    ) -> list[Issue]:
        """
        Fetch issues from the repository, following pagination.

        Pull requests are never returned.

        Args:
            repo: Repository in owner/repo format
            state: 'open' or 'all'
            since: Only issues updated at or after this timestamp

        Returns:
            List of Issue objects
        """
        ...

    @abstractmethod
    async def fetch_issue(self, repo: str, number: int) -> Issue:
        """Fetch a single issue by number."""
        ...

    @abstractmethod
    async def update_issue(self, repo: str, number: int, changes: Mapping[str, Any]) -> None:
        """
        Apply a partial update to an issue.

        Args:
            repo: Repository in owner/repo format
            number: Issue number
            changes: Subset of title, body, state, labels, assignees, milestone

        Raises:
            IssueUpdateError: If GitHub rejects the update
        """
        ...

    @abstractmethod
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
        ...


class ProjectFieldsProvider(ABC):
    """Remote Projects v2 custom-field store."""

    @abstractmethod
    async def close(self) -> None:
        """Close any resources held by the provider."""
        ...

    @abstractmethod
    async def find_project(self, org: str, search: str) -> ProjectSummary | None:
        """Find the organization project that best matches ``search``."""
        ...

    @abstractmethod
    async def fetch_fields(self, project_number: int, owner: str) -> list[ProjectField]:
        """Fetch the field schema of a project."""
        ...

    @abstractmethod
    async def fetch_project_id(self, project_number: int, owner: str) -> str:
        """Resolve a project number to its node id."""
        ...

    @abstractmethod
    async def fetch_items(
        self,
        project_number: int,
        owner: str,
        repo_owner: str,
        repo_name: str,
        issue_numbers: Sequence[int],
    ) -> dict[int, ProjectItem]:
        """
        Fetch the project items for exactly the given issues.

        Issues that are not on the project are absent from the result.
        """
        ...

    async def fetch_item(
        self,
        project_number: int,
        owner: str,
        repo_owner: str,
        repo_name: str,
        issue_number: int,
    ) -> ProjectItem | None:
        """
        Fetch the project item for a single issue.

        Returns None only when the issue is not on the project; a failed
        lookup raises ``GitHubClientError``. Providers whose
        ``fetch_items`` swallows failures must override this.
        """
        items = await self.fetch_items(project_number, owner, repo_owner, repo_name, [issue_number])
        return items.get(issue_number)

    @abstractmethod
    async def update_field(
        self,
        project_id: str,
        item_id: str,
        field: ProjectField,
        value: FieldValue | None,
    ) -> None:
        """
        Set (or clear, for a None value) one field of a project item.

        Raises:
            ProjectFieldError: If the value cannot be applied
        """
        ...
