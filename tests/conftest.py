"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from issync.exceptions import GitHubAPIError, IssueUpdateError, ProjectFieldError
from issync.models import (
    FieldDataType,
    FieldValue,
    FieldValueKind,
    Issue,
    IssueState,
    ProjectField,
    ProjectFieldOption,
    ProjectItem,
    ProjectSummary,
    SyncRecord,
)
from issync.provider import IssueProvider, ProjectFieldsProvider
from issync.storage import IssueStore
from issync.sync import IssueSync
from issync.timestamps import parse_timestamp

REPO = "octo/widgets-api"
T0 = "2024-01-10T10:00:00Z"
T1 = "2024-01-12T10:00:00Z"
T2 = "2024-01-11T10:00:00Z"
NOW = "2024-02-01T00:00:00Z"


class FakeIssueProvider(IssueProvider):
    """In-memory issue store recording every call."""

    def __init__(self, issues: Sequence[Issue] = ()) -> None:
        self.issues: dict[int, Issue] = {issue.number: issue for issue in issues}
        self.list_calls: list[dict[str, Any]] = []
        self.updates: list[tuple[int, dict[str, Any]]] = []
        self.created: list[dict[str, Any]] = []
        self.fail_updates: set[int] = set()
        self.update_errors: dict[int, Exception] = {}
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def list_issues(
        self,
        repo: str,
        state: str = "open",
        since: str | None = None,
    ) -> list[Issue]:
        self.list_calls.append({"repo": repo, "state": state, "since": since})
        issues = [
            issue
            for issue in self.issues.values()
            if state == "all" or issue.state == IssueState.OPEN
        ]
        if since:
            issues = [issue for issue in issues if issue.updated_at >= since]
        return sorted(issues, key=lambda issue: issue.number)

    async def fetch_issue(self, repo: str, number: int) -> Issue:
        if number not in self.issues:
            raise GitHubAPIError(f"Not found: /repos/{repo}/issues/{number}", 404)
        return self.issues[number]

    async def update_issue(self, repo: str, number: int, changes: Mapping[str, Any]) -> None:
        if number in self.update_errors:
            raise self.update_errors[number]
        if number in self.fail_updates:
            raise IssueUpdateError(number, "Validation Failed", 422)
        self.updates.append((number, dict(changes)))

    async def create_issue(
        self,
        repo: str,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
        assignees: Sequence[str] = (),
        milestone: str | None = None,
    ) -> int:
        number = max(self.issues, default=0) + 1
        self.created.append(
            {
                "title": title,
                "body": body,
                "labels": list(labels),
                "assignees": list(assignees),
                "milestone": milestone,
            }
        )
        self.issues[number] = Issue(
            number=number,
            title=title,
            body=body,
            labels=list(labels),
            assignees=list(assignees),
            milestone=milestone,
            created_at=T2,
            updated_at=T2,
            url=f"https://github.com/{repo}/issues/{number}",
        )
        return number


class FakeProjectsProvider(ProjectFieldsProvider):
    """In-memory Projects v2 board recording every call."""

    def __init__(
        self,
        fields: Sequence[ProjectField] = (),
        items: Mapping[int, ProjectItem] | None = None,
        project: ProjectSummary | None = None,
    ) -> None:
        self.fields = list(fields)
        self.items = dict(items or {})
        self.project = project
        self.find_calls: list[tuple[str, str]] = []
        self.fetch_fields_calls = 0
        self.fetch_items_calls: list[list[int]] = []
        self.updates: list[tuple[str, str, str, FieldValue | None]] = []
        self.items_error: Exception | None = None
        self.field_errors: dict[str, Exception] = {}
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def find_project(self, org: str, search: str) -> ProjectSummary | None:
        self.find_calls.append((org, search))
        return self.project

    async def fetch_fields(self, project_number: int, owner: str) -> list[ProjectField]:
        self.fetch_fields_calls += 1
        return list(self.fields)

    async def fetch_project_id(self, project_number: int, owner: str) -> str:
        return "PVT_project"

    async def fetch_items(
        self,
        project_number: int,
        owner: str,
        repo_owner: str,
        repo_name: str,
        issue_numbers: Sequence[int],
    ) -> dict[int, ProjectItem]:
        self.fetch_items_calls.append(list(issue_numbers))
        if self.items_error is not None:
            raise self.items_error
        return {n: self.items[n] for n in issue_numbers if n in self.items}

    async def update_field(
        self,
        project_id: str,
        item_id: str,
        field: ProjectField,
        value: FieldValue | None,
    ) -> None:
        if field.name in self.field_errors:
            raise self.field_errors[field.name]
        selectable = (FieldDataType.SINGLE_SELECT, FieldDataType.ITERATION)
        if field.data_type in selectable and value is not None and value.value is not None:
            if field.find_option(str(value.value)) is None:
                raise ProjectFieldError(field.name, f"unknown option '{value.value}'")
        self.updates.append((project_id, item_id, field.name, value))


@pytest.fixture
def make_issue() -> Callable[..., Issue]:
    """Factory for issues with sensible defaults."""

    def _make(number: int = 1, **overrides: Any) -> Issue:
        data: dict[str, Any] = {
            "number": number,
            "title": f"Issue {number}",
            "body": f"Body of issue {number}.",
            "state": IssueState.OPEN,
            "labels": ["bug"],
            "assignees": ["alice"],
            "created_at": "2024-01-01T09:00:00Z",
            "updated_at": T0,
            "url": f"https://github.com/{REPO}/issues/{number}",
        }
        data.update(overrides)
        return Issue(**data)

    return _make


@pytest.fixture
def store(tmp_path: Path) -> IssueStore:
    """Issue store rooted in a temporary directory."""
    return IssueStore(tmp_path / ".issync")


@pytest.fixture
def touch(store: IssueStore) -> Callable[[int, str], None]:
    """Set an issue file's mtime to a timestamp."""

    def _touch(number: int, timestamp: str) -> None:
        epoch = parse_timestamp(timestamp).timestamp()
        os.utime(store.issue_path(number), (epoch, epoch))

    return _touch


@pytest.fixture
def seed(store: IssueStore, touch: Callable[[int, str], None]) -> Callable[..., None]:
    """
    Put an issue in the store as if it had been pulled at ``synced_at``.

    The file's mtime equals ``synced_at``, i.e. it is locally unmodified.
    """

    def _seed(issue: Issue, synced_at: str | None = None, item_id: str | None = None) -> None:
        synced_at = synced_at or issue.updated_at
        store.ensure_dirs()
        store.write(issue)
        state = store.load_state()
        state.issues[issue.number] = SyncRecord(
            remote_seen_at=issue.updated_at,
            local_seen_at=issue.updated_at,
            synced_at=synced_at,
            fields_item_id=item_id,
        )
        store.save_state(state)
        touch(issue.number, synced_at)

    return _seed


@pytest.fixture
def provider() -> FakeIssueProvider:
    return FakeIssueProvider()


@pytest.fixture
def priority_field() -> ProjectField:
    return ProjectField(
        id="PVTSSF_priority",
        name="Priority",
        data_type=FieldDataType.SINGLE_SELECT,
        options=[
            ProjectFieldOption(id="opt_high", name="High"),
            ProjectFieldOption(id="opt_low", name="Low"),
        ],
    )


@pytest.fixture
def estimate_field() -> ProjectField:
    return ProjectField(id="PVTF_estimate", name="Estimate", data_type=FieldDataType.NUMBER)


@pytest.fixture
def projects(priority_field: ProjectField, estimate_field: ProjectField) -> FakeProjectsProvider:
    """Board with a Priority and an Estimate field and one item for issue #1."""
    return FakeProjectsProvider(
        fields=[priority_field, estimate_field],
        items={
            1: ProjectItem(
                id="PVTI_1",
                issue_number=1,
                fields={
                    "Priority": FieldValue(kind=FieldValueKind.OPTION, value="Low"),
                    "Estimate": FieldValue(kind=FieldValueKind.NUMBER, value=3),
                    "Title": FieldValue(kind=FieldValueKind.TEXT, value="Issue 1"),
                },
            )
        },
        project=ProjectSummary(id="PVT_project", number=7, title="widgets"),
    )


@pytest.fixture
def engine(
    provider: FakeIssueProvider,
    store: IssueStore,
    projects: FakeProjectsProvider,
) -> IssueSync:
    """Sync engine over fakes with a fixed clock."""
    return IssueSync(provider, store, REPO, fields_provider=projects, clock=lambda: NOW)
