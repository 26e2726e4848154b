"""
GitHub Projects v2 client.

This module reads and writes project custom fields through the GraphQL
API: project lookup, field schemas, per-issue item values (fetched in
batches sized to the issues being synced, never the whole project) and
field mutations.
"""

import logging
from collections.abc import Sequence
from typing import Any

from .exceptions import GitHubAPIError, GitHubClientError, ProjectFieldError
from .github_client import GitHubHTTPClient
from .models import (
    FieldDataType,
    FieldValue,
    FieldValueKind,
    ProjectField,
    ProjectFieldOption,
    ProjectItem,
    ProjectSummary,
)
from .provider import ProjectFieldsProvider

logger = logging.getLogger(__name__)

ITEMS_BATCH_SIZE = 50

# Built-in project fields that mirror core issue attributes
REDUNDANT_FIELDS = frozenset(
    {
        "Title",
        "Assignees",
        "Labels",
        "Milestone",
        "Repository",
        "Linked pull requests",
        "Reviewers",
        "Parent issue",
        "Sub-issues progress",
    }
)

FIND_PROJECT_QUERY = """
query($org: String!, $search: String!) {
  organization(login: $org) {
    projectsV2(first: 10, query: $search) {
      nodes { id title number }
    }
  }
}
"""

PROJECT_ID_QUERY = """
query($owner: String!, $number: Int!) {
  organization(login: $owner) {
    projectV2(number: $number) { id }
  }
}
"""

FIELDS_QUERY = """
query($owner: String!, $number: Int!) {
  organization(login: $owner) {
    projectV2(number: $number) {
      fields(first: 100) {
        nodes {
          ... on ProjectV2Field { id name dataType }
          ... on ProjectV2SingleSelectField { id name dataType options { id name } }
          ... on ProjectV2IterationField {
            id name dataType
            configuration { iterations { id title } }
          }
        }
      }
    }
  }
}
"""

ITEM_FIELDS_FRAGMENT = """
projectItems(first: 10) {
  nodes {
    id
    project { number }
    fieldValues(first: 20) {
      nodes {
        ... on ProjectV2ItemFieldSingleSelectValue {
          name
          field { ... on ProjectV2SingleSelectField { name } }
        }
        ... on ProjectV2ItemFieldTextValue {
          text
          field { ... on ProjectV2Field { name } }
        }
        ... on ProjectV2ItemFieldDateValue {
          date
          field { ... on ProjectV2Field { name } }
        }
        ... on ProjectV2ItemFieldNumberValue {
          number
          field { ... on ProjectV2Field { name } }
        }
        ... on ProjectV2ItemFieldIterationValue {
          title
          field { ... on ProjectV2IterationField { name } }
        }
      }
    }
  }
}
"""

CLEAR_FIELD_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!) {
  clearProjectV2ItemFieldValue(input: {
    projectId: $projectId, itemId: $itemId, fieldId: $fieldId
  }) { projectV2Item { id } }
}
"""

UPDATE_FIELD_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $value: ProjectV2FieldValue!) {
  updateProjectV2ItemFieldValue(input: {
    projectId: $projectId, itemId: $itemId, fieldId: $fieldId, value: $value
  }) { projectV2Item { id } }
}
"""


def _batch_query(repo_issue_numbers: Sequence[int]) -> str:
    """Build one query with an aliased sub-query per issue."""
    parts = [
        f"issue{idx}: repository(owner: $repoOwner, name: $repoName) {{\n"
        f"  issue(number: {int(number)}) {{ id number {ITEM_FIELDS_FRAGMENT} }}\n"
        f"}}"
        for idx, number in enumerate(repo_issue_numbers)
    ]
    return "query($repoOwner: String!, $repoName: String!) {\n" + "\n".join(parts) + "\n}"


def _parse_field_value(node: dict[str, Any]) -> tuple[str, FieldValue] | None:
    """Convert one GraphQL field value node into (field name, value)."""
    field_name = (node.get("field") or {}).get("name")
    if not field_name:
        return None
    if "name" in node:
        return field_name, FieldValue(kind=FieldValueKind.OPTION, value=node["name"])
    if "text" in node:
        return field_name, FieldValue(kind=FieldValueKind.TEXT, value=node["text"])
    if "date" in node:
        return field_name, FieldValue(kind=FieldValueKind.DATE, value=node["date"])
    if "number" in node:
        return field_name, FieldValue(kind=FieldValueKind.NUMBER, value=node["number"])
    if "title" in node:
        return field_name, FieldValue(kind=FieldValueKind.OPTION, value=node["title"])
    return field_name, FieldValue(value=None)


def extract_field_values(item: ProjectItem, fields: Sequence[ProjectField]) -> dict[str, FieldValue]:
    """
    Field values of an item worth storing locally.

    Built-in fields that duplicate core issue attributes are dropped.
    Values for fields missing from the schema are kept for display.
    """
    known = {field.name for field in fields}
    values: dict[str, FieldValue] = {}
    for name, value in item.fields.items():
        if name in REDUNDANT_FIELDS:
            continue
        if name not in known:
            logger.debug(f"Field '{name}' is not in the project schema")
        values[name] = value
    return values


class ProjectsClient(GitHubHTTPClient, ProjectFieldsProvider):
    """Client for GitHub Projects v2 via the GraphQL API."""

    async def _graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        allow_partial: bool = False,
    ) -> dict[str, Any]:
        """
        Run a GraphQL query.

        Args:
            query: GraphQL document
            variables: Query variables
            allow_partial: Return partial data instead of raising when
                some aliases failed (e.g. an issue number that does not exist)

        Returns:
            The ``data`` object of the response

        Raises:
            GitHubAPIError: If the response carries errors
        """
        response = await self._request(
            "POST",
            "/graphql",
            json={"query": query, "variables": variables or {}},
        )
        data = (response or {}).get("data")
        errors = (response or {}).get("errors") or []

        if errors:
            messages = "; ".join(str(e.get("message", e)) for e in errors)
            if data is None or not allow_partial:
                raise GitHubAPIError(f"GraphQL error: {messages}")
            logger.debug(f"Ignoring partial GraphQL errors: {messages}")

        return data or {}

    async def find_project(self, org: str, search: str) -> ProjectSummary | None:
        """
        Find the organization project that best matches ``search``.

        A case-insensitive exact title match wins; otherwise the first
        search hit is used.
        """
        data = await self._graphql(FIND_PROJECT_QUERY, {"org": org, "search": search})
        nodes = ((data.get("organization") or {}).get("projectsV2") or {}).get("nodes") or []
        nodes = [node for node in nodes if node]
        if not nodes:
            return None

        exact = [node for node in nodes if node.get("title", "").lower() == search.lower()]
        chosen = exact[0] if exact else nodes[0]
        return ProjectSummary(id=chosen["id"], number=chosen["number"], title=chosen["title"])

    async def fetch_project_id(self, project_number: int, owner: str) -> str:
        """
        Resolve a project number to its node id.

        Raises:
            GitHubAPIError: If the project does not exist
        """
        data = await self._graphql(PROJECT_ID_QUERY, {"owner": owner, "number": project_number})
        project = (data.get("organization") or {}).get("projectV2") or {}
        project_id = project.get("id")
        if not project_id:
            raise GitHubAPIError(f"project #{project_number} not found for {owner}", 404)
        return project_id

    async def fetch_fields(self, project_number: int, owner: str) -> list[ProjectField]:
        """Fetch the field schema of a project."""
        logger.info(f"Fetching field schema for project #{project_number}")
        data = await self._graphql(FIELDS_QUERY, {"owner": owner, "number": project_number})
        project = (data.get("organization") or {}).get("projectV2") or {}
        nodes = (project.get("fields") or {}).get("nodes") or []

        fields: list[ProjectField] = []
        for node in nodes:
            if not node or not node.get("id"):
                continue
            options: list[ProjectFieldOption] | None = None
            if node.get("options") is not None:
                options = [ProjectFieldOption(id=o["id"], name=o["name"]) for o in node["options"]]
            elif node.get("configuration") is not None:
                iterations = node["configuration"].get("iterations") or []
                options = [ProjectFieldOption(id=i["id"], name=i["title"]) for i in iterations]
            fields.append(
                ProjectField(
                    id=node["id"],
                    name=node["name"],
                    data_type=node.get("dataType", ""),
                    options=options,
                )
            )
        return fields

    async def _fetch_batch(
        self,
        project_number: int,
        repo_owner: str,
        repo_name: str,
        batch: Sequence[int],
    ) -> dict[int, ProjectItem]:
        """Fetch the project items of one batch of issues in a single query."""
        data = await self._graphql(
            _batch_query(batch),
            {"repoOwner": repo_owner, "repoName": repo_name},
            allow_partial=True,
        )

        items: dict[int, ProjectItem] = {}
        for idx, number in enumerate(batch):
            issue = (data.get(f"issue{idx}") or {}).get("issue")
            if not issue:
                continue
            nodes = (issue.get("projectItems") or {}).get("nodes") or []
            match = next(
                (
                    node
                    for node in nodes
                    if node and (node.get("project") or {}).get("number") == project_number
                ),
                None,
            )
            if match is None:
                continue

            fields: dict[str, FieldValue] = {}
            for value_node in (match.get("fieldValues") or {}).get("nodes") or []:
                parsed = _parse_field_value(value_node or {})
                if parsed is not None:
                    name, value = parsed
                    fields[name] = value
            items[number] = ProjectItem(id=match["id"], issue_number=number, fields=fields)

        return items

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

        Issues are queried in sequential batches of 50. A failed batch is
        logged and skipped; the remaining batches still run.
        """
        items: dict[int, ProjectItem] = {}
        numbers = list(issue_numbers)

        for start in range(0, len(numbers), ITEMS_BATCH_SIZE):
            batch = numbers[start : start + ITEMS_BATCH_SIZE]
            try:
                items.update(
                    await self._fetch_batch(project_number, repo_owner, repo_name, batch)
                )
            except GitHubClientError as e:
                logger.warning(
                    f"Failed to fetch project items for issues "
                    f"#{batch[0]}..#{batch[-1]}: {e.message}"
                )

        return items

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

        Raises:
            GitHubClientError: If the lookup fails
        """
        items = await self._fetch_batch(project_number, repo_owner, repo_name, [issue_number])
        return items.get(issue_number)

    def _mutation_value(self, field: ProjectField, value: FieldValue) -> dict[str, Any]:
        """Build the ProjectV2FieldValue input for a field type."""
        raw = value.value
        data_type = field.data_type

        if data_type == FieldDataType.TEXT:
            return {"text": str(raw)}
        if data_type == FieldDataType.NUMBER:
            try:
                return {"number": float(raw)}  # type: ignore[arg-type]
            except (TypeError, ValueError):
                raise ProjectFieldError(field.name, f"'{raw}' is not a number") from None
        if data_type == FieldDataType.DATE:
            return {"date": str(raw)}
        if data_type == FieldDataType.SINGLE_SELECT:
            option = field.find_option(str(raw))
            if option is None:
                raise ProjectFieldError(field.name, f"unknown option '{raw}'")
            return {"singleSelectOptionId": option.id}
        if data_type == FieldDataType.ITERATION:
            iteration = field.find_option(str(raw))
            if iteration is None:
                raise ProjectFieldError(field.name, f"unknown iteration '{raw}'")
            return {"iterationId": iteration.id}

        raise ProjectFieldError(field.name, f"unsupported field type {data_type}")

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
        variables: dict[str, Any] = {
            "projectId": project_id,
            "itemId": item_id,
            "fieldId": field.id,
        }

        try:
            if value is None or value.value is None:
                await self._graphql(CLEAR_FIELD_MUTATION, variables)
                return

            variables["value"] = self._mutation_value(field, value)
            await self._graphql(UPDATE_FIELD_MUTATION, variables)
        except ProjectFieldError:
            raise
        except GitHubAPIError as e:
            raise ProjectFieldError(field.name, e.details) from e
