"""
Pydantic models for issues, project fields and sync bookkeeping.

This module defines the data models used throughout the application,
providing strong typing, validation, and serialization capabilities.
"""

from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .timestamps import parse_timestamp

FIELDS_CACHE_TTL = timedelta(hours=24)


class IssueState(str, Enum):
    """GitHub issue state."""

    OPEN = "open"
    CLOSED = "closed"


class FieldValueKind(str, Enum):
    """Kind of a project custom field value."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    OPTION = "option"


class FieldValue(BaseModel):
    """
    A single project custom field value.

    ``value`` is None when the field is cleared. Equality for sync purposes
    only looks at ``value``; the kind records where the value came from.
    """

    model_config = ConfigDict(frozen=True)

    kind: FieldValueKind = FieldValueKind.TEXT
    value: str | int | float | None = None

    @classmethod
    def from_scalar(cls, value: Any) -> "FieldValue":
        """Build a value from a plain scalar as stored in an issue file."""
        if value is None:
            return cls(value=None)
        if isinstance(value, bool):
            return cls(kind=FieldValueKind.TEXT, value=str(value).lower())
        if isinstance(value, int | float):
            return cls(kind=FieldValueKind.NUMBER, value=value)
        if isinstance(value, datetime | date):
            return cls(kind=FieldValueKind.DATE, value=value.isoformat()[:10])
        return cls(kind=FieldValueKind.TEXT, value=str(value))

    def to_scalar(self) -> str | int | float | None:
        """Plain scalar for serialization into an issue file."""
        return self.value

    def same_as(self, other: "FieldValue | None") -> bool:
        """Check whether two values are equal, treating a missing value as cleared."""
        other_value = other.value if other is not None else None
        if self.value is None or other_value is None:
            return self.value is None and other_value is None
        if isinstance(self.value, str) != isinstance(other_value, str):
            return False
        return self.value == other_value

    def __str__(self) -> str:
        return "(empty)" if self.value is None else str(self.value)


class Issue(BaseModel):
    """
    A GitHub issue as issync tracks it.

    Timestamps are kept as ISO-8601 strings exactly as GitHub reports them,
    since change detection compares them lexically.
    """

    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    body: str = ""
    state: IssueState = IssueState.OPEN
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    milestone: str | None = None
    created_at: str
    updated_at: str
    closed_at: str | None = None
    url: str | None = None
    project_fields: dict[str, FieldValue] = Field(default_factory=dict)


class FieldDataType(str, Enum):
    """Projects v2 field data types that issync can sync."""

    TEXT = "TEXT"
    NUMBER = "NUMBER"
    DATE = "DATE"
    SINGLE_SELECT = "SINGLE_SELECT"
    ITERATION = "ITERATION"


class ProjectFieldOption(BaseModel):
    """A single-select option or an iteration."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class ProjectField(BaseModel):
    """Definition of a Projects v2 custom field."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    data_type: str = Field(alias="dataType")
    options: list[ProjectFieldOption] | None = None

    def find_option(self, name: str) -> ProjectFieldOption | None:
        """Look up an option (or iteration) by its display name."""
        for option in self.options or []:
            if option.name == name:
                return option
        return None


class ProjectSummary(BaseModel):
    """Minimal description of a project found by search."""

    model_config = ConfigDict(frozen=True)

    id: str
    number: int
    title: str


class ProjectItem(BaseModel):
    """A project item linked to one issue, with its field values."""

    model_config = ConfigDict(frozen=True)

    id: str
    issue_number: int
    fields: dict[str, FieldValue] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    """Binding between a repository and a Projects v2 board."""

    project_number: int | None = None
    owner: str | None = None
    enabled: bool = True
    cached_fields: list[ProjectField] | None = None
    fields_cached_at: str | None = None

    @property
    def is_usable(self) -> bool:
        """Check if the config points at a project and is switched on."""
        return self.enabled and self.project_number is not None and bool(self.owner)

    def fields_are_fresh(self, now: datetime | None = None) -> bool:
        """Check if the cached field schema is younger than 24 hours."""
        if not self.cached_fields or not self.fields_cached_at:
            return False
        try:
            cached_at = parse_timestamp(self.fields_cached_at)
        except ValueError:
            return False
        now = now or datetime.now(UTC)
        return now - cached_at < FIELDS_CACHE_TTL


class SyncRecord(BaseModel):
    """
    Last reconciled state of one issue.

    Field names describe the meaning; the aliases are the keys used in
    ``state.json``.
    """

    model_config = ConfigDict(populate_by_name=True)

    remote_seen_at: str = Field(alias="github_updated_at")
    local_seen_at: str = Field(alias="local_updated_at")
    synced_at: str = Field(alias="last_synced_at")
    fields_item_id: str | None = Field(default=None, alias="project_item_id")
    fields_synced_at: str | None = Field(default=None, alias="project_fields_updated_at")


class SyncState(BaseModel):
    """All sync records for one working copy, keyed by issue number."""

    issues: dict[int, SyncRecord] = Field(default_factory=dict)

    def get(self, number: int) -> SyncRecord | None:
        """Get the record for an issue, if it has ever been pulled."""
        return self.issues.get(number)

    def last_synced_at(self) -> str | None:
        """Most recent reconciliation time across all issues."""
        times = [record.synced_at for record in self.issues.values() if record.synced_at]
        return max(times) if times else None

    def record_pull(self, number: int, updated_at: str, now: str) -> SyncRecord:
        """Record that local now matches remote at ``updated_at``."""
        existing = self.issues.get(number)
        record = SyncRecord(
            remote_seen_at=updated_at,
            local_seen_at=updated_at,
            synced_at=now,
            fields_item_id=existing.fields_item_id if existing else None,
            fields_synced_at=existing.fields_synced_at if existing else None,
        )
        self.issues[number] = record
        return record

    def record_push(self, number: int, local_updated_at: str, now: str) -> SyncRecord:
        """Record that local edits were just pushed."""
        existing = self.issues[number]
        record = existing.model_copy(
            update={
                "remote_seen_at": now,
                "local_seen_at": local_updated_at,
                "synced_at": now,
            }
        )
        self.issues[number] = record
        return record

    def link_project_item(self, number: int, item_id: str, updated_at: str, now: str) -> None:
        """Attach a project item to an issue, creating its record if needed."""
        if number not in self.issues:
            self.issues[number] = SyncRecord(
                remote_seen_at=updated_at,
                local_seen_at=updated_at,
                synced_at=now,
            )
        record = self.issues[number]
        self.issues[number] = record.model_copy(
            update={"fields_item_id": item_id, "fields_synced_at": now}
        )

    def stamp_fields_synced(self, number: int, now: str) -> None:
        """Mark project fields for an issue as pushed."""
        record = self.issues[number]
        self.issues[number] = record.model_copy(update={"fields_synced_at": now})


class SyncAction(str, Enum):
    """Type of action taken for an issue."""

    PULLED = "pulled"
    CREATED = "created"
    UPDATED = "updated"
    WOULD_UPDATE = "would_update"
    FIELD_UPDATED = "field_updated"
    WOULD_UPDATE_FIELD = "would_update_field"
    CONFLICT = "conflict"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncEntry(BaseModel):
    """Record of a single sync action."""

    model_config = ConfigDict(frozen=True)

    issue_number: int
    title: str
    action: SyncAction
    details: str | None = None


class SyncResult(BaseModel):
    """Common bookkeeping for pull and push runs."""

    entries: list[SyncEntry] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def add_entry(
        self,
        issue_number: int,
        title: str,
        action: SyncAction,
        details: str | None = None,
    ) -> None:
        """Add a sync entry."""
        self.entries.append(
            SyncEntry(
                issue_number=issue_number,
                title=title,
                action=action,
                details=details,
            )
        )

    def count(self, action: SyncAction) -> int:
        """Number of entries with the given action."""
        return sum(1 for entry in self.entries if entry.action == action)

    def issues_with(self, action: SyncAction) -> list[int]:
        """Issue numbers that have an entry with the given action."""
        return [entry.issue_number for entry in self.entries if entry.action == action]


class PullResult(SyncResult):
    """Result of pulling issues from GitHub."""

    repo: str = ""
    since: str | None = None
    fetched: int = 0
    project_items: int = 0

    @property
    def pulled(self) -> int:
        return self.count(SyncAction.PULLED)

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            f"Pull complete: {self.fetched} issue(s) fetched from {self.repo}",
            f"  Written: {self.pulled}",
        ]
        if self.since:
            lines.append(f"  Incremental since: {self.since}")
        if self.project_items:
            lines.append(f"  Project items: {self.project_items}")
        if self.errors:
            lines.append(f"  Errors: {len(self.errors)}")
        return "\n".join(lines)


class PushResult(SyncResult):
    """Result of pushing local changes to GitHub."""

    repo: str = ""
    dry_run: bool = False

    @property
    def updated(self) -> int:
        """Issues with core attribute changes (pushed, or would be in a dry run)."""
        action = SyncAction.WOULD_UPDATE if self.dry_run else SyncAction.UPDATED
        return self.count(action)

    @property
    def conflicts(self) -> int:
        return self.count(SyncAction.CONFLICT)

    @property
    def field_updates(self) -> int:
        action = SyncAction.WOULD_UPDATE_FIELD if self.dry_run else SyncAction.FIELD_UPDATED
        return self.count(action)

    @property
    def has_changes(self) -> bool:
        """Check if any changes were (or would be) made."""
        return self.updated > 0 or self.field_updates > 0

    def summary(self) -> str:
        """Generate human-readable summary."""
        if self.dry_run:
            lines = [f"Found {self.updated} issue(s) with local changes"]
        else:
            lines = [f"Push complete ({self.updated} issues updated)"]
        lines.append(f"  Project field updates: {self.field_updates}")
        lines.append(f"  Conflicts: {self.conflicts}")
        if self.errors:
            lines.append(f"  Errors: {len(self.errors)}")
            for error in self.errors[:5]:
                lines.append(f"    - {error}")
            if len(self.errors) > 5:
                lines.append(f"    ... and {len(self.errors) - 5} more")
        return "\n".join(lines)


class ConflictInfo(BaseModel):
    """An issue edited both locally and on GitHub since the last sync."""

    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    github_updated: str
    local_updated: str
    last_synced: str
