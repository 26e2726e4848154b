"""
Local storage for issues, sync state and project configuration.

Layout under the storage root (``.issync`` by default)::

    issues/<number>.md   one markdown file per issue, YAML front matter
    state.json           sync records keyed by issue number
    config.json          project binding and cached field schema

All writes go through a temp file and an atomic rename.
"""

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

import frontmatter
import yaml
from pydantic import ValidationError

from .exceptions import ConfigFileError, IssueFileError, StateFileError
from .models import FieldValue, Issue, IssueState, ProjectConfig, SyncState
from .timestamps import format_timestamp, from_epoch

logger = logging.getLogger(__name__)

DEFAULT_ROOT = ".issync"


def _as_timestamp(value: Any) -> str | None:
    """Normalize a front matter timestamp (YAML may parse it as datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _as_list(value: Any) -> list[str]:
    """Normalize a front matter list that may be missing or a bare string."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


class IssueStore:
    """
    File-backed store for issues and sync bookkeeping.

    ``read`` and ``load_config`` return None for missing files;
    malformed files raise storage errors so callers decide what to skip.
    """

    ISSUES_DIR = "issues"
    STATE_FILE = "state.json"
    CONFIG_FILE = "config.json"

    def __init__(self, root: Path | str = DEFAULT_ROOT) -> None:
        """
        Initialize the store.

        Args:
            root: Storage directory, created on first write
        """
        self.root = Path(root)

    @property
    def issues_dir(self) -> Path:
        return self.root / self.ISSUES_DIR

    @property
    def state_path(self) -> Path:
        return self.root / self.STATE_FILE

    @property
    def config_path(self) -> Path:
        return self.root / self.CONFIG_FILE

    def issue_path(self, number: int) -> Path:
        """Path of the file for an issue."""
        return self.issues_dir / f"{number}.md"

    def ensure_dirs(self) -> None:
        """Create the storage directories if needed."""
        self.issues_dir.mkdir(parents=True, exist_ok=True)

    def _atomic_write(self, path: Path, content: str) -> None:
        """Write text to a temp file, then rename it over ``path``."""
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(content, encoding="utf-8")
            temp_path.replace(path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

    # Issues

    def format_issue(self, issue: Issue) -> str:
        """Render an issue as markdown with YAML front matter."""
        metadata: dict[str, Any] = {
            "number": issue.number,
            "title": issue.title,
            "state": issue.state.value,
            "labels": list(issue.labels),
            "assignees": list(issue.assignees),
            "milestone": issue.milestone,
            "created_at": issue.created_at,
            "updated_at": issue.updated_at,
            "closed_at": issue.closed_at,
        }
        if issue.url:
            metadata["url"] = issue.url
        if issue.project_fields:
            metadata["project_fields"] = {
                name: value.to_scalar() for name, value in issue.project_fields.items()
            }

        post = frontmatter.Post(issue.body, **metadata)
        return frontmatter.dumps(post, sort_keys=False) + "\n"

    def parse_issue(self, text: str, number: int | None = None) -> Issue:
        """
        Parse markdown with YAML front matter into an Issue.

        Args:
            text: File content
            number: Issue number implied by the file name, used when the
                front matter does not carry one

        Raises:
            ValueError: If required metadata is missing or invalid
        """
        post = frontmatter.loads(text)
        data = post.metadata

        issue_number = data.get("number", number)
        if issue_number is None:
            raise ValueError("missing issue number")

        raw_fields = data.get("project_fields") or {}
        if not isinstance(raw_fields, dict):
            raise ValueError("project_fields must be a mapping")

        state = str(data.get("state") or "open").lower()
        milestone = data.get("milestone")

        try:
            return Issue(
                number=int(issue_number),
                title=str(data.get("title") or ""),
                body=post.content.strip(),
                state=IssueState(state),
                labels=_as_list(data.get("labels")),
                assignees=_as_list(data.get("assignees")),
                milestone=str(milestone) if milestone else None,
                created_at=_as_timestamp(data.get("created_at")) or "",
                updated_at=_as_timestamp(data.get("updated_at")) or "",
                closed_at=_as_timestamp(data.get("closed_at")),
                url=data.get("url"),
                project_fields={
                    str(name): FieldValue.from_scalar(value) for name, value in raw_fields.items()
                },
            )
        except ValidationError as e:
            raise ValueError(str(e)) from e

    def write(self, issue: Issue) -> Path:
        """
        Write an issue file, replacing any existing content.

        Raises:
            IssueFileError: If the file cannot be written
        """
        path = self.issue_path(issue.number)
        try:
            self._atomic_write(path, self.format_issue(issue))
        except OSError as e:
            raise IssueFileError(str(path), str(e)) from e
        logger.debug(f"Wrote {path}")
        return path

    def read(self, number: int) -> Issue | None:
        """
        Read one issue file.

        Returns:
            The Issue, or None if there is no file for it

        Raises:
            IssueFileError: If the file exists but cannot be parsed
        """
        path = self.issue_path(number)
        if not path.exists():
            return None
        try:
            return self.parse_issue(path.read_text(encoding="utf-8"), number)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise IssueFileError(str(path), str(e)) from e

    def list_numbers(self) -> list[int]:
        """Issue numbers that have a file, in ascending order."""
        if not self.issues_dir.is_dir():
            return []
        numbers = [int(path.stem) for path in self.issues_dir.glob("*.md") if path.stem.isdigit()]
        return sorted(numbers)

    def list_all(self) -> list[Issue]:
        """
        Read every issue file.

        Malformed files are skipped with a warning.
        """
        issues: list[Issue] = []
        for number in self.list_numbers():
            try:
                issue = self.read(number)
            except IssueFileError as e:
                logger.warning(f"Skipping issue #{number}: {e.message}")
                continue
            if issue is not None:
                issues.append(issue)
        return issues

    def mod_time(self, number: int) -> str | None:
        """Modification time of an issue file, or None if it does not exist."""
        try:
            return from_epoch(self.issue_path(number).stat().st_mtime)
        except FileNotFoundError:
            return None

    # Sync state

    def load_state(self) -> SyncState:
        """
        Load sync state; a missing file is an empty state.

        Raises:
            StateFileError: If the file exists but is unreadable
        """
        if not self.state_path.exists():
            return SyncState()
        try:
            return SyncState.model_validate_json(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StateFileError(str(self.state_path), str(e)) from e

    def save_state(self, state: SyncState) -> None:
        """
        Persist sync state.

        Raises:
            StateFileError: If the file cannot be written
        """
        content = state.model_dump_json(by_alias=True, exclude_none=True, indent=2)
        try:
            self._atomic_write(self.state_path, content + "\n")
        except OSError as e:
            raise StateFileError(str(self.state_path), str(e)) from e
        logger.debug(f"Saved sync state for {len(state.issues)} issues")

    # Project config

    def load_config(self) -> ProjectConfig | None:
        """
        Load the project binding.

        Returns:
            The ProjectConfig, or None if none has been saved

        Raises:
            ConfigFileError: If the file exists but is unreadable
        """
        if not self.config_path.exists():
            return None
        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
            project = data.get("project") if isinstance(data, dict) else None
            if project is None:
                return None
            return ProjectConfig.model_validate(project)
        except (OSError, ValueError) as e:
            raise ConfigFileError(str(self.config_path), str(e)) from e

    def save_config(self, config: ProjectConfig) -> None:
        """
        Persist the project binding, keeping any other top-level keys.

        Raises:
            ConfigFileError: If the file cannot be written
        """
        data: dict[str, Any] = {}
        try:
            if self.config_path.exists():
                existing = json.loads(self.config_path.read_text(encoding="utf-8"))
                if isinstance(existing, dict):
                    data = existing
            data["project"] = config.model_dump(mode="json", by_alias=True, exclude_none=True)
            self._atomic_write(self.config_path, json.dumps(data, indent=2) + "\n")
        except (OSError, ValueError) as e:
            raise ConfigFileError(str(self.config_path), str(e)) from e
