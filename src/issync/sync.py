"""
Sync engine.

This module decides, per issue, whether to pull remote state, push local
edits, skip, or report a conflict. Decisions rest on the issue's sync
record: the remote update time seen at the last pull, the local update
time at the last reconciliation, and when that reconciliation happened.

1. pull: GitHub -> local files (authoritative overwrite)
2. push: local files -> GitHub (only for locally modified issues)
3. detect_conflicts: read-only report of issues changed on both sides
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict

from .credentials import validate_repo
from .exceptions import (
    ConfigFileError,
    GitHubClientError,
    IssueFileError,
    IssueUpdateError,
)
from .models import (
    ConflictInfo,
    Issue,
    ProjectConfig,
    ProjectField,
    ProjectItem,
    PullResult,
    PushResult,
    SyncAction,
    SyncState,
)
from .projects import extract_field_values
from .provider import IssueProvider, ProjectFieldsProvider
from .storage import IssueStore
from .timestamps import is_later, utc_now

logger = logging.getLogger(__name__)


def issue_changes(local: Issue, remote: Issue) -> dict[str, Any]:
    """
    Fields of ``local`` that differ from ``remote``.

    Labels and assignees compare as ordered lists.
    """
    changes: dict[str, Any] = {}
    if local.title != remote.title:
        changes["title"] = local.title
    if local.body != remote.body:
        changes["body"] = local.body
    if local.state != remote.state:
        changes["state"] = local.state.value
    if list(local.labels) != list(remote.labels):
        changes["labels"] = list(local.labels)
    if list(local.assignees) != list(remote.assignees):
        changes["assignees"] = list(local.assignees)
    return changes


class ProjectBinding(BaseModel):
    """A usable project and the client that reaches it."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    provider: ProjectFieldsProvider
    config: ProjectConfig
    number: int
    owner: str


class ProjectContext(BaseModel):
    """Everything needed to push project fields during one run."""

    model_config = ConfigDict(frozen=True)

    binding: ProjectBinding
    fields: list[ProjectField]
    project_id: str

    @property
    def schema_by_name(self) -> dict[str, ProjectField]:
        return {field.name: field for field in self.fields}


class IssueSync:
    """
    Orchestrates sync between GitHub and the local issue store.

    Collaborators are passed in; the caller owns their lifecycle.
    """

    def __init__(
        self,
        provider: IssueProvider,
        store: IssueStore,
        repo: str,
        fields_provider: ProjectFieldsProvider | None = None,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        """
        Initialize the sync engine.

        Args:
            provider: Remote issue store
            store: Local issue store
            repo: Repository in owner/repo format
            fields_provider: Projects v2 client, required for --projects
            clock: Source of "now" timestamps
        """
        self.provider = provider
        self.store = store
        self.repo = validate_repo(repo)
        self.owner, self.repo_name = self.repo.split("/")
        self.fields_provider = fields_provider
        self.clock = clock

    # Project configuration

    async def _resolve_project_config(self) -> ProjectConfig | None:
        """
        Find the project bound to this repository.

        An explicit config file wins. Otherwise look for an organization
        project named after the first hyphen-separated word of the
        repository name and remember it.
        """
        config = self.store.load_config()
        if config is not None:
            return config

        if self.fields_provider is None:
            return None

        search = self.repo_name.split("-")[0]
        try:
            project = await self.fields_provider.find_project(self.owner, search)
        except GitHubClientError as e:
            logger.info(f"No project detected for {self.owner}: {e.message}")
            return None

        if project is None:
            logger.info(f"No project matching '{search}' in {self.owner}")
            return None

        logger.info(f"Auto-detected project #{project.number} \"{project.title}\" for {self.owner}")
        config = ProjectConfig(project_number=project.number, owner=self.owner, enabled=True)
        try:
            self.store.save_config(config)
            logger.info(f"Saved project config to {self.store.config_path}")
        except ConfigFileError as e:
            logger.warning(f"Failed to save project config: {e.message}")
        return config

    async def _bind_project(self) -> ProjectBinding | None:
        """Resolve the project config and pair it with the fields client."""
        config = await self._resolve_project_config()
        if (
            self.fields_provider is None
            or config is None
            or not config.is_usable
            or config.project_number is None
            or config.owner is None
        ):
            logger.info("No project configured; skipping project fields")
            return None
        return ProjectBinding(
            provider=self.fields_provider,
            config=config,
            number=config.project_number,
            owner=config.owner,
        )

    async def _resolve_fields(self, binding: ProjectBinding) -> list[ProjectField]:
        """Return the field schema, refreshing the cache when it is stale."""
        config = binding.config
        if config.fields_are_fresh() and config.cached_fields is not None:
            logger.info("Using cached project fields")
            return config.cached_fields

        fields = await binding.provider.fetch_fields(binding.number, binding.owner)

        config.cached_fields = fields
        config.fields_cached_at = self.clock()
        try:
            self.store.save_config(config)
        except ConfigFileError as e:
            logger.warning(f"Failed to cache project fields: {e.message}")
        return fields

    async def _fetch_project_data(
        self,
        issue_numbers: Sequence[int],
        result: PullResult,
    ) -> tuple[list[ProjectField], dict[int, ProjectItem]]:
        """Fetch the schema and the project items of the pulled issues."""
        binding = await self._bind_project()
        if binding is None:
            return [], {}

        logger.info(f"Fetching project data from project #{binding.number}...")
        try:
            fields = await self._resolve_fields(binding)
        except GitHubClientError as e:
            message = f"Failed to fetch project fields: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
            return [], {}

        if not issue_numbers:
            return fields, {}

        try:
            items = await binding.provider.fetch_items(
                binding.number,
                binding.owner,
                self.owner,
                self.repo_name,
                issue_numbers,
            )
        except GitHubClientError as e:
            message = f"Failed to fetch project items: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
            return fields, {}

        logger.info(f"Fetched project data for {len(items)} issues")
        return fields, items

    async def _load_project_context(self, result: PushResult) -> ProjectContext | None:
        """Resolve config, schema and project node id for a push."""
        binding = await self._bind_project()
        if binding is None:
            return None

        try:
            fields = await self._resolve_fields(binding)
            project_id = await binding.provider.fetch_project_id(binding.number, binding.owner)
        except GitHubClientError as e:
            message = f"Failed to load project data: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
            return None

        return ProjectContext(binding=binding, fields=fields, project_id=project_id)

    # Pull

    async def pull(
        self,
        include_closed: bool = False,
        full_sync: bool = False,
        with_project_fields: bool = False,
    ) -> PullResult:
        """
        Replicate GitHub issues into the local store.

        Args:
            include_closed: Fetch closed issues as well as open ones
            full_sync: Ignore the last sync time and fetch everything
            with_project_fields: Also fetch Projects v2 field values

        Returns:
            PullResult with per-issue entries
        """
        result = PullResult(repo=self.repo)
        logger.info(f"Syncing issues from {self.repo}...")

        self.store.ensure_dirs()
        state = self.store.load_state()

        if not full_sync:
            result.since = state.last_synced_at()
            if result.since:
                logger.info(f"Fetching issues updated since {result.since}")

        issues = await self.provider.list_issues(
            self.repo,
            state="all" if include_closed else "open",
            since=result.since,
        )
        result.fetched = len(issues)
        logger.info(f"Fetched {len(issues)} issue(s)")

        fields: list[ProjectField] = []
        items: dict[int, ProjectItem] = {}
        if with_project_fields:
            fields, items = await self._fetch_project_data([i.number for i in issues], result)
            result.project_items = len(items)

        for issue in issues:
            item = items.get(issue.number)
            if item is not None:
                issue = issue.model_copy(
                    update={"project_fields": extract_field_values(item, fields)}
                )

            try:
                self.store.write(issue)
            except IssueFileError as e:
                logger.error(f"Failed to write issue #{issue.number}: {e.message}")
                result.errors.append(e.message)
                result.add_entry(issue.number, issue.title, SyncAction.FAILED, e.message)
                continue

            # Taken after the write so the file's mtime never exceeds it
            now = self.clock()
            state.record_pull(issue.number, issue.updated_at, now)
            if item is not None:
                state.link_project_item(issue.number, item.id, issue.updated_at, now)
            result.add_entry(issue.number, issue.title, SyncAction.PULLED)

        self.store.save_state(state)
        logger.info("Pull complete")
        return result

    # Push

    async def push(
        self,
        force: bool = False,
        dry_run: bool = False,
        with_project_fields: bool = False,
    ) -> PushResult:
        """
        Replicate local edits to GitHub.

        Only issues whose file changed since the last sync are pushed.
        Issues changed on both sides are reported as conflicts and left
        alone unless ``force`` is set.

        Args:
            force: Push local edits even when GitHub changed too
            dry_run: Report what would change without touching anything
            with_project_fields: Also push Projects v2 field values

        Returns:
            PushResult with per-issue entries
        """
        result = PushResult(repo=self.repo, dry_run=dry_run)
        if dry_run:
            logger.info("Checking for local changes...")
        else:
            logger.info(f"Syncing local changes to {self.repo}...")

        local_issues = self.store.list_all()
        # Closed issues are needed to notice state-only differences
        remote_issues = await self.provider.list_issues(self.repo, state="all")
        state = self.store.load_state()

        project = None
        if with_project_fields:
            project = await self._load_project_context(result)

        remote_by_number = {issue.number: issue for issue in remote_issues}

        try:
            for local in local_issues:
                remote = remote_by_number.get(local.number)
                await self._push_one(local, remote, state, project, result, force, dry_run)
        finally:
            # Issues already pushed stay recorded even if the run aborts
            if not dry_run:
                self.store.save_state(state)

        logger.info(result.summary().splitlines()[0])
        return result

    async def _push_one(
        self,
        local: Issue,
        remote: Issue | None,
        state: SyncState,
        project: ProjectContext | None,
        result: PushResult,
        force: bool,
        dry_run: bool,
    ) -> None:
        """Decide and apply the push of one local issue."""
        record = state.get(local.number)

        if remote is None:
            logger.info(f"Issue #{local.number} not found on GitHub (skipping)")
            result.add_entry(local.number, local.title, SyncAction.SKIPPED, "not found on GitHub")
            return

        if record is None:
            logger.info(f"Issue #{local.number} has no sync history (skipping)")
            result.add_entry(local.number, local.title, SyncAction.SKIPPED, "no sync history")
            return

        local_modified = is_later(self.store.mod_time(local.number), record.synced_at)
        remote_modified = is_later(remote.updated_at, record.remote_seen_at)

        if local_modified and remote_modified and not force:
            logger.warning(f"Conflict detected for issue #{local.number} (use --force to override)")
            result.add_entry(
                local.number,
                local.title,
                SyncAction.CONFLICT,
                f"GitHub updated {remote.updated_at}, last synced {record.synced_at}",
            )
            return

        if local_modified:
            await self._push_issue(local, remote, state, result, dry_run)

        if project is not None:
            await self._push_project_fields(local, state, project, result, dry_run)

    async def _push_issue(
        self,
        local: Issue,
        remote: Issue,
        state: SyncState,
        result: PushResult,
        dry_run: bool,
    ) -> None:
        """Push core attribute changes of one issue."""
        changes = issue_changes(local, remote)
        if not changes:
            return

        changed = ", ".join(changes)
        if dry_run:
            logger.info(f"Would update issue #{local.number}: {local.title} ({changed})")
            result.add_entry(local.number, local.title, SyncAction.WOULD_UPDATE, changed)
            return

        logger.info(f"Updating issue #{local.number}: {local.title} ({changed})")
        try:
            await self.provider.update_issue(self.repo, local.number, changes)
        except IssueUpdateError as e:
            logger.warning(e.message)
            result.errors.append(e.message)
            result.add_entry(local.number, local.title, SyncAction.FAILED, e.message)
            return

        state.record_push(local.number, local.updated_at, self.clock())
        result.add_entry(local.number, local.title, SyncAction.UPDATED, changed)

    async def _push_project_fields(
        self,
        local: Issue,
        state: SyncState,
        project: ProjectContext,
        result: PushResult,
        dry_run: bool,
    ) -> None:
        """Push differing project field values of one issue."""
        record = state.get(local.number)
        if record is None or not record.fields_item_id or not local.project_fields:
            return

        binding = project.binding
        try:
            item = await binding.provider.fetch_item(
                binding.number,
                binding.owner,
                self.owner,
                self.repo_name,
                local.number,
            )
        except GitHubClientError as e:
            message = f"Issue #{local.number}: failed to fetch project item: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
            return
        if item is None:
            logger.debug(f"Issue #{local.number} is not on project #{binding.number}")
            return

        remote_fields = extract_field_values(item, project.fields)
        schema = project.schema_by_name
        updated_any = False

        for name, local_value in local.project_fields.items():
            field = schema.get(name)
            if field is None:
                continue

            remote_value = remote_fields.get(name)
            if local_value.same_as(remote_value):
                continue

            change = f'"{name}": {remote_value or "(empty)"} -> {local_value}'
            if dry_run:
                logger.info(f"Would update issue #{local.number} project field {change}")
                result.add_entry(local.number, local.title, SyncAction.WOULD_UPDATE_FIELD, change)
                continue

            try:
                await binding.provider.update_field(
                    project.project_id,
                    record.fields_item_id,
                    field,
                    local_value,
                )
            except GitHubClientError as e:
                message = f"Issue #{local.number}: {e.message}"
                logger.warning(message)
                result.errors.append(message)
                result.add_entry(local.number, local.title, SyncAction.FAILED, e.message)
                continue

            logger.info(f"Updated issue #{local.number} project field \"{name}\"")
            result.add_entry(local.number, local.title, SyncAction.FIELD_UPDATED, change)
            updated_any = True

        if updated_any:
            state.stamp_fields_synced(local.number, self.clock())

    # Both directions

    async def sync(
        self,
        include_closed: bool = False,
        full_sync: bool = False,
        force: bool = False,
        dry_run: bool = False,
        with_project_fields: bool = False,
    ) -> tuple[PullResult, PushResult]:
        """Pull, then push."""
        pulled = await self.pull(include_closed, full_sync, with_project_fields)
        pushed = await self.push(force, dry_run, with_project_fields)
        return pulled, pushed

    # Conflicts

    async def detect_conflicts(self) -> list[ConflictInfo]:
        """
        Report issues changed both locally and on GitHub since the last sync.

        Uses the ``updated_at`` recorded in each local file. Nothing is
        written.
        """
        local_issues = self.store.list_all()
        remote_issues = await self.provider.list_issues(self.repo, state="all")
        state = self.store.load_state()

        remote_by_number = {issue.number: issue for issue in remote_issues}
        conflicts: list[ConflictInfo] = []

        for local in local_issues:
            remote = remote_by_number.get(local.number)
            record = state.get(local.number)
            if remote is None or record is None:
                continue

            local_modified = is_later(local.updated_at, record.synced_at)
            remote_modified = is_later(remote.updated_at, record.remote_seen_at)

            if local_modified and remote_modified:
                conflicts.append(
                    ConflictInfo(
                        number=local.number,
                        title=local.title,
                        github_updated=remote.updated_at,
                        local_updated=local.updated_at,
                        last_synced=record.synced_at,
                    )
                )

        return conflicts

    # Creation

    async def create_issue(
        self,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
        assignees: Sequence[str] = (),
        milestone: str | None = None,
    ) -> Issue:
        """
        Create an issue on GitHub and start tracking it locally.

        The new issue is written to the store and given a sync record,
        exactly as if it had just been pulled.
        """
        self.store.ensure_dirs()
        state = self.store.load_state()

        number = await self.provider.create_issue(
            self.repo,
            title,
            body=body,
            labels=labels,
            assignees=assignees,
            milestone=milestone,
        )
        issue = await self.provider.fetch_issue(self.repo, number)

        self.store.write(issue)
        state.record_pull(issue.number, issue.updated_at, self.clock())
        self.store.save_state(state)

        logger.info(f"Created issue #{issue.number}: {issue.title}")
        return issue
