"""Tests for pulling issues into the local store."""

from collections.abc import Callable
from pathlib import Path

import pytest

from issync.exceptions import GitHubTimeoutError, IssueFileError
from issync.models import (
    Issue,
    IssueState,
    ProjectConfig,
    SyncAction,
)
from issync.storage import IssueStore
from issync.sync import IssueSync

from .conftest import NOW, REPO, T0, T1, FakeIssueProvider, FakeProjectsProvider


class TestPull:
    """Tests for IssueSync.pull."""

    @pytest.mark.asyncio
    async def test_pull_writes_issues_and_records(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {1: make_issue(1), 2: make_issue(2, updated_at=T1)}

        result = await engine.pull()

        assert result.fetched == 2
        assert result.pulled == 2
        assert store.read(1) == make_issue(1)
        state = store.load_state()
        for number, updated_at in ((1, T0), (2, T1)):
            record = state.get(number)
            assert record is not None
            assert record.remote_seen_at == updated_at
            assert record.local_seen_at == updated_at
            assert record.synced_at == NOW

    @pytest.mark.asyncio
    async def test_pull_overwrites_remote_changes(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
    ) -> None:
        seed(make_issue(1))
        provider.issues = {1: make_issue(1, body="Edited on GitHub.", updated_at=T1)}

        await engine.pull()

        local = store.read(1)
        assert local is not None
        assert local.body == "Edited on GitHub."
        record = store.load_state().get(1)
        assert record is not None
        assert record.remote_seen_at == T1
        assert record.local_seen_at == T1
        assert record.synced_at == NOW

    @pytest.mark.asyncio
    async def test_open_only_by_default(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {
            1: make_issue(1),
            2: make_issue(2, state=IssueState.CLOSED, closed_at=T0),
        }

        result = await engine.pull()

        assert provider.list_calls[0]["state"] == "open"
        assert result.issues_with(SyncAction.PULLED) == [1]

    @pytest.mark.asyncio
    async def test_include_closed(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {
            1: make_issue(1),
            2: make_issue(2, state=IssueState.CLOSED, closed_at=T0),
        }

        result = await engine.pull(include_closed=True)

        assert provider.list_calls[0]["state"] == "all"
        assert result.issues_with(SyncAction.PULLED) == [1, 2]

    @pytest.mark.asyncio
    async def test_incremental_pull_uses_last_sync_time(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
    ) -> None:
        seed(make_issue(1), synced_at=T0)
        seed(make_issue(2), synced_at=T1)

        result = await engine.pull()

        assert provider.list_calls[0]["since"] == T1
        assert result.since == T1

    @pytest.mark.asyncio
    async def test_full_sync_ignores_last_sync_time(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
    ) -> None:
        seed(make_issue(1), synced_at=T1)

        result = await engine.pull(full_sync=True)

        assert provider.list_calls[0]["since"] is None
        assert result.since is None

    @pytest.mark.asyncio
    async def test_first_pull_has_no_cutoff(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
    ) -> None:
        await engine.pull()

        assert provider.list_calls[0]["since"] is None

    @pytest.mark.asyncio
    async def test_write_failure_leaves_record_untouched(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seed(make_issue(1))
        provider.issues = {1: make_issue(1, updated_at=T1), 2: make_issue(2, updated_at=T1)}

        original_write = store.write

        def failing_write(issue: Issue) -> Path:
            if issue.number == 1:
                raise IssueFileError(str(store.issue_path(1)), "disk full")
            return original_write(issue)

        monkeypatch.setattr(store, "write", failing_write)

        result = await engine.pull()

        assert result.issues_with(SyncAction.FAILED) == [1]
        assert result.issues_with(SyncAction.PULLED) == [2]
        assert len(result.errors) == 1
        state = store.load_state()
        record = state.get(1)
        assert record is not None
        assert record.remote_seen_at == T0
        assert state.get(2) is not None


class TestPullProjectFields:
    """Tests for pulling Projects v2 custom fields."""

    @pytest.mark.asyncio
    async def test_auto_detects_and_saves_project(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {1: make_issue(1)}

        await engine.pull(with_project_fields=True)

        assert projects.find_calls == [("octo", "widgets")]
        config = store.load_config()
        assert config is not None
        assert config.project_number == 7
        assert config.owner == "octo"
        assert config.cached_fields is not None
        assert config.fields_cached_at == NOW

    @pytest.mark.asyncio
    async def test_attaches_field_values_and_links_item(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {1: make_issue(1), 2: make_issue(2)}

        result = await engine.pull(with_project_fields=True)

        assert result.project_items == 1
        local = store.read(1)
        assert local is not None
        # Title mirrors a core attribute and is not stored
        assert {name: value.value for name, value in local.project_fields.items()} == {
            "Priority": "Low",
            "Estimate": 3,
        }
        state = store.load_state()
        record = state.get(1)
        assert record is not None
        assert record.fields_item_id == "PVTI_1"
        assert record.fields_synced_at == NOW
        other = state.get(2)
        assert other is not None
        assert other.fields_item_id is None

    @pytest.mark.asyncio
    async def test_fetches_items_only_for_pulled_issues(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {3: make_issue(3), 5: make_issue(5)}

        await engine.pull(with_project_fields=True)

        assert projects.fetch_items_calls == [[3, 5]]

    @pytest.mark.asyncio
    async def test_fresh_schema_cache_skips_schema_request(
        self,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        store.save_config(
            ProjectConfig(
                project_number=7,
                owner="octo",
                cached_fields=projects.fields,
                fields_cached_at="2999-01-01T00:00:00Z",
            )
        )
        provider.issues = {1: make_issue(1)}
        engine = IssueSync(provider, store, REPO, fields_provider=projects, clock=lambda: NOW)

        await engine.pull(with_project_fields=True)

        assert projects.fetch_fields_calls == 0
        assert projects.find_calls == []

    @pytest.mark.asyncio
    async def test_stale_schema_cache_is_refreshed(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        store: IssueStore,
    ) -> None:
        store.save_config(
            ProjectConfig(
                project_number=7,
                owner="octo",
                cached_fields=projects.fields,
                fields_cached_at="2020-01-01T00:00:00Z",
            )
        )

        await engine.pull(with_project_fields=True)

        assert projects.fetch_fields_calls == 1

    @pytest.mark.asyncio
    async def test_disabled_config_skips_fields(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        store.save_config(ProjectConfig(project_number=7, owner="octo", enabled=False))
        provider.issues = {1: make_issue(1)}

        result = await engine.pull(with_project_fields=True)

        assert result.pulled == 1
        assert projects.fetch_items_calls == []
        local = store.read(1)
        assert local is not None
        assert local.project_fields == {}

    @pytest.mark.asyncio
    async def test_no_project_found_still_pulls(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        projects.project = None
        provider.issues = {1: make_issue(1)}

        result = await engine.pull(with_project_fields=True)

        assert result.pulled == 1
        assert store.load_config() is None

    @pytest.mark.asyncio
    async def test_item_lookup_failure_still_pulls(
        self,
        engine: IssueSync,
        provider: FakeIssueProvider,
        projects: FakeProjectsProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        projects.items_error = GitHubTimeoutError(30)
        provider.issues = {1: make_issue(1), 2: make_issue(2)}

        result = await engine.pull(with_project_fields=True)

        assert result.pulled == 2
        assert result.project_items == 0
        assert len(result.warnings) == 1
        assert "timed out" in result.warnings[0]
        local = store.read(1)
        assert local is not None
        assert local.project_fields == {}
        record = store.load_state().get(1)
        assert record is not None
        assert record.synced_at == NOW
        assert record.fields_item_id is None
