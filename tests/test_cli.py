"""Tests for the command-line interface."""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from typer.testing import CliRunner

from issync import __version__, cli
from issync.exceptions import AuthenticationRequiredError
from issync.models import Issue
from issync.storage import IssueStore
from issync.sync import IssueSync

from .conftest import REPO, T1, FakeIssueProvider, FakeProjectsProvider

runner = CliRunner()


@pytest.fixture
def opened(
    monkeypatch: pytest.MonkeyPatch,
    provider: FakeIssueProvider,
    store: IssueStore,
    projects: FakeProjectsProvider,
) -> list[cli.Settings]:
    """Route the CLI through in-memory fakes; collect the settings it used."""
    seen: list[cli.Settings] = []

    @asynccontextmanager
    async def fake_open_sync(
        settings: cli.Settings,
        with_projects: bool = False,
    ) -> AsyncIterator[IssueSync]:
        seen.append(settings)
        yield IssueSync(
            provider,
            store,
            settings.repo or REPO,
            fields_provider=projects if with_projects else None,
        )

    monkeypatch.setattr(cli, "open_sync", fake_open_sync)
    return seen


class TestCli:
    """Tests for CLI commands."""

    def test_version(self) -> None:
        result = runner.invoke(cli.app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_down(
        self,
        opened: list[cli.Settings],
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {1: make_issue(1), 2: make_issue(2)}

        result = runner.invoke(cli.app, ["down", "--closed"])

        assert result.exit_code == 0, result.output
        assert "Pull Results" in result.output
        assert store.list_numbers() == [1, 2]
        assert provider.list_calls[0]["state"] == "all"

    def test_global_options_reach_settings(
        self,
        opened: list[cli.Settings],
        tmp_path: Path,
    ) -> None:
        result = runner.invoke(
            cli.app,
            ["--repo", "octo/other", "--dir", str(tmp_path / "x"), "--timeout", "60", "down"],
        )

        assert result.exit_code == 0, result.output
        assert opened[0].repo == "octo/other"
        assert opened[0].root == tmp_path / "x"
        assert opened[0].timeout == 60

    def test_repo_from_environment(self, opened: list[cli.Settings]) -> None:
        result = runner.invoke(cli.app, ["down"], env={"ISSYNC_REPO": "octo/from-env"})

        assert result.exit_code == 0, result.output
        assert opened[0].repo == "octo/from-env"

    def test_timeout_is_bounded(self, opened: list[cli.Settings]) -> None:
        result = runner.invoke(cli.app, ["--timeout", "5", "down"])
        assert result.exit_code != 0

    def test_up_dry_run(
        self,
        opened: list[cli.Settings],
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
        touch: Callable[[int, str], None],
    ) -> None:
        seed(make_issue(1))
        store.write(make_issue(1, title="Renamed"))
        touch(1, T1)
        provider.issues = {1: make_issue(1)}

        result = runner.invoke(cli.app, ["up", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry Run Results" in result.output
        assert provider.updates == []

    def test_up_failure_exits_nonzero(
        self,
        opened: list[cli.Settings],
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
        touch: Callable[[int, str], None],
    ) -> None:
        seed(make_issue(1))
        store.write(make_issue(1, title="Renamed"))
        touch(1, T1)
        provider.issues = {1: make_issue(1)}
        provider.fail_updates = {1}

        result = runner.invoke(cli.app, ["up"])

        assert result.exit_code == 1

    def test_sync(
        self,
        opened: list[cli.Settings],
        provider: FakeIssueProvider,
        make_issue: Callable[..., Issue],
    ) -> None:
        provider.issues = {1: make_issue(1)}

        result = runner.invoke(cli.app, ["sync"])

        assert result.exit_code == 0, result.output
        assert "Pull Results" in result.output
        assert "Push Results" in result.output

    def test_conflicts_none(self, opened: list[cli.Settings]) -> None:
        result = runner.invoke(cli.app, ["conflicts"])

        assert result.exit_code == 0, result.output
        assert "No conflicts" in result.output

    def test_conflicts_listed(
        self,
        opened: list[cli.Settings],
        provider: FakeIssueProvider,
        store: IssueStore,
        make_issue: Callable[..., Issue],
        seed: Callable[..., None],
    ) -> None:
        seed(make_issue(3))
        store.write(make_issue(3, updated_at=T1))
        provider.issues = {3: make_issue(3, updated_at=T1)}

        result = runner.invoke(cli.app, ["conflicts"])

        assert result.exit_code == 0, result.output
        assert "1 conflict(s)" in result.output

    def test_new(
        self,
        opened: list[cli.Settings],
        provider: FakeIssueProvider,
        store: IssueStore,
    ) -> None:
        result = runner.invoke(cli.app, ["new", "Add dark mode", "-l", "ui", "-l", "feature"])

        assert result.exit_code == 0, result.output
        assert "Created issue #1" in result.output
        assert provider.created[0]["labels"] == ["ui", "feature"]
        assert store.read(1) is not None

    def test_error_prints_hint_and_exits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        @asynccontextmanager
        async def failing_open_sync(
            settings: cli.Settings,
            with_projects: bool = False,
        ) -> AsyncIterator[IssueSync]:
            raise AuthenticationRequiredError("no token")
            yield  # pragma: no cover

        monkeypatch.setattr(cli, "open_sync", failing_open_sync)

        result = runner.invoke(cli.app, ["down"])

        assert result.exit_code == 1
        assert "GitHub authentication required" in result.output
