"""
Exception hierarchy for issync.

This module defines custom exceptions with clear messages and
actionable guidance for users.
"""


class IssyncError(Exception):
    """Base exception for all issync errors."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n\nHint: {self.hint}"
        return self.message


# Configuration Errors


class ConfigError(IssyncError):
    """Configuration error."""


class AuthenticationRequiredError(ConfigError):
    """No GitHub token could be found."""

    def __init__(self, details: str = "") -> None:
        message = "GitHub authentication required"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Set GITHUB_TOKEN or GH_TOKEN, or install the gh CLI and run 'gh auth login'",
        )


class RepositoryDetectionError(ConfigError):
    """The GitHub repository could not be determined from git."""

    def __init__(self, details: str = "") -> None:
        message = "Failed to detect the current GitHub repository"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Run inside a clone with a github.com 'origin' remote, or pass --repo owner/repo",
        )


class InvalidRepositoryError(ConfigError):
    """Invalid repository format."""

    def __init__(self, repo: str) -> None:
        super().__init__(
            f"Invalid repository format: '{repo}'",
            "Use format 'owner/repo', e.g., 'octocat/Hello-World'",
        )


class ConfigFileError(ConfigError):
    """The project configuration file could not be read or written."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Failed to access config file '{file_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Fix or delete the file; it is recreated on the next --projects run",
        )


# GitHub API Errors


class GitHubClientError(IssyncError):
    """Base class for GitHub API related errors."""


class GitHubAuthError(GitHubClientError):
    """GitHub rejected the token."""

    def __init__(self, details: str = "") -> None:
        message = "GitHub authentication failed"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check that your token is valid and has the 'repo' and 'project' scopes",
        )


class GitHubAPIError(GitHubClientError):
    """GitHub API returned an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.details = message
        self.status_code = status_code
        status_info = f" (HTTP {status_code})" if status_code else ""
        super().__init__(
            f"GitHub API error{status_info}: {message}",
            "Check that the repository exists and you have access to it",
        )


class IssueUpdateError(GitHubAPIError):
    """Updating a single issue failed."""

    def __init__(self, issue_number: int, details: str = "", status_code: int | None = None) -> None:
        self.issue_number = issue_number
        super().__init__(f"failed to update issue #{issue_number}: {details}", status_code)


class IssueCreateError(GitHubAPIError):
    """Creating an issue failed."""

    def __init__(self, details: str = "", status_code: int | None = None) -> None:
        super().__init__(f"failed to create issue: {details}", status_code)


class ProjectFieldError(GitHubAPIError):
    """A Projects v2 field value could not be applied."""

    def __init__(self, field_name: str, details: str = "") -> None:
        self.field_name = field_name
        super().__init__(f"failed to update project field '{field_name}': {details}")


class GitHubNetworkError(GitHubClientError):
    """Network error communicating with GitHub."""

    def __init__(self, details: str = "") -> None:
        message = "Network error connecting to GitHub"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check your internet connection and try again",
        )


class GitHubRateLimitError(GitHubClientError):
    """GitHub API rate limit exceeded."""

    def __init__(self, reset_time: str | None = None) -> None:
        message = "GitHub API rate limit exceeded"
        hint = "Wait a few minutes and try again"
        if reset_time:
            hint = f"Rate limit resets at {reset_time}. Wait and try again."
        super().__init__(message, hint)


class GitHubTimeoutError(GitHubClientError):
    """A GitHub API request timed out."""

    def __init__(self, timeout_seconds: int) -> None:
        super().__init__(
            f"GitHub API request timed out after {timeout_seconds} seconds",
            "Check your network or raise --timeout",
        )


# Local Storage Errors


class StorageError(IssyncError):
    """Base class for local storage errors."""


class IssueFileError(StorageError):
    """An issue file could not be read or written."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Failed to access issue file '{file_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Check the file's front matter and that the directory is writable",
        )


class StateFileError(StorageError):
    """The sync state file could not be read or written."""

    def __init__(self, file_path: str, details: str = "") -> None:
        message = f"Failed to access sync state '{file_path}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "Restore the file from a backup or delete it and run 'issync down --full'",
        )
