"""
Integration plane: the collaborator edges the workflow talks to.

- issue sources (where work items come from),
- workspace providers (where change sets are applied and tested),
- publishers (where approved changes go).
"""

from issue_autopilot.integration_plane.issue_source import (
    FileIssueSource,
    IssueFilter,
    IssueNotFoundError,
    IssueRateLimitError,
    IssueSource,
    IssueSourceAuthError,
    IssueSourceError,
    parse_work_items,
)
from issue_autopilot.integration_plane.publisher import LocalJsonPublisher, PublishError, Publisher
from issue_autopilot.integration_plane.workspace_manager import (
    GitWorktreeWorkspaceProvider,
    LocalDirectoryWorkspaceProvider,
    WorkspaceError,
    WorkspaceProvider,
    apply_edits,
    branch_slug,
)

__all__ = [
    "FileIssueSource",
    "GitWorktreeWorkspaceProvider",
    "IssueFilter",
    "IssueNotFoundError",
    "IssueRateLimitError",
    "IssueSource",
    "IssueSourceAuthError",
    "IssueSourceError",
    "LocalDirectoryWorkspaceProvider",
    "LocalJsonPublisher",
    "PublishError",
    "Publisher",
    "WorkspaceError",
    "WorkspaceProvider",
    "apply_edits",
    "branch_slug",
    "parse_work_items",
]
