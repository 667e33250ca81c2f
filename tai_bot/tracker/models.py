"""Tracker-side data model, result envelope and closed vocabularies."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from tai_bot.errors import MalformedInput

IDENTIFIER_FORMAT = "TEAM-123 (team key, hyphen, issue number)"
_IDENTIFIER_RE = re.compile(r"^(?P<prefix>[A-Za-z][A-Za-z0-9]*)-(?P<number>\d+)$")

STATUS_NAMES = {
    "backlog": "Backlog",
    "todo": "Todo",
    "in_progress": "In Progress",
    "in_review": "In Review",
    "done": "Done",
    "canceled": "Canceled",
}

PRIORITY_LEVELS = {
    "none": 0,
    "urgent": 1,
    "high": 2,
    "normal": 3,
    "low": 4,
}

PRIORITY_MARKERS = {1: "🔴", 2: "🟠", 3: "🟡", 4: "🟢", 0: "⚪"}


@dataclass(frozen=True)
class TrackerResult:
    """Outcome envelope returned by every tracker operation."""

    success: bool
    value: Any = None
    error: str = ""
    reason_code: str = ""

    @classmethod
    def ok(cls, value: Any = None) -> "TrackerResult":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, reason_code: str = "remote_error") -> "TrackerResult":
        return cls(success=False, error=error, reason_code=reason_code)


@dataclass(frozen=True)
class TrackerEntity:
    """A member, label, project, cycle or workflow state."""

    id: str
    name: str
    display_name: str = ""
    email: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class TrackerIssue:
    id: str
    identifier: str
    title: str
    url: str = ""
    description: str = ""
    status: str = ""
    priority: int = 0
    assignee: str = ""
    labels: tuple[str, ...] = ()
    label_ids: tuple[str, ...] = ()
    project: str = ""
    cycle: str = ""
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class TrackerComment:
    body: str
    author: str = ""
    created_at: str = ""


@dataclass(frozen=True)
class IssueDraft:
    title: str
    description: str = ""
    priority: str | int | None = None
    assignee_id: str | None = None
    label_ids: tuple[str, ...] = ()
    project_id: str | None = None


@dataclass(frozen=True)
class IssueUpdate:
    """Requested changes; ``None`` leaves a field untouched.

    ``add_label_ids`` is merged into the issue's current labels.
    """

    title: str | None = None
    description: str | None = None
    assignee_id: str | None = None
    status: str | None = None
    priority: str | int | None = None
    project_id: str | None = None
    add_label_ids: tuple[str, ...] = field(default_factory=tuple)

    def is_empty(self) -> bool:
        return not self.add_label_ids and all(
            value is None
            for value in (
                self.title,
                self.description,
                self.assignee_id,
                self.status,
                self.priority,
                self.project_id,
            )
        )


class TrackerClient(Protocol):
    """Operations the agent may perform; every call returns ``TrackerResult``."""

    team_id: str

    def create_issue(self, draft: IssueDraft) -> TrackerResult: ...

    def search_issues(
        self, query: str, status: str | None = None, limit: int = 5
    ) -> TrackerResult: ...

    def get_issue(self, identifier: str) -> TrackerResult: ...

    def list_issues_by_status(self, status: str, limit: int = 10) -> TrackerResult: ...

    def update_issue(self, identifier: str, update: IssueUpdate) -> TrackerResult: ...

    def add_comment(self, identifier: str, body: str) -> TrackerResult: ...

    def list_comments(self, identifier: str, limit: int = 10) -> TrackerResult: ...

    def list_workflow_states(self) -> TrackerResult: ...

    def list_members(self) -> TrackerResult: ...

    def list_labels(self) -> TrackerResult: ...

    def list_projects(self) -> TrackerResult: ...

    def list_cycles(self) -> TrackerResult: ...


def parse_issue_identifier(identifier: str) -> tuple[str, int]:
    """Split ``COD-379`` into ``("COD", 379)``."""

    match = _IDENTIFIER_RE.match(identifier.strip())
    if not match:
        raise MalformedInput(identifier, IDENTIFIER_FORMAT)
    return match.group("prefix").upper(), int(match.group("number"))


def status_name(status: str) -> str:
    token = status.strip()
    return STATUS_NAMES.get(token.lower().replace(" ", "_"), token)


def priority_level(priority: str | int | None) -> int:
    if priority is None:
        return 0
    if isinstance(priority, int):
        return priority
    token = priority.strip().lower()
    if token in PRIORITY_LEVELS:
        return PRIORITY_LEVELS[token]
    try:
        return int(token)
    except ValueError:
        return 0


def merge_label_ids(current: Iterable[str], added: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for label_id in [*current, *added]:
        if label_id not in merged:
            merged.append(label_id)
    return merged


def format_issue(issue: TrackerIssue) -> str:
    labels = ", ".join(issue.labels)
    marker = PRIORITY_MARKERS.get(issue.priority, "⚪")
    status_line = f"{marker} {issue.status or 'Unknown'}"
    if labels:
        status_line = f"{status_line} | {labels}"
    if issue.assignee:
        status_line = f"{status_line} | @{issue.assignee}"
    lines = [f"**{issue.identifier}**: {issue.title}", status_line]
    if issue.url:
        lines.append(f"🔗 {issue.url}")
    return "\n".join(lines)
