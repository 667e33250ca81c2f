"""Closed catalog of tracker tools exposed to the model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tai_bot.access.permissions import (
    TRACKER_CREATE,
    TRACKER_READ,
    TRACKER_WRITE,
    AccessTier,
)

PRIORITY_HINT = "One of urgent, high, normal, low or none; a level number 0-4 also works."


class ToolName(str, Enum):
    CREATE_ISSUE = "create_issue"
    SEARCH_ISSUES = "search_issues"
    GET_ISSUE = "get_issue"
    LIST_ISSUES_BY_STATUS = "list_issues_by_status"
    UPDATE_ISSUE = "update_issue"
    ADD_COMMENT = "add_comment"
    LIST_COMMENTS = "list_comments"
    LIST_STATUSES = "list_statuses"
    LIST_MEMBERS = "list_members"
    LIST_LABELS = "list_labels"
    LIST_PROJECTS = "list_projects"
    LIST_CYCLES = "list_cycles"


class _ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateIssueArgs(_ToolArguments):
    title: str = Field(min_length=1, description="Issue title - concise and descriptive")
    description: str = Field(default="", description="Issue description in markdown")
    priority: str | int | None = Field(
        default=None,
        description=PRIORITY_HINT + " Only set if the user explicitly mentions urgency.",
    )
    assignee: str | None = Field(default=None, description="Member name, display name or email")
    labels: list[str] = Field(default_factory=list, description="Label names to attach")
    project: str | None = Field(default=None, description="Project name")


class SearchIssuesArgs(_ToolArguments):
    query: str = Field(description="Keywords to match in title or description")
    status: str | None = Field(default=None, description="Optional status filter")
    limit: int = Field(default=5, ge=1, le=10)


class GetIssueArgs(_ToolArguments):
    identifier: str = Field(description="Issue identifier such as COD-379")


class ListIssuesByStatusArgs(_ToolArguments):
    status: str = Field(description="Workflow status, e.g. todo or in_progress")
    limit: int = Field(default=10, ge=1, le=25)


class UpdateIssueArgs(_ToolArguments):
    identifier: str = Field(description="Issue identifier such as COD-379")
    title: str | None = None
    description: str | None = None
    assignee: str | None = Field(default=None, description="Member name, display name or email")
    status: str | None = Field(default=None, description="Workflow status, e.g. in_progress")
    priority: str | int | None = Field(default=None, description=PRIORITY_HINT)
    labels: list[str] = Field(
        default_factory=list, description="Label names to ADD; existing labels are kept"
    )
    project: str | None = Field(default=None, description="Project name")


class AddCommentArgs(_ToolArguments):
    identifier: str = Field(description="Issue identifier such as COD-379")
    body: str = Field(min_length=1, description="Comment text in markdown")


class ListCommentsArgs(_ToolArguments):
    identifier: str = Field(description="Issue identifier such as COD-379")
    limit: int = Field(default=10, ge=1, le=25)


class NoArgs(_ToolArguments):
    pass


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    arguments: type[BaseModel]
    feature: str

    def as_tool_definition(self) -> dict[str, Any]:
        schema = self.arguments.model_json_schema()
        schema.pop("title", None)
        return {"name": self.name.value, "description": self.description, "input_schema": schema}


TOOL_CATALOG: dict[ToolName, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            ToolName.CREATE_ISSUE,
            "Create a new issue. Use when the user wants a ticket, bug report or feature request.",
            CreateIssueArgs,
            TRACKER_CREATE,
        ),
        ToolSpec(
            ToolName.SEARCH_ISSUES,
            "Search existing issues by keyword, optionally filtered by status.",
            SearchIssuesArgs,
            TRACKER_READ,
        ),
        ToolSpec(
            ToolName.GET_ISSUE,
            "Fetch one issue by its identifier (e.g. COD-379).",
            GetIssueArgs,
            TRACKER_READ,
        ),
        ToolSpec(
            ToolName.LIST_ISSUES_BY_STATUS,
            "List issues currently in a workflow status.",
            ListIssuesByStatusArgs,
            TRACKER_READ,
        ),
        ToolSpec(
            ToolName.UPDATE_ISSUE,
            "Update an issue. Scalar fields are overwritten; labels are only ever added.",
            UpdateIssueArgs,
            TRACKER_WRITE,
        ),
        ToolSpec(
            ToolName.ADD_COMMENT,
            "Add a comment to an issue.",
            AddCommentArgs,
            TRACKER_WRITE,
        ),
        ToolSpec(
            ToolName.LIST_COMMENTS,
            "List the comments on an issue.",
            ListCommentsArgs,
            TRACKER_READ,
        ),
        ToolSpec(
            ToolName.LIST_STATUSES,
            "List the team's workflow statuses.",
            NoArgs,
            TRACKER_READ,
        ),
        ToolSpec(ToolName.LIST_MEMBERS, "List team members.", NoArgs, TRACKER_READ),
        ToolSpec(ToolName.LIST_LABELS, "List available labels.", NoArgs, TRACKER_READ),
        ToolSpec(ToolName.LIST_PROJECTS, "List the team's projects.", NoArgs, TRACKER_READ),
        ToolSpec(ToolName.LIST_CYCLES, "List the team's cycles.", NoArgs, TRACKER_READ),
    )
}


def tools_for(tier: AccessTier, features: frozenset[str]) -> list[ToolSpec]:
    """Tools the caller may use; the lowest tier gets none."""

    if tier == AccessTier.FREE:
        return []
    return [spec for spec in TOOL_CATALOG.values() if spec.feature in features]
