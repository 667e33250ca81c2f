"""Tool dispatch from model invocations to the tracker and resolver."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from tai_bot.agent.providers.base import ToolInvocation
from tai_bot.agent.tools import (
    TOOL_CATALOG,
    AddCommentArgs,
    CreateIssueArgs,
    GetIssueArgs,
    ListCommentsArgs,
    ListIssuesByStatusArgs,
    SearchIssuesArgs,
    ToolName,
    UpdateIssueArgs,
)
from tai_bot.errors import MalformedInput, RemoteFailure, ResolutionError
from tai_bot.tracker.entities import EntityKind, EntityResolver, ResolutionOutcome
from tai_bot.tracker.models import (
    IssueDraft,
    IssueUpdate,
    TrackerClient,
    TrackerEntity,
    TrackerResult,
    format_issue,
    parse_issue_identifier,
)

logger = logging.getLogger(__name__)

ToolOutcomeBody = tuple[str, bool]


@dataclass(frozen=True)
class ToolOutcome:
    tool: str
    arguments: dict[str, Any]
    content: str
    success: bool


@dataclass(frozen=True)
class _ResolvedFields:
    assignee_id: str | None = None
    label_ids: tuple[str, ...] = ()
    project_id: str | None = None


class ToolExecutor:
    def __init__(self, tracker: TrackerClient, resolver: EntityResolver) -> None:
        self.tracker = tracker
        self.resolver = resolver
        self._handlers: dict[ToolName, Callable[[Any], ToolOutcomeBody]] = {
            ToolName.CREATE_ISSUE: self._create_issue,
            ToolName.SEARCH_ISSUES: self._search_issues,
            ToolName.GET_ISSUE: self._get_issue,
            ToolName.LIST_ISSUES_BY_STATUS: self._list_issues_by_status,
            ToolName.UPDATE_ISSUE: self._update_issue,
            ToolName.ADD_COMMENT: self._add_comment,
            ToolName.LIST_COMMENTS: self._list_comments,
            ToolName.LIST_STATUSES: lambda _args: _entity_list(
                "workflow status", self.tracker.list_workflow_states()
            ),
            ToolName.LIST_MEMBERS: lambda _args: _entity_list(
                "member", self.tracker.list_members()
            ),
            ToolName.LIST_LABELS: lambda _args: _entity_list("label", self.tracker.list_labels()),
            ToolName.LIST_PROJECTS: lambda _args: _entity_list(
                "project", self.tracker.list_projects()
            ),
            ToolName.LIST_CYCLES: lambda _args: _entity_list("cycle", self.tracker.list_cycles()),
        }
        missing = sorted(name.value for name in ToolName if name not in self._handlers)
        if missing:
            raise RuntimeError(f"tools_without_executor:{','.join(missing)}")

    @property
    def scope(self) -> str:
        return self.tracker.team_id

    def execute(
        self, invocation: ToolInvocation, allowed: set[ToolName] | None = None
    ) -> ToolOutcome:
        try:
            name = ToolName(invocation.name)
        except ValueError:
            return _outcome(invocation, f"Unknown tool: {invocation.name}", success=False)
        if allowed is not None and name not in allowed:
            return _outcome(
                invocation, f"Tool {name.value} is not available to this caller", success=False
            )

        try:
            arguments = TOOL_CATALOG[name].arguments.model_validate(invocation.arguments)
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or '$'}: {error['msg']}"
                for error in exc.errors()
            )
            return _outcome(invocation, f"Invalid arguments for {name.value}: {errors}", False)

        try:
            content, success = self._handlers[name](arguments)
        except MalformedInput as exc:
            return _outcome(
                invocation,
                f"❌ Invalid identifier {exc.value!r}; expected {exc.expected_format}",
                success=False,
            )
        except ResolutionError as exc:
            return _outcome(invocation, f"❌ Could not resolve: {exc}", success=False)
        except RemoteFailure as exc:
            logger.warning("tool %s failed remotely: %s", name.value, exc)
            return _outcome(invocation, f"❌ {name.value} failed: {exc.detail or exc}", False)
        return _outcome(invocation, content, success)

    def _create_issue(self, args: CreateIssueArgs) -> ToolOutcomeBody:
        fields = self._resolve_fields(args.assignee, args.labels, args.project)
        result = self.tracker.create_issue(
            IssueDraft(
                title=args.title,
                description=args.description,
                priority=args.priority,
                assignee_id=fields.assignee_id,
                label_ids=fields.label_ids,
                project_id=fields.project_id,
            )
        )
        if not result.success:
            return f"❌ Failed to create issue: {result.error or 'Unknown error'}", False
        return f"✅ Created issue:\n{format_issue(result.value)}", True

    def _search_issues(self, args: SearchIssuesArgs) -> ToolOutcomeBody:
        result = self.tracker.search_issues(args.query, status=args.status, limit=args.limit)
        if not result.success:
            return f"❌ Search failed: {result.error or 'Unknown error'}", False
        if not result.value:
            return f'No issues found matching "{args.query}"', True
        return _issue_list(result.value), True

    def _get_issue(self, args: GetIssueArgs) -> ToolOutcomeBody:
        result = self.tracker.get_issue(args.identifier)
        if not result.success:
            return f"❌ Could not fetch {args.identifier}: {result.error}", False
        issue = result.value
        details = [format_issue(issue)]
        if issue.project:
            details.append(f"Project: {issue.project}")
        if issue.cycle:
            details.append(f"Cycle: {issue.cycle}")
        if issue.description:
            details.append(f"\n{issue.description}")
        return "\n".join(details), True

    def _list_issues_by_status(self, args: ListIssuesByStatusArgs) -> ToolOutcomeBody:
        result = self.tracker.list_issues_by_status(args.status, limit=args.limit)
        if not result.success:
            return f"❌ Listing failed: {result.error or 'Unknown error'}", False
        if not result.value:
            return f"No issues with status {args.status}", True
        return _issue_list(result.value), True

    def _update_issue(self, args: UpdateIssueArgs) -> ToolOutcomeBody:
        parse_issue_identifier(args.identifier)
        fields = self._resolve_fields(args.assignee, args.labels, args.project)
        result = self.tracker.update_issue(
            args.identifier,
            IssueUpdate(
                title=args.title,
                description=args.description,
                assignee_id=fields.assignee_id,
                status=args.status,
                priority=args.priority,
                project_id=fields.project_id,
                add_label_ids=fields.label_ids,
            ),
        )
        if not result.success:
            return f"❌ Failed to update {args.identifier}: {result.error}", False
        return f"✅ Updated issue:\n{format_issue(result.value)}", True

    def _add_comment(self, args: AddCommentArgs) -> ToolOutcomeBody:
        result = self.tracker.add_comment(args.identifier, args.body)
        if not result.success:
            return f"❌ Failed to comment on {args.identifier}: {result.error}", False
        return f"✅ Comment added to {args.identifier}", True

    def _list_comments(self, args: ListCommentsArgs) -> ToolOutcomeBody:
        result = self.tracker.list_comments(args.identifier, limit=args.limit)
        if not result.success:
            return f"❌ Could not list comments on {args.identifier}: {result.error}", False
        if not result.value:
            return f"{args.identifier} has no comments", True
        lines = [
            f"- {comment.author or 'unknown'} ({comment.created_at or 'n/a'}): {comment.body}"
            for comment in result.value
        ]
        return "\n".join(lines), True

    def _resolve_fields(
        self, assignee: str | None, labels: list[str], project: str | None
    ) -> _ResolvedFields:
        """Resolve every free-text field, failing with all errors at once."""

        requested: list[tuple[EntityKind, str]] = []
        if assignee:
            requested.append((EntityKind.MEMBER, assignee))
        requested.extend((EntityKind.LABEL, label) for label in labels if label.strip())
        if project:
            requested.append((EntityKind.PROJECT, project))

        outcomes: list[ResolutionOutcome] = [
            self.resolver.resolve(kind, self.scope, query) for kind, query in requested
        ]
        failures = [outcome for outcome in outcomes if not outcome.resolved]
        if failures:
            raise ResolutionError(failures)

        resolved: dict[EntityKind, list[TrackerEntity]] = {}
        for outcome in outcomes:
            if outcome.entity is not None:
                resolved.setdefault(outcome.kind, []).append(outcome.entity)
        members = resolved.get(EntityKind.MEMBER, [])
        projects = resolved.get(EntityKind.PROJECT, [])
        return _ResolvedFields(
            assignee_id=members[0].id if members else None,
            label_ids=tuple(entity.id for entity in resolved.get(EntityKind.LABEL, [])),
            project_id=projects[0].id if projects else None,
        )


def _outcome(invocation: ToolInvocation, content: str, success: bool) -> ToolOutcome:
    return ToolOutcome(
        tool=invocation.name,
        arguments=dict(invocation.arguments),
        content=content,
        success=success,
    )


def _issue_list(issues: list[Any]) -> str:
    rendered = "\n\n".join(format_issue(issue) for issue in issues)
    return f"Found {len(issues)} issue(s):\n\n{rendered}"


def _entity_list(kind: str, result: TrackerResult) -> ToolOutcomeBody:
    if not result.success:
        return f"❌ Could not list {kind}s: {result.error}", False
    entities: list[TrackerEntity] = result.value or []
    if not entities:
        return f"No {kind}s found", True
    lines = []
    for entity in entities:
        line = f"- {entity.label}"
        if entity.email:
            line = f"{line} <{entity.email}>"
        lines.append(line)
    return "\n".join(lines), True
