"""In-memory tracker for offline runs and deterministic tests."""

from __future__ import annotations

from dataclasses import replace

from tai_bot.errors import MalformedInput
from tai_bot.tracker.models import (
    IssueDraft,
    IssueUpdate,
    TrackerComment,
    TrackerEntity,
    TrackerIssue,
    TrackerResult,
    merge_label_ids,
    parse_issue_identifier,
    priority_level,
    status_name,
)


class InMemoryTrackerClient:
    """Same contract as the Linear client, backed by dictionaries."""

    def __init__(
        self,
        team_id: str = "local",
        team_key: str = "COD",
        members: list[TrackerEntity] | None = None,
        labels: list[TrackerEntity] | None = None,
        projects: list[TrackerEntity] | None = None,
        cycles: list[TrackerEntity] | None = None,
        states: list[TrackerEntity] | None = None,
    ) -> None:
        self.team_id = team_id
        self.team_key = team_key.upper()
        self.members = list(members or [])
        self.labels = list(labels or [])
        self.projects = list(projects or [])
        self.cycles = list(cycles or [])
        self.states = list(
            states
            or [
                TrackerEntity(id=f"state-{index}", name=name)
                for index, name in enumerate(
                    ["Backlog", "Todo", "In Progress", "In Review", "Done", "Canceled"]
                )
            ]
        )
        self.issues: dict[str, TrackerIssue] = {}
        self.comments: dict[str, list[TrackerComment]] = {}
        self.mutations: list[tuple[str, str, dict[str, object]]] = []
        self.calls: list[str] = []
        self._next_number = 1

    def add_issue(self, issue: TrackerIssue) -> TrackerIssue:
        self.issues[issue.identifier.upper()] = issue
        _, number = parse_issue_identifier(issue.identifier)
        self._next_number = max(self._next_number, number + 1)
        return issue

    def create_issue(self, draft: IssueDraft) -> TrackerResult:
        self.calls.append("create_issue")
        identifier = f"{self.team_key}-{self._next_number}"
        issue = TrackerIssue(
            id=f"issue-{self._next_number}",
            identifier=identifier,
            title=draft.title,
            description=draft.description,
            url=f"https://linear.local/issue/{identifier}",
            status="Backlog",
            priority=priority_level(draft.priority),
            assignee=self._name_of(self.members, draft.assignee_id),
            labels=tuple(self._name_of(self.labels, label_id) for label_id in draft.label_ids),
            label_ids=tuple(draft.label_ids),
            project=self._name_of(self.projects, draft.project_id),
        )
        self.add_issue(issue)
        self.mutations.append(("create_issue", identifier, {"title": draft.title}))
        return TrackerResult.ok(issue)

    def search_issues(self, query: str, status: str | None = None, limit: int = 5) -> TrackerResult:
        self.calls.append("search_issues")
        needle = query.strip().casefold()
        matched = [
            issue
            for issue in self.issues.values()
            if needle in issue.title.casefold() or needle in issue.description.casefold()
        ]
        if status:
            matched = [issue for issue in matched if issue.status == status_name(status)]
        return TrackerResult.ok(matched[: max(1, limit)])

    def get_issue(self, identifier: str) -> TrackerResult:
        self.calls.append("get_issue")
        try:
            prefix, number = parse_issue_identifier(identifier)
        except MalformedInput as exc:
            return TrackerResult.fail(
                f"Invalid issue identifier {exc.value!r}; expected {exc.expected_format}",
                reason_code="malformed_identifier",
            )
        issue = self.issues.get(f"{prefix}-{number}")
        if issue is None:
            return TrackerResult.fail(f"Issue {prefix}-{number} not found", "issue_not_found")
        return TrackerResult.ok(issue)

    def list_issues_by_status(self, status: str, limit: int = 10) -> TrackerResult:
        self.calls.append("list_issues_by_status")
        wanted = status_name(status)
        matched = [issue for issue in self.issues.values() if issue.status == wanted]
        return TrackerResult.ok(matched[: max(1, limit)])

    def update_issue(self, identifier: str, update: IssueUpdate) -> TrackerResult:
        if update.is_empty():
            return TrackerResult.fail("no fields to update", "empty_update")
        found = self.get_issue(identifier)
        if not found.success:
            return found
        issue: TrackerIssue = found.value
        changes: dict[str, object] = {}
        if update.title is not None:
            changes["title"] = update.title
        if update.description is not None:
            changes["description"] = update.description
        if update.assignee_id is not None:
            changes["assignee"] = self._name_of(self.members, update.assignee_id)
        if update.priority is not None:
            changes["priority"] = priority_level(update.priority)
        if update.project_id is not None:
            changes["project"] = self._name_of(self.projects, update.project_id)
        if update.status is not None:
            wanted = status_name(update.status)
            if not any(state.name.casefold() == wanted.casefold() for state in self.states):
                return TrackerResult.fail(
                    f"No workflow state named {wanted!r}", reason_code="unknown_status"
                )
            changes["status"] = wanted
        if update.add_label_ids:
            label_ids = merge_label_ids(issue.label_ids, update.add_label_ids)
            changes["label_ids"] = tuple(label_ids)
            changes["labels"] = tuple(self._name_of(self.labels, label_id) for label_id in label_ids)

        updated = replace(issue, **changes)
        self.issues[updated.identifier.upper()] = updated
        self.mutations.append(("update_issue", updated.identifier, changes))
        return TrackerResult.ok(updated)

    def add_comment(self, identifier: str, body: str) -> TrackerResult:
        found = self.get_issue(identifier)
        if not found.success:
            return found
        comment = TrackerComment(body=body, author="tai-bot")
        self.comments.setdefault(found.value.identifier, []).append(comment)
        self.mutations.append(("add_comment", found.value.identifier, {"body": body}))
        return TrackerResult.ok(comment)

    def list_comments(self, identifier: str, limit: int = 10) -> TrackerResult:
        found = self.get_issue(identifier)
        if not found.success:
            return found
        return TrackerResult.ok(list(self.comments.get(found.value.identifier, []))[:limit])

    def list_workflow_states(self) -> TrackerResult:
        self.calls.append("list_workflow_states")
        return TrackerResult.ok(list(self.states))

    def list_members(self) -> TrackerResult:
        self.calls.append("list_members")
        return TrackerResult.ok(list(self.members))

    def list_labels(self) -> TrackerResult:
        self.calls.append("list_labels")
        return TrackerResult.ok(list(self.labels))

    def list_projects(self) -> TrackerResult:
        self.calls.append("list_projects")
        return TrackerResult.ok(list(self.projects))

    def list_cycles(self) -> TrackerResult:
        self.calls.append("list_cycles")
        return TrackerResult.ok(list(self.cycles))

    @staticmethod
    def _name_of(entities: list[TrackerEntity], entity_id: str | None) -> str:
        if not entity_id:
            return ""
        for entity in entities:
            if entity.id == entity_id:
                return entity.label
        return entity_id
