"""Linear GraphQL tracker client.

Every public operation returns a ``TrackerResult`` and never raises:
transport errors, HTTP failures and GraphQL error payloads are captured as
failures carrying the remote message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import requests

from tai_bot.errors import MalformedInput, RemoteFailure
from tai_bot.tracker.linear_auth import ServiceAuth, load_service_auth_from_env
from tai_bot.tracker.models import (
    IssueDraft,
    IssueUpdate,
    TrackerClient,
    TrackerComment,
    TrackerEntity,
    TrackerIssue,
    TrackerResult,
    merge_label_ids,
    parse_issue_identifier,
    priority_level,
    status_name,
)
from tai_bot.tracker.tracker_inmemory import InMemoryTrackerClient

logger = logging.getLogger(__name__)

LINEAR_API_URL = "https://api.linear.app/graphql"

_ISSUE_FIELDS = """
  id
  identifier
  title
  description
  url
  priority
  createdAt
  updatedAt
  state { name }
  assignee { name displayName }
  labels { nodes { id name } }
  project { name }
  cycle { number name }
"""

_ISSUES_QUERY = f"""
query Issues($filter: IssueFilter, $first: Int) {{
  issues(filter: $filter, first: $first) {{
    nodes {{ {_ISSUE_FIELDS} }}
  }}
}}
"""

_CREATE_ISSUE_MUTATION = f"""
mutation CreateIssue($input: IssueCreateInput!) {{
  issueCreate(input: $input) {{
    success
    issue {{ {_ISSUE_FIELDS} }}
  }}
}}
"""

_UPDATE_ISSUE_MUTATION = f"""
mutation UpdateIssue($id: String!, $input: IssueUpdateInput!) {{
  issueUpdate(id: $id, input: $input) {{
    success
    issue {{ {_ISSUE_FIELDS} }}
  }}
}}
"""

_COMMENT_FIELDS = "body createdAt user { name displayName }"

_CREATE_COMMENT_MUTATION = f"""
mutation CreateComment($input: CommentCreateInput!) {{
  commentCreate(input: $input) {{
    success
    comment {{ {_COMMENT_FIELDS} }}
  }}
}}
"""

_ISSUE_COMMENTS_QUERY = f"""
query IssueComments($id: String!, $first: Int) {{
  issue(id: $id) {{
    comments(first: $first) {{ nodes {{ {_COMMENT_FIELDS} }} }}
  }}
}}
"""

_TEAM_CONNECTIONS = {
    "members": "members { nodes { id name displayName email } }",
    "labels": "labels { nodes { id name } }",
    "projects": "projects { nodes { id name } }",
    "cycles": "cycles { nodes { id number name } }",
    "states": "states { nodes { id name type } }",
}


class LinearTrackerClient:
    def __init__(
        self,
        team_id: str,
        auth: ServiceAuth | None = None,
        api_url: str = LINEAR_API_URL,
        session: requests.Session | None = None,
        timeout_s: float = 15,
    ) -> None:
        self.team_id = team_id
        self.auth = auth or ServiceAuth(tracker_api_key=None, model_api_key=None)
        self.api_url = api_url
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def create_issue(self, draft: IssueDraft) -> TrackerResult:
        def run() -> TrackerIssue:
            payload: dict[str, Any] = {
                "teamId": self.team_id,
                "title": draft.title,
                "description": draft.description,
                "priority": priority_level(draft.priority),
            }
            if draft.assignee_id:
                payload["assigneeId"] = draft.assignee_id
            if draft.label_ids:
                payload["labelIds"] = list(draft.label_ids)
            if draft.project_id:
                payload["projectId"] = draft.project_id
            data = self._graphql(_CREATE_ISSUE_MUTATION, {"input": payload})
            return _mutation_issue(data.get("issueCreate"), "issue_create_failed")

        return self._capture("create_issue", run)

    def search_issues(self, query: str, status: str | None = None, limit: int = 5) -> TrackerResult:
        def run() -> list[TrackerIssue]:
            issue_filter: dict[str, Any] = {"team": {"id": {"eq": self.team_id}}}
            if query.strip():
                issue_filter["or"] = [
                    {"title": {"containsIgnoreCase": query.strip()}},
                    {"description": {"containsIgnoreCase": query.strip()}},
                ]
            if status:
                issue_filter["state"] = {"name": {"eq": status_name(status)}}
            return self._issues(issue_filter, limit)

        return self._capture("search_issues", run)

    def get_issue(self, identifier: str) -> TrackerResult:
        return self._capture("get_issue", lambda: self._fetch_issue(identifier))

    def list_issues_by_status(self, status: str, limit: int = 10) -> TrackerResult:
        def run() -> list[TrackerIssue]:
            issue_filter = {
                "team": {"id": {"eq": self.team_id}},
                "state": {"name": {"eq": status_name(status)}},
            }
            return self._issues(issue_filter, limit)

        return self._capture("list_issues_by_status", run)

    def update_issue(self, identifier: str, update: IssueUpdate) -> TrackerResult:
        def run() -> TrackerIssue:
            if update.is_empty():
                raise RemoteFailure("empty_update", "no fields to update")
            issue = self._fetch_issue(identifier)
            payload: dict[str, Any] = {}
            if update.title is not None:
                payload["title"] = update.title
            if update.description is not None:
                payload["description"] = update.description
            if update.assignee_id is not None:
                payload["assigneeId"] = update.assignee_id
            if update.priority is not None:
                payload["priority"] = priority_level(update.priority)
            if update.project_id is not None:
                payload["projectId"] = update.project_id
            if update.status is not None:
                payload["stateId"] = self._state_id(update.status)
            if update.add_label_ids:
                payload["labelIds"] = merge_label_ids(issue.label_ids, update.add_label_ids)
            data = self._graphql(_UPDATE_ISSUE_MUTATION, {"id": issue.id, "input": payload})
            return _mutation_issue(data.get("issueUpdate"), "issue_update_failed")

        return self._capture("update_issue", run)

    def add_comment(self, identifier: str, body: str) -> TrackerResult:
        def run() -> TrackerComment:
            issue = self._fetch_issue(identifier)
            data = self._graphql(
                _CREATE_COMMENT_MUTATION, {"input": {"issueId": issue.id, "body": body}}
            )
            result = data.get("commentCreate") or {}
            if not result.get("success") or not result.get("comment"):
                raise RemoteFailure("comment_create_failed", "comment creation failed")
            return _comment(result["comment"])

        return self._capture("add_comment", run)

    def list_comments(self, identifier: str, limit: int = 10) -> TrackerResult:
        def run() -> list[TrackerComment]:
            issue = self._fetch_issue(identifier)
            data = self._graphql(_ISSUE_COMMENTS_QUERY, {"id": issue.id, "first": limit})
            nodes = ((data.get("issue") or {}).get("comments") or {}).get("nodes") or []
            return [_comment(node) for node in nodes if isinstance(node, dict)]

        return self._capture("list_comments", run)

    def list_workflow_states(self) -> TrackerResult:
        return self._capture("list_workflow_states", lambda: self._team_entities("states"))

    def list_members(self) -> TrackerResult:
        return self._capture("list_members", lambda: self._team_entities("members"))

    def list_labels(self) -> TrackerResult:
        return self._capture("list_labels", lambda: self._team_entities("labels"))

    def list_projects(self) -> TrackerResult:
        return self._capture("list_projects", lambda: self._team_entities("projects"))

    def list_cycles(self) -> TrackerResult:
        return self._capture("list_cycles", lambda: self._team_entities("cycles"))

    def _fetch_issue(self, identifier: str) -> TrackerIssue:
        prefix, number = parse_issue_identifier(identifier)
        issue_filter = {"team": {"key": {"eq": prefix}}, "number": {"eq": number}}
        issues = self._issues(issue_filter, 1)
        if not issues:
            raise RemoteFailure("issue_not_found", f"Issue {prefix}-{number} not found")
        return issues[0]

    def _issues(self, issue_filter: dict[str, Any], limit: int) -> list[TrackerIssue]:
        data = self._graphql(_ISSUES_QUERY, {"filter": issue_filter, "first": max(1, limit)})
        nodes = (data.get("issues") or {}).get("nodes") or []
        return [_issue(node) for node in nodes if isinstance(node, dict)]

    def _state_id(self, status: str) -> str:
        wanted = status_name(status).casefold()
        for state in self._team_entities("states"):
            if state.name.casefold() == wanted:
                return state.id
        raise RemoteFailure("unknown_status", f"No workflow state named {status_name(status)!r}")

    def _team_entities(self, connection: str) -> list[TrackerEntity]:
        query = (
            "query TeamEntities($teamId: String!) "
            f"{{ team(id: $teamId) {{ {_TEAM_CONNECTIONS[connection]} }} }}"
        )
        data = self._graphql(query, {"teamId": self.team_id})
        team = data.get("team") or {}
        nodes = (team.get(connection) or {}).get("nodes") or []
        return [_entity(node) for node in nodes if isinstance(node, dict)]

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        authorization = self.auth.tracker_authorization()
        if authorization:
            headers["Authorization"] = authorization

        response = self.session.request(
            method="POST",
            url=self.api_url,
            headers=headers,
            json={"query": query, "variables": variables},
            timeout=self.timeout_s,
        )
        if response.status_code == 429:
            raise RemoteFailure("tracker_rate_limited", "Linear API rate limit exceeded")
        if response.status_code >= 400:
            raise RemoteFailure(
                f"tracker_{response.status_code}",
                f"Linear API error: {response.status_code} - {response.text[:500]}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteFailure("tracker_invalid_json", "Linear API returned invalid JSON") from exc

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            messages = [str(error.get("message", "Unknown error")) for error in errors]
            raise RemoteFailure("tracker_graphql_error", f"Linear GraphQL error: {messages[0]}")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise RemoteFailure("tracker_empty_response", "Linear API returned no data")
        return data

    def _capture(self, operation: str, run: Callable[[], Any]) -> TrackerResult:
        try:
            return TrackerResult.ok(run())
        except MalformedInput as exc:
            return TrackerResult.fail(
                f"Invalid issue identifier {exc.value!r}; expected {exc.expected_format}",
                reason_code="malformed_identifier",
            )
        except RemoteFailure as exc:
            logger.warning("tracker %s failed: %s", operation, exc)
            return TrackerResult.fail(exc.detail or str(exc), reason_code=exc.reason_code)
        except requests.RequestException as exc:
            logger.warning("tracker %s transport error: %s", operation, exc)
            return TrackerResult.fail(f"Linear API unreachable: {exc}", reason_code="transport_error")


def build_tracker_from_env(
    env: Mapping[str, str] | None = None, team_id: str = ""
) -> TrackerClient:
    """Use the Linear API when a key and team are configured, else an in-memory tracker."""

    auth = load_service_auth_from_env(env)
    if auth.tracker_api_key and team_id:
        return LinearTrackerClient(team_id=team_id, auth=auth)
    return InMemoryTrackerClient(team_id=team_id or "local")


def _mutation_issue(result: Any, reason_code: str) -> TrackerIssue:
    if not isinstance(result, dict) or not result.get("success") or not result.get("issue"):
        raise RemoteFailure(reason_code, "the tracker did not apply the change")
    return _issue(result["issue"])


def _issue(node: dict[str, Any]) -> TrackerIssue:
    labels = [label for label in (node.get("labels") or {}).get("nodes") or [] if label]
    assignee = node.get("assignee") or {}
    cycle = node.get("cycle") or {}
    cycle_name = str(cycle.get("name") or "")
    if not cycle_name and cycle.get("number") is not None:
        cycle_name = f"Cycle {cycle['number']}"
    return TrackerIssue(
        id=str(node.get("id", "")),
        identifier=str(node.get("identifier", "")),
        title=str(node.get("title", "")),
        url=str(node.get("url") or ""),
        description=str(node.get("description") or ""),
        status=str((node.get("state") or {}).get("name") or ""),
        priority=int(node.get("priority") or 0),
        assignee=str(assignee.get("displayName") or assignee.get("name") or ""),
        labels=tuple(str(label.get("name", "")) for label in labels),
        label_ids=tuple(str(label.get("id", "")) for label in labels),
        project=str((node.get("project") or {}).get("name") or ""),
        cycle=cycle_name,
        created_at=str(node.get("createdAt") or ""),
        updated_at=str(node.get("updatedAt") or ""),
    )


def _entity(node: dict[str, Any]) -> TrackerEntity:
    name = str(node.get("name") or "")
    if not name and node.get("number") is not None:
        name = f"Cycle {node['number']}"
    return TrackerEntity(
        id=str(node.get("id", "")),
        name=name,
        display_name=str(node.get("displayName") or ""),
        email=str(node.get("email") or ""),
    )


def _comment(node: dict[str, Any]) -> TrackerComment:
    user = node.get("user") or {}
    return TrackerComment(
        body=str(node.get("body") or ""),
        author=str(user.get("displayName") or user.get("name") or ""),
        created_at=str(node.get("createdAt") or ""),
    )
