"""LinearTracker -- the Tracker capability spoken over Linear's GraphQL API.

Every failure is classified here, at the adapter boundary:

- HTTP 429, HTTP 5xx, network errors, timeouts and GraphQL ``RATELIMITED``
  errors raise :class:`TransientTrackerError` (429 carries ``Retry-After``).
- Other HTTP 4xx, GraphQL errors and malformed payloads raise
  :class:`PermanentTrackerError`.

Retries are not done here; the plan applier owns the retry policy.

Typical usage::

    tracker = LinearTracker(LinearConfig.from_env())
    children = tracker.list_children("ENG-42")
"""

from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.request
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from foundry_mcp.config import LinearConfig
from foundry_mcp.models.tasks import ExistingSubIssue, IssueState, TerminalState
from foundry_mcp.reconcile.markers import (
    FOUNDRY_LABEL,
    FOUNDRY_LABEL_COLOR,
    fqid,
    has_foundry_label,
    parse_task_key,
    render_task_description,
)
from foundry_mcp.tracker.base import PermanentTrackerError, TransientTrackerError

logger = logging.getLogger(__name__)

# Page size when listing sub-issues.
CHILDREN_PAGE_SIZE = 100

# Preferred Linear workflow state types for each target state, best first.
_STATE_TYPE_PREFERENCE = {
    IssueState.OPEN: ("unstarted", "backlog", "started", "triage"),
    IssueState.COMPLETED: ("completed",),
    IssueState.CANCELED: ("canceled", "completed"),
}

_TERMINAL_TYPES = {
    "completed": TerminalState.COMPLETED,
    "canceled": TerminalState.CANCELED,
}

# ---------------------------------------------------------------------------
# GraphQL documents
# ---------------------------------------------------------------------------

ISSUE_CHILDREN_QUERY = """
query IssueChildren($id: String!, $first: Int!, $after: String) {
  issue(id: $id) {
    children(first: $first, after: $after) {
      nodes {
        id
        title
        description
        state { type }
        labels { nodes { name } }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

ISSUE_TEAM_QUERY = """
query IssueTeam($id: String!) {
  issue(id: $id) { id team { id } }
}
"""

TEAM_STATES_QUERY = """
query TeamStates($id: String!) {
  team(id: $id) { states { nodes { id name type position } } }
}
"""

FIND_LABEL_QUERY = """
query FindIssueLabels($name: String!) {
  issueLabels(first: 50, filter: { name: { eq: $name } }) { nodes { id name } }
}
"""

CREATE_LABEL_MUTATION = """
mutation CreateIssueLabel($input: IssueLabelCreateInput!) {
  issueLabelCreate(input: $input) { success issueLabel { id name } }
}
"""

CREATE_ISSUE_MUTATION = """
mutation CreateSubIssue($input: IssueCreateInput!) {
  issueCreate(input: $input) { success issue { id } }
}
"""

UPDATE_ISSUE_MUTATION = """
mutation UpdateIssue($id: String!, $input: IssueUpdateInput!) {
  issueUpdate(id: $id, input: $input) { success issue { id } }
}
"""


class LinearTracker:
    """Tracker backed by Linear.

    Team ids, workflow states and the ``foundry`` label id are looked up on
    first use and cached for the lifetime of the tracker.

    Parameters
    ----------
    config:
        Endpoint, credential and timeout.  The credential is captured here.
    """

    def __init__(self, config: LinearConfig) -> None:
        self._endpoint = config.endpoint
        self._timeout = config.timeout_secs
        self._user_agent = config.user_agent
        self._authorization = _authorization_header(config.token)
        self._issue_team: dict[str, str] = {}
        self._team_states: dict[str, list[dict]] = {}
        self._label_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Tracker protocol
    # ------------------------------------------------------------------

    def list_children(self, parent_id: str) -> list[ExistingSubIssue]:
        children: list[ExistingSubIssue] = []
        after: Optional[str] = None

        while True:
            data = self.graphql(
                ISSUE_CHILDREN_QUERY,
                {"id": parent_id, "first": CHILDREN_PAGE_SIZE, "after": after},
            )
            issue = data.get("issue")
            if not isinstance(issue, dict):
                raise PermanentTrackerError(f"Issue not found: {parent_id}")

            connection = issue.get("children") or {}
            for node in connection.get("nodes") or []:
                children.append(_to_existing(node))

            page = connection.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            after = page.get("endCursor")
            if not after:
                break

        logger.debug("Listed %d sub-issue(s) under %s.", len(children), fqid(parent_id))
        return children

    def create_subissue(
        self,
        parent_id: str,
        title: str,
        task_key: str,
        completed: bool,
    ) -> str:
        team_id = self._team_of(parent_id)
        issue_input: dict[str, Any] = {
            "title": title,
            "description": render_task_description(task_key),
            "teamId": team_id,
            "parentId": parent_id,
            "labelIds": [self._foundry_label_id()],
        }
        if completed:
            issue_input["stateId"] = self._state_id(team_id, IssueState.COMPLETED)

        data = self.graphql(CREATE_ISSUE_MUTATION, {"input": issue_input})
        payload = data.get("issueCreate") or {}
        issue = payload.get("issue") or {}
        issue_id = issue.get("id")
        if not payload.get("success") or not issue_id:
            raise PermanentTrackerError("issueCreate returned no issue.")

        issue_id = str(issue_id)
        self._issue_team[issue_id] = team_id
        return issue_id

    def update_title(self, issue_id: str, new_title: str) -> None:
        self._update(issue_id, {"title": new_title})

    def set_state(self, issue_id: str, state: IssueState) -> None:
        state = IssueState(state)
        team_id = self._team_of(issue_id)
        self._update(issue_id, {"stateId": self._state_id(team_id, state)})

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def graphql(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        """POST one GraphQL document and return its ``data`` object."""
        payload = json.dumps({"query": query, "variables": dict(variables)}).encode("utf-8")
        request = urllib.request.Request(self._endpoint, data=payload, method="POST")
        request.add_header("Content-Type", "application/json")
        request.add_header("Accept", "application/json")
        request.add_header("User-Agent", self._user_agent)
        request.add_header("Authorization", self._authorization)

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            _raise_for_http_error(exc.code, exc.reason, exc.headers, body)
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            raise TransientTrackerError(f"Linear request failed: {exc}") from exc

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PermanentTrackerError(
                f"Linear returned invalid JSON: {exc}"
            ) from exc
        if not isinstance(document, dict):
            raise PermanentTrackerError("Linear returned a non-object JSON document.")

        errors = document.get("errors")
        if errors:
            _raise_for_graphql_errors(errors)

        data = document.get("data")
        if not isinstance(data, dict):
            raise PermanentTrackerError("Linear GraphQL response missing data.")
        return data

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _update(self, issue_id: str, issue_input: dict[str, Any]) -> None:
        data = self.graphql(UPDATE_ISSUE_MUTATION, {"id": issue_id, "input": issue_input})
        payload = data.get("issueUpdate") or {}
        if not payload.get("success"):
            raise PermanentTrackerError(f"issueUpdate on {issue_id} was not successful.")

    def _team_of(self, issue_id: str) -> str:
        cached = self._issue_team.get(issue_id)
        if cached is not None:
            return cached

        data = self.graphql(ISSUE_TEAM_QUERY, {"id": issue_id})
        issue = data.get("issue")
        team = (issue or {}).get("team") or {}
        if not team.get("id"):
            raise PermanentTrackerError(f"Issue not found or has no team: {issue_id}")

        team_id = str(team["id"])
        self._issue_team[issue_id] = team_id
        return team_id

    def _state_id(self, team_id: str, state: IssueState) -> str:
        states = self._team_states.get(team_id)
        if states is None:
            data = self.graphql(TEAM_STATES_QUERY, {"id": team_id})
            team = data.get("team") or {}
            states = list((team.get("states") or {}).get("nodes") or [])
            self._team_states[team_id] = states

        for state_type in _STATE_TYPE_PREFERENCE[state]:
            matching = [s for s in states if s.get("type") == state_type and s.get("id")]
            if matching:
                best = min(matching, key=lambda s: s.get("position") or 0)
                return str(best["id"])

        raise PermanentTrackerError(
            f"Team {team_id} has no workflow state usable as {state.value!r}."
        )

    def _foundry_label_id(self) -> str:
        if self._label_id is not None:
            return self._label_id

        data = self.graphql(FIND_LABEL_QUERY, {"name": FOUNDRY_LABEL})
        nodes = (data.get("issueLabels") or {}).get("nodes") or []
        for node in nodes:
            if has_foundry_label([str(node.get("name") or "")]) and node.get("id"):
                self._label_id = str(node["id"])
                return self._label_id

        created = self.graphql(
            CREATE_LABEL_MUTATION,
            {"input": {"name": FOUNDRY_LABEL, "color": FOUNDRY_LABEL_COLOR}},
        )
        label = (created.get("issueLabelCreate") or {}).get("issueLabel") or {}
        if not label.get("id"):
            raise PermanentTrackerError("issueLabelCreate returned no label.")

        logger.info("Created the %r label in Linear.", FOUNDRY_LABEL)
        self._label_id = str(label["id"])
        return self._label_id


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _authorization_header(token: str) -> str:
    # Personal API keys are sent raw; OAuth access tokens use the Bearer scheme.
    if token.startswith("lin_api_") or token.lower().startswith("bearer "):
        return token
    return f"Bearer {token}"


def _to_existing(node: Mapping[str, Any]) -> ExistingSubIssue:
    state_type = str((node.get("state") or {}).get("type") or "")
    labels = [
        str(label.get("name") or "")
        for label in (node.get("labels") or {}).get("nodes") or []
    ]
    terminal = _TERMINAL_TYPES.get(state_type)
    return ExistingSubIssue(
        id=str(node.get("id")),
        title=str(node.get("title") or ""),
        open=terminal is None,
        task_key=parse_task_key(node.get("description")),
        has_foundry_label=has_foundry_label(labels),
        terminal_state=terminal,
    )


def _raise_for_http_error(status: int, reason: Any, headers: Any, body: str) -> None:
    message = f"Linear HTTP error: {status} {reason}"
    if status == 429:
        retry_after = _parse_retry_after(headers.get("Retry-After") if headers else None)
        raise TransientTrackerError(message, retry_after=retry_after)
    if status >= 500:
        raise TransientTrackerError(message)
    if _is_rate_limited_body(body):
        raise TransientTrackerError(f"{message} (rate limited)")
    raise PermanentTrackerError(f"{message}: {body[:500]}" if body else message)


def _raise_for_graphql_errors(errors: Any) -> None:
    if _has_rate_limit_code(errors):
        raise TransientTrackerError(f"Linear rate limited: {errors}")
    raise PermanentTrackerError(f"Linear GraphQL errors: {errors}")


def _is_rate_limited_body(body: str) -> bool:
    try:
        document = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return False
    if not isinstance(document, dict):
        return False
    return _has_rate_limit_code(document.get("errors"))


def _has_rate_limit_code(errors: Any) -> bool:
    if not isinstance(errors, list):
        return False
    for error in errors:
        if not isinstance(error, dict):
            continue
        extensions = error.get("extensions") or {}
        if str(extensions.get("code") or "").upper() == "RATELIMITED":
            return True
    return False


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
