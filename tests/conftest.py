"""Shared fixtures: clean environment, project directories, and a fake Linear.

The fake Linear is a real HTTP server (stdlib ``http.server`` in a thread)
answering the GraphQL documents the adapter sends, backed by in-memory
issues.  Responses can be scripted to exercise error classification.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional

import pytest

from foundry_mcp.config import ENV_PREFIX, LinearConfig


# ---------------------------------------------------------------------------
# Environment and logging hygiene
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_env():
    """Remove all FOUNDRY_* and LINEAR_* env vars before and after each test."""
    prefixes = (ENV_PREFIX, "LINEAR_")
    saved = {k: os.environ.pop(k) for k in list(os.environ) if k.startswith(prefixes)}
    yield
    for k in list(os.environ):
        if k.startswith(prefixes):
            del os.environ[k]
    os.environ.update(saved)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers attached by configure_logging() so streams never leak."""
    yield
    pkg_logger = logging.getLogger("foundry_mcp")
    for handler in list(pkg_logger.handlers):
        pkg_logger.removeHandler(handler)
    pkg_logger.setLevel(logging.NOTSET)


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    """Create a temporary project directory with a .git marker."""
    (tmp_path / ".git").mkdir()
    return tmp_path


# ---------------------------------------------------------------------------
# Fake Linear GraphQL server
# ---------------------------------------------------------------------------

_OPERATION_RE = re.compile(r"\b(?:query|mutation)\s+(\w+)")

TEAM_ID = "TEAM-1"

DEFAULT_STATES = [
    {"id": "ST-backlog", "name": "Backlog", "type": "backlog", "position": 0},
    {"id": "ST-todo", "name": "Todo", "type": "unstarted", "position": 1},
    {"id": "ST-doing", "name": "In Progress", "type": "started", "position": 2},
    {"id": "ST-done", "name": "Done", "type": "completed", "position": 3},
    {"id": "ST-canceled", "name": "Canceled", "type": "canceled", "position": 4},
]


class FakeLinear:
    """In-memory Linear workspace answering the adapter's GraphQL documents."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.issues: dict[str, dict] = {}
        self.labels: dict[str, str] = {}
        self.states: dict[str, list[dict]] = {TEAM_ID: list(DEFAULT_STATES)}
        self.requests: list[dict] = []
        self._scripted: list[tuple[int, dict, str]] = []
        self._next_id = 1

    # -- seeding ---------------------------------------------------------

    def add_issue(
        self,
        issue_id: str,
        title: str,
        *,
        parent: Optional[str] = None,
        description: str = "",
        state_type: str = "unstarted",
        labels: tuple = (),
        team: str = TEAM_ID,
    ) -> dict:
        issue = {
            "id": issue_id,
            "title": title,
            "description": description,
            "state_type": state_type,
            "labels": list(labels),
            "parent": parent,
            "team": team,
        }
        self.issues[issue_id] = issue
        return issue

    def add_label(self, name: str, label_id: str = "LBL-existing") -> None:
        self.labels[label_id] = name

    def script(self, status: int, body=None, headers: Optional[dict] = None, times: int = 1) -> None:
        """Answer the next *times* requests with a canned response."""
        text = body if isinstance(body, str) else json.dumps(body or {})
        for _ in range(times):
            self._scripted.append((status, headers or {}, text))

    def children_of(self, parent: str) -> list[dict]:
        return sorted(
            (i for i in self.issues.values() if i["parent"] == parent),
            key=lambda i: i["id"],
        )

    def operations(self) -> list[str]:
        return [r["operation"] for r in self.requests]

    # -- dispatch --------------------------------------------------------

    def dispatch(self, headers: dict, payload: dict) -> tuple[int, dict, str]:
        with self.lock:
            query = payload.get("query", "")
            match = _OPERATION_RE.search(query)
            operation = match.group(1) if match else ""
            variables = payload.get("variables") or {}
            self.requests.append(
                {
                    "operation": operation,
                    "variables": variables,
                    "headers": {k.lower(): v for k, v in headers.items()},
                }
            )

            if self._scripted:
                return self._scripted.pop(0)

            handler = getattr(self, f"_op_{operation}", None)
            if handler is None:
                return 400, {}, json.dumps(
                    {"errors": [{"message": f"Unknown operation {operation}"}]}
                )
            result = handler(variables)
            if "errors" in result:
                return 200, {}, json.dumps(result)
            return 200, {}, json.dumps({"data": result})

    def _allocate(self, prefix: str) -> str:
        value = f"{prefix}-{self._next_id}"
        self._next_id += 1
        return value

    def _not_found(self, entity_id: str) -> dict:
        return {
            "errors": [
                {
                    "message": f"Entity not found: {entity_id}",
                    "extensions": {"code": "INVALID_INPUT"},
                }
            ]
        }

    def _op_IssueChildren(self, variables: dict) -> dict:
        parent = variables["id"]
        if parent not in self.issues:
            return self._not_found(parent)
        children = self.children_of(parent)
        start = int(variables.get("after") or 0)
        first = int(variables.get("first") or 50)
        page = children[start:start + first]
        end = start + len(page)
        nodes = [
            {
                "id": i["id"],
                "title": i["title"],
                "description": i["description"],
                "state": {"type": i["state_type"]},
                "labels": {"nodes": [{"name": n} for n in i["labels"]]},
            }
            for i in page
        ]
        return {
            "issue": {
                "children": {
                    "nodes": nodes,
                    "pageInfo": {
                        "hasNextPage": end < len(children),
                        "endCursor": str(end),
                    },
                }
            }
        }

    def _op_IssueTeam(self, variables: dict) -> dict:
        issue = self.issues.get(variables["id"])
        if issue is None:
            return self._not_found(variables["id"])
        return {"issue": {"id": issue["id"], "team": {"id": issue["team"]}}}

    def _op_TeamStates(self, variables: dict) -> dict:
        states = self.states.get(variables["id"], [])
        return {"team": {"states": {"nodes": states}}}

    def _op_FindIssueLabels(self, variables: dict) -> dict:
        nodes = [
            {"id": label_id, "name": name}
            for label_id, name in self.labels.items()
            if name == variables["name"]
        ]
        return {"issueLabels": {"nodes": nodes}}

    def _op_CreateIssueLabel(self, variables: dict) -> dict:
        label_id = self._allocate("LBL")
        self.labels[label_id] = variables["input"]["name"]
        return {
            "issueLabelCreate": {
                "success": True,
                "issueLabel": {"id": label_id, "name": variables["input"]["name"]},
            }
        }

    def _op_CreateSubIssue(self, variables: dict) -> dict:
        data = variables["input"]
        state_type = "unstarted"
        if data.get("stateId"):
            state_type = self._state_type(data["teamId"], data["stateId"])
        issue_id = self._allocate("ISS")
        self.add_issue(
            issue_id,
            data["title"],
            parent=data.get("parentId"),
            description=data.get("description", ""),
            state_type=state_type,
            labels=tuple(self.labels[i] for i in data.get("labelIds", [])),
            team=data["teamId"],
        )
        return {"issueCreate": {"success": True, "issue": {"id": issue_id}}}

    def _op_UpdateIssue(self, variables: dict) -> dict:
        issue = self.issues.get(variables["id"])
        if issue is None:
            return self._not_found(variables["id"])
        data = variables["input"]
        if "title" in data:
            issue["title"] = data["title"]
        if "stateId" in data:
            issue["state_type"] = self._state_type(issue["team"], data["stateId"])
        return {"issueUpdate": {"success": True, "issue": {"id": issue["id"]}}}

    def _state_type(self, team: str, state_id: str) -> str:
        for state in self.states.get(team, []):
            if state["id"] == state_id:
                return state["type"]
        raise KeyError(state_id)


class _FakeLinearHandler(BaseHTTPRequestHandler):
    def do_POST(self) -> None:  # noqa: N802
        length = int(self.headers.get("Content-Length") or 0)
        payload = json.loads(self.rfile.read(length) or b"{}")
        status, headers, body = self.server.fake.dispatch(dict(self.headers), payload)
        encoded = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(encoded)))
        for name, value in headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(encoded)

    def log_message(self, format, *args) -> None:
        return


@pytest.fixture()
def fake_linear():
    """Run a FakeLinear behind a real local HTTP server for one test."""
    fake = FakeLinear()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _FakeLinearHandler)
    server.fake = fake
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    fake.endpoint = f"http://127.0.0.1:{server.server_address[1]}/graphql"
    try:
        yield fake
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture()
def linear_config(fake_linear) -> LinearConfig:
    return LinearConfig(endpoint=fake_linear.endpoint, token="lin_api_test", timeout_secs=5)
