"""Jira Cloud client (REST API v3)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import requests

from taskbridge.orchestrator.errors import (
    TaskBridgeError,
    ValidationError,
    raise_for_status,
    wrap_request_error,
)
from taskbridge.orchestrator.tracker.base import ExternalWorkItem

if TYPE_CHECKING:
    from taskbridge.orchestrator.config import TaskBridgeSettings

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "summary,description,status,priority,assignee,reporter,created,updated,duedate"


class JiraClient:
    """Thin wrapper around the Jira endpoints taskbridge uses."""

    def __init__(
        self,
        *,
        base_url: str,
        username: str,
        api_token: str,
        timeout: float = 30.0,
        max_results: int = 100,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Jira base URL is required")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_results = max_results
        self._session = session or requests.Session()
        if username and api_token:
            self._session.auth = (username, api_token)
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "taskbridge"}
        )

    @classmethod
    def from_settings(cls, settings: TaskBridgeSettings) -> JiraClient:
        settings.require("jira_base_url", "jira_username", "jira_api_token")
        return cls(
            base_url=settings.jira_base_url,
            username=settings.jira_username,
            api_token=settings.jira_api_token,
            timeout=settings.request_timeout_seconds,
            max_results=settings.jira_max_results,
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}/rest/api/3/{path.lstrip('/')}"

    def _request(self, method: str, path: str, what: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, self._url(path), timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise wrap_request_error(e, what) from e

    def fetch_open_items(self, query: str) -> list[ExternalWorkItem]:
        params = {
            "jql": build_jql(query),
            "maxResults": self._max_results,
            "fields": SEARCH_FIELDS,
        }
        resp = self._request("GET", "search", "Jira search", params=params)
        raise_for_status(resp, "Jira search")

        payload: dict[str, Any] = resp.json()
        items: list[ExternalWorkItem] = []
        for raw in payload.get("issues") or []:
            item = parse_issue(raw) if isinstance(raw, dict) else None
            if item is None:
                logger.warning("Skipping malformed Jira issue", extra={"issue": str(raw)[:200]})
                continue
            items.append(item)

        logger.info("Retrieved items from Jira", extra={"count": len(items)})
        return items

    def get_item(self, key: str) -> ExternalWorkItem | None:
        resp = self._request(
            "GET", f"issue/{key}", "Jira get issue", params={"fields": SEARCH_FIELDS}
        )
        if resp.status_code == 404:
            logger.warning("Item not found in Jira", extra={"key": key})
            return None
        raise_for_status(resp, "Jira get issue")
        return parse_issue(resp.json())

    def post_comment(self, key: str, text: str) -> bool:
        body = {
            "body": {
                "type": "doc",
                "version": 1,
                "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}],
            }
        }
        try:
            resp = self._request("POST", f"issue/{key}/comment", "Jira add comment", json=body)
            raise_for_status(resp, "Jira add comment")
        except TaskBridgeError as e:
            logger.error("Failed to add Jira comment", extra={"key": key, "error": str(e)})
            return False
        logger.info("Added Jira comment", extra={"key": key})
        return True

    def transition_issue(self, key: str, status: str) -> bool:
        try:
            resp = self._request("GET", f"issue/{key}/transitions", "Jira list transitions")
            raise_for_status(resp, "Jira list transitions")
            transition_id = _find_transition(resp.json(), status)
            if transition_id is None:
                raise ValidationError(f"No transition to status {status!r}")

            resp = self._request(
                "POST",
                f"issue/{key}/transitions",
                "Jira transition issue",
                json={"transition": {"id": transition_id}},
            )
            raise_for_status(resp, "Jira transition issue")
        except TaskBridgeError as e:
            logger.error(
                "Failed to transition Jira issue",
                extra={"key": key, "status": status, "error": str(e)},
            )
            return False
        logger.info("Transitioned Jira issue", extra={"key": key, "status": status})
        return True

    def close(self) -> None:
        self._session.close()


def build_jql(query: str) -> str:
    """Append a stable ordering unless the query already has one."""

    jql = query.strip()
    if "order by" not in jql.lower():
        jql += " ORDER BY created DESC"
    return jql


def parse_issue(raw: dict[str, Any]) -> ExternalWorkItem | None:
    fields = raw.get("fields")
    key = raw.get("key")
    if not isinstance(fields, dict) or not isinstance(key, str) or not key.strip():
        return None

    return ExternalWorkItem(
        key=key,
        title=_str(fields.get("summary")),
        description=_description_text(fields.get("description")),
        status=_nested(fields, "status", "name"),
        priority=_nested(fields, "priority", "name"),
        assignee=_nested(fields, "assignee", "displayName"),
        reporter=_nested(fields, "reporter", "displayName"),
        created_at=_parse_datetime(fields.get("created")),
        updated_at=_parse_datetime(fields.get("updated")),
        due_date=_parse_datetime(fields.get("duedate")),
    )


def _str(value: object) -> str:
    return value if isinstance(value, str) else ""


def _nested(parent: dict[str, Any], outer: str, inner: str) -> str:
    value = parent.get(outer)
    if isinstance(value, dict):
        return _str(value.get(inner))
    return ""


def _description_text(value: object) -> str:
    """Flatten a description that may be plain text or Atlassian Document Format."""

    if isinstance(value, str):
        return value
    if not isinstance(value, dict):
        return ""

    parts: list[str] = []

    def walk(node: object) -> None:
        if isinstance(node, dict):
            text = node.get("text")
            if isinstance(text, str):
                parts.append(text)
            for child in node.get("content") or []:
                walk(child)

    walk(value)
    return " ".join(p.strip() for p in parts if p.strip())


def _parse_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    # Jira returns offsets like "+0000"; fromisoformat wants "+00:00".
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def _find_transition(payload: dict[str, Any], status: str) -> str | None:
    for transition in payload.get("transitions") or []:
        if not isinstance(transition, dict):
            continue
        target = transition.get("to")
        name = target.get("name") if isinstance(target, dict) else None
        if isinstance(name, str) and name.lower() == status.lower():
            transition_id = transition.get("id")
            return str(transition_id) if transition_id is not None else None
    return None
