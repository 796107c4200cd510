"""Linear GraphQL issue source."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from ..schema import Issue
from .base import HostingError, NotFoundError

LOGGER = logging.getLogger(__name__)

__all__ = ["LinearIssueSource", "Transport"]

Transport = Callable[[Dict[str, Any]], Dict[str, Any]]

_ISSUE_QUERY = """
query Issue($id: String!) {
  issue(id: $id) {
    id
    identifier
    title
    description
    priority
    priorityLabel
    url
    branchName
    labels { nodes { name } }
  }
}
""".strip()

_COMMENT_MUTATION = """
mutation CommentCreate($issueId: String!, $body: String!) {
  commentCreate(input: { issueId: $issueId, body: $body }) { success }
}
""".strip()


class LinearIssueSource:
    """Fetches issues (with their labels) and posts comments through the Linear API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        api_url: str = "https://api.linear.app/graphql",
        transport: Optional[Transport] = None,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key or os.getenv("LINEAR_API_KEY")
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("LINEAR_API_KEY is required when using the default transport.")

    def fetch_issue(self, issue_id: str) -> Issue:
        data = self._execute(_ISSUE_QUERY, {"id": issue_id})
        node = data.get("issue")
        if not isinstance(node, dict):
            raise NotFoundError(f"Linear issue {issue_id} not found", status=404, details={"issue_id": issue_id})
        labels = node.get("labels") or {}
        label_names = tuple(
            str(item["name"]) for item in labels.get("nodes") or [] if isinstance(item, dict) and item.get("name")
        )
        priority = node.get("priorityLabel") or node.get("priority")
        if priority == "No priority":
            priority = None
        return Issue(
            id=str(node.get("id") or issue_id),
            identifier=str(node.get("identifier") or issue_id),
            title=str(node.get("title") or ""),
            description=node.get("description"),
            priority=priority,
            labels=label_names,
            url=str(node.get("url") or ""),
            branch_name=node.get("branchName") or None,
        )

    def add_comment(self, issue_id: str, body: str) -> None:
        data = self._execute(_COMMENT_MUTATION, {"issueId": issue_id, "body": body})
        result = data.get("commentCreate") or {}
        if not result.get("success"):
            raise HostingError(f"Linear rejected the comment on {issue_id}", details={"response": data})

    def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"query": query, "variables": variables}
        try:
            response = self._transport(payload)
        except HostingError:
            raise
        except Exception as error:  # pragma: no cover
            raise HostingError(f"Linear request failed: {error}") from error

        errors = response.get("errors") if isinstance(response, dict) else None
        if errors:
            messages = "; ".join(str(item.get("message", item)) for item in errors if isinstance(item, dict))
            if "not found" in messages.lower() or "entity not found" in messages.lower():
                raise NotFoundError(f"Linear: {messages}", status=404, details={"errors": errors})
            raise HostingError(f"Linear: {messages or errors}", details={"errors": errors})
        data = response.get("data") if isinstance(response, dict) else None
        if not isinstance(data, dict):
            raise HostingError("Linear response did not contain data.", details={"response": response})
        return data

    def _http_transport(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Default transport that posts GraphQL payloads over HTTPS."""
        import urllib.error
        import urllib.request

        request = urllib.request.Request(
            self._api_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": self._api_key or "",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise HostingError(f"Linear HTTP {error.code}: {message}", status=error.code) from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise HostingError(f"Failed to reach Linear: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise HostingError("Linear request timed out.") from error
        return json.loads(raw.decode("utf-8"))
