"""GitHub REST v3 backend: file store, branch/commit primitives, and pull requests."""

from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlencode

from ..schema import PullRequestInfo, PullRequestRef
from ..structured import FileOperation
from .base import BranchConflictError, FileContent, HostingError, NotFoundError

LOGGER = logging.getLogger(__name__)

__all__ = ["GitHubClient", "Transport"]

Transport = Callable[[str, str, Optional[Dict[str, Any]]], Tuple[int, Any]]
"""``(method, path_with_query, json_body) -> (status, decoded_json)``."""

API_VERSION = "2022-11-28"


class GitHubClient:
    """Implements :class:`FileStore`, :class:`HostingBackend` and :class:`ReviewBackend`.

    Commits are built the way ``git`` itself builds them: every blob first,
    then one tree on top of the branch's current tree, one commit, and a
    single ref update. A failure anywhere before the ref update leaves the
    branch untouched.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        token: Optional[str] = None,
        api_url: str = "https://api.github.com",
        transport: Optional[Transport] = None,
        timeout: float = 30.0,
        search_extension: Optional[str] = None,
        default_ref: Optional[str] = None,
    ) -> None:
        if not owner or not repo:
            raise ValueError("GitHub owner and repo are required.")
        self.owner = owner
        self.repo = repo
        self._token = token or os.getenv("GITHUB_TOKEN")
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._search_extension = search_extension
        self._default_ref = default_ref
        self._transport = transport or self._http_transport

        if transport is None and not self._token:
            raise ValueError("GITHUB_TOKEN is required when using the default transport.")

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    # --------------------------------------------------------------- transport
    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if params:
            path = f"{path}?{urlencode({key: value for key, value in params.items() if value is not None})}"
        try:
            status, data = self._transport(method, path, body)
        except HostingError:
            raise
        except Exception as error:  # pragma: no cover
            raise HostingError(f"GitHub request {method} {path} failed: {error}") from error

        if status < 400:
            return data
        message = data.get("message") if isinstance(data, dict) else None
        text = f"GitHub {method} {path} returned {status}: {message or data}"
        details = {"method": method, "path": path, "response": data}
        if status == 404:
            raise NotFoundError(text, status=status, details=details)
        raise HostingError(text, status=status, details=details)

    def _http_transport(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> Tuple[int, Any]:
        """Default transport that talks to the GitHub REST API over HTTPS."""
        import urllib.error
        import urllib.request

        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = urllib.request.Request(
            f"{self._api_url}{path}",
            data=data,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
                "User-Agent": "issue-autopilot",
                "X-GitHub-Api-Version": API_VERSION,
            },
            method=method,
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            raw = error.read()
            status = error.code
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise HostingError(f"Failed to reach GitHub: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise HostingError("GitHub request timed out.") from error

        if not raw:
            return status, None
        try:
            return status, json.loads(raw.decode("utf-8"))
        except json.JSONDecodeError:
            return status, raw.decode("utf-8", errors="replace")

    # -------------------------------------------------------------- file store
    def read_file(self, path: str, ref: Optional[str] = None) -> FileContent:
        """Return the decoded file at ``ref``; missing paths come back with ``exists=False``."""
        try:
            data = self._request(
                "GET",
                f"{self._repo_path}/contents/{quote(path)}",
                params={"ref": ref or self._default_ref},
            )
        except NotFoundError:
            LOGGER.debug("File not found on GitHub: %s", path)
            return FileContent(path=path, content="", exists=False)

        if not isinstance(data, dict) or data.get("type") != "file":
            raise HostingError(f"{path} is not a file", details={"path": path})
        encoded = data.get("content") or ""
        content = base64.b64decode(encoded).decode("utf-8", errors="replace") if encoded else ""
        return FileContent(path=path, content=content, exists=True, sha=data.get("sha"))

    def read_files(self, paths: Sequence[str], ref: Optional[str] = None) -> Dict[str, FileContent]:
        """Read ``paths`` one by one, skipping the ones GitHub refuses to serve."""
        results: Dict[str, FileContent] = {}
        for path in paths:
            try:
                results[path] = self.read_file(path, ref)
            except HostingError as error:
                LOGGER.warning("Could not read %s: %s", path, error)
        return results

    def search_files(self, keyword: str) -> List[str]:
        query = f"{keyword} repo:{self.owner}/{self.repo}"
        if self._search_extension:
            query = f"{query} extension:{self._search_extension}"
        try:
            data = self._request("GET", "/search/code", params={"q": query})
        except HostingError as error:
            LOGGER.warning("Code search failed for '%s': %s", keyword, error)
            return []
        items = data.get("items") if isinstance(data, dict) else None
        return [item["path"] for item in (items or []) if isinstance(item, dict) and item.get("path")][:10]

    # ---------------------------------------------------------------- branches
    def get_branch_sha(self, name: str) -> str:
        data = self._request("GET", f"{self._repo_path}/git/ref/heads/{quote(name)}")
        return data["object"]["sha"]

    def create_branch(self, name: str, base: str) -> None:
        """Create ``name`` from ``base``; an existing branch is deleted and recreated."""
        base_sha = self.get_branch_sha(base)
        try:
            self._create_ref(name, base_sha)
        except BranchConflictError:
            LOGGER.info("Branch %s exists, deleting and recreating", name)
            self.delete_branch(name)
            self._create_ref(name, base_sha)
        LOGGER.info("Created branch %s from %s", name, base)

    def _create_ref(self, name: str, sha: str) -> None:
        try:
            self._request("POST", f"{self._repo_path}/git/refs", {"ref": f"refs/heads/{name}", "sha": sha})
        except HostingError as error:
            if error.status == 422:
                raise BranchConflictError(str(error), status=422, details=error.details) from error
            raise

    def delete_branch(self, name: str) -> None:
        try:
            self._request("DELETE", f"{self._repo_path}/git/refs/heads/{quote(name)}")
        except NotFoundError:
            return

    # ------------------------------------------------------------------ commits
    def commit_files(self, branch: str, operations: Sequence[FileOperation], message: str) -> str:
        """Commit every operation in one commit and return its sha."""
        if not operations:
            raise HostingError("Refusing to create an empty commit.")
        parent_sha = self.get_branch_sha(branch)
        parent = self._request("GET", f"{self._repo_path}/git/commits/{parent_sha}")
        base_tree = parent["tree"]["sha"]

        entries: List[Dict[str, Any]] = []
        for operation in operations:
            if operation.is_delete:
                entries.append({"path": operation.path, "mode": "100644", "type": "blob", "sha": None})
                continue
            blob = self._request(
                "POST",
                f"{self._repo_path}/git/blobs",
                {
                    "content": base64.b64encode((operation.content or "").encode("utf-8")).decode("ascii"),
                    "encoding": "base64",
                },
            )
            LOGGER.debug("Created blob for %s -> %s", operation.path, blob["sha"])
            entries.append({"path": operation.path, "mode": "100644", "type": "blob", "sha": blob["sha"]})

        tree = self._request("POST", f"{self._repo_path}/git/trees", {"base_tree": base_tree, "tree": entries})
        commit = self._request(
            "POST",
            f"{self._repo_path}/git/commits",
            {"message": message, "tree": tree["sha"], "parents": [parent_sha]},
        )
        self._request(
            "PATCH",
            f"{self._repo_path}/git/refs/heads/{quote(branch)}",
            {"sha": commit["sha"], "force": False},
        )
        LOGGER.info("Committed %d file(s) to %s (%s)", len(operations), branch, commit["sha"])
        return commit["sha"]

    # ------------------------------------------------------------ pull requests
    def open_pull_request(self, branch: str, base: str, title: str, body: str) -> PullRequestRef:
        """Open a pull request, or return the one already open for ``branch``."""
        try:
            data = self._request(
                "POST",
                f"{self._repo_path}/pulls",
                {"title": title, "head": branch, "base": base, "body": body},
            )
        except HostingError as error:
            if error.status != 422:
                raise
            existing = self.find_open_pull_request(branch)
            if existing is None:
                raise
            LOGGER.info("Pull request already open for %s: %s", branch, existing.url)
            return existing
        return PullRequestRef(url=data["html_url"], branch=branch, number=data.get("number"))

    def find_open_pull_request(self, branch: str) -> Optional[PullRequestRef]:
        data = self._request(
            "GET",
            f"{self._repo_path}/pulls",
            params={"head": f"{self.owner}:{branch}", "state": "open"},
        )
        for item in data or []:
            if isinstance(item, dict) and item.get("html_url"):
                return PullRequestRef(url=item["html_url"], branch=branch, number=item.get("number"))
        return None

    def get_pull_request(self, number: int) -> PullRequestInfo:
        data = self._request("GET", f"{self._repo_path}/pulls/{number}")
        files = self._request("GET", f"{self._repo_path}/pulls/{number}/files", params={"per_page": 100})
        paths = tuple(
            item["filename"]
            for item in files or []
            if isinstance(item, dict) and item.get("filename") and item.get("status") != "removed"
        )
        return PullRequestInfo(
            number=number,
            title=data.get("title") or "",
            body=data.get("body"),
            head_ref=data["head"]["ref"],
            base_ref=data.get("base", {}).get("ref") or "main",
            url=data.get("html_url") or "",
            files=paths,
        )

    def comment_on_pull_request(self, number: int, body: str) -> None:
        self._request("POST", f"{self._repo_path}/issues/{number}/comments", {"body": body})
