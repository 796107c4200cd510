from __future__ import annotations

import base64
import subprocess
import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from autopilot.hosting.base import FileContent, HostingError  # noqa: E402
from autopilot.models.llm_client import LLMClient, LLMTransportError  # noqa: E402
from autopilot.schema import Issue, PullRequestInfo, PullRequestRef  # noqa: E402
from autopilot.structured import FileOperation  # noqa: E402


def file_block(path: str, content: str, *, action: Optional[str] = None, lang: str = "") -> str:
    """Render one reply block in the format the parser understands."""
    lines = [f"### FILE: {path}"]
    if action:
        lines.append(f"### ACTION: {action}")
    lines.append(f"```{lang}")
    lines.append(content.rstrip("\n"))
    lines.append("```")
    return "\n".join(lines) + "\n"


def reply(*blocks: str, summary: str = "Did the work.", testing: str = "Run the tests.") -> str:
    return (
        "## Analysis\nLooked at the code.\n\n"
        + "\n".join(blocks)
        + f"\n## Implementation Summary\n{summary}\n\n## Testing Notes\n{testing}\n"
    )


class ScriptedClient(LLMClient):
    """Returns canned replies in order and records every prompt it was sent."""

    def __init__(self, replies: Sequence[Any]) -> None:
        super().__init__(model="scripted", max_attempts=1, retry_delay=0)
        self._replies = list(replies)
        self.prompts: List[str] = []
        self.payloads: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        self.prompts.append(payload["messages"][0]["content"])
        if not self._replies:
            raise AssertionError("ScriptedClient ran out of replies")
        item = self._replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FailingClient(LLMClient):
    def __init__(self) -> None:
        super().__init__(model="failing", max_attempts=2, retry_delay=0)
        self.calls = 0

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.calls += 1
        raise LLMTransportError("connection reset")


@dataclass
class MemoryStore:
    """Dictionary-backed :class:`FileStore` with scripted search results."""

    files: Dict[str, str] = field(default_factory=dict)
    search_results: Dict[str, List[str]] = field(default_factory=dict)
    fail_batch: bool = False
    fail_search: bool = False
    reads: List[tuple] = field(default_factory=list)
    searches: List[str] = field(default_factory=list)

    def read_file(self, path: str, ref: Optional[str] = None) -> FileContent:
        self.reads.append((path, ref))
        if path in self.files:
            return FileContent(path=path, content=self.files[path], exists=True)
        return FileContent(path=path, content="", exists=False)

    def read_files(self, paths: Sequence[str], ref: Optional[str] = None) -> Dict[str, FileContent]:
        if self.fail_batch:
            raise HostingError("batch reads are down")
        return {path: self.read_file(path, ref) for path in paths}

    def search_files(self, keyword: str) -> List[str]:
        self.searches.append(keyword)
        if self.fail_search:
            raise HostingError("search is down")
        return list(self.search_results.get(keyword, []))


@dataclass
class RecordingBackend:
    """In-process :class:`HostingBackend` and :class:`ReviewBackend`."""

    branches: List[tuple] = field(default_factory=list)
    commits: List[tuple] = field(default_factory=list)
    pull_requests: List[dict] = field(default_factory=list)
    comments: List[tuple] = field(default_factory=list)
    pull_request_info: Optional[PullRequestInfo] = None
    fail_commit: bool = False

    def create_branch(self, name: str, base: str) -> None:
        self.branches.append((name, base))

    def commit_files(self, branch: str, operations: Sequence[FileOperation], message: str) -> str:
        if self.fail_commit:
            raise HostingError("commit rejected")
        self.commits.append((branch, list(operations), message))
        return f"sha{len(self.commits)}"

    def open_pull_request(self, branch: str, base: str, title: str, body: str) -> PullRequestRef:
        self.pull_requests.append({"branch": branch, "base": base, "title": title, "body": body})
        number = len(self.pull_requests)
        return PullRequestRef(url=f"https://example.test/pr/{number}", branch=branch, number=number)

    def get_pull_request(self, number: int) -> PullRequestInfo:
        if self.pull_request_info is None or self.pull_request_info.number != number:
            raise HostingError(f"no pull request {number}", status=404)
        return self.pull_request_info

    def comment_on_pull_request(self, number: int, body: str) -> None:
        self.comments.append((number, body))


@dataclass
class StaticIssues:
    issues: Dict[str, Issue] = field(default_factory=dict)
    comments: List[tuple] = field(default_factory=list)

    def fetch_issue(self, issue_id: str) -> Issue:
        return self.issues[issue_id]

    def add_comment(self, issue_id: str, body: str) -> None:
        self.comments.append((issue_id, body))


REPO = "/repos/acme/widgets"


class FakeGitHub:
    """Minimal in-process model of the git data and pulls endpoints."""

    def __init__(self) -> None:
        self.refs: Dict[str, str] = {"main": "c0"}
        self.commits: Dict[str, Dict[str, Any]] = {"c0": {"tree": {"sha": "t0"}}}
        self.files: Dict[str, str] = {"src/app.py": "print('hi')\n"}
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.fail_on: Optional[Tuple[str, str]] = None
        self.pulls: List[Dict[str, Any]] = []
        self.comments: List[Tuple[int, str]] = []
        self._counter = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def __call__(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> Tuple[int, Any]:
        self.calls.append((method, path, body))
        route = path.split("?", 1)[0]
        if self.fail_on and method == self.fail_on[0] and route.endswith(self.fail_on[1]):
            return 500, {"message": "injected failure"}

        if method == "GET" and route.startswith(f"{REPO}/git/ref/heads/"):
            name = route.rsplit("/", 1)[1]
            if name not in self.refs:
                return 404, {"message": "Not Found"}
            return 200, {"object": {"sha": self.refs[name]}}
        if method == "POST" and route == f"{REPO}/git/refs":
            name = body["ref"].removeprefix("refs/heads/")
            if name in self.refs:
                return 422, {"message": "Reference already exists"}
            self.refs[name] = body["sha"]
            return 201, {"ref": body["ref"]}
        if method == "DELETE" and route.startswith(f"{REPO}/git/refs/heads/"):
            self.refs.pop(route.rsplit("/", 1)[1], None)
            return 204, None
        if method == "GET" and route.startswith(f"{REPO}/git/commits/"):
            return 200, self.commits[route.rsplit("/", 1)[1]]
        if method == "POST" and route == f"{REPO}/git/blobs":
            return 201, {"sha": self._next("b")}
        if method == "POST" and route == f"{REPO}/git/trees":
            return 201, {"sha": self._next("t")}
        if method == "POST" and route == f"{REPO}/git/commits":
            sha = self._next("c")
            self.commits[sha] = {"tree": {"sha": body["tree"]}, "parents": body["parents"]}
            return 201, {"sha": sha}
        if method == "PATCH" and route.startswith(f"{REPO}/git/refs/heads/"):
            self.refs[route.rsplit("/", 1)[1]] = body["sha"]
            return 200, {"object": {"sha": body["sha"]}}
        if method == "GET" and route.startswith(f"{REPO}/contents/"):
            file_path = route.removeprefix(f"{REPO}/contents/")
            if file_path not in self.files:
                return 404, {"message": "Not Found"}
            encoded = base64.b64encode(self.files[file_path].encode("utf-8")).decode("ascii")
            return 200, {"type": "file", "content": encoded, "sha": "blob-sha"}
        if method == "GET" and route == "/search/code":
            return 200, {"items": [{"path": "src/app.py"}, {"path": "src/other.py"}]}
        if method == "POST" and route == f"{REPO}/pulls":
            if any(pull["head"] == body["head"] for pull in self.pulls):
                return 422, {"message": "A pull request already exists"}
            number = len(self.pulls) + 1
            self.pulls.append({**body, "number": number, "html_url": f"https://github.test/pull/{number}"})
            return 201, self.pulls[-1]
        if method == "GET" and route == f"{REPO}/pulls":
            return 200, [pull for pull in self.pulls]
        if method == "GET" and route == f"{REPO}/pulls/7":
            return 200, {
                "title": "Add widgets (ENG-7)",
                "body": None,
                "head": {"ref": "eng-7-add-widgets"},
                "base": {"ref": "main"},
                "html_url": "https://github.test/pull/7",
            }
        if method == "GET" and route == f"{REPO}/pulls/7/files":
            return 200, [
                {"filename": "src/widgets.py", "status": "added"},
                {"filename": "src/gone.py", "status": "removed"},
            ]
        if method == "POST" and route.startswith(f"{REPO}/issues/"):
            self.comments.append((int(route.split("/")[-2]), body["body"]))
            return 201, {"id": 1}
        return 404, {"message": f"unhandled {method} {route}"}


def run_git(root: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=root,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Create a small git repository on ``main`` with one committed module."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    run_git(repo_root, "init")
    run_git(repo_root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo_root, "config", "user.email", "autopilot@example.com")
    run_git(repo_root, "config", "user.name", "Issue Autopilot")

    src_dir = repo_root / "src" / "app"
    src_dir.mkdir(parents=True)
    (src_dir / "calculator.py").write_text(
        textwrap.dedent(
            """
            from __future__ import annotations


            def add(left: int, right: int) -> int:
                return left + right
            """
        ).lstrip(),
        encoding="utf-8",
    )
    (repo_root / "README.md").write_text("# Calculator\n", encoding="utf-8")

    run_git(repo_root, "add", ".")
    run_git(repo_root, "commit", "-m", "Initial commit")
    return repo_root


@pytest.fixture()
def sample_issue() -> Issue:
    return Issue(
        id="issue-1",
        identifier="ENG-42",
        title="Add subtraction",
        description="Add a `subtract` helper next to `add` in `src/app/calculator.py`.",
        priority="High",
        labels=("feature",),
        url="https://linear.example/ENG-42",
    )
