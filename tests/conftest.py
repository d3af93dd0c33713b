from typing import Optional

import pytest

from fixagent.config import Settings
from fixagent.errors import SearchError
from fixagent.graph.context import WorkflowContext
from fixagent.graph.state import create_initial_state
from fixagent.models import (
    CodeFix, CodeSnippet, GitHubIssue, IssueAnalysis, PullRequest,
    RepoFingerprint, ReviewCategory, ReviewResult, SearchQuery, TestResult,
)

ISSUE_URL = "https://github.com/acme/widgets/issues/7"


class FakeTracker:
    def __init__(self, fail_fetch: bool = False, fail_pr: bool = False):
        self.fail_fetch = fail_fetch
        self.fail_pr = fail_pr
        self.fetched = []
        self.pull_requests = []
        self.clones = []

    async def fetch_issue(self, owner, repo, number):
        self.fetched.append((owner, repo, number))
        if self.fail_fetch:
            raise RuntimeError("issue not found")
        return GitHubIssue(number=number, title="Login button crashes", body="See src/app.py", labels=["bug"])

    async def open_pull_request(self, owner, repo, title, body, head, base="main"):
        if self.fail_pr:
            raise RuntimeError("validation failed")
        self.pull_requests.append({"owner": owner, "repo": repo, "title": title, "body": body,
                                   "head": head, "base": base})
        return PullRequest(url=f"https://github.com/{owner}/{repo}/pull/99", number=99)

    async def clone_repository(self, owner, repo, destination):
        self.clones.append((owner, repo, destination))


class FakeAnalyzer:
    def __init__(self, keywords=("login", "crash")):
        self.keywords = list(keywords)

    async def analyze(self, issue):
        return IssueAnalysis(problem=issue.title, keywords=self.keywords, mentioned_files=["src/app.py"])


class FakeDetector:
    def __init__(self):
        self.calls = 0

    async def detect(self, repo_path):
        self.calls += 1
        return make_fingerprint()


class FakeMapper:
    def __init__(self):
        self.calls = 0

    async def get_map(self, repo_path):
        self.calls += 1
        return "src/\n  app.py"


class FakeQueryGenerator:
    def __init__(self, queries=None):
        self.queries = queries if queries is not None else [
            SearchQuery(pattern="def login", file_type="py", context_lines=20, reason="entry point"),
        ]
        self.project_maps = []

    async def generate_queries(self, analysis, language, project_map=None):
        self.project_maps.append(project_map)
        return list(self.queries)


class FakeSearch:
    """Returns canned snippets per pattern; patterns in `failing` raise."""

    def __init__(self, results=None, failing=()):
        self.results = results or {}
        self.failing = set(failing)
        self.calls = []

    async def search(self, pattern, repo_path, file_type=None, context_lines=None):
        self.calls.append({"pattern": pattern, "file_type": file_type, "context_lines": context_lines})
        if pattern in self.failing:
            raise SearchError("rg exploded")
        return list(self.results.get(pattern, []))


class FakeFixGenerator:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = []

    async def generate_fix(self, analysis, snippets, language, previous_failures, review_feedback=None):
        self.calls.append({
            "snippets": snippets,
            "language": language,
            "previous_failures": previous_failures,
            "review_feedback": review_feedback,
        })
        if self.error:
            raise self.error
        return CodeFix(file="src/app.py", content=f"fixed v{len(self.calls)}\n")


class FakeReviewer:
    """Plays back verdicts in order; the last one repeats."""

    def __init__(self, verdicts=(True,)):
        self.verdicts = list(verdicts)
        self.calls = 0

    async def review(self, analysis, fix, snippets, language):
        approved = self.verdicts[min(self.calls, len(self.verdicts) - 1)]
        self.calls += 1
        if approved:
            return ReviewResult(approved=True, feedback="", category=ReviewCategory.OK)
        return ReviewResult(approved=False, feedback=f"off-by-one #{self.calls}", category=ReviewCategory.LOGIC)


class FakeSandbox:
    """Plays back exit codes in order; the last one repeats."""

    def __init__(self, exit_codes=(0,), fail_cleanup: bool = False, fail_provision: bool = False):
        self.exit_codes = list(exit_codes)
        self.fail_cleanup = fail_cleanup
        self.fail_provision = fail_provision
        self.files = {}
        self.commands = []
        self.reads = []
        self.provisioned = None
        self.cleanups = 0

    async def provision(self, repo_url, fingerprint, local_path=None):
        if self.fail_provision:
            raise RuntimeError("sandbox quota exceeded")
        self.provisioned = (repo_url, fingerprint, local_path)

    async def write_file(self, path, content):
        self.files[path] = content

    async def read_file(self, path):
        self.reads.append(path)
        return self.files[path]

    async def run_tests(self, command):
        code = self.exit_codes[min(len(self.commands), len(self.exit_codes) - 1)]
        self.commands.append(command)
        return TestResult(
            passed=code == 0,
            output="1 passed" if code == 0 else "1 failed",
            error="" if code == 0 else f"AssertionError: run {len(self.commands)}",
            exit_code=code,
            duration=0.1,
        )

    async def cleanup(self):
        self.cleanups += 1
        if self.fail_cleanup:
            raise RuntimeError("sandbox already gone")


def make_fingerprint() -> RepoFingerprint:
    return RepoFingerprint(
        language="Python",
        runtime="python",
        package_manager="pip",
        install_command="pip install -r requirements.txt",
        test_command="python3 -m pytest",
    )


def make_snippet(file="src/app.py", content="def login():\n    pass\n") -> CodeSnippet:
    return CodeSnippet(file=file, start_line=1, end_line=2, content=content, relevance_score=0.5)


def make_context(**overrides) -> WorkflowContext:
    defaults = dict(
        tracker=FakeTracker(),
        analyzer=FakeAnalyzer(),
        detector=FakeDetector(),
        mapper=FakeMapper(),
        query_generator=FakeQueryGenerator(),
        search=FakeSearch({"def login": [make_snippet()]}),
        fix_generator=FakeFixGenerator(),
        reviewer=FakeReviewer(),
        sandbox=FakeSandbox(),
        settings=Settings(_env_file=None, llm_api_key="", github_token=""),
    )
    defaults.update(overrides)
    return WorkflowContext(**defaults)


def make_state(max_attempts=3, dry_run=True, repo_path="/tmp/widgets", fingerprint="default", **fields):
    state = create_initial_state(
        ISSUE_URL,
        max_attempts=max_attempts,
        dry_run=dry_run,
        repo_path=repo_path,
        fingerprint=make_fingerprint() if fingerprint == "default" else fingerprint,
    )
    state.update(fields)
    return state


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        llm_api_key="",
        github_token="",
        clone_base_dir=str(tmp_path / "clones"),
        sandbox_base_dir=str(tmp_path),
        sandbox_timeout=30,
    )
