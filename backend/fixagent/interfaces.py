"""
Collaborator contracts the workflow depends on.

Every method is a coroutine. Concrete implementations live in
`fixagent.services`; tests substitute in-memory fakes.
"""

from typing import Optional, Protocol

from fixagent.models import (
    CodeFix, CodeSnippet, FixFailure, GitHubIssue, IssueAnalysis,
    PullRequest, RepoFingerprint, ReviewResult, SearchQuery, TestResult,
)


class Tracker(Protocol):
    async def fetch_issue(self, owner: str, repo: str, number: int) -> GitHubIssue: ...

    async def open_pull_request(
        self, owner: str, repo: str, title: str, body: str, head: str, base: str = "main",
    ) -> PullRequest: ...

    async def clone_repository(self, owner: str, repo: str, destination: str) -> None: ...


class StackDetector(Protocol):
    async def detect(self, repo_path: str) -> RepoFingerprint: ...


class IssueAnalyzer(Protocol):
    async def analyze(self, issue: GitHubIssue) -> IssueAnalysis: ...


class QueryGenerator(Protocol):
    async def generate_queries(
        self, analysis: IssueAnalysis, language: str, project_map: Optional[str] = None,
    ) -> list[SearchQuery]: ...


class ProjectMapper(Protocol):
    async def get_map(self, repo_path: str) -> str: ...


class SearchEngine(Protocol):
    async def search(
        self,
        pattern: str,
        repo_path: str,
        file_type: Optional[str] = None,
        context_lines: Optional[int] = None,
    ) -> list[CodeSnippet]: ...


class FixGenerator(Protocol):
    async def generate_fix(
        self,
        analysis: IssueAnalysis,
        snippets: list[CodeSnippet],
        language: str,
        previous_failures: list[FixFailure],
        review_feedback: Optional[str] = None,
    ) -> CodeFix: ...


class Reviewer(Protocol):
    async def review(
        self, analysis: IssueAnalysis, fix: CodeFix, snippets: list[CodeSnippet], language: str,
    ) -> ReviewResult: ...


class Sandbox(Protocol):
    async def provision(
        self, repo_url: str, fingerprint: RepoFingerprint, local_path: Optional[str] = None,
    ) -> None: ...

    async def write_file(self, path: str, content: str) -> None: ...

    async def read_file(self, path: str) -> str: ...

    async def run_tests(self, command: str) -> TestResult: ...

    async def cleanup(self) -> None: ...
