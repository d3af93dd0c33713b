import asyncio
import json

import httpx
import pytest

from fixagent.errors import InvalidIssueUrl, TrackerError
from fixagent.services.github_client import GitHubClient, parse_issue_url


def test_parse_issue_url() -> None:
    parsed = parse_issue_url("https://github.com/acme/widgets/issues/42")
    assert (parsed.owner, parsed.repo, parsed.issue_number) == ("acme", "widgets", 42)


def test_parse_issue_url_ignores_trailing_parts() -> None:
    parsed = parse_issue_url("https://github.com/acme/widgets/issues/42#issuecomment-1")
    assert parsed.issue_number == 42


@pytest.mark.parametrize("url", [
    "",
    "https://github.com/acme/widgets/pull/42",
    "https://gitlab.com/acme/widgets/issues/42",
    "https://github.com/acme/widgets/issues/abc",
])
def test_parse_issue_url_rejects_other_urls(url) -> None:
    with pytest.raises(InvalidIssueUrl):
        parse_issue_url(url)


def test_invalid_url_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        parse_issue_url("not a url")


def test_fetch_issue() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "number": 7,
            "title": "Login crashes",
            "body": None,
            "labels": [{"name": "bug"}, "p1"],
            "user": {"login": "octocat"},
        })

    client = GitHubClient("secret", transport=httpx.MockTransport(handler))
    issue = asyncio.run(client.fetch_issue("acme", "widgets", 7))

    assert issue.title == "Login crashes"
    assert issue.body == ""
    assert issue.labels == ["bug", "p1"]
    assert issue.author == "octocat"
    assert seen[0].url.path == "/repos/acme/widgets/issues/7"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_fetch_issue_without_token_sends_no_auth() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"number": 1, "title": "t"})

    asyncio.run(GitHubClient("", transport=httpx.MockTransport(handler)).fetch_issue("a", "b", 1))
    assert "Authorization" not in seen[0].headers


def test_fetch_issue_not_found() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "Not Found"}))
    with pytest.raises(TrackerError):
        asyncio.run(GitHubClient("", transport=transport).fetch_issue("acme", "widgets", 7))


def test_open_pull_request() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"html_url": "https://github.com/acme/widgets/pull/9", "number": 9})

    client = GitHubClient("secret", transport=httpx.MockTransport(handler))
    pr = asyncio.run(client.open_pull_request("acme", "widgets", "Fix", "Fixes #7", "fix/issue-7-1", "develop"))

    assert pr.url == "https://github.com/acme/widgets/pull/9"
    assert pr.number == 9
    assert bodies[0] == {"title": "Fix", "body": "Fixes #7", "head": "fix/issue-7-1", "base": "develop"}


def test_open_pull_request_rejected() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(422, json={"message": "Validation Failed"})
    )
    with pytest.raises(TrackerError, match="422"):
        asyncio.run(GitHubClient("secret", transport=transport).open_pull_request(
            "acme", "widgets", "Fix", "body", "fix/branch"
        ))
