import asyncio
from pathlib import Path

import pytest
from git import Actor, Repo

from fixagent.errors import PreconditionError
from fixagent.graph.nodes import (
    DRY_RUN_PR_URL, detect_stack_node, generate_fix_node, review_fix_node,
    search_code_node, submit_fix_node, verify_fix_node,
)
from fixagent.models import CodeFix, IssueAnalysis, TestResult, WorkflowStatus

from conftest import (
    FakeMapper, FakeQueryGenerator, FakeReviewer, FakeSandbox, FakeSearch, FakeTracker,
    make_context, make_snippet, make_state,
)


def _analysis(keywords=("login", "crash")) -> IssueAnalysis:
    return IssueAnalysis(problem="Login crashes", keywords=list(keywords))


# ── search_code ──────────────────────────────────────────────


def test_search_uses_generated_queries() -> None:
    search = FakeSearch({"def login": [make_snippet()]})
    update = asyncio.run(search_code_node(make_state(issue_analysis=_analysis()), make_context(search=search)))

    assert [s.file for s in update["context_snippets"]] == ["src/app.py"]
    assert [c["pattern"] for c in search.calls] == ["def login"]
    assert update["project_map"] == "src/\n  app.py"


def test_search_falls_back_to_keywords_when_nothing_matches() -> None:
    search = FakeSearch({"login": [make_snippet("src/auth.py")], "crash": [make_snippet("src/errors.py")]})
    update = asyncio.run(search_code_node(make_state(issue_analysis=_analysis()), make_context(search=search)))

    assert [s.file for s in update["context_snippets"]] == ["src/auth.py", "src/errors.py"]
    fallback_calls = search.calls[1:]
    assert [c["pattern"] for c in fallback_calls] == ["login", "crash"]
    assert all(c["file_type"] is None for c in fallback_calls)
    assert all(c["context_lines"] == 10 for c in fallback_calls)


def test_search_fallback_escapes_keywords() -> None:
    search = FakeSearch()
    asyncio.run(search_code_node(
        make_state(issue_analysis=_analysis(keywords=["user.name()"])), make_context(search=search)
    ))
    assert search.calls[-1]["pattern"] == r"user\.name\(\)"


def test_search_with_no_results_is_not_an_error() -> None:
    search = FakeSearch()
    update = asyncio.run(search_code_node(make_state(issue_analysis=_analysis()), make_context(search=search)))
    assert update["context_snippets"] == []


def test_search_without_keywords_skips_fallback() -> None:
    search = FakeSearch()
    update = asyncio.run(search_code_node(
        make_state(issue_analysis=_analysis(keywords=[])), make_context(search=search)
    ))
    assert update["context_snippets"] == []
    assert len(search.calls) == 1


def test_failing_query_is_skipped() -> None:
    queries = FakeQueryGenerator()
    queries.queries.insert(0, queries.queries[0].model_copy(update={"pattern": "broken("}))
    search = FakeSearch({"def login": [make_snippet()]}, failing={"broken("})
    update = asyncio.run(search_code_node(
        make_state(issue_analysis=_analysis()), make_context(search=search, query_generator=queries)
    ))
    assert len(update["context_snippets"]) == 1


def test_cached_project_map_is_reused() -> None:
    mapper = FakeMapper()
    queries = FakeQueryGenerator()
    asyncio.run(search_code_node(
        make_state(issue_analysis=_analysis(), project_map="cached map"),
        make_context(mapper=mapper, query_generator=queries),
    ))
    assert mapper.calls == 0
    assert queries.project_maps == ["cached map"]


def test_search_requires_analysis() -> None:
    with pytest.raises(PreconditionError):
        asyncio.run(search_code_node(make_state(), make_context()))


# ── detect_stack / generate_fix / review_fix ─────────────────


def test_detect_stack_requires_repository() -> None:
    with pytest.raises(PreconditionError):
        asyncio.run(detect_stack_node(make_state(repo_path=None, fingerprint=None), make_context()))


def test_generate_fix_increments_and_consumes_feedback() -> None:
    state = make_state(issue_analysis=_analysis(), attempts=1, review_feedback="handle empty input")
    update = asyncio.run(generate_fix_node(state, make_context()))

    assert update["attempts"] == 2
    assert update["review_feedback"] is None
    assert update["current_fix"].file == "src/app.py"


def test_generate_fix_clears_feedback_even_when_absent() -> None:
    update = asyncio.run(generate_fix_node(make_state(issue_analysis=_analysis()), make_context()))
    assert "review_feedback" in update and update["review_feedback"] is None


def test_rejected_review_sets_feedback_and_leaves_results_alone() -> None:
    state = make_state(issue_analysis=_analysis(), current_fix=CodeFix(file="a.py", content="x"))
    update = asyncio.run(review_fix_node(state, make_context(reviewer=FakeReviewer(verdicts=(False,)))))

    assert update["review_feedback"] == "off-by-one #1"
    assert "test_results" not in update
    assert update["last_review"].approved is False


def test_approved_review_clears_feedback() -> None:
    state = make_state(issue_analysis=_analysis(), current_fix=CodeFix(file="a.py", content="x"),
                       review_feedback="stale")
    update = asyncio.run(review_fix_node(state, make_context()))
    assert update["review_feedback"] is None


# ── verify_fix ───────────────────────────────────────────────


def test_verify_requires_sandbox() -> None:
    state = make_state(current_fix=CodeFix(file="a.py", content="x"))
    with pytest.raises(PreconditionError):
        asyncio.run(verify_fix_node(state, make_context(sandbox=None)))


def test_verify_requires_fix() -> None:
    with pytest.raises(PreconditionError):
        asyncio.run(verify_fix_node(make_state(), make_context()))


def test_verify_appends_one_result() -> None:
    sandbox = FakeSandbox(exit_codes=(2,))
    state = make_state(current_fix=CodeFix(file="a.py", content="x"))
    update = asyncio.run(verify_fix_node(state, make_context(sandbox=sandbox)))

    assert update["status"] == WorkflowStatus.RUNNING
    assert len(update["test_results"]) == 1
    assert update["test_results"][0].exit_code == 2
    assert sandbox.files == {"a.py": "x"}
    assert sandbox.commands == ["python3 -m pytest"]


# ── submit_fix ───────────────────────────────────────────────


def test_submit_requires_success() -> None:
    with pytest.raises(PreconditionError):
        asyncio.run(submit_fix_node(make_state(), make_context()))


def test_dry_run_submit_has_no_side_effects() -> None:
    tracker = FakeTracker()
    sandbox = FakeSandbox()
    state = make_state(dry_run=True, status=WorkflowStatus.SUCCESS, current_fix=CodeFix(file="a.py", content="x"))
    update = asyncio.run(submit_fix_node(state, make_context(tracker=tracker, sandbox=sandbox)))

    assert update == {"pr_url": DRY_RUN_PR_URL}
    assert tracker.pull_requests == []
    assert sandbox.reads == []


@pytest.fixture
def checkout(tmp_path):
    """A local clone with one commit and a bare repository as its origin."""
    remote = Repo.init(tmp_path / "remote.git", bare=True)
    repo = Repo.init(tmp_path / "work")
    (tmp_path / "work" / "src").mkdir()
    (tmp_path / "work" / "src" / "app.py").write_text("def login():\n    return None\n")
    repo.index.add(["src/app.py"])
    author = Actor("Maintainer", "maintainer@example.com")
    repo.index.commit("initial", author=author, committer=author)
    repo.create_remote("origin", str(tmp_path / "remote.git"))
    return repo, remote


def _verified_state(repo_path: str, fix_content: str):
    return make_state(
        dry_run=False,
        repo_path=repo_path,
        status=WorkflowStatus.SUCCESS,
        issue_analysis=_analysis(),
        current_fix=CodeFix(file="src/app.py", content=fix_content),
        test_results=[TestResult(passed=True, exit_code=0)],
    )


def test_submit_pushes_branch_and_opens_pr(checkout) -> None:
    repo, remote = checkout
    fixed = "def login():\n    return True\n"
    sandbox = FakeSandbox()
    sandbox.files["src/app.py"] = fixed
    tracker = FakeTracker()
    context = make_context(tracker=tracker, sandbox=sandbox)

    update = asyncio.run(submit_fix_node(_verified_state(repo.working_dir, fixed), context))

    assert update == {"pr_url": "https://github.com/acme/widgets/pull/99"}
    pr = tracker.pull_requests[0]
    assert pr["head"].startswith("fix/issue-7-")
    assert pr["base"] == "main"
    assert pr["title"] == "Fix for Issue #7"
    assert "Login crashes" in pr["body"]

    assert pr["head"] in [head.name for head in remote.heads]
    commit = repo.head.commit
    assert commit.message == "Fix issue #7"
    assert commit.author.name == context.settings.git_author_name
    assert commit.author.email == context.settings.git_author_email
    assert (Path(repo.working_tree_dir) / "src" / "app.py").read_text() == fixed


def test_submit_failure_keeps_success(checkout) -> None:
    repo, _ = checkout
    fixed = "def login():\n    return True\n"
    sandbox = FakeSandbox()
    sandbox.files["src/app.py"] = fixed
    context = make_context(tracker=FakeTracker(fail_pr=True), sandbox=sandbox)

    state = _verified_state(repo.working_dir, fixed)
    update = asyncio.run(submit_fix_node(state, context))

    assert "status" not in update
    assert update["error"] == "PR creation failed: validation failed"


def test_submit_commits_only_the_verified_file(checkout) -> None:
    repo, remote = checkout
    work = Path(repo.working_tree_dir)
    (work / "local_secrets.env").write_text("TOKEN=hunter2\n")
    fixed = "def login():\n    return True\n"
    sandbox = FakeSandbox()
    sandbox.files["src/app.py"] = fixed
    context = make_context(tracker=FakeTracker(), sandbox=sandbox)

    update = asyncio.run(submit_fix_node(_verified_state(repo.working_dir, fixed), context))

    assert update == {"pr_url": "https://github.com/acme/widgets/pull/99"}
    assert list(repo.head.commit.stats.files) == ["src/app.py"]
    assert "local_secrets.env" in repo.untracked_files
