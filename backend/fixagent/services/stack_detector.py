"""
Stack Detector — identifies a repository's language, package manager, and
install / test commands.
"""

import asyncio
import json
import logging
import os
from typing import Optional

from pydantic import ValidationError

from fixagent.errors import LLMError
from fixagent.models import RepoFingerprint
from fixagent.services.llm import LLMClient

logger = logging.getLogger(__name__)

SKIP_DIRS = {"node_modules", "__pycache__", "venv", ".venv", "dist", "build", "target"}
MAX_TREE_ENTRIES = 50

SYSTEM_PROMPT = (
    "You are an expert system administrator. "
    "Reply with a single JSON object only."
)


class StackDetector:
    """Two-tier stack detection: LLM over the file tree, then marker files."""

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    async def detect(self, repo_path: str) -> RepoFingerprint:
        file_tree = await asyncio.to_thread(self.file_tree, repo_path)

        prompt = f"""Analyze the following file tree and identify the technology stack.

File Tree:
{chr(10).join(file_tree)}

Identify the language, runtime, package manager, and provide the standard commands to install dependencies and run tests.
For the runtime, use 'base' if it's a standard linux environment or a specific one like 'node', 'python', etc.
Return JSON with keys: language, runtime, package_manager, install_command, test_command."""

        try:
            data = await self.llm.complete_json(SYSTEM_PROMPT, prompt)
            return RepoFingerprint.model_validate(data)
        except (LLMError, ValidationError) as e:
            logger.warning(f"LLM stack detection failed ({e}); using marker files")
            return await asyncio.to_thread(self.heuristic_fingerprint, repo_path)

    def file_tree(self, repo_path: str, max_depth: int = 2) -> list[str]:
        """Relative paths of the first levels of the repository, capped in size."""
        entries: list[str] = []

        for root, dirs, files in os.walk(repo_path):
            rel_root = os.path.relpath(root, repo_path)
            depth = 0 if rel_root == "." else rel_root.count(os.sep) + 1
            dirs[:] = sorted(d for d in dirs if not d.startswith(".") and d not in SKIP_DIRS)
            if depth >= max_depth:
                dirs[:] = []

            prefix = "" if rel_root == "." else rel_root + "/"
            for d in dirs:
                entries.append(f"{prefix}{d}/")
            for f in sorted(files):
                if not f.startswith("."):
                    entries.append(f"{prefix}{f}")
            if len(entries) >= MAX_TREE_ENTRIES:
                break

        return entries[:MAX_TREE_ENTRIES]

    def heuristic_fingerprint(self, repo_path: str) -> RepoFingerprint:
        """Fingerprint from well-known marker files at the repository root."""
        def has(name: str) -> bool:
            return os.path.exists(os.path.join(repo_path, name))

        # Python first: mixed repos (e.g. Django + frontend) are tested with Python
        if has("requirements.txt") or has("pyproject.toml") or has("setup.py") or has("manage.py"):
            if has("requirements.txt"):
                install = "pip install -r requirements.txt"
            else:
                install = "pip install -e ."
            test = "python3 manage.py test" if has("manage.py") else "python3 -m pytest"
            return RepoFingerprint(
                language="Python",
                runtime="python",
                package_manager="pip",
                install_command=install,
                test_command=test,
            )

        if has("package.json"):
            manager = "npm"
            if has("pnpm-lock.yaml"):
                manager = "pnpm"
            elif has("yarn.lock"):
                manager = "yarn"
            language = "TypeScript" if has("tsconfig.json") else "JavaScript"
            return RepoFingerprint(
                language=language,
                runtime="node",
                package_manager=manager,
                install_command=f"{manager} install",
                test_command=self._node_test_command(repo_path, manager),
            )

        if has("go.mod"):
            return RepoFingerprint(
                language="Go",
                runtime="go",
                package_manager="go mod",
                install_command="go mod download",
                test_command="go test ./...",
            )

        if has("Cargo.toml"):
            return RepoFingerprint(
                language="Rust",
                runtime="rust",
                package_manager="cargo",
                install_command="cargo fetch",
                test_command="cargo test",
            )

        if has("pom.xml"):
            return RepoFingerprint(
                language="Java",
                runtime="java",
                package_manager="maven",
                install_command="mvn -q -DskipTests install",
                test_command="mvn -q test",
            )

        if has("build.gradle") or has("build.gradle.kts"):
            return RepoFingerprint(
                language="Java",
                runtime="java",
                package_manager="gradle",
                install_command="./gradlew assemble",
                test_command="./gradlew test",
            )

        if has("Gemfile"):
            return RepoFingerprint(
                language="Ruby",
                runtime="ruby",
                package_manager="bundler",
                install_command="bundle install",
                test_command="bundle exec rake test",
            )

        return RepoFingerprint(
            language="Unknown",
            runtime="base",
            package_manager="none",
            install_command="echo 'No install command'",
            test_command="echo 'No test command'",
        )

    def _node_test_command(self, repo_path: str, manager: str) -> str:
        try:
            with open(os.path.join(repo_path, "package.json")) as f:
                pkg = json.load(f)
        except (json.JSONDecodeError, OSError):
            return f"{manager} test"

        if "test" in pkg.get("scripts", {}):
            return f"{manager} test"
        deps = {**pkg.get("dependencies", {}), **pkg.get("devDependencies", {})}
        for runner in ("vitest", "jest", "mocha"):
            if runner in deps:
                return f"npx {runner}" + (" run" if runner == "vitest" else "")
        return f"{manager} test"
