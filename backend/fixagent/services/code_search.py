"""
Code Search — ripgrep-backed regex search returning located snippets.
"""

import asyncio
import json
import logging
import subprocess
from typing import Optional

from fixagent.errors import SearchError
from fixagent.models import CodeSnippet

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LINES = 20


class RipgrepSearch:
    """Runs `rg --json` and turns each match (with its context) into a snippet."""

    def __init__(self, binary: str = "rg", timeout: int = 60, max_snippets: int = 50):
        self.binary = binary
        self.timeout = timeout
        self.max_snippets = max_snippets

    async def search(
        self,
        pattern: str,
        repo_path: str,
        file_type: Optional[str] = None,
        context_lines: Optional[int] = None,
    ) -> list[CodeSnippet]:
        context = context_lines if context_lines is not None else DEFAULT_CONTEXT_LINES
        cmd = [self.binary, "--json", "--context", str(context)]
        if file_type:
            cmd.extend(["-g", f"*.{file_type.lstrip('.')}"])
        cmd.extend(["-e", pattern, "."])

        logger.info(f"Running {' '.join(cmd)} in {repo_path}")
        result = await asyncio.to_thread(self._run, cmd, repo_path)

        # 1 means no matches
        if result.returncode == 1:
            return []
        if result.returncode != 0:
            raise SearchError(f"ripgrep exited with {result.returncode}: {result.stderr.strip()[:300]}")

        return self.parse(result.stdout)[: self.max_snippets]

    def _run(self, cmd: list[str], cwd: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise SearchError(f"ripgrep is not installed: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise SearchError(f"ripgrep timed out after {self.timeout}s") from e

    def parse(self, output: str) -> list[CodeSnippet]:
        """
        Group ripgrep's JSON event stream into snippets. Consecutive
        context and match lines of one file form one snippet; the relevance
        score is the fraction of matching lines in it.
        """
        snippets: list[CodeSnippet] = []
        current: Optional[dict] = None

        def flush():
            if current and current["matches"]:
                lines = current["lines"]
                snippets.append(CodeSnippet(
                    file=current["file"],
                    start_line=lines[0][0],
                    end_line=lines[-1][0],
                    content="".join(text for _, text in lines),
                    relevance_score=round(current["matches"] / len(lines), 3),
                ))

        for raw in output.splitlines():
            if not raw.strip():
                continue
            try:
                event = json.loads(raw)
            except json.JSONDecodeError:
                continue

            kind = event.get("type")
            if kind not in ("match", "context"):
                if kind == "end":
                    flush()
                    current = None
                continue

            data = event["data"]
            path = data["path"].get("text", "")
            if path.startswith("./"):
                path = path[2:]
            line_number = data.get("line_number")
            text = data["lines"].get("text", "")

            contiguous = (
                current is not None
                and current["file"] == path
                and line_number == current["lines"][-1][0] + 1
            )
            if not contiguous:
                flush()
                current = {"file": path, "lines": [], "matches": 0}

            current["lines"].append((line_number, text))
            if kind == "match":
                current["matches"] += 1

        flush()
        return snippets
