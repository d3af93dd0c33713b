"""
Issue Analyzer — turns a raw issue into a structured IssueAnalysis.
Uses the LLM when available and always falls back to a heuristic reading.
"""

import logging
import re
from typing import Optional

from pydantic import ValidationError

from fixagent.errors import LLMError
from fixagent.models import GitHubIssue, IssueAnalysis, IssueCategory, Severity
from fixagent.services.llm import LLMClient

logger = logging.getLogger(__name__)

FILE_MENTION_RE = re.compile(
    r"(?<![\w/])((?:[\w.-]+/)*[\w.-]+\.(?:py|pyi|js|jsx|ts|tsx|go|rs|java|kt|rb|php|cs|cpp|cc|c|h|hpp|"
    r"vue|svelte|css|scss|html|json|ya?ml|toml|md))\b"
)

FRONTEND_HINTS = {
    "ui", "ux", "css", "html", "button", "frontend", "front-end", "component", "react",
    "vue", "svelte", "layout", "render", "page", "modal", "style", "dropdown", "tooltip",
}

SYSTEM_PROMPT = (
    "You are a senior engineer analyzing a bug report. "
    "Reply with a single JSON object only."
)


class IssueAnalyzer:
    """Two-tier issue analysis: LLM first, deterministic heuristic second."""

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    async def analyze(self, issue: GitHubIssue) -> IssueAnalysis:
        logger.info("Analyzing issue...")
        prompt = f"""Issue:
Title: {issue.title}
Body: {issue.body}
Labels: {', '.join(issue.labels)}

Analyze the issue and extract the structured data. Focus on identifying the core problem and any specific files mentioned.
Return JSON with keys:
  problem (string, concise summary of what is broken),
  expected (string), actual (string),
  keywords (array of search keywords),
  mentioned_files (array of file paths explicitly mentioned),
  severity ("low" | "medium" | "high"),
  category ("bug" | "feature" | "docs"),
  is_frontend (boolean, true when the problem is in user-facing UI code)."""

        try:
            data = await self.llm.complete_json(SYSTEM_PROMPT, prompt)
            return IssueAnalysis.model_validate(data)
        except (LLMError, ValidationError) as e:
            logger.warning(f"LLM issue analysis failed ({e}); using heuristic analysis")
            return self.heuristic_analysis(issue)

    def heuristic_analysis(self, issue: GitHubIssue) -> IssueAnalysis:
        """Deterministic reading of the issue from its title, body, and labels."""
        words = [w.strip(".,:;!?()[]{}'\"`") for w in issue.title.split()]
        keywords = [w for w in words if w][:5]

        mentioned = []
        for match in FILE_MENTION_RE.findall(issue.body or ""):
            if match not in mentioned:
                mentioned.append(match)

        labels = {label.lower() for label in issue.labels}
        text = f"{issue.title} {issue.body} {' '.join(labels)}".lower()
        tokens = set(re.findall(r"[a-z][a-z-]*", text))

        return IssueAnalysis(
            problem=issue.title,
            expected="Functionality working correctly",
            actual=self._first_paragraph(issue.body) or "Bug reported in issue body",
            keywords=keywords,
            mentioned_files=mentioned,
            severity=self._severity(labels),
            category=self._category(labels),
            is_frontend=bool(tokens & FRONTEND_HINTS),
        )

    def _first_paragraph(self, body: str) -> str:
        for block in (body or "").split("\n\n"):
            block = block.strip()
            if block:
                return block[:500]
        return ""

    def _severity(self, labels: set[str]) -> Severity:
        if labels & {"critical", "high", "p0", "p1", "severity: high", "blocker"}:
            return Severity.HIGH
        if labels & {"low", "minor", "p3", "severity: low", "trivial"}:
            return Severity.LOW
        return Severity.MEDIUM

    def _category(self, labels: set[str]) -> IssueCategory:
        if labels & {"docs", "documentation"}:
            return IssueCategory.DOCS
        if labels & {"feature", "enhancement", "feature request"}:
            return IssueCategory.FEATURE
        return IssueCategory.BUG
