"""
Query Generator — proposes search queries that locate the code behind an issue.
"""

import logging
import os
import re
from typing import Optional

from pydantic import ValidationError

from fixagent.errors import LLMError
from fixagent.models import IssueAnalysis, IssueCategory, SearchQuery
from fixagent.services.llm import LLMClient

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "typescript": "ts",
    "javascript": "js",
    "python": "py",
    "go": "go",
    "rust": "rs",
    "java": "java",
    "csharp": "cs",
    "cpp": "cpp",
    "c": "c",
    "ruby": "rb",
    "php": "php",
}

SYSTEM_PROMPT = (
    "You are a Codebase Scout. Your mission is to find the EXACT files causing the issue. "
    "Reply with a single JSON object only."
)


def file_extension(language: str) -> str:
    """Best-guess source extension for a language name."""
    key = (language or "").lower()
    return EXTENSIONS.get(key, key[:2])


class QueryGenerator:

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    async def generate_queries(
        self, analysis: IssueAnalysis, language: str, project_map: Optional[str] = None
    ) -> list[SearchQuery]:
        logger.info("Generating search queries...")
        prompt = f"""# Navigation Strategy
1. Use the "Project Structure" to see where related files might live.
2. Use the "Mentioned Files" from the issue context if they exist.
3. If the issue describes a UI bug, look for Frontend components.
4. If it describes an API failure, look for Routes/Controllers/Models.

Project Structure:
{project_map or 'Unknown'}

Issue: {analysis.problem}
Keywords: {', '.join(analysis.keywords)}
Mentioned Files: {', '.join(analysis.mentioned_files) or 'None'}
Frontend issue: {'yes' if analysis.is_frontend else 'no'}
Language: {language}

Based on this, generate 3-5 surgical regex patterns. Be precise. Avoid searching for generic terms if a file path is obvious.
Return JSON: {{"queries": [{{"pattern": str, "file_type": str, "context_lines": int, "reason": str}}]}}"""

        try:
            data = await self.llm.complete_json(SYSTEM_PROMPT, prompt)
            queries = [SearchQuery.model_validate(q) for q in data.get("queries", [])]
        except (LLMError, ValidationError, AttributeError, TypeError) as e:
            logger.warning(f"LLM query generation failed ({e}); using fallback queries")
            return self.heuristic_queries(analysis, language)

        if not queries:
            return self.heuristic_queries(analysis, language)
        return queries

    def heuristic_queries(self, analysis: IssueAnalysis, language: str) -> list[SearchQuery]:
        """Queries built straight from the analysis: files, keywords, error patterns."""
        queries: list[SearchQuery] = []
        ext = file_extension(language)

        for path in analysis.mentioned_files[:3]:
            stem = os.path.splitext(os.path.basename(path))[0]
            queries.append(SearchQuery(
                pattern=re.escape(stem),
                file_type=ext,
                context_lines=20,
                reason=f"Mentioned file: {path}",
            ))

        for keyword in analysis.keywords[:3]:
            queries.append(SearchQuery(
                pattern=rf"\b{re.escape(keyword)}\b",
                file_type=ext,
                context_lines=15,
                reason=f"Keyword search: {keyword}",
            ))

        if analysis.category == IssueCategory.BUG:
            queries.append(SearchQuery(
                pattern="throw|raise|Error|error|exception|fail",
                file_type=ext,
                context_lines=10,
                reason="Error handling patterns",
            ))

        if not queries:
            queries.append(SearchQuery(
                pattern=".",
                file_type=ext,
                context_lines=5,
                reason="Generic fallback search",
            ))

        return queries
