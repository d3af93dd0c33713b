"""
AI Fix Generator — Uses the LLM to produce a full-file fix for an issue.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from fixagent.errors import FixGenerationError, LLMError
from fixagent.models import CodeFix, CodeSnippet, FixFailure, IssueAnalysis
from fixagent.services.llm import LLMClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert software engineer. "
    "You debug and patch issues within the provided code context. "
    "Return ONLY a JSON object with keys: file, content, explanation. "
    "`content` is the COMPLETE file after the fix; never a diff or a snippet."
)


class FixGenerator:
    """Generates AI-powered code fixes."""

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    async def generate_fix(
        self,
        analysis: IssueAnalysis,
        snippets: list[CodeSnippet],
        language: str,
        previous_failures: list[FixFailure],
        review_feedback: Optional[str] = None,
    ) -> CodeFix:
        """
        Build the prompt from the issue, the code context, and everything the
        earlier attempts taught us, then ask the model for the fixed file.
        """
        logger.info(f"Engineering fix for issue: {analysis.problem[:50]}...")
        prompt = self._build_prompt(analysis, snippets, language, previous_failures, review_feedback)

        try:
            data = await self.llm.complete_json(SYSTEM_PROMPT, prompt, temperature=0.2)
            fix = CodeFix.model_validate(data)
        except (LLMError, ValidationError) as e:
            logger.error(f"Fix generation failed: {e}")
            raise FixGenerationError(f"Failed to generate code fix: {e}") from e

        if not fix.file.strip() or not fix.content.strip():
            raise FixGenerationError("Model returned an empty fix")

        path = fix.file.strip()
        if path.startswith("./"):
            path = path[2:]
        fix.file = path
        return fix

    def _build_prompt(
        self,
        analysis: IssueAnalysis,
        snippets: list[CodeSnippet],
        language: str,
        previous_failures: list[FixFailure],
        review_feedback: Optional[str],
    ) -> str:
        context = "\n\n".join(
            f"--- File: {s.file} (lines {s.start_line}-{s.end_line}) ---\n```\n{s.content}\n```"
            for s in snippets
        ) or "No code context was found. Infer the file from the mentioned files and project conventions."

        sections = [
            "ISSUE SPECIFICATION:",
            f"Summary: {analysis.problem}",
            f"Expected: {analysis.expected}",
            f"Actual: {analysis.actual}",
            f"Mentioned Files: {', '.join(analysis.mentioned_files) or 'None'}",
            f"Stack Environment: {language}",
            "",
            "CODE CONTEXT:",
            context,
        ]

        if previous_failures:
            sections += ["", "PREVIOUS ATTEMPTS (USE FOR LEARNING):"]
            for failure in previous_failures:
                sections.append(
                    f"[Attempt {failure.attempt}]\nError: {failure.error or 'n/a'}\n"
                    f"Output (tail):\n{failure.output[-1000:]}"
                )

        if review_feedback:
            sections += ["", "REVIEWER FEEDBACK ON THE LAST PROPOSAL (ADDRESS IT):", review_feedback]

        sections += [
            "",
            "ENGINEERING REQUIREMENTS:",
            "1. Identify the exact line(s) causing the failure.",
            "2. Implement a robust fix that follows the project's existing coding patterns.",
            "3. Ensure no regressions or logic errors are introduced.",
            "4. Return the COMPLETE content of the modified file, path relative to the repository root.",
            "5. Provide a clear technical justification in `explanation`.",
        ]
        return "\n".join(sections)
