"""
Reviewer — technical peer review of a proposed fix before it is tested.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from fixagent.errors import LLMError
from fixagent.models import CodeFix, CodeSnippet, IssueAnalysis, ReviewCategory, ReviewResult
from fixagent.services.llm import LLMClient

logger = logging.getLogger(__name__)

UNAVAILABLE_FEEDBACK = "Automated review system unavailable. Manual audit required."

SYSTEM_PROMPT = (
    "You conduct rigorous peer reviews of code modifications. "
    "Reply with a single JSON object only."
)


class Reviewer:

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    async def review(
        self,
        analysis: IssueAnalysis,
        fix: CodeFix,
        snippets: list[CodeSnippet],
        language: str,
    ) -> ReviewResult:
        logger.info(f"Reviewing fix for {fix.file}...")
        original = next(
            (s.content for s in snippets if s.file == fix.file),
            "Target file content not available in current context.",
        )

        prompt = f"""TECHNICAL CONTEXT:
Issue: {analysis.problem}
Stack: {language}
File: {fix.file}

ORIGINAL SOURCE:
```
{original}
```

PROPOSED MODIFICATION:
```
{fix.content}
```

REVIEW CRITERIA:
1. LOGICAL INTEGRITY: Does the fix resolve the identified root cause?
2. REGRESSION RISK: Does the change introduce secondary failures or side effects?
3. SECURITY COMPLIANCE: Are there any vulnerability patterns (e.g. unsanitized input)?
4. ARCHITECTURAL ALIGNMENT: Does the fix adhere to established project patterns?
5. COMPLETENESS: Is the issue fully addressed or is this a superficial patch?

Approve ONLY if all criteria are met. Give dense technical feedback for rejections.
Return JSON with keys: approved (boolean), feedback (string),
category ("logic" | "syntax" | "style" | "security" | "ok")."""

        try:
            data = await self.llm.complete_json(SYSTEM_PROMPT, prompt)
            return ReviewResult.model_validate(data)
        except (LLMError, ValidationError) as e:
            logger.error(f"Reviewer failure: {e}. Defaulting to rejection.")
            return ReviewResult(
                approved=False,
                feedback=UNAVAILABLE_FEEDBACK,
                category=ReviewCategory.LOGIC,
            )
