"""
Exception hierarchy for the fix agent.
"""


class FixAgentError(Exception):
    """Base class for every error raised by the fix agent."""


class PreconditionError(FixAgentError):
    """A step was entered without the state it requires. Fatal to the run."""


class StateError(FixAgentError):
    """An update tried to change a field its update policy forbids."""


class GraphError(FixAgentError):
    """The workflow graph is malformed or reached an unknown node."""


class InvalidIssueUrl(FixAgentError, ValueError):
    """The issue reference is not a GitHub issue URL."""


class TrackerError(FixAgentError):
    """The issue tracker rejected a request or could not be reached."""


class LLMError(FixAgentError):
    """The language model call failed or returned an unusable reply."""


class SearchError(FixAgentError):
    """The code search engine failed (a no-match is not an error)."""


class FixGenerationError(FixAgentError):
    """No fix could be generated for the issue."""


class SandboxError(FixAgentError):
    """The execution sandbox could not be provisioned or used."""


class SubmissionError(FixAgentError):
    """Publishing a verified fix (branch, commit, push, PR) failed."""
