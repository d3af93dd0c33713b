"""
Usage accounting — token and cost counters for LLM calls.

A process-wide tracker exists for callers that do not care about scoping,
but each workflow run binds its own tracker with `usage_scope()` so that
concurrent runs never mix their numbers.
"""

import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from fixagent.models import UsageSnapshot


class UsageTracker:
    """Accumulates request, token, and cost counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._requests = 0
        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._cost = 0.0

    def record(self, prompt_tokens: int = 0, completion_tokens: int = 0, cost: float = 0.0) -> None:
        with self._lock:
            self._requests += 1
            self._prompt_tokens += prompt_tokens
            self._completion_tokens += completion_tokens
            self._cost += cost

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(
                requests=self._requests,
                prompt_tokens=self._prompt_tokens,
                completion_tokens=self._completion_tokens,
                cost=round(self._cost, 6),
            )

    def reset(self) -> None:
        with self._lock:
            self._requests = 0
            self._prompt_tokens = 0
            self._completion_tokens = 0
            self._cost = 0.0


global_tracker = UsageTracker()

_current: ContextVar[Optional[UsageTracker]] = ContextVar("fixagent_usage", default=None)


def current_tracker() -> UsageTracker:
    """The tracker bound to the running workflow, or the process-wide one."""
    return _current.get() or global_tracker


@contextmanager
def usage_scope(tracker: Optional[UsageTracker] = None) -> Iterator[UsageTracker]:
    """Bind a fresh (or given) tracker for the duration of the block."""
    tracker = tracker or UsageTracker()
    token = _current.set(tracker)
    try:
        yield tracker
    finally:
        _current.reset(token)
