"""Error taxonomy for the generation loop.

Tool-level and parse-level errors are contained by the loop and turned
into failed steps or fallback decisions.  Only ``OrchestrationFatalError``
(and anything else escaping the loop body) ends a session.
"""
from __future__ import annotations


class CardForgeError(Exception):
    """Base class for all engine errors."""


class ParameterValidationError(CardForgeError):
    """A tool parameter is missing or has the wrong type."""


class DecisionParseError(CardForgeError):
    """Model output could not be read as a decision.  Never raised past the decision engine."""


class ToolExecutionError(CardForgeError):
    """A tool's own work failed (e.g. an external search call)."""


class DependencyOrderingViolation(CardForgeError):
    """A decision targets a task whose dependencies are not completed yet."""

    def __init__(self, task_id: str, pending: list[str], message: str | None = None):
        self.task_id = task_id
        self.pending = pending
        super().__init__(
            message
            or f"Task {task_id} is blocked by unfinished dependencies: {', '.join(pending)}"
        )


class IterationBudgetExceeded(CardForgeError):
    """The loop ran out of iterations before reaching a terminal action."""

    MESSAGE = "Maximum iterations reached without completion"

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(self.MESSAGE)


class OrchestrationFatalError(CardForgeError):
    """Something outside a tool broke (decision transport, session store)."""


class SessionNotFoundError(CardForgeError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")
