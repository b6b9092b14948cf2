class HealingError(RuntimeError):
    """Raised when a heal cannot be completed."""


class ElementNotRefindable(HealingError):
    """Raised when no re-find strategy locates the snapshot's element."""


class ActionExecutionFailed(HealingError):
    """Raised when every execution strategy for an action has failed."""

    def __init__(self, message: str, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class HealingDisabled(HealingError):
    """Raised while the circuit breaker refuses heal attempts."""


class ApprovalTimeout(HealingError):
    """Raised when the decision-maker does not answer in time."""


class ReasoningResponseError(HealingError):
    """Raised when the reasoning service returns an unusable verdict."""
