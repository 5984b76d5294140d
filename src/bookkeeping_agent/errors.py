"""Error taxonomy for tool execution and the agent loop.

Every error a tool can raise maps to a structured payload that is returned
to the model instead of aborting the loop. Only ``ModelProviderError`` ends
a turn.
"""

from typing import Any


class AgentError(Exception):
    """Base class for errors converted to tool payloads."""

    error_type = "AgentError"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        """Convert the error to a structured payload for the model."""
        payload: dict[str, Any] = {"error": self.message, "error_type": self.error_type}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AgentError):
    """Tool input failed its contract."""

    error_type = "ValidationError"


class ResolutionError(AgentError):
    """An account or entity could not be resolved unambiguously."""

    error_type = "ResolutionError"

    def __init__(self, message: str, role: str | None = None, details: Any = None):
        super().__init__(message, details)
        self.role = role


class InvariantError(AgentError):
    """A posting violates a double-entry invariant."""

    error_type = "InvariantError"


class ToolTimeoutError(AgentError):
    """A tool exceeded its deadline."""

    error_type = "TimeoutError"


class LimitError(AgentError):
    """A call-count or size ceiling was reached."""

    error_type = "LimitError"


class UpstreamError(AgentError):
    """The persistence collaborator failed."""

    error_type = "UpstreamError"


class ModelProviderError(Exception):
    """The model provider could not produce a response."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} request failed: {message}")
        self.provider = provider
