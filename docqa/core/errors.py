"""
Application errors.

Tool-level errors never leave the tool registry: they are turned into the text
the remote agent receives as the tool output. Run-level failures are logged and
end the stream. Only ServiceUnavailableError and AgentInitializationError reach
the API layer.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. search index, embeddings API, agent service) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AgentInitializationError(Exception):
    """Raised when a specialist agent cannot be found or created at startup."""

    def __init__(self, agent_name: str, reason: str) -> None:
        self.agent_name = agent_name
        self.reason = reason
        super().__init__(f"Agent {agent_name!r} could not be initialized: {reason}")


class ToolError(Exception):
    """Base class for tool dispatch errors."""


class UnknownToolError(ToolError):
    def __init__(self, name: str, sanitized: str) -> None:
        self.name = name
        self.sanitized = sanitized
        super().__init__(f"Unknown function: {name} (sanitized: {sanitized})")


class ArgumentMissingError(ToolError):
    def __init__(self, parameter: str) -> None:
        self.parameter = parameter
        super().__init__(f"Missing required parameter: {parameter}")


class RunTimeoutError(Exception):
    """Raised by the poll loop when a run does not reach a terminal state before the deadline."""

    def __init__(self, run_id: str, timeout: float) -> None:
        self.run_id = run_id
        self.timeout = timeout
        super().__init__(f"Run {run_id} did not finish within {timeout:.1f}s")
