"""Custom exceptions for Parley."""


class ParleyError(Exception):
    """Base exception for Parley."""

    pass


class ConfigurationError(ParleyError):
    """Configuration-related errors."""

    pass


class TransportError(ParleyError):
    """Remote service call failed after the retry budget was spent."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause


class ProtocolError(ParleyError):
    """A single streamed line could not be decoded."""

    def __init__(self, line: str, message: str):
        super().__init__(f"Malformed stream line: {message}")
        self.line = line


class PlanningError(ParleyError):
    """Remote planner was unreachable or returned an unusable decision."""

    pass


class ToolError(ParleyError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name
        self.message = message


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found")
        self.tool_name = tool_name


class HistoryInvariantViolation(ParleyError):
    """Attempt to install a history with an unsupported role."""

    def __init__(self, role: object):
        super().__init__(f"Role must be user or model, but got {role}.")
        self.role = role
