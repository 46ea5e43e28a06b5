"""Exception hierarchy shared by the agent loop, tools and bootstrap helpers."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad config file, rejected API key, etc.)."""


class BootstrapError(AgentError):
    """Raised when the API key or billing state cannot be resolved at startup."""


class TransportError(AgentError):
    """Raised when the streamed model call fails mid-turn.

    partial_text holds whatever text the failing step streamed first.
    """

    partial_text = ""


class ToolInputError(AgentError):
    """Raised when tool-call arguments don't satisfy the tool's declared fields."""
