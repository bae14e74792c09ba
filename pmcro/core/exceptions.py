"""PMCR-O exception classes."""


class PMCROError(Exception):
    """Base exception for all PMCR-O errors."""

    pass


class ConfigurationError(PMCROError):
    """Raised when configuration is invalid."""

    pass


class ToolUnavailableError(PMCROError):
    """Raised by a capability provider that cannot serve a tool call.

    Always recovered by the phase executor's local fallback.
    """

    pass


class InvalidTransitionError(PMCROError):
    """Raised when a cycle or task is moved out of its legal order."""

    pass


class PhaseExecutionError(PMCROError):
    """Raised when a phase fails in a way the fallback cannot absorb."""

    pass


class PhaseTimeoutError(PhaseExecutionError):
    """Raised when a phase call exceeds its allotted time."""

    pass


class CycleCancelledError(PhaseExecutionError):
    """Raised when a cycle is stopped by a shutdown request."""

    pass


class PersistenceError(PMCROError):
    """Raised when the state store cannot durably record a change."""

    pass


class TriggerEvaluationError(PMCROError):
    """Raised when an evolution trigger cannot be evaluated."""

    pass
