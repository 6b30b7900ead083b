"""Requiety custom exceptions."""


class RequietyError(Exception):
    """Base exception for Requiety."""
    pass


class ScriptError(RequietyError):
    """Base class for pre/post request script failures."""
    pass


class ScriptExecutionError(ScriptError):
    """Raised when a script fails to compile or raises while running."""
    pass


class ScriptTimeoutError(ScriptError):
    """Raised when a script exceeds its wall-clock budget."""
    pass


class TransportConfigError(RequietyError):
    """Raised when a request cannot be dispatched because it is misconfigured."""
    pass


class OAuthTokenError(RequietyError):
    """Raised when an OAuth 2.0 request has no usable access token."""
    pass


class RequestNotFoundError(RequietyError):
    """Raised when a stored request cannot be found."""
    pass


class RunnerBusyError(RequietyError):
    """Raised when a collection run is started while another is active."""
    pass
