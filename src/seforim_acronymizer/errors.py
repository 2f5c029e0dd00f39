"""
Exception types for seforim-acronymizer.
"""


class AcronymizerError(Exception):
    """Base class for all acronymizer errors."""


class ConfigError(AcronymizerError):
    """A required configuration value is missing or invalid."""


class RateLimitError(AcronymizerError):
    """The upstream LLM service rejected a call for quota exhaustion.

    ``retry_after`` is the server-suggested wait in seconds, when the
    response carried one.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class SchemaError(AcronymizerError):
    """The model returned output that does not match the expected schema."""


class PersistenceError(AcronymizerError):
    """The result store could not be read or written."""


class InvalidTermError(PersistenceError):
    """A term cannot be stored without breaking the delimited encoding."""


class HomogenizationMismatchError(AcronymizerError):
    """The uniformize call returned a different number of entries than sent."""

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Homogenization returned {received} entries, expected {expected}"
        )
        self.expected = expected
        self.received = received
