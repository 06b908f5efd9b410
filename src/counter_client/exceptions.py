"""
Exception classes for the counter client.

All exceptions inherit from CounterClientError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class CounterClientError(Exception):
    """Base exception for all counter client errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(CounterClientError):
    """Raised when a configuration file cannot be read or is invalid."""

    pass


class PersistenceError(CounterClientError):
    """Raised when the key-value state file cannot be read or written."""

    pass


class TransportError(CounterClientError):
    """Raised when connect, publish or subscribe fails at the transport level."""

    pass


class PayloadError(CounterClientError):
    """Raised when an inbound message payload is malformed."""

    pass


class IdentityError(CounterClientError):
    """Raised when a client identifier is not usable as a topic segment."""

    pass
