"""
Exception hierarchy shared across Chorus components.
"""


class ChorusError(Exception):
    """Base class for all Chorus errors."""
    pass


class TransportError(ChorusError):
    """Bus read/connect/publish failure. Retried by consumers, never surfaced as content."""
    pass


class MessageDecodeError(ChorusError):
    """A payload on the bus could not be decoded into a Message."""
    pass


class InvalidMessageError(ChorusError):
    """A message violates a model invariant (e.g. missing conversation id)."""
    pass


class GenerationError(ChorusError):
    """The text-generation backend failed or returned nothing usable."""
    pass


class StoreClosedError(ChorusError):
    """The conversation store has been torn down."""
    pass


class CircuitBreakerOpenError(ChorusError):
    """Raised when circuit breaker is open."""
    pass
