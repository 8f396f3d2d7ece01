"""
Error types raised by the consumer.

Startup errors are fatal. Everything else is per-event: the event is
dropped and the error is returned to the host dispatcher.
"""


class SoroswapPairsError(Exception):
    """Base class for all consumer errors."""


class StorageInitError(SoroswapPairsError):
    """The store could not be opened, pinged, configured or schema-initialized."""


class PayloadTypeError(SoroswapPairsError, TypeError):
    """Message payload is not raw bytes."""


class EventDecodeError(SoroswapPairsError, ValueError):
    """Payload could not be decoded into an event record."""


class UnknownEventTypeError(EventDecodeError):
    """Payload carries a type tag with no registered event record."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"unknown event type: {event_type}")


class EventValidationError(SoroswapPairsError, ValueError):
    """Decoded event is missing required data."""


class StorageOperationError(SoroswapPairsError):
    """A transaction failed (begin, execute, commit or deadline) and was rolled back."""


class ConsumerNotInitializedError(SoroswapPairsError):
    """process() was called before initialize()."""
