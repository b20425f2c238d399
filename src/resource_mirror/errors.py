"""Error taxonomy for resource collections.

Server-reported errors (the ``errors`` array of a collection response) are
data and are never raised.  Transport failures raised by httpx propagate
unmodified and are not wrapped here.
"""

from __future__ import annotations


class CollectionError(Exception):
    """Base class for resource collection errors."""


class ConfigurationError(CollectionError):
    """Raised when a collection is constructed or configured without required fields."""


class InvalidIdentifierError(CollectionError, ValueError):
    """Raised when a by-id operation receives an empty identifier."""


class EntityNotFoundError(CollectionError, KeyError):
    """Raised when a by-id operation targets an identifier not in the index."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Entity {entity_id!r} not found in collection index")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


class ProtocolError(CollectionError):
    """A live-channel frame could not be interpreted.

    Never raised out of the message consumer; delivered to the collection's
    ``on_error`` callback instead.
    """

    def __init__(self, message: str, *, raw: str | bytes | None = None) -> None:
        self.raw = raw
        super().__init__(message)
