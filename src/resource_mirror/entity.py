"""Entity handles: local proxies for one remote resource each."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from resource_mirror.errors import EntityNotFoundError

if TYPE_CHECKING:
    from resource_mirror.realtime import LiveChannel
    from resource_mirror.transport import Transport

logger = logging.getLogger(__name__)


class EntityHandle(Protocol):
    """Contract a collection requires from the objects it holds."""

    id: str
    attributes: dict[str, Any]

    async def load(self) -> Any: ...

    def subscribe(self, channel: LiveChannel) -> None: ...

    def unsubscribe(self, channel: LiveChannel) -> None: ...


@dataclass(eq=False)
class Entity:
    """A single addressable remote resource.

    Attributes
    ----------
    id:
        Stable identifier, unique within the owning collection.
    type:
        Resource type (e.g. ``"articles"``).
    uri:
        Collection endpoint the entity lives under; the entity itself is
        addressed as ``{uri}/{id}``.
    attributes:
        Attribute bag as last received from the server.
    loaded:
        ``True`` once :meth:`load` has populated ``attributes``.
    """

    id: str
    type: str
    uri: str
    attributes: dict[str, Any] = field(default_factory=dict)
    transport: Transport | None = field(default=None, repr=False)
    loaded: bool = False

    @property
    def url(self) -> str:
        return f"{self.uri}/{self.id}"

    async def load(self) -> Entity:
        """Refresh ``attributes`` from ``GET {uri}/{id}`` in place.

        Raises
        ------
        EntityNotFoundError
            If the response carries no ``data`` object (e.g. a JSON:API
            error document for a deleted resource).
        """
        if self.transport is None:
            raise RuntimeError(f"Entity {self.id!r} has no transport; cannot load")

        payload = await self.transport.get(self.url)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise EntityNotFoundError(self.id)

        self.attributes = dict(data.get("attributes") or {})
        self.loaded = True
        logger.debug("Loaded %s/%s (%d attributes)", self.type, self.id, len(self.attributes))
        return self

    def subscribe(self, channel: LiveChannel) -> None:
        channel.track(self)

    def unsubscribe(self, channel: LiveChannel) -> None:
        channel.untrack(self)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "attributes": dict(self.attributes)}
