"""Synchronized collection: an in-memory mirror of a paginated remote resource set.

State is kept consistent with the server through two paths:

- full reconciliation (:meth:`Collection.fetch` / :meth:`Collection.parse`),
  which replaces everything held locally with a fresh collection response;
- incremental live updates, delivered as ``create``/``update``/``delete``
  frames on an optional WebSocket channel.

Entities are held in a single insertion-ordered ``dict`` keyed by identifier,
so the index and the ordered entry list cannot drift apart and a colliding
identifier always replaces instead of duplicating.

Concurrency: synchronous mutators (``add``, ``remove``, ``parse``, ``clear``)
never await and are atomic on the event loop.  Async mutators (``fetch``,
``add_by_id``, ``remove_by_id``) and every live frame are serialized through
a per-instance ``asyncio.Lock``; frames are queued and drained by a single
consumer task in arrival order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import ValidationError

from resource_mirror.config import CollectionConfig
from resource_mirror.entity import Entity, EntityHandle
from resource_mirror.errors import (
    ConfigurationError,
    EntityNotFoundError,
    InvalidIdentifierError,
    ProtocolError,
)
from resource_mirror.realtime import LiveChannel, parse_message, realtime_url
from resource_mirror.transport import HttpTransport, Transport

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception], None]
EntityFactory = Callable[..., EntityHandle]


def build_query_params(options: Mapping[str, Any] | None) -> dict[str, Any]:
    """Translate ``fetch`` options into flat query parameters.

    - ``query`` / ``fields``: JSON-encoded (strings are passed through)
    - ``sort``: sequence of field names joined with commas, order preserved
    - ``page``: ``offset``/``limit`` hoisted to ``page[offset]``/``page[limit]``;
      the nested ``page`` key itself is never sent
    - any other key: passed through unchanged

    The caller's mapping is not modified.  ``None`` values are dropped.
    """
    params = dict(options or {})

    for key in ("query", "fields"):
        value = params.get(key)
        if value is not None and not isinstance(value, str):
            params[key] = json.dumps(value, separators=(",", ":"))

    sort = params.get("sort")
    if sort is not None and not isinstance(sort, str):
        params["sort"] = ",".join(str(name) for name in sort)

    page = params.pop("page", None)
    if isinstance(page, Mapping):
        for key in ("offset", "limit"):
            if page.get(key) is not None:
                params[f"page[{key}]"] = page[key]

    return {key: value for key, value in params.items() if value is not None}


class Collection:
    """Client-side mirror of the resource collection at ``{host}/{path}/{type}``.

    Parameters
    ----------
    host, path, type:
        Required endpoint components; leading/trailing slashes are trimmed.
    realtime:
        Create a :class:`LiveChannel` at ``{host}/{path}/{type}/realtime``.
        The socket connects on :meth:`open` (or ``async with``).
    inclusive:
        Pull unseen identifiers announced by ``create`` frames into the
        collection.
    transport:
        Request/response collaborator; defaults to an owned
        :class:`HttpTransport`.
    entity_factory:
        Callable building entity handles from keyword arguments
        ``id, type, uri, attributes, transport``; defaults to :class:`Entity`.
    on_error:
        Receives :class:`ProtocolError` for malformed frames and any
        exception raised while applying a live update.  Never raised out of
        the message consumer.

    Raises
    ------
    ConfigurationError
        If ``host``, ``path`` or ``type`` is missing or blank.
    """

    def __init__(
        self,
        host: str | None = None,
        path: str | None = None,
        type: str | None = None,
        *,
        realtime: bool = False,
        inclusive: bool = False,
        transport: Transport | None = None,
        entity_factory: EntityFactory | None = None,
        on_error: ErrorCallback | None = None,
        verify_ssl: bool = True,
        request_timeout: float = 20.0,
        receive_timeout: float = 5.0,
    ) -> None:
        try:
            config = CollectionConfig(
                host=host,
                path=path,
                type=type,
                realtime=realtime,
                inclusive=inclusive,
                verify_ssl=verify_ssl,
                request_timeout=request_timeout,
                receive_timeout=receive_timeout,
            )
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise ConfigurationError(
                f"Collection missing or invalid constructor parameter(s): {', '.join(fields)}"
            ) from exc

        self._host = config.host
        self._path = config.path
        self._type = config.type
        self.inclusive = config.inclusive

        self._entities: dict[str, EntityHandle] = {}
        self.offset: int = 0
        self.limit: int = 0
        self.total: int = 0
        self.errors: list[Any] = []

        self._owns_transport = transport is None
        self._transport: Transport = (
            transport
            if transport is not None
            else HttpTransport(timeout=config.request_timeout, verify_ssl=config.verify_ssl)
        )
        self._entity_factory: EntityFactory = entity_factory or Entity
        self._on_error = on_error

        self._lock = asyncio.Lock()
        self._inbox: asyncio.Queue[str | bytes] = asyncio.Queue()
        self._consumer_task: asyncio.Task[None] | None = None
        self._closed = False

        self.channel: LiveChannel | None = None
        if config.realtime:
            self.channel = LiveChannel(
                realtime_url(self._host, self._path, self._type),
                on_message=self._enqueue_message,
                verify_ssl=config.verify_ssl,
                receive_timeout=config.receive_timeout,
            )

    @classmethod
    def from_config(cls, config: CollectionConfig, **kwargs: Any) -> Collection:
        return cls(
            config.host,
            config.path,
            config.type,
            realtime=config.realtime,
            inclusive=config.inclusive,
            verify_ssl=config.verify_ssl,
            request_timeout=config.request_timeout,
            receive_timeout=config.receive_timeout,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def uri(self) -> str:
        return f"{self._host}/{self._path}/{self._type}"

    @property
    def type(self) -> str:
        return self._type

    @property
    def errored(self) -> int:
        return len(self.errors)

    @property
    def index(self) -> Mapping[str, EntityHandle]:
        """Read-only identifier → entity view."""
        return MappingProxyType(self._entities)

    @property
    def entries(self) -> list[EntityHandle]:
        """Entities in arrival order."""
        return list(self._entities.values())

    def get(self, entity_id: str) -> EntityHandle | None:
        return self._entities.get(entity_id)

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[EntityHandle]:
        return iter(list(self._entities.values()))

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __repr__(self) -> str:
        return (
            f"<Collection {self.uri} entries={len(self._entities)} "
            f"total={self.total} realtime={self.channel is not None}>"
        )

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add(self, entity: EntityHandle) -> None:
        """Insert *entity*, replacing any held entity with the same id in place."""
        previous = self._entities.get(entity.id)
        if previous is not None and previous is not entity and self.channel is not None:
            previous.unsubscribe(self.channel)

        self._entities[entity.id] = entity

        if self.channel is not None:
            entity.subscribe(self.channel)

    def remove(self, entity: EntityHandle) -> None:
        """Drop the entity with *entity*'s id.  Absent ids are ignored."""
        held = self._entities.get(entity.id)
        if held is None:
            logger.debug("remove(): %s/%s not in collection; ignoring", self._type, entity.id)
            return

        if self.channel is not None:
            held.unsubscribe(self.channel)
        del self._entities[entity.id]

    async def add_by_id(self, entity_id: str) -> EntityHandle:
        """Load the entity *entity_id* from the server and insert it.

        Raises
        ------
        InvalidIdentifierError
            If *entity_id* is empty.
        """
        if not entity_id:
            raise InvalidIdentifierError("Collection.add_by_id: no identifier provided")

        with structlog.contextvars.bound_contextvars(collection=self.uri):
            async with self._lock:
                return await self._add_by_id(str(entity_id))

    async def remove_by_id(self, entity_id: str) -> None:
        """Remove the entity *entity_id*.

        Raises
        ------
        InvalidIdentifierError
            If *entity_id* is empty.
        EntityNotFoundError
            If *entity_id* is not in the index.
        """
        if not entity_id:
            raise InvalidIdentifierError("Collection.remove_by_id: no identifier provided")

        with structlog.contextvars.bound_contextvars(collection=self.uri):
            async with self._lock:
                entity = self._entities.get(str(entity_id))
                if entity is None:
                    raise EntityNotFoundError(str(entity_id))
                self.remove(entity)
                logger.debug("Removed %s/%s", self._type, entity_id)

    async def _add_by_id(self, entity_id: str) -> EntityHandle:
        entity = self._new_entity(entity_id)
        await entity.load()
        self.add(entity)
        logger.debug("Added %s/%s", self._type, entity_id)
        return self._entities[entity_id]

    def _new_entity(self, entity_id: str, attributes: Mapping[str, Any] | None = None) -> Any:
        return self._entity_factory(
            id=entity_id,
            type=self._type,
            uri=self.uri,
            attributes=dict(attributes or {}),
            transport=self._transport,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def parse(self, payload: Mapping[str, Any]) -> None:
        """Replace all local state with the contents of a collection response.

        *payload* has the shape ``{"data": [{"id", "attributes"}, ...],
        "errors"?: [...], "meta"?: {"offset", "limit", "total"}}``.  Entities
        absent from ``data`` are dropped, including ones added locally.
        """
        if self.channel is not None:
            for entity in self._entities.values():
                entity.unsubscribe(self.channel)

        self.errors = []
        self._entities.clear()
        self.offset = 0
        self.limit = 0
        self.total = 0

        errors = payload.get("errors")
        if errors:
            self.errors = list(errors)

        for item in payload.get("data") or []:
            entity_id = item.get("id") if isinstance(item, Mapping) else None
            if entity_id is None or entity_id == "":
                logger.warning("Skipping %s row without id: %r", self._type, item)
                continue
            self.add(self._new_entity(str(entity_id), item.get("attributes")))

        meta = payload.get("meta")
        if isinstance(meta, Mapping):
            self.offset = meta.get("offset", 0)
            self.limit = meta.get("limit", 0)
            self.total = meta.get("total", 0)

    async def fetch(self, options: Mapping[str, Any] | None = None) -> Collection:
        """Query the collection endpoint and reconcile against the response.

        See :func:`build_query_params` for the recognised *options*.
        Transport failures propagate unmodified.
        """
        params = build_query_params(options)
        with structlog.contextvars.bound_contextvars(collection=self.uri):
            async with self._lock:
                payload = await self._transport.get(self.uri, params)
                self.parse(payload)

            if self.errors:
                logger.warning("Fetch of %s reported %d error(s)", self.uri, self.errored)
            else:
                logger.info(
                    "Fetched %s: %d entities (offset=%s limit=%s total=%s)",
                    self.uri,
                    len(self._entities),
                    self.offset,
                    self.limit,
                    self.total,
                )
        return self

    def clear(self) -> None:
        """Drop every entity and reset metadata."""
        self.parse({"data": []})

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    def _enqueue_message(self, raw: str | bytes) -> None:
        self._inbox.put_nowait(raw)

    def _start_consumer(self) -> None:
        if self._consumer_task is not None and not self._consumer_task.done():
            return
        self._consumer_task = asyncio.ensure_future(self._consume_messages())

    async def _consume_messages(self) -> None:
        """Apply queued frames one at a time, under the collection lock."""
        # The consumer task runs in its own context copy; bind once for its lifetime.
        structlog.contextvars.bind_contextvars(collection=self.uri)
        while True:
            raw = await self._inbox.get()
            try:
                async with self._lock:
                    await self._apply_message(raw)
            except Exception as exc:
                self._report(exc)
            finally:
                self._inbox.task_done()

    async def _apply_message(self, raw: str | bytes) -> None:
        message = parse_message(raw)
        action = message["action"]
        raw_id = message.get("id")
        entity_id = str(raw_id) if raw_id is not None and raw_id != "" else None

        if action == "create":
            if not self.inclusive:
                logger.debug("create %s ignored (collection not inclusive)", entity_id)
                return
            if entity_id is None:
                raise ProtocolError(f"create message without id: {raw!r}", raw=raw)
            await self._add_by_id(entity_id)

        elif action == "update":
            entity = self._entities.get(entity_id) if entity_id is not None else None
            if entity is None:
                logger.debug("update for unknown id %r ignored", entity_id)
                return
            await entity.load()
            logger.debug("Reloaded %s/%s", self._type, entity_id)

        elif action == "delete":
            entity = self._entities.get(entity_id) if entity_id is not None else None
            if entity is None:
                logger.debug("delete for unknown id %r ignored", entity_id)
                return
            self.remove(entity)
            logger.debug("Removed %s/%s", self._type, entity_id)

        else:
            logger.debug("Ignoring unknown live action %r", action)

    def _report(self, exc: Exception) -> None:
        logger.warning("Live update for %s dropped: %s", self.uri, exc)
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("on_error callback raised")

    async def join(self) -> None:
        """Wait until every queued live frame has been applied or discarded."""
        await self._inbox.join()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> Collection:
        """Connect the live channel (if any) and start applying its frames."""
        if self._closed:
            raise RuntimeError(f"Collection {self.uri} is closed")
        if self.channel is None:
            return self

        try:
            self._start_consumer()
            await self.channel.connect()
        except BaseException:
            logger.warning("Could not open live channel for %s; closing", self.uri)
            await self.close()
            raise
        return self

    async def close(self) -> None:
        """Release the live channel, every subscription, and an owned transport.

        Frames still queued are discarded, so a pending :meth:`join` returns.
        """
        if self._closed:
            return
        self._closed = True

        task = self._consumer_task
        self._consumer_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        dropped = 0
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()
            dropped += 1
        if dropped:
            logger.debug("Discarded %d unapplied live frame(s) for %s", dropped, self.uri)

        if self.channel is not None:
            for entity in self._entities.values():
                entity.unsubscribe(self.channel)
            if self.channel.subscriptions:
                logger.debug(
                    "Releasing %d foreign subscription(s) on %s",
                    len(self.channel.subscriptions),
                    self.channel.url,
                )
            await self.channel.close()

        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> Collection:
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
