"""Live push channel for collection change notifications.

Transport layer:
- WebSocket: aiohttp.ClientSession at ``ws://{host}/{path}/{type}/realtime``
  - Background reader task forwarding text/binary frames to a callback
  - No reconnect: a dropped connection is logged and the channel goes idle

Frames are JSON envelopes ``{"action": "create"|"update"|"delete", "id": ...}``;
:func:`parse_message` validates them.  Interpretation of the actions belongs
to the collection that owns the channel.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from resource_mirror.errors import ProtocolError

logger = logging.getLogger(__name__)

REALTIME_SUFFIX = "realtime"
DEFAULT_RECEIVE_TIMEOUT = 5.0

MessageCallback = Callable[[str | bytes], None]


def realtime_url(host: str, path: str, type_: str) -> str:
    """Derive the live-channel URL for a collection.

    An ``http://`` prefix on *host* is stripped; ``https://`` becomes ``wss://``.
    """
    host = host.rstrip("/")
    if host.startswith("https://"):
        base = "wss://" + host[len("https://") :]
    elif host.startswith(("ws://", "wss://")):
        base = host
    else:
        base = "ws://" + host.removeprefix("http://")
    return f"{base}/{path}/{type_}/{REALTIME_SUFFIX}"


def parse_message(raw: str | bytes) -> dict[str, Any]:
    """Decode one live-channel frame.

    Raises
    ------
    ProtocolError
        If the frame is not a JSON object carrying a string ``action``.
    """
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Could not parse JSON data: {raw!r}", raw=raw) from exc

    if not isinstance(message, dict):
        raise ProtocolError(f"Expected a JSON object, got: {raw!r}", raw=raw)
    if not isinstance(message.get("action"), str):
        raise ProtocolError(f"Message has no action: {raw!r}", raw=raw)
    return message


class LiveChannel:
    """A single WebSocket connection shared by every entity of a collection.

    Entities register with :meth:`track` / :meth:`untrack`; the set of
    tracked identifiers is what the owning collection currently mirrors.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: MessageCallback | None = None,
        verify_ssl: bool = True,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT,
        session: Any | None = None,
    ) -> None:
        self.url = url
        self.on_message = on_message
        self._verify_ssl = verify_ssl
        self._receive_timeout = receive_timeout
        self._owns_session = session is None
        self._session: Any | None = session  # aiohttp.ClientSession
        self._connection: Any | None = None  # aiohttp.ClientWebSocketResponse
        self._reader_task: asyncio.Task[None] | None = None
        self._shutdown: bool = False
        # entity id → entity
        self._subscribers: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def track(self, entity: Any) -> None:
        self._subscribers[entity.id] = entity

    def untrack(self, entity: Any) -> None:
        if self._subscribers.get(entity.id) is entity:
            del self._subscribers[entity.id]

    def is_tracking(self, entity_id: str) -> bool:
        return entity_id in self._subscribers

    @property
    def subscriptions(self) -> frozenset[str]:
        return frozenset(self._subscribers)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    async def connect(self) -> None:
        """Open the WebSocket and start the background reader."""
        import aiohttp

        if self.connected:
            return

        self._shutdown = False
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self._verify_ssl)
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True

        logger.debug("Connecting live channel to %s", self.url)
        try:
            self._connection = await self._session.ws_connect(self.url)
        except BaseException:
            if self._owns_session:
                await self._session.close()
                self._session = None
            raise
        logger.info("Live channel connected: %s", self.url)
        self._start_reader()

    async def close(self) -> None:
        """Stop the reader, close the socket and any owned session."""
        self._shutdown = True

        task = self._reader_task
        self._reader_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._connection is not None and not self._connection.closed:
            try:
                await self._connection.close()
            except Exception as exc:
                logger.debug("Error closing live channel socket: %s", exc)
        self._connection = None

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

        self._subscribers.clear()

    # ------------------------------------------------------------------
    # Reader loop
    # ------------------------------------------------------------------

    def _start_reader(self) -> None:
        if self._reader_task is not None and not self._reader_task.done():
            return
        self._reader_task = asyncio.ensure_future(self._read_loop())

    async def _read_loop(self) -> None:
        """Forward frames to ``on_message`` until the socket closes."""
        import aiohttp

        try:
            while not self._shutdown:
                if self._connection is None or self._connection.closed:
                    break

                try:
                    raw = await self._connection.receive(timeout=self._receive_timeout)
                except TimeoutError:
                    continue

                if raw.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._deliver(raw.data)

                elif raw.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.ERROR,
                ):
                    logger.warning(
                        "Live channel %s closed (type=%s); no further updates will arrive.",
                        self.url,
                        raw.type,
                    )
                    break

        except asyncio.CancelledError:
            return
        except aiohttp.ClientError as exc:
            logger.warning("Live channel %s read error: %s", self.url, exc)

    def _deliver(self, data: str | bytes) -> None:
        if self.on_message is None:
            logger.debug("Live channel %s: dropping frame, no handler", self.url)
            return
        self.on_message(data)
