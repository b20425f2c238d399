"""Shared fixtures for the resource-mirror test suite."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from resource_mirror.collection import Collection


class FakeTransport:
    """In-memory Transport that serves scripted JSON documents by URL."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses: dict[str, Any] = dict(responses or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def get(self, url: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        self.calls.append((url, dict(params or {})))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


def entity_document(entity_id: str, **attributes: Any) -> dict[str, Any]:
    """Single-entity response body as served at ``{uri}/{id}``."""
    return {"data": {"id": entity_id, "type": "articles", "attributes": attributes}}


def assert_consistent(collection: Collection) -> None:
    """Every indexed id has exactly one entry and every entry is indexed."""
    entry_ids = [entity.id for entity in collection.entries]
    assert len(entry_ids) == len(set(entry_ids))
    assert set(entry_ids) == set(collection.index)
    for entity in collection.entries:
        assert collection.index[entity.id] is entity


URI = "http://api.example.com/v1/articles"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def collection(transport: FakeTransport) -> Collection:
    return Collection("http://api.example.com", "v1", "articles", transport=transport)


@pytest.fixture
def live_collection(transport: FakeTransport) -> Collection:
    """Real-time collection whose channel is never connected."""
    return Collection(
        "http://api.example.com",
        "v1",
        "articles",
        realtime=True,
        transport=transport,
    )
