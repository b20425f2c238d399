"""resource-mirror: in-memory mirrors of paginated remote resource collections."""

from __future__ import annotations

from resource_mirror.collection import Collection, build_query_params
from resource_mirror.config import CollectionConfig, load_config
from resource_mirror.entity import Entity, EntityHandle
from resource_mirror.errors import (
    CollectionError,
    ConfigurationError,
    EntityNotFoundError,
    InvalidIdentifierError,
    ProtocolError,
)
from resource_mirror.realtime import LiveChannel
from resource_mirror.transport import HttpTransport, Transport

__version__ = "0.1.0"

__all__ = [
    "Collection",
    "CollectionConfig",
    "CollectionError",
    "ConfigurationError",
    "Entity",
    "EntityHandle",
    "EntityNotFoundError",
    "HttpTransport",
    "InvalidIdentifierError",
    "LiveChannel",
    "ProtocolError",
    "Transport",
    "build_query_params",
    "load_config",
]
