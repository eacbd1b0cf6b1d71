"""pagetag - Paginated, tag-invalidated query cache for Python."""

from contextlib import suppress

# Class-based API
from pagetag.api import CacheApi, mutation, query

# Duration parsing
from pagetag.duration import parse_duration

# Engine
from pagetag.endpoints import MutationEndpoint, QueryEndpoint
from pagetag.engine import CacheEngine, create_engine

# Errors
from pagetag.errors import (
    CacheError,
    KeyDerivationError,
    SequenceDiscarded,
    TransportError,
    UnknownEndpointError,
)
from pagetag.handles import MutationState, MutationTrigger, QueryHandle
from pagetag.invalidation import InvalidationResult
from pagetag.keys import derive_key, should_force_refetch
from pagetag.merge import MergeMode
from pagetag.tags import parse_tag, provide_entity, provide_list, serialize_tag

# Transports
from pagetag.transports import LocalTransport, Transport

# Core types
from pagetag.types import (
    CacheEntry,
    Duration,
    EntryStatus,
    Page,
    Pagination,
    QueryState,
    Tag,
)

# Optional transport imports - only available when dependencies are installed
with suppress(ImportError):
    from pagetag.transports.rest import RestTransport, Route

__version__ = "0.1.0"

__all__ = [
    "CacheApi",
    "CacheEngine",
    "CacheEntry",
    "CacheError",
    "Duration",
    "EntryStatus",
    "InvalidationResult",
    "KeyDerivationError",
    "LocalTransport",
    "MergeMode",
    "MutationEndpoint",
    "MutationState",
    "MutationTrigger",
    "Page",
    "Pagination",
    "QueryEndpoint",
    "QueryHandle",
    "QueryState",
    "RestTransport",
    "Route",
    "SequenceDiscarded",
    "Tag",
    "Transport",
    "TransportError",
    "UnknownEndpointError",
    "create_engine",
    "derive_key",
    "mutation",
    "parse_duration",
    "parse_tag",
    "provide_entity",
    "provide_list",
    "query",
    "serialize_tag",
    "should_force_refetch",
]
