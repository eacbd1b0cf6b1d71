"""Transports for pagetag (async only)."""

from contextlib import suppress

from pagetag.transports.base import Transport
from pagetag.transports.local import LocalTransport

# Optional transports - only available when dependencies are installed
with suppress(ImportError):
    from pagetag.transports.rest import RestTransport, Route

__all__ = [
    "LocalTransport",
    "RestTransport",
    "Route",
    "Transport",
]
