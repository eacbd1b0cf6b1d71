"""REST transport on httpx."""

from __future__ import annotations

import re
import string
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from pagetag.errors import TransportError

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True, slots=True)
class Route:
    """HTTP method and path template for one endpoint, e.g. ``GET /hotels/{hotelId}``."""

    method: str
    path: str

    @property
    def placeholders(self) -> tuple[str, ...]:
        return tuple(
            name for _, name, _, _ in string.Formatter().parse(self.path) if name
        )


def _fill_path(route: Route, value: Any) -> tuple[str, Any]:
    """Fill the path template. Returns the path and what is left of ``value``."""
    names = route.placeholders
    if not names:
        return route.path, value
    if isinstance(value, Mapping):
        missing = [n for n in names if value.get(n) is None]
        if missing:
            raise TransportError(f"Missing path parameters {missing} for {route.path}")
        path = route.path.format_map({n: value[n] for n in names})
        rest = {k: v for k, v in value.items() if k not in names}
        return path, rest
    if len(names) == 1 and value is not None:
        return _PLACEHOLDER.sub(lambda _: str(value), route.path), None
    raise TransportError(f"Cannot fill {route.path} from {value!r}")


class RestTransport:
    """Async transport issuing one HTTP request per endpoint call.

    Fetch args not consumed by the path go out as query params (None values
    dropped); mutation payloads go out as the JSON body. A response body
    wrapped in ``{envelope: ...}`` is unwrapped.
    """

    def __init__(
        self,
        base_url: str,
        routes: Mapping[str, Route],
        *,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        envelope: str | None = "data",
    ) -> None:
        self._routes = dict(routes)
        self._envelope = envelope
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=timeout,
        )

    async def fetch(self, endpoint: str, args: Any) -> Any:
        route = self._route(endpoint)
        path, rest = _fill_path(route, args)
        params = None
        if isinstance(rest, Mapping):
            params = {k: _param(v) for k, v in rest.items() if v is not None}
        return await self._request(route.method, path, params=params)

    async def mutate(self, endpoint: str, payload: Any) -> Any:
        route = self._route(endpoint)
        path, rest = _fill_path(route, payload)
        body = rest if rest not in (None, {}) else None
        return await self._request(route.method, path, json=body)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _route(self, endpoint: str) -> Route:
        route = self._routes.get(endpoint)
        if route is None:
            raise TransportError(f"No route for endpoint {endpoint!r}")
        return route

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = response.text
            message = data.get("message") if isinstance(data, dict) else None
            raise TransportError(
                message or f"HTTP {response.status_code}",
                status=response.status_code,
                data=data,
            )

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"{method} {path} returned invalid JSON", status=response.status_code
            ) from e
        if self._envelope and isinstance(body, dict) and self._envelope in body:
            return body[self._envelope]
        return body


def _param(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value
