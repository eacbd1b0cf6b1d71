"""Shared pytest fixtures."""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from pagetag import (
    CacheEngine,
    LocalTransport,
    MutationEndpoint,
    QueryEndpoint,
    Tag,
    create_engine,
)


class FakeBackend:
    """In-process hotel booking backend that counts every call.

    Set ``gate`` to hold all calls until it is set, and add endpoint names
    to ``failing`` to make them raise.
    """

    def __init__(self) -> None:
        self.hotels: list[dict[str, Any]] = [
            {
                "id": f"h{i}",
                "name": f"Hotel {i}",
                "city": "Lyon" if i % 2 else "Nice",
                "reviewCount": 0,
            }
            for i in range(1, 8)
        ]
        self.reviews: list[dict[str, Any]] = []
        self.calls: Counter[str] = Counter()
        self.gate: asyncio.Event | None = None
        self.failing: set[str] = set()

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self.gate is not None:
            await self.gate.wait()
        if name in self.failing:
            raise ConnectionError(f"{name} unavailable")

    @staticmethod
    def _paginate(items: list[Any], field: str, args: dict[str, Any]) -> dict[str, Any]:
        page = args.get("page", 1)
        limit = args.get("limit", 3)
        total_pages = max(1, -(-len(items) // limit))
        start = (page - 1) * limit
        return {
            field: [dict(item) for item in items[start : start + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(items),
                "totalPages": total_pages,
            },
        }

    async def get_hotels(self, args: Any) -> dict[str, Any]:
        await self._enter("getHotels")
        args = args or {}
        city = args.get("city")
        items = [h for h in self.hotels if city in (None, h["city"])]
        return self._paginate(items, "hotels", args)

    async def get_hotel(self, hotel_id: str) -> dict[str, Any]:
        await self._enter("getHotel")
        for hotel in self.hotels:
            if hotel["id"] == hotel_id:
                return dict(hotel)
        raise LookupError(f"hotel {hotel_id} not found")

    async def get_reviews(self, args: Any) -> dict[str, Any]:
        await self._enter("getReviews")
        args = args or {}
        hotel_id = args.get("hotelId")
        items = [r for r in self.reviews if hotel_id in (None, r["hotelId"])]
        return self._paginate(items, "reviews", args)

    async def create_review(self, payload: dict[str, Any]) -> dict[str, Any]:
        await self._enter("createReview")
        review = {"id": f"r{len(self.reviews) + 1}", **payload}
        self.reviews.append(review)
        for hotel in self.hotels:
            if hotel["id"] == payload["hotelId"]:
                hotel["reviewCount"] += 1
        return review


def booking_endpoints() -> list[QueryEndpoint | MutationEndpoint]:
    return [
        QueryEndpoint("getHotels", "Hotel", items_field="hotels"),
        QueryEndpoint("getHotel", "Hotel"),
        QueryEndpoint("getReviews", "Review", items_field="reviews"),
        MutationEndpoint(
            "createReview",
            "Review",
            invalidates=lambda review, _payload: [
                Tag.list("Review"),
                Tag("Hotel", review["hotelId"]),
            ],
        ),
    ]


@pytest.fixture
def backend() -> FakeBackend:
    """Create a fresh FakeBackend for each test."""
    return FakeBackend()


@pytest.fixture
def transport(backend: FakeBackend) -> LocalTransport:
    """Route the booking endpoints to the fake backend."""
    return LocalTransport(
        {
            "getHotels": backend.get_hotels,
            "getHotel": backend.get_hotel,
            "getReviews": backend.get_reviews,
            "createReview": backend.create_review,
        }
    )


@pytest.fixture
async def engine(transport: LocalTransport) -> AsyncIterator[CacheEngine]:
    """Create an engine with the booking endpoints registered."""
    engine = create_engine(transport=transport, keep_unused_for="60s")
    engine.register(*booking_endpoints())
    yield engine
    await engine.close()


@pytest.fixture
async def make_engine(
    transport: LocalTransport,
) -> AsyncIterator[Callable[..., CacheEngine]]:
    """Factory for engines with custom settings, closed on teardown."""
    engines: list[CacheEngine] = []

    def make(**kwargs: Any) -> CacheEngine:
        engine = create_engine(transport=transport, **kwargs)
        engine.register(*booking_endpoints())
        engines.append(engine)
        return engine

    yield make
    for engine in engines:
        await engine.close()
