"""Tests for the page merge policy."""

from dataclasses import dataclass

import pytest

from pagetag import MergeMode, Page, Pagination
from pagetag.merge import (
    MergeInstruction,
    identify,
    is_first_page,
    merge_pages,
    to_page,
)


def hotels(*ids: str) -> Page[dict[str, str]]:
    return Page(items=tuple({"id": i} for i in ids))


def ids(page: Page[dict[str, str]]) -> list[str]:
    return [item["id"] for item in page.items]


@dataclass
class Hotel:
    id: str
    name: str


class TestIdentify:
    """Tests for identify."""

    def test_mapping(self) -> None:
        """Test reading the id from a mapping."""
        assert identify({"id": 7}) == "7"

    def test_attribute(self) -> None:
        """Test reading the id from an attribute."""
        assert identify(Hotel("h1", "Ritz")) == "h1"

    def test_custom_field(self) -> None:
        """Test reading a custom id field."""
        assert identify({"_id": "x"}, "_id") == "x"

    def test_missing(self) -> None:
        """Test that items without an id give None."""
        assert identify({"name": "Ritz"}) is None
        assert identify("plain") is None


class TestIsFirstPage:
    """Tests for is_first_page."""

    def test_page_numbers(self) -> None:
        """Test first-page detection by page number."""
        assert is_first_page({})
        assert is_first_page({"page": 1})
        assert is_first_page({"page": None})
        assert is_first_page({"page": "1"})
        assert not is_first_page({"page": 2})

    def test_cursor(self) -> None:
        """Test first-page detection by cursor."""
        assert is_first_page({"cursor": None})
        assert not is_first_page({"cursor": "abc"})


class TestToPage:
    """Tests for to_page."""

    def test_mapping_with_pagination(self) -> None:
        """Test reading items, pagination and extra fields."""
        page = to_page(
            {
                "hotels": [{"id": "h1"}],
                "pagination": {"page": 1, "totalPages": 3, "total": 7, "limit": 3},
                "facets": {"city": 2},
            },
            "hotels",
        )
        assert ids(page) == ["h1"]
        assert page.pagination == Pagination(page=1, total_pages=3, total=7, limit=3)
        assert page.has_more is True
        assert page.extra == {"facets": {"city": 2}}

    def test_current_page_alias(self) -> None:
        """Test the currentPage / total_pages spellings."""
        page = to_page(
            {"items": [], "pagination": {"currentPage": 2, "total_pages": 2}}, "items"
        )
        assert page.pagination is not None
        assert page.pagination.page == 2
        assert page.has_more is False

    def test_bare_list(self) -> None:
        """Test that a bare list becomes a page without metadata."""
        page = to_page([{"id": "h1"}, {"id": "h2"}], "hotels")
        assert ids(page) == ["h1", "h2"]
        assert page.pagination is None
        assert page.has_more is False

    def test_page_passes_through(self) -> None:
        """Test that an existing Page is returned unchanged."""
        page = hotels("h1")
        assert to_page(page, "hotels") is page

    def test_missing_field_raises(self) -> None:
        """Test that a mapping without the items field is rejected."""
        with pytest.raises(ValueError, match="hotels"):
            to_page({"items": []}, "hotels")

    def test_scalar_raises(self) -> None:
        """Test that a scalar cannot be read as a page."""
        with pytest.raises(ValueError):
            to_page(42, "hotels")


class TestMergePages:
    """Tests for merge_pages."""

    def test_first_page_replaces(self) -> None:
        """Test that a first page replaces previous data."""
        merged = merge_pages(hotels("h1", "h2"), hotels("h9"), {"page": 1})
        assert ids(merged) == ["h9"]

    def test_later_page_appends(self) -> None:
        """Test that a later page appends after previous items."""
        merged = merge_pages(hotels("h1", "h2"), hotels("h3", "h4"), {"page": 2})
        assert ids(merged) == ["h1", "h2", "h3", "h4"]

    def test_duplicates_keep_first_occurrence(self) -> None:
        """Test that overlapping pages do not duplicate items."""
        previous = Page(items=({"id": "h1", "v": "old"}, {"id": "h2", "v": "old"}))
        incoming = Page(items=({"id": "h2", "v": "new"}, {"id": "h3", "v": "new"}))
        merged = merge_pages(previous, incoming, {"page": 2})
        assert [(i["id"], i["v"]) for i in merged.items] == [
            ("h1", "old"),
            ("h2", "old"),
            ("h3", "new"),
        ]

    def test_duplicates_within_one_page(self) -> None:
        """Test that repeated ids inside one response collapse."""
        merged = merge_pages(None, hotels("h1", "h1", "h2"), {"page": 1})
        assert ids(merged) == ["h1", "h2"]

    def test_items_without_id_are_kept(self) -> None:
        """Test that items lacking an id are always appended."""
        previous = Page(items=({"name": "a"},))
        incoming = Page(items=({"name": "a"},))
        merged = merge_pages(previous, incoming, {"page": 2})
        assert len(merged) == 2

    def test_later_page_without_previous(self) -> None:
        """Test that a later page with nothing cached becomes the data."""
        merged = merge_pages(None, hotels("h4"), {"page": 2})
        assert ids(merged) == ["h4"]

    def test_metadata_from_latest(self) -> None:
        """Test that pagination comes from the latest response."""
        previous = Page(items=({"id": "h1"},), pagination=Pagination(1, 3))
        incoming = Page(items=({"id": "h2"},), pagination=Pagination(2, 3))
        merged = merge_pages(previous, incoming, {"page": 2})
        assert merged.pagination == Pagination(2, 3)


class TestMergeInstruction:
    """Tests for MergeInstruction."""

    def test_singular_returns_raw(self) -> None:
        """Test that non-list data is replaced as-is."""
        instruction = MergeInstruction(MergeMode.REPLACE)
        assert instruction.apply({"id": "old"}, {"id": "new"}) == {"id": "new"}
        assert instruction.replaces

    def test_append(self) -> None:
        """Test appending a raw list response onto a page."""
        instruction = MergeInstruction(
            MergeMode.APPEND, page_args={"page": 2}, items_field="hotels"
        )
        merged = instruction.apply(hotels("h1"), {"hotels": [{"id": "h2"}]})
        assert ids(merged) == ["h1", "h2"]
        assert not instruction.replaces

    def test_replace_mode_ignores_page(self) -> None:
        """Test that REPLACE mode never appends, even for later pages."""
        instruction = MergeInstruction(
            MergeMode.REPLACE, page_args={"page": 2}, items_field="hotels"
        )
        merged = instruction.apply(hotels("h1"), {"hotels": [{"id": "h2"}]})
        assert ids(merged) == ["h2"]
        assert instruction.replaces
