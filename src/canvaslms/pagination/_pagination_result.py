"""Immutable snapshot of one page of a paginated collection."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from canvaslms.pagination._link_header import LinkHeaderParser

_NAVIGATION_RELATIONS = ("current", "next", "prev", "first", "last")


@dataclass(frozen=True)
class PaginationResult:
    """
    A materialized page: its data plus page metadata.

    Fully immutable and safe to share across threads. Use it when random
    access to page metadata is needed rather than lazy traversal.

    Attributes:
        data: Items of the page.
        current_page: Current page number.
        total_pages: Total number of pages, or None when Canvas did not send a "last" link.
        per_page: Page size, if known.
        links: Relation name -> URL map.

    Example:
        >>> result = PaginationResult.from_link_header(items, response.headers.get("Link"))
        >>> result.get_summary()
        'Page 2 of 5 (10 items)'
    """

    data: tuple[Any, ...] = ()
    current_page: int = 1
    total_pages: int | None = None
    per_page: int | None = None
    links: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", tuple(self.data))
        object.__setattr__(self, "links", MappingProxyType(dict(self.links)))

    @classmethod
    def from_link_header(cls, data: Sequence[Any], header: str | None) -> PaginationResult:
        """Build a result from page data and the raw Link header value."""
        links = LinkHeaderParser.parse(header)
        per_page = None
        for url in links.values():
            per_page = LinkHeaderParser.extract_per_page(url)
            if per_page is not None:
                break
        return cls(
            data=tuple(data),
            current_page=LinkHeaderParser.extract_page_number(links.get("current")) or 1,
            total_pages=LinkHeaderParser.extract_page_number(links.get("last")),
            per_page=per_page,
            links=links,
        )

    def get_next_url(self) -> str | None:
        return self.links.get("next")

    def get_prev_url(self) -> str | None:
        return self.links.get("prev")

    def get_first_url(self) -> str | None:
        return self.links.get("first")

    def get_last_url(self) -> str | None:
        return self.links.get("last")

    def get_current_url(self) -> str | None:
        return self.links.get("current")

    def has_next(self) -> bool:
        return "next" in self.links

    def has_prev(self) -> bool:
        return "prev" in self.links

    def has_more(self) -> bool:
        return self.has_next()

    def is_first_page(self) -> bool:
        return self.current_page == 1

    def is_last_page(self) -> bool:
        if self.total_pages is None:
            return not self.has_next()
        return self.current_page >= self.total_pages

    def count(self) -> int:
        return len(self.data)

    def is_empty(self) -> bool:
        return not self.data

    def get_summary(self) -> str:
        if self.total_pages is not None:
            return f"Page {self.current_page} of {self.total_pages} ({self.count()} items)"
        return f"Page {self.current_page} ({self.count()} items)"

    def get_navigation_urls(self) -> dict[str, str]:
        """Return the navigation relations that are present."""
        return {rel: self.links[rel] for rel in _NAVIGATION_RELATIONS if self.links.get(rel)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": list(self.data),
            "pagination": {
                "current_page": self.current_page,
                "total_pages": self.total_pages,
                "per_page": self.per_page,
                "has_next": self.has_next(),
                "has_prev": self.has_prev(),
                "links": dict(self.links),
            },
        }
