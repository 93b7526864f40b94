"""
Lazy, cursor-based pagination over Canvas collection endpoints.

A PaginatedResponse wraps one page: the raw response, its parsed Link
relations and a stateless fetch function used to request other pages. It
never references the client itself, only the function it was given.

Navigation failures degrade to partial results: `get_next()` and friends
return None instead of raising. Use `collect_pages()` to learn whether an
aggregation stopped because the collection ended or because a page failed.

Example:
    >>> page = client.get_paginated("courses", params={"per_page": 50})
    >>> for course in page.fetch_all_pages():
    ...     print(course["name"])
    >>>
    >>> collection = page.collect_pages()
    >>> if not collection.complete:
    ...     print(f"Stopped after {collection.pages_fetched} pages: {collection.error}")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests

from canvaslms.pagination._link_header import LinkHeaderParser
from canvaslms.pagination._pagination_result import PaginationResult

logger = logging.getLogger(__name__)

# fetch(endpoint, params) -> response for another page of the same collection
FetchFunction = Callable[[str, Mapping[str, Any]], requests.Response]

_API_PREFIX = re.compile(r"^/api/v\d+/")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class PageCursor:
    """
    The minimal state needed to request a page: endpoint and query parameters.

    Attributes:
        endpoint: API path relative to the versioned API root (e.g. "courses").
        params: Query parameters, including `page` and `per_page`.
            Repeated keys (e.g. include[]) map to lists.
    """

    endpoint: str
    params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str) -> PageCursor:
        """
        Build a cursor from an absolute Link URL.

        Example:
            >>> PageCursor.from_url("https://x/api/v1/courses?page=2&per_page=10&include[]=term&include[]=teachers")
            PageCursor(endpoint='courses', params={'page': '2', 'per_page': '10', 'include[]': ['term', 'teachers']})
        """
        parsed = urlparse(url)
        endpoint = _API_PREFIX.sub("", parsed.path, count=1)
        params: dict[str, Any] = {
            key: values[0] if len(values) == 1 else values
            for key, values in parse_qs(parsed.query, keep_blank_values=True).items()
        }
        return cls(endpoint=endpoint, params=params)


@dataclass(frozen=True)
class PageCollection:
    """
    Result of aggregating pages.

    Attributes:
        data: Items from every page fetched, in page order.
        pages_fetched: Number of pages whose data is included.
        complete: True when the last page was reached; False when a follow-up fetch failed.
        error: The exception that stopped the aggregation, if any.
    """

    data: list[Any]
    pages_fetched: int
    complete: bool
    error: Exception | None = None

    @property
    def truncated(self) -> bool:
        return not self.complete


# =============================================================================
# PaginatedResponse
# =============================================================================


class PaginatedResponse:
    """
    One page of a paginated collection, with lazy navigation.

    Instances are immutable; navigation methods return new instances, or
    None when the relation is absent or the follow-up request fails.

    Args:
        response: The raw response of this page.
        fetch: Function fetching another page: fetch(endpoint, params) -> response.
            Typically a bound `HttpClient.get`.
    """

    def __init__(self, response: requests.Response, fetch: FetchFunction):
        assert response is not None, "response is required."
        assert fetch is not None, "fetch is required."

        self._response = response
        self._fetch = fetch
        self._links = LinkHeaderParser.parse(response.headers.get("Link"))

    # -------------------------------------------------------------------------
    # Raw response
    # -------------------------------------------------------------------------

    @property
    def response(self) -> requests.Response:
        return self._response

    def get_status_code(self) -> int:
        return self._response.status_code

    def get_body(self) -> str:
        return self._response.text

    def get_link_header(self) -> str | None:
        return self._response.headers.get("Link")

    def get_json_data(self) -> list[Any]:
        """Return the decoded body when it is a JSON array, else an empty list."""
        try:
            data = self._response.json()
        except ValueError:
            return []
        return data if isinstance(data, list) else []

    # -------------------------------------------------------------------------
    # Links and page metadata
    # -------------------------------------------------------------------------

    def get_links(self) -> dict[str, str]:
        return dict(self._links)

    def get_next_url(self) -> str | None:
        return self._links.get("next")

    def get_prev_url(self) -> str | None:
        return self._links.get("prev")

    def get_first_url(self) -> str | None:
        return self._links.get("first")

    def get_last_url(self) -> str | None:
        return self._links.get("last")

    def get_current_url(self) -> str | None:
        return self._links.get("current")

    def has_next(self) -> bool:
        return "next" in self._links

    def has_prev(self) -> bool:
        return "prev" in self._links

    def get_current_page(self) -> int:
        return LinkHeaderParser.extract_page_number(self.get_current_url()) or 1

    def get_total_pages(self) -> int | None:
        """Total pages from the "last" link; None when Canvas omitted it (e.g. bookmark pagination)."""
        return LinkHeaderParser.extract_page_number(self.get_last_url())

    def get_per_page(self) -> int | None:
        for url in self._links.values():
            per_page = LinkHeaderParser.extract_per_page(url)
            if per_page is not None:
                return per_page
        return None

    def get_pagination_info(self) -> dict[str, Any]:
        return {
            "current_page": self.get_current_page(),
            "total_pages": self.get_total_pages(),
            "per_page": self.get_per_page(),
            "has_next": self.has_next(),
            "has_prev": self.has_prev(),
            "next_url": self.get_next_url(),
            "prev_url": self.get_prev_url(),
            "first_url": self.get_first_url(),
            "last_url": self.get_last_url(),
        }

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def _follow(self, relation: str) -> tuple[PaginatedResponse | None, Exception | None]:
        url = self._links.get(relation)
        if not url:
            return None, None

        cursor = PageCursor.from_url(url)
        try:
            response = self._fetch(cursor.endpoint, cursor.params)
        except Exception as e:
            logger.warning(f"Pagination | Failed to fetch '{relation}' page ({url}): {e}")
            return None, e
        return PaginatedResponse(response, self._fetch), None

    def get_next(self) -> PaginatedResponse | None:
        return self._follow("next")[0]

    def get_prev(self) -> PaginatedResponse | None:
        return self._follow("prev")[0]

    def get_first(self) -> PaginatedResponse | None:
        return self._follow("first")[0]

    def get_last(self) -> PaginatedResponse | None:
        return self._follow("last")[0]

    def iter_pages(self) -> Iterator[PaginatedResponse]:
        """Yield this page and every following page, fetched lazily."""
        page: PaginatedResponse | None = self
        while page is not None:
            yield page
            page = page.get_next()

    def collect_pages(self) -> PageCollection:
        """
        Aggregate the data of this page and every following page.

        Returns:
            PageCollection with `complete=False` and `error` set when a
            follow-up fetch failed; the data fetched so far is kept.
        """
        data = list(self.get_json_data())
        pages_fetched = 1
        page = self

        while True:
            next_page, error = page._follow("next")
            if error is not None:
                return PageCollection(data, pages_fetched, complete=False, error=error)
            if next_page is None:
                return PageCollection(data, pages_fetched, complete=True)
            data.extend(next_page.get_json_data())
            pages_fetched += 1
            page = next_page

    def fetch_all_pages(self) -> list[Any]:
        """
        Return the items of this page and every following page.

        Stops at the last page, or at the first page that fails to fetch
        (a warning is logged). Use `collect_pages()` to tell the two apart.
        """
        collection = self.collect_pages()
        if collection.truncated:
            logger.warning(
                f"Pagination | Returning partial results: {len(collection.data)} items "
                f"from {collection.pages_fetched} pages"
            )
        return collection.data

    def to_pagination_result(self, data: list[Any] | None = None) -> PaginationResult:
        """Snapshot this page's metadata and `data` (defaults to this page's items)."""
        return PaginationResult(
            data=tuple(self.get_json_data() if data is None else data),
            current_page=self.get_current_page(),
            total_pages=self.get_total_pages(),
            per_page=self.get_per_page(),
            links=self._links,
        )

    def __repr__(self) -> str:
        return (
            f"PaginatedResponse(status={self._response.status_code}, "
            f"page={self.get_current_page()}, links={sorted(self._links)})"
        )
