"""
Pagination engine for Canvas collection endpoints.

Canvas returns collections one page at a time and links pages together with
an RFC 5988 Link header. This package follows those links lazily.

Main Classes:
    - LinkHeaderParser: Parses Link headers and page query parameters.
    - PaginatedResponse: One page with lazy next/prev/first/last navigation.
    - PaginationResult: Immutable snapshot of a page and its metadata.
    - PageCollection: Aggregated data plus whether every page was fetched.
    - PageCursor: Endpoint and query parameters identifying a page.
"""

from canvaslms.pagination._link_header import LinkHeaderParser
from canvaslms.pagination._paginated_response import (
    FetchFunction,
    PageCollection,
    PageCursor,
    PaginatedResponse,
)
from canvaslms.pagination._pagination_result import PaginationResult

__all__ = [
    "LinkHeaderParser",
    "PaginatedResponse",
    "PaginationResult",
    "PageCollection",
    "PageCursor",
    "FetchFunction",
]
