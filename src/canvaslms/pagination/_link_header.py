"""
RFC 5988 Link header parsing.

Canvas paginates collection endpoints with a Link header such as:

    <https://school.instructure.com/api/v1/courses?page=2&per_page=10>; rel="next",
    <https://school.instructure.com/api/v1/courses?page=1&per_page=10>; rel="first"
"""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

_LINK_ENTRY = re.compile(r'<([^>]*)>\s*;(?:[^;]*;)*?\s*rel\s*=\s*"([^"]*)"')


class LinkHeaderParser:
    """
    Parses Link headers into relation -> URL maps.

    Malformed entries are skipped; parsing never raises. Relation names are
    case-sensitive and kept verbatim. When a relation appears more than
    once, the last occurrence wins.

    Example:
        >>> header = '<https://x/api/v1/courses?page=2>; rel="next", <https://x/api/v1/courses?page=5>; rel="last"'
        >>> LinkHeaderParser.parse(header)
        {'next': 'https://x/api/v1/courses?page=2', 'last': 'https://x/api/v1/courses?page=5'}
        >>> LinkHeaderParser.extract_page_number(LinkHeaderParser.extract_relation(header, "last"))
        5
    """

    @staticmethod
    def parse(header: str | None) -> dict[str, str]:
        links: dict[str, str] = {}
        if not header or not isinstance(header, str):
            return links

        for entry in header.split(","):
            match = _LINK_ENTRY.search(entry.strip())
            if match is None:
                continue
            url, rel = match.group(1).strip(), match.group(2).strip()
            if url and rel:
                links[rel] = url
        return links

    @classmethod
    def extract_relation(cls, header: str | None, name: str) -> str | None:
        return cls.parse(header).get(name)

    @classmethod
    def has_relation(cls, header: str | None, name: str) -> bool:
        return name in cls.parse(header)

    @classmethod
    def get_relations(cls, header: str | None) -> set[str]:
        return set(cls.parse(header))

    @staticmethod
    def extract_page_number(url: str | None) -> int | None:
        """Return the integer `page` query parameter of `url`, or None."""
        return _int_query_param(url, "page")

    @staticmethod
    def extract_per_page(url: str | None) -> int | None:
        """Return the integer `per_page` query parameter of `url`, or None."""
        return _int_query_param(url, "per_page")


def _int_query_param(url: str | None, name: str) -> int | None:
    if not url:
        return None
    try:
        values = parse_qs(urlparse(url).query).get(name)
    except ValueError:
        return None
    if not values:
        return None
    value = values[0].strip()
    # isdigit() alone accepts Unicode digits such as "²" that int() rejects
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)
