"""Tests for the pagination engine."""

import unittest
from dataclasses import FrozenInstanceError
from unittest.mock import Mock

import requests

from canvaslms._exceptions import CanvasApiError
from canvaslms.pagination import PageCollection, PageCursor, PaginatedResponse, PaginationResult
from support import make_response

COURSES = "https://school.instructure.com/api/v1/courses"


def link_header(**relations: int) -> str:
    return ", ".join(f'<{COURSES}?page={page}&per_page=2>; rel="{rel}"' for rel, page in relations.items())


def page_response(items, **relations: int) -> requests.Response:
    headers = {"Link": link_header(**relations)} if relations else {}
    return make_response(200, json_data=items, headers=headers)


class PagedFetch:
    """Fetch function serving numbered pages."""

    def __init__(self, pages: dict[int, requests.Response | Exception]):
        self.pages = pages
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, endpoint, params):
        self.calls.append((endpoint, dict(params)))
        outcome = self.pages[int(params["page"])]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def three_pages() -> dict[int, requests.Response]:
    return {
        1: page_response([{"id": 1}, {"id": 2}], current=1, next=2, first=1, last=3),
        2: page_response([{"id": 3}, {"id": 4}], current=2, next=3, prev=1, first=1, last=3),
        3: page_response([{"id": 5}, {"id": 6}], current=3, prev=2, first=1, last=3),
    }


class TestPageCursor(unittest.TestCase):
    """Tests for PageCursor.from_url()."""

    def test_strips_versioned_api_prefix(self):
        cursor = PageCursor.from_url(f"{COURSES}?page=2&per_page=10")

        self.assertEqual(cursor.endpoint, "courses")
        self.assertEqual(dict(cursor.params), {"page": "2", "per_page": "10"})

    def test_keeps_repeated_keys_as_lists(self):
        cursor = PageCursor.from_url(
            "https://school.instructure.com/api/v1/courses/1/users?include[]=email&include[]=avatar_url&page=bookmark:abc"
        )

        self.assertEqual(cursor.endpoint, "courses/1/users")
        self.assertEqual(cursor.params["include[]"], ["email", "avatar_url"])
        self.assertEqual(cursor.params["page"], "bookmark:abc")


class TestPaginatedResponseAccessors(unittest.TestCase):
    """Tests for link and metadata accessors."""

    def setUp(self):
        self.fetch = Mock()
        self.page = PaginatedResponse(three_pages()[2], self.fetch)

    def test_urls(self):
        self.assertEqual(self.page.get_next_url(), f"{COURSES}?page=3&per_page=2")
        self.assertEqual(self.page.get_prev_url(), f"{COURSES}?page=1&per_page=2")
        self.assertEqual(self.page.get_first_url(), f"{COURSES}?page=1&per_page=2")
        self.assertEqual(self.page.get_last_url(), f"{COURSES}?page=3&per_page=2")
        self.assertEqual(self.page.get_current_url(), f"{COURSES}?page=2&per_page=2")
        self.assertTrue(self.page.has_next())
        self.assertTrue(self.page.has_prev())

    def test_page_numbers(self):
        self.assertEqual(self.page.get_current_page(), 2)
        self.assertEqual(self.page.get_total_pages(), 3)
        self.assertEqual(self.page.get_per_page(), 2)

    def test_raw_response(self):
        self.assertEqual(self.page.get_status_code(), 200)
        self.assertEqual(self.page.get_json_data(), [{"id": 3}, {"id": 4}])
        self.assertIn('rel="next"', self.page.get_link_header())
        self.assertEqual(self.page.get_body(), '[{"id": 3}, {"id": 4}]')

    def test_pagination_info(self):
        info = self.page.get_pagination_info()

        self.assertEqual(info["current_page"], 2)
        self.assertEqual(info["total_pages"], 3)
        self.assertTrue(info["has_next"])

    def test_defaults_without_link_header(self):
        page = PaginatedResponse(make_response(200, json_data=[1, 2]), self.fetch)

        self.assertEqual(page.get_current_page(), 1)
        self.assertIsNone(page.get_total_pages())
        self.assertIsNone(page.get_per_page())
        self.assertFalse(page.has_next())

    def test_non_ascii_digit_page_numbers_are_ignored(self):
        header = f'<{COURSES}?page=%C2%B2&per_page=2>; rel="current", <{COURSES}?page=%C2%B3>; rel="last"'
        page = PaginatedResponse(make_response(200, json_data=[1], headers={"Link": header}), self.fetch)

        self.assertEqual(page.get_current_page(), 1)
        self.assertIsNone(page.get_total_pages())
        self.assertEqual(page.to_pagination_result().current_page, 1)

    def test_non_list_body_has_no_items(self):
        page = PaginatedResponse(make_response(200, json_data={"id": 1}), self.fetch)

        self.assertEqual(page.get_json_data(), [])


class TestPaginatedResponseNavigation(unittest.TestCase):
    """Tests for lazy navigation."""

    def test_get_next_fetches_target_page(self):
        fetch = PagedFetch(three_pages())
        page = PaginatedResponse(fetch.pages[1], fetch)

        next_page = page.get_next()

        self.assertEqual(next_page.get_current_page(), 2)
        self.assertEqual(fetch.calls, [("courses", {"page": "2", "per_page": "2"})])

    def test_get_first_and_last(self):
        fetch = PagedFetch(three_pages())
        page = PaginatedResponse(fetch.pages[2], fetch)

        self.assertEqual(page.get_first().get_current_page(), 1)
        self.assertEqual(page.get_last().get_current_page(), 3)
        self.assertEqual(page.get_prev().get_current_page(), 1)

    def test_missing_relation_makes_no_request(self):
        fetch = PagedFetch(three_pages())
        page = PaginatedResponse(fetch.pages[3], fetch)

        self.assertIsNone(page.get_next())
        self.assertEqual(fetch.calls, [])

    def test_failed_fetch_returns_none(self):
        fetch = PagedFetch({**three_pages(), 2: CanvasApiError("boom", status_code=500)})
        page = PaginatedResponse(fetch.pages[1], fetch)

        with self.assertLogs("canvaslms.pagination._paginated_response", level="WARNING"):
            self.assertIsNone(page.get_next())

    def test_iter_pages(self):
        fetch = PagedFetch(three_pages())
        page = PaginatedResponse(fetch.pages[1], fetch)

        self.assertEqual([p.get_current_page() for p in page.iter_pages()], [1, 2, 3])


class TestPaginatedResponseAggregation(unittest.TestCase):
    """Tests for fetch_all_pages() and collect_pages()."""

    def test_fetch_all_pages_returns_items_in_order(self):
        fetch = PagedFetch(three_pages())
        page = PaginatedResponse(fetch.pages[1], fetch)

        items = page.fetch_all_pages()

        self.assertEqual(items, [{"id": i} for i in range(1, 7)])
        self.assertEqual(len(fetch.calls), 2)

    def test_single_page(self):
        fetch = PagedFetch({})
        page = PaginatedResponse(page_response([{"id": 1}, {"id": 2}]), fetch)

        self.assertEqual(page.fetch_all_pages(), [{"id": 1}, {"id": 2}])
        self.assertEqual(fetch.calls, [])

    def test_collect_pages_complete(self):
        fetch = PagedFetch(three_pages())

        collection = PaginatedResponse(fetch.pages[1], fetch).collect_pages()

        self.assertEqual(collection, PageCollection([{"id": i} for i in range(1, 7)], 3, complete=True))
        self.assertFalse(collection.truncated)

    def test_collect_pages_reports_truncation(self):
        error = requests.ConnectionError("reset")
        fetch = PagedFetch({**three_pages(), 3: error})

        with self.assertLogs("canvaslms.pagination._paginated_response", level="WARNING"):
            collection = PaginatedResponse(fetch.pages[1], fetch).collect_pages()

        self.assertFalse(collection.complete)
        self.assertTrue(collection.truncated)
        self.assertIs(collection.error, error)
        self.assertEqual(collection.pages_fetched, 2)
        self.assertEqual(collection.data, [{"id": i} for i in range(1, 5)])

    def test_fetch_all_pages_returns_partial_results(self):
        fetch = PagedFetch({**three_pages(), 2: requests.Timeout("slow")})

        with self.assertLogs("canvaslms.pagination._paginated_response", level="WARNING") as captured:
            items = PaginatedResponse(fetch.pages[1], fetch).fetch_all_pages()

        self.assertEqual(items, [{"id": 1}, {"id": 2}])
        self.assertTrue(any("partial results" in m for m in captured.output))


class TestPaginationResult(unittest.TestCase):
    """Tests for the PaginationResult value object."""

    def test_snapshot_from_paginated_response(self):
        page = PaginatedResponse(three_pages()[2], Mock())

        result = page.to_pagination_result()

        self.assertEqual(result.data, ({"id": 3}, {"id": 4}))
        self.assertEqual(result.current_page, 2)
        self.assertEqual(result.total_pages, 3)
        self.assertEqual(result.per_page, 2)
        self.assertEqual(result.get_summary(), "Page 2 of 3 (2 items)")

    def test_snapshot_with_given_data(self):
        page = PaginatedResponse(three_pages()[1], Mock())

        result = page.to_pagination_result(["a", "b", "c"])

        self.assertEqual(result.data, ("a", "b", "c"))
        self.assertEqual(result.count(), 3)

    def test_from_link_header(self):
        result = PaginationResult.from_link_header([1, 2], link_header(current=3, next=4, last=4))

        self.assertEqual(result.current_page, 3)
        self.assertEqual(result.total_pages, 4)
        self.assertTrue(result.has_more())
        self.assertFalse(result.is_last_page())
        self.assertFalse(result.is_first_page())

    def test_unknown_total(self):
        result = PaginationResult(data=[1], links={"next": f"{COURSES}?page=2"})

        self.assertIsNone(result.total_pages)
        self.assertFalse(result.is_last_page())
        self.assertEqual(result.get_summary(), "Page 1 (1 items)")

    def test_is_immutable(self):
        links = {"next": f"{COURSES}?page=2"}
        items = [1, 2]
        result = PaginationResult(data=items, links=links)

        links["last"] = "mutated"
        items.append(3)

        self.assertNotIn("last", result.links)
        self.assertEqual(result.data, (1, 2))
        with self.assertRaises(TypeError):
            result.links["last"] = "x"  # type: ignore[index]
        with self.assertRaises(FrozenInstanceError):
            result.current_page = 2  # type: ignore[misc]

    def test_empty(self):
        result = PaginationResult()

        self.assertTrue(result.is_empty())
        self.assertTrue(result.is_first_page())
        self.assertTrue(result.is_last_page())
        self.assertEqual(result.get_navigation_urls(), {})

    def test_to_dict(self):
        result = PaginationResult.from_link_header([1], link_header(current=1, next=2, last=2))

        self.assertEqual(
            result.to_dict(),
            {
                "data": [1],
                "pagination": {
                    "current_page": 1,
                    "total_pages": 2,
                    "per_page": 2,
                    "has_next": True,
                    "has_prev": False,
                    "links": {
                        "current": f"{COURSES}?page=1&per_page=2",
                        "next": f"{COURSES}?page=2&per_page=2",
                        "last": f"{COURSES}?page=2&per_page=2",
                    },
                },
            },
        )
        self.assertEqual(list(result.get_navigation_urls()), ["current", "next", "last"])
