"""Tests for the transport boundary."""

from dataclasses import FrozenInstanceError
from unittest.mock import patch

import pytest

from canvaslms._transport import HttpRequest, HttpTransport, RequestsTransport
from support import make_response

URL = "https://school.instructure.com/api/v1/courses"


class TestHttpRequest:
    """Tests for the HttpRequest value object."""

    def test_host(self):
        assert HttpRequest("GET", URL).host == "school.instructure.com"

    def test_header_lookup_is_case_insensitive(self):
        request = HttpRequest("GET", URL, headers={"Authorization": "Bearer a"})

        assert request.header("authorization") == "Bearer a"
        assert request.header("X-Missing") is None

    def test_with_header_returns_copy(self):
        request = HttpRequest("GET", URL, headers={"authorization": "Bearer a", "Accept": "application/json"})

        updated = request.with_header("Authorization", "Bearer b")

        assert updated.headers == {"Accept": "application/json", "Authorization": "Bearer b"}
        assert request.header("Authorization") == "Bearer a"

    def test_is_frozen(self):
        with pytest.raises(FrozenInstanceError):
            HttpRequest("GET", URL).url = "https://elsewhere"  # type: ignore[misc]

    def test_option(self):
        request = HttpRequest("GET", URL, options={"rate_limit_bucket": "uploads"})

        assert request.option("rate_limit_bucket") == "uploads"
        assert request.option("missing", 5) == 5

    @pytest.mark.parametrize(
        "kwargs, expected",
        [
            ({"json": {"a": 1}}, '{"a": 1}'),
            ({"data": {"a": "1", "b": "2"}}, "a=1&b=2"),
            ({"data": [("include[]", "x"), ("include[]", "y")]}, "include%5B%5D=x&include%5B%5D=y"),
            ({"data": b"raw bytes"}, "raw bytes"),
            ({"data": "raw text"}, "raw text"),
            ({}, None),
        ],
    )
    def test_body_text(self, kwargs, expected):
        assert HttpRequest("POST", URL, **kwargs).body_text() == expected


class TestRequestsTransport:
    """Tests for RequestsTransport."""

    def test_transport_is_abstract(self):
        with pytest.raises(TypeError):
            HttpTransport()  # type: ignore[abstract]

    @patch("canvaslms._transport.requests.request")
    def test_uses_module_level_request_without_session(self, mock_request):
        mock_request.return_value = make_response(200)
        transport = RequestsTransport(timeout=12)

        response = transport.send(HttpRequest("GET", URL, headers={"Accept": "application/json"}, timeout=3))

        assert response.status_code == 200
        _, kwargs = mock_request.call_args
        assert kwargs["timeout"] == 3
        assert kwargs["headers"] == {"Accept": "application/json"}

    def test_invalid_timeout(self):
        with pytest.raises(AssertionError):
            RequestsTransport(timeout=0)
