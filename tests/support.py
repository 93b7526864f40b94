"""Shared test doubles for the canvaslms test suite."""

import json
from typing import Any

import requests
from requests.structures import CaseInsensitiveDict

from canvaslms._config import CanvasConfig
from canvaslms._transport import HttpRequest, HttpTransport

BASE_URL = "https://school.instructure.com"


def make_response(
    status_code: int = 200,
    json_data: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
    url: str = f"{BASE_URL}/api/v1/courses",
) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    if json_data is not None:
        response._content = json.dumps(json_data).encode("utf-8")
    elif text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = b""
    response.headers = CaseInsensitiveDict(headers or {})
    response.encoding = "utf-8"
    response.url = url
    return response


class StubTransport(HttpTransport):
    """
    Transport replaying scripted outcomes in order.

    Each outcome is a response (returned) or an exception (raised). The last
    outcome is repeated once the script runs out.
    """

    def __init__(self, *outcomes: requests.Response | Exception):
        assert outcomes, "At least one outcome is required."
        self.outcomes = list(outcomes)
        self.requests: list[HttpRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def send(self, request: HttpRequest) -> requests.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(**sections: dict[str, Any]) -> CanvasConfig:
    """Build a config from defaults (no env vars) plus section overrides."""
    sections["api"] = {"base_url": BASE_URL, **sections.get("api", {})}
    sections["auth"] = {"api_key": "1~test-key", **sections.get("auth", {})}
    return CanvasConfig().with_section_overrides(**sections)
