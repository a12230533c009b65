"""Shared fixtures for gateway tests."""

from typing import Any, Callable, Union

import httpx
import pytest

Route = Union[tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class FakeBackend:
    """
    Routes requests to canned responses and records what was sent.

    A route is either (status_code, json_body) or a callable taking the
    request and returning a response (or raising an httpx error).
    """

    def __init__(self, routes: dict[tuple[str, str], Route]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        status_code, body = route
        return httpx.Response(status_code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def fake_backend() -> Callable[..., FakeBackend]:
    """Factory for FakeBackend instances."""
    return FakeBackend
