"""
Top-level test configuration for scmkit.

Provider APIs are faked with httpx.MockTransport. A FakeProvider holds a
routing table of canned responses and records every request it receives, so
tests can assert both results and the exact calls issued.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
import structlog

# Ensure test-friendly defaults
os.environ.setdefault("SCMKIT_JSON_LOGS", "false")
os.environ.setdefault("SCMKIT_LOG_LEVEL", "DEBUG")


@dataclass
class Route:
    method: str
    path: str
    status: int = 200
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None

    def matches(self, request: httpx.Request) -> bool:
        if request.method != self.method or raw_path(request) != self.path:
            return False
        return all(request.url.params.get(k) == v for k, v in self.params.items())

    def respond(self) -> httpx.Response:
        if self.content is not None:
            return httpx.Response(self.status, content=self.content, headers=self.headers)
        if self.body is None:
            return httpx.Response(self.status, headers=self.headers)
        return httpx.Response(self.status, json=self.body, headers=self.headers)


def raw_path(request: httpx.Request) -> str:
    """Request path as sent on the wire, percent-encoding intact."""
    return request.url.raw_path.decode().split("?", 1)[0]


class FakeProvider:
    """Routing table of canned provider responses.

    Routes with query parameter constraints win over routes without; an
    unmatched request gets a 404 so a missing route fails loudly.
    """

    def __init__(self) -> None:
        self.routes: list[Route] = []
        self.calls: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        status: int = 200,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> None:
        self.routes.append(
            Route(
                method=method,
                path=path,
                status=status,
                body=body,
                headers=headers or {},
                params=params or {},
                content=content,
            )
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        for route in sorted(self.routes, key=lambda r: -len(r.params)):
            if route.matches(request):
                return route.respond()
        return httpx.Response(404, json={"message": f"no route for {raw_path(request)}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.calls if r.method == method and raw_path(r) == path]

    def count(self, method: str, path: str) -> int:
        return len(self.requests(method, path))

    def last(self, method: str, path: str) -> httpx.Request:
        matching = self.requests(method, path)
        assert matching, f"no {method} {path} was issued"
        return matching[-1]

    def sent_json(self, method: str, path: str) -> Any:
        """Decoded JSON body of the last matching request."""
        return json.loads(self.last(method, path).content)


@pytest.fixture
def fake() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging() so each test starts from library defaults."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
