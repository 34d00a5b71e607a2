"""Tests for error classification and the shared HTTP transport."""

from __future__ import annotations

import httpx
import pytest

from scmkit.config import ClientConfig, DriverKind
from scmkit.errors import (
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ScmError,
    TransportError,
    ValidationFailedError,
    classify,
)
from scmkit.transport import Transport, default_error_message, parse_rate

GITHUB = ClientConfig(driver=DriverKind.GITHUB, token="ghp_test")


class TestClassify:
    @pytest.mark.parametrize(
        ("status", "headers", "expected"),
        [
            (404, {}, NotFoundError),
            (401, {}, PermissionDeniedError),
            (403, {}, PermissionDeniedError),
            (403, {"x-ratelimit-remaining": "0"}, RateLimitedError),
            (403, {"x-ratelimit-remaining": "12"}, PermissionDeniedError),
            (429, {}, RateLimitedError),
            (400, {}, ValidationFailedError),
            (409, {}, ValidationFailedError),
            (422, {}, ValidationFailedError),
            (500, {}, TransportError),
            (502, {}, TransportError),
        ],
    )
    def test_status_mapping(self, status: int, headers: dict, expected: type) -> None:
        exc = classify(status, headers)
        assert type(exc) is expected
        assert exc.status == status

    def test_message_kept(self) -> None:
        assert classify(404, {}, "Project dev does not exist.").message == (
            "Project dev does not exist."
        )

    def test_default_messages(self) -> None:
        assert classify(404, {}).message == "resource not found"
        assert classify(503, {}).message == "unexpected status 503"

    def test_all_errors_are_scm_errors(self) -> None:
        for status in (400, 401, 404, 429, 500):
            assert isinstance(classify(status, {}), ScmError)


class TestHelpers:
    def test_default_error_message(self) -> None:
        assert default_error_message({"message": "Not Found"}) == "Not Found"
        assert default_error_message({"error": "invalid_token"}) == "invalid_token"
        assert default_error_message({"message": ["name is taken"]}) == "['name is taken']"
        assert default_error_message("oops") == ""

    def test_parse_rate_github(self) -> None:
        rate = parse_rate(
            {"x-ratelimit-limit": "5000", "x-ratelimit-remaining": "4999", "x-ratelimit-reset": "1"}
        )
        assert (rate.limit, rate.remaining, rate.reset) == (5000, 4999, 1)

    def test_parse_rate_gitlab(self) -> None:
        rate = parse_rate({"ratelimit-limit": "600", "ratelimit-remaining": "599"})
        assert (rate.limit, rate.remaining) == (600, 599)

    def test_parse_rate_garbage(self) -> None:
        assert parse_rate({"x-ratelimit-limit": "lots"}).limit == 0


class TestTransport:
    async def test_bearer_token_and_json(self, fake) -> None:
        fake.add("GET", "/user", {"login": "octocat"}, headers={"X-RateLimit-Limit": "60"})
        client = Transport(GITHUB, transport=fake.transport)

        body, res = await client.request("GET", "/user")

        assert body == {"login": "octocat"}
        assert res.status == 200
        assert res.rate.limit == 60
        request = fake.last("GET", "/user")
        assert request.headers["Authorization"] == "Bearer ghp_test"
        assert request.headers["User-Agent"] == "scmkit"

    async def test_custom_token_header(self, fake) -> None:
        fake.add("GET", "/api/v4/user", {})
        config = ClientConfig(driver=DriverKind.GITLAB, token="glpat-x")
        client = Transport(config, transport=fake.transport, token_header="PRIVATE-TOKEN")

        await client.request("GET", "api/v4/user")

        request = fake.last("GET", "/api/v4/user")
        assert request.headers["PRIVATE-TOKEN"] == "glpat-x"
        assert "Authorization" not in request.headers

    async def test_basic_auth(self, fake) -> None:
        fake.add("GET", "/rest/api/1.0/repos", {"values": []})
        config = ClientConfig(
            driver=DriverKind.STASH,
            server_url="https://stash.example.com/",
            username="jcitizen",
            password="secret",
        )
        client = Transport(config, transport=fake.transport)

        await client.request("GET", "rest/api/1.0/repos")

        auth = fake.last("GET", "/rest/api/1.0/repos").headers["Authorization"]
        assert auth.startswith("Basic ")

    async def test_none_params_dropped(self, fake) -> None:
        fake.add("GET", "/search", [])
        client = Transport(GITHUB, transport=fake.transport)

        await client.request("GET", "search", params={"q": "x", "path": None})

        assert dict(fake.last("GET", "/search").url.params) == {"q": "x"}

    async def test_error_classified_with_message(self, fake) -> None:
        fake.add("GET", "/repos/o/r", {"message": "Not Found"}, status=404)
        client = Transport(GITHUB, transport=fake.transport)

        with pytest.raises(NotFoundError) as exc_info:
            await client.request("GET", "repos/o/r")
        assert exc_info.value.message == "Not Found"
        assert exc_info.value.status == 404

    async def test_custom_error_extractor(self, fake) -> None:
        fake.add("GET", "/x", {"errors": [{"message": "bad"}]}, status=400)
        client = Transport(
            GITHUB, transport=fake.transport, error_message=lambda b: b["errors"][0]["message"]
        )

        with pytest.raises(ValidationFailedError, match="bad"):
            await client.request("GET", "x")

    async def test_empty_and_raw_bodies(self, fake) -> None:
        fake.add("DELETE", "/thing", status=204)
        fake.add("GET", "/raw", content=b"\x00binary")
        client = Transport(GITHUB, transport=fake.transport)

        body, res = await client.request("DELETE", "thing")
        assert body is None
        assert res.status == 204

        body, _ = await client.request("GET", "raw", raw=True)
        assert body == b"\x00binary"

    async def test_invalid_json(self, fake) -> None:
        fake.add("GET", "/broken", content=b"<html>")
        client = Transport(GITHUB, transport=fake.transport)

        with pytest.raises(TransportError, match="invalid JSON"):
            await client.request("GET", "broken")

    async def test_network_failure_wrapped(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = Transport(GITHUB, transport=httpx.MockTransport(refuse))

        with pytest.raises(TransportError, match="connection refused") as exc_info:
            await client.request("GET", "user")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_server_url_required_for_stash(self) -> None:
        with pytest.raises(ValueError, match="server_url"):
            Transport(ClientConfig(driver=DriverKind.STASH))
