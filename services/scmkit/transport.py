"""HTTP transport shared by all drivers.

Issues one authenticated request, decodes the body, and classifies every
failure into an ScmError. Each request opens its own httpx.AsyncClient, so a
Transport holds nothing but immutable configuration and can be shared by
concurrent callers.
"""

import dataclasses
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from scmkit.config import ClientConfig
from scmkit.errors import TransportError, classify
from scmkit.logging_config import get_logger
from scmkit.models import Page, Rate, Response

logger = get_logger(__name__)

# Pulls the provider's human-readable message out of a decoded error body
ErrorExtractor = Callable[[Any], str]


def default_error_message(body: Any) -> str:
    """GitHub/GitLab style: {"message": ...} or {"error": ...}."""
    if not isinstance(body, dict):
        return ""
    for key in ("message", "error_description", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict | list) and value:
            return str(value)
    return ""


def _int(headers: Mapping[str, str], *names: str) -> int:
    for name in names:
        value = headers.get(name)
        if value:
            try:
                return int(value)
            except ValueError:
                continue
    return 0


def parse_rate(headers: Mapping[str, str]) -> Rate:
    """Rate-limit counters (GitHub X-RateLimit-*, GitLab RateLimit-*)."""
    return Rate(
        limit=_int(headers, "x-ratelimit-limit", "ratelimit-limit"),
        remaining=_int(headers, "x-ratelimit-remaining", "ratelimit-remaining"),
        reset=_int(headers, "x-ratelimit-reset", "ratelimit-reset"),
    )


def with_page(res: Response, page: Page) -> Response:
    """Attach normalized pagination to response metadata."""
    return dataclasses.replace(res, page=page)


class Transport:
    """Authenticated request issuer for one provider endpoint."""

    def __init__(
        self,
        config: ClientConfig,
        error_message: ErrorExtractor = default_error_message,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token_header: str = "Authorization",
    ) -> None:
        self.config = config
        self._token_header = token_header
        self._base_url = config.base_url()
        self._error_message = error_message
        self._headers = {"User-Agent": config.user_agent, **(headers or {})}
        self._transport = transport

    def _auth_headers(self) -> dict[str, str]:
        if not self.config.token or self.config.username:
            return {}
        if self._token_header == "Authorization":
            return {"Authorization": f"Bearer {self.config.token}"}
        return {self._token_header: self.config.token}

    def _auth(self) -> httpx.BasicAuth | None:
        if self.config.username:
            return httpx.BasicAuth(
                self.config.username, self.config.password or self.config.token
            )
        return None

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
        raw: bool = False,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[Any, Response]:
        """Issue a request and return (body, response metadata).

        body is decoded JSON, raw bytes when raw=True, or None for empty
        responses. data/files send a multipart form instead of JSON.
        Non-2xx statuses raise the classified ScmError.
        """
        url = f"{self._base_url}/{path.lstrip('/')}"
        request_headers = {**self._headers, **self._auth_headers(), **(headers or {})}

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.config.timeout_seconds,
                auth=self._auth(),
            ) as client:
                resp = await client.request(
                    method,
                    url,
                    params={k: v for k, v in (params or {}).items() if v is not None},
                    json=json,
                    data=data,
                    files=files,
                    headers=request_headers,
                )
        except httpx.HTTPError as exc:
            logger.debug("Provider request failed", method=method, path=path, error=str(exc))
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        resp_headers = {k.lower(): v for k, v in resp.headers.items()}
        meta = Response(
            status=resp.status_code, headers=resp_headers, rate=parse_rate(resp_headers)
        )
        logger.debug("Provider request", method=method, path=path, status=resp.status_code)

        if not resp.is_success:
            raise classify(resp.status_code, resp_headers, self._extract_message(resp))

        if raw:
            return resp.content, meta
        if resp.status_code == 204 or not resp.content:
            return None, meta
        try:
            return resp.json(), meta
        except ValueError as exc:
            raise TransportError(f"invalid JSON response: {exc}", resp.status_code) from exc

    def _extract_message(self, resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return ""
        return self._error_message(body)
