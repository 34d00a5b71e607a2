"""
Pagination normalizer.

Providers page their list endpoints in one of four ways:

  - cursor: the body says whether a next page exists (Bitbucket Cloud "next")
  - last-page flag: offset/limit with an "isLastPage" boolean (Bitbucket Server)
  - link relations: RFC 5988 Link header (GitHub, GitLab)
  - overflow: a bare list; "more" is inferred when the page came back full and
    a one-item probe of the following offset is non-empty

Each from_* function turns one of these signals into a canonical Page. None of
them raise: malformed signals degrade to Page(first=1), and an empty page
never reports a next page.
"""

from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs, urlparse

from scmkit.models import ListOptions, Page


# --- Request parameters ---


def list_params(
    opts: ListOptions, page_param: str = "page", size_param: str = "per_page"
) -> dict[str, int]:
    """Query parameters for page-number providers."""
    params = {page_param: opts.current}
    if opts.size > 0:
        params[size_param] = opts.size
    return params


def offset_params(opts: ListOptions, default_size: int) -> dict[str, int]:
    """start/limit query parameters for offset providers.

    The offset of page N is computed with the provider default size when the
    caller did not choose one, since the limit itself is then not sent.
    """
    size = opts.size if opts.size > 0 else default_size
    params: dict[str, int] = {}
    if opts.current > 1:
        params["start"] = (opts.current - 1) * size
    if opts.size > 0:
        params["limit"] = opts.size
    return params


# --- Signal parsers ---


def parse_link_header(link_header: str) -> dict[str, dict[str, str]]:
    """Parse RFC 5988 Link header into dict keyed by rel.

    Example:
        >>> parse_link_header('<https://host/x?page=2>; rel="next"')
        {'next': {'url': 'https://host/x?page=2', 'rel': 'next'}}
    """
    result: dict[str, dict[str, str]] = {}
    if not link_header:
        return result
    for part in link_header.split(","):
        parts = [p.strip() for p in part.strip().split(";")]
        if not parts or not parts[0].startswith("<"):
            continue
        url = parts[0].strip("<>")
        attrs: dict[str, str] = {"url": url}
        for attr in parts[1:]:
            if "=" in attr:
                k, v = attr.split("=", 1)
                attrs[k.strip()] = v.strip().strip('"')
        # rel may hold several space-separated relation types
        for rel in attrs.get("rel", "").split():
            result[rel] = attrs
    return result


def page_number(url: str, param: str = "page") -> int:
    """Extract a numeric page parameter from a URL; 0 if absent or opaque."""
    if not url:
        return 0
    values = parse_qs(urlparse(url).query).get(param)
    if not values:
        return 0
    try:
        number = int(values[0])
    except ValueError:
        return 0
    return number if number > 0 else 0


def _header_int(headers: Mapping[str, str], name: str) -> int:
    try:
        value = int(headers.get(name, "") or 0)
    except ValueError:
        return 0
    return value if value > 0 else 0


# --- Normalizers ---


def from_cursor(
    opts: ListOptions,
    item_count: int,
    has_more: bool,
    next_page: int = 0,
    prev_page: int = 0,
    next_url: str = "",
) -> Page:
    """Cursor style: the provider says whether more results exist.

    next_page is the provider-supplied number; when the cursor is opaque it is
    0 and the following page number is assumed, with next_url kept for callers
    that need the raw cursor.
    """
    current = opts.current
    prev = prev_page if 0 < prev_page < current else 0
    if item_count == 0 or not has_more:
        return Page(first=1, prev=prev)
    nxt = next_page if next_page > current else current + 1
    return Page(first=1, next=nxt, prev=prev, next_url=next_url)


def from_last_page_flag(opts: ListOptions, item_count: int, is_last_page: Any) -> Page:
    """Offset/limit style with an is-last-page boolean. Last stays unknown."""
    current = opts.current
    prev = current - 1 if current > 1 else 0
    if not isinstance(is_last_page, bool):
        return Page(first=1)
    if item_count == 0 or is_last_page:
        return Page(first=1, prev=prev)
    return Page(first=1, next=current + 1, prev=prev)


def from_link_header(
    opts: ListOptions, item_count: int, headers: Mapping[str, str], param: str = "page"
) -> Page:
    """Header-relation style; unknown relations are ignored.

    GitLab's X-Next-Page/X-Prev-Page/X-Total-Pages headers fill whatever the
    Link header leaves out (GitLab drops Link on very large collections).
    """
    links = parse_link_header(headers.get("link", ""))
    first = page_number(links.get("first", {}).get("url", ""), param) or 1
    nxt = page_number(links.get("next", {}).get("url", ""), param)
    prev = page_number(links.get("prev", {}).get("url", ""), param)
    last = page_number(links.get("last", {}).get("url", ""), param)

    nxt = nxt or _header_int(headers, "x-next-page")
    prev = prev or _header_int(headers, "x-prev-page")
    last = last or _header_int(headers, "x-total-pages")

    if item_count == 0:
        nxt = 0
    if nxt and nxt < first:
        nxt = 0
    if last and last < first:
        last = 0
    return Page(first=first, next=nxt, prev=prev, last=last)


def from_overflow(opts: ListOptions, item_count: int, has_overflow: bool) -> Page:
    """Count-vs-size style.

    has_overflow is the result of the follow-up probe the driver issued after
    a full page (see needs_overflow_probe).
    """
    current = opts.current
    prev = current - 1 if current > 1 else 0
    if item_count == 0 or not needs_overflow_probe(opts, item_count) or not has_overflow:
        return Page(first=1, prev=prev)
    return Page(first=1, next=current + 1, prev=prev)


def needs_overflow_probe(opts: ListOptions, item_count: int) -> bool:
    """A follow-up probe is only worth issuing when the page came back full."""
    return opts.size > 0 and item_count >= opts.size
