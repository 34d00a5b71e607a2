"""Tests for the pagination normalizer."""

from __future__ import annotations

import pytest

from scmkit import pagination
from scmkit.models import ListOptions, Page

GITHUB_LINK = (
    '<https://api.github.com/user/repos?page=3&per_page=10>; rel="next", '
    '<https://api.github.com/user/repos?page=1&per_page=10>; rel="prev", '
    '<https://api.github.com/user/repos?page=1&per_page=10>; rel="first", '
    '<https://api.github.com/user/repos?page=9&per_page=10>; rel="last"'
)


class TestRequestParams:
    def test_list_params_defaults(self) -> None:
        assert pagination.list_params(ListOptions()) == {"page": 1}

    def test_list_params_with_size(self) -> None:
        params = pagination.list_params(ListOptions(page=2, size=30))
        assert params == {"page": 2, "per_page": 30}

    def test_list_params_custom_names(self) -> None:
        params = pagination.list_params(ListOptions(page=4, size=50), size_param="pagelen")
        assert params == {"page": 4, "pagelen": 50}

    def test_list_params_clamps_page(self) -> None:
        assert pagination.list_params(ListOptions(page=-3)) == {"page": 1}

    def test_offset_params_third_page(self) -> None:
        params = pagination.offset_params(ListOptions(page=3, size=25), default_size=25)
        assert params == {"start": 50, "limit": 25}

    def test_offset_params_first_page_default_size(self) -> None:
        assert pagination.offset_params(ListOptions(), default_size=25) == {}

    def test_offset_params_default_size_offset(self) -> None:
        params = pagination.offset_params(ListOptions(page=3), default_size=25)
        assert params == {"start": 50}


class TestParseLinkHeader:
    def test_parses_all_relations(self) -> None:
        links = pagination.parse_link_header(GITHUB_LINK)
        assert set(links) == {"next", "prev", "first", "last"}
        assert links["last"]["url"].endswith("page=9&per_page=10")

    def test_multiple_rels_share_a_url(self) -> None:
        links = pagination.parse_link_header('<https://h/x?page=1>; rel="prev first"')
        assert links["prev"]["url"] == links["first"]["url"] == "https://h/x?page=1"

    def test_empty_and_garbage(self) -> None:
        assert pagination.parse_link_header("") == {}
        assert pagination.parse_link_header("not a link header") == {}

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://h/x?page=7", 7),
            ("https://h/x?page=abc", 0),
            ("https://h/x?cursor=opaque", 0),
            ("https://h/x?page=-2", 0),
            ("", 0),
        ],
    )
    def test_page_number(self, url: str, expected: int) -> None:
        assert pagination.page_number(url) == expected


class TestFromCursor:
    def test_next_from_provider(self) -> None:
        page = pagination.from_cursor(
            ListOptions(page=2, size=10), 10, True, next_page=3, prev_page=1
        )
        assert page == Page(first=1, next=3, prev=1)

    def test_opaque_cursor_assumes_following_page(self) -> None:
        page = pagination.from_cursor(
            ListOptions(page=1), 10, True, next_url="https://h/x?cursor=abc"
        )
        assert page.next == 2
        assert page.next_url == "https://h/x?cursor=abc"

    def test_no_more(self) -> None:
        page = pagination.from_cursor(ListOptions(page=4), 3, False, prev_page=3)
        assert page == Page(first=1, prev=3)

    def test_empty_page_never_has_next(self) -> None:
        page = pagination.from_cursor(ListOptions(page=1), 0, True, next_page=2)
        assert page.next == 0


class TestFromLastPageFlag:
    def test_middle_page(self) -> None:
        page = pagination.from_last_page_flag(ListOptions(page=3, size=25), 25, False)
        assert page == Page(first=1, next=4, prev=2)

    def test_last_page(self) -> None:
        page = pagination.from_last_page_flag(ListOptions(page=2, size=25), 7, True)
        assert page == Page(first=1, prev=1)

    def test_missing_flag_degrades(self) -> None:
        assert pagination.from_last_page_flag(ListOptions(page=2), 25, None) == Page(first=1)
        assert pagination.from_last_page_flag(ListOptions(page=2), 25, "false") == Page(first=1)

    def test_empty_page(self) -> None:
        page = pagination.from_last_page_flag(ListOptions(page=1), 0, False)
        assert page.next == 0


class TestFromLinkHeader:
    def test_github_links(self) -> None:
        opts = ListOptions(page=2, size=10)
        page = pagination.from_link_header(opts, 10, {"link": GITHUB_LINK})
        assert page == Page(first=1, next=3, prev=1, last=9)

    def test_gitlab_headers_fill_gaps(self) -> None:
        headers = {"x-next-page": "3", "x-prev-page": "1", "x-total-pages": "5"}
        page = pagination.from_link_header(ListOptions(page=2, size=20), 20, headers)
        assert page == Page(first=1, next=3, prev=1, last=5)

    def test_gitlab_blank_headers(self) -> None:
        headers = {"x-next-page": "", "x-prev-page": "", "x-total-pages": ""}
        page = pagination.from_link_header(ListOptions(), 4, headers)
        assert page == Page(first=1)

    def test_empty_page_drops_next(self) -> None:
        page = pagination.from_link_header(ListOptions(page=2), 0, {"link": GITHUB_LINK})
        assert page.next == 0
        assert page.last == 9

    def test_no_signal(self) -> None:
        assert pagination.from_link_header(ListOptions(), 3, {}) == Page(first=1)


class TestFromOverflow:
    def test_full_page_with_overflow(self) -> None:
        page = pagination.from_overflow(ListOptions(page=1, size=2), 2, True)
        assert page == Page(first=1, next=2)

    def test_full_page_without_overflow(self) -> None:
        page = pagination.from_overflow(ListOptions(page=2, size=2), 2, False)
        assert page == Page(first=1, prev=1)

    def test_short_page_ignores_overflow(self) -> None:
        page = pagination.from_overflow(ListOptions(page=1, size=5), 2, True)
        assert page.next == 0

    def test_needs_overflow_probe(self) -> None:
        assert pagination.needs_overflow_probe(ListOptions(size=2), 2)
        assert not pagination.needs_overflow_probe(ListOptions(size=2), 1)
        assert not pagination.needs_overflow_probe(ListOptions(), 25)
