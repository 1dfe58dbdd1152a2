"""Tests for the Plex client and paging helpers (core/plex_api.py)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from core.exceptions import DataError, TransportError
from core.plex_api import (
    ItemPage,
    MediaItem,
    PageCursor,
    PlexManager,
    fetch_all,
    iter_pages,
    next_page,
)


# ============================================================================
# Helpers
# ============================================================================

class ListingFetcher:
    """Page fetcher over a fixed list; optionally lies about the total."""

    def __init__(self, count, reported_total=None, short_pages=None):
        self.items = [MediaItem(title=f"Item {i}", item_id=str(i), thumb=f"/t/{i}") for i in range(count)]
        self.reported_total = reported_total
        self.short_pages = short_pages
        self.calls = []

    def __call__(self, key, offset, page_size):
        self.calls.append((key, offset, page_size))
        size = min(page_size, self.short_pages) if self.short_pages else page_size
        chunk = self.items[offset:offset + size]
        total = self.reported_total if self.reported_total is not None else len(self.items)
        return ItemPage(items=chunk, total_count=total, fetched=len(chunk))


def _response(status=200, payload=None, content=b""):
    response = MagicMock()
    response.status_code = status
    response.content = content
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def _manager(session):
    return PlexManager("http://plex.local:32400/", "token-123", connect_timeout=5,
                       request_timeout=30, session=session)


# ============================================================================
# TestPagination
# ============================================================================

class TestPagination:
    """Paging stops on a short page, an empty page or the reported total."""

    def test_stops_at_total(self):
        fetcher = ListingFetcher(50)
        items = fetch_all(fetcher, "1", 25)
        assert len(items) == 50
        assert [offset for _, offset, _ in fetcher.calls] == [0, 25]

    def test_stops_on_short_page(self):
        fetcher = ListingFetcher(30)
        pages = list(iter_pages(fetcher, "1", 25))
        assert [page.fetched for page, _ in pages] == [25, 5]
        assert pages[-1][1].exhausted

    def test_empty_page_terminates_even_if_total_claims_more(self):
        fetcher = ListingFetcher(0, reported_total=100)
        pages = list(iter_pages(fetcher, "1", 25))
        assert len(pages) == 1
        assert pages[0][1].exhausted

    def test_short_page_terminates_even_if_total_claims_more(self):
        fetcher = ListingFetcher(40, reported_total=100, short_pages=10)
        assert len(fetch_all(fetcher, "1", 25)) == 10
        assert len(fetcher.calls) == 1

    def test_resume_from_cursor(self):
        fetcher = ListingFetcher(60)
        page, cursor = next_page(fetcher, "1", 25)
        assert cursor == PageCursor(offset=25, exhausted=False)

        resumed = PageCursor.from_dict(cursor.to_dict())
        rest = [page for page, _ in iter_pages(fetcher, "1", 25, cursor=resumed)]
        assert [p.fetched for p in rest] == [25, 10]
        assert [offset for _, offset, _ in fetcher.calls] == [0, 25, 50]

    def test_exhausted_cursor_fetches_nothing(self):
        fetcher = ListingFetcher(10)
        page, cursor = next_page(fetcher, "1", 25, PageCursor(offset=10, exhausted=True))
        assert page.items == []
        assert fetcher.calls == []

    def test_offset_advances_by_fetched_entries_not_kept_items(self):
        def fetch(key, offset, page_size):
            # Half of each page has no artwork and is dropped
            return ItemPage(items=[], total_count=50, fetched=min(page_size, 50 - offset))
        pages = list(iter_pages(fetch, "1", 25))
        assert [cursor.offset for _, cursor in pages] == [25, 50]


# ============================================================================
# TestPlexManagerRequests
# ============================================================================

class TestPlexManagerRequests:

    def test_list_items_sends_paging_headers(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"MediaContainer": {
            "totalSize": 3,
            "Metadata": [
                {"ratingKey": 11, "title": "Alien", "thumb": "/library/metadata/11/thumb/1", "year": 1979},
                {"ratingKey": 12, "title": "No Art"},
            ],
        }})
        page = _manager(session).list_items("4", 25, 10)

        url = session.get.call_args[0][0]
        headers = session.get.call_args[1]["headers"]
        assert url == "http://plex.local:32400/library/sections/4/all"
        assert headers["X-Plex-Token"] == "token-123"
        assert headers["X-Plex-Container-Start"] == "25"
        assert headers["X-Plex-Container-Size"] == "10"
        assert headers["Accept"] == "application/json"
        assert session.get.call_args[1]["timeout"] == (5, 30)

        assert page.total_count == 3
        assert page.fetched == 2
        assert page.items == [MediaItem(title="Alien", item_id="11",
                                        thumb="/library/metadata/11/thumb/1", year=1979)]

    def test_list_collections_path(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"MediaContainer": {"size": 0}})
        page = _manager(session).list_collections("4", 0, 25)
        assert session.get.call_args[0][0].endswith("/library/sections/4/collections")
        assert page.fetched == 0

    def test_list_children_titles_and_skips_unindexed(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"MediaContainer": {"totalSize": 2, "Metadata": [
            {"ratingKey": 1, "title": "All episodes", "thumb": "/t/1", "parentTitle": "Lost"},
            {"ratingKey": 2, "title": "Season 1", "thumb": "/t/2", "parentTitle": "Lost", "index": 1},
        ]}})
        page = _manager(session).list_children("100", 0, 25)
        assert session.get.call_args[0][0].endswith("/library/metadata/100/children")
        assert [item.title for item in page.items] == ["Lost - Season 1"]

    def test_non_2xx_is_transport_error(self):
        session = MagicMock()
        session.get.return_value = _response(status=401)
        with pytest.raises(TransportError, match="401"):
            _manager(session).list_items("4", 0, 25)

    def test_network_failure_is_transport_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError):
            _manager(session).list_items("4", 0, 25)

    def test_missing_media_container_is_data_error(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"errors": []})
        with pytest.raises(DataError):
            _manager(session).list_items("4", 0, 25)

    def test_invalid_json_is_data_error(self):
        session = MagicMock()
        session.get.return_value = _response(payload=ValueError("no json"))
        with pytest.raises(DataError):
            _manager(session).list_items("4", 0, 25)

    def test_fetch_image_bytes(self):
        session = MagicMock()
        session.get.return_value = _response(content=b"\xff\xd8jpeg")
        assert _manager(session).fetch_image_bytes("/library/metadata/1/thumb") == b"\xff\xd8jpeg"

    def test_empty_image_is_transport_error(self):
        session = MagicMock()
        session.get.return_value = _response(content=b"")
        with pytest.raises(TransportError):
            _manager(session).fetch_image_bytes("/library/metadata/1/thumb")


# ============================================================================
# TestPlexManagerLibraries
# ============================================================================

class TestPlexManagerLibraries:

    def _section(self, key, title, section_type):
        section = MagicMock()
        section.key = key
        section.title = title
        section.type = section_type
        return section

    def test_lists_movie_and_show_libraries(self):
        manager = _manager(MagicMock())
        manager.plex = MagicMock()
        manager.plex.library.sections.return_value = [
            self._section(1, "Movies", "movie"),
            self._section(2, "Music", "artist"),
            self._section(3, "TV", "show"),
            self._section(4, "Kids Movies", "movie"),
        ]
        libraries = manager.list_libraries(excluded=["kids movies"])
        assert [(lib.id, lib.title, lib.type) for lib in libraries] == [
            ("1", "Movies", "movie"), ("3", "TV", "show")]

    def test_connect_failure_is_transport_error(self):
        with patch("core.plex_api.PlexServer", side_effect=Exception("(401) unauthorized")):
            with pytest.raises(TransportError):
                _manager(MagicMock()).connect()

    def test_connect_uses_session_and_timeout(self):
        session = MagicMock()
        with patch("core.plex_api.PlexServer") as server:
            _manager(session).connect()
        server.assert_called_once_with("http://plex.local:32400", "token-123",
                                       session=session, timeout=5)
