"""
Plex API integration for PosterVault.
Handles the server connection, library listing, paged item requests and
artwork downloads.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Any

import requests
from plexapi.server import PlexServer

from core.exceptions import DataError, TransportError

# Library section types PosterVault imports from
SUPPORTED_LIBRARY_TYPES = ("movie", "show")


@dataclass
class Library:
    """A library section on the server."""
    id: str
    title: str
    type: str


@dataclass
class MediaItem:
    """One item with artwork: a movie, show, season or collection."""
    title: str
    item_id: str
    thumb: str
    year: Optional[int] = None
    added_at: Optional[int] = None


@dataclass
class ItemPage:
    """One page of items.

    Attributes:
        items: Items that carry artwork.
        total_count: Total reported by the server for the whole listing.
        fetched: Entries the server returned on this page, before items
            without artwork were dropped. Paging decisions use this count.
    """
    items: List[MediaItem] = field(default_factory=list)
    total_count: int = 0
    fetched: int = 0


@dataclass
class PageCursor:
    """Position in a paged listing, persisted by the caller between calls."""
    offset: int = 0
    exhausted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"offset": self.offset, "exhausted": self.exhausted}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageCursor":
        return cls(offset=int(data.get("offset", 0)), exhausted=bool(data.get("exhausted", False)))


# fetch(key, offset, page_size) -> ItemPage
PageFetcher = Callable[[str, int, int], ItemPage]


def next_page(fetch: PageFetcher, key: str, page_size: int,
              cursor: Optional[PageCursor] = None) -> Tuple[ItemPage, PageCursor]:
    """Fetch the page at the cursor and return it with the advanced cursor.

    The listing is exhausted when a page is empty, comes back shorter than
    requested, or the reported total has been reached.
    """
    cursor = cursor or PageCursor()
    if cursor.exhausted:
        return ItemPage(), cursor

    page = fetch(key, cursor.offset, page_size)
    offset = cursor.offset + page.fetched
    exhausted = (
        page.fetched == 0
        or page.fetched < page_size
        or offset >= page.total_count
    )
    return page, PageCursor(offset=offset, exhausted=exhausted)


def iter_pages(fetch: PageFetcher, key: str, page_size: int,
               cursor: Optional[PageCursor] = None,
               delay: float = 0) -> Iterator[Tuple[ItemPage, PageCursor]]:
    """Yield (page, cursor_after_page) until the listing is exhausted.

    Resume an interrupted listing by passing the last cursor seen.
    """
    cursor = cursor or PageCursor()
    first = True
    while not cursor.exhausted:
        if delay and not first:
            time.sleep(delay)
        first = False
        page, cursor = next_page(fetch, key, page_size, cursor)
        yield page, cursor


def fetch_all(fetch: PageFetcher, key: str, page_size: int, delay: float = 0) -> List[MediaItem]:
    """Drain a paged listing into one list."""
    items: List[MediaItem] = []
    for page, _ in iter_pages(fetch, key, page_size, delay=delay):
        items.extend(page.items)
    return items


def _log_api_error(context: str, error: Exception) -> None:
    """Log API errors with specific detection for common HTTP status codes."""
    error_str = str(error)

    if "401" in error_str or "Unauthorized" in error_str:
        logging.error(f"[PLEX API] Authentication failed ({context}): {error}")
        logging.error(f"[PLEX API] Your Plex token is invalid or has been revoked.")
    elif "429" in error_str or "Too Many Requests" in error_str:
        logging.warning(f"[PLEX API] Rate limited by Plex ({context}): {error}")
        logging.warning(f"[PLEX API] Consider increasing batch_delay")
    elif "403" in error_str or "Forbidden" in error_str:
        logging.error(f"[PLEX API] Access forbidden ({context}): {error}")
    elif "404" in error_str or "Not Found" in error_str:
        logging.warning(f"[PLEX API] Resource not found ({context}): {error}")
    elif "500" in error_str or "502" in error_str or "503" in error_str:
        logging.error(f"[PLEX API] Plex server error ({context}): {error}")
    else:
        logging.error(f"[PLEX API] Error ({context}): {error}")


class PlexManager:
    """Manages Plex server connections and requests."""

    def __init__(self, plex_url: str, plex_token: str, connect_timeout: int = 10,
                 request_timeout: int = 60, session: Optional[requests.Session] = None):
        self.plex_url = plex_url.rstrip('/')
        self.plex_token = plex_token
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.plex: Optional[PlexServer] = None

    def connect(self) -> None:
        """Connect to the Plex server.

        Raises:
            TransportError: If the server cannot be reached or rejects the token.
        """
        logging.debug(f"Connecting to Plex server: {self.plex_url}")

        try:
            self.plex = PlexServer(self.plex_url, self.plex_token,
                                   session=self.session, timeout=self.connect_timeout)
            logging.debug(f"Plex server version: {self.plex.version}")
        except Exception as e:
            _log_api_error("connect to Plex server", e)
            raise TransportError(f"Error connecting to the Plex server: {e}")

    def list_libraries(self, excluded: Iterable[str] = ()) -> List[Library]:
        """List movie and show libraries, minus any excluded by title."""
        if self.plex is None:
            self.connect()

        excluded = {title.strip().lower() for title in excluded}
        try:
            sections = self.plex.library.sections()
        except Exception as e:
            _log_api_error("list libraries", e)
            raise TransportError(f"Error listing libraries: {e}")

        libraries = []
        for section in sections:
            if section.type not in SUPPORTED_LIBRARY_TYPES:
                continue
            if section.title.strip().lower() in excluded:
                logging.debug(f"[PLEX API] Skipping excluded library: {section.title}")
                continue
            libraries.append(Library(id=str(section.key), title=section.title, type=section.type))

        logging.debug(f"[PLEX API] Found {len(libraries)} libraries")
        return libraries

    def _headers(self, offset: Optional[int] = None, page_size: Optional[int] = None) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Plex-Token": self.plex_token,
        }
        if offset is not None:
            headers["X-Plex-Container-Start"] = str(offset)
        if page_size is not None:
            headers["X-Plex-Container-Size"] = str(page_size)
        return headers

    def _get(self, path: str, headers: Dict[str, str]) -> requests.Response:
        url = f"{self.plex_url}{path}"
        try:
            response = self.session.get(url, headers=headers,
                                        timeout=(self.connect_timeout, self.request_timeout))
        except requests.RequestException as e:
            _log_api_error(f"GET {path}", e)
            raise TransportError(f"Request to {path} failed: {e}")
        if not 200 <= response.status_code < 300:
            error = TransportError(f"Request to {path} returned HTTP {response.status_code}")
            _log_api_error(f"GET {path}", error)
            raise error
        return response

    def _get_container(self, path: str, offset: int, page_size: int) -> Dict[str, Any]:
        response = self._get(path, self._headers(offset, page_size))
        try:
            data = response.json()
        except ValueError as e:
            raise DataError(f"Response from {path} is not valid JSON: {e}")
        if not isinstance(data, dict) or not isinstance(data.get("MediaContainer"), dict):
            raise DataError(f"Response from {path} has no MediaContainer")
        return data["MediaContainer"]

    @staticmethod
    def _parse_page(container: Dict[str, Any], title_format: Callable[[dict], str],
                    require_index: bool = False) -> ItemPage:
        metadata = container.get("Metadata") or []
        if not isinstance(metadata, list):
            raise DataError("MediaContainer.Metadata is not a list")

        items = []
        for entry in metadata:
            if not isinstance(entry, dict) or not entry.get("thumb"):
                continue
            # The "All episodes" pseudo-season has no index
            if require_index and entry.get("index") is None:
                continue
            rating_key = entry.get("ratingKey")
            items.append(MediaItem(
                title=title_format(entry),
                item_id=str(rating_key) if rating_key is not None else "",
                thumb=entry["thumb"],
                year=entry.get("year"),
                added_at=entry.get("addedAt"),
            ))

        total = container.get("totalSize", container.get("size", len(metadata)))
        try:
            total = int(total)
        except (TypeError, ValueError):
            raise DataError(f"Invalid totalSize in MediaContainer: {total!r}")
        return ItemPage(items=items, total_count=total, fetched=len(metadata))

    def list_items(self, library_id: str, offset: int, page_size: int) -> ItemPage:
        """One page of movies or shows from a library."""
        container = self._get_container(f"/library/sections/{library_id}/all", offset, page_size)
        return self._parse_page(container, lambda entry: entry.get("title") or "")

    def list_collections(self, library_id: str, offset: int, page_size: int) -> ItemPage:
        """One page of collections from a library."""
        container = self._get_container(f"/library/sections/{library_id}/collections", offset, page_size)
        return self._parse_page(container, lambda entry: entry.get("title") or "")

    def list_children(self, parent_id: str, offset: int, page_size: int) -> ItemPage:
        """One page of seasons of a show, titled "<Show> - <Season>"."""
        def season_title(entry: dict) -> str:
            title = entry.get("title") or ""
            show = entry.get("parentTitle")
            return f"{show} - {title}" if show and title else title

        container = self._get_container(f"/library/metadata/{parent_id}/children", offset, page_size)
        return self._parse_page(container, season_title, require_index=True)

    def fetch_image_bytes(self, thumb: str) -> bytes:
        """Download artwork referenced by an item's thumb path.

        Raises:
            TransportError: On network failure, non-2xx status or an empty body.
        """
        path = thumb if thumb.startswith("/") else f"/{thumb}"
        response = self._get(path, {"X-Plex-Token": self.plex_token})
        if not response.content:
            raise TransportError(f"Empty image response for {path}")
        return response.content
