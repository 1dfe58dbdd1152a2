"""Shared test fixtures for the PosterVault test suite."""

import os
import sys
import shutil
import tempfile
from typing import Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import ConfigManager
from core.exceptions import TransportError
from core.id_store import IdStore
from core.plex_api import ItemPage, Library, MediaItem


# ============================================================================
# Fake media server
# ============================================================================

def make_item(title: str, item_id: str, thumb: Optional[str] = None) -> MediaItem:
    """Build a MediaItem whose artwork path is derived from its ID."""
    return MediaItem(title=title, item_id=str(item_id),
                     thumb=thumb if thumb is not None else f"/library/metadata/{item_id}/thumb")


def image_for(item_id: str) -> bytes:
    """Deterministic fake JPEG bytes for an item."""
    return b"\xff\xd8\xff" + f"poster-{item_id}".encode()


class FakePlexClient:
    """In-memory stand-in for PlexManager with the same listing contract."""

    def __init__(self, libraries: Optional[List[Library]] = None):
        self.libraries: List[Library] = libraries or []
        self.items: Dict[str, List[MediaItem]] = {}
        self.collections: Dict[str, List[MediaItem]] = {}
        self.children: Dict[str, List[MediaItem]] = {}
        self.images: Dict[str, bytes] = {}
        self.failing_libraries = set()
        self.failing_thumbs = set()
        self.image_requests: List[str] = []
        self.connected = False

    def add_library(self, library_id: str, title: str, library_type: str,
                    items: Optional[List[MediaItem]] = None,
                    collections: Optional[List[MediaItem]] = None) -> Library:
        library = Library(id=str(library_id), title=title, type=library_type)
        self.libraries.append(library)
        self.items[library.id] = list(items or [])
        self.collections[library.id] = list(collections or [])
        return library

    def connect(self) -> None:
        self.connected = True

    def list_libraries(self, excluded=()) -> List[Library]:
        excluded = {title.lower() for title in excluded}
        return [lib for lib in self.libraries if lib.title.lower() not in excluded]

    @staticmethod
    def _page(items: List[MediaItem], offset: int, page_size: int) -> ItemPage:
        chunk = items[offset:offset + page_size]
        return ItemPage(items=list(chunk), total_count=len(items), fetched=len(chunk))

    def list_items(self, library_id: str, offset: int, page_size: int) -> ItemPage:
        if library_id in self.failing_libraries:
            raise TransportError(f"Request to library {library_id} returned HTTP 500")
        return self._page(self.items.get(library_id, []), offset, page_size)

    def list_collections(self, library_id: str, offset: int, page_size: int) -> ItemPage:
        if library_id in self.failing_libraries:
            raise TransportError(f"Request to library {library_id} returned HTTP 500")
        return self._page(self.collections.get(library_id, []), offset, page_size)

    def list_children(self, parent_id: str, offset: int, page_size: int) -> ItemPage:
        return self._page(self.children.get(parent_id, []), offset, page_size)

    def fetch_image_bytes(self, thumb: str) -> bytes:
        self.image_requests.append(thumb)
        if thumb in self.failing_thumbs:
            raise TransportError(f"Request to {thumb} returned HTTP 404")
        if thumb in self.images:
            return self.images[thumb]
        # "/library/metadata/<id>/thumb"
        return image_for(thumb.strip("/").split("/")[2])


@pytest.fixture
def fake_client():
    return FakePlexClient()


# ============================================================================
# Filesystem fixtures
# ============================================================================

@pytest.fixture
def temp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp(prefix="postervault_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def poster_dir(temp_dir):
    """An empty poster directory for one media type."""
    path = os.path.join(temp_dir, "posters", "movies")
    os.makedirs(path)
    return path


def create_test_file(path, content=b"test content"):
    """Create a file (and its parent directories) with the given bytes.

    Returns:
        The path of the created file.
    """
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(content if isinstance(content, bytes) else content.encode())
    return path


# ============================================================================
# Config and store fixtures
# ============================================================================

@pytest.fixture
def make_config(temp_dir):
    """Factory for a loaded ConfigManager rooted in the temp directory."""
    def _make(**overrides) -> ConfigManager:
        config = ConfigManager(os.path.join(temp_dir, "missing_settings.json"), environ={})
        config.load_config()
        config.plex.plex_url = "http://plex.local:32400"
        config.plex.plex_token = "test-token"
        config.plex.batch_delay = 0
        config.paths.posters_folder = os.path.join(temp_dir, "posters")
        config.paths.data_folder = os.path.join(temp_dir, "data")
        config.paths.logs_folder = os.path.join(temp_dir, "logs")
        for key, value in overrides.items():
            for section in (config.plex, config.imports, config.paths, config.logging):
                if hasattr(section, key):
                    setattr(section, key, value)
                    break
            else:
                raise AttributeError(key)
        return config
    return _make


@pytest.fixture
def store_file(temp_dir):
    """Provide a temporary valid ID store path (directory not created yet)."""
    return os.path.join(temp_dir, "data", "plex_valid_ids.json")


@pytest.fixture
def id_store(store_file):
    return IdStore(store_file)
