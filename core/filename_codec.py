"""
Poster filename encoding for PosterVault.

Every managed poster carries its media-server item ID and a tag marker in
its filename, e.g. "The Matrix [5821] [[Movies 4K]] **Plex**.jpg". The tag
markers are part of the on-disk format: a file with neither marker is not
managed and is never touched by reconciliation. Nothing outside this module
should parse poster filenames directly.
"""

import os
import re
from typing import Optional

# Tag markers embedded in managed filenames (mutually exclusive)
SOURCE_TAG = "**Plex**"
ORPHAN_TAG = "**Orphaned**"

# Server-sourced artwork is always saved as JPEG
DEFAULT_EXTENSION = "jpg"

# Collection type markers, keyed by library type
COLLECTION_TYPE_MARKERS = {
    "movie": "(Movies)",
    "show": "(TV)",
}

# First single-bracketed alphanumeric token; [[Library Name]] is excluded
_ITEM_ID_PATTERN = re.compile(r"(?<!\[)\[([A-Za-z0-9]+)\](?!\])")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def sanitize_title(title: str) -> str:
    """Reduce a title to characters that are safe in any filename.

    Keeps letters, digits, spaces, underscores, hyphens and dots, collapses
    runs of whitespace and trims the result. May return an empty string.
    """
    if not title:
        return ""
    kept = "".join(ch for ch in title if ch.isalnum() or ch in " _-." or ch.isspace())
    return _WHITESPACE_PATTERN.sub(" ", kept).strip()


def encode_filename(title: str, item_id: str, media_type: str,
                    library_type: str = "", library_name: str = "",
                    extension: str = DEFAULT_EXTENSION) -> str:
    """Build the on-disk filename for a poster.

    Args:
        title: Display title of the item (sanitized here).
        item_id: Media-server item ID; omitted from the name when empty.
        media_type: One of movies, shows, seasons, collections.
        library_type: "movie" or "show"; only used for collections.
        library_name: Library title; used for everything except collections.
        extension: File extension without the dot.

    Returns:
        The filename, ending in the source tag and the extension.
    """
    parts = []
    basename = sanitize_title(title)
    if basename:
        parts.append(basename)
    if item_id:
        parts.append(f"[{item_id}]")

    if media_type == "collections":
        if "collection" not in basename.lower():
            parts.append("Collection")
        marker = COLLECTION_TYPE_MARKERS.get(library_type)
        if marker:
            parts.append(marker)
    else:
        library_name = sanitize_library_name(library_name)
        if library_name:
            parts.append(f"[[{library_name}]]")

    parts.append(SOURCE_TAG)
    return " ".join(parts) + "." + extension


def sanitize_library_name(library_name: str) -> str:
    """Library names keep their punctuation but may not break the filename."""
    if not library_name:
        return ""
    cleaned = re.sub(r'[/\\:*?"<>|\[\]]', "", library_name)
    return _WHITESPACE_PATTERN.sub(" ", cleaned).strip()


def decode_item_id(filename: str) -> Optional[str]:
    """Return the item ID encoded in a filename, or None if it has none."""
    match = _ITEM_ID_PATTERN.search(filename)
    return match.group(1) if match else None


def has_source_tag(filename: str) -> bool:
    return SOURCE_TAG in filename


def has_orphan_tag(filename: str) -> bool:
    return ORPHAN_TAG in filename


def is_managed(filename: str) -> bool:
    """A file is managed when it carries exactly one of the two tags."""
    return has_source_tag(filename) != has_orphan_tag(filename)


def retag(filename: str, from_tag: str = SOURCE_TAG, to_tag: str = ORPHAN_TAG) -> str:
    """Swap one tag marker for another.

    Returns the filename unchanged when from_tag is absent.
    """
    if from_tag not in filename:
        return filename
    return filename.replace(from_tag, to_tag, 1)


def collection_type_marker(filename: str) -> Optional[str]:
    """Return the library type ("movie"/"show") a collection file is marked with."""
    for library_type, marker in COLLECTION_TYPE_MARKERS.items():
        if marker in filename:
            return library_type
    return None


def library_name_segment(library_name: str) -> str:
    name = sanitize_library_name(library_name)
    return f" [[{name}]]" if name else ""


def is_naming_upgrade(existing: str, target: str, media_type: str,
                      library_type: str = "", library_name: str = "") -> bool:
    """Check whether target differs from existing only by an added library segment.

    For regular items the segment is " [[Library Name]]"; for collections it
    is the " (Movies)"/" (TV)" type marker. Such files were written by an
    older naming scheme and can be renamed in place instead of re-downloaded.
    """
    if existing == target:
        return False
    if media_type == "collections":
        marker = COLLECTION_TYPE_MARKERS.get(library_type)
        segment = f" {marker}" if marker else ""
    else:
        segment = library_name_segment(library_name)
    if not segment or segment not in target or segment in existing:
        return False
    return target.replace(segment, "", 1) == existing


def next_copy_name(directory: str, filename: str) -> str:
    """Find a sibling name "<base> (n).<ext>" that does not exist yet."""
    base, ext = os.path.splitext(filename)
    counter = 1
    candidate = filename
    while os.path.exists(os.path.join(directory, candidate)):
        candidate = f"{base} ({counter}){ext}"
        counter += 1
    return candidate


def is_safe_filename(filename: str) -> bool:
    """Reject names that could escape the poster directory.

    Filenames supplied from outside (e.g. a user request) must pass this
    check before they reach the filesystem layer.
    """
    if not filename or filename in (".", ".."):
        return False
    if "/" in filename or "\\" in filename or "\x00" in filename:
        return False
    if os.sep in filename or (os.altsep and os.altsep in filename):
        return False
    return os.path.basename(filename) == filename
