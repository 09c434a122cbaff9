"""
Module for album records kept in albums.json.
"""
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .exceptions import AlbumNotFound, PhotoNotFound, ValidationFailed
from .models import Photo
from .store import JsonFileStore

logger = logging.getLogger(__name__)

ALBUMS_FILE = "albums.json"
ALBUMS_VERSION = "1.0.0"

# Managed by the service itself, never taken from an update
PROTECTED_FIELDS = {"id", "created_at", "updated_at", "photos"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_slug(title: str) -> str:
    """Create a URL-friendly slug from a title."""
    slug = re.sub(r"[^a-z0-9-]", "", title.lower().replace(" ", "-"))
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug or str(uuid.uuid4())


def unique_slug(base: str, albums: List[Dict[str, Any]]) -> str:
    taken = {album.get("slug") for album in albums}
    if base not in taken:
        return base
    counter = 1
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"


class AlbumService:
    """Album CRUD on top of a JsonFileStore.

    Every mutation holds the albums.json lock for its whole read-modify-write
    cycle, so concurrent uploads to the same album never drop each other's
    photos.
    """

    def __init__(self, store: JsonFileStore):
        self.store = store

    def _load(self) -> Dict[str, Any]:
        data = self.store.read_json(ALBUMS_FILE)
        if data is None:
            return {"version": ALBUMS_VERSION, "last_updated": _now(), "albums": []}
        data.setdefault("albums", [])
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        data["last_updated"] = _now()
        self.store.write_json(ALBUMS_FILE, data)

    @staticmethod
    def _find(data: Dict[str, Any], album_id: str) -> Dict[str, Any]:
        for album in data["albums"]:
            if album.get("id") == album_id:
                return album
        raise AlbumNotFound(album_id)

    def get_all(self) -> List[Dict[str, Any]]:
        return self._load()["albums"]

    def get_by_id(self, album_id: str) -> Dict[str, Any]:
        return self._find(self._load(), album_id)

    def exists(self, album_id: str) -> bool:
        try:
            self.get_by_id(album_id)
        except AlbumNotFound:
            return False
        return True

    def create(self, title: str, slug: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        """Create an empty album.

        Args:
            title: Album title
            slug: Preferred slug; derived from the title when omitted
            **fields: Additional album attributes stored as given

        Returns:
            The stored album
        """
        if not title or not title.strip():
            raise ValidationFailed("album title is required")

        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            now = _now()
            album = {
                "visibility": "public",
                "allow_downloads": False,
                "is_portfolio_album": False,
                "order": len(data["albums"]) + 1,
                **fields,
                "id": str(uuid.uuid4()),
                "title": title.strip(),
                "slug": unique_slug(slug or generate_slug(title), data["albums"]),
                "created_at": now,
                "updated_at": now,
                "photos": [],
            }
            data["albums"].append(album)
            self._save(data)

        logger.info(f"Created album {album['id']} ({album['slug']})")
        return album

    def update(self, album_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Change album attributes.

        The id, creation time and photo list are kept; use the photo
        operations to change photos.

        Raises:
            AlbumNotFound: no such album
            ValidationFailed: empty title or a slug another album already uses
        """
        updates = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS}
        if "title" in updates and not str(updates["title"] or "").strip():
            raise ValidationFailed("album title is required")

        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            slug = updates.get("slug")
            if slug is not None:
                if any(a.get("slug") == slug for a in data["albums"] if a is not album):
                    raise ValidationFailed(f"album with slug {slug!r} already exists")
            album.update(updates)
            album["updated_at"] = _now()
            self._save(data)

        logger.info(f"Updated album {album_id}")
        return album

    def delete(self, album_id: str) -> List[Photo]:
        """Remove an album.

        Returns:
            The album's photos, whose files the caller still has to remove
        """
        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            data["albums"] = [a for a in data["albums"] if a is not album]
            self._save(data)

        logger.info(f"Deleted album {album_id}")
        return [Photo.from_dict(p) for p in album.get("photos", [])]

    def clear_photos(self, album_id: str) -> List[Photo]:
        """Remove every photo from an album and return them."""
        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            removed = album.get("photos", [])
            album["photos"] = []
            album.pop("cover_photo_id", None)
            album["updated_at"] = _now()
            self._save(data)

        logger.info(f"Removed {len(removed)} photos from album {album_id}")
        return [Photo.from_dict(p) for p in removed]

    def set_cover_photo(self, album_id: str, photo_id: str) -> None:
        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            if not any(p.get("id") == photo_id for p in album.get("photos", [])):
                raise PhotoNotFound(photo_id)
            album["cover_photo_id"] = photo_id
            album["updated_at"] = _now()
            self._save(data)

    def reorder_photos(self, album_id: str, photo_ids: List[str]) -> None:
        """Put an album's photos in the given order and renumber them from 1.

        Raises:
            ValidationFailed: photo_ids is not exactly the album's photo ids
        """
        if not photo_ids:
            raise ValidationFailed("photo_ids array is required")

        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            by_id = {p.get("id"): p for p in album.get("photos", [])}
            if len(photo_ids) != len(by_id) or set(photo_ids) != set(by_id):
                raise ValidationFailed("photo_ids must list every photo of the album exactly once")

            photos = []
            for order, photo_id in enumerate(photo_ids, start=1):
                photo = by_id[photo_id]
                photo["order"] = order
                photos.append(photo)
            album["photos"] = photos
            album["updated_at"] = _now()
            self._save(data)

        logger.debug(f"Reordered {len(photo_ids)} photos in album {album_id}")

    def add_photo(self, album_id: str, photo: Photo) -> Photo:
        """Append a processed photo to an album.

        Args:
            album_id: Target album
            photo: Photo metadata; order and uploaded_at are filled in here

        Returns:
            The photo as stored
        """
        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            photos = album.setdefault("photos", [])
            photo.order = len(photos) + 1
            photo.uploaded_at = _now()
            photos.append(photo.to_dict())
            album["updated_at"] = _now()
            self._save(data)

        logger.debug(f"Added photo {photo.id} to album {album_id}")
        return photo

    def delete_photo(self, album_id: str, photo_id: str) -> Photo:
        """Remove a photo from an album and return its metadata."""
        with self.store.locked(ALBUMS_FILE):
            data = self._load()
            album = self._find(data, album_id)
            photos = album.get("photos", [])
            remaining = [p for p in photos if p.get("id") != photo_id]
            if len(remaining) == len(photos):
                raise PhotoNotFound(photo_id)

            removed = next(p for p in photos if p.get("id") == photo_id)
            album["photos"] = remaining
            if album.get("cover_photo_id") == photo_id:
                album.pop("cover_photo_id")
            album["updated_at"] = _now()
            self._save(data)

        logger.info(f"Deleted photo {photo_id} from album {album_id}")
        return Photo.from_dict(removed)
