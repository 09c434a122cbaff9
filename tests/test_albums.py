"""
Tests for album persistence.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from portfolio_admin.albums import AlbumService, generate_slug
from portfolio_admin.exceptions import AlbumNotFound, PhotoNotFound, ValidationFailed
from portfolio_admin.models import Photo


def make_photo(photo_id: str) -> Photo:
    return Photo(
        id=photo_id,
        filename_original=f"{photo_id}.jpg",
        url_original=f"/uploads/originals/{photo_id}.jpg",
        url_display=f"/uploads/display/{photo_id}.webp",
        url_thumbnail=f"/uploads/thumbnails/{photo_id}.webp",
        width=100,
        height=50,
        file_size_original=10,
        file_size_display=5,
        file_size_thumbnail=2,
    )


def test_generate_slug():
    assert generate_slug("Iceland 2024!") == "iceland-2024"
    assert generate_slug("  Black  &  White ") == "black-white"


def test_create_album(album_service):
    album = album_service.create("Iceland 2024", description="Highlands")

    assert album["slug"] == "iceland-2024"
    assert album["photos"] == []
    assert album["description"] == "Highlands"
    assert album_service.get_by_id(album["id"]) == album


def test_duplicate_slug_gets_suffix(album_service):
    first = album_service.create("Street")
    second = album_service.create("Street")

    assert first["slug"] == "street"
    assert second["slug"] == "street-1"


def test_create_requires_title(album_service):
    with pytest.raises(ValidationFailed):
        album_service.create("   ")


def test_unknown_album(album_service):
    assert not album_service.exists("nope")
    with pytest.raises(AlbumNotFound):
        album_service.get_by_id("nope")
    with pytest.raises(AlbumNotFound):
        album_service.add_photo("nope", make_photo("p1"))


def test_add_photo_assigns_order(album_service, album):
    album_service.add_photo(album["id"], make_photo("p1"))
    album_service.add_photo(album["id"], make_photo("p2"))

    photos = album_service.get_by_id(album["id"])["photos"]
    assert [p["id"] for p in photos] == ["p1", "p2"]
    assert [p["order"] for p in photos] == [1, 2]
    assert all("uploaded_at" in p for p in photos)


def test_concurrent_add_photo_loses_nothing(store, album):
    """Two services on the same store appending at once keep every photo."""
    services = [AlbumService(store), AlbumService(store)]

    def add(i):
        services[i % 2].add_photo(album["id"], make_photo(f"p{i}"))

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(add, range(40)))

    photos = AlbumService(store).get_by_id(album["id"])["photos"]
    assert sorted(p["id"] for p in photos) == sorted(f"p{i}" for i in range(40))
    assert sorted(p["order"] for p in photos) == list(range(1, 41))


def test_delete_photo(album_service, album):
    album_service.add_photo(album["id"], make_photo("p1"))
    album_service.add_photo(album["id"], make_photo("p2"))

    removed = album_service.delete_photo(album["id"], "p1")

    assert removed.id == "p1"
    assert removed.url_display == "/uploads/display/p1.webp"
    remaining = album_service.get_by_id(album["id"])["photos"]
    assert [p["id"] for p in remaining] == ["p2"]

    with pytest.raises(PhotoNotFound):
        album_service.delete_photo(album["id"], "p1")


def test_delete_photo_with_unknown_exif_keys(album_service, album, store):
    """Hand-edited metadata with extra EXIF keys still loads."""
    album_service.add_photo(album["id"], make_photo("p1"))
    data = store.read_json("albums.json")
    data["albums"][0]["photos"][0]["exif"] = {"camera": "Leica M6", "film_stock": "HP5"}
    store.write_json("albums.json", data)

    removed = album_service.delete_photo(album["id"], "p1")

    assert removed.exif.camera == "Leica M6"


def test_update_album(album_service, album):
    updated = album_service.update(album["id"], {
        "title": "Lofoten Winter",
        "visibility": "hidden",
        "id": "hijacked",
        "photos": [{"id": "ghost"}],
    })

    assert updated["title"] == "Lofoten Winter"
    assert updated["visibility"] == "hidden"
    stored = album_service.get_by_id(album["id"])
    assert stored["id"] == album["id"]
    assert stored["photos"] == []
    assert stored["created_at"] == album["created_at"]


def test_update_rejects_taken_slug_and_empty_title(album_service, album):
    other = album_service.create("Street")

    with pytest.raises(ValidationFailed):
        album_service.update(album["id"], {"slug": other["slug"]})
    with pytest.raises(ValidationFailed):
        album_service.update(album["id"], {"title": "  "})
    with pytest.raises(AlbumNotFound):
        album_service.update("nope", {"title": "x"})

    # Keeping its own slug is fine
    assert album_service.update(album["id"], {"slug": album["slug"]})["slug"] == album["slug"]


def test_delete_album_returns_photos(album_service, album):
    album_service.add_photo(album["id"], make_photo("p1"))
    album_service.add_photo(album["id"], make_photo("p2"))

    removed = album_service.delete(album["id"])

    assert [p.id for p in removed] == ["p1", "p2"]
    assert not album_service.exists(album["id"])
    with pytest.raises(AlbumNotFound):
        album_service.delete(album["id"])


def test_clear_photos_drops_cover(album_service, album):
    album_service.add_photo(album["id"], make_photo("p1"))
    album_service.set_cover_photo(album["id"], "p1")

    removed = album_service.clear_photos(album["id"])

    assert [p.id for p in removed] == ["p1"]
    stored = album_service.get_by_id(album["id"])
    assert stored["photos"] == []
    assert "cover_photo_id" not in stored


def test_set_cover_photo(album_service, album):
    album_service.add_photo(album["id"], make_photo("p1"))

    album_service.set_cover_photo(album["id"], "p1")

    assert album_service.get_by_id(album["id"])["cover_photo_id"] == "p1"
    with pytest.raises(PhotoNotFound):
        album_service.set_cover_photo(album["id"], "p9")


def test_reorder_photos(album_service, album):
    for photo_id in ("p1", "p2", "p3"):
        album_service.add_photo(album["id"], make_photo(photo_id))

    album_service.reorder_photos(album["id"], ["p3", "p1", "p2"])

    photos = album_service.get_by_id(album["id"])["photos"]
    assert [p["id"] for p in photos] == ["p3", "p1", "p2"]
    assert [p["order"] for p in photos] == [1, 2, 3]


@pytest.mark.parametrize("photo_ids", [
    [],
    ["p1"],
    ["p1", "p2", "p9"],
    ["p1", "p1"],
])
def test_reorder_photos_needs_every_photo_once(album_service, album, photo_ids):
    album_service.add_photo(album["id"], make_photo("p1"))
    album_service.add_photo(album["id"], make_photo("p2"))

    with pytest.raises(ValidationFailed):
        album_service.reorder_photos(album["id"], photo_ids)

    photos = album_service.get_by_id(album["id"])["photos"]
    assert [p["id"] for p in photos] == ["p1", "p2"]
