"""
Tests for image validation and variant generation.
"""
from PIL import Image
import pytest

from conftest import make_image_bytes, make_job, variant_files
from portfolio_admin.exceptions import TranscodeFailed, ValidationFailed
from portfolio_admin.transcoder import (
    detect_image_type,
    format_aperture,
    format_focal_length,
    format_shutter_speed,
)


def test_detect_image_type(jpeg_bytes, png_bytes):
    assert detect_image_type(jpeg_bytes[:16]) == "jpg"
    assert detect_image_type(png_bytes[:16]) == "png"
    assert detect_image_type(make_image_bytes("WEBP")[:16]) == "webp"
    assert detect_image_type(b"GIF89a....") is None
    assert detect_image_type(b"") is None


def test_format_helpers():
    assert format_aperture(2.8) == "f/2.8"
    assert format_shutter_speed(0.004) == "1/250"
    assert format_shutter_speed(2) == "2.0s"
    assert format_focal_length(50.0) == "50mm"


def test_transcode_writes_three_variants(transcoder, upload_dir, jpeg_bytes):
    photo = transcoder.transcode(make_job(0, "DSC_0001.jpg", jpeg_bytes))

    assert photo.filename_original == "DSC_0001.jpg"
    assert photo.url_original == f"/uploads/originals/{photo.id}.jpg"
    assert photo.url_display == f"/uploads/display/{photo.id}.webp"
    assert photo.url_thumbnail == f"/uploads/thumbnails/{photo.id}.webp"
    assert (photo.width, photo.height) == (1200, 800)
    assert photo.file_size_original == len(jpeg_bytes)

    with Image.open(upload_dir / "thumbnails" / f"{photo.id}.webp") as thumb:
        assert max(thumb.size) == 800
        assert thumb.format == "WEBP"
    with Image.open(upload_dir / "display" / f"{photo.id}.webp") as display:
        # Smaller than the display bound, so kept as is
        assert display.size == (1200, 800)


def test_transcode_extracts_camera(transcoder, jpeg_bytes):
    photo = transcoder.transcode(make_job(0, "a.jpg", jpeg_bytes))

    assert photo.exif is not None
    assert photo.exif.camera == "Fujifilm X-T5"


def test_png_without_exif(transcoder, png_bytes):
    photo = transcoder.transcode(make_job(0, "a.png", png_bytes))

    assert photo.exif is None
    assert photo.url_original.endswith(".png")
    assert "exif" not in photo.to_dict()


def test_extension_is_ignored_in_favour_of_content(transcoder, png_bytes):
    photo = transcoder.transcode(make_job(0, "really-a-png.jpg", png_bytes))

    assert photo.url_original.endswith(".png")


def test_rejects_non_image(transcoder, upload_dir):
    with pytest.raises(ValidationFailed, match="unsupported file type"):
        transcoder.transcode(make_job(0, "notes.jpg", b"just some text"))

    assert variant_files(upload_dir, "originals") == []


def test_corrupt_image_leaves_no_files(transcoder, upload_dir, corrupt_bytes):
    with pytest.raises(TranscodeFailed):
        transcoder.transcode(make_job(0, "broken.jpg", corrupt_bytes))

    for kind in ("originals", "display", "thumbnails"):
        assert variant_files(upload_dir, kind) == []


def test_backup_failure_removes_written_variants(upload_dir, jpeg_bytes):
    from unittest.mock import MagicMock

    from portfolio_admin.exceptions import PersistenceFailed
    from portfolio_admin.transcoder import ImageTranscoder

    backup = MagicMock()
    backup.backup_variants.side_effect = PersistenceFailed("bucket gone")
    transcoder = ImageTranscoder(upload_dir, backup=backup)

    with pytest.raises(PersistenceFailed):
        transcoder.transcode(make_job(0, "a.jpg", jpeg_bytes))

    for kind in ("originals", "display", "thumbnails"):
        assert variant_files(upload_dir, kind) == []


def test_delete_removes_variants(transcoder, upload_dir, jpeg_bytes):
    photo = transcoder.transcode(make_job(0, "a.jpg", jpeg_bytes))

    transcoder.delete(photo)

    for kind in ("originals", "display", "thumbnails"):
        assert variant_files(upload_dir, kind) == []
    # Already gone is not an error
    transcoder.delete(photo)
