"""
Module turning one uploaded image into its original, display and thumbnail variants.
"""
import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError

from .backup import S3Backup
from .disk_gate import VARIANT_KINDS
from .exceptions import PersistenceFailed, TranscodeFailed, ValidationFailed
from .models import ExifData, Photo, UploadJob

logger = logging.getLogger(__name__)

DISPLAY_MAX_SIZE = 3840
DISPLAY_QUALITY = 85
THUMBNAIL_MAX_SIZE = 800
THUMBNAIL_QUALITY = 80

SNIFF_BYTES = 512


def detect_image_type(header: bytes) -> Optional[str]:
    """Identify an accepted image format from its leading bytes.

    Returns:
        File extension for the format, or None if it is not accepted
    """
    if header.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if header.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if len(header) >= 12 and header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "webp"
    return None


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).strip("\x00 ").strip()
    return text or None


def format_aperture(f_number: float) -> str:
    return f"f/{float(f_number):.1f}"


def format_shutter_speed(exposure: float) -> str:
    exposure = float(exposure)
    if 0 < exposure < 1:
        return f"1/{round(1 / exposure)}"
    return f"{exposure:.1f}s"


def format_focal_length(focal: float) -> str:
    return f"{float(focal):.0f}mm"


def extract_exif(image: Image.Image) -> Optional[ExifData]:
    """Pull capture metadata out of an image's EXIF block."""
    exif = image.getexif()
    if not exif:
        return None
    details = exif.get_ifd(ExifTags.IFD.Exif)

    data = ExifData()
    camera = " ".join(
        part for part in (_clean(exif.get(ExifTags.Base.Make)),
                          _clean(exif.get(ExifTags.Base.Model))) if part
    )
    data.camera = camera or None
    data.lens = _clean(details.get(ExifTags.Base.LensModel))

    iso = details.get(ExifTags.Base.ISOSpeedRatings)
    if isinstance(iso, (tuple, list)):
        iso = iso[0] if iso else None
    if iso is not None:
        data.iso = int(iso)

    f_number = details.get(ExifTags.Base.FNumber)
    if f_number is not None and float(f_number) > 0:
        data.aperture = format_aperture(f_number)
    exposure = details.get(ExifTags.Base.ExposureTime)
    if exposure is not None and float(exposure) > 0:
        data.shutter_speed = format_shutter_speed(exposure)
    focal = details.get(ExifTags.Base.FocalLength)
    if focal is not None and float(focal) > 0:
        data.focal_length = format_focal_length(focal)

    taken = _clean(details.get(ExifTags.Base.DateTimeOriginal)) or _clean(
        exif.get(ExifTags.Base.DateTime))
    if taken:
        try:
            data.date_taken = datetime.strptime(taken, "%Y:%m:%d %H:%M:%S").isoformat()
        except ValueError:
            logger.debug(f"Unparseable EXIF date {taken!r}")

    return None if data.is_empty() else data


class ImageTranscoder:
    """Validates uploaded images and writes their variants under the upload directory."""

    def __init__(self, upload_dir: Path, backup: Optional[S3Backup] = None):
        """Initialize the transcoder.

        Args:
            upload_dir: Root directory for originals, display and thumbnails
            backup: Optional off-site copy of every variant
        """
        self.upload_dir = Path(upload_dir)
        self.backup = backup
        for kind in VARIANT_KINDS:
            (self.upload_dir / kind).mkdir(parents=True, exist_ok=True)

    def _variant_path(self, kind: str, filename: str) -> Path:
        return self.upload_dir / kind / filename

    def transcode(self, job: UploadJob) -> Photo:
        """Process one uploaded image.

        Args:
            job: The upload to process; its stream must be seekable

        Returns:
            Photo describing the stored variants

        Raises:
            ValidationFailed: the file is not an accepted image type
            TranscodeFailed: the image could not be decoded or resized
            PersistenceFailed: a variant could not be written
        """
        stream = job.stream
        stream.seek(0)
        extension = detect_image_type(stream.read(SNIFF_BYTES))
        if extension is None:
            raise ValidationFailed("unsupported file type")
        stream.seek(0)

        try:
            image = Image.open(stream)
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
            raise TranscodeFailed(f"failed to decode image: {e}") from e

        try:
            exif = extract_exif(image)
        except Exception as e:
            # Metadata is optional; a broken EXIF block must not fail the upload
            logger.warning(f"Could not read EXIF from {job.filename}: {e}")
            exif = None

        photo_id = str(uuid.uuid4())
        written: Dict[str, Path] = {}
        try:
            original = self._variant_path("originals", f"{photo_id}.{extension}")
            stream.seek(0)
            try:
                with open(original, "wb") as f:
                    shutil.copyfileobj(stream, f)
            except OSError as e:
                raise PersistenceFailed(f"failed to save original: {e}") from e
            written["originals"] = original

            oriented = self._prepare_for_webp(ImageOps.exif_transpose(image))
            width, height = oriented.size
            written["display"] = self._write_resized(
                oriented, "display", photo_id, DISPLAY_MAX_SIZE, DISPLAY_QUALITY)
            written["thumbnails"] = self._write_resized(
                oriented, "thumbnails", photo_id, THUMBNAIL_MAX_SIZE, THUMBNAIL_QUALITY)

            if self.backup:
                self.backup.backup_variants(photo_id, written)
        except Exception:
            self._remove(written.values())
            raise
        finally:
            image.close()

        photo = Photo(
            id=photo_id,
            filename_original=job.filename,
            url_original=f"/uploads/originals/{written['originals'].name}",
            url_display=f"/uploads/display/{written['display'].name}",
            url_thumbnail=f"/uploads/thumbnails/{written['thumbnails'].name}",
            width=width,
            height=height,
            file_size_original=written["originals"].stat().st_size,
            file_size_display=written["display"].stat().st_size,
            file_size_thumbnail=written["thumbnails"].stat().st_size,
            exif=exif,
        )
        logger.debug(f"Transcoded {job.filename} into photo {photo_id} ({width}x{height})")
        return photo

    @staticmethod
    def _prepare_for_webp(image: Image.Image) -> Image.Image:
        if image.mode in ("RGB", "RGBA"):
            return image
        has_alpha = "A" in image.getbands() or "transparency" in image.info
        return image.convert("RGBA" if has_alpha else "RGB")

    def _write_resized(self, image: Image.Image, kind: str, photo_id: str,
                       max_size: int, quality: int) -> Path:
        path = self._variant_path(kind, f"{photo_id}.webp")
        resized = image.copy()
        try:
            resized.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
            resized.save(path, "WEBP", quality=quality)
        except OSError as e:
            path.unlink(missing_ok=True)
            raise PersistenceFailed(f"failed to write {kind} version: {e}") from e
        except (ValueError, MemoryError) as e:
            path.unlink(missing_ok=True)
            raise TranscodeFailed(f"failed to generate {kind} version: {e}") from e
        finally:
            resized.close()
        return path

    @staticmethod
    def _remove(paths) -> list:
        errors = []
        for path in paths:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Could not remove {path}: {e}")
                errors.append(f"{Path(path).name}: {e}")
        return errors

    def delete(self, photo: Photo) -> None:
        """Remove every stored variant of a photo.

        Raises:
            PersistenceFailed: if a variant exists but could not be removed
        """
        paths = [
            self._variant_path("originals", Path(photo.url_original).name),
            self._variant_path("display", Path(photo.url_display).name),
            self._variant_path("thumbnails", Path(photo.url_thumbnail).name),
        ]
        errors = self._remove(paths)
        if errors:
            raise PersistenceFailed(f"errors deleting photo {photo.id}: {'; '.join(errors)}")
        logger.debug(f"Deleted variants of photo {photo.id}")
