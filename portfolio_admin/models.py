"""
Module containing data models for the portfolio admin backend.
"""
import uuid
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import List, Optional, Dict, Any, BinaryIO

MB = 1024 * 1024

MIN_DISK_USAGE_PERCENT = 10
MAX_DISK_USAGE_PERCENT = 95
DEFAULT_DISK_USAGE_PERCENT = 80
DEFAULT_MAX_IMAGE_SIZE_MB = 50
RESERVED_PERCENT = 5
MIN_FREE_BYTES = 500 * MB


@dataclass
class ExifData:
    """Capture metadata extracted from an uploaded image."""
    camera: Optional[str] = None
    lens: Optional[str] = None
    iso: Optional[int] = None
    aperture: Optional[str] = None
    shutter_speed: Optional[str] = None
    focal_length: Optional[str] = None
    date_taken: Optional[str] = None

    def is_empty(self) -> bool:
        return all(value is None for value in asdict(self).values())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExifData":
        """Build from stored metadata, ignoring keys this version does not know."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Photo:
    """A processed photo with its three stored variants."""
    id: str
    filename_original: str
    url_original: str
    url_display: str
    url_thumbnail: str
    width: int
    height: int
    file_size_original: int
    file_size_display: int
    file_size_thumbnail: int
    exif: Optional[ExifData] = None
    order: int = 0
    uploaded_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.exif is None or self.exif.is_empty():
            data.pop("exif")
        else:
            data["exif"] = {k: v for k, v in data["exif"].items() if v is not None}
        if self.uploaded_at is None:
            data.pop("uploaded_at")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Photo":
        exif = data.get("exif")
        return cls(
            id=data["id"],
            filename_original=data.get("filename_original", ""),
            url_original=data["url_original"],
            url_display=data["url_display"],
            url_thumbnail=data["url_thumbnail"],
            width=data.get("width", 0),
            height=data.get("height", 0),
            file_size_original=data.get("file_size_original", 0),
            file_size_display=data.get("file_size_display", 0),
            file_size_thumbnail=data.get("file_size_thumbnail", 0),
            exif=ExifData.from_dict(exif) if exif else None,
            order=data.get("order", 0),
            uploaded_at=data.get("uploaded_at"),
        )


@dataclass
class UploadJob:
    """One uploaded file waiting to be processed.

    The client-supplied filename is only used for reporting; stored files are
    named after the generated photo id.
    """
    index: int
    filename: str
    stream: BinaryIO
    declared_size: int
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def close(self) -> None:
        try:
            self.stream.close()
        except OSError:
            pass


@dataclass(frozen=True)
class UploadResult:
    """Outcome of processing a single upload job."""
    index: int
    filename: str
    success: bool
    photo: Optional[Photo] = None
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, job: UploadJob, photo: Photo) -> "UploadResult":
        return cls(index=job.index, filename=job.filename, success=True, photo=photo)

    @classmethod
    def failed(cls, job: UploadJob, error: str) -> "UploadResult":
        return cls(index=job.index, filename=job.filename, success=False, error=error)

    @property
    def message(self) -> str:
        """Error text prefixed with the originating filename."""
        return f"{self.filename}: {self.error}"


@dataclass
class BatchResponse:
    """Aggregated outcome of one upload request."""
    album_id: str
    total_files: int
    uploaded: List[Photo]
    errors: List[str]

    @property
    def successful_uploads(self) -> int:
        return len(self.uploaded)

    @property
    def failed_uploads(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploaded": [photo.to_dict() for photo in self.uploaded],
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class FilesystemStats:
    """A point-in-time snapshot of the filesystem holding uploads."""
    total_bytes: int
    used_bytes: int

    @property
    def available_bytes(self) -> int:
        return max(self.total_bytes - self.used_bytes, 0)

    @property
    def usage_percent(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return self.used_bytes / self.total_bytes * 100


@dataclass(frozen=True)
class DiskSpacePolicy:
    """Disk usage limits applied before an upload is processed."""
    max_disk_usage_percent: int = DEFAULT_DISK_USAGE_PERCENT
    reserved_percent: int = RESERVED_PERCENT
    min_free_bytes: int = MIN_FREE_BYTES

    @property
    def effective_threshold(self) -> int:
        return min(self.max_disk_usage_percent, MAX_DISK_USAGE_PERCENT)


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of checking a candidate upload against a DiskSpacePolicy."""
    admitted: bool
    threshold_percent: int
    current_percent: float
    projected_percent: float
    reason: Optional[str] = None


class UploadStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (UploadStatus.COMPLETE, UploadStatus.ERROR)


@dataclass
class FileProgress:
    """Client-side lifecycle state of a single file upload."""
    filename: str
    status: UploadStatus
    progress: Optional[int] = None
    error: Optional[str] = None
    # Position in the submitted selection; filenames alone can repeat
    key: Optional[int] = None


@dataclass
class UploadOutcome:
    """What a client-side batch produced, across all of its requests."""
    uploaded: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
