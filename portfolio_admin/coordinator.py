"""
Module for coordinating one upload request from validation to response.
"""
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Sequence, Tuple

from .albums import AlbumService
from .disk_gate import admit, read_filesystem_stats
from .exceptions import AdmissionRejected, PortfolioError, ValidationFailed
from .models import BatchResponse, FilesystemStats, MB, UploadJob, UploadResult
from .site_config import SiteConfigService
from .transcoder import ImageTranscoder
from .worker_pool import UploadWorkerPool

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_FILES = 1000

IncomingFile = Tuple[str, BinaryIO, int]


class BatchPhase(str, Enum):
    VALIDATING = "validating"
    ADMITTING = "admitting"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    RESPONDING = "responding"


def validate_filename(filename: str) -> None:
    """Reject names carrying path traversal or control characters."""
    if not filename or not filename.strip():
        raise AdmissionRejected("invalid filename: empty name", status_code=400)
    if ".." in filename or "/" in filename or "\\" in filename:
        raise AdmissionRejected(
            f"invalid filename {filename!r}: path traversal attempt detected", status_code=400)
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in filename):
        raise AdmissionRejected(
            f"invalid filename {filename!r}: control characters are not allowed",
            status_code=400)


def aggregate_results(album_id: str, results: Iterable[UploadResult]) -> BatchResponse:
    """Partition results into uploaded photos and error messages.

    Output is ordered by submission index, so the same results give the same
    response whatever order they completed in.
    """
    ordered = sorted(results, key=lambda r: r.index)
    return BatchResponse(
        album_id=album_id,
        total_files=len(ordered),
        uploaded=[r.photo for r in ordered if r.success],
        errors=[r.message for r in ordered if not r.success],
    )


class UploadBatchCoordinator:
    """Validates, admits, processes and records one batch of uploaded files."""

    def __init__(self, albums: AlbumService, site_config: SiteConfigService,
                 transcoder: ImageTranscoder, pool: UploadWorkerPool,
                 stats_provider: Callable[[], FilesystemStats] = None,
                 max_files: int = DEFAULT_MAX_BATCH_FILES):
        """Initialize the coordinator.

        Args:
            albums: Album persistence
            site_config: Source of the storage policy, read on every request
            transcoder: Produces photo variants for one job
            pool: Worker pool that runs the transcoder
            stats_provider: Returns a fresh filesystem snapshot; defaults to
                the filesystem holding the upload directory
            max_files: Maximum number of files per request
        """
        self.albums = albums
        self.site_config = site_config
        self.transcoder = transcoder
        self.pool = pool
        self.stats_provider = stats_provider or (
            lambda: read_filesystem_stats(Path(transcoder.upload_dir)))
        self.max_files = max_files

    def _enter(self, batch_id: str, phase: BatchPhase) -> None:
        logger.debug(f"Upload batch {batch_id}: {phase.value}")

    def _validate(self, files: Sequence[IncomingFile]) -> None:
        if not files:
            raise ValidationFailed("No files uploaded")
        if len(files) > self.max_files:
            raise AdmissionRejected(
                f"Too many files: {len(files)} submitted, at most {self.max_files} per upload",
                status_code=400)

        max_size_mb = self.site_config.max_image_size_mb()
        for filename, _stream, size in files:
            validate_filename(filename)
            if size > max_size_mb * MB:
                raise AdmissionRejected(
                    f"{filename}: file size {size / MB:.1f} MB exceeds the "
                    f"{max_size_mb} MB limit")

    def _admit(self, files: Sequence[IncomingFile]) -> None:
        candidate = sum(size for _name, _stream, size in files)
        policy = self.site_config.storage_policy()
        decision = admit(candidate, policy, self.stats_provider())
        if not decision.admitted:
            logger.warning(f"Rejected upload of {candidate} bytes: {decision.reason}")
            raise AdmissionRejected(decision.reason)

    def _record(self, album_id: str, results: List[UploadResult]) -> List[UploadResult]:
        """Append each successful photo to the album, one at a time."""
        recorded = []
        for result in sorted(results, key=lambda r: r.index):
            if not result.success:
                recorded.append(result)
                continue
            try:
                self.albums.add_photo(album_id, result.photo)
                recorded.append(result)
            except PortfolioError as e:
                logger.error(f"Failed to add {result.filename} to album {album_id}: {e}")
                try:
                    self.transcoder.delete(result.photo)
                except PortfolioError as cleanup_error:
                    logger.error(f"Could not clean up photo {result.photo.id}: {cleanup_error}")
                recorded.append(UploadResult(
                    index=result.index,
                    filename=result.filename,
                    success=False,
                    error=str(e),
                ))
        return recorded

    def handle_upload(self, album_id: str, files: Sequence[IncomingFile]) -> BatchResponse:
        """Process one upload request.

        Args:
            album_id: Album receiving the photos
            files: (filename, seekable stream, size in bytes) per uploaded file

        Returns:
            BatchResponse with every success and every per-file error

        Raises:
            AlbumNotFound: the album does not exist
            ValidationFailed, AdmissionRejected: the whole batch was refused
        """
        batch_id = uuid.uuid4().hex[:8]
        jobs = [
            UploadJob(index=i, filename=name, stream=stream, declared_size=size)
            for i, (name, stream, size) in enumerate(files)
        ]
        try:
            self._enter(batch_id, BatchPhase.VALIDATING)
            self.albums.get_by_id(album_id)
            self._validate(files)

            self._enter(batch_id, BatchPhase.ADMITTING)
            self._admit(files)

            self._enter(batch_id, BatchPhase.PROCESSING)
            logger.info(f"Processing {len(jobs)} files for album {album_id} (batch {batch_id})")
            results = self.pool.process(jobs, self.transcoder.transcode,
                                        discard=self.transcoder.delete)

            self._enter(batch_id, BatchPhase.AGGREGATING)
            response = aggregate_results(album_id, self._record(album_id, results))
        finally:
            for job in jobs:
                job.close()

        self._enter(batch_id, BatchPhase.RESPONDING)
        logger.info(
            f"Completed upload batch {batch_id}: "
            f"{response.successful_uploads}/{response.total_files} photos processed successfully"
        )
        return response
