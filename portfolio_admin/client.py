"""
Client for the admin API, with a scheduler for concurrent photo uploads.
"""
import logging
import mimetypes
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

import requests
from requests.exceptions import RequestException
from requests_toolbelt.multipart.encoder import MultipartEncoder, MultipartEncoderMonitor

from .auth import SESSION_COOKIE
from .models import FileProgress, UploadOutcome, UploadStatus

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

ProgressCallback = Callable[[FileProgress], None]


class UploadRequestFailed(Exception):
    """A single file upload ended without a stored photo."""


def _error_message(response: requests.Response) -> str:
    message = f"Upload failed ({response.status_code})"
    try:
        if "application/json" in response.headers.get("content-type", ""):
            data = response.json()
            return data.get("error") or data.get("detail") or message
        return response.text or message
    except ValueError:
        return message


class AdminClient:
    """Thin wrapper around the admin HTTP API."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        """Initialize the client.

        Args:
            base_url: Server root, e.g. http://localhost:6180
            session: Session to reuse; a new one otherwise
            timeout: Per-request timeout in seconds; None leaves uploads unbounded
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def login(self, username: str, password: str) -> None:
        response = self.session.post(self._url("/api/admin/login"),
                                     json={"username": username, "password": password},
                                     timeout=self.timeout)
        if response.status_code != 200:
            raise UploadRequestFailed(_error_message(response))
        if SESSION_COOKIE not in self.session.cookies:
            logger.warning("Login succeeded but no session cookie was set")

    def logout(self) -> None:
        self.session.post(self._url("/api/admin/logout"), timeout=self.timeout)

    def create_album(self, title: str, **fields: Any) -> Dict[str, Any]:
        response = self.session.post(self._url("/api/admin/albums"),
                                     json={"title": title, **fields}, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def storage_stats(self) -> Dict[str, Any]:
        response = self.session.get(self._url("/api/admin/storage/stats"), timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def upload_photo(self, album_id: str, path: Path,
                     on_progress: Optional[ProgressCallback] = None) -> Dict[str, Any]:
        """Upload one file in its own request.

        Reports `uploading` while the body is sent and `processing` once it
        has been fully sent; the caller reports the final state.

        Returns:
            Metadata of the stored photo

        Raises:
            UploadRequestFailed: the server did not store the photo
        """
        path = Path(path)
        emit = on_progress or (lambda progress: None)
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        with open(path, "rb") as fh:
            encoder = MultipartEncoder(fields={"photos": (path.name, fh, mime_type)})
            total = encoder.len
            sent_everything = False

            def on_read(monitor: MultipartEncoderMonitor) -> None:
                nonlocal sent_everything
                if sent_everything:
                    return
                if total and monitor.bytes_read >= total:
                    sent_everything = True
                    emit(FileProgress(path.name, UploadStatus.PROCESSING, 100))
                else:
                    percent = round(monitor.bytes_read / total * 100) if total else None
                    emit(FileProgress(path.name, UploadStatus.UPLOADING, percent))

            monitor = MultipartEncoderMonitor(encoder, on_read)
            try:
                response = self.session.post(
                    self._url(f"/api/admin/albums/{album_id}/photos/upload"),
                    data=monitor,
                    headers={"Content-Type": monitor.content_type},
                    timeout=self.timeout,
                )
            except RequestException as e:
                raise UploadRequestFailed(f"Network error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise UploadRequestFailed(_error_message(response))
        try:
            data = response.json()
        except ValueError as e:
            raise UploadRequestFailed("Failed to parse server response") from e

        if data.get("uploaded"):
            return data["uploaded"][0]
        if data.get("errors"):
            raise UploadRequestFailed(data["errors"][0])
        raise UploadRequestFailed("Unknown error")


class UploadScheduler:
    """Uploads many files, one request each, at most `concurrency` at a time.

    Files are dispatched in the order given. A failure never stops the other
    files. States are keyed by each file's position in the selection, so two
    files with the same name never share one. Error states stay in `states`
    until dismissed; completed files drop out because the returned photo
    replaces them.
    """

    def __init__(self, client: AdminClient, concurrency: int = DEFAULT_CONCURRENCY,
                 on_progress: Optional[ProgressCallback] = None):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.concurrency = concurrency
        self.on_progress = on_progress
        self._states: Dict[int, FileProgress] = {}
        self._lock = threading.Lock()

    @property
    def states(self) -> Dict[int, FileProgress]:
        with self._lock:
            return dict(self._states)

    def _update(self, progress: FileProgress) -> None:
        with self._lock:
            if progress.status is UploadStatus.COMPLETE:
                self._states.pop(progress.key, None)
            else:
                self._states[progress.key] = progress
        if self.on_progress:
            try:
                self.on_progress(progress)
            except Exception as e:
                logger.error(f"Progress callback failed for {progress.filename}: {e}")

    def dismiss(self, key: int) -> None:
        """Forget a failed file's state."""
        with self._lock:
            state = self._states.get(key)
            if state is not None and state.status is UploadStatus.ERROR:
                del self._states[key]

    def _upload_one(self, album_id: str, key: int, path: Path, outcome: UploadOutcome,
                    outcome_lock: threading.Lock) -> None:
        def report(progress: FileProgress) -> None:
            self._update(replace(progress, key=key))

        try:
            photo = self.client.upload_photo(album_id, path, report)
        except Exception as e:
            message = str(e) or "Unknown error"
            logger.error(f"Upload of {path} failed: {message}")
            report(FileProgress(path.name, UploadStatus.ERROR, 0, message))
            # Errors relayed from the server already name the file
            if not message.startswith(f"{path.name}: "):
                message = f"{path.name}: {message}"
            with outcome_lock:
                outcome.errors.append(message)
            return

        report(FileProgress(path.name, UploadStatus.COMPLETE, 100))
        with outcome_lock:
            outcome.uploaded.append(photo)

    def start_upload(self, album_id: str, paths: Sequence[Path]) -> "Future[UploadOutcome]":
        """Begin uploading in the background.

        In-flight requests are never cancelled: they run to completion even if
        the caller stops waiting on the returned future.
        """
        paths = [Path(p) for p in paths]
        outcome = UploadOutcome()
        outcome_lock = threading.Lock()
        done: Future = Future()
        done.set_running_or_notify_cancel()

        for key, path in enumerate(paths):
            self._update(FileProgress(path.name, UploadStatus.UPLOADING, 0, key=key))

        executor = ThreadPoolExecutor(max_workers=self.concurrency,
                                      thread_name_prefix="photo-upload")
        futures = [
            executor.submit(self._upload_one, album_id, key, path, outcome, outcome_lock)
            for key, path in enumerate(paths)
        ]
        executor.shutdown(wait=False)

        remaining = len(futures)
        remaining_lock = threading.Lock()

        def on_file_done(_future: Future) -> None:
            nonlocal remaining
            with remaining_lock:
                remaining -= 1
                finished = remaining == 0
            if finished:
                done.set_result(outcome)

        if not futures:
            done.set_result(outcome)
        for future in futures:
            future.add_done_callback(on_file_done)
        return done

    def upload_files(self, album_id: str, paths: Sequence[Path]) -> UploadOutcome:
        """Upload every file and wait for all of them to finish."""
        outcome = self.start_upload(album_id, paths).result()
        logger.info(f"Uploaded {len(outcome.uploaded)}/{len(paths)} files to album {album_id}")
        return outcome


def upload_photos(client: AdminClient, album_id: str, paths: Sequence[Path],
                  on_progress: Optional[ProgressCallback] = None,
                  concurrency: int = DEFAULT_CONCURRENCY) -> UploadOutcome:
    """Convenience wrapper: upload paths with a fresh scheduler."""
    return UploadScheduler(client, concurrency, on_progress).upload_files(album_id, paths)
