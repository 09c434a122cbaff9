"""
Module for processing upload jobs with bounded concurrency.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from .models import Photo, UploadJob, UploadResult

logger = logging.getLogger(__name__)

Transcode = Callable[[UploadJob], Photo]
Discard = Callable[[Photo], None]


class TranscodeLimiter:
    """Caps how many transcodes run at once across every request in the process.

    Peak memory is roughly the slot count times the cost of one decoded image,
    so this is the knob that bounds it.
    """

    def __init__(self, max_concurrent: int = 3):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._active = 0

    def acquire(self) -> None:
        self._semaphore.acquire()
        with self._lock:
            self._active += 1

    def release(self) -> None:
        with self._lock:
            self._active -= 1
        self._semaphore.release()

    @property
    def active(self) -> int:
        with self._lock:
            return self._active


class _TranscodeAttempt:
    """Hand-off between a pool worker and the thread running its transcode."""

    def __init__(self):
        self.photo: Optional[Photo] = None
        self.error: Optional[BaseException] = None
        self.finished = threading.Event()
        self._abandoned = False
        self._lock = threading.Lock()

    def complete(self, photo: Optional[Photo] = None,
                 error: Optional[BaseException] = None) -> bool:
        """Record the outcome; False if the worker already gave up on it."""
        with self._lock:
            self.photo, self.error = photo, error
            self.finished.set()
            return not self._abandoned

    def abandon(self) -> bool:
        """Give up on the attempt; False if it finished in the meantime."""
        with self._lock:
            if self.finished.is_set():
                return False
            self._abandoned = True
            return True


class UploadWorkerPool:
    """Runs a transcode over a batch of jobs with a fixed number of workers.

    A failing job only produces a failed result for itself; every job yields
    exactly one result and process() returns once all of them are in.
    """

    def __init__(self, limiter: Optional[TranscodeLimiter] = None, max_workers: int = 3,
                 job_timeout: Optional[float] = None):
        """Initialize the pool.

        Args:
            limiter: Shared concurrency cap; a private one sized max_workers otherwise
            max_workers: Maximum number of worker threads per batch
            job_timeout: Seconds a single transcode may run before its job is
                marked failed; None waits indefinitely
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.limiter = limiter or TranscodeLimiter(max_workers)
        self.max_workers = max_workers
        self.job_timeout = job_timeout

    def _run(self, job: UploadJob, transcode: Transcode,
             discard: Optional[Discard]) -> UploadResult:
        self.limiter.acquire()
        if self.job_timeout is None:
            try:
                return UploadResult.succeeded(job, transcode(job))
            except Exception as e:
                logger.error(f"Error processing {job.filename}: {e}")
                return UploadResult.failed(job, str(e))
            finally:
                self.limiter.release()

        attempt = _TranscodeAttempt()

        def runner() -> None:
            # The slot stays taken until the transcode really ends, even if
            # the worker stopped waiting for it
            try:
                photo = transcode(job)
            except Exception as e:
                attempt.complete(error=e)
            else:
                if not attempt.complete(photo=photo) and discard is not None:
                    logger.warning(f"Discarding late result for timed out job {job.filename}")
                    try:
                        discard(photo)
                    except Exception as e:
                        logger.error(f"Could not discard photo {photo.id}: {e}")
            finally:
                self.limiter.release()

        try:
            threading.Thread(target=runner, name=f"transcode-{job.job_id}", daemon=True).start()
        except RuntimeError as e:
            self.limiter.release()
            logger.error(f"Could not start transcode of {job.filename}: {e}")
            return UploadResult.failed(job, f"could not start processing: {e}")

        if not attempt.finished.wait(self.job_timeout) and attempt.abandon():
            logger.error(f"Processing {job.filename} timed out after {self.job_timeout:g}s")
            return UploadResult.failed(job, f"processing timed out after {self.job_timeout:g}s")

        if attempt.error is not None:
            logger.error(f"Error processing {job.filename}: {attempt.error}")
            return UploadResult.failed(job, str(attempt.error))
        return UploadResult.succeeded(job, attempt.photo)

    def process(self, jobs: List[UploadJob], transcode: Transcode,
                discard: Optional[Discard] = None) -> List[UploadResult]:
        """Process jobs concurrently.

        Args:
            jobs: Jobs to process
            transcode: Function producing a Photo from a job; raises on failure
            discard: Cleans up a Photo whose job already timed out

        Returns:
            One UploadResult per job, in completion order
        """
        if not jobs:
            return []

        results = []
        workers = min(self.max_workers, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upload-worker") as executor:
            future_to_job = {
                executor.submit(self._run, job, transcode, discard): job
                for job in jobs
            }

            for future in as_completed(future_to_job):
                job = future_to_job[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Unexpected error processing {job.filename}: {e}")
                    results.append(UploadResult.failed(job, str(e)))

        return results
