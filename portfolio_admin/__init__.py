from .coordinator import UploadBatchCoordinator
from .disk_gate import admit
from .models import UploadJob, UploadResult, BatchResponse, DiskSpacePolicy, FilesystemStats
from .transcoder import ImageTranscoder
from .worker_pool import UploadWorkerPool, TranscodeLimiter
from .client import AdminClient, UploadScheduler

__version__ = "0.1.0"

__all__ = [
    "UploadBatchCoordinator",
    "admit",
    "UploadJob",
    "UploadResult",
    "BatchResponse",
    "DiskSpacePolicy",
    "FilesystemStats",
    "ImageTranscoder",
    "UploadWorkerPool",
    "TranscodeLimiter",
    "AdminClient",
    "UploadScheduler",
]
