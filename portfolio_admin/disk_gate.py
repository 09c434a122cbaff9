"""
Module deciding whether an upload fits on disk, and reporting disk usage.

The admission check is a pure function over a stats snapshot. The snapshot
can go stale if another request writes between the check and the transcode;
that race is accepted rather than guarded.
"""
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .models import AdmissionDecision, DiskSpacePolicy, FilesystemStats

logger = logging.getLogger(__name__)

VARIANT_KINDS = ("originals", "display", "thumbnails")


def read_filesystem_stats(path: Path) -> FilesystemStats:
    """Take a fresh snapshot of the filesystem holding path."""
    usage = shutil.disk_usage(path)
    # Space reserved for root is not available to us, so count it as used
    return FilesystemStats(total_bytes=usage.total, used_bytes=usage.total - usage.free)


def admit(candidate_bytes: int, policy: DiskSpacePolicy,
          stats: FilesystemStats) -> AdmissionDecision:
    """Check whether candidate_bytes more data can be written.

    Args:
        candidate_bytes: Total size of the incoming upload
        policy: Limits to apply
        stats: Filesystem snapshot to check against

    Returns:
        AdmissionDecision; rejected decisions carry a reason with the current
        usage and the threshold
    """
    if candidate_bytes < 0:
        raise ValueError("candidate_bytes cannot be negative")

    threshold = policy.effective_threshold
    current = stats.usage_percent

    if stats.total_bytes <= 0:
        return AdmissionDecision(
            admitted=False,
            threshold_percent=threshold,
            current_percent=current,
            projected_percent=100.0,
            reason="Insufficient disk space: filesystem reports no capacity",
        )

    projected = (stats.used_bytes + candidate_bytes) / stats.total_bytes * 100
    remaining = stats.total_bytes - stats.used_bytes - candidate_bytes
    reserve = stats.total_bytes * policy.reserved_percent / 100

    reason = None
    if projected > threshold:
        reason = (
            f"upload would raise disk usage from {current:.1f}% to {projected:.1f}%, "
            f"exceeding the {threshold}% limit"
        )
    elif remaining < policy.min_free_bytes:
        reason = (
            f"upload would leave {_format_bytes(remaining)} free, below the "
            f"{_format_bytes(policy.min_free_bytes)} minimum "
            f"(disk usage {current:.1f}%, limit {threshold}%)"
        )
    elif remaining < reserve:
        reason = (
            f"upload would cut into the {policy.reserved_percent}% reserved space "
            f"(disk usage {current:.1f}%, limit {threshold}%)"
        )

    return AdmissionDecision(
        admitted=reason is None,
        threshold_percent=threshold,
        current_percent=current,
        projected_percent=projected,
        reason=f"Insufficient disk space: {reason}" if reason else None,
    )


def _format_bytes(size: float) -> str:
    size = max(size, 0)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def directory_size(path: Path) -> int:
    """Total size of the files below path; a missing directory counts as empty."""
    total = 0
    if not path.exists():
        return 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).stat().st_size
            except FileNotFoundError:
                continue
    return total


@dataclass
class StorageReport:
    total_bytes: int
    used_bytes: int
    available_bytes: int
    usage_percent: float
    reserved_bytes: int
    usable_bytes: int
    reserved_percent: int
    threshold_percent: int
    breakdown: Dict[str, int] = field(default_factory=dict)
    warning: Optional[Dict[str, str]] = None


def collect_storage_report(upload_dir: Path, policy: DiskSpacePolicy,
                           stats: FilesystemStats) -> StorageReport:
    """Summarize disk usage for the admin dashboard."""
    breakdown = {
        f"{kind}_bytes": directory_size(Path(upload_dir) / kind) for kind in VARIANT_KINDS
    }
    reserved = int(stats.total_bytes * policy.reserved_percent / 100)
    usage = stats.usage_percent
    threshold = policy.effective_threshold

    warning = None
    if usage >= threshold:
        warning = {
            "level": "critical",
            "message": f"Disk usage is at {usage:.1f}%, exceeding the limit of {threshold}%",
        }
    elif usage >= threshold - 10:
        warning = {
            "level": "warning",
            "message": f"Disk usage is at {usage:.1f}%, approaching the limit of {threshold}%",
        }

    return StorageReport(
        total_bytes=stats.total_bytes,
        used_bytes=stats.used_bytes,
        available_bytes=stats.available_bytes,
        usage_percent=round(usage, 2),
        reserved_bytes=reserved,
        usable_bytes=max(stats.available_bytes - reserved, 0),
        reserved_percent=policy.reserved_percent,
        threshold_percent=threshold,
        breakdown=breakdown,
        warning=warning,
    )
