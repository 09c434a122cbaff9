"""
Module for selecting image files to upload from local folders.
"""
import logging
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

# Keeps an accidental selection of a whole photo library from becoming one batch
MAX_UPLOAD_BATCH_SIZE = 1000


class FileScanner:
    """Finds uploadable images in folders."""

    def __init__(self, extensions: Iterable[str] = IMAGE_EXTENSIONS):
        self.extensions = {ext.lower() for ext in extensions}

    def is_image(self, path: Path) -> bool:
        return path.is_file() and path.suffix.lower() in self.extensions

    def scan_folder(self, folder: Path, pattern: str = "*") -> List[Path]:
        """Scan a folder for images matching the pattern.

        Args:
            folder: Path to the folder to scan
            pattern: Glob pattern to match files against

        Returns:
            Matching image paths, sorted by name
        """
        if not folder.exists():
            logger.error(f"Folder does not exist: {folder}")
            return []

        try:
            return sorted(p for p in folder.glob(pattern) if self.is_image(p))
        except OSError as e:
            logger.error(f"Error scanning folder {folder}: {e}")
            return []

    def collect(self, paths: Iterable[Path], pattern: str = "*") -> List[Path]:
        """Expand a mix of files and folders into a list of images.

        Files named explicitly are kept in the given order, folders are
        expanded in place. Non-image files are skipped with a warning.

        Raises:
            ValueError: if more than MAX_UPLOAD_BATCH_SIZE images are selected
        """
        selected: List[Path] = []
        for path in map(Path, paths):
            if path.is_dir():
                selected.extend(self.scan_folder(path, pattern))
            elif self.is_image(path):
                selected.append(path)
            else:
                logger.warning(f"Skipping {path}: not an image file")

        if len(selected) > MAX_UPLOAD_BATCH_SIZE:
            raise ValueError(
                f"{len(selected)} files selected; at most {MAX_UPLOAD_BATCH_SIZE} per upload"
            )
        return selected
