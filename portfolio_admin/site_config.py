"""
Module for the site configuration document and its storage policy.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .models import (
    DiskSpacePolicy,
    MB,
    MIN_DISK_USAGE_PERCENT,
    MAX_DISK_USAGE_PERCENT,
    DEFAULT_DISK_USAGE_PERCENT,
    DEFAULT_MAX_IMAGE_SIZE_MB,
)
from .store import JsonFileStore

logger = logging.getLogger(__name__)

SITE_CONFIG_FILE = "site_config.json"

DEFAULT_SITE_CONFIG: Dict[str, Any] = {
    "version": "1.0.0",
    "site": {
        "title": "My Photography Portfolio",
        "language": "en",
        "timezone": "America/Los_Angeles",
    },
    "owner": {},
    "social": {},
    "branding": {
        "primary_color": "#000000",
        "secondary_color": "#666666",
        "accent_color": "#ff6b6b",
        "theme": {"mode": "system"},
    },
    "portfolio": {
        "show_exif_data": True,
        "enable_lightbox": True,
    },
    "navigation": {
        "show_home": True,
        "show_albums": True,
        "show_about": True,
        "show_contact": True,
    },
    "features": {},
    "storage": {
        "max_disk_usage_percent": DEFAULT_DISK_USAGE_PERCENT,
        "max_image_size_mb": DEFAULT_MAX_IMAGE_SIZE_MB,
    },
}


def clamp_disk_usage_percent(value: Optional[Any]) -> int:
    """Bring a configured max disk usage into the allowed range.

    Missing or zero means the default.
    """
    try:
        percent = int(value) if value is not None else 0
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric max_disk_usage_percent {value!r}")
        percent = 0

    if percent == 0:
        return DEFAULT_DISK_USAGE_PERCENT

    clamped = min(max(percent, MIN_DISK_USAGE_PERCENT), MAX_DISK_USAGE_PERCENT)
    if clamped != percent:
        logger.warning(f"max_disk_usage_percent {percent} clamped to {clamped}")
    return clamped


def normalize_image_size_mb(value: Optional[Any]) -> int:
    try:
        size_mb = int(value) if value is not None else 0
    except (TypeError, ValueError):
        size_mb = 0
    return size_mb if size_mb > 0 else DEFAULT_MAX_IMAGE_SIZE_MB


def normalize_storage(storage: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    storage = dict(storage or {})
    storage["max_disk_usage_percent"] = clamp_disk_usage_percent(
        storage.get("max_disk_usage_percent"))
    storage["max_image_size_mb"] = normalize_image_size_mb(storage.get("max_image_size_mb"))
    return storage


class SiteConfigService:
    """Reads and updates site_config.json.

    Nothing is cached: each call reads the file again, so a policy change is
    picked up by the very next upload.
    """

    def __init__(self, store: JsonFileStore):
        self.store = store

    def get(self) -> Dict[str, Any]:
        config = self.store.read_json(SITE_CONFIG_FILE)
        if config is None:
            config = copy.deepcopy(DEFAULT_SITE_CONFIG)
            config["last_updated"] = datetime.now(timezone.utc).isoformat()
        config["storage"] = normalize_storage(config.get("storage"))
        return config

    def update(self, config: Dict[str, Any]) -> Dict[str, Any]:
        config = dict(config)
        config["storage"] = normalize_storage(config.get("storage"))
        config["last_updated"] = datetime.now(timezone.utc).isoformat()
        self.store.write_json(SITE_CONFIG_FILE, config)
        logger.info("Site configuration updated")
        return config

    def storage_policy(self) -> DiskSpacePolicy:
        storage = self.get()["storage"]
        return DiskSpacePolicy(max_disk_usage_percent=storage["max_disk_usage_percent"])

    def max_image_size_mb(self) -> int:
        return self.get()["storage"]["max_image_size_mb"]

    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb() * MB

    def set_main_portfolio_album(self, album_id: str) -> Dict[str, Any]:
        """Choose the album shown on the portfolio home page."""
        with self.store.locked(SITE_CONFIG_FILE):
            config = self.get()
            config.setdefault("portfolio", {})["main_album_id"] = album_id
            return self.update(config)
