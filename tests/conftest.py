"""
Test fixtures for the portfolio admin backend.
"""
import io
import threading
from pathlib import Path

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws as moto_mock_aws
from PIL import ExifTags, Image

from portfolio_admin.albums import AlbumService
from portfolio_admin.api import create_app
from portfolio_admin.config import Settings
from portfolio_admin.models import FilesystemStats, UploadJob
from portfolio_admin.site_config import SiteConfigService
from portfolio_admin.store import JsonFileStore
from portfolio_admin.transcoder import ImageTranscoder

GB = 1024 ** 3

ADMIN_PASSWORD = "correct horse battery staple"


def make_image_bytes(fmt: str = "JPEG", size=(1200, 800), color=(200, 80, 40),
                     camera=None) -> bytes:
    """Render a solid-colour test image in the given format."""
    image = Image.new("RGB", size, color)
    buffer = io.BytesIO()
    kwargs = {}
    if camera:
        exif = Image.Exif()
        exif[ExifTags.Base.Make] = camera[0]
        exif[ExifTags.Base.Model] = camera[1]
        kwargs["exif"] = exif
    image.save(buffer, fmt, **kwargs)
    return buffer.getvalue()


def make_job(index: int, filename: str, content: bytes) -> UploadJob:
    return UploadJob(index=index, filename=filename, stream=io.BytesIO(content),
                     declared_size=len(content))


@pytest.fixture
def jpeg_bytes():
    """A small JPEG carrying camera make and model."""
    return make_image_bytes("JPEG", camera=("Fujifilm", "X-T5"))


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG", size=(640, 480))


@pytest.fixture
def corrupt_bytes():
    """JPEG magic bytes followed by garbage."""
    return b"\xff\xd8\xff\xe0" + b"\x00garbage" * 64


@pytest.fixture
def data_dir(tmp_path):
    """Create a temporary directory for JSON data files."""
    directory = tmp_path / "data"
    directory.mkdir()
    return directory


@pytest.fixture
def upload_dir(tmp_path):
    """Create a temporary directory for photo variants."""
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def store(data_dir):
    return JsonFileStore(data_dir)


@pytest.fixture
def album_service(store):
    return AlbumService(store)


@pytest.fixture
def site_config(store):
    return SiteConfigService(store)


@pytest.fixture
def album(album_service):
    """An empty album to upload into."""
    return album_service.create("Iceland 2024")


@pytest.fixture
def transcoder(upload_dir):
    return ImageTranscoder(upload_dir)


class DiskState:
    """Mutable filesystem snapshot that tests can fill up."""

    def __init__(self, total_bytes: int = 100 * GB, used_bytes: int = 10 * GB):
        self.total_bytes = total_bytes
        self.used_bytes = used_bytes
        self._lock = threading.Lock()

    def __call__(self) -> FilesystemStats:
        with self._lock:
            return FilesystemStats(total_bytes=self.total_bytes, used_bytes=self.used_bytes)


@pytest.fixture
def disk():
    return DiskState()


@pytest.fixture
def settings(data_dir, upload_dir):
    return Settings(
        DATA_DIR=str(data_dir),
        UPLOAD_DIR=str(upload_dir),
        ADMIN_USERNAME="admin",
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        BACKUP_S3_BUCKET=None,
    )


@pytest.fixture
def app(settings, disk):
    return create_app(settings, stats_provider=disk)


@pytest.fixture
def api_client(app):
    """An unauthenticated test client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin_client(api_client):
    """A test client holding an admin session cookie."""
    response = api_client.post("/api/admin/login",
                               json={"username": "admin", "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return api_client


@pytest.fixture
def mock_aws():
    """Mock S3 client using moto."""
    with moto_mock_aws():
        s3 = boto3.client('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


def variant_files(upload_dir: Path, kind: str):
    return sorted(p.name for p in (upload_dir / kind).iterdir())
