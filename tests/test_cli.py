"""
Tests for the command-line interface.
"""
import argparse
import json
from unittest.mock import MagicMock, patch

import pytest

from portfolio_admin.auth import check_password
from portfolio_admin.cli import handle_hash_password, handle_upload, load_config
from portfolio_admin.client import UploadRequestFailed


def upload_args(paths, **overrides):
    values = dict(
        album_id="album-1",
        paths=[str(p) for p in paths],
        pattern="*",
        concurrency=3,
        url="http://test",
        username="admin",
        config=None,
        verbose=False,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.fixture
def shoot(tmp_path):
    folder = tmp_path / "shoot"
    folder.mkdir()
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        (folder / name).write_bytes(b"\xff\xd8\xff")
    return folder


@pytest.fixture
def mock_client(monkeypatch):
    monkeypatch.setenv("PORTFOLIO_ADMIN_PASSWORD", "pw")
    client = MagicMock()
    with patch("portfolio_admin.cli.AdminClient", return_value=client):
        yield client


def test_upload_folder(shoot, mock_client):
    mock_client.upload_photo.side_effect = lambda album_id, path, on_progress: {"id": path.name}

    handle_upload(upload_args([shoot]))

    mock_client.login.assert_called_once_with("admin", "pw")
    uploaded = sorted(call.args[1].name for call in mock_client.upload_photo.call_args_list)
    assert uploaded == ["a.jpg", "b.jpg", "c.jpg"]


def test_upload_exits_nonzero_on_errors(shoot, mock_client):
    def upload(album_id, path, on_progress):
        if path.name == "b.jpg":
            raise UploadRequestFailed("b.jpg: failed to decode image")
        return {"id": path.name}

    mock_client.upload_photo.side_effect = upload

    with pytest.raises(SystemExit) as excinfo:
        handle_upload(upload_args([shoot]))

    assert excinfo.value.code == 1


def test_upload_same_names_from_two_folders(tmp_path, mock_client):
    for folder in ("a", "b"):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "IMG_0001.jpg").write_bytes(b"\xff\xd8\xff")
    seen = []

    def upload(album_id, path, on_progress):
        seen.append(path.parent.name)
        if path.parent.name == "a":
            raise UploadRequestFailed("IMG_0001.jpg: failed to decode image")
        return {"id": "ok"}

    mock_client.upload_photo.side_effect = upload

    with pytest.raises(SystemExit):
        handle_upload(upload_args([tmp_path / "a", tmp_path / "b"], concurrency=1))

    assert seen == ["a", "b"]


def test_upload_nothing_selected(tmp_path, mock_client):
    (tmp_path / "notes.txt").write_text("hi")

    handle_upload(upload_args([tmp_path / "notes.txt"]))

    mock_client.login.assert_not_called()


def test_hash_password(capsys):
    handle_hash_password(argparse.Namespace(password="s3cret"))

    printed = capsys.readouterr().out.strip()
    assert check_password("s3cret", printed)


def test_load_config(tmp_path):
    config_file = tmp_path / "client.json"
    config_file.write_text(json.dumps({"url": "http://photos.local", "username": "owner"}))

    assert load_config(config_file)["username"] == "owner"
    assert load_config(None) == {}
    assert load_config(tmp_path / "missing.json") == {}
