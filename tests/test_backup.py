"""
Tests for the S3 variant backup.
"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from tenacity import wait_none

from portfolio_admin.backup import S3Backup, is_retryable_error
from portfolio_admin.exceptions import PersistenceFailed


def client_error(code: str, message: str = "boom") -> ClientError:
    return ClientError({'Error': {'Code': code, 'Message': message}}, 'upload_file')


@pytest.fixture
def variants(tmp_path):
    files = {}
    for kind, name in (("originals", "p1.jpg"), ("display", "p1.webp"),
                       ("thumbnails", "p1.webp")):
        path = tmp_path / kind / name
        path.parent.mkdir()
        path.write_bytes(f"{kind} bytes".encode())
        files[kind] = path
    return files


def test_is_retryable_error():
    assert is_retryable_error(client_error('SlowDown'))
    assert is_retryable_error(client_error('RequestTimeout'))
    assert is_retryable_error(EndpointConnectionError(endpoint_url="https://s3"))
    assert not is_retryable_error(client_error('AccessDenied'))
    assert not is_retryable_error(ValueError("nope"))


def test_backup_variants_to_bucket(mock_aws, variants):
    backup = S3Backup('test-bucket', prefix='portfolio/', s3_client=mock_aws)

    keys = backup.backup_variants('p1', variants)

    assert keys == [
        'portfolio/originals/p1.jpg',
        'portfolio/display/p1.webp',
        'portfolio/thumbnails/p1.webp',
    ]
    head = mock_aws.head_object(Bucket='test-bucket', Key='portfolio/display/p1.webp')
    assert head['Metadata'] == {'photo-id': 'p1'}
    body = mock_aws.get_object(Bucket='test-bucket', Key='portfolio/originals/p1.jpg')['Body']
    assert body.read() == b"originals bytes"


def test_retries_transient_errors(variants):
    mock_client = MagicMock()
    mock_client.upload_file.side_effect = [client_error('ServiceUnavailable'),
                                           client_error('SlowDown'), None, None, None]
    backup = S3Backup('test-bucket', s3_client=mock_client, wait=wait_none())

    keys = backup.backup_variants('p1', variants)

    assert len(keys) == 3
    assert mock_client.upload_file.call_count == 5


def test_gives_up_after_attempts(variants):
    mock_client = MagicMock()
    mock_client.upload_file.side_effect = client_error('ServiceUnavailable', 'Service is down')
    backup = S3Backup('test-bucket', s3_client=mock_client, attempts=3, wait=wait_none())

    with pytest.raises(PersistenceFailed, match="Service is down"):
        backup.backup_variants('p1', variants)

    assert mock_client.upload_file.call_count == 3


def test_permanent_error_not_retried(variants):
    mock_client = MagicMock()
    mock_client.upload_file.side_effect = client_error('AccessDenied')
    backup = S3Backup('test-bucket', s3_client=mock_client, wait=wait_none())

    with pytest.raises(PersistenceFailed):
        backup.backup_variants('p1', variants)

    assert mock_client.upload_file.call_count == 1


def test_requires_bucket():
    with pytest.raises(ValueError):
        S3Backup('', s3_client=MagicMock())
