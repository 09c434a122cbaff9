"""
Module for copying generated image variants to S3 with retry logic.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_log,
    after_log,
)

from .exceptions import PersistenceFailed

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_CODES = {
    'RequestTimeout',
    'RequestTimeoutException',
    'PriorRequestNotComplete',
    'ConnectionError',
    'ThrottlingException',
    'ThrottledException',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'InternalError',
    '5XX',
}


def is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry.

    Args:
        exception: The exception to check

    Returns:
        True if the error is retryable, False otherwise
    """
    if isinstance(exception, ClientError):
        return exception.response.get('Error', {}).get('Code') in RETRYABLE_ERROR_CODES
    return isinstance(exception, BotoCoreError)


class S3Backup:
    """Mirrors photo variants into an S3 bucket."""

    def __init__(self, bucket: str, prefix: str = "", s3_client=None,
                 attempts: int = 3, wait=None):
        """Initialize the backup target.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix under which variants are stored
            s3_client: Preconfigured client; a default boto3 client otherwise
            attempts: Attempts per object before giving up
            wait: tenacity wait strategy between attempts
        """
        if not bucket:
            raise ValueError("bucket cannot be empty")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.s3_client = s3_client or boto3.client('s3')
        self._retrying = Retrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(attempts),
            wait=wait if wait is not None else wait_exponential(multiplier=1, min=4, max=10),
            before=before_log(logger, logging.DEBUG),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )

    def key_for(self, kind: str, file_path: Path) -> str:
        parts = [self.prefix, kind, file_path.name] if self.prefix else [kind, file_path.name]
        return "/".join(parts)

    def _put_object(self, file_path: Path, key: str, metadata: Optional[Dict[str, str]]) -> None:
        extra_args = {'Metadata': metadata} if metadata else {}
        self.s3_client.upload_file(str(file_path), self.bucket, key, ExtraArgs=extra_args)

    def backup_variants(self, photo_id: str, variants: Dict[str, Path]) -> List[str]:
        """Copy every variant of a photo to the bucket.

        Args:
            photo_id: Generated photo identifier, attached as object metadata
            variants: Mapping of variant kind to local file

        Returns:
            Keys written

        Raises:
            PersistenceFailed: if any variant could not be stored
        """
        keys = []
        for kind, file_path in variants.items():
            key = self.key_for(kind, file_path)
            try:
                self._retrying.copy()(self._put_object, file_path, key, {'photo-id': photo_id})
            except (ClientError, BotoCoreError, OSError) as e:
                logger.error(f"Error backing up {file_path} to s3://{self.bucket}/{key}: {e}")
                raise PersistenceFailed(f"backup of {kind} variant failed: {e}") from e
            keys.append(key)

        logger.debug(f"Backed up {len(keys)} variants of photo {photo_id} to {self.bucket}")
        return keys
