"""
Object store client for backup archives.

Talks to any S3-compatible store through boto3. The default endpoint is the
Google Cloud Storage interoperability API; credentials come from the regular
boto3 credential chain (environment, shared config, instance role).
"""

import logging
import os
from typing import Optional, Dict, List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from .records import BackupIdentity, BackupRecord, sort_records

logger = logging.getLogger(__name__)

GCS_ENDPOINT_URL = 'https://storage.googleapis.com'

FINGERPRINT_METADATA_KEY = 'fingerprint'

# Use multipart upload for files larger than 100MB
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


def client_config(endpoint_url: Optional[str]) -> Optional[BotoConfig]:
    """
    Client options for the given endpoint.

    Non-AWS stores such as the GCS interoperability API reject the default
    flexible checksums (and aws-chunked bodies) sent by recent botocore, so
    checksums are only sent when an operation requires them.
    """
    if not endpoint_url or endpoint_url.rstrip('/').endswith('.amazonaws.com'):
        return None
    return BotoConfig(
        request_checksum_calculation='when_required',
        response_checksum_validation='when_required'
    )


class ObjectStorage:
    """
    Handler for backup points in an object store bucket.

    Records are stored under the key layout described in
    gcsbackup.backup.records, with the content fingerprint kept in the
    object's user metadata.
    """

    def __init__(self, bucket_name: str, endpoint_url: Optional[str] = GCS_ENDPOINT_URL,
                 region: Optional[str] = None, client=None):
        """
        Initialize object store handler.

        Args:
            bucket_name: Bucket holding the backups
            endpoint_url: S3 API endpoint (None for AWS S3)
            region: Region name passed to the client
            client: Preconfigured boto3 S3 client (mostly for tests)
        """
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region = region

        if client is not None:
            self.s3_client = client
            return

        try:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=endpoint_url,
                region_name=region,
                config=client_config(endpoint_url)
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize object store client: {e}")

    def ensure_bucket(self) -> bool:
        """
        Create the bucket if it does not exist.

        Returns:
            True if the bucket was created, False if it already existed

        Raises:
            StorageError: If the bucket cannot be checked or created
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return False
        except ClientError as e:
            error_code = _error_code(e)
            if error_code not in ('404', 'NoSuchBucket', 'NotFound'):
                raise StorageError(f"Bucket check failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Bucket check failed: {e}")

        logger.info(f"Bucket '{self.bucket_name}' was not found. Creating it..")
        try:
            kwargs = {'Bucket': self.bucket_name}
            if self.region and self.region != 'us-east-1':
                kwargs['CreateBucketConfiguration'] = {'LocationConstraint': self.region}
            self.s3_client.create_bucket(**kwargs)
            return True
        except ClientError as e:
            raise StorageError(f"Bucket creation failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Bucket creation failed: {e}")

    def list_objects(self, prefix: str) -> List[Dict]:
        """
        List objects with given prefix.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"List failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"List failed: {e}")

    def list_records(self, identity: BackupIdentity) -> List[BackupRecord]:
        """
        List backup points of an identity, oldest first.

        Keys under the prefix that are not backup points of this exact tag
        are skipped.

        Raises:
            StorageError: If listing fails
        """
        records = []
        for obj in self.list_objects(identity.listing_prefix):
            timestamp = identity.parse_key(obj['Key'])
            if timestamp is None:
                logger.debug(f"Ignoring unrelated object: {obj['Key']}")
                continue
            records.append(BackupRecord.create(identity, timestamp))
        return sort_records(records)

    def get_fingerprint(self, storage_key: str) -> str:
        """
        Read the stored content fingerprint of a backup point.

        Raises:
            StorageError: If the object is missing or carries no fingerprint
        """
        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=storage_key)
        except ClientError as e:
            raise StorageError(f"Metadata lookup failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Metadata lookup failed: {e}")

        fingerprint = response.get('Metadata', {}).get(FINGERPRINT_METADATA_KEY)
        if not fingerprint:
            raise StorageError(f"No fingerprint stored for {storage_key}")
        return fingerprint

    def upload(self, local_path: str, record: BackupRecord) -> str:
        """
        Upload an archive as a backup point.

        Args:
            local_path: Path to local archive file
            record: Record describing the key and fingerprint

        Returns:
            Storage key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        metadata = {}
        if record.content_fingerprint:
            metadata[FINGERPRINT_METADATA_KEY] = record.content_fingerprint

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, record.storage_key, metadata)
            else:
                self._simple_upload(local_path, record.storage_key, metadata)

            return record.storage_key

        except ClientError as e:
            raise StorageError(f"Upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Upload failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read {local_path}: {e}")

    def _simple_upload(self, local_path: str, storage_key: str, metadata: Dict[str, str]):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=storage_key,
                Body=f,
                Metadata=metadata
            )

    def _multipart_upload(self, local_path: str, storage_key: str, metadata: Dict[str, str]):
        """
        Upload large file in chunks, aborting the upload on any error.

        Args:
            local_path: Path to local file
            storage_key: Object key
            metadata: User metadata for the object
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=storage_key,
            Metadata=metadata
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=storage_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=storage_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=storage_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def delete(self, storage_key: str):
        """
        Delete an object.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=storage_key
            )
        except ClientError as e:
            raise StorageError(f"Delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Delete failed: {e}")

    def url_for(self, storage_key: str) -> str:
        """Human readable location of a key, used in log lines."""
        return f"{self.bucket_name}/{storage_key}"
