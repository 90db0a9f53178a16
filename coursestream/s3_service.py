# coursestream/s3_service.py
import logging
import mimetypes
from typing import Any, BinaryIO, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from .errors import StorageError

logger = logging.getLogger(__name__)

# mimetypes does not know the HLS types on every platform
CONTENT_TYPES = {
    '.m3u8': 'application/vnd.apple.mpegurl',
    '.ts': 'video/mp2t',
    '.m4a': 'audio/mp4',
    '.jpg': 'image/jpeg',
}


def guess_content_type(key: str) -> str:
    for suffix, content_type in CONTENT_TYPES.items():
        if key.endswith(suffix):
            return content_type
    content_type, _ = mimetypes.guess_type(key)
    return content_type or 'application/octet-stream'


class S3Service:
    """Service for AWS S3 operations"""

    def __init__(self, bucket_name: str, region: str = 'ap-southeast-2', s3_client=None):
        self.bucket_name = bucket_name
        self.region = region
        try:
            self.s3_client = s3_client or boto3.client('s3', region_name=region)
        except NoCredentialsError as e:
            raise StorageError("AWS credentials not found") from e

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    def upload_file(self, file_obj: BinaryIO, key: str, content_type: Optional[str] = None) -> Dict[str, Any]:
        """Upload file to S3"""
        try:
            extra_args = {
                'ContentType': content_type or guess_content_type(key),
                'ServerSideEncryption': 'AES256'
            }
            self.s3_client.upload_fileobj(
                file_obj,
                self.bucket_name,
                key,
                ExtraArgs=extra_args
            )
            return {
                'success': True,
                'key': key,
                'url': self.object_url(key),
                'bucket': self.bucket_name
            }
        except ClientError as e:
            logger.error("❌ Error uploading %s: %s", key, e)
            raise StorageError(f"Failed to upload file: {str(e)}") from e

    def list_files(self, prefix: str = "") -> List[Dict[str, Any]]:
        """List every object under a prefix"""
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            files = []
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                files.extend(page.get('Contents', []))
            return files
        except ClientError as e:
            logger.error("❌ Error listing %s: %s", prefix, e)
            raise StorageError(f"Failed to list files: {str(e)}") from e

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a prefix, returns the number removed"""
        keys = [obj['Key'] for obj in self.list_files(prefix)]
        deleted = 0
        # delete_objects takes at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            try:
                self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={'Objects': [{'Key': k} for k in batch], 'Quiet': True}
                )
            except ClientError as e:
                logger.error("❌ Error deleting under %s: %s", prefix, e)
                raise StorageError(f"Failed to delete files: {str(e)}") from e
            deleted += len(batch)
        return deleted
