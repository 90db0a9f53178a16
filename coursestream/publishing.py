# coursestream/publishing.py
"""Moves a finished job's output directory behind the CDN base URL."""
import logging
import os
import shutil

from .config import Settings
from .s3_service import S3Service
from .utils import remove_path

logger = logging.getLogger(__name__)


class LocalPublisher:
    """Copies outputs under public_dir/videos/<asset_id>, served at /media"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def asset_dir(self, asset_id: str) -> str:
        return os.path.join(self.settings.public_dir, "videos", asset_id)

    def publish(self, asset_id: str, output_dir: str) -> str:
        target = self.asset_dir(asset_id)
        remove_path(target)
        shutil.copytree(output_dir, target)
        logger.info("✅ Published %s to %s", asset_id, target)
        return self.settings.asset_base_url(asset_id)

    def remove(self, asset_id: str):
        remove_path(self.asset_dir(asset_id))


class S3Publisher:
    """Uploads outputs under the transcoded prefix of the asset bucket"""

    def __init__(self, settings: Settings, s3_service: S3Service):
        self.settings = settings
        self.s3_service = s3_service

    def publish(self, asset_id: str, output_dir: str) -> str:
        count = 0
        for root, _, files in os.walk(output_dir):
            for name in sorted(files):
                path = os.path.join(root, name)
                relative = os.path.relpath(path, output_dir).replace(os.sep, "/")
                key = self.settings.get_transcoded_key(asset_id, relative)
                with open(path, "rb") as f:
                    self.s3_service.upload_file(f, key)
                count += 1
        logger.info("✅ Uploaded %d files for %s to s3://%s", count, asset_id, self.s3_service.bucket_name)
        return self.settings.asset_base_url(asset_id)

    def remove(self, asset_id: str):
        self.s3_service.delete_prefix(self.settings.get_transcoded_key(asset_id, ""))


def build_publisher(settings: Settings, s3_service: S3Service = None):
    if settings.storage_backend == "s3":
        if s3_service is None:
            s3_service = S3Service(settings.s3_bucket, region=settings.aws_region)
        return S3Publisher(settings, s3_service)
    return LocalPublisher(settings)
