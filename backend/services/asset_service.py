"""Asset storage: S3 when AWS credentials are set, a local uploads directory otherwise.

Callers hand over a path to a temporary file and get back a public URL. The
temporary file is removed after every attempt.
"""
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from core.config import settings
from core.errors import UpstreamAssetError

logger = logging.getLogger(__name__)


class AssetStore:
    def __init__(
        self,
        uploads_dir: Optional[str] = None,
        public_base_url: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> None:
        self.uploads_dir = Path(uploads_dir or settings.LOCAL_UPLOADS_DIR)
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.bucket = settings.AWS_S3_BUCKET if bucket is None else bucket
        self._client = None

    @property
    def is_local(self) -> bool:
        return not settings.AWS_ACCESS_KEY_ID or not self.bucket

    @property
    def client(self):
        if self.is_local:
            return None
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            self._client = boto3.client(
                "s3",
                region_name=settings.AWS_S3_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                config=BotoConfig(signature_version="s3v4"),
            )
        return self._client

    def _generate_key(self, filename: str, folder: str) -> str:
        ext = filename.rsplit(".", 1)[-1] if "." in filename else "bin"
        date_prefix = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        return f"{folder}/{date_prefix}/{uuid.uuid4().hex}.{ext}"

    def _upload_sync(self, local_path: str, folder: str) -> str:
        key = self._generate_key(os.path.basename(local_path), folder)
        if self.is_local:
            dest = self.uploads_dir / key
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, dest)
            return f"{self.public_base_url}/uploads/{key}"
        self.client.upload_file(local_path, self.bucket, key)
        return f"https://{self.bucket}.s3.{settings.AWS_S3_REGION}.amazonaws.com/{key}"

    async def upload(self, local_path: Optional[str], folder: str = "images") -> str:
        """Upload a local file and return its public URL."""
        if not local_path:
            raise UpstreamAssetError("No file to upload")
        try:
            return await run_in_threadpool(self._upload_sync, local_path, folder)
        except (OSError, BotoCoreError, ClientError) as e:
            logger.error(f"Asset upload failed for {local_path}: {e}")
            raise UpstreamAssetError("Asset upload failed") from e
        finally:
            try:
                os.remove(local_path)
            except FileNotFoundError:
                pass


_asset_store: Optional[AssetStore] = None


def get_asset_store() -> AssetStore:
    global _asset_store
    if _asset_store is None:
        _asset_store = AssetStore()
    return _asset_store
