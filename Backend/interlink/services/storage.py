import abc
import logging
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from interlink.core.config import settings
from interlink.core.errors import NotFoundError, StorageWriteError

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html"


class StorageProvider(abc.ABC):
    """
    Abstract base class for snapshot blob storage (Local, S3, ...).
    Blobs are write-once: a key that already exists is never overwritten.
    """

    @abc.abstractmethod
    def put_immutable(self, key: str, content: bytes, content_type: str = HTML_CONTENT_TYPE) -> str:
        """
        Store content under key. Raise StorageWriteError if the key exists
        or the write fails. Returns the key.
        """
        pass

    @abc.abstractmethod
    def public_url(self, key: str) -> str:
        """
        Retrieval reference for a stored key.
        """
        pass

    @abc.abstractmethod
    def read(self, key: str) -> bytes:
        """
        Stored content for key. Raise NotFoundError if there is none.
        """
        pass


class LocalStorageProvider(StorageProvider):
    """
    Stores snapshots on the local filesystem.
    Suitable for development or single-server deployment.
    """
    def __init__(self, base_dir: str | None = None, public_base_url: str | None = None):
        self.base_dir = Path(base_dir or settings.SNAPSHOT_DIR)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or settings.SNAPSHOT_PUBLIC_BASE_URL).rstrip("/")

    def _path_for(self, key: str) -> Path:
        target = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in target.parents:
            raise StorageWriteError(f"Refusing key outside storage root: {key}")
        return target

    def put_immutable(self, key: str, content: bytes, content_type: str = HTML_CONTENT_TYPE) -> str:
        target = self._path_for(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # "xb" = exclusive create; an existing snapshot is never replaced
            with open(target, "xb") as buffer:
                buffer.write(content)
        except FileExistsError:
            raise StorageWriteError(f"Snapshot already exists: {key}")
        except OSError as e:
            raise StorageWriteError(f"Local snapshot write failed for {key}: {e}")
        return key

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def read(self, key: str) -> bytes:
        try:
            return self._path_for(key).read_bytes()
        except (StorageWriteError, OSError):
            raise NotFoundError(f"Snapshot not found: {key}")


class S3StorageProvider(StorageProvider):
    """
    Stores snapshots in AWS S3 (or any S3-compatible bucket).
    """
    def __init__(self, client=None, bucket: str | None = None):
        self.s3 = client or boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            region_name=settings.AWS_REGION,
        )
        self.bucket = bucket or settings.SNAPSHOT_BUCKET

    def put_immutable(self, key: str, content: bytes, content_type: str = HTML_CONTENT_TYPE) -> str:
        try:
            # IfNoneMatch="*" makes the put conditional on the key being absent
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageWriteError(f"S3 snapshot upload failed for {key}: {e}")
        return key

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{settings.AWS_REGION}.amazonaws.com/{key}"

    def read(self, key: str) -> bytes:
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFoundError(f"Snapshot not found: {key}")
            raise
        return response["Body"].read()

# ─── Factory ─────────────────────────────────────────────────────────────────

def get_storage_provider() -> StorageProvider:
    if settings.STORAGE_TYPE.lower() == "s3":
        return S3StorageProvider()
    return LocalStorageProvider()
