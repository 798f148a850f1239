"""
Storage Adapter - GridFS-backed object storage for generated artifacts.

Objects are addressed by key (the GridFS filename), e.g. "<uuid>.jpg", and
served publicly at {PUBLIC_BASE_URL}/api/images/files/<key>.
"""
import hashlib
import io
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorGridFSBucket
from database import database

logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8001").rstrip("/")
IMAGE_BUCKET = os.getenv("IMAGE_BUCKET", "generated_images")


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ObjectNotFoundError(StorageError):
    """Object not found in storage."""
    pass


class ObjectMetadata:
    """Stored object metadata."""
    def __init__(
        self,
        key: str,
        content_type: str,
        size_bytes: int,
        sha256_hash: str,
        upload_timestamp: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.key = key
        self.content_type = content_type
        self.size_bytes = size_bytes
        self.sha256_hash = sha256_hash
        self.upload_timestamp = upload_timestamp
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "sha256_hash": self.sha256_hash,
            "upload_timestamp": self.upload_timestamp.isoformat() if self.upload_timestamp else None,
            "metadata": self.metadata,
        }


class StorageAdapter(ABC):
    """Abstract base class for storage implementations."""

    @abstractmethod
    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ObjectMetadata:
        """Store bytes under key and return metadata."""
        pass

    @abstractmethod
    async def get_object(self, key: str) -> Tuple[bytes, ObjectMetadata]:
        """Return object content and metadata."""
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public location of a stored object."""
        pass


class GridFSStorageAdapter(StorageAdapter):
    """
    GridFS-based storage implementation.
    The object key is stored as the GridFS filename.
    """

    def __init__(self, bucket_name: str = IMAGE_BUCKET, base_url: str = PUBLIC_BASE_URL):
        self.bucket_name = bucket_name
        self.base_url = base_url

    def _get_bucket(self) -> AsyncIOMotorGridFSBucket:
        return AsyncIOMotorGridFSBucket(database.get_db(), bucket_name=self.bucket_name)

    def _calculate_hash(self, data: bytes) -> str:
        """Calculate SHA256 hash of object data."""
        return hashlib.sha256(data).hexdigest()

    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ObjectMetadata:
        """Upload bytes to GridFS under key."""
        bucket = self._get_bucket()
        sha256_hash = self._calculate_hash(data)
        uploaded_at = datetime.now(timezone.utc)

        try:
            await bucket.upload_from_stream(
                key,
                io.BytesIO(data),
                metadata={
                    "content_type": content_type,
                    "sha256_hash": sha256_hash,
                    "upload_timestamp": uploaded_at.isoformat(),
                    "custom_metadata": metadata or {},
                },
            )
        except Exception as e:
            raise StorageError(f"Failed to store {key}: {e}")

        logger.info(f"Object stored in GridFS: {key} ({len(data)} bytes)")
        return ObjectMetadata(
            key=key,
            content_type=content_type,
            size_bytes=len(data),
            sha256_hash=sha256_hash,
            upload_timestamp=uploaded_at,
            metadata=metadata,
        )

    async def get_object(self, key: str) -> Tuple[bytes, ObjectMetadata]:
        """Download an object from GridFS by key."""
        db = database.get_db()
        file_doc = await db[f"{self.bucket_name}.files"].find_one(
            {"filename": key}, sort=[("uploadDate", -1)]
        )
        if not file_doc:
            raise ObjectNotFoundError(f"Object not found: {key}")

        stream = io.BytesIO()
        await self._get_bucket().download_to_stream(file_doc["_id"], stream)

        gridfs_meta = file_doc.get("metadata") or {}
        return stream.getvalue(), ObjectMetadata(
            key=key,
            content_type=gridfs_meta.get("content_type", "application/octet-stream"),
            size_bytes=file_doc.get("length", 0),
            sha256_hash=gridfs_meta.get("sha256_hash", ""),
            upload_timestamp=datetime.fromisoformat(
                gridfs_meta.get("upload_timestamp", datetime.now(timezone.utc).isoformat())
            ),
            metadata=gridfs_meta.get("custom_metadata", {}),
        )

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/api/images/files/{key}"


# Singleton instance
storage_adapter = GridFSStorageAdapter()
