import asyncio
import shutil
from datetime import timedelta
from pathlib import Path

from render_worker.config import get_settings

settings = get_settings()


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, base_path: str | None = None) -> None:
        self.base_path = Path(base_path or settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = self.base_path / storage_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    async def download_file(self, storage_key: str, local_path: str) -> str:
        """Copy file to local path."""
        full_path = self._get_full_path(storage_key)
        if not full_path.exists():
            raise FileNotFoundError(f"Storage object not found: {storage_key}")
        shutil.copy(str(full_path), local_path)
        return local_path

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload from local path."""
        full_path = self._get_full_path(storage_key)
        shutil.copy(local_path, str(full_path))
        return storage_key

    async def upload_bytes(self, storage_key: str, data: bytes, content_type: str | None = None) -> str:
        """Upload file from bytes."""
        self._get_full_path(storage_key).write_bytes(data)
        return storage_key

    async def get_signed_url(self, storage_key: str, expiration_seconds: int = 3600) -> str:
        """Local files have no signing; return a file URI."""
        return self._get_full_path(storage_key).resolve().as_uri()

    def file_exists(self, storage_key: str) -> bool:
        """Check if file exists."""
        return (self.base_path / storage_key).exists()


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self) -> None:
        from google.auth import compute_engine, default
        from google.auth.transport import requests as auth_requests
        from google.cloud import storage

        self._storage = storage
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None
        self._auth_request = auth_requests.Request()

        self._credentials, _ = default()
        # Cloud Run credentials have no private key; signing goes through IAM
        self._sign_with_token = isinstance(self._credentials, compute_engine.Credentials)

    @property
    def client(self):
        if self._client is None:
            if settings.gcs_project_id:
                self._client = self._storage.Client(project=settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(settings.gcs_bucket_name)
        return self._bucket

    def _signed_url(self, storage_key: str, expiration_seconds: int) -> str:
        blob = self.bucket.blob(storage_key)
        kwargs = {}
        if self._sign_with_token:
            if not self._credentials.valid:
                self._credentials.refresh(self._auth_request)
            kwargs = {
                "service_account_email": self._credentials.service_account_email,
                "access_token": self._credentials.token,
            }
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=expiration_seconds),
            method="GET",
            **kwargs,
        )

    async def download_file(self, storage_key: str, local_path: str) -> str:
        """Download a file from GCS to local path."""
        blob = self.bucket.blob(storage_key)
        await asyncio.to_thread(blob.download_to_filename, local_path)
        return local_path

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload a local file to GCS."""
        blob = self.bucket.blob(storage_key)
        await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
        return storage_key

    async def upload_bytes(self, storage_key: str, data: bytes, content_type: str | None = None) -> str:
        """Upload an in-memory object to GCS."""
        blob = self.bucket.blob(storage_key)
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        return storage_key

    async def get_signed_url(self, storage_key: str, expiration_seconds: int = 3600) -> str:
        """Generate a v4 signed download URL."""
        return await asyncio.to_thread(self._signed_url, storage_key, expiration_seconds)

    def file_exists(self, storage_key: str) -> bool:
        """Check if a file exists in GCS."""
        return self.bucket.blob(storage_key).exists()


# Use LocalStorageService or GCSStorageService based on config
StorageService = LocalStorageService if settings.use_local_storage else GCSStorageService

_storage_service: LocalStorageService | GCSStorageService | None = None


def get_storage_service() -> LocalStorageService | GCSStorageService:
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
