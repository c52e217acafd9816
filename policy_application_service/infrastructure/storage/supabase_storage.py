"""
Supabase Storage integration for policy attachments.

Bucket structure:
  policy-documents/
    {applicant_name}/
      {submission_timestamp}_{filename}
"""
import asyncio
import logging
import mimetypes
from typing import Optional

from supabase import Client, create_client

from policy_application_service.app.config import settings
from policy_application_service.app.service.exceptions import ConfigurationError
from policy_application_service.app.service.interfaces.blob_storage import AbstractBlobStorage

logger = logging.getLogger(__name__)


class SupabaseBlobStorage(AbstractBlobStorage):
    def __init__(self, bucket: str, client: Optional[Client] = None):
        self.bucket = bucket
        self._client = client

    @property
    def client(self) -> Client:
        # Created on first upload so drafts can be saved without storage configured.
        if self._client is None:
            if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
                logger.error("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not configured. Blob storage unavailable.")
                raise ConfigurationError("Blob storage is not configured. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY.")
            self._client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
            logger.info(f"Supabase storage client created for bucket '{self.bucket}'.")
        return self._client

    def _upload_sync(self, path: str, data: bytes, content_type: str) -> str:
        bucket = self.client.storage.from_(self.bucket)
        # Never overwrite: an existing path is an error, not a silent replace.
        bucket.upload(path, data, {"content-type": content_type, "upsert": "false"})
        return bucket.get_public_url(path)

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        ct = content_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
        # supabase-py storage calls block; keep the event loop free for concurrent uploads.
        url = await asyncio.to_thread(self._upload_sync, path, data, ct)
        logger.info(f"Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return url


_blob_storage_instance: Optional[SupabaseBlobStorage] = None

def get_blob_storage() -> AbstractBlobStorage:
    global _blob_storage_instance
    if _blob_storage_instance is None:
        _blob_storage_instance = SupabaseBlobStorage(bucket=settings.STORAGE_BUCKET)
    return _blob_storage_instance
