import os
from typing import Any, Dict, Optional
import aiofiles
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.api import version_prefix
from kmerch.config.settings import config_settings
from kmerch.schema.full_schema import StoredFile, new_public_id
from kmerch.uploads.constants import ALLOWED_CONTENT_TYPES, UPLOAD_PATH_PREFIX, logger
from kmerch.uploads.repository import get_stored_file, insert_stored_file
from kmerch.uploads.utils import decode_upload_token, encode_upload_token


def generate_upload_url(ttl_seconds: Optional[int] = None) -> Dict[str, Any]:
    ttl = ttl_seconds or config_settings.UPLOAD_URL_TTL_SECONDS
    token = encode_upload_token(ttl)
    return {"upload_url": f"{version_prefix}{UPLOAD_PATH_PREFIX}/{token}", "expires_in": ttl}


class FileUpload:
    """One binary body posted to a signed upload url."""

    def __init__(self, token: str, content_type: Optional[str], body: bytes,
                 max_bytes: Optional[int] = None):
        self.token = token
        self.content_type = (content_type or "").split(";")[0].strip().lower()
        self.body = body
        self.max_bytes = max_bytes or config_settings.MAX_UPLOAD_BYTES

    def validate(self) -> None:
        try:
            decode_upload_token(self.token)
        except ValueError as exc:
            logger.warning("upload.token_rejected", extra={"reason": str(exc)})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Upload link is invalid or expired")

        if not self.body:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload")
        if self.content_type not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                                detail=f"content_type {self.content_type or 'missing'} not allowed")
        if len(self.body) > self.max_bytes:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                                detail=f"file too large (max {self.max_bytes})")

    async def store(self, session: AsyncSession, media_root: Optional[str] = None) -> StoredFile:
        self.validate()
        root = media_root or config_settings.MEDIA_ROOT
        storage_id = new_public_id()
        path = os.path.join(root, storage_id)

        os.makedirs(root, exist_ok=True)
        async with aiofiles.open(path, "wb") as afp:
            await afp.write(self.body)

        stored = StoredFile(storage_id=storage_id, content_type=self.content_type,
                            size_bytes=len(self.body), path=path)
        await insert_stored_file(session, stored)
        logger.info("upload.stored", extra={"storage_id": storage_id, "size_bytes": len(self.body)})
        return stored


async def get_file_or_404(session: AsyncSession, storage_id: str) -> StoredFile:
    stored = await get_stored_file(session, storage_id)
    if stored is None or not os.path.exists(stored.path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return stored
