from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import success_response
from kmerch.db.dependencies import get_session
from kmerch.uploads.services import FileUpload, generate_upload_url, get_file_or_404

uploads_router = APIRouter()


@uploads_router.post("/url")
async def create_upload_url():
    return success_response(generate_upload_url())


@uploads_router.get("/files/{storage_id}")
async def serve_file(storage_id: str, session: AsyncSession = Depends(get_session)):
    stored = await get_file_or_404(session, storage_id)
    return FileResponse(stored.path, media_type=stored.content_type)


@uploads_router.post("/{token}")
async def upload_file(token: str, request: Request, session: AsyncSession = Depends(get_session)):
    body = await request.body()
    upload = FileUpload(token, request.headers.get("content-type"), body)
    stored = await upload.store(session)
    await session.commit()
    return success_response({"storage_id": stored.storage_id}, status_code=status.HTTP_201_CREATED)
