from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.schema.full_schema import StoredFile


async def stored_file_exists(session: AsyncSession, storage_id: Optional[str]) -> bool:
    if not storage_id:
        return False
    stmt = select(StoredFile.id).where(StoredFile.storage_id == storage_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def get_stored_file(session: AsyncSession, storage_id: str) -> Optional[StoredFile]:
    stmt = select(StoredFile).where(StoredFile.storage_id == storage_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def insert_stored_file(session: AsyncSession, stored: StoredFile) -> StoredFile:
    session.add(stored)
    await session.flush()
    return stored
