from sqlalchemy.ext.asyncio import create_async_engine,async_sessionmaker,AsyncSession
from kmerch.config.settings import config_settings
from kmerch.db.utils import _normalize_db_url

DATABASE_URL=_normalize_db_url(config_settings.DATABASE_URL)

async_engine=create_async_engine(DATABASE_URL,echo=config_settings.DB_ECHO)

async_session=async_sessionmaker(bind=async_engine,class_=AsyncSession,expire_on_commit=False)
