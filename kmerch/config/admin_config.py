from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    SERVICE_NAME: str = "kmerch"
    ENABLE_ADMIN: bool = True
    ADMIN_SECRET: Optional[str] = None
    ADMIN_ALLOWLIST_IPS: List[str] = []  # optional

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
