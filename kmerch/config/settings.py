from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./kmerch.db"
    DB_ECHO: bool = False
    AUTO_CREATE_TABLES: bool = True

    PAYMONGO_SECRET_KEY: Optional[str] = None
    PAYMONGO_API_URL: str = "https://api.paymongo.com/v1"
    PAYMONGO_WEBHOOK_SECRET: Optional[str] = None
    PAYMONGO_WEBHOOK_PATH: str = "/webhooks/paymongo"
    SITE_URL: str = "http://localhost:5173"

    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "DKMerch <onboarding@resend.dev>"

    REDIS_URL: Optional[str] = None
    PRODUCT_CACHE_TTL: int = 15 * 60

    MEDIA_ROOT: str = "./media"
    UPLOAD_SECRET_KEY: str = "dev-upload-secret-change-me"
    UPLOAD_URL_TTL_SECONDS: int = 300
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    REFUND_WINDOW_HOURS: int = 24
    DEFAULT_SHIPPING_FEE: int = 0   # centavos, shipping is added by admin later
    TRUST_PAYMENT_REDIRECT: bool = False
    NOTIFICATION_WORKERS: int = 2

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
