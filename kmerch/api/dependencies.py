import hmac
from typing import Optional
from fastapi import Header, HTTPException, Request, status
from kmerch import logger
from kmerch.config.admin_config import admin_config


async def require_admin(request: Request, x_admin_secret: Optional[str] = Header(None)):
    """Header/ip guard for /admin routes. Open when no ADMIN_SECRET is configured (dev)."""
    if admin_config.ADMIN_ALLOWLIST_IPS:
        client_ip = request.client.host if request.client else None
        if client_ip not in admin_config.ADMIN_ALLOWLIST_IPS:
            logger.warning("admin.ip_rejected", extra={"client_ip": client_ip, "path": request.url.path})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    secret = admin_config.ADMIN_SECRET
    if not secret:
        return
    if not x_admin_secret or not hmac.compare_digest(x_admin_secret.encode(), secret.encode()):
        logger.warning("admin.secret_rejected", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin secret required")
