import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Any, Dict, Optional
from kmerch.config.settings import config_settings


def _sign(payload_bytes: bytes, secret: Optional[str] = None) -> str:
    key = (secret or config_settings.UPLOAD_SECRET_KEY).encode()
    sig = hmac.new(key, payload_bytes, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(sig).decode().rstrip("=")


def encode_upload_token(ttl_seconds: int, issued_at: Optional[int] = None, secret: Optional[str] = None) -> str:
    payload = {
        "t": int(time.time()) if issued_at is None else issued_at,
        "ttl": ttl_seconds,
        "n": secrets.token_urlsafe(8),
    }
    raw_bytes = json.dumps(payload, separators=(",", ":")).encode()
    bytes_encoded = base64.urlsafe_b64encode(raw_bytes).decode().rstrip("=")
    return f"{bytes_encoded}.{_sign(raw_bytes, secret)}"


def decode_upload_token(token: str, at: Optional[int] = None, secret: Optional[str] = None) -> Dict[str, Any]:
    """Raises ValueError for a malformed, forged or expired token."""
    try:
        token_part, sig_part = token.split(".")
        padded = token_part + "=" * ((4 - len(token_part) % 4) % 4)
        raw = base64.urlsafe_b64decode(padded)
    except (ValueError, TypeError):
        raise ValueError("Invalid upload token format")

    if not hmac.compare_digest(_sign(raw, secret), sig_part):
        raise ValueError("Upload token signature mismatch")

    payload = json.loads(raw.decode())
    current = int(time.time()) if at is None else at
    if current - int(payload.get("t", 0)) > int(payload.get("ttl", 0)):
        raise ValueError("Upload token expired")
    return payload
