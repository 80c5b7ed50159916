import pytest
from kmerch.config.settings import config_settings
from kmerch.uploads.utils import decode_upload_token, encode_upload_token
from tests.conftest import url_prefix

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


async def upload_url(ac_client) -> str:
    r = await ac_client.post(f"{url_prefix}/uploads/url")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["expires_in"] == config_settings.UPLOAD_URL_TTL_SECONDS
    return data["upload_url"]


def test_token_roundtrip_and_expiry():
    token = encode_upload_token(300, issued_at=1000)
    assert decode_upload_token(token, at=1300)["ttl"] == 300
    with pytest.raises(ValueError):
        decode_upload_token(token, at=1301)


def test_forged_token_is_rejected():
    token = encode_upload_token(300, secret="someone-else")
    with pytest.raises(ValueError):
        decode_upload_token(token)
    with pytest.raises(ValueError):
        decode_upload_token("no-dot-here")


@pytest.mark.asyncio
async def test_upload_then_serve(ac_client):
    url = await upload_url(ac_client)

    r = await ac_client.post(url, content=PNG, headers={"Content-Type": "image/png"})
    assert r.status_code == 201, r.text
    storage_id = r.json()["data"]["storage_id"]

    r = await ac_client.get(f"{url_prefix}/uploads/files/{storage_id}")
    assert r.status_code == 200
    assert r.content == PNG
    assert r.headers["content-type"] == "image/png"


@pytest.mark.asyncio
@pytest.mark.parametrize("body, content_type, expected", [
    (b"", "image/png", 400),
    (PNG, "application/pdf", 415),
    (PNG, None, 415),
])
async def test_upload_validation(ac_client, body, content_type, expected):
    url = await upload_url(ac_client)
    headers = {"Content-Type": content_type} if content_type else {}
    r = await ac_client.post(url, content=body, headers=headers)
    assert r.status_code == expected


@pytest.mark.asyncio
async def test_upload_too_large(ac_client, monkeypatch):
    monkeypatch.setattr(config_settings, "MAX_UPLOAD_BYTES", 16)
    url = await upload_url(ac_client)
    r = await ac_client.post(url, content=PNG, headers={"Content-Type": "image/png"})
    assert r.status_code == 413


@pytest.mark.asyncio
async def test_expired_or_bad_token(ac_client):
    expired = encode_upload_token(1, issued_at=0)
    r = await ac_client.post(f"{url_prefix}/uploads/{expired}", content=PNG, headers={"Content-Type": "image/png"})
    assert r.status_code == 403

    r = await ac_client.post(f"{url_prefix}/uploads/abc.def", content=PNG, headers={"Content-Type": "image/png"})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_missing_file_is_404(ac_client):
    r = await ac_client.get(f"{url_prefix}/uploads/files/does-not-exist")
    assert r.status_code == 404
