import asyncio
import httpx
import pytest
from sqlalchemy.exc import OperationalError
from kmerch.common.retries import is_recoverable_exception, is_transient_http_error, retry_async


def status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.paymongo.test/v1/checkout_sessions")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


@pytest.mark.parametrize("exc, expected", [
    (httpx.ConnectError("refused"), True),
    (httpx.ReadTimeout("slow"), True),
    (status_error(502), True),
    (status_error(400), False),
    (status_error(422), False),
    (ValueError("nope"), False),
])
def test_transient_http_errors(exc, expected):
    assert is_transient_http_error(exc) is expected


def test_recoverable_db_errors():
    assert is_recoverable_exception(OperationalError("select 1", None, Exception("db down")))
    assert is_recoverable_exception(ConnectionResetError())
    assert not is_recoverable_exception(asyncio.CancelledError())
    assert not is_recoverable_exception(KeyError("x"))


@pytest.mark.asyncio
async def test_retries_until_success():
    calls = []

    @retry_async(attempts=3, base_delay=0.0, if_retryable=is_transient_http_error)
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise status_error(503)
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    calls = []

    @retry_async(attempts=2, base_delay=0.0)
    async def down():
        calls.append(1)
        raise OperationalError("select 1", None, Exception("db down"))

    with pytest.raises(OperationalError):
        await down()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    calls = []

    @retry_async(attempts=5, base_delay=0.0, if_retryable=is_transient_http_error)
    async def rejected():
        calls.append(1)
        raise status_error(400)

    with pytest.raises(httpx.HTTPStatusError):
        await rejected()
    assert calls == [1]
