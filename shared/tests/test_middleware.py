import logging

import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient

from shared.middleware import (
    RequestIdLogFilter,
    error_envelope_middleware,
    register_error_handlers,
    request_id_middleware,
)


@pytest_asyncio.fixture
async def client():
    app = FastAPI()
    register_error_handlers(app)
    app.middleware("http")(error_envelope_middleware)
    app.middleware("http")(request_id_middleware)

    @app.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("kaput")

    @app.get("/teapot")
    async def teapot() -> dict:
        raise HTTPException(status_code=418, detail="short and stout")

    @app.get("/items/{item_id}")
    async def item(item_id: int) -> dict:
        logging.getLogger("shared.tests").info("serving item %s", item_id)
        return {"id": item_id}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_unhandled_error_becomes_envelope(client) -> None:
    resp = await client.get("/boom", headers={"X-Request-ID": "req-1"})
    assert resp.status_code == 500
    assert resp.json() == {
        "code": "SERVER_ERROR",
        "message": "An unexpected error occurred",
        "request_id": "req-1",
    }
    assert resp.headers["X-Request-ID"] == "req-1"


@pytest.mark.asyncio
async def test_plain_http_exception_gets_generic_code(client) -> None:
    resp = await client.get("/teapot")
    body = resp.json()
    assert resp.status_code == 418
    assert body["code"] == "HTTP_418"
    assert body["message"] == "short and stout"
    assert body["request_id"] == resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_validation_error_is_400(client) -> None:
    resp = await client.get("/items/abc")
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"][0]["field"] == "path.item_id"


@pytest.mark.asyncio
async def test_log_records_carry_request_id(client, caplog) -> None:
    caplog.handler.addFilter(RequestIdLogFilter())
    with caplog.at_level(logging.INFO, logger="shared.tests"):
        await client.get("/items/7", headers={"X-Request-ID": "req-7"})

    record = next(r for r in caplog.records if r.name == "shared.tests")
    assert record.request_id == "req-7"
