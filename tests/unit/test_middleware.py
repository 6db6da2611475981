"""Unit tests for API middleware and logging helpers."""

import logging

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from recurpay.api.middleware import correlation_id_middleware, error_middleware, get_request_id
from recurpay.api.middleware.correlation_id import request_id_var
from recurpay.api.middleware.error_handler import status_for
from recurpay.core.exceptions import (
    RecurpayAuthenticationError,
    RecurpayConflictError,
    RecurpayError,
    RecurpayNotFoundError,
    RecurpayValidationError,
    TransientStoreError,
)
from recurpay.logging_config import CorrelationIdFilter

pytestmark = pytest.mark.unit


@pytest.fixture
async def client():
    app = web.Application(middlewares=[correlation_id_middleware, error_middleware])

    async def echo(request):
        return web.json_response({"correlation_id": request["correlation_id"], "context_id": get_request_id()})

    async def invalid(_request):
        raise RecurpayValidationError("amount: must be positive", field="amount")

    async def unauthorized(_request):
        raise RecurpayAuthenticationError("Invalid dispatch secret")

    async def boom(_request):
        raise KeyError("secret internals")

    app.router.add_get("/echo", echo)
    app.router.add_get("/invalid", invalid)
    app.router.add_get("/unauthorized", unauthorized)
    app.router.add_get("/boom", boom)

    async with TestClient(TestServer(app)) as test_client:
        yield test_client


class TestCorrelationId:
    async def test_middleware_when_x_request_id_then_propagated(self, client):
        resp = await client.get("/echo", headers={"X-Request-ID": "req-1"})

        assert await resp.json() == {"correlation_id": "req-1", "context_id": "req-1"}
        assert resp.headers["X-Request-ID"] == "req-1"

    async def test_middleware_when_x_correlation_id_then_used(self, client):
        resp = await client.get("/echo", headers={"X-Correlation-ID": "corr-7"})

        assert (await resp.json())["correlation_id"] == "corr-7"

    async def test_middleware_when_no_header_then_uuid_generated(self, client):
        resp = await client.get("/echo")

        data = await resp.json()
        assert len(data["correlation_id"]) == 36
        assert resp.headers["X-Request-ID"] == data["correlation_id"]

    async def test_middleware_when_error_response_then_header_still_set(self, client):
        resp = await client.get("/invalid", headers={"X-Request-ID": "req-err"})

        assert resp.headers["X-Request-ID"] == "req-err"

    def test_get_request_id_when_unset_then_placeholder(self):
        token = request_id_var.set("")
        try:
            assert get_request_id() == "no-request-id"
        finally:
            request_id_var.reset(token)

    def test_filter_when_record_logged_then_request_id_attached(self):
        token = request_id_var.set("req-log")
        try:
            record = logging.LogRecord("recurpay", logging.INFO, __file__, 1, "msg", None, None)
            assert CorrelationIdFilter().filter(record)
            assert record.request_id == "req-log"
        finally:
            request_id_var.reset(token)


class TestErrorMiddleware:
    async def test_error_middleware_when_validation_error_then_400_with_field(self, client):
        resp = await client.get("/invalid")

        assert resp.status == 400
        assert await resp.json() == {"error": "amount: must be positive", "field": "amount"}

    async def test_error_middleware_when_auth_error_then_generic_401(self, client):
        resp = await client.get("/unauthorized")

        assert resp.status == 401
        assert await resp.json() == {"error": "Unauthorized"}

    async def test_error_middleware_when_unexpected_then_500_without_details(self, client):
        resp = await client.get("/boom")

        assert resp.status == 500
        assert await resp.json() == {"error": "Internal server error"}

    async def test_error_middleware_when_route_missing_then_http_404_passthrough(self, client):
        resp = await client.get("/nowhere")

        assert resp.status == 404

    @pytest.mark.parametrize(
        ("exc", "status"),
        [
            (RecurpayValidationError("x"), 400),
            (RecurpayAuthenticationError("x"), 401),
            (RecurpayNotFoundError("x"), 404),
            (RecurpayConflictError("x"), 409),
            (TransientStoreError("x"), 503),
            (RecurpayError("x"), 500),
        ],
    )
    def test_status_for_when_error_type_then_mapped(self, exc, status):
        assert status_for(exc) == status
