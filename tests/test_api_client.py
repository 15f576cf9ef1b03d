"""
HTTP client tests against an in-process ``httpx.MockTransport``.

No sockets are opened; each handler plays the backend for one case.
"""

from __future__ import annotations

import json

import httpx
import pytest

from gotaxi.domain.entities import Location
from gotaxi.infrastructure.api_client import NetworkError, RemoteError, TripApiClient


def make_client(handler, token: str | None = "tok") -> TripApiClient:
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(base_url="http://api.test", transport=transport)
    return TripApiClient(token=token, client=http)


@pytest.mark.asyncio
async def test_envelope_is_unwrapped_and_token_sent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        return httpx.Response(200, json={"success": True, "data": {"id": "t1"}})

    client = make_client(handler)
    data = await client.get_ride("t1")
    assert data == {"id": "t1"}
    assert seen == {"auth": "Bearer tok", "path": "/rides/t1"}


@pytest.mark.asyncio
async def test_bare_payload_accepted():
    client = make_client(lambda request: httpx.Response(200, json=[{"id": "t1"}]))
    assert await client.list_rides() == [{"id": "t1"}]


@pytest.mark.asyncio
async def test_request_body_shape():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(201, json={"success": True, "data": {"id": "t9"}})

    client = make_client(handler)
    await client.request_ride(
        Location("Av. Corrientes 123", -34.6, -58.38), Location("Plaza de Mayo"), "efectivo"
    )
    assert captured["origin"] == {"address": "Av. Corrientes 123", "lat": -34.6, "lng": -58.38}
    assert captured["destination"]["address"] == "Plaza de Mayo"
    assert captured["paymentMethod"] == "efectivo"


@pytest.mark.asyncio
async def test_no_token_no_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=[])

    await make_client(handler, token=None).list_available_drivers()
    assert seen["auth"] is None


@pytest.mark.asyncio
async def test_http_error_carries_server_message():
    client = make_client(
        lambda request: httpx.Response(409, json={"message": "El viaje ya fue cancelado"})
    )
    with pytest.raises(RemoteError) as exc:
        await client.cancel_ride("t1")
    assert str(exc.value) == "El viaje ya fue cancelado"
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_server_error_default_message():
    client = make_client(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(RemoteError, match="Error del servidor"):
        await client.list_rides()


@pytest.mark.asyncio
async def test_success_false_envelope():
    client = make_client(
        lambda request: httpx.Response(200, json={"success": False, "message": "Saldo insuficiente"})
    )
    with pytest.raises(RemoteError, match="Saldo insuficiente"):
        await client.pay_ride("t1", "tarjeta")


@pytest.mark.asyncio
async def test_unreadable_body():
    client = make_client(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(RemoteError, match="Respuesta inválida"):
        await client.get_ride("t1")


@pytest.mark.asyncio
async def test_timeout_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(NetworkError, match="timeout"):
        await make_client(handler).get_ride("t1")


@pytest.mark.asyncio
async def test_connection_refused_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError):
        await make_client(handler).rate_ride("t1", 5)
