"""
Async HTTP client for the GoTaxi trip API.

Single exit point for every remote call.  Transport problems surface as
``NetworkError``; anything the server answered with (HTTP error status,
``success: false`` envelope, unreadable body) surfaces as ``RemoteError``.
Classifying those into results is the repository's job.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from gotaxi.domain.entities import Location
from .schemas import (
    ApiEnvelope,
    LocationPayload,
    PaymentBody,
    RatingBody,
    RideRequestBody,
    SelectDriverBody,
)

logger = logging.getLogger(__name__)


class NetworkError(Exception):
    """The request never got an answer (offline, DNS, timeout...)."""


class RemoteError(Exception):
    """The server answered, but with a failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TripApiClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        token: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings) -> "TripApiClient":
        return cls(
            settings.api_base_url,
            token=settings.api_token,
            timeout=settings.api_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Remote operations ─────────────────────────────────────────

    async def request_ride(
        self, origin: Location, destination: Location, payment_method: str
    ) -> Any:
        body = RideRequestBody(
            origin=LocationPayload.from_location(origin),
            destination=LocationPayload.from_location(destination),
            paymentMethod=payment_method,
        )
        return await self._request("POST", "/rides", body.model_dump())

    async def get_ride(self, ride_id: str) -> Any:
        return await self._request("GET", f"/rides/{ride_id}")

    async def cancel_ride(self, ride_id: str) -> Any:
        return await self._request("POST", f"/rides/{ride_id}/cancel")

    async def pay_ride(self, ride_id: str, payment_method: str) -> Any:
        body = PaymentBody(paymentMethod=payment_method)
        return await self._request("POST", f"/rides/{ride_id}/pay", body.model_dump())

    async def rate_ride(self, ride_id: str, rating: int, comment: str = "") -> Any:
        body = RatingBody(rating=rating, comment=comment or "")
        return await self._request("POST", f"/rides/{ride_id}/rate", body.model_dump())

    async def list_rides(self) -> Any:
        return await self._request("GET", "/rides")

    async def list_available_drivers(self) -> Any:
        return await self._request("GET", "/drivers/available")

    async def select_driver(self, ride_id: str, driver_id: str) -> Any:
        body = SelectDriverBody(driverId=driver_id)
        return await self._request(
            "POST", f"/rides/{ride_id}/select-driver", body.model_dump()
        )

    # ── Internals ─────────────────────────────────────────────────

    async def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> Any:
        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            resp = await self._client.request(method, path, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Timeout on %s %s", method, path)
            raise NetworkError("El servidor no respondió (timeout).") from e
        except httpx.TransportError as e:
            logger.warning("Network error on %s %s: %s", method, path, e)
            raise NetworkError("Error de conexión. Verificá tu internet.") from e

        if resp.status_code >= 400:
            raise RemoteError(self._error_message(resp), status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteError("Respuesta inválida del servidor", resp.status_code) from e

        envelope = ApiEnvelope.parse(body)
        if not envelope.success:
            raise RemoteError(envelope.message or "Ocurrió un error", resp.status_code)
        return envelope.data

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            msg = body.get("message") or body.get("error")
            if msg:
                return str(msg)
        if resp.status_code >= 500:
            return "Error del servidor. Intentalo más tarde."
        return f"Error HTTP {resp.status_code}"
