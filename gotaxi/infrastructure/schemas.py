"""Pydantic request / response schemas for the remote trip API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field

from gotaxi.domain.entities import DriverCandidate, Location


# ── Requests ──────────────────────────────────────────────────────────


class LocationPayload(BaseModel):
    address: str = Field(..., min_length=1)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    @classmethod
    def from_location(cls, location: Location) -> "LocationPayload":
        return cls(address=location.address, lat=location.lat, lng=location.lng)


class RideRequestBody(BaseModel):
    origin: LocationPayload
    destination: LocationPayload
    paymentMethod: str = Field(..., min_length=1)


class PaymentBody(BaseModel):
    paymentMethod: str = Field(..., min_length=1)


class RatingBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class SelectDriverBody(BaseModel):
    driverId: str = Field(..., min_length=1)


# ── Responses ─────────────────────────────────────────────────────────


class ApiEnvelope(BaseModel):
    success: bool = True
    data: Any = None
    message: Optional[str] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def parse(cls, body: Any) -> "ApiEnvelope":
        """Accept both ``{success, data, message}`` and bare payloads."""
        if isinstance(body, dict) and "success" in body:
            return cls.model_validate(body)
        return cls(success=True, data=body)


class DriverCandidatePayload(BaseModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    user: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("user", "usuario")
    )
    vehicle: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("vehiculo", "vehicle")
    )
    rating: float = Field(0.0, validation_alias=AliasChoices("rating", "calificacion"))

    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    def to_entity(self) -> DriverCandidate:
        return DriverCandidate(
            id=self.id,
            driver_profile=dict(self.user),
            vehicle_info=dict(self.vehicle),
            rating=self.rating,
        )
