"""
Fare & duration estimates  (Strategy Pattern)
=============================================

Formula
-------
Fare     = Base_Fare + Distance x Rate_Per_KM
Duration = Distance / Average_Speed   (minutes)

These are client-side estimates shown before the backend quotes the
real tariff.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .distance import trip_distance_km
from .entities import Location


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float: ...


class StandardPricing(PricingStrategy):
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float:
        return round(base_fare + distance_km * rate_per_km, 2)


@dataclass(frozen=True)
class FareEstimate:
    distance_km: float
    fare: float
    duration_minutes: int


class FareEstimator:
    """High-level API used by the orchestration service."""

    def __init__(
        self,
        base_fare: float = 50.0,
        rate_per_km: float = 15.0,
        average_speed_kmh: float = 30.0,
        default_distance_km: float = 5.0,
        strategy: PricingStrategy | None = None,
    ):
        self.base_fare = base_fare
        self.rate_per_km = rate_per_km
        self.average_speed_kmh = average_speed_kmh
        self.default_distance_km = default_distance_km
        self.strategy = strategy or StandardPricing()

    @classmethod
    def from_settings(cls, settings) -> "FareEstimator":
        return cls(
            base_fare=settings.base_fare,
            rate_per_km=settings.rate_per_km,
            average_speed_kmh=settings.average_speed_kmh,
            default_distance_km=settings.default_distance_km,
        )

    def distance(self, origin: Location, destination: Location) -> float:
        return round(
            trip_distance_km(origin, destination, self.default_distance_km), 3
        )

    def fare_for(self, distance_km: float) -> float:
        return self.strategy.calculate(distance_km, self.base_fare, self.rate_per_km)

    def duration_for(self, distance_km: float) -> int:
        return round(distance_km / self.average_speed_kmh * 60)

    def estimate(self, origin: Location, destination: Location) -> FareEstimate:
        distance = self.distance(origin, destination)
        return FareEstimate(
            distance_km=distance,
            fare=self.fare_for(distance),
            duration_minutes=self.duration_for(distance),
        )
