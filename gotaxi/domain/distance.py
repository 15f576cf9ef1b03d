"""
Trip distance estimate.

Assumption
----------
Great-circle (Haversine) distance stands in for a routing engine; the
backend owns real tariffs, the client only needs a plausible estimate
to show before the request is confirmed.
"""

from __future__ import annotations

import math

from .entities import Location

EARTH_RADIUS_KM = 6_371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in **km** between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    half_dphi = math.radians(lat2 - lat1) / 2
    half_dlmb = math.radians(lng2 - lng1) / 2
    h = math.sin(half_dphi) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(half_dlmb) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def trip_distance_km(
    origin: Location, destination: Location, fallback_km: float
) -> float:
    """Distance between two locations, or *fallback_km* without coordinates."""
    if not (origin.has_coordinates and destination.has_coordinates):
        return fallback_km
    return haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
