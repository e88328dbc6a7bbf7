"""
Approximate driving distance and travel time from great-circle distance.

Used whenever live routing is not requested, not configured, or failed.
Driving distance is the haversine distance inflated by a fixed road-network
factor; travel time comes from a piecewise average-speed curve keyed by the
driving distance:

    < 5 km      city traffic, 90% of city speed
    5-15 km     city blending into suburban
    15-40 km    suburban, rural and some highway
    40-100 km   rural blending into highway
    >= 100 km   highway dominated (at most 95% highway)
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from plz_territory.config_types import SearchConfig
from plz_territory.geometry.shape_utils import haversine_km
from plz_territory.models import LonLat


def average_speed_kmh(distance_km: float, config: Optional[SearchConfig] = None) -> float:
    """Average driving speed for a trip of ``distance_km``."""
    c = config or SearchConfig()
    d = distance_km

    if d < 5:
        return c.city_speed_kmh * 0.9

    if d < 15:
        city_w = max(0.4, 1 - (d - 5) / 10)
        return c.city_speed_kmh * city_w + c.suburban_speed_kmh * (1 - city_w)

    if d < 40:
        suburban_w = max(0.3, 1 - (d - 15) / 25)
        rural_w = min(0.4, (d - 15) / 25)
        highway_w = 1 - suburban_w - rural_w
        return (
            c.suburban_speed_kmh * suburban_w
            + c.rural_speed_kmh * rural_w
            + c.highway_speed_kmh * highway_w
        )

    if d < 100:
        rural_w = max(0.2, 1 - (d - 40) / 60)
        return c.rural_speed_kmh * rural_w + c.highway_speed_kmh * (1 - rural_w)

    highway_w = min(0.95, 0.7 + (d - 100) / 500)
    return c.rural_speed_kmh * (1 - highway_w) + c.highway_speed_kmh * highway_w


def duration_minutes(driving_km: float, config: Optional[SearchConfig] = None) -> float:
    """Travel time in minutes for a driving distance."""
    return driving_km / average_speed_kmh(driving_km, config) * 60.0


def approximate(
    origin: LonLat,
    destinations: Sequence[LonLat],
    config: Optional[SearchConfig] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Approximate driving distances (km) and durations (min).

    Returns:
        (distances, durations) arrays aligned with ``destinations``.
    """
    config = config or SearchConfig()
    if not destinations:
        return np.zeros(0), np.zeros(0)
    straight = haversine_km(
        origin, [d[0] for d in destinations], [d[1] for d in destinations]
    )
    distances = straight * config.driving_distance_factor
    durations = np.array([duration_minutes(float(d), config) for d in distances])
    return distances, durations
