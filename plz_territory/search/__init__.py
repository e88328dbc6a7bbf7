"""Distance search, routing collaborator and travel-time approximation."""

from .distance_search import DistanceSearchEngine
from .routing_client import (
    CancellationToken,
    DistanceMatrix,
    OSRMRoutingClient,
    RoutingClient,
    RoutingError,
)
from .travel_model import approximate, average_speed_kmh, duration_minutes

__all__ = [
    "DistanceSearchEngine",
    "CancellationToken",
    "DistanceMatrix",
    "OSRMRoutingClient",
    "RoutingClient",
    "RoutingError",
    "approximate",
    "average_speed_kmh",
    "duration_minutes",
]
