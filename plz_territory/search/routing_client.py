#!/usr/bin/env python3
"""
PLZ Territory Engine - Routing Collaborator

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Distance/duration matrices from one origin to many
destinations, served by an external routing service.

Key Components:
- RoutingClient: Protocol the search engine depends on (one request per call)
- OSRMRoutingClient: requests-based client for the OSRM table API
- RoutingError: Any failure of one request (network, timeout, HTTP status,
  malformed payload). Never escapes the search engine.
- CancellationToken: Lets a newer search abandon an in-flight one

The search engine does the batching; a client only ever sees one batch.

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from dataclasses import dataclass, field
import logging
import threading
from typing import List, Optional, Protocol, Sequence

import requests

from plz_territory.config_types import RoutingConfig
from plz_territory.models import LonLat

logger = logging.getLogger(__name__)


class RoutingError(RuntimeError):
    """A routing request failed; the caller falls back to approximation."""


@dataclass
class DistanceMatrix:
    """One origin row: distances in km, durations in minutes.

    Unreachable destinations carry ``None``.
    """

    distances_km: List[Optional[float]] = field(default_factory=list)
    durations_min: List[Optional[float]] = field(default_factory=list)


class CancellationToken:
    """Thread-safe cancel flag checked between routing batches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class RoutingClient(Protocol):
    """Routing collaborator interface."""

    def distance_matrix(
        self, origin: LonLat, destinations: Sequence[LonLat]
    ) -> DistanceMatrix:
        """Distances/durations from ``origin`` to each destination.

        Raises:
            RoutingError: On any failure.
        """
        ...


# ═══════════════════════════════════════════════════════════════════════════
# 🚗 OSRM TABLE CLIENT
# ═══════════════════════════════════════════════════════════════════════════


class OSRMRoutingClient:
    """
    OSRM ``/table`` client.

    Request:  {base}/table/v1/{profile}/{lon,lat;...}?sources=0
              &annotations=distance,duration
    Response: distances in metres, durations in seconds, first column is
              the origin itself and is dropped.
    """

    def __init__(
        self,
        config: Optional[RoutingConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or RoutingConfig()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.config.user_agent})

    def _url(self, origin: LonLat, destinations: Sequence[LonLat]) -> str:
        coords = ";".join(f"{lon},{lat}" for lon, lat in [origin, *destinations])
        base = self.config.base_url.rstrip("/")
        return f"{base}/table/v1/{self.config.profile}/{coords}"

    def distance_matrix(
        self, origin: LonLat, destinations: Sequence[LonLat]
    ) -> DistanceMatrix:
        if not destinations:
            return DistanceMatrix()

        logger.debug(f"OSRM table request: {len(destinations)} destinations")
        try:
            response = self.session.get(
                self._url(origin, destinations),
                params={"sources": "0", "annotations": "distance,duration"},
                timeout=self.config.timeout_s,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RoutingError(f"OSRM request failed: {e}") from e
        except ValueError as e:
            raise RoutingError(f"OSRM returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or data.get("code") != "Ok":
            code = data.get("code") if isinstance(data, dict) else None
            raise RoutingError(f"OSRM API returned: {code or 'invalid data'}")

        distances = data.get("distances")
        durations = data.get("durations")
        if not distances or not durations:
            raise RoutingError("OSRM response lacks distances or durations")

        row_d = distances[0][1:]
        row_t = durations[0][1:]
        if len(row_d) != len(destinations) or len(row_t) != len(destinations):
            raise RoutingError(
                f"OSRM returned {len(row_d)} values for {len(destinations)} destinations"
            )

        return DistanceMatrix(
            distances_km=[None if d is None else d / 1000.0 for d in row_d],
            durations_min=[None if t is None else t / 60.0 for t in row_t],
        )
