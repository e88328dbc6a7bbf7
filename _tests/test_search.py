"""
Unit tests for distance and travel-time search.

Tests:
1. Piecewise speed curve and duration approximation
2. OSRM table client request/response handling and error mapping
3. DistanceSearchEngine prefilter, ordering, metrics and validation
4. Routing fallback, batching and cancellation
5. Exact radius search and boundary search

Run with: python -m pytest _tests/test_search.py -v
"""

import math
from unittest import mock

import pytest


# ═══════════════════════════════════════════════════════════════════════════
# TRAVEL MODEL
# ═══════════════════════════════════════════════════════════════════════════


class TestTravelModel:
    """Average speed curve."""

    @pytest.mark.parametrize(
        "distance,expected",
        [
            (2.0, 40.5),     # city, 90% of 45
            (10.0, 55.0),    # half city, half suburban
            (20.0, 68.0),    # 80% suburban, 20% rural
            (70.0, 95.0),    # half rural, half highway
            (200.0, 107.0),  # 90% highway
        ],
    )
    def test_speed_brackets(self, distance, expected):
        from plz_territory.search.travel_model import average_speed_kmh

        assert average_speed_kmh(distance) == pytest.approx(expected)

    def test_duration(self):
        from plz_territory.search.travel_model import duration_minutes

        assert duration_minutes(10.0) == pytest.approx(10.0 / 55.0 * 60.0)

    def test_approximate_inflates_distance(self):
        from plz_territory.geometry.shape_utils import haversine_km
        from plz_territory.search.travel_model import approximate

        origin, dest = (11.576, 48.137), (11.70, 48.20)
        distances, durations = approximate(origin, [dest])
        straight = haversine_km(origin, [dest[0]], [dest[1]])[0]

        assert distances[0] == pytest.approx(straight * 1.25)
        assert durations[0] > 0

    def test_approximate_empty(self):
        from plz_territory.search.travel_model import approximate

        distances, durations = approximate((11.0, 48.0), [])
        assert len(distances) == 0 and len(durations) == 0


# ═══════════════════════════════════════════════════════════════════════════
# OSRM CLIENT
# ═══════════════════════════════════════════════════════════════════════════


def _osrm_session(payload=None, status_error=None, get_error=None):
    session = mock.MagicMock()
    response = mock.MagicMock()
    response.json.return_value = payload
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    session.get.return_value = response
    if get_error is not None:
        session.get.side_effect = get_error
    return session


class TestOSRMClient:
    """OSRM /table client."""

    def test_success_converts_units(self):
        from plz_territory.config_types import RoutingConfig
        from plz_territory.search.routing_client import OSRMRoutingClient

        session = _osrm_session(
            {"code": "Ok", "distances": [[0, 1000, 2500, None]], "durations": [[0, 60, 120, None]]}
        )
        client = OSRMRoutingClient(RoutingConfig(base_url="http://osrm.local/"), session=session)
        matrix = client.distance_matrix((11.5, 48.1), [(11.6, 48.2), (11.7, 48.3), (11.8, 48.4)])

        assert matrix.distances_km == [1.0, 2.5, None]
        assert matrix.durations_min == [1.0, 2.0, None]

        url = session.get.call_args[0][0]
        assert url == "http://osrm.local/table/v1/driving/11.5,48.1;11.6,48.2;11.7,48.3;11.8,48.4"
        kwargs = session.get.call_args[1]
        assert kwargs["params"] == {"sources": "0", "annotations": "distance,duration"}
        assert kwargs["timeout"] == 10.0

    def test_empty_destinations_skip_request(self):
        from plz_territory.search.routing_client import OSRMRoutingClient

        session = _osrm_session()
        matrix = OSRMRoutingClient(session=session).distance_matrix((11.5, 48.1), [])
        assert matrix.distances_km == []
        session.get.assert_not_called()

    @pytest.mark.parametrize(
        "session_kwargs",
        [
            {"get_error": "timeout"},
            {"status_error": "http"},
            {"payload": {"code": "NoTable"}},
            {"payload": {"code": "Ok", "distances": [[0, 1]]}},
            {"payload": {"code": "Ok", "distances": [[0, 1]], "durations": [[0]]}},
        ],
    )
    def test_failures_raise_routing_error(self, session_kwargs):
        import requests

        from plz_territory.search.routing_client import OSRMRoutingClient, RoutingError

        if session_kwargs.get("get_error") == "timeout":
            session_kwargs = {"get_error": requests.Timeout("slow")}
        elif session_kwargs.get("status_error") == "http":
            session_kwargs = {"status_error": requests.HTTPError("502")}
        session = _osrm_session(**session_kwargs)

        with pytest.raises(RoutingError):
            OSRMRoutingClient(session=session).distance_matrix((11.5, 48.1), [(11.6, 48.2)])

    def test_invalid_json(self):
        from plz_territory.search.routing_client import OSRMRoutingClient, RoutingError

        session = _osrm_session()
        session.get.return_value.json.side_effect = ValueError("no json")
        with pytest.raises(RoutingError):
            OSRMRoutingClient(session=session).distance_matrix((11.5, 48.1), [(11.6, 48.2)])


# ═══════════════════════════════════════════════════════════════════════════
# DISTANCE SEARCH
# ═══════════════════════════════════════════════════════════════════════════


def _engine(index, router=None, batch_size=80, sleeps=None, **search_kwargs):
    from plz_territory.config_types import RoutingConfig, SearchConfig
    from plz_territory.search.distance_search import DistanceSearchEngine

    return DistanceSearchEngine(
        index,
        router,
        SearchConfig(**search_kwargs),
        RoutingConfig(batch_size=batch_size, batch_delay_s=0.5),
        sleep=(sleeps.append if sleeps is not None else (lambda _s: None)),
    )


class TestDistanceSearch:
    """Approximation and straight-line searches around Munich."""

    def test_approximation_within_radius_and_sorted(self, munich_index, munich):
        from plz_territory.models import SearchMethod

        result = _engine(munich_index).search(munich, 10.0, "distance", "approximation")

        assert result.error is None
        assert result.method is SearchMethod.APPROXIMATION
        assert not result.fell_back_to_approximation
        assert result.hits, "Munich grid has regions within 10 km"
        distances = [h.distance_km for h in result.hits]
        assert all(d <= 10.0 for d in distances)
        assert distances == sorted(distances)
        assert "47" in result.codes, "Cell containing the center is found"

    def test_straight_method(self, munich_index, munich):
        result = _engine(munich_index).search(munich, 10.0, method="straight")
        for hit in result.hits:
            assert hit.distance_km == pytest.approx(hit.straight_line_km)
            assert hit.distance_km <= 10.0

    def test_time_metric_sorted_by_duration(self, munich_index, munich):
        result = _engine(munich_index).search(munich, 15.0, "time", "approximation")
        durations = [h.duration_min for h in result.hits]
        assert result.hits
        assert all(t <= 15.0 for t in durations)
        assert durations == sorted(durations)

    def test_candidate_cap(self, munich_index, munich):
        result = _engine(munich_index, max_candidates=5).search(munich, 20.0, method="straight")
        assert len(result.hits) <= 5

    @pytest.mark.parametrize("radius", [0.0, 0.05, 250.0])
    def test_radius_out_of_range(self, munich_index, munich, radius):
        result = _engine(munich_index).search(munich, radius)
        assert result.hits == []
        assert result.error

    def test_invalid_center(self, munich_index):
        result = _engine(munich_index).search(("a", None), 10.0)
        assert result.hits == []
        assert result.error

    def test_no_candidates(self, munich_index):
        result = _engine(munich_index).search((0.0, 0.0), 10.0)
        assert result.hits == []
        assert result.error is None

    def test_result_as_dict(self, munich_index, munich):
        payload = _engine(munich_index).search(munich, 5.0).as_dict()
        assert payload["mode"] == "distance"
        assert payload["count"] == len(payload["postalCodes"])
        assert set(payload["postalCodes"][0]) == {"code", "distance", "duration", "straightLineDistance"}


class TestRoutedSearch:
    """Live routing through the collaborator."""

    def test_batches_and_delay(self, munich_index, munich, stub_router_cls):
        from plz_territory.models import SearchMethod

        router = stub_router_cls()
        sleeps = []
        result = _engine(munich_index, router, batch_size=3, sleeps=sleeps).search(
            munich, 10.0, method="osrm"
        )

        assert result.method is SearchMethod.OSRM
        assert not result.fell_back_to_approximation
        assert len(router.calls) > 1
        assert all(len(batch) <= 3 for batch in router.calls)
        assert sleeps == [0.5] * (len(router.calls) - 1), "Delay between batches only"
        for hit in result.hits:
            assert hit.distance_km == pytest.approx(hit.straight_line_km)

    def test_failed_batch_falls_back_for_all(self, munich_index, munich, stub_router_cls):
        """One failed batch -> every candidate approximated."""
        from plz_territory.models import SearchMethod

        router = stub_router_cls(fail_on_call=2)
        routed = _engine(munich_index, router, batch_size=3).search(munich, 10.0, method="osrm")
        approx = _engine(munich_index).search(munich, 10.0, method="approximation")

        assert routed.fell_back_to_approximation
        assert routed.method is SearchMethod.APPROXIMATION
        assert "unavailable" in routed.error
        assert routed.codes == approx.codes
        assert all(h.duration_min is not None for h in routed.hits)

    def test_no_client_falls_back(self, munich_index, munich):
        result = _engine(munich_index, None).search(munich, 10.0, method="osrm")
        assert result.fell_back_to_approximation
        assert result.error is None
        assert result.hits

    def test_unreachable_destination_excluded(self, munich_index, munich):
        from plz_territory.search.routing_client import DistanceMatrix

        class NoRoute:
            def distance_matrix(self, origin, destinations):
                return DistanceMatrix([None] * len(destinations), [None] * len(destinations))

        result = _engine(munich_index, NoRoute()).search(munich, 10.0, method="osrm")
        assert result.hits == []
        assert not result.fell_back_to_approximation

    def test_cancel_between_batches(self, munich_index, munich, stub_router_cls):
        from plz_territory.search.routing_client import CancellationToken

        token = CancellationToken()
        router = stub_router_cls(cancel_after=1, token=token)
        result = _engine(munich_index, router, batch_size=3).search(
            munich, 10.0, method="osrm", cancel_token=token
        )

        assert result.cancelled
        assert result.hits == []
        assert len(router.calls) == 1, "No batch issued after cancellation"

    def test_cancelled_before_start(self, munich_index, munich, stub_router_cls):
        from plz_territory.search.routing_client import CancellationToken

        token = CancellationToken()
        token.cancel()
        router = stub_router_cls()
        result = _engine(munich_index, router).search(munich, 10.0, method="osrm", cancel_token=token)

        assert result.cancelled
        assert router.calls == []


class TestRadiusAndBoundarySearch:
    """Exact geometry searches."""

    def test_radius_search_containing_region(self, munich_index, munich):
        result = _engine(munich_index).radius_search(munich, 0.5)
        assert result.hits[0].code == "47"
        assert result.hits[0].distance_km == 0.0
        assert all(h.distance_km <= 0.5 for h in result.hits)

    def test_radius_search_ordering(self, munich_index, munich):
        result = _engine(munich_index).radius_search(munich, 8.0)
        distances = [h.distance_km for h in result.hits]
        assert distances == sorted(distances)
        assert len(result.hits) > 4

    def test_radius_search_invalid(self, munich_index, munich):
        assert _engine(munich_index).radius_search(munich, -1.0).error
        assert _engine(munich_index).radius_search((math.nan, 48.0), 5.0).error

    def test_boundary_feature(self, munich_index):
        feature = {
            "type": "Feature",
            "properties": {},
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[11.58, 48.11], [11.61, 48.11], [11.61, 48.14], [11.58, 48.14], [11.58, 48.11]]],
            },
        }
        assert _engine(munich_index).boundary_search(feature) == ["47"]

    def test_boundary_unusable(self, munich_index):
        engine = _engine(munich_index)
        assert engine.boundary_search(None) == []
        assert engine.boundary_search({"type": "Point", "coordinates": [11.5, 48.1]}) == []
