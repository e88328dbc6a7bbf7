"""
HTTP tests for the Flask server using synthetic datasets.

Tests:
1. Health and granularity listing
2. /api/geoprocess bulk operations and parameter validation
3. Radius, driving-radius and boundary searches
4. Layer selection via shapes, clicks and bulk operations
5. Explicit save and missing datasets

Run with: python -m pytest _tests/test_server.py -v
"""

import pytest


@pytest.fixture
def client(ring_index, grid_index, munich_index):
    """Test client whose registry serves in-memory indexes."""
    from plz_territory import server
    from plz_territory.models import Granularity
    from plz_territory.selection.session import InMemoryLayerStore, SessionRegistry

    indexes = {
        Granularity.ONE_DIGIT: ring_index,
        Granularity.TWO_DIGIT: grid_index,
        Granularity.THREE_DIGIT: munich_index,
    }

    def factory(g):
        if g not in indexes:
            raise FileNotFoundError(f"No dataset for {g.value}")
        return indexes[g]

    previous = server.registry
    server.initialize_services(
        SessionRegistry(factory, server.APP_CONFIG, layer_store=InMemoryLayerStore())
    )
    server.app.config["TESTING"] = True
    with server.app.test_client() as test_client:
        yield test_client
    server.registry = previous


class TestMetaRoutes:
    """Health and options."""

    def test_health(self, client):
        client.post("/api/geoprocess", json={"mode": "expand", "granularity": "1digit", "selectedCodes": ["9"]})
        data = client.get("/api/health").get_json()
        assert data["status"] == "ok"
        assert data["loadedGranularities"] == ["1digit"]

    def test_granularities(self, client):
        data = client.get("/api/granularities").get_json()
        assert [g["value"] for g in data] == ["1digit", "2digit", "3digit", "5digit"]
        assert data[2]["label"] == "3-stellig"


class TestGeoprocess:
    """Stateless bulk operations."""

    def test_holes(self, client):
        resp = client.post(
            "/api/geoprocess",
            json={"mode": "holes", "granularity": "1digit", "selectedCodes": list("12345678")},
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"resultCodes": ["9"]}

    def test_expand(self, client):
        resp = client.post(
            "/api/geoprocess",
            json={"mode": "expand", "granularity": "2digit", "selectedCodes": ["00"]},
        )
        assert resp.get_json()["resultCodes"] == ["01", "10", "11"]

    def test_missing_parameters(self, client):
        resp = client.post("/api/geoprocess", json={"mode": "expand"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Missing required parameters"

    def test_invalid_mode(self, client):
        resp = client.post(
            "/api/geoprocess",
            json={"mode": "shrink", "granularity": "2digit", "selectedCodes": []},
        )
        assert resp.status_code == 400

    def test_invalid_granularity(self, client):
        resp = client.post(
            "/api/geoprocess",
            json={"mode": "expand", "granularity": "7digit", "selectedCodes": []},
        )
        assert resp.status_code == 400

    def test_non_json_body(self, client):
        resp = client.post("/api/geoprocess", data="mode=expand")
        assert resp.status_code == 400

    def test_missing_dataset(self, client):
        resp = client.post(
            "/api/geoprocess",
            json={"mode": "expand", "granularity": "5digit", "selectedCodes": []},
        )
        assert resp.status_code == 503


class TestSearchRoutes:
    """Radius and boundary searches."""

    def test_driving_search(self, client, munich):
        resp = client.post(
            "/api/driving-radius-search",
            json={"coordinates": list(munich), "radius": 10, "granularity": "3digit", "method": "approximation"},
        )
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["granularity"] == "3digit"
        assert data["count"] > 0
        assert all(pc["distance"] <= 10 for pc in data["postalCodes"])

    def test_driving_search_time_mode(self, client, munich):
        resp = client.post(
            "/api/driving-radius-search",
            json={"longitude": munich[0], "latitude": munich[1], "radius": 15,
                  "granularity": "3digit", "mode": "time", "method": "approximation"},
        )
        data = resp.get_json()
        assert data["mode"] == "time"
        assert all(pc["duration"] <= 15 for pc in data["postalCodes"])

    def test_radius_out_of_range(self, client, munich):
        resp = client.post(
            "/api/driving-radius-search",
            json={"coordinates": list(munich), "radius": 500, "granularity": "3digit"},
        )
        assert resp.status_code == 400

    def test_missing_coordinates(self, client):
        resp = client.post("/api/radius-search", json={"radius": 5, "granularity": "3digit"})
        assert resp.status_code == 400

    def test_radius_search(self, client, munich):
        resp = client.post(
            "/api/radius-search",
            json={"coordinates": list(munich), "radius": 0.3, "granularity": "3digit"},
        )
        data = resp.get_json()
        assert data["method"] == "straight"
        assert data["postalCodes"][0]["code"] == "47"

    def test_boundary_search(self, client):
        boundary = {
            "type": "Polygon",
            "coordinates": [[[8.02, 50.02], [8.08, 50.02], [8.08, 50.08], [8.02, 50.08], [8.02, 50.02]]],
        }
        resp = client.post("/api/search-by-boundary", json={"granularity": "2digit", "boundary": boundary})
        assert resp.get_json() == {"granularity": "2digit", "postalCodes": ["00"], "count": 1}


class TestLayerRoutes:
    """Stateful per-layer selection."""

    def test_shape_point_bulk_and_save(self, client):
        lasso = {"type": "polygon", "coordinates": [[8.02, 50.02], [8.48, 50.02], [8.48, 50.08], [8.02, 50.08]]}
        resp = client.post(
            "/api/select/shape",
            json={"layerId": "L1", "granularity": "2digit", "shape": lasso, "mode": "add"},
        )
        assert resp.get_json()["selection"] == ["00", "01", "02", "03", "04"]

        resp = client.post(
            "/api/select/point",
            json={"layerId": "L1", "granularity": "2digit", "coordinates": [8.05, 50.05]},
        )
        data = resp.get_json()
        assert data["toggled"] == "00"
        assert "00" not in data["selection"]

        resp = client.post("/api/layers/L1/bulk", json={"granularity": "2digit", "operation": "expand"})
        assert "00" in resp.get_json()["added"]

        data = client.get("/api/layers/L1/selection?granularity=2digit").get_json()
        assert data["selection"] == ["00", "01", "02", "03", "04", "10", "11", "12", "13", "14"]

        resp = client.post("/api/layers/L1/save", json={"granularity": "2digit"})
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 10

    def test_point_shape_on_shared_edge(self, client):
        """A point shape on the 00/01 edge selects only "00"."""
        resp = client.post(
            "/api/select/shape",
            json={"layerId": "L2", "granularity": "2digit",
                  "shape": {"type": "point", "coordinates": [8.1, 50.05]}},
        )
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["intersected"] == ["00"]
        assert data["selection"] == ["00"]

    def test_invalid_shape(self, client):
        resp = client.post(
            "/api/select/shape",
            json={"layerId": "L1", "granularity": "2digit", "shape": {"type": "hexagon"}},
        )
        assert resp.status_code == 400

    def test_missing_layer_id(self, client):
        resp = client.post("/api/select/point", json={"granularity": "2digit", "coordinates": [8.05, 50.05]})
        assert resp.status_code == 400
