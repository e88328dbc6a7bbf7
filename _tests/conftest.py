"""
Shared fixtures: synthetic region datasets built from shapely boxes.

Grid cells share exact edges (coordinates are computed with the same
expression on both sides), so neighbouring cells touch along an edge and
diagonal cells touch at a single vertex.
"""

from typing import Callable, List, Optional, Sequence, Tuple

import pytest
from shapely.geometry import box

from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.models import Granularity, Region


def _cell(origin: Tuple[float, float], step: float, row: int, col: int):
    x0 = origin[0] + col * step
    y0 = origin[1] + row * step
    x1 = origin[0] + (col + 1) * step
    y1 = origin[1] + (row + 1) * step
    return box(x0, y0, x1, y1)


def make_grid(
    rows: int,
    cols: int,
    origin: Tuple[float, float] = (8.0, 50.0),
    step: float = 0.1,
    granularity: Granularity = Granularity.TWO_DIGIT,
) -> List[Region]:
    """rows x cols grid, code "<row><col>" (row 0 is the southern row)."""
    return [
        Region(
            code=f"{r}{c}",
            granularity=granularity,
            geometry=_cell(origin, step, r, c),
            properties={"name": f"Cell {r}/{c}"},
        )
        for r in range(rows)
        for c in range(cols)
    ]


@pytest.fixture
def grid_factory() -> Callable[..., GeometryIndex]:
    """Build a grid index: grid_factory(rows, cols, **make_grid kwargs)."""

    def _factory(rows: int = 5, cols: int = 5, **kwargs) -> GeometryIndex:
        regions = make_grid(rows, cols, **kwargs)
        return GeometryIndex.build(regions, regions[0].granularity)

    return _factory


@pytest.fixture
def grid_index(grid_factory) -> GeometryIndex:
    """5x5 grid of 0.1 degree cells at (8.0, 50.0), codes "00".."44"."""
    return grid_factory(5, 5)


@pytest.fixture
def strip_index() -> GeometryIndex:
    """
    1-digit regions in a row: "0" | "1" | "2" touch, "5" stands apart.
    """
    g = Granularity.ONE_DIGIT
    regions = [
        Region("0", g, box(8.0, 50.0, 9.0, 51.0)),
        Region("1", g, box(9.0, 50.0, 10.0, 51.0)),
        Region("2", g, box(10.0, 50.0, 11.0, 51.0)),
        Region("5", g, box(12.0, 50.0, 13.0, 51.0)),
    ]
    return GeometryIndex.build(regions, g)


@pytest.fixture
def ring_index() -> GeometryIndex:
    """
    3x3 block of 1-digit regions; "9" in the middle is surrounded by
    "1".."8" and touches none of the dataset's outer boundary.
    """
    g = Granularity.ONE_DIGIT
    layout = {
        (0, 0): "1", (0, 1): "2", (0, 2): "3",
        (1, 0): "4", (1, 1): "9", (1, 2): "5",
        (2, 0): "6", (2, 1): "7", (2, 2): "8",
    }
    regions = [
        Region(code, g, _cell((9.0, 50.0), 0.5, r, c)) for (r, c), code in layout.items()
    ]
    return GeometryIndex.build(regions, g)


@pytest.fixture
def munich_index() -> GeometryIndex:
    """0.05 degree 3-digit style grid covering Munich and its surroundings."""
    return GeometryIndex.build(
        make_grid(10, 14, origin=(11.22, 47.90), step=0.05, granularity=Granularity.THREE_DIGIT),
        Granularity.THREE_DIGIT,
    )


MUNICH = (11.576, 48.137)


class StubRouter:
    """Routing collaborator double.

    Returns straight-line distances (km) and 1 minute per km, records every
    call, and can fail on a given call number or cancel a token after a
    given call.
    """

    def __init__(
        self,
        fail_on_call: Optional[int] = None,
        cancel_after: Optional[int] = None,
        token=None,
    ) -> None:
        self.calls: List[Sequence[Tuple[float, float]]] = []
        self.fail_on_call = fail_on_call
        self.cancel_after = cancel_after
        self.token = token

    def distance_matrix(self, origin, destinations):
        from plz_territory.geometry.shape_utils import haversine_km
        from plz_territory.search.routing_client import DistanceMatrix, RoutingError

        self.calls.append(list(destinations))
        if self.fail_on_call is not None and len(self.calls) >= self.fail_on_call:
            raise RoutingError("routing service unavailable")
        if self.cancel_after is not None and len(self.calls) >= self.cancel_after:
            self.token.cancel()

        km = haversine_km(origin, [d[0] for d in destinations], [d[1] for d in destinations])
        return DistanceMatrix(
            distances_km=[float(k) for k in km],
            durations_min=[float(k) for k in km],
        )


@pytest.fixture
def stub_router_cls():
    return StubRouter


@pytest.fixture
def munich():
    return MUNICH
