"""
PLZ Territory Engine.

Region selection and adjacency/topology engine for German postal-code
territories: drawn shapes and clicks become de-duplicated code selections,
bulk operations (expand, fill holes, intersects-union) derive new
selections, and radius searches find regions by distance or driving time.

Typical use:
    from plz_territory import DrawnShape, GeometryIndex, SessionRegistry, load_granularity

    registry = SessionRegistry(
        lambda g: GeometryIndex.build(load_granularity(g), g)
    )
    session = registry.session("layer-1", "3digit")
    session.select_by_shape(DrawnShape.circle((11.576, 48.137), 10))
    session.run_bulk("holes")
"""

from plz_territory.config_types import AppConfig
from plz_territory.data import load_granularity, load_regions
from plz_territory.geometry import AdjacencyResolver, GeometryIndex
from plz_territory.models import (
    BulkOperation,
    DrawnShape,
    Granularity,
    Region,
    SaveResult,
    SearchHit,
    SearchMethod,
    SearchMetric,
    SearchResult,
    SelectionMode,
)
from plz_territory.search import (
    CancellationToken,
    DistanceSearchEngine,
    OSRMRoutingClient,
    RoutingError,
)
from plz_territory.selection import (
    BulkRegionOperator,
    InMemoryLayerStore,
    SelectionSession,
    SelectionSetManager,
    SessionRegistry,
    ShapeSelector,
)

__version__ = "1.0.0"

__all__ = [
    "AppConfig",
    "AdjacencyResolver",
    "BulkOperation",
    "BulkRegionOperator",
    "CancellationToken",
    "DistanceSearchEngine",
    "DrawnShape",
    "GeometryIndex",
    "Granularity",
    "InMemoryLayerStore",
    "OSRMRoutingClient",
    "Region",
    "RoutingError",
    "SaveResult",
    "SearchHit",
    "SearchMethod",
    "SearchMetric",
    "SearchResult",
    "SelectionMode",
    "SelectionSession",
    "SelectionSetManager",
    "SessionRegistry",
    "ShapeSelector",
    "load_granularity",
    "load_regions",
]
