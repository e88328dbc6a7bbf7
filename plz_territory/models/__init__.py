"""Data models package for regions, drawn shapes and search results."""

from .region_models import (
    BulkOperation,
    DrawnShape,
    Granularity,
    LonLat,
    Region,
    SaveResult,
    SearchHit,
    SearchMethod,
    SearchMetric,
    SearchResult,
    SelectionMode,
    ShapeKind,
    polygon_parts,
)

__all__ = [
    # Enums
    "BulkOperation",
    "Granularity",
    "SearchMethod",
    "SearchMetric",
    "SelectionMode",
    "ShapeKind",
    # Region + shapes
    "LonLat",
    "Region",
    "DrawnShape",
    "polygon_parts",
    # Results
    "SaveResult",
    "SearchHit",
    "SearchResult",
]
