"""Selection state, drawn-shape resolution, bulk operations and sessions."""

from .bulk_operator import BulkRegionOperator
from .selection_set import SelectionListener, SelectionSetManager
from .session import InMemoryLayerStore, LayerStore, SelectionSession, SessionRegistry
from .shape_selector import ShapeSelector

__all__ = [
    "BulkRegionOperator",
    "InMemoryLayerStore",
    "LayerStore",
    "SelectionListener",
    "SelectionSession",
    "SelectionSetManager",
    "SessionRegistry",
    "ShapeSelector",
]
