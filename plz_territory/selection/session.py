#!/usr/bin/env python3
"""
PLZ Territory Engine - Selection Sessions

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Explicit session object per layer, owning the selection and
the components that mutate it, plus a registry that shares one read-only
GeometryIndex per granularity across all sessions.

Key Components:
- LayerStore: Protocol of the external layer storage collaborator
- InMemoryLayerStore: Reference implementation (tests, demo server)
- SelectionSession: Selection + shape selector + bulk operator + search
  for one layer; every mutation runs under the session's RLock
- SessionRegistry: layer id -> session, granularity -> index

Concurrency:
- One lock per layer, no global lock across layers
- Bulk operations compute and apply under the same lock, so a racing
  toggle never observes a half-applied expand
- Distance searches resolve outside the lock (network I/O) and merge
  under it
- Indexes are built once per granularity, outside the registry lock,
  and replaced, never mutated

Persistence:
- Only on explicit save()/load(); failures come back as SaveResult

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from plz_territory.config_types import AppConfig
from plz_territory.data.granularity_utils import migrate_codes
from plz_territory.geometry.adjacency import AdjacencyResolver
from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.models import (
    BulkOperation,
    Granularity,
    LonLat,
    SaveResult,
    SearchMethod,
    SearchMetric,
    SearchResult,
    SelectionMode,
)
from plz_territory.search.distance_search import DistanceSearchEngine
from plz_territory.search.routing_client import CancellationToken, RoutingClient
from plz_territory.selection.bulk_operator import BulkRegionOperator
from plz_territory.selection.selection_set import SelectionListener, SelectionSetManager
from plz_territory.selection.shape_selector import ShapeInput, ShapeSelector

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# 💾 LAYER STORAGE COLLABORATOR
# ═══════════════════════════════════════════════════════════════════════════


class LayerStore(Protocol):
    """External layer persistence."""

    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        """Layer record with a ``postal_codes`` list, or None."""
        ...

    def set_layer_codes(self, layer_id: str, codes: List[str]) -> bool:
        """Replace the layer's codes; True on success."""
        ...


class InMemoryLayerStore:
    """Dictionary-backed LayerStore."""

    def __init__(self) -> None:
        self._layers: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            codes = self._layers.get(layer_id)
            if codes is None:
                return None
            return {"id": layer_id, "postal_codes": list(codes)}

    def set_layer_codes(self, layer_id: str, codes: List[str]) -> bool:
        with self._lock:
            self._layers[layer_id] = list(codes)
        return True


# ═══════════════════════════════════════════════════════════════════════════
# 🗂️ SESSION
# ═══════════════════════════════════════════════════════════════════════════


class SelectionSession:
    """
    Interaction state of one layer at one granularity.

    Args:
        layer_id: Identifier of the layer in the storage collaborator
        index: Shared read-only index of the active granularity
        app_config: Application configuration
        layer_store: Storage collaborator used by save()/load()
        routing_client: Routing collaborator for driving searches
    """

    def __init__(
        self,
        layer_id: str,
        index: GeometryIndex,
        app_config: Optional[AppConfig] = None,
        layer_store: Optional[LayerStore] = None,
        routing_client: Optional[RoutingClient] = None,
    ) -> None:
        self.layer_id = layer_id
        self.app_config = app_config or AppConfig()
        self.layer_store = layer_store
        self.routing_client = routing_client
        self.lock = threading.RLock()
        self.dirty = False

        self.selection = SelectionSetManager(
            known_codes=index if self.app_config.selection.validate_codes else None
        )
        self.selection.subscribe(self._mark_dirty)
        self._bind(index)

    def _bind(self, index: GeometryIndex) -> None:
        cfg = self.app_config
        self.index = index
        self.resolver = AdjacencyResolver(index)
        self.shape_selector = ShapeSelector(index, self.selection, cfg.geometry, cfg.selection)
        self.bulk = BulkRegionOperator(index, self.resolver, cfg.fill_holes)
        self.search_engine = DistanceSearchEngine(
            index, self.routing_client, cfg.search, cfg.routing
        )

    def _mark_dirty(self, _snapshot: List[str]) -> None:
        self.dirty = True

    @property
    def granularity(self) -> Granularity:
        return self.index.granularity

    # ═══════════════════════════════════════════════════════════════════════
    # 🖱️ SELECTION
    # ═══════════════════════════════════════════════════════════════════════

    def snapshot(self) -> List[str]:
        with self.lock:
            return self.selection.snapshot()

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        return self.selection.subscribe(listener)

    def add(self, codes: Iterable[str]) -> List[str]:
        with self.lock:
            return self.selection.add(codes)

    def remove(self, codes: Iterable[str]) -> List[str]:
        with self.lock:
            return self.selection.remove(codes)

    def toggle(self, code: str) -> bool:
        with self.lock:
            return self.selection.toggle(code)

    def clear(self) -> List[str]:
        with self.lock:
            return self.selection.clear()

    def select_by_shape(
        self, shape: ShapeInput, mode: Optional[Union[SelectionMode, str]] = None
    ) -> List[str]:
        with self.lock:
            return self.shape_selector.select_by_shape(shape, mode)

    def select_at_point(self, point: LonLat) -> Optional[str]:
        with self.lock:
            return self.shape_selector.select_at_point(point)

    def run_bulk(self, operation: Union[BulkOperation, str]) -> List[str]:
        """Compute and apply a bulk operation atomically for this layer."""
        with self.lock:
            return self.bulk.apply(operation, self.selection)

    def search(
        self,
        center: LonLat,
        radius: float,
        metric: Union[SearchMetric, str] = SearchMetric.DISTANCE,
        method: Optional[Union[SearchMethod, str]] = None,
        mode: Union[SelectionMode, str] = SelectionMode.ADD,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResult:
        """
        Distance search merged into the selection like a drawn shape.

        Cancelled or failed-validation results are not merged.
        """
        result = self.search_engine.search(center, radius, metric, method, cancel_token)
        if result.cancelled or (result.error and not result.fell_back_to_approximation):
            return result
        mode = mode if isinstance(mode, SelectionMode) else SelectionMode.from_string(mode)
        codes = result.codes
        with self.lock:
            if mode is SelectionMode.REPLACE:
                self.selection.replace(codes)
            elif mode is SelectionMode.TOGGLE:
                self.selection.toggle_many(codes)
            else:
                self.selection.add(codes)
        return result

    # ═══════════════════════════════════════════════════════════════════════
    # 🔄 GRANULARITY CHANGE
    # ═══════════════════════════════════════════════════════════════════════

    def change_granularity(self, index: GeometryIndex) -> List[str]:
        """
        Switch to another granularity's index, migrating the selection.

        Finer tiers expand each code to the codes starting with it; coarser
        tiers clear the selection.

        Returns:
            The migrated selection.
        """
        with self.lock:
            if index.granularity is self.granularity:
                if self.app_config.selection.validate_codes:
                    self.selection.set_known_codes(index)
                self._bind(index)
                return self.selection.snapshot()

            change = migrate_codes(
                self.selection.snapshot(), self.granularity, index.granularity, index.codes
            )
            logger.info(
                f"🔄 Layer {self.layer_id}: {self.granularity.value} -> "
                f"{index.granularity.value} (+{change.added} / -{change.removed})"
            )
            # Validate against the new index from here on
            if self.app_config.selection.validate_codes:
                self.selection.set_known_codes(index)
            self._bind(index)
            self.selection.replace(change.codes)
            return self.selection.snapshot()

    # ═══════════════════════════════════════════════════════════════════════
    # 💾 PERSISTENCE
    # ═══════════════════════════════════════════════════════════════════════

    def save(self) -> SaveResult:
        """Write the current selection to the layer store."""
        with self.lock:
            codes = self.selection.snapshot()
            if self.layer_store is None:
                return SaveResult(False, self.layer_id, len(codes), "No layer store configured")
            try:
                ok = self.layer_store.set_layer_codes(self.layer_id, codes)
            except Exception as e:
                logger.warning(f"⚠️ Saving layer {self.layer_id} failed: {e}")
                return SaveResult(False, self.layer_id, len(codes), str(e))
            if not ok:
                return SaveResult(False, self.layer_id, len(codes), "Layer store rejected the write")
            self.dirty = False
            logger.info(f"💾 Saved layer {self.layer_id}: {len(codes)} codes")
            return SaveResult(True, self.layer_id, len(codes))

    def load(self) -> SaveResult:
        """Replace the selection with the layer's stored codes."""
        with self.lock:
            if self.layer_store is None:
                return SaveResult(False, self.layer_id, 0, "No layer store configured")
            try:
                layer = self.layer_store.get_layer(self.layer_id)
            except Exception as e:
                logger.warning(f"⚠️ Loading layer {self.layer_id} failed: {e}")
                return SaveResult(False, self.layer_id, 0, str(e))
            if layer is None:
                return SaveResult(False, self.layer_id, 0, "Layer not found")
            self.selection.replace(layer.get("postal_codes") or [])
            self.dirty = False
            return SaveResult(True, self.layer_id, len(self.selection))


# ═══════════════════════════════════════════════════════════════════════════
# 📚 REGISTRY
# ═══════════════════════════════════════════════════════════════════════════


IndexFactory = Callable[[Granularity], GeometryIndex]


class SessionRegistry:
    """
    Hands out one session per layer and one index per granularity.

    Args:
        index_factory: Builds the index of a granularity (e.g. from the
            dataset loader); called at most once per granularity until
            refresh()
        app_config: Application configuration
        layer_store: Storage collaborator shared by all sessions
        routing_client: Routing collaborator shared by all sessions
    """

    def __init__(
        self,
        index_factory: IndexFactory,
        app_config: Optional[AppConfig] = None,
        layer_store: Optional[LayerStore] = None,
        routing_client: Optional[RoutingClient] = None,
    ) -> None:
        self.index_factory = index_factory
        self.app_config = app_config or AppConfig()
        self.layer_store = layer_store
        self.routing_client = routing_client
        self._indexes: Dict[Granularity, GeometryIndex] = {}
        self._sessions: Dict[str, SelectionSession] = {}
        self._lock = threading.Lock()
        self._build_locks: Dict[Granularity, threading.Lock] = {}

    def index_for(self, granularity: Union[Granularity, str]) -> GeometryIndex:
        """
        Shared index of a granularity, built on first use.

        The build (dataset load, maybe a download) runs outside the registry
        lock. A per-granularity build lock keeps it to one build per tier.
        """
        g = Granularity.from_string(granularity)
        with self._lock:
            index = self._indexes.get(g)
            if index is not None:
                return index
            build_lock = self._build_locks.setdefault(g, threading.Lock())

        with build_lock:
            with self._lock:
                index = self._indexes.get(g)
            if index is None:
                logger.info(f"📂 Building {g.value} index")
                index = self.index_factory(g)
                with self._lock:
                    index = self._indexes.setdefault(g, index)
        return index

    def loaded_granularities(self) -> List[Granularity]:
        with self._lock:
            return [g for g in Granularity if g in self._indexes]

    def refresh(self, granularity: Union[Granularity, str]) -> GeometryIndex:
        """Rebuild an index and rebind the sessions that use it."""
        g = Granularity.from_string(granularity)
        index = self.index_factory(g)
        with self._lock:
            self._indexes[g] = index
            affected = [s for s in self._sessions.values() if s.granularity is g]
        for session in affected:
            session.change_granularity(index)
        return index

    def session(
        self, layer_id: str, granularity: Union[Granularity, str]
    ) -> SelectionSession:
        """Session of a layer, switching its granularity if needed."""
        index = self.index_for(granularity)
        with self._lock:
            session = self._sessions.get(layer_id)
            if session is None:
                session = SelectionSession(
                    layer_id, index, self.app_config, self.layer_store, self.routing_client
                )
                self._sessions[layer_id] = session
                return session
        if session.index is not index:
            session.change_granularity(index)
        return session

    def drop(self, layer_id: str) -> None:
        with self._lock:
            self._sessions.pop(layer_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
