"""
Unit tests for selection sessions and the session registry.

Tests:
1. Session mutations mark the layer dirty and notify listeners
2. Explicit save/load through the layer store (success and failures)
3. Bulk operations and searches merged into the selection
4. Granularity change migrates the selection
5. Registry builds one index per granularity and rebinds on refresh
6. Concurrent toggles on one layer never lose updates

Run with: python -m pytest _tests/test_session.py -v
"""

import threading

import pytest


def _registry(grid_factory, store=None, router=None):
    """Registry whose 1digit/2digit/3digit tiers are nested grids."""
    from plz_territory.models import Granularity
    from plz_territory.selection.session import SessionRegistry

    built = []

    def factory(g):
        built.append(g)
        if g is Granularity.ONE_DIGIT:
            # codes "0", "1": two columns of the 2x2 two-digit grid below
            from shapely.geometry import box

            from plz_territory.geometry.geometry_index import GeometryIndex
            from plz_territory.models import Region

            return GeometryIndex.build(
                [Region("0", g, box(8.0, 50.0, 8.1, 50.2)), Region("1", g, box(8.1, 50.0, 8.2, 50.2))],
                g,
            )
        return grid_factory(2, 2, granularity=g)

    registry = SessionRegistry(factory, layer_store=store, routing_client=router)
    return registry, built


class TestSessionState:
    """Per-layer selection state."""

    def test_mutation_marks_dirty(self, grid_index):
        from plz_territory.selection.session import SelectionSession

        session = SelectionSession("layer-1", grid_index)
        assert not session.dirty
        session.add(["00"])
        assert session.dirty
        assert session.snapshot() == ["00"]

    def test_unknown_codes_rejected(self, grid_index):
        from plz_territory.selection.session import SelectionSession

        session = SelectionSession("layer-1", grid_index)
        session.add(["00", "99999"])
        assert session.snapshot() == ["00"]

    def test_listener(self, grid_index):
        from plz_territory.selection.session import SelectionSession

        events = []
        session = SelectionSession("layer-1", grid_index)
        session.subscribe(events.append)
        session.toggle("11")
        session.toggle("11")
        assert events == [["11"], []]

    def test_bulk_applied_atomically(self, ring_index):
        from plz_territory.selection.session import SelectionSession

        session = SelectionSession("layer-1", ring_index)
        session.add(list("12345678"))
        assert session.run_bulk("holes") == ["9"]
        assert session.snapshot() == list("123456789")

    def test_search_merges_into_selection(self, munich_index, munich):
        from plz_territory.selection.session import SelectionSession

        session = SelectionSession("layer-1", munich_index)
        result = session.search(munich, 5.0, method="approximation")
        assert result.hits
        assert session.snapshot() == sorted(result.codes)

    def test_invalid_search_not_merged(self, munich_index, munich):
        from plz_territory.selection.session import SelectionSession

        session = SelectionSession("layer-1", munich_index)
        result = session.search(munich, 999.0)
        assert result.error
        assert session.snapshot() == []

    def test_cancelled_search_not_merged(self, munich_index, munich):
        from plz_territory.search.routing_client import CancellationToken
        from plz_territory.selection.session import SelectionSession

        token = CancellationToken()
        token.cancel()
        session = SelectionSession("layer-1", munich_index)
        result = session.search(munich, 5.0, cancel_token=token)
        assert result.cancelled
        assert session.snapshot() == []

    def test_concurrent_toggles(self, grid_index):
        """Every code toggled once from its own thread ends up selected."""
        from plz_territory.selection.session import SelectionSession

        session = SelectionSession("layer-1", grid_index)
        threads = [threading.Thread(target=session.toggle, args=(c,)) for c in grid_index.codes]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert session.snapshot() == grid_index.codes


class TestPersistence:
    """Explicit save / load."""

    def test_save_and_load(self, grid_index):
        from plz_territory.selection.session import InMemoryLayerStore, SelectionSession

        store = InMemoryLayerStore()
        session = SelectionSession("layer-1", grid_index, layer_store=store)
        session.add(["00", "01"])

        result = session.save()
        assert result.success
        assert result.code_count == 2
        assert not session.dirty
        assert store.get_layer("layer-1")["postal_codes"] == ["00", "01"]

        other = SelectionSession("layer-1", grid_index, layer_store=store)
        assert other.load().success
        assert other.snapshot() == ["00", "01"]

    def test_save_without_store(self, grid_index):
        from plz_territory.selection.session import SelectionSession

        result = SelectionSession("layer-1", grid_index).save()
        assert not result.success
        assert result.error

    def test_store_failure_reported(self, grid_index):
        from plz_territory.selection.session import SelectionSession

        class BrokenStore:
            def get_layer(self, layer_id):
                raise ConnectionError("database down")

            def set_layer_codes(self, layer_id, codes):
                raise ConnectionError("database down")

        session = SelectionSession("layer-1", grid_index, layer_store=BrokenStore())
        session.add(["00"])
        saved = session.save()
        assert not saved.success
        assert "database down" in saved.error
        assert session.dirty, "Unsaved changes stay dirty"
        assert not session.load().success
        assert session.snapshot() == ["00"]

    def test_rejected_write(self, grid_index):
        from plz_territory.selection.session import InMemoryLayerStore, SelectionSession

        class RejectingStore(InMemoryLayerStore):
            def set_layer_codes(self, layer_id, codes):
                return False

        result = SelectionSession("layer-1", grid_index, layer_store=RejectingStore()).save()
        assert not result.success

    def test_load_missing_layer(self, grid_index):
        from plz_territory.selection.session import InMemoryLayerStore, SelectionSession

        result = SelectionSession("nope", grid_index, layer_store=InMemoryLayerStore()).load()
        assert not result.success
        assert result.error == "Layer not found"


class TestRegistry:
    """Index sharing and granularity changes."""

    def test_index_built_once(self, grid_factory):
        from plz_territory.models import Granularity

        registry, built = _registry(grid_factory)
        a = registry.session("a", "2digit")
        b = registry.session("b", Granularity.TWO_DIGIT)

        assert a.index is b.index
        assert built == [Granularity.TWO_DIGIT]
        assert registry.loaded_granularities() == [Granularity.TWO_DIGIT]
        assert len(registry) == 2

    def test_same_session_returned(self, grid_factory):
        registry, _ = _registry(grid_factory)
        assert registry.session("a", "2digit") is registry.session("a", "2digit")

    def test_change_to_finer_expands(self, grid_factory):
        """"0" at 1digit becomes every 2digit code starting with "0"."""
        registry, _ = _registry(grid_factory)
        session = registry.session("a", "1digit")
        session.add(["0"])

        registry.session("a", "2digit")
        assert session.granularity.value == "2digit"
        assert session.snapshot() == ["00", "01"]

    def test_change_to_coarser_clears(self, grid_factory):
        registry, _ = _registry(grid_factory)
        session = registry.session("a", "2digit")
        session.add(["00", "11"])

        registry.session("a", "1digit")
        assert session.snapshot() == []

    def test_refresh_rebinds_sessions(self, grid_factory):
        registry, built = _registry(grid_factory)
        session = registry.session("a", "2digit")
        session.add(["10"])
        old_index = session.index

        new_index = registry.refresh("2digit")
        assert session.index is new_index
        assert session.index is not old_index
        assert session.snapshot() == ["10"]
        assert len(built) == 2

    def test_drop(self, grid_factory):
        registry, _ = _registry(grid_factory)
        first = registry.session("a", "2digit")
        registry.drop("a")
        assert registry.session("a", "2digit") is not first

    def test_slow_build_does_not_block_other_tiers(self, grid_factory):
        """While the 1digit index loads, 2digit sessions are still served."""
        from plz_territory.models import Granularity
        from plz_territory.selection.session import SessionRegistry

        release = threading.Event()
        started = threading.Event()
        built = []

        def factory(g):
            built.append(g)
            if g is Granularity.ONE_DIGIT:
                started.set()
                assert release.wait(timeout=10), "Build was never released"
            return grid_factory(2, 2, granularity=g)

        registry = SessionRegistry(factory)
        results = []
        slow = [
            threading.Thread(target=lambda: results.append(registry.index_for("1digit")))
            for _ in range(2)
        ]
        for t in slow:
            t.start()
        assert started.wait(timeout=10)

        try:
            served = []
            fast = threading.Thread(target=lambda: served.append(registry.session("b", "2digit")))
            fast.start()
            fast.join(timeout=5)
            assert not fast.is_alive(), "2digit lookup waited for the 1digit build"
            assert served[0].granularity is Granularity.TWO_DIGIT
        finally:
            release.set()
            for t in slow:
                t.join(timeout=10)

        assert built.count(Granularity.ONE_DIGIT) == 1, "One build per tier"
        assert len(results) == 2 and results[0] is results[1]

    def test_unknown_granularity(self, grid_factory):
        registry, _ = _registry(grid_factory)
        with pytest.raises(ValueError):
            registry.session("a", "4digit")
