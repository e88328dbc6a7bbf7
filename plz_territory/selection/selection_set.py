"""
Selection Set Manager - canonical set of selected region codes.

Architectural Overview:
=======================
One SelectionSetManager per layer and granularity. Every upstream component
(shape selector, bulk operator, distance search merge, click toggle) ends
here. All operations are idempotent; "nothing to do" is never an error.

Listeners registered with ``subscribe`` receive the sorted snapshot after
every mutation that actually changed the set. Persistence is NOT done here:
the owning session saves explicitly.

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from typing import Callable, Container, Iterable, Iterator, List, Optional, Set
import logging

logger = logging.getLogger(__name__)

SelectionListener = Callable[[List[str]], None]


class SelectionSetManager:
    """
    Mutable set of region codes with change notification.

    Args:
        known_codes: Optional container (e.g. a GeometryIndex) used to
            ignore codes that do not exist at the active granularity
        initial: Codes to start with
    """

    def __init__(
        self,
        known_codes: Optional[Container[str]] = None,
        initial: Optional[Iterable[str]] = None,
    ) -> None:
        self._known = known_codes
        self._codes: Set[str] = set()
        self._listeners: List[SelectionListener] = []
        if initial:
            self._codes.update(self._accept(initial))

    # ═══════════════════════════════════════════════════════════════════════
    # 🔍 READ
    # ═══════════════════════════════════════════════════════════════════════

    def __len__(self) -> int:
        return len(self._codes)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._codes))

    def __contains__(self, code: object) -> bool:
        return code in self._codes

    def contains(self, code: str) -> bool:
        return code in self._codes

    def snapshot(self) -> List[str]:
        """Sorted copy of the current selection."""
        return sorted(self._codes)

    def as_set(self) -> Set[str]:
        """Unordered copy of the current selection."""
        return set(self._codes)

    # ═══════════════════════════════════════════════════════════════════════
    # ✏️ MUTATE
    # ═══════════════════════════════════════════════════════════════════════

    def add(self, codes: Iterable[str]) -> List[str]:
        """Add codes; returns the codes that were newly added."""
        added = [c for c in self._accept(codes) if c not in self._codes]
        if added:
            self._codes.update(added)
            self._notify()
        return added

    def remove(self, codes: Iterable[str]) -> List[str]:
        """Remove codes; returns the codes that were actually removed."""
        removed = [c for c in _unique(codes) if c in self._codes]
        if removed:
            self._codes.difference_update(removed)
            self._notify()
        return removed

    def toggle(self, code: str) -> bool:
        """
        Flip one code.

        Returns:
            True if the code is selected afterwards.
        """
        if code in self._codes:
            self._codes.discard(code)
            self._notify()
            return False
        if not self._accept([code]):
            return False
        self._codes.add(code)
        self._notify()
        return True

    def toggle_many(self, codes: Iterable[str]) -> List[str]:
        """Flip each code individually; one notification for the batch.

        Returns:
            Codes whose membership changed.
        """
        changed: List[str] = []
        for code in _unique(codes):
            if code in self._codes:
                self._codes.discard(code)
                changed.append(code)
            elif self._accept([code]):
                self._codes.add(code)
                changed.append(code)
        if changed:
            self._notify()
        return changed

    def replace(self, codes: Iterable[str]) -> List[str]:
        """Make the selection exactly ``codes``; returns changed codes."""
        new = set(self._accept(codes))
        changed = sorted(new.symmetric_difference(self._codes))
        if changed:
            self._codes = new
            self._notify()
        return changed

    def clear(self) -> List[str]:
        """Empty the selection; returns the codes that were removed."""
        removed = sorted(self._codes)
        if removed:
            self._codes.clear()
            self._notify()
        return removed

    # ═══════════════════════════════════════════════════════════════════════
    # 📣 LISTENERS
    # ═══════════════════════════════════════════════════════════════════════

    def set_known_codes(self, known_codes: Optional[Container[str]]) -> None:
        """Swap the container used to validate incoming codes."""
        self._known = known_codes

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception as e:
                logger.warning(f"⚠️ Selection listener failed: {e}")

    def _accept(self, codes: Iterable[str]) -> List[str]:
        out = []
        for code in _unique(codes):
            if self._known is not None and code not in self._known:
                logger.debug(f"Ignoring unknown code {code!r}")
                continue
            out.append(code)
        return out


def _unique(codes: Iterable[str]) -> List[str]:
    """De-duplicate keeping first-seen order; non-strings are coerced."""
    if isinstance(codes, str):
        codes = [codes]
    seen: Set[str] = set()
    out: List[str] = []
    for code in codes:
        code = str(code)
        if code not in seen:
            seen.add(code)
            out.append(code)
    return out
