"""
Granularity helpers for postal-code lists.

Covers conversion of codes between digit tiers, compatibility checks used
before a layer switches granularity, migration of a layer's codes to a new
granularity, and normalisation of bulk-import candidate lists.

A change to a FINER tier (1 -> 2 -> 3 -> 5) is compatible: every code expands
to the finer codes that start with it. A change to a COARSER tier drops the
existing codes.
"""

from dataclasses import dataclass
import logging
import re
from typing import Any, Dict, Iterable, List, Union

from plz_territory.models import Granularity

logger = logging.getLogger(__name__)

GranularityLike = Union[Granularity, str]

_NON_DIGITS = re.compile(r"\D")


def _granularity(value: GranularityLike) -> Granularity:
    return value if isinstance(value, Granularity) else Granularity.from_string(value)


def granularity_options() -> List[Dict[str, Any]]:
    """All tiers as {value, label, level}, finest last."""
    return [{"value": g.value, "label": g.label, "level": g.level} for g in Granularity]


def convert_code_to_granularity(code: str, granularity: GranularityLike) -> str:
    """
    Reduce a postal code to the prefix of a tier.

    Non-digits are stripped first, so "D-12345" at 2digit becomes "12".
    The 5digit tier returns the cleaned code unchanged.
    """
    if not code:
        return code
    clean = _NON_DIGITS.sub("", str(code))
    g = _granularity(granularity)
    if g is Granularity.FIVE_DIGIT:
        return clean
    return clean[: g.level]


def is_granularity_change_compatible(
    current: GranularityLike, new: GranularityLike
) -> bool:
    """True when moving to the same or a finer tier."""
    return _granularity(new).level >= _granularity(current).level


def would_granularity_change_cause_data_loss(
    current: GranularityLike, new: GranularityLike, has_codes: bool = False
) -> bool:
    """True when codes exist and the change moves to a coarser tier."""
    if not has_codes:
        return False
    return not is_granularity_change_compatible(current, new)


def is_code_compatible(
    code: str, source: GranularityLike, target: GranularityLike
) -> bool:
    """
    Whether a code of ``source`` tier can be represented at ``target``.

    Moving to a finer tier is always compatible; moving to a coarser tier
    requires the code to start with its own reduced prefix.
    """
    if _granularity(target).level < _granularity(source).level:
        return str(code).startswith(convert_code_to_granularity(code, target))
    return True


def describe_granularity_change(
    current: GranularityLike, new: GranularityLike, code_count: int = 0
) -> Dict[str, str]:
    """User-facing summary of a tier change (German UI labels)."""
    cur, nxt = _granularity(current), _granularity(new)
    if cur is nxt:
        return {
            "type": "neutral",
            "title": f"Bereits {cur.label}",
            "description": "Keine Änderung erforderlich",
        }
    if is_granularity_change_compatible(cur, nxt):
        return {
            "type": "compatible",
            "title": f"Wechsel zu {nxt.label}",
            "description": (
                f"{code_count} Regionen bleiben kompatibel"
                if code_count > 0
                else "Kompatible Änderung"
            ),
        }
    return {
        "type": "destructive",
        "title": f"Wechsel zu {nxt.label}",
        "description": (
            f"⚠️ Würde alle {code_count} Regionen löschen"
            if code_count > 0
            else "Niedrigere Granularität"
        ),
    }


def normalise_codes(codes: Iterable[Any], granularity: GranularityLike) -> List[str]:
    """
    Turn a bulk-import candidate list into codes of one tier.

    Values are stringified, reduced to the tier's prefix and de-duplicated,
    keeping first-seen order. Values without digits, or shorter than the
    tier requires, are dropped.
    """
    g = _granularity(granularity)
    seen = set()
    out: List[str] = []
    dropped = 0
    for raw in codes:
        if raw is None:
            dropped += 1
            continue
        code = convert_code_to_granularity(str(raw).strip(), g)
        if not code or len(code) < g.level:
            dropped += 1
            continue
        if code not in seen:
            seen.add(code)
            out.append(code)
    if dropped:
        logger.debug(f"Dropped {dropped} unusable import values for {g.value}")
    return out


# ═══════════════════════════════════════════════════════════════════════════
# 🔄 LAYER MIGRATION
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class GranularityChange:
    """Outcome of migrating one layer's codes to another tier."""

    codes: List[str]
    added: int
    removed: int

    @property
    def migrated(self) -> bool:
        return self.added > 0 or self.removed > 0


def migrate_codes(
    codes: Iterable[str],
    current: GranularityLike,
    new: GranularityLike,
    available_codes: Iterable[str],
) -> GranularityChange:
    """
    Migrate a layer's codes to a new tier.

    - Finer tier: every code is replaced by all ``available_codes`` that
      start with it. If nothing matches, the layer keeps its codes.
    - Coarser tier: all codes are removed.
    - Same tier: unchanged.

    Args:
        codes: Codes currently in the layer
        current: Current tier
        new: Target tier
        available_codes: Every region code at the target tier

    Returns:
        GranularityChange with the new code list (sorted).
    """
    cur, nxt = _granularity(current), _granularity(new)
    existing = sorted(set(codes))

    if nxt.level == cur.level or not existing:
        return GranularityChange(codes=existing, added=0, removed=0)

    if nxt.level < cur.level:
        return GranularityChange(codes=[], added=0, removed=len(existing))

    targets = sorted(set(available_codes))
    expanded = sorted({t for t in targets for c in existing if t.startswith(c)})
    if not expanded:
        return GranularityChange(codes=existing, added=0, removed=0)
    return GranularityChange(codes=expanded, added=len(expanded), removed=len(existing))
