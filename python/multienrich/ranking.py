"""
Ranked gene list and directional subsets.

The ranked list feeds rank-based analysis (GSEA); the two directional
subsets feed subset-based analysis (ORA). Both are built once per run and
never modified afterwards.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence, Tuple

import pandas as pd

from .errors import InvalidThresholdError
from .id_mapper import IdentifierRecord
from .results import Direction


@dataclass(frozen=True)
class RankedGeneList:
    """Database keys with effect sizes, unique keys, non-increasing scores"""
    keys: Tuple[str, ...]
    scores: Tuple[float, ...]

    def __post_init__(self):
        if len(self.keys) != len(self.scores):
            raise ValueError("keys and scores must have the same length")
        if len(set(self.keys)) != len(self.keys):
            raise ValueError("RankedGeneList keys must be unique")
        if any(a < b for a, b in zip(self.scores, self.scores[1:])):
            raise ValueError("RankedGeneList scores must be sorted in decreasing order")

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[Tuple[str, float]]:
        return iter(zip(self.keys, self.scores))

    def __contains__(self, key) -> bool:
        return key in self.keys

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(self.keys, self.scores))

    def as_series(self) -> pd.Series:
        """Ranking as a pandas Series (index = key), the shape gseapy expects"""
        return pd.Series(list(self.scores), index=list(self.keys), dtype=float, name='score')


@dataclass(frozen=True)
class DirectionalSubset:
    """Keys whose effect size crosses the threshold in one direction"""
    direction: Direction
    threshold: float
    keys: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, key) -> bool:
        return key in self.keys

    def as_set(self) -> frozenset:
        return frozenset(self.keys)


def build_ranked_list(
    records: Sequence[IdentifierRecord],
    effect_sizes: Sequence[float],
    invert: bool = False,
) -> RankedGeneList:
    """
    Build the ranked gene list from resolved records.

    Args:
        records: Identifier records in input order
        effect_sizes: Effect size per record (same order)
        invert: Negate effect sizes, swapping which end of the ranking is
            shown as up-regulated. Independent of subset direction.

    Returns:
        RankedGeneList sorted by decreasing score; ties keep input order
    """
    if len(records) != len(effect_sizes):
        raise ValueError(
            f"Got {len(records)} records but {len(effect_sizes)} effect sizes"
        )

    entries: List[Tuple[int, str, float]] = []
    dropped_unresolved = 0
    dropped_invalid = 0
    for position, (record, effect) in enumerate(zip(records, effect_sizes)):
        if record.database_key is None:
            dropped_unresolved += 1
            continue
        try:
            score = float(effect)
        except (TypeError, ValueError):
            dropped_invalid += 1
            continue
        if math.isnan(score) or math.isinf(score):
            dropped_invalid += 1
            continue
        if invert:
            score = -score
        entries.append((position, record.database_key, score))

    # Several names may resolve to one key; keep the strongest effect
    best: Dict[str, Tuple[int, str, float]] = {}
    for entry in entries:
        current = best.get(entry[1])
        if current is None or abs(entry[2]) > abs(current[2]):
            best[entry[1]] = entry
    collapsed = len(entries) - len(best)

    ordered = sorted(best.values(), key=lambda e: e[0])
    ordered.sort(key=lambda e: -e[2])  # stable: ties keep input order

    if dropped_unresolved or dropped_invalid or collapsed:
        logging.info(
            f"Ranked list: {len(ordered)} genes "
            f"({dropped_unresolved} unresolved, {dropped_invalid} invalid scores, "
            f"{collapsed} duplicate keys collapsed)"
        )

    return RankedGeneList(
        keys=tuple(e[1] for e in ordered),
        scores=tuple(e[2] for e in ordered),
    )


def split_by_threshold(
    ranked: RankedGeneList,
    threshold: float,
) -> Tuple[DirectionalSubset, DirectionalSubset]:
    """
    Partition a ranked list with one symmetric threshold.

    Positive subset: score >= threshold. Negative subset: score <= -threshold.

    Raises:
        InvalidThresholdError: If threshold is not > 0
    """
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise InvalidThresholdError(threshold)
    if math.isnan(value) or value <= 0:
        raise InvalidThresholdError(threshold)

    threshold = value
    up = tuple(k for k, s in ranked if s >= threshold)
    down = tuple(k for k, s in ranked if s <= -threshold)

    logging.info(f"Subsets at |score| >= {threshold}: {len(up)} up, {len(down)} down")
    return (
        DirectionalSubset(Direction.UP, threshold, up),
        DirectionalSubset(Direction.DOWN, threshold, down),
    )
