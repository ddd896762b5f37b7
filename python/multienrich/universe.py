"""
Gene universes and coverage auditing.

The internal universe is every experiment gene with a resolvable database
key; reference universes are all genes a database annotates. The audit is
diagnostic, except that a near-empty overlap aborts the run: every
subset-based p-value computed against such a universe would be meaningless.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

import pandas as pd

from .errors import DegenerateUniverseError
from .id_mapper import IdentifierRecord


@dataclass(frozen=True)
class GeneUniverse:
    """Background population of database keys"""
    name: str
    keys: FrozenSet[str]
    internal: bool = False

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, key) -> bool:
        return key in self.keys

    @classmethod
    def from_records(cls, records: Iterable[IdentifierRecord], name: str = 'internal') -> 'GeneUniverse':
        keys = frozenset(r.database_key for r in records if r.database_key is not None)
        return cls(name=name, keys=keys, internal=True)

    @classmethod
    def reference(cls, name: str, keys: Iterable[str]) -> 'GeneUniverse':
        return cls(name=name, keys=frozenset(str(k) for k in keys), internal=False)


@dataclass
class OverlapReport:
    """Overlap between the internal universe and one reference universe"""
    database: str
    internal_size: int
    reference_size: int
    overlap: List[str] = field(default_factory=list)
    complement: List[str] = field(default_factory=list)  # reference genes not measured
    overlap_names: List[str] = field(default_factory=list)
    complement_names: List[str] = field(default_factory=list)

    @property
    def overlap_fraction(self) -> float:
        """Share of the internal universe known to the reference database"""
        return len(self.overlap) / self.internal_size if self.internal_size else 0.0

    def to_dict(self) -> Dict:
        return {
            'database': self.database,
            'internal_size': self.internal_size,
            'reference_size': self.reference_size,
            'overlap_size': len(self.overlap),
            'complement_size': len(self.complement),
            'overlap_fraction': round(self.overlap_fraction, 4),
        }

    def save(self, output_dir: Path) -> List[Path]:
        """Write the readable overlap and complement gene lists"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        stem = f"universe_{self.database}"
        paths = [
            output_dir / f"{stem}_overlapping_genes.csv",
            output_dir / f"{stem}_nonOverlapping_genes.csv",
        ]
        pd.DataFrame({'gene': self.overlap_names}).to_csv(paths[0], index=False)
        pd.DataFrame({'gene': self.complement_names}).to_csv(paths[1], index=False)
        return paths


class UniverseAuditor:
    """Compares the internal universe with database reference universes"""

    def __init__(
        self,
        labeller: Optional[Callable[..., Dict[str, str]]] = None,
        min_overlap: float = 0.05,
    ):
        """
        Args:
            labeller: keys -> {key: symbol} (CrossReferenceResolver.label_keys)
            min_overlap: Smallest acceptable overlap fraction
        """
        self.labeller = labeller
        self.min_overlap = min_overlap

    def audit(
        self,
        internal: GeneUniverse,
        reference: GeneUniverse,
        output_dir: Optional[Path] = None,
    ) -> OverlapReport:
        """
        Compute overlap and complement, translated back to readable names.

        Args:
            internal: Universe of the experiment
            reference: Universe of one database
            output_dir: Where to write the gene lists; they are written before
                a degenerate overlap is raised

        Raises:
            DegenerateUniverseError: If the overlap fraction is below min_overlap
        """
        overlap = sorted(reference.keys & internal.keys, key=_key_order)
        complement = sorted(reference.keys - internal.keys, key=_key_order)

        report = OverlapReport(
            database=reference.name,
            internal_size=len(internal),
            reference_size=len(reference),
            overlap=overlap,
            complement=complement,
        )

        logging.info(
            f"Universe '{reference.name}': {len(overlap)}/{len(internal)} measured genes annotated "
            f"({report.overlap_fraction:.1%}), {len(complement)} annotated genes not measured"
        )

        if self.labeller is not None:
            report.overlap_names = _readable(self.labeller, overlap)
            report.complement_names = _readable(self.labeller, complement)
        else:
            report.overlap_names = list(overlap)
            report.complement_names = list(complement)

        if output_dir is not None:
            report.save(output_dir)
        if report.overlap_fraction < self.min_overlap:
            raise DegenerateUniverseError(
                reference.name, report.overlap_fraction, self.min_overlap, report=report,
            )
        return report


def _key_order(key: str):
    return (0, int(key), key) if key.isdigit() else (1, 0, key)


def _readable(labeller, keys: List[str]) -> List[str]:
    labels = labeller(keys, drop_unlabelled=True)
    return [labels[k] for k in keys if k in labels]
