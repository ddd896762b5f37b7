"""
Enrichment result types for MultiEnrich.

A result is tagged as rank-based (GSEA) or subset-based (ORA) and is stored
in a ResultBundle under its composite name (ResultKey). The composite name
is the only thing output routing needs, so it must round-trip through
ResultKey.parse().
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterator, List, Optional, TYPE_CHECKING

import pandas as pd

if TYPE_CHECKING:
    from .ranking import DirectionalSubset, RankedGeneList


class AnalysisMode(str, Enum):
    RANK = "GSEA"
    SUBSET = "ORA"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"

    @property
    def folder(self) -> str:
        return "upregulated" if self is Direction.UP else "downregulated"


class UniverseChoice(str, Enum):
    INTERNAL = "internal"
    REFERENCE = "reference"


_KEY_FIELDS = ('mode', 'database', 'collection', 'universe', 'direction')
_RESERVED = (',', '=')


@dataclass(frozen=True)
class ResultKey:
    """
    Composite name of one dispatched analysis.

    Rendered as comma-separated field=value pairs, e.g.
    "mode=ORA,database=GO-BP,universe=internal,direction=up".
    """
    mode: AnalysisMode
    database: str
    collection: Optional[str] = None
    universe: Optional[UniverseChoice] = None
    direction: Optional[Direction] = None

    def __post_init__(self):
        object.__setattr__(self, 'mode', AnalysisMode(self.mode))
        if self.universe is not None:
            object.__setattr__(self, 'universe', UniverseChoice(self.universe))
        if self.direction is not None:
            object.__setattr__(self, 'direction', Direction(self.direction))

        for label in (self.database, self.collection):
            if label is not None and (not label or any(c in label for c in _RESERVED)):
                raise ValueError(f"Invalid label in result key: {label!r}")

        if self.mode is AnalysisMode.SUBSET:
            if self.universe is None or self.direction is None:
                raise ValueError("Subset-based result keys need a universe and a direction")
        elif self.universe is not None or self.direction is not None:
            raise ValueError("Rank-based result keys take no universe or direction")

    @property
    def name(self) -> str:
        parts = []
        for key in _KEY_FIELDS:
            value = getattr(self, key)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            parts.append(f"{key}={value}")
        return ",".join(parts)

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, name: str) -> 'ResultKey':
        """Inverse of .name"""
        values: Dict[str, str] = {}
        for part in name.split(','):
            key, sep, value = part.partition('=')
            if not sep or key not in _KEY_FIELDS or key in values:
                raise ValueError(f"Malformed result name: {name!r}")
            values[key] = value
        if 'mode' not in values or 'database' not in values:
            raise ValueError(f"Result name lacks mode or database: {name!r}")
        return cls(**values)


@dataclass
class RankedTerm:
    """One term of a rank-based (GSEA) result"""
    term_id: str
    description: str
    set_size: int
    enrichment_score: float
    normalized_score: float
    p_value: float
    adjusted_p_value: float
    fdr: float  # permutation q-value reported by gseapy
    leading_edge: List[str] = field(default_factory=list)
    running_scores: List[float] = field(default_factory=list)
    hit_indices: List[int] = field(default_factory=list)

    @property
    def genes(self) -> List[str]:
        return self.leading_edge

    def to_row(self) -> Dict[str, Any]:
        """Tabular view, without the running-score trace"""
        return {
            'ID': self.term_id,
            'Description': self.description,
            'setSize': self.set_size,
            'enrichmentScore': self.enrichment_score,
            'NES': self.normalized_score,
            'pvalue': self.p_value,
            'p.adjust': self.adjusted_p_value,
            'qvalue': self.fdr,
            'core_enrichment': '/'.join(self.leading_edge),
        }


@dataclass
class SubsetTerm:
    """One term of a subset-based (ORA) result"""
    term_id: str
    description: str
    p_value: float
    adjusted_p_value: float
    q_value: float
    gene_ratio: str  # "k/n"
    background_ratio: str  # "M/N"
    hits: List[str] = field(default_factory=list)

    @property
    def genes(self) -> List[str]:
        return self.hits

    @property
    def count(self) -> int:
        return len(self.hits)

    @property
    def gene_ratio_value(self) -> float:
        k, _, n = self.gene_ratio.partition('/')
        return int(k) / int(n) if n and int(n) else 0.0

    def to_row(self) -> Dict[str, Any]:
        return {
            'ID': self.term_id,
            'Description': self.description,
            'GeneRatio': self.gene_ratio,
            'BgRatio': self.background_ratio,
            'pvalue': self.p_value,
            'p.adjust': self.adjusted_p_value,
            'qvalue': self.q_value,
            'geneID': '/'.join(self.hits),
            'Count': self.count,
        }


@dataclass
class EnrichmentResult:
    """Common part of both result kinds"""
    key: ResultKey
    terms: List[Any] = field(default_factory=list)
    ontology_branch: Optional[str] = None
    is_rank_based: ClassVar[bool] = False

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def database(self) -> str:
        return self.key.database

    @property
    def collection(self) -> Optional[str]:
        return self.key.collection

    def __len__(self) -> int:
        return len(self.terms)

    @property
    def is_empty(self) -> bool:
        return not self.terms

    @property
    def top_term_id(self) -> Optional[str]:
        return self.terms[0].term_id if self.terms else None

    def term_genes(self, top_n: Optional[int] = None) -> Dict[str, List[str]]:
        """Term id -> gene keys driving the term (leading edge or hits)"""
        terms = self.terms if top_n is None else self.terms[:top_n]
        return {t.term_id: list(t.genes) for t in terms}

    def gene_keys(self) -> List[str]:
        seen = {}
        for term in self.terms:
            for gene in term.genes:
                seen.setdefault(gene, None)
        return list(seen)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([t.to_row() for t in self.terms], columns=self._columns())

    def _columns(self) -> List[str]:
        raise NotImplementedError


@dataclass
class RankedResult(EnrichmentResult):
    """Rank-based result: terms ordered by significance"""
    ranking: Optional['RankedGeneList'] = None
    is_rank_based: ClassVar[bool] = True

    def _columns(self) -> List[str]:
        return ['ID', 'Description', 'setSize', 'enrichmentScore', 'NES',
                'pvalue', 'p.adjust', 'qvalue', 'core_enrichment']


@dataclass
class SubsetResult(EnrichmentResult):
    """Subset-based result for one direction against one universe"""
    subset: Optional['DirectionalSubset'] = None
    is_rank_based: ClassVar[bool] = False

    @property
    def direction(self) -> Direction:
        return self.key.direction

    @property
    def universe(self) -> UniverseChoice:
        return self.key.universe

    def _columns(self) -> List[str]:
        return ['ID', 'Description', 'GeneRatio', 'BgRatio', 'pvalue',
                'p.adjust', 'qvalue', 'geneID', 'Count']

    def stray_hits(self) -> List[str]:
        """Hit genes that are not members of the producing subset"""
        if self.subset is None:
            return []
        members = self.subset.as_set()
        return [g for g in self.gene_keys() if g not in members]


@dataclass
class FailureRecord:
    """A dispatched analysis that raised, returned malformed data or timed out"""
    key: ResultKey
    error_type: str
    message: str
    elapsed: Optional[float] = None

    @property
    def name(self) -> str:
        return self.key.name

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['key'] = self.key.name
        return d


class ResultBundle:
    """
    Composite name -> result, plus explicit failure records.

    Insertion order follows dispatch completion and carries no meaning.
    """

    def __init__(self):
        self._results: Dict[str, EnrichmentResult] = {}
        self.failures: Dict[str, FailureRecord] = {}

    def add(self, result: EnrichmentResult):
        if result.name in self._results or result.name in self.failures:
            raise ValueError(f"Duplicate result name: {result.name}")
        self._results[result.name] = result

    def add_failure(self, failure: FailureRecord):
        if failure.name in self._results or failure.name in self.failures:
            raise ValueError(f"Duplicate result name: {failure.name}")
        self.failures[failure.name] = failure

    def __getitem__(self, name: str) -> EnrichmentResult:
        return self._results[name]

    def __contains__(self, name: str) -> bool:
        return name in self._results

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def names(self) -> List[str]:
        return list(self._results)

    def items(self):
        return self._results.items()

    def results(self, mode: Optional[AnalysisMode] = None) -> List[EnrichmentResult]:
        if mode is None:
            return list(self._results.values())
        return [r for r in self._results.values() if r.key.mode is AnalysisMode(mode)]

    def summary(self) -> Dict[str, Any]:
        return {
            'results': {name: len(result) for name, result in self._results.items()},
            'empty': [name for name, result in self._results.items() if result.is_empty],
            'failures': {name: f.to_dict() for name, f in self.failures.items()},
        }


def export_bundle(bundle: ResultBundle, output_path: str, format: str = 'xlsx') -> str:
    """
    Export all result tables to one file.

    Args:
        bundle: Dispatch results
        output_path: Output file path
        format: 'xlsx', 'csv', or 'json'

    Returns:
        Path to saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    frames = []
    for name, result in bundle.items():
        df = result.to_frame()
        if df.empty:
            continue
        df.insert(0, 'Result', name)
        frames.append(df)

    if format == 'json':
        payload = {
            'results': {name: [t.to_row() for t in result.terms] for name, result in bundle.items()},
            'failures': [f.to_dict() for f in bundle.failures.values()],
        }
        with open(output_path, 'w') as f:
            json.dump(payload, f, indent=2, default=str)
        return str(output_path)

    if not frames:
        raise ValueError("No results to export")

    df = pd.concat(frames, ignore_index=True)

    if format == 'xlsx':
        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name='Results', index=False)

            meta_df = pd.DataFrame([{
                'Results': len(bundle),
                'Empty': sum(1 for r in bundle.results() if r.is_empty),
                'Failed': len(bundle.failures),
                'Export Date': pd.Timestamp.now().isoformat(),
            }])
            meta_df.to_excel(writer, sheet_name='Metadata', index=False)
    else:  # csv
        df.to_csv(output_path, index=False)

    logging.info(f"Exported {len(frames)} result tables to {output_path}")
    return str(output_path)
