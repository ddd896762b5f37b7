"""
Gene ID Mapping Layer for MultiEnrich

Repairs spreadsheet-corrupted gene symbols and resolves them across
namespaces: gene symbol -> Ensembl accession (feature translation table)
-> Entrez database key (mygene.info, cached locally).
"""

import math
import re
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field, asdict
from pathlib import Path

import pandas as pd
import mygene

from .cache import CacheManager
from .errors import InputFormatError


# Spreadsheet software turns symbols such as MARCH2 or SEPT2 into dates
# that get written back as e.g. "Mar/02".
DATE_CORRUPTED = re.compile(r'^([A-Z][a-z]{2})/([0-9]{2})$')

FEATURE_COLUMNS = ['accession', 'symbol', 'feature_type']


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def canonicalize_gene_name(name: Any) -> Any:
    """
    Restore a gene symbol that was auto-formatted into a date.

    "Mar/02" becomes "MAR2". Anything not matching the corrupted-date shape
    is returned unchanged, including non-string values.
    """
    if not isinstance(name, str):
        return name
    match = DATE_CORRUPTED.match(name)
    if not match:
        return name
    prefix, number = match.groups()
    return f"{prefix.upper()}{int(number)}"


def canonicalize_gene_names(names: Iterable[Any]) -> List[Any]:
    """
    Canonicalize a sequence of raw gene names, preserving length and order.

    Different original symbols can collapse onto the same repaired name
    (MARCH2 and MARC2 both become "Mar/02"); duplicates are kept as-is.
    """
    names = list(names)
    repaired = [canonicalize_gene_name(n) for n in names]
    changed = sum(1 for before, after in zip(names, repaired) if before != after)
    if changed:
        logging.info(f"Restored {changed} date-formatted gene names")
    return repaired


class MappingTable:
    """
    Ordered set of (from_id, to_id) pairs for one namespace pair.

    One-to-many and many-to-one relations are allowed. Single-value lookups
    return the first target seen for a source id.
    """

    def __init__(self, pairs: Iterable[Tuple[str, str]] = (), source: str = '', target: str = ''):
        self.source = source
        self.target = target
        self._pairs: List[Tuple[str, str]] = []
        self._forward: Dict[str, List[str]] = {}
        seen = set()
        for from_id, to_id in pairs:
            if _is_missing(from_id) or _is_missing(to_id):
                continue
            pair = (str(from_id), str(to_id))
            if pair in seen:
                continue
            seen.add(pair)
            self._pairs.append(pair)
            self._forward.setdefault(pair[0], []).append(pair[1])

    @classmethod
    def from_frame(cls, df: pd.DataFrame, from_col: str, to_col: str) -> 'MappingTable':
        return cls(zip(df[from_col], df[to_col]), source=from_col, target=to_col)

    @property
    def pairs(self) -> Tuple[Tuple[str, str], ...]:
        return tuple(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, from_id) -> bool:
        return from_id in self._forward

    def sources(self) -> List[str]:
        return list(self._forward)

    def lookup(self, from_id: Any) -> Optional[str]:
        """First target for from_id, None when unmapped"""
        targets = self._forward.get(from_id)
        return targets[0] if targets else None

    def targets(self, from_id: Any) -> List[str]:
        return list(self._forward.get(from_id, []))

    def map(self, values: Iterable[Any], pass_through: bool = True) -> List[Any]:
        """
        Translate values, leaving unmapped ones unchanged (or None when
        pass_through is False).
        """
        out = []
        for value in values:
            target = self.lookup(value)
            if target is None:
                out.append(value if pass_through else None)
            else:
                out.append(target)
        return out

    def inverse(self) -> 'MappingTable':
        return MappingTable(((b, a) for a, b in self._pairs), source=self.target, target=self.source)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._pairs, columns=[self.source or 'from', self.target or 'to'])


def load_feature_table(path: str, feature_type: Optional[str] = None) -> pd.DataFrame:
    """
    Load a feature translation table (accession, symbol, feature_type).

    This is the tab-separated features file written by CellRanger; it has no
    header row.

    Args:
        path: Path to the features file
        feature_type: Keep only rows of this feature type (e.g. 'Gene Expression')

    Returns:
        DataFrame with columns accession, symbol, feature_type
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Feature table not found: {path}")

    df = pd.read_csv(path, sep='\t', header=None, dtype=str)
    if df.shape[1] < 2:
        raise InputFormatError(
            f"Feature table {path} needs at least accession and symbol columns, got {df.shape[1]}"
        )
    df = df.iloc[:, :3]
    df.columns = FEATURE_COLUMNS[:df.shape[1]]
    if 'feature_type' not in df.columns:
        df['feature_type'] = None

    if feature_type is not None:
        df = df[df['feature_type'] == feature_type]

    logging.info(f"Loaded {len(df)} features from {path.name}")
    return df.reset_index(drop=True)


def translation_from_features(features: pd.DataFrame) -> MappingTable:
    """Symbol -> accession table from a feature translation table"""
    missing = [c for c in ('accession', 'symbol') if c not in features.columns]
    if missing:
        raise InputFormatError(f"Feature table missing columns: {missing}")
    return MappingTable.from_frame(features, 'symbol', 'accession')


class MyGeneKeyLookup:
    """
    Cross-namespace lookups through mygene.info.

    Results are cached per query batch, so re-running an analysis on the same
    table does not hit the network again.
    """

    def __init__(self, taxon_id: int = 9606, cache: Optional[CacheManager] = None, client=None):
        self.taxon_id = taxon_id
        self.cache = cache or CacheManager()
        self.mg = client or mygene.MyGeneInfo()

    def _query(self, ids: Sequence[str], scopes: str, field_name: str) -> MappingTable:
        ids = sorted(set(str(i) for i in ids if not _is_missing(i)))
        if not ids:
            return MappingTable(source=scopes, target=field_name)

        cache_key = f"mygene:{self.taxon_id}:{scopes}:{field_name}:{','.join(ids)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            logging.info(f"Cache hit: {len(ids)} ids {scopes} -> {field_name}")
            return MappingTable((tuple(p) for p in cached), source=scopes, target=field_name)

        results = self.mg.querymany(
            ids,
            scopes=scopes,
            fields=field_name,
            species=self.taxon_id,
            returnall=True,
            verbose=False,
        )

        pairs = []
        for hit in results.get('out', []):
            if hit.get('notfound'):
                continue
            for value in _extract_field(hit, field_name):
                pairs.append((str(hit['query']), str(value)))

        self.cache.set(cache_key, pairs)
        logging.info(
            f"mygene {scopes} -> {field_name}: {len(set(p[0] for p in pairs))}/{len(ids)} ids resolved"
        )
        return MappingTable(pairs, source=scopes, target=field_name)

    def accession_to_key(self, accessions: Sequence[str]) -> MappingTable:
        return self._query(accessions, 'ensembl.gene', 'entrezgene')

    def key_to_accession(self, keys: Sequence[str]) -> MappingTable:
        return self._query(keys, 'entrezgene', 'ensembl.gene')

    def symbol_to_key(self, symbols: Sequence[str]) -> MappingTable:
        return self._query(symbols, 'symbol', 'entrezgene')


def _extract_field(hit: Dict, dotted: str) -> List[Any]:
    """Values at a dotted path of a mygene hit; lists are flattened"""
    values = [hit]
    for part in dotted.split('.'):
        next_values = []
        for value in values:
            if isinstance(value, list):
                candidates = value
            else:
                candidates = [value]
            for candidate in candidates:
                if isinstance(candidate, dict) and part in candidate:
                    next_values.append(candidate[part])
        values = next_values
    flat = []
    for value in values:
        flat.extend(value if isinstance(value, list) else [value])
    return [v for v in flat if not _is_missing(v)]


@dataclass(frozen=True)
class IdentifierRecord:
    """One input gene name and what it resolved to"""
    raw_name: Any
    canonical_name: Any
    accession: Optional[str] = None
    database_key: Optional[str] = None
    rank: int = 0  # 1-based position in the input table

    @property
    def resolved(self) -> bool:
        return self.database_key is not None


@dataclass(frozen=True)
class UnmappedIdentifier:
    name: str
    rank: int
    stage: str  # 'accession' or 'database_key'


@dataclass
class MappingReport:
    """Report on gene ID mapping results"""
    input_count: int
    mapped_count: int
    unmapped_count: int
    missing_count: int
    duplicated_count: int
    mapped_fraction: float
    unmapped: List[UnmappedIdentifier] = field(default_factory=list)
    duplicated_names: List[str] = field(default_factory=list)
    source_type: str = 'symbol'
    target_type: str = 'entrezgene'
    species: str = 'human'

    @property
    def unmapped_names(self) -> List[str]:
        return [u.name for u in self.unmapped]

    @property
    def unmapped_ranks(self) -> List[int]:
        return [u.rank for u in self.unmapped]

    def to_dict(self) -> Dict:
        return asdict(self)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(u.name, u.rank, u.stage) for u in self.unmapped],
            columns=['name', 'rank', 'stage'],
        )

    def save(self, output_dir: Path) -> Path:
        """Write the unmapped-identifier table, returns its path"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / 'genes_not_mapped.csv'
        self.to_frame().to_csv(path, index=False)
        logging.info(f"Saved {self.unmapped_count} unmapped genes to {path}")
        return path


class CrossReferenceResolver:
    """
    Resolves canonical gene names to accessions and database keys, and
    translates database keys back to readable symbols.
    """

    # ID type detection patterns
    PATTERNS = {
        'ensembl': re.compile(r'^ENS[A-Z]*G\d{11}(\.\d+)?$'),
        'entrez': re.compile(r'^\d+$'),
        'symbol': re.compile(r'^[A-Za-z][A-Za-z0-9\-\.]*$'),
    }

    def __init__(
        self,
        translation: MappingTable,
        key_lookup,
        species: str = 'human',
        min_mapped_fraction: float = 0.5,
    ):
        """
        Args:
            translation: symbol -> accession table
            key_lookup: object with accession_to_key / key_to_accession
                methods returning MappingTable (MyGeneKeyLookup)
            species: Species key, recorded in the report
            min_mapped_fraction: Warn when fewer names resolve than this
        """
        self.translation = translation
        self.key_lookup = key_lookup
        self.species = species
        self.min_mapped_fraction = min_mapped_fraction
        self._accession_to_symbol = translation.inverse()
        self._key_to_name: Dict[str, str] = {}
        self.report: Optional[MappingReport] = None

    def detect_id_type(self, names: Sequence[Any]) -> str:
        """Most common identifier shape among the first 100 names"""
        counts = {id_type: 0 for id_type in self.PATTERNS}
        for name in list(names)[:100]:
            if _is_missing(name):
                continue
            for id_type, pattern in self.PATTERNS.items():
                if pattern.match(str(name).strip()):
                    counts[id_type] += 1
                    break
        return max(counts, key=counts.get)

    def resolve(self, raw_names: Sequence[Any]) -> Tuple[List[IdentifierRecord], MappingReport]:
        """
        Resolve raw gene names to database keys.

        Unresolved names keep accession/database_key as None; they are never
        given a placeholder.

        Returns:
            Tuple of (records in input order, mapping report)
        """
        raw_names = list(raw_names)
        canonical = canonicalize_gene_names(raw_names)

        id_type = self.detect_id_type(canonical)
        if id_type != 'symbol':
            logging.warning(
                f"Input gene names look like '{id_type}' identifiers, expected symbols; "
                f"most lookups will fail"
            )

        accessions = [
            None if _is_missing(name) else self.translation.lookup(name)
            for name in canonical
        ]
        unique_accessions = list(dict.fromkeys(a for a in accessions if a is not None))
        key_table = self.key_lookup.accession_to_key(unique_accessions)

        records = []
        for rank, (raw, name, accession) in enumerate(zip(raw_names, canonical, accessions), start=1):
            key = key_table.lookup(accession) if accession is not None else None
            records.append(IdentifierRecord(
                raw_name=raw,
                canonical_name=name,
                accession=accession,
                database_key=key,
                rank=rank,
            ))
            if key is not None and key not in self._key_to_name:
                self._key_to_name[key] = name

        self.report = self._build_report(records)
        if self.report.mapped_fraction < self.min_mapped_fraction:
            logging.warning(
                f"Only {self.report.mapped_fraction:.1%} of genes resolved to database keys "
                f"(floor {self.min_mapped_fraction:.0%}); check organism and feature table"
            )
        return records, self.report

    def _build_report(self, records: List[IdentifierRecord]) -> MappingReport:
        present = [r for r in records if not _is_missing(r.canonical_name)]
        unmapped = [
            UnmappedIdentifier(
                name=str(r.canonical_name),
                rank=r.rank,
                stage='accession' if r.accession is None else 'database_key',
            )
            for r in present if not r.resolved
        ]
        mapped = len(present) - len(unmapped)

        counts: Dict[str, int] = {}
        for r in present:
            counts[r.canonical_name] = counts.get(r.canonical_name, 0) + 1
        duplicated = [name for name, n in counts.items() if n > 1]

        return MappingReport(
            input_count=len(present),
            mapped_count=mapped,
            unmapped_count=len(unmapped),
            missing_count=len(records) - len(present),
            duplicated_count=len(duplicated),
            mapped_fraction=mapped / len(present) if present else 0.0,
            unmapped=unmapped,
            duplicated_names=duplicated,
            species=self.species,
        )

    def label_keys(self, keys: Iterable[str], drop_unlabelled: bool = False) -> Dict[str, str]:
        """
        Readable symbols for database keys (key -> accession -> symbol).

        Keys seen during resolve() are answered locally; others go through the
        key lookup. Keys without a symbol fall back to their accession, then
        to the key itself, unless drop_unlabelled is set.
        """
        labels: Dict[str, str] = {}
        unknown = []
        for key in keys:
            key = str(key)
            if key in self._key_to_name:
                labels[key] = str(self._key_to_name[key])
            else:
                unknown.append(key)

        if unknown:
            accession_table = self.key_lookup.key_to_accession(unknown)
            for key in unknown:
                symbol = None
                accession = None
                for accession in accession_table.targets(key):
                    symbol = self._accession_to_symbol.lookup(accession)
                    if symbol is not None:
                        break
                if symbol is not None:
                    labels[key] = symbol
                elif not drop_unlabelled:
                    labels[key] = accession or key
        return labels
