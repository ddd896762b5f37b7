"""
Database descriptors for MultiEnrich.

A DatabaseDescriptor is the capability table the dispatcher and the router
work from: which analysis modes a database supports, which output folder it
belongs to, whether it is an ontology (and which branch), and whether its
subset-based analysis is compared across both universes.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from .gsea import run_gsea_prerank
from .ora import run_ora
from .ranking import DirectionalSubset, RankedGeneList
from .results import RankedTerm, SubsetTerm
from .sources import GeneSetSourceManager, translate_gene_sets
from .species import SpeciesInfo


@dataclass(frozen=True)
class RankParameters:
    """Uniform parameter set of every rank-based call"""
    min_size: int = 10
    max_size: int = 500
    pval_cutoff: float = 1.0
    p_adjust_method: str = 'BH'
    seed: int = 42
    permutation_num: int = 1000


@dataclass(frozen=True)
class SubsetParameters:
    """
    Uniform parameter set of every subset-based call.

    universe is the background key set; None means the database's own
    reference universe.
    """
    min_size: int = 3
    max_size: Optional[int] = None
    pval_cutoff: float = 1.0
    qval_cutoff: float = 1.0
    p_adjust_method: str = 'BH'
    universe: Optional[FrozenSet[str]] = None


RankCapability = Callable[[RankedGeneList, RankParameters], List[RankedTerm]]
SubsetCapability = Callable[[DirectionalSubset, SubsetParameters], List[SubsetTerm]]


@dataclass
class DatabaseDescriptor:
    """One enrichment database and what it can do"""
    label: str
    folder: str
    rank_capability: Optional[RankCapability] = None
    subset_capability: Optional[SubsetCapability] = None
    is_custom_signature: bool = False
    collection: Optional[str] = None
    ontology_branch: Optional[str] = None  # 'BP', 'MF', 'CC' for GO
    compare_universes: bool = False
    reference_universe: Optional[Callable[[], FrozenSet[str]]] = None
    warm: Optional[Callable[[], None]] = field(default=None, repr=False)
    gene_sets: Optional[Callable[[], Dict[str, List[str]]]] = field(default=None, repr=False)
    version: Optional[str] = None  # library name, or "custom"

    def __post_init__(self):
        if self.is_custom_signature and not self.collection:
            raise ValueError(f"Custom signature database '{self.label}' needs a collection id")

    @property
    def supports_rank(self) -> bool:
        return self.rank_capability is not None

    @property
    def supports_subset(self) -> bool:
        return self.subset_capability is not None

    @property
    def display_name(self) -> str:
        return f"{self.label}-{self.collection}" if self.collection else self.label


class GeneSetBackend:
    """
    Built-in statistics over one gene set library.

    The library is loaded on first use; call warm() before dispatch so that
    worker threads only read it.
    """

    def __init__(
        self,
        label: str,
        loader: Callable[[], Dict[str, List[str]]],
        threads: int = 1,
        version: Optional[str] = None,
    ):
        self.label = label
        self.version = version
        self._loader = loader
        self._gene_sets: Optional[Dict[str, List[str]]] = None
        self.threads = threads

    def warm(self):
        if self._gene_sets is None:
            self._gene_sets = self._loader()
            logging.info(f"{self.label}: {len(self._gene_sets)} gene sets ready")

    @property
    def gene_sets(self) -> Dict[str, List[str]]:
        self.warm()
        return self._gene_sets

    def universe(self) -> FrozenSet[str]:
        """Every key annotated by at least one gene set"""
        keys = set()
        for genes in self.gene_sets.values():
            keys.update(genes)
        return frozenset(keys)

    def rank_based(self, ranked: RankedGeneList, params: RankParameters) -> List[RankedTerm]:
        return run_gsea_prerank(
            ranked,
            self.gene_sets,
            min_size=params.min_size,
            max_size=params.max_size,
            pval_cutoff=params.pval_cutoff,
            p_adjust_method=params.p_adjust_method,
            permutation_num=params.permutation_num,
            seed=params.seed,
            threads=self.threads,
        )

    def subset_based(self, subset: DirectionalSubset, params: SubsetParameters) -> List[SubsetTerm]:
        return run_ora(
            subset.keys,
            self.gene_sets,
            universe=params.universe,
            min_size=params.min_size,
            max_size=params.max_size,
            pval_cutoff=params.pval_cutoff,
            qval_cutoff=params.qval_cutoff,
            p_adjust_method=params.p_adjust_method,
        )


def descriptor_for_backend(
    backend: GeneSetBackend,
    folder: str,
    ontology_branch: Optional[str] = None,
    compare_universes: bool = False,
    is_custom_signature: bool = False,
    collection: Optional[str] = None,
    label: Optional[str] = None,
) -> DatabaseDescriptor:
    return DatabaseDescriptor(
        label=label or backend.label,
        folder=folder,
        rank_capability=backend.rank_based,
        subset_capability=backend.subset_based,
        is_custom_signature=is_custom_signature,
        collection=collection,
        ontology_branch=ontology_branch,
        compare_universes=compare_universes,
        reference_universe=backend.universe,
        warm=backend.warm,
        gene_sets=lambda: backend.gene_sets,
        version=backend.version,
    )


# label -> output folder, ontology branch, compare universes
BUILTIN_DATABASES = {
    'GO-BP': {'folder': 'gene_ontology', 'ontology_branch': 'BP', 'compare_universes': True},
    'GO-MF': {'folder': 'gene_ontology', 'ontology_branch': 'MF', 'compare_universes': True},
    'GO-CC': {'folder': 'gene_ontology', 'ontology_branch': 'CC', 'compare_universes': True},
    'KEGG': {'folder': 'KEGG'},
    'WP': {'folder': 'wiki_pathways'},
    'RP': {'folder': 'reactome_pathways'},
    'DO': {'folder': 'disease_ontology'},
    'DGN': {'folder': 'disease_gene_network'},
}

CUSTOM_SIGNATURE_LABEL = 'MSDB'
CUSTOM_SIGNATURE_FOLDER = 'molecular_signatures'


def build_default_descriptors(
    species_info: SpeciesInfo,
    source_manager: GeneSetSourceManager,
    key_lookup,
    selected: Optional[Sequence[str]] = None,
    threads: int = 1,
) -> List[DatabaseDescriptor]:
    """
    Descriptors for the built-in databases available for a species.

    Args:
        species_info: Resolved species
        source_manager: Library download/cache manager
        key_lookup: Symbol -> database key lookup (MyGeneKeyLookup)
        selected: Database labels to keep (None for all)
        threads: gseapy threads per rank-based call
    """
    labels = list(BUILTIN_DATABASES) if selected is None else list(selected)
    unknown = [label for label in labels if label not in BUILTIN_DATABASES]
    if unknown:
        raise ValueError(
            f"Unknown database(s): {', '.join(unknown)}. Use: {', '.join(BUILTIN_DATABASES)}"
        )

    descriptors = []
    for label in labels:
        library = species_info.library_for(label)
        if library is None:
            logging.warning(f"Skipping {label}: no {species_info.species_key} library")
            continue

        def loader(library=library):
            gene_sets, _ = source_manager.load_library(library, species_info.enrichr_organism)
            return translate_gene_sets(gene_sets, 'symbol', key_lookup)

        info = BUILTIN_DATABASES[label]
        descriptors.append(descriptor_for_backend(
            GeneSetBackend(label, loader, threads=threads, version=library),
            folder=info['folder'],
            ontology_branch=info.get('ontology_branch'),
            compare_universes=info.get('compare_universes', False),
        ))
    return descriptors


def build_custom_descriptors(
    files: Dict[str, str],
    gene_type: str,
    source_manager: GeneSetSourceManager,
    key_lookup,
    threads: int = 1,
) -> List[DatabaseDescriptor]:
    """
    Synthetic databases for custom signature collections.

    Args:
        files: Collection id (e.g. 'H', 'C2CP') -> GMT or term/gene table
        gene_type: Identifier type of the signature members
    """
    descriptors = []
    for collection, path in files.items():
        path = str(Path(path))

        def loader(path=path):
            gene_sets, _ = source_manager.load_custom(path)
            return translate_gene_sets(gene_sets, gene_type, key_lookup)

        descriptors.append(descriptor_for_backend(
            GeneSetBackend(
                f"{CUSTOM_SIGNATURE_LABEL}-{collection}", loader, threads=threads, version="custom"
            ),
            folder=CUSTOM_SIGNATURE_FOLDER,
            is_custom_signature=True,
            collection=collection,
            label=CUSTOM_SIGNATURE_LABEL,
        ))
    return descriptors
