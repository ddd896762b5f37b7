"""
MultiEnrich: multi-database gene set enrichment orchestration

This package provides:
- Gene identifier repair and cross-reference resolution (symbol/Ensembl/Entrez)
- Internal vs. reference gene universes with coverage audit
- Ranked list (GSEA) and directional subsets (ORA) from effect sizes
- Parallel dispatch to GO, KEGG, WikiPathways, Reactome, disease and
  custom signature databases
- Result routing to per-database output folders and plots
"""

__version__ = "1.0.0"

from .errors import (
    EnrichmentError,
    ConfigurationError,
    InvalidThresholdError,
    DegenerateUniverseError,
    InputFormatError,
    BackendError,
)
from .id_mapper import (
    canonicalize_gene_name,
    canonicalize_gene_names,
    MappingTable,
    IdentifierRecord,
    MappingReport,
    CrossReferenceResolver,
    MyGeneKeyLookup,
)
from .universe import GeneUniverse, OverlapReport, UniverseAuditor
from .ranking import RankedGeneList, DirectionalSubset, build_ranked_list, split_by_threshold
from .results import (
    AnalysisMode,
    Direction,
    UniverseChoice,
    ResultKey,
    RankedTerm,
    SubsetTerm,
    RankedResult,
    SubsetResult,
    FailureRecord,
    ResultBundle,
    export_bundle,
)
from .ora import run_ora
from .gsea import run_gsea_prerank
from .databases import DatabaseDescriptor, RankParameters, SubsetParameters
from .dispatcher import EnrichmentDispatcher
from .router import ResultRouter, RenderStrategy
from .sources import GeneSetSourceManager
from .cache import CacheManager
from .species import SUPPORTED_SPECIES, resolve_species
from .repro import ReproducibilityLogger, PipelineMetadata
from .config import EnrichmentConfig
from .pipeline import EnrichmentPipeline

__all__ = [
    "EnrichmentError",
    "ConfigurationError",
    "InvalidThresholdError",
    "DegenerateUniverseError",
    "InputFormatError",
    "BackendError",
    "canonicalize_gene_name",
    "canonicalize_gene_names",
    "MappingTable",
    "IdentifierRecord",
    "MappingReport",
    "CrossReferenceResolver",
    "MyGeneKeyLookup",
    "GeneUniverse",
    "OverlapReport",
    "UniverseAuditor",
    "RankedGeneList",
    "DirectionalSubset",
    "build_ranked_list",
    "split_by_threshold",
    "AnalysisMode",
    "Direction",
    "UniverseChoice",
    "ResultKey",
    "RankedTerm",
    "SubsetTerm",
    "RankedResult",
    "SubsetResult",
    "FailureRecord",
    "ResultBundle",
    "export_bundle",
    "run_ora",
    "run_gsea_prerank",
    "DatabaseDescriptor",
    "RankParameters",
    "SubsetParameters",
    "EnrichmentDispatcher",
    "ResultRouter",
    "RenderStrategy",
    "GeneSetSourceManager",
    "CacheManager",
    "SUPPORTED_SPECIES",
    "resolve_species",
    "ReproducibilityLogger",
    "PipelineMetadata",
    "EnrichmentConfig",
    "EnrichmentPipeline",
]
