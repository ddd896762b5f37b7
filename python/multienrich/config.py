"""
Run configuration for MultiEnrich.

All options of one enrichment run with their defaults. Values are validated
before any database is contacted; unknown keys in a YAML file are rejected
so that typos do not silently fall back to defaults.
"""

import logging
import math
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .databases import BUILTIN_DATABASES, RankParameters, SubsetParameters
from .errors import ConfigurationError, InvalidThresholdError
from .ora import statsmodels_method
from .sources import CUSTOM_GENE_TYPES
from .species import resolve_species


@dataclass
class EnrichmentConfig:
    # subset partition and ranking
    lfc_threshold: float = 1.0
    seed: int = 42
    invert_ranking: bool = False
    use_internal_universe: bool = True

    # statistics
    p_adjust_method: str = 'BH'
    pval_cutoff: float = 1.0
    qval_cutoff: float = 1.0
    min_size_rank: int = 10
    max_size_rank: int = 500
    min_size_subset: int = 3
    max_size_subset: Optional[int] = None
    permutation_num: int = 1000

    # plots
    plot_n_category: int = 30
    running_score_batch: int = 10

    # databases
    species: str = 'human'
    databases: Optional[List[str]] = None  # None = every built-in database
    enable_custom_signatures: bool = False
    custom_signature_files: Dict[str, str] = field(default_factory=dict)
    custom_gene_type: str = 'entrez'

    # dispatch
    max_workers: int = 4
    task_timeout: Optional[float] = None

    # data quality
    min_mapped_fraction: float = 0.5
    min_universe_overlap: float = 0.05

    # input table
    effect_column: str = 'avg_log2FC'
    gene_column: Optional[str] = None  # None = first column
    delimiter: str = ';'
    decimal: str = ','

    # output
    rank_folder: str = 'gene_set_enrichment_analysis'
    subset_folder: str = 'over_representation_analysis'
    cache_dir: Optional[str] = None

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> 'EnrichmentConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: str) -> 'EnrichmentConfig':
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            values = yaml.safe_load(f) or {}
        if not isinstance(values, dict):
            raise ConfigurationError(f"{path}: expected a mapping of options")
        logging.info(f"Loaded configuration from {path}")
        return cls.from_dict(values)

    def validate(self) -> 'EnrichmentConfig':
        """
        Raises:
            InvalidThresholdError: lfc_threshold is not > 0
            ConfigurationError: any other invalid value
        """
        if not isinstance(self.lfc_threshold, (int, float)) or isinstance(self.lfc_threshold, bool) \
                or math.isnan(self.lfc_threshold) or self.lfc_threshold <= 0:
            raise InvalidThresholdError(self.lfc_threshold)

        statsmodels_method(self.p_adjust_method)

        for name in ('pval_cutoff', 'qval_cutoff', 'min_mapped_fraction', 'min_universe_overlap'):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")

        if self.max_size_rank is None:
            raise ConfigurationError("max_size_rank needs a value")
        self._check_sizes('rank', self.min_size_rank, self.max_size_rank)
        self._check_sizes('subset', self.min_size_subset, self.max_size_subset)

        for name in ('plot_n_category', 'running_score_batch', 'max_workers', 'permutation_num'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ConfigurationError(f"task_timeout must be > 0, got {self.task_timeout}")

        try:
            resolve_species(self.species)
        except ValueError as e:
            raise ConfigurationError(str(e))

        if self.databases is not None:
            unknown = [d for d in self.databases if d not in BUILTIN_DATABASES]
            if unknown:
                raise ConfigurationError(
                    f"Unknown database(s): {', '.join(unknown)}. Use: {', '.join(BUILTIN_DATABASES)}"
                )

        if self.custom_gene_type not in CUSTOM_GENE_TYPES:
            raise ConfigurationError(
                f"custom_gene_type must be one of {', '.join(CUSTOM_GENE_TYPES)}, got {self.custom_gene_type!r}"
            )
        if self.enable_custom_signatures:
            if not self.custom_signature_files:
                raise ConfigurationError("enable_custom_signatures needs custom_signature_files")
            for collection in self.custom_signature_files:
                if not collection or ',' in collection or '=' in collection:
                    raise ConfigurationError(f"Invalid signature collection id: {collection!r}")

        if self.rank_folder == self.subset_folder:
            raise ConfigurationError("rank_folder and subset_folder must differ")
        return self

    @staticmethod
    def _check_sizes(mode: str, min_size: int, max_size: Optional[int]):
        if min_size < 1:
            raise ConfigurationError(f"min_size_{mode} must be >= 1, got {min_size}")
        if max_size is not None and max_size < min_size:
            raise ConfigurationError(f"max_size_{mode} ({max_size}) is below min_size_{mode} ({min_size})")

    def rank_parameters(self) -> RankParameters:
        return RankParameters(
            min_size=self.min_size_rank,
            max_size=self.max_size_rank,
            pval_cutoff=self.pval_cutoff,
            p_adjust_method=self.p_adjust_method,
            seed=self.seed,
            permutation_num=self.permutation_num,
        )

    def subset_parameters(self) -> SubsetParameters:
        return SubsetParameters(
            min_size=self.min_size_subset,
            max_size=self.max_size_subset,
            pval_cutoff=self.pval_cutoff,
            qval_cutoff=self.qval_cutoff,
            p_adjust_method=self.p_adjust_method,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
