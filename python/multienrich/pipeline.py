"""
Enrichment Analysis Pipeline for MultiEnrich

Main orchestrator that ties together all components:
1. Identifier canonicalization and cross-reference resolution
2. Ranked list and directional subsets
3. Database loading and universe audit
4. Enrichment dispatch
5. Result routing and rendering
6. Reproducibility metadata and export

Every file is written below the output directory passed to run(); the
process working directory is never changed.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .cache import CacheManager
from .config import EnrichmentConfig
from .databases import DatabaseDescriptor, build_custom_descriptors, build_default_descriptors
from .dispatcher import EnrichmentDispatcher
from .errors import DegenerateUniverseError, InputFormatError
from .id_mapper import (
    CrossReferenceResolver,
    IdentifierRecord,
    MappingReport,
    MyGeneKeyLookup,
    load_feature_table,
    translation_from_features,
)
from .plotting import MatplotlibRenderer
from .ranking import DirectionalSubset, RankedGeneList, build_ranked_list, split_by_threshold
from .repro import PipelineMetadata, ReproducibilityLogger
from .results import Direction, ResultBundle, export_bundle
from .router import OutputPlan, RenderStrategy, ResultRouter
from .sources import GeneSetSourceManager
from .species import resolve_species
from .universe import GeneUniverse, OverlapReport, UniverseAuditor


SUBSET_FILES = {
    Direction.UP: 'deg_subset_pos.csv',
    Direction.DOWN: 'deg_subset_neg.csv',
}
METADATA_FILE = 'run_metadata.json'
EXPORT_FILE = 'enrichment_results.xlsx'


@dataclass
class PipelineRun:
    """Everything one run produced"""
    output_dir: Path
    records: List[IdentifierRecord]
    mapping_report: MappingReport
    internal_universe: GeneUniverse
    ranked: RankedGeneList
    subsets: Tuple[DirectionalSubset, DirectionalSubset]
    overlaps: Dict[str, OverlapReport] = field(default_factory=dict)
    bundle: ResultBundle = field(default_factory=ResultBundle)
    plans: Dict[str, OutputPlan] = field(default_factory=dict)
    metadata: Optional[PipelineMetadata] = None


def load_de_table(path: str, config: EnrichmentConfig) -> pd.DataFrame:
    """
    Read a differential-expression table (semicolon-separated with decimal
    commas by default, as written by European spreadsheet locales).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Differential expression table not found: {path}")
    df = pd.read_csv(path, sep=config.delimiter, decimal=config.decimal)
    logging.info(f"Loaded {len(df)} rows from {path.name}")
    return df


class EnrichmentPipeline:
    """
    Complete multi-database enrichment run.

    Collaborators are created from the configuration unless injected, which
    is how tests replace the network-backed lookups and back-ends.
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        key_lookup=None,
        source_manager: Optional[GeneSetSourceManager] = None,
        renderer: Optional[RenderStrategy] = None,
        descriptors: Optional[Sequence[DatabaseDescriptor]] = None,
    ):
        self.config = (config or EnrichmentConfig()).validate()
        self.species_info = resolve_species(self.config.species)

        cache_dir = Path(self.config.cache_dir) if self.config.cache_dir else None
        self.key_lookup = key_lookup or MyGeneKeyLookup(
            taxon_id=self.species_info.taxon_id,
            cache=CacheManager(cache_dir),
        )
        self.source_manager = source_manager or GeneSetSourceManager(
            cache_dir / 'genesets' if cache_dir else None
        )
        self.renderer = renderer or MatplotlibRenderer()
        self._descriptors = list(descriptors) if descriptors is not None else None

    def descriptors(self) -> List[DatabaseDescriptor]:
        """Configured databases, built-in and custom"""
        if self._descriptors is None:
            self._descriptors = build_default_descriptors(
                self.species_info, self.source_manager, self.key_lookup,
                selected=self.config.databases,
            )
            if self.config.enable_custom_signatures:
                self._descriptors += build_custom_descriptors(
                    self.config.custom_signature_files,
                    self.config.custom_gene_type,
                    self.source_manager,
                    self.key_lookup,
                )
        return self._descriptors

    def run(self, de_table_path: str, features_path: str, output_dir: str) -> PipelineRun:
        """
        Run the pipeline on files.

        Args:
            de_table_path: Differential-expression table
            features_path: Feature translation table (accession, symbol, type)
            output_dir: Directory receiving every output
        """
        de_table = load_de_table(de_table_path, self.config)
        features = load_feature_table(features_path)
        return self.run_frame(de_table, features, output_dir)

    def run_frame(self, de_table: pd.DataFrame, features: pd.DataFrame, output_dir: str) -> PipelineRun:
        config = self.config
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        repro = ReproducibilityLogger()
        repro.set_parameters(**config.to_dict())

        gene_column = config.gene_column or de_table.columns[0]
        missing = [c for c in (gene_column, config.effect_column) if c not in de_table.columns]
        if missing:
            raise InputFormatError(f"Differential expression table missing columns: {missing}")
        effect_sizes = pd.to_numeric(de_table[config.effect_column], errors='coerce').tolist()

        # Step 1: identifiers
        logging.info("Step 1/6: Resolving gene identifiers")
        resolver = CrossReferenceResolver(
            translation_from_features(features),
            self.key_lookup,
            species=self.species_info.species_key,
            min_mapped_fraction=config.min_mapped_fraction,
        )
        records, mapping_report = resolver.resolve(de_table[gene_column].tolist())
        repro.set_mapping_report({
            k: v for k, v in mapping_report.to_dict().items() if k not in ('unmapped', 'duplicated_names')
        })
        if mapping_report.mapped_fraction < config.min_mapped_fraction:
            repro.add_warning(
                f"Only {mapping_report.mapped_fraction:.1%} of genes mapped to database keys"
            )

        # Step 2: ranked list and subsets
        logging.info("Step 2/6: Building ranked list and directional subsets")
        internal_universe = GeneUniverse.from_records(records)
        ranked = build_ranked_list(records, effect_sizes, invert=config.invert_ranking)
        # subset direction always follows the sign of the measured effect
        subset_source = build_ranked_list(records, effect_sizes) if config.invert_ranking else ranked
        subsets = split_by_threshold(subset_source, config.lfc_threshold)
        self._save_subsets(subsets, resolver, output_dir)
        repro.set_input_summary(
            total_genes=len(records),
            ranked_genes=len(ranked),
            upregulated=len(subsets[0]),
            downregulated=len(subsets[1]),
            species=self.species_info.species_key,
        )

        router = ResultRouter(
            output_dir,
            self.renderer,
            folders={d.label: d.folder for d in self.descriptors()},
            labeller=resolver.label_keys,
            fold_changes=subset_source.to_dict(),
            plot_n_category=config.plot_n_category,
            batch_size=config.running_score_batch,
            rank_folder=config.rank_folder,
            subset_folder=config.subset_folder,
        )
        router.route_mapping_report(mapping_report)

        run = PipelineRun(
            output_dir=output_dir,
            records=records,
            mapping_report=mapping_report,
            internal_universe=internal_universe,
            ranked=ranked,
            subsets=subsets,
        )

        # Step 3: databases and universes
        logging.info("Step 3/6: Loading databases and auditing universes")
        dispatcher = EnrichmentDispatcher(
            self.descriptors(),
            max_workers=config.max_workers,
            task_timeout=config.task_timeout,
        )
        for label, error in dispatcher.warm().items():
            repro.add_warning(f"{label} unavailable: {error}")
        self._record_gene_sets(dispatcher, repro)
        if config.use_internal_universe:
            try:
                run.overlaps = self._audit_universes(dispatcher, internal_universe, resolver, output_dir)
            except DegenerateUniverseError as e:
                if e.report is not None:
                    repro.add_universe_overlap(e.database, e.report.to_dict())
                repro.add_warning(str(e))
                repro.export_json(output_dir / METADATA_FILE)
                raise
            for database, report in run.overlaps.items():
                repro.add_universe_overlap(database, report.to_dict())

        # Step 4: dispatch
        logging.info("Step 4/6: Running enrichment analyses")
        run.bundle = dispatcher.dispatch(
            ranked,
            subsets,
            config.rank_parameters(),
            config.subset_parameters(),
            internal_universe=internal_universe.keys,
            use_internal_universe=config.use_internal_universe,
        )

        # Step 5: outputs
        logging.info("Step 5/6: Writing results and plots")
        run.plans = router.route_all(run.bundle)

        # Step 6: metadata
        logging.info("Step 6/6: Saving run metadata")
        if any(not r.is_empty for r in run.bundle.results()):
            export_bundle(run.bundle, str(output_dir / EXPORT_FILE), format='xlsx')
        repro.set_output_summary(
            **run.bundle.summary(),
            plots={name: len(plan.written) for name, plan in run.plans.items()},
            plot_failures={name: plan.failed for name, plan in run.plans.items() if plan.failed},
        )
        repro.export_json(output_dir / METADATA_FILE)
        run.metadata = repro.get_metadata()

        logging.info(
            f"Run complete: {len(run.bundle)} results, {len(run.bundle.failures)} failed analyses"
        )
        return run

    def _save_subsets(self, subsets, resolver: CrossReferenceResolver, output_dir: Path):
        """Readable subset names, written before any analysis runs"""
        for subset in subsets:
            directory = output_dir / self.config.subset_folder / subset.direction.folder
            directory.mkdir(parents=True, exist_ok=True)
            labels = resolver.label_keys(subset.keys, drop_unlabelled=True)
            names = [labels[k] for k in subset.keys if k in labels]
            path = directory / SUBSET_FILES[subset.direction]
            pd.DataFrame({'gene': names}).to_csv(path, index=False)
            logging.info(f"Saved {len(names)}/{len(subset)} {subset.direction.value} subset names to {path}")

    def _audit_universes(
        self,
        dispatcher: EnrichmentDispatcher,
        internal: GeneUniverse,
        resolver: CrossReferenceResolver,
        output_dir: Path,
    ) -> Dict[str, OverlapReport]:
        """
        Compare the internal universe with the reference universe of every
        database that runs against both (every database when none does).
        """
        auditor = UniverseAuditor(resolver.label_keys, min_overlap=self.config.min_universe_overlap)
        candidates = [d for d in dispatcher.descriptors if d.compare_universes] or dispatcher.descriptors

        reports = {}
        for descriptor in candidates:
            keys = dispatcher.reference_universe(descriptor)
            if keys is None:
                continue
            reference = GeneUniverse.reference(descriptor.display_name, keys)
            report = auditor.audit(internal, reference, output_dir=output_dir)
            reports[descriptor.display_name] = report
        return reports

    @staticmethod
    def _record_gene_sets(dispatcher: EnrichmentDispatcher, repro: ReproducibilityLogger):
        for descriptor in dispatcher.descriptors:
            if descriptor.gene_sets is None or descriptor.display_name in dispatcher.warm_errors:
                continue
            repro.set_gene_set_info(
                descriptor.display_name, descriptor.version or 'unknown', descriptor.gene_sets()
            )
