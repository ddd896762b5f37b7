"""
Result Classifier & Router

Decides where each result goes and which plots it gets. Classification uses
only the composite result name and the result's rank/subset tag; drawing is
delegated to an injected RenderStrategy so layouts can be swapped or
recorded in tests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .id_mapper import MappingReport
from .results import AnalysisMode, Direction, EnrichmentResult, ResultBundle, ResultKey, UniverseChoice
from .similarity import pairwise_term_similarity

logger = logging.getLogger("MultiEnrich.Router")


# Plot kind -> file name
PLOT_FILES = {
    'dotplot': 'dotplot_top.png',
    'cnetplot': 'cnetplot_terms+genes.png',
    'upsetplot': 'upsetplot_terms+ngenes.png',
    'emapplot': 'emapplot_terms+ngenes.png',
    'treeplot': 'treeplot.png',
    'ridgeplot': 'ridgeplot.png',
    'dotplot_split': 'dotplot_split.png',
    'gseaplot': 'gseaplot2_categories_{start}-{end}.png',
    'heatplot': 'heatmap_genes+lfc.png',
    'goplot': 'goplot.png',
}

COMMON_PLOTS = ('dotplot', 'cnetplot', 'upsetplot', 'emapplot', 'treeplot')
RANK_PLOTS = ('ridgeplot', 'dotplot_split')
SUBSET_PLOTS = ('heatplot',)
ONTOLOGY_SUBSET_PLOTS = ('goplot',)

# Plots comparing terms with each other need at least two
MIN_TERMS = {'emapplot': 2, 'treeplot': 2}

UNIVERSE_FOLDERS = {
    UniverseChoice.INTERNAL: 'internal_universe',
    UniverseChoice.REFERENCE: 'reference_universe',
}

MAPPING_FOLDER = 'gene_mapping'
UNMAPPED_PLOT = 'distribution_rank_genes_not_mapped.png'
RESULT_TABLE = 'results.csv'


@dataclass(frozen=True)
class ResultProfile:
    """Everything routing needs to know about one result"""
    name: str
    mode: AnalysisMode
    database: str
    collection: Optional[str]
    universe: Optional[UniverseChoice]
    direction: Optional[Direction]
    ontology_branch: Optional[str]
    n_terms: int

    @property
    def is_rank_based(self) -> bool:
        return self.mode is AnalysisMode.RANK


@dataclass(frozen=True)
class PlotSpec:
    kind: str
    filename: str
    term_range: Optional[Tuple[int, int]] = None  # 0-based [start, end) for paged plots


@dataclass
class OutputPlan:
    """Output directory and plot selection for one result"""
    profile: ResultProfile
    directory: Path
    plots: List[PlotSpec] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)  # kind -> reason
    written: List[Path] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # filename -> error


@dataclass
class RenderContext:
    """Read-only views handed to the renderer, computed once per result"""
    result: EnrichmentResult
    profile: ResultProfile
    labels: Dict[str, str]
    similarity: pd.DataFrame
    fold_changes: Mapping[str, float]
    top_n: int

    def label(self, key: str) -> str:
        return self.labels.get(key, key)


class RenderStrategy(ABC):
    """Draws one plot to one file"""

    @abstractmethod
    def render(self, plot: PlotSpec, context: RenderContext, path: Path) -> None:
        ...

    @abstractmethod
    def render_unmapped_distribution(self, report: MappingReport, path: Path) -> None:
        ...


class ResultRouter:
    """
    Classifies results and materializes them under output_dir.

    Args:
        output_dir: Run output directory; nothing is written outside it
        renderer: RenderStrategy drawing individual plots
        folders: Database label -> folder name (defaults to the label)
        labeller: keys -> {key: symbol}, for readable gene labels
        fold_changes: Database key -> effect size, for heat charts
        plot_n_category: Terms shown per plot
        batch_size: Terms per running-score page
    """

    def __init__(
        self,
        output_dir: Path,
        renderer: RenderStrategy,
        folders: Optional[Mapping[str, str]] = None,
        labeller: Optional[Callable[..., Dict[str, str]]] = None,
        fold_changes: Optional[Mapping[str, float]] = None,
        plot_n_category: int = 30,
        batch_size: int = 10,
        rank_folder: str = 'gene_set_enrichment_analysis',
        subset_folder: str = 'over_representation_analysis',
    ):
        if plot_n_category < 1 or batch_size < 1:
            raise ValueError("plot_n_category and batch_size must be >= 1")
        self.output_dir = Path(output_dir)
        self.renderer = renderer
        self.folders = dict(folders or {})
        self.labeller = labeller
        self.fold_changes = dict(fold_changes or {})
        self.plot_n_category = plot_n_category
        self.batch_size = batch_size
        self.mode_folders = {AnalysisMode.RANK: rank_folder, AnalysisMode.SUBSET: subset_folder}

    def classify(self, name: str, result: EnrichmentResult) -> ResultProfile:
        """Profile of a result from its composite name and kind tag"""
        key = ResultKey.parse(name)
        tagged_mode = AnalysisMode.RANK if result.is_rank_based else AnalysisMode.SUBSET
        if key.mode is not tagged_mode:
            raise ValueError(f"{name}: name says {key.mode.value}, result is {tagged_mode.value}")
        return ResultProfile(
            name=name,
            mode=key.mode,
            database=key.database,
            collection=key.collection,
            universe=key.universe,
            direction=key.direction,
            ontology_branch=result.ontology_branch,
            n_terms=len(result),
        )

    def output_path(self, profile: ResultProfile) -> Path:
        """
        mode root / database folder / [collection] / [ontology branch]
        / [universe] / [direction]
        """
        path = self.output_dir / self.mode_folders[profile.mode] / self.folders.get(profile.database, profile.database)
        if profile.collection:
            path = path / profile.collection
        if profile.ontology_branch:
            path = path / profile.ontology_branch
        if profile.universe is not None:
            path = path / UNIVERSE_FOLDERS[profile.universe]
        if profile.direction is not None:
            path = path / profile.direction.folder
        return path

    def plan(self, name: str, result: EnrichmentResult) -> OutputPlan:
        profile = self.classify(name, result)
        plan = OutputPlan(profile=profile, directory=self.output_path(profile))

        kinds = list(COMMON_PLOTS)
        if profile.is_rank_based:
            kinds += RANK_PLOTS
        else:
            kinds += SUBSET_PLOTS
            if profile.ontology_branch:
                kinds += ONTOLOGY_SUBSET_PLOTS

        for kind in kinds:
            needed = MIN_TERMS.get(kind, 1)
            if profile.n_terms < needed:
                plan.skipped[kind] = f"needs {needed} terms, has {profile.n_terms}"
            else:
                plan.plots.append(PlotSpec(kind, PLOT_FILES[kind]))

        if profile.is_rank_based:
            pages = self.running_score_pages(profile.n_terms)
            if not pages:
                plan.skipped['gseaplot'] = "no terms"
            for start, end in pages:
                plan.plots.append(PlotSpec(
                    'gseaplot',
                    PLOT_FILES['gseaplot'].format(start=start + 1, end=end),
                    term_range=(start, end),
                ))
        return plan

    def running_score_pages(self, n_terms: int) -> List[Tuple[int, int]]:
        """[start, end) batches over the top terms, clipped to n_terms"""
        shown = min(self.plot_n_category, n_terms)
        return [(start, min(start + self.batch_size, shown)) for start in range(0, shown, self.batch_size)]

    def render(self, plan: OutputPlan, result: EnrichmentResult) -> OutputPlan:
        """Create the directory, write the table and draw every planned plot"""
        plan.directory.mkdir(parents=True, exist_ok=True)

        if result.is_empty:
            logger.warning(f"{plan.profile.name}: empty result, term plots skipped")
            return plan

        table = plan.directory / RESULT_TABLE
        result.to_frame().to_csv(table, index=False)
        plan.written.append(table)

        context = self._context(plan.profile, result)
        for plot in plan.plots:
            path = plan.directory / plot.filename
            try:
                self.renderer.render(plot, context, path)
            except Exception as e:
                # record and continue with the next plot
                logger.error(f"{plan.profile.name}: {plot.filename} failed: {e}")
                plan.failed[plot.filename] = f"{type(e).__name__}: {e}"
                continue
            plan.written.append(path)
        return plan

    def route(self, name: str, result: EnrichmentResult) -> OutputPlan:
        logger.info(f"Routing {name}")
        return self.render(self.plan(name, result), result)

    def route_all(self, bundle: ResultBundle) -> Dict[str, OutputPlan]:
        """Route every stored result; failure records have no output"""
        plans = {}
        for name, result in bundle.items():
            plans[name] = self.route(name, result)
        if bundle.failures:
            logger.info(f"Not routed (failed): {', '.join(sorted(bundle.failures))}")
        return plans

    def route_mapping_report(self, report: MappingReport) -> List[Path]:
        """Unmapped-identifier table and rank histogram"""
        directory = self.output_dir / MAPPING_FOLDER
        paths = [report.save(directory)]
        if report.unmapped_count:
            path = directory / UNMAPPED_PLOT
            self.renderer.render_unmapped_distribution(report, path)
            paths.append(path)
        return paths

    def _context(self, profile: ResultProfile, result: EnrichmentResult) -> RenderContext:
        keys = result.gene_keys()
        labels = self.labeller(keys) if self.labeller is not None and keys else {}
        # rank-based plots show the (possibly inverted) ranking they were computed on
        ranking = getattr(result, 'ranking', None)
        fold_changes = ranking.to_dict() if ranking is not None else self.fold_changes
        return RenderContext(
            result=result,
            profile=profile,
            labels=labels,
            similarity=pairwise_term_similarity(result, top_n=self.plot_n_category),
            fold_changes=fold_changes,
            top_n=self.plot_n_category,
        )
