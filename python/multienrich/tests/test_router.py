"""
Unit tests for result classification, output paths and plot selection.
"""

import pandas as pd
import pytest

from multienrich.id_mapper import CrossReferenceResolver
from multienrich.ranking import DirectionalSubset, RankedGeneList
from multienrich.results import (
    AnalysisMode,
    Direction,
    RankedResult,
    RankedTerm,
    ResultBundle,
    ResultKey,
    SubsetResult,
    SubsetTerm,
    UniverseChoice,
)
from multienrich.router import RESULT_TABLE, ResultRouter
from multienrich.similarity import cluster_terms, pairwise_term_similarity, similar_pairs

from .conftest import RecordingRenderer


FOLDERS = {'GO-BP': 'gene_ontology', 'KEGG': 'KEGG', 'MSDB': 'molecular_signatures'}


def ranked_result(database='KEGG', n_terms=3, collection=None, branch=None):
    terms = [
        RankedTerm(f"T{i}", f"term {i}", 10, 0.5, 2.0 - i * 0.01, 0.001, 0.01, 0.02, [str(i), str(i + 1)])
        for i in range(n_terms)
    ]
    ranking = RankedGeneList(keys=('1', '2'), scores=(-1.0, -2.0))
    return RankedResult(
        key=ResultKey(AnalysisMode.RANK, database, collection),
        terms=terms, ontology_branch=branch, ranking=ranking,
    )


def subset_result(database='GO-BP', n_terms=3, universe='internal', direction='up', branch='BP'):
    terms = [
        SubsetTerm(f"GO:{i:07d}", f"term {i}", 0.001, 0.01, 0.02, '2/5', '10/100', ['1', '2'])
        for i in range(n_terms)
    ]
    return SubsetResult(
        key=ResultKey(AnalysisMode.SUBSET, database, None, universe, direction),
        terms=terms, ontology_branch=branch,
    )


@pytest.fixture
def router(tmp_path, renderer):
    return ResultRouter(tmp_path, renderer, folders=FOLDERS, fold_changes={'1': 2.5, '2': 3.0})


class TestClassification:
    """Profiles and paths"""

    def test_subset_ontology_path(self, router, tmp_path):
        """Test ontology subset results nest branch, universe and direction."""
        result = subset_result(universe='reference', direction='down')
        profile = router.classify(result.name, result)

        assert profile.mode is AnalysisMode.SUBSET
        assert profile.universe is UniverseChoice.REFERENCE
        assert profile.direction is Direction.DOWN
        assert router.output_path(profile) == (
            tmp_path / 'over_representation_analysis' / 'gene_ontology' / 'BP'
            / 'reference_universe' / 'downregulated'
        )

    def test_rank_path(self, router, tmp_path):
        result = ranked_result()
        profile = router.classify(result.name, result)
        assert router.output_path(profile) == tmp_path / 'gene_set_enrichment_analysis' / 'KEGG'

    def test_custom_collection_path(self, router, tmp_path):
        """Test custom signature results get one folder per collection."""
        result = ranked_result(database='MSDB', collection='C2CP')
        profile = router.classify(result.name, result)
        assert router.output_path(profile) == (
            tmp_path / 'gene_set_enrichment_analysis' / 'molecular_signatures' / 'C2CP'
        )

    def test_unknown_database_uses_label(self, router, tmp_path):
        result = subset_result(database='DGN', branch=None)
        path = router.output_path(router.classify(result.name, result))
        assert path == tmp_path / 'over_representation_analysis' / 'DGN' / 'internal_universe' / 'upregulated'

    def test_tag_mismatch(self, router):
        """Test a name that disagrees with the result kind is rejected."""
        result = ranked_result()
        with pytest.raises(ValueError):
            router.classify('mode=ORA,database=KEGG,universe=internal,direction=up', result)


class TestPlotSelection:
    """Plot planning"""

    def test_rank_plots(self, router):
        result = ranked_result(n_terms=3)
        plan = router.plan(result.name, result)
        kinds = [p.kind for p in plan.plots]

        assert kinds == ['dotplot', 'cnetplot', 'upsetplot', 'emapplot', 'treeplot',
                         'ridgeplot', 'dotplot_split', 'gseaplot']
        assert plan.plots[-1].filename == 'gseaplot2_categories_1-3.png'

    def test_subset_ontology_plots(self, router):
        result = subset_result()
        kinds = [p.kind for p in router.plan(result.name, result).plots]
        assert 'heatplot' in kinds
        assert 'goplot' in kinds
        assert 'ridgeplot' not in kinds

    def test_subset_non_ontology_has_no_goplot(self, router):
        result = subset_result(database='KEGG', branch=None)
        kinds = [p.kind for p in router.plan(result.name, result).plots]
        assert 'goplot' not in kinds

    def test_single_term_skips_pairwise_plots(self, router):
        """Test plots comparing terms need at least two terms."""
        result = subset_result(n_terms=1)
        plan = router.plan(result.name, result)
        kinds = [p.kind for p in plan.plots]
        assert 'emapplot' not in kinds
        assert 'treeplot' not in kinds
        assert set(plan.skipped) == {'emapplot', 'treeplot'}

    def test_running_score_pages(self, router):
        """Test 25 terms are paged 1-10, 11-20, 21-25."""
        result = ranked_result(n_terms=25)
        pages = [p for p in router.plan(result.name, result).plots if p.kind == 'gseaplot']
        assert [p.filename for p in pages] == [
            'gseaplot2_categories_1-10.png',
            'gseaplot2_categories_11-20.png',
            'gseaplot2_categories_21-25.png',
        ]
        assert pages[-1].term_range == (20, 25)

    def test_pages_clipped_to_plot_n_category(self, tmp_path, renderer):
        router = ResultRouter(tmp_path, renderer, plot_n_category=15, batch_size=10)
        assert router.running_score_pages(40) == [(0, 10), (10, 15)]
        assert router.running_score_pages(0) == []

    def test_invalid_paging(self, tmp_path, renderer):
        with pytest.raises(ValueError):
            ResultRouter(tmp_path, renderer, batch_size=0)


class TestRendering:
    """Writing tables and plots"""

    def test_route_writes_table_and_plots(self, router, renderer):
        result = subset_result()
        plan = router.route(result.name, result)

        assert plan.directory.is_dir()
        table = pd.read_csv(plan.directory / RESULT_TABLE)
        assert len(table) == 3
        assert all(p.exists() for p in plan.written)
        assert renderer.kinds() == [p.kind for p in plan.plots]

    def test_empty_result(self, router, renderer):
        """Test an empty result gets its directory but no plots or table."""
        result = subset_result(n_terms=0)
        plan = router.route(result.name, result)

        assert plan.directory.is_dir()
        assert not (plan.directory / RESULT_TABLE).exists()
        assert renderer.calls == []
        assert plan.written == []
        assert plan.plots == []
        assert {'dotplot', 'cnetplot', 'upsetplot', 'emapplot', 'treeplot', 'heatplot', 'goplot'} <= set(plan.skipped)

    def test_empty_rank_result_has_no_pages(self, router):
        """Test a rank result without rows plans no running-score pages."""
        result = ranked_result(n_terms=0)
        plan = router.route(result.name, result)
        assert plan.skipped['gseaplot'] == "no terms"
        assert plan.plots == []

    def test_plot_failure_is_isolated(self, tmp_path):
        """Test one failing plot does not stop the others."""
        renderer = RecordingRenderer(fail_on={'cnetplot'})
        router = ResultRouter(tmp_path, renderer, folders=FOLDERS)
        result = ranked_result()

        plan = router.route(result.name, result)

        assert 'cnetplot_terms+genes.png' in plan.failed
        assert 'RuntimeError' in plan.failed['cnetplot_terms+genes.png']
        assert 'dotplot' in renderer.kinds()
        assert 'gseaplot' in renderer.kinds()

    def test_rank_context_uses_ranking(self, tmp_path):
        """Test rank-based plots see the ranking the result was computed on."""
        seen = []

        class Capture(RecordingRenderer):
            def render(self, plot, context, path):
                seen.append(dict(context.fold_changes))

        router = ResultRouter(tmp_path, Capture(), fold_changes={'1': 2.5})
        router.route(ranked_result().name, ranked_result())
        assert seen[0] == {'1': -1.0, '2': -2.0}

        seen.clear()
        result = subset_result()
        router.route(result.name, result)
        assert seen[0] == {'1': 2.5}

    def test_route_all_skips_failures(self, router):
        bundle = ResultBundle()
        bundle.add(ranked_result())
        bundle.add(subset_result())
        plans = router.route_all(bundle)
        assert set(plans) == set(bundle.names)

    def test_route_mapping_report(self, router, renderer, translation, key_lookup, tmp_path):
        """Test the unmapped table is always written and the histogram only with losses."""
        resolver = CrossReferenceResolver(translation, key_lookup)
        _, report = resolver.resolve(["TP53", "NOTAGENE"])

        paths = router.route_mapping_report(report)

        assert [p.name for p in paths] == ['genes_not_mapped.csv', 'distribution_rank_genes_not_mapped.png']
        assert renderer.unmapped == [tmp_path / 'gene_mapping' / 'distribution_rank_genes_not_mapped.png']

        _, clean = resolver.resolve(["TP53"])
        assert len(router.route_mapping_report(clean)) == 1


class TestSimilarity:
    """Derived term views"""

    def test_pairwise_similarity(self):
        result = ranked_result(n_terms=3)  # T0 {0,1}, T1 {1,2}, T2 {2,3}
        similarity = pairwise_term_similarity(result)
        assert similarity.loc['T0', 'T1'] == pytest.approx(1 / 3)
        assert similarity.loc['T0', 'T2'] == 0.0
        assert similarity.loc['T1', 'T1'] == 1.0

    def test_clusters_and_pairs(self):
        similarity = pairwise_term_similarity(ranked_result(n_terms=4))
        clusters = cluster_terms(similarity, n_clusters=2)
        assert set(clusters) == {'T0', 'T1', 'T2', 'T3'}
        assert set(clusters.values()) <= {1, 2}
        assert ('T0', 'T1', pytest.approx(1 / 3)) in similar_pairs(similarity, threshold=0.3)
