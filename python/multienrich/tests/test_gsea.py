"""
Unit tests for the gseapy prerank wrapper. gseapy itself is replaced by a
recording fake so that no permutations run.
"""

from types import SimpleNamespace

import pandas as pd
import pytest

import multienrich.gsea as gsea_module
from multienrich.gsea import prepare_ranking, run_gsea_prerank
from multienrich.ranking import RankedGeneList


def _ranked(n=20):
    return RankedGeneList(
        keys=tuple(str(i) for i in range(1, n + 1)),
        scores=tuple(float(n - i) for i in range(n)),
    )


@pytest.fixture
def fake_prerank(monkeypatch):
    calls = []

    def prerank(**kwargs):
        calls.append(kwargs)
        res2d = pd.DataFrame([
            {'Term': 'T1', 'ES': 0.6, 'NES': 1.5, 'NOM p-val': 0.01, 'FDR q-val': 0.02,
             'Lead_genes': '1;2', 'Tag %': '2/6'},
            {'Term': 'apoptotic process (GO:0006915)', 'ES': -0.7, 'NES': -2.0, 'NOM p-val': 0.001,
             'FDR q-val': 0.004, 'Lead_genes': '20;19;18', 'Tag %': '3/6'},
            {'Term': 'T3', 'ES': 0.1, 'NES': 0.3, 'NOM p-val': 0.9, 'FDR q-val': 0.95,
             'Lead_genes': '', 'Tag %': '0/6'},
        ])
        results = {
            'T1': {'matched_genes': '1;2;3;4;5;6', 'RES': [0.1, 0.3, 0.6], 'hits': [0, 1, 2]},
        }
        return SimpleNamespace(res2d=res2d, results=results)

    monkeypatch.setattr(gsea_module.gp, 'prerank', prerank)
    return calls


GENE_SETS = {
    'T1': ['1', '2', '3', '4', '5', '6'],
    'apoptotic process (GO:0006915)': ['15', '16', '17', '18', '19', '20'],
    'T3': ['7', '8', '9', '10', '11', '12'],
    'TooSmall': ['1', '99', '98'],
}


class TestPrepareRanking:
    """gseapy input"""

    def test_unique_scores_unchanged(self):
        rnk = prepare_ranking(_ranked(5))
        assert rnk.tolist() == [5.0, 4.0, 3.0, 2.0, 1.0]

    def test_ties_get_decreasing_offset(self):
        """Test tied scores become strictly decreasing in input order."""
        ranked = RankedGeneList(keys=('A', 'B', 'C'), scores=(1.0, 1.0, 0.5))
        rnk = prepare_ranking(ranked)
        assert rnk['A'] > rnk['B'] > rnk['C']
        assert rnk['A'] == pytest.approx(1.0)


class TestRunGSEAPrerank:
    """Result parsing and filtering"""

    def test_parses_and_sorts(self, fake_prerank):
        """Test rows become RankedTerms ordered by adjusted p-value."""
        terms = run_gsea_prerank(_ranked(), GENE_SETS, min_size=5, max_size=50, pval_cutoff=0.05, seed=7)

        assert [t.term_id for t in terms] == ['GO:0006915', 'T1']
        apoptosis, t1 = terms
        assert apoptosis.description == 'apoptotic process'
        assert apoptosis.leading_edge == ['20', '19', '18']
        assert apoptosis.set_size == 6  # from Tag %
        assert apoptosis.adjusted_p_value == pytest.approx(0.003)

        assert t1.set_size == 6  # from matched genes
        assert t1.running_scores == [0.1, 0.3, 0.6]
        assert t1.hit_indices == [0, 1, 2]
        assert t1.fdr == pytest.approx(0.02)

    def test_gene_sets_prefiltered(self, fake_prerank):
        """Test only sets within the size bounds on the ranking reach gseapy."""
        run_gsea_prerank(_ranked(), GENE_SETS, min_size=5, max_size=50, pval_cutoff=1.0, seed=7)

        call = fake_prerank[0]
        assert 'TooSmall' not in call['gene_sets']
        assert call['gene_sets']['T1'] == ['1', '2', '3', '4', '5', '6']
        assert call['seed'] == 7
        assert call['outdir'] is None
        assert list(call['rnk'].index[:2]) == ['1', '2']

    def test_no_cutoff_keeps_every_row(self, fake_prerank):
        terms = run_gsea_prerank(_ranked(), GENE_SETS, min_size=5, max_size=50, pval_cutoff=1.0)
        assert len(terms) == 3
        assert terms[-1].leading_edge == []

    def test_no_testable_sets(self, fake_prerank):
        """Test gseapy is not called when no set matches the ranking."""
        assert run_gsea_prerank(_ranked(), {'X': ['a', 'b']}, min_size=1, max_size=10) == []
        assert fake_prerank == []

    def test_empty_ranking(self, fake_prerank):
        empty = RankedGeneList(keys=(), scores=())
        assert run_gsea_prerank(empty, GENE_SETS) == []
        assert fake_prerank == []
