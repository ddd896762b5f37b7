"""
Unit tests for species support, gene set sources and database descriptors.
"""

import json

import pytest

import multienrich.databases as databases_module
import multienrich.sources as sources_module
from multienrich.databases import (
    BUILTIN_DATABASES,
    CUSTOM_SIGNATURE_FOLDER,
    DatabaseDescriptor,
    GeneSetBackend,
    RankParameters,
    SubsetParameters,
    build_custom_descriptors,
    build_default_descriptors,
)
from multienrich.ranking import DirectionalSubset
from multienrich.results import Direction
from multienrich.sources import GeneSetSourceManager, translate_gene_sets
from multienrich.species import resolve_species, unsupported_databases

from .conftest import symbol_key


class TestSpecies:
    """Species resolution"""

    def test_aliases(self):
        assert resolve_species('hsa').species_key == 'human'
        assert resolve_species('Mus musculus').taxon_id == 10090

    def test_unsupported(self):
        with pytest.raises(ValueError):
            resolve_species('zebrafish')

    def test_mouse_lacks_disease_libraries(self):
        mouse = resolve_species('mouse')
        assert unsupported_databases(mouse, list(BUILTIN_DATABASES)) == ['DO', 'DGN']

    def test_human_disease_library(self):
        """Test DO is served by the DISEASES library, whose terms are DO diseases."""
        assert resolve_species('human').library_for('DO') == 'Jensen_DISEASES'


@pytest.fixture
def fake_library(monkeypatch):
    calls = []

    def get_library(name, organism):
        calls.append((name, organism))
        return {
            'apoptotic process (GO:0006915)': ['TP53', 'BRCA1', 'MYC', ''],
            'EMPTY': [],
            'Cell cycle': 'CDK4\tRB1\tTP53',
        }

    monkeypatch.setattr(sources_module.gp, 'get_library', get_library)
    return calls


class TestGeneSetSourceManager:
    """Download cache"""

    def test_download_then_cache(self, tmp_path, fake_library):
        """Test a library is downloaded once and then read from the GMT cache."""
        manager = GeneSetSourceManager(tmp_path)

        gene_sets, meta = manager.load_library('KEGG_2021_Human', 'Human')
        assert gene_sets['Cell cycle'] == ['CDK4', 'RB1', 'TP53']
        assert 'EMPTY' not in gene_sets
        assert meta['version'] == 'KEGG_2021_Human'

        again, meta_again = GeneSetSourceManager(tmp_path).load_library('KEGG_2021_Human', 'Human')
        assert again == gene_sets
        assert meta_again['file_hash'] == meta['file_hash']
        assert len(fake_library) == 1

        with open(tmp_path / 'metadata.json') as f:
            assert 'kegg_2021_human_human' in json.load(f)

    def test_clear_cache(self, tmp_path, fake_library):
        manager = GeneSetSourceManager(tmp_path)
        manager.load_library('KEGG_2021_Human')
        manager.clear_cache()
        assert not list(tmp_path.glob('*.gmt'))
        manager.load_library('KEGG_2021_Human')
        assert len(fake_library) == 2

    def test_load_custom(self, tmp_path):
        path = tmp_path / 'h.all.gmt'
        path.write_text("HALLMARK_P53\tdesc\t7157\t672\n")
        gene_sets, meta = GeneSetSourceManager(tmp_path / 'cache').load_custom(str(path))
        assert gene_sets == {'HALLMARK_P53': ['7157', '672']}
        assert meta['version'] == 'custom'
        assert len(meta['file_hash']) == 16


class TestTranslateGeneSets:
    """Gene set members to database keys"""

    def test_symbols(self, key_lookup):
        """Test symbols without a key are dropped, empty sets removed."""
        translated = translate_gene_sets(
            {'S1': ['TP53', 'NOPE'], 'S2': ['NOPE']}, 'symbol', key_lookup
        )
        assert translated == {'S1': [symbol_key('TP53')]}

    def test_ensembl(self, key_lookup):
        translated = translate_gene_sets({'S1': ['ENSG00000141510']}, 'ensembl', key_lookup)
        assert translated == {'S1': ['7157']}

    def test_entrez_passthrough(self, key_lookup):
        assert translate_gene_sets({'S1': [7157]}, 'entrez', key_lookup) == {'S1': ['7157']}
        assert key_lookup.calls == []

    def test_unknown_type(self, key_lookup):
        with pytest.raises(ValueError):
            translate_gene_sets({}, 'uniprot', key_lookup)


class TestDescriptors:
    """Capability table"""

    def test_default_descriptors(self, tmp_path, fake_library, key_lookup):
        """Test built-in databases carry folder, branch and universe comparison."""
        descriptors = build_default_descriptors(
            resolve_species('human'), GeneSetSourceManager(tmp_path), key_lookup,
            selected=['GO-BP', 'KEGG'],
        )
        go, kegg = descriptors
        assert go.folder == 'gene_ontology'
        assert go.ontology_branch == 'BP'
        assert go.compare_universes
        assert kegg.ontology_branch is None
        assert go.supports_rank and go.supports_subset
        assert fake_library == []  # nothing loaded before warm()

        go.warm()
        assert go.reference_universe() == {symbol_key(s) for s in ('TP53', 'BRCA1', 'MYC', 'CDK4', 'RB1')}
        assert fake_library == [('GO_Biological_Process_2023', 'Human')]

    def test_species_without_library_skipped(self, tmp_path, key_lookup):
        descriptors = build_default_descriptors(
            resolve_species('mouse'), GeneSetSourceManager(tmp_path), key_lookup,
            selected=['KEGG', 'DO'],
        )
        assert [d.label for d in descriptors] == ['KEGG']

    def test_unknown_database(self, tmp_path, key_lookup):
        with pytest.raises(ValueError):
            build_default_descriptors(
                resolve_species('human'), GeneSetSourceManager(tmp_path), key_lookup, selected=['MSIGDB'],
            )

    def test_custom_descriptors(self, tmp_path, key_lookup):
        """Test each custom collection becomes its own synthetic database."""
        h = tmp_path / 'h.gmt'
        h.write_text("HALLMARK_P53\tdesc\tTP53\tMYC\n")
        c2 = tmp_path / 'c2.csv'
        c2.write_text("term,gene\nREACTOME_X,RB1\n")

        descriptors = build_custom_descriptors(
            {'H': str(h), 'C2CP': str(c2)}, 'symbol', GeneSetSourceManager(tmp_path / 'cache'), key_lookup,
        )

        assert [d.display_name for d in descriptors] == ['MSDB-H', 'MSDB-C2CP']
        assert all(d.folder == CUSTOM_SIGNATURE_FOLDER and d.is_custom_signature for d in descriptors)
        assert descriptors[0].gene_sets() == {'HALLMARK_P53': [symbol_key('TP53'), symbol_key('MYC')]}

    def test_custom_requires_collection(self):
        with pytest.raises(ValueError):
            DatabaseDescriptor(label='MSDB', folder='x', is_custom_signature=True)


class TestGeneSetBackend:
    """Built-in statistics over a loaded library"""

    def test_subset_based(self):
        backend = GeneSetBackend('TOY', lambda: {
            'SetA': ['1', '2', '3', '4'],
            'SetB': ['5', '6', '7', '8'],
        })
        subset = DirectionalSubset(Direction.UP, 1.0, ('1', '2', '3'))
        terms = backend.subset_based(subset, SubsetParameters(min_size=1))
        assert [t.term_id for t in terms] == ['SetA']
        assert backend.universe() == {str(i) for i in range(1, 9)}

    def test_loader_called_once(self):
        calls = []

        def loader():
            calls.append(1)
            return {'SetA': ['1']}

        backend = GeneSetBackend('TOY', loader)
        backend.warm()
        backend.warm()
        assert backend.gene_sets == {'SetA': ['1']}
        assert len(calls) == 1

    def test_rank_parameters_reach_gseapy(self, monkeypatch):
        seen = {}

        def fake_prerank(ranked, gene_sets, **kwargs):
            seen.update(kwargs)
            return []

        monkeypatch.setattr(databases_module, 'run_gsea_prerank', fake_prerank)
        backend = GeneSetBackend('TOY', lambda: {'SetA': ['1']}, threads=2)
        backend.rank_based(None, RankParameters(min_size=5, seed=3))
        assert seen['min_size'] == 5
        assert seen['seed'] == 3
        assert seen['threads'] == 2
