"""
Unit tests for run configuration.
"""

import pytest

from multienrich.config import EnrichmentConfig
from multienrich.errors import ConfigurationError, InvalidThresholdError


class TestDefaults:
    """Default configuration"""

    def test_defaults_are_valid(self):
        config = EnrichmentConfig().validate()
        assert config.lfc_threshold == 1.0
        assert config.use_internal_universe
        assert config.databases is None

    def test_parameter_sets(self):
        """Test rank and subset parameter sets carry the shared options."""
        config = EnrichmentConfig(p_adjust_method='BY', pval_cutoff=0.1, seed=7)
        rank = config.rank_parameters()
        subset = config.subset_parameters()
        assert rank.p_adjust_method == subset.p_adjust_method == 'BY'
        assert rank.pval_cutoff == subset.pval_cutoff == 0.1
        assert rank.seed == 7
        assert subset.universe is None


class TestValidation:
    """Rejected values"""

    @pytest.mark.parametrize('threshold', [0, -0.5, float('nan'), 'one', True])
    def test_invalid_threshold(self, threshold):
        with pytest.raises(InvalidThresholdError):
            EnrichmentConfig(lfc_threshold=threshold).validate()

    @pytest.mark.parametrize('values', [
        {'p_adjust_method': 'magic'},
        {'pval_cutoff': 1.5},
        {'qval_cutoff': -0.1},
        {'max_size_rank': None},
        {'min_size_subset': 0},
        {'min_size_rank': 50, 'max_size_rank': 10},
        {'max_workers': 0},
        {'task_timeout': 0},
        {'species': 'zebrafish'},
        {'databases': ['GO-BP', 'MSIGDB']},
        {'custom_gene_type': 'uniprot'},
        {'enable_custom_signatures': True},
        {'enable_custom_signatures': True, 'custom_signature_files': {'C2,CP': 'c2.gmt'}},
        {'rank_folder': 'out', 'subset_folder': 'out'},
    ])
    def test_invalid_values(self, values):
        with pytest.raises(ConfigurationError):
            EnrichmentConfig(**values).validate()

    def test_threshold_error_is_configuration_error(self):
        assert issubclass(InvalidThresholdError, ConfigurationError)


class TestLoading:
    """Dict and YAML loading"""

    def test_from_dict(self):
        config = EnrichmentConfig.from_dict({'lfc_threshold': 0.5, 'databases': ['KEGG']})
        assert config.lfc_threshold == 0.5
        assert config.databases == ['KEGG']

    def test_unknown_keys(self):
        """Test misspelled options are reported instead of ignored."""
        with pytest.raises(ConfigurationError, match='lfc_treshold'):
            EnrichmentConfig.from_dict({'lfc_treshold': 0.5})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(
            "lfc_threshold: 0.75\n"
            "invert_ranking: true\n"
            "species: mouse\n"
            "enable_custom_signatures: true\n"
            "custom_signature_files:\n"
            "  H: h.all.gmt\n"
        )
        config = EnrichmentConfig.from_yaml(str(path))
        assert config.invert_ranking
        assert config.species == 'mouse'
        assert config.custom_signature_files == {'H': 'h.all.gmt'}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("")
        assert EnrichmentConfig.from_yaml(str(path)) == EnrichmentConfig()

    def test_yaml_not_a_mapping(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            EnrichmentConfig.from_yaml(str(path))

    def test_to_dict_round_trip(self):
        config = EnrichmentConfig(lfc_threshold=2.0, databases=['KEGG', 'WP'])
        assert EnrichmentConfig.from_dict(config.to_dict()) == config
