"""Tests for configuration loading and validation."""

import pytest
import yaml

from pyxcorrsearch.config import SearchConfig, load_config, parse_mods
from pyxcorrsearch.exceptions import ConfigurationError


class TestSearchConfig:
    """Tests for defaults and validation."""

    def test_defaults(self):
        config = SearchConfig()
        assert config.top_match == 5
        assert config.overflow_policy == 'error'
        assert config.num_decoy_files == 1
        assert config.num_files == 2
        assert config.static_mods == {'C': 57.021464}

    @pytest.mark.parametrize('overrides', [
        {'overflow_policy': 'drop'},
        {'top_match': 0},
        {'max_matches': 0},
        {'num_decoy_files': -1},
        {'charge_states': []},
        {'charge_states': [0, 2]},
        {'precursor_window': 0.0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            SearchConfig(**overrides)

    def test_updated_skips_none(self):
        config = SearchConfig().updated(top_match=3, output_dir=None)
        assert config.top_match == 3
        assert config.output_dir == 'crux-output'

    def test_updated_validates(self):
        with pytest.raises(ConfigurationError):
            SearchConfig().updated(num_decoy_files=-2)


class TestLoadConfig:
    """Tests for YAML configuration files."""

    def test_no_file_gives_defaults(self):
        assert load_config(None) == SearchConfig()

    def test_overlay(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump({
            'top_match': 2,
            'num_decoy_files': 3,
            'variable_mods': {'M': 15.9949},
            'overflow_policy': 'truncate',
        }))
        config = load_config(path)
        assert config.top_match == 2
        assert config.num_files == 4
        assert config.variable_mods == {'M': 15.9949}
        assert config.overflow_policy == 'truncate'
        assert config.bin_offset == 0.4

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('')
        assert load_config(path) == SearchConfig()

    def test_unknown_key(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('top_matches: 4\n')
        with pytest.raises(ConfigurationError, match='top_matches'):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('- 1\n- 2\n')
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestParseMods:
    """Tests for AA:mass modification strings."""

    def test_pairs(self):
        assert parse_mods('C:57.021464, m:15.9949') == {'C': 57.021464, 'M': 15.9949}

    def test_none(self):
        assert parse_mods('none') == {}
        assert parse_mods('') == {}

    @pytest.mark.parametrize('text', ['C57.02', 'C:abc'])
    def test_invalid(self, text):
        with pytest.raises(ConfigurationError):
            parse_mods(text)
