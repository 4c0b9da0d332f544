"""
Tests for configuration loading, the end-to-end pipeline, result writing,
figures and the command-line entry point.
"""
# ===================================== IMPORTS ====================================== #

import dataclasses
from pathlib import Path

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import pytest
import yaml

from dysbiosis_16s import constants
from dysbiosis_16s.config import (
    DEFAULT_SECTIONS, get_config, get_dysbiosis_params, get_evaluation_params, get_section,
    is_enabled
)
from dysbiosis_16s.errors import InvalidInputError, LabelMismatchError
from dysbiosis_16s.figures.dysbiosis import plot_gradient, save_dysbiosis_figures
from dysbiosis_16s.pipeline import DysbiosisResults, run_dysbiosis_analysis
from dysbiosis_16s.run import main
from dysbiosis_16s.utils.io import write_results

# ==================================== HELPERS ======================================= #

def make_inputs(n_per_group: int = 10, n_features: int = 12, seed: int = 0):
    """Counts where cases are enriched in the first half of the features."""
    rng = np.random.default_rng(seed)
    n = 2 * n_per_group
    counts = rng.poisson(20, size=(n, n_features)).astype(float)
    counts[:n_per_group, n_features // 2:] += 80
    counts[n_per_group:, : n_features // 2] += 80
    counts[0, 0] = 0.0
    ids = [f"S{i:02d}" for i in range(n)]
    table = pd.DataFrame(counts, index=ids, columns=[f"F{j}" for j in range(n_features)])
    metadata = pd.DataFrame(
        {
            'disease_status': ['healthy'] * n_per_group + ['disease'] * n_per_group,
            'site': [['a', 'b'][i % 2] for i in range(n)],
        },
        index=ids,
    )
    return table, metadata


def fast_config(**overrides) -> dict:
    config = {
        'dysbiosis': {'group_column': 'disease_status', 'control_label': 'healthy'},
        'alpha_diversity': {'enabled': True},
        'beta_diversity': {'enabled': True, 'permutations': 99},
        'random_forest': {'enabled': True, 'n_estimators': 50},
        'differential_abundance': {'enabled': False},
    }
    config.update(overrides)
    return config

# ==================================== CONFIG ======================================== #

def test_default_config_loads_and_resolves_paths():
    config = get_config(constants.DEFAULT_CONFIG)
    assert Path(config['feature_table']).is_absolute()
    assert config['dysbiosis']['control_label'] == 'healthy'
    assert get_dysbiosis_params(config)['tie_break'] == 'normobiosis'


def test_shipped_config_matches_module_defaults():
    config = get_config(constants.DEFAULT_CONFIG)
    for section, defaults in DEFAULT_SECTIONS.items():
        if 'enabled' in defaults:
            assert get_section(config, section)['enabled'] == defaults['enabled'], section


def test_sections_merge_over_defaults():
    params = get_section({'evaluation': {'conf_level': 0.9}}, 'evaluation')
    assert params['conf_level'] == 0.9
    assert params['ci_method'] == constants.DEFAULT_CI_METHOD
    assert get_section(None, 'filtering')['enabled'] is False
    assert is_enabled({'figures': {'enabled': False}}, 'figures') is False
    with pytest.raises(KeyError):
        get_section({}, 'unknown')


@pytest.mark.parametrize("section", [
    {'tie_break': 'drop'},
    {'pseudocount': -1},
    {'pseudocount_fraction': -0.1},
])
def test_invalid_dysbiosis_params(section):
    with pytest.raises(InvalidInputError):
        get_dysbiosis_params({'dysbiosis': section})


def test_invalid_evaluation_params():
    with pytest.raises(InvalidInputError):
        get_evaluation_params({'evaluation': {'ci_method': 'wald'}})
    with pytest.raises(InvalidInputError):
        get_evaluation_params({'evaluation': {'conf_level': 0}})

# =================================== PIPELINE ======================================= #

def test_pipeline_end_to_end():
    table, metadata = make_inputs()
    results = run_dysbiosis_analysis(table, metadata, fast_config())

    assert isinstance(results, DysbiosisResults)
    assert (results.control_label, results.case_label) == ('healthy', 'disease')
    assert results.pseudocount > 0
    assert list(results.scores.columns) == constants.SCORE_COLUMNS
    assert results.roc.auc == pytest.approx(1.0)
    assert results.alpha_diversity is not None
    assert results.ordination is not None
    assert results.random_forest is not None
    assert results.differential_abundance is None
    assert results.stage_errors == {}

    controls = results.scores[results.scores['group'] == 'healthy']
    assert (controls['classification'] == constants.NORMOBIOTIC_LABEL).all()


def test_pipeline_is_deterministic_and_leaves_inputs_untouched():
    table, metadata = make_inputs()
    table_before, metadata_before = table.copy(), metadata.copy()
    first = run_dysbiosis_analysis(table, metadata, fast_config())
    second = run_dysbiosis_analysis(table, metadata, fast_config())

    assert first.scores.to_csv() == second.scores.to_csv()
    pd.testing.assert_frame_equal(table, table_before)
    pd.testing.assert_frame_equal(metadata, metadata_before)


def test_results_are_frozen():
    table, metadata = make_inputs()
    results = run_dysbiosis_analysis(table, metadata, fast_config())
    with pytest.raises(dataclasses.FrozenInstanceError):
        results.scores = None


def test_ancillary_failure_is_isolated():
    table, metadata = make_inputs()
    config = fast_config(differential_abundance={'enabled': True, 'covariates': ['batch']})
    results = run_dysbiosis_analysis(table, metadata, config)
    assert 'differential_abundance' in results.stage_errors
    assert results.differential_abundance is None
    assert results.roc is not None


def test_core_failure_aborts():
    table, metadata = make_inputs()
    config = fast_config(dysbiosis={'group_column': 'disease_status', 'control_label': 'ctrl'})
    with pytest.raises(LabelMismatchError):
        run_dysbiosis_analysis(table, metadata, config)

# ================================ OUTPUTS & FIGURES ================================= #

def test_write_results(tmp_path):
    table, metadata = make_inputs()
    results = run_dysbiosis_analysis(table, metadata, fast_config())
    written = write_results(results, tmp_path)

    for name in ('scores', 'clr_table', 'distance_matrix', 'roc_curve', 'roc_summary',
                 'group_comparison', 'gradient_order', 'alpha_diversity', 'rf_importances'):
        assert (tmp_path / f"{name}.tsv").exists()
    assert (tmp_path / "summary.yaml") in written

    summary = yaml.safe_load((tmp_path / "summary.yaml").read_text())
    assert summary['n_samples'] == len(table)
    assert summary['roc']['auc'] == pytest.approx(results.roc.auc)
    assert 'permanova' in summary

    scores = pd.read_csv(tmp_path / "scores.tsv", sep='\t', index_col=0)
    np.testing.assert_allclose(scores['score'].values, results.scores['score'].values)


def test_figures_render_and_save_html(tmp_path):
    table, metadata = make_inputs()
    results = run_dysbiosis_analysis(table, metadata, fast_config())
    fig = plot_gradient(results.gradient)
    assert isinstance(fig, go.Figure)
    assert len(fig.data) == 2

    figures = save_dysbiosis_figures(results, tmp_path, save_as=['html'])
    assert set(figures) == {'gradient', 'score_boxplot', 'roc_curve', 'pcoa'}
    assert (tmp_path / 'dysbiosis_gradient.html').exists()

# ====================================== CLI ========================================= #

def write_cli_inputs(tmp_path: Path, control_label: str = 'healthy') -> Path:
    table, metadata = make_inputs()
    table.T.to_csv(tmp_path / 'feature-table.tsv', sep='\t', index_label='#OTU ID')
    metadata.to_csv(tmp_path / 'metadata.tsv', sep='\t', index_label='#SampleID')
    config = {
        'feature_table': str(tmp_path / 'feature-table.tsv'),
        'metadata': str(tmp_path / 'metadata.tsv'),
        'metadata_id_column': '#sampleid',
        'dysbiosis': {'group_column': 'disease_status', 'control_label': control_label},
        'alpha_diversity': {'enabled': False},
        'beta_diversity': {'enabled': False},
        'random_forest': {'enabled': False},
        'figures': {'enabled': False},
    }
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.safe_dump(config))
    return config_path


def test_cli_writes_results(tmp_path):
    config_path = write_cli_inputs(tmp_path)
    out = tmp_path / 'out'
    assert main(['--config', str(config_path), '--output-dir', str(out)]) == 0
    assert (out / 'scores.tsv').exists()
    assert (out / 'summary.yaml').exists()


def test_cli_exits_non_zero_on_core_error(tmp_path):
    config_path = write_cli_inputs(tmp_path, control_label='ctrl')
    out = tmp_path / 'out'
    assert main(['--config', str(config_path), '--output-dir', str(out)]) == 1
    assert not (out / 'scores.tsv').exists()


def test_cli_exits_non_zero_on_missing_config(tmp_path):
    out = tmp_path / 'out'
    assert main(['--config', str(tmp_path / 'missing.yaml'), '--output-dir', str(out)]) == 1
    assert not (out / 'scores.tsv').exists()
