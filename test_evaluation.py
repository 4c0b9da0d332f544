"""
Tests for ROC evaluation, the DeLong / bootstrap AUC intervals, the group
comparison and the gradient ordering.
"""
# ===================================== IMPORTS ====================================== #

import numpy as np
import pandas as pd
import pytest
from scipy.stats import mannwhitneyu
from sklearn.metrics import roc_auc_score

from dysbiosis_16s.errors import (
    DegenerateLabelsError, InsufficientGroupSizeError, InvalidInputError,
    LabelMismatchError
)
from dysbiosis_16s.stats.evaluation import (
    boxplot_statistics, compare_groups, delong_auc_variance, gradient_ordering,
    roc_evaluation
)

# ==================================== HELPERS ======================================= #

def make_scores(control, case, control_label='healthy', case_label='disease') -> pd.DataFrame:
    n_control, n_case = len(control), len(case)
    return pd.DataFrame(
        {
            'score': list(control) + list(case),
            'group': [control_label] * n_control + [case_label] * n_case,
        },
        index=[f"C{i}" for i in range(n_control)] + [f"K{i}" for i in range(n_case)],
    )


def overlapping_scores() -> pd.DataFrame:
    return make_scores([0.3, 0.5, 0.2], [0.9, 0.8, 0.4])

# ====================================== ROC ========================================= #

def test_delong_matches_hand_computed_values():
    auc, variance = delong_auc_variance(np.array([0.9, 0.8, 0.4]), np.array([0.3, 0.5, 0.2]))
    assert auc == pytest.approx(8 / 9, abs=1e-9)
    assert variance == pytest.approx(2 / 81, abs=1e-9)


def test_delong_variance_undefined_for_single_sample_groups():
    auc, variance = delong_auc_variance(np.array([1.0]), np.array([0.0, 0.5]))
    assert auc == pytest.approx(1.0)
    assert np.isnan(variance)


def test_roc_auc_agrees_with_sklearn():
    rng = np.random.default_rng(7)
    scores = make_scores(rng.normal(0, 1, 15), rng.normal(1, 1, 12))
    roc = roc_evaluation(scores, 'healthy', 'disease')
    y_true = (scores['group'] == 'disease').astype(int)
    assert roc.auc == pytest.approx(roc_auc_score(y_true, scores['score']), abs=1e-9)
    assert 0.0 <= roc.ci_lower <= roc.auc <= roc.ci_upper <= 1.0
    assert (roc.n_control, roc.n_case) == (15, 12)
    assert list(roc.curve.columns) == ['fpr', 'tpr', 'threshold']


def test_perfect_separation_interval_is_clipped():
    roc = roc_evaluation(make_scores([-3, -2, -1], [1, 2, 3]), 'healthy', 'disease')
    assert roc.auc == pytest.approx(1.0)
    assert roc.ci_upper <= 1.0
    assert roc.curve['tpr'].iloc[-1] == pytest.approx(1.0)


def test_auc_below_half_is_not_flipped():
    roc = roc_evaluation(make_scores([1, 2, 3], [-3, -2, -1]), 'healthy', 'disease')
    assert roc.auc == pytest.approx(0.0)


def test_bootstrap_interval_is_seeded():
    scores = overlapping_scores()
    first = roc_evaluation(
        scores, 'healthy', 'disease', ci_method='bootstrap', n_bootstraps=200, random_state=1
    )
    second = roc_evaluation(
        scores, 'healthy', 'disease', ci_method='bootstrap', n_bootstraps=200, random_state=1
    )
    assert (first.ci_lower, first.ci_upper) == (second.ci_lower, second.ci_upper)
    assert 0.0 <= first.ci_lower <= first.ci_upper <= 1.0
    assert first.ci_method == 'bootstrap'


def test_single_label_is_degenerate():
    scores = make_scores([0.1, 0.2, 0.3], [])
    with pytest.raises(DegenerateLabelsError):
        roc_evaluation(scores, 'healthy', 'disease')


def test_foreign_labels_rejected():
    scores = overlapping_scores()
    scores.loc['K0', 'group'] = 'other'
    with pytest.raises(LabelMismatchError):
        roc_evaluation(scores, 'healthy', 'disease')


def test_invalid_evaluation_options():
    with pytest.raises(InvalidInputError):
        roc_evaluation(overlapping_scores(), 'healthy', 'disease', ci_method='wald')
    with pytest.raises(InvalidInputError):
        roc_evaluation(overlapping_scores(), 'healthy', 'disease', conf_level=1.5)

# ================================ GROUP COMPARISON ================================== #

def test_compare_groups_matches_scipy():
    scores = overlapping_scores()
    comparison = compare_groups(scores, 'healthy', 'disease')
    expected = mannwhitneyu([0.9, 0.8, 0.4], [0.3, 0.5, 0.2], alternative='two-sided')
    assert comparison.statistic == pytest.approx(expected.statistic)
    assert comparison.p_value == pytest.approx(expected.pvalue)
    assert list(comparison.boxplot.index) == ['healthy', 'disease']
    assert comparison.boxplot.loc['disease', 'median'] == pytest.approx(0.8)


def test_compare_groups_with_empty_group_raises():
    with pytest.raises(InsufficientGroupSizeError):
        compare_groups(make_scores([0.1, 0.2], []), 'healthy', 'disease')


def test_boxplot_statistics_flags_outliers():
    stats = boxplot_statistics(np.array([1.0, 2.0, 3.0, 4.0, 100.0]))
    assert stats['median'] == pytest.approx(3.0)
    assert stats['outliers'] == [100.0]
    assert stats['whisker_high'] == pytest.approx(4.0)

# ================================ GRADIENT ORDERING ================================= #

def test_gradient_orders_control_first_then_by_score_and_id():
    scores = make_scores([0.5, -1.0, 0.5], [2.0, -0.5])
    layout = gradient_ordering(scores, 'healthy', 'disease')
    assert list(layout.order.index) == ['C1', 'C0', 'C2', 'K1', 'K0']
    assert list(layout.order['rank_in_group']) == [1, 2, 3, 1, 2]
    assert list(layout.order['position']) == [0, 1, 2, 3, 4]
    assert layout.groups == ['healthy', 'disease']


@pytest.mark.parametrize("high_line, expected", [(0.0, 0.5), (1.0, 0.75), (10.0, 1.0), (-5.0, 0.0)])
def test_gradient_colour_midpoint(high_line, expected):
    scores = make_scores([-2.0, 0.0], [2.0])
    layout = gradient_ordering(scores, 'healthy', 'disease', high_line=high_line)
    assert layout.color_midpoint == pytest.approx(expected)
    assert (layout.score_min, layout.score_max) == (-2.0, 2.0)


def test_gradient_constant_scores_midpoint():
    layout = gradient_ordering(make_scores([1.0], [1.0]), 'healthy', 'disease')
    assert layout.color_midpoint == 0.5
