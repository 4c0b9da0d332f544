"""
Tests for the centroid-distance dysbiosis score: distances, label resolution,
classification and the score invariants.
"""
# ===================================== IMPORTS ====================================== #

import numpy as np
import pandas as pd
import pytest

from dysbiosis_16s import constants
from dysbiosis_16s.errors import (
    InsufficientGroupSizeError, InvalidInputError, LabelMismatchError
)
from dysbiosis_16s.stats.composition import clr_transform
from dysbiosis_16s.stats.dysbiosis import (
    aitchison_distance_matrix, classify_scores, dysbiosis_scores, group_centroids,
    resolve_group_labels, score_against_centroids, score_samples, summarize_scores
)

TOL = 1e-9

# ==================================== HELPERS ======================================= #

def four_sample_vectors():
    """Two controls at (1, 1); cases at (3, 3) and (5, 1)."""
    transformed = pd.DataFrame(
        [[1.0, 1.0], [1.0, 1.0], [3.0, 3.0], [5.0, 1.0]],
        index=['C1', 'C2', 'K1', 'K2'],
        columns=['F1', 'F2'],
    )
    groups = pd.Series(['healthy', 'healthy', 'disease', 'disease'], index=transformed.index)
    return transformed, groups


def random_clr(n_per_group: int = 8, n_features: int = 10, seed: int = 0):
    rng = np.random.default_rng(seed)
    counts = rng.poisson(15, size=(2 * n_per_group, n_features)).astype(float)
    counts[n_per_group:, : n_features // 2] += 40
    ids = [f"S{i:02d}" for i in range(2 * n_per_group)]
    table = pd.DataFrame(counts, index=ids, columns=[f"F{j}" for j in range(n_features)])
    groups = pd.Series(['healthy'] * n_per_group + ['disease'] * n_per_group, index=ids)
    return clr_transform(table), groups

# ================================ CONCRETE SCENARIO ================================= #

def test_four_sample_scenario():
    transformed, groups = four_sample_vectors()
    scores = dysbiosis_scores(transformed, groups, 'healthy', 'disease')

    assert scores.loc['C1', 'd_control'] == pytest.approx(0.0, abs=TOL)
    assert scores.loc['C1', 'd_case'] == pytest.approx(np.sqrt(10), abs=TOL)
    assert scores.loc['C1', 'score'] == pytest.approx(-np.sqrt(10), abs=TOL)
    assert scores.loc['C1', 'classification'] == constants.NORMOBIOTIC_LABEL
    assert list(scores.columns) == constants.SCORE_COLUMNS


def test_held_out_sample_scored_against_existing_centroids():
    transformed, groups = four_sample_vectors()
    centroids = group_centroids(transformed, groups, 'healthy', 'disease')
    np.testing.assert_allclose(centroids.loc['control'].values, [1.0, 1.0])
    np.testing.assert_allclose(centroids.loc['case'].values, [4.0, 2.0])

    new = pd.DataFrame([[1.0, 1.0]], index=['new'], columns=['F1', 'F2'])
    held_out = score_against_centroids(new, centroids)
    assert held_out.loc['new', 'd_control'] == pytest.approx(0.0, abs=TOL)
    assert held_out.loc['new', 'score'] == pytest.approx(-np.sqrt(10), abs=TOL)


def test_held_out_features_must_match():
    transformed, groups = four_sample_vectors()
    centroids = group_centroids(transformed, groups, 'healthy', 'disease')
    with pytest.raises(InvalidInputError):
        score_against_centroids(transformed[['F2', 'F1']], centroids)

# =================================== INVARIANTS ===================================== #

def test_score_is_difference_of_distances():
    transformed, groups = random_clr()
    scores = score_samples(transformed, groups, 'healthy')
    np.testing.assert_allclose(
        scores['score'].values,
        scores['d_control'].values - scores['d_case'].values,
        atol=TOL
    )


def test_distances_are_euclidean_to_group_means():
    transformed, groups = random_clr()
    scores = score_samples(transformed, groups, 'healthy')
    control_mean = transformed[groups == 'healthy'].mean().values
    expected = np.linalg.norm(transformed.values - control_mean, axis=1)
    np.testing.assert_allclose(scores['d_control'].values, expected, atol=TOL)


def test_midpoint_of_centroids_scores_zero():
    transformed, groups = random_clr()
    centroids = group_centroids(transformed, groups, 'healthy', 'disease')
    midpoint = pd.DataFrame(
        [(centroids.loc['control'].values + centroids.loc['case'].values) / 2],
        index=['mid'], columns=transformed.columns
    )
    result = score_against_centroids(midpoint, centroids)
    assert result.loc['mid', 'score'] == pytest.approx(0.0, abs=TOL)


def test_swapping_groups_negates_scores():
    transformed, groups = random_clr()
    original = score_samples(transformed, groups, 'healthy', 'disease')
    swapped = score_samples(transformed, groups, 'disease', 'healthy')
    np.testing.assert_allclose(swapped['score'].values, -original['score'].values, atol=TOL)


def test_squared_distances_preserve_sign():
    transformed, groups = random_clr(seed=3)
    plain = score_samples(transformed, groups, 'healthy')
    squared = score_samples(transformed, groups, 'healthy', use_squared=True)
    assert (np.sign(plain['score']) == np.sign(squared['score'])).all()
    np.testing.assert_allclose(
        squared['d_control'].values, plain['d_control'].values ** 2, atol=1e-8
    )


def test_squared_distances_preserve_sign_near_a_tie():
    transformed, groups = four_sample_vectors()
    centroids = group_centroids(transformed, groups, 'healthy', 'disease')
    mid = (centroids.loc['control'].values + centroids.loc['case'].values) / 2
    direction = centroids.loc['case'].values - centroids.loc['control'].values
    points = pd.DataFrame(
        [mid + 1e-6 * direction, mid - 1e-6 * direction, mid + [10.0, -29.0]],
        index=['towards_case', 'towards_control', 'off_axis'],
        columns=transformed.columns
    )
    plain = score_against_centroids(points, centroids)
    squared = score_against_centroids(points, centroids, use_squared=True)
    assert plain.loc['towards_case', 'score'] > 0
    assert plain.loc['towards_control', 'score'] < 0
    assert (np.sign(plain['score']) == np.sign(squared['score'])).all()


def test_sample_order_does_not_change_scores():
    transformed, groups = random_clr()
    shuffled = transformed.sample(frac=1.0, random_state=1)
    original = score_samples(transformed, groups, 'healthy')
    reordered = score_samples(shuffled, groups, 'healthy').loc[original.index]
    np.testing.assert_allclose(reordered['score'].values, original['score'].values, atol=TOL)


def test_controls_sit_closer_to_control_centroid_on_average():
    transformed, groups = random_clr()
    scores = score_samples(transformed, groups, 'healthy')
    controls = scores[scores['group'] == 'healthy']
    cases = scores[scores['group'] == 'disease']
    assert controls['d_control'].mean() < cases['d_control'].mean()
    assert controls['score'].mean() < cases['score'].mean()


def test_scores_are_deterministic():
    transformed, groups = random_clr()
    first = dysbiosis_scores(transformed, groups, 'healthy')
    second = dysbiosis_scores(transformed, groups, 'healthy')
    assert first.to_csv() == second.to_csv()


def test_inputs_are_not_mutated():
    transformed, groups = random_clr()
    before_t, before_g = transformed.copy(), groups.copy()
    dysbiosis_scores(transformed, groups, 'healthy')
    pd.testing.assert_frame_equal(transformed, before_t)
    pd.testing.assert_series_equal(groups, before_g)

# ================================ LABEL RESOLUTION ================================== #

def test_case_label_inferred_from_the_only_other_label():
    _, groups = four_sample_vectors()
    _, control, case = resolve_group_labels(groups, groups.index, 'healthy')
    assert (control, case) == ('healthy', 'disease')


def test_mapping_of_labels_is_accepted():
    transformed, groups = four_sample_vectors()
    scores = score_samples(transformed, groups.to_dict(), 'healthy')
    assert list(scores['group']) == list(groups)


def test_empty_control_group_raises():
    transformed, _ = four_sample_vectors()
    groups = pd.Series(
        pd.Categorical(['disease'] * 4, categories=['healthy', 'disease']),
        index=transformed.index
    )
    with pytest.raises(InsufficientGroupSizeError):
        score_samples(transformed, groups, 'healthy')
    with pytest.raises(InsufficientGroupSizeError):
        score_samples(transformed, groups.astype(str), 'healthy', 'disease')


def test_missing_case_group_raises():
    transformed, _ = four_sample_vectors()
    groups = pd.Series(['healthy'] * 4, index=transformed.index)
    with pytest.raises(InsufficientGroupSizeError):
        score_samples(transformed, groups, 'healthy')


def test_unknown_control_label_raises():
    transformed, groups = four_sample_vectors()
    with pytest.raises(LabelMismatchError):
        score_samples(transformed, groups, 'control')


def test_ambiguous_case_label_raises():
    transformed, groups = four_sample_vectors()
    groups = groups.copy()
    groups['K2'] = 'other'
    with pytest.raises(LabelMismatchError):
        score_samples(transformed, groups, 'healthy')


def test_foreign_label_with_explicit_case_raises():
    transformed, groups = four_sample_vectors()
    groups = groups.copy()
    groups['K2'] = 'other'
    with pytest.raises(LabelMismatchError):
        score_samples(transformed, groups, 'healthy', 'disease')


def test_identical_control_and_case_labels_raise():
    transformed, groups = four_sample_vectors()
    with pytest.raises(LabelMismatchError):
        score_samples(transformed, groups, 'healthy', 'healthy')


def test_unlabeled_sample_raises():
    transformed, groups = four_sample_vectors()
    with pytest.raises(LabelMismatchError):
        score_samples(transformed, groups.drop('K1'), 'healthy')

# ================================= CLASSIFICATION =================================== #

def tie_scores() -> pd.DataFrame:
    return pd.DataFrame({'score': [-1.0, 0.0, 2.0]}, index=['a', 'b', 'c'])


def test_classification_by_sign_with_default_tie_break():
    result = classify_scores(tie_scores())
    assert list(result['classification']) == [
        constants.NORMOBIOTIC_LABEL, constants.NORMOBIOTIC_LABEL, constants.DYSBIOTIC_LABEL
    ]


def test_tie_break_to_dysbiotic():
    result = classify_scores(tie_scores(), tie_break='dysbiotic')
    assert result.loc['b', 'classification'] == constants.DYSBIOTIC_LABEL
    assert len(result) == 3


def test_unknown_tie_break_rejected():
    with pytest.raises(InvalidInputError):
        classify_scores(tie_scores(), tie_break='drop')


def test_summary_counts_every_sample():
    transformed, groups = four_sample_vectors()
    scores = dysbiosis_scores(transformed, groups, 'healthy')
    summary = summarize_scores(scores)
    assert int(summary['classification_counts'].values.sum()) == 4
    assert set(summary['score_by_group'].index) == {'healthy', 'disease'}

# ================================= DISTANCE MATRIX ================================== #

def test_aitchison_distance_matrix():
    transformed, _ = four_sample_vectors()
    dm = aitchison_distance_matrix(transformed)
    data = dm.data
    assert list(dm.ids) == ['C1', 'C2', 'K1', 'K2']
    np.testing.assert_allclose(data, data.T)
    np.testing.assert_allclose(np.diag(data), 0.0)
    assert data[0, 3] == pytest.approx(4.0, abs=TOL)
    assert data[2, 3] == pytest.approx(np.sqrt(8), abs=TOL)
