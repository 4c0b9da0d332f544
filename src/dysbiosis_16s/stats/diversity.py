# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Any, Dict, List, Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from biom import Table
from scipy.stats import mannwhitneyu, spearmanr
from skbio.stats.distance import DistanceMatrix, permanova
from skbio.stats.ordination import pcoa as PCoA

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.errors import InsufficientGroupSizeError, InvalidInputError
from dysbiosis_16s.utils.data import relative_abundance, table_to_df

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

SUPPORTED_ALPHA_METRICS = ('observed_features', 'shannon', 'simpson', 'pielou_evenness')

# ================================ ALPHA DIVERSITY =================================== #

def alpha_diversity(
    table: Union[Dict, Table, pd.DataFrame],
    metrics: List[str] = constants.DEFAULT_ALPHA_METRICS
) -> pd.DataFrame:
    """
    Calculate alpha diversity metrics for each sample.

    Shannon entropy uses the natural logarithm; Simpson is the Gini-Simpson
    index (1 - Σp²); Pielou evenness is Shannon / ln(observed features).

    Args:
        table:   Input abundance table (samples x features).
        metrics: Alpha diversity metrics to compute.

    Returns:
        DataFrame with alpha diversity values (samples x metrics).
    """
    unknown = [m for m in metrics if m not in SUPPORTED_ALPHA_METRICS]
    if unknown:
        raise InvalidInputError(
            f"Unsupported alpha diversity metrics: {unknown}. "
            f"Supported: {list(SUPPORTED_ALPHA_METRICS)}"
        )
    df = table_to_df(table)
    proportions = relative_abundance(df).values
    observed = (df.values > 0).sum(axis=1)

    # 0 * log(0) is taken as 0
    with np.errstate(divide='ignore', invalid='ignore'):
        plogp = np.where(proportions > 0, proportions * np.log(proportions), 0.0)
    shannon = -plogp.sum(axis=1)

    values = {
        'observed_features': observed.astype(float),
        'shannon': shannon,
        'simpson': np.where(observed > 0, 1.0 - (proportions ** 2).sum(axis=1), 0.0),
        'pielou_evenness': np.divide(
            shannon, np.log(np.maximum(observed, 1)),
            out=np.zeros_like(shannon), where=observed > 1
        ),
    }
    return pd.DataFrame({m: values[m] for m in metrics}, index=df.index.copy())


def compare_alpha_diversity(
    alpha_df: pd.DataFrame,
    groups: pd.Series,
    control_label: Any,
    case_label: Any
) -> pd.DataFrame:
    """
    Mann-Whitney U test of each alpha metric between the control and case groups.

    Args:
        alpha_df:      DataFrame from alpha_diversity() (samples x metrics).
        groups:        Group label per sample ID.
        control_label: Control group label.
        case_label:    Case group label.

    Returns:
        DataFrame with one row per metric: medians, U statistic, p-value and
        rank-biserial effect size.
    """
    labels = groups.reindex(alpha_df.index)
    control_mask = (labels == control_label).values
    case_mask = (labels == case_label).values
    if not control_mask.any() or not case_mask.any():
        raise InsufficientGroupSizeError(
            "Both groups need samples to compare alpha diversity"
        )

    results = []
    for metric in alpha_df.columns:
        control_vals = alpha_df.loc[control_mask, metric].dropna()
        case_vals = alpha_df.loc[case_mask, metric].dropna()
        if len(control_vals) == 0 or len(case_vals) == 0:
            logger.warning(f"No data for {metric} in one of the groups - skipping")
            continue

        u_stat, p_val = mannwhitneyu(case_vals, control_vals, alternative='two-sided')
        n1, n2 = len(case_vals), len(control_vals)
        results.append({
            'metric': metric,
            'median_control': float(control_vals.median()),
            'median_case': float(case_vals.median()),
            'u_statistic': float(u_stat),
            'p_value': float(p_val),
            # Rank-biserial correlation
            'effect_size_r': 1 - (2 * u_stat) / (n1 * n2),
        })
    return pd.DataFrame(
        results,
        columns=['metric', 'median_control', 'median_case', 'u_statistic',
                 'p_value', 'effect_size_r']
    )


def correlate_with_score(alpha_df: pd.DataFrame, scores: pd.DataFrame) -> pd.DataFrame:
    """Spearman correlation of each alpha diversity metric with the dysbiosis score."""
    common = alpha_df.index.intersection(scores.index)
    score = scores.loc[common, 'score']
    results = []
    for metric in alpha_df.columns:
        values = alpha_df.loc[common, metric]
        if values.nunique() < 2 or score.nunique() < 2:
            rho, p_val = np.nan, np.nan
        else:
            rho, p_val = spearmanr(values, score)
        results.append({
            'metric': metric,
            'spearman_rho': float(rho),
            'p_value': float(p_val),
            'n_samples': int(len(common)),
        })
    return pd.DataFrame(results, columns=['metric', 'spearman_rho', 'p_value', 'n_samples'])

# ================================= BETA DIVERSITY =================================== #

def aitchison_ordination(
    dm: DistanceMatrix,
    groups: pd.Series,
    n_components: int = constants.DEFAULT_N_PCOA,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE
) -> Dict[str, Any]:
    """PCoA of the Aitchison distance matrix and a PERMANOVA on the groups.

    Args:
        dm:           Aitchison DistanceMatrix.
        groups:       Group label per sample ID.
        n_components: Number of principal coordinates to keep.
        permutations: PERMANOVA permutations.
        random_state: Seed for the permutations.

    Returns:
        Dictionary with 'coordinates' (samples × PCs, plus 'group'),
        'proportion_explained' and 'permanova' (Series).
    """
    ids = list(dm.ids)
    labels = groups.copy()
    labels.index = labels.index.astype(str)
    labels = labels.reindex(ids)
    if labels.isna().any():
        raise InvalidInputError("Every sample in the distance matrix needs a group label")

    ordination = PCoA(dm)
    n_keep = max(1, min(n_components, ordination.samples.shape[1]))
    coordinates = ordination.samples.iloc[:, :n_keep].copy()
    coordinates.index = ids
    coordinates['group'] = labels.values

    logger.debug(f"PERMANOVA on {len(ids)} samples with {permutations} permutations")
    result = permanova(
        dm, labels.astype(str).tolist(), permutations=permutations, seed=random_state
    )
    return {
        'coordinates': coordinates,
        'proportion_explained': ordination.proportion_explained.iloc[:n_keep].copy(),
        'permanova': result,
    }
