# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Any, Dict, Hashable, Mapping, Optional, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from skbio.stats.distance import DistanceMatrix

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.errors import (
    InsufficientGroupSizeError, InvalidInputError, LabelMismatchError
)

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ================================== DISTANCES ======================================= #

def aitchison_distance_matrix(transformed: pd.DataFrame) -> DistanceMatrix:
    """Pairwise Euclidean distances between CLR-transformed samples.
    
    On CLR-transformed rows the Euclidean metric is the Aitchison distance.
    
    Args:
        transformed: CLR table (samples × features).
        
    Returns:
        skbio DistanceMatrix keyed by sample ID.
    """
    if len(transformed.index) < 2:
        raise InvalidInputError("At least 2 samples required for a distance matrix")
    dist_array = squareform(pdist(transformed.values, metric='euclidean'))
    return DistanceMatrix(dist_array, ids=[str(i) for i in transformed.index])

# ================================ GROUP LABELS ====================================== #

def _known_categories(labels: pd.Series) -> list:
    if isinstance(labels.dtype, pd.CategoricalDtype):
        return list(labels.cat.categories)
    return list(pd.unique(labels.dropna()))


def resolve_group_labels(
    groups: Union[pd.Series, Mapping[Hashable, Any]],
    sample_ids: pd.Index,
    control_label: Any,
    case_label: Optional[Any] = None
) -> Tuple[pd.Series, Any, Any]:
    """Match group labels to samples and work out the control/case pair.
    
    Args:
        groups:        Group label per sample ID (Series or mapping). A pandas 
                       Categorical declares its categories even when empty.
        sample_ids:    Samples that will be scored.
        control_label: Label of the control/normal group.
        case_label:    Label of the case/afflicted group; inferred when None.
        
    Returns:
        Tuple of (labels aligned to `sample_ids`, control label, case label).
        
    Raises:
        LabelMismatchError:         Unknown or ambiguous labels, unlabeled samples.
        InsufficientGroupSizeError: The control or case group has no samples.
    """
    labels = groups if isinstance(groups, pd.Series) else pd.Series(dict(groups))
    categories = _known_categories(labels)

    if case_label is None:
        if control_label not in categories:
            raise LabelMismatchError(
                f"Control label '{control_label}' does not occur in the group "
                f"assignment (labels: {categories})"
            )
        others = [c for c in categories if c != control_label]
        if not others:
            raise InsufficientGroupSizeError(
                f"No case group: every sample is labeled '{control_label}'"
            )
        if len(others) > 1:
            raise LabelMismatchError(
                f"Cannot infer the case label; candidates: {others}. "
                "Pass case_label explicitly."
            )
        case_label = others[0]
    elif case_label == control_label:
        raise LabelMismatchError(
            f"Control and case labels must differ (both '{control_label}')"
        )

    missing = [sid for sid in sample_ids if sid not in labels.index]
    if missing:
        raise LabelMismatchError(f"Samples without a group label: {missing[:5]}")
    aligned = labels.loc[sample_ids]
    if aligned.isna().any():
        raise LabelMismatchError(
            f"Samples without a group label: {aligned.index[aligned.isna()].tolist()[:5]}"
        )
    unexpected = sorted({str(v) for v in aligned if v != control_label and v != case_label})
    if unexpected:
        raise LabelMismatchError(
            f"Labels outside ('{control_label}', '{case_label}'): {unexpected}"
        )

    for name, label in (("control", control_label), ("case", case_label)):
        if not (aligned == label).any():
            raise InsufficientGroupSizeError(
                f"The {name} group ('{label}') has no samples; centroid undefined"
            )
    return aligned.astype(object), control_label, case_label

# ================================== CENTROIDS ======================================= #

def group_centroids(
    transformed: pd.DataFrame,
    labels: pd.Series,
    control_label: Any,
    case_label: Any
) -> pd.DataFrame:
    """Mean transformed vector of each reference group.
    
    Returns:
        DataFrame with rows 'control' and 'case', one column per feature.
    """
    rows = {}
    for name, label in (("control", control_label), ("case", case_label)):
        members = transformed.loc[(labels == label).values]
        if members.empty:
            raise InsufficientGroupSizeError(
                f"The {name} group ('{label}') has no samples; centroid undefined"
            )
        rows[name] = members.values.mean(axis=0)
    return pd.DataFrame.from_dict(rows, orient='index', columns=transformed.columns)


def distances_to_centroid(
    transformed: pd.DataFrame,
    centroid: np.ndarray,
    squared: bool = False
) -> np.ndarray:
    diff = transformed.values - np.asarray(centroid, dtype=float)
    sq = np.einsum('ij,ij->i', diff, diff)
    return sq if squared else np.sqrt(sq)

# =================================== SCORING ======================================== #

def score_samples(
    transformed: pd.DataFrame,
    groups: Union[pd.Series, Mapping[Hashable, Any]],
    control_label: Any,
    case_label: Optional[Any] = None,
    use_squared: bool = constants.DEFAULT_USE_SQUARED
) -> pd.DataFrame:
    """Score each sample by its distances to the two group centroids.
    
    score = d_control - d_case. Positive scores lie farther from the control 
    centroid than from the case centroid (dysbiotic direction). Every sample, 
    including those defining the centroids, is scored against centroids built 
    from all group members.
    
    Args:
        transformed:   CLR table (samples × features).
        groups:        Group label per sample ID.
        control_label: Label of the control/normal group.
        case_label:    Label of the case group; inferred when None.
        use_squared:   Use squared Euclidean distances.
        
    Returns:
        DataFrame indexed by sample ID with columns d_control, d_case, score, 
        group.
    """
    labels, control_label, case_label = resolve_group_labels(
        groups, transformed.index, control_label, case_label
    )
    centroids = group_centroids(transformed, labels, control_label, case_label)
    logger.debug(
        f"Scoring {len(transformed.index)} samples: "
        f"{int((labels == control_label).sum())} '{control_label}' (control), "
        f"{int((labels == case_label).sum())} '{case_label}' (case), "
        f"squared={use_squared}"
    )

    scores = score_against_centroids(transformed, centroids, use_squared)
    scores['group'] = labels.values
    return scores


def score_against_centroids(
    transformed: pd.DataFrame,
    centroids: pd.DataFrame,
    use_squared: bool = constants.DEFAULT_USE_SQUARED
) -> pd.DataFrame:
    """Score samples against previously computed centroids.

    Used for samples that did not take part in defining the centroids.

    Args:
        transformed: CLR table (samples × features) with the centroid columns.
        centroids:   Output of `group_centroids`.
        use_squared: Use squared Euclidean distances.

    Returns:
        DataFrame indexed by sample ID with columns d_control, d_case, score.
    """
    if list(transformed.columns) != list(centroids.columns):
        raise InvalidInputError("Samples and centroids must share the same features")
    d_control = distances_to_centroid(transformed, centroids.loc['control'].values, use_squared)
    d_case = distances_to_centroid(transformed, centroids.loc['case'].values, use_squared)
    return pd.DataFrame(
        {
            'd_control': d_control,
            'd_case': d_case,
            'score': d_control - d_case,
        },
        index=transformed.index.copy()
    )


def classify_scores(
    scores: pd.DataFrame,
    tie_break: str = constants.DEFAULT_TIE_BREAK
) -> pd.DataFrame:
    """Label each sample Dysbiotic (score > 0) or Normobiosis (score < 0).
    
    Scores of exactly zero go to the category named by `tie_break` 
    ('normobiosis' or 'dysbiotic').
    
    Returns:
        Copy of `scores` with a 'classification' column.
    """
    key = str(tie_break).lower()
    if key not in constants.TIE_BREAK_OPTIONS:
        raise InvalidInputError(
            f"Unknown tie_break '{tie_break}'. "
            f"Expected one of: {sorted(constants.TIE_BREAK_OPTIONS)}"
        )
    score = scores['score'].values
    classification = np.where(
        score > 0, constants.DYSBIOTIC_LABEL,
        np.where(score < 0, constants.NORMOBIOTIC_LABEL, constants.TIE_BREAK_OPTIONS[key])
    )
    result = scores.copy()
    result['classification'] = classification
    return result


def dysbiosis_scores(
    transformed: pd.DataFrame,
    groups: Union[pd.Series, Mapping[Hashable, Any]],
    control_label: Any,
    case_label: Optional[Any] = None,
    use_squared: bool = constants.DEFAULT_USE_SQUARED,
    tie_break: str = constants.DEFAULT_TIE_BREAK
) -> pd.DataFrame:
    """Score Record table: distances, score, true group and classification."""
    scores = score_samples(transformed, groups, control_label, case_label, use_squared)
    return classify_scores(scores, tie_break)[constants.SCORE_COLUMNS]


def summarize_scores(scores: pd.DataFrame) -> Dict[str, Any]:
    """Counts per (group, classification) and per-group score summaries."""
    crosstab = pd.crosstab(scores['group'], scores['classification'])
    per_group = scores.groupby('group', sort=False)['score'].agg(['count', 'mean', 'median', 'min', 'max'])
    return {
        'classification_counts': crosstab,
        'score_by_group': per_group,
    }
