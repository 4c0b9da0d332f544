# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import mannwhitneyu, norm, rankdata
from sklearn.metrics import roc_auc_score, roc_curve

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.errors import (
    DegenerateLabelsError, InsufficientGroupSizeError, InvalidInputError,
    LabelMismatchError
)
from dysbiosis_16s.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# =================================== RESULTS ======================================== #

@dataclass(frozen=True)
class RocSummary:
    """ROC curve of the score against the true labels, with AUC and its CI."""
    curve: pd.DataFrame
    auc: float
    ci_lower: float
    ci_upper: float
    conf_level: float
    ci_method: str
    n_control: int
    n_case: int
    control_label: Any
    case_label: Any

    def as_dict(self) -> Dict[str, Any]:
        return {
            'auc': self.auc,
            'ci_lower': self.ci_lower,
            'ci_upper': self.ci_upper,
            'conf_level': self.conf_level,
            'ci_method': self.ci_method,
            'n_control': self.n_control,
            'n_case': self.n_case,
            'control_label': self.control_label,
            'case_label': self.case_label,
        }


@dataclass(frozen=True)
class GroupComparison:
    """Wilcoxon rank-sum comparison of scores between the two true groups."""
    statistic: float
    p_value: float
    boxplot: pd.DataFrame
    control_label: Any
    case_label: Any
    test: str = "Wilcoxon rank-sum (Mann-Whitney U)"

    def as_dict(self) -> Dict[str, Any]:
        return {
            'test': self.test,
            'statistic': self.statistic,
            'p_value': self.p_value,
            'control_label': self.control_label,
            'case_label': self.case_label,
        }


@dataclass(frozen=True)
class GradientLayout:
    """Display order of samples for a one-dimensional gradient plot."""
    order: pd.DataFrame
    groups: List[Any]
    score_min: float
    score_max: float
    high_line: float
    color_midpoint: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            'groups': list(self.groups),
            'score_min': self.score_min,
            'score_max': self.score_max,
            'high_line': self.high_line,
            'color_midpoint': self.color_midpoint,
        }

# ================================ HELPER FUNCTIONS ================================== #

def _split_scores(
    scores: pd.DataFrame,
    control_label: Any,
    case_label: Any
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (control scores, case scores) after checking the labels."""
    groups = scores['group']
    unexpected = sorted({str(g) for g in groups.dropna() if g != control_label and g != case_label})
    if unexpected:
        raise LabelMismatchError(
            f"Labels outside ('{control_label}', '{case_label}'): {unexpected}"
        )
    control = scores.loc[(groups == control_label).values, 'score'].to_numpy(dtype=float)
    case = scores.loc[(groups == case_label).values, 'score'].to_numpy(dtype=float)
    return control, case


def delong_auc_variance(case: np.ndarray, control: np.ndarray) -> Tuple[float, float]:
    """AUC and its DeLong variance, via midranks.

    Args:
        case:    Scores of the positive (case) samples.
        control: Scores of the negative (control) samples.

    Returns:
        Tuple of (AUC, variance). The variance is NaN when either group has
        fewer than two samples.
    """
    m, n = len(case), len(control)
    combined = rankdata(np.concatenate([case, control]))
    case_ranks = rankdata(case)
    control_ranks = rankdata(control)

    auc = (combined[:m].sum() - m * (m + 1) / 2.0) / (m * n)
    if m < 2 or n < 2:
        return float(auc), float('nan')

    # Structural components
    v10 = (combined[:m] - case_ranks) / n
    v01 = 1.0 - (combined[m:] - control_ranks) / m
    variance = np.var(v10, ddof=1) / m + np.var(v01, ddof=1) / n
    return float(auc), float(variance)


def _bootstrap_auc_ci(
    case: np.ndarray,
    control: np.ndarray,
    conf_level: float,
    n_bootstraps: int,
    random_state: Optional[int]
) -> Tuple[float, float]:
    """Stratified percentile bootstrap CI for the AUC."""
    rng = np.random.default_rng(random_state)
    y_true = np.concatenate([np.ones(len(case)), np.zeros(len(control))])
    aucs = np.empty(n_bootstraps)

    with get_progress_bar() as progress:
        task_desc = _format_task_desc("Bootstrapping AUC confidence interval")
        task = progress.add_task(task_desc, total=n_bootstraps)
        for b in range(n_bootstraps):
            resampled = np.concatenate([
                rng.choice(case, size=len(case), replace=True),
                rng.choice(control, size=len(control), replace=True),
            ])
            aucs[b] = roc_auc_score(y_true, resampled)
            progress.update(task, advance=1)

    alpha = (1.0 - conf_level) / 2.0
    lower, upper = np.percentile(aucs, [100 * alpha, 100 * (1 - alpha)])
    return float(lower), float(upper)

# ================================== EVALUATION ====================================== #

def roc_evaluation(
    scores: pd.DataFrame,
    control_label: Any,
    case_label: Any,
    ci_method: str = constants.DEFAULT_CI_METHOD,
    conf_level: float = constants.DEFAULT_CONF_LEVEL,
    n_bootstraps: int = constants.DEFAULT_N_BOOTSTRAPS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE
) -> RocSummary:
    """How well the continuous score separates case from control samples.

    The case group is the positive class and higher scores predict it. The AUC
    is reported as computed, even when below 0.5.

    Args:
        scores:        Score Record table (columns 'score' and 'group').
        control_label: True label of the control group.
        case_label:    True label of the case group.
        ci_method:     'delong' or 'bootstrap'.
        conf_level:    Confidence level of the interval.
        n_bootstraps:  Resamples for the bootstrap interval.
        random_state:  Seed for the bootstrap interval.

    Returns:
        RocSummary with the curve (fpr, tpr, threshold) and AUC interval.

    Raises:
        DegenerateLabelsError: All samples share one true label.
        LabelMismatchError:    Labels other than control/case are present.
    """
    if ci_method not in constants.CI_METHODS:
        raise InvalidInputError(
            f"Unknown ci_method '{ci_method}'. Expected one of: {list(constants.CI_METHODS)}"
        )
    if not 0 < conf_level < 1:
        raise InvalidInputError("conf_level must be between 0 and 1")

    control, case = _split_scores(scores, control_label, case_label)
    if len(control) == 0 or len(case) == 0:
        raise DegenerateLabelsError(
            "ROC is undefined: all samples share one true label "
            f"({len(control)} '{control_label}', {len(case)} '{case_label}')"
        )

    y_true = np.concatenate([np.ones(len(case)), np.zeros(len(control))])
    y_score = np.concatenate([case, control])
    fpr, tpr, thresholds = roc_curve(y_true, y_score, pos_label=1, drop_intermediate=False)
    auc = float(roc_auc_score(y_true, y_score))

    if ci_method == 'delong':
        _, variance = delong_auc_variance(case, control)
        if np.isfinite(variance):
            z = norm.ppf(1 - (1 - conf_level) / 2.0)
            half_width = z * np.sqrt(variance)
            ci_lower, ci_upper = max(0.0, auc - half_width), min(1.0, auc + half_width)
        else:
            logger.warning("DeLong interval undefined with fewer than 2 samples per group")
            ci_lower, ci_upper = float('nan'), float('nan')
    else:
        ci_lower, ci_upper = _bootstrap_auc_ci(
            case, control, conf_level, n_bootstraps, random_state
        )

    logger.debug(f"AUC = {auc:.3f} ({conf_level:.0%} CI {ci_lower:.3f}-{ci_upper:.3f}, {ci_method})")
    return RocSummary(
        curve=pd.DataFrame({'fpr': fpr, 'tpr': tpr, 'threshold': thresholds}),
        auc=auc,
        ci_lower=float(ci_lower),
        ci_upper=float(ci_upper),
        conf_level=conf_level,
        ci_method=ci_method,
        n_control=len(control),
        n_case=len(case),
        control_label=control_label,
        case_label=case_label,
    )


def boxplot_statistics(values: np.ndarray, whisker: float = 1.5) -> Dict[str, Any]:
    """Quartiles, Tukey whiskers and outliers of one group's scores."""
    values = np.sort(np.asarray(values, dtype=float))
    q1, median, q3 = np.percentile(values, [25, 50, 75])
    iqr = q3 - q1
    inside = values[(values >= q1 - whisker * iqr) & (values <= q3 + whisker * iqr)]
    return {
        'n': int(values.size),
        'min': float(values.min()),
        'q1': float(q1),
        'median': float(median),
        'q3': float(q3),
        'max': float(values.max()),
        'whisker_low': float(inside.min()),
        'whisker_high': float(inside.max()),
        'outliers': values[(values < inside.min()) | (values > inside.max())].tolist(),
    }


def compare_groups(
    scores: pd.DataFrame,
    control_label: Any,
    case_label: Any
) -> GroupComparison:
    """Two-sided Wilcoxon rank-sum test of case vs control scores.

    Returns:
        GroupComparison with the U statistic of the case group, the p-value and
        per-group boxplot statistics (rows ordered control, case).

    Raises:
        InsufficientGroupSizeError: Either group has no samples.
    """
    control, case = _split_scores(scores, control_label, case_label)
    for name, label, values in (("control", control_label, control), ("case", case_label, case)):
        if len(values) == 0:
            raise InsufficientGroupSizeError(
                f"The {name} group ('{label}') has no samples to compare"
            )

    u_stat, p_val = mannwhitneyu(case, control, alternative='two-sided')
    boxplot = pd.DataFrame.from_dict(
        {
            control_label: boxplot_statistics(control),
            case_label: boxplot_statistics(case),
        },
        orient='index'
    )
    boxplot.index.name = 'group'
    return GroupComparison(
        statistic=float(u_stat),
        p_value=float(p_val),
        boxplot=boxplot,
        control_label=control_label,
        case_label=case_label,
    )


def gradient_ordering(
    scores: pd.DataFrame,
    control_label: Any,
    case_label: Any,
    high_line: float = constants.DEFAULT_HIGH_LINE
) -> GradientLayout:
    """Order samples by score within each true group for a gradient plot.

    Control samples come first, then case samples; within a group samples are
    sorted by ascending score, ties by sample ID. `color_midpoint` locates
    `high_line` on the [score_min, score_max] range (0-1) so a diverging colour
    scale can be centred on it.
    """
    control, case = _split_scores(scores, control_label, case_label)
    if len(control) + len(case) == 0:
        raise InsufficientGroupSizeError("No samples to order")

    blocks = []
    for label in (control_label, case_label):
        block = scores.loc[(scores['group'] == label).values].copy()
        block['_sample_id'] = block.index.astype(str)
        block = block.sort_values(['score', '_sample_id'], kind='mergesort')
        block = block.drop(columns='_sample_id')
        block['rank_in_group'] = np.arange(1, len(block) + 1)
        blocks.append(block)
    order = pd.concat(blocks)
    order['position'] = np.arange(len(order))

    score_min = float(order['score'].min())
    score_max = float(order['score'].max())
    if score_max > score_min:
        midpoint = (high_line - score_min) / (score_max - score_min)
        midpoint = float(min(1.0, max(0.0, midpoint)))
    else:
        midpoint = 0.5

    return GradientLayout(
        order=order,
        groups=[control_label, case_label],
        score_min=score_min,
        score_max=score_max,
        high_line=float(high_line),
        color_midpoint=midpoint,
    )
