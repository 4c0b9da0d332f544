# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import pandas as pd
from biom import Table
from skbio.stats.distance import DistanceMatrix

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.config import (
    get_dysbiosis_params, get_evaluation_params, get_section, is_enabled
)
from dysbiosis_16s.models.differential_abundance import fit_differential_abundance
from dysbiosis_16s.models.random_forest import fit_random_forest
from dysbiosis_16s.stats.composition import (
    clr_transform, resolve_pseudocount, validate_feature_table
)
from dysbiosis_16s.stats.diversity import (
    aitchison_ordination, alpha_diversity, compare_alpha_diversity, correlate_with_score
)
from dysbiosis_16s.stats.dysbiosis import (
    aitchison_distance_matrix, dysbiosis_scores, resolve_group_labels, summarize_scores
)
from dysbiosis_16s.stats.evaluation import (
    GradientLayout, GroupComparison, RocSummary, compare_groups, gradient_ordering,
    roc_evaluation
)
from dysbiosis_16s.utils.data import (
    align_table_and_metadata, filter_features, relative_abundance
)

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== RESULTS ======================================= #

@dataclass(frozen=True)
class DysbiosisResults:
    """Everything one dysbiosis analysis produced.

    Core fields are always set. Ancillary fields stay None when the module is
    disabled or failed; failures are listed in `stage_errors`.
    """
    table: pd.DataFrame
    clr: pd.DataFrame
    pseudocount: float
    distance_matrix: DistanceMatrix
    scores: pd.DataFrame
    control_label: Any
    case_label: Any
    roc: RocSummary
    comparison: GroupComparison
    gradient: GradientLayout
    alpha_diversity: Optional[pd.DataFrame] = None
    alpha_comparison: Optional[pd.DataFrame] = None
    alpha_correlation: Optional[pd.DataFrame] = None
    ordination: Optional[Dict[str, Any]] = None
    random_forest: Optional[Dict[str, Any]] = None
    differential_abundance: Optional[pd.DataFrame] = None
    stage_errors: Dict[str, str] = field(default_factory=dict)

    def tables(self) -> Dict[str, Optional[pd.DataFrame]]:
        """Result tables keyed by output file stem."""
        tables = {
            'scores': self.scores,
            'clr_table': self.clr,
            'distance_matrix': self.distance_matrix.to_data_frame(),
            'roc_curve': self.roc.curve,
            'roc_summary': pd.DataFrame([self.roc.as_dict()]),
            'group_comparison': pd.DataFrame([self.comparison.as_dict()]),
            'score_boxplot': self.comparison.boxplot,
            'gradient_order': self.gradient.order,
            'alpha_diversity': self.alpha_diversity,
            'alpha_comparison': self.alpha_comparison,
            'alpha_score_correlation': self.alpha_correlation,
            'differential_abundance': self.differential_abundance,
        }
        if self.ordination is not None:
            tables['pcoa_coordinates'] = self.ordination['coordinates']
        if self.random_forest is not None:
            tables['rf_predictions'] = self.random_forest['predictions'].to_frame()
            tables['rf_importances'] = self.random_forest['importances']
            tables['rf_confusion_matrix'] = self.random_forest['confusion_matrix']
        return tables

    def summary(self) -> Dict[str, Any]:
        """Scalar results as a nested dictionary."""
        score_summary = summarize_scores(self.scores)
        counts = score_summary['classification_counts']
        summary = {
            'n_samples': int(self.table.shape[0]),
            'n_features': int(self.table.shape[1]),
            'control_label': self.control_label,
            'case_label': self.case_label,
            'pseudocount': self.pseudocount,
            'classification_counts': {
                str(group): {str(k): int(v) for k, v in row.items()}
                for group, row in counts.iterrows()
            },
            'roc': self.roc.as_dict(),
            'group_comparison': self.comparison.as_dict(),
            'gradient': self.gradient.as_dict(),
        }
        if self.ordination is not None:
            permanova = self.ordination['permanova']
            summary['permanova'] = {
                'test_statistic': float(permanova['test statistic']),
                'p_value': float(permanova['p-value']),
                'permutations': int(permanova['number of permutations']),
            }
        if self.random_forest is not None:
            summary['random_forest'] = {'oob_error': self.random_forest['oob_error']}
        if self.stage_errors:
            summary['stage_errors'] = dict(self.stage_errors)
        return summary

# ==================================== ANALYZER ====================================== #

class DysbiosisAnalyzer:
    """Runs the dysbiosis score and the enabled ancillary modules on one dataset.

    The feature table and metadata passed in are never modified.
    """

    def __init__(
        self,
        table: Union[Dict, Table, pd.DataFrame],
        metadata: pd.DataFrame,
        config: Optional[Dict] = None
    ):
        self.config = config or {}
        self.params = get_dysbiosis_params(self.config)
        self.eval_params = get_evaluation_params(self.config)
        self.table = table
        self.metadata = metadata
        self.core: Dict[str, Any] = {}
        self.ancillary: Dict[str, Any] = {}
        self.stage_errors: Dict[str, str] = {}

    def run(self) -> DysbiosisResults:
        """Execute the core stages, then every enabled ancillary module."""
        logger.info("Starting dysbiosis analysis...")
        self._prep_data()
        self._score()
        self._evaluate()
        self._run_modules()
        results = DysbiosisResults(
            **self.core, **self.ancillary, stage_errors=dict(self.stage_errors)
        )
        self._log_analysis_summary(results)
        return results

    # Core stages raise; there is nothing to report without them.

    def _prep_data(self) -> None:
        counts, meta = align_table_and_metadata(
            self.table, self.metadata, self.params['group_column']
        )
        if is_enabled(self.config, 'filtering'):
            filtering = get_section(self.config, 'filtering')
            counts = filter_features(
                counts, filtering['min_prevalence'], filtering['min_total_count']
            )
        counts = validate_feature_table(counts)
        logger.info(f"Data: {counts.shape[0]} samples × {counts.shape[1]} features")
        self.counts, self.meta = counts, meta

    def _score(self) -> None:
        params = self.params
        groups = self.meta[params['group_column']]
        _, control_label, case_label = resolve_group_labels(
            groups, self.counts.index, params['control_label'], params['case_label']
        )
        logger.info(f"Control group: '{control_label}'; case group: '{case_label}'")

        pseudocount = resolve_pseudocount(
            self.counts, params['pseudocount'], params['pseudocount_fraction']
        )
        clr = clr_transform(self.counts, pseudocount=pseudocount)
        logger.info(f"CLR transform applied (pseudocount = {pseudocount:g})")

        scores = dysbiosis_scores(
            clr, groups, control_label, case_label,
            use_squared=params['use_squared'], tie_break=params['tie_break']
        )
        self.core.update(
            table=self.counts,
            clr=clr,
            pseudocount=pseudocount,
            distance_matrix=aitchison_distance_matrix(clr),
            scores=scores,
            control_label=control_label,
            case_label=case_label,
        )

    def _evaluate(self) -> None:
        scores = self.core['scores']
        control_label, case_label = self.core['control_label'], self.core['case_label']
        ev = self.eval_params
        roc = roc_evaluation(
            scores, control_label, case_label,
            ci_method=ev['ci_method'], conf_level=ev['conf_level'],
            n_bootstraps=int(ev['n_bootstraps']), random_state=ev['random_state']
        )
        logger.info(
            f"AUC = {roc.auc:.3f} ({roc.conf_level:.0%} CI "
            f"{roc.ci_lower:.3f}-{roc.ci_upper:.3f}, {roc.ci_method})"
        )
        comparison = compare_groups(scores, control_label, case_label)
        logger.info(f"Wilcoxon rank-sum p-value: {comparison.p_value:.3g}")
        self.core.update(
            roc=roc,
            comparison=comparison,
            gradient=gradient_ordering(
                scores, control_label, case_label, self.params['high_line']
            ),
        )

    # Ancillary modules are isolated: a failure is logged and the run goes on.

    def _run_modules(self) -> None:
        analysis_modules = [
            ('alpha_diversity', self._run_alpha_diversity),
            ('beta_diversity', self._run_beta_diversity),
            ('random_forest', self._run_random_forest),
            ('differential_abundance', self._run_differential_abundance),
        ]
        for module_name, module_func in analysis_modules:
            if not is_enabled(self.config, module_name):
                logger.info(f"Skipping '{module_name}' analysis: disabled in configuration")
                continue
            logger.info(f"Running {module_name} analysis...")
            try:
                module_func()
            except Exception as e:
                logger.error(f"Error in {module_name} analysis: {e}")
                self.stage_errors[module_name] = f"{type(e).__name__}: {e}"

    def _run_alpha_diversity(self) -> None:
        params = get_section(self.config, 'alpha_diversity')
        alpha_df = alpha_diversity(self.counts, params['metrics'])
        scores = self.core['scores']
        self.ancillary.update(
            alpha_diversity=alpha_df,
            alpha_comparison=compare_alpha_diversity(
                alpha_df, scores['group'], self.core['control_label'], self.core['case_label']
            ),
            alpha_correlation=correlate_with_score(alpha_df, scores),
        )

    def _run_beta_diversity(self) -> None:
        params = get_section(self.config, 'beta_diversity')
        self.ancillary['ordination'] = aitchison_ordination(
            self.core['distance_matrix'],
            self.core['scores']['group'],
            n_components=int(params['n_components']),
            permutations=int(params['permutations']),
            random_state=params['random_state'],
        )

    def _run_random_forest(self) -> None:
        params = get_section(self.config, 'random_forest')
        self.ancillary['random_forest'] = fit_random_forest(
            relative_abundance(self.counts),
            self.core['scores']['classification'],
            n_estimators=int(params['n_estimators']),
            random_state=params['random_state'],
            n_jobs=int(params['n_jobs']),
        )

    def _run_differential_abundance(self) -> None:
        params = get_section(self.config, 'differential_abundance')
        columns = list(params['covariates'] or [])
        if params['random_effect']:
            columns.append(params['random_effect'])
        missing = [c for c in columns if c not in self.meta.columns]
        if missing:
            raise KeyError(f"Covariates not found in metadata: {missing}")
        self.ancillary['differential_abundance'] = fit_differential_abundance(
            self.counts,
            self.meta[columns],
            self.core['scores']['group'],
            self.core['control_label'],
            self.core['case_label'],
            random_effect=params['random_effect'],
            fdr_method=params['fdr_method'],
        )

    def _log_analysis_summary(self, results: DysbiosisResults) -> None:
        logger.info("=" * 60)
        logger.info("DYSBIOSIS ANALYSIS SUMMARY")
        logger.info("=" * 60)
        counts = summarize_scores(results.scores)['classification_counts']
        for group, row in counts.iterrows():
            logger.info(f"  - {group}: " + ", ".join(f"{k} {int(v)}" for k, v in row.items()))
        if self.stage_errors:
            logger.info(f"Failed modules: {', '.join(self.stage_errors)}")
        logger.info("=" * 60)

# ==================================== FUNCTIONS ===================================== #

def run_dysbiosis_analysis(
    table: Union[Dict, Table, pd.DataFrame],
    metadata: pd.DataFrame,
    config: Optional[Dict] = None
) -> DysbiosisResults:
    """
    Score every sample and evaluate the score against the true groups.

    Args:
        table:    Feature table (samples × features, or a BIOM table).
        metadata: Sample metadata indexed by sample ID, holding the group column.
        config:   Configuration dictionary (see references/config.yaml).

    Returns:
        Frozen DysbiosisResults.

    Raises:
        DysbiosisError: Any failure of the transform, scorer or evaluation.
    """
    return DysbiosisAnalyzer(table, metadata, config).run()
