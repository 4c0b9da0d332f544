# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from typing import Any, Dict, List, Optional, Union

# Third‑Party Imports
import numpy as np
import pandas as pd
import statsmodels.api as sm
from biom import Table
from statsmodels.stats.multitest import multipletests
from statsmodels.tools.sm_exceptions import ConvergenceWarning

# ================================== LOCAL IMPORTS =================================== #

from dysbiosis_16s import constants
from dysbiosis_16s.errors import InsufficientGroupSizeError, InvalidInputError
from dysbiosis_16s.stats.composition import clr_transform
from dysbiosis_16s.utils.data import table_to_df
from dysbiosis_16s.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

GROUP_TERM = '__case__'
RESULT_COLUMNS = ['feature', 'estimate', 'std_err', 'p_value', 'p_adj', 'n', 'model']

# ================================ HELPER FUNCTIONS ================================== #

def design_matrix(covariates: pd.DataFrame) -> pd.DataFrame:
    """Dummy-code categorical covariates and standardise numeric ones."""
    if covariates.empty or covariates.shape[1] == 0:
        return pd.DataFrame(index=covariates.index)
    X = pd.get_dummies(covariates.copy(), drop_first=True)
    for c in X.columns:
        X[c] = pd.to_numeric(X[c], errors="coerce").astype(float)
        vals = X[c].dropna().unique()
        if set(np.unique(vals)).issubset({0.0, 1.0}):  # dummy
            continue
        mu, sd = np.nanmean(X[c].values), np.nanstd(X[c].values)
        if sd and sd > 0:
            X[c] = (X[c] - mu) / sd
    return X.dropna(axis=1, how="all").astype(float)

# ==================================== CLASSES ======================================= #

class DifferentialAbundanceModel:
    """Per-feature case-vs-control abundance model.

    Capability contract: ``fit(features, covariates, grouping) -> {effect_estimates,
    p_values}``, returned as one table row per feature.

    With `random_effect` set, each feature's CLR abundance is fitted with a
    linear mixed model (random intercept per level of that covariate column).
    Otherwise raw counts are fitted with a negative-binomial regression using
    log library size as offset.
    """

    def __init__(
        self,
        control_label: Any,
        case_label: Any,
        random_effect: Optional[str] = None,
        fdr_method: str = constants.DEFAULT_FDR_METHOD,
        min_samples: int = constants.DEFAULT_MIN_SAMPLES_FIT
    ):
        self.control_label = control_label
        self.case_label = case_label
        self.random_effect = random_effect
        self.fdr_method = fdr_method
        self.min_samples = min_samples

    @property
    def model_name(self) -> str:
        return "mixedlm_clr" if self.random_effect else "negative_binomial"

    def _fit_feature(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        offset: Optional[np.ndarray],
        groups: Optional[pd.Series]
    ):
        if self.random_effect:
            return sm.MixedLM(y, X, groups=groups).fit(reml=True)
        return sm.NegativeBinomial(y, X, offset=offset).fit(disp=False, maxiter=300)

    def _fit_row(
        self,
        feature: str,
        y: pd.Series,
        X: pd.DataFrame,
        offset: Optional[np.ndarray],
        groups: Optional[pd.Series]
    ) -> Optional[Dict[str, Any]]:
        if y.nunique() < 2:
            return None
        try:
            fit = self._fit_feature(y, X, offset, groups)
            estimate = float(fit.params[GROUP_TERM])
            std_err = float(fit.bse[GROUP_TERM])
            p_value = float(fit.pvalues[GROUP_TERM])
        except Exception as e:
            logger.warning(f"Model fit failed for feature '{feature}': {e}")
            return None
        if not (np.isfinite(estimate) and np.isfinite(p_value)):
            return None
        return {
            'feature': feature,
            'estimate': estimate,
            'std_err': std_err,
            'p_value': p_value,
            'n': int(len(y)),
            'model': self.model_name,
        }

    def fit(
        self,
        features: Union[Dict, Table, pd.DataFrame],
        covariates: Optional[pd.DataFrame],
        grouping: pd.Series
    ) -> pd.DataFrame:
        """
        Fit every feature and adjust the group-effect p-values.

        Args:
            features:   Count table (samples × features).
            covariates: Covariates per sample (may be None or empty). Must hold
                        the `random_effect` column when one is configured.
            grouping:   Group label per sample ID (control or case).

        Returns:
            DataFrame with columns feature, estimate (case vs control), std_err,
            p_value, p_adj, n and model, sorted by adjusted p-value.
        """
        counts = table_to_df(features)
        labels = grouping.reindex(counts.index)
        keep = labels.isin([self.control_label, self.case_label]).values
        counts, labels = counts.loc[keep], labels.loc[keep]
        indicator = (labels == self.case_label).astype(float)
        if indicator.sum() == 0 or indicator.sum() == len(indicator):
            raise InsufficientGroupSizeError(
                "Differential abundance needs samples from both groups"
            )

        covariates = (
            covariates.reindex(counts.index) if covariates is not None
            else pd.DataFrame(index=counts.index)
        )
        groups = None
        if self.random_effect:
            if self.random_effect not in covariates.columns:
                raise InvalidInputError(
                    f"Random-effect column '{self.random_effect}' not in covariates"
                )
            groups = covariates[self.random_effect].astype(str)
            covariates = covariates.drop(columns=[self.random_effect])

        X = design_matrix(covariates)
        X.insert(0, GROUP_TERM, indicator.values)
        X = sm.add_constant(X, has_constant="add")
        valid = X.notna().all(axis=1).to_numpy(copy=True)
        if groups is not None:
            valid = valid & groups.notna().to_numpy()

        if self.random_effect:
            response = clr_transform(counts)
            offset = None
        else:
            response = counts
            library_size = counts.sum(axis=1).to_numpy(copy=True)
            valid = valid & (library_size > 0)
            offset = np.log(np.where(library_size > 0, library_size, 1.0))

        if valid.sum() < self.min_samples:
            raise InsufficientGroupSizeError(
                f"Only {int(valid.sum())} complete samples; at least {self.min_samples} required"
            )

        rows: List[Dict[str, Any]] = []
        with warnings.catch_warnings(), get_progress_bar() as progress:
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            warnings.simplefilter("ignore", category=RuntimeWarning)
            task_desc = _format_task_desc(f"Fitting {self.model_name} per feature")
            task = progress.add_task(task_desc, total=response.shape[1])
            for feature in response.columns:
                row = self._fit_row(
                    feature, response.loc[valid, feature], X.loc[valid],
                    offset[valid] if offset is not None else None,
                    groups.loc[valid] if groups is not None else None
                )
                if row is not None:
                    rows.append(row)
                progress.update(task, advance=1)

        results = pd.DataFrame(rows, columns=[c for c in RESULT_COLUMNS if c != 'p_adj'])
        if results.empty:
            logger.warning("No feature could be fitted for differential abundance")
            return pd.DataFrame(columns=RESULT_COLUMNS)
        results['p_adj'] = multipletests(results['p_value'].values, method=self.fdr_method)[1]
        return (
            results[RESULT_COLUMNS]
            .sort_values(['p_adj', 'p_value', 'feature'], kind='mergesort')
            .reset_index(drop=True)
        )

# ==================================== FUNCTIONS ===================================== #

def fit_differential_abundance(
    features: Union[Dict, Table, pd.DataFrame],
    covariates: Optional[pd.DataFrame],
    grouping: pd.Series,
    control_label: Any,
    case_label: Any,
    random_effect: Optional[str] = None,
    fdr_method: str = constants.DEFAULT_FDR_METHOD
) -> pd.DataFrame:
    """Per-feature case-vs-control effects; see `DifferentialAbundanceModel.fit`."""
    model = DifferentialAbundanceModel(
        control_label, case_label, random_effect=random_effect, fdr_method=fdr_method
    )
    return model.fit(features, covariates, grouping)
