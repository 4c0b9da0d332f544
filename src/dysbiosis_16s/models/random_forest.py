# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from typing import Any, Dict, Optional, Union

# Third‑Party Imports
import numpy as np
import pandas as pd
from biom import Table
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import confusion_matrix

# ================================== LOCAL IMPORTS =================================== #

from dysbiosis_16s import constants
from dysbiosis_16s.errors import DegenerateLabelsError, InvalidInputError
from dysbiosis_16s.utils.data import table_to_df

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== CLASSES ======================================= #

class OutOfBagRandomForest:
    """Random-forest classifier evaluated on its out-of-bag samples.

    Capability contract: ``fit(features, labels) -> {predictions, importances}``.
    The returned dictionary also carries the OOB confusion matrix and error rate.
    """

    def __init__(
        self,
        n_estimators: int = constants.DEFAULT_N_ESTIMATORS,
        random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
        n_jobs: int = constants.DEFAULT_N_JOBS,
        **params: Any
    ):
        self.n_estimators = n_estimators
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.params = params
        self.model: Optional[RandomForestClassifier] = None

    def fit(
        self,
        features: Union[Dict, Table, pd.DataFrame],
        labels: pd.Series
    ) -> Dict[str, Any]:
        """
        Train on all samples and report out-of-bag performance.

        Args:
            features: Feature table (samples × features).
            labels:   Training label per sample ID.

        Returns:
            Dictionary with:
              predictions:      OOB predicted label per sample (NaN when a sample
                                was never out of bag).
              importances:      Features ranked by mean decrease in impurity.
              confusion_matrix: OOB confusion matrix (rows actual, columns
                                predicted).
              oob_error:        1 - OOB accuracy.
        """
        X = table_to_df(features)
        y = labels.reindex(X.index)
        if y.isna().any():
            raise InvalidInputError("Every sample needs a training label")
        classes = sorted(y.astype(str).unique())
        if len(classes) < 2:
            raise DegenerateLabelsError(
                f"Random forest needs two classes, got only {classes}"
            )
        y = y.astype(str)

        self.model = RandomForestClassifier(
            n_estimators=self.n_estimators,
            oob_score=True,
            bootstrap=True,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
            **self.params
        )
        logger.debug(
            f"Training random forest ({self.n_estimators} trees) on "
            f"{X.shape[0]} samples × {X.shape[1]} features"
        )
        # Few samples can leave some never out of bag
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=UserWarning)
            self.model.fit(X.values, y.values)

        oob = self.model.oob_decision_function_
        has_oob = ~np.isnan(oob).any(axis=1)
        predicted = np.where(
            has_oob, self.model.classes_[np.nan_to_num(oob).argmax(axis=1)], None
        )
        predictions = pd.Series(predicted, index=X.index, name='predicted', dtype=object)

        cm = confusion_matrix(
            y.values[has_oob], predicted[has_oob].astype(str), labels=self.model.classes_
        )
        cm_df = pd.DataFrame(
            cm,
            index=pd.Index(self.model.classes_, name='actual'),
            columns=pd.Index(self.model.classes_, name='predicted')
        )
        oob_error = 1.0 - float(self.model.oob_score_)

        importances = pd.DataFrame({
            'feature': X.columns,
            'importance': self.model.feature_importances_,
        }).sort_values(['importance', 'feature'], ascending=[False, True], kind='mergesort')
        importances['rank'] = np.arange(1, len(importances) + 1)
        importances = importances.reset_index(drop=True)

        logger.info(f"Random forest OOB error rate: {oob_error:.2%}")
        return {
            'predictions': predictions,
            'importances': importances,
            'confusion_matrix': cm_df,
            'oob_error': oob_error,
        }

# ==================================== FUNCTIONS ===================================== #

def fit_random_forest(
    features: Union[Dict, Table, pd.DataFrame],
    labels: pd.Series,
    n_estimators: int = constants.DEFAULT_N_ESTIMATORS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    n_jobs: int = constants.DEFAULT_N_JOBS,
    **params: Any
) -> Dict[str, Any]:
    """Train an `OutOfBagRandomForest` and return its out-of-bag results."""
    model = OutOfBagRandomForest(
        n_estimators=n_estimators, random_state=random_state, n_jobs=n_jobs, **params
    )
    return model.fit(features, labels)
