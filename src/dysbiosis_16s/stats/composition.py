# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Dict, Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from biom import Table
from skbio.stats.composition import clr as CLR

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.errors import InvalidInputError, NumericDegeneracyError
from dysbiosis_16s.utils.data import table_to_df

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def validate_feature_table(
    table: Union[Dict, Table, pd.DataFrame], 
    min_samples: int = 2
) -> pd.DataFrame:
    """Check that a feature table can enter the compositional transform.
    
    Args:
        table:       Feature table (samples × features).
        min_samples: Minimum number of sample rows.
        
    Returns:
        The table as a float DataFrame (a copy).
        
    Raises:
        InvalidInputError: Too few samples, no features, duplicate sample IDs, 
                           missing/infinite or negative values.
    """
    try:
        df = table_to_df(table)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Feature table is not numeric: {e}") from e
    
    if len(df.index) < min_samples:
        raise InvalidInputError(
            f"At least {min_samples} samples required, got {len(df.index)}"
        )
    if df.shape[1] == 0:
        raise InvalidInputError("Feature table has no features")
    if df.index.duplicated().any():
        dups = df.index[df.index.duplicated()].unique().tolist()
        raise InvalidInputError(f"Duplicate sample IDs in feature table: {dups[:5]}")
    
    values = df.values
    if not np.isfinite(values).all():
        raise InvalidInputError("Feature table contains NaN or infinite values")
    if (values < 0).any():
        raise InvalidInputError("Feature table contains negative values")
    return df


def resolve_pseudocount(
    table: pd.DataFrame,
    pseudocount: Optional[float] = constants.DEFAULT_PSEUDOCOUNT,
    pseudocount_fraction: float = constants.DEFAULT_PSEUDOCOUNT_FRACTION
) -> float:
    """Return the additive pseudocount applied uniformly before the log-ratio.
    
    An explicit `pseudocount` is used as given. Otherwise, if the table holds 
    any zero, the pseudocount is `pseudocount_fraction` times the smallest 
    positive entry; a table without zeros gets no pseudocount.
    """
    if pseudocount is not None:
        pseudocount = float(pseudocount)
        if not np.isfinite(pseudocount) or pseudocount < 0:
            raise InvalidInputError(f"pseudocount must be a finite value ≥ 0, got {pseudocount}")
        return pseudocount
    
    if pseudocount_fraction < 0:
        raise InvalidInputError("pseudocount_fraction must be ≥ 0")
    values = table.values
    if not (values == 0).any():
        return 0.0
    positive = values[values > 0]
    if positive.size == 0:
        raise NumericDegeneracyError(
            "Feature table has no positive values; cannot derive a pseudocount"
        )
    return float(pseudocount_fraction * positive.min())


def clr_transform(
    table: Union[Dict, Table, pd.DataFrame],
    pseudocount: Optional[float] = constants.DEFAULT_PSEUDOCOUNT,
    pseudocount_fraction: float = constants.DEFAULT_PSEUDOCOUNT_FRACTION
) -> pd.DataFrame:
    """Apply the centered log-ratio (CLR) transformation to each sample.
    
    Each value x of a sample becomes ln(x) - mean(ln(row)), i.e. the log of its 
    ratio to the row's geometric mean, computed on the pseudocount-shifted table. 
    Transformed rows sum to zero. Euclidean distance between transformed rows is 
    the Aitchison distance between the underlying compositions.
    
    Args:
        table:                Feature table (samples × features), values ≥ 0.
        pseudocount:          Additive pseudocount; None derives one from the data 
                              (see `resolve_pseudocount`).
        pseudocount_fraction: Fraction of the smallest positive value used when 
                              `pseudocount` is None.
        
    Returns:
        New DataFrame of the same shape, index and columns.
        
    Raises:
        InvalidInputError:      Malformed table (see `validate_feature_table`).
        NumericDegeneracyError: A row still contains zeros after substitution, 
                                so its geometric mean is zero.
    """
    df = validate_feature_table(table)
    shift = resolve_pseudocount(df, pseudocount, pseudocount_fraction)
    shifted = df.values + shift
    
    if (shifted < 0).any():
        raise InvalidInputError("Negative values after pseudocount substitution")
    nonpositive = (shifted <= 0)
    if nonpositive.any():
        empty_rows = df.index[nonpositive.all(axis=1)].tolist()
        if empty_rows:
            raise NumericDegeneracyError(
                f"All-zero sample rows with pseudocount {shift}: {empty_rows[:5]}"
            )
        zero_rows = df.index[nonpositive.any(axis=1)].tolist()
        raise NumericDegeneracyError(
            f"Zero values remain after pseudocount {shift} in samples: {zero_rows[:5]}"
        )
    
    logger.debug(
        f"CLR transform of {df.shape[0]} samples × {df.shape[1]} features "
        f"(pseudocount={shift:g})"
    )
    clr_values = CLR(shifted) if df.shape[1] > 1 else np.zeros_like(shifted)
    return pd.DataFrame(
        np.asarray(clr_values, dtype=float).reshape(df.shape), 
        index=df.index.copy(), 
        columns=df.columns.copy()
    )
