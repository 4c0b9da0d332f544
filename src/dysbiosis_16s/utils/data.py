# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Dict, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from biom import Table

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.errors import InvalidInputError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ================================ TABLE CONVERSION ================================== #

def table_to_df(table: Union[Dict, Table, pd.DataFrame]) -> pd.DataFrame:
    """Convert various table formats to samples × features DataFrame.
    
    Handles:
    - Pandas DataFrame (returns a float copy)
    - BIOM Table (transposes to samples × features)
    - Dictionary (converts to DataFrame)
    
    Args:
        table: Input table in various formats.
        
    Returns:
        DataFrame in samples × features orientation.
        
    Raises:
        TypeError: For unsupported input types
    """
    if isinstance(table, pd.DataFrame):  # samples × features
        return table.astype(float)
    if isinstance(table, Table):         # features × samples
        return table.to_dataframe(dense=True).T.astype(float)
    if isinstance(table, dict):          # samples × features
        return pd.DataFrame(table).astype(float)
    raise TypeError("Input must be BIOM Table, dict, or DataFrame.")

# ================================ TABLE OPERATIONS ================================== #

def align_table_and_metadata(
    table: Union[Dict, Table, pd.DataFrame],
    metadata: pd.DataFrame,
    group_column: str = constants.DEFAULT_GROUP_COLUMN
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Restrict table and metadata to the samples they share.
    
    Samples without a value in `group_column` are dropped. The returned table 
    and metadata are new objects in the same sample order.
    
    Args:
        table:        Feature table (samples × features).
        metadata:     Sample metadata indexed by sample ID.
        group_column: Metadata column holding the group labels.
    
    Returns:
        Tuple of (aligned table, aligned metadata).
    
    Raises:
        InvalidInputError: If the group column is missing or no sample IDs match.
    """
    df = table_to_df(table)
    if group_column not in metadata.columns:
        raise InvalidInputError(f"Group column '{group_column}' not found in metadata")

    df.index = df.index.astype(str)
    meta = metadata.copy()
    meta.index = meta.index.astype(str)
    meta = meta[meta[group_column].notna()]

    shared_ids = [sid for sid in df.index if sid in meta.index]
    if not shared_ids:
        raise InvalidInputError("No common samples between table and metadata")
    if len(shared_ids) < len(df.index) * 0.5:
        logger.warning(
            f"Only {len(shared_ids)}/{len(df.index)} samples have metadata. "
            "Consider checking sample ID matching."
        )
    
    dropped = len(df.index) - len(shared_ids)
    if dropped:
        logger.info(f"Dropped {dropped} samples without a '{group_column}' label")
    return df.loc[shared_ids].copy(), meta.loc[shared_ids].copy()


def filter_features(
    table: Union[Dict, Table, pd.DataFrame],
    min_prevalence: float = constants.DEFAULT_MIN_PREVALENCE,
    min_total_count: float = constants.DEFAULT_MIN_TOTAL_COUNT
) -> pd.DataFrame:
    """Filter features based on prevalence and total abundance.
    
    Features that are zero in every sample are always removed.
    
    Args:
        table:           Feature table (samples × features).
        min_prevalence:  Minimum fraction of samples in which a feature is non-zero.
        min_total_count: Minimum summed abundance across samples.
        
    Returns:
        Filtered DataFrame.
    """
    df = table_to_df(table)
    prevalence = (df > 0).mean(axis=0)
    totals = df.sum(axis=0)
    
    feature_mask = (prevalence >= min_prevalence) & (totals >= min_total_count) & (totals > 0)
    logger.info(f"Filtering from {df.shape[1]} to {int(feature_mask.sum())} features")
    return df.loc[:, feature_mask.values].copy()


def relative_abundance(table: Union[Dict, Table, pd.DataFrame]) -> pd.DataFrame:
    """Scale every sample to sum to 1; all-zero samples stay zero."""
    df = table_to_df(table)
    totals = df.sum(axis=1).replace(0, np.nan)
    return df.div(totals, axis=0).fillna(0.0)
