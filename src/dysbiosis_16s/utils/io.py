# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

# Third-Party Imports
import h5py
import numpy as np
import pandas as pd
import yaml
from biom import load_table
from biom.table import Table

# ================================== LOCAL IMPORTS =================================== #

from dysbiosis_16s import constants
from dysbiosis_16s.errors import InvalidInputError
from dysbiosis_16s.utils.data import table_to_df

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ================================= DEFAULT VALUES =================================== #

FEATURE_ID_HEADERS = ('#OTU ID', '#OTU_ID', '#FeatureID', '#Feature ID')
TAXONOMY_COLUMNS = ('taxonomy', 'Taxon', 'taxon')
DELIMITERS = {'.tsv': '\t', '.txt': '\t', '.csv': ','}

# ==================================== FEATURE TABLE ================================= #

def import_table_biom(biom_path: Union[str, Path]) -> Table:
    """
    Load a BIOM table from file.

    HDF5 (BIOM v2.1) files are read through h5py; anything else is handed to
    `biom.load_table`, which handles the JSON and classic formats.

    Args:
        biom_path: Path to .biom file.

    Returns:
        BIOM Table object (features × samples).
    """
    biom_path = Path(biom_path)
    if h5py.is_hdf5(biom_path):
        with h5py.File(biom_path, 'r') as f:
            return Table.from_hdf5(f)
    return load_table(str(biom_path))


def _count_preamble_lines(path: Path) -> int:
    """Number of leading comment lines before the header row."""
    n = 0
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            if line.startswith('#') and not line.startswith(FEATURE_ID_HEADERS):
                n += 1
                continue
            break
    return n


def import_feature_table(table_path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a feature table stored as features × samples.

    Supports .biom files (HDF5 or JSON) and QIIME-style delimited text:
    an optional '#' comment preamble, a header starting with '#OTU ID', one
    row per feature and an optional trailing taxonomy column, which is dropped.

    Args:
        table_path: Path to a .biom, .tsv, .txt or .csv file.

    Returns:
        Samples × features DataFrame of floats.

    Raises:
        FileNotFoundError: If the path does not exist.
        InvalidInputError: Unsupported extension or non-numeric values.
    """
    table_path = Path(table_path)
    if not table_path.exists():
        raise FileNotFoundError(f"Feature table not found: {table_path}")

    suffix = table_path.suffix.lower()
    if suffix == '.biom':
        table = import_table_biom(table_path)
        df = table_to_df(table)
        logger.info(
            f"Loaded BIOM table '{table_path.name}': "
            f"{df.shape[0]} samples × {df.shape[1]} features"
        )
        return df

    if suffix not in DELIMITERS:
        raise InvalidInputError(
            f"Unsupported feature table format '{suffix}'. "
            f"Use .biom or one of {sorted(DELIMITERS)}"
        )

    raw = pd.read_csv(
        table_path,
        sep=DELIMITERS[suffix],
        skiprows=_count_preamble_lines(table_path),
        index_col=0,
    )
    raw.index = raw.index.astype(str)
    raw.index.name = 'feature_id'
    dropped = [c for c in raw.columns if c in TAXONOMY_COLUMNS]
    if dropped:
        logger.debug(f"Dropping annotation columns {dropped}")
        raw = raw.drop(columns=dropped)

    try:
        df = raw.T.astype(float)
    except ValueError as e:
        raise InvalidInputError(f"Feature table '{table_path.name}' is not numeric: {e}") from e
    df.index = df.index.astype(str)
    df.index.name = 'sample_id'
    logger.info(
        f"Loaded feature table '{table_path.name}': "
        f"{df.shape[0]} samples × {df.shape[1]} features"
    )
    return df

# ===================================== METADATA ===================================== #

def import_metadata(
    metadata_path: Union[str, Path],
    id_column: str = constants.DEFAULT_META_ID_COLUMN
) -> pd.DataFrame:
    """
    Load a sample metadata table indexed by sample ID.

    Args:
        metadata_path: Path to a tab- (.tsv/.txt) or comma-separated (.csv) file.
        id_column:     Column holding the sample IDs (case-insensitive match).

    Returns:
        Metadata DataFrame indexed by sample ID (as strings). Duplicate IDs keep
        their first row.

    Raises:
        FileNotFoundError: If the path does not exist.
        InvalidInputError: If the ID column is missing.
    """
    metadata_path = Path(metadata_path)
    if not metadata_path.exists():
        raise FileNotFoundError(f"Metadata file not found: {metadata_path}")

    sep = DELIMITERS.get(metadata_path.suffix.lower(), '\t')
    df = pd.read_csv(metadata_path, sep=sep)

    matches = [c for c in df.columns if str(c).lower() == id_column.lower()]
    if not matches:
        raise InvalidInputError(
            f"Sample ID column '{id_column}' not found in metadata "
            f"(columns: {list(df.columns)[:10]})"
        )
    df = df.set_index(matches[0])
    df.index = df.index.astype(str)
    df.index.name = 'sample_id'

    duplicated = df.index.duplicated(keep='first')
    if duplicated.any():
        logger.warning(
            f"{int(duplicated.sum())} duplicate sample IDs in metadata; keeping first "
            f"(e.g. {df.index[duplicated].unique().tolist()[:5]})"
        )
        df = df[~duplicated]
    logger.info(f"Loaded metadata '{metadata_path.name}' with {len(df)} samples")
    return df

# ====================================== OUTPUT ====================================== #

def _to_builtin(value: Any) -> Any:
    """Recursively convert numpy/pandas scalars to types yaml can dump."""
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def write_results(results: Any, output_dir: Union[str, Path]) -> List[Path]:
    """
    Write every result table as TSV and the scalar summary as YAML.

    Args:
        results:    Object exposing `tables()` (name → DataFrame) and
                    `summary()` (nested dictionary), e.g. `DysbiosisResults`.
        output_dir: Directory to write into; created if needed.

    Returns:
        Paths of the files written.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    tables: Dict[str, pd.DataFrame] = results.tables()
    for name, df in tables.items():
        if df is None:
            continue
        target = output_dir / f"{name}.tsv"
        df.to_csv(target, sep='\t', index=True)
        written.append(target)
        logger.debug(f"Wrote {target}")

    summary_path = output_dir / "summary.yaml"
    with open(summary_path, 'w') as f:
        yaml.safe_dump(_to_builtin(results.summary()), f, sort_keys=False)
    written.append(summary_path)

    logger.info(f"Wrote {len(written)} result files to '{output_dir}'")
    return written
