# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import yaml

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.errors import InvalidInputError

# ================================= DEFAULT VALUES =================================== #

DEFAULT_SECTIONS: Dict[str, Dict[str, Any]] = {
    'filtering': {
        'enabled': False,
        'min_prevalence': constants.DEFAULT_MIN_PREVALENCE,
        'min_total_count': constants.DEFAULT_MIN_TOTAL_COUNT,
    },
    'dysbiosis': {
        'group_column': constants.DEFAULT_GROUP_COLUMN,
        'control_label': constants.DEFAULT_CONTROL_LABEL,
        'case_label': constants.DEFAULT_CASE_LABEL,
        'pseudocount': constants.DEFAULT_PSEUDOCOUNT,
        'pseudocount_fraction': constants.DEFAULT_PSEUDOCOUNT_FRACTION,
        'use_squared': constants.DEFAULT_USE_SQUARED,
        'tie_break': constants.DEFAULT_TIE_BREAK,
        'high_line': constants.DEFAULT_HIGH_LINE,
    },
    'evaluation': {
        'ci_method': constants.DEFAULT_CI_METHOD,
        'conf_level': constants.DEFAULT_CONF_LEVEL,
        'n_bootstraps': constants.DEFAULT_N_BOOTSTRAPS,
        'random_state': constants.DEFAULT_RANDOM_STATE,
    },
    'alpha_diversity': {
        'enabled': True,
        'metrics': list(constants.DEFAULT_ALPHA_METRICS),
    },
    'beta_diversity': {
        'enabled': True,
        'permutations': constants.DEFAULT_PERMUTATIONS,
        'n_components': constants.DEFAULT_N_PCOA,
        'random_state': constants.DEFAULT_RANDOM_STATE,
    },
    'random_forest': {
        'enabled': True,
        'n_estimators': constants.DEFAULT_N_ESTIMATORS,
        'random_state': constants.DEFAULT_RANDOM_STATE,
        'n_jobs': constants.DEFAULT_N_JOBS,
    },
    'differential_abundance': {
        'enabled': False,
        'covariates': [],
        'random_effect': None,
        'fdr_method': constants.DEFAULT_FDR_METHOD,
    },
    'figures': {
        'enabled': True,
        'formats': list(constants.DEFAULT_FIGURE_FORMATS),
    },
}

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on 
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            # Check if the value is a relative path
            if value.startswith("./") or value.startswith("../"):
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, dict):
            # Recursively handle nested dictionaries
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def get_config(
    config_path: Union[str, Path] = constants.DEFAULT_CONFIG
) -> Dict:
    # Load the YAML configuration file
    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}
    
    # Resolve any relative paths in the config
    config_dir = Path(config_path).resolve().parent
    return resolve_relative_paths(config, config_dir)


def get_section(config: Optional[Dict], section: str) -> Dict[str, Any]:
    """Return one config section merged over its defaults.
    
    Args:
        config:  Full configuration dictionary (may be None).
        section: Section name, e.g. 'dysbiosis' or 'evaluation'.
        
    Returns:
        New dictionary; neither the defaults nor the input are modified.
    """
    if section not in DEFAULT_SECTIONS:
        raise KeyError(f"Unknown configuration section: '{section}'")
    merged = deepcopy(DEFAULT_SECTIONS[section])
    merged.update((config or {}).get(section) or {})
    return merged


def get_dysbiosis_params(config: Optional[Dict] = None) -> Dict[str, Any]:
    """Return the validated 'dysbiosis' section.
    
    Raises:
        InvalidInputError: For an unknown tie-break rule or negative pseudocount 
                           settings.
    """
    params = get_section(config, 'dysbiosis')
    tie_break = str(params['tie_break']).lower()
    if tie_break not in constants.TIE_BREAK_OPTIONS:
        raise InvalidInputError(
            f"Unknown tie_break '{params['tie_break']}'. "
            f"Expected one of: {sorted(constants.TIE_BREAK_OPTIONS)}"
        )
    params['tie_break'] = tie_break
    if params['pseudocount'] is not None and float(params['pseudocount']) < 0:
        raise InvalidInputError("pseudocount must be ≥ 0")
    if float(params['pseudocount_fraction']) < 0:
        raise InvalidInputError("pseudocount_fraction must be ≥ 0")
    params['use_squared'] = bool(params['use_squared'])
    params['high_line'] = float(params['high_line'])
    return params


def get_evaluation_params(config: Optional[Dict] = None) -> Dict[str, Any]:
    """Return the validated 'evaluation' section."""
    params = get_section(config, 'evaluation')
    ci_method = str(params['ci_method']).lower()
    if ci_method not in constants.CI_METHODS:
        raise InvalidInputError(
            f"Unknown ci_method '{params['ci_method']}'. "
            f"Expected one of: {list(constants.CI_METHODS)}"
        )
    params['ci_method'] = ci_method
    conf_level = float(params['conf_level'])
    if not 0 < conf_level < 1:
        raise InvalidInputError("conf_level must be between 0 and 1")
    params['conf_level'] = conf_level
    return params


def is_enabled(config: Optional[Dict], section: str) -> bool:
    return bool(get_section(config, section).get("enabled", False))
