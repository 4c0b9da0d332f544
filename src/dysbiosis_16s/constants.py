from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Total character width of the progress bar text
DEFAULT_PROGRESS_TEXT_N: int = 65
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"
# Color of the percentage complete text (e.g., "85%")
DEFAULT_PROGRESS_PERCENTAGE_STYLE: str = "honeydew2"
# Color of the "X of Y complete" text (e.g., "42 of 65")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
DEFAULT_OUTPUT_DIR = "results"
LOGGER_NAME = "dysbiosis_16s"

# ==================================================================================== #
# METADATA
# ==================================================================================== #
DEFAULT_META_ID_COLUMN = '#sampleid'
DEFAULT_GROUP_COLUMN = 'disease_status'
DEFAULT_CONTROL_LABEL = 'healthy'
DEFAULT_CASE_LABEL = None

# ==================================================================================== #
# FILTERING
# ==================================================================================== #
DEFAULT_MIN_PREVALENCE: float = 0.0
DEFAULT_MIN_TOTAL_COUNT: float = 0.0

# ==================================================================================== #
# DYSBIOSIS SCORE
# ==================================================================================== #
# None -> derive from the smallest positive value of the table
DEFAULT_PSEUDOCOUNT = None
DEFAULT_PSEUDOCOUNT_FRACTION: float = 0.5
DEFAULT_USE_SQUARED: bool = False
DEFAULT_HIGH_LINE: float = 0.0

DYSBIOTIC_LABEL = "Dysbiotic"
NORMOBIOTIC_LABEL = "Normobiosis"
TIE_BREAK_OPTIONS = {
    'dysbiotic': DYSBIOTIC_LABEL,
    'normobiosis': NORMOBIOTIC_LABEL,
}
DEFAULT_TIE_BREAK = 'normobiosis'

SCORE_COLUMNS = ['d_control', 'd_case', 'score', 'group', 'classification']

# ==================================================================================== #
# EVALUATION
# ==================================================================================== #
CI_METHODS = ('delong', 'bootstrap')
DEFAULT_CI_METHOD = 'delong'
DEFAULT_CONF_LEVEL: float = 0.95
DEFAULT_N_BOOTSTRAPS: int = 2000
DEFAULT_RANDOM_STATE = 42

# ==================================================================================== #
# DIVERSITY
# ==================================================================================== #
DEFAULT_ALPHA_METRICS = ['observed_features', 'shannon', 'simpson', 'pielou_evenness']
DEFAULT_PERMUTATIONS: int = 999
DEFAULT_N_PCOA: int = 3

# ==================================================================================== #
# MODELS
# ==================================================================================== #
DEFAULT_N_ESTIMATORS: int = 500
DEFAULT_N_JOBS: int = 1
DEFAULT_FDR_METHOD = 'fdr_bh'
DEFAULT_MIN_SAMPLES_FIT: int = 4

# ==================================================================================== #
# FIGURES
# ==================================================================================== #
DEFAULT_HEIGHT = 1000
DEFAULT_WIDTH = 1100
DEFAULT_FIGURE_FORMATS = ['png', 'html']
DEFAULT_GROUP_COLORS = {'control': '#1f77b4', 'case': '#d62728'}
DEFAULT_DIVERGING_SCALE = 'RdBu_r'
