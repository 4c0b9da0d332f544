"""
16S Dysbiosis Score
----------------------------------------------------------------------------------------
Scores every sample of a 16S feature table by how much closer it sits to the
case-group centroid than to the control-group centroid in Aitchison space, and
evaluates that score against the known group labels.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import argparse
import logging
import sys
import traceback
from pathlib import Path
from typing import List, Optional

# Third-Party Imports
import pandas as pd
import yaml

# Local Imports
from dysbiosis_16s import constants
from dysbiosis_16s.config import get_config, get_section, is_enabled
from dysbiosis_16s.errors import DysbiosisError
from dysbiosis_16s.figures.dysbiosis import save_dysbiosis_figures
from dysbiosis_16s.logger import setup_logging
from dysbiosis_16s.pipeline import run_dysbiosis_analysis
from dysbiosis_16s.utils.io import import_feature_table, import_metadata, write_results

# ========================== INITIALIZATION & CONFIGURATION ========================== #

pd.set_option('display.max_colwidth', None)

# =================================== MAIN WORKFLOW ================================== #

class WorkflowDysbiosis:
    """Loads inputs named in the config, runs the analysis and writes outputs."""

    def __init__(
        self,
        config_path: Path = constants.DEFAULT_CONFIG,
        output_dir: Optional[Path] = None,
        log_level: str = "INFO"
    ):
        self.config = get_config(config_path)
        self.output_dir = Path(
            output_dir or self.config.get("output_dir", constants.DEFAULT_OUTPUT_DIR)
        )
        self.logger = setup_logging(
            self.output_dir / "logs",
            console_level=getattr(logging, log_level.upper(), logging.INFO)
        )

    def run(self) -> None:
        """Execute the complete workflow."""
        self.logger.info(f"Output directory: {self.output_dir}")
        for key in ("feature_table", "metadata"):
            if not self.config.get(key):
                raise DysbiosisError(f"Config is missing the '{key}' path")

        table = import_feature_table(self.config["feature_table"])
        metadata = import_metadata(
            self.config["metadata"],
            self.config.get("metadata_id_column", constants.DEFAULT_META_ID_COLUMN)
        )
        results = run_dysbiosis_analysis(table, metadata, self.config)
        write_results(results, self.output_dir)

        if is_enabled(self.config, "figures"):
            formats = get_section(self.config, "figures")["formats"]
            try:
                save_dysbiosis_figures(results, self.output_dir / "figures", formats)
            except Exception as e:
                self.logger.error(f"Failed to generate figures: {e}")
        self.logger.info("Dysbiosis workflow completed")


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point; returns the process exit code."""
    parser = argparse.ArgumentParser(description="Run the 16S dysbiosis score workflow.")
    parser.add_argument(
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG,
        help="Path to the configuration file.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for result tables and figures (overrides the config).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level.",
    )
    args = parser.parse_args(argv)

    try:
        workflow = WorkflowDysbiosis(args.config, args.output_dir, args.log_level)
        workflow.run()
    except (DysbiosisError, OSError, yaml.YAMLError) as e:
        logger = logging.getLogger(constants.LOGGER_NAME)
        logger.error(f"Workflow aborted: {e}")
        logger.debug(traceback.format_exc())
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
