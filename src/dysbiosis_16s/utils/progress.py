# ===================================== IMPORTS ====================================== #

# Third-Party Imports
from rich.progress import (
    BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn,
    TimeElapsedColumn
)

# Local Imports
from dysbiosis_16s import constants

# ===================================== FUNCTIONS ==================================== #

def get_progress_bar(transient: bool = True) -> Progress:
    """Return a customized progress bar with consistent styling"""
    return Progress(
        SpinnerColumn(
            "dots",
            style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            speed=0.75
        ),
        TextColumn(
            "{task.description}",
            style=constants.DEFAULT_DESCRIPTION_STYLE,
            justify="left"
        ),
        MofNCompleteColumn(),
        BarColumn(
            bar_width=constants.DEFAULT_BAR_WIDTH,
            style="black", # Background color
            complete_style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            finished_style=constants.DEFAULT_FINISHED_STYLE
        ),
        TextColumn(
            "{task.percentage:>3.0f}%".rjust(5),
            style=constants.DEFAULT_PROGRESS_PERCENTAGE_STYLE,
            justify="right"
        ),
        TimeElapsedColumn(),
        transient=transient,
        expand=False
    )


def _format_task_desc(desc: str) -> str:
    return f"{str(desc):<{constants.DEFAULT_PROGRESS_TEXT_N}}"
