# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import List, Optional, Union

# Third Party Imports
import plotly.graph_objects as go
import plotly.io as pio

# Local Imports
from dysbiosis_16s import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ================================= GLOBAL VARIABLES ================================= #

# Define the plot template
pio.templates["dysbiosis"] = go.layout.Template(
  layout={
    'title': {
      'font': {
        'family': 'HelveticaNeue-CondensedBold, Helvetica, Sans-serif',
        'size': 40,
        'color': '#000' # Black
      }
    },
    'font': {
      'family': 'Helvetica Neue, Helvetica, Sans-serif',
      'size': 26,
      'color' : '#000'
    },
    'paper_bgcolor': 'rgba(0, 0, 0, 0)', # Transparent
    'plot_bgcolor': '#fff', # White
    'xaxis': {
      'showgrid': False,
      'zeroline': False,
      'showline': True,
      'linewidth': 3,
      'linecolor': 'black',
      'automargin': True,
      'mirror': True
    },
    'yaxis': {
      'showgrid': False,
      'zeroline': False,
      'showline': True,
      'linewidth': 3,
      'linecolor': 'black',
      'automargin': True,
      'mirror': True
    }
  }
)

# ==================================== FUNCTIONS ===================================== #

def plotly_show_and_save(
    fig: go.Figure,
    show: bool = False,
    output_path: Optional[Union[str, Path]] = None,
    save_as: List[str] = constants.DEFAULT_FIGURE_FORMATS,
    scale: int = 3,
    verbose: bool = False,
    **write_kwargs
) -> List[Path]:
    """
    Save a Plotly figure to static and/or HTML formats and optionally display it.
    
    Args:
        fig:            Plotly Figure object to be saved/displayed.
        show:           Whether to display the figure (default: False).
        output_path:    Base output path for files. Format-specific extensions are 
                        appended (.png, .html). Directory will be created if needed.
        save_as:        List of formats to save ('png', 'svg', 'pdf', 'html').
        scale:          DPI‑like scale factor for raster outputs.
        verbose:        If True, logs success messages; errors are always logged.
        **write_kwargs: Extra args forwarded to `fig.write_image` / `fig.write_html`.
    
    Returns:
        Paths of the files written.
    
    Notes:
        - Saving static images requires kaleido: install with `pip install -U kaleido`.
    """
    written: List[Path] = []
    if output_path:
        output_path = Path(output_path).expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)

        static_exts = {"png", "jpg", "jpeg", "pdf", "svg", "eps"}
        base = str(output_path)
        for ext in list(static_exts) + ['html']:
            base = base.removesuffix(f'.{ext}')
        
        for ext in [e for e in save_as if e in static_exts]:
            target = Path(f"{base}.{ext}")
            try:
                fig.write_image(str(target), format=ext, scale=scale, **write_kwargs)
                written.append(target)
                if verbose:
                    logger.debug(f"Saved figure to '{target}'.")
            except Exception as e:
                logger.error(
                    f"Failed to save figure: {str(e)}. "
                    "Make sure the export engine is installed "
                    "(e.g. `pip install -U kaleido`)."
                )
        
        if 'html' in save_as:
            target = Path(f"{base}.html")
            try:
                fig.write_html(str(target), **write_kwargs)
                written.append(target)
                if verbose:
                    logger.debug(f"Saved figure to '{target}'.")
            except Exception as e:
                logger.error(f"Failed to save figure: {str(e)}")
    if show:
        fig.show()
    return written


def apply_common_layout(
    fig: go.Figure,
    x_title: str,
    y_title: str,
    title: Optional[str] = None,
    height: int = constants.DEFAULT_HEIGHT,
    width: int = constants.DEFAULT_WIDTH,
    showlegend: bool = True
) -> go.Figure:
    """Apply the package template and axis titles to a figure."""
    fig.update_layout(
        template='dysbiosis',
        height=height,
        width=width,
        xaxis_title=x_title,
        yaxis_title=y_title,
        showlegend=showlegend,
    )
    if title:
        fig.update_layout(title=dict(text=title))
    return fig
