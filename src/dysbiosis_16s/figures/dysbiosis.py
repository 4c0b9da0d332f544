# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

# Third-Party Imports
import pandas as pd
import plotly.graph_objects as go

# ================================== LOCAL IMPORTS =================================== #

from dysbiosis_16s import constants
from dysbiosis_16s.figures.figures import apply_common_layout, plotly_show_and_save
from dysbiosis_16s.stats.evaluation import GradientLayout, GroupComparison, RocSummary

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def _group_colors(layout_groups: List) -> dict:
    return {
        layout_groups[0]: constants.DEFAULT_GROUP_COLORS['control'],
        layout_groups[1]: constants.DEFAULT_GROUP_COLORS['case'],
    }


def plot_gradient(
    layout: GradientLayout,
    output_path: Optional[Union[str, Path]] = None,
    save_as: List[str] = constants.DEFAULT_FIGURE_FORMATS,
    show: bool = False,
    verbose: bool = False
) -> go.Figure:
    """
    One-dimensional gradient of dysbiosis scores, one row per true group.

    Markers are coloured on a diverging scale centred at `layout.high_line`;
    a dashed line marks score 0.

    Args:
        layout:      Output of `gradient_ordering`.
        output_path: Output path for saving the plot (without extension).
        save_as:     Formats to write.
        show:        Whether to display the plot.
        verbose:     Verbosity flag.
    """
    order = layout.order
    # Symmetric colour range so the scale is centred on high_line
    half_range = max(
        abs(layout.score_max - layout.high_line), abs(layout.score_min - layout.high_line)
    ) or 1.0
    fig = go.Figure()
    for group in layout.groups:
        block = order[order['group'] == group]
        fig.add_trace(go.Scatter(
            x=block['score'],
            y=[str(group)] * len(block),
            mode='markers',
            name=str(group),
            text=block.index.astype(str),
            hovertemplate="%{text}<br>score=%{x:.3f}<extra></extra>",
            marker=dict(
                size=18,
                color=block['score'],
                colorscale=constants.DEFAULT_DIVERGING_SCALE,
                cmin=layout.high_line - half_range,
                cmax=layout.high_line + half_range,
                showscale=(group == layout.groups[-1]),
                colorbar=dict(title='Score'),
                line=dict(width=1, color='black'),
            ),
        ))

    fig.add_vline(x=0.0, line_dash='dash', line_color='black', line_width=2)
    if layout.high_line != 0.0:
        fig.add_vline(x=layout.high_line, line_dash='dot', line_color='grey', line_width=2)

    fig = apply_common_layout(
        fig, 'Dysbiosis score', '', 'Dysbiosis gradient', height=600, showlegend=False
    )
    fig.update_yaxes(categoryorder='array', categoryarray=[str(g) for g in layout.groups])
    plotly_show_and_save(fig, show, output_path, save_as, verbose=verbose)
    return fig


def plot_score_boxplot(
    scores: pd.DataFrame,
    comparison: GroupComparison,
    output_path: Optional[Union[str, Path]] = None,
    save_as: List[str] = constants.DEFAULT_FIGURE_FORMATS,
    show: bool = False,
    verbose: bool = False
) -> go.Figure:
    """Boxplot of scores per true group annotated with the Wilcoxon p-value."""
    groups = [comparison.control_label, comparison.case_label]
    colors = _group_colors(groups)
    fig = go.Figure()
    for group in groups:
        values = scores.loc[scores['group'] == group, 'score']
        fig.add_trace(go.Box(
            y=values,
            name=str(group),
            boxpoints='all',
            jitter=0.3,
            pointpos=0,
            marker_color=colors[group],
            line=dict(width=3),
        ))
    fig.add_hline(y=0.0, line_dash='dash', line_color='black', line_width=2)
    fig.add_annotation(
        text=f"Wilcoxon p = {comparison.p_value:.3g}",
        xref='paper', yref='paper', x=0.5, y=1.05,
        showarrow=False, font=dict(size=28)
    )
    fig = apply_common_layout(fig, 'Group', 'Dysbiosis score', showlegend=False)
    plotly_show_and_save(fig, show, output_path, save_as, verbose=verbose)
    return fig


def plot_roc_curve(
    roc: RocSummary,
    output_path: Optional[Union[str, Path]] = None,
    save_as: List[str] = constants.DEFAULT_FIGURE_FORMATS,
    show: bool = False,
    verbose: bool = False
) -> go.Figure:
    """
    Plot the ROC curve of the dysbiosis score using Plotly.

    Args:
        roc:         Output of `roc_evaluation`.
        output_path: Output path for saving the plot.
        save_as:     Formats to write.
        show:        Whether to display the plot.
        verbose:     Whether to log output.
    """
    fig = go.Figure()

    # ROC curve
    fig.add_trace(go.Scatter(
        x=roc.curve['fpr'],
        y=roc.curve['tpr'],
        mode='lines',
        name=(
            f"AUC = {roc.auc:.2f} "
            f"({roc.conf_level:.0%} CI {roc.ci_lower:.2f}-{roc.ci_upper:.2f})"
        ),
        line=dict(width=3, color='#1f77b4')
    ))

    # Random chance line
    fig.add_trace(go.Scatter(
        x=[0, 1],
        y=[0, 1],
        mode='lines',
        name='Random (AUC = 0.50)',
        line=dict(dash='dash', color='#444')
    ))

    fig = apply_common_layout(
        fig,
        'False Positive Rate', 'True Positive Rate',
        'Receiver Operating Characteristic'
    )
    fig.update_layout(
        xaxis=dict(range=[-0.05, 1.05]),
        yaxis=dict(range=[-0.05, 1.05]),
        legend=dict(yanchor="bottom", y=0.01, xanchor="right", x=0.99),
    )
    plotly_show_and_save(fig, show, output_path, save_as, verbose=verbose)
    return fig


def plot_pcoa(
    ordination: dict,
    control_label,
    case_label,
    output_path: Optional[Union[str, Path]] = None,
    save_as: List[str] = constants.DEFAULT_FIGURE_FORMATS,
    show: bool = False,
    verbose: bool = False
) -> go.Figure:
    """PC1 vs PC2 of the Aitchison PCoA coloured by true group."""
    coords = ordination['coordinates']
    explained = ordination['proportion_explained']
    pcs = [c for c in coords.columns if c != 'group']
    x_col = pcs[0]
    y_col = pcs[1] if len(pcs) > 1 else pcs[0]
    colors = _group_colors([control_label, case_label])

    fig = go.Figure()
    for group in (control_label, case_label):
        block = coords[coords['group'] == group]
        fig.add_trace(go.Scatter(
            x=block[x_col],
            y=block[y_col],
            mode='markers',
            name=str(group),
            text=block.index.astype(str),
            marker=dict(size=14, color=colors[group], line=dict(width=1, color='black')),
        ))
    fig = apply_common_layout(
        fig,
        f"{x_col} ({explained[x_col]:.1%})",
        f"{y_col} ({explained[y_col]:.1%})",
        'Aitchison PCoA'
    )
    plotly_show_and_save(fig, show, output_path, save_as, verbose=verbose)
    return fig


def save_dysbiosis_figures(
    results,
    output_dir: Union[str, Path],
    save_as: List[str] = constants.DEFAULT_FIGURE_FORMATS
) -> Dict[str, go.Figure]:
    """Render and save every figure available in a `DysbiosisResults`."""
    output_dir = Path(output_dir)
    figures = {
        'gradient': plot_gradient(
            results.gradient, output_dir / 'dysbiosis_gradient', save_as
        ),
        'score_boxplot': plot_score_boxplot(
            results.scores, results.comparison, output_dir / 'score_boxplot', save_as
        ),
        'roc_curve': plot_roc_curve(results.roc, output_dir / 'roc_curve', save_as),
    }
    if results.ordination is not None:
        figures['pcoa'] = plot_pcoa(
            results.ordination, results.control_label, results.case_label,
            output_dir / 'aitchison_pcoa', save_as
        )
    logger.info(f"Saved {len(figures)} figures to '{output_dir}'")
    return figures
