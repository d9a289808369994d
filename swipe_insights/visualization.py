"""
Visualization functions for Swipe Insights.

Provides plotting capabilities using plotly. Every function returns the
figure and, when output_file is given, also writes it as standalone HTML.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import plotly.graph_objects as go  # type: ignore[import-untyped]
from plotly.subplots import make_subplots  # type: ignore[import-untyped]
from plotly.basedatatypes import BaseTraceType  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


def _write(fig: go.Figure, output_file: Optional[str]) -> None:
    if output_file:
        path = Path(output_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.write_html(str(path), include_plotlyjs="cdn")
        logger.info(f"Wrote chart to {path}")


def _usage_traces(series: List[Dict[str, Any]]) -> List[BaseTraceType]:
    dates = [row["date"] for row in series]
    return [
        go.Bar(x=dates, y=[row["swipe_likes"] for row in series], name="Likes"),
        go.Bar(x=dates, y=[row["swipe_passes"] for row in series], name="Passes"),
        go.Scatter(x=dates, y=[row["matches"] for row in series], name="Matches", mode="lines"),
    ]


def plot_daily_usage(series: List[Dict[str, Any]], output_file: Optional[str] = None) -> go.Figure:
    """
    Plot likes, passes and matches per day.

    Args:
        series: Usage dictionaries with 'date', 'swipe_likes', 'swipe_passes', 'matches'.
        output_file: Optional file path to save the plot.
    """
    fig = go.Figure(data=_usage_traces(series))
    fig.update_layout(title="Daily activity", barmode="stack", xaxis_title="Date", yaxis_title="Count")
    _write(fig, output_file)
    return fig


def plot_conversation_lengths(lengths: List[int], output_file: Optional[str] = None) -> go.Figure:
    """
    Plot the distribution of messages per conversation.

    Args:
        lengths: Message count per match (0 for ghosted matches).
        output_file: Optional file path to save the plot.
    """
    fig = go.Figure(data=[go.Histogram(x=lengths, name="Conversations")])
    fig.update_layout(title="Messages per conversation", xaxis_title="Messages", yaxis_title="Conversations")
    _write(fig, output_file)
    return fig


def plot_profile_dashboard(
    series: List[Dict[str, Any]],
    lengths: List[int],
    title: str = "Profile activity",
    output_file: Optional[str] = None,
) -> go.Figure:
    """Daily activity and conversation lengths stacked in one figure."""
    fig = make_subplots(rows=2, cols=1, subplot_titles=("Daily activity", "Messages per conversation"))
    for trace in _usage_traces(series):
        fig.add_trace(trace, row=1, col=1)
    fig.add_trace(go.Histogram(x=lengths, name="Conversations"), row=2, col=1)
    fig.update_layout(title=title, barmode="stack", height=800)

    if not series:
        logger.info("No usage rows to plot")
    _write(fig, output_file)
    return fig
