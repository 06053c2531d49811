"""Bar/line rendering of the display dataset."""

from typing import Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

from data_pipeline import TypedRecord, format_number, humanize_key

FIG_W, FIG_H = 7.0, 4.2
BAR_COLOR = "#3b82f6"
LINE_COLOR = "#8b5cf6"
AXIS_COLOR = "#6366f1"
MAX_TICK_LABELS = 25


def _label(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def _numeric(value) -> float:
    # text values leave a gap in the series
    return value if isinstance(value, float) else np.nan


def _slant_x_labels(ax, rotation=45):
    for lbl in ax.get_xticklabels():
        lbl.set_rotation(rotation)
        lbl.set_horizontalalignment("right")


def render_chart(records: Sequence[TypedRecord], x_key: str, y_key: str,
                 chart_type: str = "bar") -> Figure:
    """Plot ``y_key`` against ``x_key`` with X values as ordered categories."""
    if chart_type not in ("bar", "line"):
        raise ValueError(f"unsupported chart type {chart_type!r}")

    labels = [_label(r.get(x_key)) for r in records]
    values = np.asarray([_numeric(r.get(y_key)) for r in records], dtype=float)
    positions = np.arange(len(records))

    fig, ax = plt.subplots(figsize=(FIG_W, FIG_H))
    if chart_type == "bar":
        ax.bar(positions, values, color=BAR_COLOR, label=humanize_key(y_key))
    else:
        ax.plot(positions, values, color=LINE_COLOR, linewidth=2, marker="o",
                markersize=4, label=humanize_key(y_key))

    # thin out the ticks so up to MAX_TICK_LABELS stay readable
    step = max(1, int(np.ceil(len(labels) / MAX_TICK_LABELS)))
    ax.set_xticks(positions[::step])
    ax.set_xticklabels(labels[::step])
    _slant_x_labels(ax)

    ax.set_xlabel(humanize_key(x_key), color=AXIS_COLOR)
    ax.set_ylabel(humanize_key(y_key), color=AXIS_COLOR)
    ax.tick_params(colors=AXIS_COLOR)
    ax.grid(alpha=0.2)
    fig.tight_layout()
    return fig
