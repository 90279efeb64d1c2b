"""
visualization.py - matplotlib previews of the display transforms.

All plot functions follow a consistent style and return the Figure so
callers can save or display it as needed.  These are previews for
checking presets and tables, not a viewer.
"""

import logging
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np

from radiometry.histogram import HistogramBins
from radiometry.image import DisplayImage
from radiometry.lut import ByteLut
from radiometry.scale import Ruler
from radiometry.windowing import DEFAULT_SHAPES, WindowLevel, normalize, window_with_range

logger = logging.getLogger(__name__)

# Consistent figure style across all plots
plt.rcParams.update({"figure.dpi": 100, "axes.titlesize": 11})


def plot_windowed_comparison(image: DisplayImage, max_presets: int = 4) -> Optional[plt.Figure]:
    """
    Show the same frame through each preset side by side.

    Parameters
    ----------
    image : DisplayImage
        Image to preview.
    max_presets : int
        Number of presets shown, in preset order.

    Returns
    -------
    plt.Figure or None
        None when the image has no pixel data.
    """
    if image.pixels is None:
        logger.warning("Nothing to plot: image has no pixel data")
        return None

    presets = image.presets()[:max_presets]
    fig, axes = plt.subplots(1, len(presets), figsize=(4 * len(presets), 4), squeeze=False)

    for ax, preset in zip(axes[0], presets):
        wl = image.window_level(preset)
        ax.imshow(image.display_bytes(wl))
        ax.set_title(f"{preset.name}\n(C={wl.center:g}, W={wl.width:g})")
        ax.axis("off")

    fig.suptitle("Window presets (same frame)", y=1.02)
    fig.tight_layout()
    return fig


def plot_transfer_shapes(wl: WindowLevel) -> plt.Figure:
    """Curves of the default shapes for the window of *wl*."""
    fig, ax = plt.subplots(figsize=(6, 4))
    x = np.linspace(wl.level_min, wl.level_max, 512)
    for shape in DEFAULT_SHAPES:
        curve = window_with_range(wl.center, wl.width, shape, wl.level_min, wl.level_max)
        ax.plot(x, normalize(x, curve), label=shape.name)
    ax.axvline(wl.low, color="grey", linestyle="--", linewidth=0.8)
    ax.axvline(wl.high, color="grey", linestyle="--", linewidth=0.8)
    ax.set_xlabel("Real value")
    ax.set_ylabel("Display intensity")
    ax.set_ylim(-0.02, 1.02)
    ax.legend(fontsize=8)
    ax.grid(True, linestyle="--", alpha=0.6)
    fig.tight_layout()
    return fig


def plot_histogram(
    hist: HistogramBins,
    wl: WindowLevel,
    lut: ByteLut,
    logarithmic: bool = False,
    accumulate: bool = False,
) -> plt.Figure:
    """
    Histogram with each bin coloured by the LUT entry of its centre value.

    Parameters
    ----------
    hist : HistogramBins
        Raw histogram.
    wl : WindowLevel
        Window used to colour the bins.
    lut : ByteLut
        Display lookup table.
    logarithmic, accumulate : bool
        Display transforms (the raw counts are unchanged).

    Returns
    -------
    plt.Figure
    """
    values = hist.display_values(logarithmic, accumulate)
    colors = lut.rgb()[hist.lut_indices(wl, lut.size)] / 255.0
    edges = hist.min_value + np.arange(hist.bin_count) * hist.bin_width

    fig, ax = plt.subplots(figsize=(8, 3))
    ax.bar(edges, values, width=hist.bin_width, align="edge", color=colors, edgecolor="none")
    ax.axvline(wl.low, color="tab:red", linewidth=0.8)
    ax.axvline(wl.high, color="tab:red", linewidth=0.8)
    ax.set_ylim(0, hist.max_display_value(logarithmic, accumulate) * 1.05)
    mode = ", ".join(m for m, on in (("log", logarithmic), ("cumulative", accumulate)) if on)
    ax.set_title(f"Histogram ({hist.bin_count} bins{', ' + mode if mode else ''})")
    ax.set_xlabel("Real value")
    ax.set_ylabel("Pixels")
    fig.tight_layout()
    return fig


def plot_lut(lut: ByteLut, ruler: Optional[Ruler] = None) -> plt.Figure:
    """Colour strip of *lut*, with the ruler label as caption when given."""
    fig, ax = plt.subplots(figsize=(6, 1.2))
    ax.imshow(lut.rgb()[np.newaxis, :, :], aspect="auto")
    ax.set_yticks([])
    title = f"LUT '{lut.name}'{' (inverted)' if lut.inverted else ''}"
    if ruler is not None:
        title += f" - ruler {ruler.label}"
    ax.set_title(title)
    fig.tight_layout()
    return fig
