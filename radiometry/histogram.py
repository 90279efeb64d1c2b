"""
histogram.py - Histogram of real pixel values.

Bins are equal-width slices of ``[min_value, max_value)``; values outside
the domain are counted in the first or last bin.  The logarithmic and
cumulative views are computed on demand from the raw counts, which are
never modified, so switching either view off gives back the original
numbers.
"""

import csv
import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from radiometry.errors import InvalidParameter
from radiometry.windowing import WindowLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class HistogramBins:
    """Raw counts (read-only float32) over ``[min_value, max_value)``."""
    counts: np.ndarray
    min_value: float
    max_value: float

    def __post_init__(self) -> None:
        counts = np.array(self.counts, dtype=np.float32)
        counts.flags.writeable = False
        object.__setattr__(self, "counts", counts)

    @property
    def bin_count(self) -> int:
        return int(self.counts.size)

    @property
    def bin_width(self) -> float:
        return (self.max_value - self.min_value) / self.bin_count

    def bin_range(self, index: int) -> tuple[float, float]:
        """Real-value range ``[lo, hi)`` covered by bin *index*."""
        if not 0 <= index < self.bin_count:
            raise IndexError(f"Bin {index} out of range 0..{self.bin_count - 1}")
        width = self.bin_width
        return self.min_value + index * width, self.min_value + (index + 1) * width

    def bin_for_value(self, value: float) -> int:
        return int(_bin_indices(np.asarray([value], dtype=np.float64), self.bin_count,
                                self.min_value, self.max_value)[0])

    def bin_label(self, index: int) -> str:
        """Integer class label, e.g. ``"-10...-6"``, or a single value."""
        lo, hi = self.bin_range(index)
        first = math.ceil(lo)
        last = math.floor(hi)
        if last >= hi:
            last -= 1
        if last > first:
            return f"{first}...{last}"
        return str(first)

    def display_values(self, logarithmic: bool = False, accumulate: bool = False) -> np.ndarray:
        """Counts as drawn: optional ``log1p`` per bin, then optional running sum."""
        values = self.counts.astype(np.float64)
        if logarithmic:
            values = np.log1p(values)
        if accumulate:
            values = np.cumsum(values)
        return values

    def display_value(self, index: int, logarithmic: bool = False, accumulate: bool = False) -> float:
        return float(self.display_values(logarithmic, accumulate)[index])

    def max_display_value(self, logarithmic: bool = False, accumulate: bool = False) -> float:
        """Vertical scale of the plot (at least 1)."""
        values = self.display_values(logarithmic, accumulate)
        top = float(values[-1]) if accumulate else float(values.max())
        return max(top, 1.0)

    def lut_indices(self, wl: WindowLevel, lut_size: int = 256) -> np.ndarray:
        """
        Entry of a ``build_lut(wl)`` table colouring each bin.

        Such a table spans ``[wl.level_min, wl.level_max]``, so each bin
        centre is placed in that domain; the window curve is already baked
        into the table.
        """
        centres = self.min_value + (np.arange(self.bin_count) + 0.5) * self.bin_width
        span = wl.level_max - wl.level_min
        if span <= 0:
            return np.zeros(self.bin_count, dtype=np.intp)
        position = np.clip((centres - wl.level_min) / span, 0.0, 1.0)
        return np.rint(position * (lut_size - 1)).astype(np.intp)

    def to_csv(self, path: str) -> None:
        """Write ``Class,Occurrences`` rows, one per bin."""
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["Class", "Occurrences"])
            for i, count in enumerate(self.counts):
                writer.writerow([self.bin_label(i), int(count)])
        logger.info("Saved histogram (%d bins) to %s", self.bin_count, path)


def _bin_indices(values: np.ndarray, bin_count: int, min_value: float, max_value: float) -> np.ndarray:
    width = (max_value - min_value) / bin_count
    index = np.floor((values - min_value) / width)
    return np.clip(index, 0, bin_count - 1).astype(np.intp)


def compute_histogram(
    values: Union[np.ndarray, Sequence[float], None],
    bin_count: int,
    min_value: float,
    max_value: float,
) -> HistogramBins:
    """
    Count *values* into *bin_count* equal bins over ``[min_value, max_value)``.

    Parameters
    ----------
    values : array-like or None
        Real values; masked and NaN entries are skipped.  None counts nothing.
    bin_count : int
        Number of bins (> 0).
    min_value, max_value : float
        Domain of the histogram; ``max_value`` must exceed ``min_value``.

    Returns
    -------
    HistogramBins

    Raises
    ------
    InvalidParameter
        If ``bin_count <= 0`` or the domain is empty.
    """
    if bin_count <= 0:
        raise InvalidParameter(f"Histogram needs at least one bin, got {bin_count}.")
    if not (math.isfinite(min_value) and math.isfinite(max_value)) or max_value <= min_value:
        raise InvalidParameter(f"Empty histogram domain [{min_value}, {max_value}).")

    if values is None:
        logger.warning("No values to count; histogram is empty")
        return HistogramBins(np.zeros(bin_count), float(min_value), float(max_value))

    if np.ma.isMaskedArray(values):
        data = np.ma.compressed(values).astype(np.float64)
    else:
        data = np.ravel(np.asarray(values, dtype=np.float64))
    data = data[~np.isnan(data)]

    index = _bin_indices(data, bin_count, min_value, max_value)
    counts = np.bincount(index, minlength=bin_count)
    return HistogramBins(counts, float(min_value), float(max_value))


def histogram_for_window(
    real_values: Optional[np.ndarray],
    wl: WindowLevel,
    bin_count: int = 256,
) -> HistogramBins:
    """Histogram over the level domain of *wl* (one extra unit at the top)."""
    return compute_histogram(real_values, bin_count, wl.level_min, wl.level_max + 1.0)
