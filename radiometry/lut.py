"""
lut.py - Byte lookup tables for display.

A ``ByteLut`` holds three parallel uint8 channels (R, G, B).  ``build_lut``
bakes a transfer curve into such a table: entry ``i`` takes the base ramp
colour at the curve's intensity for position ``i / (N - 1)``.  With
``invert`` the position is read from the other end of the table, so an
inverted table is the plain table reversed.

Tables are immutable (read-only arrays).  A new window produces a new
table; ``LutCache`` memoizes the most recent ones so repeated requests
with the same inputs return the very same object.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Union

import matplotlib
import numpy as np
from matplotlib.colors import ListedColormap

from radiometry.errors import InvalidParameter
from radiometry.windowing import WindowLevel, normalize

logger = logging.getLogger(__name__)

DEFAULT_LUT_SIZE = 256
DEFAULT_CACHE_ENTRIES = 32

Curve = Callable[[np.ndarray], np.ndarray]


def _read_only(array: np.ndarray) -> np.ndarray:
    array = np.ascontiguousarray(array, dtype=np.uint8)
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class ByteLut:
    """Three uint8 channels of equal length, shape (3, N)."""
    channels: np.ndarray
    inverted: bool = False
    name: str = "gray"

    def __post_init__(self) -> None:
        channels = np.asarray(self.channels)
        if channels.ndim != 2 or channels.shape[0] != 3 or channels.shape[1] == 0:
            raise InvalidParameter(f"A ByteLut needs shape (3, N>0), got {channels.shape}.")
        object.__setattr__(self, "channels", _read_only(channels))

    @classmethod
    def grayscale(cls, size: int = DEFAULT_LUT_SIZE) -> "ByteLut":
        """Identity ramp: ``byte[i] = i`` scaled to 0..255 on every channel."""
        if size <= 0:
            raise InvalidParameter(f"LUT size must be > 0, got {size}.")
        ramp = np.rint(np.linspace(0, 255, size)).astype(np.uint8)
        return cls(np.vstack([ramp, ramp, ramp]), name="gray")

    @classmethod
    def from_channel(cls, channel: np.ndarray, name: str = "custom") -> "ByteLut":
        """Grey ramp from a single channel."""
        channel = np.asarray(channel, dtype=np.uint8).ravel()
        return cls(np.vstack([channel, channel, channel]), name=name)

    @classmethod
    def from_colormap(cls, name: str, size: int = DEFAULT_LUT_SIZE) -> "ByteLut":
        """Sample a matplotlib colormap into a byte ramp."""
        if size <= 0:
            raise InvalidParameter(f"LUT size must be > 0, got {size}.")
        rgba = matplotlib.colormaps[name](np.linspace(0.0, 1.0, size))
        rgb = np.rint(rgba[:, :3] * 255.0).astype(np.uint8)
        return cls(rgb.T, name=name)

    @property
    def size(self) -> int:
        return int(self.channels.shape[1])

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, index: int) -> tuple[int, int, int]:
        r, g, b = self.channels[:, index]
        return int(r), int(g), int(b)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ByteLut):
            return NotImplemented
        return self.inverted == other.inverted and np.array_equal(self.channels, other.channels)

    def __hash__(self) -> int:
        return hash((self.inverted, self.channels.tobytes()))

    def rgb(self) -> np.ndarray:
        """Table as an (N, 3) uint8 array."""
        return self.channels.T

    def as_colormap(self) -> ListedColormap:
        return ListedColormap(self.rgb() / 255.0, name=self.name)


def window_curve(wl: WindowLevel) -> Curve:
    """Curve over [0, 1] sweeping the level domain of *wl*."""
    span = wl.level_max - wl.level_min

    def curve(position: np.ndarray) -> np.ndarray:
        return normalize(wl.level_min + position * span, wl)

    return curve


def _as_ramp(base_ramp: Union[ByteLut, np.ndarray, None]) -> ByteLut:
    if base_ramp is None:
        return ByteLut.grayscale()
    if isinstance(base_ramp, ByteLut):
        return base_ramp
    base_ramp = np.asarray(base_ramp)
    if base_ramp.ndim == 1:
        return ByteLut.from_channel(base_ramp)
    return ByteLut(base_ramp)


def build_lut(
    curve: Union[Curve, WindowLevel],
    base_ramp: Union[ByteLut, np.ndarray, None] = None,
    invert: bool = False,
    size: int = DEFAULT_LUT_SIZE,
) -> ByteLut:
    """
    Bake *curve* into a byte lookup table.

    Parameters
    ----------
    curve : callable or WindowLevel
        Maps positions in [0, 1] to intensities in [0, 1].  A WindowLevel is
        turned into a curve with ``window_curve``.
    base_ramp : ByteLut, 1-D array or None
        Colours indexed by intensity.  Defaults to the grey identity ramp.
    invert : bool
        Read positions from the end of the table (photometric inversion).
    size : int
        Number of entries.

    Returns
    -------
    ByteLut
        Same inputs always give byte-identical tables.
    """
    if size <= 0:
        raise InvalidParameter(f"LUT size must be > 0, got {size}.")
    if isinstance(curve, WindowLevel):
        curve = window_curve(curve)
    ramp = _as_ramp(base_ramp)

    index = np.arange(size)
    if invert:
        index = size - 1 - index
    position = index / (size - 1) if size > 1 else np.zeros(size)

    intensity = np.clip(np.asarray(curve(position), dtype=np.float64), 0.0, 1.0)
    ramp_index = np.rint(intensity * (ramp.size - 1)).astype(np.intp)
    return ByteLut(ramp.channels[:, ramp_index], inverted=invert, name=ramp.name)


def apply_lut(normalized: np.ndarray, lut: ByteLut) -> np.ndarray:
    """Colour normalized intensities: returns uint8 RGB of shape (..., 3)."""
    normalized = np.clip(np.nan_to_num(np.asarray(normalized, dtype=np.float64)), 0.0, 1.0)
    index = np.rint(normalized * (lut.size - 1)).astype(np.intp)
    return lut.rgb()[index]


def window_rgb(
    real: np.ndarray,
    wl: WindowLevel,
    base_ramp: Union[ByteLut, np.ndarray, None] = None,
    invert: bool = False,
) -> np.ndarray:
    """
    Colour real values through *wl*: returns uint8 RGB of shape (..., 3).

    The window curve is evaluated on every value in float64 and only the
    resulting intensity is quantized onto the base ramp, so a narrow window
    keeps one grey level per ramp entry whatever the level domain.  With
    *invert* the ramp is read from its far end.
    """
    intensity = normalize(real, wl)
    if invert:
        intensity = 1.0 - intensity
    return apply_lut(intensity, _as_ramp(base_ramp))


class LutCache:
    """
    Thread-safe memo of built tables, keyed by everything that shapes them.

    At most *max_entries* tables are kept; the least recently used one is
    dropped first.
    """

    def __init__(self, max_entries: int = DEFAULT_CACHE_ENTRIES) -> None:
        if max_entries <= 0:
            raise InvalidParameter(f"LUT cache size must be > 0, got {max_entries}.")
        self.max_entries = max_entries
        self._tables: OrderedDict[Hashable, ByteLut] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._tables)

    def get(
        self,
        wl: WindowLevel,
        base_ramp: Optional[ByteLut] = None,
        invert: bool = False,
        size: int = DEFAULT_LUT_SIZE,
    ) -> ByteLut:
        ramp = _as_ramp(base_ramp)
        key = (wl, ramp.name, ramp.channels.tobytes(), bool(invert), int(size))
        with self._lock:
            lut = self._tables.get(key)
            if lut is not None:
                self._tables.move_to_end(key)
                return lut
            lut = build_lut(wl, ramp, invert=invert, size=size)
            self._tables[key] = lut
            if len(self._tables) > self.max_entries:
                self._tables.popitem(last=False)
            logger.debug("Built LUT for window %.2f/%.2f (%s)", wl.center, wl.width, wl.shape.name)
            return lut

    def clear(self) -> None:
        with self._lock:
            self._tables.clear()
