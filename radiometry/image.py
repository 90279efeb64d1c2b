"""
image.py - One displayable image and its cached derived state.

``DisplayImage`` ties the pieces together for a single frame of a DICOM
dataset: calibration, modality transform, min/max, presets, transfer
shapes, lookup tables, histogram, ruler and slice geometry.  Each derived
value is computed on first use, under a lock, and kept until
``replace_pixels`` swaps the pixel buffer.
"""

import logging
import threading
from typing import Any, Callable, Optional

import numpy as np
from pydicom.dataset import Dataset

from radiometry.calibration import CalibrationInfo, resolve_calibration
from radiometry.config import DisplaySettings
from radiometry.geometry import SliceGeometry, slice_geometry_from_dataset
from radiometry.histogram import HistogramBins, histogram_for_window
from radiometry.lut import ByteLut, LutCache, window_rgb
from radiometry.modality import PixelValueMapper
from radiometry.presentation import DisplayOverrides
from radiometry.scale import Ruler, compute_ruler
from radiometry.windowing import (
    Preset,
    TransferShape,
    WindowLevel,
    build_presets,
    default_preset,
    lut_shapes,
    window_with_range,
)

logger = logging.getLogger(__name__)

_UNSET = object()


class DisplayImage:
    """
    Display state of one frame.

    Parameters
    ----------
    ds : Dataset
        Image dataset.
    frame : int
        Frame index for multi-frame images.
    settings : DisplaySettings, optional
        Display preferences snapshot.  Defaults to the configuration.
    overrides : DisplayOverrides, optional
        Presentation state overrides.
    config : dict, optional
        Configuration used for modality presets.  Defaults to ``CONFIG``.
    """

    def __init__(
        self,
        ds: Dataset,
        frame: int = 0,
        settings: Optional[DisplaySettings] = None,
        overrides: Optional[DisplayOverrides] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> None:
        self.dataset = ds
        self.frame = frame
        self.settings = settings or DisplaySettings.from_config(config)
        self.overrides = overrides or DisplayOverrides()
        self._config = config

        self._lock = threading.RLock()
        self._pixels: Any = _UNSET
        self._calibration: Optional[CalibrationInfo] = None
        self._mapper: Optional[PixelValueMapper] = None
        self._presets: Optional[list[Preset]] = None
        self._shapes: Optional[list[TransferShape]] = None
        self._luts = LutCache(self.settings.lut_cache_entries)

    def _once(self, attr: str, factory: Callable[[], Any], unset: Any = None) -> Any:
        value = getattr(self, attr)
        if value is unset:
            with self._lock:
                value = getattr(self, attr)
                if value is unset:
                    value = factory()
                    setattr(self, attr, value)
        return value

    # ------------------------------------------------------------------
    # Pixels and metadata
    # ------------------------------------------------------------------

    @property
    def modality(self) -> Optional[str]:
        return self.dataset.get("Modality")

    def _load_pixels(self) -> Optional[np.ndarray]:
        if "PixelData" not in self.dataset:
            logger.warning("Dataset has no pixel data")
            return None
        try:
            pixels = self.dataset.pixel_array
        except Exception as exc:
            logger.warning("Could not decode pixel data: %s", exc)
            return None
        frames = int(self.dataset.get("NumberOfFrames", 1) or 1)
        if frames > 1:
            if not 0 <= self.frame < frames:
                logger.warning("Frame %d out of range (%d frames)", self.frame, frames)
                return None
            pixels = pixels[self.frame]
        return pixels

    @property
    def pixels(self) -> Optional[np.ndarray]:
        """Stored samples of the current frame, or None when unavailable."""
        return self._once("_pixels", self._load_pixels, unset=_UNSET)

    def replace_pixels(self, pixels: Optional[np.ndarray]) -> None:
        """Swap the pixel buffer and drop every statistic derived from it."""
        with self._lock:
            self._pixels = pixels
            if self._mapper is not None:
                self._mapper.invalidate()
            self._presets = None
            self._shapes = None
            self._luts.clear()

    @property
    def calibration(self) -> CalibrationInfo:
        return self._once(
            "_calibration", lambda: resolve_calibration(self.dataset, overrides=self.overrides)
        )

    @property
    def mapper(self) -> PixelValueMapper:
        return self._once("_mapper", lambda: PixelValueMapper.from_dataset(self.dataset))

    def min_max(self, exclude_low_bit_depth: bool = True) -> tuple[float, float]:
        return self.mapper.min_max(
            self.pixels,
            exclude_low_bit_depth=exclude_low_bit_depth,
            padding=self.settings.apply_pixel_padding,
        )

    def real_values(self) -> Optional[np.ndarray]:
        pixels = self.pixels
        if pixels is None:
            return None
        return self.mapper.to_real_value(pixels, padding=self.settings.apply_pixel_padding)

    # ------------------------------------------------------------------
    # Windowing
    # ------------------------------------------------------------------

    def presets(self) -> list[Preset]:
        def factory() -> list[Preset]:
            min_value, max_value = self.min_max()
            return build_presets(
                self.dataset,
                min_value,
                max_value,
                overrides=self.overrides,
                config=self._config,
            )

        return self._once("_presets", factory)

    def default_preset(self) -> Preset:
        return default_preset(self.presets(), *self.min_max())

    def lut_shapes(self) -> list[TransferShape]:
        return self._once("_shapes", lambda: lut_shapes(self.presets()))

    def window_level(
        self,
        preset: Optional[Preset] = None,
        center: Optional[float] = None,
        width: Optional[float] = None,
        shape: Optional[TransferShape] = None,
    ) -> WindowLevel:
        """Window from *preset* (default preset if None) with optional overrides."""
        base = (preset or self.default_preset()).window_level
        min_value, max_value = self.min_max()
        return window_with_range(
            base.center if center is None else center,
            base.width if width is None else width,
            shape or base.shape,
            min_value,
            max_value,
        )

    def is_inverse_lut(self) -> bool:
        inverse = self.overrides.inverse_lut
        if inverse is None:
            inverse = self.settings.inverse_lut
        return bool(inverse) != self.mapper.is_photometric_inverse

    def base_ramp(self) -> ByteLut:
        name = self.settings.default_colormap
        if name == "gray":
            return ByteLut.grayscale(self.settings.lut_size)
        return ByteLut.from_colormap(name, self.settings.lut_size)

    def lut(
        self,
        wl: WindowLevel,
        base_ramp: Optional[ByteLut] = None,
        invert: Optional[bool] = None,
    ) -> ByteLut:
        return self._luts.get(
            wl,
            base_ramp or self.base_ramp(),
            invert=self.is_inverse_lut() if invert is None else invert,
            size=self.settings.lut_size,
        )

    def display_bytes(
        self,
        wl: WindowLevel,
        base_ramp: Optional[ByteLut] = None,
        invert: Optional[bool] = None,
    ) -> Optional[np.ndarray]:
        """RGB bytes of the frame through *wl*, or None without pixel data."""
        real = self.real_values()
        if real is None:
            return None
        return window_rgb(
            real,
            wl,
            base_ramp or self.base_ramp(),
            invert=self.is_inverse_lut() if invert is None else invert,
        )

    def histogram(self, wl: WindowLevel, bin_count: Optional[int] = None) -> HistogramBins:
        return histogram_for_window(self.real_values(), wl, bin_count or self.settings.histogram_bins)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def zoom(self, fit_zoom: float) -> float:
        """Presentation zoom, or *fit_zoom* when none (or "scale to fit") applies."""
        if self.overrides.zoom:
            return self.overrides.zoom
        return fit_zoom

    def rulers(
        self, zoom: float, viewport_width: float, viewport_height: float
    ) -> tuple[Optional[Ruler], Optional[Ruler]]:
        """Horizontal and vertical rulers for the current view."""
        columns = int(self.dataset.get("Columns") or 0)
        rows = int(self.dataset.get("Rows") or 0)
        horizontal = compute_ruler(
            self.calibration, zoom, columns, viewport_width, settings=self.settings
        )
        vertical = compute_ruler(
            self.calibration, zoom, rows, viewport_height, vertical=True, settings=self.settings
        )
        return horizontal, vertical

    def slice_geometry(self, display: bool = True) -> Optional[SliceGeometry]:
        return slice_geometry_from_dataset(self.dataset, self.calibration, display=display)
