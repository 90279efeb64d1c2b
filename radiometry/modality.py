"""
modality.py - Stored pixel values to real-world values.

WHY THIS MATTERS
----------------
Stored samples are integers whose meaning depends on the scanner.  The
modality transform turns them into physical values:

    real = stored * RescaleSlope + RescaleIntercept        (most images)
    real = LUTData[stored - first_mapped]                  (Modality LUT)

Some images mark the area outside the patient with a padding value
(PixelPaddingValue, optionally a range up to PixelPaddingRangeLimit).
Those pixels are not anatomy and must not drive min/max, auto-windowing
or the histogram, so they are excluded when padding is applied.

References
----------
- DICOM PS3.3 §C.11.1 Modality LUT Module
- DICOM PS3.3 §C.7.5.1.1.2 Pixel Padding Value and Pixel Padding Range Limit
"""

import logging
import threading
from typing import Any, Optional, Union

import numpy as np
from pydicom.dataset import Dataset
from pydicom.pixels import apply_modality_lut

logger = logging.getLogger(__name__)

Number = Union[int, float]


def to_real_values(
    pixel_array: np.ndarray,
    slope: float = 1.0,
    intercept: float = 0.0,
) -> np.ndarray:
    """
    Apply a linear rescale to raw stored pixel values.

    Parameters
    ----------
    pixel_array : np.ndarray
        Raw pixel data as returned by ``ds.pixel_array``.
    slope : float
        RescaleSlope from the DICOM header (default 1.0).
    intercept : float
        RescaleIntercept from the DICOM header (default 0.0).

    Returns
    -------
    np.ndarray
        Float array of real values, same shape as *pixel_array*.
    """
    return np.asarray(pixel_array).astype(np.float64) * slope + intercept


class PixelValueMapper:
    """
    Modality transform of one image, with padding exclusion and a min/max cache.

    The min/max cache is keyed by the identity of the pixel buffer: the scan
    runs once per buffer and parameter pair, and only ``invalidate()`` or a
    different buffer triggers a new one.
    """

    def __init__(
        self,
        slope: float = 1.0,
        intercept: float = 0.0,
        bits_stored: int = 16,
        signed: bool = False,
        photometric_interpretation: str = "MONOCHROME2",
        padding_value: Optional[int] = None,
        padding_limit: Optional[int] = None,
        lut_dataset: Optional[Dataset] = None,
    ) -> None:
        self.slope = float(slope)
        self.intercept = float(intercept)
        self.bits_stored = int(bits_stored)
        self.signed = bool(signed)
        self.photometric_interpretation = photometric_interpretation
        self.padding_value = padding_value
        self.padding_limit = padding_limit
        # Dataset holding a ModalityLUTSequence; rescale is ignored when set
        self._lut_dataset = lut_dataset

        self._lock = threading.Lock()
        self._cached_buffer: Optional[np.ndarray] = None
        self._min_max_cache: dict[tuple[bool, bool], tuple[float, float]] = {}

    @classmethod
    def from_dataset(cls, ds: Dataset) -> "PixelValueMapper":
        """Read the modality transform attributes of *ds* (all optional)."""
        slope = ds.get("RescaleSlope")
        intercept = ds.get("RescaleIntercept")
        try:
            slope = float(slope) if slope is not None and slope != "" else 1.0
            intercept = float(intercept) if intercept is not None and intercept != "" else 0.0
        except (TypeError, ValueError):
            logger.warning("Malformed rescale slope/intercept (%r, %r); using identity", slope, intercept)
            slope, intercept = 1.0, 0.0
        if slope == 0.0:
            logger.warning("RescaleSlope of 0 ignored; using 1.0")
            slope = 1.0

        lut_dataset = None
        if ds.get("ModalityLUTSequence"):
            lut_dataset = Dataset()
            lut_dataset.ModalityLUTSequence = ds.ModalityLUTSequence
            lut_dataset.PixelRepresentation = ds.get("PixelRepresentation", 0)

        return cls(
            slope=slope,
            intercept=intercept,
            bits_stored=ds.get("BitsStored") or ds.get("BitsAllocated") or 16,
            signed=ds.get("PixelRepresentation", 0) == 1,
            photometric_interpretation=str(ds.get("PhotometricInterpretation", "MONOCHROME2")),
            padding_value=ds.get("PixelPaddingValue"),
            padding_limit=ds.get("PixelPaddingRangeLimit"),
            lut_dataset=lut_dataset,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def has_modality_lut(self) -> bool:
        return self._lut_dataset is not None

    @property
    def has_padding(self) -> bool:
        return self.padding_value is not None

    @property
    def is_photometric_inverse(self) -> bool:
        """MONOCHROME1: low values are displayed bright."""
        return self.photometric_interpretation.strip().upper() == "MONOCHROME1"

    @property
    def stored_range(self) -> tuple[int, int]:
        """Smallest and largest value representable with ``bits_stored``."""
        if self.signed:
            return -(1 << (self.bits_stored - 1)), (1 << (self.bits_stored - 1)) - 1
        return 0, (1 << self.bits_stored) - 1

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def padding_mask(self, stored: np.ndarray) -> np.ndarray:
        """True where *stored* holds a padding value."""
        stored = np.asarray(stored)
        if self.padding_value is None:
            return np.zeros(stored.shape, dtype=bool)
        if self.padding_limit is None:
            return stored == self.padding_value
        low = min(self.padding_value, self.padding_limit)
        high = max(self.padding_value, self.padding_limit)
        return (stored >= low) & (stored <= high)

    def _map(self, stored: np.ndarray) -> np.ndarray:
        if self._lut_dataset is not None:
            return np.asarray(apply_modality_lut(stored, self._lut_dataset), dtype=np.float64)
        return to_real_values(stored, self.slope, self.intercept)

    def to_real_value(
        self, stored: Union[Number, np.ndarray], padding: bool = True
    ) -> Union[float, None, np.ndarray, np.ma.MaskedArray]:
        """
        Map stored value(s) to real-world value(s).

        Parameters
        ----------
        stored : int, float or np.ndarray
            Raw stored sample(s).
        padding : bool
            Exclude padding values (when the image defines one).

        Returns
        -------
        float, None, np.ndarray or np.ma.MaskedArray
            A scalar in gives a float out, or None for a padded sample.  An
            array in gives a float64 array, masked where padding applies.
        """
        is_scalar = np.ndim(stored) == 0
        values = np.atleast_1d(np.asarray(stored))
        real = self._map(values)

        if padding and self.has_padding:
            mask = self.padding_mask(values)
            if is_scalar:
                return None if bool(mask[0]) else float(real[0])
            return np.ma.masked_array(real, mask=mask)

        if is_scalar:
            return float(real[0])
        return real

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def min_max(
        self,
        image: Optional[np.ndarray],
        exclude_low_bit_depth: bool = False,
        padding: bool = True,
    ) -> tuple[float, float]:
        """
        Real-value minimum and maximum of *image*, computed once per buffer.

        Parameters
        ----------
        image : np.ndarray or None
            Stored pixel buffer of the current frame.
        exclude_low_bit_depth : bool
            For unsigned images of 8 bits or less without a Modality LUT,
            return the mapped full stored range instead of scanning.
        padding : bool
            Exclude padding values from the statistics.

        Returns
        -------
        (float, float)
            ``(0.0, 0.0)`` when there is no pixel data to measure.
        """
        if image is None:
            logger.warning("No pixel data available for min/max")
            return 0.0, 0.0

        key = (bool(exclude_low_bit_depth), bool(padding))
        with self._lock:
            if self._cached_buffer is not image:
                self._cached_buffer = image
                self._min_max_cache = {}
            cached = self._min_max_cache.get(key)
            if cached is None:
                cached = self._compute_min_max(image, *key)
                self._min_max_cache[key] = cached
            return cached

    def _compute_min_max(
        self, image: np.ndarray, exclude_low_bit_depth: bool, padding: bool
    ) -> tuple[float, float]:
        if (
            exclude_low_bit_depth
            and self.bits_stored <= 8
            and not self.signed
            and not self.has_modality_lut
        ):
            low, high = self.stored_range
            bounds = sorted((self.to_real_value(low, padding=False), self.to_real_value(high, padding=False)))
            return float(bounds[0]), float(bounds[1])

        real = self.to_real_value(np.asarray(image), padding=padding)
        values = np.ma.compressed(real) if np.ma.isMaskedArray(real) else np.ravel(real)
        values = values[np.isfinite(values)]
        if values.size == 0:
            logger.warning("Pixel data holds no value outside padding; min/max set to 0")
            return 0.0, 0.0
        min_value, max_value = float(values.min()), float(values.max())
        logger.debug("Computed min/max: %.3f / %.3f", min_value, max_value)
        return min_value, max_value

    def invalidate(self) -> None:
        """Forget cached statistics (new buffer or frame)."""
        with self._lock:
            self._cached_buffer = None
            self._min_max_cache = {}

    def export_parameters(self) -> dict[str, Any]:
        """Parameters reproducing this transform exactly."""
        params: dict[str, Any] = {
            "rescale_slope": self.slope,
            "rescale_intercept": self.intercept,
            "bits_stored": self.bits_stored,
            "signed": self.signed,
            "padding_value": self.padding_value,
            "padding_limit": self.padding_limit,
        }
        if self._lut_dataset is not None:
            item = self._lut_dataset.ModalityLUTSequence[0]
            params["modality_lut_descriptor"] = [int(v) for v in item.LUTDescriptor]
        return params
