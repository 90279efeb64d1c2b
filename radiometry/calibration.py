"""
calibration.py - Physical pixel size and pixel value unit of an image.

WHY THIS MATTERS
----------------
Every distance measured on screen (rulers, lengths, areas) is a pixel count
multiplied by the pixel size.  DICOM offers several attributes that can
carry that size, and they do not mean the same thing:

    PixelSpacing               (0028,0030)  size in the patient
    ImagerPixelSpacing         (0018,1164)  size at the detector face
    NominalScannedPixelSpacing (0018,2010)  size on a digitised film
    SequenceOfUltrasoundRegions(0018,6011)  per-region calibration (US)
    PixelAspectRatio           (0028,0034)  shape only, no physical size

For projection radiography the detector spacing overstates anatomy by the
geometric magnification (source-to-detector / source-to-patient), so it is
corrected when the modality is prone to it and a factor is available.

Resolution is an ordered list of small resolver functions; the first one
returning a result wins.  Nothing here raises on missing or malformed
metadata: an image without any usable attribute is shown in pixels.

References
----------
- DICOM PS3.3 §10.7.1.3 Pixel Spacing Value Order and Valid Values
- D. Clunie, "Pixel spacing and magnification" (dclunie.com)
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, NamedTuple, Optional

from pydicom.dataset import Dataset

from radiometry.units import Unit

if TYPE_CHECKING:
    from radiometry.presentation import DisplayOverrides

logger = logging.getLogger(__name__)

# Projection modalities whose detector spacing includes geometric magnification.
MAGNIFICATION_MODALITIES = frozenset({"CR", "DX", "IO", "MG", "PX", "RF", "XA"})

SECONDARY_CAPTURE_PREFIX = "1.2.840.10008.5.1.4.1.1.7"

# PhysicalUnitsX/YDirection code for centimetres, RegionSpatialFormat for 2D.
_US_UNIT_CM = 3
_US_SPATIAL_2D = 1


@dataclass(frozen=True)
class CalibrationInfo:
    """Resolved calibration of one image.  Re-resolving builds a new instance."""
    pixel_size_x: float = 1.0
    pixel_size_y: float = 1.0
    unit: Unit = Unit.PIXEL
    value_unit: Optional[str] = None
    description: Optional[str] = None

    @property
    def pixel_size(self) -> float:
        """Size of a square display pixel (the finer of the two axes)."""
        return min(self.pixel_size_x, self.pixel_size_y)

    @property
    def rescale_x(self) -> float:
        return self.pixel_size_x / self.pixel_size

    @property
    def rescale_y(self) -> float:
        return self.pixel_size_y / self.pixel_size

    @property
    def is_calibrated(self) -> bool:
        return self.unit is not Unit.PIXEL


class _Spacing(NamedTuple):
    x: float
    y: float
    unit: Unit
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Attribute helpers
# ---------------------------------------------------------------------------

def _get_floats(ds: Dataset, keyword: str, count: int) -> Optional[list[float]]:
    """Return exactly *count* floats from *keyword*, or None if absent/malformed."""
    value = ds.get(keyword)
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            values = [float(value)]
        else:
            values = [float(v) for v in value]
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed %s: %r", keyword, value)
        return None
    if len(values) != count:
        logger.warning("Ignoring %s with %d value(s), expected %d", keyword, len(values), count)
        return None
    return values


def _get_float(ds: Dataset, keyword: str) -> Optional[float]:
    values = _get_floats(ds, keyword, 1)
    return values[0] if values else None


def _get_text(ds: Dataset, keyword: str) -> Optional[str]:
    value = ds.get(keyword)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _valid_pair(values: Optional[list[float]]) -> bool:
    return values is not None and values[0] > 0.0 and values[1] > 0.0


def _aspect_stretch(aspects: Optional[list[float]]) -> Optional[tuple[float, float]]:
    """Pixel size (x, y) stretching the image so displayed pixels are square."""
    if aspects is None or aspects[0] <= 0 or aspects[1] <= 0:
        return None
    vertical, horizontal = int(aspects[0]), int(aspects[1])
    if vertical == horizontal:
        return None
    if horizontal < vertical:
        return 1.0, vertical / horizontal
    return horizontal / vertical, 1.0


# ---------------------------------------------------------------------------
# Spacing resolvers, evaluated in order
# ---------------------------------------------------------------------------

def _from_presentation(
    ds: Dataset, modality: Optional[str], overrides: Optional["DisplayOverrides"]
) -> Optional[_Spacing]:
    if overrides is None:
        return None
    spacing = overrides.pixel_spacing
    if spacing is not None and spacing[0] > 0.0 and spacing[1] > 0.0:
        return _Spacing(spacing[1], spacing[0], Unit.MILLIMETER, "Presentation")
    stretch = _aspect_stretch(
        list(overrides.pixel_aspect_ratio) if overrides.pixel_aspect_ratio else None
    )
    if stretch is not None:
        return _Spacing(stretch[0], stretch[1], Unit.PIXEL)
    return None


def _from_pixel_spacing(
    ds: Dataset, modality: Optional[str], overrides: Optional["DisplayOverrides"]
) -> Optional[_Spacing]:
    # PixelSpacing is (row spacing, column spacing) = (y, x)
    values = _get_floats(ds, "PixelSpacing", 2)
    if not _valid_pair(values):
        return None
    description = _get_text(ds, "PixelSpacingCalibrationDescription")
    return _Spacing(values[1], values[0], Unit.MILLIMETER, description)


def magnification_factor(ds: Dataset) -> Optional[float]:
    """Estimated radiographic magnification, or None when it cannot be derived."""
    factor = _get_float(ds, "EstimatedRadiographicMagnificationFactor")
    if factor is None:
        source_to_detector = _get_float(ds, "DistanceSourceToDetector")
        source_to_patient = _get_float(ds, "DistanceSourceToPatient")
        if source_to_detector is not None and source_to_patient:
            factor = source_to_detector / source_to_patient
    if factor is not None and factor > 0.0:
        return factor
    return None


def _from_imager_spacing(
    ds: Dataset, modality: Optional[str], overrides: Optional["DisplayOverrides"]
) -> Optional[_Spacing]:
    values = _get_floats(ds, "ImagerPixelSpacing", 2)
    if not _valid_pair(values):
        return None
    row, col = values
    description = "At Detector"
    if modality in MAGNIFICATION_MODALITIES:
        factor = magnification_factor(ds)
        if factor is not None:
            row, col = row / factor, col / factor
            description = "Magnified"
            logger.debug("Applied magnification factor %.4f to detector spacing", factor)
    return _Spacing(col, row, Unit.MILLIMETER, description)


def _from_nominal_spacing(
    ds: Dataset, modality: Optional[str], overrides: Optional["DisplayOverrides"]
) -> Optional[_Spacing]:
    values = _get_floats(ds, "NominalScannedPixelSpacing", 2)
    if not _valid_pair(values):
        return None
    return _Spacing(values[1], values[0], Unit.MILLIMETER, "At scanner")


def unique_spatial_region(ds: Dataset) -> Optional[Dataset]:
    """
    The single 2D ultrasound region calibrated in centimetres.

    Several regions are accepted only when they all carry the same deltas.
    """
    regions = ds.get("SequenceOfUltrasoundRegions")
    if not regions:
        return None

    spatial = [
        r for r in regions
        if r.get("RegionSpatialFormat") == _US_SPATIAL_2D
        and r.get("PhysicalUnitsXDirection") == _US_UNIT_CM
        and r.get("PhysicalUnitsYDirection") == _US_UNIT_CM
    ]
    if not spatial:
        return None
    first = spatial[0]
    deltas = (first.get("PhysicalDeltaX"), first.get("PhysicalDeltaY"))
    for region in spatial[1:]:
        if (region.get("PhysicalDeltaX"), region.get("PhysicalDeltaY")) != deltas:
            logger.debug("Ultrasound regions disagree on calibration; none used")
            return None
    return first


def _from_ultrasound_region(
    ds: Dataset, modality: Optional[str], overrides: Optional["DisplayOverrides"]
) -> Optional[_Spacing]:
    if modality != "US":
        return None
    region = unique_spatial_region(ds)
    if region is None:
        return None
    calib_x = _get_float(region, "PhysicalDeltaX")
    calib_y = _get_float(region, "PhysicalDeltaY")
    if calib_x is None or calib_y is None:
        return None
    calib_x, calib_y = abs(calib_x), abs(calib_y)
    if calib_x <= 0.0:
        return None
    # Unequal deltas would stretch the image, leave it uncalibrated
    if abs(calib_x - calib_y) > 1e-6 * max(calib_x, calib_y):
        logger.warning(
            "Ignoring anisotropic ultrasound calibration (dx=%g, dy=%g)", calib_x, calib_y
        )
        return None
    return _Spacing(calib_x, calib_y, Unit.CENTIMETER)


def _from_aspect_ratio(
    ds: Dataset, modality: Optional[str], overrides: Optional["DisplayOverrides"]
) -> Optional[_Spacing]:
    stretch = _aspect_stretch(_get_floats(ds, "PixelAspectRatio", 2))
    if stretch is None:
        return None
    return _Spacing(stretch[0], stretch[1], Unit.PIXEL)


SpacingResolver = Callable[
    [Dataset, Optional[str], Optional["DisplayOverrides"]], Optional[_Spacing]
]

SPACING_RESOLVERS: list[SpacingResolver] = [
    _from_presentation,
    _from_pixel_spacing,
    _from_imager_spacing,
    _from_nominal_spacing,
    _from_ultrasound_region,
    _from_aspect_ratio,
]


def resolve_value_unit(ds: Dataset, modality: Optional[str]) -> Optional[str]:
    """Unit of the real pixel values (output of the modality transform)."""
    # OD, HU, US are defined terms of RescaleType; PET and others use Units
    unit = _get_text(ds, "RescaleType") or _get_text(ds, "Units")
    if unit is None and modality == "CT":
        sop_class = _get_text(ds, "SOPClassUID")
        if sop_class and not sop_class.startswith(SECONDARY_CAPTURE_PREFIX):
            unit = "HU"
    return unit


def resolve_calibration(
    ds: Optional[Dataset],
    modality: Optional[str] = None,
    overrides: Optional["DisplayOverrides"] = None,
) -> CalibrationInfo:
    """
    Resolve pixel size, unit and value unit of an image.

    Parameters
    ----------
    ds : Dataset
        Image dataset (only attributes are read).
    modality : str, optional
        Overrides the dataset Modality.
    overrides : DisplayOverrides, optional
        Presentation state pixel spacing / aspect ratio, applied first.

    Returns
    -------
    CalibrationInfo
        ``1.0 x 1.0`` in ``Unit.PIXEL`` when no source applies.
    """
    if ds is None:
        return CalibrationInfo()
    modality = modality or _get_text(ds, "Modality")

    for resolver in SPACING_RESOLVERS:
        spacing = resolver(ds, modality, overrides)
        if spacing is not None:
            break
    else:
        logger.debug("No spacing attribute found; image stays in pixel units")
        spacing = _Spacing(1.0, 1.0, Unit.PIXEL)

    return CalibrationInfo(
        pixel_size_x=spacing.x,
        pixel_size_y=spacing.y,
        unit=spacing.unit,
        value_unit=resolve_value_unit(ds, modality),
        description=spacing.description,
    )
