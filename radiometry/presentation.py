"""
presentation.py - Overrides supplied by a presentation state.

A Grayscale Softcopy Presentation State can carry its own window, an
inverted presentation LUT, and a displayed area with its own pixel spacing
and zoom mode.  Only these values are read here; they are handed to the
calibration resolver, the preset builder and the LUT builder as plain
overrides.
"""

import logging
from dataclasses import dataclass
from typing import Hashable, Iterable, Optional

from pydicom.dataset import Dataset

from radiometry.config import DisplaySettings
from radiometry.windowing import TransferShape, sequence_shapes, shape_from_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisplayOverrides:
    """Values that take precedence over the image's own attributes."""
    center: Optional[float] = None
    width: Optional[float] = None
    shape: Optional[TransferShape] = None
    explanation: Optional[str] = None
    inverse_lut: Optional[bool] = None
    pixel_spacing: Optional[tuple[float, float]] = None       # (row, column)
    pixel_aspect_ratio: Optional[tuple[int, int]] = None      # (vertical, horizontal)
    zoom: Optional[float] = None                              # 0.0 means "fit to viewport"


def _first(value):
    if value is None or isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
        return value
    values = list(value)
    return values[0] if values else None


def _read_voi(pr: Dataset, overrides: dict) -> None:
    items = pr.get("SoftcopyVOILUTSequence")
    if not items:
        return
    item = items[0]
    center = _first(item.get("WindowCenter"))
    width = _first(item.get("WindowWidth"))
    if center is not None and width is not None:
        overrides["center"] = float(center)
        overrides["width"] = float(width)
        overrides["shape"] = shape_from_name(item.get("VOILUTFunction"))
        explanation = _first(item.get("WindowCenterWidthExplanation"))
        if explanation:
            overrides["explanation"] = str(explanation).strip()
        return
    shapes = sequence_shapes(item)
    if shapes:
        shape = shapes[0]
        overrides["center"] = shape.first_value + len(shape.table) / 2.0
        overrides["width"] = float(len(shape.table))
        overrides["shape"] = shape
        overrides["explanation"] = shape.name


def _read_displayed_area(pr: Dataset, frame: int, overrides: dict) -> None:
    areas = pr.get("DisplayedAreaSelectionSequence")
    if not areas:
        return
    if frame >= len(areas):
        logger.debug("No displayed area for frame %d", frame)
        return
    area = areas[frame]

    spacing = area.get("PresentationPixelSpacing")
    if spacing is not None and len(spacing) == 2:
        overrides["pixel_spacing"] = (float(spacing[0]), float(spacing[1]))
    else:
        aspects = area.get("PresentationPixelAspectRatio")
        if aspects is not None and len(aspects) == 2:
            overrides["pixel_aspect_ratio"] = (int(aspects[0]), int(aspects[1]))

    mode = str(area.get("PresentationSizeMode", "") or "").strip().upper()
    if mode == "SCALE TO FIT":
        overrides["zoom"] = 0.0
    elif mode == "MAGNIFY":
        ratio = area.get("PresentationPixelMagnificationRatio")
        if ratio is not None:
            overrides["zoom"] = float(ratio)
    elif mode == "TRUE SIZE":
        # Needs a calibrated screen (physical size of a screen pixel)
        logger.debug("TRUE SIZE presentation mode is not applied")


def read_presentation_state(pr: Optional[Dataset], frame: int = 0) -> DisplayOverrides:
    """
    Extract display overrides from a presentation state dataset.

    Parameters
    ----------
    pr : Dataset or None
        Presentation state.  None gives empty overrides.
    frame : int
        Frame index selecting the displayed area item.

    Returns
    -------
    DisplayOverrides
    """
    if pr is None:
        return DisplayOverrides()

    overrides: dict = {}
    try:
        _read_voi(pr, overrides)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring malformed presentation window: %s", exc)
    try:
        _read_displayed_area(pr, frame, overrides)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring malformed displayed area: %s", exc)

    shape = str(pr.get("PresentationLUTShape", "") or "").strip().upper()
    if shape == "INVERSE":
        overrides["inverse_lut"] = True
    elif shape == "IDENTITY":
        overrides["inverse_lut"] = False

    return DisplayOverrides(**overrides)


def window_targets(
    source: Hashable,
    views: Iterable[Hashable],
    settings: DisplaySettings,
) -> list[Hashable]:
    """Views that receive a window change made in *source*."""
    if settings.apply_to_all_views:
        targets = [v for v in views if v != source]
        return [source] + targets
    return [source]
