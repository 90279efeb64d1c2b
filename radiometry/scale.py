"""
scale.py - Ruler length on screen from pixel spacing and zoom.

A ruler is only useful when its length is a round number.  Starting from
the power of ten just above the largest length that fits on screen, the
length walks down the 1 -> 5 -> 2 -> 1 (x10^n) progression until the
ruler fits:

    1000 -> 500 -> 200 -> 100 -> 50 -> 20 -> 10 ...
          /2     /2.5   /2     /2    /2.5  /2

``ratio`` is always the physical length covered by one screen pixel
(pixel size / zoom).
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from radiometry.calibration import CalibrationInfo
from radiometry.config import DisplaySettings
from radiometry.units import Unit, format_length

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 50


def geometric_divisor(length: float) -> float:
    """Step to the next smaller round length: 2.5 after a 5, otherwise 2."""
    shift = math.floor(math.log10(length) + 0.1)
    first_digit = int(length / 10.0 ** shift + 0.5)
    return 2.5 if first_digit == 5 else 2.0


def solve_scale(ratio: float, max_screen_length: float) -> float:
    """
    Largest round physical length whose screen size fits *max_screen_length*.

    Parameters
    ----------
    ratio : float
        Physical length per screen pixel.
    max_screen_length : float
        Longest ruler allowed on screen, in screen pixels.

    Returns
    -------
    float
        Physical length of the ruler, or 0.0 when no length could be found
        (non-positive input, or the iteration cap was reached).
    """
    if not (ratio > 0.0 and max_screen_length > 0.0):
        logger.debug("No ruler for ratio=%r, max length=%r", ratio, max_screen_length)
        return 0.0
    if not (math.isfinite(ratio) and math.isfinite(max_screen_length)):
        return 0.0

    digits = math.floor(math.log10(max_screen_length * ratio) + 1)
    length = 10.0 ** digits

    loop = 0
    while length / ratio > max_screen_length:
        length /= geometric_divisor(length)
        loop += 1
        if loop > MAX_ITERATIONS:
            logger.warning(
                "Ruler length did not converge (ratio=%g, max length=%g)",
                ratio, max_screen_length,
            )
            return 0.0
    return length


@dataclass(frozen=True)
class Ruler:
    """Everything a painter needs to draw one ruler."""
    screen_length: float      # in screen pixels
    physical_length: float    # in the calibration unit
    unit: Unit                # unit of ``text``
    text: str
    divisions: int            # major ticks
    minor_ticks: bool         # draw 10 sub-ticks per division
    description: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.text} {self.unit.abbreviation}"


def _divisions(text: str) -> int:
    if "5" in text:
        return 5
    if "2" in text:
        return 2
    return 10


def compute_ruler(
    calibration: CalibrationInfo,
    zoom: float,
    image_extent: int,
    viewport_extent: float,
    vertical: bool = False,
    settings: Optional[DisplaySettings] = None,
) -> Optional[Ruler]:
    """
    Compute the horizontal (or vertical) ruler for the current view.

    Parameters
    ----------
    calibration : CalibrationInfo
        Resolved pixel calibration of the image.
    zoom : float
        Screen pixels per (square) display pixel.
    image_extent : int
        Image width (or height when *vertical*) in pixels.
    viewport_extent : float
        Viewport width (or height) in screen pixels.
    vertical : bool
        Compute the vertical ruler.
    settings : DisplaySettings, optional
        Minimum ruler lengths and minor tick spacing.

    Returns
    -------
    Ruler or None
        None when the ruler would be too short to be drawn.
    """
    settings = settings or DisplaySettings.from_config()
    if zoom <= 0.0 or image_extent <= 0:
        return None

    ratio = calibration.pixel_size / zoom
    rescale = calibration.rescale_y if vertical else calibration.rescale_x
    max_length = int(min(zoom * image_extent * rescale, viewport_extent / 2.0))

    physical = solve_scale(ratio, max_length)
    screen_length = physical / ratio
    minimum = settings.ruler_min_vertical if vertical else settings.ruler_min_horizontal
    if screen_length <= minimum:
        return None

    _, unit, text = format_length(physical, calibration.unit)
    divisions = _divisions(text)
    return Ruler(
        screen_length=screen_length,
        physical_length=physical,
        unit=unit,
        text=text,
        divisions=divisions,
        minor_ticks=screen_length / divisions > settings.ruler_minor_tick_spacing,
        description=calibration.description,
    )
