"""
units.py - Length units and human-readable length labels.

Each unit knows its size in metres and its neighbours in a chain (metric
or imperial), so a ruler length can be moved to the unit that gives the
most readable number: 0.0004 mm becomes 400 nm and 25400 mm becomes
25.40 m.  ``Unit.PIXEL`` is used for uncalibrated images and has no
neighbours.
"""

import logging
import math
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

# Switch to scientific notation outside this range.
SCIENTIFIC_LOW = 0.001
SCIENTIFIC_HIGH = 50000.0


class Unit(Enum):
    """Length unit: (abbreviation, full name, size in metres)."""

    PIXEL = ("pix", "pixel", 1.0)
    NANOMETER = ("nm", "nanometer", 1.0e-9)
    MICROMETER = ("µm", "micrometer", 1.0e-6)
    MILLIMETER = ("mm", "millimeter", 1.0e-3)
    CENTIMETER = ("cm", "centimeter", 1.0e-2)
    METER = ("m", "meter", 1.0)
    KILOMETER = ("km", "kilometer", 1.0e3)
    MICROINCH = ("µin", "microinch", 2.54e-8)
    MIL = ("mil", "mil", 2.54e-5)
    INCH = ("in", "inch", 2.54e-2)
    FOOT = ("ft", "foot", 0.3048)
    YARD = ("yd", "yard", 0.9144)
    MILE = ("mi", "mile", 1609.344)

    @property
    def abbreviation(self) -> str:
        return self.value[0]

    @property
    def full_name(self) -> str:
        return self.value[1]

    @property
    def meters(self) -> float:
        return self.value[2]

    @property
    def down_unit(self) -> Optional["Unit"]:
        return _DOWN.get(self)

    @property
    def up_unit(self) -> Optional["Unit"]:
        return _UP.get(self)

    def conversion_ratio(self, from_unit: "Unit") -> float:
        """Multiplier converting a length expressed in *from_unit* to this unit."""
        return from_unit.meters / self.meters


_METRIC_CHAIN = [
    Unit.NANOMETER,
    Unit.MICROMETER,
    Unit.MILLIMETER,
    Unit.CENTIMETER,
    Unit.METER,
    Unit.KILOMETER,
]
_IMPERIAL_CHAIN = [
    Unit.MICROINCH,
    Unit.MIL,
    Unit.INCH,
    Unit.FOOT,
    Unit.YARD,
    Unit.MILE,
]

_UP: dict[Unit, Unit] = {}
_DOWN: dict[Unit, Unit] = {}
for _chain in (_METRIC_CHAIN, _IMPERIAL_CHAIN):
    for _smaller, _larger in zip(_chain, _chain[1:]):
        _UP[_smaller] = _larger
        _DOWN[_larger] = _smaller


def format_number(value: float) -> str:
    """Fixed or scientific text for a length, depending on its magnitude."""
    if value < 1.0:
        return f"{value:.3E}" if value < SCIENTIFIC_LOW else f"{value:.4f}"
    return f"{value:.3E}" if value > SCIENTIFIC_HIGH else f"{value:.2f}"


def format_length(length: float, unit: Unit) -> tuple[float, Unit, str]:
    """
    Express *length* (given in *unit*) in the most readable unit of its chain.

    Below 1.0 the first smaller unit giving a value above 1 is used.  Above
    10.0 the length climbs to larger units as long as the value stays >= 1.
    Between 1.0 and 10.0 the unit is kept.

    Parameters
    ----------
    length : float
        Length expressed in *unit*.
    unit : Unit
        Unit of *length*.

    Returns
    -------
    display_length : float
    display_unit : Unit
    text : str
        *display_length* formatted by ``format_number``.
    """
    display_length = length
    display_unit = unit

    if not math.isfinite(length):
        logger.warning("Cannot format a non-finite length: %r", length)
        return length, unit, str(length)

    if length < 1.0:
        down = unit.down_unit
        while down is not None:
            converted = length * down.conversion_ratio(unit)
            if converted > 1.0:
                display_unit = down
                display_length = converted
                break
            down = down.down_unit
    elif length > 10.0:
        up = unit.up_unit
        while up is not None:
            converted = length * up.conversion_ratio(unit)
            if converted < 1.0:
                break
            display_unit = up
            display_length = converted
            up = up.up_unit

    return display_length, display_unit, format_number(display_length)
