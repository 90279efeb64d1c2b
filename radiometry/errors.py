"""
errors.py - Error kinds raised by the display core.

Only structurally invalid numeric parameters raise.  Missing or malformed
metadata and missing pixel data always fall back to documented defaults
(see calibration.py and modality.py) and are logged instead.
"""


class InvalidParameter(ValueError):
    """A caller passed a numeric parameter that can never be valid.

    Examples: a window width <= 0, a histogram with no bins or an empty
    value domain, a lookup table of size 0.
    """
