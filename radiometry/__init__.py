"""
radiometry - calibrated display transforms for DICOM pixel data.

Stored samples -> real values (modality transform) -> window/level curve ->
byte lookup table, plus histogram statistics and a physical ruler derived
from the pixel spacing.
"""

__version__ = "0.1.0"
