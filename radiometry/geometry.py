"""
geometry.py - Placement of a single slice in patient space.

ImageOrientationPatient gives two direction cosines: the first is the
direction of increasing column index along a row, the second the
direction of increasing row index down a column.  With the position of
the first pixel and the pixel spacing, every pixel centre maps to a 3D
point.  Multi-slice tools (reference lines, MPR) consume this record; no
reconstruction happens here.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from pydicom.dataset import Dataset

from radiometry.calibration import CalibrationInfo
from radiometry.errors import InvalidParameter

logger = logging.getLogger(__name__)


def _vector(values) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64).reshape(3)
    vector.flags.writeable = False
    return vector


@dataclass(frozen=True, eq=False)
class SliceGeometry:
    """Orientation, origin, spacing and size of one slice."""
    row_vector: np.ndarray
    col_vector: np.ndarray
    position: np.ndarray
    spacing: np.ndarray        # (column spacing, row spacing, slice thickness)
    slice_thickness: float
    dimensions: np.ndarray     # (rows, columns, 1)

    def __post_init__(self) -> None:
        for name in ("row_vector", "col_vector", "position", "spacing", "dimensions"):
            object.__setattr__(self, name, _vector(getattr(self, name)))
        if not np.any(self.row_vector) or not np.any(self.col_vector):
            raise InvalidParameter("Orientation vectors must be non-zero.")

    @property
    def normal(self) -> np.ndarray:
        """Unit normal of the slice plane (row x column)."""
        normal = np.cross(self.row_vector, self.col_vector)
        length = np.linalg.norm(normal)
        return normal / length if length > 0 else normal

    def voxel_to_patient(self, row: float, col: float) -> np.ndarray:
        """Patient coordinates (mm) of the pixel centre at (*row*, *col*)."""
        return (
            self.position
            + col * self.spacing[0] * self.row_vector
            + row * self.spacing[1] * self.col_vector
        )

    def affine(self) -> np.ndarray:
        """4x4 matrix mapping (col, row, slice, 1) to patient coordinates."""
        matrix = np.eye(4)
        matrix[:3, 0] = self.row_vector * self.spacing[0]
        matrix[:3, 1] = self.col_vector * self.spacing[1]
        matrix[:3, 2] = self.normal * self.spacing[2]
        matrix[:3, 3] = self.position
        return matrix


def slice_geometry_from_dataset(
    ds: Dataset,
    calibration: CalibrationInfo,
    display: bool = True,
) -> Optional[SliceGeometry]:
    """
    Build the slice geometry of *ds*, or None when attributes are missing.

    Parameters
    ----------
    ds : Dataset
        Image dataset.
    calibration : CalibrationInfo
        Resolved calibration of the image.
    display : bool
        Square-pixel geometry used for display (both spacings equal to the
        finer pixel size, dimensions stretched accordingly) instead of the
        raw acquisition geometry.
    """
    orientation = ds.get("ImageOrientationPatient")
    position = ds.get("ImagePositionPatient")
    rows, columns = ds.get("Rows"), ds.get("Columns")
    if orientation is None or len(orientation) != 6:
        return None
    if position is None or len(position) != 3:
        return None
    if not rows or not columns or rows <= 0 or columns <= 0:
        return None

    thickness = ds.get("SliceThickness")
    thickness = float(thickness) if thickness not in (None, "") else calibration.pixel_size

    if display:
        spacing = (calibration.pixel_size, calibration.pixel_size, thickness)
        dimensions = (rows * calibration.rescale_y, columns * calibration.rescale_x, 1)
    else:
        spacing = (calibration.pixel_size_x, calibration.pixel_size_y, thickness)
        dimensions = (rows, columns, 1)

    try:
        return SliceGeometry(
            row_vector=[float(v) for v in orientation[:3]],
            col_vector=[float(v) for v in orientation[3:]],
            position=[float(v) for v in position],
            spacing=spacing,
            slice_thickness=thickness,
            dimensions=dimensions,
        )
    except InvalidParameter as exc:
        logger.warning("Invalid slice orientation: %s", exc)
        return None
