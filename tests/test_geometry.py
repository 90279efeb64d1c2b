"""Tests for radiometry/geometry.py."""

import numpy as np
import pytest
from pydicom.dataset import Dataset

from radiometry.calibration import CalibrationInfo
from radiometry.errors import InvalidParameter
from radiometry.geometry import SliceGeometry, slice_geometry_from_dataset
from radiometry.units import Unit

_CALIB = CalibrationInfo(0.5, 0.8, Unit.MILLIMETER)


def _make_ds(**attrs) -> Dataset:
    ds = Dataset()
    ds.ImageOrientationPatient = [1, 0, 0, 0, 1, 0]
    ds.ImagePositionPatient = [-10.0, -20.0, 30.0]
    ds.Rows = 4
    ds.Columns = 6
    ds.SliceThickness = 2.0
    for keyword, value in attrs.items():
        setattr(ds, keyword, value)
    return ds


class TestSliceGeometryFromDataset:
    def test_raw_geometry(self):
        geom = slice_geometry_from_dataset(_make_ds(), _CALIB, display=False)
        np.testing.assert_allclose(geom.spacing, [0.5, 0.8, 2.0])
        np.testing.assert_allclose(geom.dimensions, [4, 6, 1])
        assert geom.slice_thickness == 2.0

    def test_display_geometry_uses_square_pixels(self):
        geom = slice_geometry_from_dataset(_make_ds(), _CALIB, display=True)
        np.testing.assert_allclose(geom.spacing, [0.5, 0.5, 2.0])
        np.testing.assert_allclose(geom.dimensions, [4 * 1.6, 6, 1])

    def test_missing_thickness_falls_back_to_pixel_size(self):
        ds = _make_ds()
        del ds.SliceThickness
        assert slice_geometry_from_dataset(ds, _CALIB).slice_thickness == 0.5

    @pytest.mark.parametrize("keyword", ["ImageOrientationPatient", "ImagePositionPatient", "Rows"])
    def test_missing_attribute_gives_none(self, keyword):
        ds = _make_ds()
        delattr(ds, keyword)
        assert slice_geometry_from_dataset(ds, _CALIB) is None

    def test_zero_orientation_gives_none(self):
        ds = _make_ds(ImageOrientationPatient=[0, 0, 0, 0, 1, 0])
        assert slice_geometry_from_dataset(ds, _CALIB) is None


class TestSliceGeometry:
    @pytest.fixture
    def geom(self) -> SliceGeometry:
        return slice_geometry_from_dataset(_make_ds(), _CALIB, display=False)

    def test_normal(self, geom):
        np.testing.assert_allclose(geom.normal, [0, 0, 1])

    def test_voxel_to_patient(self, geom):
        np.testing.assert_allclose(geom.voxel_to_patient(row=2, col=3), [-8.5, -18.4, 30.0])
        np.testing.assert_allclose(geom.voxel_to_patient(0, 0), geom.position)

    def test_affine_matches_voxel_to_patient(self, geom):
        point = geom.affine() @ np.array([3.0, 2.0, 0.0, 1.0])
        np.testing.assert_allclose(point[:3], geom.voxel_to_patient(2, 3))

    def test_vectors_are_read_only(self, geom):
        with pytest.raises(ValueError):
            geom.position[0] = 0.0

    def test_zero_vector_raises(self):
        with pytest.raises(InvalidParameter):
            SliceGeometry(
                row_vector=[0, 0, 0],
                col_vector=[0, 1, 0],
                position=[0, 0, 0],
                spacing=[1, 1, 1],
                slice_thickness=1.0,
                dimensions=[1, 1, 1],
            )
