"""Tests for radiometry/calibration.py."""

import pytest
from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from radiometry.calibration import (
    CalibrationInfo,
    magnification_factor,
    resolve_calibration,
    resolve_value_unit,
)
from radiometry.presentation import DisplayOverrides
from radiometry.units import Unit

CT_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.2"
SC_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.7"


def _make_ds(modality: str = "CT", **attrs) -> Dataset:
    """Attributes-only dataset; calibration never touches pixel data."""
    ds = Dataset()
    ds.Modality = modality
    for keyword, value in attrs.items():
        setattr(ds, keyword, value)
    return ds


def _us_region(dx: float, dy: float, units: int = 3) -> Dataset:
    region = Dataset()
    region.RegionSpatialFormat = 1
    region.PhysicalUnitsXDirection = units
    region.PhysicalUnitsYDirection = units
    region.PhysicalDeltaX = dx
    region.PhysicalDeltaY = dy
    return region


class TestCalibrationInfo:
    def test_defaults(self):
        calib = CalibrationInfo()
        assert calib.pixel_size_x == 1.0
        assert calib.pixel_size_y == 1.0
        assert calib.unit is Unit.PIXEL
        assert not calib.is_calibrated

    def test_rescale_factors(self):
        calib = CalibrationInfo(0.8, 0.5, Unit.MILLIMETER)
        assert calib.pixel_size == 0.5
        assert calib.rescale_x == pytest.approx(1.6)
        assert calib.rescale_y == 1.0


class TestPixelSpacing:
    def test_row_then_column_order(self):
        calib = resolve_calibration(_make_ds(PixelSpacing=[0.5, 0.8]))
        assert calib.pixel_size_x == pytest.approx(0.8)
        assert calib.pixel_size_y == pytest.approx(0.5)
        assert calib.unit is Unit.MILLIMETER

    def test_calibration_description(self):
        ds = _make_ds(PixelSpacing=[0.3, 0.3], PixelSpacingCalibrationDescription="GEOMETRY")
        assert resolve_calibration(ds).description == "GEOMETRY"

    def test_wins_over_imager_spacing(self):
        ds = _make_ds("DX", PixelSpacing=[0.3, 0.3], ImagerPixelSpacing=[0.2, 0.2])
        assert resolve_calibration(ds).pixel_size_x == pytest.approx(0.3)

    def test_wrong_multiplicity_is_ignored(self):
        calib = resolve_calibration(_make_ds(PixelSpacing=[0.5]))
        assert calib.unit is Unit.PIXEL

    def test_non_positive_spacing_is_ignored(self):
        calib = resolve_calibration(_make_ds(PixelSpacing=[0.0, 0.5]))
        assert calib.unit is Unit.PIXEL


class TestImagerPixelSpacing:
    def test_xa_magnification_factor(self):
        ds = _make_ds("XA", ImagerPixelSpacing=[0.2, 0.2], EstimatedRadiographicMagnificationFactor=1.5)
        calib = resolve_calibration(ds)
        assert calib.pixel_size_x == pytest.approx(0.2 / 1.5)
        assert calib.pixel_size_y == pytest.approx(0.2 / 1.5)
        assert calib.unit is Unit.MILLIMETER
        assert calib.description == "Magnified"

    def test_factor_from_distances(self):
        ds = _make_ds(
            "CR",
            ImagerPixelSpacing=[0.15, 0.15],
            DistanceSourceToDetector=1100.0,
            DistanceSourceToPatient=1000.0,
        )
        assert magnification_factor(ds) == pytest.approx(1.1)
        assert resolve_calibration(ds).pixel_size_x == pytest.approx(0.15 / 1.1)

    def test_without_factor_stays_at_detector(self):
        calib = resolve_calibration(_make_ds("DX", ImagerPixelSpacing=[0.2, 0.1]))
        assert calib.description == "At Detector"
        assert calib.pixel_size_x == pytest.approx(0.1)
        assert calib.pixel_size_y == pytest.approx(0.2)

    def test_modality_without_magnification(self):
        ds = _make_ds("CT", ImagerPixelSpacing=[0.2, 0.2], EstimatedRadiographicMagnificationFactor=1.5)
        calib = resolve_calibration(ds)
        assert calib.description == "At Detector"
        assert calib.pixel_size_x == pytest.approx(0.2)

    def test_modality_argument_overrides_dataset(self):
        ds = _make_ds("OT", ImagerPixelSpacing=[0.2, 0.2], EstimatedRadiographicMagnificationFactor=2.0)
        assert resolve_calibration(ds, modality="MG").pixel_size_x == pytest.approx(0.1)


class TestOtherSources:
    def test_nominal_scanned_spacing(self):
        calib = resolve_calibration(_make_ds("OT", NominalScannedPixelSpacing=[0.1, 0.1]))
        assert calib.description == "At scanner"
        assert calib.unit is Unit.MILLIMETER

    def test_ultrasound_region_in_centimetres(self):
        ds = _make_ds("US", SequenceOfUltrasoundRegions=Sequence([_us_region(0.02, 0.02)]))
        calib = resolve_calibration(ds)
        assert calib.unit is Unit.CENTIMETER
        assert calib.pixel_size_x == pytest.approx(0.02)

    def test_ultrasound_regions_with_same_deltas(self):
        regions = Sequence([_us_region(0.02, 0.02), _us_region(0.02, 0.02)])
        calib = resolve_calibration(_make_ds("US", SequenceOfUltrasoundRegions=regions))
        assert calib.unit is Unit.CENTIMETER

    def test_anisotropic_ultrasound_region_is_ignored(self):
        ds = _make_ds("US", SequenceOfUltrasoundRegions=Sequence([_us_region(0.02, 0.03)]))
        assert resolve_calibration(ds).unit is Unit.PIXEL

    def test_ultrasound_region_not_in_centimetres(self):
        ds = _make_ds("US", SequenceOfUltrasoundRegions=Sequence([_us_region(0.02, 0.02, units=4)]))
        assert resolve_calibration(ds).unit is Unit.PIXEL

    def test_ultrasound_region_ignored_for_other_modalities(self):
        ds = _make_ds("CT", SequenceOfUltrasoundRegions=Sequence([_us_region(0.02, 0.02)]))
        assert resolve_calibration(ds).unit is Unit.PIXEL

    def test_aspect_ratio_stretch(self):
        calib = resolve_calibration(_make_ds("OT", PixelAspectRatio=[2, 1]))
        assert calib.unit is Unit.PIXEL
        assert calib.pixel_size_x == 1.0
        assert calib.pixel_size_y == 2.0

    def test_square_aspect_ratio_is_default(self):
        calib = resolve_calibration(_make_ds("OT", PixelAspectRatio=[1, 1]))
        assert calib == CalibrationInfo()

    def test_no_source_gives_default(self):
        calib = resolve_calibration(_make_ds("OT"))
        assert (calib.pixel_size_x, calib.pixel_size_y, calib.unit) == (1.0, 1.0, Unit.PIXEL)

    def test_none_dataset(self):
        assert resolve_calibration(None) == CalibrationInfo()


class TestPresentationOverrides:
    def test_presentation_spacing_wins(self):
        ds = _make_ds(PixelSpacing=[0.5, 0.5])
        overrides = DisplayOverrides(pixel_spacing=(0.3, 0.4))
        calib = resolve_calibration(ds, overrides=overrides)
        assert calib.pixel_size_x == pytest.approx(0.4)
        assert calib.pixel_size_y == pytest.approx(0.3)
        assert calib.description == "Presentation"

    def test_presentation_aspect_ratio(self):
        calib = resolve_calibration(_make_ds("OT"), overrides=DisplayOverrides(pixel_aspect_ratio=(1, 3)))
        assert calib.pixel_size_x == 3.0
        assert calib.pixel_size_y == 1.0

    def test_empty_overrides_fall_through(self):
        calib = resolve_calibration(_make_ds(PixelSpacing=[0.5, 0.5]), overrides=DisplayOverrides())
        assert calib.pixel_size_x == pytest.approx(0.5)


class TestValueUnit:
    def test_ct_defaults_to_hounsfield(self):
        ds = _make_ds("CT", SOPClassUID=CT_IMAGE_STORAGE)
        assert resolve_value_unit(ds, "CT") == "HU"
        assert resolve_calibration(ds).value_unit == "HU"

    def test_secondary_capture_ct_has_no_unit(self):
        ds = _make_ds("CT", SOPClassUID=SC_IMAGE_STORAGE)
        assert resolve_value_unit(ds, "CT") is None

    def test_rescale_type_first(self):
        ds = _make_ds("CT", SOPClassUID=CT_IMAGE_STORAGE, RescaleType="OD")
        assert resolve_value_unit(ds, "CT") == "OD"

    def test_units_attribute(self):
        assert resolve_value_unit(_make_ds("PT", Units="BQML"), "PT") == "BQML"

    def test_nothing_known(self):
        assert resolve_value_unit(_make_ds("MR"), "MR") is None
