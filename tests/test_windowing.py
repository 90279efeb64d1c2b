"""Tests for radiometry/windowing.py."""

import math

import numpy as np
import pytest
from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from radiometry.errors import InvalidParameter
from radiometry.presentation import DisplayOverrides
from radiometry.windowing import (
    DEFAULT_SHAPES,
    LINEAR,
    LOG,
    LOG_INVERSE,
    SIGMOID,
    SIGMOID_NORMALIZED,
    Preset,
    ShapeKind,
    TransferShape,
    WindowLevel,
    auto_preset,
    build_presets,
    default_preset,
    header_presets,
    lut_shapes,
    normalize,
    sequence_shapes,
    shape_from_name,
    window_with_range,
)

_CONFIG = {
    "window_presets": {
        "CT": [
            {"name": "Brain", "center": 40, "width": 80, "shape": "LINEAR"},
            {"name": "Lung", "center": -600, "width": 1500},
        ],
    },
}


def _make_ds(**attrs) -> Dataset:
    ds = Dataset()
    ds.Modality = "CT"
    for keyword, value in attrs.items():
        setattr(ds, keyword, value)
    return ds


def _voi_lut_item(table: list[int], first_value: int, explanation: str = "CUSTOM") -> Dataset:
    item = Dataset()
    item.add_new("LUTDescriptor", "US", [len(table), first_value, 8])
    item.add_new("LUTData", "US", table)
    item.LUTExplanation = explanation
    return item


class TestWindowLevel:
    def test_level_bounds_default_to_window(self):
        wl = WindowLevel(40, 80)
        assert (wl.low, wl.high) == (0.0, 80.0)
        assert (wl.level_min, wl.level_max) == (0.0, 80.0)

    @pytest.mark.parametrize("width", [0.0, -5.0])
    def test_non_positive_width_raises(self, width):
        with pytest.raises(InvalidParameter):
            WindowLevel(40, width)

    def test_non_finite_raises(self):
        with pytest.raises(InvalidParameter):
            WindowLevel(math.nan, 80)

    def test_inconsistent_level_bounds_raise(self):
        with pytest.raises(InvalidParameter):
            WindowLevel(40, 80, level_min=100, level_max=0)

    def test_invalid_parameter_is_a_value_error(self):
        with pytest.raises(ValueError):
            WindowLevel(40, 0)

    def test_parameters_reproduce_window(self):
        wl = WindowLevel(40.1, 80.3, SIGMOID, level_min=-1024.0, level_max=3071.0)
        assert WindowLevel.from_parameters(wl.export_parameters()) == wl

    def test_sequence_parameters_reproduce_window(self):
        shape = TransferShape.sequence([0, 128, 255], first_value=10, explanation="VOI")
        wl = WindowLevel(11.5, 3, shape, level_min=0, level_max=20)
        assert WindowLevel.from_parameters(wl.export_parameters()) == wl


class TestNormalizeLinear:
    def test_boundaries_are_exact(self):
        wl = WindowLevel(40, 80)
        assert normalize(0.0, wl) == 0.0
        assert normalize(80.0, wl) == 1.0

    def test_center_maps_to_half(self):
        assert normalize(40.0, WindowLevel(40, 80)) == pytest.approx(0.5)

    def test_clamped_outside_level_domain(self):
        wl = WindowLevel(40, 80, level_min=-1000, level_max=1000)
        assert normalize(-2000.0, wl) == 0.0
        assert normalize(5000.0, wl) == 1.0

    def test_array_in_array_out(self):
        values = np.linspace(-1000, 2000, 100).reshape(10, 10)
        out = normalize(values, WindowLevel(40, 80, level_min=-1000, level_max=2000))
        assert out.shape == (10, 10)
        assert out.dtype == np.float64
        assert out.min() >= 0.0
        assert out.max() <= 1.0

    def test_scalar_in_float_out(self):
        assert isinstance(normalize(np.int16(10), WindowLevel(40, 80)), float)


class TestNormalizeMissingValues:
    def test_nan_is_level_min(self):
        wl = WindowLevel(40, 80)
        out = normalize(np.array([np.nan, 80.0]), wl)
        np.testing.assert_array_equal(out, [0.0, 1.0])

    def test_none_is_level_min(self):
        assert normalize(None, WindowLevel(40, 80)) == 0.0

    def test_masked_is_level_min(self):
        real = np.ma.masked_array([80.0, 80.0], mask=[True, False])
        np.testing.assert_array_equal(normalize(real, WindowLevel(40, 80)), [0.0, 1.0])


class TestShapes:
    def test_sigmoid_center_is_half(self):
        assert normalize(40.0, WindowLevel(40, 80, SIGMOID)) == 0.5

    def test_sigmoid_does_not_reach_the_ends(self):
        wl = WindowLevel(40, 80, SIGMOID)
        assert 0.0 < normalize(0.0, wl) < 0.5
        assert 0.5 < normalize(80.0, wl) < 1.0

    def test_sigmoid_far_from_center_does_not_overflow(self):
        wl = WindowLevel(0, 1, SIGMOID, level_min=-1e6, level_max=1e6)
        assert normalize(-1e6, wl) == pytest.approx(0.0)
        assert normalize(1e6, wl) == pytest.approx(1.0)

    def test_sigmoid_normalized_boundaries(self):
        wl = WindowLevel(40, 80, SIGMOID_NORMALIZED)
        assert normalize(0.0, wl) == 0.0
        assert normalize(80.0, wl) == pytest.approx(1.0)

    @pytest.mark.parametrize("shape", [LOG, LOG_INVERSE])
    def test_log_boundaries(self, shape):
        wl = WindowLevel(40, 80, shape)
        assert normalize(0.0, wl) == pytest.approx(0.0)
        assert normalize(80.0, wl) == pytest.approx(1.0)

    def test_log_lifts_dark_values_and_inverse_lowers_them(self):
        assert normalize(20.0, WindowLevel(40, 80, LOG)) > 0.25
        assert normalize(20.0, WindowLevel(40, 80, LOG_INVERSE)) < 0.25

    @pytest.mark.parametrize("shape", DEFAULT_SHAPES, ids=lambda s: s.name)
    def test_non_decreasing(self, shape):
        wl = WindowLevel(40, 80, shape, level_min=-100, level_max=200)
        out = normalize(np.linspace(-100, 200, 601), wl)
        assert np.all(np.diff(out) >= -1e-12)
        assert out.min() >= 0.0
        assert out.max() <= 1.0

    def test_sequence_table(self):
        shape = TransferShape.sequence([0, 128, 255], first_value=10, bits=8)
        wl = WindowLevel(11.5, 3, shape, level_min=10, level_max=12)
        assert normalize(10.0, wl) == 0.0
        assert normalize(11.0, wl) == pytest.approx(128 / 255)
        assert normalize(12.0, wl) == 1.0
        assert normalize(100.0, wl) == 1.0

    def test_sequence_needs_a_table(self):
        with pytest.raises(InvalidParameter):
            TransferShape(ShapeKind.SEQUENCE)

    def test_shape_names(self):
        assert shape_from_name("LINEAR_EXACT") is LINEAR
        assert shape_from_name("sigmoid") is SIGMOID
        assert shape_from_name(None) is LINEAR
        assert shape_from_name("bogus") is LINEAR


class TestPresets:
    def test_level_bounds_are_union_of_range_and_window(self):
        wl = window_with_range(40, 80, LINEAR, -1024, 3071)
        assert (wl.level_min, wl.level_max) == (-1024, 3071)
        wl = window_with_range(0, 5000, LINEAR, -100, 100)
        assert (wl.level_min, wl.level_max) == (-2500, 2500)

    def test_auto_preset(self):
        preset = auto_preset(0.0, 255.0)
        assert preset.is_auto
        assert preset.name == "Auto"
        assert preset.window_level.center == 127.5
        assert preset.window_level.width == 256.0
        assert preset.window_level.shape is LINEAR

    def test_header_presets(self):
        ds = _make_ds(
            WindowCenter=[40, 400],
            WindowWidth=[400, 1800],
            WindowCenterWidthExplanation=["SOFT TISSUE", "BONE"],
        )
        presets = header_presets(ds, -1024, 3071)
        assert [p.name for p in presets] == ["[DICOM] SOFT TISSUE", "[DICOM] BONE"]
        assert presets[1].window_level.center == 400

    def test_header_preset_without_explanation(self):
        presets = header_presets(_make_ds(WindowCenter=40, WindowWidth=400), 0, 100)
        assert [p.name for p in presets] == ["[DICOM] Preset 1"]

    def test_header_function_sets_shape(self):
        ds = _make_ds(WindowCenter=40, WindowWidth=400, VOILUTFunction="SIGMOID")
        assert header_presets(ds, 0, 100)[0].window_level.shape is SIGMOID

    def test_invalid_header_window_is_skipped(self):
        ds = _make_ds(WindowCenter=[40, 50], WindowWidth=[0, 100])
        presets = header_presets(ds, 0, 100)
        assert [p.window_level.center for p in presets] == [50]

    def test_voi_lut_sequence(self):
        ds = _make_ds(VOILUTSequence=Sequence([_voi_lut_item([0, 128, 255], first_value=10)]))
        shapes = sequence_shapes(ds)
        assert len(shapes) == 1
        assert shapes[0].kind is ShapeKind.SEQUENCE
        assert shapes[0].table == (0, 128, 255)
        assert shapes[0].name == "CUSTOM"

    def test_build_order(self):
        ds = _make_ds(
            WindowCenter=40,
            WindowWidth=400,
            WindowCenterWidthExplanation="SOFT",
            VOILUTSequence=Sequence([_voi_lut_item([0, 255], first_value=0)]),
        )
        overrides = DisplayOverrides(center=10, width=20, explanation="Custom")
        presets = build_presets(ds, -1024, 3071, overrides=overrides, config=_CONFIG)
        assert [p.name for p in presets] == [
            "[PR] Custom",
            "[DICOM] SOFT",
            "[DICOM] CUSTOM",
            "Brain",
            "Lung",
            "Auto",
        ]
        assert presets[-1].is_auto
        assert all(p.window_level.level_min <= -1024 for p in presets)

    def test_without_dataset_only_configured_and_auto(self):
        presets = build_presets(None, 0, 100, modality="MR", config=_CONFIG)
        assert [p.name for p in presets] == ["Auto"]

    def test_default_preset_is_first(self):
        presets = build_presets(_make_ds(WindowCenter=40, WindowWidth=400), 0, 100, config=_CONFIG)
        assert default_preset(presets, 0, 100) is presets[0]

    def test_default_preset_of_empty_list_is_auto(self):
        assert default_preset([], 0, 10).is_auto

    def test_lut_shapes_without_duplicates(self):
        presets = [
            Preset("a", WindowLevel(40, 80, SIGMOID)),
            Preset("b", WindowLevel(40, 80, LINEAR)),
            Preset("c", WindowLevel(10, 80, SIGMOID)),
        ]
        assert lut_shapes(presets) == [SIGMOID, LINEAR, SIGMOID_NORMALIZED, LOG, LOG_INVERSE]
