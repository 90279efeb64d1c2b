"""
windowing.py - Window/level and transfer shapes (VOI LUT functions).

WHY THIS MATTERS
----------------
After the modality transform a CT pixel holds a value between roughly
-1000 and +3000 HU, but a display shows 256 grey levels.  A *window* picks
the clinically relevant range:

    low  = center - width / 2
    high = center + width / 2

and a *transfer shape* decides how values inside that range are spread
over the display range:

    LINEAR              straight ramp from low (0) to high (1)
    SIGMOID             DICOM sigmoid, never quite reaches 0 or 1
    SIGMOID_NORMALIZED  sigmoid stretched to hit 0 at low and 1 at high
    LOG / LOG_INVERSE   logarithmic compression of dark / bright values
    SEQUENCE            explicit VOI LUT table from the header

Every shape is a pure function ``real value x WindowLevel -> [0, 1]``.
The set of shapes is closed: evaluation dispatches through a table keyed
by ``ShapeKind``.

Named presets (header windows, configured windows, "Auto" from the actual
min/max) are collected in a list whose first element is the default.

References
----------
- DICOM PS3.3 §C.11.2.1.2 Window Center and Window Width
- DICOM PS3.3 §C.11.2.1.3 VOI LUT Function (LINEAR, LINEAR_EXACT, SIGMOID)
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

import numpy as np
from pydicom.dataset import Dataset

from radiometry.config import CONFIG
from radiometry.errors import InvalidParameter

if TYPE_CHECKING:
    from radiometry.presentation import DisplayOverrides

logger = logging.getLogger(__name__)

# Slope of the DICOM sigmoid: 1 / (1 + exp(-4 * (x - center) / width))
SIGMOID_FACTOR = 4.0
# Compression strength of the logarithmic shapes
LOG_FACTOR = 20.0


class ShapeKind(Enum):
    LINEAR = "LINEAR"
    SIGMOID = "SIGMOID"
    SIGMOID_NORMALIZED = "SIGMOID_NORMALIZED"
    LOG = "LOG"
    LOG_INVERSE = "LOG_INVERSE"
    SEQUENCE = "SEQUENCE"


@dataclass(frozen=True)
class TransferShape:
    """A transfer shape; only SEQUENCE shapes carry a table."""
    kind: ShapeKind
    table: Optional[tuple[int, ...]] = None
    first_value: int = 0
    bits: int = 8
    explanation: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is ShapeKind.SEQUENCE and not self.table:
            raise InvalidParameter("A SEQUENCE shape needs a non-empty table")

    @classmethod
    def sequence(
        cls,
        table: Iterable[int],
        first_value: int = 0,
        bits: int = 8,
        explanation: Optional[str] = None,
    ) -> "TransferShape":
        return cls(
            ShapeKind.SEQUENCE,
            table=tuple(int(v) for v in table),
            first_value=int(first_value),
            bits=int(bits),
            explanation=explanation,
        )

    @property
    def name(self) -> str:
        if self.kind is ShapeKind.SEQUENCE and self.explanation:
            return self.explanation
        return self.kind.value

    @property
    def output_max(self) -> float:
        """Value of the table that maps to full display intensity."""
        top = float((1 << self.bits) - 1)
        if self.table:
            top = max(top, float(max(self.table)))
        return top if top > 0 else 1.0


LINEAR = TransferShape(ShapeKind.LINEAR)
SIGMOID = TransferShape(ShapeKind.SIGMOID)
SIGMOID_NORMALIZED = TransferShape(ShapeKind.SIGMOID_NORMALIZED)
LOG = TransferShape(ShapeKind.LOG)
LOG_INVERSE = TransferShape(ShapeKind.LOG_INVERSE)

DEFAULT_SHAPES: list[TransferShape] = [LINEAR, SIGMOID, SIGMOID_NORMALIZED, LOG, LOG_INVERSE]

_SHAPE_ALIASES = {
    "LINEAR": LINEAR,
    "LINEAR_EXACT": LINEAR,
    "SIGMOID": SIGMOID,
    "SIGMOID_NORMALIZED": SIGMOID_NORMALIZED,
    "SIGMOID_NORM": SIGMOID_NORMALIZED,
    "LOG": LOG,
    "LOG_INVERSE": LOG_INVERSE,
    "LOG_INV": LOG_INVERSE,
}


def shape_from_name(name: Optional[str]) -> TransferShape:
    """Map a VOILUTFunction / configuration name to a shape (LINEAR if unknown)."""
    if not name:
        return LINEAR
    shape = _SHAPE_ALIASES.get(str(name).strip().upper())
    if shape is None:
        logger.warning("Unknown transfer shape %r; using LINEAR", name)
        return LINEAR
    return shape


@dataclass(frozen=True)
class WindowLevel:
    """
    Window (center/width), transfer shape and the valid real-value domain.

    ``level_min`` / ``level_max`` default to the window edges.
    """
    center: float
    width: float
    shape: TransferShape = LINEAR
    level_min: Optional[float] = None
    level_max: Optional[float] = None

    def __post_init__(self) -> None:
        center, width = float(self.center), float(self.width)
        if not (math.isfinite(center) and math.isfinite(width)):
            raise InvalidParameter(f"Window must be finite, got center={center}, width={width}.")
        if width <= 0:
            raise InvalidParameter(f"Window width must be > 0, got width={width}.")
        low, high = center - width / 2.0, center + width / 2.0
        if not high > low:
            raise InvalidParameter(f"Window width {width} is too small for center {center}.")

        level_min = low if self.level_min is None else float(self.level_min)
        level_max = high if self.level_max is None else float(self.level_max)
        if not (math.isfinite(level_min) and math.isfinite(level_max)):
            raise InvalidParameter("Level bounds must be finite.")
        if level_min > level_max:
            raise InvalidParameter(
                f"level_min ({level_min}) must not exceed level_max ({level_max})."
            )
        object.__setattr__(self, "center", center)
        object.__setattr__(self, "width", width)
        object.__setattr__(self, "level_min", level_min)
        object.__setattr__(self, "level_max", level_max)

    @property
    def low(self) -> float:
        return self.center - self.width / 2.0

    @property
    def high(self) -> float:
        return self.center + self.width / 2.0

    def export_parameters(self) -> dict[str, Any]:
        """Plain parameters; ``from_parameters`` rebuilds an equal window."""
        params: dict[str, Any] = {
            "center": self.center,
            "width": self.width,
            "level_min": self.level_min,
            "level_max": self.level_max,
            "shape": self.shape.kind.value,
        }
        if self.shape.kind is ShapeKind.SEQUENCE:
            params["table"] = list(self.shape.table)
            params["first_value"] = self.shape.first_value
            params["bits"] = self.shape.bits
            params["explanation"] = self.shape.explanation
        return params

    @classmethod
    def from_parameters(cls, params: dict[str, Any]) -> "WindowLevel":
        if params["shape"] == ShapeKind.SEQUENCE.value:
            shape = TransferShape.sequence(
                params["table"], params["first_value"], params["bits"], params.get("explanation")
            )
        else:
            shape = TransferShape(ShapeKind(params["shape"]))
        return cls(
            center=params["center"],
            width=params["width"],
            shape=shape,
            level_min=params["level_min"],
            level_max=params["level_max"],
        )


# ---------------------------------------------------------------------------
# Curves, one per shape kind.  Inputs are already clamped to the level domain.
# ---------------------------------------------------------------------------

def _linear(x: np.ndarray, wl: WindowLevel) -> np.ndarray:
    low, high = wl.low, wl.high
    return np.clip((x - low) / (high - low), 0.0, 1.0)


def _sigmoid_raw(x: Union[float, np.ndarray], wl: WindowLevel) -> Union[float, np.ndarray]:
    # logistic(z) == (1 + tanh(z / 2)) / 2, without overflow for large |z|
    return 0.5 * (1.0 + np.tanh(SIGMOID_FACTOR / 2.0 * (x - wl.center) / wl.width))


def _sigmoid(x: np.ndarray, wl: WindowLevel) -> np.ndarray:
    return _sigmoid_raw(x, wl)


def _sigmoid_normalized(x: np.ndarray, wl: WindowLevel) -> np.ndarray:
    bottom = _sigmoid_raw(wl.low, wl)
    top = _sigmoid_raw(wl.high, wl)
    return (_sigmoid_raw(x, wl) - bottom) / (top - bottom)


def _log_curve(fraction: np.ndarray) -> np.ndarray:
    return np.log1p(LOG_FACTOR * fraction) / math.log1p(LOG_FACTOR)


def _log(x: np.ndarray, wl: WindowLevel) -> np.ndarray:
    return _log_curve(_linear(x, wl))


def _log_inverse(x: np.ndarray, wl: WindowLevel) -> np.ndarray:
    return 1.0 - _log_curve(1.0 - _linear(x, wl))


def _sequence(x: np.ndarray, wl: WindowLevel) -> np.ndarray:
    shape = wl.shape
    table = np.asarray(shape.table, dtype=np.float64)
    index = np.clip(np.rint(x) - shape.first_value, 0, table.size - 1).astype(np.intp)
    return table[index] / shape.output_max


_CURVES: dict[ShapeKind, Callable[[np.ndarray, WindowLevel], np.ndarray]] = {
    ShapeKind.LINEAR: _linear,
    ShapeKind.SIGMOID: _sigmoid,
    ShapeKind.SIGMOID_NORMALIZED: _sigmoid_normalized,
    ShapeKind.LOG: _log,
    ShapeKind.LOG_INVERSE: _log_inverse,
    ShapeKind.SEQUENCE: _sequence,
}


def normalize(real: Any, wl: WindowLevel) -> Union[float, np.ndarray]:
    """
    Display intensity in [0, 1] of real value(s) through *wl*.

    Values are clamped to ``[wl.level_min, wl.level_max]`` before the curve
    is evaluated.  NaN, None and masked entries are treated as
    ``wl.level_min``.

    Parameters
    ----------
    real : float, np.ndarray or np.ma.MaskedArray
        Real value(s) (output of the modality transform).
    wl : WindowLevel
        Window, shape and level domain.

    Returns
    -------
    float or np.ndarray
        Scalar in, float out; array in, float64 array of the same shape out.
    """
    if real is None:
        real = wl.level_min
    if np.ma.isMaskedArray(real):
        values = np.ma.filled(real.astype(np.float64), wl.level_min)
    else:
        values = np.asarray(real, dtype=np.float64)
    scalar = values.ndim == 0

    values = np.where(np.isnan(values), wl.level_min, values)
    values = np.clip(values, wl.level_min, wl.level_max)
    out = np.clip(_CURVES[wl.shape.kind](values, wl), 0.0, 1.0)
    return float(out) if scalar else out


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Preset:
    """A named window; the first preset of a list is the default."""
    name: str
    window_level: WindowLevel
    is_auto: bool = False


def window_with_range(
    center: float,
    width: float,
    shape: TransferShape,
    min_value: float,
    max_value: float,
) -> WindowLevel:
    """Window whose level domain covers both the pixel range and the window."""
    low, high = center - width / 2.0, center + width / 2.0
    return WindowLevel(
        center=center,
        width=width,
        shape=shape,
        level_min=min(min_value, low),
        level_max=max(max_value, high),
    )


def auto_preset(min_value: float, max_value: float) -> Preset:
    """Linear window spanning the actual real-value range of the image."""
    center = (min_value + max_value) / 2.0
    width = max_value - min_value + 1.0
    return Preset(
        name="Auto",
        window_level=window_with_range(center, width, LINEAR, min_value, max_value),
        is_auto=True,
    )


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
        return [value]
    return list(value)


def header_presets(ds: Dataset, min_value: float, max_value: float) -> list[Preset]:
    """Presets from WindowCenter / WindowWidth pairs of the image header."""
    centers = _as_list(ds.get("WindowCenter"))
    widths = _as_list(ds.get("WindowWidth"))
    if not centers or not widths:
        return []
    if len(centers) != len(widths):
        logger.warning(
            "WindowCenter has %d values but WindowWidth has %d; using the common ones",
            len(centers), len(widths),
        )
    explanations = _as_list(ds.get("WindowCenterWidthExplanation"))
    shape = shape_from_name(ds.get("VOILUTFunction"))

    presets = []
    for i, (center, width) in enumerate(zip(centers, widths)):
        try:
            center, width = float(center), float(width)
            name = str(explanations[i]).strip() if i < len(explanations) else ""
            wl = window_with_range(center, width, shape, min_value, max_value)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping header window %d: %s", i + 1, exc)
            continue
        presets.append(Preset(name=f"[DICOM] {name or f'Preset {i + 1}'}", window_level=wl))
    return presets


def _lut_table(item: Dataset, entries: int) -> list[int]:
    data = item.LUTData
    if isinstance(data, bytes):
        return np.frombuffer(data, dtype="<u2")[:entries].tolist()
    return [int(v) for v in _as_list(data)]


def sequence_shapes(ds: Dataset) -> list[TransferShape]:
    """SEQUENCE shapes from the VOILUTSequence of *ds*."""
    shapes = []
    for i, item in enumerate(ds.get("VOILUTSequence") or []):
        descriptor = _as_list(item.get("LUTDescriptor"))
        if len(descriptor) != 3 or "LUTData" not in item:
            logger.warning("Skipping VOI LUT %d without descriptor or data", i + 1)
            continue
        entries = int(descriptor[0]) or 65536
        explanation = str(item.get("LUTExplanation", "") or "").strip()
        table = _lut_table(item, entries)
        if not table:
            continue
        shapes.append(
            TransferShape.sequence(
                table,
                first_value=int(descriptor[1]),
                bits=int(descriptor[2]),
                explanation=explanation or f"VOI LUT {i + 1}",
            )
        )
    return shapes


def sequence_presets(ds: Dataset, min_value: float, max_value: float) -> list[Preset]:
    presets = []
    for shape in sequence_shapes(ds):
        entries = len(shape.table)
        center = shape.first_value + entries / 2.0
        wl = window_with_range(center, float(entries), shape, min_value, max_value)
        presets.append(Preset(name=f"[DICOM] {shape.name}", window_level=wl))
    return presets


def configured_presets(
    modality: Optional[str],
    min_value: float,
    max_value: float,
    config: Optional[dict[str, Any]] = None,
) -> list[Preset]:
    """Presets declared for *modality* in the configuration."""
    config = config or CONFIG
    entries = config.get("window_presets", {}).get(modality or "", []) or []
    presets = []
    for entry in entries:
        try:
            wl = window_with_range(
                float(entry["center"]),
                float(entry["width"]),
                shape_from_name(entry.get("shape")),
                min_value,
                max_value,
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping configured preset %r: %s", entry, exc)
            continue
        presets.append(Preset(name=str(entry.get("name", "Preset")), window_level=wl))
    return presets


def build_presets(
    ds: Optional[Dataset],
    min_value: float,
    max_value: float,
    modality: Optional[str] = None,
    overrides: Optional["DisplayOverrides"] = None,
    config: Optional[dict[str, Any]] = None,
) -> list[Preset]:
    """
    All presets of an image, default first, "Auto" last.

    Order: presentation state window, header windows, VOI LUT tables,
    configured modality presets, Auto.
    """
    presets: list[Preset] = []
    if overrides is not None and overrides.center is not None and overrides.width is not None:
        try:
            wl = window_with_range(
                overrides.center,
                overrides.width,
                overrides.shape or LINEAR,
                min_value,
                max_value,
            )
            presets.append(Preset(name=f"[PR] {overrides.explanation or 'Window'}", window_level=wl))
        except InvalidParameter as exc:
            logger.warning("Ignoring presentation state window: %s", exc)

    if ds is not None:
        modality = modality or ds.get("Modality")
        presets.extend(header_presets(ds, min_value, max_value))
        presets.extend(sequence_presets(ds, min_value, max_value))

    presets.extend(configured_presets(modality, min_value, max_value, config))
    presets.append(auto_preset(min_value, max_value))
    return presets


def default_preset(presets: list[Preset], min_value: float, max_value: float) -> Preset:
    """First preset, or the Auto preset when the list is empty."""
    if presets:
        return presets[0]
    return auto_preset(min_value, max_value)


def lut_shapes(presets: Iterable[Preset]) -> list[TransferShape]:
    """Shapes used by *presets* followed by the default shapes, without duplicates."""
    shapes: list[TransferShape] = []
    for shape in [p.window_level.shape for p in presets] + DEFAULT_SHAPES:
        if shape not in shapes:
            shapes.append(shape)
    return shapes
