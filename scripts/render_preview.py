"""
render_preview.py - Show what the display core makes of a DICOM file.

Generates the synthetic samples (if data/samples is empty), then for each
file prints the resolved calibration, the preset list and the rulers for a
512x512 viewport, and saves preview figures to reports/.

Usage
-----
    python scripts/render_preview.py [file.dcm ...] [--pr presentation.dcm]

Without arguments every .dcm file in data/samples/ is previewed.
"""

import argparse
import logging
import os
import sys
from typing import Optional

# Ensure repo root is on sys.path regardless of launch directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

import matplotlib
matplotlib.use("Agg")  # non-interactive backend, works without a display

import matplotlib.pyplot as plt
import pydicom

from radiometry.config import CONFIG, DisplaySettings
from radiometry.image import DisplayImage
from radiometry.presentation import read_presentation_state
from radiometry.visualization import (
    plot_histogram,
    plot_lut,
    plot_transfer_shapes,
    plot_windowed_comparison,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-8s %(message)s",
)
logger = logging.getLogger(__name__)

SAMPLES_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["samples_folder"])
REPORTS_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["reports_folder"])

VIEWPORT = 512


def _ensure_sample_data() -> list[str]:
    """Generate synthetic data if data/samples/ has no .dcm files."""
    os.makedirs(SAMPLES_FOLDER, exist_ok=True)
    dcm_files = sorted(f for f in os.listdir(SAMPLES_FOLDER) if f.endswith(".dcm"))
    if dcm_files:
        logger.info("Found %d DICOM file(s) in %s, skipping generation.", len(dcm_files), SAMPLES_FOLDER)
        return [os.path.join(SAMPLES_FOLDER, f) for f in dcm_files]

    logger.info("No DICOM files in %s, generating samples...", SAMPLES_FOLDER)
    from scripts.generate_sample_data import generate  # noqa: E402  (lazy import)
    return generate(SAMPLES_FOLDER)


def _save(fig, name: str) -> None:
    if fig is None:
        return
    path = os.path.join(REPORTS_FOLDER, name)
    fig.savefig(path, dpi=100, bbox_inches="tight")
    plt.close(fig)
    print(f"  Saved: {path}")


def preview(path: str, settings: DisplaySettings, pr_path: Optional[str] = None) -> None:
    ds = pydicom.dcmread(path)
    overrides = read_presentation_state(pydicom.dcmread(pr_path)) if pr_path else None
    image = DisplayImage(ds, settings=settings, overrides=overrides)
    stem = os.path.splitext(os.path.basename(path))[0]

    print("=" * 60)
    print(f"{os.path.basename(path)}  ({image.modality or 'no modality'})")
    print("=" * 60)

    calib = image.calibration
    print(f"  Pixel size   : {calib.pixel_size_x:g} x {calib.pixel_size_y:g} {calib.unit.abbreviation}")
    print(f"  Description  : {calib.description or '-'}")
    print(f"  Value unit   : {calib.value_unit or '-'}")

    if image.pixels is None:
        print("  No pixel data, nothing to render.")
        print()
        return

    min_value, max_value = image.min_max()
    print(f"  Real range   : {min_value:g} .. {max_value:g}")
    print(f"  Inverse LUT  : {image.is_inverse_lut()}")
    print("  Presets      :")
    for preset in image.presets():
        wl = preset.window_level
        print(f"    {preset.name:<24} C={wl.center:<9g} W={wl.width:<9g} {wl.shape.name}")

    rows, cols = image.pixels.shape[:2]
    fit_zoom = VIEWPORT / max(rows * calib.rescale_y, cols * calib.rescale_x)
    zoom = image.zoom(fit_zoom)
    horizontal, vertical = image.rulers(zoom, VIEWPORT, VIEWPORT)
    for label, ruler in (("Ruler (h)", horizontal), ("Ruler (v)", vertical)):
        if ruler is None:
            print(f"  {label:<13}: hidden")
        else:
            print(
                f"  {label:<13}: {ruler.label} over {ruler.screen_length:.1f} px, "
                f"{ruler.divisions} divisions"
            )

    geometry = image.slice_geometry()
    if geometry is not None:
        print(f"  Slice normal : {geometry.normal.round(3).tolist()}")

    wl = image.window_level()
    lut = image.lut(wl)
    hist = image.histogram(wl)
    hist.to_csv(os.path.join(REPORTS_FOLDER, f"{stem}_histogram.csv"))

    _save(plot_windowed_comparison(image), f"{stem}_presets.png")
    _save(plot_transfer_shapes(wl), f"{stem}_shapes.png")
    _save(plot_histogram(hist, wl, lut, logarithmic=True), f"{stem}_histogram.png")
    _save(plot_lut(lut, horizontal), f"{stem}_lut.png")
    print()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Preview the display transforms of DICOM files.")
    parser.add_argument("files", nargs="*", help="DICOM files (default: data/samples/*.dcm)")
    parser.add_argument("--pr", help="Presentation state applied to every file")
    args = parser.parse_args(argv)

    os.makedirs(REPORTS_FOLDER, exist_ok=True)
    files = args.files or _ensure_sample_data()
    settings = DisplaySettings.from_config()

    for path in files:
        preview(path, settings, args.pr)

    print("=" * 60)
    print(f"PREVIEWED {len(files)} FILE(S)")
    print("=" * 60)
    print(f"  Figures and histograms → {REPORTS_FOLDER}")
    print()


if __name__ == "__main__":
    main()
