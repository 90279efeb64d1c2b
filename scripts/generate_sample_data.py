"""
generate_sample_data.py - Create synthetic DICOM files for the preview demo.

Writes one small file per calibration path so every branch of the display
core can be looked at without real patient data:

    ct_head.dcm    CT, PixelSpacing, rescale to HU, header window
    xa_mag.dcm     XA, ImagerPixelSpacing + magnification factor
    us_region.dcm  US, ultrasound region calibration in cm
    cr_mono1.dcm   CR, MONOCHROME1 with pixel padding
    sc_aspect.dcm  Secondary capture, pixel aspect ratio only

Usage
-----
    python scripts/generate_sample_data.py
"""

import os
import sys

import numpy as np
import pydicom
from pydicom.dataset import Dataset, FileDataset
from pydicom.sequence import Sequence
from pydicom.uid import ExplicitVRLittleEndian

# Make sure repo root is on the path when run as a script
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from radiometry.config import CONFIG  # noqa: E402  (import after path fix)

OUTPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["samples_folder"])

CT_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.2"
XA_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.12.1"
US_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.6.1"
CR_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.1"
SC_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.7"


def _base_dataset(path: str, sop_class: str, modality: str, pixels: np.ndarray) -> FileDataset:
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID(sop_class)
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.SOPClassUID = sop_class
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.Modality = modality
    ds.Rows, ds.Columns = pixels.shape
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 12
    ds.HighBit = 11
    ds.PixelData = pixels.astype(np.uint16).tobytes()
    return ds


def _phantom(size: int = 128, seed: int = 42) -> np.ndarray:
    """Noisy disc with a dense square, stored values in 0..4095."""
    rng = np.random.default_rng(seed)
    yy, xx = np.mgrid[:size, :size]
    disc = (yy - size / 2) ** 2 + (xx - size / 2) ** 2 < (size * 0.4) ** 2
    pixels = np.where(disc, rng.normal(1064, 40, (size, size)), 24.0)
    sq = size // 4
    pixels[sq: sq * 2, sq: sq * 2] = 1800
    return pixels.clip(0, 4095).astype(np.uint16)


def make_ct(path: str) -> None:
    ds = _base_dataset(path, CT_IMAGE_STORAGE, "CT", _phantom())
    ds.RescaleSlope = 1.0
    ds.RescaleIntercept = -1024.0
    ds.PixelSpacing = [0.5, 0.5]
    ds.SliceThickness = 1.25
    ds.ImageOrientationPatient = [1, 0, 0, 0, 1, 0]
    ds.ImagePositionPatient = [-32.0, -32.0, 10.0]
    ds.WindowCenter = [40.0, 400.0]
    ds.WindowWidth = [400.0, 1800.0]
    ds.WindowCenterWidthExplanation = ["SOFT TISSUE", "BONE"]
    ds.save_as(path)


def make_xa(path: str) -> None:
    ds = _base_dataset(path, XA_IMAGE_STORAGE, "XA", _phantom(seed=7))
    ds.ImagerPixelSpacing = [0.2, 0.2]
    ds.EstimatedRadiographicMagnificationFactor = 1.5
    ds.save_as(path)


def make_us(path: str) -> None:
    pixels = (_phantom(seed=3) // 16).astype(np.uint16)
    ds = _base_dataset(path, US_IMAGE_STORAGE, "US", pixels)
    ds.BitsStored = 8
    ds.HighBit = 7
    region = Dataset()
    region.RegionSpatialFormat = 1
    region.PhysicalUnitsXDirection = 3
    region.PhysicalUnitsYDirection = 3
    region.PhysicalDeltaX = 0.02
    region.PhysicalDeltaY = 0.02
    ds.SequenceOfUltrasoundRegions = Sequence([region])
    ds.save_as(path)


def make_cr(path: str) -> None:
    pixels = _phantom(seed=11)
    pixels[:8, :] = 0
    ds = _base_dataset(path, CR_IMAGE_STORAGE, "CR", pixels)
    ds.PhotometricInterpretation = "MONOCHROME1"
    ds.PixelPaddingValue = 0
    ds.ImagerPixelSpacing = [0.15, 0.15]
    ds.DistanceSourceToDetector = 1100.0
    ds.DistanceSourceToPatient = 1000.0
    ds.save_as(path)


def make_sc(path: str) -> None:
    ds = _base_dataset(path, SC_IMAGE_STORAGE, "OT", _phantom(seed=5))
    ds.PixelAspectRatio = [2, 1]
    ds.save_as(path)


_SAMPLES = [
    ("ct_head.dcm", make_ct),
    ("xa_mag.dcm", make_xa),
    ("us_region.dcm", make_us),
    ("cr_mono1.dcm", make_cr),
    ("sc_aspect.dcm", make_sc),
]


def generate(output_folder: str = OUTPUT_FOLDER) -> list[str]:
    """Generate all synthetic DICOM files into *output_folder*."""
    os.makedirs(output_folder, exist_ok=True)

    print(f"Writing {len(_SAMPLES)} synthetic DICOM files to: {output_folder}")
    print("-" * 60)

    paths = []
    for i, (filename, writer) in enumerate(_SAMPLES, start=1):
        path = os.path.join(output_folder, filename)
        writer(path)
        paths.append(path)
        print(f"  [{i:02d}/{len(_SAMPLES)}] {filename}")

    print("-" * 60)
    print("Done.  Preview them with:")
    print("  python scripts/render_preview.py")
    return paths


if __name__ == "__main__":
    generate()
