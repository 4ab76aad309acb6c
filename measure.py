"""
measure.py – Cucumber measurement on an A4 reference sheet.

Pipeline:
  1. Detect the reference sheet (adaptive polygon → largest contour → margin)
  2. Sheet size in pixels → pixels per mm (known 210 x 297 mm)
  3. Crop to the sheet and segment the object (color → otsu → edges → darkness)
  4. Skeletonize the object mask
  5. Length along the skeleton, width, diameter, volume, curvature
  6. Debug image with sheet, object and skeleton overlays

process_image() never raises: every failure ends up in the `error` field of
the result, together with the best debug image that could still be drawn.
"""

import logging
import math
from typing import NamedTuple, Optional

import cv2
import numpy as np

from errors import ErrorKind, MeasurementError
from geometry import (
    PixelRect,
    clip_rect,
    contour_area,
    crop,
    is_usable,
    mask_from_contour,
    min_area_rect,
    to_bgr,
    translate,
)
from render import render
from segment import find_object
from settings import MeasureConfig
from sheet import compute_scale, detect_sheet
from skeleton import (
    extend_to_boundary,
    is_fragmented,
    main_path,
    nearest_radius,
    path_curvature,
    path_length,
    skeleton_points,
    skeletonize,
    trim_spurs,
)

log = logging.getLogger("morphology.measure")

# Skeleton length below this fraction of the rotated-rect long side is rejected
MIN_LENGTH_FRAC = 0.75


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class MeasurementResult(NamedTuple):
    length_mm: float
    width_mm: float
    diameter_mm: float
    volume_mm3: float
    curvature: Optional[float] = None  # mean turning angle, radians
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def failed(cls, kind: ErrorKind, message: str) -> "MeasurementResult":
        return cls(0.0, 0.0, 0.0, 0.0, None, message, kind)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "length_mm": round(self.length_mm, 1),
            "width_mm": round(self.width_mm, 1),
            "diameter_mm": round(self.diameter_mm, 1),
            "volume_mm3": round(self.volume_mm3, 0),
            "volume_ml": round(self.volume_mm3 / 1000, 1),
            "curvature": round(self.curvature, 3) if self.curvature is not None else None,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }


class ProcessedResult(NamedTuple):
    measurement: MeasurementResult
    contour: Optional[np.ndarray] = None  # full image coordinates
    sheet_rect: Optional[PixelRect] = None
    debug_image: Optional[np.ndarray] = None
    px_per_mm: Optional[float] = None
    sheet_strategy: Optional[str] = None
    segment_strategy: Optional[str] = None
    skeleton_points: Optional[np.ndarray] = None  # full image coordinates

    def to_dict(self) -> dict:
        data = self.measurement.to_dict()
        data.update({
            "px_per_mm": round(self.px_per_mm, 3) if self.px_per_mm else None,
            "sheet_rect": self.sheet_rect.to_dict() if self.sheet_rect else None,
            "sheet_strategy": self.sheet_strategy,
            "segment_strategy": self.segment_strategy,
            "contour_points": len(self.contour) if self.contour is not None else 0,
        })
        return data


def cylinder_volume(length_mm: float, diameter_mm: float) -> float:
    return math.pi * (diameter_mm / 2) ** 2 * length_mm


# ---------------------------------------------------------------------------
# Measurement calculator
# ---------------------------------------------------------------------------

def measure(
    contour: np.ndarray,
    skeleton: Optional[np.ndarray],
    scale: float,
    config: Optional[MeasureConfig] = None,
) -> MeasurementResult:
    """
    Dimensions of the object in mm.

    Without a skeleton the minimum-area rectangle gives length and width.
    With a skeleton the length follows the centre line (so bent objects
    are not under-measured) and curvature is reported as well.
    """
    config = config or MeasureConfig()

    if not is_usable(contour):
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Object contour has fewer than 3 points.")
    if not scale or not math.isfinite(scale) or scale <= 0:
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, f"Invalid scale: {scale}")

    if skeleton is None:
        result = _measure_bounding_box(contour, scale)
    else:
        result = _measure_skeleton(contour, skeleton, scale, config)

    numbers = (result.length_mm, result.width_mm, result.diameter_mm, result.volume_mm3)
    if result.ok and not all(math.isfinite(v) for v in numbers):
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Measurement produced non-finite values.")
    return result


def _measure_bounding_box(contour: np.ndarray, scale: float) -> MeasurementResult:
    rotated = min_area_rect(contour)
    length_px, width_px = rotated.long_side, rotated.short_side
    if width_px <= 0:
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Object has zero extent.")

    length_mm = length_px / scale
    width_mm = width_px / scale
    log.debug("Bounding box: %.1f x %.1f px (angle=%.1f°)", length_px, width_px, rotated.angle)
    return MeasurementResult(
        length_mm=length_mm,
        width_mm=width_mm,
        diameter_mm=width_mm,
        volume_mm3=cylinder_volume(length_mm, width_mm),
    )


def _measure_skeleton(
    contour: np.ndarray,
    skeleton: np.ndarray,
    scale: float,
    config: MeasureConfig,
) -> MeasurementResult:
    if cv2.countNonZero(skeleton) == 0:
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Skeleton is empty.")

    mask = mask_from_contour(skeleton.shape, contour)
    dist = cv2.distanceTransform(mask, cv2.DIST_L2, 5)

    if is_fragmented(skeleton):
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Skeleton is split into several pieces.")

    path = main_path(skeleton)
    if len(path) < 2:
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Skeleton is too short to measure.")
    path = trim_spurs(path, dist, config.spur_factor)
    radii = nearest_radius(dist, path)

    # Thinning stops about one radius short of each tip; tangent taken over one radius
    start_ext, end_ext = extend_to_boundary(path, mask, lookback=max(5, int(round(float(np.median(radii))))))
    length_px = path_length(path, config.length_step) + start_ext + end_ext
    if length_px <= 0:
        return MeasurementResult.failed(ErrorKind.MEASUREMENT_FAILED, "Skeleton length is zero.")

    # A tip-to-tip centre line is never much shorter than the object itself
    long_side = min_area_rect(contour).long_side
    if length_px < MIN_LENGTH_FRAC * long_side:
        return MeasurementResult.failed(
            ErrorKind.MEASUREMENT_FAILED,
            f"Skeleton length {length_px:.0f} px is far below the object extent {long_side:.0f} px.",
        )

    # Mean cross-section from area, diameter from the inscribed radius along the centre line
    width_px = contour_area(contour) / length_px
    diameter_px = 2.0 * float(np.median(radii))
    curvature = path_curvature(path, config.curvature_step)

    length_mm = length_px / scale
    diameter_mm = diameter_px / scale
    log.debug("Skeleton: path=%d pts, length=%.1f px (+%.1f/+%.1f), width=%.1f px, diameter=%.1f px",
              len(path), length_px, start_ext, end_ext, width_px, diameter_px)
    return MeasurementResult(
        length_mm=length_mm,
        width_mm=width_px / scale,
        diameter_mm=diameter_mm,
        volume_mm3=cylinder_volume(length_mm, diameter_mm),
        curvature=curvature,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class _Partial:
    """Artefacts collected so far; used for the debug image when a stage fails."""

    def __init__(self):
        self.image: Optional[np.ndarray] = None
        self.sheet_rect: Optional[PixelRect] = None
        self.sheet_strategy: Optional[str] = None
        self.px_per_mm: Optional[float] = None
        self.contour: Optional[np.ndarray] = None
        self.segment_strategy: Optional[str] = None
        self.skeleton_points: Optional[np.ndarray] = None
        self.sheet_label = "sheet"


def decode_image(image_bytes: bytes) -> Optional[np.ndarray]:
    """Decode JPEG/PNG bytes to a BGR image; None if undecodable."""
    if not image_bytes:
        return None
    arr = np.frombuffer(image_bytes, np.uint8)
    try:
        return cv2.imdecode(arr, cv2.IMREAD_COLOR)
    except cv2.error as e:
        log.warning("Image decode failed: %s", e)
        return None


def process_image_bytes(image_bytes: bytes, config: Optional[MeasureConfig] = None) -> ProcessedResult:
    img = decode_image(image_bytes)
    if img is None:
        return ProcessedResult(MeasurementResult.failed(ErrorKind.IMAGE_UNUSABLE, "Could not decode image."))
    return process_image(img, config)


def process_image(image: np.ndarray, config: Optional[MeasureConfig] = None) -> ProcessedResult:
    """
    Measure the cucumber in a photo of it lying on the reference sheet.

    Args:
        image: gray, BGR or BGRA uint8 array (not modified)
        config: pipeline parameters, defaults to A4 / MeasureConfig()

    Returns:
        ProcessedResult; check `result.measurement.ok` / `.error`.
    """
    config = config or MeasureConfig()
    partial = _Partial()
    partial.sheet_label = f"sheet {config.sheet_width_mm:g}x{config.sheet_height_mm:g} mm"
    try:
        return _run(image, config, partial)
    except MeasurementError as e:
        log.warning("Measurement failed (%s): %s", e.kind.value, e.message)
        return _failed(partial, e.kind, e.message)
    except Exception as e:
        log.exception("Unexpected error while processing image")
        return _failed(partial, ErrorKind.INTERNAL_ERROR, f"Processing error: {e}")


def _run(image: np.ndarray, config: MeasureConfig, partial: _Partial) -> ProcessedResult:
    img = _prepare(image)
    partial.image = img
    log.debug("Input image %dx%d", img.shape[1], img.shape[0])

    # Step 1: Reference sheet
    sheet_rect, sheet_strategy = detect_sheet(img, config)
    if not sheet_rect.is_valid:
        raise MeasurementError(
            ErrorKind.SHEET_NOT_FOUND,
            "Reference sheet not found. Place the sheet on a darker, contrasting surface.",
        )
    partial.sheet_rect, partial.sheet_strategy = sheet_rect, sheet_strategy

    # Step 2: Scale
    scale = compute_scale(sheet_rect, config.sheet_width_mm, config.sheet_height_mm, config.min_scale_px_per_mm)
    partial.px_per_mm = scale

    # Step 3: Object inside the sheet, keeping clear of the sheet border
    region_rect = clip_rect(sheet_rect.inset(config.sheet_inset_frac), img.shape)
    if not region_rect.is_valid:
        raise MeasurementError(ErrorKind.SHEET_NOT_FOUND, f"Sheet region {tuple(sheet_rect)} is too small.")
    region = crop(img, region_rect)

    contour, segment_strategy = find_object(region, config)
    if not is_usable(contour):
        raise MeasurementError(
            ErrorKind.OBJECT_NOT_FOUND,
            "No object found on the sheet. Ensure the object contrasts with the paper.",
        )
    partial.contour = translate(contour, region_rect.x, region_rect.y)
    partial.segment_strategy = segment_strategy

    # Step 4: Skeleton
    skeleton = None
    if config.use_skeleton:
        skeleton = skeletonize(mask_from_contour(region.shape, contour), config.skeleton_method)
        partial.skeleton_points = translate(skeleton_points(skeleton), region_rect.x, region_rect.y)

    # Step 5: Dimensions
    measurement = measure(contour, skeleton, scale, config)
    if not measurement.ok:
        raise MeasurementError(measurement.error_kind, measurement.error)

    # Step 6: Debug image
    debug = render(img, sheet_rect, partial.contour, partial.skeleton_points, measurement, partial.sheet_label)

    log.info("Measured: length=%.1f mm, width=%.1f mm, diameter=%.1f mm, volume=%.0f mm³, "
             "curvature=%s (px_per_mm=%.3f, sheet=%s, object=%s)",
             measurement.length_mm, measurement.width_mm, measurement.diameter_mm, measurement.volume_mm3,
             f"{measurement.curvature:.3f}" if measurement.curvature is not None else "n/a",
             scale, sheet_strategy, segment_strategy)

    return ProcessedResult(
        measurement=measurement,
        contour=partial.contour,
        sheet_rect=sheet_rect,
        debug_image=debug,
        px_per_mm=scale,
        sheet_strategy=sheet_strategy,
        segment_strategy=segment_strategy,
        skeleton_points=partial.skeleton_points,
    )


def _prepare(image: np.ndarray) -> np.ndarray:
    """Own BGR uint8 copy of the input, or MeasurementError(IMAGE_UNUSABLE)."""
    if image is None or not isinstance(image, np.ndarray) or image.size == 0:
        raise MeasurementError(ErrorKind.IMAGE_UNUSABLE, "Image is empty or missing.")
    if image.dtype != np.uint8:
        raise MeasurementError(ErrorKind.IMAGE_UNUSABLE, f"Unsupported pixel type {image.dtype}.")
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (3, 4)):
        raise MeasurementError(ErrorKind.IMAGE_UNUSABLE, f"Unsupported image shape {image.shape}.")
    return to_bgr(image)


def _failed(partial: _Partial, kind: ErrorKind, message: str) -> ProcessedResult:
    measurement = MeasurementResult.failed(kind, message)
    debug = None
    if partial.image is not None:
        debug = render(partial.image, partial.sheet_rect, partial.contour, partial.skeleton_points, measurement,
                       partial.sheet_label)
    return ProcessedResult(
        measurement=measurement,
        contour=partial.contour,
        sheet_rect=partial.sheet_rect,
        debug_image=debug,
        px_per_mm=partial.px_per_mm,
        sheet_strategy=partial.sheet_strategy,
        segment_strategy=partial.segment_strategy,
        skeleton_points=partial.skeleton_points,
    )
