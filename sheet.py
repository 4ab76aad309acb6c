"""
sheet.py – Reference sheet detection and pixel-to-millimetre scale.

Strategies are tried in the configured order until one yields a plausible
rectangle:
  1. adaptive_polygon – adaptive threshold + polygon approximation (primary)
  2. largest_contour  – fixed binary threshold, largest external contour
  3. margin           – image minus a fixed margin (opt-in last resort)
"""

import logging
from typing import Callable, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from errors import ErrorKind, MeasurementError
from geometry import (
    PixelRect,
    approx_polygon,
    bounding_rect,
    clip_rect,
    find_external_contours,
    largest_contour,
    scale_points,
    spans_frame,
)
from settings import MeasureConfig

log = logging.getLogger("morphology.sheet")

MARGIN_FRAC = 1 / 20
MIN_MARGIN_PX = 20
BINARY_THRESHOLD = 127
POLY_EPSILON_FRAC = 0.02

# Adaptive threshold neighbourhood (on the downscaled image)
ADAPTIVE_BLOCK_SIZE = 11
ADAPTIVE_C = 2


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def detect_by_margin(img: np.ndarray, config: Optional[MeasureConfig] = None) -> PixelRect:
    """Assume the sheet fills the frame minus a margin. Not a real detector."""
    h, w = img.shape[:2]
    margin_x = max(MIN_MARGIN_PX, int(w * MARGIN_FRAC))
    margin_y = max(MIN_MARGIN_PX, int(h * MARGIN_FRAC))
    return PixelRect(margin_x, margin_y, w - 2 * margin_x, h - 2 * margin_y)


def detect_by_largest_contour(img: np.ndarray, config: Optional[MeasureConfig] = None) -> PixelRect:
    """Bounding box of the largest external contour of a fixed-threshold binary image."""
    gray = _gray(img)
    _, binary = cv2.threshold(gray, BINARY_THRESHOLD, 255, cv2.THRESH_BINARY)
    contours = find_external_contours(binary)
    if not contours:
        return PixelRect.empty()
    return bounding_rect(largest_contour(contours))


def detect_by_adaptive_polygon(img: np.ndarray, config: Optional[MeasureConfig] = None) -> PixelRect:
    """
    Sheet outline from an adaptive threshold on a downscaled copy.

    The sheet border shows up as a closed band of locally dark pixels; the
    largest external contour of that band, approximated to a polygon, gives
    the sheet. Coordinates are scaled back to the original resolution.
    """
    config = config or MeasureConfig()
    h, w = img.shape[:2]
    factor = min(1.0, config.sheet_detect_max_dim / max(h, w))
    if factor < 1.0:
        small = cv2.resize(
            img, (max(1, int(round(w * factor))), max(1, int(round(h * factor)))),
            interpolation=cv2.INTER_AREA,
        )
    else:
        small = img

    gray = _gray(small)
    gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)
    blur = cv2.GaussianBlur(gray, (5, 5), 0)
    thresh = cv2.adaptiveThreshold(
        blur, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY_INV, ADAPTIVE_BLOCK_SIZE, ADAPTIVE_C,
    )

    # Bridge small gaps in the border band
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (5, 5))
    closed = cv2.morphologyEx(thresh, cv2.MORPH_CLOSE, kernel, iterations=2)

    contours = find_external_contours(closed)
    if not contours:
        return PixelRect.empty()

    polygon = approx_polygon(largest_contour(contours), POLY_EPSILON_FRAC)
    if factor < 1.0:
        polygon = scale_points(polygon, 1.0 / factor)
    rect = bounding_rect(polygon)
    log.debug("Adaptive polygon: %d vertices, rect=%s (factor=%.3f)", len(polygon), rect, factor)
    if not rect.is_valid:
        return PixelRect.empty()
    return clip_rect(rect, img.shape)


SHEET_STRATEGIES: Dict[str, Callable[[np.ndarray, MeasureConfig], PixelRect]] = {
    "adaptive_polygon": detect_by_adaptive_polygon,
    "largest_contour": detect_by_largest_contour,
    "margin": detect_by_margin,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def detect_sheet(img: np.ndarray, config: Optional[MeasureConfig] = None) -> Tuple[PixelRect, Optional[str]]:
    """
    Locate the reference sheet.

    Returns (rect, strategy_name); (PixelRect.empty(), None) if every
    configured strategy failed.
    """
    config = config or MeasureConfig()

    for name in config.sheet_strategies:
        try:
            rect = SHEET_STRATEGIES[name](img, config)
        except cv2.error as e:
            log.warning("Sheet strategy %s failed: %s", name, e)
            continue

        if name == "margin":
            plausible = rect.is_valid
        else:
            plausible = _is_plausible(rect, img.shape, config.min_sheet_area_frac)

        if plausible:
            log.info("Sheet found by %s: %s", name, rect)
            return rect, name
        log.debug("Sheet strategy %s rejected rect %s", name, rect)

    log.warning("No sheet strategy produced a usable rectangle")
    return PixelRect.empty(), None


def compute_scale(
    rect: PixelRect,
    sheet_width_mm: float = 210.0,
    sheet_height_mm: float = 297.0,
    min_scale: float = 0.5,
) -> float:
    """
    Pixels per millimetre from the sheet rectangle.

    Longer pixel side is matched to the longer physical side; the two
    per-axis estimates are averaged.

    Raises:
        MeasurementError(SCALE_TOO_SMALL) for an invalid rect or a scale at
        or below `min_scale`.
    """
    if not rect.is_valid:
        raise MeasurementError(ErrorKind.SCALE_TOO_SMALL, f"Cannot compute scale from rect {tuple(rect)}.")

    long_mm, short_mm = max(sheet_width_mm, sheet_height_mm), min(sheet_width_mm, sheet_height_mm)
    landscape = rect.width > rect.height
    if landscape:
        scale_x = rect.width / long_mm
        scale_y = rect.height / short_mm
    else:
        scale_x = rect.width / short_mm
        scale_y = rect.height / long_mm
    scale = (scale_x + scale_y) / 2

    log.debug("Scale: x=%.3f y=%.3f -> %.3f px/mm (landscape=%s)", scale_x, scale_y, scale, landscape)

    if scale <= min_scale:
        raise MeasurementError(
            ErrorKind.SCALE_TOO_SMALL,
            f"Scale {scale:.3f} px/mm is below {min_scale} px/mm. Take the photo closer to the sheet.",
        )
    return scale


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _gray(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return img
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


def _is_plausible(rect: PixelRect, shape: Sequence[int], min_area_frac: float) -> bool:
    if not rect.is_valid:
        return False
    h, w = shape[:2]
    if rect.area < min_area_frac * h * w:
        return False
    # A "sheet" bounded only by the frame edge is the frame itself
    return not spans_frame(rect, shape)
