"""
segment.py – Isolate the object silhouette inside the sheet region.

Detection methods, tried in the configured order until one yields a contour:
  1. color    – HSV ranges from the configured palette (green, yellow, ...)
  2. otsu     – grayscale Otsu threshold, for objects darker than the sheet
  3. edges    – Canny edges closed into outlines
  4. darkness – adaptive threshold + plausibility score, for low-contrast dark objects

All contours are returned in region coordinates.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

from geometry import (
    EMPTY_CONTOUR,
    bounding_rect,
    contour_area,
    elongation,
    fill_ratio,
    find_external_contours,
    min_area_rect,
    solidity,
)
from settings import MeasureConfig

log = logging.getLogger("morphology.segment")

CANNY_LOW = 50
CANNY_HIGH = 150

# Darkness scoring
DARK_BLOCK_SIZE = 51
DARK_C = 10
SCORE_WEIGHTS = {"aspect": 0.4, "fill": 0.2, "solidity": 0.2, "darkness": 0.2}


def _kernel(size: int) -> np.ndarray:
    return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))


def _largest_elongated(contours: List[np.ndarray], min_area: float, min_elongation: float) -> np.ndarray:
    """Largest contour with area >= min_area and bounding-box elongation >= min_elongation."""
    best = EMPTY_CONTOUR
    best_area = 0.0
    for c in contours:
        area = contour_area(c)
        if area < min_area:
            continue
        # Round blobs (shadows, reflections) are not the target
        if elongation(bounding_rect(c)) < min_elongation:
            continue
        if area > best_area:
            best, best_area = c, area
    return best


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def segment_by_color(region: np.ndarray, config: MeasureConfig) -> np.ndarray:
    hsv = cv2.cvtColor(region, cv2.COLOR_BGR2HSV)
    kernel = _kernel(config.morph_kernel_size)
    min_area = region.shape[0] * region.shape[1] * config.min_object_area_frac

    for color_range in config.color_ranges:
        lower = np.array(color_range.lower, dtype=np.uint8)
        upper = np.array(color_range.upper, dtype=np.uint8)
        mask = cv2.inRange(hsv, lower, upper)
        mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel, iterations=1)
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel, iterations=2)
        if config.color_dilate_iterations:
            mask = cv2.dilate(mask, kernel, iterations=config.color_dilate_iterations)

        log.debug("Color range %s: %d non-zero pixels", color_range.name, cv2.countNonZero(mask))
        contour = _largest_elongated(find_external_contours(mask), min_area, config.min_elongation)
        if len(contour):
            log.debug("Color range %s matched (area=%.0f)", color_range.name, contour_area(contour))
            return contour

    return EMPTY_CONTOUR


def segment_by_otsu(region: np.ndarray, config: MeasureConfig) -> np.ndarray:
    gray = cv2.cvtColor(region, cv2.COLOR_BGR2GRAY)
    blur = cv2.GaussianBlur(gray, (5, 5), 0)
    threshold, binary = cv2.threshold(blur, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    # Background (the sheet) is the majority; if it is the bright side the target is dark
    if cv2.countNonZero(binary) > binary.size / 2:
        binary = cv2.bitwise_not(binary)
    log.debug("Otsu threshold=%.0f, foreground=%d px", threshold, cv2.countNonZero(binary))

    kernel = _kernel(config.morph_kernel_size)
    mask = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)
    mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel)

    best = EMPTY_CONTOUR
    best_area = 0.0
    for c in find_external_contours(mask):
        area = contour_area(c)
        if area > best_area and area > config.min_contour_area_px:
            best, best_area = c, area
    return best


def segment_by_edges(region: np.ndarray, config: MeasureConfig) -> np.ndarray:
    gray = cv2.cvtColor(region, cv2.COLOR_BGR2GRAY)
    blur = cv2.GaussianBlur(gray, (5, 5), 0)
    edges = cv2.Canny(blur, CANNY_LOW, CANNY_HIGH)

    # Close small gaps so the outline becomes one contour
    edges = cv2.dilate(edges, cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3)), iterations=2)
    log.debug("Edges: %d non-zero pixels", cv2.countNonZero(edges))

    min_area = region.shape[0] * region.shape[1] * config.min_object_area_frac
    return _largest_elongated(find_external_contours(edges), min_area, config.min_elongation)


def segment_by_darkness(region: np.ndarray, config: MeasureConfig) -> np.ndarray:
    """
    Fallback for dark objects with little colour or contrast.
    Each candidate is scored on elongation, fill ratio, solidity and
    darkness; the best score wins.
    """
    gray = cv2.cvtColor(region, cv2.COLOR_BGR2GRAY)
    blur = cv2.GaussianBlur(gray, (5, 5), 0)
    thresh = cv2.adaptiveThreshold(
        blur, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV, DARK_BLOCK_SIZE, DARK_C
    )
    # Larger kernel to bridge gaps in the object's outline band
    kernel = _kernel(2 * config.morph_kernel_size + 1)
    closed = cv2.morphologyEx(thresh, cv2.MORPH_CLOSE, kernel, iterations=2)

    value = cv2.cvtColor(region, cv2.COLOR_BGR2HSV)[:, :, 2]
    min_area = region.shape[0] * region.shape[1] * config.min_object_area_frac

    best = EMPTY_CONTOUR
    best_score = -1.0
    for c in find_external_contours(closed):
        if contour_area(c) < min_area:
            continue
        score = darkness_score(c, value, config.ideal_elongation)
        if score > best_score:
            best, best_score = c, score

    if len(best):
        log.debug("Darkness: best score %.3f", best_score)
    return best


def darkness_score(contour: np.ndarray, value: np.ndarray, ideal_elongation: float = 4.0) -> float:
    """Weighted plausibility of a dark elongated candidate, in [0, 1]."""
    rotated = min_area_rect(contour)
    if rotated.short_side <= 0:
        return 0.0
    elong = rotated.long_side / rotated.short_side
    aspect = min(max((elong - 1.0) / (ideal_elongation - 1.0), 0.0), 1.0)

    rect = bounding_rect(contour)
    patch = value[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width]
    darkness = 1.0 - float(np.mean(patch)) / 255.0 if patch.size else 0.0

    return (
        SCORE_WEIGHTS["aspect"] * aspect
        + SCORE_WEIGHTS["fill"] * fill_ratio(contour)
        + SCORE_WEIGHTS["solidity"] * solidity(contour)
        + SCORE_WEIGHTS["darkness"] * darkness
    )


STRATEGIES: Dict[str, Callable[[np.ndarray, MeasureConfig], np.ndarray]] = {
    "color": segment_by_color,
    "otsu": segment_by_otsu,
    "edges": segment_by_edges,
    "darkness": segment_by_darkness,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def find_object(region: np.ndarray, config: Optional[MeasureConfig] = None) -> Tuple[np.ndarray, Optional[str]]:
    """Run the configured strategies in order; returns (contour, strategy_name)."""
    config = config or MeasureConfig()
    if region is None or region.size == 0:
        return EMPTY_CONTOUR, None

    for name in config.segment_strategies:
        try:
            contour = STRATEGIES[name](region, config)
        except cv2.error as e:
            log.warning("Segmentation strategy %s failed: %s", name, e)
            continue
        if len(contour) >= 3:
            rect = bounding_rect(contour)
            log.info("Object found by %s: bbox=%s area=%.0f", name, tuple(rect), contour_area(contour))
            return contour, name
        log.debug("Segmentation strategy %s found nothing", name)

    log.warning("No segmentation strategy found the object")
    return EMPTY_CONTOUR, None


def segment(region: np.ndarray, config: Optional[MeasureConfig] = None) -> np.ndarray:
    """Object contour in region coordinates; empty if not found."""
    contour, _ = find_object(region, config)
    return contour
