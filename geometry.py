"""
geometry.py – Contour and rectangle primitives shared by the pipeline.

Contours use the OpenCV layout: int32 array of shape (N, 1, 2) holding (x, y).
An empty contour means "not found".
"""

from typing import List, NamedTuple, Optional, Sequence, Tuple

import cv2
import numpy as np

EMPTY_CONTOUR = np.empty((0, 1, 2), dtype=np.int32)


# ---------------------------------------------------------------------------
# Rectangles
# ---------------------------------------------------------------------------

class PixelRect(NamedTuple):
    """Axis-aligned rectangle in image coordinates (top-left origin)."""
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def empty(cls) -> "PixelRect":
        return cls(0, 0, 0, 0)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    @property
    def area(self) -> int:
        return self.width * self.height if self.is_valid else 0

    @property
    def br(self) -> Tuple[int, int]:
        return self.x + self.width, self.y + self.height

    def inset(self, frac: float) -> "PixelRect":
        """Shrink by `frac` of each dimension on every side."""
        dx = int(round(self.width * frac))
        dy = int(round(self.height * frac))
        return PixelRect(self.x + dx, self.y + dy, self.width - 2 * dx, self.height - 2 * dy)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


class RotatedRect(NamedTuple):
    center: Tuple[float, float]
    size: Tuple[float, float]
    angle: float

    @property
    def long_side(self) -> float:
        return float(max(self.size))

    @property
    def short_side(self) -> float:
        return float(min(self.size))


def clip_rect(rect: PixelRect, shape: Sequence[int]) -> PixelRect:
    """Clip rect to an image of the given (h, w, ...) shape."""
    h, w = shape[:2]
    x1 = min(max(rect.x, 0), w)
    y1 = min(max(rect.y, 0), h)
    x2 = min(max(rect.x + rect.width, 0), w)
    y2 = min(max(rect.y + rect.height, 0), h)
    return PixelRect(x1, y1, x2 - x1, y2 - y1)


def spans_frame(rect: PixelRect, shape: Sequence[int], tolerance: int = 2) -> bool:
    """True if rect touches all four image borders."""
    h, w = shape[:2]
    return (
        rect.x <= tolerance
        and rect.y <= tolerance
        and rect.x + rect.width >= w - tolerance
        and rect.y + rect.height >= h - tolerance
    )


# ---------------------------------------------------------------------------
# Contours
# ---------------------------------------------------------------------------

def is_usable(contour: Optional[np.ndarray]) -> bool:
    return contour is not None and len(contour) >= 3


def bounding_rect(contour: np.ndarray) -> PixelRect:
    if contour is None or len(contour) == 0:
        return PixelRect.empty()
    return PixelRect(*cv2.boundingRect(contour))


def min_area_rect(contour: np.ndarray) -> RotatedRect:
    center, size, angle = cv2.minAreaRect(contour)
    return RotatedRect(tuple(center), tuple(size), float(angle))


def contour_area(contour: np.ndarray) -> float:
    if not is_usable(contour):
        return 0.0
    return float(cv2.contourArea(contour))


def approx_polygon(contour: np.ndarray, epsilon_frac: float = 0.02) -> np.ndarray:
    """Douglas-Peucker approximation with epsilon as a fraction of the perimeter."""
    epsilon = epsilon_frac * cv2.arcLength(contour, True)
    return cv2.approxPolyDP(contour, epsilon, True)


def convex_hull(contour: np.ndarray) -> np.ndarray:
    return cv2.convexHull(contour)


def largest_contour(contours: Sequence[np.ndarray]) -> np.ndarray:
    if not contours:
        return EMPTY_CONTOUR
    return max(contours, key=cv2.contourArea)


def find_external_contours(mask: np.ndarray) -> List[np.ndarray]:
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return list(contours)


# ---------------------------------------------------------------------------
# Shape ratios
# ---------------------------------------------------------------------------

def elongation(rect: PixelRect) -> float:
    """max(aspect, 1/aspect) of a bounding box; 0 for an invalid rect."""
    if not rect.is_valid:
        return 0.0
    aspect = rect.width / rect.height
    return max(aspect, 1.0 / aspect)


def fill_ratio(contour: np.ndarray) -> float:
    """Contour area / bounding-box area."""
    rect = bounding_rect(contour)
    if not rect.is_valid:
        return 0.0
    return contour_area(contour) / rect.area


def solidity(contour: np.ndarray) -> float:
    """Contour area / convex hull area."""
    if not is_usable(contour):
        return 0.0
    hull_area = float(cv2.contourArea(convex_hull(contour)))
    if hull_area <= 0:
        return 0.0
    return contour_area(contour) / hull_area


# ---------------------------------------------------------------------------
# Point-set transforms and rasters
# ---------------------------------------------------------------------------

def translate(points: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """Shift contour (N,1,2) or point (N,2) arrays; returns a new array."""
    shifted = points.copy()
    shifted[..., 0] += dx
    shifted[..., 1] += dy
    return shifted


def scale_points(points: np.ndarray, factor: float) -> np.ndarray:
    return np.round(points.astype(np.float64) * factor).astype(np.int32)


def crop(image: np.ndarray, rect: PixelRect) -> np.ndarray:
    """Owned copy of the rect region (never a view of `image`)."""
    rect = clip_rect(rect, image.shape)
    return image[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width].copy()


def to_bgr(image: np.ndarray) -> np.ndarray:
    """BGR uint8 copy of a gray, BGR or BGRA image."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image.copy()


def mask_from_contour(shape: Sequence[int], contour: np.ndarray) -> np.ndarray:
    """Filled 0/255 mask of the contour."""
    mask = np.zeros(tuple(shape[:2]), dtype=np.uint8)
    if len(contour) > 0:
        cv2.drawContours(mask, [contour], -1, 255, cv2.FILLED)
    return mask
