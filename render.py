"""
render.py – Debug overlay for a measurement.

Draw order (back to front): object fill, sheet frame, object outline,
bounding box, skeleton dots, labels. The source image is never modified.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from geometry import PixelRect, bounding_rect, is_usable, mask_from_contour, to_bgr

log = logging.getLogger("morphology.render")

# BGR
FILL_COLOR = (0, 255, 0)
SHEET_COLOR = (255, 0, 0)
CONTOUR_COLOR = (0, 128, 0)
BOX_COLOR = (0, 0, 255)
SKELETON_COLOR = (0, 0, 255)
ERROR_COLOR = (0, 0, 255)

FILL_ALPHA = 0.5
SKELETON_RADIUS = 2
FONT = cv2.FONT_HERSHEY_SIMPLEX


def placeholder() -> np.ndarray:
    """100x100 solid red image, returned when drawing fails."""
    return np.full((100, 100, 3), ERROR_COLOR, dtype=np.uint8)


def render(
    source: np.ndarray,
    sheet_rect: Optional[PixelRect] = None,
    contour: Optional[np.ndarray] = None,
    skeleton_points: Optional[np.ndarray] = None,
    measurement=None,
    sheet_label: str = "sheet",
) -> np.ndarray:
    """
    Annotated BGR copy of `source`. All coordinates are in the source frame.
    `measurement` is a MeasurementResult; a successful one adds L/D/V to the
    object label, a failed one is printed as an error line. `sheet_label`
    is drawn above the sheet frame.
    """
    try:
        return _draw(source, sheet_rect, contour, skeleton_points, measurement, sheet_label)
    except Exception as e:
        log.warning("Debug render failed: %s", e)
        return placeholder()


def _draw(source, sheet_rect, contour, skeleton_points, measurement, sheet_label) -> np.ndarray:
    out = to_bgr(source)
    h, w = out.shape[:2]
    thickness = max(2, int(round(max(h, w) / 400)))
    font_scale = max(0.5, max(h, w) / 1500)
    has_object = is_usable(contour)

    if has_object:
        overlay = out.copy()
        overlay[mask_from_contour(out.shape, contour) > 0] = FILL_COLOR
        out = cv2.addWeighted(overlay, FILL_ALPHA, out, 1 - FILL_ALPHA, 0)

    if sheet_rect is not None and sheet_rect.is_valid:
        cv2.rectangle(out, (sheet_rect.x, sheet_rect.y), sheet_rect.br, SHEET_COLOR, thickness + 1)

    box = None
    if has_object:
        cv2.drawContours(out, [contour], -1, CONTOUR_COLOR, thickness)
        box = bounding_rect(contour)
        cv2.rectangle(out, (box.x, box.y), box.br, BOX_COLOR, max(1, thickness - 1))

    if skeleton_points is not None:
        for x, y in np.asarray(skeleton_points).reshape(-1, 2):
            cv2.circle(out, (int(x), int(y)), SKELETON_RADIUS, SKELETON_COLOR, -1)

    # Labels
    if sheet_rect is not None and sheet_rect.is_valid:
        _label(out, sheet_label, sheet_rect.x, sheet_rect.y, SHEET_COLOR, font_scale)

    if box is not None:
        text = "cucumber"
        if measurement is not None and measurement.ok:
            text += " L={:.1f}mm D={:.1f}mm V={:.1f}ml".format(
                measurement.length_mm, measurement.diameter_mm, measurement.volume_mm3 / 1000
            )
        _label(out, text, box.x, box.y, CONTOUR_COLOR, font_scale)

    if measurement is not None and not measurement.ok:
        cv2.putText(out, measurement.error, (10, int(30 * font_scale) + 10), FONT, font_scale,
                    ERROR_COLOR, max(1, thickness - 1), cv2.LINE_AA)

    return out


def _label(img: np.ndarray, text: str, x: int, y: int, color, font_scale: float):
    """Text just above (x, y), pushed inside the image when it would be cut off."""
    (tw, th), baseline = cv2.getTextSize(text, FONT, font_scale, 2)
    ty = y - 8 if y - 8 - th >= 0 else y + th + 8
    tx = min(max(x, 0), max(img.shape[1] - tw, 0))
    cv2.putText(img, text, (tx, ty), FONT, font_scale, color, 2, cv2.LINE_AA)
