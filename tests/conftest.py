"""Synthetic scenes: white A4 sheet on a dark table with an elongated object."""

import cv2
import numpy as np
import pytest

from settings import MeasureConfig

# 800 x 1131 px sheet -> (800/210 + 1131/297) / 2 ≈ 3.809 px/mm
SHEET = (50, 50, 800, 1131)
# 500 x 120 px object -> ≈ 131.3 x 31.5 mm
BLOB = (200, 300, 500, 120)
IMAGE_SIZE = (1240, 900)  # h, w

GRAY_OBJECT = (40, 40, 40)
GREEN_OBJECT = (40, 160, 40)  # BGR


def make_scene(blob_color=GRAY_OBJECT, blob=BLOB, sheet=SHEET, size=IMAGE_SIZE, background=60):
    h, w = size
    img = np.full((h, w, 3), background, dtype=np.uint8)
    if sheet is not None:
        x, y, sw, sh = sheet
        img[y:y + sh, x:x + sw] = 255
    if blob is not None:
        bx, by, bw, bh = blob
        img[by:by + bh, bx:bx + bw] = blob_color
    return img


def rect_mask(shape, x, y, w, h):
    mask = np.zeros(shape, dtype=np.uint8)
    mask[y:y + h, x:x + w] = 255
    return mask


def rect_contour(shape, x, y, w, h):
    contours, _ = cv2.findContours(rect_mask(shape, x, y, w, h), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return contours[0]


@pytest.fixture
def scene():
    return make_scene()


@pytest.fixture
def green_scene():
    return make_scene(blob_color=GREEN_OBJECT)


@pytest.fixture
def sheet_only():
    return make_scene(blob=None)


@pytest.fixture
def blank():
    return np.full((600, 400, 3), 255, dtype=np.uint8)


@pytest.fixture
def config():
    return MeasureConfig()


@pytest.fixture
def png_bytes(scene):
    ok, buf = cv2.imencode(".png", scene)
    assert ok
    return buf.tobytes()


def box_polygon(center, size, angle):
    """Corners of a rotated rectangle as an int32 polygon."""
    return np.round(cv2.boxPoints((center, size, angle))).astype(np.int32)


def arc_polygon(center, radius, thickness, start_deg, end_deg, samples=200):
    """Band of `thickness` px along a circular arc, with flat ends."""
    t = np.deg2rad(np.linspace(start_deg, end_deg, samples))
    cx, cy = center
    outer = np.column_stack([cx + (radius + thickness / 2) * np.cos(t), cy + (radius + thickness / 2) * np.sin(t)])
    inner = np.column_stack([cx + (radius - thickness / 2) * np.cos(t), cy + (radius - thickness / 2) * np.sin(t)])
    return np.round(np.concatenate([outer, inner[::-1]])).astype(np.int32)


def polygon_mask(shape, polygon):
    mask = np.zeros(shape, dtype=np.uint8)
    cv2.fillPoly(mask, [polygon], 255)
    return mask


def polygon_contour(shape, polygon):
    contours, _ = cv2.findContours(polygon_mask(shape, polygon), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return max(contours, key=cv2.contourArea)


def make_polygon_scene(polygon, color=GRAY_OBJECT):
    img = make_scene(blob=None)
    cv2.fillPoly(img, [polygon], color)
    return img
