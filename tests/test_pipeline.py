import math

import cv2
import numpy as np
import pytest

from errors import ErrorKind
from geometry import bounding_rect
from measure import decode_image, process_image, process_image_bytes
from settings import MeasureConfig

from conftest import BLOB, GRAY_OBJECT, box_polygon, make_polygon_scene, make_scene

EXPECTED_SCALE = (800 / 210 + 1131 / 297) / 2
EXPECTED_LENGTH = 500 / EXPECTED_SCALE
EXPECTED_WIDTH = 120 / EXPECTED_SCALE


def _assert_zeroed(m):
    assert (m.length_mm, m.width_mm, m.diameter_mm, m.volume_mm3) == (0.0, 0.0, 0.0, 0.0)


def test_a4_scene(scene, config):
    result = process_image(scene, config)
    m = result.measurement

    assert m.ok, m.error
    assert result.sheet_strategy == "adaptive_polygon"
    assert result.segment_strategy == "otsu"
    assert result.px_per_mm == pytest.approx(3.81, rel=0.02)
    assert m.length_mm == pytest.approx(EXPECTED_LENGTH, rel=0.1)
    assert m.width_mm == pytest.approx(EXPECTED_WIDTH, rel=0.1)
    assert m.diameter_mm == pytest.approx(EXPECTED_WIDTH, rel=0.1)
    assert m.volume_mm3 > 0
    assert m.curvature < 0.2


def test_results_in_image_coordinates(scene, config):
    result = process_image(scene, config)
    rect = bounding_rect(result.contour)
    x, y, w, h = BLOB
    assert abs(rect.x - x) <= 5 and abs(rect.y - y) <= 5
    assert rect.width == pytest.approx(w, abs=10)
    assert rect.height == pytest.approx(h, abs=10)

    pts = result.skeleton_points
    assert len(pts) > 0
    assert pts[:, 0].min() >= x and pts[:, 0].max() < x + w
    assert pts[:, 1].min() >= y and pts[:, 1].max() < y + h


def test_debug_image(scene, config):
    result = process_image(scene, config)
    assert result.debug_image is not None
    assert result.debug_image.shape == scene.shape
    assert not np.array_equal(result.debug_image, scene)


def test_input_not_modified(scene, config):
    original = scene.copy()
    process_image(scene, config)
    assert np.array_equal(scene, original)


def test_green_object_uses_color(green_scene, config):
    result = process_image(green_scene, config)
    assert result.measurement.ok
    assert result.segment_strategy == "color"
    assert result.measurement.length_mm == pytest.approx(EXPECTED_LENGTH, rel=0.1)


def test_grayscale_input(scene, config):
    result = process_image(cv2.cvtColor(scene, cv2.COLOR_BGR2GRAY), config)
    assert result.measurement.ok
    assert result.debug_image.ndim == 3


def test_bounding_box_mode(scene):
    result = process_image(scene, MeasureConfig(use_skeleton=False))
    m = result.measurement
    assert m.ok
    assert m.curvature is None
    assert result.skeleton_points is None
    assert m.length_mm == pytest.approx(EXPECTED_LENGTH, rel=0.1)


def test_morphological_skeleton(scene):
    result = process_image(scene, MeasureConfig(skeleton_method="morphological"))
    assert result.measurement.ok
    assert result.measurement.length_mm == pytest.approx(EXPECTED_LENGTH, rel=0.15)


def test_blank_image(blank, config):
    result = process_image(blank, config)
    m = result.measurement
    assert m.error_kind == ErrorKind.SHEET_NOT_FOUND
    assert m.error
    _assert_zeroed(m)
    assert result.sheet_rect is None
    assert result.debug_image is not None


def test_sheet_without_object(sheet_only, config):
    result = process_image(sheet_only, config)
    m = result.measurement
    assert m.error_kind == ErrorKind.OBJECT_NOT_FOUND
    _assert_zeroed(m)
    assert result.sheet_rect is not None and result.sheet_rect.is_valid
    assert result.px_per_mm == pytest.approx(3.81, rel=0.02)
    assert result.debug_image is not None


def test_scale_too_small(scene):
    result = process_image(scene, MeasureConfig(min_scale_px_per_mm=10))
    assert result.measurement.error_kind == ErrorKind.SCALE_TOO_SMALL
    assert result.sheet_rect is not None


@pytest.mark.parametrize("image", [
    None,
    np.zeros((0, 0, 3), dtype=np.uint8),
    np.zeros((50, 50, 3), dtype=np.float32),
    np.zeros((4, 50, 50, 3), dtype=np.uint8),
])
def test_unusable_image(image, config):
    result = process_image(image, config)
    assert result.measurement.error_kind == ErrorKind.IMAGE_UNUSABLE
    assert result.debug_image is None
    _assert_zeroed(result.measurement)


def test_process_image_bytes(png_bytes, config):
    result = process_image_bytes(png_bytes, config)
    assert result.measurement.ok
    assert result.measurement.length_mm == pytest.approx(EXPECTED_LENGTH, rel=0.1)


@pytest.mark.parametrize("data", [b"", b"not an image"])
def test_undecodable_bytes(data, config):
    assert decode_image(data) is None
    result = process_image_bytes(data, config)
    assert result.measurement.error_kind == ErrorKind.IMAGE_UNUSABLE


def test_result_dict(scene, config):
    data = process_image(scene, config).to_dict()
    assert data["error"] is None
    assert data["sheet_strategy"] == "adaptive_polygon"
    assert data["segment_strategy"] == "otsu"
    assert data["contour_points"] >= 4
    assert set(data["sheet_rect"]) == {"x", "y", "width", "height"}


@pytest.mark.parametrize("angle", [0, 20, 35, 60])
def test_tilted_object(config, angle):
    img = make_polygon_scene(box_polygon((450, 600), (500, 120), angle))
    m = process_image(img, config).measurement
    box = process_image(img, MeasureConfig(use_skeleton=False)).measurement

    assert m.ok, m.error
    assert m.length_mm == pytest.approx(EXPECTED_LENGTH, rel=0.1)
    assert m.width_mm == pytest.approx(EXPECTED_WIDTH, rel=0.1)
    assert m.length_mm == pytest.approx(box.length_mm, rel=0.05)
    assert m.width_mm == pytest.approx(box.width_mm, rel=0.1)


@pytest.mark.parametrize("method, tolerance", [("zhang_suen", 0.1), ("morphological", 0.15)])
def test_bent_object(method, tolerance):
    img = make_scene(blob=None)
    cv2.ellipse(img, (450, 600), (250, 250), 0, 200, 340, GRAY_OBJECT, 60)

    result = process_image(img, MeasureConfig(skeleton_method=method))
    m = result.measurement
    assert m.ok, m.error
    # Centre arc plus two round caps of half the thickness
    expected_px = 250 * math.radians(140) + 60
    assert m.length_mm == pytest.approx(expected_px / result.px_per_mm, rel=tolerance)
    assert m.width_mm == pytest.approx(60 / result.px_per_mm, rel=tolerance)
