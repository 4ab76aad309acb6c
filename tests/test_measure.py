import math

import numpy as np
import pytest

from errors import ErrorKind, MeasurementError
from geometry import EMPTY_CONTOUR
from measure import MeasurementResult, cylinder_volume, measure
from skeleton import skeletonize

from conftest import arc_polygon, box_polygon, polygon_contour, polygon_mask, rect_contour, rect_mask

SHAPE = (200, 700)
RECT = (100, 40, 500, 120)
SCENE_SHAPE = (700, 900)
ARC = ((450, 600), 250, 60, 200, 340)
ARC_LENGTH = 250 * math.radians(140)
TOLERANCE = {"zhang_suen": 0.1, "morphological": 0.15}


def test_cylinder_volume():
    assert cylinder_volume(100, 30) == pytest.approx(math.pi * 15 ** 2 * 100)
    assert cylinder_volume(100, 0) == 0


def test_bounding_box_measurement(config):
    contour = rect_contour(SHAPE, *RECT)
    m = measure(contour, None, 2.0, config)
    assert m.ok
    assert m.length_mm == pytest.approx(250, rel=0.01)
    assert m.width_mm == pytest.approx(60, rel=0.02)
    assert m.diameter_mm == m.width_mm
    assert m.volume_mm3 == pytest.approx(cylinder_volume(m.length_mm, m.diameter_mm))
    assert m.curvature is None


def test_skeleton_measurement(config):
    contour = rect_contour(SHAPE, *RECT)
    skel = skeletonize(rect_mask(SHAPE, *RECT))
    m = measure(contour, skel, 2.0, config)
    assert m.ok
    assert m.length_mm == pytest.approx(250, rel=0.05)
    assert m.width_mm == pytest.approx(60, rel=0.05)
    assert m.diameter_mm == pytest.approx(60, rel=0.05)
    assert m.volume_mm3 == pytest.approx(cylinder_volume(m.length_mm, m.diameter_mm))
    assert m.curvature == pytest.approx(0.0, abs=0.2)


def _assert_failed(m):
    assert not m.ok
    assert m.error_kind == ErrorKind.MEASUREMENT_FAILED
    assert (m.length_mm, m.width_mm, m.diameter_mm, m.volume_mm3) == (0.0, 0.0, 0.0, 0.0)
    assert all(math.isfinite(v) for v in (m.length_mm, m.width_mm, m.diameter_mm, m.volume_mm3))


def test_too_few_points(config):
    _assert_failed(measure(EMPTY_CONTOUR, None, 2.0, config))
    _assert_failed(measure(np.array([[[0, 0]], [[5, 5]]], dtype=np.int32), None, 2.0, config))


@pytest.mark.parametrize("scale", [0, -1.0, float("nan")])
def test_bad_scale(config, scale):
    _assert_failed(measure(rect_contour(SHAPE, *RECT), None, scale, config))


def test_empty_skeleton(config):
    _assert_failed(measure(rect_contour(SHAPE, *RECT), np.zeros(SHAPE, dtype=np.uint8), 2.0, config))


def test_failed_result_dict():
    data = MeasurementResult.failed(ErrorKind.OBJECT_NOT_FOUND, "nothing there").to_dict()
    assert data["error"] == "nothing there"
    assert data["error_kind"] == "object_not_found"
    assert data["length_mm"] == 0.0
    assert data["curvature"] is None


def test_result_dict_rounding():
    data = MeasurementResult(131.2549, 31.27, 31.5, 102345.6, 0.01234).to_dict()
    assert data["length_mm"] == 131.3
    assert data["volume_ml"] == 102.3
    assert data["curvature"] == 0.012
    assert data["error_kind"] is None


def test_measurement_error_carries_kind():
    err = MeasurementError(ErrorKind.SHEET_NOT_FOUND, "no sheet")
    assert err.kind == ErrorKind.SHEET_NOT_FOUND
    assert err.message == "no sheet"
    assert "no sheet" in str(err)


@pytest.mark.parametrize("angle", [0, 20, 35, 60])
def test_tilted_object(config, angle):
    polygon = box_polygon((450, 350), (500, 120), angle)
    contour = polygon_contour(SCENE_SHAPE, polygon)
    skel = skeletonize(polygon_mask(SCENE_SHAPE, polygon))

    m = measure(contour, skel, 1.0, config)
    box = measure(contour, None, 1.0, config)
    assert m.ok, m.error
    assert m.length_mm == pytest.approx(500, rel=0.05)
    assert m.width_mm == pytest.approx(120, rel=0.05)
    assert m.length_mm == pytest.approx(box.length_mm, rel=0.05)


@pytest.mark.parametrize("method", ["zhang_suen", "morphological"])
def test_bent_object(config, method):
    polygon = arc_polygon(*ARC)
    skel = skeletonize(polygon_mask(SCENE_SHAPE, polygon), method)

    m = measure(polygon_contour(SCENE_SHAPE, polygon), skel, 1.0, config)
    assert m.ok, m.error
    assert m.length_mm == pytest.approx(ARC_LENGTH, rel=TOLERANCE[method])
    assert m.width_mm == pytest.approx(60, rel=TOLERANCE[method])
    assert m.curvature > 0
    # The chord of a bent object is shorter than its centre line
    assert m.length_mm > measure(polygon_contour(SCENE_SHAPE, polygon), None, 1.0, config).length_mm


def test_split_skeleton(config):
    skel = np.zeros(SHAPE, dtype=np.uint8)
    skel[100, 120:330] = 255
    skel[100, 370:580] = 255
    m = measure(rect_contour(SHAPE, *RECT), skel, 2.0, config)
    _assert_failed(m)
    assert "pieces" in m.error


def test_skeleton_far_shorter_than_object(config):
    # Runs across the object instead of along it
    skel = np.zeros(SHAPE, dtype=np.uint8)
    skel[60:141, 350] = 255
    m = measure(rect_contour(SHAPE, *RECT), skel, 2.0, config)
    _assert_failed(m)
    assert "extent" in m.error
