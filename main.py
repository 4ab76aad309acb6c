"""
main.py – FastAPI application for the cucumber measurement service.

Upload a photo of a cucumber lying on an A4 sheet, get back its length,
width, diameter, volume and curvature plus an annotated debug image.
"""

import os
import asyncio
import base64
import logging
from contextlib import asynccontextmanager

import cv2
from fastapi import FastAPI, UploadFile, File, Form
from fastapi.responses import JSONResponse

import measure
from settings import MeasureConfig

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if os.environ.get("LOG_LEVEL", "").upper() == "DEBUG" else logging.INFO,
    format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("morphology")

# ---------------------------------------------------------------------------
# Config from env
# ---------------------------------------------------------------------------

SHEET_WIDTH_MM = float(os.environ.get("SHEET_WIDTH_MM", "210"))
SHEET_HEIGHT_MM = float(os.environ.get("SHEET_HEIGHT_MM", "297"))
SKELETON_METHOD = os.environ.get("SKELETON_METHOD", "zhang_suen")
USE_SKELETON = os.environ.get("USE_SKELETON", "true").lower() in ("true", "1", "yes")
MIN_ELONGATION = float(os.environ.get("MIN_ELONGATION", "1.3"))
MIN_OBJECT_AREA_FRAC = float(os.environ.get("MIN_OBJECT_AREA_FRAC", "0.01"))
MORPH_KERNEL_SIZE = int(os.environ.get("MORPH_KERNEL_SIZE", "5"))
ALLOW_MARGIN_FALLBACK = os.environ.get("ALLOW_MARGIN_FALLBACK", "false").lower() in ("true", "1", "yes")
DEBUG_JPEG_QUALITY = 80


def build_config() -> MeasureConfig:
    sheet_strategies = ["adaptive_polygon", "largest_contour"]
    if ALLOW_MARGIN_FALLBACK:
        sheet_strategies.append("margin")
    return MeasureConfig(
        sheet_width_mm=SHEET_WIDTH_MM,
        sheet_height_mm=SHEET_HEIGHT_MM,
        skeleton_method=SKELETON_METHOD,
        use_skeleton=USE_SKELETON,
        min_elongation=MIN_ELONGATION,
        min_object_area_frac=MIN_OBJECT_AREA_FRAC,
        morph_kernel_size=MORPH_KERNEL_SIZE,
        sheet_strategies=sheet_strategies,
    )


CONFIG = build_config()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Starting measurement service …")
    log.info("Sheet %.0fx%.0f mm, skeleton=%s (%s), sheet strategies=%s",
             CONFIG.sheet_width_mm, CONFIG.sheet_height_mm, CONFIG.skeleton_method,
             "on" if CONFIG.use_skeleton else "off", ", ".join(CONFIG.sheet_strategies))
    yield
    log.info("Measurement service shutdown.")


app = FastAPI(title="Cucumber Morphology", lifespan=lifespan)


def _encode_debug(image):
    if image is None:
        return None
    ok, buf = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, DEBUG_JPEG_QUALITY])
    if not ok:
        log.warning("Debug image encoding failed")
        return None
    return base64.b64encode(buf).decode("utf-8")


# ---------------------------------------------------------------------------
# API: Measure
# ---------------------------------------------------------------------------

@app.post("/api/measure")
async def api_measure(image: UploadFile = File(...), debug: bool = Form(True)):
    """Upload photo → sheet scale → segmentation → skeleton measurement."""
    image_bytes = await image.read()
    log.debug("Received %s (%d bytes)", image.filename, len(image_bytes))

    # Pipeline is CPU-bound; keep it off the event loop
    result = await asyncio.to_thread(measure.process_image_bytes, image_bytes, CONFIG)

    response = result.to_dict()
    if debug:
        response["debug_image"] = _encode_debug(result.debug_image)

    if not result.measurement.ok:
        log.warning("Measurement failed: %s", result.measurement.error)
        return JSONResponse(response, status_code=400)
    return response


# ---------------------------------------------------------------------------
# API: Config & Health
# ---------------------------------------------------------------------------

@app.get("/api/config")
async def api_config():
    return CONFIG.to_dict()


@app.get("/api/health")
async def api_health():
    return {
        "status": "ok",
        "skeleton_method": CONFIG.skeleton_method,
        "use_skeleton": CONFIG.use_skeleton,
    }
