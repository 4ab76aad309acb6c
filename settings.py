"""
settings.py – Tunable parameters of the measurement pipeline.

Every threshold the pipeline uses lives here so it can be adjusted without
touching the algorithms. Defaults are tuned for a cucumber on white A4 paper.
"""

from typing import List, Literal, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

HSV = Tuple[int, int, int]

SheetStrategy = Literal["adaptive_polygon", "largest_contour", "margin"]
SegmentStrategy = Literal["color", "otsu", "edges", "darkness"]
SkeletonMethod = Literal["zhang_suen", "morphological"]


class ColorRange(BaseModel):
    """Inclusive HSV bounds in OpenCV units (H 0-180, S/V 0-255)."""
    name: str
    lower: HSV
    upper: HSV

    @model_validator(mode="after")
    def _check_bounds(self):
        for lo, hi in zip(self.lower, self.upper):
            if lo > hi:
                raise ValueError(f"color range {self.name!r}: lower {self.lower} exceeds upper {self.upper}")
        return self


# Ordered: the first range that yields a plausible contour wins.
DEFAULT_COLOR_RANGES = [
    ColorRange(name="green", lower=(35, 40, 40), upper=(85, 255, 255)),
    ColorRange(name="yellow_green", lower=(20, 40, 40), upper=(40, 255, 255)),
    ColorRange(name="dark_green", lower=(60, 40, 40), upper=(90, 255, 255)),
    ColorRange(name="shadowed", lower=(30, 25, 15), upper=(95, 255, 110)),
]


class MeasureConfig(BaseModel):
    # Reference sheet (A4 portrait by default)
    sheet_width_mm: float = Field(210.0, gt=0)
    sheet_height_mm: float = Field(297.0, gt=0)
    min_scale_px_per_mm: float = Field(0.5, ge=0)

    sheet_strategies: List[SheetStrategy] = ["adaptive_polygon", "largest_contour"]
    sheet_detect_max_dim: int = Field(1000, ge=100)
    min_sheet_area_frac: float = Field(0.05, ge=0, lt=1)
    sheet_inset_frac: float = Field(0.01, ge=0, lt=0.25)

    # Object segmentation
    segment_strategies: List[SegmentStrategy] = ["color", "otsu", "edges", "darkness"]
    min_object_area_frac: float = Field(0.01, ge=0, lt=1)
    min_contour_area_px: float = Field(500.0, ge=0)
    min_elongation: float = Field(1.3, ge=1.0)
    ideal_elongation: float = Field(4.0, gt=1.0)
    color_ranges: List[ColorRange] = Field(default_factory=lambda: list(DEFAULT_COLOR_RANGES))
    morph_kernel_size: int = Field(5, ge=3)
    color_dilate_iterations: int = Field(0, ge=0)

    # Skeleton-based measurement
    use_skeleton: bool = True
    skeleton_method: SkeletonMethod = "zhang_suen"
    spur_factor: float = Field(2.0, ge=0)
    length_step: int = Field(10, ge=1)
    curvature_step: int = Field(10, ge=1)

    @field_validator("morph_kernel_size")
    @classmethod
    def _odd_kernel(cls, v: int) -> int:
        if v % 2 == 0:
            raise ValueError("morph_kernel_size must be odd")
        return v

    @field_validator("sheet_strategies", "segment_strategies")
    @classmethod
    def _non_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("at least one strategy is required")
        return v

    def to_dict(self) -> dict:
        return self.model_dump()
