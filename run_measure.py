#!/usr/bin/env python3
"""
Measure a cucumber photographed on an A4 sheet.

Usage:
    python run_measure.py <image_file> [-v] [--morph]

Options:
    -v        debug logging
    --morph   morphological skeleton instead of Zhang-Suen thinning

Example:
    python run_measure.py cucumber.jpg

The annotated debug image is written next to the input as <name>_debug.jpg.
"""

import sys
import os
import logging

# Setup logging - INFO level by default, DEBUG if -v flag
log_level = logging.DEBUG if '-v' in sys.argv else logging.INFO
logging.basicConfig(
    level=log_level,
    format="[%(name)s] %(levelname)s: %(message)s",
)

skeleton_method = "morphological" if '--morph' in sys.argv else "zhang_suen"
sys.argv = [a for a in sys.argv if a not in ('-v', '--morph')]

# Add current directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import cv2

import measure
from settings import MeasureConfig


def run_measure(image_path: str, method: str = "zhang_suen"):
    """Run the pipeline on an image file and print the result."""

    print(f"\n{'='*60}")
    print(f"Measuring: {image_path}")
    print(f"Skeleton method: {method}")
    print(f"{'='*60}\n")

    with open(image_path, 'rb') as f:
        image_bytes = f.read()

    result = measure.process_image_bytes(image_bytes, MeasureConfig(skeleton_method=method))
    m = result.measurement

    if m.ok:
        print("MEASUREMENT RESULTS:")
        print("-" * 40)
        print(f"Length:     {m.length_mm:.1f} mm = {m.length_mm / 10:.2f} cm")
        print(f"Width:      {m.width_mm:.1f} mm")
        print(f"Diameter:   {m.diameter_mm:.1f} mm")
        print(f"Volume:     {m.volume_mm3:.0f} mm³ = {m.volume_mm3 / 1000:.1f} ml")
        if m.curvature is not None:
            print(f"Curvature:  {m.curvature:.3f} rad")
        print()
    else:
        print(f"ERROR ({m.error_kind.value}): {m.error}")
        print()

    print("PIPELINE:")
    print("-" * 40)
    if result.px_per_mm:
        print(f"Pixels per mm:     {result.px_per_mm:.3f}")
    print(f"Sheet strategy:    {result.sheet_strategy or '-'}")
    print(f"Segment strategy:  {result.segment_strategy or '-'}")
    if result.sheet_rect is not None:
        print(f"Sheet rect:        {tuple(result.sheet_rect)}")
    print()

    # Save debug image
    if result.debug_image is not None:
        debug_path = image_path.rsplit('.', 1)[0] + '_debug.jpg'
        cv2.imwrite(debug_path, result.debug_image)
        print(f"Debug image saved to: {debug_path}")

    return result


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        print("\nNo image file specified!")
        print("Usage: python run_measure.py <image_file> [-v] [--morph]")
        sys.exit(1)

    image_path = sys.argv[1]

    if not os.path.exists(image_path):
        print(f"Error: File not found: {image_path}")
        sys.exit(1)

    result = run_measure(image_path, skeleton_method)
    if not result.measurement.ok:
        sys.exit(2)


if __name__ == "__main__":
    main()
