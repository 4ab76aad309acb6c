"""
errors.py – Failure taxonomy of the measurement pipeline.

Stages raise MeasurementError; process_image() converts it into the error
field of the result, so nothing escapes to the caller.
"""

from enum import Enum


class ErrorKind(str, Enum):
    IMAGE_UNUSABLE = "image_unusable"
    SHEET_NOT_FOUND = "sheet_not_found"
    SCALE_TOO_SMALL = "scale_too_small"
    OBJECT_NOT_FOUND = "object_not_found"
    MEASUREMENT_FAILED = "measurement_failed"
    INTERNAL_ERROR = "internal_error"


class MeasurementError(Exception):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message
