"""Identity capture and the KYC registration flow."""

from .capture import CapturedImage, CaptureError, CaptureKind, capture_image
from .flow import KYCFlow, KYCOutcome, KYCStep

__all__ = [
    "CapturedImage",
    "CaptureError",
    "CaptureKind",
    "KYCFlow",
    "KYCOutcome",
    "KYCStep",
    "capture_image",
]
