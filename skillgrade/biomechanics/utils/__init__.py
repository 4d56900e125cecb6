"""Utility helpers for detection coverage and confidence."""

from .validation import detection_rate, metric_availability, overall_confidence, validate_pose_quality

__all__ = [
    "detection_rate",
    "metric_availability",
    "overall_confidence",
    "validate_pose_quality",
]
