"""
Business-rule validation for incoming rider payloads.
"""

from __future__ import annotations

import re
from numbers import Real
from typing import Any, Mapping

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

RIDER_STATUSES = ("active", "inactive", "premium", "suspended")
VEHICLE_TYPES = ("Motorcycle", "Bicycle", "Car")

MIN_RATING = 0
MAX_RATING = 5

# Largest integer a BSON document can hold.
INT64_MAX = 2**63 - 1


def _text_length(value: Any) -> int:
    if not isinstance(value, str):
        return 0
    return len(value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, int) and not isinstance(value, bool)


def validate_rider_fields(data: Mapping[str, Any]) -> list[str]:
    """
    Check a rider payload against the field rules and return every failure.

    Rules are evaluated independently so the caller gets the full list in one
    round trip. An empty list means the payload is acceptable.
    """
    errors: list[str] = []

    if _text_length(data.get("name")) < 2:
        errors.append("Name must be at least 2 characters long")

    email = data.get("email")
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
        errors.append("Valid email is required")

    if _text_length(data.get("position")) < 2:
        errors.append("Position must be at least 2 characters long")

    if _text_length(data.get("nric")) < 5:
        errors.append("NRIC must be at least 5 characters long")

    if _text_length(data.get("phone")) < 8:
        errors.append("Phone number must be at least 8 characters long")

    if data.get("vehicle") not in VEHICLE_TYPES:
        errors.append("Vehicle must be Motorcycle, Bicycle, or Car")

    if _text_length(data.get("license")) < 3:
        errors.append("License must be at least 3 characters long")

    rating = data.get("rating")
    if rating is not None and (
        not _is_number(rating) or not MIN_RATING <= rating <= MAX_RATING
    ):
        errors.append("Rating must be between 0 and 5")

    rides = data.get("ridesCompleted")
    if rides is not None:
        if not _is_whole_number(rides):
            errors.append("Rides completed must be a whole number")
        elif rides < 0:
            errors.append("Rides completed cannot be negative")
        elif rides > INT64_MAX:
            errors.append("Rides completed is too large")

    status = data.get("status")
    if status is not None and status not in RIDER_STATUSES:
        errors.append("Status must be active, inactive, premium, or suspended")

    image = data.get("image")
    if image is not None and not isinstance(image, str):
        errors.append("Image must be a URL or data URI string")

    return errors
