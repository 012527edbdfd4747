"""
Validator for incoming proof-generation requests.

Validates:
- The claim type is one of quality / economic / route
- Required fields are present for that claim type, including the public
  stage / expectedRoute labels the verifier insists on
- Numeric fields are numeric and list fields are lists
- Routes carry at least two GPS points

Domain conditions (thresholds, ordering) are the prover's job; this only
rejects requests that could not be turned into proof data at all.
"""

import logging
from typing import Any, Mapping

from zkp.models import ValidationResult

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "quality":  ("moistureLevel", "temperature", "batchId", "stage"),
    "economic": ("batchId", "totalQuantity", "soldQuantity"),
    "route":    ("batchId", "gpsPoints", "expectedRoute"),
}

NUMERIC_FIELDS = {
    "quality":  ("moistureLevel", "temperature"),
    "economic": ("totalQuantity", "soldQuantity", "paymentAmount"),
    "route":    (),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_proof_request(claim_type: str, data: Any) -> ValidationResult:
    """
    Validate a raw proof-generation request body.

    Args:
        claim_type: The requested claim type tag.
        data: The camelCase mapping sent by the client.

    Returns:
        ValidationResult with is_valid flag and list of failure reasons.
    """
    result = ValidationResult(is_valid=True)
    key = str(claim_type or "").lower()

    if key not in REQUIRED_FIELDS:
        result.add_error("Invalid proof type. Must be: quality, economic, or route.")
        return result
    if not isinstance(data, Mapping) or not data:
        result.add_error("Missing proof data.")
        return result

    # 1. Required fields must be present
    missing = [name for name in REQUIRED_FIELDS[key] if data.get(name) in (None, "")]
    if missing:
        result.add_error(f"Missing required {key} data: {', '.join(missing)}")

    # 2. Numeric fields must be numeric
    for name in NUMERIC_FIELDS[key]:
        value = data.get(name)
        if value is not None and not _is_number(value):
            result.add_error(f"{name} must be numeric, got {type(value).__name__}")

    # 3. Type-specific shape
    if key == "quality":
        readings = data.get("sensorReadings")
        if not isinstance(readings, list):
            result.add_error("Missing or invalid sensorReadings array")
        elif not all(_is_number(r) for r in readings):
            result.add_error("sensorReadings must contain only numbers")
    elif key == "route":
        points = data.get("gpsPoints")
        if points is not None and not isinstance(points, list):
            result.add_error("gpsPoints must be an array")
        elif isinstance(points, list):
            if len(points) < 2:
                result.add_error("Route must have at least 2 GPS points")
            for i, point in enumerate(points):
                if not isinstance(point, Mapping) or not all(
                    _is_number(point.get(k)) for k in ("lat", "lng", "timestamp")
                ):
                    result.add_error(f"gpsPoints[{i}] must have numeric lat, lng and timestamp")

    if not result.is_valid:
        logger.warning("Proof request validation failed (%s): %s", key, result.reasons)
    return result
