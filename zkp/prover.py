"""
ZKP Prover — AgriTrace

Builds quality, economic and route claims from private + public inputs.
Each builder checks its domain condition over the private values and
refuses to emit a proof when the condition fails. Stateless and pure
apart from reading the clock.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from zkp.exceptions import ConditionNotSatisfiedError, ProofGenerationError, UnsupportedClaimTypeError
from zkp.hashing import (
    generate_merkle_root,
    generate_mock_proof,
    hash_private_inputs,
    iso_timestamp,
    sha256_hex,
)
from zkp.models import ProofType, ZKPProof

logger = logging.getLogger(__name__)

# Quality bounds
MOISTURE_THRESHOLD = 12       # %, strict upper bound
TEMP_MIN = 2                  # °C, inclusive
TEMP_MAX = 10                 # °C, inclusive
MAX_SENSOR_SPREAD = 2         # max - min across redundant sensors, strict

# Route bounds
KM_PER_DEGREE = 111
MAX_ROUTE_DISTANCE_KM = 5000

QUALITY_CLAIM = "Quality conditions satisfied: moisture < 12%, temperature 2-10°C, no sensor tampering"
ECONOMIC_CLAIM = "Economic conditions satisfied: payment exists, soldQuantity <= totalQuantity"
ROUTE_CLAIM = "Route is valid: sequential GPS points, reasonable distance, no backtracking"


@dataclass
class QualityProofData:
    moisture_level: float
    temperature: float
    sensor_readings: List[float]
    batch_id: str
    stage: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityProofData":
        return cls(
            moisture_level=data["moistureLevel"],
            temperature=data["temperature"],
            sensor_readings=list(data.get("sensorReadings") or []),
            batch_id=data["batchId"],
            stage=data.get("stage") or "",
        )


@dataclass
class EconomicProofData:
    payment_amount: float
    total_quantity: float
    sold_quantity: float
    batch_id: str
    transaction_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EconomicProofData":
        return cls(
            payment_amount=data.get("paymentAmount") or 0,
            total_quantity=data["totalQuantity"],
            sold_quantity=data["soldQuantity"],
            batch_id=data["batchId"],
            transaction_id=data.get("transactionId"),
        )


@dataclass
class GpsPoint:
    lat: float
    lng: float
    timestamp: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng, "timestamp": self.timestamp}


@dataclass
class RouteProofData:
    gps_points: List[GpsPoint]
    expected_route: str
    batch_id: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RouteProofData":
        points = [
            p if isinstance(p, GpsPoint) else GpsPoint(lat=p["lat"], lng=p["lng"], timestamp=p["timestamp"])
            for p in data.get("gpsPoints") or []
        ]
        return cls(
            gps_points=points,
            expected_route=data.get("expectedRoute") or "",
            batch_id=data["batchId"],
        )


ProofData = Union[QualityProofData, EconomicProofData, RouteProofData]


def _build_proof(
    proof_type: ProofType,
    claim: str,
    private_inputs: Dict[str, Any],
    public_inputs: Dict[str, Any],
) -> ZKPProof:
    """Seal a proof object. Refuses if any private key leaks into the public set."""
    leaked = set(private_inputs) & set(public_inputs)
    if leaked:
        raise ProofGenerationError(
            f"Private inputs must not appear in public inputs: {', '.join(sorted(leaked))}"
        )

    now = datetime.now(timezone.utc)
    proof = ZKPProof(
        claim=claim,
        private_inputs_hash=hash_private_inputs(private_inputs),
        public_inputs=public_inputs,
        timestamp=iso_timestamp(now),
        proof=generate_mock_proof(private_inputs, public_inputs, claim, now=now),
        proof_type=proof_type,
    )
    logger.info(
        "ZKP generated: type=%s batch=%s hash=%s...",
        proof_type.value, public_inputs.get("batchId"), proof.proof_hash[:16],
    )
    return proof


def generate_quality_proof(data: QualityProofData) -> ZKPProof:
    """Prove: moisture < 12%, temperature 2-10°C, no sensor tampering."""
    readings = list(data.sensor_readings)
    private_inputs = {
        "moistureLevel": data.moisture_level,
        "temperature": data.temperature,
        "sensorReadings": readings,
        "rawSensorData": ",".join(str(r) for r in readings),
    }
    public_inputs = {
        "batchId": data.batch_id,
        "stage": data.stage,
        "moistureThreshold": MOISTURE_THRESHOLD,
        "tempMin": TEMP_MIN,
        "tempMax": TEMP_MAX,
        "sensorCount": len(readings),
        "iotMerkleRoot": generate_merkle_root(readings),
    }

    reasons = []
    if not data.moisture_level < MOISTURE_THRESHOLD:
        reasons.append(f"moisture must be below {MOISTURE_THRESHOLD}%")
    if not TEMP_MIN <= data.temperature <= TEMP_MAX:
        reasons.append(f"temperature must be within {TEMP_MIN}-{TEMP_MAX}°C")
    if not readings:
        reasons.append("no sensor readings supplied")
    elif not (max(readings) - min(readings)) < MAX_SENSOR_SPREAD:
        reasons.append(f"sensor spread must be below {MAX_SENSOR_SPREAD}")

    if reasons:
        logger.warning("Quality proof refused for batch %s: %s", data.batch_id, reasons)
        raise ConditionNotSatisfiedError("quality", reasons)

    return _build_proof(ProofType.QUALITY, QUALITY_CLAIM, private_inputs, public_inputs)


def generate_economic_proof(data: EconomicProofData) -> ZKPProof:
    """Prove: a payment exists and soldQuantity <= totalQuantity."""
    private_inputs = {
        "paymentAmount": data.payment_amount,
        "paymentDetails": data.transaction_id or "payment-confirmed",
        "actualSoldQuantity": data.sold_quantity,
    }
    public_inputs = {
        "batchId": data.batch_id,
        "totalQuantity": data.total_quantity,
        "soldQuantity": data.sold_quantity,
        "paymentExists": True,
        "quantityConstraint": "soldQuantity <= totalQuantity",
    }

    reasons = []
    if not ((data.payment_amount or 0) > 0 or data.transaction_id):
        reasons.append("no payment amount or transaction reference")
    if not data.sold_quantity <= data.total_quantity:
        reasons.append("soldQuantity exceeds totalQuantity")

    if reasons:
        logger.warning("Economic proof refused for batch %s: %s", data.batch_id, reasons)
        raise ConditionNotSatisfiedError("economic", reasons)

    return _build_proof(ProofType.ECONOMIC, ECONOMIC_CLAIM, private_inputs, public_inputs)


def planar_distance_km(start: GpsPoint, end: GpsPoint) -> float:
    """Euclidean distance in degrees scaled by ~111 km/degree."""
    return math.hypot(end.lat - start.lat, end.lng - start.lng) * KM_PER_DEGREE


def generate_route_proof(data: RouteProofData) -> ZKPProof:
    """Prove the route is valid without sharing the full GPS path."""
    points = list(data.gps_points)
    if len(points) < 2:
        logger.warning("Route proof refused for batch %s: fewer than 2 points", data.batch_id)
        raise ConditionNotSatisfiedError("route", ["at least 2 GPS points are required"])

    coords = [f"{p.lat},{p.lng}" for p in points]
    private_inputs = {
        "gpsPoints": [p.to_dict() for p in points],
        "fullRoute": "->".join(coords),
    }

    start, end = points[0], points[-1]
    distance = planar_distance_km(start, end)

    reasons = []
    if not 0 < distance <= MAX_ROUTE_DISTANCE_KM:
        reasons.append(f"distance {distance:.2f} km outside (0, {MAX_ROUTE_DISTANCE_KM}]")
    if any(cur.timestamp <= prev.timestamp for prev, cur in zip(points, points[1:])):
        reasons.append("GPS timestamps are not strictly increasing")

    if reasons:
        logger.warning("Route proof refused for batch %s: %s", data.batch_id, reasons)
        raise ConditionNotSatisfiedError("route", reasons)

    public_inputs = {
        "batchId": data.batch_id,
        "expectedRoute": data.expected_route,
        "startLat": start.lat,
        "startLng": start.lng,
        "endLat": end.lat,
        "endLng": end.lng,
        "pointCount": len(points),
        "routeHash": sha256_hex("|".join(coords)),
        "distanceKm": round(distance, 2),
    }

    return _build_proof(ProofType.ROUTE, ROUTE_CLAIM, private_inputs, public_inputs)


_BUILDERS = {
    "quality": (QualityProofData, generate_quality_proof),
    "economic": (EconomicProofData, generate_economic_proof),
    "route": (RouteProofData, generate_route_proof),
}


def generate_proof(claim_type: str, data: Union[ProofData, Mapping[str, Any]]) -> ZKPProof:
    """
    Route to the matching proof builder.

    Args:
        claim_type: 'quality' | 'economic' | 'route' (case-insensitive).
        data: The typed proof data, or a camelCase mapping as received over HTTP.

    Returns:
        The sealed ZKPProof.

    Raises:
        UnsupportedClaimTypeError: Unknown claim_type.
        ConditionNotSatisfiedError: The claim's condition does not hold.
    """
    key = str(claim_type or "").lower()
    if key not in _BUILDERS:
        raise UnsupportedClaimTypeError(claim_type)

    data_cls, builder = _BUILDERS[key]
    if isinstance(data, Mapping):
        try:
            data = data_cls.from_dict(data)
        except KeyError as e:
            raise ProofGenerationError(f"Missing required {key} field: {e.args[0]}") from e
    elif not isinstance(data, data_cls):
        raise UnsupportedClaimTypeError(f"{claim_type} (got {type(data).__name__})")
    return builder(data)
