"""
ZKP Verifier — AgriTrace

Re-checks a proof object without access to any private input:
1. the proofHash seal matches a fresh recomputation
2. the claim-specific public inputs are present
3. the proof string is well formed
4. the public-input constraints hold for the claim type

Pure: never touches storage. Callers log the result and record anomalies.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Union

from zkp.exceptions import MalformedProofError, ProofVerificationError, TamperDetectedError
from zkp.hashing import validate_proof_hash
from zkp.models import ProofType, VerificationResult, ZKPProof
from zkp.prover import MAX_ROUTE_DISTANCE_KM, MOISTURE_THRESHOLD, TEMP_MAX, TEMP_MIN

logger = logging.getLogger(__name__)

MIN_PROOF_LENGTH = 32

REQUIRED_PUBLIC_INPUTS = {
    ProofType.QUALITY:  ("batchId", "stage"),
    ProofType.ECONOMIC: ("batchId",),
    ProofType.ROUTE:    ("batchId", "expectedRoute"),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_preamble(proof: ZKPProof, proof_type: ProofType) -> None:
    """Seal, type agreement, required public inputs, proof structure, in that order."""
    if not validate_proof_hash(proof, proof.proof_hash):
        raise TamperDetectedError(
            "Tamper detected: proof hash validation failed. Proof may have been tampered with."
        )

    # proofType sits outside the seal, so it must agree with the sealed claim
    claimed = ProofType.from_claim(proof.claim)
    if claimed is not None and claimed is not proof_type:
        raise TamperDetectedError(
            f"Tamper detected: proofType {proof_type.value} does not match claim type {claimed.value}",
            details={"proofType": proof_type.value, "claimType": claimed.value},
        )

    required = REQUIRED_PUBLIC_INPUTS[proof_type]
    missing = [name for name in required if not proof.public_inputs.get(name)]
    if missing:
        noun = "input" if len(required) == 1 else "inputs"
        raise TamperDetectedError(
            f"Missing required public {noun}: {' or '.join(required)}",
            details={"missing": missing},
        )

    if not isinstance(proof.claim, str) or not isinstance(proof.proof, str) or len(proof.proof) < MIN_PROOF_LENGTH:
        raise MalformedProofError("Invalid proof structure")


def _verify_quality(proof: ZKPProof) -> VerificationResult:
    public = proof.public_inputs

    thresholds = {
        "moistureThreshold": public.get("moistureThreshold", MOISTURE_THRESHOLD),
        "tempMin": public.get("tempMin", TEMP_MIN),
        "tempMax": public.get("tempMax", TEMP_MAX),
    }
    if not all(_is_number(v) for v in thresholds.values()):
        raise TamperDetectedError("Public constraints must be numeric", details=thresholds)
    if (
        thresholds["moistureThreshold"] > MOISTURE_THRESHOLD
        or thresholds["tempMin"] < TEMP_MIN
        or thresholds["tempMax"] > TEMP_MAX
    ):
        raise TamperDetectedError("Public constraints are outside acceptable ranges", details=thresholds)

    if not public.get("iotMerkleRoot"):
        raise TamperDetectedError("Missing IoT Merkle root. Cannot verify sensor data integrity.")

    return VerificationResult(
        verified=True,
        message=(
            "Quality proof verified successfully. Conditions satisfied: "
            "moisture < 12%, temperature 2-10°C, no sensor tampering."
        ),
        details={
            "batchId": public["batchId"],
            "stage": public["stage"],
            "sensorCount": public.get("sensorCount"),
            "iotMerkleRoot": public["iotMerkleRoot"],
        },
    )


def _verify_economic(proof: ZKPProof) -> VerificationResult:
    public = proof.public_inputs

    if public.get("paymentExists") is not True:
        raise TamperDetectedError("Payment existence not proven")

    total = public.get("totalQuantity")
    sold = public.get("soldQuantity")
    if not (_is_number(total) and _is_number(sold)):
        raise TamperDetectedError("Invalid quantity values in public inputs")
    if sold > total:
        raise TamperDetectedError(
            f"Quantity constraint violated: soldQuantity ({sold}) > totalQuantity ({total})",
            details={"totalQuantity": total, "soldQuantity": sold},
        )

    return VerificationResult(
        verified=True,
        message=(
            "Economic proof verified successfully. Conditions satisfied: "
            "payment exists, soldQuantity <= totalQuantity."
        ),
        details={
            "batchId": public["batchId"],
            "totalQuantity": total,
            "soldQuantity": sold,
            "paymentExists": True,
        },
    )


def _verify_route(proof: ZKPProof) -> VerificationResult:
    public = proof.public_inputs

    coords = {k: public.get(k) for k in ("startLat", "startLng", "endLat", "endLng")}
    if not all(_is_number(v) for v in coords.values()):
        raise TamperDetectedError("Invalid GPS coordinates in public inputs")
    lats_ok = all(-90 <= coords[k] <= 90 for k in ("startLat", "endLat"))
    lngs_ok = all(-180 <= coords[k] <= 180 for k in ("startLng", "endLng"))
    if not (lats_ok and lngs_ok):
        raise TamperDetectedError("GPS coordinates are outside valid ranges", details=coords)

    if not public.get("routeHash"):
        raise TamperDetectedError("Missing route hash. Cannot verify route integrity.")

    distance = public.get("distanceKm")
    if not _is_number(distance) or not 0 <= distance <= MAX_ROUTE_DISTANCE_KM:
        raise TamperDetectedError(
            "Route distance is invalid or unreasonable", details={"distanceKm": distance}
        )

    point_count = public.get("pointCount")
    if not _is_number(point_count) or point_count < 2:
        raise TamperDetectedError("Route must have at least 2 GPS points")

    return VerificationResult(
        verified=True,
        message="Route proof verified successfully. Route is valid without revealing full GPS path.",
        details={
            "batchId": public["batchId"],
            "expectedRoute": public["expectedRoute"],
            "startPoint": {"lat": coords["startLat"], "lng": coords["startLng"]},
            "endPoint": {"lat": coords["endLat"], "lng": coords["endLng"]},
            "pointCount": point_count,
            "distanceKm": distance,
        },
    )


_VERIFIERS: Dict[ProofType, Callable[[ZKPProof], VerificationResult]] = {
    ProofType.QUALITY: _verify_quality,
    ProofType.ECONOMIC: _verify_economic,
    ProofType.ROUTE: _verify_route,
}


def verify_proof(proof: Union[ZKPProof, Mapping[str, Any]]) -> VerificationResult:
    """
    Verify a proof and report the outcome. Never raises for a bad proof.

    Dispatches on the explicit proofType when present, otherwise on the
    claim text ('quality' / 'economic' / 'route').
    """
    if isinstance(proof, Mapping):
        proof = ZKPProof.from_dict(proof)

    proof_type = proof.resolved_type
    if proof_type is None:
        logger.warning("Unknown proof type for claim %r", proof.claim)
        return VerificationResult(verified=False, message=f"Unknown proof type. Claim: {proof.claim}")

    try:
        _check_preamble(proof, proof_type)
        result = _VERIFIERS[proof_type](proof)
    except ProofVerificationError as e:
        logger.error(
            "ZKP verification failed: type=%s batch=%s reason=%s",
            proof_type.value, proof.public_inputs.get("batchId"), e.message,
        )
        return VerificationResult(verified=False, message=e.message, details=e.details)

    logger.info("ZKP verified: type=%s batch=%s", proof_type.value, proof.public_inputs.get("batchId"))
    return result


def verify_proof_hash(proof: Union[ZKPProof, Mapping[str, Any]]) -> bool:
    """Quick seal-only check."""
    if isinstance(proof, Mapping):
        proof = ZKPProof.from_dict(proof)
    return validate_proof_hash(proof, proof.proof_hash)
