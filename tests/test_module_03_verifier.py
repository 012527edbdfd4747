"""
Tests for Module 03 — ZKP Verifier.
Tests end-to-end verification, seal tampering, resealed constraint tampering and dispatch.
"""
import copy

from zkp.hashing import generate_proof_hash
from zkp.models import ProofType, ZKPProof
from zkp.prover import (
    EconomicProofData,
    GpsPoint,
    QualityProofData,
    RouteProofData,
    generate_economic_proof,
    generate_proof,
    generate_quality_proof,
    generate_route_proof,
)
from zkp.verifier import verify_proof, verify_proof_hash


def quality_proof(stage="harvest"):
    return generate_quality_proof(QualityProofData(
        moisture_level=10, temperature=5, sensor_readings=[5.0, 5.5, 6.0],
        batch_id="BATCH-001", stage=stage,
    ))


def economic_proof():
    return generate_economic_proof(EconomicProofData(
        payment_amount=2500, total_quantity=100, sold_quantity=60, batch_id="BATCH-001",
    ))


def route_proof(expected="Nashik->Delhi"):
    return generate_route_proof(RouteProofData(
        gps_points=[GpsPoint(19.99, 73.78, 1), GpsPoint(24.0, 75.5, 2), GpsPoint(28.61, 77.20, 3)],
        expected_route=expected,
        batch_id="BATCH-001",
    ))


def reseal(wire: dict) -> dict:
    wire["proofHash"] = generate_proof_hash(wire)
    return wire


class TestEndToEnd:
    def test_quality_proof_verifies(self):
        result = verify_proof(quality_proof())
        assert result.verified is True
        assert result.message.startswith("Quality proof verified successfully")
        assert result.details["batchId"] == "BATCH-001"
        assert result.details["sensorCount"] == 3

    def test_wire_round_trip_verifies(self):
        wire = quality_proof().to_dict()
        assert verify_proof(wire).verified is True

    def test_economic_proof_verifies(self):
        result = verify_proof(economic_proof())
        assert result.verified
        assert result.details["paymentExists"] is True

    def test_route_proof_verifies(self):
        result = verify_proof(route_proof())
        assert result.verified
        assert result.details["pointCount"] == 3
        assert result.details["startPoint"] == {"lat": 19.99, "lng": 73.78}

    def test_str(self):
        assert str(verify_proof(quality_proof())).startswith("[VERIFIED]")

    def test_farm_to_verifier_scenario(self):
        proof = generate_proof("quality", {
            "moistureLevel": 8.5,
            "temperature": 5.2,
            "sensorReadings": [5.1, 5.2, 5.3, 5.0, 5.1],
            "batchId": "BATCH-2024-001",
            "stage": "harvest",
        })
        assert len(proof.proof) == 64
        result = verify_proof(proof)
        assert result.verified is True
        assert result.message.startswith("Quality proof verified successfully")
        assert result.details["sensorCount"] == 5


class TestTamperDetection:
    def test_raised_temp_max_breaks_seal(self):
        """CRITICAL: editing a public threshold without resealing is tamper."""
        wire = copy.deepcopy(quality_proof().to_dict())
        wire["publicInputs"]["tempMax"] = 20
        result = verify_proof(wire)
        assert result.verified is False
        assert result.message.startswith("Tamper detected")

    def test_resealed_looser_threshold_rejected(self):
        wire = copy.deepcopy(quality_proof().to_dict())
        wire["publicInputs"]["tempMax"] = 20
        result = verify_proof(reseal(wire))
        assert result.verified is False
        assert "outside acceptable ranges" in result.message

    def test_resealed_non_numeric_threshold_rejected(self):
        wire = copy.deepcopy(quality_proof().to_dict())
        wire["publicInputs"]["moistureThreshold"] = "12"
        assert verify_proof(reseal(wire)).verified is False

    def test_resealed_missing_merkle_root_rejected(self):
        wire = copy.deepcopy(quality_proof().to_dict())
        del wire["publicInputs"]["iotMerkleRoot"]
        result = verify_proof(reseal(wire))
        assert not result.verified
        assert "Merkle root" in result.message

    def test_resealed_oversell_rejected(self):
        wire = copy.deepcopy(economic_proof().to_dict())
        wire["publicInputs"]["soldQuantity"] = 101
        result = verify_proof(reseal(wire))
        assert result.verified is False
        assert "Quantity constraint violated" in result.message
        assert result.details == {"totalQuantity": 100, "soldQuantity": 101}

    def test_resealed_payment_flag_rejected(self):
        wire = copy.deepcopy(economic_proof().to_dict())
        wire["publicInputs"]["paymentExists"] = "yes"
        assert verify_proof(reseal(wire)).verified is False

    def test_resealed_bad_coordinates_rejected(self):
        wire = copy.deepcopy(route_proof().to_dict())
        wire["publicInputs"]["endLat"] = 95.0
        result = verify_proof(reseal(wire))
        assert not result.verified
        assert "outside valid ranges" in result.message

    def test_resealed_distance_rejected(self):
        wire = copy.deepcopy(route_proof().to_dict())
        wire["publicInputs"]["distanceKm"] = 9000
        assert not verify_proof(reseal(wire)).verified

    def test_missing_seal(self):
        wire = quality_proof().to_dict()
        del wire["proofHash"]
        result = verify_proof(wire)
        assert not result.verified
        assert result.message.startswith("Tamper detected")

    def test_short_proof_string(self):
        wire = copy.deepcopy(quality_proof().to_dict())
        wire["proof"] = "abc123"
        result = verify_proof(reseal(wire))
        assert not result.verified
        assert result.message == "Invalid proof structure"

    def test_missing_stage(self):
        result = verify_proof(quality_proof(stage=""))
        assert not result.verified
        assert result.message == "Missing required public inputs: batchId or stage"

    def test_missing_expected_route(self):
        result = verify_proof(route_proof(expected=""))
        assert not result.verified
        assert "batchId or expectedRoute" in result.message

    def test_resealed_non_string_claim_rejected(self):
        wire = reseal(dict(quality_proof().to_dict(), claim=123))
        result = verify_proof(wire)
        assert result.verified is False
        assert result.message == "Invalid proof structure"

    def test_resealed_non_string_claim_without_type(self):
        wire = reseal(dict(quality_proof().to_dict(), claim=["quality"], proofType=None))
        result = verify_proof(wire)
        assert result.verified is False
        assert result.message.startswith("Unknown proof type")

    def test_resealed_integer_proof_rejected(self):
        wire = reseal(dict(quality_proof().to_dict(), proof=10 ** 40))
        result = verify_proof(wire)
        assert result.verified is False
        assert result.message == "Invalid proof structure"

    def test_edited_proof_type_is_tamper(self):
        wire = dict(quality_proof().to_dict(), proofType="ECONOMIC")
        result = verify_proof(wire)
        assert result.verified is False
        assert result.message.startswith("Tamper detected: proofType ECONOMIC")
        assert result.details == {"proofType": "ECONOMIC", "claimType": "QUALITY"}

    def test_seal_checked_before_required_inputs(self):
        wire = copy.deepcopy(quality_proof(stage="").to_dict())
        wire["publicInputs"]["tempMax"] = 20
        assert verify_proof(wire).message.startswith("Tamper detected")


class TestDispatch:
    def test_claim_text_fallback(self):
        wire = route_proof().to_dict()
        del wire["proofType"]
        assert verify_proof(wire).verified

    def test_unknown_claim(self):
        wire = reseal(dict(quality_proof().to_dict(), claim="Price is fair", proofType=None))
        result = verify_proof(wire)
        assert not result.verified
        assert result.message == "Unknown proof type. Claim: Price is fair"

    def test_explicit_type_wins_over_claim(self):
        wire = reseal(dict(quality_proof().to_dict(), claim="Custom wording"))
        assert verify_proof(wire).verified

    def test_from_claim(self):
        assert ProofType.from_claim("Route is valid") is ProofType.ROUTE
        assert ProofType.from_claim("nothing") is None
        assert ProofType.from_claim(["quality"]) is None


class TestProofModel:
    def test_from_dict_keeps_hash_verbatim(self):
        wire = quality_proof().to_dict()
        wire["proofHash"] = "0" * 64
        assert ZKPProof.from_dict(wire).proof_hash == "0" * 64

    def test_proof_type_not_sealed(self):
        proof = quality_proof()
        wire = dict(proof.to_dict(), proofType="ECONOMIC")
        assert verify_proof_hash(wire)

    def test_to_json_round_trip(self):
        import json
        proof = quality_proof()
        assert ZKPProof.from_dict(json.loads(proof.to_json())) == proof
