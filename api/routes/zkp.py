"""
ZKP routes — generate and verify mock zero-knowledge proofs.

Every call is written to the proof log. A failed verification also raises
a ZKP_FAILURE anomaly for the batch.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from api.database import get_store
from ledger.models import AnomalyRecord, ZKPLogRecord
from ledger.store import LedgerStore
from zkp.exceptions import ProofGenerationError, UnsupportedClaimTypeError
from zkp.models import ZKPProof
from zkp.prover import generate_proof
from zkp.validation import validate_proof_request
from zkp.verifier import verify_proof

logger = logging.getLogger(__name__)

router = APIRouter()

ANONYMOUS_DID = "anonymous"
PROOF_FIELDS = ("claim", "privateInputsHash", "publicInputs", "timestamp", "proof", "proofHash")
STRING_PROOF_FIELDS = ("claim", "privateInputsHash", "timestamp", "proof", "proofHash")


class ProofGenerateRequest(BaseModel):
    type: str                                    # quality | economic | route
    data: Optional[Dict[str, Any]] = None
    did: Optional[str] = None


class ProofVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proof: Optional[Dict[str, Any]] = None
    did: Optional[str] = None
    batch_id: Optional[str] = Field(None, alias="batchId")


@router.post("/generate", status_code=status.HTTP_201_CREATED)
def generate_zkp(body: ProofGenerateRequest, store: LedgerStore = Depends(get_store)):
    """
    Generate a proof for a quality, economic or route claim.
    The request is rejected with 400 when the claim's condition does not hold.
    """
    validation = validate_proof_request(body.type, body.data)
    if not validation.is_valid:
        raise HTTPException(status_code=400, detail="; ".join(validation.reasons))

    try:
        proof = generate_proof(body.type, body.data)
    except (ProofGenerationError, UnsupportedClaimTypeError) as e:
        raise HTTPException(status_code=400, detail=f"Failed to generate proof: {e}")

    log = store.create_proof_log(ZKPLogRecord(
        did=body.did or ANONYMOUS_DID,
        batch_id=body.data.get("batchId"),
        proof_type=proof.proof_type.value,
        proof_payload=proof.to_json(),
        verified=True,
        message="Proof generated successfully",
    ))

    return {
        "success": True,
        "proof": proof.to_dict(),
        "zkpLogId": log.id,
        "message": "ZKP proof generated successfully",
    }


@router.post("/verify")
def verify_zkp(body: ProofVerifyRequest, store: LedgerStore = Depends(get_store)):
    """Verify a proof, log the outcome and record an anomaly on failure."""
    if not body.proof:
        raise HTTPException(status_code=400, detail="Missing proof object.")
    if any(not body.proof.get(k) for k in PROOF_FIELDS):
        raise HTTPException(status_code=400, detail="Invalid proof structure. Missing required fields.")
    if not isinstance(body.proof["publicInputs"], dict):
        raise HTTPException(status_code=400, detail="Invalid proof structure. publicInputs must be an object.")
    bad = [k for k in STRING_PROOF_FIELDS if not isinstance(body.proof[k], str)]
    if bad:
        raise HTTPException(status_code=400, detail=f"Invalid proof structure. {', '.join(bad)} must be strings.")

    proof = ZKPProof.from_dict(body.proof)
    result = verify_proof(proof)

    did = body.did or ANONYMOUS_DID
    batch_id = body.batch_id or proof.public_inputs.get("batchId")
    proof_type = proof.resolved_type.value if proof.resolved_type else "UNKNOWN"

    log = store.create_proof_log(ZKPLogRecord(
        did=did,
        batch_id=batch_id,
        proof_type=proof_type,
        proof_payload=json.dumps(body.proof, ensure_ascii=False),
        verified=result.verified,
        message=result.message,
    ))

    if not result.verified:
        store.create_anomaly(AnomalyRecord(
            anomaly_type="ZKP_FAILURE",
            did=did,
            batch_id=batch_id,
            details={
                "proofType": proof_type,
                "verificationResult": result.to_dict(),
                "proofHash": proof.proof_hash,
            },
        ))
        logger.warning("ZKP_FAILURE anomaly recorded: batch=%s type=%s", batch_id, proof_type)

    response = result.to_dict()
    response.setdefault("details", None)
    response["zkpLogId"] = log.id
    return response


@router.get("/logs")
def list_zkp_logs(
    batch_id: Optional[str] = Query(None, alias="batchId"),
    proof_type: Optional[str] = Query(None, alias="proofType", description="QUALITY | ECONOMIC | ROUTE | UNKNOWN"),
    verified: Optional[bool] = Query(None),
    did: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
):
    """List proof log records, newest first."""
    filters = {
        "batch_id": batch_id,
        "proof_type": proof_type.upper() if proof_type else None,
        "verified": verified,
        "did": did,
    }
    return {
        "total": store.count_proof_logs(filters),
        "skip": skip,
        "limit": limit,
        "items": [r.to_dict() for r in store.find_proof_logs(filters, skip=skip, limit=limit)],
    }
