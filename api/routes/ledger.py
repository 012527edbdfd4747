"""
Ledger routes — append to and read the ECONOMIC / QUALITY hash chains,
and run a full chain verification.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from api.database import get_store
from ledger.models import LedgerType
from ledger.store import LedgerConflictError, LedgerStore
from ledger.verifier import verify_chain
from ledger.writer import append_economic_tx, append_quality_tx

router = APIRouter()


class EconomicTxCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: Optional[str] = Field(None, alias="batchId")
    shipment_id: Optional[str] = Field(None, alias="shipmentId")
    payer_did: Optional[str] = Field(None, alias="payerDid")
    payee_did: Optional[str] = Field(None, alias="payeeDid")
    from_party: Optional[str] = Field(None, alias="fromParty")   # FARMER | TRANSPORTER | RETAILER | CONSUMER
    to_party: Optional[str] = Field(None, alias="toParty")
    product: Optional[str] = None
    quantity: Optional[float] = None
    amount: Optional[float] = None
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    margin: Optional[float] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class QualityTxCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: Optional[str] = Field(None, alias="batchId")
    shipment_id: Optional[str] = Field(None, alias="shipmentId")
    actor_did: Optional[str] = Field(None, alias="actorDid")
    stage: Optional[str] = None                                    # harvest | sorting | transport | retail
    quality_score: Optional[float] = Field(None, alias="qualityScore", ge=0, le=100)
    moisture_level: Optional[float] = Field(None, alias="moistureLevel")
    temperature: Optional[float] = None
    spoilage_detected: Optional[bool] = Field(None, alias="spoilageDetected")
    ai_verification_hash: Optional[str] = Field(None, alias="aiVerificationHash")
    iot_merkle_root: Optional[str] = Field(None, alias="iotMerkleRoot")
    quality_data: Dict[str, Any] = Field(default_factory=dict, alias="qualityData")


def _append(fn, store: LedgerStore, body: BaseModel) -> dict:
    try:
        entry = fn(store, body.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "transaction": entry.to_dict()}


@router.post("/economic", status_code=status.HTTP_201_CREATED)
def create_economic_tx(body: EconomicTxCreate, store: LedgerStore = Depends(get_store)):
    """Append an entry to the economic chain."""
    return _append(append_economic_tx, store, body)


@router.post("/quality", status_code=status.HTTP_201_CREATED)
def create_quality_tx(body: QualityTxCreate, store: LedgerStore = Depends(get_store)):
    """Append an entry to the quality chain."""
    return _append(append_quality_tx, store, body)


def _list(
    ledger_type: LedgerType,
    store: LedgerStore,
    filters: Dict[str, Any],
    skip: int,
    limit: int,
) -> dict:
    total = store.count_entries(ledger_type, filters)
    entries = store.list_entries(ledger_type, filters, skip=skip, limit=limit, newest_first=True)
    return {
        "total": total,
        "skip": skip,
        "limit": limit,
        "items": [e.to_dict() for e in entries],
    }


@router.get("/economic")
def list_economic_tx(
    batch_id: Optional[str] = Query(None, alias="batchId"),
    from_party: Optional[str] = Query(None, alias="fromParty"),
    to_party: Optional[str] = Query(None, alias="toParty"),
    did: Optional[str] = Query(None, description="Matches payer or payee"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
):
    """List economic entries, newest first, with filters and pagination."""
    filters = {"batch_id": batch_id, "from_party": from_party, "to_party": to_party, "did": did}
    return _list(LedgerType.ECONOMIC, store, filters, skip, limit)


@router.get("/quality")
def list_quality_tx(
    batch_id: Optional[str] = Query(None, alias="batchId"),
    stage: Optional[str] = Query(None),
    did: Optional[str] = Query(None, description="Matches the recording actor"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
):
    """List quality entries, newest first, with filters and pagination."""
    filters = {"batch_id": batch_id, "stage": stage, "did": did}
    return _list(LedgerType.QUALITY, store, filters, skip, limit)


@router.get("/{ledger_type}/verify")
def verify_ledger(ledger_type: str, store: LedgerStore = Depends(get_store)):
    """Walk one chain end to end and report the first broken link, if any."""
    try:
        chain = LedgerType(ledger_type.upper())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="ledger_type must be one of: economic, quality",
        )
    return verify_chain(store, chain).to_dict()
