"""
Ledger hash chain data models for AgriTrace.
Provides dataclasses used by ledger/writer.py, ledger/verifier.py,
ledger/store.py and ledger/trace.py.
"""

import enum
import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from zkp.hashing import epoch_millis, sha256_hex


class LedgerType(str, enum.Enum):
    ECONOMIC = "ECONOMIC"
    QUALITY = "QUALITY"

    @property
    def tx_prefix(self) -> str:
        return "TX" if self is LedgerType.ECONOMIC else "QL"


def utc_now_millis() -> datetime.datetime:
    """Current UTC time truncated to whole milliseconds."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


class _ChainedEntry:
    """Behaviour shared by both ledger entry variants."""

    ledger_type: LedgerType
    # (attribute, wire name) in hashing order
    CONTENT_FIELDS: Tuple[Tuple[str, str], ...] = ()
    FLOAT_FIELDS: Tuple[str, ...] = ()
    PAYLOAD_FIELD: str = ""

    def _normalise(self):
        for name in self.FLOAT_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, bool):
                setattr(self, name, float(value))
        if getattr(self, self.PAYLOAD_FIELD) is None:
            setattr(self, self.PAYLOAD_FIELD, {})

    def content_dict(self) -> Dict[str, Any]:
        """Caller-supplied content in hashing order. Unset fields are omitted."""
        return {
            wire: getattr(self, attr)
            for attr, wire in self.CONTENT_FIELDS
            if getattr(self, attr) is not None
        }

    def hash_payload(self) -> Dict[str, Any]:
        """Content + linkage + time: exactly what tx_hash commits to."""
        payload = self.content_dict()
        payload["prevTxHash"] = self.prev_tx_hash
        payload["timestamp"] = epoch_millis(self.created_at)
        return payload

    def compute_hash(self) -> str:
        return sha256_hex(self.hash_payload())

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "txId": self.tx_id,
            "txHash": self.tx_hash,
            "prevTxHash": self.prev_tx_hash,
            "ledgerType": self.ledger_type.value,
        }
        for attr, wire in self.CONTENT_FIELDS:
            data[wire] = getattr(self, attr)
        data["createdAt"] = self.created_at.isoformat() if self.created_at else None
        return data


@dataclass
class EconomicLedgerEntry(_ChainedEntry):
    """A payment / custody-transfer event on the economic chain."""
    tx_id: str = ""
    tx_hash: str = ""
    prev_tx_hash: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=utc_now_millis)
    id: Optional[str] = None
    batch_id: Optional[str] = None
    shipment_id: Optional[str] = None
    payer_did: Optional[str] = None
    payee_did: Optional[str] = None
    from_party: Optional[str] = None
    to_party: Optional[str] = None
    product: Optional[str] = None
    quantity: Optional[float] = None
    amount: Optional[float] = None
    payment_method: Optional[str] = None
    margin: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    ledger_type = LedgerType.ECONOMIC
    CONTENT_FIELDS = (
        ("batch_id", "batchId"),
        ("shipment_id", "shipmentId"),
        ("payer_did", "payerDid"),
        ("payee_did", "payeeDid"),
        ("from_party", "fromParty"),
        ("to_party", "toParty"),
        ("product", "product"),
        ("quantity", "quantity"),
        ("amount", "amount"),
        ("payment_method", "paymentMethod"),
        ("margin", "margin"),
        ("meta", "meta"),
    )
    FLOAT_FIELDS = ("quantity", "amount", "margin")
    PAYLOAD_FIELD = "meta"

    def __post_init__(self):
        self._normalise()


@dataclass
class QualityLedgerEntry(_ChainedEntry):
    """A quality observation on the quality chain."""
    tx_id: str = ""
    tx_hash: str = ""
    prev_tx_hash: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=utc_now_millis)
    id: Optional[str] = None
    batch_id: Optional[str] = None
    shipment_id: Optional[str] = None
    actor_did: Optional[str] = None
    stage: Optional[str] = None
    quality_score: Optional[float] = None
    moisture_level: Optional[float] = None
    temperature: Optional[float] = None
    spoilage_detected: Optional[bool] = None
    ai_verification_hash: Optional[str] = None
    iot_merkle_root: Optional[str] = None
    quality_data: Dict[str, Any] = field(default_factory=dict)

    ledger_type = LedgerType.QUALITY
    CONTENT_FIELDS = (
        ("batch_id", "batchId"),
        ("shipment_id", "shipmentId"),
        ("actor_did", "actorDid"),
        ("stage", "stage"),
        ("quality_score", "qualityScore"),
        ("moisture_level", "moistureLevel"),
        ("temperature", "temperature"),
        ("spoilage_detected", "spoilageDetected"),
        ("ai_verification_hash", "aiVerificationHash"),
        ("iot_merkle_root", "iotMerkleRoot"),
        ("quality_data", "qualityData"),
    )
    FLOAT_FIELDS = ("quality_score", "moisture_level", "temperature")
    PAYLOAD_FIELD = "quality_data"

    def __post_init__(self):
        self._normalise()


ENTRY_CLASSES = {
    LedgerType.ECONOMIC: EconomicLedgerEntry,
    LedgerType.QUALITY: QualityLedgerEntry,
}


@dataclass
class ZKPLogRecord:
    """Persisted record of a single proof generate/verify call."""
    did: str
    proof_type: str
    proof_payload: str
    verified: bool
    message: Optional[str] = None
    batch_id: Optional[str] = None
    id: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=utc_now_millis)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "did": self.did,
            "batchId": self.batch_id,
            "proofType": self.proof_type,
            "proofPayload": self.proof_payload,
            "verified": self.verified,
            "message": self.message,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class AnomalyRecord:
    """Failure record written when a proof does not verify."""
    anomaly_type: str
    details: Dict[str, Any]
    did: Optional[str] = None
    batch_id: Optional[str] = None
    status: str = "FAILED"
    id: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=utc_now_millis)


@dataclass
class ActorProfile:
    """Role/profile record of a supply-chain participant, keyed by DID."""
    did: str
    role: str
    name: Optional[str] = None
    display_name: Optional[str] = None
    address: Optional[str] = None
    trust_score: Optional[float] = None

    @property
    def label(self) -> Optional[str]:
        return self.display_name or self.name


@dataclass
class ChainVerificationResult:
    """Result of running the full chain verification for one ledger type."""
    ledger_type: LedgerType
    is_valid: bool
    total_entries: int
    broken_at_tx_id: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ledgerType": self.ledger_type.value,
            "isValid": self.is_valid,
            "totalEntries": self.total_entries,
            "brokenAtTxId": self.broken_at_tx_id,
            "errorMessage": self.error_message,
        }

    def __str__(self) -> str:
        if self.is_valid:
            return f"{self.ledger_type.value} chain OK: {self.total_entries} entries verified"
        return (
            f"{self.ledger_type.value} chain BROKEN at {self.broken_at_tx_id}: "
            f"{self.error_message}"
        )
