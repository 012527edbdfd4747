"""
Proof data models for the mock ZKP engine.
Provides dataclasses used by zkp/prover.py, zkp/verifier.py and the API layer.
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from zkp.hashing import generate_proof_hash


class ProofType(str, enum.Enum):
    QUALITY = "QUALITY"
    ECONOMIC = "ECONOMIC"
    ROUTE = "ROUTE"

    @classmethod
    def from_claim(cls, claim: Any) -> Optional["ProofType"]:
        """Legacy dispatch: infer the type from the claim prose."""
        if not isinstance(claim, str):
            return None
        text = claim.lower()
        for member in (cls.QUALITY, cls.ECONOMIC, cls.ROUTE):
            if member.value.lower() in text:
                return member
        return None


@dataclass
class ZKPProof:
    """A self-describing mock proof. Only the first five fields are sealed."""
    claim: str
    private_inputs_hash: str
    public_inputs: Dict[str, Any]
    timestamp: str
    proof: str
    proof_hash: Optional[str] = field(default="")
    proof_type: Optional[ProofType] = None

    def __post_init__(self):
        if isinstance(self.proof_type, str) and not isinstance(self.proof_type, ProofType):
            self.proof_type = ProofType(self.proof_type.upper())
        # None means "received without a seal" and must stay unsealed
        if self.proof_hash == "":
            self.proof_hash = generate_proof_hash(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim": self.claim,
            "privateInputsHash": self.private_inputs_hash,
            "publicInputs": self.public_inputs,
            "timestamp": self.timestamp,
            "proof": self.proof,
            "proofHash": self.proof_hash,
            "proofType": self.proof_type.value if self.proof_type else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ZKPProof":
        """
        Rebuild a proof received over the wire.

        ``proofHash`` is kept verbatim (never recomputed) so that tampering
        stays detectable. A missing hash becomes ``None``.
        """
        raw_type = data.get("proofType")
        proof_type = None
        if raw_type:
            try:
                proof_type = ProofType(str(raw_type).upper())
            except ValueError:
                proof_type = None
        return cls(
            claim=data.get("claim") or "",
            private_inputs_hash=data.get("privateInputsHash") or "",
            public_inputs=dict(data.get("publicInputs") or {}),
            timestamp=data.get("timestamp") or "",
            proof=data.get("proof") or "",
            proof_hash=data.get("proofHash") or None,
            proof_type=proof_type,
        )

    @property
    def resolved_type(self) -> Optional[ProofType]:
        """Explicit discriminant if present, else inferred from the claim."""
        return self.proof_type or ProofType.from_claim(self.claim)


@dataclass
class VerificationResult:
    """Outcome of verifying a single proof."""
    verified: bool
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"verified": self.verified, "message": self.message}
        if self.details is not None:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        status = "VERIFIED" if self.verified else "REJECTED"
        return f"[{status}] {self.message}"


@dataclass
class ValidationResult:
    """Result of validating an incoming proof-generation request."""
    is_valid: bool
    reasons: List[str] = field(default_factory=list)

    def add_error(self, msg: str):
        self.reasons.append(msg)
        self.is_valid = False

    def __str__(self) -> str:
        if self.is_valid:
            return "Valid"
        return "Invalid: " + "; ".join(self.reasons)
