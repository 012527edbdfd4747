"""Error taxonomy for proof generation and verification."""


class ZKPError(Exception):
    """Base class for every mock-ZKP failure."""


class ProofGenerationError(ZKPError):
    """The prover refused to emit a proof."""


class ConditionNotSatisfiedError(ProofGenerationError):
    """The claim's domain condition does not hold for the private inputs."""

    def __init__(self, claim_type: str, reasons=None):
        self.claim_type = claim_type
        self.reasons = list(reasons or [])
        message = f"{claim_type.capitalize()} conditions not satisfied. Cannot generate proof."
        if self.reasons:
            message += " " + "; ".join(self.reasons)
        super().__init__(message)


class UnsupportedClaimTypeError(ZKPError, ValueError):
    """Unknown claim-type tag passed to the prover dispatcher."""

    def __init__(self, claim_type):
        self.claim_type = claim_type
        super().__init__(f"Unknown proof type: {claim_type}")


class ProofVerificationError(ZKPError):
    """A proof failed one of the verifier checks."""

    def __init__(self, message: str, details=None):
        self.message = message
        self.details = details
        super().__init__(message)


class TamperDetectedError(ProofVerificationError):
    """Seal mismatch, or public inputs missing / outside the allowed bounds."""


class MalformedProofError(ProofVerificationError):
    """Structural fields missing or the proof string too short."""
