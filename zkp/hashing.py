"""
Hash utilities for the mock ZKP engine and the ledger chains.

Every digest is SHA-256 hex over UTF-8 text. Structured values are
serialised as compact JSON in construction order; only the private-input
commitment normalises key order.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

EMPTY_MERKLE_SEED = "empty"
PROOF_LENGTH = 64

# Field order of the proof seal. Changing it invalidates every stored proof.
CANONICAL_PROOF_FIELDS = ("claim", "privateInputsHash", "publicInputs", "timestamp", "proof")


def serialize(data: Any) -> str:
    """Compact JSON, insertion order preserved, non-JSON values stringified."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_hex(data: Union[str, Any]) -> str:
    """SHA-256 hex digest of a string, or of the compact JSON of anything else."""
    text = data if isinstance(data, str) else serialize(data)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_render_value(v) for v in value)
    if isinstance(value, Mapping):
        return serialize(value)
    return str(value)


def hash_private_inputs(inputs: Mapping[str, Any]) -> str:
    """
    Commit to private inputs without revealing them.

    Keys are sorted so the commitment does not depend on insertion order,
    then rendered as ``key:value`` pairs joined with ``|``.
    """
    joined = "|".join(f"{key}:{_render_value(inputs[key])}" for key in sorted(inputs))
    return sha256_hex(joined)


def generate_merkle_root(values: Iterable[Any]) -> str:
    """
    Binary Merkle root over ``sha256_hex(str(v))`` leaves.

    An odd node at any level is paired with itself rather than promoted.
    """
    values = list(values)
    if not values:
        return sha256_hex(EMPTY_MERKLE_SEED)
    if len(values) == 1:
        return sha256_hex(str(values[0]))

    level = [sha256_hex(str(v)) for v in values]
    while len(level) > 1:
        next_level = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            next_level.append(sha256_hex(left + right))
        level = next_level
    return level[0]


def epoch_millis(moment: Optional[datetime] = None) -> int:
    """Integer milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    delta = moment - epoch
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_mock_proof(
    private_inputs: Mapping[str, Any],
    public_inputs: Mapping[str, Any],
    claim: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Synthesize the stand-in for a zk-SNARK proof string.

    Four component hashes (private commitment, public inputs, claim,
    generation time) are joined with ``::`` and hashed; the first 64 hex
    characters are the proof.
    """
    components = [
        hash_private_inputs(private_inputs),
        sha256_hex(serialize(public_inputs)),
        sha256_hex(claim),
        sha256_hex(str(epoch_millis(now))),
    ]
    return sha256_hex("::".join(components))[:PROOF_LENGTH]


def canonical_proof_fields(proof: Any) -> dict:
    """
    Extract the five sealed fields in canonical order.

    Accepts a ``ZKPProof`` or a camelCase mapping as received over the wire.
    """
    if isinstance(proof, Mapping):
        return {name: proof.get(name) for name in CANONICAL_PROOF_FIELDS}
    return {
        "claim": proof.claim,
        "privateInputsHash": proof.private_inputs_hash,
        "publicInputs": proof.public_inputs,
        "timestamp": proof.timestamp,
        "proof": proof.proof,
    }


def generate_proof_hash(proof: Any) -> str:
    """Integrity seal over the canonical proof fields."""
    return sha256_hex(canonical_proof_fields(proof))


def validate_proof_hash(proof: Any, expected_hash: Optional[str]) -> bool:
    """True when the recomputed seal matches ``expected_hash``."""
    if not expected_hash:
        return False
    return generate_proof_hash(proof) == expected_hash
