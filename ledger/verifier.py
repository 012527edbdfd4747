"""
Ledger Chain Verifier — AgriTrace

Traverses one ledger chain in created_at order and verifies:
1. the first entry has no predecessor
2. each entry's prev_tx_hash matches the previous entry's tx_hash
3. no two entries claim the same predecessor (fork)
4. each entry's tx_hash = SHA256(content + prevTxHash + timestamp)
"""

import logging

from ledger.models import ChainVerificationResult, LedgerType
from ledger.store import LedgerStore
from ledger.writer import compute_tx_hash

logger = logging.getLogger(__name__)


def verify_chain(store: LedgerStore, ledger_type: LedgerType) -> ChainVerificationResult:
    """
    Verify hash chain integrity for a single ledger type.

    Args:
        store: Persistence collaborator.
        ledger_type: ECONOMIC or QUALITY.

    Returns:
        ChainVerificationResult with is_valid flag and the first broken tx_id.
    """
    entries = store.list_entries(ledger_type)

    if not entries:
        logger.info("%s ledger is empty — chain trivially valid", ledger_type.value)
        return ChainVerificationResult(ledger_type=ledger_type, is_valid=True, total_entries=0)

    def broken(entry, msg):
        logger.error("Chain integrity violation (%s): %s", ledger_type.value, msg)
        return ChainVerificationResult(
            ledger_type=ledger_type,
            is_valid=False,
            total_entries=len(entries),
            broken_at_tx_id=entry.tx_id,
            error_message=msg,
        )

    expected_prev = None
    seen_prev = set()

    for entry in entries:
        # Check prev_tx_hash linkage
        if entry.prev_tx_hash in seen_prev:
            return broken(
                entry,
                f"fork at {entry.tx_id}: prev_tx_hash "
                f"{str(entry.prev_tx_hash)[:16]}... already claimed by another entry",
            )
        seen_prev.add(entry.prev_tx_hash)

        if entry.prev_tx_hash != expected_prev:
            return broken(
                entry,
                f"prev_tx_hash mismatch at {entry.tx_id}: "
                f"expected {str(expected_prev)[:16]}..., "
                f"got {str(entry.prev_tx_hash)[:16]}...",
            )

        # Recompute and verify tx_hash
        computed = compute_tx_hash(entry)
        if computed != entry.tx_hash:
            logger.error("Tampered %s entry detected: %s", ledger_type.value, entry.tx_id)
            return broken(
                entry,
                f"tx_hash mismatch at {entry.tx_id}: "
                f"computed {computed[:16]}..., stored {entry.tx_hash[:16]}...",
            )

        expected_prev = entry.tx_hash

    logger.info("%s ledger chain verified: %d entries all valid", ledger_type.value, len(entries))
    return ChainVerificationResult(ledger_type=ledger_type, is_valid=True, total_entries=len(entries))
