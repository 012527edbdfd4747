"""
Ledger Append Service — AgriTrace

INSERT-only. Maintains two independent SHA-256 hash chains, ECONOMIC and
QUALITY. Each new entry links to the tail of its own chain; the first
entry of a chain has prev_tx_hash = None.

tx_hash = SHA256(content + prevTxHash + timestamp). The generated tx_id is
a human-facing label and is not hashed.
"""

import datetime
import logging
import os
import secrets
import string
import threading
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from ledger.models import (
    ENTRY_CLASSES,
    EconomicLedgerEntry,
    LedgerType,
    QualityLedgerEntry,
    utc_now_millis,
)
from ledger.store import LedgerConflictError, LedgerEntry, LedgerStore
from zkp.hashing import epoch_millis

load_dotenv()

logger = logging.getLogger(__name__)

LEDGER_APPEND_MAX_RETRIES = int(os.environ.get("LEDGER_APPEND_MAX_RETRIES", "3"))

_TX_ID_ALPHABET = string.ascii_uppercase + string.digits
_TX_ID_SUFFIX_LEN = 7

# Serialises read-tail / insert per chain within this process
_CHAIN_LOCKS = {ledger_type: threading.Lock() for ledger_type in LedgerType}


def generate_tx_id(ledger_type: LedgerType, now: Optional[datetime.datetime] = None) -> str:
    """``PREFIX-<epoch millis>-<7 random base36 chars>``."""
    suffix = "".join(secrets.choice(_TX_ID_ALPHABET) for _ in range(_TX_ID_SUFFIX_LEN))
    return f"{ledger_type.tx_prefix}-{epoch_millis(now)}-{suffix}"


def compute_tx_hash(entry: LedgerEntry) -> str:
    """Recompute the hash an entry should carry from its stored fields."""
    return entry.compute_hash()


def _content_kwargs(ledger_type: LedgerType, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Accept snake_case or camelCase keys; reject anything that is not content."""
    cls = ENTRY_CLASSES[ledger_type]
    lookup = {}
    for attr, wire in cls.CONTENT_FIELDS:
        lookup[attr] = attr
        lookup[wire] = attr

    kwargs = {}
    unknown = []
    for key, value in data.items():
        attr = lookup.get(key)
        if attr is None:
            unknown.append(key)
        elif value is not None:
            kwargs[attr] = value
    if unknown:
        raise ValueError(
            f"Unknown {ledger_type.value.lower()} ledger field(s): {', '.join(sorted(unknown))}"
        )

    score = kwargs.get("quality_score")
    if score is not None and not 0 <= score <= 100:
        raise ValueError(f"qualityScore must be within 0-100, got {score}")
    return kwargs


def _next_timestamp(tail: Optional[LedgerEntry]) -> datetime.datetime:
    """Append time, forced strictly after the tail so created_at orders the chain."""
    now = utc_now_millis()
    if tail is not None and tail.created_at is not None and now <= tail.created_at:
        now = tail.created_at + datetime.timedelta(milliseconds=1)
    return now


def _append(store: LedgerStore, ledger_type: LedgerType, data: Mapping[str, Any]) -> LedgerEntry:
    content = _content_kwargs(ledger_type, data)
    cls = ENTRY_CLASSES[ledger_type]

    attempts = max(1, LEDGER_APPEND_MAX_RETRIES)
    with _CHAIN_LOCKS[ledger_type]:
        for attempt in range(1, attempts + 1):
            tail = store.get_last_entry(ledger_type)
            created_at = _next_timestamp(tail)

            entry = cls(
                prev_tx_hash=tail.tx_hash if tail else None,
                created_at=created_at,
                **content,
            )
            entry.tx_hash = entry.compute_hash()
            entry.tx_id = generate_tx_id(ledger_type, created_at)

            try:
                stored = store.append_entry(ledger_type, entry)
            except LedgerConflictError as e:
                logger.warning(
                    "%s chain conflict on attempt %d/%d: %s",
                    ledger_type.value, attempt, attempts, e,
                )
                if attempt == attempts:
                    raise
                continue

            logger.info(
                "Ledger entry appended: type=%s tx=%s batch=%s hash=%s... prev=%s",
                ledger_type.value, stored.tx_id, stored.batch_id, stored.tx_hash[:16],
                stored.prev_tx_hash[:16] + "..." if stored.prev_tx_hash else "GENESIS",
            )
            return stored


def append_economic_tx(store: LedgerStore, data: Mapping[str, Any]) -> EconomicLedgerEntry:
    """
    Append a new immutable entry to the economic ledger.

    Args:
        store: Persistence collaborator.
        data: Economic content (batchId, payerDid, payeeDid, fromParty, toParty,
              product, quantity, amount, paymentMethod, margin, meta, shipmentId),
              snake_case or camelCase.

    Returns:
        The stored EconomicLedgerEntry.

    Raises:
        ValueError: Unknown content field.
        LedgerConflictError: The chain kept moving for every retry.
        LedgerWriteError: The store failed to persist the entry.
    """
    return _append(store, LedgerType.ECONOMIC, data)


def append_quality_tx(store: LedgerStore, data: Mapping[str, Any]) -> QualityLedgerEntry:
    """
    Append a new immutable entry to the quality ledger.

    Same contract as append_economic_tx, with quality content fields
    (actorDid, stage, qualityScore, moistureLevel, temperature,
    spoilageDetected, aiVerificationHash, iotMerkleRoot, qualityData).
    """
    return _append(store, LedgerType.QUALITY, data)
