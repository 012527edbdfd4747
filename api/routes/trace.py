"""
Trace routes — consumer-facing journey of a produce batch.
"""
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException

from api.database import get_store
from ledger.store import LedgerStore
from ledger.trace import TraceSettings, load_trace_settings, trace_batch

router = APIRouter()


@lru_cache(maxsize=1)
def get_trace_settings() -> TraceSettings:
    """Loaded once per process from config/trace.json (or TRACE_CONFIG_PATH)."""
    return load_trace_settings()


@router.get("/{batch_id}")
def trace(
    batch_id: str,
    store: LedgerStore = Depends(get_store),
    settings: TraceSettings = Depends(get_trace_settings),
):
    """Return journey stages, party summaries, quality metrics and proofs."""
    result = trace_batch(store, batch_id, settings)
    if result.is_empty:
        raise HTTPException(status_code=404, detail=f"Batch '{batch_id}' not found")
    return result.to_dict()
