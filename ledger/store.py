"""
Persistence collaborators for the ledger chains and proof logs.

``LedgerStore`` is the interface the core depends on. ``SqlLedgerStore``
backs it with a SQLAlchemy session (PostgreSQL in production, SQLite in
tests); ``InMemoryLedgerStore`` keeps everything in process for local runs
and unit tests.

Both implementations perform the optimistic tail check on append: the new
entry's prev_tx_hash must still be the current tail's tx_hash, otherwise
LedgerConflictError is raised and nothing is written.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from api.models.db_models import Actor, Anomaly, EconomicLedgerTx, QualityLedgerTx, ZkpLog
from ledger.models import (
    ENTRY_CLASSES,
    ActorProfile,
    AnomalyRecord,
    EconomicLedgerEntry,
    LedgerType,
    QualityLedgerEntry,
    ZKPLogRecord,
)

logger = logging.getLogger(__name__)

LedgerEntry = Union[EconomicLedgerEntry, QualityLedgerEntry]

# filter name -> entry attributes it matches (any)
ENTRY_FILTERS = {
    "batch_id": ("batch_id",),
    "from_party": ("from_party",),
    "to_party": ("to_party",),
    "stage": ("stage",),
    "did": ("payer_did", "payee_did", "actor_did"),
}


class LedgerWriteError(RuntimeError):
    """A ledger append could not be persisted."""


class LedgerConflictError(LedgerWriteError):
    """Another writer extended the chain first. Retryable."""

    def __init__(self, ledger_type: LedgerType, expected_prev: Optional[str], actual_prev: Optional[str]):
        self.ledger_type = ledger_type
        self.expected_prev = expected_prev
        self.actual_prev = actual_prev
        super().__init__(
            f"{ledger_type.value} chain tail moved: expected {str(expected_prev)[:16]}..., "
            f"found {str(actual_prev)[:16]}..."
        )


class LedgerStore(ABC):
    """Abstract base for all ledger persistence implementations."""

    @abstractmethod
    def append_entry(self, ledger_type: LedgerType, entry: LedgerEntry) -> LedgerEntry:
        pass

    @abstractmethod
    def get_last_entry(self, ledger_type: LedgerType) -> Optional[LedgerEntry]:
        pass

    @abstractmethod
    def find_entries_by_batch(self, batch_id: str) -> List[LedgerEntry]:
        pass

    @abstractmethod
    def list_entries(
        self,
        ledger_type: LedgerType,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[LedgerEntry]:
        pass

    @abstractmethod
    def count_entries(self, ledger_type: LedgerType, filters: Optional[Dict[str, Any]] = None) -> int:
        pass

    @abstractmethod
    def create_proof_log(self, record: ZKPLogRecord) -> ZKPLogRecord:
        pass

    @abstractmethod
    def find_proof_logs(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[ZKPLogRecord]:
        pass

    @abstractmethod
    def count_proof_logs(self, filters: Optional[Dict[str, Any]] = None) -> int:
        pass

    @abstractmethod
    def create_anomaly(self, record: AnomalyRecord) -> AnomalyRecord:
        pass

    @abstractmethod
    def get_profiles(self, dids: Iterable[str]) -> Dict[str, ActorProfile]:
        pass


def _check_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    filters = {k: v for k, v in (filters or {}).items() if v is not None}
    unknown = set(filters) - set(ENTRY_FILTERS)
    if unknown:
        raise ValueError(f"Unsupported ledger filter(s): {', '.join(sorted(unknown))}")
    return filters


# ── In-memory ─────────────────────────────────────────────────────────────────

class InMemoryLedgerStore(LedgerStore):
    """Process-local store. Entries are kept in append order per chain."""

    def __init__(self, profiles: Optional[Iterable[ActorProfile]] = None):
        self._lock = threading.Lock()
        self._entries: Dict[LedgerType, List[LedgerEntry]] = {t: [] for t in LedgerType}
        self._proof_logs: List[ZKPLogRecord] = []
        self._anomalies: List[AnomalyRecord] = []
        self._profiles: Dict[str, ActorProfile] = {p.did: p for p in (profiles or [])}

    def add_profile(self, profile: ActorProfile) -> None:
        self._profiles[profile.did] = profile

    @property
    def anomalies(self) -> List[AnomalyRecord]:
        return list(self._anomalies)

    def append_entry(self, ledger_type, entry):
        with self._lock:
            chain = self._entries[ledger_type]
            tail_hash = chain[-1].tx_hash if chain else None
            if entry.prev_tx_hash != tail_hash:
                raise LedgerConflictError(ledger_type, entry.prev_tx_hash, tail_hash)
            if entry.id is None:
                entry.id = str(uuid.uuid4())
            chain.append(entry)
        return entry

    def get_last_entry(self, ledger_type):
        chain = self._entries[ledger_type]
        return chain[-1] if chain else None

    def find_entries_by_batch(self, batch_id):
        matches = [
            e for chain in self._entries.values() for e in chain if e.batch_id == batch_id
        ]
        return sorted(matches, key=lambda e: e.created_at)

    def _filtered(self, ledger_type, filters):
        filters = _check_filters(filters)
        entries = list(self._entries[ledger_type])
        for key, value in filters.items():
            attrs = ENTRY_FILTERS[key]
            entries = [e for e in entries if any(getattr(e, a, None) == value for a in attrs)]
        return entries

    def list_entries(self, ledger_type, filters=None, skip=0, limit=None, newest_first=False):
        entries = sorted(self._filtered(ledger_type, filters), key=lambda e: e.created_at, reverse=newest_first)
        end = None if limit is None else skip + limit
        return entries[skip:end]

    def count_entries(self, ledger_type, filters=None):
        return len(self._filtered(ledger_type, filters))

    def create_proof_log(self, record):
        if record.id is None:
            record.id = str(uuid.uuid4())
        self._proof_logs.append(record)
        return record

    def _filtered_logs(self, filters):
        filters = {k: v for k, v in (filters or {}).items() if v is not None}
        logs = list(self._proof_logs)
        for key, value in filters.items():
            logs = [r for r in logs if getattr(r, key) == value]
        return logs

    def find_proof_logs(self, filters=None, skip=0, limit=None):
        logs = sorted(self._filtered_logs(filters), key=lambda r: r.created_at, reverse=True)
        end = None if limit is None else skip + limit
        return logs[skip:end]

    def count_proof_logs(self, filters=None):
        return len(self._filtered_logs(filters))

    def create_anomaly(self, record):
        if record.id is None:
            record.id = str(uuid.uuid4())
        self._anomalies.append(record)
        return record

    def get_profiles(self, dids):
        return {did: self._profiles[did] for did in set(dids) if did in self._profiles}


# ── SQLAlchemy ────────────────────────────────────────────────────────────────

_MODELS = {
    LedgerType.ECONOMIC: EconomicLedgerTx,
    LedgerType.QUALITY: QualityLedgerTx,
}

_ENTRY_COLUMNS = ("id", "tx_id", "tx_hash", "prev_tx_hash", "created_at")
PROOF_LOG_FILTERS = ("batch_id", "proof_type", "verified", "did")


def _as_utc(value):
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_entry(ledger_type: LedgerType, row) -> LedgerEntry:
    cls = ENTRY_CLASSES[ledger_type]
    kwargs = {attr: getattr(row, attr) for attr, _ in cls.CONTENT_FIELDS}
    kwargs.update({name: getattr(row, name) for name in _ENTRY_COLUMNS})
    kwargs["id"] = str(row.id)
    kwargs["created_at"] = _as_utc(row.created_at)
    return cls(**kwargs)


def _row_to_log(row: ZkpLog) -> ZKPLogRecord:
    return ZKPLogRecord(
        id=str(row.id),
        did=row.did,
        batch_id=row.batch_id,
        proof_type=row.proof_type,
        proof_payload=row.proof_payload,
        verified=row.verified,
        message=row.message,
        created_at=_as_utc(row.created_at),
    )


class SqlLedgerStore(LedgerStore):
    """Ledger persistence over a SQLAlchemy session. INSERT-only."""

    def __init__(self, db: Session):
        self.db = db

    def _entry_query(self, ledger_type, filters):
        model = _MODELS[ledger_type]
        stmt = select(model)
        for key, value in _check_filters(filters).items():
            columns = [getattr(model, a) for a in ENTRY_FILTERS[key] if hasattr(model, a)]
            if not columns:
                # filter does not apply to this chain
                return None
            if len(columns) == 1:
                stmt = stmt.where(columns[0] == value)
            else:
                stmt = stmt.where(or_(*(c == value for c in columns)))
        return stmt

    def get_last_entry(self, ledger_type):
        model = _MODELS[ledger_type]
        row = self.db.execute(
            select(model).order_by(model.created_at.desc()).limit(1)
        ).scalars().first()
        return _row_to_entry(ledger_type, row) if row else None

    def append_entry(self, ledger_type, entry):
        model = _MODELS[ledger_type]
        tail = self.get_last_entry(ledger_type)
        tail_hash = tail.tx_hash if tail else None
        if entry.prev_tx_hash != tail_hash:
            raise LedgerConflictError(ledger_type, entry.prev_tx_hash, tail_hash)

        row_id = uuid.UUID(entry.id) if entry.id else uuid.uuid4()
        values = {attr: getattr(entry, attr) for attr, _ in entry.CONTENT_FIELDS}
        row = model(
            id=row_id,
            tx_id=entry.tx_id,
            tx_hash=entry.tx_hash,
            prev_tx_hash=entry.prev_tx_hash,
            created_at=entry.created_at,
            **values,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # unique(prev_tx_hash) lost to a concurrent writer
            raise LedgerConflictError(ledger_type, entry.prev_tx_hash, None) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to append %s ledger entry: %s", ledger_type.value, e)
            raise LedgerWriteError(f"{ledger_type.value} ledger write failed: {e}") from e

        entry.id = str(row_id)
        return entry

    def find_entries_by_batch(self, batch_id):
        entries = []
        for ledger_type, model in _MODELS.items():
            rows = self.db.execute(
                select(model).where(model.batch_id == batch_id).order_by(model.created_at.asc())
            ).scalars().all()
            entries.extend(_row_to_entry(ledger_type, r) for r in rows)
        return sorted(entries, key=lambda e: e.created_at)

    def list_entries(self, ledger_type, filters=None, skip=0, limit=None, newest_first=False):
        stmt = self._entry_query(ledger_type, filters)
        if stmt is None:
            return []
        model = _MODELS[ledger_type]
        order = model.created_at.desc() if newest_first else model.created_at.asc()
        stmt = stmt.order_by(order).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = self.db.execute(stmt).scalars().all()
        return [_row_to_entry(ledger_type, r) for r in rows]

    def count_entries(self, ledger_type, filters=None):
        stmt = self._entry_query(ledger_type, filters)
        if stmt is None:
            return 0
        return self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def create_proof_log(self, record):
        row = ZkpLog(
            id=uuid.uuid4(),
            did=record.did,
            batch_id=record.batch_id,
            proof_type=record.proof_type,
            proof_payload=record.proof_payload,
            verified=record.verified,
            message=record.message,
            created_at=record.created_at,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to write ZKP log: %s", e)
            raise
        record.id = str(row.id)
        return record

    def _log_query(self, filters):
        stmt = select(ZkpLog)
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key not in PROOF_LOG_FILTERS:
                raise ValueError(f"Unsupported proof log filter: {key}")
            stmt = stmt.where(getattr(ZkpLog, key) == value)
        return stmt

    def find_proof_logs(self, filters=None, skip=0, limit=None):
        stmt = self._log_query(filters).order_by(ZkpLog.created_at.desc()).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_row_to_log(r) for r in self.db.execute(stmt).scalars().all()]

    def count_proof_logs(self, filters=None):
        stmt = self._log_query(filters)
        return self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def create_anomaly(self, record):
        row = Anomaly(
            id=uuid.uuid4(),
            batch_id=record.batch_id,
            did=record.did,
            anomaly_type=record.anomaly_type,
            details=record.details,
            status=record.status,
            created_at=record.created_at,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to write anomaly: %s", e)
            raise
        record.id = str(row.id)
        return record

    def get_profiles(self, dids):
        dids = list({d for d in dids if d})
        if not dids:
            return {}
        rows = self.db.execute(select(Actor).where(Actor.did.in_(dids))).scalars().all()
        return {
            r.did: ActorProfile(
                did=r.did,
                role=r.role,
                name=r.name,
                display_name=r.display_name,
                address=r.address,
                trust_score=r.trust_score,
            )
            for r in rows
        }
