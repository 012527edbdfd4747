"""
SQLAlchemy ORM models for AgriTrace.
Tables: economic_ledger_tx, quality_ledger_tx, zkp_logs, anomalies, actors
"""

import uuid
from sqlalchemy import (
    Column, String, Float, Boolean, DateTime, Text, Index, JSON, Uuid
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


class EconomicLedgerTx(Base):
    __tablename__ = "economic_ledger_tx"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tx_id = Column(String(64), nullable=False, unique=True)
    tx_hash = Column(String(64), nullable=False, unique=True)
    # unique: two entries claiming the same predecessor is a fork
    prev_tx_hash = Column(String(64), nullable=True, unique=True)
    batch_id = Column(String(100), nullable=True)
    shipment_id = Column(String(100), nullable=True)
    payer_did = Column(String(200), nullable=True)
    payee_did = Column(String(200), nullable=True)
    from_party = Column(String(50), nullable=True)
    to_party = Column(String(50), nullable=True)
    product = Column(String(200), nullable=True)
    quantity = Column(Float, nullable=True)
    amount = Column(Float, nullable=True)
    payment_method = Column(String(50), nullable=True)
    margin = Column(Float, nullable=True)
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_economic_ledger_tx_batch_id", "batch_id"),
        Index("ix_economic_ledger_tx_created_at", "created_at"),
        Index("ix_economic_ledger_tx_payer_did", "payer_did"),
        Index("ix_economic_ledger_tx_payee_did", "payee_did"),
    )


class QualityLedgerTx(Base):
    __tablename__ = "quality_ledger_tx"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tx_id = Column(String(64), nullable=False, unique=True)
    tx_hash = Column(String(64), nullable=False, unique=True)
    prev_tx_hash = Column(String(64), nullable=True, unique=True)
    batch_id = Column(String(100), nullable=True)
    shipment_id = Column(String(100), nullable=True)
    actor_did = Column(String(200), nullable=True)
    stage = Column(String(50), nullable=True)  # harvest, sorting, transport, retail
    quality_score = Column(Float, nullable=True)
    moisture_level = Column(Float, nullable=True)
    temperature = Column(Float, nullable=True)
    spoilage_detected = Column(Boolean, nullable=True)
    ai_verification_hash = Column(String(64), nullable=True)
    iot_merkle_root = Column(String(64), nullable=True)
    quality_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_quality_ledger_tx_batch_id", "batch_id"),
        Index("ix_quality_ledger_tx_created_at", "created_at"),
        Index("ix_quality_ledger_tx_actor_did", "actor_did"),
        Index("ix_quality_ledger_tx_stage", "stage"),
    )


class ZkpLog(Base):
    __tablename__ = "zkp_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    did = Column(String(200), nullable=False)
    batch_id = Column(String(100), nullable=True)
    proof_type = Column(String(20), nullable=False)  # QUALITY | ECONOMIC | ROUTE | UNKNOWN
    proof_payload = Column(Text, nullable=False)
    verified = Column(Boolean, nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_zkp_logs_batch_id", "batch_id"),
        Index("ix_zkp_logs_did", "did"),
        Index("ix_zkp_logs_created_at", "created_at"),
    )


class Anomaly(Base):
    __tablename__ = "anomalies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(String(100), nullable=True)
    did = Column(String(200), nullable=True)
    anomaly_type = Column(String(50), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="FAILED")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_anomalies_batch_id", "batch_id"),
        Index("ix_anomalies_type", "anomaly_type"),
    )


class Actor(Base):
    """Read-only here: rows are owned by the registration service."""
    __tablename__ = "actors"

    did = Column(String(200), primary_key=True)
    role = Column(String(20), nullable=False)
    name = Column(String(200), nullable=True)
    display_name = Column(String(200), nullable=True)  # business / company / shop name
    address = Column(String(500), nullable=True)
    trust_score = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_actors_role", "role"),
    )
