"""
Batch Trace Assembly — AgriTrace

Stitches both ledger chains and the proof log into a chronological journey
for one produce batch: harvest, quality check, pickup, transit and retail
arrival, with the responsible party's display name, location and readings.
Freshness is taken from the latest quality entry and mapped to a letter
grade and a star rating.
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ledger.models import (
    ActorProfile,
    EconomicLedgerEntry,
    LedgerType,
    QualityLedgerEntry,
    ZKPLogRecord,
)
from ledger.payloads import PayloadType, parse_payload
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SCORE = 85

CONFIG_PATH = os.environ.get(
    "TRACE_CONFIG_PATH",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "trace.json"),
)


@dataclass
class TraceSettings:
    """Display fallbacks used when the ledger does not carry the detail."""
    farm_location: str = "Farm Location"
    farm_facility: str = "Farm Facility"
    transit_location: str = "In transit"
    retail_location: str = "Retail Store"
    pickup_temperature: str = "4°C"
    unknown_farmer: str = "Unknown Farmer"
    unknown_transporter: str = "Unknown Transporter"
    unknown_retailer: str = "Unknown Retailer"
    quality_check_name: str = "AI Quality Verification"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def load_trace_settings(path: str = CONFIG_PATH) -> TraceSettings:
    """Load trace display settings from disk. Fail fast if missing."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"CRITICAL: trace.json not found at {path}. Cannot assemble traces."
        )
    with open(path, "r", encoding="utf-8") as f:
        settings = TraceSettings.from_dict(json.load(f))
    logger.info("Trace settings loaded from %s", path)
    return settings


@dataclass
class JourneyStage:
    stage: str
    role: str
    role_name: str
    date_time: datetime
    description: str
    location: str
    temperature: Optional[str] = None
    quality_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "role": self.role,
            "roleName": self.role_name,
            "dateTime": self.date_time.isoformat() if self.date_time else None,
            "description": self.description,
            "location": self.location,
            "temperature": self.temperature,
            "qualityScore": self.quality_score,
        }


@dataclass
class PartySummary:
    did: str
    name: str
    address: str
    trust_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "did": self.did,
            "name": self.name,
            "address": self.address,
            "trustScore": self.trust_score,
        }


@dataclass
class TraceResult:
    batch_id: str
    freshness_score: int
    grade: str
    star_rating: int
    journey_stages: List[JourneyStage] = field(default_factory=list)
    farmer: Optional[PartySummary] = None
    transporter: Optional[PartySummary] = None
    retailer: Optional[PartySummary] = None
    quality_metrics: Dict[str, Any] = field(default_factory=dict)
    economic_entries: List[EconomicLedgerEntry] = field(default_factory=list)
    quality_entries: List[QualityLedgerEntry] = field(default_factory=list)
    proofs: List[ZKPLogRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.economic_entries or self.quality_entries or self.proofs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "freshnessScore": self.freshness_score,
            "grade": self.grade,
            "starRating": self.star_rating,
            "farmer": self.farmer.to_dict() if self.farmer else None,
            "transporter": self.transporter.to_dict() if self.transporter else None,
            "retailer": self.retailer.to_dict() if self.retailer else None,
            "journeyStages": [s.to_dict() for s in self.journey_stages],
            "qualityMetrics": self.quality_metrics,
            "economicTransactions": [e.to_dict() for e in self.economic_entries],
            "qualityTransactions": [e.to_dict() for e in self.quality_entries],
            "proofs": [p.to_dict() for p in self.proofs],
        }


def grade_for(score: float) -> str:
    if score >= 90:
        return "A+"
    if score >= 80:
        return "A"
    if score >= 70:
        return "B"
    return "C"


def star_rating_for(score: float) -> int:
    if score >= 90:
        return 5
    if score >= 80:
        return 4
    if score >= 70:
        return 3
    return 2


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _fmt_temp(value: Optional[float]) -> Optional[str]:
    return f"{value:.1f}°C" if value is not None else None


def _first_quality(entries: List[QualityLedgerEntry], stage: str) -> Optional[QualityLedgerEntry]:
    return next((q for q in entries if q.stage == stage), None)


def _first_economic(entries: List[EconomicLedgerEntry], marker: PayloadType) -> Optional[EconomicLedgerEntry]:
    return next((e for e in entries if parse_payload(e.meta).payload_type is marker), None)


def _party(profile: Optional[ActorProfile]) -> Optional[PartySummary]:
    if profile is None:
        return None
    return PartySummary(
        did=profile.did,
        name=profile.label or "Unknown",
        address=profile.address or "Unknown",
        trust_score=profile.trust_score,
    )


def trace_batch(
    store: LedgerStore,
    batch_id: str,
    settings: Optional[TraceSettings] = None,
) -> TraceResult:
    """
    Assemble the journey of a batch from both ledgers.

    Args:
        store: Persistence collaborator.
        batch_id: The produce lot identifier.
        settings: Display fallbacks; defaults when omitted.

    Returns:
        TraceResult. ``is_empty`` is True when nothing references the batch.
    """
    settings = settings or TraceSettings()

    entries = store.find_entries_by_batch(batch_id)
    economic = [e for e in entries if e.ledger_type is LedgerType.ECONOMIC]
    quality = [e for e in entries if e.ledger_type is LedgerType.QUALITY]
    economic.sort(key=lambda e: e.created_at)
    quality.sort(key=lambda e: e.created_at)

    dids = set()
    for tx in economic:
        dids.update(d for d in (tx.payer_did, tx.payee_did) if d)
    for tx in quality:
        if tx.actor_did:
            dids.add(tx.actor_did)
    profiles = store.get_profiles(dids)

    def by_role(role: str) -> Optional[ActorProfile]:
        return next((p for p in profiles.values() if p.role == role), None)

    farmer = by_role("FARMER")
    transporter = by_role("TRANSPORTER")
    retailer = by_role("RETAILER")

    latest = quality[-1] if quality else None
    freshness = (
        _round_half_up(latest.quality_score)
        if latest is not None and latest.quality_score
        else DEFAULT_FRESHNESS_SCORE
    )

    stages: List[JourneyStage] = []

    # 1. Harvest
    harvest = _first_quality(quality, "harvest")
    if harvest:
        actor = profiles.get(harvest.actor_did or "")
        stages.append(JourneyStage(
            stage="Harvested",
            role="Farmer",
            role_name=(actor.label if actor else None) or settings.unknown_farmer,
            date_time=harvest.created_at,
            description="Fresh harvest completed at optimal ripeness",
            location=(actor.address if actor else None) or settings.farm_location,
            temperature=_fmt_temp(harvest.temperature),
            quality_score=harvest.quality_score,
        ))

    # 2. Quality check / sorting
    sorting = _first_quality(quality, "sorting")
    if sorting:
        stages.append(JourneyStage(
            stage="Quality Check",
            role="AI System",
            role_name=settings.quality_check_name,
            date_time=sorting.created_at,
            description=f"AI quality check passed - Grade {grade_for(sorting.quality_score or DEFAULT_FRESHNESS_SCORE)}",
            location=(farmer.address if farmer else None) or settings.farm_facility,
            temperature=_fmt_temp(sorting.temperature),
            quality_score=sorting.quality_score,
        ))

    # 3. Pickup
    pickup = _first_economic(economic, PayloadType.TRANSPORT_PICKUP)
    if pickup:
        carrier = profiles.get(pickup.payee_did or pickup.payer_did or "")
        carrier_reading = next(
            (q for q in quality if q.stage == "transport" and carrier and q.actor_did == carrier.did),
            None,
        )
        stages.append(JourneyStage(
            stage="Pickup",
            role="Transporter",
            role_name=(carrier.label if carrier else None) or settings.unknown_transporter,
            date_time=pickup.created_at,
            description="Loaded into refrigerated transport",
            location=(farmer.address if farmer else None) or settings.farm_location,
            temperature=(
                _fmt_temp(carrier_reading.temperature) if carrier_reading else None
            ) or settings.pickup_temperature,
        ))

    # 4. Transit
    transit = _first_quality(quality, "transport")
    if transit and transporter:
        stages.append(JourneyStage(
            stage="Transit",
            role="Transporter",
            role_name=transporter.label or settings.unknown_transporter,
            date_time=transit.created_at,
            description="Temperature maintained within optimal range",
            location=parse_payload(transit.quality_data).location or settings.transit_location,
            temperature=_fmt_temp(transit.temperature),
        ))

    # 5. Retail arrival
    receive = _first_economic(economic, PayloadType.RETAILER_RECEIVE)
    retail_reading = _first_quality(quality, "retail")
    if receive or retail_reading:
        shop = profiles.get((receive.payer_did if receive else None) or (retail_reading.actor_did if retail_reading else None) or "")
        stages.append(JourneyStage(
            stage="Retail Arrival",
            role="Retailer",
            role_name=(shop.label if shop else None) or settings.unknown_retailer,
            date_time=receive.created_at if receive else retail_reading.created_at,
            description="Successfully delivered to retailer",
            location=(shop.address if shop else None) or settings.retail_location,
            temperature=_fmt_temp(retail_reading.temperature) if retail_reading else None,
        ))

    proofs = store.find_proof_logs({"batch_id": batch_id})

    result = TraceResult(
        batch_id=batch_id,
        freshness_score=freshness,
        grade=grade_for(freshness),
        star_rating=star_rating_for(freshness),
        journey_stages=stages,
        farmer=_party(farmer),
        transporter=_party(transporter),
        retailer=_party(retailer),
        quality_metrics={
            "latestQualityScore": latest.quality_score if latest else None,
            "latestMoisture": latest.moisture_level if latest else None,
            "latestTemperature": latest.temperature if latest else None,
            "spoilageDetected": bool(latest.spoilage_detected) if latest else False,
        },
        economic_entries=economic,
        quality_entries=quality,
        proofs=proofs,
    )
    logger.info(
        "Trace assembled: batch=%s stages=%d economic=%d quality=%d proofs=%d freshness=%d",
        batch_id, len(stages), len(economic), len(quality), len(proofs), freshness,
    )
    return result
