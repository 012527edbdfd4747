"""
Typed views over the free-form ledger payloads (economic ``meta`` and
quality ``qualityData``).

Each known ``type`` marker maps to a small dataclass exposing the fields
trace assembly and the ledger listings read. Anything else parses to
``UnknownPayload``. Every variant keeps the untouched ``raw`` dict, which
is what gets stored and hashed.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Type


class PayloadType(str, enum.Enum):
    REGISTER_FARMER = "REGISTER_FARMER"
    REGISTER_TRANSPORTER = "REGISTER_TRANSPORTER"
    REGISTER_RETAILER = "REGISTER_RETAILER"
    PRODUCE_REGISTERED = "PRODUCE_REGISTERED"
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_ACCEPTED = "ORDER_ACCEPTED"
    TRANSPORT_PICKUP = "TRANSPORT_PICKUP"
    TRANSPORT_CONDITIONS_UPDATE = "TRANSPORT_CONDITIONS_UPDATE"
    TRANSPORT_DELIVERY = "TRANSPORT_DELIVERY"
    RETAILER_RECEIVE = "RETAILER_RECEIVE"
    RETAILER_SALE = "RETAILER_SALE"
    INVENTORY_SPOILAGE_LOSS = "INVENTORY_SPOILAGE_LOSS"


@dataclass
class LedgerPayload:
    raw: Dict[str, Any] = field(default_factory=dict)
    payload_type: Optional[PayloadType] = None

    @property
    def tx_type(self) -> str:
        """Display label as the ledger listings show it."""
        return self.raw.get("txType") or self.raw.get("type") or "Transaction"

    @property
    def currency(self) -> str:
        return self.raw.get("currency") or self.raw.get("token") or "INR"

    @property
    def location(self) -> Optional[str]:
        return self.raw.get("location")


@dataclass
class UnknownPayload(LedgerPayload):
    pass


@dataclass
class RegistrationPayload(LedgerPayload):
    name: Optional[str] = None
    business_name: Optional[str] = None


@dataclass
class ProduceRegisteredPayload(LedgerPayload):
    product_name: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None


@dataclass
class OrderPayload(LedgerPayload):
    order_id: Optional[str] = None


@dataclass
class TransportPayload(LedgerPayload):
    """Pickup, conditions update and delivery share this shape."""
    vehicle_id: Optional[str] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None


@dataclass
class RetailPayload(LedgerPayload):
    """Retailer receive and sale."""
    quantity: Optional[float] = None
    price_per_kg: Optional[float] = None


@dataclass
class SpoilagePayload(LedgerPayload):
    lost_quantity: Optional[float] = None
    reason: Optional[str] = None


_VARIANTS: Dict[PayloadType, Type[LedgerPayload]] = {
    PayloadType.REGISTER_FARMER: RegistrationPayload,
    PayloadType.REGISTER_TRANSPORTER: RegistrationPayload,
    PayloadType.REGISTER_RETAILER: RegistrationPayload,
    PayloadType.PRODUCE_REGISTERED: ProduceRegisteredPayload,
    PayloadType.ORDER_PLACED: OrderPayload,
    PayloadType.ORDER_ACCEPTED: OrderPayload,
    PayloadType.TRANSPORT_PICKUP: TransportPayload,
    PayloadType.TRANSPORT_CONDITIONS_UPDATE: TransportPayload,
    PayloadType.TRANSPORT_DELIVERY: TransportPayload,
    PayloadType.RETAILER_RECEIVE: RetailPayload,
    PayloadType.RETAILER_SALE: RetailPayload,
    PayloadType.INVENTORY_SPOILAGE_LOSS: SpoilagePayload,
}


def _safe_float(val) -> Optional[float]:
    """Safely convert a value to float, returning None on failure."""
    if val is None or val == "":
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _extract(cls: Type[LedgerPayload], raw: Mapping[str, Any]) -> Dict[str, Any]:
    if cls is RegistrationPayload:
        return {
            "name": raw.get("name"),
            "business_name": raw.get("businessName") or raw.get("companyName") or raw.get("shopName"),
        }
    if cls is ProduceRegisteredPayload:
        return {
            "product_name": raw.get("productName") or raw.get("product"),
            "quantity": _safe_float(raw.get("quantity")),
            "unit": raw.get("unit"),
        }
    if cls is OrderPayload:
        return {"order_id": raw.get("orderId")}
    if cls is TransportPayload:
        return {
            "vehicle_id": raw.get("vehicleId"),
            "temperature": _safe_float(raw.get("temperature")),
            "humidity": _safe_float(raw.get("humidity")),
        }
    if cls is RetailPayload:
        return {
            "quantity": _safe_float(raw.get("quantity")),
            "price_per_kg": _safe_float(raw.get("pricePerKg")),
        }
    if cls is SpoilagePayload:
        return {
            "lost_quantity": _safe_float(raw.get("lostQuantity") or raw.get("quantity")),
            "reason": raw.get("reason"),
        }
    return {}


def parse_payload(raw: Optional[Mapping[str, Any]]) -> LedgerPayload:
    """Parse a stored payload into its typed variant, or UnknownPayload."""
    raw = dict(raw or {})
    marker = raw.get("type")
    try:
        payload_type = PayloadType(marker) if marker else None
    except ValueError:
        payload_type = None

    if payload_type is None:
        return UnknownPayload(raw=raw)
    cls = _VARIANTS[payload_type]
    return cls(raw=raw, payload_type=payload_type, **_extract(cls, raw))
