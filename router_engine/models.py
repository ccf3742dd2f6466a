"""Data structures shared by the classifier, store, handlers and orchestrator."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from router_engine.errors import InvalidTransitionError

STATUS_ACTIVE = "active"
STATUS_ESCALATED = "escalated"
STATUS_CLOSED = "closed"
STATUS_NOT_FOUND = "not_found"

# Status transitions reachable through explicit actions. Reopening a closed
# conversation happens only when a new inbound message arrives.
ALLOWED_TRANSITIONS = {
    STATUS_ACTIVE: frozenset({STATUS_ACTIVE, STATUS_ESCALATED, STATUS_CLOSED}),
    STATUS_ESCALATED: frozenset({STATUS_ESCALATED, STATUS_ACTIVE, STATUS_CLOSED}),
    STATUS_CLOSED: frozenset({STATUS_CLOSED}),
}

UNKNOWN_INTENT = "unknown"

INTENTS = (
    "product_search",
    "catalog_query",
    "stock_check",
    "price_inquiry",
    "place_order",
    "add_to_cart",
    "modify_order",
    "order_status",
    "prescription_upload",
    "prescription_verification",
    "compliance_check",
    "delivery_inquiry",
    "tracking_request",
    "delivery_update",
    "payment_inquiry",
    "payment_method",
    "payment_status",
    "general_inquiry",
    "help_request",
    "complaint",
    "greeting",
    "goodbye",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class CartItem:
    product_id: str
    product_name: str
    quantity: int
    unit_price: float
    requires_prescription: bool = False
    prescription_id: str | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Cart quantity must be positive, got {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"Unit price cannot be negative, got {self.unit_price}")

    @property
    def total_price(self) -> float:
        return self.quantity * self.unit_price


@dataclass
class DeliveryAddress:
    street: str
    city: str
    state: str = ""
    country: str = ""
    postal_code: str = ""
    latitude: float | None = None
    longitude: float | None = None
    instructions: str | None = None

    def one_line(self) -> str:
        parts = [self.street, self.city, self.state, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)


@dataclass
class EscalationRecord:
    reason: str
    timestamp: datetime = field(default_factory=utc_now)
    resolved: bool = False
    agent_id: str | None = None
    notes: str | None = None


@dataclass
class ConversationContext:
    """State remembered across the turns of one conversation.

    ``conversation_id`` never changes after creation and ``escalation_history``
    only ever grows; both are enforced by the context store rather than here,
    since handlers receive and mutate this object directly during a turn.
    """

    conversation_id: str
    status: str = STATUS_ACTIVE
    customer_id: str | None = None
    pharmacy_id: str | None = None
    phone_number: str | None = None
    current_order_id: str | None = None
    last_intent: str | None = None
    confidence: float = 0.0
    session_data: dict[str, Any] = field(default_factory=dict)
    requires_prescription: bool = False
    prescription_verified: bool = False
    cart_items: list[CartItem] = field(default_factory=list)
    payment_method: str | None = None
    delivery_address: DeliveryAddress | None = None
    agent_notes: str | None = None
    escalation_history: list[EscalationRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    def cart_total(self) -> float:
        return sum(item.total_price for item in self.cart_items)

    def open_escalation(self) -> EscalationRecord | None:
        for record in reversed(self.escalation_history):
            if not record.resolved:
                return record
        return None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationContext":
        """Build a context from a repository row, validating nested structures."""
        if not data.get("conversation_id"):
            raise ValueError("Conversation row is missing conversation_id")
        data = dict(data)
        data["cart_items"] = [
            item if isinstance(item, CartItem) else CartItem(**item)
            for item in data.get("cart_items") or []
        ]
        address = data.get("delivery_address")
        if isinstance(address, dict):
            data["delivery_address"] = DeliveryAddress(**address)
        history = []
        for record in data.get("escalation_history") or []:
            if isinstance(record, dict):
                record = dict(record)
                record["timestamp"] = _parse_dt(record.get("timestamp")) or utc_now()
                record = EscalationRecord(**record)
            history.append(record)
        data["escalation_history"] = history
        for key in ("created_at", "last_activity"):
            if key in data:
                data[key] = _parse_dt(data[key]) or utc_now()
        data["session_data"] = dict(data.get("session_data") or {})
        return cls(**data)


@dataclass
class IntentAlternative:
    intent: str
    confidence: float
    entities: dict[str, Any] = field(default_factory=dict)


@dataclass
class IntentClassification:
    intent: str
    confidence: float
    entities: dict[str, Any] = field(default_factory=dict)
    alternatives: list[IntentAlternative] = field(default_factory=list)
    source: str = "rules"

    def __post_init__(self) -> None:
        if self.intent != UNKNOWN_INTENT and self.intent not in INTENTS:
            raise ValueError(f"Unknown intent label: {self.intent!r}")
        if self.intent == UNKNOWN_INTENT:
            self.confidence = 0.0
        self.confidence = clamp_confidence(self.confidence)

    @classmethod
    def unknown(cls) -> "IntentClassification":
        return cls(intent=UNKNOWN_INTENT, confidence=0.0, source="error")


@dataclass
class DispatchResult:
    """What one turn produced: the reply plus routing and escalation flags."""

    success: bool
    response: str
    requires_human_review: bool = False
    escalation_reason: str | None = None
    handler: str | None = None
    confidence: float | None = None
    next_steps: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def needs_escalation(self) -> bool:
        return self.requires_human_review and bool(self.escalation_reason)


@dataclass
class ConversationState:
    status: str
    context: ConversationContext | None = None
    last_message_at: datetime | None = None
    requires_human_review: bool = False


def check_transition(current: str, requested: str) -> None:
    if requested not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, requested)
