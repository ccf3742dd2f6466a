"""Domain handlers: one per business capability.

Every handler exposes the same coroutine, ``handle(content, context, intent)``,
and returns a ``DispatchResult``. Handlers may mutate ``context`` (cart,
prescription flags, session data); the orchestrator persists those field
groups after the turn. Handlers let unexpected exceptions propagate; the
orchestrator turns them into an escalation.
"""

import re
from abc import ABC, abstractmethod
from datetime import datetime

from router_engine.knowledge import KnowledgeIndex, SearchFilters, SearchResult
from router_engine.logutil import log_handler_call
from router_engine.models import (
    CartItem,
    ConversationContext,
    DispatchResult,
    IntentClassification,
)

GENERAL_INQUIRY_ESCALATION = "General inquiry requiring human expertise"
PRESCRIPTION_REVIEW_ESCALATION = "Prescription requires pharmacist verification"

PAYMENT_METHODS = {
    "mpesa": "M-Pesa",
    "airtel": "Airtel Money",
    "tigo": "Tigo Pesa",
}

HELP_MENU = (
    "• Product information and availability\n"
    "• Placing an order\n"
    "• Payment options\n"
    "• Delivery tracking\n"
    "• General support"
)

# Words that never name a product; stripped before a catalog lookup.
_STOPWORDS = {
    "what", "whats", "what's", "is", "the", "of", "a", "an", "do", "you", "have", "price", "cost",
    "how", "much", "i", "want", "to", "order", "buy", "purchase", "please", "add", "cart", "my",
    "in", "stock", "available", "for", "some", "me", "can", "get", "need", "and", "any",
    "x", "boxes", "box", "packs", "pack", "units", "unit", "pcs", "bottles", "bottle", "cartons", "carton",
}

_ORDER_ID = re.compile(r"\b(ORD-[A-Za-z0-9]+)\b", re.I)


def _money(value) -> str:
    return f"{value:.2f}" if isinstance(value, (int, float)) else "-"


def _product_query(content: str) -> str:
    tokens = re.findall(r"[a-z0-9']+", content.lower())
    kept = [t for t in tokens if t not in _STOPWORDS and not t.isdigit()]
    return " ".join(kept) or content


def _summarize_product(result: SearchResult) -> str:
    meta = result.metadata
    name = meta.get("name") or result.content
    rx = " (prescription required)" if meta.get("prescription_required") else ""
    availability = "in stock" if meta.get("in_stock") else "out of stock"
    return f"• {name} - {_money(meta.get('price'))} ({availability}){rx}"


class DomainHandler(ABC):
    name = "handler"

    @abstractmethod
    async def handle(
        self, content: str, context: ConversationContext, intent: IntentClassification
    ) -> DispatchResult:
        ...

    def result(self, response: str, **kwargs) -> DispatchResult:
        kwargs.setdefault("success", True)
        return DispatchResult(response=response, handler=self.name, **kwargs)


class CatalogHandler(DomainHandler):
    """Product search, stock checks and pricing, answered from the product index."""

    name = "catalog"

    def __init__(self, index: KnowledgeIndex, limit: int = 5):
        self._index = index
        self._limit = limit

    async def find_products(self, content: str) -> list[SearchResult]:
        return await self._index.search(_product_query(content), self._limit, SearchFilters(type="product"))

    @log_handler_call
    async def handle(self, content, context, intent):
        products = await self.find_products(content)
        if not products:
            return self.result(
                "I couldn't find any products matching your query. Could you please provide "
                "more details or try a different search term?",
                confidence=intent.confidence,
            )

        context.session_data["last_products"] = [p.id for p in products]
        if intent.intent == "stock_check":
            in_stock = [p for p in products if p.metadata.get("in_stock")]
            header = f"{len(in_stock)} of {len(products)} matching products are in stock:"
        elif intent.intent == "price_inquiry":
            header = "Here are the current wholesale prices:"
        else:
            header = f"I found {len(products)} products matching your query. Here are the top results:"
        lines = "\n".join(_summarize_product(p) for p in products)
        return self.result(
            f"{header}\n\n{lines}",
            confidence=intent.confidence,
            metadata={"product_ids": [p.id for p in products]},
        )


class OrderHandler(DomainHandler):
    """Cart building and order status."""

    name = "ordering"

    def __init__(self, catalog: CatalogHandler):
        self._catalog = catalog

    @log_handler_call
    async def handle(self, content, context, intent):
        if intent.intent == "order_status":
            return self._order_status(content, context)
        if intent.intent == "modify_order":
            return self._cart_summary(context, "Here is your current cart. Tell me what you'd like to change:")
        return await self._add_to_cart(content, context, intent)

    async def _add_to_cart(self, content, context, intent):
        products = await self._catalog.find_products(content)
        if not products:
            return self.result(
                "I understand you want to place an order. Could you please tell me the product "
                "name and quantity you need?",
                next_steps=["provide_product", "provide_quantity"],
            )
        product = products[0]
        meta = product.metadata
        if meta.get("in_stock") is False:
            return self.result(
                f"{meta.get('name', product.id)} is currently out of stock. Would you like me to suggest an alternative?",
            )
        quantity = int(intent.entities.get("quantity") or 1)
        requires_rx = bool(meta.get("prescription_required"))
        context.cart_items.append(
            CartItem(
                product_id=product.id,
                product_name=meta.get("name", product.id),
                quantity=quantity,
                unit_price=float(meta.get("price") or 0.0),
                requires_prescription=requires_rx,
            )
        )
        next_steps = ["confirm_order", "choose_payment_method"]
        response = (
            f"Added {quantity} x {meta.get('name', product.id)} to your cart. "
            f"Cart total: {_money(context.cart_total())}."
        )
        if requires_rx and not context.prescription_verified:
            context.requires_prescription = True
            next_steps.insert(0, "upload_prescription")
            response += " This item requires a prescription; please send a photo of it before we can dispatch."
        return self.result(response, next_steps=next_steps, metadata={"product_id": product.id})

    def _order_status(self, content, context):
        match = _ORDER_ID.search(content)
        order_id = match.group(1).upper() if match else context.current_order_id
        if not order_id:
            return self.result("Could you please share your order number (e.g. ORD-12345)?")
        context.current_order_id = order_id
        return self.result(
            f"Your order {order_id} is being processed. I'll let you know as soon as it ships.",
            metadata={"order_id": order_id},
        )

    def _cart_summary(self, context, header):
        if not context.cart_items:
            return self.result("Your cart is empty. What would you like to order?")
        lines = "\n".join(
            f"• {item.quantity} x {item.product_name} - {_money(item.total_price)}" for item in context.cart_items
        )
        return self.result(f"{header}\n\n{lines}\n\nTotal: {_money(context.cart_total())}")


class ComplianceHandler(DomainHandler):
    """Prescription uploads and regulatory checks."""

    name = "compliance"

    @log_handler_call
    async def handle(self, content, context, intent):
        if intent.intent == "prescription_upload":
            if context.session_data.get("has_attachment"):
                context.prescription_verified = False
                context.session_data["prescription_pending"] = True
                return self.result(
                    "Thank you, I've received your prescription. A pharmacist will verify it shortly.",
                    requires_human_review=True,
                    escalation_reason=PRESCRIPTION_REVIEW_ESCALATION,
                )
            return self.result("Please send a clear photo of your prescription and I'll pass it on for verification.")

        if intent.intent == "prescription_verification":
            if context.prescription_verified:
                return self.result("Your prescription has been verified. You can go ahead with your order.")
            if context.session_data.get("prescription_pending"):
                return self.result("Your prescription is still being reviewed by a pharmacist.")
            return self.result("I don't have a prescription on file for you yet. Please send a photo of it.")

        restricted = [item.product_name for item in context.cart_items if item.requires_prescription]
        if restricted and not context.prescription_verified:
            return self.result(
                "These items in your cart need a valid prescription before dispatch:\n"
                + "\n".join(f"• {name}" for name in restricted),
                next_steps=["upload_prescription"],
            )
        return self.result(
            "I understand you have a compliance-related question. Could you please provide more "
            "details about your specific concern?"
        )


class FulfillmentHandler(DomainHandler):
    """Delivery questions and tracking."""

    name = "fulfillment"

    @log_handler_call
    async def handle(self, content, context, intent):
        if intent.intent == "delivery_update":
            address = content.strip()
            context.session_data["pending_delivery_update"] = address
            return self.result(
                f"I've noted your delivery update: \"{address}\". Our dispatch team will confirm the change.",
                next_steps=["confirm_delivery_update"],
            )

        match = _ORDER_ID.search(content)
        order_id = match.group(1).upper() if match else context.current_order_id
        if not order_id:
            return self.result(
                "I understand you have a delivery question. Could you please provide your order "
                "number or delivery details?"
            )
        context.current_order_id = order_id
        destination = context.delivery_address.one_line() if context.delivery_address else "your registered address"
        return self.result(
            f"Order {order_id} is scheduled for delivery to {destination}. "
            "You'll receive a tracking update once it's on the way.",
            metadata={"order_id": order_id},
        )


class PaymentHandler(DomainHandler):
    """Payment options and status. Gateway calls live outside the routing core."""

    name = "payment"

    @log_handler_call
    async def handle(self, content, context, intent):
        lowered = content.lower()
        chosen = next((label for key, label in PAYMENT_METHODS.items() if key in lowered.replace("-", "")), None)
        if chosen:
            context.payment_method = chosen
            amount = context.cart_total()
            due = f" The amount due is {_money(amount)}." if amount else ""
            return self.result(f"Great, I'll set up payment with {chosen}.{due}", next_steps=["send_payment_link"])

        if intent.intent == "payment_status":
            if context.current_order_id:
                return self.result(f"I'm checking the payment status for order {context.current_order_id}.")
            return self.result("Could you please share your order number so I can check the payment?")

        methods = ", ".join(PAYMENT_METHODS.values())
        return self.result(f"We accept {methods}. Which would you like to use?")


class ConversationalHandler(DomainHandler):
    name = "conversational"

    def __init__(self, clock=datetime.now):
        self._clock = clock

    def time_of_day(self) -> str:
        hour = self._clock().hour
        if hour < 12:
            return "morning"
        if hour < 17:
            return "afternoon"
        return "evening"

    @log_handler_call
    async def handle(self, content, context, intent):
        if intent.intent == "goodbye":
            return self.result(
                "Thank you for choosing MedSupply! If you need anything else, feel free to message us anytime."
            )
        pharmacy = "your pharmacy" if context.pharmacy_id else "MedSupply"
        return self.result(
            f"Good {self.time_of_day()}! Welcome to {pharmacy}. I'm your assistant, ready to help you with:\n\n"
            f"{HELP_MENU}\n\nHow can I assist you today?"
        )


class GeneralInquiryHandler(DomainHandler):
    """Open-ended questions answered from the knowledge index, else handed to a human."""

    name = "general_inquiry"

    def __init__(self, index: KnowledgeIndex, limit: int = 3):
        self._index = index
        self._limit = limit

    @log_handler_call
    async def handle(self, content, context, intent):
        results = await self._index.search(content, self._limit)
        if not results:
            return self.result(
                "I understand you have a general inquiry. Let me connect you with our support team "
                "for personalized assistance.",
                requires_human_review=True,
                escalation_reason=GENERAL_INQUIRY_ESCALATION,
            )
        response = "Based on your inquiry, here's what I found:\n\n" + results[0].content
        if len(results) > 1:
            response += "\n\nI found additional information that might be helpful. Would you like me to share more details?"
        return self.result(response, metadata={"knowledge_ids": [r.id for r in results]})


class ClarificationHandler(DomainHandler):
    """Default route for labels outside the dispatch table."""

    name = "clarification"

    def __init__(self, catalog: DomainHandler, ordering: DomainHandler):
        self._catalog = catalog
        self._ordering = ordering

    @log_handler_call
    async def handle(self, content, context, intent):
        entities = intent.entities or {}
        if entities.get("product") or entities.get("medication"):
            return await self._catalog.handle(content, context, intent)
        if entities.get("order") or entities.get("payment"):
            return await self._ordering.handle(content, context, intent)
        return self.result(
            "I'm not sure I understood your request. Could you please rephrase it or let me know "
            f"if you need help with:\n{HELP_MENU}"
        )
