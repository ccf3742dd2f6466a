"""Intent classification for inbound customer messages.

An LLM is asked first (when a real text generator is configured); its answer
is only trusted when it names a label from the fixed intent set. Anything
else, including provider errors and timeouts, falls back to ordered keyword
rules.

Rule order matters: the first matching rule wins, so "how much to order 10
boxes?" is a ``place_order``, not a ``price_inquiry``. Keep new rules in
priority order.
"""

import asyncio
import logging
import re
from dataclasses import dataclass

from clients.base import TextGenerator
from router_engine.logutil import truncate
from router_engine.models import (
    INTENTS,
    IntentAlternative,
    IntentClassification,
    clamp_confidence,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_TIMEOUT_SECONDS = 8.0

SYSTEM_PROMPT = (
    "You are an intent classification system for a pharmacy wholesale WhatsApp bot. "
    "Classify the user's message into exactly one of these intents: {intents}.\n\n"
    "Return only the intent name and a confidence score between 0 and 1 in this format:\n"
    "Intent: <intent_name>\n"
    "Confidence: <score>"
)


@dataclass(frozen=True)
class KeywordRule:
    intent: str
    confidence: float
    keywords: tuple[str, ...]
    action: str | None = None

    def matches(self, lowered: str) -> bool:
        return any(k in lowered for k in self.keywords)


# Priority order: first match wins.
RULES = (
    KeywordRule("place_order", 0.8, ("order", "buy", "purchase"), action="order"),
    KeywordRule("price_inquiry", 0.7, ("price", "cost", "how much"), action="pricing"),
    KeywordRule("delivery_inquiry", 0.6, ("delivery", "shipping", "when"), action="delivery"),
    KeywordRule("greeting", 0.8, ("hello", "hi", "hey")),
)

FALLBACK_INTENT = "general_inquiry"

PACK_UNITS = ("boxes", "box", "packs", "pack", "units", "unit", "pcs", "tablets", "bottles", "bottle", "cartons", "carton")
STRENGTH_UNITS = ("mg", "mcg", "g", "ml", "l", "iu", "%")

_PACK_UNIT = "|".join(PACK_UNITS)
_STRENGTH_UNIT = "|".join(re.escape(u) for u in STRENGTH_UNITS)

# "10 boxes", "3x", "x3": a count tied to a pack unit or multiplier.
_PACK_QUANTITY = re.compile(
    r"\b(\d{1,4})\s*(?:x\b|(?:" + _PACK_UNIT + r")\b)|\bx\s*(\d{1,4})\b", re.I
)
# A bare number, unless it is part of an id, a decimal or a strength ("500 mg").
_BARE_QUANTITY = re.compile(
    r"(?<![\w.,#-])(\d{1,4})(?![.,]\d|\w)(?!\s*(?:" + _STRENGTH_UNIT + r")(?![a-z]))", re.I
)


def _extract_quantity(text: str) -> int | None:
    match = _PACK_QUANTITY.search(text)
    if match:
        value = int(match.group(1) or match.group(2))
    else:
        match = _BARE_QUANTITY.search(text)
        if not match:
            return None
        value = int(match.group(1))
    return value if value > 0 else None


def parse_llm_response(response: str) -> tuple[str | None, float]:
    """Scan ``Intent:`` / ``Confidence:`` lines, ignoring anything unparsable."""
    label = None
    confidence = DEFAULT_CONFIDENCE
    for line in (response or "").splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().strip("*` ").lower()
        value = value.strip().strip("`*\"'[] ")
        if key == "intent" and value:
            label = value.lower()
        elif key == "confidence":
            try:
                confidence = clamp_confidence(float(value))
            except ValueError:
                continue
    return label, confidence


class IntentClassifier:
    def __init__(self, generator: TextGenerator | None = None, timeout: float | None = DEFAULT_TIMEOUT_SECONDS):
        self._generator = generator
        self._timeout = timeout

    @property
    def uses_llm(self) -> bool:
        return self._generator is not None and not self._generator.is_mock

    async def classify(self, text: str) -> IntentClassification:
        """Classify ``text``. Never raises; degrades to ``unknown`` at confidence 0."""
        try:
            if not isinstance(text, str) or not text.strip():
                return IntentClassification.unknown()
            if self.uses_llm:
                result = await self._classify_with_llm(text)
                if result is not None:
                    return result
            return self.classify_with_rules(text)
        except Exception:
            logger.exception("Intent classification failed for %r", truncate(text, 100))
            return IntentClassification.unknown()

    async def _classify_with_llm(self, text: str) -> IntentClassification | None:
        system_prompt = SYSTEM_PROMPT.format(intents=", ".join(INTENTS))
        try:
            response = await asyncio.wait_for(
                self._generator.generate(text, system_prompt), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning("LLM intent classification timed out after %ss, falling back to rules", self._timeout)
            return None
        except Exception as e:
            logger.warning("LLM intent classification failed, falling back to rules: %s", e)
            return None

        label, confidence = parse_llm_response(response)
        if label not in INTENTS:
            logger.info("LLM returned unknown intent %r, falling back to rules", label)
            return None
        entities = {"original_text": text}
        quantity = _extract_quantity(text)
        if quantity is not None:
            entities["quantity"] = quantity
        return IntentClassification(intent=label, confidence=confidence, entities=entities, source="llm")

    def classify_with_rules(self, text: str) -> IntentClassification:
        lowered = text.lower()
        matched = [rule for rule in RULES if rule.matches(lowered)]
        quantity = _extract_quantity(text)

        def entities_for(rule: KeywordRule) -> dict:
            entities = {}
            if rule.action:
                entities["action"] = rule.action
            if quantity is not None and rule.intent == "place_order":
                entities["quantity"] = quantity
            return entities

        if not matched:
            return IntentClassification(intent=FALLBACK_INTENT, confidence=DEFAULT_CONFIDENCE, entities={})

        best, rest = matched[0], matched[1:]
        return IntentClassification(
            intent=best.intent,
            confidence=best.confidence,
            entities=entities_for(best),
            alternatives=[
                IntentAlternative(intent=r.intent, confidence=r.confidence, entities=entities_for(r))
                for r in rest
            ],
        )
