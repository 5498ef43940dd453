import re
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from export_assistant.schemas.context import UserContext
from export_assistant.schemas.conversation import Entity, Intent, IntentType
from export_assistant.services.entity_extractor import EntityExtractor
from export_assistant.utils.text import contains_term, extract_keywords

logger = logging.getLogger("intent_classifier")

CATALOG_PATH = Path(__file__).parent.parent / "data" / "intent_catalog.json"

UNKNOWN_FLOOR = 0.1
KEYWORD_FACTOR = 0.3
PHRASE_FACTOR = 0.6
BOOST_FACTOR = 0.2
CONTINUITY_BONUS = 0.1
PROFILE_BONUS = 0.15
CONTINUITY_WINDOW = 3

TECHNICAL_TERMS = ["compliance", "regulation", "incoterms", "hs code", "tariff", "duty"]


@dataclass(frozen=True)
class IntentPattern:
    keywords: List[str]
    phrases: List[str]
    weight: float
    context_boost: List[str] = field(default_factory=list)


@dataclass
class IntentScore:
    intent: IntentType
    score: float = 0.0
    matched_patterns: List[str] = field(default_factory=list)
    context_boosts: List[str] = field(default_factory=list)


def load_intent_catalog(path: Path = CATALOG_PATH) -> Dict[IntentType, IntentPattern]:
    """Read the intent catalog; file order is the tie-break order."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return {
        IntentType(name): IntentPattern(
            keywords=entry.get("keywords", []),
            phrases=entry.get("phrases", []),
            weight=float(entry.get("weight", 1.0)),
            context_boost=entry.get("context_boost", []),
        )
        for name, entry in raw.items()
        if name != IntentType.UNKNOWN.value
    }


class IntentClassifier:
    def __init__(self, extractor: EntityExtractor, catalog: Dict[IntentType, IntentPattern] = None):
        self.extractor = extractor
        self.catalog = catalog if catalog is not None else load_intent_catalog()

    def classify(self, text: str, context: Optional[UserContext]) -> Intent:
        """Score every catalog intent and return the winner with a calibrated confidence.

        Never raises: anything unexpected degrades to UNKNOWN with confidence 0.
        """
        try:
            return self._classify(text, context)
        except Exception as e:
            logger.error(f"Intent classification failed: {e}")
            return Intent(name=IntentType.UNKNOWN, confidence=0.0)

    def _classify(self, text: str, context: Optional[UserContext]) -> Intent:
        text = text or ""
        history = context.history if context is not None else []
        scores = self.score_intents(text, context)
        entities = self.extractor.extract(text)

        best = scores[0] if scores else None
        if best is None or best.score < UNKNOWN_FLOOR:
            best = IntentScore(intent=IntentType.UNKNOWN)
            confidence = 0.0
        else:
            runner_up = scores[1].score if len(scores) > 1 else None
            confidence = self._calibrate(best, runner_up, entities, is_first_message=not history)

        return Intent(
            name=best.intent,
            confidence=confidence,
            entities=entities,
            parameters={
                "keywords": extract_keywords(text),
                "message_length": len(text),
                "has_question": "?" in text,
                "conversation_length": len(history),
                "matched_patterns": list(best.matched_patterns),
                "entity_count": len(entities),
                "context_boosts": list(best.context_boosts),
            },
        )

    def score_intents(self, text: str, context: Optional[UserContext]) -> List[IntentScore]:
        """Raw scores for every catalog intent, highest first.

        The sort is stable so catalog order decides ties.
        """
        content = " ".join((text or "").lower().split())
        recent_intents = set()
        if context is not None:
            recent_intents = {
                m.intent.name for m in context.recent_messages(CONTINUITY_WINDOW) if m.intent is not None
            }

        scores = []
        for intent, pattern in self.catalog.items():
            result = IntentScore(intent=intent)
            for keyword in pattern.keywords:
                if contains_term(content, keyword):
                    result.score += pattern.weight * KEYWORD_FACTOR
                    result.matched_patterns.append(keyword)
            for phrase in pattern.phrases:
                if contains_term(content, phrase):
                    result.score += pattern.weight * PHRASE_FACTOR
                    result.matched_patterns.append(phrase)
            for boost in pattern.context_boost:
                if contains_term(content, boost):
                    result.score += pattern.weight * BOOST_FACTOR
                    result.context_boosts.append(boost)

            if intent in recent_intents:
                result.score += CONTINUITY_BONUS
            # Profile fit only sharpens an intent the message already hints at
            has_evidence = bool(result.matched_patterns or result.context_boosts)
            if has_evidence and self._profile_fits(intent, context):
                result.score += PROFILE_BONUS
            scores.append(result)

        return sorted(scores, key=lambda s: s.score, reverse=True)

    @staticmethod
    def _profile_fits(intent: IntentType, context: Optional[UserContext]) -> bool:
        if context is None:
            return False
        profile = context.business_profile
        if intent == IntentType.ONBOARDING_HELP:
            return profile.experience_level == "beginner"
        if intent == IntentType.COMPLIANCE_HELP:
            return profile.experience_level in ("intermediate", "advanced")
        if intent == IntentType.MARKET_RESEARCH:
            return not profile.target_markets
        if intent == IntentType.FIND_BUYERS:
            return bool(profile.products)
        return False

    @staticmethod
    def _calibrate(
        best: IntentScore,
        runner_up: Optional[float],
        entities: List[Entity],
        is_first_message: bool,
    ) -> float:
        confidence = min(max(best.score, 0.0), 1.0)
        if entities:
            confidence += 0.1 * sum(e.confidence for e in entities) / len(entities)
        if runner_up is not None and best.score - runner_up > 0.3:
            confidence += 0.1
        # Under-evidenced opening messages are trusted less
        if is_first_message and len(best.matched_patterns) < 2:
            confidence *= 0.8
        return min(max(confidence, 0.0), 1.0)

    def suggest_alternatives(self, text: str, context: Optional[UserContext], limit: int = 3) -> List[Intent]:
        try:
            scores = self.score_intents(text, context)
        except Exception as e:
            logger.error(f"Intent suggestion failed: {e}")
            return []
        return [
            Intent(
                name=s.intent,
                confidence=min(s.score, 1.0),
                parameters={"matched_patterns": list(s.matched_patterns)},
            )
            for s in scores
            if s.score > UNKNOWN_FLOOR
        ][:limit]

    def analyze_complexity(self, text: str) -> Dict[str, Any]:
        text = text or ""
        lowered = text.lower()
        factors = []
        score = 0
        if len(text) > 100:
            score += 1
            factors.append("long_message")
        if len(re.findall(r"\?", text)) > 1:
            score += 1
            factors.append("multiple_questions")
        technical = [term for term in TECHNICAL_TERMS if term in lowered]
        if technical:
            score += len(technical)
            factors.append("technical_terms")
        if len(self.extractor.extract(text)) > 2:
            score += 1
            factors.append("multiple_entities")

        if score == 0:
            complexity = "simple"
        elif score <= 2:
            complexity = "moderate"
        else:
            complexity = "complex"
        return {"complexity": complexity, "factors": factors, "score": score}
