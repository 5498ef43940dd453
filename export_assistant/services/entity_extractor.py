import re
import logging
from typing import Callable, Dict, List, NamedTuple, Optional, Pattern
from export_assistant.schemas.conversation import Entity, EntityType
from export_assistant.utils.text import normalize_country

logger = logging.getLogger("entity_extractor")

# Plain number with optional thousands separators and cents
_NUM = r"(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?"
_MONTH = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"


class EntityRule(NamedTuple):
    pattern: Pattern
    # Canonical value for every match; None runs the type's normalizer instead
    value: Optional[str] = None
    # Capture group holding the value; the span always covers the whole match
    group: int = 0


def _rule(regex: str, value: Optional[str] = None, flags: int = re.IGNORECASE, group: int = 0) -> EntityRule:
    return EntityRule(re.compile(regex, flags), value, group)


# Ordered per type. Short abbreviations that are also common English words
# ("US", "IT") are matched case-sensitively so "contact us" is not a country.
ENTITY_RULES: Dict[EntityType, List[EntityRule]] = {
    EntityType.COUNTRY: [
        _rule(r"\b(?:united states(?: of america)?|usa|america)\b", "United States"),
        _rule(r"\bU\.?S\.?(?!\w)", "United States", flags=0),
        _rule(r"\b(?:united kingdom|great britain|britain|england|uk)\b", "United Kingdom"),
        _rule(r"\b(?:united arab emirates|uae)\b", "United Arab Emirates"),
        _rule(r"\b(?:china|prc)\b", "China"),
        _rule(r"\b(?:germany|deutschland)\b", "Germany"),
        _rule(r"\b(?:japan|nippon)\b", "Japan"),
        _rule(r"\b(?:india|bharat)\b", "India"),
        _rule(r"\bcanada\b", "Canada"),
        _rule(r"\baustralia\b", "Australia"),
        _rule(r"\bfrance\b", "France"),
        _rule(r"\b(?:italy|italia)\b", "Italy"),
        _rule(r"\b(?:spain|espana)\b", "Spain"),
        _rule(r"\b(?:brazil|brasil)\b", "Brazil"),
        _rule(r"\bmexico\b", "Mexico"),
        _rule(r"\bMX\b", "Mexico", flags=0),
        _rule(r"\b(?:russian federation|russia)\b", "Russia"),
        _rule(r"\b(?:south korea|korea)\b", "South Korea"),
        _rule(r"\bsingapore\b", "Singapore"),
        _rule(r"\bSG\b", "Singapore", flags=0),
        _rule(r"\b(?:netherlands|holland)\b", "Netherlands"),
        _rule(r"\bswitzerland\b", "Switzerland"),
        _rule(r"\bsweden\b", "Sweden"),
    ],
    EntityType.PRODUCT: [
        _rule(r"\b(?:textile|fabric|clothing|garment)s?\b", "textiles"),
        _rule(r"\b(?:electronic|computer|software|hardware)s?\b", "electronics"),
        _rule(r"\b(?:machinery|equipment|tool)s?\b", "machinery"),
        _rule(r"\b(?:chemical|pharmaceutical|medicine)s?\b", "chemicals"),
        _rule(r"\b(?:food|agricultural|organic)\b", "food"),
        _rule(r"\b(?:automotive|car|vehicle)s?\b", "automotive"),
        _rule(r"\b(?:jewelry|jewellery|diamond|gold|silver)s?\b", "jewelry"),
        _rule(r"\b(?:furniture|wood|timber)\b", "furniture"),
        _rule(r"\b(?:plastic|rubber|polymer)s?\b", "plastics"),
        _rule(r"\b(?:metal|steel|iron|aluminum|aluminium)s?\b", "metals"),
    ],
    EntityType.INDUSTRY: [
        _rule(r"\b(?:manufacturing|production|factory)\b", "manufacturing"),
        _rule(r"\b(?:technology|tech)\b", "technology"),
        _rule(r"\bIT\b", "technology", flags=0),
        _rule(r"\b(?:healthcare|medical)\b", "healthcare"),
        _rule(r"\b(?:agriculture|farming|agri)\b", "agriculture"),
        _rule(r"\b(?:automobile)\b", "automotive"),
        _rule(r"\b(?:fashion|apparel)\b", "textile"),
        _rule(r"\b(?:electrical)\b", "electronics"),
        _rule(r"\b(?:construction|building|infrastructure)\b", "construction"),
        _rule(r"\b(?:energy|oil|gas|renewable)\b", "energy"),
        _rule(r"\b(?:finance|banking|financial)\b", "finance"),
    ],
    EntityType.AMOUNT: [
        _rule(r"[$€£₹¥]\s?" + _NUM),
        _rule(r"\b" + _NUM + r"\s*(?:usd|eur|gbp|inr|cny|jpy|dollars?|euros?|pounds?|rupees?|yuan|yen)\b"),
        _rule(r"\b(?:usd|eur|gbp|inr|cny|jpy)\s*" + _NUM + r"(?!\d)"),
    ],
    # Codes and words only; a bare symbol always belongs to an AMOUNT
    EntityType.CURRENCY: [
        _rule(r"\b(?:canadian dollars?|cad)\b", "CAD"),
        _rule(r"\b(?:australian dollars?|aud)\b", "AUD"),
        _rule(r"\b(?:usd|dollars?)\b", "USD"),
        _rule(r"\b(?:eur|euros?)\b", "EUR"),
        _rule(r"\b(?:gbp|pounds? sterling|pounds?)\b", "GBP"),
        _rule(r"\b(?:inr|rupees?)\b", "INR"),
        _rule(r"\b(?:cny|yuan|rmb|renminbi)\b", "CNY"),
        _rule(r"\b(?:jpy|yen)\b", "JPY"),
    ],
    EntityType.DATE: [
        _rule(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
        _rule(r"\b\d{4}-\d{2}-\d{2}\b"),
        _rule(r"\b\d{1,2}-\d{1,2}-\d{2,4}\b"),
        _rule(r"\b" + _MONTH + r"\s+\d{1,2},?\s+\d{2,4}\b"),
        _rule(r"\b\d{1,2}\s+" + _MONTH + r"\s+\d{2,4}\b"),
        _rule(r"\b(?:today|tomorrow|yesterday|next week|last week|next month|last month)\b"),
    ],
    EntityType.TARIFF_CODE: [
        _rule(r"\b(?:hs|tariff)\s*code\s*:?\s*(\d{4}(?:\.?\d{2}){0,3})\b", group=1),
        _rule(r"\b\d{4}\.\d{2}\.\d{2}\b"),
        _rule(r"\b\d{6,10}\b"),
    ],
}

_CANONICAL_HS = re.compile(r"\d{4}\.\d{2}\.\d{2}")
_SLASH_DATE = re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}")
_CURRENCY_SYMBOL = re.compile(r"[$€£₹¥]")

CONFIDENCE_RULES: Dict[EntityType, Callable[[str, str], float]] = {
    # (matched text, extracted value) -> confidence
    EntityType.COUNTRY: lambda text, value: 0.9 if len(text) > 3 else 0.7,
    EntityType.AMOUNT: lambda text, value: 0.95 if _CURRENCY_SYMBOL.search(text) else 0.8,
    EntityType.DATE: lambda text, value: 0.9 if _SLASH_DATE.search(text) else 0.7,
    EntityType.TARIFF_CODE: lambda text, value: 0.95 if _CANONICAL_HS.fullmatch(value) else 0.6,
}
DEFAULT_CONFIDENCE = 0.7

NORMALIZERS: Dict[EntityType, Callable[[str], str]] = {
    EntityType.COUNTRY: normalize_country,
    EntityType.TARIFF_CODE: lambda value: re.sub(r"\D", "", value),
}


class EntityExtractor:
    """Finds typed spans in free text using the declarative rule table.

    Candidates from every rule are ordered by start offset (a longer span
    first on the same offset, then table order) and kept greedily when they
    do not overlap an already kept span.
    """

    def __init__(self, rules: Dict[EntityType, List[EntityRule]] = None):
        self.rules = rules if rules is not None else ENTITY_RULES

    def extract(self, text: str) -> List[Entity]:
        if not text or not isinstance(text, str):
            return []
        candidates = []
        order = 0
        for entity_type, rules in self.rules.items():
            for rule in rules:
                for match in rule.pattern.finditer(text):
                    entity = self._build(entity_type, rule, match)
                    if entity is not None:
                        candidates.append((entity.start, -(entity.end - entity.start), order, entity))
                        order += 1
        candidates.sort(key=lambda c: c[:3])
        entities = self._deduplicate([c[3] for c in candidates])
        logger.debug(f"Extracted {len(entities)} of {len(candidates)} candidate entities")
        return entities

    def _build(self, entity_type: EntityType, rule: EntityRule, match) -> Optional[Entity]:
        matched = match.group(0)
        raw_value = match.group(rule.group).strip()
        if rule.value is not None:
            value = rule.value
        else:
            normalizer = NORMALIZERS.get(entity_type)
            value = normalizer(raw_value) if normalizer else raw_value
        if not value:
            return None
        confidence_rule = CONFIDENCE_RULES.get(entity_type)
        confidence = confidence_rule(matched, raw_value) if confidence_rule else DEFAULT_CONFIDENCE
        return Entity(
            type=entity_type,
            value=value,
            confidence=confidence,
            start=match.start(),
            end=match.end(),
        )

    @staticmethod
    def _deduplicate(ordered: List[Entity]) -> List[Entity]:
        kept: List[Entity] = []
        for entity in ordered:
            if not any(entity.overlaps(existing) for existing in kept):
                kept.append(entity)
        return kept
