import re
import uuid
import random
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from rapidfuzz import fuzz, process
from export_assistant.core.cache import BoundedTTLCache
from export_assistant.core.config import Settings, settings as default_settings
from export_assistant.core.locks import KeyedLocks
from export_assistant.repositories.base import BEHAVIOR_PATTERNS, PersistenceStore
from export_assistant.schemas.base import utc_now
from export_assistant.schemas.behavior import (
    PRIORITY_RANK, BehaviorPattern, IntentStat, PageFlow, Recommendation,
)
from export_assistant.schemas.context import UserContext
from export_assistant.schemas.conversation import Intent, IntentType
from export_assistant.schemas.response import AssistantResponse, QuickAction, UserFeedback

logger = logging.getLogger("personalization_service")

MAX_PREFERRED_INTENTS = 10
SHORT_REPLY_CHARS = 100
LONG_REPLY_CHARS = 300
SKILL_GROWTH_INTENTS = 5

FEATURES = ["buyer-discovery", "market-research", "compliance", "quotation"]
FEATURE_TITLES = {
    "buyer-discovery": "Buyer Discovery",
    "market-research": "Market Research",
    "compliance": "Export Compliance",
    "quotation": "Quotation Management",
}
INTENT_FEATURES = {
    IntentType.FIND_BUYERS: "buyer-discovery",
    IntentType.MARKET_RESEARCH: "market-research",
    IntentType.COMPLIANCE_HELP: "compliance",
    IntentType.QUOTATION_HELP: "quotation",
}
INTENT_TITLES = {
    IntentType.FIND_BUYERS: "Buyer Discovery",
    IntentType.MARKET_RESEARCH: "Market Research",
    IntentType.COMPLIANCE_HELP: "Export Compliance",
    IntentType.QUOTATION_HELP: "Quotation Management",
    IntentType.PLATFORM_NAVIGATION: "Platform Navigation",
    IntentType.GENERAL_EXPORT_ADVICE: "Export Advice",
    IntentType.ONBOARDING_HELP: "Getting Started",
}
LEARNING_STYLE_SIGNALS = {
    IntentType.PLATFORM_NAVIGATION: "guided",
    IntentType.GENERAL_EXPORT_ADVICE: "exploratory",
    IntentType.FIND_BUYERS: "direct",
    IntentType.MARKET_RESEARCH: "direct",
}
COMMUNICATION_STYLES = {"direct": "concise", "guided": "detailed"}


def intent_title(intent: IntentType) -> str:
    return INTENT_TITLES.get(intent, intent.value)


@dataclass(frozen=True)
class IndustryCustomization:
    industry: str
    terminology: Dict[str, str]
    common_intents: List[IntentType]
    recommended_features: List[str]
    key_metrics: List[str] = field(default_factory=list)
    preferred_visualization: str = "chart"
    compliance_requirements: List[str] = field(default_factory=list)
    market_focus: List[str] = field(default_factory=list)


INDUSTRY_CUSTOMIZATIONS = {
    "technology": IndustryCustomization(
        industry="technology",
        terminology={"products": "solutions", "buyers": "clients", "market": "sector"},
        common_intents=[IntentType.FIND_BUYERS, IntentType.COMPLIANCE_HELP, IntentType.MARKET_RESEARCH],
        recommended_features=["buyer-discovery", "compliance"],
        key_metrics=["market_size", "growth_rate", "tech_adoption"],
        preferred_visualization="chart",
        compliance_requirements=["data_protection", "export_controls"],
        market_focus=["developed_markets", "emerging_tech_hubs"],
    ),
    "manufacturing": IndustryCustomization(
        industry="manufacturing",
        terminology={"products": "goods", "buyers": "distributors", "compliance": "quality standards"},
        common_intents=[IntentType.MARKET_RESEARCH, IntentType.COMPLIANCE_HELP, IntentType.QUOTATION_HELP],
        recommended_features=["market-research", "quotation", "compliance"],
        key_metrics=["production_capacity", "trade_volume", "tariff_rates"],
        preferred_visualization="table",
        compliance_requirements=["quality_standards", "safety_regulations"],
        market_focus=["industrial_markets", "developing_economies"],
    ),
}


def adapt_length(text: str, preference: str) -> str:
    """Keep the first 2 (short) or 3 (medium) sentences; long keeps everything."""
    if preference == "long":
        return text
    keep = 2 if preference == "short" else 3
    sentences = text.split(". ")
    if len(sentences) <= keep:
        return text
    return ". ".join(sentences[:keep]) + "."


def _match_case(source: str, replacement: str) -> str:
    return replacement[:1].upper() + replacement[1:] if source[:1].isupper() else replacement


def apply_terminology(text: str, terminology: Dict[str, str]) -> str:
    for generic, specific in terminology.items():
        text = re.sub(
            rf"\b{re.escape(generic)}\b",
            lambda m, s=specific: _match_case(m.group(0), s),
            text,
            flags=re.IGNORECASE,
        )
    return text


class PersonalizationService:
    """Per-user behavior learning, recommendations and response adaptation.

    Patterns live in a bounded in-memory cache and are written through to the
    persistence store after every update. Updates for one user are serialized
    with a per-user lock.
    """

    def __init__(
        self,
        store: PersistenceStore,
        config: Settings = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or default_settings
        self.rng = rng or random.Random()
        self.clock = clock
        self.learning_rate = self.config.learning_rate
        # Reserved for ageing old signals; nothing applies it yet
        self.decay_factor = self.config.decay_factor
        self.patterns: BoundedTTLCache[BehaviorPattern] = BoundedTTLCache(self.config.pattern_cache_capacity)
        self._locks = KeyedLocks()

    # Pattern storage

    def get_pattern(self, user_id: str) -> Optional[BehaviorPattern]:
        return self.patterns.get(user_id)

    async def load_pattern(self, user_id: str) -> Optional[BehaviorPattern]:
        pattern = self.patterns.get(user_id)
        if pattern is not None:
            return pattern
        try:
            records = await self.store.load_by_user_id(BEHAVIOR_PATTERNS, user_id)
        except Exception as e:
            logger.error(f"Failed to load behavior pattern for {user_id}: {e}")
            return None
        if not records:
            return None
        pattern = BehaviorPattern.model_validate(records[0])
        self.patterns.set(user_id, pattern)
        return pattern

    async def _save(self, pattern: BehaviorPattern) -> None:
        self.patterns.set(pattern.user_id, pattern)
        try:
            await self.store.save(BEHAVIOR_PATTERNS, pattern.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Failed to persist behavior pattern for {pattern.user_id}: {e}")

    async def _get_or_create(self, user_id: str, context: Optional[UserContext]) -> BehaviorPattern:
        pattern = await self.load_pattern(user_id)
        if pattern is None:
            start_page = context.current_session.current_page if context else "dashboard"
            pattern = BehaviorPattern(user_id=user_id)
            pattern.session_patterns.preferred_start_pages.append(start_page)
        return pattern

    # Learning

    async def learn(
        self,
        user_id: str,
        intent: Intent,
        response: AssistantResponse,
        feedback: Optional[UserFeedback] = None,
        context: Optional[UserContext] = None,
    ) -> None:
        """Fold one interaction into the user's pattern. Never raises."""
        await self._update(user_id, intent, response, feedback, context, count_interaction=True)

    async def apply_feedback(
        self,
        user_id: str,
        intent: Intent,
        response: AssistantResponse,
        feedback: UserFeedback,
        context: Optional[UserContext] = None,
    ) -> None:
        """Learn from a rating on an interaction that was already counted."""
        await self._update(user_id, intent, response, feedback, context, count_interaction=False)

    async def _update(self, user_id, intent, response, feedback, context, count_interaction: bool) -> None:
        if not self.config.enable_behavior_learning:
            return
        if context is not None and not context.preferences.data_privacy.allow_personalization:
            return
        try:
            async with self._locks(user_id):
                pattern = await self._get_or_create(user_id, context)
                success = feedback.helpful if feedback is not None else True
                self._update_intent_stats(pattern, intent.name, success, count_interaction)
                if count_interaction:
                    pattern.interaction_count += 1
                    hour = self.clock().hour
                    pattern.time_patterns[hour] = pattern.time_patterns.get(hour, 0) + 1
                    if context is not None:
                        self._update_session_patterns(pattern, context)
                if feedback is not None:
                    if self.config.enable_preference_learning:
                        self._update_content_preferences(pattern, response, feedback)
                    self._update_learning_style(pattern, intent.name, feedback)
                await self._save(pattern)
        except Exception as e:
            logger.error(f"Learning from interaction failed for {user_id}: {e}")

    @staticmethod
    def _update_intent_stats(pattern: BehaviorPattern, intent: IntentType, success: bool, count: bool) -> None:
        outcome = 1.0 if success else 0.0
        stat = pattern.stat_for(intent)
        if stat is None:
            stat = IntentStat(intent=intent, frequency=0, success_rate=outcome)
            pattern.preferred_intents.append(stat)
        else:
            stat.success_rate = (stat.success_rate + outcome) / 2
        if count:
            stat.frequency += 1
        ranked = sorted(pattern.preferred_intents, key=lambda s: s.frequency, reverse=True)
        pattern.preferred_intents = ranked[:MAX_PREFERRED_INTENTS]

    def _nudge(self) -> bool:
        return self.rng.random() < self.learning_rate

    def _update_content_preferences(self, pattern: BehaviorPattern, response: AssistantResponse,
                                    feedback: UserFeedback) -> None:
        prefs = pattern.content_preferences
        if feedback.helpful and self._nudge():
            length = len(response.text)
            if length < SHORT_REPLY_CHARS:
                prefs.response_length = "short"
            elif length > LONG_REPLY_CHARS:
                prefs.response_length = "long"
            else:
                prefs.response_length = "medium"
        if response.quick_actions:
            prefs.prefer_quick_actions = feedback.helpful
        visualization = response.data_visualization
        if visualization is not None:
            prefs.include_data = feedback.helpful
            if feedback.helpful and visualization.type not in prefs.visualization_types:
                prefs.visualization_types.append(visualization.type)

    def _update_session_patterns(self, pattern: BehaviorPattern, context: UserContext) -> None:
        session = pattern.session_patterns
        current_page = context.current_session.current_page
        if current_page not in session.preferred_start_pages:
            session.preferred_start_pages.append(current_page)

        elapsed = (self.clock() - context.current_session.session_start).total_seconds()
        session.average_length = (session.average_length + max(elapsed, 0.0)) / 2

        visited = context.current_session.pages_visited
        if len(visited) > 1:
            path = visited[-3:]
            for flow in session.common_flows:
                if flow.path == path:
                    flow.frequency += 1
                    break
            else:
                session.common_flows.append(PageFlow(path=path))

    def _update_learning_style(self, pattern: BehaviorPattern, intent: IntentType, feedback: UserFeedback) -> None:
        # Weak signal: only an occasional helpful interaction moves the tag
        style = LEARNING_STYLE_SIGNALS.get(intent)
        if style and feedback.helpful and self._nudge():
            pattern.learning_style = style

    # Recommendations

    async def recommend(self, user_id: str, context: UserContext, limit: int = 5) -> List[Recommendation]:
        try:
            pattern = await self.load_pattern(user_id)
            candidates = []
            if pattern is not None:
                candidates += self._feature_recommendations(pattern)
                candidates += self._content_recommendations(pattern)
                candidates += self._learning_recommendations(pattern, context)
            candidates += self._industry_recommendations(context)
            candidates.sort(key=lambda r: (-PRIORITY_RANK[r.priority], -r.confidence))
            return candidates[:limit]
        except Exception as e:
            logger.error(f"Failed to build recommendations for {user_id}: {e}")
            return []

    @staticmethod
    def _feature_recommendations(pattern: BehaviorPattern) -> List[Recommendation]:
        used = {INTENT_FEATURES.get(s.intent) for s in pattern.preferred_intents}
        return [
            Recommendation(
                id=str(uuid.uuid4()),
                type="feature",
                title=f"Try {FEATURE_TITLES[feature]}",
                description=f"Based on your usage patterns, you might find {FEATURE_TITLES[feature]} "
                            f"helpful for your export business.",
                confidence=0.7,
                reasoning=["Feature not yet explored", "Matches your business profile"],
                action=QuickAction(
                    id=f"try-{feature}",
                    label=f"Explore {FEATURE_TITLES[feature]}",
                    action="navigate",
                    parameters={"page": feature},
                ),
                priority="medium",
                category="feature_discovery",
            )
            for feature in FEATURES
            if feature not in used
        ][:2]

    def _content_recommendations(self, pattern: BehaviorPattern) -> List[Recommendation]:
        strong = [s for s in pattern.preferred_intents if s.success_rate > self.config.confidence_threshold][:3]
        return [
            Recommendation(
                id=str(uuid.uuid4()),
                type="content",
                title=f"More {intent_title(stat.intent)} Resources",
                description=f"Since you frequently use {intent_title(stat.intent)}, here are additional resources.",
                confidence=stat.success_rate,
                reasoning=[f"High success rate ({round(stat.success_rate * 100)}%)", "Frequently used feature"],
                priority="high",
                category="content_suggestion",
            )
            for stat in strong
        ][:2]

    @staticmethod
    def _learning_recommendations(pattern: BehaviorPattern, context: UserContext) -> List[Recommendation]:
        successful = [s for s in pattern.preferred_intents if s.success_rate >= 0.5]
        if context.business_profile.experience_level != "beginner" or len(successful) < SKILL_GROWTH_INTENTS:
            return []
        return [Recommendation(
            id=str(uuid.uuid4()),
            type="learning",
            title="Ready for Intermediate Features",
            description="You've mastered the basics! Time to explore more advanced export tools.",
            confidence=0.8,
            reasoning=["Multiple features used successfully", "Consistent engagement"],
            action=QuickAction(
                id="intermediate-tour",
                label="Start Intermediate Tour",
                action="navigate",
                parameters={"action": "intermediate-onboarding"},
            ),
            priority="high",
            category="skill_development",
        )]

    def _industry_recommendations(self, context: UserContext) -> List[Recommendation]:
        industry = context.business_profile.industry
        customization = self.industry_customization(industry)
        if customization is None:
            return []
        return [
            Recommendation(
                id=str(uuid.uuid4()),
                type="feature",
                title=f"{FEATURE_TITLES.get(feature, feature)} for {industry}",
                description=f"This feature is particularly valuable for businesses in the {industry} industry.",
                confidence=0.8,
                reasoning=["Industry-specific recommendation", "Tailored for your sector"],
                action=QuickAction(
                    id=f"industry-{feature}",
                    label=f"Explore {FEATURE_TITLES.get(feature, feature)}",
                    action="navigate",
                    parameters={"page": feature, "industry": industry},
                ),
                priority="high",
                category="industry_specific",
            )
            for feature in customization.recommended_features
        ][:2]

    # Adaptation

    async def adapt(self, response: AssistantResponse, user_id: str, context: Optional[UserContext]) -> AssistantResponse:
        """Reshape a response to the user's content preferences.

        Returns `response` itself when adaptation is off, the user opted out of
        personalization, or no pattern exists yet. Applying it twice gives the
        same result as applying it once.
        """
        if not self.config.enable_content_adaptation:
            return response
        if context is not None and not context.preferences.data_privacy.allow_personalization:
            return response
        pattern = await self.load_pattern(user_id)
        if pattern is None:
            return response
        try:
            prefs = pattern.content_preferences
            text = adapt_length(response.text, prefs.response_length)
            actions = response.quick_actions
            if prefs.prefer_quick_actions and not actions and context is not None:
                actions = self._contextual_actions(context)
            elif not prefs.prefer_quick_actions and actions:
                actions = actions[:2]
            customization = self.industry_customization(context.business_profile.industry) if context else None
            if customization is not None:
                text = apply_terminology(text, customization.terminology)
            update: Dict[str, Any] = {"text": text, "quick_actions": list(actions)}
            if not prefs.include_data:
                update["data_visualization"] = None
            return response.model_copy(update=update)
        except Exception as e:
            logger.error(f"Response adaptation failed for {user_id}: {e}")
            return response

    @staticmethod
    def _contextual_actions(context: UserContext) -> List[QuickAction]:
        return [
            QuickAction(
                id="contextual-help",
                label="Get Help",
                action="navigate",
                parameters={"page": "help", "context": context.current_session.current_page},
            ),
            QuickAction(
                id="related-features",
                label="Related Features",
                action="navigate",
                parameters={"action": "show-related"},
            ),
        ]

    # Industry data, insights and manual control

    @staticmethod
    def industry_customization(industry: str) -> Optional[IndustryCustomization]:
        if not industry:
            return None
        key = industry.strip().lower()
        if key in INDUSTRY_CUSTOMIZATIONS:
            return INDUSTRY_CUSTOMIZATIONS[key]
        match = process.extractOne(key, list(INDUSTRY_CUSTOMIZATIONS), scorer=fuzz.partial_ratio, score_cutoff=90)
        return INDUSTRY_CUSTOMIZATIONS[match[0]] if match else None

    async def insights(self, user_id: str) -> Dict[str, Any]:
        pattern = await self.load_pattern(user_id)
        if pattern is None:
            return {
                "behavior_pattern": None,
                "learning_progress": {
                    "interaction_count": 0,
                    "expertise_level": "beginner",
                    "strong_areas": [],
                    "improvement_areas": [],
                },
                "preferences": {"communication_style": "standard", "preferred_features": [], "optimal_times": []},
            }

        interaction_count = sum(s.frequency for s in pattern.preferred_intents)
        if interaction_count > 50:
            expertise = "advanced"
        elif interaction_count > 20:
            expertise = "intermediate"
        else:
            expertise = "beginner"
        busiest_hours = sorted(pattern.time_patterns.items(), key=lambda kv: kv[1], reverse=True)[:3]
        return {
            "behavior_pattern": pattern.model_dump(mode="json"),
            "learning_progress": {
                "interaction_count": interaction_count,
                "expertise_level": expertise,
                "strong_areas": [intent_title(s.intent) for s in pattern.preferred_intents if s.success_rate > 0.8][:3],
                "improvement_areas": [intent_title(s.intent) for s in pattern.preferred_intents if s.success_rate < 0.5][:3],
            },
            "preferences": {
                "communication_style": COMMUNICATION_STYLES.get(pattern.learning_style, "balanced"),
                "preferred_features": [intent_title(s.intent) for s in pattern.preferred_intents[:3]],
                "optimal_times": [f"{hour}:00" for hour, _ in busiest_hours],
            },
        }

    async def update_preferences(self, user_id: str, overrides: Dict[str, Any],
                                 context: Optional[UserContext] = None) -> BehaviorPattern:
        async with self._locks(user_id):
            pattern = await self._get_or_create(user_id, context)
            prefs = pattern.content_preferences
            for name in ("response_length", "include_data", "prefer_quick_actions", "visualization_types"):
                if overrides.get(name) is not None:
                    setattr(prefs, name, overrides[name])
            if overrides.get("learning_style") is not None:
                pattern.learning_style = overrides["learning_style"]
            await self._save(pattern)
            return pattern

    async def reset(self, user_id: str) -> None:
        async with self._locks(user_id):
            self.patterns.pop(user_id)
            try:
                await self.store.delete_by_user_id(BEHAVIOR_PATTERNS, user_id)
            except Exception as e:
                logger.error(f"Failed to delete behavior pattern for {user_id}: {e}")
            logger.info(f"Personalization reset for {user_id}")
