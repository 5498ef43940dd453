import re
import json
import html
import uuid
import random
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from export_assistant.schemas.context import UserContext
from export_assistant.schemas.conversation import EntityType, Intent, IntentType
from export_assistant.schemas.response import AssistantResponse, DataVisualization, NavigationHint, QuickAction
from export_assistant.services.trade_data_service import TradeDataService

logger = logging.getLogger("response_generator")

TEMPLATES_PATH = Path(__file__).parent.parent / "data" / "response_templates.json"

MAX_QUICK_ACTIONS = 4
MAX_FOLLOW_UPS = 3

NAVIGATION_MAP = {
    IntentType.FIND_BUYERS: ("buyer-discovery", "Find potential buyers for your products"),
    IntentType.MARKET_RESEARCH: ("market-research", "Access comprehensive market data"),
    IntentType.QUOTATION_HELP: ("quotation", "Create professional quotations"),
    IntentType.COMPLIANCE_HELP: ("compliance", "Get compliance guidance"),
}
NAVIGATION_PARAMS = {
    EntityType.COUNTRY: "country",
    EntityType.PRODUCT: "product",
    EntityType.INDUSTRY: "industry",
}

# Intents whose answer depends on knowing where and what the user exports
CLARIFY_INTENTS = {IntentType.FIND_BUYERS, IntentType.MARKET_RESEARCH}
CLARIFYING_QUESTIONS = [
    (EntityType.COUNTRY, "Which countries are you targeting?"),
    (EntityType.PRODUCT, "What products are you working with?"),
]

FALLBACK_TEXTS = [
    "I'm not sure I understand exactly what you're looking for. Could you rephrase your question?",
    "I want to help you with that. Can you provide a bit more detail about what you need?",
    "Let me help you find what you're looking for. Could you be more specific about your question?",
]
FALLBACK_FOLLOW_UPS = [
    "Are you looking for buyer information?",
    "Do you need market research data?",
    "Would you like help with compliance?",
]
CONTACT_SUPPORT = {
    "id": "contact-support",
    "label": "Contact Support",
    "action": "navigate",
    "parameters": {"page": "support"},
    "icon": "help-circle",
}
FALLBACK_ACTIONS = [
    {"id": "browse-features", "label": "Browse Features", "action": "navigate", "parameters": {"page": "features"}, "icon": "grid"},
    CONTACT_SUPPORT,
]

ERROR_TEXT = (
    "I'm experiencing some technical difficulties right now. Please try again in a moment, "
    "or let me know if you need immediate assistance."
)
ERROR_ACTIONS = [
    {"id": "retry-message", "label": "Try Again", "action": "navigate", "parameters": {"retry": True}, "icon": "refresh"},
    CONTACT_SUPPORT,
]
ERROR_FOLLOW_UPS = [
    "Would you like me to try processing your request again?",
    "Is there something else I can help you with?",
]


@dataclass(frozen=True)
class TemplateBundle:
    texts: List[str]
    quick_actions: List[Dict[str, Any]] = field(default_factory=list)
    follow_up_questions: List[str] = field(default_factory=list)
    requires_data: bool = False


def load_response_templates(path: Path = TEMPLATES_PATH) -> Dict[IntentType, TemplateBundle]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return {IntentType(name): TemplateBundle(**entry) for name, entry in raw.items()}


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _actions(specs: List[Dict[str, Any]]) -> List[QuickAction]:
    return [QuickAction(**spec) for spec in specs]


class ResponseGenerator:
    def __init__(
        self,
        data_service: Optional[TradeDataService] = None,
        rng: Optional[random.Random] = None,
        templates: Dict[IntentType, TemplateBundle] = None,
    ):
        self.data_service = data_service
        self.rng = rng or random.Random()
        self.templates = templates if templates is not None else load_response_templates()

    async def generate(self, intent: Intent, context: UserContext, raw_text: str) -> AssistantResponse:
        """Build the reply for a classified message.

        Never raises. Unknown intents get an apology with recovery actions and
        any unexpected failure yields the technical-difficulty response.
        """
        try:
            bundle = self.templates.get(intent.name)
            if intent.name == IntentType.UNKNOWN or bundle is None:
                return self.fallback_response()

            visualization = None
            if bundle.requires_data:
                visualization = await self._visualization(intent, context)

            return AssistantResponse(
                id=str(uuid.uuid4()),
                text=self._select_text(bundle, context),
                quick_actions=self._quick_actions(bundle, intent),
                navigation_hint=self._navigation_hint(intent),
                data_visualization=visualization,
                follow_up_questions=self._follow_ups(bundle, intent),
            )
        except Exception as e:
            logger.error(f"Response generation failed for {raw_text!r}: {e}")
            return self.error_response()

    def _select_text(self, bundle: TemplateBundle, context: UserContext) -> str:
        level = context.business_profile.experience_level
        if level == "beginner":
            return bundle.texts[0]
        if level == "advanced":
            return bundle.texts[-1]
        return self.rng.choice(bundle.texts)

    def _quick_actions(self, bundle: TemplateBundle, intent: Intent) -> List[QuickAction]:
        actions = _actions(bundle.quick_actions)
        for entity in intent.entities:
            if entity.type == EntityType.COUNTRY:
                action = QuickAction(
                    id=f"search-{_slug(entity.value)}",
                    label=f"Explore {entity.value}",
                    action="search",
                    parameters={"country": entity.value},
                    icon="globe",
                )
            elif entity.type == EntityType.PRODUCT:
                action = QuickAction(
                    id=f"analyze-{_slug(entity.value)}",
                    label=f"Analyze {entity.value}",
                    action="analyze",
                    parameters={"product": entity.value},
                    icon="trending-up",
                )
            else:
                continue
            if all(a.id != action.id for a in actions):
                actions.append(action)
        return actions[:MAX_QUICK_ACTIONS]

    def _navigation_hint(self, intent: Intent) -> Optional[NavigationHint]:
        target = NAVIGATION_MAP.get(intent.name)
        if target is None:
            return None
        page, reason = target
        params = {}
        for entity in intent.entities:
            name = NAVIGATION_PARAMS.get(entity.type)
            if name and name not in params:
                params[name] = entity.value
        return NavigationHint(page=page, params=params, reason=reason)

    def _follow_ups(self, bundle: TemplateBundle, intent: Intent) -> List[str]:
        questions = list(bundle.follow_up_questions)
        if intent.name in CLARIFY_INTENTS:
            found = {e.type for e in intent.entities}
            questions.extend(q for entity_type, q in CLARIFYING_QUESTIONS if entity_type not in found)
        return questions[:MAX_FOLLOW_UPS]

    async def _visualization(self, intent: Intent, context: UserContext) -> Optional[DataVisualization]:
        if self.data_service is None:
            return None
        try:
            return await self.data_service.build_visualization(intent, context)
        except Exception as e:
            logger.warning(f"Visualization omitted for {intent.name.value}: {e}")
            return None

    def fallback_response(self) -> AssistantResponse:
        return AssistantResponse(
            id=str(uuid.uuid4()),
            text=self.rng.choice(FALLBACK_TEXTS),
            quick_actions=_actions(FALLBACK_ACTIONS),
            follow_up_questions=list(FALLBACK_FOLLOW_UPS),
        )

    @staticmethod
    def error_response() -> AssistantResponse:
        return AssistantResponse(
            id=str(uuid.uuid4()),
            text=ERROR_TEXT,
            quick_actions=_actions(ERROR_ACTIONS),
            follow_up_questions=list(ERROR_FOLLOW_UPS),
        )

    @staticmethod
    def format_response(response: AssistantResponse, fmt: str = "text") -> str:
        if fmt == "html":
            out = f"<p>{html.escape(response.text)}</p>"
            if response.quick_actions:
                buttons = "".join(
                    f'<button class="quick-action" data-action="{html.escape(a.id)}">{html.escape(a.label)}</button>'
                    for a in response.quick_actions
                )
                out += f'<div class="quick-actions">{buttons}</div>'
            return out
        if fmt == "markdown":
            out = response.text
            if response.quick_actions:
                out += "\n\n**Quick Actions:**\n" + "".join(f"- {a.label}\n" for a in response.quick_actions)
            if response.follow_up_questions:
                out += "\n\n**You might also ask:**\n" + "".join(f"- {q}\n" for q in response.follow_up_questions)
            return out
        return response.text
