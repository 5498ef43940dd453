import time
import uuid
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from export_assistant.core.cache import BoundedTTLCache
from export_assistant.core.config import Settings, settings as default_settings
from export_assistant.schemas.context import UserContext
from export_assistant.schemas.conversation import Intent, Message, MessageAuthor
from export_assistant.schemas.response import AssistantResponse, NavigationHint, QuickAction, UserFeedback
from export_assistant.services.analytics_service import AnalyticsService
from export_assistant.services.context_service import ContextService
from export_assistant.services.intent_classifier import IntentClassifier
from export_assistant.services.personalization_service import PersonalizationService
from export_assistant.services.response_generator import ResponseGenerator
from export_assistant.utils.validation import process_message_content

logger = logging.getLogger("chat_service")

PAGE_DESCRIPTIONS = {
    "dashboard": "get an overview of your export activities and key metrics",
    "buyer-discovery": "find and connect with potential buyers for your products",
    "market-research": "analyze market opportunities and competition in different countries",
    "compliance": "understand regulatory requirements and documentation needs",
    "quotation": "create professional quotes with accurate pricing and terms",
    "lead-generation": "manage and track your export leads and opportunities",
}
ACTION_ERROR_TEXT = "I encountered an error processing that action. Please try again."


@dataclass
class Interaction:
    """What was answered, kept so a later rating can be matched to it."""

    user_id: str
    conversation_id: str
    intent: Intent
    response: AssistantResponse


class ChatService:
    """Runs one message end-to-end through the assistant pipeline.

    validate, load context, classify, record the message, generate, adapt,
    update context, record the response, learn, decide on a feedback prompt.
    Messages for one user are processed one at a time in arrival order.
    """

    def __init__(
        self,
        contexts: ContextService,
        classifier: IntentClassifier,
        generator: ResponseGenerator,
        personalization: PersonalizationService,
        analytics: AnalyticsService,
        config: Settings = None,
    ):
        self.contexts = contexts
        self.classifier = classifier
        self.generator = generator
        self.personalization = personalization
        self.analytics = analytics
        self.config = config or default_settings
        self.interactions: BoundedTTLCache[Interaction] = BoundedTTLCache(self.config.interaction_cache_capacity)

    async def process_message(
        self,
        user_id: str,
        text: str,
        conversation_id: Optional[str] = None,
        current_page: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Raises MessageValidationError for unusable input; everything else degrades to a fallback reply."""
        content = process_message_content(text, self.config.max_message_length)
        started = time.perf_counter()

        async with self.contexts.locks(user_id):
            context = await self.contexts.get_context(user_id, conversation_id)
            if current_page and current_page != context.current_session.current_page:
                context.current_session.visit(current_page)

            intent = self.classifier.classify(content, context)
            user_message = Message(
                id=str(uuid.uuid4()),
                user_id=user_id,
                conversation_id=context.conversation_id,
                author=MessageAuthor.USER,
                text=content,
                intent=intent,
            )
            await self.analytics.track_message(user_message, context, intent)

            try:
                response = await self.generator.generate(intent, context, content)
                response = await self.personalization.adapt(response, user_id, context)
            except Exception as e:
                logger.error(f"Reply pipeline failed for {user_id}: {e}")
                response = ResponseGenerator.error_response()

            self.contexts.append_message(context, user_message)
            self.contexts.append_message(context, Message(
                id=response.id,
                user_id=user_id,
                conversation_id=context.conversation_id,
                author=MessageAuthor.ASSISTANT,
                timestamp=response.timestamp,
                text=response.text,
            ))
            await self.contexts.save(context)

            elapsed_ms = (time.perf_counter() - started) * 1000
            await self.analytics.track_response(response, context, elapsed_ms, intent)
            await self.personalization.learn(user_id, intent, response, None, context)
            self.interactions.set(response.id, Interaction(user_id, context.conversation_id, intent, response))

        logger.info(f"Processed message for {user_id}: {intent.name.value} ({intent.confidence:.2f})")
        return {
            "conversation_id": context.conversation_id,
            "message": user_message,
            "response": response,
            "feedback": self.analytics.feedback_prompt(user_id),
        }

    async def submit_feedback(
        self,
        user_id: str,
        message_id: str,
        rating: int,
        helpful: bool,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        feedback = UserFeedback(rating=rating, helpful=helpful, comment=comment)
        interaction = self.interactions.get(message_id)
        if interaction is None or interaction.user_id != user_id:
            # Still counted towards accuracy, but there is no reply to learn from
            context = await self.contexts.get_context(user_id)
            await self.analytics.track_feedback(feedback, message_id, user_id, context.conversation_id,
                                                context=context)
            return {"matched": False, "feedback": feedback}

        context = await self.contexts.get_context(user_id, interaction.conversation_id)
        await self.analytics.track_feedback(feedback, message_id, user_id, interaction.conversation_id,
                                            intent=interaction.intent, context=context)
        await self.personalization.apply_feedback(user_id, interaction.intent, interaction.response, feedback,
                                                  context)
        return {"matched": True, "intent": interaction.intent.name, "feedback": feedback}

    async def handle_quick_action(
        self,
        user_id: str,
        action: QuickAction,
        conversation_id: Optional[str] = None,
    ) -> AssistantResponse:
        context = await self.contexts.get_context(user_id, conversation_id)
        await self.analytics.track_quick_action(action.id, action.action, user_id, context.conversation_id, context)
        try:
            if action.action == "navigate" and action.parameters.get("page"):
                return await self._navigate_action(action, context)
            if action.action == "search":
                return AssistantResponse(
                    id=str(uuid.uuid4()),
                    text=f"I'll help you search for {self._subject(action, 'matches')}. "
                         f"Let me prepare the search interface for you.",
                    quick_actions=[QuickAction(
                        id="refine-search",
                        label="Refine Search",
                        action="search",
                        parameters={**action.parameters, "refined": True},
                        icon="tune",
                    )],
                )
            if action.action == "create":
                return AssistantResponse(
                    id=str(uuid.uuid4()),
                    text=f"I'll help you create a new {self._subject(action, 'document')}. "
                         f"Let me guide you through the process step by step.",
                )
            if action.action == "analyze":
                return AssistantResponse(
                    id=str(uuid.uuid4()),
                    text=f"I'll analyze the {self._subject(action, 'market')} data for you. "
                         f"This will provide insights to help with your export decisions.",
                )
            return AssistantResponse(
                id=str(uuid.uuid4()),
                text=f'I\'ll help you with "{action.label}". This feature is being implemented.',
            )
        except Exception as e:
            logger.error(f"Quick action {action.id} failed for {user_id}: {e}")
            return AssistantResponse(id=str(uuid.uuid4()), text=ACTION_ERROR_TEXT)

    @staticmethod
    def _subject(action: QuickAction, default: str) -> str:
        for name in ("type", "product", "country"):
            if action.parameters.get(name):
                return str(action.parameters[name])
        return default

    async def _navigate_action(self, action: QuickAction, context: UserContext) -> AssistantResponse:
        page = action.parameters["page"]
        context, previous = await self.contexts.navigate(context.user_id, page, context.conversation_id)
        await self.analytics.track_navigation(previous, page, context.user_id, context.conversation_id,
                                              trigger="assistant", context=context)
        description = PAGE_DESCRIPTIONS.get(page, "access the requested feature")
        return AssistantResponse(
            id=str(uuid.uuid4()),
            text=f"I'm directing you to the {page.replace('-', ' ')} section. This will help you {description}.",
            navigation_hint=NavigationHint(
                page=page,
                params=action.parameters,
                highlight_element=action.parameters.get("highlight_element"),
            ),
        )

    async def history(self, user_id: str, conversation_id: Optional[str] = None) -> List[Message]:
        context = await self.contexts.get_context(user_id, conversation_id)
        return sorted(context.history, key=lambda m: m.timestamp)

    async def suggest_intents(self, user_id: str, text: str,
                              conversation_id: Optional[str] = None) -> Dict[str, Any]:
        content = process_message_content(text, self.config.max_message_length)
        context = await self.contexts.get_context(user_id, conversation_id)
        return {
            "suggestions": self.classifier.suggest_alternatives(content, context),
            "complexity": self.classifier.analyze_complexity(content),
        }

    async def track_task(
        self,
        user_id: str,
        task_type: str,
        completed: bool,
        time_spent: Optional[float] = None,
        conversation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        context = await self.contexts.get_context(user_id, conversation_id)
        task_id = str(uuid.uuid4())
        await self.analytics.track_task(task_type, task_id, completed, time_spent or 0.0, user_id,
                                        context.conversation_id, context)
        return {"task_id": task_id, "task_type": task_type, "completed": completed}

    def feedback_prompt(self, user_id: str, prompt_type: str = "helpful") -> Dict[str, Any]:
        return self.analytics.feedback_prompt(user_id, prompt_type)
