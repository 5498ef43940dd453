from fastapi import Request
from export_assistant.services.analytics_service import AnalyticsService
from export_assistant.services.chat_service import ChatService
from export_assistant.services.context_service import ContextService
from export_assistant.services.personalization_service import PersonalizationService

# Services are built once in the application lifespan and stored on app.state


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_context_service(request: Request) -> ContextService:
    return request.app.state.context_service


def get_personalization_service(request: Request) -> PersonalizationService:
    return request.app.state.personalization_service


def get_analytics_service(request: Request) -> AnalyticsService:
    return request.app.state.analytics_service
