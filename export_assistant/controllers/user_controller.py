from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from export_assistant.core.dependencies import get_analytics_service, get_context_service
from export_assistant.schemas.chat import NavigationRequest, PreferencesUpdateRequest, ProfileUpdateRequest
from export_assistant.services.analytics_service import AnalyticsService
from export_assistant.services.context_service import ContextService
from export_assistant.utils.response import success_response

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/context")
async def get_context(
    user_id: str,
    conversation_id: Optional[str] = None,
    context_service: ContextService = Depends(get_context_service),
):
    context = await context_service.get_context(user_id, conversation_id)
    return success_response(data=context.model_dump(mode="json"))


@router.put("/{user_id}/profile")
async def update_profile(
    user_id: str,
    profile: ProfileUpdateRequest,
    context_service: ContextService = Depends(get_context_service),
):
    try:
        context = await context_service.update_profile(user_id, profile.model_dump(exclude_none=True))
        return success_response(data=context.business_profile.model_dump(mode="json"), message="Profile updated")
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{user_id}/preferences")
async def update_preferences(
    user_id: str,
    preferences: PreferencesUpdateRequest,
    context_service: ContextService = Depends(get_context_service),
):
    try:
        context = await context_service.update_preferences(user_id, preferences.model_dump(exclude_none=True))
        return success_response(data=context.preferences.model_dump(mode="json"), message="Preferences updated")
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{user_id}/navigation")
async def navigate(
    user_id: str,
    navigation: NavigationRequest,
    context_service: ContextService = Depends(get_context_service),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
):
    try:
        context, previous = await context_service.navigate(user_id, navigation.page)
        await analytics_service.track_navigation(
            previous, navigation.page, user_id, context.conversation_id, context=context,
        )
        return success_response(data=context.current_session.model_dump(mode="json"))
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{user_id}/context")
async def reset_context(
    user_id: str,
    context_service: ContextService = Depends(get_context_service),
):
    await context_service.reset(user_id)
    return success_response(message="Context cleared")
