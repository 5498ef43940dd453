from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from export_assistant.core.dependencies import get_context_service, get_personalization_service
from export_assistant.schemas.chat import PreferenceOverrideRequest
from export_assistant.services.context_service import ContextService
from export_assistant.services.personalization_service import PersonalizationService
from export_assistant.utils.response import success_response

router = APIRouter(prefix="/personalization", tags=["personalization"])


@router.get("/{user_id}/recommendations")
async def get_recommendations(
    user_id: str,
    limit: int = 5,
    conversation_id: Optional[str] = None,
    context_service: ContextService = Depends(get_context_service),
    personalization_service: PersonalizationService = Depends(get_personalization_service),
):
    context = await context_service.get_context(user_id, conversation_id)
    recommendations = await personalization_service.recommend(user_id, context, limit)
    return success_response(data=[r.model_dump(mode="json") for r in recommendations])


@router.get("/{user_id}/insights")
async def get_insights(
    user_id: str,
    personalization_service: PersonalizationService = Depends(get_personalization_service),
):
    try:
        return success_response(data=await personalization_service.insights(user_id))
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{user_id}/preferences")
async def override_preferences(
    user_id: str,
    overrides: PreferenceOverrideRequest,
    personalization_service: PersonalizationService = Depends(get_personalization_service),
):
    try:
        pattern = await personalization_service.update_preferences(user_id, overrides.model_dump(exclude_none=True))
        return success_response(data=pattern.model_dump(mode="json"), message="Preferences updated")
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{user_id}")
async def reset_personalization(
    user_id: str,
    personalization_service: PersonalizationService = Depends(get_personalization_service),
):
    await personalization_service.reset(user_id)
    return success_response(message="Personalization data reset")
