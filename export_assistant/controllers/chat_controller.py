import json
import logging
from typing import Optional
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, HTTPException
from export_assistant.core.dependencies import get_chat_service
from export_assistant.core.exceptions import MessageValidationError
from export_assistant.schemas.chat import ChatMessageRequest, FeedbackRequest, QuickActionRequest, TaskRequest
from export_assistant.schemas.response import QuickAction
from export_assistant.services.chat_service import ChatService
from export_assistant.utils.response import success_response

logger = logging.getLogger("chat_controller")

router = APIRouter(prefix="/chat", tags=["chat"])


def _dump(result: dict) -> dict:
    return {
        "conversation_id": result["conversation_id"],
        "message": result["message"].model_dump(mode="json"),
        "response": result["response"].model_dump(mode="json"),
        "feedback": result["feedback"],
    }


@router.post("/message")
async def send_message(
    message_request: ChatMessageRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        result = await chat_service.process_message(
            message_request.user_id,
            message_request.message,
            message_request.conversation_id,
            message_request.current_page,
        )
        return success_response(data=_dump(result), message="Message processed successfully")
    except MessageValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/feedback")
async def submit_feedback(
    feedback_request: FeedbackRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        result = await chat_service.submit_feedback(
            feedback_request.user_id,
            feedback_request.message_id,
            feedback_request.rating,
            feedback_request.helpful,
            feedback_request.comment,
        )
        result["feedback"] = result["feedback"].model_dump(mode="json")
        return success_response(data=result, message="Feedback recorded")
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/action")
async def quick_action(
    action_request: QuickActionRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        action = QuickAction(
            id=action_request.action_id,
            label=action_request.action_id.replace("-", " ").title(),
            action=action_request.action,
            parameters=action_request.parameters,
        )
        response = await chat_service.handle_quick_action(
            action_request.user_id, action, action_request.conversation_id,
        )
        return success_response(data=response.model_dump(mode="json"))
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/history/{user_id}")
async def get_chat_history(
    user_id: str,
    conversation_id: Optional[str] = None,
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        history = await chat_service.history(user_id, conversation_id)
        return success_response(data=[m.model_dump(mode="json") for m in history])
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/suggestions/{user_id}")
async def suggest_intents(
    user_id: str,
    text: str,
    conversation_id: Optional[str] = None,
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        result = await chat_service.suggest_intents(user_id, text, conversation_id)
        result["suggestions"] = [s.model_dump(mode="json") for s in result["suggestions"]]
        return success_response(data=result)
    except MessageValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/feedback-prompt/{user_id}")
async def feedback_prompt(
    user_id: str,
    prompt_type: str = "helpful",
    chat_service: ChatService = Depends(get_chat_service),
):
    return success_response(data=chat_service.feedback_prompt(user_id, prompt_type))


@router.post("/task")
async def track_task(
    task_request: TaskRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        result = await chat_service.track_task(
            task_request.user_id,
            task_request.task_type,
            task_request.completed,
            task_request.time_spent,
            task_request.conversation_id,
        )
        return success_response(data=result, message="Task recorded")
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


# WebSocket endpoint for real-time chat
@router.websocket("/ws/{user_id}")
async def websocket_endpoint(websocket: WebSocket, user_id: str):
    await websocket.accept()
    chat_service: ChatService = websocket.app.state.chat_service

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
                result = await chat_service.process_message(
                    user_id,
                    message_data.get("message"),
                    message_data.get("conversation_id"),
                    message_data.get("current_page"),
                )
            except MessageValidationError as e:
                await websocket.send_text(json.dumps({"type": "error", **e.to_dict()}))
                continue
            except (ValueError, AttributeError):
                await websocket.send_text(json.dumps({
                    "type": "error",
                    "message": "Messages must be JSON objects with a 'message' field",
                }))
                continue

            await websocket.send_text(json.dumps({
                "type": "bot_response",
                "data": _dump(result),
            }))

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user: {user_id}")
