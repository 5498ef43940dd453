from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from .context import CompanySize, ExperienceLevel
from .behavior import ResponseLength, LearningStyle


class ChatMessageRequest(BaseModel):
    user_id: str = Field(..., description="User ID")
    conversation_id: Optional[str] = Field(None, description="Conversation ID, created when missing")
    message: str = Field(..., description="User message")
    current_page: Optional[str] = None


class FeedbackRequest(BaseModel):
    user_id: str
    message_id: str = Field(..., description="ID of the assistant response being rated")
    rating: int = Field(..., ge=1, le=5)
    helpful: bool
    comment: Optional[str] = None


class QuickActionRequest(BaseModel):
    user_id: str
    conversation_id: Optional[str] = None
    action_id: str
    action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class TaskRequest(BaseModel):
    user_id: str
    conversation_id: Optional[str] = None
    task_type: str
    completed: bool
    steps: Optional[List[str]] = None
    time_spent: Optional[float] = Field(None, description="Seconds spent on the task")


class ProfileUpdateRequest(BaseModel):
    industry: Optional[str] = None
    products: Optional[List[str]] = None
    target_markets: Optional[List[str]] = None
    experience_level: Optional[ExperienceLevel] = None
    company_size: Optional[CompanySize] = None
    preferred_language: Optional[str] = None
    company_name: Optional[str] = None


class NavigationRequest(BaseModel):
    page: str


class PreferenceOverrideRequest(BaseModel):
    response_length: Optional[ResponseLength] = None
    include_data: Optional[bool] = None
    prefer_quick_actions: Optional[bool] = None
    visualization_types: Optional[List[str]] = None
    learning_style: Optional[LearningStyle] = None


class DataPrivacyUpdate(BaseModel):
    allow_analytics: Optional[bool] = None
    allow_personalization: Optional[bool] = None
    retention_days: Optional[int] = Field(None, ge=1)


class PreferencesUpdateRequest(BaseModel):
    chat_position: Optional[Literal["bottom-right", "bottom-left", "top-right", "top-left"]] = None
    auto_expand: Optional[bool] = None
    sound_enabled: Optional[bool] = None
    theme: Optional[Literal["light", "dark", "auto"]] = None
    language: Optional[str] = None
    data_privacy: Optional[DataPrivacyUpdate] = None
