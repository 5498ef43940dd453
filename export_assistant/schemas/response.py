from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from .base import utc_now

ActionType = Literal["navigate", "search", "create", "analyze", "export", "filter"]


class QuickAction(BaseModel):
    id: str
    label: str
    action: ActionType
    parameters: Dict[str, Any] = Field(default_factory=dict)
    icon: Optional[str] = None


class NavigationHint(BaseModel):
    page: str
    params: Dict[str, Any] = Field(default_factory=dict)
    pre_populate_form: Optional[Dict[str, Any]] = None
    highlight_element: Optional[str] = None
    reason: Optional[str] = None


class DataVisualization(BaseModel):
    type: Literal["chart", "table", "map", "metric"]
    data: Any = None
    config: Dict[str, Any] = Field(default_factory=dict)
    title: Optional[str] = None
    description: Optional[str] = None
    cached: bool = False


class AssistantResponse(BaseModel):
    id: str
    text: str
    quick_actions: List[QuickAction] = Field(default_factory=list, max_length=4)
    navigation_hint: Optional[NavigationHint] = None
    data_visualization: Optional[DataVisualization] = None
    follow_up_questions: List[str] = Field(default_factory=list, max_length=3)
    timestamp: datetime = Field(default_factory=utc_now)


class UserFeedback(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    helpful: bool
    comment: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
