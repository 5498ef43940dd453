from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from .base import utc_now


class EventKind(str, Enum):
    MESSAGE_SENT = "message_sent"
    RESPONSE_GENERATED = "response_generated"
    ACTION_CLICKED = "action_clicked"
    NAVIGATION = "navigation"
    FEEDBACK_GIVEN = "feedback_given"
    TASK_COMPLETED = "task_completed"


class AnalyticsEvent(BaseModel):
    id: str
    user_id: str
    conversation_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    kind: EventKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    session_id: str


class TimeRange(BaseModel):
    """Inclusive on both ends."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @model_validator(mode="after")
    def _check_order(self):
        if self.end < self.start:
            raise ValueError("time range end must not precede start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class AccuracyMetrics(BaseModel):
    total_responses: int = 0
    helpful_responses: int = 0
    unhelpful_responses: int = 0
    average_rating: float = 0.0
    accuracy_rate: float = 0.0
    confidence_distribution: Dict[str, int] = Field(default_factory=dict)
    intent_accuracy: Dict[str, float] = Field(default_factory=dict)


class DropOffPoint(BaseModel):
    step: str
    drop_off_rate: float


class TaskMetrics(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0.0
    average_time_to_complete: float = 0.0
    completion_by_type: Dict[str, float] = Field(default_factory=dict)
    drop_off_points: List[DropOffPoint] = Field(default_factory=list)


class IntentCount(BaseModel):
    intent: str
    count: int


class UserInteractionPattern(BaseModel):
    user_id: str
    total_sessions: int = 0
    total_messages: int = 0
    average_session_length: float = 0.0
    most_used_intents: List[IntentCount] = Field(default_factory=list)
    preferred_features: List[str] = Field(default_factory=list)
    time_of_day: Dict[str, int] = Field(default_factory=dict)


class Overview(BaseModel):
    total_users: int = 0
    total_conversations: int = 0
    total_messages: int = 0
    average_session_length: float = 0.0
    retention_rate: float = 0.0


class TopIssue(BaseModel):
    issue: str
    frequency: int
    impact: str


class DailyMetrics(BaseModel):
    date: str
    metrics: Dict[str, int]


class Dashboard(BaseModel):
    overview: Overview = Field(default_factory=Overview)
    response_metrics: AccuracyMetrics = Field(default_factory=AccuracyMetrics)
    task_metrics: TaskMetrics = Field(default_factory=TaskMetrics)
    user_patterns: List[UserInteractionPattern] = Field(default_factory=list)
    top_issues: List[TopIssue] = Field(default_factory=list)
    improvement_suggestions: List[str] = Field(default_factory=list)
    time_series: List[DailyMetrics] = Field(default_factory=list)
    time_range: Optional[TimeRange] = None
