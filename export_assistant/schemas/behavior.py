from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from .conversation import IntentType
from .response import QuickAction

ResponseLength = Literal["short", "medium", "long"]
LearningStyle = Literal["guided", "exploratory", "direct"]
Priority = Literal["high", "medium", "low"]

PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}


class IntentStat(BaseModel):
    intent: IntentType
    frequency: int = 0
    success_rate: float = Field(0.0, ge=0.0, le=1.0)


class PageFlow(BaseModel):
    path: List[str]
    frequency: int = 1


class SessionPatterns(BaseModel):
    average_length: float = 0.0
    preferred_start_pages: List[str] = Field(default_factory=list)
    common_flows: List[PageFlow] = Field(default_factory=list)


class ContentPreferences(BaseModel):
    response_length: ResponseLength = "medium"
    include_data: bool = True
    prefer_quick_actions: bool = True
    visualization_types: List[str] = Field(default_factory=lambda: ["chart", "table"])


class BehaviorPattern(BaseModel):
    """Accumulated per-user interaction model.

    `preferred_intents` is kept ranked by frequency (highest first) and holds at
    most ten entries. `time_patterns` maps hour of day (0-23) to a count.
    """

    user_id: str
    preferred_intents: List[IntentStat] = Field(default_factory=list, max_length=10)
    time_patterns: Dict[int, int] = Field(default_factory=dict)
    session_patterns: SessionPatterns = Field(default_factory=SessionPatterns)
    content_preferences: ContentPreferences = Field(default_factory=ContentPreferences)
    learning_style: LearningStyle = "guided"
    interaction_count: int = 0

    def stat_for(self, intent: IntentType) -> Optional[IntentStat]:
        for stat in self.preferred_intents:
            if stat.intent == intent:
                return stat
        return None


class Recommendation(BaseModel):
    id: str
    type: Literal["feature", "content", "action", "learning"]
    title: str
    description: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: List[str] = Field(default_factory=list)
    action: Optional[QuickAction] = None
    priority: Priority = "medium"
    category: str = ""
